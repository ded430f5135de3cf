"""users, ads, promotions, payment transactions and job runs

Revision ID: 3c7d9e1f2a4b
Revises:
Create Date: 2026-09-28 10:15:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "3c7d9e1f2a4b"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(bind, table_name: str) -> bool:
    return sa.inspect(bind).has_table(table_name)


def _create_users(bind) -> None:
    if _table_exists(bind, "users"):
        return
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("full_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="user"),
        sa.Column("is_suspended", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("individual_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("business_verification_status", sa.String(length=24), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_phone", "users", ["phone"], unique=True)


def _create_ads(bind) -> None:
    if _table_exists(bind, "ads"):
        return
    op.create_table(
        "ads",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("slug", sa.String(length=220), nullable=True),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="pending"),
        sa.Column("is_featured", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("featured_until", sa.DateTime(), nullable=True),
        sa.Column("is_urgent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("urgent_until", sa.DateTime(), nullable=True),
        sa.Column("is_sticky", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("sticky_until", sa.DateTime(), nullable=True),
        sa.Column("is_bumped", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("bump_expires_at", sa.DateTime(), nullable=True),
        sa.Column("promoted_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_ads_user_id", "ads", ["user_id"])
    op.create_index("ix_ads_slug", "ads", ["slug"], unique=True)
    op.create_index("ix_ads_status", "ads", ["status"])
    op.create_index("ix_ads_is_featured", "ads", ["is_featured"])
    op.create_index("ix_ads_is_urgent", "ads", ["is_urgent"])
    op.create_index("ix_ads_is_sticky", "ads", ["is_sticky"])


def _create_ad_promotions(bind) -> None:
    if _table_exists(bind, "ad_promotions"):
        return
    op.create_table(
        "ad_promotions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("ad_id", sa.Integer(), sa.ForeignKey("ads.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("promotion_type", sa.String(length=16), nullable=False),
        sa.Column("duration_days", sa.Integer(), nullable=False),
        sa.Column("price_paid", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("account_type", sa.String(length=24), nullable=False, server_default="individual"),
        sa.Column("payment_reference", sa.String(length=80), nullable=True),
        sa.Column("payment_method", sa.String(length=24), nullable=True),
        sa.Column("starts_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_ad_promotions_ad_id", "ad_promotions", ["ad_id"])
    op.create_index("ix_ad_promotions_user_id", "ad_promotions", ["user_id"])
    op.create_index("ix_ad_promotions_active_expiry", "ad_promotions", ["is_active", "expires_at"])


def _create_promotion_pricing(bind) -> None:
    if _table_exists(bind, "promotion_pricing"):
        return
    op.create_table(
        "promotion_pricing",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("promotion_type", sa.String(length=16), nullable=False),
        sa.Column("duration_days", sa.Integer(), nullable=False),
        sa.Column("account_type", sa.String(length=24), nullable=False),
        sa.Column("pricing_tier", sa.String(length=24), nullable=False, server_default="default"),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount_percentage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "promotion_type",
            "duration_days",
            "account_type",
            "pricing_tier",
            name="uq_promotion_pricing_lookup",
        ),
    )


def _create_verification_requests(bind) -> None:
    if _table_exists(bind, "verification_requests"):
        return
    op.create_table(
        "verification_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="pending_payment"),
        sa.Column("payment_status", sa.String(length=16), nullable=False, server_default="unpaid"),
        sa.Column("payment_reference", sa.String(length=80), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_verification_requests_user_id", "verification_requests", ["user_id"])


def _create_payment_tables(bind) -> None:
    if not _table_exists(bind, "payment_transactions"):
        op.create_table(
            "payment_transactions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("payment_type", sa.String(length=40), nullable=False),
            sa.Column("gateway", sa.String(length=24), nullable=False),
            sa.Column("amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("transaction_id", sa.String(length=80), nullable=False),
            sa.Column("reference_id", sa.String(length=120), nullable=True),
            sa.Column("related_id", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
            sa.Column("payment_url", sa.Text(), nullable=True),
            sa.Column("failure_reason", sa.String(length=500), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("verified_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("gateway", "transaction_id", name="uq_payment_tx_gateway_txn"),
        )
        op.create_index("ix_payment_transactions_user_id", "payment_transactions", ["user_id"])
        op.create_index("ix_payment_transactions_payment_type", "payment_transactions", ["payment_type"])
        op.create_index("ix_payment_transactions_transaction_id", "payment_transactions", ["transaction_id"])
        op.create_index("ix_payment_transactions_related_id", "payment_transactions", ["related_id"])
        op.create_index("ix_payment_transactions_status", "payment_transactions", ["status"])

    if not _table_exists(bind, "payment_transitions"):
        op.create_table(
            "payment_transitions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "payment_transaction_id",
                sa.Integer(),
                sa.ForeignKey("payment_transactions.id"),
                nullable=False,
            ),
            sa.Column("from_status", sa.String(length=16), nullable=False, server_default=""),
            sa.Column("to_status", sa.String(length=16), nullable=False),
            sa.Column("reason", sa.String(length=240), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index(
            "ix_payment_transitions_payment_transaction_id",
            "payment_transitions",
            ["payment_transaction_id"],
        )


def _create_job_runs(bind) -> None:
    if _table_exists(bind, "job_runs"):
        return
    op.create_table(
        "job_runs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("job_name", sa.String(length=64), nullable=False),
        sa.Column("ran_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("ok", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("summary_json", sa.Text(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
    )
    op.create_index("ix_job_runs_job_name", "job_runs", ["job_name"])
    op.create_index("ix_job_runs_ran_at", "job_runs", ["ran_at"])


def upgrade():
    bind = op.get_bind()
    _create_users(bind)
    _create_ads(bind)
    _create_ad_promotions(bind)
    _create_promotion_pricing(bind)
    _create_verification_requests(bind)
    _create_payment_tables(bind)
    _create_job_runs(bind)


def downgrade():
    bind = op.get_bind()
    for table_name in (
        "job_runs",
        "payment_transitions",
        "payment_transactions",
        "verification_requests",
        "promotion_pricing",
        "ad_promotions",
        "ads",
        "users",
    ):
        if _table_exists(bind, table_name):
            op.drop_table(table_name)
