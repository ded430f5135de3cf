from __future__ import annotations

from datetime import datetime
import json
import logging

from thulubazaar.extensions import db
from thulubazaar.models import JobRun

logger = logging.getLogger(__name__)


def record_job_run(
    *,
    job_name: str,
    ok: bool,
    started_at: datetime,
    summary: dict | None = None,
    error: str | None = None,
) -> JobRun | None:
    duration_ms: int | None = None
    try:
        duration_ms = max(0, int((datetime.utcnow() - started_at).total_seconds() * 1000))
    except (TypeError, ValueError):
        duration_ms = None
    try:
        row = JobRun(
            job_name=(job_name or "unknown").strip()[:64],
            ran_at=datetime.utcnow(),
            ok=bool(ok),
            duration_ms=duration_ms,
            summary_json=json.dumps(summary, default=str) if summary is not None else None,
            error=(error or "")[:1000] or None,
        )
        db.session.add(row)
        db.session.commit()
        return row
    except Exception:
        db.session.rollback()
        logger.exception("job_run_record_failed job=%s", job_name)
        return None


def recent_job_runs(job_name: str | None = None, *, limit: int = 20) -> list[JobRun]:
    q = JobRun.query
    if job_name:
        q = q.filter_by(job_name=job_name.strip())
    limit = max(1, min(int(limit or 20), 200))
    return q.order_by(JobRun.ran_at.desc(), JobRun.id.desc()).limit(limit).all()
