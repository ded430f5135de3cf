from __future__ import annotations

import json
import os
import time
from datetime import datetime

from celery import shared_task
from flask import current_app

from thulubazaar.jobs.promotion_sweeper import run_promotion_expiry_sweep


def _task_log(task_name: str, *, status: str, started_at: float, **extra):
    duration_ms = int(max(0.0, (time.perf_counter() - float(started_at))) * 1000.0)
    payload = {
        "task_name": task_name,
        "status": status,
        "duration_ms": duration_ms,
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(extra or {})
    current_app.logger.info(json.dumps(payload))


def _sweep_limit() -> int:
    raw = (os.getenv("PROMOTION_SWEEP_LIMIT") or "500").strip()
    try:
        value = int(raw)
    except ValueError:
        value = 500
    return max(1, min(value, 5000))


@shared_task(
    bind=True,
    name="thulubazaar.tasks.promotion_tasks.sweep_expired_promotions",
    max_retries=0,
)
def sweep_expired_promotions(self):
    started = time.perf_counter()
    limit = _sweep_limit()
    try:
        result = run_promotion_expiry_sweep(limit=limit)
    except Exception as exc:
        # The next beat tick is the retry.
        _task_log("sweep_expired_promotions", status="failed", started_at=started, detail=str(exc))
        raise
    _task_log(
        "sweep_expired_promotions",
        status="ok" if result.get("ok") else "partial",
        started_at=started,
        limit=limit,
        found=result.get("found"),
        deactivated=result.get("deactivated"),
        errors=result.get("errors"),
        orphaned_cleaned=result.get("orphaned_cleaned"),
    )
    return result
