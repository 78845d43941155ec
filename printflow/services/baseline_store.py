from __future__ import annotations

import json
import logging
import threading
from datetime import datetime

from sqlalchemy.orm import Session

from printflow import config, models
from printflow.domain import Stage, utcnow
from printflow.services import repository
from printflow.services.learning import LearningBaseline, default_baseline, recompute_baseline

logger = logging.getLogger(__name__)

# Single writer: recomputes in this process never interleave their writes.
_recompute_lock = threading.Lock()


def load_baseline(db: Session, key: str = config.DEFAULT_BASELINE_KEY) -> LearningBaseline:
    record = db.get(models.LearningBaselineRecord, key)
    if record is None:
        return default_baseline()
    payload = repository.parse_json(record.payload_json, None)
    if not isinstance(payload, dict):
        logger.warning("Stored baseline %r is unreadable; using defaults", key)
        return default_baseline()
    return LearningBaseline.from_dict(payload)


def save_baseline(
    db: Session,
    baseline: LearningBaseline,
    key: str = config.DEFAULT_BASELINE_KEY,
    completed_lines: int = 0,
) -> None:
    record = db.get(models.LearningBaselineRecord, key)
    payload = json.dumps(baseline.to_dict(), sort_keys=True)
    now = baseline.last_updated or utcnow()
    if record is None:
        db.add(
            models.LearningBaselineRecord(
                key=key, payload_json=payload, completed_lines=completed_lines, updated_at=now
            )
        )
    else:
        record.payload_json = payload
        record.completed_lines = completed_lines
        record.updated_at = now
    db.commit()


def run_recompute(
    db: Session,
    key: str = config.DEFAULT_BASELINE_KEY,
    now: datetime | None = None,
) -> LearningBaseline:
    """Replay every stored line through the learning functions and persist the result."""
    now = now or utcnow()
    with _recompute_lock:
        current = load_baseline(db, key)
        orders = repository.list_orders(db)
        lines = [line for order in orders for line in order.lines]
        updated = recompute_baseline(lines, current, now=now, orders=orders)
        completed = sum(1 for line in lines if line.current_stage == Stage.DONE)
        save_baseline(db, updated, key, completed_lines=completed)
    logger.info("Stored baseline %r (%d completed lines)", key, completed)
    return updated
