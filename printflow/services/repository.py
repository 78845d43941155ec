"""
SQLAlchemy-backed line/order repository.

Transitions follow read -> compute -> conditional commit: the UPDATE only
matches the row version that was read, so two writers racing on the same line
cannot both succeed.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from datetime import date, datetime
from typing import Any, Callable, Iterable

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from printflow import config, models
from printflow.domain import (
    DEPARTMENT_FOR_STAGE,
    AuditNote,
    DelayReason,
    Department,
    DispatchConfirmation,
    Order,
    OrderLine,
    Stage,
    as_datetime,
    utcnow,
)
from printflow.errors import ConcurrentUpdate, InvalidTransition, LineNotFound
from printflow.services.workflow import TransitionResult, normalize_stage_sequence

logger = logging.getLogger(__name__)

Operation = Callable[[OrderLine], "OrderLine | TransitionResult"]


def parse_json(payload: str | None, default: Any) -> Any:
    if not payload:
        return default
    try:
        return json.loads(payload)
    except json.JSONDecodeError:
        logger.warning("Discarding unreadable JSON column value: %r", payload[:80])
        return default


def _timestamp(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def line_from_record(record: models.OrderLineRecord) -> OrderLine:
    durations = {
        Stage(stage): float(hours)
        for stage, hours in parse_json(record.stage_durations_json, {}).items()
    }
    reasons = tuple(
        DelayReason(
            category=raw["category"],
            text=raw.get("text", ""),
            stage=Stage(raw["stage"]) if raw.get("stage") else None,
            recorded_at=_timestamp(raw.get("recorded_at")),
        )
        for raw in parse_json(record.delay_reasons_json, [])
    )
    notes = tuple(
        AuditNote(text=raw["text"], recorded_at=_timestamp(raw["recorded_at"]))
        for raw in parse_json(record.notes_json, [])
    )
    dispatch_info = None
    if record.tracking_number:
        dispatch_info = DispatchConfirmation(courier=record.courier or "", tracking_number=record.tracking_number)
    return OrderLine(
        id=record.id,
        order_id=record.order_id,
        product_name=record.product_name,
        delivery_date=record.delivery_date,
        current_stage=Stage(record.current_stage),
        current_substage=record.current_substage,
        stage_sequence=tuple(parse_json(record.stage_sequence_json, list(config.DEFAULT_STAGE_SEQUENCE))),
        stage_entered_at=record.stage_entered_at,
        stage_durations=durations,
        assignee_id=record.assignee_id,
        assigned_department=Department(record.assigned_department),
        dispatched=record.dispatched,
        dispatched_at=record.dispatched_at,
        dispatch_info=dispatch_info,
        delay_reasons=reasons,
        notes=notes,
        version=record.version,
    )


def _column_values(line: OrderLine) -> dict[str, Any]:
    return {
        "current_stage": line.current_stage.value,
        "current_substage": line.current_substage,
        "stage_sequence_json": json.dumps(list(line.stage_sequence)),
        "stage_entered_at": line.stage_entered_at,
        "stage_durations_json": json.dumps(
            {stage.value: round(hours, 4) for stage, hours in line.stage_durations.items()}
        ),
        "assignee_id": line.assignee_id,
        "assigned_department": line.assigned_department.value,
        "dispatched": line.dispatched,
        "dispatched_at": line.dispatched_at,
        "courier": line.dispatch_info.courier if line.dispatch_info else None,
        "tracking_number": line.dispatch_info.tracking_number if line.dispatch_info else None,
        "delay_reasons_json": json.dumps(
            [
                {
                    "category": reason.category,
                    "text": reason.text,
                    "stage": reason.stage.value if reason.stage else None,
                    "recorded_at": reason.recorded_at.isoformat() if reason.recorded_at else None,
                }
                for reason in line.delay_reasons
            ]
        ),
        "notes_json": json.dumps(
            [{"text": note.text, "recorded_at": note.recorded_at.isoformat()} for note in line.notes]
        ),
    }


def _order_from_record(record: models.OrderRecord, lines: Iterable[OrderLine]) -> Order:
    return Order(
        id=record.id,
        customer_name=record.customer_name,
        delivery_date=record.delivery_date,
        lines=tuple(lines),
    )


def _optional_datetime(value: date | datetime | None) -> datetime | None:
    return as_datetime(value) if value is not None else None


def create_order(
    db: Session,
    customer_name: str,
    lines: list[dict[str, Any]],
    delivery_date: date | datetime | None = None,
    now: datetime | None = None,
) -> Order:
    now = now or utcnow()
    sequences = [
        normalize_stage_sequence(item.get("stage_sequence") or config.DEFAULT_STAGE_SEQUENCE) for item in lines
    ]
    order = models.OrderRecord(customer_name=customer_name, delivery_date=_optional_datetime(delivery_date), created_at=now)
    db.add(order)
    db.flush()

    for item, sequence in zip(lines, sequences):
        db.add(
            models.OrderLineRecord(
                order_id=order.id,
                product_name=item.get("product_name", ""),
                delivery_date=_optional_datetime(item.get("delivery_date")),
                current_stage=Stage.INTAKE.value,
                stage_sequence_json=json.dumps(list(sequence)),
                stage_entered_at=now,
                stage_durations_json="{}",
                assignee_id=item.get("assignee_id"),
                assigned_department=DEPARTMENT_FOR_STAGE[Stage.INTAKE].value,
                created_at=now,
                updated_at=now,
            )
        )
    db.commit()
    logger.info("Created order %s with %d lines", order.id, len(lines))
    return get_order(db, order.id)


def get_order(db: Session, order_id: str) -> Order:
    record = db.get(models.OrderRecord, order_id)
    if record is None:
        raise LineNotFound(f"Order {order_id} not found.", error_code="order_not_found")
    rows = (
        db.query(models.OrderLineRecord)
        .filter(models.OrderLineRecord.order_id == order_id)
        .order_by(models.OrderLineRecord.created_at.asc(), models.OrderLineRecord.id.asc())
        .all()
    )
    return _order_from_record(record, (line_from_record(row) for row in rows))


def list_orders(db: Session) -> list[Order]:
    records = db.query(models.OrderRecord).order_by(models.OrderRecord.created_at.asc()).all()
    by_order: dict[str, list[OrderLine]] = {record.id: [] for record in records}
    for row in db.query(models.OrderLineRecord).order_by(models.OrderLineRecord.created_at.asc()).all():
        by_order.setdefault(row.order_id, []).append(line_from_record(row))
    return [_order_from_record(record, by_order[record.id]) for record in records]


def get_line(db: Session, line_id: str) -> OrderLine:
    record = db.get(models.OrderLineRecord, line_id)
    if record is None:
        raise LineNotFound(f"Line {line_id} not found.")
    return line_from_record(record)


def get_line_with_order(db: Session, line_id: str) -> tuple[OrderLine, Order]:
    line = get_line(db, line_id)
    return line, get_order(db, line.order_id)


def lines_by_stage(db: Session, stage: Stage | None = None) -> list[OrderLine]:
    query = db.query(models.OrderLineRecord)
    if stage is not None:
        query = query.filter(models.OrderLineRecord.current_stage == stage.value)
    return [line_from_record(row) for row in query.order_by(models.OrderLineRecord.delivery_date.asc()).all()]


def all_lines(db: Session) -> list[OrderLine]:
    return lines_by_stage(db)



def open_line_count(db: Session, assignee_id: str | None) -> int | None:
    if not assignee_id:
        return None
    return (
        db.query(func.count(models.OrderLineRecord.id))
        .filter(
            models.OrderLineRecord.assignee_id == assignee_id,
            models.OrderLineRecord.dispatched.is_(False),
            models.OrderLineRecord.current_stage != Stage.DONE.value,
        )
        .scalar()
    )


def commit_line(db: Session, before: OrderLine, after: OrderLine, action: str, now: datetime | None = None) -> OrderLine:
    now = now or utcnow()
    result = db.execute(
        update(models.OrderLineRecord)
        .where(models.OrderLineRecord.id == before.id, models.OrderLineRecord.version == before.version)
        .values(**_column_values(after), version=before.version + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        logger.warning("Line %s changed since version %d was read; %s rejected", before.id, before.version, action)
        raise ConcurrentUpdate(f"Line {before.id} was modified concurrently; reload and retry.")

    moved = (before.current_stage, before.current_substage) != (after.current_stage, after.current_substage)
    if moved:
        db.add(
            models.StageEvent(
                order_line_id=before.id,
                action=action,
                from_stage=before.current_stage.value,
                from_substage=before.current_substage,
                to_stage=after.current_stage.value,
                to_substage=after.current_substage,
                hours_flushed=round(after.stage_hours(before.current_stage) - before.stage_hours(before.current_stage), 4),
                created_at=now,
            )
        )
    db.commit()
    if moved:
        logger.info(
            "Line %s %s: %s/%s -> %s/%s",
            before.id,
            action,
            before.current_stage.value,
            before.current_substage,
            after.current_stage.value,
            after.current_substage,
        )
    return replace(after, version=before.version + 1)


def apply_transition(
    db: Session,
    line_id: str,
    operation: Operation,
    action: str,
    now: datetime | None = None,
) -> TransitionResult:
    """Load a line, run ``operation`` on it and commit the outcome atomically."""
    line = get_line(db, line_id)
    try:
        outcome = operation(line)
    except InvalidTransition as exc:
        logger.warning("Rejected %s on line %s: %s", action, line_id, exc.message)
        raise
    result = outcome if isinstance(outcome, TransitionResult) else TransitionResult(outcome)
    if result.line == line:
        return result
    saved = commit_line(db, line, result.line, action, now)
    return TransitionResult(saved, result.dispatch_confirmation_required)


def stage_events(db: Session, line_id: str) -> list[models.StageEvent]:
    get_line(db, line_id)
    return (
        db.query(models.StageEvent)
        .filter(models.StageEvent.order_line_id == line_id)
        .order_by(models.StageEvent.created_at.asc())
        .all()
    )
