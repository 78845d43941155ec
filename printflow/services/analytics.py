from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from printflow import config
from printflow.domain import (
    Order,
    OrderLine,
    Stage,
    as_datetime,
    days_until,
    effective_delivery_date,
    missed_delivery,
    utcnow,
)


@dataclass
class DepartmentDelays:
    count: int = 0
    percentage: float = 0.0
    average_delay_hours: float = 0.0


@dataclass
class DeliveryPerformance:
    total_lines: int
    on_time: int
    delayed: int
    at_risk: int
    on_time_percentage: float
    average_lifecycle_hours: float
    department_delays: dict[str, DepartmentDelays] = field(default_factory=dict)


@dataclass
class DelayReasonStats:
    by_category: dict[str, int]
    by_stage: dict[str, int]
    most_common: list[tuple[str, int]]


def delivery_status(line: OrderLine, order: Order | None = None, now: datetime | None = None) -> str:
    if line.dispatched or line.current_stage in (Stage.DISPATCH, Stage.DONE):
        return "delayed" if missed_delivery(line, order) else "on_time"

    days = days_until(effective_delivery_date(line, order), now or utcnow())
    if days is None:
        return "on_time"
    if days < 0:
        return "delayed"
    if days <= config.AT_RISK_WITHIN_DAYS:
        return "at_risk"
    return "on_time"


def _lateness_hours(line: OrderLine, order: Order, now: datetime) -> float:
    # Open lines are late by however long they have been overdue so far.
    delivery = effective_delivery_date(line, order)
    if delivery is None:
        return 0.0
    return max(((line.dispatched_at or now) - as_datetime(delivery)).total_seconds() / 3600.0, 0.0)


def delivery_performance(orders: Iterable[Order], now: datetime | None = None) -> DeliveryPerformance:
    """Delivery outcome of every line; lifecycle hours average over finished lines only."""
    now = now or utcnow()
    total = on_time = delayed = at_risk = completed = 0
    lifecycle_hours = 0.0
    late_by_department: dict[str, list[float]] = {}

    for order in orders:
        for line in order.lines:
            total += 1
            if line.current_stage == Stage.DONE:
                completed += 1
                lifecycle_hours += line.total_hours
            status = delivery_status(line, order, now)
            if status == "on_time":
                on_time += 1
            elif status == "at_risk":
                at_risk += 1
            else:
                delayed += 1
                department = line.assigned_department.value
                late_by_department.setdefault(department, []).append(_lateness_hours(line, order, now))

    departments = {
        department: DepartmentDelays(
            count=len(hours),
            percentage=round(len(hours) / total * 100, 2),
            average_delay_hours=round(sum(hours) / len(hours), 2),
        )
        for department, hours in late_by_department.items()
    }
    return DeliveryPerformance(
        total_lines=total,
        on_time=on_time,
        delayed=delayed,
        at_risk=at_risk,
        on_time_percentage=round(on_time / total * 100, 2) if total else 0.0,
        average_lifecycle_hours=round(lifecycle_hours / completed, 2) if completed else 0.0,
        department_delays=departments,
    )


def delay_reason_stats(lines: Iterable[OrderLine]) -> DelayReasonStats:
    by_category: Counter[str] = Counter()
    by_stage: Counter[str] = Counter()
    for line in lines:
        for reason in line.delay_reasons:
            by_category[reason.category] += 1
            if reason.stage is not None:
                by_stage[reason.stage.value] += 1
    return DelayReasonStats(
        by_category=dict(by_category),
        by_stage=dict(by_stage),
        most_common=by_category.most_common(5),
    )
