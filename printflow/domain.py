from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from enum import Enum

from printflow import config


class Stage(str, Enum):
    INTAKE = "intake"
    DESIGN = "design"
    PREPRESS = "prepress"
    MANUFACTURING = "manufacturing"
    DISPATCH = "dispatch"
    DONE = "done"

    @property
    def ordinal(self) -> int:
        return STAGE_ORDER.index(self)


STAGE_ORDER = (
    Stage.INTAKE,
    Stage.DESIGN,
    Stage.PREPRESS,
    Stage.MANUFACTURING,
    Stage.DISPATCH,
    Stage.DONE,
)


class Department(str, Enum):
    SALES = "sales"
    DESIGN = "design"
    PREPRESS = "prepress"
    PRODUCTION = "production"


# Dispatch and done stay with the department that owns manufacturing.
DEPARTMENT_FOR_STAGE = {
    Stage.INTAKE: Department.SALES,
    Stage.DESIGN: Department.DESIGN,
    Stage.PREPRESS: Department.PREPRESS,
    Stage.MANUFACTURING: Department.PRODUCTION,
    Stage.DISPATCH: Department.PRODUCTION,
    Stage.DONE: Department.PRODUCTION,
}


class PriorityTier(str, Enum):
    LOW = "low"
    WARNING = "warning"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return {"low": 0, "warning": 1, "urgent": 2}[self.value]


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    AT_RISK = "at_risk"
    CRITICAL = "critical"


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    return datetime.combine(value, time.min)


def days_until(delivery: date | datetime | None, now: datetime) -> int | None:
    """Whole days from ``now`` to ``delivery``, rounded up; None without a date."""
    if delivery is None:
        return None
    seconds = (as_datetime(delivery) - as_datetime(now)).total_seconds()
    return math.ceil(seconds / 86400.0)


def hours_between(start: datetime | None, end: datetime) -> float:
    if start is None:
        return 0.0
    return max((as_datetime(end) - as_datetime(start)).total_seconds() / 3600.0, 0.0)


@dataclass(frozen=True)
class DelayReason:
    category: str
    text: str
    stage: Stage | None = None
    recorded_at: datetime | None = None


@dataclass(frozen=True)
class DispatchConfirmation:
    courier: str
    tracking_number: str


@dataclass(frozen=True)
class AuditNote:
    text: str
    recorded_at: datetime


@dataclass(frozen=True)
class OrderLine:
    id: str
    delivery_date: date | datetime | None = None
    current_stage: Stage = Stage.INTAKE
    current_substage: str | None = None
    stage_sequence: tuple[str, ...] = config.DEFAULT_STAGE_SEQUENCE
    stage_entered_at: datetime | None = None
    stage_durations: dict[Stage, float] = field(default_factory=dict)
    assignee_id: str | None = None
    assigned_department: Department = Department.SALES
    dispatched: bool = False
    dispatched_at: datetime | None = None
    dispatch_info: DispatchConfirmation | None = None
    delay_reasons: tuple[DelayReason, ...] = ()
    notes: tuple[AuditNote, ...] = ()
    order_id: str | None = None
    product_name: str = ""
    version: int = 0

    def stage_hours(self, stage: Stage) -> float:
        return self.stage_durations.get(stage, 0.0)

    def residency_hours(self, now: datetime) -> float:
        """Hours spent in the current stage, including time not yet flushed."""
        stored = self.stage_hours(self.current_stage)
        if self.dispatched or self.current_stage == Stage.DONE:
            return stored
        return stored + hours_between(self.stage_entered_at, now)

    @property
    def total_hours(self) -> float:
        return sum(self.stage_durations.values())


@dataclass(frozen=True)
class Order:
    id: str
    customer_name: str = ""
    delivery_date: date | datetime | None = None
    lines: tuple[OrderLine, ...] = ()

    @property
    def is_completed(self) -> bool:
        return bool(self.lines) and all(line.current_stage == Stage.DONE for line in self.lines)


def effective_delivery_date(line: OrderLine, order: Order | None) -> date | datetime | None:
    if line.delivery_date is not None:
        return line.delivery_date
    if order is not None:
        return order.delivery_date
    return None


def missed_delivery(line: OrderLine, order: Order | None = None) -> bool:
    """True when a dispatched line left more than a day after its delivery date."""
    delivery = effective_delivery_date(line, order)
    if delivery is None or line.dispatched_at is None:
        return False
    remaining = days_until(delivery, line.dispatched_at)
    return remaining is not None and remaining < 0
