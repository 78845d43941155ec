from __future__ import annotations

from datetime import date, datetime

from printflow import config
from printflow.domain import PriorityTier, days_until, utcnow


def classify_priority(delivery_date: date | datetime | None, now: datetime | None = None) -> PriorityTier:
    days = days_until(delivery_date, now or utcnow())
    if days is None or days > config.PRIORITY_LOW_AFTER_DAYS:
        return PriorityTier.LOW
    if days >= config.PRIORITY_WARNING_FROM_DAYS:
        return PriorityTier.WARNING
    return PriorityTier.URGENT
