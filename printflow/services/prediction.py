"""
Delay predictor.

A heuristic linear scorer over learned baselines, not a calibrated probability
model: the output is monotonic in each input (stage delay rate, assignee delay
rate, overrun, deadline proximity) and clamped to [0, 1], nothing more.
"""

from __future__ import annotations

from datetime import datetime

from printflow.domain import Order, OrderLine, days_until, effective_delivery_date, utcnow
from printflow.services.learning import LearningBaseline, expected_duration

FACTOR_CAP = 0.3
RATE_WEIGHT = 0.3
OVERRUN_WEIGHT = 0.2


def _clamp(value: float, min_value: float = 0.0, max_value: float = 1.0) -> float:
    return max(min_value, min(max_value, value))


def overrun_ratio(line: OrderLine, baseline: LearningBaseline, now: datetime) -> float:
    expected = expected_duration(baseline, line.current_stage)
    if expected <= 0:
        return 0.0
    return max(line.residency_hours(now) - expected, 0.0) / expected


def predict_delay(
    line: OrderLine,
    order: Order | None,
    baseline: LearningBaseline,
    now: datetime | None = None,
) -> float:
    now = now or utcnow()
    days = days_until(effective_delivery_date(line, order), now)
    if days is not None and days < 0:
        return 1.0

    probability = min(_clamp(baseline.stage(line.current_stage).delay_rate) * RATE_WEIGHT, FACTOR_CAP)

    assignee = baseline.assignees.get(line.assignee_id) if line.assignee_id else None
    if assignee is not None:
        probability += _clamp(assignee.delay_rate) * RATE_WEIGHT

    probability += min(overrun_ratio(line, baseline, now) * OVERRUN_WEIGHT, FACTOR_CAP)

    if days is not None and days <= 1:
        probability += 0.2
    elif days is not None and days <= 3:
        probability += 0.1

    return round(_clamp(probability), 4)
