from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from printflow import config
from printflow.domain import HealthStatus, Order, OrderLine, days_until, effective_delivery_date, utcnow
from printflow.services.learning import LearningBaseline, expected_duration
from printflow.services.prediction import predict_delay


BASE_FACTORS = ("deadline_proximity", "stage_duration", "assignee_workload", "historical_delays")
PREDICTION_POINTS = 10


@dataclass(frozen=True)
class HealthScore:
    line_id: str
    order_id: str | None
    score: int
    status: HealthStatus
    factors: dict[str, int]
    reason_codes: list[str]
    delay_probability: float | None
    calculated_at: datetime


def deadline_factor(days: int | None) -> int:
    if days is None:
        return 40
    if days < 0:
        return 0
    if days <= 1:
        return 10
    if days <= 3:
        return 20
    if days <= 7:
        return 30
    return 40


def stage_duration_factor(residency_hours: float, expected_hours: float) -> int:
    if expected_hours <= 0:
        return 30
    if residency_hours > expected_hours * 1.5:
        return 0
    if residency_hours > expected_hours:
        return 15
    return 30


def workload_factor(open_line_count: int | None) -> int:
    if open_line_count is None:
        return 20
    if open_line_count > 10:
        return 5
    if open_line_count > 5:
        return 10
    return 20


def historical_factor(historical_delay_count: int | None) -> int:
    if not historical_delay_count or historical_delay_count < 0:
        return 10
    return max(0, 10 - 2 * historical_delay_count)


def prediction_factor(probability: float) -> int:
    if probability > 0.7:
        return 0
    if probability > 0.5:
        return 5
    return PREDICTION_POINTS


def status_from_score(score: float, calibration_confidence: float) -> HealthStatus:
    if calibration_confidence > config.TIGHT_THRESHOLD_CONFIDENCE:
        healthy_at, at_risk_at = config.TIGHT_STATUS_THRESHOLDS
    else:
        healthy_at, at_risk_at = config.LOOSE_STATUS_THRESHOLDS
    if score >= healthy_at:
        return HealthStatus.HEALTHY
    if score >= at_risk_at:
        return HealthStatus.AT_RISK
    return HealthStatus.CRITICAL


def score(
    line: OrderLine,
    order: Order | None,
    baseline: LearningBaseline,
    open_line_count: int | None = None,
    historical_delay_count: int | None = None,
    now: datetime | None = None,
) -> HealthScore:
    """Score a line 0-100 from deadline, overrun, workload and delay history.

    The learned prediction factor only joins once the baseline has real
    samples. The four base factors already span 0-100, so the prediction can
    only take points away: whatever it withholds from its 10 comes off the
    score, and a clean prediction leaves the score unchanged.
    """
    now = now or utcnow()
    reason_codes: list[str] = []

    days = days_until(effective_delivery_date(line, order), now)
    factors = {
        "deadline_proximity": deadline_factor(days),
        "stage_duration": stage_duration_factor(
            line.residency_hours(now), expected_duration(baseline, line.current_stage)
        ),
        "assignee_workload": workload_factor(open_line_count),
        "historical_delays": historical_factor(historical_delay_count),
    }

    if days is not None and days < 0:
        reason_codes.append("DEADLINE_PASSED")
    elif days is not None and days <= 1:
        reason_codes.append("DEADLINE_IMMINENT")
    if factors["stage_duration"] == 0:
        reason_codes.append("STAGE_OVERRUN_SEVERE")
    elif factors["stage_duration"] < 30:
        reason_codes.append("STAGE_OVERRUN")
    if factors["assignee_workload"] < 20:
        reason_codes.append("ASSIGNEE_OVERLOADED")
    if factors["historical_delays"] < 10:
        reason_codes.append("DELAY_HISTORY")

    probability = None
    if baseline.has_sufficient_samples:
        probability = predict_delay(line, order, baseline, now)
        factors["learned_prediction"] = prediction_factor(probability)
        if factors["learned_prediction"] < PREDICTION_POINTS:
            reason_codes.append("PREDICTED_DELAY")

    if not reason_codes:
        reason_codes.append("HEURISTIC_BASELINE")

    total = sum(factors[name] for name in BASE_FACTORS)
    if probability is not None:
        total -= PREDICTION_POINTS - factors["learned_prediction"]
    total = max(0, min(total, 100))
    return HealthScore(
        line_id=line.id,
        order_id=order.id if order else line.order_id,
        score=total,
        status=status_from_score(total, baseline.calibration_confidence),
        factors=factors,
        reason_codes=reason_codes,
        delay_probability=probability,
        calculated_at=now,
    )
