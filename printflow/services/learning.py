"""
Learning baselines - empirical stage durations and delay rates.

Baselines start from the hard-coded defaults in ``config`` and are replaced
per stage only once more than ``MIN_LEARNING_SAMPLES`` completed lines have
been seen, so a young installation never scores against thin data.

Features:
- mean / median / p95 stage residency from completed lines
- per-stage and per-assignee delay rates
- delay cause tally across every line
- calibration confidence that grows with the number of completed lines
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Iterable

import numpy as np

from printflow import config
from printflow.domain import STAGE_ORDER, Order, OrderLine, Stage, missed_delivery, utcnow
from printflow.errors import InsufficientData

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StageBaseline:
    mean: float
    median: float
    p95: float
    sample_count: int = 0
    last_updated: datetime | None = None
    delay_rate: float = 0.0

    @property
    def is_learned(self) -> bool:
        return self.sample_count > config.MIN_LEARNING_SAMPLES


@dataclass(frozen=True)
class AssigneeBaseline:
    avg_total_hours: float
    delay_rate: float
    lines_handled: int


@dataclass(frozen=True)
class LearningBaseline:
    stages: dict[Stage, StageBaseline]
    assignees: dict[str, AssigneeBaseline] = field(default_factory=dict)
    common_delay_causes: dict[str, int] = field(default_factory=dict)
    calibration_confidence: float = config.DEFAULT_CALIBRATION_CONFIDENCE
    sample_count: int = 0
    last_updated: datetime | None = None

    def stage(self, stage: Stage) -> StageBaseline:
        return self.stages.get(stage) or default_stage_baseline(stage)

    @property
    def has_sufficient_samples(self) -> bool:
        """Whether enough completed lines were replayed to trust the predictor."""
        return self.sample_count > config.MIN_LEARNING_SAMPLES

    def to_dict(self) -> dict[str, Any]:
        return {
            "stages": {
                stage.value: {
                    "mean": entry.mean,
                    "median": entry.median,
                    "p95": entry.p95,
                    "sample_count": entry.sample_count,
                    "last_updated": entry.last_updated.isoformat() if entry.last_updated else None,
                    "delay_rate": entry.delay_rate,
                }
                for stage, entry in self.stages.items()
            },
            "assignees": {
                assignee_id: {
                    "avg_total_hours": entry.avg_total_hours,
                    "delay_rate": entry.delay_rate,
                    "lines_handled": entry.lines_handled,
                }
                for assignee_id, entry in self.assignees.items()
            },
            "common_delay_causes": dict(self.common_delay_causes),
            "calibration_confidence": self.calibration_confidence,
            "sample_count": self.sample_count,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "LearningBaseline":
        # Stored documents may predate a stage; fill the gaps from defaults.
        stages = dict(default_baseline().stages)
        for name, raw in (payload.get("stages") or {}).items():
            try:
                stage = Stage(name)
            except ValueError:
                logger.warning("Ignoring unknown stage %r in stored baseline", name)
                continue
            stages[stage] = StageBaseline(
                mean=float(raw.get("mean", 0.0)),
                median=float(raw.get("median", 0.0)),
                p95=float(raw.get("p95", 0.0)),
                sample_count=int(raw.get("sample_count", 0)),
                last_updated=_parse_timestamp(raw.get("last_updated")),
                delay_rate=float(raw.get("delay_rate", 0.0)),
            )
        assignees = {
            assignee_id: AssigneeBaseline(
                avg_total_hours=float(raw.get("avg_total_hours", 0.0)),
                delay_rate=float(raw.get("delay_rate", 0.0)),
                lines_handled=int(raw.get("lines_handled", 0)),
            )
            for assignee_id, raw in (payload.get("assignees") or {}).items()
        }
        return cls(
            stages=stages,
            assignees=assignees,
            common_delay_causes={str(k): int(v) for k, v in (payload.get("common_delay_causes") or {}).items()},
            calibration_confidence=float(
                payload.get("calibration_confidence", config.DEFAULT_CALIBRATION_CONFIDENCE)
            ),
            sample_count=int(payload.get("sample_count", 0)),
            last_updated=_parse_timestamp(payload.get("last_updated")),
        )


def _parse_timestamp(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def default_stage_baseline(stage: Stage) -> StageBaseline:
    defaults = config.DEFAULT_STAGE_BASELINES[stage.value]
    return StageBaseline(mean=defaults["mean"], median=defaults["median"], p95=defaults["p95"])


def default_baseline() -> LearningBaseline:
    return LearningBaseline(stages={stage: default_stage_baseline(stage) for stage in STAGE_ORDER})


def expected_duration(baseline: LearningBaseline, stage: Stage, strict: bool = False) -> float:
    """Expected residency (p95 hours) for ``stage``.

    Falls back to the default p95 unless the stage has learned statistics;
    with ``strict=True`` the fallback raises ``InsufficientData`` instead.
    """
    learned = baseline.stages.get(stage)
    if learned is not None and learned.is_learned:
        return learned.p95
    if strict:
        count = learned.sample_count if learned else 0
        raise InsufficientData(f"Stage {stage.value} has {count} samples; more than {config.MIN_LEARNING_SAMPLES} needed.")
    return config.DEFAULT_STAGE_BASELINES[stage.value]["p95"]


def percentile(values: list[float], fraction: float) -> float:
    # "higher" picks sorted(values)[floor(n * fraction)] for the fractions used here.
    return float(np.percentile(values, fraction * 100, method="higher"))


def _stage_statistics(values: list[float], delay_rate: float, now: datetime) -> StageBaseline:
    return StageBaseline(
        mean=round(float(np.mean(values)), 2),
        median=round(float(np.median(values)), 2),
        p95=round(percentile(values, 0.95), 2),
        sample_count=len(values),
        last_updated=now,
        delay_rate=round(delay_rate, 4),
    )


def _delayed_at_stage(line: OrderLine, stage: Stage, missed: bool) -> bool:
    return missed and any(reason.stage == stage for reason in line.delay_reasons)


def recompute_baseline(
    lines: Iterable[OrderLine],
    current_baseline: LearningBaseline,
    now: datetime | None = None,
    orders: Iterable[Order] | None = None,
) -> LearningBaseline:
    """Rebuild the baseline from a batch of lines.

    Completed lines feed the duration and delay statistics, every line feeds
    the delay cause tally. The result depends only on the inputs apart from
    ``last_updated``; lines are never modified.
    """
    now = now or utcnow()
    lines = list(lines)
    orders_by_id = {order.id: order for order in orders or ()}
    completed = [line for line in lines if line.current_stage == Stage.DONE]
    missed = {line.id: missed_delivery(line, orders_by_id.get(line.order_id)) for line in completed}

    samples: dict[Stage, list[float]] = {stage: [] for stage in STAGE_ORDER}
    delayed: dict[Stage, int] = {stage: 0 for stage in STAGE_ORDER}
    for line in completed:
        for stage, hours in line.stage_durations.items():
            samples[stage].append(hours)
            if _delayed_at_stage(line, stage, missed[line.id]):
                delayed[stage] += 1

    stages = dict(current_baseline.stages)
    for stage, values in samples.items():
        if not values:
            continue
        delay_rate = delayed[stage] / len(values)
        if len(values) > config.MIN_LEARNING_SAMPLES:
            stages[stage] = _stage_statistics(values, delay_rate, now)
        else:
            stages[stage] = replace(current_baseline.stage(stage), delay_rate=round(delay_rate, 4))

    handled: dict[str, list[OrderLine]] = {}
    for line in completed:
        if line.assignee_id:
            handled.setdefault(line.assignee_id, []).append(line)
    assignees = dict(current_baseline.assignees)
    for assignee_id, assigned in handled.items():
        assignees[assignee_id] = AssigneeBaseline(
            avg_total_hours=round(float(np.mean([line.total_hours for line in assigned])), 2),
            delay_rate=round(sum(1 for line in assigned if missed[line.id]) / len(assigned), 4),
            lines_handled=len(assigned),
        )

    causes = Counter(reason.category for line in lines for reason in line.delay_reasons)

    if completed:
        confidence = min(config.MAX_CALIBRATION_CONFIDENCE, 0.5 + len(completed) / 100)
        sample_count = len(completed)
    else:
        confidence = current_baseline.calibration_confidence
        sample_count = current_baseline.sample_count

    learned = sorted(stage.value for stage, entry in stages.items() if entry.is_learned)
    logger.info(
        "Recomputed baseline from %d lines (%d completed); learned stages: %s",
        len(lines),
        len(completed),
        ", ".join(learned) or "none",
    )
    return LearningBaseline(
        stages=stages,
        assignees=assignees,
        common_delay_causes=dict(sorted(causes.items())),
        calibration_confidence=round(confidence, 4),
        sample_count=sample_count,
        last_updated=now,
    )
