from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from printflow.domain import OrderLine, Stage
from printflow.services.learning import AssigneeBaseline, default_baseline
from printflow.services.prediction import overrun_ratio, predict_delay

NOW = datetime(2026, 3, 2, 9, 0, 0)


def _line(**overrides) -> OrderLine:
    values = {
        "id": "line-1",
        "delivery_date": NOW + timedelta(days=10),
        "current_stage": Stage.MANUFACTURING,
        "current_substage": "printing",
        "stage_entered_at": NOW,
    }
    values.update(overrides)
    return OrderLine(**values)


def _with_stage_rate(rate: float):
    baseline = default_baseline()
    stages = dict(baseline.stages)
    stages[Stage.MANUFACTURING] = replace(stages[Stage.MANUFACTURING], delay_rate=rate)
    return replace(baseline, stages=stages)


def test_past_due_line_is_certain_to_be_late():
    assert predict_delay(_line(delivery_date=NOW - timedelta(days=1)), None, default_baseline(), NOW) == 1.0


def test_fresh_line_has_no_delay_signal():
    assert predict_delay(_line(), None, default_baseline(), NOW) == 0.0


def test_assignee_delay_rate_contributes():
    baseline = replace(
        default_baseline(),
        assignees={"user-1": AssigneeBaseline(avg_total_hours=120.0, delay_rate=0.5, lines_handled=14)},
    )
    assert predict_delay(_line(assignee_id="user-1"), None, baseline, NOW) == pytest.approx(0.15)
    assert predict_delay(_line(assignee_id="user-2"), None, baseline, NOW) == 0.0


def test_stage_delay_rate_contribution_is_capped():
    assert predict_delay(_line(), None, _with_stage_rate(0.5), NOW) == pytest.approx(0.15)
    assert predict_delay(_line(), None, _with_stage_rate(4.0), NOW) == pytest.approx(0.3)


def test_overrun_against_default_p95():
    # Manufacturing default p95 is 144h; 288h is a full overrun ratio of 1.
    line = _line(stage_durations={Stage.MANUFACTURING: 288.0})
    assert overrun_ratio(line, default_baseline(), NOW) == pytest.approx(1.0)
    assert predict_delay(line, None, default_baseline(), NOW) == pytest.approx(0.2)

    huge = _line(stage_durations={Stage.MANUFACTURING: 1440.0})
    assert predict_delay(huge, None, default_baseline(), NOW) == pytest.approx(0.3)


def test_deadline_proximity_bonus():
    assert predict_delay(_line(delivery_date=NOW + timedelta(hours=20)), None, default_baseline(), NOW) == pytest.approx(0.2)
    assert predict_delay(_line(delivery_date=NOW + timedelta(days=3)), None, default_baseline(), NOW) == pytest.approx(0.1)
    assert predict_delay(_line(delivery_date=NOW + timedelta(days=4)), None, default_baseline(), NOW) == 0.0


def test_probability_is_clamped_to_one():
    baseline = replace(
        _with_stage_rate(1.0),
        assignees={"user-1": AssigneeBaseline(avg_total_hours=200.0, delay_rate=1.0, lines_handled=20)},
    )
    line = _line(
        assignee_id="user-1",
        delivery_date=NOW + timedelta(hours=6),
        stage_durations={Stage.MANUFACTURING: 1000.0},
    )
    assert predict_delay(line, None, baseline, NOW) == 1.0


def test_probability_is_monotonic_in_overrun():
    values = [
        predict_delay(_line(stage_durations={Stage.MANUFACTURING: hours}), None, default_baseline(), NOW)
        for hours in range(0, 800, 40)
    ]
    assert values == sorted(values)
    assert all(0.0 <= value <= 1.0 for value in values)
