from __future__ import annotations

import copy
from datetime import datetime, timedelta

import pytest

from printflow.domain import Department, DispatchConfirmation, OrderLine, Stage
from printflow.errors import InvalidTransition
from printflow.services.workflow import (
    add_note,
    advance,
    assign_department,
    assign_user,
    complete_substage,
    confirm_dispatch,
    jump_to_substage,
    normalize_stage_sequence,
    record_delay_reason,
    set_stage_sequence,
)

NOW = datetime(2026, 3, 2, 9, 0, 0)
SHORT_SEQUENCE = ("foiling", "printing", "packing")
CONFIRMATION = DispatchConfirmation(courier="BlueDart", tracking_number="BD-1001")


def _line(**overrides) -> OrderLine:
    values = {
        "id": "line-1",
        "order_id": "order-1",
        "delivery_date": NOW + timedelta(days=10),
        "stage_entered_at": NOW,
    }
    values.update(overrides)
    return OrderLine(**values)


def _manufacturing_line(substage: str, **overrides) -> OrderLine:
    return _line(
        current_stage=Stage.MANUFACTURING,
        current_substage=substage,
        stage_sequence=SHORT_SEQUENCE,
        assigned_department=Department.PRODUCTION,
        **overrides,
    )


def test_advance_moves_forward_and_accumulates_hours():
    line = _line()
    at = NOW
    stages = [line.current_stage]
    for _ in range(3):
        at += timedelta(hours=5)
        line = advance(line, at)
        stages.append(line.current_stage)

    assert stages == [Stage.INTAKE, Stage.DESIGN, Stage.PREPRESS, Stage.MANUFACTURING]
    assert line.current_substage == "foiling"
    assert line.stage_entered_at == at
    assert line.stage_durations == {Stage.INTAKE: 5.0, Stage.DESIGN: 5.0, Stage.PREPRESS: 5.0}
    assert line.assigned_department == Department.PRODUCTION


def test_advance_walks_substages_then_exits_to_dispatch():
    line = _manufacturing_line("foiling")

    line = advance(line, NOW + timedelta(hours=2))
    assert (line.current_stage, line.current_substage) == (Stage.MANUFACTURING, "printing")
    line = advance(line, NOW + timedelta(hours=5))
    assert line.current_substage == "packing"
    line = advance(line, NOW + timedelta(hours=6))

    assert line.current_stage == Stage.DISPATCH
    assert line.current_substage is None
    assert line.dispatched is False
    assert line.stage_durations[Stage.MANUFACTURING] == pytest.approx(6.0)


def test_advance_out_of_dispatch_needs_confirmation():
    line = _line(current_stage=Stage.DISPATCH)
    with pytest.raises(InvalidTransition):
        advance(line, NOW + timedelta(hours=1))

    done = advance(line, NOW + timedelta(hours=3), confirmation=CONFIRMATION)
    assert done.current_stage == Stage.DONE
    assert done.dispatched is True
    assert done.dispatched_at == NOW + timedelta(hours=3)
    assert done.dispatch_info == CONFIRMATION
    assert done.stage_durations[Stage.DISPATCH] == pytest.approx(3.0)


def test_advance_never_decreases_stage_ordinal():
    line = _line(stage_sequence=SHORT_SEQUENCE)
    at = NOW
    while not line.dispatched:
        at += timedelta(hours=1)
        moved = advance(line, at, confirmation=CONFIRMATION)
        assert moved.current_stage.ordinal >= line.current_stage.ordinal
        line = moved
    assert line.current_stage == Stage.DONE
    with pytest.raises(InvalidTransition):
        advance(line, at + timedelta(hours=1))


def test_advance_past_done_is_rejected():
    line = _line(current_stage=Stage.DONE)
    with pytest.raises(InvalidTransition):
        advance(line, NOW)


def test_entering_manufacturing_without_sequence_is_rejected():
    line = _line(current_stage=Stage.PREPRESS, stage_sequence=())
    with pytest.raises(InvalidTransition):
        advance(line, NOW + timedelta(hours=1))


def test_dispatched_line_rejects_transitions_unchanged():
    line = _line(
        current_stage=Stage.DONE,
        dispatched=True,
        dispatched_at=NOW,
        dispatch_info=CONFIRMATION,
        stage_durations={Stage.MANUFACTURING: 12.0, Stage.DISPATCH: 1.0},
    )
    snapshot = copy.deepcopy(line)
    attempts = [
        lambda: advance(line, NOW + timedelta(hours=1), confirmation=CONFIRMATION),
        lambda: jump_to_substage(line, "foiling", NOW),
        lambda: complete_substage(line, NOW),
        lambda: confirm_dispatch(line, CONFIRMATION, NOW),
        lambda: assign_department(line, "design"),
        lambda: assign_user(line, "user-9"),
        lambda: set_stage_sequence(line, ["printing"]),
        lambda: record_delay_reason(line, "courier", "Van broke down", NOW),
    ]
    for attempt in attempts:
        with pytest.raises(InvalidTransition):
            attempt()
        assert line == snapshot

    noted = add_note(line, "Customer called to confirm receipt", NOW)
    assert noted.notes[-1].text == "Customer called to confirm receipt"
    assert line.notes == ()


def test_jump_to_earlier_substage_keeps_manufacturing_hours():
    line = _manufacturing_line("packing", stage_durations={Stage.MANUFACTURING: 10.0})
    jumped = jump_to_substage(line, "foiling", NOW + timedelta(hours=4))

    assert jumped.current_stage == Stage.MANUFACTURING
    assert jumped.current_substage == "foiling"
    assert jumped.stage_entered_at == NOW + timedelta(hours=4)
    assert jumped.stage_durations[Stage.MANUFACTURING] == pytest.approx(14.0)


def test_jump_rejects_unknown_target_and_other_stages():
    line = _manufacturing_line("printing")
    with pytest.raises(InvalidTransition):
        jump_to_substage(line, "embossing", NOW)
    assert line.current_substage == "printing"

    with pytest.raises(InvalidTransition):
        jump_to_substage(_line(current_stage=Stage.PREPRESS), "foiling", NOW)


def test_complete_last_substage_hands_off_without_dispatching():
    line = _manufacturing_line("packing")
    result = complete_substage(line, NOW + timedelta(hours=3))

    assert result.dispatch_confirmation_required is True
    assert result.line.current_stage == Stage.DISPATCH
    assert result.line.current_substage is None
    assert result.line.dispatched is False
    assert result.line.stage_durations[Stage.MANUFACTURING] == pytest.approx(3.0)

    confirmed = confirm_dispatch(result.line, CONFIRMATION, NOW + timedelta(hours=5))
    assert confirmed.dispatched is True
    assert confirmed.current_stage == Stage.DONE
    assert confirmed.stage_durations[Stage.DISPATCH] == pytest.approx(2.0)


def test_complete_last_substage_with_confirmation_finishes_line():
    result = complete_substage(_manufacturing_line("packing"), NOW + timedelta(hours=1), confirmation=CONFIRMATION)
    assert result.dispatch_confirmation_required is False
    assert result.line.current_stage == Stage.DONE
    assert result.line.dispatched is True


def test_complete_middle_substage_moves_to_next():
    result = complete_substage(_manufacturing_line("foiling"), NOW + timedelta(hours=2))
    assert result.dispatch_confirmation_required is False
    assert result.line.current_substage == "printing"


def test_complete_substage_outside_manufacturing_is_rejected():
    with pytest.raises(InvalidTransition):
        complete_substage(_line(current_stage=Stage.DESIGN), NOW)


def test_confirm_dispatch_requires_dispatch_stage_and_tracking():
    with pytest.raises(InvalidTransition):
        confirm_dispatch(_manufacturing_line("printing"), CONFIRMATION, NOW)
    with pytest.raises(InvalidTransition):
        confirm_dispatch(_line(current_stage=Stage.DISPATCH), DispatchConfirmation("BlueDart", "  "), NOW)


def test_assign_department_normalizes_stage_names():
    line = _line(current_stage=Stage.DESIGN)
    assert assign_department(line, "dispatch").assigned_department == Department.PRODUCTION
    assert assign_department(line, "done").assigned_department == Department.PRODUCTION
    assert assign_department(line, Stage.MANUFACTURING).assigned_department == Department.PRODUCTION
    assert assign_department(line, " Prepress ").assigned_department == Department.PREPRESS
    assert assign_department(line, "intake").assigned_department == Department.SALES
    assert assign_department(line, "prepress").current_stage == Stage.DESIGN
    with pytest.raises(InvalidTransition):
        assign_department(line, "warehouse")


def test_assign_user_sets_and_clears_assignee():
    line = assign_user(_line(), "user-7")
    assert line.assignee_id == "user-7"
    assert assign_user(line, "").assignee_id is None


def test_set_stage_sequence_rules():
    line = set_stage_sequence(_line(current_stage=Stage.PREPRESS), ["Printing", "cutting", "packing"])
    assert line.stage_sequence == ("printing", "cutting", "packing")

    with pytest.raises(InvalidTransition):
        set_stage_sequence(line, [])
    with pytest.raises(InvalidTransition):
        set_stage_sequence(line, ["printing", "printing"])
    with pytest.raises(InvalidTransition):
        set_stage_sequence(_manufacturing_line("printing"), ["foiling", "packing"])
    with pytest.raises(InvalidTransition):
        set_stage_sequence(_line(current_stage=Stage.DISPATCH), ["packing"])


@pytest.mark.parametrize(
    "sequence",
    [[], ["printing", "  "], ["printing", "cutting", "printing"], ["Printing", "printing "]],
)
def test_normalize_stage_sequence_rejects_bad_sequences(sequence):
    with pytest.raises(InvalidTransition):
        normalize_stage_sequence(sequence)


def test_normalize_stage_sequence_cleans_names():
    assert normalize_stage_sequence([" Foiling", "PACKING "]) == ("foiling", "packing")


def test_clock_skew_never_produces_negative_hours():
    line = _line(stage_entered_at=NOW + timedelta(hours=1))
    moved = advance(line, NOW)
    assert moved.stage_durations[Stage.INTAKE] == 0.0


def test_record_delay_reason_tags_current_stage():
    line = record_delay_reason(_line(current_stage=Stage.DESIGN), "Client", "Waiting on artwork approval", NOW)
    reason = line.delay_reasons[-1]
    assert reason.category == "client"
    assert reason.stage == Stage.DESIGN
    assert reason.recorded_at == NOW

    with pytest.raises(InvalidTransition):
        record_delay_reason(line, "weather", "Storm", NOW)
