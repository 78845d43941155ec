"""
Stage/substage state machine for order lines.

Every operation takes an immutable ``OrderLine`` and returns a new one, so a
rejected move can never leave a line half-updated. Persisting the result (and
guarding against concurrent writers) is the repository's job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable

from printflow import config
from printflow.domain import (
    DEPARTMENT_FOR_STAGE,
    STAGE_ORDER,
    AuditNote,
    DelayReason,
    Department,
    DispatchConfirmation,
    OrderLine,
    Stage,
    hours_between,
    utcnow,
)
from printflow.errors import InvalidTransition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionResult:
    line: OrderLine
    dispatch_confirmation_required: bool = False


def _ensure_not_dispatched(line: OrderLine, action: str) -> None:
    if line.dispatched:
        raise InvalidTransition(f"Line {line.id} is dispatched; cannot {action}.")


def _substage_index(line: OrderLine) -> int:
    if line.current_substage not in line.stage_sequence:
        raise InvalidTransition(
            f"Line {line.id} is on substage {line.current_substage!r}, which is not in its stage sequence."
        )
    return line.stage_sequence.index(line.current_substage)


def _move(line: OrderLine, now: datetime, stage: Stage, substage: str | None) -> OrderLine:
    """Flush residency of the stage being left and enter ``stage``/``substage``."""
    durations = dict(line.stage_durations)
    durations[line.current_stage] = line.stage_hours(line.current_stage) + hours_between(line.stage_entered_at, now)
    department = line.assigned_department
    if stage != line.current_stage:
        department = DEPARTMENT_FOR_STAGE[stage]
    logger.debug(
        "line %s: %s/%s -> %s/%s", line.id, line.current_stage.value, line.current_substage, stage.value, substage
    )
    return replace(
        line,
        current_stage=stage,
        current_substage=substage,
        stage_entered_at=now,
        stage_durations=durations,
        assigned_department=department,
    )


def _enter_manufacturing(line: OrderLine, now: datetime) -> OrderLine:
    if not line.stage_sequence:
        raise InvalidTransition(f"Line {line.id} has no manufacturing stage sequence.")
    return _move(line, now, Stage.MANUFACTURING, line.stage_sequence[0])


def confirm_dispatch(
    line: OrderLine,
    confirmation: DispatchConfirmation,
    now: datetime | None = None,
) -> OrderLine:
    now = now or utcnow()
    _ensure_not_dispatched(line, "confirm dispatch")
    if line.current_stage != Stage.DISPATCH:
        raise InvalidTransition(f"Line {line.id} is in {line.current_stage.value}, not dispatch.")
    if not confirmation.tracking_number.strip():
        raise InvalidTransition("Dispatch confirmation requires a tracking number.")
    moved = _move(line, now, Stage.DONE, None)
    return replace(moved, dispatched=True, dispatched_at=now, dispatch_info=confirmation)


def advance(
    line: OrderLine,
    now: datetime | None = None,
    confirmation: DispatchConfirmation | None = None,
) -> OrderLine:
    now = now or utcnow()
    _ensure_not_dispatched(line, "advance")
    stage = line.current_stage

    if stage == Stage.DONE:
        raise InvalidTransition(f"Line {line.id} is already done.")
    if stage == Stage.MANUFACTURING:
        index = _substage_index(line)
        if index < len(line.stage_sequence) - 1:
            return _move(line, now, Stage.MANUFACTURING, line.stage_sequence[index + 1])
        return _move(line, now, Stage.DISPATCH, None)
    if stage == Stage.DISPATCH:
        if confirmation is None:
            raise InvalidTransition(f"Line {line.id} needs a dispatch confirmation to leave dispatch.")
        return confirm_dispatch(line, confirmation, now)

    next_stage = STAGE_ORDER[stage.ordinal + 1]
    if next_stage == Stage.MANUFACTURING:
        return _enter_manufacturing(line, now)
    return _move(line, now, next_stage, None)


def jump_to_substage(line: OrderLine, target: str, now: datetime | None = None) -> OrderLine:
    now = now or utcnow()
    _ensure_not_dispatched(line, "jump substage")
    if line.current_stage != Stage.MANUFACTURING:
        raise InvalidTransition(f"Line {line.id} is not in manufacturing.")
    if target not in line.stage_sequence:
        raise InvalidTransition(f"Substage {target!r} is not in the stage sequence of line {line.id}.")
    if target == line.current_substage:
        return line
    return _move(line, now, Stage.MANUFACTURING, target)


def complete_substage(
    line: OrderLine,
    now: datetime | None = None,
    confirmation: DispatchConfirmation | None = None,
) -> TransitionResult:
    """Close out the current substage.

    Completing the last substage hands the line to dispatch. Unless a
    confirmation is supplied the line waits there with ``dispatched=False``
    and the result asks the caller for one.
    """
    now = now or utcnow()
    _ensure_not_dispatched(line, "complete substage")
    if line.current_stage != Stage.MANUFACTURING or line.current_substage is None:
        raise InvalidTransition(f"Line {line.id} has no active manufacturing substage.")

    index = _substage_index(line)
    if index < len(line.stage_sequence) - 1:
        return TransitionResult(_move(line, now, Stage.MANUFACTURING, line.stage_sequence[index + 1]))

    handed_off = _move(line, now, Stage.DISPATCH, None)
    if confirmation is None:
        return TransitionResult(handed_off, dispatch_confirmation_required=True)
    return TransitionResult(confirm_dispatch(handed_off, confirmation, now))


def normalize_department(value: Department | Stage | str) -> Department:
    if isinstance(value, Department):
        return value
    raw = value.value if isinstance(value, Stage) else str(value).strip().lower()
    try:
        return Department(raw)
    except ValueError:
        pass
    try:
        return DEPARTMENT_FOR_STAGE[Stage(raw)]
    except ValueError:
        raise InvalidTransition(f"Unknown department {value!r}.") from None


def assign_department(line: OrderLine, department: Department | Stage | str) -> OrderLine:
    _ensure_not_dispatched(line, "assign department")
    return replace(line, assigned_department=normalize_department(department))


def assign_user(line: OrderLine, user_id: str | None) -> OrderLine:
    _ensure_not_dispatched(line, "assign user")
    return replace(line, assignee_id=user_id or None)


def normalize_stage_sequence(sequence: Iterable[str]) -> tuple[str, ...]:
    """Lower-case and strip substage names; reject empty, blank or repeated steps."""
    steps = tuple(str(step).strip().lower() for step in sequence)
    if not steps or any(not step for step in steps):
        raise InvalidTransition("Stage sequence must contain at least one named substage.")
    if len(set(steps)) != len(steps):
        raise InvalidTransition("Stage sequence must not repeat a substage.")
    return steps


def set_stage_sequence(line: OrderLine, sequence: Iterable[str]) -> OrderLine:
    _ensure_not_dispatched(line, "change stage sequence")
    if line.current_stage in (Stage.DISPATCH, Stage.DONE):
        raise InvalidTransition(f"Line {line.id} has already left manufacturing.")
    steps = normalize_stage_sequence(sequence)
    if line.current_stage == Stage.MANUFACTURING and line.current_substage not in steps:
        raise InvalidTransition(f"Current substage {line.current_substage!r} must stay in the sequence.")
    return replace(line, stage_sequence=steps)


def record_delay_reason(line: OrderLine, category: str, text: str, now: datetime | None = None) -> OrderLine:
    now = now or utcnow()
    _ensure_not_dispatched(line, "record delay reason")
    category = category.strip().lower()
    if category not in config.DELAY_REASON_CATEGORIES:
        raise InvalidTransition(f"Unknown delay category {category!r}.", error_code="unknown_delay_category")
    reason = DelayReason(category=category, text=text, stage=line.current_stage, recorded_at=now)
    return replace(line, delay_reasons=line.delay_reasons + (reason,))


def add_note(line: OrderLine, text: str, now: datetime | None = None) -> OrderLine:
    # Audit notes are the one thing a dispatched line still accepts.
    return replace(line, notes=line.notes + (AuditNote(text=text, recorded_at=now or utcnow()),))
