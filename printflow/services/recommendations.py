from __future__ import annotations

from typing import Iterable


def recommendations_for_reasons(reason_codes: Iterable[str]) -> list[dict[str, str]]:
    reasons = set(reason_codes)
    actions: list[dict[str, str]] = []

    if "DEADLINE_PASSED" in reasons:
        actions.append(
            {
                "title": "Renegotiate delivery",
                "action": "Contact the customer with a revised date and record the delay reason on the line.",
                "priority": "high",
            }
        )
    elif "DEADLINE_IMMINENT" in reasons:
        actions.append(
            {
                "title": "Expedite the line",
                "action": "Move this line to the front of the current department queue.",
                "priority": "high",
            }
        )
    if "STAGE_OVERRUN_SEVERE" in reasons or "STAGE_OVERRUN" in reasons:
        actions.append(
            {
                "title": "Unblock the current stage",
                "action": "Check with the owning department what is holding the line and log a delay reason.",
                "priority": "high" if "STAGE_OVERRUN_SEVERE" in reasons else "medium",
            }
        )
    if "ASSIGNEE_OVERLOADED" in reasons:
        actions.append(
            {
                "title": "Rebalance workload",
                "action": "Reassign the line to a team member with fewer open lines.",
                "priority": "medium",
            }
        )
    if "PREDICTED_DELAY" in reasons or "DELAY_HISTORY" in reasons:
        actions.append(
            {
                "title": "Watch closely",
                "action": "Review this line at the next stand-up; similar lines have slipped before.",
                "priority": "medium",
            }
        )

    if not actions:
        actions.append(
            {
                "title": "Continue monitoring",
                "action": "No action needed; the line is tracking its expected durations.",
                "priority": "low",
            }
        )
    return actions
