"""Escalation decision table.

Pure functions: given the current status of an occurrence and a trigger,
decide the next status and which follow-up step to schedule, and when. Side
effects live in :mod:`dosewatch.engine.workflow`.

    pending -> sent -> voice_escalated -> caregiver_escalated
                  \\              \\
                   -> confirmed    -> confirmed

    skipped is reachable from any non-terminal status.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, FrozenSet, Literal

from dosewatch.db.models import OccurrenceStatus
from dosewatch.utils.constants import (
    DEFAULT_ESCALATION_DELAYS,
    OPEN_STATUSES,
    EscalationDelays,
)

Trigger = Literal["send_message", "voice_escalation", "caregiver_escalation", "confirm", "skip"]
FollowUp = Literal["voice_escalation", "caregiver_escalation"]


@dataclass(frozen=True)
class Transition:
    """One row of the transition table."""

    allowed_from: FrozenSet[OccurrenceStatus]
    to_status: OccurrenceStatus
    follow_up: FollowUp | None = None


@dataclass(frozen=True)
class Decision:
    """What to do for a trigger on an occurrence in a given status."""

    to_status: OccurrenceStatus
    follow_up: FollowUp | None
    follow_up_delay: timedelta | None


TRANSITIONS: Dict[Trigger, Transition] = {
    "send_message": Transition(frozenset({"pending"}), "sent", "voice_escalation"),
    "voice_escalation": Transition(frozenset({"sent"}), "voice_escalated", "caregiver_escalation"),
    "caregiver_escalation": Transition(
        frozenset({"sent", "voice_escalated"}), "caregiver_escalated"
    ),
    "confirm": Transition(frozenset({"sent", "voice_escalated"}), "confirmed"),
    "skip": Transition(OPEN_STATUSES, "skipped"),
}


def allowed_from(trigger: Trigger) -> FrozenSet[OccurrenceStatus]:
    """Statuses from which a trigger may act."""
    return TRANSITIONS[trigger].allowed_from


def follow_up_delay(
    follow_up: FollowUp,
    delivered: bool,
    delays: EscalationDelays = DEFAULT_ESCALATION_DELAYS,
) -> timedelta:
    """Delay before the next step.

    A failed channel counts as a non-response, so the next step runs at once.
    """
    if not delivered:
        return timedelta(0)
    if follow_up == "voice_escalation":
        return delays.voice
    return delays.caregiver


def decide(
    status: OccurrenceStatus,
    trigger: Trigger,
    delivered: bool = True,
    delays: EscalationDelays = DEFAULT_ESCALATION_DELAYS,
) -> Decision | None:
    """Decide the outcome of a trigger.

    Args:
        status: Current status of the occurrence
        trigger: The step or signal being applied
        delivered: Whether the step's channel delivered (message sent / call placed)
        delays: Escalation delays to use for the follow-up

    Returns:
        The decision, or None if the trigger must be a no-op for this status
    """
    transition = TRANSITIONS[trigger]
    if status not in transition.allowed_from:
        return None

    if transition.follow_up is None:
        return Decision(transition.to_status, None, None)

    return Decision(
        to_status=transition.to_status,
        follow_up=transition.follow_up,
        follow_up_delay=follow_up_delay(transition.follow_up, delivered, delays),
    )
