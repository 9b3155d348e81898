"""Patient replies: message digits, voice keypresses and reply buttons."""

import logging
from typing import Dict, Literal

from dosewatch.db.models import ConfirmationSource, Occurrence
from dosewatch.engine.errors import NotFoundError
from dosewatch.engine.workflow import EscalationEngine
from dosewatch.utils.constants import DEFAULT_SNOOZE_MINUTES

logger = logging.getLogger(__name__)

ReplyAction = Literal["confirm", "snooze", "skip"]

# The dose reminder message offers: 1 taken, 2 remind me later, 3 skip
MESSAGE_REPLIES: Dict[str, ReplyAction] = {"1": "confirm", "2": "snooze", "3": "skip"}

# The reminder call offers: 1 taken, 2 not taken, 3 call me again later
VOICE_DIGITS: Dict[str, ReplyAction] = {"1": "confirm", "2": "skip", "3": "snooze"}


def parse_message_reply(text: str) -> ReplyAction | None:
    """Map a text reply like "1" to an action, or None if it isn't one."""
    return MESSAGE_REPLIES.get(text.strip())


def parse_voice_digits(digits: str) -> ReplyAction | None:
    """Map a keypress to an action, or None for any other digit."""
    return VOICE_DIGITS.get(digits.strip())


async def apply_reply(
    engine: EscalationEngine,
    occurrence: Occurrence,
    action: ReplyAction,
    source: ConfirmationSource,
    snooze_minutes: int = DEFAULT_SNOOZE_MINUTES,
) -> Occurrence:
    """Apply a patient's answer to the occurrence it refers to.

    Returns the occurrence after the action.
    """
    if action == "confirm":
        return await engine.confirm(
            occurrence.reminder_id, occurrence.user_id, source, occurrence.scheduled_for
        )
    if action == "skip":
        return await engine.skip(
            occurrence.reminder_id,
            occurrence.user_id,
            reason=f"declined via {source}",
            scheduled_for=occurrence.scheduled_for,
        )

    await engine.snooze(occurrence.reminder_id, snooze_minutes)
    return occurrence


async def handle_voice_digits(
    engine: EscalationEngine, occurrence_id: int, digits: str
) -> ReplyAction | None:
    """Apply a keypress from the reminder call to its occurrence.

    Returns the action taken, or None for an unrecognized keypress.

    Raises:
        NotFoundError: If the occurrence does not exist
    """
    action = parse_voice_digits(digits)
    if action is None:
        logger.warning(f"Invalid digit pressed: {digits!r} for occurrence {occurrence_id}")
        return None

    occurrence = await engine.repo.get_occurrence(occurrence_id)
    if occurrence is None:
        raise NotFoundError(f"Occurrence {occurrence_id} not found")

    logger.info(f"Keypress {digits} for occurrence {occurrence_id}: {action}")
    await apply_reply(engine, occurrence, action, "voice", engine.snooze_minutes)
    return action
