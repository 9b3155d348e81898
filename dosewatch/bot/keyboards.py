"""Inline keyboard builders."""

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from dosewatch.utils.constants import DEFAULT_SNOOZE_MINUTES


def dose_reply_keyboard(
    occurrence_id: int, snooze_minutes: int = DEFAULT_SNOOZE_MINUTES
) -> InlineKeyboardMarkup:
    """Keyboard for dose reminders: Taken, Snooze, Skip."""
    return InlineKeyboardMarkup(
        [
            [
                InlineKeyboardButton("✓ Taken", callback_data=f"taken:{occurrence_id}"),
                InlineKeyboardButton(
                    f"Snooze {snooze_minutes}m",
                    callback_data=f"snooze:{occurrence_id}:{snooze_minutes}",
                ),
            ],
            [
                InlineKeyboardButton("Skip", callback_data=f"skip:{occurrence_id}"),
            ],
        ]
    )
