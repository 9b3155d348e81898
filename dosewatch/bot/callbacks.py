"""Callback query handlers for the dose reply buttons."""

import logging

from telegram import Update
from telegram.ext import ContextTypes

from dosewatch.db.repository import Repository
from dosewatch.engine.errors import NotFoundError
from dosewatch.engine.replies import ReplyAction, apply_reply
from dosewatch.engine.workflow import EscalationEngine
from dosewatch.utils.constants import DEFAULT_SNOOZE_MINUTES
from dosewatch.utils.time_utils import format_duration

logger = logging.getLogger(__name__)


async def handle_dose_callback(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    occurrence_id: int,
    action: ReplyAction,
    snooze_minutes: int = DEFAULT_SNOOZE_MINUTES,
) -> None:
    """Handle a Taken / Snooze / Skip button press."""
    if not update.effective_chat or not update.callback_query:
        return

    query = update.callback_query
    repo: Repository = context.bot_data["repo"]
    patient = await repo.get_user_by_chat_id(str(update.effective_chat.id))
    occurrence = await repo.get_occurrence(occurrence_id)

    if not patient or not occurrence or occurrence.user_id != patient.id:
        await query.answer("Reminder not found.")
        return

    engine: EscalationEngine = context.bot_data["engine"]
    try:
        result = await apply_reply(engine, occurrence, action, "message", snooze_minutes)
    except NotFoundError:
        await query.answer("This reminder is already closed.")
        return

    if action == "snooze":
        text = f"⏰ Snoozed. I'll remind you again in {format_duration(snooze_minutes)}."
    elif result.status == "confirmed":
        text = "✅ <b>Taken.</b> Dose recorded."
    elif result.status == "skipped":
        text = "⏭ <b>Skipped.</b>"
    else:
        text = f"This reminder is already {result.status.replace('_', ' ')}."

    if query.message:
        await query.message.edit_text(text, parse_mode="HTML")
    await query.answer()


async def callback_router(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Route callback queries to appropriate handlers."""
    if not update.callback_query:
        return

    query = update.callback_query
    data = query.data

    if not data:
        return

    # Parse callback data
    parts = data.split(":")

    try:
        if parts[0] == "taken":
            await handle_dose_callback(update, context, int(parts[1]), "confirm")

        elif parts[0] == "skip":
            await handle_dose_callback(update, context, int(parts[1]), "skip")

        elif parts[0] == "snooze":
            await handle_dose_callback(update, context, int(parts[1]), "snooze", int(parts[2]))

        else:
            await query.answer("Unknown action")

    except (IndexError, ValueError):
        logger.warning(f"Malformed callback data: {data}")
        await query.answer("Unknown action")
