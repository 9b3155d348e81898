"""Command handlers."""

import logging
from datetime import timedelta

from telegram import Update
from telegram.ext import ContextTypes

from dosewatch.bot.formatters import (
    format_help_message,
    format_log_list,
    format_reminder_list,
    format_welcome_message,
)
from dosewatch.config import Config
from dosewatch.db.models import Caregiver, Medicine, Patient, Reminder
from dosewatch.db.repository import Repository
from dosewatch.engine.errors import NotFoundError
from dosewatch.engine.replies import apply_reply, parse_message_reply
from dosewatch.engine.scheduler import DailyScheduler
from dosewatch.engine.workflow import EscalationEngine
from dosewatch.utils.constants import DEFAULT_LOW_STOCK_THRESHOLD
from dosewatch.utils.time_utils import format_duration, format_weekdays, parse_weekdays

logger = logging.getLogger(__name__)


async def _get_patient(update: Update, context: ContextTypes.DEFAULT_TYPE) -> Patient | None:
    """Look up the patient behind an update, asking them to register if unknown."""
    if not update.effective_chat or not update.message:
        return None

    repo: Repository = context.bot_data["repo"]
    patient = await repo.get_user_by_chat_id(str(update.effective_chat.id))
    if patient is None:
        await update.message.reply_text("Please register first: /start <name> <phone>")
    return patient


def _parse_id(context: ContextTypes.DEFAULT_TYPE) -> int | None:
    if not context.args or len(context.args) != 1:
        return None
    try:
        return int(context.args[0])
    except ValueError:
        return None


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start <name> <phone> - register the patient."""
    if not update.effective_chat or not update.message:
        return

    repo: Repository = context.bot_data["repo"]
    patient = await repo.get_user_by_chat_id(str(update.effective_chat.id))
    if patient is not None:
        await update.message.reply_html(format_welcome_message(patient))
        return

    if not context.args or len(context.args) < 2:
        await update.message.reply_text("Usage: /start <name> <phone>, e.g. /start Asha +919876543210")
        return

    patient = await repo.create_user(
        Patient(
            name=" ".join(context.args[:-1]),
            phone_number=context.args[-1],
            chat_id=str(update.effective_chat.id),
            timezone=Config.DEFAULT_TIMEZONE,
        )
    )
    logger.info(f"New patient registered: {patient.id}")
    await update.message.reply_html(format_welcome_message(patient))


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help command."""
    if not update.message:
        return

    await update.message.reply_html(format_help_message())


async def addmed_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /addmed <name> <stock> [threshold] [dosage]."""
    patient = await _get_patient(update, context)
    if not patient:
        return

    args = context.args or []
    try:
        name = args[0]
        stock = int(args[1])
        threshold = int(args[2]) if len(args) > 2 else DEFAULT_LOW_STOCK_THRESHOLD
        dosage = " ".join(args[3:]) or None
    except (IndexError, ValueError):
        await update.message.reply_text("Usage: /addmed <name> <stock> [threshold] [dosage]")
        return

    repo: Repository = context.bot_data["repo"]
    medicine = await repo.create_medicine(
        Medicine(
            user_id=patient.id,  # type: ignore
            name=name,
            dosage=dosage,
            stock_quantity=stock,
            low_stock_threshold=threshold,
        )
    )
    await update.message.reply_html(
        f"💊 Added <b>{medicine.name}</b> (ID: {medicine.id}), {medicine.stock_quantity} in stock."
    )


async def remind_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /remind <medicine_id> <HH:MM> [days]."""
    patient = await _get_patient(update, context)
    if not patient:
        return

    args = context.args or []
    if len(args) < 2 or not args[0].isdigit():
        await update.message.reply_text("Usage: /remind <medicine_id> <HH:MM> [days]")
        return

    scheduler: DailyScheduler = context.bot_data["scheduler"]
    try:
        reminder = await scheduler.create_reminder(
            Reminder(
                user_id=patient.id,  # type: ignore
                medicine_id=int(args[0]),
                scheduled_time=args[1],
                days_of_week=parse_weekdays(" ".join(args[2:])),
            )
        )
    except (ValueError, NotFoundError) as e:
        await update.message.reply_text(f"Could not create reminder: {e}")
        return

    await update.message.reply_html(
        f"✓ <b>Reminder created!</b> (ID: {reminder.id})\n"
        f"{reminder.scheduled_time}, {format_weekdays(reminder.days_of_week)}"
    )


async def caregiver_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /caregiver <name> <phone> [chat_id]."""
    patient = await _get_patient(update, context)
    if not patient:
        return

    args = context.args or []
    if len(args) < 2:
        await update.message.reply_text("Usage: /caregiver <name> <phone> [chat_id]")
        return

    repo: Repository = context.bot_data["repo"]
    caregiver = await repo.create_caregiver(
        Caregiver(
            user_id=patient.id,  # type: ignore
            name=args[0],
            phone_number=args[1],
            chat_id=args[2] if len(args) > 2 else None,
        )
    )
    note = "" if caregiver.chat_id else "\n(No chat id: they can't be alerted yet.)"
    await update.message.reply_html(f"👥 Added caregiver <b>{caregiver.name}</b>.{note}")


async def reminders_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /reminders - list reminder definitions."""
    patient = await _get_patient(update, context)
    if not patient:
        return

    repo: Repository = context.bot_data["repo"]
    scheduler: DailyScheduler = context.bot_data["scheduler"]
    reminders = await scheduler.list_reminders(patient.id)  # type: ignore
    medicines = {m.id: m for m in await repo.get_medicines_by_user(patient.id)}  # type: ignore
    await update.message.reply_html(format_reminder_list(reminders, medicines))  # type: ignore


async def logs_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /logs - today's occurrences."""
    patient = await _get_patient(update, context)
    if not patient:
        return

    repo: Repository = context.bot_data["repo"]
    scheduler: DailyScheduler = context.bot_data["scheduler"]
    occurrences = await scheduler.list_logs(patient.id)  # type: ignore
    medicines = {m.id: m for m in await repo.get_medicines_by_user(patient.id)}  # type: ignore
    await update.message.reply_html(format_log_list(occurrences, medicines, patient))  # type: ignore


async def _toggle_reminder(
    update: Update, context: ContextTypes.DEFAULT_TYPE, is_active: bool
) -> None:
    patient = await _get_patient(update, context)
    if not patient:
        return

    command = "resume" if is_active else "pause"
    reminder_id = _parse_id(context)
    if reminder_id is None:
        await update.message.reply_text(f"Usage: /{command} <reminder_id>")
        return

    repo: Repository = context.bot_data["repo"]
    reminder = await repo.get_reminder(reminder_id)
    if not reminder or reminder.user_id != patient.id:
        await update.message.reply_text("Reminder not found.")
        return

    scheduler: DailyScheduler = context.bot_data["scheduler"]
    await scheduler.set_reminder_active(reminder_id, is_active)
    await update.message.reply_text(f"Reminder {reminder_id} {command}d.")


async def pause_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /pause <id>."""
    await _toggle_reminder(update, context, is_active=False)


async def resume_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /resume <id>."""
    await _toggle_reminder(update, context, is_active=True)


async def test_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /test <id> - fire a reminder in a few seconds."""
    patient = await _get_patient(update, context)
    if not patient:
        return

    reminder_id = _parse_id(context)
    if reminder_id is None:
        await update.message.reply_text("Usage: /test <reminder_id>")
        return

    repo: Repository = context.bot_data["repo"]
    reminder = await repo.get_reminder(reminder_id)
    if not reminder or reminder.user_id != patient.id:
        await update.message.reply_text("Reminder not found.")
        return

    scheduler: DailyScheduler = context.bot_data["scheduler"]
    await scheduler.trigger_now(reminder_id, timedelta(seconds=Config.TEST_TRIGGER_SECONDS))
    await update.message.reply_text(
        f"🧪 Reminder {reminder_id} will fire in {Config.TEST_TRIGGER_SECONDS} seconds."
    )


async def schedule_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /schedule - run the daily scheduler now."""
    if not update.message:
        return

    scheduler: DailyScheduler = context.bot_data["scheduler"]
    count = await scheduler.schedule_today()
    await update.message.reply_text(f"📅 {count} new reminders scheduled for today.")


async def handle_plain_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle "1", "2" or "3" replies to the latest reminder."""
    if not update.message or not update.message.text:
        return

    action = parse_message_reply(update.message.text)
    if action is None:
        await update.message.reply_text(
            "I didn't understand that. Reply 1 (taken), 2 (snooze) or 3 (skip), or use /help."
        )
        return

    patient = await _get_patient(update, context)
    if not patient:
        return

    repo: Repository = context.bot_data["repo"]
    occurrence = await repo.get_latest_open_occurrence(patient.id)  # type: ignore
    if occurrence is None:
        await update.message.reply_text("There is no reminder waiting for an answer.")
        return

    engine: EscalationEngine = context.bot_data["engine"]
    result = await apply_reply(
        engine, occurrence, action, "message", snooze_minutes=Config.DEFAULT_SNOOZE_MINUTES
    )

    if action == "confirm":
        await update.message.reply_text("✅ Great! Dose recorded.")
    elif action == "skip":
        await update.message.reply_text("⏭ Dose skipped.")
    else:
        await update.message.reply_text(
            f"⏰ I'll remind you again in {format_duration(Config.DEFAULT_SNOOZE_MINUTES)}."
        )
    logger.info(f"Reply {action} from patient {patient.id}: occurrence {result.id} is {result.status}")
