"""Message text formatters."""

from datetime import datetime
from html import escape
from typing import Dict, List

from dosewatch.db.models import Medicine, Occurrence, Patient, Reminder
from dosewatch.utils.constants import DEFAULT_SNOOZE_MINUTES
from dosewatch.utils.time_utils import format_duration, format_weekdays, from_utc

STATUS_EMOJI = {
    "pending": "⏳",
    "sent": "📱",
    "voice_escalated": "📞",
    "caregiver_escalated": "🚨",
    "confirmed": "✅",
    "skipped": "⏭",
}


def _medicine_label(medicine: Medicine) -> str:
    label = f"<b>{escape(medicine.name)}</b>"
    if medicine.dosage:
        label += f" ({escape(medicine.dosage)})"
    return label


def format_dose_reminder(
    patient: Patient, medicine: Medicine, snooze_minutes: int = DEFAULT_SNOOZE_MINUTES
) -> str:
    """Format the first-step reminder sent to the patient."""
    return (
        f"💊 <b>Medicine Reminder</b>\n\n"
        f"Hi {escape(patient.name)}, it's time to take {_medicine_label(medicine)}.\n\n"
        "Reply:\n"
        "1 - Taken ✅\n"
        f"2 - Remind me in {format_duration(snooze_minutes)} ⏰\n"
        "3 - Skip this dose ⏭"
    )


def format_caregiver_alert(
    patient: Patient, medicine: Medicine, scheduled_for: datetime
) -> str:
    """Format the last-step alert sent to caregivers."""
    scheduled_local = from_utc(scheduled_for, patient.timezone)
    return (
        f"🚨 <b>Medicine Alert</b>\n\n"
        f"{escape(patient.name)} has NOT confirmed taking:\n\n"
        f"💊 {_medicine_label(medicine)}\n"
        f"⏰ Scheduled: {scheduled_local.strftime('%I:%M %p')}\n\n"
        "Please check on them!"
    )


def format_low_stock_alert(medicine: Medicine) -> str:
    """Format the one-shot low stock notification."""
    return (
        f"⚠️ <b>Low Stock Alert</b>\n\n"
        f"Your supply of {_medicine_label(medicine)} is running low "
        f"({medicine.stock_quantity} remaining).\n"
        "Please refill your prescription soon to avoid missing doses."
    )


def format_reminder_list(
    reminders: List[Reminder], medicines: Dict[int, Medicine]
) -> str:
    """Format a patient's reminder definitions."""
    if not reminders:
        return "You have no active reminders."

    lines = [f"<b>Your Reminders ({len(reminders)})</b>\n"]
    for reminder in reminders:
        medicine = medicines.get(reminder.medicine_id)
        name = _medicine_label(medicine) if medicine else f"medicine #{reminder.medicine_id}"
        paused = "" if reminder.is_active else " (paused)"
        lines.append(
            f"🔔 {name} (ID: {reminder.id}){paused}\n"
            f"   {reminder.scheduled_time}, {format_weekdays(reminder.days_of_week)}"
        )

    return "\n\n".join(lines)


def format_log_list(
    occurrences: List[Occurrence], medicines: Dict[int, Medicine], patient: Patient
) -> str:
    """Format today's escalation log."""
    if not occurrences:
        return "No reminders logged today."

    lines = ["<b>Today's Doses</b>\n"]
    for occurrence in occurrences:
        medicine = medicines.get(occurrence.medicine_id)
        name = escape(medicine.name) if medicine else f"medicine #{occurrence.medicine_id}"
        local = from_utc(occurrence.scheduled_for, patient.timezone)
        status = occurrence.status.replace("_", " ")
        line = f"{STATUS_EMOJI.get(occurrence.status, '')} {local.strftime('%H:%M')} {name} - {status}"
        if occurrence.confirmation_source:
            line += f" via {occurrence.confirmation_source}"
        lines.append(line)

    return "\n".join(lines)


def format_welcome_message(patient: Patient) -> str:
    """Format the welcome message for /start."""
    return f"""
<b>Welcome, {escape(patient.name)}!</b> 💊

I'll remind you to take your medicine. If you don't answer, I'll call you,
and if you still don't answer, I'll let your caregivers know.

<b>Quick Start:</b>
• /addmed - Add a medicine
• /remind - Schedule a reminder
• /caregiver - Add someone to alert
• /help - Full command list
""".strip()


def format_help_message() -> str:
    """Format the help message."""
    return """
<b>Commands 💊</b>

<b>Setup:</b>
/start &lt;name&gt; &lt;phone&gt; - Register
/addmed &lt;name&gt; &lt;stock&gt; [threshold] [dosage] - Add a medicine
/remind &lt;medicine_id&gt; &lt;HH:MM&gt; [days] - Schedule: <code>/remind 1 08:30 mon,wed,fri</code>
/caregiver &lt;name&gt; &lt;phone&gt; [chat_id] - Add a caregiver

<b>Reminders:</b>
/reminders - Your reminders
/logs - Today's doses
/pause &lt;id&gt; - Pause a reminder
/resume &lt;id&gt; - Resume a reminder
/test &lt;id&gt; - Fire a reminder in a few seconds

<b>Answering a reminder:</b>
Use the buttons, or reply 1 (taken), 2 (snooze) or 3 (skip).
""".strip()
