"""Global error handler for the bot."""

import logging
import traceback

from telegram import Update
from telegram.ext import ContextTypes

from dosewatch.engine.errors import EscalationError

logger = logging.getLogger(__name__)


def user_error_message(error: BaseException | None) -> str:
    """Short explanation of an error for the patient."""
    if isinstance(error, EscalationError):
        return f"❌ {error}\n\nUse /reminders or /logs to check your reminders."

    text = str(error)
    if "Forbidden" in text or "Unauthorized" in text:
        return "❌ I don't have permission to send you messages.\n\nPlease /start the bot first."
    if "Bad Request" in text:
        return "❌ Invalid request.\n\nPlease check your command syntax. Use /help for examples."
    if "Timed out" in text or "Timeout" in text:
        return "⏱️ Request timed out.\n\nPlease try again in a moment."
    if "Network" in text:
        return "🌐 Network error.\n\nPlease check your connection and try again."

    return (
        "😅 Oops! Something went wrong.\n\n"
        "The error has been logged. Please try again or use /help for assistance."
    )


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle errors in the bot."""
    logger.error("Exception while handling an update:", exc_info=context.error)

    if context.error is not None:
        tb_string = "".join(
            traceback.format_exception(None, context.error, context.error.__traceback__)
        )
        logger.debug(f"Traceback:\n{tb_string}")

    # Try to notify the patient
    if isinstance(update, Update) and update.effective_message:
        try:
            await update.effective_message.reply_text(user_error_message(context.error))
        except Exception as e:
            logger.error(f"Failed to send error message to user: {e}")
