"""Outbound message transport."""

import logging
from abc import ABC, abstractmethod

from telegram import Bot
from telegram.error import TelegramError

from dosewatch.bot.keyboards import dose_reply_keyboard
from dosewatch.utils.constants import DEFAULT_SNOOZE_MINUTES

logger = logging.getLogger(__name__)


class Messenger(ABC):
    """Sends a text message to a recipient.

    Failure is reported as ``False``, never raised.
    """

    @abstractmethod
    async def send_message(
        self, recipient: str, text: str, *, occurrence_id: int | None = None
    ) -> bool:
        """Send ``text`` to ``recipient``.

        ``occurrence_id`` lets a channel attach reply buttons for that dose.
        """


class TelegramMessenger(Messenger):
    """Messenger over the Telegram Bot API."""

    def __init__(self, bot: Bot, snooze_minutes: int = DEFAULT_SNOOZE_MINUTES):
        self.bot = bot
        self.snooze_minutes = snooze_minutes

    async def send_message(
        self, recipient: str, text: str, *, occurrence_id: int | None = None
    ) -> bool:
        try:
            await self.bot.send_message(
                chat_id=recipient,
                text=text,
                parse_mode="HTML",
                reply_markup=(
                    dose_reply_keyboard(occurrence_id, self.snooze_minutes) if occurrence_id else None
                ),
            )
            return True
        except TelegramError as e:
            logger.error(f"Failed to send message to {recipient}: {e}")
            return False
