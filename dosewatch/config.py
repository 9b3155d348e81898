"""Configuration management from environment variables."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


class Config:
    """Application configuration loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")

    # Database
    DATABASE_PATH: Path = Path(os.getenv("DATABASE_PATH", "./data/dosewatch.db"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Scheduling
    DEFAULT_TIMEZONE: str = os.getenv("DEFAULT_TIMEZONE", "Asia/Kolkata")
    DAILY_SCHEDULE_TIME: str = os.getenv("DAILY_SCHEDULE_TIME", "00:01")
    TEST_TRIGGER_SECONDS: int = int(os.getenv("TEST_TRIGGER_SECONDS", "5"))

    # Escalation
    VOICE_ESCALATION_MINUTES: int = int(os.getenv("VOICE_ESCALATION_MINUTES", "15"))
    CAREGIVER_ESCALATION_MINUTES: int = int(os.getenv("CAREGIVER_ESCALATION_MINUTES", "15"))
    DEFAULT_SNOOZE_MINUTES: int = int(os.getenv("DEFAULT_SNOOZE_MINUTES", "15"))

    # Voice (Twilio)
    TWILIO_ACCOUNT_SID: str = os.getenv("TWILIO_ACCOUNT_SID", "")
    TWILIO_AUTH_TOKEN: str = os.getenv("TWILIO_AUTH_TOKEN", "")
    TWILIO_PHONE_NUMBER: str = os.getenv("TWILIO_PHONE_NUMBER", "")
    VOICE_GATHER_URL: str = os.getenv("VOICE_GATHER_URL", "")  # receives keypresses

    @classmethod
    def voice_enabled(cls) -> bool:
        """Whether Twilio credentials are configured."""
        return bool(cls.TWILIO_ACCOUNT_SID and cls.TWILIO_AUTH_TOKEN and cls.TWILIO_PHONE_NUMBER)

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration."""
        if not cls.TELEGRAM_BOT_TOKEN:
            raise ValueError("TELEGRAM_BOT_TOKEN environment variable is required")

        if cls.VOICE_ESCALATION_MINUTES < 0 or cls.CAREGIVER_ESCALATION_MINUTES < 0:
            raise ValueError("Escalation delays must not be negative")

        # Ensure database directory exists
        cls.DATABASE_PATH.parent.mkdir(parents=True, exist_ok=True)
