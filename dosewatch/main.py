"""Main entry point for the DoseWatch bot."""

import logging
import sys
from zoneinfo import ZoneInfo

from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from dosewatch.bot.callbacks import callback_router
from dosewatch.bot.handlers import (
    addmed_command,
    caregiver_command,
    handle_plain_text,
    help_command,
    logs_command,
    pause_command,
    remind_command,
    reminders_command,
    resume_command,
    schedule_command,
    start_command,
    test_command,
)
from dosewatch.config import Config
from dosewatch.db.migrations import run_migrations
from dosewatch.db.repository import Repository
from dosewatch.engine.scheduler import DailyScheduler
from dosewatch.engine.stock import StockLedger
from dosewatch.engine.task_queue import JobQueueTaskQueue
from dosewatch.engine.workflow import EscalationEngine
from dosewatch.transport.messenger import TelegramMessenger
from dosewatch.transport.voice import TwilioVoiceCaller, VoiceCaller
from dosewatch.utils.constants import EscalationDelays
from dosewatch.utils.error_handler import error_handler
from dosewatch.utils.time_utils import parse_time_of_day

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, Config.LOG_LEVEL),
    stream=sys.stdout,
)

logger = logging.getLogger(__name__)


async def daily_schedule_job(context: "ContextTypes.DEFAULT_TYPE") -> None:
    """Job callback for the daily scheduler run."""
    scheduler: DailyScheduler = context.bot_data["scheduler"]
    await scheduler.schedule_today()


def build_caller() -> VoiceCaller | None:
    """Twilio caller if credentials are configured."""
    if not Config.voice_enabled():
        logger.warning("Twilio is not configured: voice steps will escalate straight to caregivers")
        return None

    return TwilioVoiceCaller(
        Config.TWILIO_ACCOUNT_SID,
        Config.TWILIO_AUTH_TOKEN,
        Config.TWILIO_PHONE_NUMBER,
        gather_url=Config.VOICE_GATHER_URL or None,
    )


async def post_init(application: Application) -> None:
    """Initialize bot resources after application is created."""
    job_queue = application.job_queue
    if job_queue is None:
        raise RuntimeError("python-telegram-bot must be installed with the job-queue extra")

    # Initialize database
    await run_migrations(Config.DATABASE_PATH)

    repo = Repository(Config.DATABASE_PATH)
    await repo.connect()

    queue = JobQueueTaskQueue(job_queue)
    engine = EscalationEngine(
        repo,
        queue,
        TelegramMessenger(application.bot, Config.DEFAULT_SNOOZE_MINUTES),
        build_caller(),
        StockLedger(repo, queue),
        delays=EscalationDelays.from_minutes(
            Config.VOICE_ESCALATION_MINUTES, Config.CAREGIVER_ESCALATION_MINUTES
        ),
        snooze_minutes=Config.DEFAULT_SNOOZE_MINUTES,
    )
    queue.bind(engine.handle_task)
    scheduler = DailyScheduler(repo, queue)

    application.bot_data["repo"] = repo
    application.bot_data["engine"] = engine
    application.bot_data["scheduler"] = scheduler

    # Catch up on anything still due today
    await scheduler.schedule_today()

    run_at = parse_time_of_day(Config.DAILY_SCHEDULE_TIME).replace(
        tzinfo=ZoneInfo(Config.DEFAULT_TIMEZONE)
    )
    job_queue.run_daily(daily_schedule_job, time=run_at, name="daily-schedule")
    logger.info(f"Daily scheduler job set for {Config.DAILY_SCHEDULE_TIME} {Config.DEFAULT_TIMEZONE}")

    logger.info("DoseWatch initialized successfully")


async def post_shutdown(application: Application) -> None:
    """Cleanup resources on shutdown."""
    repo: Repository = application.bot_data.get("repo")
    if repo:
        await repo.close()

    logger.info("DoseWatch shut down")


def main() -> None:
    """Start the bot."""
    # Validate configuration
    try:
        Config.validate()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    # Create application
    application = (
        Application.builder()
        .token(Config.TELEGRAM_BOT_TOKEN)
        .post_init(post_init)
        .post_shutdown(post_shutdown)
        .build()
    )

    # Register handlers

    # Setup commands
    application.add_handler(CommandHandler("start", start_command))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("addmed", addmed_command))
    application.add_handler(CommandHandler("remind", remind_command))
    application.add_handler(CommandHandler("caregiver", caregiver_command))

    # Reminder commands
    application.add_handler(CommandHandler("reminders", reminders_command))
    application.add_handler(CommandHandler("logs", logs_command))
    application.add_handler(CommandHandler("pause", pause_command))
    application.add_handler(CommandHandler("resume", resume_command))
    application.add_handler(CommandHandler("test", test_command))
    application.add_handler(CommandHandler("schedule", schedule_command))

    # Callback queries (buttons)
    application.add_handler(CallbackQueryHandler(callback_router))

    # Plain text handler (must be last)
    application.add_handler(
        MessageHandler(filters.TEXT & ~filters.COMMAND, handle_plain_text)
    )

    # Error handler
    application.add_error_handler(error_handler)

    # Start the bot
    logger.info("Starting DoseWatch bot...")
    application.run_polling(allowed_updates=["message", "callback_query"])


if __name__ == "__main__":
    main()
