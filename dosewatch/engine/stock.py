"""Stock ledger: medicine stock depletion on confirmed doses."""

import logging
from datetime import timedelta

from dosewatch.db.models import Medicine, Occurrence
from dosewatch.db.repository import Repository
from dosewatch.engine.task_queue import DelayedTaskQueue, Task, task_id_for

logger = logging.getLogger(__name__)


class StockLedger:
    """Takes a unit out of stock for every confirmed dose."""

    def __init__(self, repo: Repository, queue: DelayedTaskQueue):
        self.repo = repo
        self.queue = queue

    async def record_dose(self, occurrence: Occurrence) -> Medicine | None:
        """Decrement stock for a confirmed occurrence and check the threshold.

        Stock never goes below zero; the low stock condition is evaluated even
        when it was already zero. The notification is a single queued message
        keyed to the occurrence, so replaying a confirmation cannot send it twice.
        """
        medicine = await self.repo.decrement_stock(occurrence.medicine_id)
        if medicine is None:
            logger.error(f"Medicine {occurrence.medicine_id} not found, stock not updated")
            return None

        logger.info(f"Stock updated: {medicine.name} ({medicine.stock_quantity} left)")

        if medicine.is_low:
            task = Task(
                kind="low_stock_alert",
                reminder_id=occurrence.reminder_id,
                user_id=occurrence.user_id,
                medicine_id=medicine.id,  # type: ignore
                scheduled_for=occurrence.scheduled_for,
            )
            await self.queue.enqueue(task_id_for(task), task, timedelta(0))
            logger.warning(
                f"Low stock alert triggered for {medicine.name} "
                f"({medicine.stock_quantity} <= {medicine.low_stock_threshold})"
            )

        return medicine
