import asyncio
import threading

from budget_categorizer.logger import get_logger
from budget_categorizer.manager import CategorizerService
from budget_categorizer.models import BulkClassificationResult, ClassificationResult, Transaction

logger = get_logger(__name__)


class ClassificationPipeline:
    """Runs the synchronous engine off the event loop and tracks one bulk job per user."""

    def __init__(self, service: CategorizerService) -> None:
        self.service = service
        self._jobs: dict[str, threading.Event] = {}
        self._jobs_lock = threading.Lock()

    async def classify(self, transaction: Transaction) -> ClassificationResult:
        return await asyncio.to_thread(self.service.classify, transaction)

    def _start_job(self, user_id: str) -> threading.Event:
        with self._jobs_lock:
            event = threading.Event()
            self._jobs[user_id] = event
            return event

    def _finish_job(self, user_id: str, event: threading.Event) -> None:
        with self._jobs_lock:
            if self._jobs.get(user_id) is event:
                del self._jobs[user_id]

    def request_stop(self, user_id: str) -> bool:
        with self._jobs_lock:
            event = self._jobs.get(user_id)
        if event is None:
            return False
        event.set()
        logger.info("[CLASSIFY] Stop requested for user %s.", user_id)
        return True

    async def classify_many(self, user_id: str, transaction_ids: list[str]) -> BulkClassificationResult:
        event = self._start_job(user_id)
        try:
            return await asyncio.to_thread(self.service.classify_by_ids, user_id, transaction_ids, event)
        finally:
            self._finish_job(user_id, event)

    async def auto_assign_period(self, user_id: str, year: int, month: int) -> BulkClassificationResult:
        event = self._start_job(user_id)
        try:
            return await asyncio.to_thread(self.service.auto_assign_period, user_id, year, month, event)
        finally:
            self._finish_job(user_id, event)
