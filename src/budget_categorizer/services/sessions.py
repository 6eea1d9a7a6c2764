import threading
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from time import monotonic
from uuid import uuid4

from budget_categorizer.domain.csv_parsing import ParsedRow, RowMapping
from budget_categorizer.logger import get_logger
from budget_categorizer.models import MappingTemplate

logger = get_logger(__name__)


@dataclass(frozen=True)
class ImportSession:
    """One uploaded CSV awaiting mapping and approval. Never mutated; steps store a replacement."""

    user_id: str
    headers: tuple[str, ...]
    rows: tuple[tuple[str, ...], ...]
    separator: str
    id: str = field(default_factory=lambda: uuid4().hex)
    account_id: str | None = None
    mapping: RowMapping | None = None
    parsed_rows: tuple[ParsedRow, ...] = ()
    template: MappingTemplate | None = None


class ImportSessionStore:
    def __init__(
        self,
        ttl_seconds: float,
        max_sessions: int,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_sessions = max_sessions
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: OrderedDict[str, tuple[float, ImportSession]] = OrderedDict()

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("[CSV] Expired %s import sessions.", len(expired))

    def put(self, session: ImportSession) -> ImportSession:
        now = self._clock()
        with self._lock:
            self._purge_expired(now)
            self._entries[session.id] = (now + self.ttl_seconds, session)
            self._entries.move_to_end(session.id)
            while len(self._entries) > self.max_sessions:
                evicted, _ = self._entries.popitem(last=False)
                logger.info("[CSV] Session limit reached; evicted %s.", evicted)
        return session

    def get(self, session_id: str) -> ImportSession | None:
        now = self._clock()
        with self._lock:
            self._purge_expired(now)
            entry = self._entries.get(session_id)
        return entry[1] if entry else None

    def pop(self, session_id: str) -> ImportSession | None:
        with self._lock:
            entry = self._entries.pop(session_id, None)
        return entry[1] if entry else None

    def configure(self, ttl_seconds: float, max_sessions: int) -> None:
        with self._lock:
            self.ttl_seconds = ttl_seconds
            self.max_sessions = max_sessions

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired(self._clock())
            return len(self._entries)
