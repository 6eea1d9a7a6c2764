import json
import os
import re
import threading

from budget_categorizer.domain.scoring import (
    clamp_confidence,
    pattern_accuracy_confidence,
    penalized_confidence,
    reinforced_confidence,
)
from budget_categorizer.logger import get_logger
from budget_categorizer.models import CategoryPattern, UserMerchantPattern, utcnow
from budget_categorizer.stores.base import PatternStore

logger = get_logger(__name__)

# Table confidence stands until a pattern has this many recorded matches.
MIN_MATCHES_FOR_CONFIDENCE = 5


class InMemoryPatternStore(PatternStore):
    """Pattern store kept in memory, optionally persisted to a JSON file.

    Global patterns come from the pattern table; only their match statistics are
    persisted. Every mutation of a single pattern runs under that pattern's lock so
    concurrent batch workers cannot lose counter updates.
    """

    def __init__(self, global_patterns: list[CategoryPattern], data_path: str | None = None) -> None:
        self.data_path = data_path
        self._global: dict[str, CategoryPattern] = {}
        self._regexes: dict[str, re.Pattern[str]] = {}
        self._personal: dict[str, UserMerchantPattern] = {}
        self._index_lock = threading.RLock()
        self._pattern_locks: dict[str, threading.Lock] = {}
        self._save_lock = threading.Lock()

        for pattern in global_patterns:
            if pattern.id in self._global:
                logger.warning("[PATTERNS] Duplicate global pattern %s ignored.", pattern.id)
                continue
            self._global[pattern.id] = pattern
            if pattern.is_regex:
                self._regexes[pattern.id] = re.compile(pattern.pattern, re.IGNORECASE)

        self.load()

    def load(self) -> None:
        if not self.data_path or not os.path.exists(self.data_path):
            return
        try:
            with open(self.data_path, encoding="utf-8") as f:
                payload = json.load(f)
        except json.JSONDecodeError:
            logger.warning("[PATTERNS] %s is not valid JSON; starting without personal patterns.", self.data_path)
            return

        for raw in payload.get("personal", []):
            pattern = UserMerchantPattern.model_validate(raw)
            self._personal[pattern.id] = pattern

        for pattern_id, stats in payload.get("global_stats", {}).items():
            current = self._global.get(pattern_id)
            if current is None:
                continue
            self._global[pattern_id] = current.model_copy(update=stats)
        logger.info("[PATTERNS] Loaded %s personal patterns from %s.", len(self._personal), self.data_path)

    def save(self) -> None:
        if not self.data_path:
            return
        with self._index_lock:
            payload = {
                "personal": [p.model_dump(mode="json") for p in self._personal.values()],
                "global_stats": {
                    pattern_id: {
                        "total_matches": p.total_matches,
                        "accepted_matches": p.accepted_matches,
                        "confidence": p.confidence,
                    }
                    for pattern_id, p in self._global.items()
                    if p.total_matches
                },
            }
        with self._save_lock:
            tmp_path = f"{self.data_path}.tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, self.data_path)

    def _lock_for(self, pattern_id: str) -> threading.Lock:
        with self._index_lock:
            return self._pattern_locks.setdefault(pattern_id, threading.Lock())

    def _matches_global(self, pattern: CategoryPattern, text: str) -> bool:
        regex = self._regexes.get(pattern.id)
        if regex is not None:
            return regex.search(text) is not None
        return pattern.pattern.lower() in text.lower()

    def find_global_matches(self, text: str, min_confidence: float) -> list[CategoryPattern]:
        if not text:
            return []
        with self._index_lock:
            patterns = list(self._global.values())
        return [
            p.model_copy()
            for p in patterns
            if p.confidence >= min_confidence and self._matches_global(p, text)
        ]

    def find_personal_matches(self, user_id: str, text: str) -> list[UserMerchantPattern]:
        if not text:
            return []
        upper = text.upper()
        with self._index_lock:
            candidates = [p for p in self._personal.values() if p.user_id == user_id]
        matches = [p.model_copy() for p in candidates if p.pattern and p.pattern in upper]
        matches.sort(key=lambda p: (p.usage_count, p.last_used_at), reverse=True)
        return matches

    def record_global_match(self, pattern_id: str, was_accepted: bool) -> None:
        with self._lock_for(pattern_id):
            current = self._global.get(pattern_id)
            if current is None:
                logger.warning("[PATTERNS] record_global_match: unknown pattern %s.", pattern_id)
                return
            total = current.total_matches + 1
            accepted = current.accepted_matches + (1 if was_accepted else 0)
            update: dict[str, int | float] = {"total_matches": total, "accepted_matches": accepted}
            if total >= MIN_MATCHES_FOR_CONFIDENCE:
                update["confidence"] = pattern_accuracy_confidence(accepted, total)
            self._global[pattern_id] = current.model_copy(update=update)
        self.save()

    def record_personal_usage(self, pattern_id: str, was_successful: bool) -> None:
        with self._lock_for(pattern_id):
            current = self._personal.get(pattern_id)
            if current is None:
                logger.warning("[PATTERNS] record_personal_usage: unknown pattern %s.", pattern_id)
                return
            usage = current.usage_count + 1
            confidence = current.confidence
            successes = current.success_count + (1 if was_successful else 0)
            if was_successful:
                confidence = reinforced_confidence(confidence, usage)
            else:
                confidence = penalized_confidence(confidence, successes, usage)
            self._personal[pattern_id] = current.model_copy(
                update={
                    "usage_count": usage,
                    "success_count": successes,
                    "confidence": confidence,
                    "last_used_at": utcnow(),
                }
            )
        self.save()

    def get_personal_pattern(self, user_id: str, pattern: str, category_id: str) -> UserMerchantPattern | None:
        normalized = pattern.strip().upper()
        with self._index_lock:
            for existing in self._personal.values():
                if (
                    existing.user_id == user_id
                    and existing.pattern == normalized
                    and existing.category_id == category_id
                ):
                    return existing.model_copy()
        return None

    def list_personal_patterns(self, user_id: str) -> list[UserMerchantPattern]:
        with self._index_lock:
            return [p.model_copy() for p in self._personal.values() if p.user_id == user_id]

    def add_personal_pattern(self, pattern: UserMerchantPattern) -> UserMerchantPattern:
        with self._index_lock:
            existing = self.get_personal_pattern(pattern.user_id, pattern.pattern, pattern.category_id)
            if existing is not None:
                return existing
            self._personal[pattern.id] = pattern.model_copy()
        logger.info(
            "[PATTERNS] New %s personal pattern '%s' -> %s for user %s.",
            pattern.source.value,
            pattern.pattern,
            pattern.category_id,
            pattern.user_id,
        )
        self.save()
        return pattern.model_copy()

    def scale_personal_confidence(self, pattern_id: str, factor: float) -> None:
        with self._lock_for(pattern_id):
            current = self._personal.get(pattern_id)
            if current is None:
                logger.warning("[PATTERNS] scale_personal_confidence: unknown pattern %s.", pattern_id)
                return
            self._personal[pattern_id] = current.model_copy(
                update={"confidence": clamp_confidence(current.confidence * factor)}
            )
        self.save()

    def delete_personal_pattern(self, pattern_id: str) -> None:
        with self._index_lock:
            removed = self._personal.pop(pattern_id, None)
            self._pattern_locks.pop(pattern_id, None)
        if removed is None:
            logger.warning("[PATTERNS] delete_personal_pattern: unknown pattern %s.", pattern_id)
            return
        self.save()

    def list_global_patterns(self) -> list[CategoryPattern]:
        with self._index_lock:
            return [p.model_copy() for p in self._global.values()]
