from collections import Counter

from budget_categorizer.core.settings import EngineThresholds
from budget_categorizer.domain.merchant import UNKNOWN_MERCHANT, build_merchant_text, merchant_key_for
from budget_categorizer.domain.scoring import frequency_confidence
from budget_categorizer.logger import get_logger
from budget_categorizer.models import (
    AssignmentStatus,
    PatternImprovementReport,
    PatternSource,
    Transaction,
    UserMerchantPattern,
)
from budget_categorizer.stores.base import PatternStore, TransactionStore

logger = get_logger(__name__)

PRUNE_MIN_USAGE = 5
PRUNE_ACCURACY = 0.3
DECAY_ACCURACY = 0.6
DECAY_FACTOR = 0.8


class PersonalPatternLearner:
    def __init__(
        self,
        patterns: PatternStore,
        transactions: TransactionStore,
        thresholds: EngineThresholds,
    ) -> None:
        self.patterns = patterns
        self.transactions = transactions
        self.thresholds = thresholds

    def learn_from_feedback(
        self,
        user_id: str,
        transaction: Transaction,
        suggested_category_id: str | None,
        chosen_category_id: str,
        accepted: bool,
        pattern_used: str | None = None,
    ) -> UserMerchantPattern | None:
        """Reinforce the pattern behind a confirmed suggestion, or learn the user's correction.

        Returns the personal pattern that was reinforced or created, if any.
        """
        merchant_text = build_merchant_text(transaction.merchant_name, transaction.description)
        personal_ids = {p.id for p in self.patterns.list_personal_patterns(user_id)}
        confirmed = accepted and suggested_category_id == chosen_category_id

        if pattern_used and pattern_used not in personal_ids:
            self.patterns.record_global_match(pattern_used, confirmed)

        matches = self.patterns.find_personal_matches(user_id, merchant_text)
        if confirmed:
            match = next((p for p in matches if p.category_id == chosen_category_id), None)
            if match is None:
                return None
            self.patterns.record_personal_usage(match.id, True)
            logger.info("[LEARN] Reinforced personal pattern '%s' for user %s.", match.pattern, user_id)
            return match

        for wrong in matches:
            if wrong.category_id == suggested_category_id:
                self.patterns.record_personal_usage(wrong.id, False)

        key = merchant_key_for(transaction.merchant_name, transaction.description)
        if key == UNKNOWN_MERCHANT:
            logger.debug("[LEARN] No merchant key for transaction %s; nothing learned.", transaction.id)
            return None

        existing = self.patterns.get_personal_pattern(user_id, key, chosen_category_id)
        if existing is not None:
            self.patterns.record_personal_usage(existing.id, True)
            return existing

        return self.patterns.add_personal_pattern(
            UserMerchantPattern(
                user_id=user_id,
                pattern=key,
                category_id=chosen_category_id,
                source=PatternSource.CONFIRMED,
            )
        )

    def learn_from_manual_assignments(self, user_id: str) -> list[UserMerchantPattern]:
        manual = [
            t
            for t in self.transactions.list_for_user(user_id, statuses={AssignmentStatus.MANUALLY_ASSIGNED})
            if t.confidence is None and t.category_id is not None
        ]
        manual.sort(key=lambda t: t.date, reverse=True)
        manual = manual[: self.thresholds.manual_learning_limit]

        groups: Counter[tuple[str, str]] = Counter()
        for transaction in manual:
            key = merchant_key_for(transaction.merchant_name, transaction.description)
            if key != UNKNOWN_MERCHANT and transaction.category_id is not None:
                groups[(key, transaction.category_id)] += 1

        created: list[UserMerchantPattern] = []
        for (key, category_id), count in groups.items():
            if count < self.thresholds.manual_learning_min_occurrences:
                continue
            if self.patterns.get_personal_pattern(user_id, key, category_id) is not None:
                continue
            created.append(
                self.patterns.add_personal_pattern(
                    UserMerchantPattern(
                        user_id=user_id,
                        pattern=key,
                        category_id=category_id,
                        source=PatternSource.LEARNED,
                        usage_count=count,
                        success_count=count,
                        confidence=frequency_confidence(count),
                    )
                )
            )

        logger.info(
            "[LEARN] User %s: %s manual assignments scanned, %s patterns learned.",
            user_id,
            len(manual),
            len(created),
        )
        return created

    def improve_existing_patterns(self, user_id: str) -> PatternImprovementReport:
        report = PatternImprovementReport()
        for pattern in self.patterns.list_personal_patterns(user_id):
            accuracy = pattern.accuracy
            if pattern.usage_count > PRUNE_MIN_USAGE and accuracy < PRUNE_ACCURACY:
                self.patterns.delete_personal_pattern(pattern.id)
                report.removed += 1
            elif accuracy < DECAY_ACCURACY:
                self.patterns.scale_personal_confidence(pattern.id, DECAY_FACTOR)
                report.improved += 1

        if report.removed or report.improved:
            logger.info(
                "[LEARN] User %s: %s patterns weakened, %s removed.",
                user_id,
                report.improved,
                report.removed,
            )
        return report
