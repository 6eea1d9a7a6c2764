import calendar
import threading
from collections import Counter
from datetime import date

from budget_categorizer.core.pattern_table import PatternTable
from budget_categorizer.core.settings import EngineThresholds
from budget_categorizer.errors import NotFoundError
from budget_categorizer.logger import get_logger
from budget_categorizer.models import (
    AssignmentFeedback,
    AssignmentStatus,
    BulkClassificationResult,
    ClassificationResult,
    PatternImprovementReport,
    Transaction,
    UserMerchantPattern,
)
from budget_categorizer.services.candidates import CandidateGenerator
from budget_categorizer.services.conflicts import ConflictResolver
from budget_categorizer.services.learning import PersonalPatternLearner
from budget_categorizer.stores.base import (
    BudgetNotifier,
    CategoryStore,
    FeedbackStore,
    PatternStore,
    TransactionStore,
)

logger = get_logger(__name__)

NEEDS_REVIEW_BUCKET = "NEEDS_REVIEW"


class CategorizerService:
    def __init__(
        self,
        *,
        patterns: PatternStore,
        transactions: TransactionStore,
        categories: CategoryStore,
        feedback: FeedbackStore,
        budget: BudgetNotifier,
        table: PatternTable,
        thresholds: EngineThresholds,
    ) -> None:
        self.patterns = patterns
        self.transactions = transactions
        self.categories = categories
        self.feedback = feedback
        self.budget = budget
        self.table = table
        self.configure(thresholds)

    def configure(self, thresholds: EngineThresholds) -> None:
        """(Re)build the engine components from a threshold set."""
        self.thresholds = thresholds
        self.generator = CandidateGenerator(
            self.patterns,
            self.transactions,
            self.categories,
            self.table.ranges(),
            thresholds,
        )
        self.resolver = ConflictResolver(self.feedback, thresholds, self.table.amount_validation)
        self.learner = PersonalPatternLearner(self.patterns, self.transactions, thresholds)

    def classify(self, transaction: Transaction) -> ClassificationResult:
        """Suggest a category for the transaction without changing any state."""
        candidate_set = self.generator.generate(transaction)
        resolved = self.resolver.resolve(transaction.user_id, transaction, candidate_set.candidates)

        if resolved is None:
            logger.debug("[CLASSIFY] No usable signal for '%s'.", candidate_set.merchant_text[:50])
            return ClassificationResult(
                transaction_id=transaction.id,
                alternatives=candidate_set.alternatives,
            )

        winner = resolved.candidate
        return ClassificationResult(
            transaction_id=transaction.id,
            category_id=winner.category_id,
            confidence=resolved.confidence,
            strategy=winner.strategy,
            resolution=resolved.resolution,
            pattern=winner.pattern,
            pattern_id=winner.pattern_id,
            alternatives=candidate_set.alternatives,
        )

    def _notify(self, user_id: str, *category_ids: str | None) -> None:
        for category_id in dict.fromkeys(category_ids):
            if category_id is not None:
                self.budget.on_assignment_changed(user_id, category_id)

    def _apply(self, transaction: Transaction, result: ClassificationResult) -> Transaction:
        previous = transaction.category_id
        if result.needs_review:
            updated = transaction.model_copy(
                update={
                    "status": AssignmentStatus.NEEDS_REVIEW,
                    "category_id": None,
                    "confidence": None,
                }
            )
            self.transactions.save(updated)
            self._notify(transaction.user_id, previous)
            return updated

        updated = transaction.model_copy(
            update={
                "status": AssignmentStatus.AUTO_ASSIGNED,
                "category_id": result.category_id,
                "confidence": result.confidence,
            }
        )
        self.transactions.save(updated)
        self._notify(transaction.user_id, previous, result.category_id)
        return updated

    def bulk_classify(
        self,
        user_id: str,
        transactions: list[Transaction],
        stop_event: threading.Event | None = None,
    ) -> BulkClassificationResult:
        """Classify and assign a batch; stops before the next transaction once `stop_event` is set."""
        result = BulkClassificationResult()
        breakdown: Counter[str] = Counter()

        for transaction in transactions:
            if stop_event is not None and stop_event.is_set():
                result.stopped_early = True
                logger.info(
                    "[CLASSIFY] Bulk run for user %s stopped after %s transactions.",
                    user_id,
                    len(result.assigned) + len(result.needs_review),
                )
                break
            if transaction.user_id != user_id:
                logger.warning("[CLASSIFY] Skipping transaction %s owned by another user.", transaction.id)
                continue

            try:
                classification = self.classify(transaction)
            except Exception:
                logger.exception("[CLASSIFY] Classification failed for transaction %s.", transaction.id)
                classification = ClassificationResult(transaction_id=transaction.id)

            self._apply(transaction, classification)
            if classification.needs_review:
                result.needs_review.append(classification)
                breakdown[NEEDS_REVIEW_BUCKET] += 1
            else:
                result.assigned.append(classification)
                breakdown[classification.strategy.value] += 1

        result.strategy_breakdown = dict(breakdown)
        logger.info(
            "[CLASSIFY] User %s: %s assigned, %s need review.",
            user_id,
            len(result.assigned),
            len(result.needs_review),
        )
        return result

    def classify_by_ids(
        self,
        user_id: str,
        transaction_ids: list[str],
        stop_event: threading.Event | None = None,
    ) -> BulkClassificationResult:
        transactions = [self._owned_transaction(user_id, tx_id) for tx_id in transaction_ids]
        return self.bulk_classify(user_id, transactions, stop_event)

    def auto_assign_period(
        self,
        user_id: str,
        year: int,
        month: int,
        stop_event: threading.Event | None = None,
    ) -> BulkClassificationResult:
        start = date(year, month, 1)
        end = date(year, month, calendar.monthrange(year, month)[1])
        pending = self.transactions.list_for_user(
            user_id,
            statuses={AssignmentStatus.UNASSIGNED},
            start=start,
            end=end,
        )
        pending.sort(key=lambda t: t.date)
        logger.info("[CLASSIFY] Auto-assigning %s transactions for %s-%02d.", len(pending), year, month)
        return self.bulk_classify(user_id, pending, stop_event)

    def _owned_transaction(self, user_id: str, transaction_id: str) -> Transaction:
        transaction = self.transactions.get(transaction_id)
        if transaction.user_id != user_id:
            raise NotFoundError("transaction", transaction_id)
        return transaction

    def _require_category(self, category_id: str) -> None:
        if self.categories.get(category_id) is None:
            raise NotFoundError("category", category_id)

    def _accepted_confidence(self, transaction: Transaction, category_id: str) -> float | None:
        if transaction.confidence is not None and transaction.category_id == category_id:
            return transaction.confidence
        # suggestions held for review were never stored; score the accepted one again
        result = self.classify(transaction)
        return result.confidence if result.category_id == category_id else None

    def record_feedback(
        self,
        user_id: str,
        transaction_id: str,
        suggested_category_id: str | None,
        chosen_category_id: str,
        accepted: bool,
        pattern_used: str | None = None,
    ) -> Transaction:
        transaction = self._owned_transaction(user_id, transaction_id)
        self._require_category(chosen_category_id)

        confidence = None
        if accepted and suggested_category_id == chosen_category_id:
            confidence = self._accepted_confidence(transaction, chosen_category_id)

        self.feedback.append(
            AssignmentFeedback(
                user_id=user_id,
                transaction_id=transaction_id,
                suggested_category_id=suggested_category_id,
                chosen_category_id=chosen_category_id,
                accepted=accepted,
                pattern_used=pattern_used,
            )
        )

        if confidence is not None:
            update = {
                "status": AssignmentStatus.AUTO_ASSIGNED,
                "category_id": chosen_category_id,
                "confidence": confidence,
            }
        else:
            update = {
                "status": AssignmentStatus.MANUALLY_ASSIGNED,
                "category_id": chosen_category_id,
                "confidence": None,
            }
        updated = transaction.model_copy(update=update)
        self.transactions.save(updated)
        self._notify(user_id, transaction.category_id, chosen_category_id)

        self.learner.learn_from_feedback(
            user_id,
            transaction,
            suggested_category_id,
            chosen_category_id,
            accepted,
            pattern_used,
        )
        return updated

    def assign_manually(self, user_id: str, transaction_id: str, category_id: str) -> Transaction:
        transaction = self._owned_transaction(user_id, transaction_id)
        self._require_category(category_id)
        updated = transaction.model_copy(
            update={
                "status": AssignmentStatus.MANUALLY_ASSIGNED,
                "category_id": category_id,
                "confidence": None,
            }
        )
        self.transactions.save(updated)
        self._notify(user_id, transaction.category_id, category_id)
        return updated

    def learn_from_manual_assignments(self, user_id: str) -> list[UserMerchantPattern]:
        return self.learner.learn_from_manual_assignments(user_id)

    def improve_existing_patterns(self, user_id: str) -> PatternImprovementReport:
        return self.learner.improve_existing_patterns(user_id)

    def personal_patterns(self, user_id: str) -> list[UserMerchantPattern]:
        patterns = self.patterns.list_personal_patterns(user_id)
        patterns.sort(key=lambda p: (p.usage_count, p.last_used_at), reverse=True)
        return patterns
