from dataclasses import dataclass, field

from budget_categorizer.classifiers.amount import AmountRangeStrategy
from budget_categorizer.classifiers.base import CandidateStrategy, ClassificationContext
from budget_categorizer.classifiers.existing import ExistingCategoryStrategy
from budget_categorizer.classifiers.history import HistoricalStrategy, RecentSimilarityStrategy
from budget_categorizer.classifiers.patterns import GlobalPatternStrategy, PersonalPatternStrategy
from budget_categorizer.core.pattern_table import AmountRange
from budget_categorizer.core.settings import EngineThresholds
from budget_categorizer.domain.candidates import AssignmentCandidate, merge_candidates
from budget_categorizer.domain.merchant import build_merchant_text
from budget_categorizer.logger import get_logger
from budget_categorizer.models import ASSIGNED_STATUSES, Transaction
from budget_categorizer.stores.base import CategoryStore, PatternStore, TransactionStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class CandidateSet:
    merchant_text: str
    candidates: list[AssignmentCandidate] = field(default_factory=list)
    # Every category any strategy proposed, including signals below the floor.
    alternatives: list[str] = field(default_factory=list)


class CandidateGenerator:
    def __init__(
        self,
        patterns: PatternStore,
        transactions: TransactionStore,
        categories: CategoryStore,
        amount_ranges: list[AmountRange],
        thresholds: EngineThresholds,
    ) -> None:
        self.transactions = transactions
        self.categories = categories
        self.thresholds = thresholds
        self.strategies: list[CandidateStrategy] = [
            # 1. Personal patterns (authoritative for their owner)
            PersonalPatternStrategy(patterns),
            ExistingCategoryStrategy(categories, thresholds.existing_category_confidence),
            GlobalPatternStrategy(patterns, thresholds.min_pattern_confidence),
            HistoricalStrategy(
                thresholds.historical_similarity_threshold,
                thresholds.historical_max_confidence,
                thresholds.historical_vote_divisor,
            ),
            AmountRangeStrategy(amount_ranges, thresholds.amount_max_confidence),
            RecentSimilarityStrategy(
                thresholds.recent_similarity_threshold,
                thresholds.recent_max_confidence,
            ),
        ]

    def _load_history(self, transaction: Transaction) -> list[Transaction]:
        return [
            past
            for past in self.transactions.list_for_user(transaction.user_id, statuses=ASSIGNED_STATUSES)
            if past.id != transaction.id and past.category_id is not None
        ]

    def _fits_direction(self, candidate: AssignmentCandidate, transaction: Transaction) -> bool:
        category = self.categories.get(candidate.category_id)
        if category is None or transaction.direction is None:
            return True
        return category.group.accepts(transaction.direction)

    def generate(self, transaction: Transaction) -> CandidateSet:
        merchant_text = build_merchant_text(transaction.merchant_name, transaction.description)
        context = ClassificationContext(
            transaction,
            merchant_text,
            lambda: self._load_history(transaction),
        )

        proposed: list[AssignmentCandidate] = []
        for strategy in self.strategies:
            found = strategy.propose(context)
            logger.debug(
                "[CLASSIFY] %s proposed %s for '%s'.",
                strategy.strategy.value,
                [(c.category_id, round(c.confidence, 3)) for c in found] or "nothing",
                merchant_text[:50],
            )
            if found and strategy.authoritative:
                alternatives = [found[0].category_id, *found[0].alternatives]
                return CandidateSet(merchant_text, found[:1], alternatives)
            proposed.extend(c for c in found if self._fits_direction(c, transaction))

        floor = self.thresholds.min_pattern_confidence
        usable = merge_candidates([c for c in proposed if c.confidence > floor])
        alternatives = list(dict.fromkeys(c.category_id for c in proposed))
        return CandidateSet(merchant_text, usable, alternatives)
