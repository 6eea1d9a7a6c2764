from budget_categorizer.classifiers.base import CandidateStrategy, ClassificationContext
from budget_categorizer.domain.candidates import AssignmentCandidate
from budget_categorizer.logger import get_logger
from budget_categorizer.models import Strategy
from budget_categorizer.stores.base import CategoryStore

logger = get_logger(__name__)


class ExistingCategoryStrategy(CandidateStrategy):
    """Translate a coarse label carried by the transaction into a canonical category."""

    strategy = Strategy.EXISTING_CATEGORY

    def __init__(self, categories: CategoryStore, confidence: float = 0.95) -> None:
        self.categories = categories
        self.confidence = confidence

    def propose(self, context: ClassificationContext) -> list[AssignmentCandidate]:
        label = context.transaction.source_category
        if not label:
            return []
        category_id = self.categories.resolve(label)
        if category_id is None:
            logger.debug("[CLASSIFY] No mapping for source category '%s'.", label)
            return []
        return [AssignmentCandidate(category_id=category_id, confidence=self.confidence, strategy=self.strategy)]
