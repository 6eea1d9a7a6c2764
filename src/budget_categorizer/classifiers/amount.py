from budget_categorizer.classifiers.base import CandidateStrategy, ClassificationContext
from budget_categorizer.core.pattern_table import AmountRange
from budget_categorizer.domain.candidates import AssignmentCandidate
from budget_categorizer.models import Direction, Strategy


class AmountRangeStrategy(CandidateStrategy):
    strategy = Strategy.AMOUNT

    def __init__(self, ranges: list[AmountRange], max_confidence: float) -> None:
        self.ranges = ranges
        self.max_confidence = max_confidence

    def propose(self, context: ClassificationContext) -> list[AssignmentCandidate]:
        transaction = context.transaction
        if transaction.direction is not Direction.EXPENSE:
            return []
        amount = transaction.magnitude
        candidates: list[AssignmentCandidate] = []
        for amount_range in self.ranges:
            score = amount_range.confidence(amount)
            if score > 0:
                candidates.append(
                    AssignmentCandidate(
                        category_id=amount_range.category_id,
                        confidence=self.max_confidence * score,
                        strategy=self.strategy,
                    )
                )
        candidates.sort(key=lambda c: c.confidence, reverse=True)
        return candidates
