from collections import defaultdict

from budget_categorizer.classifiers.base import CandidateStrategy, ClassificationContext
from budget_categorizer.domain.candidates import AssignmentCandidate
from budget_categorizer.domain.similarity import transaction_similarity
from budget_categorizer.models import AssignmentStatus, Strategy


class HistoricalStrategy(CandidateStrategy):
    """Similarity-weighted vote over the user's previously assigned transactions."""

    strategy = Strategy.HISTORICAL

    def __init__(self, similarity_threshold: float, max_confidence: float, vote_divisor: int) -> None:
        self.similarity_threshold = similarity_threshold
        self.max_confidence = max_confidence
        self.vote_divisor = vote_divisor

    def propose(self, context: ClassificationContext) -> list[AssignmentCandidate]:
        votes: dict[str, int] = defaultdict(int)
        for past in context.history:
            if past.category_id is None:
                continue
            similarity = transaction_similarity(context.transaction, past)
            if similarity > self.similarity_threshold:
                votes[past.category_id] += int(similarity * 10)

        if not votes:
            return []
        category_id = max(votes, key=lambda key: votes[key])
        confidence = min(self.max_confidence, votes[category_id] / self.vote_divisor)
        return [AssignmentCandidate(category_id=category_id, confidence=confidence, strategy=self.strategy)]


class RecentSimilarityStrategy(CandidateStrategy):
    """Closest engine-assigned transaction from the same budget month."""

    strategy = Strategy.SIMILARITY

    def __init__(self, similarity_threshold: float, max_confidence: float) -> None:
        self.similarity_threshold = similarity_threshold
        self.max_confidence = max_confidence

    def propose(self, context: ClassificationContext) -> list[AssignmentCandidate]:
        current = context.transaction
        best: dict[str, float] = {}
        for past in context.history:
            if (
                past.status is not AssignmentStatus.AUTO_ASSIGNED
                or past.category_id is None
                or (past.date.year, past.date.month) != (current.date.year, current.date.month)
            ):
                continue
            similarity = transaction_similarity(current, past)
            if similarity > self.similarity_threshold:
                best[past.category_id] = max(similarity, best.get(past.category_id, 0.0))

        if not best:
            return []
        category_id = max(best, key=lambda key: best[key])
        return [
            AssignmentCandidate(
                category_id=category_id,
                confidence=min(self.max_confidence, best[category_id]),
                strategy=self.strategy,
            )
        ]
