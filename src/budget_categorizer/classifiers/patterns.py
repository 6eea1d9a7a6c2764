from budget_categorizer.classifiers.base import CandidateStrategy, ClassificationContext
from budget_categorizer.domain.candidates import AssignmentCandidate
from budget_categorizer.models import CategoryPattern, Strategy
from budget_categorizer.stores.base import PatternStore


class PersonalPatternStrategy(CandidateStrategy):
    strategy = Strategy.PERSONAL_PATTERN
    authoritative = True

    def __init__(self, store: PatternStore) -> None:
        self.store = store

    def propose(self, context: ClassificationContext) -> list[AssignmentCandidate]:
        matches = self.store.find_personal_matches(context.transaction.user_id, context.merchant_text)
        if not matches:
            return []
        # the most confident pattern wins; store order breaks ties
        best = max(matches, key=lambda p: p.confidence)
        others = tuple(dict.fromkeys(m.category_id for m in matches if m.category_id != best.category_id))
        return [
            AssignmentCandidate(
                category_id=best.category_id,
                confidence=best.confidence,
                strategy=self.strategy,
                total_matches=best.usage_count,
                accuracy=best.accuracy,
                pattern=best.pattern,
                pattern_id=best.id,
                alternatives=others,
            )
        ]


class GlobalPatternStrategy(CandidateStrategy):
    strategy = Strategy.GLOBAL_PATTERN

    def __init__(self, store: PatternStore, min_confidence: float) -> None:
        self.store = store
        self.min_confidence = min_confidence

    def propose(self, context: ClassificationContext) -> list[AssignmentCandidate]:
        matches = self.store.find_global_matches(context.merchant_text, self.min_confidence)
        best: dict[str, CategoryPattern] = {}
        for pattern in sorted(matches, key=lambda p: (p.specificity, p.confidence), reverse=True):
            best.setdefault(pattern.category_id, pattern)
        return [
            AssignmentCandidate(
                category_id=pattern.category_id,
                confidence=pattern.confidence,
                strategy=self.strategy,
                specificity=pattern.specificity,
                total_matches=pattern.total_matches,
                accuracy=pattern.accuracy,
                pattern=pattern.pattern,
                pattern_id=pattern.id,
            )
            for pattern in best.values()
        ]
