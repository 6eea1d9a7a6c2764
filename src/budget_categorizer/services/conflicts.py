from dataclasses import dataclass

from budget_categorizer.core.pattern_table import AmountValidation
from budget_categorizer.core.settings import EngineThresholds
from budget_categorizer.domain.candidates import AssignmentCandidate
from budget_categorizer.domain.merchant import normalized_specificity
from budget_categorizer.domain.scoring import clamp_confidence
from budget_categorizer.logger import get_logger
from budget_categorizer.models import Resolution, Transaction
from budget_categorizer.stores.base import FeedbackStore

logger = get_logger(__name__)

SPECIFICITY_WEIGHT = 0.6
CONFIDENCE_WEIGHT = 0.4


@dataclass(frozen=True)
class ResolvedAssignment:
    candidate: AssignmentCandidate
    confidence: float
    resolution: Resolution


class ConflictResolver:
    """Pick one winner among competing candidates.

    Rules are tried in order and the first one that reaches its acceptance
    threshold wins. When none does, the strongest candidate is returned with a
    down-weighted confidence and the FALLBACK_SPECIFICITY resolution, which
    callers treat as needing review.
    """

    def __init__(
        self,
        feedback: FeedbackStore,
        thresholds: EngineThresholds,
        amount_validation: AmountValidation | None = None,
    ) -> None:
        self.feedback = feedback
        self.thresholds = thresholds
        self.amount_validation = amount_validation

    def resolve(
        self,
        user_id: str,
        transaction: Transaction,
        candidates: list[AssignmentCandidate],
    ) -> ResolvedAssignment | None:
        if not candidates:
            return None
        if len(candidates) == 1:
            only = candidates[0]
            return ResolvedAssignment(only, clamp_confidence(only.confidence), Resolution.SINGLE_MATCH)

        resolved = (
            self._by_specificity(candidates)
            or self._by_feedback(user_id, candidates)
            or self._by_accuracy(candidates)
            or self._by_amount(transaction, candidates)
            or self._fallback(candidates)
        )
        logger.debug(
            "[CLASSIFY] %s candidates resolved to %s via %s.",
            len(candidates),
            resolved.candidate.category_id,
            resolved.resolution.value,
        )
        return resolved

    def _by_specificity(self, candidates: list[AssignmentCandidate]) -> ResolvedAssignment | None:
        def score(candidate: AssignmentCandidate) -> float:
            return (
                SPECIFICITY_WEIGHT * normalized_specificity(candidate.specificity)
                + CONFIDENCE_WEIGHT * candidate.confidence
            )

        best = max(candidates, key=score)
        weighted = score(best)
        if weighted >= self.thresholds.specificity_accept:
            return ResolvedAssignment(best, clamp_confidence(weighted), Resolution.SPECIFICITY_WEIGHTED)
        return None

    def _by_feedback(self, user_id: str, candidates: list[AssignmentCandidate]) -> ResolvedAssignment | None:
        best: tuple[float, AssignmentCandidate] | None = None
        for candidate in candidates:
            history = self.feedback.for_suggestion(user_id, candidate.category_id)
            if len(history) < self.thresholds.feedback_min_samples:
                continue
            rate = sum(1 for record in history if record.accepted) / len(history)
            if best is None or rate > best[0]:
                best = (rate, candidate)

        if best is None:
            return None
        confidence = best[0] * 0.9 + 0.1
        if confidence >= self.thresholds.feedback_accept:
            return ResolvedAssignment(best[1], clamp_confidence(confidence), Resolution.USER_FEEDBACK_HISTORY)
        return None

    def _by_accuracy(self, candidates: list[AssignmentCandidate]) -> ResolvedAssignment | None:
        seasoned = [c for c in candidates if c.total_matches >= self.thresholds.accuracy_min_matches]
        if not seasoned:
            return None
        best = max(seasoned, key=lambda c: c.accuracy)
        if best.accuracy >= self.thresholds.accuracy_accept:
            confidence = best.accuracy * 0.8 + 0.2
            return ResolvedAssignment(best, clamp_confidence(confidence), Resolution.ACCURACY_HISTORY)
        return None

    def _by_amount(
        self,
        transaction: Transaction,
        candidates: list[AssignmentCandidate],
    ) -> ResolvedAssignment | None:
        rules = self.amount_validation
        if rules is None:
            return None
        amount = transaction.magnitude
        if amount <= rules.small.max_amount:
            preferred, confidence = rules.small.categories, rules.small.confidence
        elif amount >= rules.large.min_amount:
            preferred, confidence = rules.large.categories, rules.large.confidence
        else:
            return None

        for category_id in preferred:
            for candidate in candidates:
                if candidate.category_id == category_id:
                    return ResolvedAssignment(candidate, confidence, Resolution.AMOUNT_VALIDATION)
        return None

    def _fallback(self, candidates: list[AssignmentCandidate]) -> ResolvedAssignment:
        best = max(candidates, key=lambda c: (c.specificity, c.confidence))
        confidence = best.confidence * self.thresholds.fallback_factor
        return ResolvedAssignment(best, clamp_confidence(confidence), Resolution.FALLBACK_SPECIFICITY)
