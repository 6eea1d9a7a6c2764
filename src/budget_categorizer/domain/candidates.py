from dataclasses import dataclass, field

from budget_categorizer.models import Strategy


@dataclass(frozen=True)
class AssignmentCandidate:
    category_id: str
    confidence: float
    strategy: Strategy
    specificity: int = 0
    total_matches: int = 0
    accuracy: float = 0.0
    pattern: str | None = None
    pattern_id: str | None = None
    alternatives: tuple[str, ...] = field(default_factory=tuple)


def merge_candidates(candidates: list[AssignmentCandidate]) -> list[AssignmentCandidate]:
    """Keep the strongest candidate per category, preserving first-seen order."""
    best: dict[str, AssignmentCandidate] = {}
    for candidate in candidates:
        current = best.get(candidate.category_id)
        if current is None or candidate.confidence > current.confidence:
            best[candidate.category_id] = candidate
    return list(best.values())
