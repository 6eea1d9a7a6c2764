from abc import ABC, abstractmethod
from collections.abc import Callable
from functools import cached_property

from budget_categorizer.domain.candidates import AssignmentCandidate
from budget_categorizer.models import Strategy, Transaction


class ClassificationContext:
    """Per-call inputs shared by every strategy; history is only loaded if a strategy asks."""

    def __init__(
        self,
        transaction: Transaction,
        merchant_text: str,
        load_history: Callable[[], list[Transaction]],
    ) -> None:
        self.transaction = transaction
        self.merchant_text = merchant_text
        self._load_history = load_history

    @cached_property
    def history(self) -> list[Transaction]:
        return self._load_history()


class CandidateStrategy(ABC):
    strategy: Strategy
    # An authoritative strategy that yields candidates ends generation.
    authoritative: bool = False

    @abstractmethod
    def propose(self, context: ClassificationContext) -> list[AssignmentCandidate]:
        """Return zero or more scored candidates for the context's transaction."""
        pass
