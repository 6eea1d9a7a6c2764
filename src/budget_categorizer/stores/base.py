from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal

from budget_categorizer.models import (
    AssignmentFeedback,
    AssignmentStatus,
    Category,
    CategoryPattern,
    MappingTemplate,
    Transaction,
    UserMerchantPattern,
)


class PatternStore(ABC):
    @abstractmethod
    def find_global_matches(self, text: str, min_confidence: float) -> list[CategoryPattern]:
        """Global patterns matching `text` with confidence >= `min_confidence`, unordered."""

    @abstractmethod
    def find_personal_matches(self, user_id: str, text: str) -> list[UserMerchantPattern]:
        """The user's patterns contained in `text`, most used and most recent first."""

    @abstractmethod
    def record_global_match(self, pattern_id: str, was_accepted: bool) -> None:
        pass

    @abstractmethod
    def record_personal_usage(self, pattern_id: str, was_successful: bool) -> None:
        pass

    @abstractmethod
    def get_personal_pattern(self, user_id: str, pattern: str, category_id: str) -> UserMerchantPattern | None:
        pass

    @abstractmethod
    def list_personal_patterns(self, user_id: str) -> list[UserMerchantPattern]:
        pass

    @abstractmethod
    def add_personal_pattern(self, pattern: UserMerchantPattern) -> UserMerchantPattern:
        """Insert a pattern, returning the stored one if the (user, pattern, category) triple exists."""

    @abstractmethod
    def scale_personal_confidence(self, pattern_id: str, factor: float) -> None:
        pass

    @abstractmethod
    def delete_personal_pattern(self, pattern_id: str) -> None:
        pass

    @abstractmethod
    def list_global_patterns(self) -> list[CategoryPattern]:
        pass


class TransactionStore(ABC):
    @abstractmethod
    def get(self, transaction_id: str) -> Transaction:
        """Raise NotFoundError when the id is unknown."""

    @abstractmethod
    def list_for_user(
        self,
        user_id: str,
        *,
        statuses: set[AssignmentStatus] | frozenset[AssignmentStatus] | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> list[Transaction]:
        pass

    @abstractmethod
    def save(self, transaction: Transaction) -> Transaction:
        pass

    @abstractmethod
    def exists_duplicate(self, account_id: str, on: date, amount: Decimal, description: str) -> bool:
        pass


class CategoryStore(ABC):
    @abstractmethod
    def get(self, category_id: str) -> Category | None:
        pass

    @abstractmethod
    def resolve(self, key: str) -> str | None:
        """Translate a legacy or display key to a canonical category id."""

    @abstractmethod
    def all(self) -> list[Category]:
        pass


class FeedbackStore(ABC):
    @abstractmethod
    def append(self, feedback: AssignmentFeedback) -> None:
        pass

    @abstractmethod
    def for_suggestion(self, user_id: str, category_id: str) -> list[AssignmentFeedback]:
        """Feedback where `category_id` was the suggestion shown to the user."""


class BudgetNotifier(ABC):
    @abstractmethod
    def on_assignment_changed(self, user_id: str, category_id: str) -> None:
        pass


class MappingTemplateStore(ABC):
    @abstractmethod
    def save(self, template: MappingTemplate) -> None:
        """Store `template`, replacing the user's previous one for the same bank."""

    @abstractmethod
    def get(self, user_id: str, bank_name: str) -> MappingTemplate | None:
        pass

    @abstractmethod
    def list_for_user(self, user_id: str) -> list[MappingTemplate]:
        pass
