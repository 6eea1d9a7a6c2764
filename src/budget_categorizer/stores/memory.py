import threading
from collections import defaultdict
from datetime import date
from decimal import Decimal

from budget_categorizer.errors import NotFoundError
from budget_categorizer.logger import get_logger
from budget_categorizer.models import (
    AssignmentFeedback,
    AssignmentStatus,
    Category,
    MappingTemplate,
    Transaction,
)
from budget_categorizer.stores.base import (
    BudgetNotifier,
    CategoryStore,
    FeedbackStore,
    MappingTemplateStore,
    TransactionStore,
)

logger = get_logger(__name__)


class InMemoryTransactionStore(TransactionStore):
    def __init__(self, transactions: list[Transaction] | None = None) -> None:
        self._lock = threading.Lock()
        self._transactions: dict[str, Transaction] = {}
        for transaction in transactions or []:
            self._transactions[transaction.id] = transaction

    def get(self, transaction_id: str) -> Transaction:
        with self._lock:
            transaction = self._transactions.get(transaction_id)
        if transaction is None:
            raise NotFoundError("transaction", transaction_id)
        return transaction.model_copy()

    def list_for_user(
        self,
        user_id: str,
        *,
        statuses: set[AssignmentStatus] | frozenset[AssignmentStatus] | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> list[Transaction]:
        with self._lock:
            transactions = list(self._transactions.values())
        return [
            t.model_copy()
            for t in transactions
            if t.user_id == user_id
            and (statuses is None or t.status in statuses)
            and (start is None or t.date >= start)
            and (end is None or t.date <= end)
        ]

    def save(self, transaction: Transaction) -> Transaction:
        with self._lock:
            self._transactions[transaction.id] = transaction.model_copy()
        return transaction

    def exists_duplicate(self, account_id: str, on: date, amount: Decimal, description: str) -> bool:
        with self._lock:
            transactions = list(self._transactions.values())
        return any(
            t.account_id == account_id
            and t.date == on
            and t.magnitude == abs(amount)
            and t.description == description
            for t in transactions
        )


class InMemoryCategoryStore(CategoryStore):
    def __init__(self, categories: list[Category], aliases: dict[str, str] | None = None) -> None:
        self._categories = {category.id: category for category in categories}
        # Legacy keys are matched case-insensitively.
        self._aliases = {key.strip().lower(): value for key, value in (aliases or {}).items()}

    def get(self, category_id: str) -> Category | None:
        return self._categories.get(category_id)

    def resolve(self, key: str) -> str | None:
        cleaned = key.strip()
        if not cleaned:
            return None
        if cleaned in self._categories:
            return cleaned
        return self._aliases.get(cleaned.lower())

    def all(self) -> list[Category]:
        return list(self._categories.values())


class InMemoryFeedbackStore(FeedbackStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_suggestion: dict[tuple[str, str], list[AssignmentFeedback]] = defaultdict(list)
        self._count = 0

    def append(self, feedback: AssignmentFeedback) -> None:
        with self._lock:
            self._count += 1
            if feedback.suggested_category_id is not None:
                key = (feedback.user_id, feedback.suggested_category_id)
                self._by_suggestion[key].append(feedback)

    def for_suggestion(self, user_id: str, category_id: str) -> list[AssignmentFeedback]:
        with self._lock:
            return list(self._by_suggestion.get((user_id, category_id), []))

    def __len__(self) -> int:
        return self._count


class InMemoryMappingTemplateStore(MappingTemplateStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._templates: dict[tuple[str, str], MappingTemplate] = {}

    @staticmethod
    def _key(user_id: str, bank_name: str) -> tuple[str, str]:
        return user_id, bank_name.strip().casefold()

    def save(self, template: MappingTemplate) -> None:
        with self._lock:
            self._templates[self._key(template.user_id, template.bank_name)] = template

    def get(self, user_id: str, bank_name: str) -> MappingTemplate | None:
        with self._lock:
            return self._templates.get(self._key(user_id, bank_name))

    def list_for_user(self, user_id: str) -> list[MappingTemplate]:
        with self._lock:
            templates = [t for (owner, _), t in self._templates.items() if owner == user_id]
        return sorted(templates, key=lambda t: t.bank_name.casefold())


class LoggingBudgetNotifier(BudgetNotifier):
    """Stand-in for the budget aggregate: records which categories need recomputing."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.changes: list[tuple[str, str]] = []

    def on_assignment_changed(self, user_id: str, category_id: str) -> None:
        with self._lock:
            self.changes.append((user_id, category_id))
        logger.debug("[BUDGET] Spent totals invalidated for user %s, category %s.", user_id, category_id)
