from collections.abc import Callable
from datetime import date
from decimal import Decimal
from typing import Any

import pytest

from budget_categorizer.core.pattern_table import PatternTable
from budget_categorizer.core.settings import EngineThresholds
from budget_categorizer.manager import CategorizerService
from budget_categorizer.models import Transaction
from budget_categorizer.stores.memory import (
    InMemoryCategoryStore,
    InMemoryFeedbackStore,
    InMemoryTransactionStore,
    LoggingBudgetNotifier,
)
from budget_categorizer.stores.patterns import InMemoryPatternStore

CATEGORIES = [
    {"id": "salary", "name": "Salary", "group": "INCOME"},
    {"id": "groceries", "name": "Groceries", "group": "ESSENTIAL"},
    {"id": "gasoline", "name": "Gasoline", "group": "ESSENTIAL"},
    {"id": "transportation", "name": "Transportation", "group": "ESSENTIAL"},
    {"id": "utilities", "name": "Utilities", "group": "ESSENTIAL"},
    {"id": "restaurants", "name": "Restaurants", "group": "LIFESTYLE"},
    {"id": "shopping", "name": "Shopping", "group": "LIFESTYLE"},
    {"id": "entertainment", "name": "Entertainment", "group": "LIFESTYLE"},
    {"id": "emergency_fund", "name": "Emergency fund", "group": "SAVINGS"},
]


@pytest.fixture
def make_table() -> Callable[..., PatternTable]:
    def _make(
        patterns: list[dict[str, Any]] | None = None,
        aliases: dict[str, str] | None = None,
        amount_ranges: dict[str, list[int]] | None = None,
        amount_validation: dict[str, Any] | None = None,
    ) -> PatternTable:
        return PatternTable.model_validate(
            {
                "version": "test",
                "categories": CATEGORIES,
                "category_aliases": aliases or {},
                "global_patterns": patterns or [],
                "amount_ranges": amount_ranges or {},
                "amount_validation": amount_validation,
            }
        )

    return _make


@pytest.fixture
def make_transaction() -> Callable[..., Transaction]:
    def _make(**overrides: Any) -> Transaction:
        fields: dict[str, Any] = {
            "user_id": "alice",
            "account_id": "checking",
            "date": date(2024, 3, 15),
            "amount": Decimal("-42.00"),
            "description": "PAIEMENT CB",
        }
        fields.update(overrides)
        return Transaction(**fields)

    return _make


@pytest.fixture
def make_service(make_table: Callable[..., PatternTable]) -> Callable[..., CategorizerService]:
    def _make(
        table: PatternTable | None = None,
        transactions: list[Transaction] | None = None,
        thresholds: EngineThresholds | None = None,
        data_path: str | None = None,
    ) -> CategorizerService:
        table = table or make_table()
        return CategorizerService(
            patterns=InMemoryPatternStore(table.patterns(), data_path=data_path),
            transactions=InMemoryTransactionStore(transactions),
            categories=InMemoryCategoryStore(table.categories, table.category_aliases),
            feedback=InMemoryFeedbackStore(),
            budget=LoggingBudgetNotifier(),
            table=table,
            thresholds=thresholds or EngineThresholds(),
        )

    return _make
