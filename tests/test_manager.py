import threading
from datetime import date
from decimal import Decimal

import pytest

from budget_categorizer.core.pattern_table import load_pattern_table
from budget_categorizer.errors import NotFoundError
from budget_categorizer.models import (
    AssignmentStatus,
    Resolution,
    Strategy,
    UserMerchantPattern,
)

CARREFOUR = {"pattern": ".*CARREFOUR.*", "category_id": "groceries", "is_regex": True, "confidence": 0.8}


@pytest.fixture
def carrefour_service(make_table, make_service):
    return make_service(table=make_table(patterns=[CARREFOUR]))


def test_global_pattern_assigns_groceries(carrefour_service, make_transaction) -> None:
    transaction = make_transaction(merchant_name="CARREFOUR", description="COURSES", amount=Decimal("-65.20"))

    result = carrefour_service.classify(transaction)

    assert result.category_id == "groceries"
    assert result.strategy is Strategy.GLOBAL_PATTERN
    assert result.resolution is Resolution.SINGLE_MATCH
    assert result.confidence == pytest.approx(0.8)
    assert result.pattern_id == "groceries|.*CARREFOUR.*"
    assert result.needs_review is False


def test_bundled_table_assigns_groceries(make_service, make_transaction) -> None:
    service = make_service(table=load_pattern_table())
    transaction = make_transaction(merchant_name="CARREFOUR", description="COURSES", amount=Decimal("-65.20"))

    result = service.classify(transaction)

    assert result.category_id == "groceries"
    assert result.strategy is Strategy.GLOBAL_PATTERN


def test_personal_pattern_overrides_global(carrefour_service, make_transaction) -> None:
    carrefour_service.patterns.add_personal_pattern(
        UserMerchantPattern(user_id="alice", pattern="CARREFOUR", category_id="shopping", confidence=0.5)
    )
    transaction = make_transaction(merchant_name="CARREFOUR", description="COURSES", amount=Decimal("-65.20"))

    result = carrefour_service.classify(transaction)

    assert result.category_id == "shopping"
    assert result.strategy is Strategy.PERSONAL_PATTERN
    assert result.confidence == pytest.approx(0.5)

    # other users still get the global suggestion
    other = carrefour_service.classify(transaction.model_copy(update={"user_id": "bob"}))
    assert other.category_id == "groceries"


def test_classify_is_pure_and_idempotent(carrefour_service, make_transaction) -> None:
    transaction = make_transaction(merchant_name="CARREFOUR", description="COURSES")
    carrefour_service.transactions.save(transaction)

    first = carrefour_service.classify(transaction)
    second = carrefour_service.classify(transaction)

    assert first == second
    stored = carrefour_service.transactions.get(transaction.id)
    assert stored.status is AssignmentStatus.UNASSIGNED
    assert carrefour_service.budget.changes == []


def test_no_signal_needs_review(carrefour_service, make_transaction) -> None:
    result = carrefour_service.classify(make_transaction(description="XQZ 9931"))

    assert result.category_id is None
    assert result.strategy is Strategy.NO_PATTERN_MATCH
    assert result.resolution is Resolution.NO_PATTERN_MATCH
    assert result.confidence == 0.0
    assert result.needs_review is True


def test_income_never_gets_expense_category(make_table, make_service, make_transaction) -> None:
    service = make_service(table=make_table(patterns=[{"pattern": "VIREMENT", "category_id": "groceries"}]))
    result = service.classify(make_transaction(description="VIREMENT RECU", amount=Decimal("1500")))
    assert result.category_id is None
    assert "groceries" not in result.alternatives


def test_existing_category_translation(make_table, make_service, make_transaction) -> None:
    service = make_service(table=make_table(aliases={"Alimentation": "groceries"}))
    result = service.classify(make_transaction(description="ACHAT", source_category="alimentation"))
    assert result.category_id == "groceries"
    assert result.strategy is Strategy.EXISTING_CATEGORY
    assert result.confidence == pytest.approx(0.95)


def test_unresolved_conflict_is_down_weighted(make_table, make_service, make_transaction) -> None:
    table = make_table(
        patterns=[
            {"pattern": "FNAC", "category_id": "entertainment", "confidence": 0.6},
            {"pattern": "FNAC", "category_id": "shopping", "confidence": 0.7},
        ]
    )
    service = make_service(table=table)
    transaction = make_transaction(description="FNAC", amount=Decimal("-42"))
    service.transactions.save(transaction)

    result = service.classify(transaction)
    assert result.resolution is Resolution.FALLBACK_SPECIFICITY
    assert result.category_id == "shopping"
    assert result.confidence == pytest.approx(0.42)
    assert result.needs_review is True

    outcome = service.bulk_classify("alice", [transaction])
    stored = service.transactions.get(transaction.id)
    assert outcome.needs_review[0].category_id == "shopping"
    assert stored.status is AssignmentStatus.NEEDS_REVIEW
    assert stored.category_id is None


def test_confidence_stays_in_bounds(make_service, make_transaction) -> None:
    service = make_service(table=load_pattern_table())
    descriptions = ["SNCF PARIS", "NETFLIX.COM", "LOYER MARS", "SALAIRE MARS", "PHARMACIE", "???"]
    for description in descriptions:
        amount = Decimal("2100") if description.startswith("SALAIRE") else Decimal("-37.40")
        result = service.classify(make_transaction(description=description, amount=amount))
        assert 0.0 <= result.confidence <= 1.0


def test_bulk_classify_assigns_and_notifies(carrefour_service, make_transaction) -> None:
    matched = make_transaction(merchant_name="CARREFOUR", description="COURSES")
    unmatched = make_transaction(description="XQZ 9931")
    for transaction in (matched, unmatched):
        carrefour_service.transactions.save(transaction)

    outcome = carrefour_service.bulk_classify("alice", [matched, unmatched])

    assert [r.transaction_id for r in outcome.assigned] == [matched.id]
    assert [r.transaction_id for r in outcome.needs_review] == [unmatched.id]
    assert outcome.strategy_breakdown == {"GLOBAL_PATTERN": 1, "NEEDS_REVIEW": 1}
    assert outcome.stopped_early is False

    stored = carrefour_service.transactions.get(matched.id)
    assert stored.status is AssignmentStatus.AUTO_ASSIGNED
    assert stored.category_id == "groceries"
    assert stored.confidence == pytest.approx(0.8)
    assert carrefour_service.transactions.get(unmatched.id).status is AssignmentStatus.NEEDS_REVIEW
    assert carrefour_service.budget.changes == [("alice", "groceries")]


def test_bulk_classify_skips_other_users(carrefour_service, make_transaction) -> None:
    foreign = make_transaction(user_id="bob", merchant_name="CARREFOUR")
    outcome = carrefour_service.bulk_classify("alice", [foreign])
    assert outcome.assigned == [] and outcome.needs_review == []


def test_bulk_classify_stops_between_transactions(carrefour_service, make_transaction, monkeypatch) -> None:
    transactions = [make_transaction(merchant_name="CARREFOUR", description=f"COURSES {i}") for i in range(3)]
    stop = threading.Event()
    classify = carrefour_service.classify

    def classify_then_stop(transaction):
        result = classify(transaction)
        stop.set()
        return result

    monkeypatch.setattr(carrefour_service, "classify", classify_then_stop)

    outcome = carrefour_service.bulk_classify("alice", transactions, stop)

    assert outcome.stopped_early is True
    assert len(outcome.assigned) == 1


def test_bulk_classify_isolates_failures(carrefour_service, make_transaction, monkeypatch) -> None:
    transaction = make_transaction(merchant_name="CARREFOUR")

    def explode(_):
        raise RuntimeError("boom")

    monkeypatch.setattr(carrefour_service, "classify", explode)
    outcome = carrefour_service.bulk_classify("alice", [transaction])

    assert [r.transaction_id for r in outcome.needs_review] == [transaction.id]


def test_auto_assign_period_only_touches_unassigned_in_month(carrefour_service, make_transaction) -> None:
    march = make_transaction(merchant_name="CARREFOUR", date=date(2024, 3, 31))
    april = make_transaction(merchant_name="CARREFOUR", date=date(2024, 4, 1))
    manual = make_transaction(
        merchant_name="CARREFOUR",
        date=date(2024, 3, 5),
        status=AssignmentStatus.MANUALLY_ASSIGNED,
        category_id="shopping",
    )
    for transaction in (march, april, manual):
        carrefour_service.transactions.save(transaction)

    outcome = carrefour_service.auto_assign_period("alice", 2024, 3)

    assert [r.transaction_id for r in outcome.assigned] == [march.id]
    assert carrefour_service.transactions.get(april.id).status is AssignmentStatus.UNASSIGNED
    assert carrefour_service.transactions.get(manual.id).category_id == "shopping"


def test_classify_by_ids_rejects_foreign_transaction(carrefour_service, make_transaction) -> None:
    foreign = make_transaction(user_id="bob")
    carrefour_service.transactions.save(foreign)
    with pytest.raises(NotFoundError):
        carrefour_service.classify_by_ids("alice", [foreign.id])


def test_rejected_suggestion_teaches_personal_pattern(carrefour_service, make_transaction) -> None:
    transaction = make_transaction(merchant_name="CARREFOUR", description="COURSES")
    carrefour_service.transactions.save(transaction)
    suggestion = carrefour_service.classify(transaction)

    updated = carrefour_service.record_feedback(
        "alice", transaction.id, suggestion.category_id, "shopping", False, suggestion.pattern_id
    )

    assert updated.status is AssignmentStatus.MANUALLY_ASSIGNED
    assert updated.category_id == "shopping"
    assert updated.confidence is None
    assert len(carrefour_service.feedback) == 1

    learned = carrefour_service.personal_patterns("alice")
    assert [(p.pattern, p.category_id) for p in learned] == [("CARREFOUR", "shopping")]

    global_pattern = next(
        p for p in carrefour_service.patterns.list_global_patterns() if p.id == suggestion.pattern_id
    )
    assert (global_pattern.total_matches, global_pattern.accepted_matches) == (1, 0)

    again = carrefour_service.classify(make_transaction(merchant_name="CARREFOUR", description="COURSES"))
    assert again.category_id == "shopping"
    assert again.strategy is Strategy.PERSONAL_PATTERN


def test_accepted_suggestion_reinforces_personal_pattern(carrefour_service, make_transaction) -> None:
    pattern = carrefour_service.patterns.add_personal_pattern(
        UserMerchantPattern(user_id="alice", pattern="CARREFOUR", category_id="groceries")
    )
    transaction = make_transaction(merchant_name="CARREFOUR")
    carrefour_service.transactions.save(transaction)
    suggestion = carrefour_service.classify(transaction)

    updated = carrefour_service.record_feedback(
        "alice", transaction.id, suggestion.category_id, "groceries", True, suggestion.pattern_id
    )

    assert updated.status is AssignmentStatus.AUTO_ASSIGNED
    reinforced = carrefour_service.patterns.get_personal_pattern("alice", "CARREFOUR", "groceries")
    assert reinforced is not None and reinforced.id == pattern.id
    assert reinforced.usage_count == 2
    assert reinforced.success_count == 2


def test_assign_manually(carrefour_service, make_transaction) -> None:
    transaction = make_transaction(merchant_name="CARREFOUR")
    carrefour_service.transactions.save(transaction)

    updated = carrefour_service.assign_manually("alice", transaction.id, "restaurants")

    assert updated.status is AssignmentStatus.MANUALLY_ASSIGNED
    assert updated.confidence is None
    assert carrefour_service.budget.changes == [("alice", "restaurants")]

    with pytest.raises(NotFoundError):
        carrefour_service.assign_manually("alice", transaction.id, "no-such-category")
    with pytest.raises(NotFoundError):
        carrefour_service.assign_manually("alice", "missing", "restaurants")


def test_correcting_a_personal_pattern_takes_effect(carrefour_service, make_transaction) -> None:
    stale = carrefour_service.patterns.add_personal_pattern(
        UserMerchantPattern(
            user_id="alice", pattern="CARREFOUR", category_id="groceries", usage_count=3, success_count=3, confidence=0.8
        )
    )
    transaction = make_transaction(merchant_name="CARREFOUR", description="COURSES")
    carrefour_service.transactions.save(transaction)
    suggestion = carrefour_service.classify(transaction)
    assert suggestion.category_id == "groceries"

    carrefour_service.record_feedback(
        "alice", transaction.id, suggestion.category_id, "restaurants", False, suggestion.pattern_id
    )

    again = carrefour_service.classify(make_transaction(merchant_name="CARREFOUR", description="COURSES"))
    assert again.category_id == "restaurants"
    assert again.strategy is Strategy.PERSONAL_PATTERN
    assert "groceries" in again.alternatives

    weakened = carrefour_service.patterns.get_personal_pattern("alice", "CARREFOUR", "groceries")
    assert weakened is not None and weakened.id == stale.id
    assert (weakened.usage_count, weakened.success_count) == (4, 3)
    assert weakened.confidence == pytest.approx(0.775)


def test_single_correction_keeps_established_pattern(carrefour_service, make_transaction) -> None:
    carrefour_service.patterns.add_personal_pattern(
        UserMerchantPattern(
            user_id="alice", pattern="CARREFOUR", category_id="groceries", usage_count=10, success_count=10, confidence=0.95
        )
    )
    transaction = make_transaction(merchant_name="CARREFOUR", description="COURSES")
    carrefour_service.transactions.save(transaction)
    suggestion = carrefour_service.classify(transaction)

    carrefour_service.record_feedback(
        "alice", transaction.id, suggestion.category_id, "restaurants", False, suggestion.pattern_id
    )

    again = carrefour_service.classify(make_transaction(merchant_name="CARREFOUR", description="COURSES"))
    assert again.category_id == "groceries"


def _fnac_service(make_table, make_service):
    table = make_table(
        patterns=[
            {"pattern": "FNAC", "category_id": "entertainment", "confidence": 0.6},
            {"pattern": "FNAC", "category_id": "shopping", "confidence": 0.7},
        ]
    )
    return make_service(table=table)


def test_accepting_a_review_suggestion_stores_its_confidence(make_table, make_service, make_transaction) -> None:
    service = _fnac_service(make_table, make_service)
    transaction = make_transaction(description="FNAC", amount=Decimal("-42"))
    service.transactions.save(transaction)
    outcome = service.bulk_classify("alice", [transaction])
    suggestion = outcome.needs_review[0]

    updated = service.record_feedback(
        "alice", transaction.id, suggestion.category_id, suggestion.category_id, True, suggestion.pattern_id
    )

    assert updated.status is AssignmentStatus.AUTO_ASSIGNED
    assert updated.category_id == "shopping"
    assert updated.confidence == pytest.approx(0.42)


def test_accepting_an_unscored_category_counts_as_manual(make_table, make_service, make_transaction) -> None:
    service = _fnac_service(make_table, make_service)
    transaction = make_transaction(description="FNAC", amount=Decimal("-42"))
    service.transactions.save(transaction)

    updated = service.record_feedback("alice", transaction.id, "entertainment", "entertainment", True)

    assert updated.status is AssignmentStatus.MANUALLY_ASSIGNED
    assert updated.confidence is None
