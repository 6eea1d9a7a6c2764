from datetime import date
from decimal import Decimal

import pytest

from budget_categorizer.core.settings import EngineThresholds
from budget_categorizer.models import AssignmentStatus, PatternSource, UserMerchantPattern


def _manual(make_transaction, description: str, category_id: str, day: int = 1, **extra):
    return make_transaction(
        description=description,
        date=date(2024, 3, day),
        status=AssignmentStatus.MANUALLY_ASSIGNED,
        category_id=category_id,
        **extra,
    )


def test_learns_pattern_after_three_manual_assignments(make_service, make_transaction) -> None:
    history = [_manual(make_transaction, "SUPERMARCHE XYZ", "groceries", day) for day in (1, 8, 15)]
    service = make_service(transactions=history)

    created = service.learn_from_manual_assignments("alice")

    assert len(created) == 1
    pattern = created[0]
    assert pattern.pattern == "SUPERMARCHE XYZ"
    assert pattern.category_id == "groceries"
    assert pattern.source is PatternSource.LEARNED
    assert pattern.usage_count == 3
    assert pattern.success_count == 3
    assert pattern.confidence == pytest.approx(0.80)

    # running again does not duplicate the pattern
    assert service.learn_from_manual_assignments("alice") == []
    assert len(service.personal_patterns("alice")) == 1


def test_ignores_rare_and_engine_assigned_transactions(make_service, make_transaction) -> None:
    history = [
        _manual(make_transaction, "PRIMEUR MARCEL", "groceries", 1),
        _manual(make_transaction, "PRIMEUR MARCEL", "groceries", 2),
        # a confidence marks an engine suggestion the user confirmed
        _manual(make_transaction, "PRIMEUR MARCEL", "groceries", 3, confidence=0.8),
        _manual(make_transaction, "12 34", "groceries", 4),
        _manual(make_transaction, "12 34", "groceries", 5),
        _manual(make_transaction, "12 34", "groceries", 6),
    ]
    service = make_service(transactions=history)

    assert service.learn_from_manual_assignments("alice") == []


def test_learning_window_limits_scanned_transactions(make_service, make_transaction) -> None:
    history = [_manual(make_transaction, "SUPERMARCHE XYZ", "groceries", day) for day in (1, 2, 3)]
    history += [_manual(make_transaction, "PHARMACIE CENTRALE", "shopping", day) for day in (20, 21, 22)]
    service = make_service(
        transactions=history,
        thresholds=EngineThresholds(manual_learning_limit=3),
    )

    created = service.learn_from_manual_assignments("alice")

    assert [p.pattern for p in created] == ["PHARMACIE CENTRALE"]


def test_learned_pattern_is_used_for_classification(make_service, make_transaction) -> None:
    history = [_manual(make_transaction, "SUPERMARCHE XYZ", "groceries", day) for day in (1, 8, 15)]
    service = make_service(transactions=history)
    service.learn_from_manual_assignments("alice")

    result = service.classify(make_transaction(description="SUPERMARCHE XYZ NANTES", amount=Decimal("-31.10")))

    assert result.category_id == "groceries"
    assert result.confidence == pytest.approx(0.80)


def test_improve_existing_patterns_prunes_and_weakens(make_service) -> None:
    service = make_service()
    store = service.patterns
    inaccurate = store.add_personal_pattern(
        UserMerchantPattern(
            user_id="alice", pattern="AMAZON", category_id="shopping", usage_count=10, success_count=2
        )
    )
    shaky = store.add_personal_pattern(
        UserMerchantPattern(
            user_id="alice", pattern="DECATHLON", category_id="shopping", usage_count=10, success_count=5
        )
    )
    healthy = store.add_personal_pattern(
        UserMerchantPattern(
            user_id="alice", pattern="PAUL", category_id="groceries", usage_count=10, success_count=9
        )
    )
    young = store.add_personal_pattern(
        UserMerchantPattern(user_id="alice", pattern="IKEA", category_id="shopping", usage_count=4, success_count=1)
    )

    report = service.improve_existing_patterns("alice")

    remaining = {p.id: p for p in store.list_personal_patterns("alice")}
    assert report.removed == 1
    assert report.improved == 2
    assert inaccurate.id not in remaining
    assert remaining[shaky.id].confidence == pytest.approx(0.72)
    assert remaining[healthy.id].confidence == pytest.approx(0.90)
    # too few uses to prune, but still weakened
    assert remaining[young.id].confidence == pytest.approx(0.72)
