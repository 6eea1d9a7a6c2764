from decimal import Decimal

from rapidfuzz.distance import Levenshtein

from budget_categorizer.models import Transaction

MERCHANT_WEIGHT = 0.4
DESCRIPTION_WEIGHT = 0.3
AMOUNT_WEIGHT = 0.2
DIRECTION_WEIGHT = 0.1
AMOUNT_TOLERANCE = Decimal("0.2")
CONTAINMENT_SCORE = 0.8


def string_similarity(left: str | None, right: str | None) -> float:
    a = (left or "").strip().lower()
    b = (right or "").strip().lower()
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    if a in b or b in a:
        return CONTAINMENT_SCORE
    return Levenshtein.normalized_similarity(a, b)


def amount_closeness(left: Decimal, right: Decimal) -> float:
    """1.0 for equal magnitudes, falling linearly to 0 at a 20% gap from their mean."""
    a, b = abs(left), abs(right)
    average = (a + b) / 2
    if average == 0:
        return 1.0
    difference = abs(a - b)
    return max(0.0, float(1 - difference / (average * AMOUNT_TOLERANCE)))


def transaction_similarity(first: Transaction, second: Transaction) -> float:
    """Weighted blend of merchant, description, amount and direction agreement.

    Text factors only count when both transactions carry that text; the blend is
    normalised by the weights that were actually used so the score stays in [0, 1].
    """
    score = 0.0
    weight = 0.0

    if first.merchant_name and second.merchant_name:
        score += MERCHANT_WEIGHT * string_similarity(first.merchant_name, second.merchant_name)
        weight += MERCHANT_WEIGHT

    if first.description and second.description:
        score += DESCRIPTION_WEIGHT * string_similarity(first.description, second.description)
        weight += DESCRIPTION_WEIGHT

    score += AMOUNT_WEIGHT * amount_closeness(first.amount, second.amount)
    weight += AMOUNT_WEIGHT

    if first.direction is second.direction:
        score += DIRECTION_WEIGHT
    weight += DIRECTION_WEIGHT

    return min(1.0, score / weight)
