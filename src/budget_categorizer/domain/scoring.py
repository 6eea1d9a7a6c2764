MAX_PERSONAL_CONFIDENCE = 0.95

# (minimum occurrences, confidence), strongest first.
FREQUENCY_CONFIDENCE = (
    (10, 0.95),
    (7, 0.90),
    (5, 0.85),
    (3, 0.80),
)
BASELINE_CONFIDENCE = 0.75


def clamp_confidence(value: float) -> float:
    return max(0.0, min(1.0, value))


def frequency_confidence(occurrences: int) -> float:
    for minimum, confidence in FREQUENCY_CONFIDENCE:
        if occurrences >= minimum:
            return confidence
    return BASELINE_CONFIDENCE


def reinforced_confidence(current: float, usage_count: int) -> float:
    """Confidence after a successful use; never decreases and never exceeds the personal cap."""
    return min(MAX_PERSONAL_CONFIDENCE, max(current, frequency_confidence(usage_count)))


def pattern_accuracy_confidence(accepted: int, total: int) -> float:
    if total == 0:
        return 0.0
    return clamp_confidence(accepted / total * 0.9 + 0.1)


def penalized_confidence(current: float, successes: int, usage_count: int) -> float:
    """Confidence after a failed use: never above what the pattern's accuracy supports."""
    return min(current, pattern_accuracy_confidence(successes, usage_count))
