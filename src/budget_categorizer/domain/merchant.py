import re

UNKNOWN_MERCHANT = "UNKNOWN"
MAX_SPECIFICITY = 20
MERCHANT_KEY_TOKENS = 2

_DATE_TOKEN = re.compile(r"\d{2}/\d{2}")
_REGEX_ESCAPE = re.compile(r"\\.")


def build_merchant_text(merchant_name: str | None, description: str | None) -> str:
    """Uppercase search string made of the merchant name followed by the description."""
    merchant = (merchant_name or "").strip()
    details = (description or "").strip()
    parts: list[str] = []
    if merchant:
        parts.append(merchant)
    if details and details.upper() != merchant.upper():
        parts.append(details)
    return " ".join(parts).upper()


def extract_merchant_key(text: str | None) -> str:
    if not text:
        return UNKNOWN_MERCHANT
    tokens: list[str] = []
    for word in text.upper().split():
        if len(word) <= 2 or word.isdigit() or _DATE_TOKEN.fullmatch(word):
            continue
        tokens.append(word)
        if len(tokens) == MERCHANT_KEY_TOKENS:
            break
    return " ".join(tokens) if tokens else UNKNOWN_MERCHANT


def merchant_key_for(merchant_name: str | None, description: str | None) -> str:
    # Bank exports frequently leave the merchant column empty.
    source = merchant_name if merchant_name and merchant_name.strip() else description
    return extract_merchant_key(source)


def pattern_specificity(pattern: str, is_regex: bool = False) -> int:
    literal = _REGEX_ESCAPE.sub("", pattern) if is_regex else pattern
    return min(MAX_SPECIFICITY, sum(1 for char in literal if char.isalnum()))


def normalized_specificity(specificity: int) -> float:
    return min(1.0, max(0, specificity) / MAX_SPECIFICITY)
