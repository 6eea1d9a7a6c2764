import os
from dataclasses import dataclass

from dotenv import find_dotenv, load_dotenv

from budget_categorizer.logger import get_logger

logger = get_logger(__name__)


CONFIG_FILENAME = "config.yaml"

_CONFIG_FILE_PATH: str | None = None
_CONFIG_FILE_VALUES: dict[str, str] = {}
_EXTERNAL_ENV_KEYS: set[str] = set()

_CONFIG_KEYS = (
    "LOG_LEVEL",
    "LOG_DIR",
    "DATA_DIR",
    "PATTERN_TABLE_PATH",
    "CSV_SESSION_TTL",
    "CSV_MAX_SESSIONS",
    "CSV_PREVIEW_ROWS",
    "CSV_DAY_FIRST",
    "CSV_MAX_UPLOAD_BYTES",
    "MIN_PATTERN_CONFIDENCE",
    "EXISTING_CATEGORY_CONFIDENCE",
    "HISTORICAL_SIMILARITY_THRESHOLD",
    "HISTORICAL_MAX_CONFIDENCE",
    "HISTORICAL_VOTE_DIVISOR",
    "RECENT_SIMILARITY_THRESHOLD",
    "RECENT_MAX_CONFIDENCE",
    "AMOUNT_MAX_CONFIDENCE",
    "SPECIFICITY_ACCEPT",
    "FEEDBACK_ACCEPT",
    "FEEDBACK_MIN_SAMPLES",
    "ACCURACY_ACCEPT",
    "ACCURACY_MIN_MATCHES",
    "FALLBACK_FACTOR",
    "MANUAL_LEARNING_LIMIT",
    "MANUAL_LEARNING_MIN_OCCURRENCES",
)


def _resolve_dotenv_path() -> str | None:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        candidate = os.path.join(config_dir, ".env")
        if os.path.exists(candidate):
            return candidate
    resolved = find_dotenv(usecwd=True)
    return resolved or None


def _resolve_config_path() -> str:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        return os.path.join(config_dir, CONFIG_FILENAME)
    candidate = os.path.join(os.getcwd(), "config", CONFIG_FILENAME)
    if os.path.exists(candidate):
        return candidate
    return os.path.join(os.getcwd(), CONFIG_FILENAME)


def _strip_inline_comment(raw_value: str) -> str:
    quote: str | None = None
    for index, char in enumerate(raw_value):
        if char in {'"', "'"}:
            if quote is None:
                quote = char
            elif quote == char:
                quote = None
        elif char == "#" and quote is None:
            return raw_value[:index].rstrip()
    return raw_value


def _unquote_value(raw_value: str) -> str:
    if len(raw_value) >= 2 and raw_value[0] == raw_value[-1] and raw_value[0] in {'"', "'"}:
        quote = raw_value[0]
        return raw_value[1:-1].replace(f"\\{quote}", quote).replace("\\\\", "\\")
    return raw_value


def read_config_file(path: str | None) -> dict[str, str]:
    """Read the flat `KEY: value` config file; missing files yield an empty mapping."""
    if not path or not os.path.exists(path):
        return {}

    values: dict[str, str] = {}
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            stripped = line.strip()
            if not stripped or stripped.startswith("#") or ":" not in stripped:
                continue
            key, raw_value = stripped.split(":", 1)
            key = key.strip()
            value = _unquote_value(_strip_inline_comment(raw_value).strip())
            if key and value:
                values[key] = value
    return values


def load_environment() -> None:
    global _CONFIG_FILE_PATH
    global _CONFIG_FILE_VALUES
    global _EXTERNAL_ENV_KEYS

    dotenv_path = _resolve_dotenv_path()
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path, override=False)

    _EXTERNAL_ENV_KEYS = set(os.environ.keys())

    _CONFIG_FILE_PATH = _resolve_config_path()
    _CONFIG_FILE_VALUES = read_config_file(_CONFIG_FILE_PATH)

    for key in _CONFIG_KEYS:
        if key not in os.environ and key in _CONFIG_FILE_VALUES:
            os.environ[key] = _CONFIG_FILE_VALUES[key]


def get_config_path() -> str | None:
    return _CONFIG_FILE_PATH


def is_env_override(name: str) -> bool:
    return name in _EXTERNAL_ENV_KEYS


def ensure_dirs(*paths: str | None) -> None:
    for path in paths:
        if path and path not in {".", "./"}:
            os.makedirs(path, exist_ok=True)


def get_env_int(name: str, default: int, min_value: int | None = None) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("[ENV] %s='%s' below minimum %s, using default %s.", name, raw, min_value, default)
        return default
    return value


def get_env_float(
    name: str,
    default: float,
    min_value: float | None = None,
    max_value: float | None = None,
) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if (min_value is not None and value < min_value) or (max_value is not None and value > max_value):
        logger.warning("[ENV] %s='%s' out of range, using default %s.", name, raw, default)
        return default
    return value


def get_env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if not raw:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class EngineThresholds:
    min_pattern_confidence: float = 0.4
    existing_category_confidence: float = 0.95
    historical_similarity_threshold: float = 0.7
    historical_max_confidence: float = 0.9
    historical_vote_divisor: int = 30
    recent_similarity_threshold: float = 0.6
    recent_max_confidence: float = 0.7
    amount_max_confidence: float = 0.4
    specificity_accept: float = 0.8
    feedback_accept: float = 0.75
    feedback_min_samples: int = 3
    accuracy_accept: float = 0.7
    accuracy_min_matches: int = 5
    fallback_factor: float = 0.6
    manual_learning_limit: int = 100
    manual_learning_min_occurrences: int = 3


def load_thresholds() -> EngineThresholds:
    defaults = EngineThresholds()

    def unit(name: str, default: float) -> float:
        return get_env_float(name, default, min_value=0.0, max_value=1.0)

    return EngineThresholds(
        min_pattern_confidence=unit("MIN_PATTERN_CONFIDENCE", defaults.min_pattern_confidence),
        existing_category_confidence=unit("EXISTING_CATEGORY_CONFIDENCE", defaults.existing_category_confidence),
        historical_similarity_threshold=unit(
            "HISTORICAL_SIMILARITY_THRESHOLD", defaults.historical_similarity_threshold
        ),
        historical_max_confidence=unit("HISTORICAL_MAX_CONFIDENCE", defaults.historical_max_confidence),
        historical_vote_divisor=get_env_int(
            "HISTORICAL_VOTE_DIVISOR", defaults.historical_vote_divisor, min_value=1
        ),
        recent_similarity_threshold=unit("RECENT_SIMILARITY_THRESHOLD", defaults.recent_similarity_threshold),
        recent_max_confidence=unit("RECENT_MAX_CONFIDENCE", defaults.recent_max_confidence),
        amount_max_confidence=unit("AMOUNT_MAX_CONFIDENCE", defaults.amount_max_confidence),
        specificity_accept=unit("SPECIFICITY_ACCEPT", defaults.specificity_accept),
        feedback_accept=unit("FEEDBACK_ACCEPT", defaults.feedback_accept),
        feedback_min_samples=get_env_int("FEEDBACK_MIN_SAMPLES", defaults.feedback_min_samples, min_value=1),
        accuracy_accept=unit("ACCURACY_ACCEPT", defaults.accuracy_accept),
        accuracy_min_matches=get_env_int("ACCURACY_MIN_MATCHES", defaults.accuracy_min_matches, min_value=1),
        fallback_factor=unit("FALLBACK_FACTOR", defaults.fallback_factor),
        manual_learning_limit=get_env_int("MANUAL_LEARNING_LIMIT", defaults.manual_learning_limit, min_value=1),
        manual_learning_min_occurrences=get_env_int(
            "MANUAL_LEARNING_MIN_OCCURRENCES", defaults.manual_learning_min_occurrences, min_value=1
        ),
    )


_SENSITIVE_ENV_KEYS = ("KEY", "TOKEN", "SECRET", "PASSWORD", "AUTH")


def _mask_env_value(name: str, value: str) -> str:
    sanitized = value.replace("\r", "\\r").replace("\n", "\\n")
    if not any(marker in name.upper() for marker in _SENSITIVE_ENV_KEYS):
        return sanitized
    if len(sanitized) <= 4:
        return "****"
    return f"{sanitized[:2]}...{sanitized[-2:]}"


def log_environment() -> None:
    logger.info("[ENV] Logging configured environment variables (masked where needed).")
    for key in _CONFIG_KEYS:
        raw_value = os.getenv(key)
        if raw_value is None:
            continue
        logger.info("[ENV] %s=%s", key, _mask_env_value(key, raw_value))


DEFAULT_CSV_SESSION_TTL = 1800.0
DEFAULT_CSV_MAX_SESSIONS = 100
DEFAULT_CSV_PREVIEW_ROWS = 10
DEFAULT_CSV_MAX_UPLOAD_BYTES = 10 * 1024 * 1024


load_environment()

DATA_DIR = os.getenv("DATA_DIR", ".")
LOG_DIR = os.getenv("LOG_DIR")
CONFIG_DIR = os.getenv("CONFIG_DIR")

ensure_dirs(DATA_DIR, LOG_DIR, CONFIG_DIR)

CSV_SESSION_TTL = get_env_float("CSV_SESSION_TTL", DEFAULT_CSV_SESSION_TTL, min_value=1.0)
CSV_MAX_SESSIONS = get_env_int("CSV_MAX_SESSIONS", DEFAULT_CSV_MAX_SESSIONS, min_value=1)
CSV_PREVIEW_ROWS = get_env_int("CSV_PREVIEW_ROWS", DEFAULT_CSV_PREVIEW_ROWS, min_value=1)
CSV_MAX_UPLOAD_BYTES = get_env_int("CSV_MAX_UPLOAD_BYTES", DEFAULT_CSV_MAX_UPLOAD_BYTES, min_value=1)
CSV_DAY_FIRST = get_env_bool("CSV_DAY_FIRST", True)
