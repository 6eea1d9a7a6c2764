import os
from dataclasses import dataclass
from typing import Any, Literal

from budget_categorizer.core import settings
from budget_categorizer.logger import get_logger

ValueType = Literal["string", "int", "float", "bool"]

logger = get_logger(__name__)


@dataclass(frozen=True)
class ConfigField:
    key: str
    label: str
    description: str
    category: str
    value_type: ValueType = "string"
    options: tuple[str, ...] | None = None
    min_value: float | int | None = None
    max_value: float | int | None = None
    restart_required: bool = False


def _threshold(key: str, label: str, description: str) -> ConfigField:
    return ConfigField(
        key=key,
        label=label,
        description=description,
        category="Engine thresholds",
        value_type="float",
        min_value=0.0,
        max_value=1.0,
    )


CONFIG_FIELDS: tuple[ConfigField, ...] = (
    _threshold(
        "MIN_PATTERN_CONFIDENCE",
        "Minimum pattern confidence",
        "Global patterns below this confidence are ignored; candidates must score above it.",
    ),
    _threshold(
        "EXISTING_CATEGORY_CONFIDENCE",
        "Existing category confidence",
        "Confidence given to a category translated from an imported label.",
    ),
    _threshold(
        "HISTORICAL_SIMILARITY_THRESHOLD",
        "Historical similarity threshold",
        "Past transactions must be more similar than this to vote.",
    ),
    _threshold("HISTORICAL_MAX_CONFIDENCE", "Historical confidence cap", "Upper bound for historical votes."),
    ConfigField(
        key="HISTORICAL_VOTE_DIVISOR",
        label="Historical vote divisor",
        description="Votes are divided by this value to obtain a confidence.",
        category="Engine thresholds",
        value_type="int",
        min_value=1,
    ),
    _threshold(
        "RECENT_SIMILARITY_THRESHOLD",
        "Recent similarity threshold",
        "Minimum similarity to an auto-assigned transaction of the same month.",
    ),
    _threshold("RECENT_MAX_CONFIDENCE", "Recent similarity cap", "Upper bound for recent-similarity candidates."),
    _threshold("AMOUNT_MAX_CONFIDENCE", "Amount confidence cap", "Peak confidence of amount-range inference."),
    _threshold("SPECIFICITY_ACCEPT", "Specificity acceptance", "Weighted score needed to win on specificity."),
    _threshold("FEEDBACK_ACCEPT", "Feedback acceptance", "Confidence needed to win on feedback history."),
    ConfigField(
        key="FEEDBACK_MIN_SAMPLES",
        label="Feedback minimum samples",
        description="Feedback records required before feedback history is used.",
        category="Engine thresholds",
        value_type="int",
        min_value=1,
    ),
    _threshold("ACCURACY_ACCEPT", "Accuracy acceptance", "Pattern accuracy needed to win on accuracy history."),
    ConfigField(
        key="ACCURACY_MIN_MATCHES",
        label="Accuracy minimum matches",
        description="Matches a pattern needs before its accuracy is trusted.",
        category="Engine thresholds",
        value_type="int",
        min_value=1,
    ),
    _threshold("FALLBACK_FACTOR", "Fallback factor", "Confidence multiplier for unresolved conflicts."),
    ConfigField(
        key="MANUAL_LEARNING_LIMIT",
        label="Manual learning window",
        description="Most recent manual assignments scanned when learning patterns.",
        category="Learning",
        value_type="int",
        min_value=1,
    ),
    ConfigField(
        key="MANUAL_LEARNING_MIN_OCCURRENCES",
        label="Manual learning occurrences",
        description="Repetitions of a merchant/category pair before a pattern is learned.",
        category="Learning",
        value_type="int",
        min_value=1,
    ),
    ConfigField(
        key="CSV_SESSION_TTL",
        label="Import session TTL",
        description="Seconds an uploaded CSV waits for mapping and approval.",
        category="CSV import",
        value_type="float",
        min_value=1,
    ),
    ConfigField(
        key="CSV_MAX_SESSIONS",
        label="Maximum import sessions",
        description="Oldest sessions are evicted beyond this count.",
        category="CSV import",
        value_type="int",
        min_value=1,
    ),
    ConfigField(
        key="CSV_PREVIEW_ROWS",
        label="Preview rows",
        description="Rows returned in the upload preview.",
        category="CSV import",
        value_type="int",
        min_value=1,
    ),
    ConfigField(
        key="CSV_DAY_FIRST",
        label="Day-first dates",
        description="Try dd/mm/yyyy before mm/dd/yyyy.",
        category="CSV import",
        value_type="bool",
    ),
    ConfigField(
        key="CSV_MAX_UPLOAD_BYTES",
        label="Maximum upload size",
        description="Largest CSV file accepted, in bytes.",
        category="CSV import",
        value_type="int",
        min_value=1,
    ),
    ConfigField(
        key="PATTERN_TABLE_PATH",
        label="Pattern table",
        description="JSON file with categories, aliases and global patterns.",
        category="Storage",
        restart_required=True,
    ),
    ConfigField(
        key="DATA_DIR",
        label="Data directory",
        description="Directory for personal pattern storage.",
        category="Storage",
        restart_required=True,
    ),
    ConfigField(
        key="LOG_DIR",
        label="Log directory",
        description="Directory for the application log file.",
        category="Storage",
        restart_required=True,
    ),
    ConfigField(
        key="LOG_LEVEL",
        label="Log level",
        description="Logging verbosity for the application.",
        category="Storage",
        options=("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"),
        restart_required=True,
    ),
)

CONFIG_TEMPLATE = """# Budget categorizer configuration
# These settings only take effect when the same environment variable is not set.
"""

_ENGINE_KEYS = frozenset(
    field.key for field in CONFIG_FIELDS if field.category in {"Engine thresholds", "Learning"}
)
_CSV_KEYS = frozenset(field.key for field in CONFIG_FIELDS if field.category == "CSV import")


def get_config_path() -> str:
    config_path = settings.get_config_path()
    if config_path:
        return config_path
    return os.path.join(os.getcwd(), "config", settings.CONFIG_FILENAME)


def build_config_context() -> dict[str, object]:
    config_path = get_config_path()
    config_values = settings.read_config_file(config_path)
    sections: dict[str, list[dict[str, object]]] = {}

    for field in CONFIG_FIELDS:
        env_override = settings.is_env_override(field.key)
        value = os.getenv(field.key, "") if env_override else config_values.get(field.key, "")
        sections.setdefault(field.category, []).append(
            {
                "key": field.key,
                "label": field.label,
                "description": field.description,
                "value_type": field.value_type,
                "value": value,
                "options": field.options,
                "env_override": env_override,
                "restart_required": field.restart_required,
            }
        )

    return {
        "config_path": config_path,
        "sections": [{"name": name, "fields": fields} for name, fields in sections.items()],
    }


def _check_bounds(field: ConfigField, parsed: float) -> str | None:
    if field.min_value is not None and parsed < field.min_value:
        return f"Must be at least {field.min_value}."
    if field.max_value is not None and parsed > field.max_value:
        return f"Must be at most {field.max_value}."
    return None


def _validate_value(field: ConfigField, raw_value: str) -> tuple[str, str | None]:
    value = raw_value.strip()
    if not value:
        return "", None

    if "\n" in value or "\r" in value:
        return value, "Value must be a single line."

    if field.options:
        normalized = value.upper()
        if normalized not in field.options:
            return value, f"Must be one of: {', '.join(field.options)}."
        return normalized, None

    if field.value_type == "bool":
        lowered = value.lower()
        if lowered not in {"true", "false", "1", "0", "yes", "no", "on", "off"}:
            return value, "Must be true or false."
        return ("true" if lowered in {"true", "1", "yes", "on"} else "false"), None

    if field.value_type == "int":
        try:
            parsed_int = int(value)
        except ValueError:
            return value, "Must be a whole number."
        return str(parsed_int), _check_bounds(field, parsed_int)

    if field.value_type == "float":
        try:
            parsed_float = float(value)
        except ValueError:
            return value, "Must be a number."
        return str(parsed_float), _check_bounds(field, parsed_float)

    return value, None


def apply_config_updates(form_values: dict[str, str]) -> tuple[dict[str, str], dict[str, str]]:
    """Validate and persist submitted values; returns (errors, applied updates)."""
    errors: dict[str, str] = {}
    updates: dict[str, str] = {}
    known = {field.key: field for field in CONFIG_FIELDS}

    for key, raw_value in form_values.items():
        field = known.get(key)
        if field is None:
            errors[key] = "Unknown setting."
            continue
        if settings.is_env_override(key):
            errors[key] = "Set via environment variable."
            continue
        cleaned, error = _validate_value(field, raw_value)
        if error:
            errors[key] = error
            continue
        updates[key] = cleaned

    if errors:
        return errors, {}

    _write_config_file(updates)
    _apply_runtime_overrides(updates)
    return {}, updates


def _write_config_file(updates: dict[str, str]) -> None:
    config_path = get_config_path()
    config_dir = os.path.dirname(config_path)
    if config_dir:
        os.makedirs(config_dir, exist_ok=True)

    if os.path.exists(config_path):
        with open(config_path, encoding="utf-8") as handle:
            lines = handle.read().splitlines()
    else:
        lines = CONFIG_TEMPLATE.splitlines()

    key_indexes: dict[str, int] = {}
    for index, line in enumerate(lines):
        candidate = line.strip().lstrip("#").lstrip()
        if ":" not in candidate:
            continue
        key = candidate.split(":", 1)[0].strip()
        if key in updates and key not in key_indexes:
            key_indexes[key] = index

    for key, value in updates.items():
        new_line = f"{key}: {_format_yaml_value(value)}" if value else f"# {key}:"
        if key in key_indexes:
            lines[key_indexes[key]] = new_line
        else:
            lines.append(new_line)

    with open(config_path, "w", encoding="utf-8") as handle:
        handle.write("\n".join(lines).rstrip("\n") + "\n")
    logger.info("[CONFIG] Wrote %s setting(s) to %s.", len(updates), config_path)


def _apply_runtime_overrides(updates: dict[str, str]) -> None:
    for key, value in updates.items():
        if value:
            os.environ[key] = value
        else:
            os.environ.pop(key, None)


def apply_runtime_updates(app: Any, updates: dict[str, str]) -> None:
    if not updates:
        return
    state = getattr(app, "state", None)
    if state is None:
        return

    if _ENGINE_KEYS & updates.keys():
        _refresh_engine(getattr(state, "service", None))

    if _CSV_KEYS & updates.keys():
        _refresh_csv(getattr(state, "wizard", None))


def _refresh_engine(service: Any) -> None:
    from budget_categorizer.manager import CategorizerService

    if not isinstance(service, CategorizerService):
        return
    service.configure(settings.load_thresholds())
    logger.info("[CONFIG] Engine thresholds reloaded.")


def _refresh_csv(wizard: Any) -> None:
    from budget_categorizer.services.csv_import import CsvImportWizard

    if not isinstance(wizard, CsvImportWizard):
        return
    wizard.sessions.configure(
        settings.get_env_float("CSV_SESSION_TTL", settings.DEFAULT_CSV_SESSION_TTL, min_value=1.0),
        settings.get_env_int("CSV_MAX_SESSIONS", settings.DEFAULT_CSV_MAX_SESSIONS, min_value=1),
    )
    wizard.preview_rows = settings.get_env_int(
        "CSV_PREVIEW_ROWS", settings.DEFAULT_CSV_PREVIEW_ROWS, min_value=1
    )
    wizard.day_first = settings.get_env_bool("CSV_DAY_FIRST", True)
    wizard.max_upload_bytes = settings.get_env_int(
        "CSV_MAX_UPLOAD_BYTES", settings.DEFAULT_CSV_MAX_UPLOAD_BYTES, min_value=1
    )
    logger.info("[CONFIG] CSV import settings reloaded.")


def _format_yaml_value(value: str) -> str:
    needs_quotes = value[:1].isspace() or value[-1:].isspace() or any(m in value for m in (":", "#", '"', "'"))
    if not needs_quotes:
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'
