from types import SimpleNamespace

import pytest

from budget_categorizer.core import configuration, settings
from budget_categorizer.core.configuration import CONFIG_FIELDS, ConfigField, _validate_value
from budget_categorizer.services.csv_import import CsvImportWizard
from budget_categorizer.services.sessions import ImportSessionStore
from budget_categorizer.stores.memory import InMemoryTransactionStore


@pytest.fixture
def config_path(tmp_path, monkeypatch: pytest.MonkeyPatch):
    path = tmp_path / "config.yaml"
    monkeypatch.setattr(settings, "_CONFIG_FILE_PATH", str(path))
    monkeypatch.setattr(settings, "_EXTERNAL_ENV_KEYS", {"LOG_LEVEL"})
    # setting then deleting makes monkeypatch restore the original state afterwards
    for field in CONFIG_FIELDS:
        monkeypatch.setenv(field.key, "placeholder")
        monkeypatch.delenv(field.key)
    return path


@pytest.mark.parametrize(
    ("field", "raw", "expected", "has_error"),
    [
        (ConfigField("A", "A", "", "x", "float", min_value=0.0, max_value=1.0), " 0.5 ", "0.5", False),
        (ConfigField("A", "A", "", "x", "float", min_value=0.0, max_value=1.0), "1.5", "1.5", True),
        (ConfigField("A", "A", "", "x", "float"), "abc", "abc", True),
        (ConfigField("A", "A", "", "x", "int", min_value=1), "0", "0", True),
        (ConfigField("A", "A", "", "x", "int"), "4.2", "4.2", True),
        (ConfigField("A", "A", "", "x", "bool"), "Yes", "true", False),
        (ConfigField("A", "A", "", "x", "bool"), "maybe", "maybe", True),
        (ConfigField("A", "A", "", "x", options=("DEBUG", "INFO")), "debug", "DEBUG", False),
        (ConfigField("A", "A", "", "x"), "", "", False),
    ],
)
def test_validate_value(field: ConfigField, raw: str, expected: str, has_error: bool) -> None:
    cleaned, error = _validate_value(field, raw)
    assert cleaned == expected
    assert (error is not None) is has_error


def test_read_config_file_handles_comments_and_quotes(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "# heading\n"
        "MIN_PATTERN_CONFIDENCE: 0.5  # tuned\n"
        'PATTERN_TABLE_PATH: "/data/table#1.json"\n'
        "# CSV_DAY_FIRST:\n",
        encoding="utf-8",
    )
    assert settings.read_config_file(str(path)) == {
        "MIN_PATTERN_CONFIDENCE": "0.5",
        "PATTERN_TABLE_PATH": "/data/table#1.json",
    }
    assert settings.read_config_file(str(tmp_path / "missing.yaml")) == {}


def test_env_helpers_fall_back_on_bad_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FALLBACK_FACTOR", "2.5")
    monkeypatch.setenv("FEEDBACK_MIN_SAMPLES", "many")
    monkeypatch.setenv("ACCURACY_ACCEPT", "0.65")

    thresholds = settings.load_thresholds()

    assert thresholds.fallback_factor == 0.6
    assert thresholds.feedback_min_samples == 3
    assert thresholds.accuracy_accept == 0.65


def test_apply_config_updates_writes_file(config_path) -> None:
    errors, updates = configuration.apply_config_updates(
        {"MIN_PATTERN_CONFIDENCE": "0.5", "CSV_DAY_FIRST": "no"}
    )

    assert errors == {}
    assert updates == {"MIN_PATTERN_CONFIDENCE": "0.5", "CSV_DAY_FIRST": "false"}
    assert settings.read_config_file(str(config_path)) == updates
    assert settings.load_thresholds().min_pattern_confidence == 0.5

    # a second write replaces the existing line
    configuration.apply_config_updates({"MIN_PATTERN_CONFIDENCE": "0.45"})
    lines = config_path.read_text(encoding="utf-8").splitlines()
    assert sum(line.startswith("MIN_PATTERN_CONFIDENCE") for line in lines) == 1


def test_apply_config_updates_rejects_without_writing(config_path) -> None:
    errors, updates = configuration.apply_config_updates(
        {"LOG_LEVEL": "DEBUG", "CSV_PREVIEW_ROWS": "5", "BOGUS": "1"}
    )

    assert updates == {}
    assert errors == {"LOG_LEVEL": "Set via environment variable.", "BOGUS": "Unknown setting."}
    assert not config_path.exists()


def test_build_config_context_groups_fields(config_path) -> None:
    configuration.apply_config_updates({"CSV_PREVIEW_ROWS": "5"})

    context = configuration.build_config_context()

    assert context["config_path"] == str(config_path)
    sections = {section["name"]: section["fields"] for section in context["sections"]}
    assert {"Engine thresholds", "Learning", "CSV import", "Storage"} <= set(sections)
    preview = next(field for field in sections["CSV import"] if field["key"] == "CSV_PREVIEW_ROWS")
    assert preview["value"] == "5"


def test_runtime_updates_reconfigure_services(config_path, make_service) -> None:
    service = make_service()
    wizard = CsvImportWizard(ImportSessionStore(60, 5), InMemoryTransactionStore())
    app = SimpleNamespace(state=SimpleNamespace(service=service, wizard=wizard))

    _, updates = configuration.apply_config_updates(
        {"FALLBACK_FACTOR": "0.5", "CSV_MAX_SESSIONS": "7", "CSV_DAY_FIRST": "false"}
    )
    configuration.apply_runtime_updates(app, updates)

    assert service.thresholds.fallback_factor == 0.5
    assert service.resolver.thresholds.fallback_factor == 0.5
    assert wizard.sessions.max_sessions == 7
    assert wizard.day_first is False
