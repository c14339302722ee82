import pytest

from config.base import _coerce_bool, _coerce_int, _parse_adapter_list
from config.validation import validate_and_exit, validate_environment


@pytest.fixture
def production_env(monkeypatch):
    for name in (
        "IMPORTER_ENABLED",
        "IMPORTER_ADAPTERS",
        "IMPORTER_ASANA_ACCESS_TOKEN",
        "IMPORTER_WORKER_ENABLED",
        "CELERY_BROKER_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SECRET_KEY", "a" * 64)
    monkeypatch.setenv("DATABASE_URL", "postgresql://worksync@localhost/worksync")
    return monkeypatch


def test_non_production_environments_skip_validation():
    assert validate_environment("development") == (True, [])
    assert validate_environment("testing") == (True, [])


def test_production_requires_secret_and_database(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "your-secret-key")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("IMPORTER_ENABLED", raising=False)
    monkeypatch.delenv("IMPORTER_WORKER_ENABLED", raising=False)

    is_valid, errors = validate_environment("production")

    assert is_valid is False
    assert len(errors) == 2
    assert errors[0].startswith("SECRET_KEY is required")
    assert errors[1].startswith("DATABASE_URL is required")


def test_production_importer_settings(production_env):
    production_env.setenv("IMPORTER_ENABLED", "true")
    production_env.setenv("IMPORTER_ADAPTERS", "csv,asana,jira")
    production_env.setenv("IMPORTER_WORKER_ENABLED", "true")

    is_valid, errors = validate_environment("production")

    assert is_valid is False
    assert errors == [
        "IMPORTER_ADAPTERS contains unknown adapters: jira",
        "IMPORTER_ASANA_ACCESS_TOKEN is required when the asana adapter is enabled",
        "CELERY_BROKER_URL is required when IMPORTER_WORKER_ENABLED=true",
    ]


def test_valid_production_environment(production_env):
    production_env.setenv("IMPORTER_ENABLED", "true")
    production_env.setenv("IMPORTER_ADAPTERS", "csv,asana")
    production_env.setenv("IMPORTER_ASANA_ACCESS_TOKEN", "pat")
    assert validate_environment("production") == (True, [])


def test_validate_and_exit_exits_on_errors(monkeypatch, capsys):
    monkeypatch.delenv("SECRET_KEY", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(SystemExit) as excinfo:
        validate_and_exit("production")
    assert excinfo.value.code == 1
    assert "ENVIRONMENT VALIDATION FAILED" in capsys.readouterr().err


def test_config_value_coercion():
    assert _coerce_bool("Yes") is True
    assert _coerce_bool("off", default=True) is False
    assert _coerce_bool("maybe", default=True) is True
    assert _coerce_int("25", 10) == 25
    assert _coerce_int("0", 10, minimum=1) == 10
    assert _coerce_int("many", 10) == 10
    assert _parse_adapter_list(" CSV, asana ,csv,,") == ("csv", "asana")
