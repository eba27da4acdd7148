from pathlib import Path

import pytest

from postbuy.config import HOUSECANARY_KEYS, REQUIRED_KEYS, load_settings
from postbuy.errors import ConfigurationError

ENV_KEYS = (
    "SUPABASE_URL",
    "SUPABASE_SERVICE_KEY",
    "HOUSECANARY_EMAIL",
    "HOUSECANARY_PASSWORD",
    "POSTBUY_HEADLESS",
    "POSTBUY_WORK_DIR",
    "POSTBUY_MAX_RETRIES",
    "POSTBUY_RETRY_DELAY",
    "POSTBUY_RUN_TIMEOUT",
    "POSTBUY_TABLE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


def test_missing_required_keys_are_listed(tmp_path):
    with pytest.raises(ConfigurationError) as excinfo:
        load_settings(required=REQUIRED_KEYS + HOUSECANARY_KEYS, env_file=tmp_path / "none.env")
    assert excinfo.value.missing == REQUIRED_KEYS + HOUSECANARY_KEYS


def test_settings_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("SUPABASE_URL", "https://db.test")
    monkeypatch.setenv("SUPABASE_SERVICE_KEY", "key")
    monkeypatch.setenv("POSTBUY_HEADLESS", "false")
    monkeypatch.setenv("POSTBUY_MAX_RETRIES", "3")
    monkeypatch.setenv("POSTBUY_RETRY_DELAY", "0.5")
    monkeypatch.setenv("POSTBUY_RUN_TIMEOUT", "600")
    monkeypatch.setenv("POSTBUY_WORK_DIR", str(tmp_path / "work"))

    settings = load_settings(env_file=tmp_path / "none.env")

    assert settings.supabase_url == "https://db.test"
    assert settings.headless is False
    assert settings.max_retries == 3
    assert settings.retry_delay == 0.5
    assert settings.run_timeout == 600.0
    assert settings.table == "property_detail"
    assert settings.task_dir("climate_risk") == tmp_path / "work" / "climate_risk"
    assert (tmp_path / "work" / "climate_risk").is_dir()


def test_dotenv_file_is_loaded_without_overriding_environment(monkeypatch, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("SUPABASE_URL=https://from-file.test\nSUPABASE_SERVICE_KEY=file-key\n")
    monkeypatch.setenv("SUPABASE_SERVICE_KEY", "env-key")

    settings = load_settings(env_file=env_file)

    assert settings.supabase_url == "https://from-file.test"
    assert settings.supabase_service_key == "env-key"


def test_legacy_env_txt_is_read(tmp_path):
    Path("env.txt").write_text("SUPABASE_URL=https://legacy.test\nSUPABASE_SERVICE_KEY=legacy\n")

    settings = load_settings()

    assert settings.supabase_url == "https://legacy.test"


def test_invalid_number_is_a_configuration_error(monkeypatch, tmp_path):
    monkeypatch.setenv("POSTBUY_MAX_RETRIES", "many")
    with pytest.raises(ConfigurationError, match="Invalid numeric setting"):
        load_settings(required=(), env_file=tmp_path / "none.env")
