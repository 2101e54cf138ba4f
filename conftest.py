"""
Root test conftest — isolate secret environment variables so Settings()
behaves as if nothing is configured unless a test provides it, and keep
developer .env files and PARLEY_CONFIG out of the test run.
"""
import pytest

_SECRET_ENV_VARS = [
    "AGENT_SERVICE_API_KEY",
    "PARLEY_WS_TOKEN",
    "PARLEY_CONFIG",
]


@pytest.fixture(autouse=True)
def _clear_secrets_from_env(monkeypatch):
    """Remove secret env vars and disable .env loading for every test."""
    for var in _SECRET_ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    import config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
