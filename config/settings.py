"""
config/settings.py — Parley Runtime Settings

Merges config.yaml (defaults/structure) with .env (secrets).
Pydantic-powered — all fields are validated and typed.

  - AgentServiceConfig rejects non-positive timeouts at parse time
  - ConfirmationConfig validates the policy name and normalises keywords
  - validate_all() performs full startup validation and raises ConfigError
    with a clear, human-readable message listing every problem found
  - load_settings() respects PARLEY_CONFIG env var as a fallback
    when no explicit config_path argument is given
"""

from __future__ import annotations

import os
import threading as _threading
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_VALID_POLICIES   = {"reply", "precheck", "off"}
_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

_DEFAULT_PRECHECK_KEYWORDS = [
    "delete", "remove", "destroy", "drop", "terminate",
    "shutdown", "deploy", "overwrite", "purge", "wipe",
]


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class AgentServiceConfig(BaseModel):
    """Where the external agent service lives. The API key comes from .env."""
    base_url: str = ""
    agent_id: str = ""
    alias_id: str = ""
    timeout_seconds: float = 30.0
    request_timeout_seconds: float = 45.0

    @field_validator("base_url")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @field_validator("timeout_seconds", "request_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("agent_service timeouts must be > 0 seconds")
        return v

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.agent_id and self.alias_id)


class ConversationConfig(BaseModel):
    max_prompt_length: int = 1000
    history_window: int = 3
    follow_up_context_chars: int = 100
    view_history_size: int = 10

    @field_validator("max_prompt_length", "history_window",
                     "follow_up_context_chars", "view_history_size")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("conversation limits must be >= 1")
        return v


class ConfirmationConfig(BaseModel):
    policy: str = "reply"
    precheck_keywords: list[str] = Field(
        default_factory=lambda: list(_DEFAULT_PRECHECK_KEYWORDS)
    )

    @field_validator("policy")
    @classmethod
    def _valid_policy(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in _VALID_POLICIES:
            raise ValueError(
                f"confirmation.policy must be one of {sorted(_VALID_POLICIES)}, got '{v}'"
            )
        return v

    @field_validator("precheck_keywords")
    @classmethod
    def _normalise_keywords(cls, v: list[str]) -> list[str]:
        return [k.strip().lower() for k in v if k and k.strip()]


class MemoryConfig(BaseModel):
    exchange_log_size: int = 50
    history_cache_path: str = "./data/history.json"
    history_cache_size: int = 10

    @field_validator("exchange_log_size", "history_cache_size")
    @classmethod
    def _positive_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("memory sizes must be >= 1")
        return v


class ServerConfig(BaseModel):
    http_host: str = "127.0.0.1"
    http_port: int = 8080
    ws_host: str = "127.0.0.1"
    ws_port: int = 9090
    webui_dir: str = "./webui"
    max_connections: int = 10

    @field_validator("http_port", "ws_port")
    @classmethod
    def _valid_port(cls, v: int) -> int:
        if not (0 < v < 65536):
            raise ValueError(f"server port {v} is out of range")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 100
    backup_count: int = 5
    console_output: bool = False
    json_format: bool = True

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    Parley runtime settings.

    Priority (highest to lowest):
      1. Environment variables
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Secrets from .env ---------------------------------------------------
    agent_service_api_key: Optional[str] = Field(default=None, alias="AGENT_SERVICE_API_KEY")
    ws_auth_token: Optional[str] = Field(default=None, alias="PARLEY_WS_TOKEN")

    # -- Structured config (from config.yaml) --------------------------------
    agent_service: AgentServiceConfig = Field(default_factory=AgentServiceConfig)
    conversation: ConversationConfig = Field(default_factory=ConversationConfig)
    confirmation: ConfirmationConfig = Field(default_factory=ConfirmationConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("agent_service", mode="before")
    @classmethod
    def _coerce_agent_service(cls, v: Any) -> Any:
        return AgentServiceConfig(**v) if isinstance(v, dict) else v

    @field_validator("conversation", mode="before")
    @classmethod
    def _coerce_conversation(cls, v: Any) -> Any:
        return ConversationConfig(**v) if isinstance(v, dict) else v

    @field_validator("confirmation", mode="before")
    @classmethod
    def _coerce_confirmation(cls, v: Any) -> Any:
        return ConfirmationConfig(**v) if isinstance(v, dict) else v

    @field_validator("memory", mode="before")
    @classmethod
    def _coerce_memory(cls, v: Any) -> Any:
        return MemoryConfig(**v) if isinstance(v, dict) else v

    @field_validator("server", mode="before")
    @classmethod
    def _coerce_server(cls, v: Any) -> Any:
        return ServerConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    @property
    def log_json_format(self) -> bool:
        return self.logging.json_format

    @property
    def log_console_output(self) -> bool:
        return self.logging.console_output

    @property
    def agent_service_ready(self) -> bool:
        """True when every piece the agent client needs is present."""
        return self.agent_service.is_configured and bool(self.agent_service_api_key)

    def missing_agent_service_fields(self) -> list[str]:
        """Names of the agent service settings that are still empty."""
        missing = []
        if not self.agent_service.base_url:
            missing.append("agent_service.base_url")
        if not self.agent_service.agent_id:
            missing.append("agent_service.agent_id")
        if not self.agent_service.alias_id:
            missing.append("agent_service.alias_id")
        if not self.agent_service_api_key:
            missing.append("AGENT_SERVICE_API_KEY")
        return missing

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        method catches cross-field problems. A missing agent service is NOT an
        error: the gateway answers with fallback replies until it is configured.
        """
        errors: list[str] = []

        if self.confirmation.policy == "precheck" and not self.confirmation.precheck_keywords:
            errors.append(
                "confirmation.policy is 'precheck' but confirmation.precheck_keywords "
                "is empty, so nothing would ever be gated. Add keywords or pick "
                "another policy."
            )

        if self.conversation.view_history_size > self.memory.exchange_log_size:
            errors.append(
                f"conversation.view_history_size ({self.conversation.view_history_size}) "
                f"is larger than memory.exchange_log_size "
                f"({self.memory.exchange_log_size})."
            )

        if self.server.http_port == self.server.ws_port and \
                self.server.http_host == self.server.ws_host:
            errors.append(
                f"server.http_port and server.ws_port are both {self.server.http_port} "
                f"on {self.server.http_host}."
            )

        if self.agent_service.request_timeout_seconds < self.agent_service.timeout_seconds:
            errors.append(
                "agent_service.request_timeout_seconds must be >= "
                "agent_service.timeout_seconds so the transport timeout fires first."
            )

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nParley startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = _threading.RLock()  # load_settings() re-enters it from get_settings()

_KNOWN_SECTIONS = {
    "agent_service", "conversation", "confirmation",
    "memory", "server", "logging",
}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. PARLEY_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("PARLEY_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    resolved_path = _resolve_config_path(config_path)
    yaml_data = _load_yaml(resolved_path)

    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading from the default config
    path on first use. Guarded by _singleton_lock against double init.
    """
    global _singleton
    if _singleton is not None:
        return _singleton  # fast path once set
    with _singleton_lock:
        if _singleton is None:
            load_settings()
        return _singleton  # type: ignore[return-value]
