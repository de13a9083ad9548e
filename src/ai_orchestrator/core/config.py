"""Orchestrator configuration management helpers."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

from ai_orchestrator.providers.gemini_provider import (
    DEFAULT_GEMINI_MODEL,
    GEMINI_BASE_URL,
)
from ai_orchestrator.providers.openai_provider import (
    DEFAULT_OPENAI_MODEL,
    OPENAI_BASE_URL,
)


def _str_to_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    value = value.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return default


def _str_to_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Invalid integer value: {value}") from exc


def _str_to_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Invalid float value: {value}") from exc


def _empty_to_none(value: str | None) -> Optional[str]:
    if value is None or not value.strip():
        return None
    return value.strip()


@dataclass(frozen=True)
class OrchestratorConfig:
    """Immutable configuration object loaded from env or files.

    Missing API keys are not an error: the orchestrator degrades to whichever
    provider is configured, or returns failure results when neither is.
    """

    openai_api_key: Optional[str] = field(default=None, repr=False)
    gemini_api_key: Optional[str] = field(default=None, repr=False)
    primary_model: str = DEFAULT_OPENAI_MODEL
    secondary_model: str = DEFAULT_GEMINI_MODEL
    openai_base_url: str = OPENAI_BASE_URL
    gemini_base_url: str = GEMINI_BASE_URL
    rate_limit: int = 20
    rate_window_seconds: int = 60
    rate_store: str = "sqlite"
    redis_url: Optional[str] = None
    database_path: str = "orchestrator.db"
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    retry_jitter: bool = False
    timeout_seconds: float = 15.0
    enable_logging: bool = True

    _ALLOWED_RATE_STORES = {"memory", "sqlite", "redis"}

    def __post_init__(self) -> None:
        self.validate()

    @classmethod
    def from_env(cls) -> "OrchestratorConfig":
        defaults = cls()
        return cls(
            openai_api_key=_empty_to_none(os.getenv("OPENAI_API_KEY")),
            gemini_api_key=_empty_to_none(os.getenv("GEMINI_API_KEY")),
            primary_model=os.getenv(
                "ORCHESTRATOR_PRIMARY_MODEL", defaults.primary_model
            ),
            secondary_model=os.getenv(
                "ORCHESTRATOR_SECONDARY_MODEL", defaults.secondary_model
            ),
            openai_base_url=os.getenv(
                "ORCHESTRATOR_OPENAI_BASE_URL", defaults.openai_base_url
            ),
            gemini_base_url=os.getenv(
                "ORCHESTRATOR_GEMINI_BASE_URL", defaults.gemini_base_url
            ),
            rate_limit=_str_to_int(
                os.getenv("ORCHESTRATOR_RATE_LIMIT"), defaults.rate_limit
            ),
            rate_window_seconds=_str_to_int(
                os.getenv("ORCHESTRATOR_RATE_WINDOW_SECONDS"),
                defaults.rate_window_seconds,
            ),
            rate_store=os.getenv("ORCHESTRATOR_RATE_STORE", defaults.rate_store),
            redis_url=_empty_to_none(os.getenv("ORCHESTRATOR_REDIS_URL")),
            database_path=os.getenv(
                "ORCHESTRATOR_DATABASE_PATH", defaults.database_path
            ),
            max_attempts=_str_to_int(
                os.getenv("ORCHESTRATOR_MAX_ATTEMPTS"), defaults.max_attempts
            ),
            base_delay_seconds=_str_to_float(
                os.getenv("ORCHESTRATOR_BASE_DELAY_SECONDS"),
                defaults.base_delay_seconds,
            ),
            max_delay_seconds=_str_to_float(
                os.getenv("ORCHESTRATOR_MAX_DELAY_SECONDS"),
                defaults.max_delay_seconds,
            ),
            retry_jitter=_str_to_bool(
                os.getenv("ORCHESTRATOR_RETRY_JITTER"), defaults.retry_jitter
            ),
            timeout_seconds=_str_to_float(
                os.getenv("ORCHESTRATOR_TIMEOUT_SECONDS"), defaults.timeout_seconds
            ),
            enable_logging=_str_to_bool(
                os.getenv("ORCHESTRATOR_ENABLE_LOGGING"), defaults.enable_logging
            ),
        )

    @classmethod
    def from_file(cls, path: str) -> "OrchestratorConfig":
        file_path = Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        raw = file_path.read_text()
        data: Dict[str, Any]
        suffix = file_path.suffix.lower()
        if suffix == ".json":
            data = json.loads(raw)
        elif suffix in {".yaml", ".yml"}:
            data = cls._load_yaml(raw)
        else:
            raise ValueError("Unsupported config format. Use JSON or YAML.")
        return cls(**cls._merge_with_defaults(data))

    def validate(self) -> None:
        if self.rate_store not in self._ALLOWED_RATE_STORES:
            raise ValueError(
                f"rate_store must be one of {sorted(self._ALLOWED_RATE_STORES)}"
            )
        if self.rate_store == "redis" and not self.redis_url:
            raise ValueError("redis_url is required when rate_store is 'redis'")
        if self.rate_limit < 1:
            raise ValueError("rate_limit must be at least 1")
        if self.rate_window_seconds < 1:
            raise ValueError("rate_window_seconds must be at least 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must be non-negative")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be greater than zero")
        if not self.primary_model or not self.secondary_model:
            raise ValueError("primary_model and secondary_model must be non-empty")

    @classmethod
    def _merge_with_defaults(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
        defaults = cls()
        return {name: data.get(name, getattr(defaults, name)) for name in known}

    @staticmethod
    def _load_yaml(raw: str) -> Dict[str, Any]:
        try:
            import yaml  # type: ignore
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("PyYAML is required to parse YAML config files") from exc
        return yaml.safe_load(raw) or {}
