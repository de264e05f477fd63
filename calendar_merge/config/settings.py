"""Runtime settings.

``OPENAI_API_KEY`` (and any override) comes from the environment or ``.env``;
everything else defaults from ``config/main.yaml``, checked against
``config/schemas/main.schema.json``. Extra ``config/*.yaml`` files are merged
on top in alphabetical order, which is how local overrides are applied.
"""

import json
from pathlib import Path
from typing import Any, Final, Literal, cast

import yaml
from jsonschema import ValidationError as JSONSchemaValidationError
from jsonschema import validate
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from calendar_merge.config.logging_config import get_logger
from calendar_merge.domain.merge_constants import (
    DEFAULT_SUMMARY_CACHE_TTL_SECONDS,
    SUMMARY_TASK_MAX_ATTEMPTS,
)

CONFIG_DIR: Final[Path] = Path("config")
SCHEMA_DIR: Final[Path] = CONFIG_DIR / "schemas"
MAIN_CONFIG: Final[str] = "main"

LLM_MODEL_DEFAULT: Final[str] = "gpt-4o-mini"
LLM_TEMPERATURE_DEFAULT: Final[float] = 0.7
LLM_TIMEOUT_SECONDS_DEFAULT: Final[int] = 30
LLM_MAX_RETRIES_DEFAULT: Final[int] = 2

logger = cast(Any, get_logger(__name__))


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``.

    Nested mappings are merged key by key; any other value in ``override``
    replaces the one in ``base``.
    """
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def load_schema(schema_name: str, schema_dir: Path = SCHEMA_DIR) -> dict[str, Any]:
    """Read ``<schema_dir>/<schema_name>.schema.json``; missing or broken gives ``{}``."""
    schema_path = schema_dir / f"{schema_name}.schema.json"
    if not schema_path.is_file():
        return {}

    try:
        return cast(dict[str, Any], json.loads(schema_path.read_text(encoding="utf-8")))
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("config_schema_unreadable", schema=schema_name, error=str(e))
        return {}


def validate_config_section(
    config: dict[str, Any],
    schema_name: str,
    file_path: str = "",
    schema_dir: Path = SCHEMA_DIR,
) -> None:
    """Check a loaded YAML mapping against its JSON schema (skipped when absent).

    Raises:
        ValueError: The mapping does not satisfy the schema
    """
    schema = load_schema(schema_name, schema_dir)
    if not schema:
        return

    try:
        validate(instance=config, schema=schema)
    except JSONSchemaValidationError as e:
        where = f" (file: {file_path})" if file_path else ""
        raise ValueError(
            f"Config validation failed for {schema_name}{where}: {e.message}"
        ) from e


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        loaded = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (yaml.YAMLError, OSError) as e:
        logger.warning("config_file_unreadable", file=str(path), error=str(e))
        return {}
    if not isinstance(loaded, dict):
        raise ValueError(f"Config file must contain a mapping: {path}")
    return loaded


def load_all_configs(config_dir: Path = CONFIG_DIR) -> dict[str, Any]:
    """Merge ``main.yaml`` with every other ``*.yaml`` in ``config_dir``.

    ``*.example.yaml`` files are templates and are skipped.
    """
    schema_dir = config_dir / "schemas"
    main_path = config_dir / f"{MAIN_CONFIG}.yaml"
    extra_paths = sorted(
        path
        for path in config_dir.glob("*.yaml")
        if path != main_path and not path.name.endswith(".example.yaml")
    )

    merged: dict[str, Any] = {}
    loaded_files: list[str] = []
    for path in [main_path, *extra_paths]:
        if not path.is_file():
            continue
        section = _read_yaml(path)
        validate_config_section(section, MAIN_CONFIG, str(path), schema_dir)
        merged = deep_merge(merged, section)
        loaded_files.append(path.name)

    logger.debug("config_loaded", files=loaded_files)
    return merged


class Settings(BaseSettings):
    """Application settings.

    Secrets are loaded from .env file.
    Non-sensitive config is loaded from config/main.yaml with fallback to defaults.
    """

    model_config = SettingsConfigDict(
        env_file=".env" if Path(".env").exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === SECRETS (from .env) ===

    openai_api_key: SecretStr | None = Field(
        default=None, description="OpenAI API key (from .env, optional)"
    )

    # === NON-SENSITIVE CONFIG (from config/main.yaml or defaults) ===

    database_type: Literal["sqlite"] = Field(
        default="sqlite", description="Storage backend"
    )
    db_path: str = Field(
        default="data/calendar_merge.db", description="SQLite database path"
    )

    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=False, description="Emit JSON logs")

    summarizer_use_mock: bool = Field(
        default=True, description="Use the deterministic summarizer instead of OpenAI"
    )
    summary_async_enabled: bool = Field(
        default=True, description="Dispatch summaries to the background worker"
    )
    summary_task_max_attempts: int = Field(
        default=SUMMARY_TASK_MAX_ATTEMPTS, ge=1, description="Attempts per summary job"
    )
    summary_cache_enabled: bool = Field(default=True, description="Cache summaries")
    summary_cache_ttl_seconds: int = Field(
        default=DEFAULT_SUMMARY_CACHE_TTL_SECONDS,
        ge=0,
        description="Summary cache TTL in seconds (0 = no expiry)",
    )

    llm_model: str = Field(default=LLM_MODEL_DEFAULT, description="OpenAI model")
    llm_temperature: float = Field(
        default=LLM_TEMPERATURE_DEFAULT, ge=0.0, le=2.0, description="Sampling temperature"
    )
    llm_timeout_seconds: int = Field(
        default=LLM_TIMEOUT_SECONDS_DEFAULT, ge=1, description="Request timeout"
    )
    llm_max_retries: int = Field(
        default=LLM_MAX_RETRIES_DEFAULT, ge=0, description="Retries after a failed call"
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unsupported log level: {value}")
        return normalized

    def __init__(self, **data: Any):
        """Initialize settings with auto-loaded configs from all YAML files."""
        config = load_all_configs()

        super().__init__(**data)
        self._apply_yaml_defaults(config)

    def _apply_yaml_defaults(self, config: dict[str, Any]) -> None:
        """Apply YAML-sourced defaults without overriding env-provided values."""

        fields_from_env = set(self.model_fields_set)

        def _assign(field_name: str, value: Any) -> None:
            if value is None:
                return
            if field_name in fields_from_env:
                return

            object.__setattr__(self, field_name, value)
            self.model_fields_set.add(field_name)

        database_config = config.get("database") or {}
        _assign("database_type", database_config.get("type"))
        _assign("db_path", database_config.get("path"))

        logging_config = config.get("logging") or {}
        level = logging_config.get("level")
        _assign("log_level", level.upper() if isinstance(level, str) else None)
        _assign("json_logs", logging_config.get("json"))

        summarizer_config = config.get("summarizer") or {}
        _assign("summarizer_use_mock", summarizer_config.get("use_mock"))
        _assign("summary_async_enabled", summarizer_config.get("async_enabled"))
        _assign("summary_task_max_attempts", summarizer_config.get("task_max_attempts"))

        cache_config = summarizer_config.get("cache") or {}
        _assign("summary_cache_enabled", cache_config.get("enabled"))
        _assign("summary_cache_ttl_seconds", cache_config.get("ttl_seconds"))

        llm_config = config.get("llm") or {}
        _assign("llm_model", llm_config.get("model"))
        _assign("llm_temperature", llm_config.get("temperature"))
        _assign("llm_timeout_seconds", llm_config.get("timeout_seconds"))
        _assign("llm_max_retries", llm_config.get("max_retries"))

    @property
    def openai_enabled(self) -> bool:
        """True when a real OpenAI summarizer can be built."""
        if self.summarizer_use_mock or self.openai_api_key is None:
            return False
        return bool(self.openai_api_key.get_secret_value().strip())


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create global settings instance.

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
