"""Application configuration using pydantic-settings.

Loads settings from environment variables and .env file.
Evaluation defaults (models, generation options, export) loaded from evaluatoor.toml.

Priority: CLI args > Environment variables (.env) > evaluatoor.toml > hardcoded defaults
"""

import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434/api"

CONTEXT_WINDOW_DEFAULT = 4096
CONTEXT_WINDOW_MIN = 512
CONTEXT_WINDOW_MAX = 8192

TEMPERATURE_DEFAULT = 0.7
TEMPERATURE_MIN = 0.0
TEMPERATURE_MAX = 2.0


# ---------------------------------------------------------------------------
# Generation options
# ---------------------------------------------------------------------------


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class GenerationConfig(BaseModel):
    """Per-request options forwarded to the model backend.

    Out-of-range values are pulled back into bounds rather than rejected.
    Unknown keys are ignored.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    context_window_size: int = Field(
        default=CONTEXT_WINDOW_DEFAULT, alias="contextWindowSize"
    )
    temperature: float = TEMPERATURE_DEFAULT

    @field_validator("context_window_size", mode="before")
    @classmethod
    def _clamp_context_window(cls, value: Any) -> Any:
        if value is None:
            return CONTEXT_WINDOW_DEFAULT
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(_clamp(value, CONTEXT_WINDOW_MIN, CONTEXT_WINDOW_MAX))
        return value

    @field_validator("temperature", mode="before")
    @classmethod
    def _clamp_temperature(cls, value: Any) -> Any:
        if value is None:
            return TEMPERATURE_DEFAULT
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return _clamp(float(value), TEMPERATURE_MIN, TEMPERATURE_MAX)
        return value

    @classmethod
    def coerce(cls, config: "GenerationConfig | Mapping[str, Any] | None") -> "GenerationConfig":
        """Accept a config object, a plain mapping, or nothing.

        Anything that does not validate falls back to defaults.
        """
        if isinstance(config, GenerationConfig):
            return config
        if isinstance(config, Mapping):
            try:
                return cls.model_validate(dict(config))
            except ValueError:
                return cls()
        return cls()

    def to_options(self) -> dict[str, Any]:
        """Backend `options` payload."""
        return {"num_ctx": self.context_window_size, "temperature": self.temperature}


# ---------------------------------------------------------------------------
# App settings from evaluatoor.toml
# ---------------------------------------------------------------------------


class DefaultsTable(BaseModel):
    """The [defaults] table from evaluatoor.toml."""

    eval_model: str = ""
    judge_model: str = ""


class ExportTable(BaseModel):
    """The [export] table from evaluatoor.toml."""

    directory: str = "results"
    format: str = "csv"

    @field_validator("format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        value = value.lower()
        if value not in {"csv", "json"}:
            raise ValueError(f"Unsupported export format: {value}")
        return value


class DisplayTable(BaseModel):
    """The [display] table from evaluatoor.toml."""

    preview_chars: int = Field(default=100, ge=10)


class AppSettings(BaseModel):
    """Configuration loaded from evaluatoor.toml."""

    defaults: DefaultsTable = Field(default_factory=DefaultsTable)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    export: ExportTable = Field(default_factory=ExportTable)
    display: DisplayTable = Field(default_factory=DisplayTable)

    def resolve_models(
        self, eval_model: str | None, judge_model: str | None
    ) -> tuple[str, str]:
        """Explicit choice > [defaults] table. Blank results are left blank."""
        return (
            (eval_model or self.defaults.eval_model).strip(),
            (judge_model or self.defaults.judge_model).strip(),
        )


SETTINGS_TOML_PATH = Path(__file__).parent.parent / "evaluatoor.toml"

_APP_SETTINGS_CACHE: AppSettings | None = None


def load_app_settings(path: Path) -> AppSettings:
    """Read an evaluatoor.toml file. A missing file means all defaults."""
    if not path.exists():
        return AppSettings()
    with open(path, "rb") as f:
        data = tomllib.load(f)
    return AppSettings.model_validate(data)


def get_app_settings() -> AppSettings:
    """Load and cache app settings from evaluatoor.toml."""
    global _APP_SETTINGS_CACHE
    if _APP_SETTINGS_CACHE is None:
        _APP_SETTINGS_CACHE = load_app_settings(SETTINGS_TOML_PATH)
    return _APP_SETTINGS_CACHE


def reset_app_settings_cache() -> None:
    global _APP_SETTINGS_CACHE
    _APP_SETTINGS_CACHE = None


# ---------------------------------------------------------------------------
# Environment settings from .env (backend location, logging, API)
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Ollama API base, including the /api prefix
    ollama_base_url: str = DEFAULT_OLLAMA_BASE_URL

    # None = no client-side timeout; the backend may take as long as it needs
    request_timeout: float | None = None

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # HTTP API
    api_cors_origins: str = ""

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.api_cors_origins.split(",") if o.strip()]


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
