"""Settings loading and validation."""

import json
import os
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from stepflow.domain.errors import ConfigError
from stepflow.domain.value_object import ExecutionOptions

ENV_PREFIX = "STEPFLOW_"


class ExecutionSettings(BaseModel):
    """Engine time bounds, in seconds. None disables a bound."""
    step_timeout: Optional[float] = Field(default=300.0, gt=0)
    workflow_timeout: Optional[float] = Field(default=None, gt=0)

    def to_options(self) -> ExecutionOptions:
        return ExecutionOptions(step_timeout=self.step_timeout, workflow_timeout=self.workflow_timeout)


class StoreSettings(BaseModel):
    """Result store backend."""
    backend: Literal["in_memory", "sqlite"] = Field(default="in_memory")
    db_path: str = Field(default=":memory:")


class ServerSettings(BaseModel):
    """HTTP API settings."""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080, ge=1, le=65535)
    # bearer token -> user id
    api_tokens: dict[str, str] = Field(default_factory=dict)


class BrowserSettings(BaseModel):
    """Playwright settings for interface steps."""
    headless: bool = Field(default=True)
    browser: Literal["chromium", "firefox", "webkit"] = Field(default="chromium")
    default_timeout_ms: int = Field(default=30000, ge=100)
    screenshot_dir: str = Field(default="./data/screenshots")


class GraphSettings(BaseModel):
    """Microsoft Graph access for SharePoint, OneDrive and cloud steps."""
    base_url: str = Field(default="https://graph.microsoft.com/v1.0")
    access_token: Optional[str] = Field(default=None)
    timeout_seconds: float = Field(default=30.0, gt=0)


class SmtpSettings(BaseModel):
    """Outgoing mail for email destinations."""
    host: Optional[str] = Field(default=None)
    port: int = Field(default=587, ge=1, le=65535)
    username: Optional[str] = Field(default=None)
    password: Optional[str] = Field(default=None)
    use_tls: bool = Field(default=True)
    sender: str = Field(default="stepflow@localhost")


class LoggingSettings(BaseModel):
    """structlog output."""
    level: str = Field(default="INFO")
    format: Literal["console", "json"] = Field(default="console")


class Settings(BaseModel):
    """Top-level settings."""
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    graph: GraphSettings = Field(default_factory=GraphSettings)
    smtp: SmtpSettings = Field(default_factory=SmtpSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def _load_file(path: Path) -> dict[str, Any]:
    """Load a YAML or JSON settings file."""
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}", config_path=str(path))

    try:
        content = path.read_text()
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(content) or {}
        elif path.suffix == ".json":
            return json.loads(content)
        else:
            raise ConfigError(f"Unsupported config format: {path.suffix}", config_path=str(path))
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML: {e}", config_path=str(path))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON: {e}", config_path=str(path))


def _parse_env_value(raw: str) -> Any:
    # JSON literals (numbers, booleans, objects) pass through; anything else stays a string
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def _env_overrides(environ: dict[str, str]) -> dict[str, Any]:
    """Collect ``STEPFLOW_SECTION__KEY=value`` variables into a nested dict."""
    overrides: dict[str, Any] = {}
    for name, raw in environ.items():
        if not name.startswith(ENV_PREFIX) or "__" not in name:
            continue
        section, key = name[len(ENV_PREFIX):].lower().split("__", 1)
        overrides.setdefault(section, {})[key] = _parse_env_value(raw)
    return overrides


def _merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(path: Optional[str] = None, environ: Optional[dict[str, str]] = None) -> Settings:
    """
    Load settings from ``.env``, an optional file and the environment.

    Precedence: environment variables over the file over defaults.

    :param path: YAML or JSON settings file; defaults to ``$STEPFLOW_CONFIG``
    :type path: str | None
    :param environ: Environment mapping; defaults to ``os.environ``
    :type environ: dict[str, str] | None
    :returns: Validated settings
    :rtype: Settings
    :raises ConfigError: If the file cannot be read or validation fails
    """
    if environ is None:
        load_dotenv()
        environ = dict(os.environ)

    path = path or environ.get(f"{ENV_PREFIX}CONFIG")
    data = _load_file(Path(path)) if path else {}
    data = _merge(data, _env_overrides(environ))

    try:
        return Settings(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings: {e}", config_path=path)
