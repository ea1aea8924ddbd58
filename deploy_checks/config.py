"""Configuration management for deployment verification."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .probe import DEFAULT_SNIPPET_CHARS, ProbeTarget


class TargetConfig(BaseModel):
    """One endpoint to verify. A bare string in YAML is shorthand for ``{path: <string>}``."""
    path: str = Field(default="/", description="URL path appended to the base URL")
    name: Optional[str] = Field(default=None, description="Display name in reports")
    base_url: Optional[str] = Field(default=None, description="Overrides the session base URL")
    production_markers: list[str] = Field(default_factory=list, description="All must appear for healthy")
    placeholder_markers: list[str] = Field(default_factory=list, description="Any marks a placeholder build")

    @field_validator("production_markers", "placeholder_markers", mode="before")
    @classmethod
    def _coerce_markers(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value


class TelegramSettings(BaseModel):
    enabled: bool = Field(default=True, description="Send the final report when credentials are present")
    bot_token: Optional[str] = Field(default=None, description="Telegram bot token")
    chat_id: Optional[str] = Field(default=None, description="Telegram chat ID")

    @property
    def configured(self) -> bool:
        return bool(self.enabled and self.bot_token and self.chat_id)


class VerifierConfig(BaseModel):
    """Main configuration for a verification session."""

    base_url: Optional[str] = Field(default=None, description="Service root, e.g. https://app.example.com")
    targets: list[TargetConfig] = Field(default_factory=list, description="Endpoints, probed in this order")

    max_attempts: int = Field(default=20, gt=0, description="Rounds before giving up")
    interval_seconds: float = Field(default=30.0, ge=0, description="Sleep between rounds")
    timeout_seconds: float = Field(default=10.0, gt=0, description="Per-probe deadline")
    snippet_chars: int = Field(default=DEFAULT_SNIPPET_CHARS, gt=0, description="Body prefix kept per probe")

    reports_directory: str = Field(default="reports", description="Where report artifacts are written")
    write_markdown: bool = Field(default=False, description="Also write a markdown report")
    log_level: str = Field(default="INFO", description="Logging level")

    telegram: TelegramSettings = Field(default_factory=TelegramSettings)

    @field_validator("targets", mode="before")
    @classmethod
    def _normalize_targets(cls, value: Any) -> Any:
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValueError("targets must be a list")
        out: list[Any] = []
        for idx, entry in enumerate(value):
            if isinstance(entry, str):
                if not entry.strip():
                    raise ValueError(f"targets[{idx}] is empty")
                out.append({"path": entry.strip()})
            else:
                out.append(entry)
        return out

    @model_validator(mode="after")
    def _every_target_has_a_base(self) -> "VerifierConfig":
        for idx, target in enumerate(self.targets):
            if not (target.base_url or self.base_url):
                raise ValueError(f"targets[{idx}] has no base_url and no top-level base_url is set")
        return self

    def probe_targets(self) -> list[ProbeTarget]:
        return [
            ProbeTarget(
                base_url=str(t.base_url or self.base_url),
                path=t.path,
                production_markers=tuple(t.production_markers),
                placeholder_markers=tuple(t.placeholder_markers),
                name=t.name,
            )
            for t in self.targets
        ]


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError("Config YAML must be a mapping")
    return data


def load_config(config_path: Optional[str | Path] = None) -> VerifierConfig:
    """Load configuration from a YAML file, then apply environment overrides."""
    if config_path is None:
        config_path = os.getenv("DEPLOY_VERIFY_CONFIG", "config.yaml")
    path = Path(config_path)

    config_data: dict[str, Any] = _read_yaml(path) if path.exists() else {}

    env_overrides = {
        "base_url": os.getenv("DEPLOY_VERIFY_BASE_URL"),
        "max_attempts": os.getenv("DEPLOY_VERIFY_MAX_ATTEMPTS"),
        "interval_seconds": os.getenv("DEPLOY_VERIFY_INTERVAL_SECONDS"),
        "timeout_seconds": os.getenv("DEPLOY_VERIFY_TIMEOUT_SECONDS"),
        "log_level": os.getenv("LOG_LEVEL"),
    }
    for key, value in env_overrides.items():
        if value is not None and value.strip():
            config_data[key] = value.strip()

    telegram_data = config_data.get("telegram") or {}
    if not isinstance(telegram_data, dict):
        raise ValueError("telegram must be a mapping")
    telegram_data = dict(telegram_data)
    for key, env_name in (("bot_token", "TELEGRAM_BOT_TOKEN"), ("chat_id", "TELEGRAM_CHAT_ID")):
        value = os.getenv(env_name)
        if value:
            telegram_data[key] = value
    config_data["telegram"] = telegram_data

    return VerifierConfig(**config_data)
