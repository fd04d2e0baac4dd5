"""Configuration management for Journey Warden."""

from enum import Enum
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import FixType, ForbiddenFixType

# Load .env file at import time
load_dotenv()


def _default_allowed_fixes() -> list[str]:
    return [
        FixType.SELECTOR_REFINE.value,
        FixType.ADD_EXACT.value,
        FixType.MISSING_AWAIT.value,
        FixType.NAVIGATION_WAIT.value,
        FixType.WEB_FIRST_ASSERTION.value,
    ]


def _default_forbidden_fixes() -> list[str]:
    return [f.value for f in ForbiddenFixType]


class HealingConfig(BaseModel):
    """Healing behavior configuration."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    max_attempts: int = Field(default=3, ge=0)
    allowed_fixes: list[str] = Field(default_factory=_default_allowed_fixes)
    forbidden_fixes: list[str] = Field(default_factory=_default_forbidden_fixes)
    max_timeout_increase: int = Field(default=30_000, gt=0)  # ms

    @field_validator("allowed_fixes", "forbidden_fixes", mode="before")
    @classmethod
    def _plain_strings(cls, value):
        # Accept enum members as well as their wire strings
        if isinstance(value, (list, tuple)):
            return [v.value if isinstance(v, Enum) else v for v in value]
        return value


DEFAULT_HEALING_CONFIG = HealingConfig()


class RunnerConfig(BaseModel):
    """How the Playwright CLI is located and invoked."""

    command: list[str] = Field(default_factory=lambda: ["npx", "playwright"])
    cwd: Path | None = None
    project: str | None = None
    workers: int | None = None
    retries: int | None = None
    timeout: int | None = None  # per-test timeout, ms
    output_dir: Path | None = None


class LangfuseConfig(BaseModel):
    """Langfuse observability configuration."""

    enabled: bool = False
    public_key: str | None = None
    secret_key: str | None = None
    host: str | None = None


class Config(BaseSettings):
    """Main configuration for Journey Warden."""

    model_config = SettingsConfigDict(
        env_prefix="JOURNEY_WARDEN_",
        env_nested_delimiter="__",
    )

    # Core settings
    output_dir: Path = Path(".journey_warden/heal-logs")
    log_level: str = "INFO"

    # Sub-configurations
    healing: HealingConfig = Field(default_factory=HealingConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    langfuse: LangfuseConfig = Field(default_factory=LangfuseConfig)


CONFIG_FILE_NAMES = ["journey_warden.yaml", "journey_warden.yml", ".journey_warden.yaml"]


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML file and environment variables."""
    config_data: dict = {}

    # Try to find config file
    if config_path is None:
        for name in CONFIG_FILE_NAMES:
            if Path(name).exists():
                config_path = Path(name)
                break

    if config_path and config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if raw and "journey_warden" in raw:
                config_data = raw["journey_warden"]
            elif raw:
                config_data = raw

    return Config(**config_data)
