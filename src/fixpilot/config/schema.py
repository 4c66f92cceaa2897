"""Pydantic models for configuration schema."""

import re
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Regexes matched against paths relative to the watched root
DEFAULT_IGNORED_PATTERNS = [
    r"(^|[/\\])\.",  # Dotfiles and dot-directories
    r"node_modules",
    r"(^|[/\\])(dist|build|out)([/\\]|$)",
    r"__pycache__",
]


class DaemonConfig(BaseModel):
    """Background agent (file watcher + channel server) configuration."""

    host: str = "127.0.0.1"
    port: int = Field(4000, ge=1, le=65535)
    root: Path = Path(".")
    ignored: list[str] = Field(default_factory=lambda: list(DEFAULT_IGNORED_PATTERNS))
    allowed_origins: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    @field_validator("ignored")
    @classmethod
    def validate_ignored(cls, v: list[str]) -> list[str]:
        """Ensure every ignore pattern is a valid regex."""
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid ignore pattern {pattern!r}: {e}") from e
        return v


class DashboardConfig(BaseModel):
    """Dashboard backend configuration."""

    host: str = "127.0.0.1"
    port: int = Field(3000, ge=1, le=65535)
    daemon_url: str = "ws://127.0.0.1:4000/ws"
    environment: Literal["LOCAL", "PRODUCTION"] = "LOCAL"
    patch_mode: Literal["remote", "local"] = "remote"
    project_root: Path | None = None
    apply_timeout: float = Field(15.0, gt=0, le=300)
    monitoring: bool = False
    monitor_interval: float = Field(3.0, gt=0, le=3600)

    @field_validator("daemon_url")
    @classmethod
    def validate_daemon_url(cls, v: str) -> str:
        """Only WebSocket URLs can reach the daemon."""
        if not v.startswith(("ws://", "wss://")):
            raise ValueError("daemon_url must start with ws:// or wss://")
        return v


class VerifierConfig(BaseModel):
    """Syntax verification configuration."""

    timeout: int = Field(10, ge=1, le=120, description="Per-file check timeout in seconds")
    node_path: str | None = None


class AnthropicConfig(BaseModel):
    """Anthropic-specific configuration."""

    api_key: str
    model: str = "claude-3-5-sonnet-20241022"
    max_tokens: int = 4096
    temperature: float = 0.2


class LLMConfig(BaseModel):
    """AI assistance provider configuration."""

    provider: Literal["anthropic", "offline"] = "offline"
    anthropic: AnthropicConfig | None = None
    timeout: float = Field(60.0, ge=1.0, le=600.0, description="Gateway call timeout in seconds")


class LifecycleConfig(BaseModel):
    """Health score constants and audit trail retention."""

    detect_penalty_local: int = Field(10, ge=0, le=100)
    detect_penalty_production: int = Field(20, ge=0, le=100)
    fix_recovery: int = Field(10, ge=0, le=100)
    log_retention: int = Field(100, ge=1, le=10000)


class StateConfig(BaseModel):
    """Local snapshot persistence configuration."""

    enabled: bool = True
    path: Path = Path(".fixpilot/state.json")
    namespace: str = Field("fixpilot", min_length=1)


class FileLoggingConfig(BaseModel):
    """File logging configuration."""

    enabled: bool = False
    path: Path = Path(".fixpilot/fixpilot.log")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["json", "console"] = "console"
    file: FileLoggingConfig = FileLoggingConfig()


class RetryConfig(BaseModel):
    """Reconnection policy for the dashboard channel client."""

    max_attempts: int = Field(5, ge=1, le=50)
    initial_delay: float = Field(1.0, ge=0.0, le=10.0)
    max_delay: float = Field(30.0, ge=0.0, le=300.0)


class FixPilotConfig(BaseSettings):
    """Root configuration for FixPilot."""

    daemon: DaemonConfig = DaemonConfig()
    dashboard: DashboardConfig = DashboardConfig()
    verifier: VerifierConfig = VerifierConfig()
    llm: LLMConfig = LLMConfig()
    lifecycle: LifecycleConfig = LifecycleConfig()
    state: StateConfig = StateConfig()
    logging: LoggingConfig = LoggingConfig()
    retry: RetryConfig = RetryConfig()

    model_config = SettingsConfigDict(
        env_prefix="FIXPILOT_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )
