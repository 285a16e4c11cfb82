"""Configuration models and YAML loader."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from gmail_slack_forwarder.exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = Path("~/.gmail-slack-forwarder/config.yaml")


def _expand(path: str | Path) -> Path:
    return Path(path).expanduser().resolve()


class Account(BaseModel):
    """A Gmail account to forward from."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    display_name: str = Field(min_length=1)
    token_path: Path

    @field_validator("token_path")
    def expand_token_path(cls, v: Path) -> Path:
        return _expand(v)


class SlackConfig(BaseModel):
    bot_token_env: str = "SLACK_BOT_TOKEN"
    post_channel_id: str = Field(min_length=1)


class FormatConfig(BaseModel):
    """How forwarded emails are rendered in Slack."""

    include_account_header: bool = True
    body_max_chars: int = Field(default=3000, ge=100, le=3000)
    split_long_body_into_thread: bool = False
    include_gmail_permalink: bool = False


class AttachmentConfig(BaseModel):
    enabled: bool = True
    upload_as_thread_reply: bool = True


class DedupeConfig(BaseModel):
    sqlite_path: Path = Path("~/.gmail-slack-forwarder/state.db")
    retention_days: int = Field(default=7, ge=1, le=365)

    @field_validator("sqlite_path")
    def expand_sqlite_path(cls, v: Path) -> Path:
        return _expand(v)


class OAuthConfig(BaseModel):
    redirect_port: int = Field(
        default_factory=lambda: int(os.environ.get("OAUTH_REDIRECT_PORT", "3333")),
        ge=1,
        le=65535,
    )
    callback_timeout_seconds: float = Field(default=300, gt=0)


class ForwarderConfig(BaseModel):
    """Root configuration, validated once at startup."""

    poll_interval_seconds: int = Field(default=30, ge=10, le=300)
    max_messages_per_poll: int = Field(default=20, ge=1, le=100)
    gmail_query: str = "in:inbox -label:slack_done"
    credentials_path: Path = Path("~/.gmail-slack-forwarder/credentials.json")
    log_level: str = "INFO"
    slack: SlackConfig
    accounts: list[Account] = Field(min_length=1)
    format: FormatConfig = Field(default_factory=FormatConfig)
    attachments: AttachmentConfig = Field(default_factory=AttachmentConfig)
    dedupe: DedupeConfig = Field(default_factory=DedupeConfig)
    oauth: OAuthConfig = Field(default_factory=OAuthConfig)

    @field_validator("credentials_path")
    def expand_credentials_path(cls, v: Path) -> Path:
        return _expand(v)

    @field_validator("log_level")
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("accounts")
    def validate_unique_names(cls, v: list[Account]) -> list[Account]:
        names = [account.name for account in v]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate account names: {', '.join(duplicates)}")
        return v

    def get_account(self, name: str) -> Account | None:
        for account in self.accounts:
            if account.name == name:
                return account
        return None


def load_config(config_path: Path | str | None = None) -> ForwarderConfig:
    """Load and validate the YAML config.

    Resolution order: explicit ``config_path``, ``$CONFIG_PATH``, then
    ``~/.gmail-slack-forwarder/config.yaml``.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid.
    """
    raw_path = config_path or os.environ.get("CONFIG_PATH") or DEFAULT_CONFIG_PATH
    path = _expand(raw_path)

    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (yaml.YAMLError, OSError) as e:
        raise ConfigurationError(f"Cannot read config {path}: {e}") from e

    try:
        return ForwarderConfig(**data)
    except ValidationError as e:
        errors = "\n".join(
            f"  - {'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(f"Invalid config:\n{errors}") from e
    except TypeError as e:
        raise ConfigurationError(f"Invalid config {path}: {e}") from e


def get_slack_bot_token(config: ForwarderConfig) -> str:
    token = os.environ.get(config.slack.bot_token_env)
    if not token:
        raise ConfigurationError(
            f"Environment variable {config.slack.bot_token_env} is not set"
        )
    return token
