"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from campchat.core.types import ParticipantMode, TransportKind


class ApiConfig(BaseModel):
    base_url: str = "http://localhost:4000/api"
    socket_url: Optional[str] = None  # defaults to base_url without /api, ws scheme
    timeout: float = 30.0

    def resolved_socket_url(self) -> str:
        if self.socket_url:
            return self.socket_url.rstrip("/")
        base = re.sub(r"/api/?$", "", self.base_url.rstrip("/"))
        return re.sub(r"^http", "ws", base)


class WidgetConfig(BaseModel):
    """Embedding contract of the chat widget."""

    campground_id: str = ""
    is_guest: bool = True
    guest_id: Optional[str] = None
    auth_token: Optional[str] = None
    initial_message: Optional[str] = None
    position: Literal["bottom-right", "bottom-left", "inline"] = "bottom-right"
    use_streaming: bool = True
    streaming_transport: Literal["socket", "sse"] = "sse"

    @field_validator("guest_id", "auth_token", "initial_message", mode="before")
    @classmethod
    def _unset_to_none(cls, value: object) -> object:
        """Blank values and unresolved ${VAR} placeholders mean "not provided"."""
        if isinstance(value, str) and (not value.strip() or _ENV_VAR_PATTERN.fullmatch(value.strip())):
            return None
        return value

    @property
    def mode(self) -> ParticipantMode:
        return ParticipantMode.GUEST if self.is_guest else ParticipantMode.STAFF

    @property
    def transport(self) -> TransportKind:
        if not self.use_streaming:
            return TransportKind.REQUEST
        return TransportKind(self.streaming_transport)


class ReconnectConfig(BaseModel):
    initial_delay: float = 0.5
    max_delay: float = 15.0
    multiplier: float = 2.0
    max_attempts: int = 0  # 0 = retry forever


class AttachmentConfig(BaseModel):
    max_bytes: int = 10 * 1024 * 1024
    allowed_types: dict[str, list[str]] = Field(
        default_factory=lambda: {
            "image/jpeg": [".jpg", ".jpeg"],
            "image/png": [".png"],
            "image/gif": [".gif"],
            "image/webp": [".webp"],
            "application/pdf": [".pdf"],
        }
    )


class HistoryConfig(BaseModel):
    page_size: int = 20
    message_page_size: int = 50


class ShellConfig(BaseModel):
    scroll_threshold_px: int = 80
    auto_open_artifacts_staff: bool = True
    auto_open_artifacts_guest: bool = False


class AppConfig(BaseModel):
    log_level: str = "INFO"
    api: ApiConfig = Field(default_factory=ApiConfig)
    widget: WidgetConfig = Field(default_factory=WidgetConfig)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    attachments: AttachmentConfig = Field(default_factory=AttachmentConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    shell: ShellConfig = Field(default_factory=ShellConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        value = os.environ.get(match.group(1))
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "campchat.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    interpolated = _interpolate_env_vars(config_file.read_text(encoding="utf-8"))
    data = yaml.safe_load(interpolated) or {}
    return AppConfig(**data)


def load_config_or_default(
    config_path: str | Path = "campchat.yaml", env_path: str | Path = ".env"
) -> AppConfig:
    """Like load_config, but fall back to defaults seeded from CAMPCHAT_* variables."""
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError:
        pass

    widget = WidgetConfig(
        campground_id=os.environ.get("CAMPCHAT_CAMPGROUND_ID", ""),
        is_guest=os.environ.get("CAMPCHAT_MODE", "guest") != "staff",
        guest_id=os.environ.get("CAMPCHAT_GUEST_ID") or None,
        auth_token=os.environ.get("CAMPCHAT_AUTH_TOKEN") or None,
    )
    api = ApiConfig(base_url=os.environ.get("CAMPCHAT_API_BASE", ApiConfig().base_url))
    return AppConfig(api=api, widget=widget)
