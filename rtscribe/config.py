"""Runtime configuration for rtscribe, read from ``RTSCRIBE_*`` variables and ``.env``."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .data.models import AudioEncoding, SessionCredentials

DEFAULT_ENDPOINT = "wss://office-api-ast-dx.iflyaisol.com/ast/communicate/v1"
ENV_PREFIX = "RTSCRIBE_"

SECRET_FIELDS = frozenset({"access_key_secret"})


class Settings(BaseSettings):
    """Credentials, recognition parameters and session tuning."""

    app_id: Optional[str] = None
    access_key_id: Optional[str] = None
    access_key_secret: Optional[str] = None
    endpoint: str = DEFAULT_ENDPOINT
    lang: str = "autodialect"
    audio_encode: AudioEncoding = "pcm_s16le"
    sample_rate: int = 16_000
    chunk_bytes: int = Field(default=1280, gt=0)
    send_interval: float = Field(default=0.04, ge=0)
    connect_timeout: float = Field(default=10.0, gt=0)
    handshake_policy: Literal["immediate", "await_started", "grace"] = "immediate"
    handshake_grace: float = Field(default=1.5, ge=0)
    final_timeout: float = Field(default=10.0, gt=0)
    ffmpeg_binary: str = "ffmpeg"

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        case_sensitive=False,
    )

    def credentials(self, **overrides: Any) -> SessionCredentials:
        """Build session credentials; ``None`` overrides keep the configured value."""

        values: Dict[str, Any] = {
            "app_id": self.app_id or "",
            "access_key_id": self.access_key_id or "",
            "access_key_secret": self.access_key_secret or "",
            "lang": self.lang,
            "audio_encode": self.audio_encode,
            "sample_rate": self.sample_rate,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return SessionCredentials(**values)


_settings: Optional[Settings] = None


@dataclass
class EnvironmentSetting:
    field: str
    env_name: str
    value: Any
    default: Any
    annotation: Any

    @property
    def is_secret(self) -> bool:
        return self.field in SECRET_FIELDS


def env_name_for(field: str) -> str:
    return f"{ENV_PREFIX}{field}".upper()


def list_environment_settings(settings: Optional[Settings] = None) -> Iterator[EnvironmentSetting]:
    """Describe each setting with its variable name, current value and default."""

    current = settings or get_settings()
    for name, info in Settings.model_fields.items():
        yield EnvironmentSetting(
            field=name,
            env_name=env_name_for(name),
            value=getattr(current, name),
            default=info.get_default(call_default_factory=True),
            annotation=info.annotation,
        )


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


__all__ = [
    "DEFAULT_ENDPOINT",
    "ENV_PREFIX",
    "EnvironmentSetting",
    "Settings",
    "env_name_for",
    "get_settings",
    "list_environment_settings",
]
