"""Decoder settings and per-decoder configuration snapshot."""

import os
from dataclasses import dataclass
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_OLLAMA_BASE_URL = "http://127.0.0.1:11434"


def normalize_base_url(value: object) -> str:
    """Accept bare host:port values and strip trailing slashes."""
    s = str(value or "").strip().rstrip("/")
    if not s:
        return DEFAULT_OLLAMA_BASE_URL
    if s.startswith(("http://", "https://")):
        return s
    if ":" in s:  # e.g. 127.0.0.1:11434
        return f"http://{s}"
    return DEFAULT_OLLAMA_BASE_URL


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env"), env_file_encoding="utf-8")

    # App
    APP_NAME: str = "ollama-stream-decoder"
    ENVIRONMENT: str = "development"  # development | production | test

    # Upstream model server
    OLLAMA_BASE_URL: str = DEFAULT_OLLAMA_BASE_URL
    REQUEST_CONNECT_TIMEOUT_SECONDS: float = 5.0

    # Liveness monitor (seconds)
    HEARTBEAT_INTERVAL_SECONDS: float = 5.0
    STALL_WARN_SECONDS: float = 20.0
    STALL_RECOVERY_MIN_CHARS: int = 50

    # Extraction thresholds (characters)
    MIN_FRAGMENT_CHARS: int = 1
    BRUTE_FORCE_MIN_CHARS: int = 15
    RECOVERY_STRIP_MIN_CHARS: int = 20
    AGGRESSIVE_MATCH_MIN_CHARS: int = 10

    @field_validator("OLLAMA_BASE_URL", mode="before")
    @classmethod
    def _normalize_base_url(cls, v: object) -> str:
        return normalize_base_url(v)

    @model_validator(mode="after")
    def _validate_intervals(self) -> "Settings":
        """Reject timer settings that would never fire or fire continuously."""
        if self.HEARTBEAT_INTERVAL_SECONDS <= 0:
            raise ValueError("HEARTBEAT_INTERVAL_SECONDS must be positive")
        if self.STALL_WARN_SECONDS <= 0:
            raise ValueError("STALL_WARN_SECONDS must be positive")
        if self.MIN_FRAGMENT_CHARS < 1:
            raise ValueError("MIN_FRAGMENT_CHARS must be at least 1")
        return self


@lru_cache
def get_settings() -> Settings:
    env = os.getenv("ENVIRONMENT", "development").lower()
    if env not in {"development", "production", "test"}:
        raise ValueError("ENVIRONMENT must be 'development', 'production', or 'test'")

    if env == "production":
        env_file = ".env.prod"
    elif env == "development":
        env_file = ".env.dev"
    else:
        # test environment - no env file needed, use defaults
        env_file = ""
    # The Settings initializer accepts a runtime-only `_env_file` kwarg used by
    # pydantic-settings; mypy's stub doesn't allow this call argument.
    return Settings(_env_file=env_file)  # type: ignore[call-arg]


@dataclass(frozen=True, slots=True)
class DecoderConfig:
    """Thresholds a single StreamDecoder runs with.

    Snapshotted from `Settings` when the decoder is built so a session never
    observes a threshold change mid-stream.
    """

    heartbeat_interval: float = 5.0
    stall_warn_after: float = 20.0
    stall_recovery_min_chars: int = 50
    min_fragment_chars: int = 1
    brute_force_min_chars: int = 15
    recovery_strip_min_chars: int = 20
    aggressive_match_min_chars: int = 10

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "DecoderConfig":
        s = settings or get_settings()
        return cls(
            heartbeat_interval=s.HEARTBEAT_INTERVAL_SECONDS,
            stall_warn_after=s.STALL_WARN_SECONDS,
            stall_recovery_min_chars=s.STALL_RECOVERY_MIN_CHARS,
            min_fragment_chars=s.MIN_FRAGMENT_CHARS,
            brute_force_min_chars=s.BRUTE_FORCE_MIN_CHARS,
            recovery_strip_min_chars=s.RECOVERY_STRIP_MIN_CHARS,
            aggressive_match_min_chars=s.AGGRESSIVE_MATCH_MIN_CHARS,
        )
