from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List
from urllib.parse import urlparse


def _as_bool(value: str | None, default: bool) -> bool:
    """Interpret common truthy / falsy strings while providing a default."""

    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: str | None, default: int, *, minimum: int = 0) -> int:
    try:
        return max(int(value), minimum) if value not in (None, "") else default
    except (TypeError, ValueError):
        return default


def _as_float(value: str | None, default: float, *, minimum: float = 0.0) -> float:
    try:
        return max(float(value), minimum) if value not in (None, "") else default
    except (TypeError, ValueError):
        return default


def mask_secret(value: str | None, *, visible: int = 6) -> str:
    """Render a credential as a short prefix so it can appear in diagnostics."""

    if not value:
        return "NOT_SET"
    if len(value) <= visible:
        return "…"
    return f"{value[:visible]}…"


def _parse_allowed_origins(raw: str | None) -> List[str]:
    """Normalise comma-separated origins into values accepted by CORSMiddleware."""

    if not raw:
        return ["*"]

    cleaned: List[str] = []
    for origin in raw.split(","):
        value = origin.strip()
        if not value:
            continue
        if value == "*":
            return ["*"]

        parsed = urlparse(value)
        if parsed.scheme and parsed.netloc:
            normalised = f"{parsed.scheme}://{parsed.netloc}"
        else:
            normalised = value.rstrip("/")

        if normalised not in cleaned:
            cleaned.append(normalised)

    return cleaned or ["*"]


@dataclass(frozen=True)
class ReplicateConfig:
    api_token: str | None = None
    openai_api_key: str | None = None
    api_url: str = "https://api.replicate.com/v1"
    primary_model: str = "openai/gpt-image-1"
    backup_model: str = "google/imagen-4"
    timeout: float = 45.0
    backup_max_parallel: int = 4

    @property
    def is_configured(self) -> bool:
        return bool(self.api_token)

    @property
    def primary_configured(self) -> bool:
        # gpt-image-1 on Replicate is billed against the caller's OpenAI key.
        return bool(self.api_token and self.openai_api_key)

    @classmethod
    def from_env(cls) -> "ReplicateConfig":
        return cls(
            api_token=os.getenv("REPLICATE_API_TOKEN") or None,
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            api_url=(os.getenv("REPLICATE_API_URL") or "https://api.replicate.com/v1").rstrip("/"),
            primary_model=os.getenv("PRIMARY_IMAGE_MODEL") or "openai/gpt-image-1",
            backup_model=os.getenv("BACKUP_IMAGE_MODEL") or "google/imagen-4",
            timeout=_as_float(os.getenv("REPLICATE_TIMEOUT_SECONDS"), 45.0, minimum=1.0),
            backup_max_parallel=_as_int(os.getenv("BACKUP_MAX_PARALLEL"), 4, minimum=1),
        )


@dataclass(frozen=True)
class PhotoRoomConfig:
    api_key: str | None = None
    expand_url: str = "https://sdk.photoroom.com/v1/segment"
    edit_url: str = "https://image-api.photoroom.com/v2/edit"
    timeout: float = 30.0

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def from_env(cls) -> "PhotoRoomConfig":
        return cls(
            api_key=os.getenv("PHOTOROOM_API_KEY") or None,
            expand_url=os.getenv("PHOTOROOM_EXPAND_URL") or "https://sdk.photoroom.com/v1/segment",
            edit_url=os.getenv("PHOTOROOM_EDIT_URL") or "https://image-api.photoroom.com/v2/edit",
            timeout=_as_float(os.getenv("PHOTOROOM_TIMEOUT_SECONDS"), 30.0, minimum=1.0),
        )


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 2.0
    fast_fail_auth: bool = True

    @classmethod
    def from_env(cls) -> "RetryConfig":
        return cls(
            max_attempts=_as_int(os.getenv("RETRY_MAX_ATTEMPTS"), 3, minimum=1),
            base_delay=_as_float(os.getenv("RETRY_BASE_DELAY_SECONDS"), 2.0),
            fast_fail_auth=_as_bool(os.getenv("RETRY_FAST_FAIL_AUTH"), True),
        )


@dataclass(frozen=True)
class PreprocessConfig:
    max_width: int = 3000
    max_height: int = 3000
    max_bytes: int = 15 * 1024 * 1024
    translate_max_bytes: int = 10 * 1024 * 1024
    quality: int = 80

    @classmethod
    def from_env(cls) -> "PreprocessConfig":
        return cls(
            max_width=_as_int(os.getenv("INPUT_MAX_WIDTH"), 3000, minimum=64),
            max_height=_as_int(os.getenv("INPUT_MAX_HEIGHT"), 3000, minimum=64),
            max_bytes=_as_int(os.getenv("INPUT_MAX_BYTES"), 15 * 1024 * 1024, minimum=1024),
            translate_max_bytes=_as_int(
                os.getenv("TRANSLATE_MAX_BYTES"), 10 * 1024 * 1024, minimum=1024
            ),
            quality=min(_as_int(os.getenv("INPUT_QUALITY"), 80, minimum=1), 100),
        )


@dataclass(frozen=True)
class FanOutConfig:
    max_workers: int = 1

    @classmethod
    def from_env(cls) -> "FanOutConfig":
        return cls(max_workers=_as_int(os.getenv("AD_FANOUT_WORKERS"), 1, minimum=1))


@dataclass(frozen=True)
class Settings:
    environment: str = "development"
    allowed_origins: List[str] = field(default_factory=lambda: ["*"])
    replicate: ReplicateConfig = field(default_factory=ReplicateConfig)
    photoroom: PhotoRoomConfig = field(default_factory=PhotoRoomConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    preprocess: PreprocessConfig = field(default_factory=PreprocessConfig)
    fanout: FanOutConfig = field(default_factory=FanOutConfig)
    max_body_bytes: int = 50 * 1024 * 1024
    download_timeout: float = 30.0

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    def _get(name: str, default: str | None = None) -> str | None:
        v = os.getenv(name)
        return v if v is not None else default

    return Settings(
        environment=_get("ENVIRONMENT", "development") or "development",
        allowed_origins=_parse_allowed_origins(_get("ALLOWED_ORIGINS", "*")),
        replicate=ReplicateConfig.from_env(),
        photoroom=PhotoRoomConfig.from_env(),
        retry=RetryConfig.from_env(),
        preprocess=PreprocessConfig.from_env(),
        fanout=FanOutConfig.from_env(),
        max_body_bytes=_as_int(_get("MAX_BODY_BYTES"), 50 * 1024 * 1024),
        download_timeout=_as_float(_get("DOWNLOAD_TIMEOUT_SECONDS"), 30.0, minimum=1.0),
    )
