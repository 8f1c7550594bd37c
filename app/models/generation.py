"""Domain records passed between the coordinator, the adapters and the API layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from app.errors import InvalidRequest

DEFAULT_LANGUAGE = "English"


class ProviderChoice(str, Enum):
    PRIMARY = "primary"
    BACKUP = "backup"

    @property
    def alternate(self) -> "ProviderChoice":
        return ProviderChoice.BACKUP if self is ProviderChoice.PRIMARY else ProviderChoice.PRIMARY

    @classmethod
    def parse(cls, value: str | None) -> "ProviderChoice":
        """Accept the public model tokens as well as the internal names."""

        token = (value or "").strip().lower()
        if not token or token in {"primary", "gpt-image-1", "openai/gpt-image-1", "gpt"}:
            return cls.PRIMARY
        if token in {"backup", "imagen-4", "google/imagen-4", "imagen"}:
            return cls.BACKUP
        raise InvalidRequest(f"Unknown model '{value}'. Use gpt-image-1 or imagen-4.")


@dataclass(frozen=True)
class Dimensions:
    width: int
    height: int

    @property
    def token(self) -> str:
        return f"{self.width}x{self.height}"

    @property
    def ratio(self) -> float:
        return self.width / self.height


@dataclass(frozen=True)
class InputImage:
    data: bytes
    mime_type: str = "image/png"
    filename: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.data:
            raise InvalidRequest("Input image is empty")
        if not (self.mime_type or "").startswith("image/"):
            raise InvalidRequest("Only image files are allowed")

    def __repr__(self) -> str:
        return f"InputImage(mime_type={self.mime_type!r}, bytes={len(self.data)})"


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    aspect_ratio: Optional[str] = None
    language: str = DEFAULT_LANGUAGE
    num_outputs: int = 1
    provider: ProviderChoice = ProviderChoice.PRIMARY
    input_image: Optional[InputImage] = None

    def __post_init__(self) -> None:
        if not (self.prompt or "").strip():
            raise InvalidRequest("Prompt is required")
        if int(self.num_outputs) < 1:
            raise InvalidRequest("numOutputs must be a positive integer")
        if not (self.language or "").strip():
            object.__setattr__(self, "language", DEFAULT_LANGUAGE)


@dataclass(frozen=True)
class EditRequest:
    image_url: str
    target_ratio: str
    seed: Optional[int] = None
    remove_text: bool = False

    def __post_init__(self) -> None:
        if not (self.image_url or "").strip():
            raise InvalidRequest("imageUrl is required")
        if not (self.target_ratio or "").strip():
            raise InvalidRequest("targetRatio is required")


@dataclass(frozen=True)
class ProviderCallSpec:
    """Fully resolved call for one adapter; immutable once built."""

    provider: str
    model: str
    payload: Mapping[str, Any]
    credential: Optional[str] = field(default=None, repr=False)
    files: Mapping[str, tuple[str, bytes, str]] = field(default_factory=dict, repr=False)
    num_calls: int = 1
    endpoint: Optional[str] = None

    def __repr__(self) -> str:
        keys = sorted(self.payload.keys())
        return (
            f"ProviderCallSpec(provider={self.provider!r}, model={self.model!r}, "
            f"payload_keys={keys}, num_calls={self.num_calls})"
        )


@dataclass(frozen=True)
class ProviderResponse:
    """Raw provider output plus what the adapter knows about it."""

    output: Any
    dropped: int = 0
    content_type: Optional[str] = None


@dataclass(frozen=True)
class GenerationResult:
    images: tuple[str, ...]
    provider_used: str
    model_used: str
    used_fallback: bool = False
    dropped: int = 0
    fallback_reason: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class EditResult:
    image: str
    target_ratio: Optional[str]
    dimensions: Optional[Dimensions]
    provider_used: str
    seed: Optional[int] = None
    remove_text: bool = False
    used_fallback: bool = False
    fallback_reason: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
