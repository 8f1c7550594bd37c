"""Domain records used across the image gateway."""

from .generation import (  # noqa: F401
    DEFAULT_LANGUAGE,
    Dimensions,
    EditRequest,
    EditResult,
    GenerationRequest,
    GenerationResult,
    InputImage,
    ProviderCallSpec,
    ProviderChoice,
    ProviderResponse,
)

__all__ = [
    "DEFAULT_LANGUAGE",
    "Dimensions",
    "EditRequest",
    "EditResult",
    "GenerationRequest",
    "GenerationResult",
    "InputImage",
    "ProviderCallSpec",
    "ProviderChoice",
    "ProviderResponse",
]
