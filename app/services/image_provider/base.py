from __future__ import annotations

from typing import Protocol

from app.models import GenerationRequest, ProviderCallSpec, ProviderResponse


class ImageProvider(Protocol):
    """Anything the coordinator can hand a resolved call spec to."""

    name: str

    @property
    def model(self) -> str:
        ...

    @property
    def is_configured(self) -> bool:
        ...

    def invoke(self, spec: ProviderCallSpec) -> ProviderResponse:
        ...


class GenerationProvider(ImageProvider, Protocol):
    supports_input_image: bool

    def build_spec(self, request: GenerationRequest) -> ProviderCallSpec:
        ...
