"""Request and response bodies of the public HTTP API.

Field names on the wire are camelCase; the Python attributes stay snake_case
and either spelling is accepted on input.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.errors import utcnow_iso
from app.models import (
    DEFAULT_LANGUAGE,
    EditRequest,
    EditResult,
    GenerationRequest,
    GenerationResult,
    ProviderChoice,
)
from app.services.ad_generation import AdBrief, AdFeature, AdImage
from app.services.image_provider.photoroom_provider import DEFAULT_TEXT_REMOVAL_MODE


class _CompatModel(BaseModel):
    """Base model that ignores unknown fields and accepts both field spellings."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, protected_namespaces=())


def _strip_optional(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _strip_required(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


# -----------------------------------------------------------------------------
# Generation
# -----------------------------------------------------------------------------


class GenerateRequest(_CompatModel):
    prompt: str = Field(..., description="Creative brief for the image")
    aspect_ratio: Optional[str] = Field(None, alias="aspectRatio")
    language: str = Field(DEFAULT_LANGUAGE, description="Language for any text in the image")
    num_outputs: int = Field(1, alias="numOutputs", ge=1, le=10)
    model: Optional[str] = Field(None, description="gpt-image-1 or imagen-4")

    @field_validator("prompt", mode="before")
    @classmethod
    def _clean_prompt(cls, value: Any) -> str:
        return _strip_required(value)

    @field_validator("aspect_ratio", "model", mode="before")
    @classmethod
    def _clean_optional(cls, value: Any) -> Optional[str]:
        return _strip_optional(value)

    @field_validator("language", mode="before")
    @classmethod
    def _clean_language(cls, value: Any) -> str:
        return _strip_optional(value) or DEFAULT_LANGUAGE

    def to_domain(self) -> GenerationRequest:
        return GenerationRequest(
            prompt=self.prompt,
            aspect_ratio=self.aspect_ratio,
            language=self.language,
            num_outputs=self.num_outputs,
            provider=ProviderChoice.parse(self.model),
        )


class GenerateResponse(_CompatModel):
    images: list[str]
    model_used: str
    is_backup: bool = False
    backup_message: Optional[str] = None
    dropped: int = 0
    timestamp: str

    @classmethod
    def from_result(cls, result: GenerationResult) -> "GenerateResponse":
        message = None
        if result.used_fallback:
            message = f"Generated with fallback model {result.model_used}"
            if result.fallback_reason:
                message = f"{message} ({result.fallback_reason})"
        return cls(
            images=list(result.images),
            model_used=result.model_used,
            is_backup=result.used_fallback,
            backup_message=message,
            dropped=result.dropped,
            timestamp=result.timestamp.isoformat(),
        )


class ProviderStatus(_CompatModel):
    configured: bool
    model: Optional[str] = None
    token: str = "NOT_SET"


class ConfigCheckResponse(_CompatModel):
    timestamp: str = Field(default_factory=utcnow_iso)
    environment: str
    primary: ProviderStatus
    backup: ProviderStatus
    editor: ProviderStatus
    openai_key: str = Field("NOT_SET", alias="openaiKey")
    message: str = "Configuration check - use POST to generate images"


# -----------------------------------------------------------------------------
# Editing
# -----------------------------------------------------------------------------


class ExpandRequest(_CompatModel):
    image_url: str = Field(..., alias="imageUrl")
    target_ratio: str = Field(..., alias="targetRatio")
    seed: Optional[int] = None
    remove_text: bool = Field(False, alias="removeText")

    @field_validator("image_url", "target_ratio", mode="before")
    @classmethod
    def _clean_required(cls, value: Any) -> str:
        return _strip_required(value)

    def to_domain(self) -> EditRequest:
        return EditRequest(
            image_url=self.image_url,
            target_ratio=self.target_ratio,
            seed=self.seed,
            remove_text=self.remove_text,
        )


class TextRemovalRequest(_CompatModel):
    image_url: str = Field(..., alias="imageUrl")
    text_removal_mode: str = Field(DEFAULT_TEXT_REMOVAL_MODE, alias="textRemovalMode")

    @field_validator("image_url", mode="before")
    @classmethod
    def _clean_url(cls, value: Any) -> str:
        return _strip_required(value)

    @field_validator("text_removal_mode", mode="before")
    @classmethod
    def _clean_mode(cls, value: Any) -> str:
        return _strip_optional(value) or DEFAULT_TEXT_REMOVAL_MODE


class DimensionsModel(_CompatModel):
    width: int
    height: int


class EditMetadata(_CompatModel):
    target_ratio: Optional[str] = Field(None, alias="targetRatio")
    dimensions: Optional[DimensionsModel] = None
    seed: Optional[int] = None
    remove_text: bool = Field(False, alias="removeText")
    text_removal_mode: Optional[str] = Field(None, alias="textRemovalMode")
    provider: str
    timestamp: str
    fallback_reason: Optional[str] = Field(None, alias="fallbackReason")


class EditResponse(_CompatModel):
    success: bool = True
    image_url: str = Field(..., alias="imageUrl")
    metadata: EditMetadata

    @classmethod
    def from_result(cls, result: EditResult, *, text_removal_mode: Optional[str] = None) -> "EditResponse":
        dimensions = None
        if result.dimensions is not None:
            dimensions = DimensionsModel(
                width=result.dimensions.width, height=result.dimensions.height
            )
        return cls(
            image_url=result.image,
            metadata=EditMetadata(
                target_ratio=result.target_ratio,
                dimensions=dimensions,
                seed=result.seed,
                remove_text=result.remove_text,
                text_removal_mode=text_removal_mode,
                provider=result.provider_used,
                timestamp=result.timestamp.isoformat(),
                fallback_reason=result.fallback_reason,
            ),
        )


class ImageToImageMetadata(_CompatModel):
    original_file_name: Optional[str] = Field(None, alias="originalFileName")
    target_ratio: Optional[str] = Field(None, alias="targetRatio")
    target_language: Optional[str] = Field(None, alias="targetLanguage")
    model_used: str = Field(..., alias="modelUsed")
    timestamp: str


class ImageToImageResponse(_CompatModel):
    success: bool = True
    image_url: str = Field(..., alias="imageUrl")
    language: Optional[str] = None
    metadata: ImageToImageMetadata

    @classmethod
    def from_result(
        cls,
        result: GenerationResult,
        *,
        filename: Optional[str],
        target_ratio: Optional[str] = None,
        language: Optional[str] = None,
    ) -> "ImageToImageResponse":
        return cls(
            image_url=result.images[0],
            language=language,
            metadata=ImageToImageMetadata(
                original_file_name=filename,
                target_ratio=target_ratio,
                target_language=language,
                model_used=result.model_used,
                timestamp=result.timestamp.isoformat(),
            ),
        )


# -----------------------------------------------------------------------------
# Ad fan-out
# -----------------------------------------------------------------------------


class AdFeatureModel(_CompatModel):
    name: str
    description: str = ""

    @field_validator("name", "description", mode="before")
    @classmethod
    def _clean(cls, value: Any) -> str:
        return _strip_required(value)


class GenerateAdRequest(_CompatModel):
    product_name: str = Field(..., alias="productName")
    product_description: str = Field(..., alias="productDescription")
    formats: list[str] = Field(..., min_length=1)
    features: list[AdFeatureModel] = Field(..., min_length=1)
    aspect_ratio: str = Field("1:1", alias="aspectRatio")
    language: str = DEFAULT_LANGUAGE
    num_ads: int = Field(1, alias="numAds", ge=1, le=10)
    model: Optional[str] = None
    brand_color: Optional[str] = Field(None, alias="brandColor")

    @field_validator("product_name", "product_description", mode="before")
    @classmethod
    def _clean_required(cls, value: Any) -> str:
        return _strip_required(value)

    @field_validator("language", mode="before")
    @classmethod
    def _clean_language(cls, value: Any) -> str:
        return _strip_optional(value) or DEFAULT_LANGUAGE

    def to_domain(self) -> AdBrief:
        return AdBrief(
            product=self.product_name,
            description=self.product_description,
            formats=tuple(self.formats),
            features=tuple(AdFeature(f.name, f.description) for f in self.features),
            aspect_ratio=self.aspect_ratio,
            language=self.language,
            num_ads=self.num_ads,
            provider=ProviderChoice.parse(self.model),
        )


def ad_results_payload(results: dict[str, list[AdImage]]) -> dict[str, list[str]]:
    """Keyed by format in request order, each value the list of image references."""

    return {fmt: [item.image for item in items] for fmt, items in results.items()}


class ErrorResponse(_CompatModel):
    error: str
    message: str
    timestamp: str
    attempts: Optional[list[dict[str, Any]]] = None


__all__ = [
    "AdFeatureModel",
    "ConfigCheckResponse",
    "DimensionsModel",
    "EditMetadata",
    "EditResponse",
    "ErrorResponse",
    "ExpandRequest",
    "GenerateAdRequest",
    "GenerateRequest",
    "GenerateResponse",
    "ImageToImageMetadata",
    "ImageToImageResponse",
    "ProviderStatus",
    "TextRemovalRequest",
    "ad_results_payload",
]
