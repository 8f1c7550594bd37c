from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from app.config import Settings, get_settings, mask_secret
from app.errors import InvalidRequest
from app.models import InputImage
from app.schemas import (
    ConfigCheckResponse,
    EditResponse,
    ErrorResponse,
    ExpandRequest,
    GenerateAdRequest,
    GenerateRequest,
    GenerateResponse,
    ImageToImageResponse,
    ProviderStatus,
    TextRemovalRequest,
    ad_results_payload,
)
from app.services.ad_generation import AdGenerator
from app.services.fallback import FallbackCoordinator

logger = logging.getLogger("ad-gateway.api")

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    413: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}

router = APIRouter(prefix="/api", tags=["images"], responses=ERROR_RESPONSES)


@lru_cache()
def get_coordinator() -> FallbackCoordinator:
    return FallbackCoordinator(get_settings())


def get_ad_generator(
    coordinator: FallbackCoordinator = Depends(get_coordinator),
) -> AdGenerator:
    return AdGenerator(coordinator, max_workers=get_settings().fanout.max_workers)


def _read_upload(upload: Optional[UploadFile]) -> InputImage:
    if upload is None:
        raise InvalidRequest("No image file provided")
    data = upload.file.read()
    content_type = upload.content_type or ""
    if not content_type.startswith("image/"):
        raise InvalidRequest("Only image files are allowed")
    return InputImage(data=data, mime_type=content_type, filename=upload.filename)


@router.get("/generate", response_model=ConfigCheckResponse)
def generate_config_check(settings: Settings = Depends(get_settings)) -> ConfigCheckResponse:
    replicate = settings.replicate
    return ConfigCheckResponse(
        environment=settings.environment,
        primary=ProviderStatus(
            configured=replicate.primary_configured,
            model=replicate.primary_model,
            token=mask_secret(replicate.api_token),
        ),
        backup=ProviderStatus(
            configured=replicate.is_configured,
            model=replicate.backup_model,
            token=mask_secret(replicate.api_token),
        ),
        editor=ProviderStatus(
            configured=settings.photoroom.is_configured,
            model="photoroom",
            token=mask_secret(settings.photoroom.api_key),
        ),
        openai_key=mask_secret(replicate.openai_api_key),
    )


@router.post("/generate", response_model=GenerateResponse)
def generate(
    payload: GenerateRequest,
    coordinator: FallbackCoordinator = Depends(get_coordinator),
) -> GenerateResponse:
    result = coordinator.generate(payload.to_domain())
    return GenerateResponse.from_result(result)


@router.post("/photoroom", response_model=EditResponse)
def expand(
    payload: ExpandRequest,
    coordinator: FallbackCoordinator = Depends(get_coordinator),
) -> EditResponse:
    result = coordinator.expand(payload.to_domain())
    return EditResponse.from_result(result)


@router.post("/remove-text", response_model=EditResponse)
def remove_text(
    payload: TextRemovalRequest,
    coordinator: FallbackCoordinator = Depends(get_coordinator),
) -> EditResponse:
    result = coordinator.remove_text(payload.image_url, mode=payload.text_removal_mode)
    return EditResponse.from_result(result, text_removal_mode=payload.text_removal_mode)


@router.post("/translate", response_model=ImageToImageResponse)
def translate(
    imageFile: Optional[UploadFile] = File(None),
    targetLanguage: str = Form(""),
    coordinator: FallbackCoordinator = Depends(get_coordinator),
) -> ImageToImageResponse:
    image = _read_upload(imageFile)
    language = targetLanguage.strip()
    result = coordinator.translate(image, language)
    return ImageToImageResponse.from_result(
        result, filename=image.filename, target_ratio="1:1", language=language
    )


@router.post("/gpt-resize", response_model=ImageToImageResponse)
def gpt_resize(
    imageFile: Optional[UploadFile] = File(None),
    coordinator: FallbackCoordinator = Depends(get_coordinator),
) -> ImageToImageResponse:
    image = _read_upload(imageFile)
    result = coordinator.resize(image)
    return ImageToImageResponse.from_result(result, filename=image.filename, target_ratio="3:2")


@router.post("/generate-ad")
def generate_ad(
    payload: GenerateAdRequest,
    generator: AdGenerator = Depends(get_ad_generator),
) -> dict[str, list[str]]:
    results = generator.generate(payload.to_domain())
    return ad_results_payload(results)
