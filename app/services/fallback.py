"""Provider selection, retry, extraction and degradation for one request.

Generation: requested provider first, then the alternate one; each provider
is tried at most once (its retries live inside :class:`RetryExecutor`).
Expansion: the remote editor, then a local centre-crop that always succeeds
for a decodable source. Anything else that exhausts its options surfaces as
a single :class:`ProvidersExhausted` describing every attempt.
"""

from __future__ import annotations

import base64
import binascii
import dataclasses
import logging
import threading
import uuid
from typing import Mapping, Optional

import requests

from app.config import Settings
from app.errors import (
    FATAL_ERRORS,
    ConfigurationError,
    FallbackTransformError,
    InvalidRequest,
    ProviderAttempt,
    ProvidersExhausted,
)
from app.models import (
    DEFAULT_LANGUAGE,
    Dimensions,
    EditRequest,
    EditResult,
    GenerationRequest,
    GenerationResult,
    InputImage,
    ProviderCallSpec,
    ProviderChoice,
)
from app.services.image_preprocess import ImageConstraints, ImagePreprocessor, sniff_mime_type
from app.services.image_provider.base import GenerationProvider, ImageProvider
from app.services.image_provider.factory import build_edit_provider, build_generation_providers
from app.services.image_provider.photoroom_provider import (
    DEFAULT_TEXT_REMOVAL_MODE,
    PhotoRoomProvider,
)
from app.services.local_fallback import LocalFallbackTransformer
from app.services.prompting import RESIZE_PROMPT, translation_prompt
from app.services.response_extractor import ResponseExtractor
from app.services.retry import RetryExecutor

logger = logging.getLogger("ad-gateway.fallback")

LOCAL_FALLBACK_NAME = "local-crop"

EXPAND_FORMATS: dict[str, Dimensions] = {
    "1.91:1": Dimensions(1200, 628),
    "4:5": Dimensions(1080, 1350),
    "1:1": Dimensions(1200, 1200),
}


class FallbackCoordinator:
    def __init__(
        self,
        settings: Settings,
        *,
        generation_providers: Optional[Mapping[ProviderChoice, GenerationProvider]] = None,
        edit_provider: Optional[PhotoRoomProvider] = None,
        extractor: Optional[ResponseExtractor] = None,
        retry: Optional[RetryExecutor] = None,
        preprocessor: Optional[ImagePreprocessor] = None,
        local_fallback: Optional[LocalFallbackTransformer] = None,
    ) -> None:
        self.settings = settings
        self.generation_providers = dict(
            generation_providers
            if generation_providers is not None
            else build_generation_providers(settings)
        )
        self.edit_provider = edit_provider or build_edit_provider(settings)
        self.extractor = extractor or ResponseExtractor()
        self.retry = retry or RetryExecutor(settings.retry)
        self.preprocessor = preprocessor or ImagePreprocessor()
        self.local_fallback = local_fallback or LocalFallbackTransformer(
            timeout=settings.download_timeout
        )

    # ---------- helpers ----------
    def _constraints(self, *, max_bytes: Optional[int] = None) -> ImageConstraints:
        cfg = self.settings.preprocess
        return ImageConstraints(
            max_width=cfg.max_width,
            max_height=cfg.max_height,
            max_bytes=max_bytes or cfg.max_bytes,
            format="PNG",
            quality=cfg.quality,
        )

    def _prepare(self, data: bytes, mime_type: str, constraints: ImageConstraints) -> tuple[bytes, str]:
        prepared = self.preprocessor.prepare(data, constraints)
        if prepared is data:
            return data, mime_type
        return prepared, constraints.mime_type

    def _call(
        self,
        adapter: ImageProvider,
        spec: ProviderCallSpec,
        cancel_event: Optional[threading.Event],
    ) -> tuple[list[str], int]:
        response = self.retry.run(
            lambda: adapter.invoke(spec),
            label=f"{adapter.name}:{spec.model}",
            cancel_event=cancel_event,
        )
        images = self.extractor.extract(response, provider=adapter.name)
        return images, response.dropped

    def _download_source(self, url: str) -> bytes:
        value = (url or "").strip()
        if value.startswith("data:"):
            header, _, encoded = value.partition(",")
            if ";base64" not in header or not encoded:
                raise InvalidRequest("imageUrl data URI must be base64 encoded")
            try:
                return base64.b64decode(encoded, validate=False)
            except (binascii.Error, ValueError) as exc:
                raise InvalidRequest(f"imageUrl data URI is invalid: {exc}") from exc
        if not value.startswith(("http://", "https://")):
            raise InvalidRequest("imageUrl must be an http(s) URL or a data URI")
        try:
            response = requests.get(value, timeout=self.settings.download_timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("[fallback.download] failed url=%s error=%s", value[:100], exc)
            raise InvalidRequest(f"Failed to download image from URL: {exc}") from exc
        if not response.content:
            raise InvalidRequest("Downloaded image is empty")
        return response.content

    # ---------- generation ----------
    def generate(
        self,
        request: GenerationRequest,
        *,
        constraints: Optional[ImageConstraints] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> GenerationResult:
        trace = uuid.uuid4().hex[:8]
        if request.input_image is not None:
            data, mime = self._prepare(
                request.input_image.data,
                request.input_image.mime_type,
                constraints or self._constraints(),
            )
            request = dataclasses.replace(
                request,
                input_image=InputImage(data, mime, request.input_image.filename),
            )

        candidates: list[tuple[ProviderChoice, GenerationProvider]] = []
        for choice in (request.provider, request.provider.alternate):
            adapter = self.generation_providers.get(choice)
            if adapter is None:
                continue
            if request.input_image is not None and not adapter.supports_input_image:
                logger.info("[fallback.skip>%s] %s does not accept input images", trace, adapter.name)
                continue
            if not adapter.is_configured:
                logger.warning("[fallback.skip>%s] %s is not configured", trace, adapter.name)
                continue
            candidates.append((choice, adapter))

        if not candidates:
            raise ConfigurationError(
                "No image generation provider is configured (REPLICATE_API_TOKEN / OPENAI_API_KEY)"
            )

        logger.info(
            "[fallback.start>%s] requested=%s order=%s outputs=%s ratio=%s language=%s prompt=%r",
            trace,
            request.provider.value,
            [adapter.name for _, adapter in candidates],
            request.num_outputs,
            request.aspect_ratio,
            request.language,
            request.prompt[:100],
        )

        attempts: list[ProviderAttempt] = []
        for choice, adapter in candidates:
            try:
                spec = adapter.build_spec(request)
                images, dropped = self._call(adapter, spec, cancel_event)
            except FATAL_ERRORS:
                raise
            except Exception as exc:  # noqa: BLE001 - exhausted provider, try the next one
                attempts.append(ProviderAttempt(adapter.name, exc))
                logger.warning(
                    "[fallback.switch>%s] provider=%s exhausted: %s",
                    trace,
                    adapter.name,
                    exc,
                )
                continue

            used_fallback = choice is not request.provider
            logger.info(
                "[fallback.done>%s] provider=%s images=%d dropped=%d fallback=%s",
                trace,
                adapter.name,
                len(images),
                dropped,
                used_fallback,
            )
            return GenerationResult(
                images=tuple(images),
                provider_used=adapter.name,
                model_used=adapter.model,
                used_fallback=used_fallback,
                dropped=dropped,
                fallback_reason=str(attempts[-1].error) if attempts else None,
            )

        raise ProvidersExhausted(attempts)

    def translate(
        self,
        image: InputImage,
        language: str,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> GenerationResult:
        if not (language or "").strip():
            raise InvalidRequest("No target language provided")
        request = GenerationRequest(
            prompt=translation_prompt(language.strip()),
            aspect_ratio="1:1",
            language=DEFAULT_LANGUAGE,
            provider=ProviderChoice.PRIMARY,
            input_image=image,
        )
        return self.generate(
            request,
            constraints=self._constraints(max_bytes=self.settings.preprocess.translate_max_bytes),
            cancel_event=cancel_event,
        )

    def resize(
        self,
        image: InputImage,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> GenerationResult:
        request = GenerationRequest(
            prompt=RESIZE_PROMPT,
            aspect_ratio="3:2",
            provider=ProviderChoice.PRIMARY,
            input_image=image,
        )
        return self.generate(request, cancel_event=cancel_event)

    # ---------- editing ----------
    def _require_edit_provider(self) -> None:
        if not self.edit_provider.is_configured:
            raise ConfigurationError("PHOTOROOM_API_KEY is not configured")

    def expand(
        self,
        request: EditRequest,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> EditResult:
        dimensions = EXPAND_FORMATS.get(request.target_ratio)
        if dimensions is None:
            raise InvalidRequest(
                f"Invalid target ratio. Supported: {', '.join(EXPAND_FORMATS)}"
            )
        self._require_edit_provider()

        source = self._download_source(request.image_url)
        data, mime = self._prepare(source, sniff_mime_type(source), self._constraints())
        spec = self.edit_provider.build_expand_spec(
            data,
            mime,
            dimensions,
            seed=request.seed,
            remove_text=request.remove_text,
        )

        try:
            images, _ = self._call(self.edit_provider, spec, cancel_event)
        except FATAL_ERRORS:
            raise
        except Exception as exc:  # noqa: BLE001 - degrade to the local crop
            reason = f"{self.edit_provider.name} unavailable: {exc}"
            logger.warning("[fallback.local] target=%s reason=%s", request.target_ratio, reason)
            try:
                image = self.local_fallback.transform(
                    request.image_url, dimensions, source_bytes=source
                )
            except FallbackTransformError as local_exc:
                raise ProvidersExhausted(
                    [
                        ProviderAttempt(self.edit_provider.name, exc),
                        ProviderAttempt(LOCAL_FALLBACK_NAME, local_exc),
                    ]
                ) from local_exc
            return EditResult(
                image=image,
                target_ratio=request.target_ratio,
                dimensions=dimensions,
                provider_used=LOCAL_FALLBACK_NAME,
                seed=request.seed,
                remove_text=request.remove_text,
                used_fallback=True,
                fallback_reason=reason,
            )

        return EditResult(
            image=images[0],
            target_ratio=request.target_ratio,
            dimensions=dimensions,
            provider_used=self.edit_provider.name,
            seed=request.seed,
            remove_text=request.remove_text,
        )

    def remove_text(
        self,
        image_url: str,
        *,
        mode: str = DEFAULT_TEXT_REMOVAL_MODE,
        cancel_event: Optional[threading.Event] = None,
    ) -> EditResult:
        if not (image_url or "").strip():
            raise InvalidRequest("imageUrl is required")
        self._require_edit_provider()

        source = self._download_source(image_url)
        data, mime = self._prepare(source, sniff_mime_type(source), self._constraints())
        spec = self.edit_provider.build_text_removal_spec(data, mime, mode=mode)
        try:
            images, _ = self._call(self.edit_provider, spec, cancel_event)
        except FATAL_ERRORS:
            raise
        except Exception as exc:  # noqa: BLE001 - no local equivalent for text removal
            raise ProvidersExhausted([ProviderAttempt(self.edit_provider.name, exc)]) from exc

        return EditResult(
            image=images[0],
            target_ratio=None,
            dimensions=None,
            provider_used=self.edit_provider.name,
            remove_text=True,
        )
