from __future__ import annotations

import logging
import time
import uuid
from typing import Optional

import httpx

from app.config import PhotoRoomConfig
from app.errors import UpstreamError
from app.models import Dimensions, ProviderCallSpec, ProviderResponse

log = logging.getLogger("ad-gateway.photoroom")

DEFAULT_TEXT_REMOVAL_MODE = "ai.all"


class PhotoRoomProvider:
    """Image editing / expansion service taking a multipart image plus flat parameters."""

    name = "photoroom"

    def __init__(self, config: PhotoRoomConfig) -> None:
        self.config = config

    @property
    def model(self) -> str:
        return "photoroom"

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    def _image_files(self, image: bytes, mime_type: str) -> dict[str, tuple[str, bytes, str]]:
        ext = (mime_type.split("/", 1)[-1] or "png").replace("jpeg", "jpg")
        return {"imageFile": (f"image.{ext}", image, mime_type)}

    def build_expand_spec(
        self,
        image: bytes,
        mime_type: str,
        dimensions: Dimensions,
        *,
        seed: Optional[int] = None,
        remove_text: bool = False,
    ) -> ProviderCallSpec:
        payload: dict[str, str] = {
            "outputSize": dimensions.token,
            "referenceBox": "originalImage",
            "removeBackground": "false",
            "expand.mode": "ai.auto",
            "quality": "high",
        }
        if remove_text:
            payload["textRemoval.mode"] = "ai.artificial"
            payload["textRemoval.quality"] = "high"
        if seed is not None:
            payload["expand.seed"] = str(seed)

        return ProviderCallSpec(
            provider=self.name,
            model=self.model,
            payload=payload,
            credential=self.config.api_key,
            files=self._image_files(image, mime_type),
            endpoint=self.config.expand_url,
        )

    def build_text_removal_spec(
        self,
        image: bytes,
        mime_type: str,
        *,
        mode: str = DEFAULT_TEXT_REMOVAL_MODE,
    ) -> ProviderCallSpec:
        payload = {
            "removeBackground": "false",
            "referenceBox": "originalImage",
            "textRemoval.mode": mode or DEFAULT_TEXT_REMOVAL_MODE,
        }
        return ProviderCallSpec(
            provider=self.name,
            model=self.model,
            payload=payload,
            credential=self.config.api_key,
            files=self._image_files(image, mime_type),
            endpoint=self.config.edit_url,
        )

    def invoke(self, spec: ProviderCallSpec) -> ProviderResponse:
        if not spec.endpoint:
            raise UpstreamError("PhotoRoom call spec has no endpoint", provider=self.name)

        trace = uuid.uuid4().hex[:8]
        log.info(
            "[photoroom.call>%s] endpoint=%s params=%s",
            trace,
            spec.endpoint,
            dict(spec.payload),
        )
        start = time.time()
        try:
            with httpx.Client(timeout=self.config.timeout) as client:
                r = client.post(
                    spec.endpoint,
                    data=dict(spec.payload),
                    files=dict(spec.files),
                    headers={"x-api-key": spec.credential or ""},
                )
        except httpx.TimeoutException as exc:
            raise UpstreamError(f"PhotoRoom request timed out: {exc}", code="TIMEOUT", provider=self.name) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(
                f"PhotoRoom transport error: {exc}", code="TRANSPORT_ERROR", provider=self.name
            ) from exc

        if r.status_code >= 400:
            raise UpstreamError(
                f"PhotoRoom returned HTTP {r.status_code}: {r.text[:300]}",
                code="HTTP_ERROR",
                status_code=r.status_code,
                provider=self.name,
            )
        if not r.content:
            raise UpstreamError("PhotoRoom response was empty", provider=self.name)

        content_type = r.headers.get("content-type") or "image/png"
        log.info(
            "[photoroom.done>%s] bytes=%d type=%s time=%.0fms",
            trace,
            len(r.content),
            content_type,
            (time.time() - start) * 1000,
        )
        return ProviderResponse(output=r.content, content_type=content_type.split(";", 1)[0])
