from __future__ import annotations

import base64
import logging
from io import BytesIO
from typing import Optional

import requests
from PIL import Image, UnidentifiedImageError

from app.errors import FallbackTransformError
from app.models import Dimensions

logger = logging.getLogger("ad-gateway.local-fallback")


def center_crop_box(width: int, height: int, target: Dimensions) -> tuple[int, int, int, int]:
    """Largest centred box with the target's aspect ratio, as ``(left, top, right, bottom)``."""

    target_ratio = target.ratio
    if width / height > target_ratio:
        crop_h = height
        crop_w = max(1, round(height * target_ratio))
    else:
        crop_w = width
        crop_h = max(1, round(width / target_ratio))
    left = (width - crop_w) // 2
    top = (height - crop_h) // 2
    return left, top, left + crop_w, top + crop_h


class LocalFallbackTransformer:
    """Centre-crop and resize locally when no remote editor could be used."""

    def __init__(self, *, timeout: float = 30.0) -> None:
        self.timeout = timeout

    def _download(self, url: str) -> bytes:
        try:
            response = requests.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise FallbackTransformError(f"Failed to download source image: {exc}") from exc
        return response.content

    def transform(
        self,
        source_url: str,
        target: Dimensions,
        *,
        source_bytes: Optional[bytes] = None,
    ) -> str:
        data = source_bytes if source_bytes is not None else self._download(source_url)
        try:
            with Image.open(BytesIO(data)) as opened:
                image = opened.convert("RGB")
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
            raise FallbackTransformError(f"Source image could not be decoded: {exc}") from exc

        box = center_crop_box(image.width, image.height, target)
        result = image.crop(box).resize((target.width, target.height), Image.LANCZOS)

        bio = BytesIO()
        result.save(bio, "PNG")
        logger.info(
            "[local-fallback.done] source=%sx%s crop=%s target=%s bytes=%d",
            image.width,
            image.height,
            box,
            target.token,
            bio.tell(),
        )
        return "data:image/png;base64," + base64.b64encode(bio.getvalue()).decode("ascii")
