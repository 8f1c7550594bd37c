from __future__ import annotations

import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Optional

from PIL import Image, UnidentifiedImageError

from app.errors import InvalidImageData

logger = logging.getLogger("ad-gateway.preprocess")

MIN_SIDE = 64
SHRINK_STEP = 0.85

# Pillow raises DecompressionBombError (a bare Exception subclass) for oversized sources.
DECODE_ERRORS = (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError)


@dataclass(frozen=True)
class ImageConstraints:
    max_width: int = 3000
    max_height: int = 3000
    max_bytes: int = 15 * 1024 * 1024
    format: str = "PNG"
    quality: int = 80

    @property
    def mime_type(self) -> str:
        return "image/jpeg" if self.format.upper() in {"JPEG", "JPG"} else f"image/{self.format.lower()}"


def read_dimensions(buffer: bytes) -> tuple[int, int]:
    """Return ``(width, height)`` or raise :class:`InvalidImageData`."""

    try:
        with Image.open(BytesIO(buffer)) as image:
            return image.size
    except DECODE_ERRORS as exc:
        raise InvalidImageData(f"Image metadata could not be read: {exc}") from exc


def identify_mime_type(buffer: bytes) -> Optional[str]:
    """MIME type Pillow recognises in ``buffer``, or ``None``."""

    try:
        with Image.open(BytesIO(buffer)) as image:
            return Image.MIME.get(image.format or "")
    except DECODE_ERRORS:
        return None


def sniff_mime_type(buffer: bytes, default: str = "image/png") -> str:
    return identify_mime_type(buffer) or default


class ImagePreprocessor:
    """Bring an input image within a provider's dimension and byte ceilings."""

    def prepare(self, buffer: bytes, constraints: ImageConstraints) -> bytes:
        if not buffer:
            raise InvalidImageData("Image payload is empty")

        width, height = read_dimensions(buffer)
        size = len(buffer)
        if (
            width <= constraints.max_width
            and height <= constraints.max_height
            and size <= constraints.max_bytes
        ):
            logger.debug("[preprocess.skip] %sx%s %dKB within limits", width, height, size // 1024)
            return buffer

        try:
            with Image.open(BytesIO(buffer)) as opened:
                source = opened.convert("RGBA" if opened.mode in {"RGBA", "LA", "P"} else "RGB")
        except DECODE_ERRORS as exc:
            raise InvalidImageData(f"Image could not be decoded: {exc}") from exc

        scale = min(1.0, constraints.max_width / width, constraints.max_height / height)
        while True:
            target = (max(1, round(width * scale)), max(1, round(height * scale)))
            data = self._encode(source, target, constraints)
            if len(data) <= constraints.max_bytes:
                break
            if min(target) * SHRINK_STEP < MIN_SIDE:
                raise InvalidImageData(
                    f"Image cannot be compressed below {constraints.max_bytes} bytes"
                )
            scale *= SHRINK_STEP

        logger.info(
            "[preprocess.resize] %sx%s %dKB -> %sx%s %dKB",
            width,
            height,
            size // 1024,
            target[0],
            target[1],
            len(data) // 1024,
        )
        return data

    @staticmethod
    def _encode(source: Image.Image, size: tuple[int, int], constraints: ImageConstraints) -> bytes:
        resized = source if source.size == size else source.resize(size, Image.LANCZOS)
        fmt = constraints.format.upper()
        bio = BytesIO()
        if fmt in {"JPEG", "JPG"}:
            resized.convert("RGB").save(bio, "JPEG", quality=constraints.quality, optimize=True)
        elif fmt == "PNG":
            resized.save(bio, "PNG", optimize=True, compress_level=9)
        else:
            resized.save(bio, fmt, quality=constraints.quality)
        return bio.getvalue()
