import os
from io import BytesIO

import pytest
from PIL import Image

from app.errors import InvalidImageData
from app.services.image_preprocess import (
    ImageConstraints,
    ImagePreprocessor,
    identify_mime_type,
    read_dimensions,
    sniff_mime_type,
)


def _image_bytes(width: int, height: int, fmt: str = "PNG", noisy: bool = False) -> bytes:
    if noisy:
        image = Image.frombytes("RGB", (width, height), os.urandom(width * height * 3))
    else:
        image = Image.new("RGB", (width, height), (30, 120, 200))
    bio = BytesIO()
    image.save(bio, fmt)
    return bio.getvalue()


def test_image_within_limits_is_returned_unchanged() -> None:
    data = _image_bytes(200, 100)

    result = ImagePreprocessor().prepare(data, ImageConstraints(max_width=300, max_height=300))

    assert result is data


def test_oversized_image_is_scaled_preserving_aspect() -> None:
    data = _image_bytes(1200, 600)

    result = ImagePreprocessor().prepare(data, ImageConstraints(max_width=300, max_height=300))

    assert read_dimensions(result) == (300, 150)
    assert sniff_mime_type(result) == "image/png"


def test_tall_image_is_bounded_by_height() -> None:
    data = _image_bytes(400, 1600)

    result = ImagePreprocessor().prepare(data, ImageConstraints(max_width=1000, max_height=800))

    assert read_dimensions(result) == (200, 800)


def test_byte_ceiling_shrinks_further() -> None:
    data = _image_bytes(512, 512, noisy=True)
    limit = len(data) // 3

    result = ImagePreprocessor().prepare(
        data, ImageConstraints(max_width=4000, max_height=4000, max_bytes=limit)
    )

    width, height = read_dimensions(result)
    assert len(result) <= limit
    assert width < 512 and width == height


def test_jpeg_constraints_encode_jpeg() -> None:
    data = _image_bytes(800, 800)
    constraints = ImageConstraints(max_width=400, max_height=400, format="JPEG", quality=70)

    result = ImagePreprocessor().prepare(data, constraints)

    assert constraints.mime_type == "image/jpeg"
    assert sniff_mime_type(result) == "image/jpeg"
    assert read_dimensions(result) == (400, 400)


def test_impossible_byte_ceiling_raises() -> None:
    data = _image_bytes(256, 256, noisy=True)

    with pytest.raises(InvalidImageData):
        ImagePreprocessor().prepare(data, ImageConstraints(max_bytes=10))


@pytest.mark.parametrize("payload", [b"", b"definitely not an image"])
def test_undecodable_input_raises(payload) -> None:
    with pytest.raises(InvalidImageData):
        ImagePreprocessor().prepare(payload, ImageConstraints())


def test_sniff_mime_type_defaults_for_unknown_bytes() -> None:
    assert sniff_mime_type(b"???", default="image/webp") == "image/webp"


def test_decompression_bomb_is_rejected_as_invalid_image(monkeypatch) -> None:
    data = _image_bytes(200, 200)
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)

    with pytest.raises(InvalidImageData):
        ImagePreprocessor().prepare(data, ImageConstraints())
    assert sniff_mime_type(data, default="image/webp") == "image/webp"


def test_identify_mime_type_returns_none_for_unknown_bytes() -> None:
    assert identify_mime_type(_image_bytes(4, 4, "JPEG")) == "image/jpeg"
    assert identify_mime_type(b"https://cdn.example.com/a.png") is None
