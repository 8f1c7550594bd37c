"""Normalise provider outputs into canonical image references.

Providers are not stable in how they hand back a deliverable image: a bare
URL string, an object whose ``url`` is a string, a URL object or an accessor
returning either, a mapping with ``href``/``src``/``link``, raw bytes, a
readable stream, or a keyed map of any of those. Every entry is first
classified into one of the variants below and then resolved in a fixed
priority order, so the rest of the service only ever sees ``http(s)`` URLs
or ``data:`` URIs. Binary content is read as a URL when its text is one and
is otherwise kept only if Pillow can identify it as an image.
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from app.errors import NoUsableImages
from app.models import ProviderResponse
from app.services.image_preprocess import identify_mime_type

logger = logging.getLogger("ad-gateway.extract")

LINK_FIELDS = ("url", "href", "src", "link")
_SINGLE_ENTRY_KEYS = frozenset(LINK_FIELDS + ("b64_json",))


def is_image_ref(value: Any) -> bool:
    return isinstance(value, str) and (value.startswith("http") or value.startswith("data:"))


def _field(entry: Any, name: str) -> Any:
    if isinstance(entry, Mapping):
        return entry.get(name)
    try:
        return getattr(entry, name, None)
    except Exception:  # noqa: BLE001 - property getters on foreign objects
        return None


@dataclass(frozen=True)
class TextRef:
    value: str


@dataclass(frozen=True)
class UrlField:
    value: Any
    entry: Any


@dataclass(frozen=True)
class UrlAccessor:
    accessor: Callable[[], Any]
    entry: Any


@dataclass(frozen=True)
class BinaryRef:
    data: bytes


@dataclass(frozen=True)
class StreamRef:
    reader: Callable[[], Any]
    entry: Any


@dataclass(frozen=True)
class ObjectRef:
    entry: Any


@dataclass(frozen=True)
class Unrecognised:
    entry: Any
    reason: str


Entry = Union[TextRef, UrlField, UrlAccessor, BinaryRef, StreamRef, ObjectRef, Unrecognised]


def classify(entry: Any) -> Entry:
    if isinstance(entry, str):
        return TextRef(entry)
    if isinstance(entry, (bytes, bytearray, memoryview)):
        return BinaryRef(bytes(entry))
    if entry is None:
        return Unrecognised(entry, "empty entry")
    url = _field(entry, "url")
    if callable(url):
        return UrlAccessor(url, entry)
    if url is not None:
        return UrlField(url, entry)
    reader = _field(entry, "read")
    if callable(reader):
        return StreamRef(reader, entry)
    return ObjectRef(entry)


def _href_of(value: Any) -> Optional[str]:
    href = _field(value, "href")
    return href if is_image_ref(href) else None


def _scan_link_fields(entry: Any) -> Optional[str]:
    for name in LINK_FIELDS:
        candidate = _field(entry, name)
        if is_image_ref(candidate):
            return candidate
    b64 = _field(entry, "b64_json")
    if isinstance(b64, str) and b64:
        return f"data:image/png;base64,{b64}"
    return None


def _from_binary(data: bytes) -> Optional[str]:
    if not data:
        return None
    try:
        text = data.decode("utf-8").strip()
    except UnicodeDecodeError:
        text = ""
    if is_image_ref(text):
        return text
    mime_type = identify_mime_type(data)
    if mime_type is None:
        return None
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def resolve(entry: Entry) -> Optional[str]:
    """Resolve one classified entry; ``None`` means the entry is dropped."""

    if isinstance(entry, TextRef):
        return entry.value if is_image_ref(entry.value) else None

    if isinstance(entry, BinaryRef):
        return _from_binary(entry.data)

    if isinstance(entry, StreamRef):
        try:
            produced = entry.reader()
        except Exception as exc:  # noqa: BLE001 - an unreadable stream only drops its entry
            logger.warning("[extract.stream] read() raised %s: %s", type(exc).__name__, exc)
            return None
        if isinstance(produced, str):
            produced = produced.strip()
            return produced if is_image_ref(produced) else None
        if isinstance(produced, (bytes, bytearray, memoryview)):
            return _from_binary(bytes(produced))
        return None

    if isinstance(entry, UrlField):
        if is_image_ref(entry.value):
            return entry.value
        return _href_of(entry.value) or _href_of(entry.entry) or _scan_link_fields(entry.entry)

    if isinstance(entry, UrlAccessor):
        try:
            produced = entry.accessor()
        except Exception as exc:  # noqa: BLE001 - a failing accessor only drops its entry
            logger.warning("[extract.accessor] url() raised %s: %s", type(exc).__name__, exc)
            return None
        if is_image_ref(produced):
            return produced
        return _href_of(produced)

    if isinstance(entry, ObjectRef):
        found = _href_of(entry.entry) or _scan_link_fields(entry.entry)
        if found or isinstance(entry.entry, Mapping):
            return found
        # Last resort: URL-like objects that only render as their address.
        text = str(entry.entry)
        return text if text.startswith("http") else None

    return None


def iter_entries(raw: Any) -> list[Any]:
    """Flatten a provider output into its ordered list of candidate entries."""

    if raw is None:
        return []
    if isinstance(raw, (str, bytes, bytearray, memoryview)):
        return [raw]
    if isinstance(raw, Mapping):
        if _SINGLE_ENTRY_KEYS.intersection(raw.keys()):
            return [raw]
        return list(raw.values())
    if _field(raw, "url") is not None or callable(_field(raw, "read")):
        return [raw]
    if isinstance(raw, Iterable):
        return list(raw)
    return [raw]


class ResponseExtractor:
    """Turn any provider output into an ordered list of image references."""

    def extract(self, raw: Any, *, provider: Optional[str] = None) -> list[str]:
        if isinstance(raw, ProviderResponse):
            raw = raw.output

        images: list[str] = []
        entries = iter_entries(raw)
        for index, item in enumerate(entries):
            tagged = classify(item)
            resolved = None if isinstance(tagged, Unrecognised) else resolve(tagged)
            if resolved is None:
                logger.warning(
                    "[extract.drop] provider=%s index=%d type=%s",
                    provider,
                    index,
                    type(item).__name__,
                )
                continue
            images.append(resolved)

        if not images:
            raise NoUsableImages(
                f"{provider or 'Provider'} returned no usable images "
                f"({len(entries)} entr{'y' if len(entries) == 1 else 'ies'} inspected)"
            )

        logger.debug("[extract.done] provider=%s images=%d of %d", provider, len(images), len(entries))
        return images
