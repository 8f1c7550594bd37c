"""Build the provider adapters from resolved settings."""
from __future__ import annotations

from app.config import Settings
from app.models import ProviderChoice

from .base import GenerationProvider
from .gpt_image_provider import GPTImageProvider
from .imagen_provider import ImagenProvider
from .photoroom_provider import PhotoRoomProvider
from .replicate_client import ReplicateClient


def build_generation_providers(settings: Settings) -> dict[ProviderChoice, GenerationProvider]:
    """Return the primary and backup text-to-image adapters sharing one client."""

    client = ReplicateClient(settings.replicate)
    return {
        ProviderChoice.PRIMARY: GPTImageProvider(settings.replicate, client),
        ProviderChoice.BACKUP: ImagenProvider(settings.replicate, client),
    }


def build_edit_provider(settings: Settings) -> PhotoRoomProvider:
    return PhotoRoomProvider(settings.photoroom)
