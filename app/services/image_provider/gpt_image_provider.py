from __future__ import annotations

import base64
from typing import Any, Optional

from app.config import ReplicateConfig
from app.models import GenerationRequest, ProviderCallSpec, ProviderChoice, ProviderResponse
from app.services.prompting import augment_prompt, nearest_supported_ratio

from .replicate_client import ReplicateClient


def _data_uri(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


class GPTImageProvider:
    """Primary text-to-image provider: ``openai/gpt-image-1`` served through Replicate."""

    name = ProviderChoice.PRIMARY.value
    supports_input_image = True
    NATIVE_RATIOS = ("1:1", "3:2", "2:3")

    def __init__(self, config: ReplicateConfig, client: Optional[ReplicateClient] = None) -> None:
        self.config = config
        self.client = client or ReplicateClient(config)

    @property
    def model(self) -> str:
        return self.config.primary_model

    @property
    def is_configured(self) -> bool:
        return self.config.primary_configured

    def build_spec(self, request: GenerationRequest) -> ProviderCallSpec:
        ratio = request.aspect_ratio
        prompt_ratio: Optional[str] = None
        sent_ratio: Optional[str] = None
        if ratio:
            if ratio in self.NATIVE_RATIOS:
                sent_ratio = ratio
            else:
                # No first-class field for this ratio: describe it in the prompt.
                prompt_ratio = ratio
                sent_ratio = nearest_supported_ratio(ratio, self.NATIVE_RATIOS)

        payload: dict[str, Any] = {
            "prompt": augment_prompt(
                request.prompt, language=request.language, aspect_ratio=prompt_ratio
            ),
            "number_of_images": int(request.num_outputs),
        }
        if sent_ratio:
            payload["aspect_ratio"] = sent_ratio

        if request.input_image is not None:
            payload.update(
                {
                    "input_images": [
                        _data_uri(request.input_image.data, request.input_image.mime_type)
                    ],
                    "quality": "auto",
                    "background": "auto",
                    "moderation": "auto",
                    "output_format": "png",
                    "output_compression": 90,
                }
            )

        return ProviderCallSpec(
            provider=self.name,
            model=self.model,
            payload=payload,
            credential=self.config.openai_api_key,
        )

    def invoke(self, spec: ProviderCallSpec) -> ProviderResponse:
        payload = dict(spec.payload)
        payload["openai_api_key"] = spec.credential
        return ProviderResponse(output=self.client.run(spec.model, payload))
