from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional

from app.config import ReplicateConfig
from app.errors import UpstreamError
from app.models import GenerationRequest, ProviderCallSpec, ProviderChoice, ProviderResponse
from app.services.prompting import augment_prompt, nearest_supported_ratio

from .replicate_client import ReplicateClient

log = logging.getLogger("ad-gateway.imagen")


class ImagenProvider:
    """Backup text-to-image provider: ``google/imagen-4``, one image per call."""

    name = ProviderChoice.BACKUP.value
    supports_input_image = False
    NATIVE_RATIOS = ("1:1", "16:9", "9:16", "4:3", "3:4")

    def __init__(self, config: ReplicateConfig, client: Optional[ReplicateClient] = None) -> None:
        self.config = config
        self.client = client or ReplicateClient(config)

    @property
    def model(self) -> str:
        return self.config.backup_model

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    def build_spec(self, request: GenerationRequest) -> ProviderCallSpec:
        ratio = request.aspect_ratio or "1:1"
        prompt_ratio = None if ratio in self.NATIVE_RATIOS else ratio
        payload: dict[str, Any] = {
            "prompt": augment_prompt(
                request.prompt, language=request.language, aspect_ratio=prompt_ratio
            ),
            "aspect_ratio": nearest_supported_ratio(ratio, self.NATIVE_RATIOS),
            "output_format": "jpg",
            "safety_filter_level": "block_medium_and_above",
        }
        return ProviderCallSpec(
            provider=self.name,
            model=self.model,
            payload=payload,
            num_calls=max(1, int(request.num_outputs)),
        )

    def invoke(self, spec: ProviderCallSpec) -> ProviderResponse:
        """Issue ``spec.num_calls`` concurrent calls and keep whatever succeeded."""

        count = max(1, spec.num_calls)
        workers = max(1, min(count, self.config.backup_max_parallel))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="imagen") as pool:
            futures = [pool.submit(self.client.run, spec.model, dict(spec.payload)) for _ in range(count)]

        outputs: list[Any] = []
        errors: list[Exception] = []
        for index, future in enumerate(futures):
            try:
                output = future.result()
            except Exception as exc:  # noqa: BLE001 - partial failures are tolerated
                log.warning("[imagen.partial] call=%d/%d failed: %s", index + 1, count, exc)
                errors.append(exc)
                continue
            if isinstance(output, (list, tuple)):
                outputs.extend(output)
            else:
                outputs.append(output)

        if len(errors) == count:
            last = errors[-1]
            if isinstance(last, UpstreamError):
                raise last
            raise UpstreamError(f"{spec.model} failed: {last}", provider=spec.model) from last

        if errors:
            log.info(
                "[imagen.collected] model=%s succeeded=%d dropped=%d",
                spec.model,
                count - len(errors),
                len(errors),
            )
        return ProviderResponse(output=outputs, dropped=len(errors))
