from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Sequence

from app.errors import ConfigurationError, InvalidRequest, NoUsableImages, RequestCancelled
from app.models import DEFAULT_LANGUAGE, GenerationRequest, GenerationResult, ProviderChoice
from app.services.fallback import FallbackCoordinator
from app.services.prompting import build_ad_prompt

logger = logging.getLogger("ad-gateway.ad-generation")


@dataclass(frozen=True)
class AdFeature:
    name: str
    description: str = ""


@dataclass(frozen=True)
class AdBrief:
    product: str
    description: str
    formats: Sequence[str]
    features: Sequence[AdFeature]
    aspect_ratio: str = "1:1"
    language: Optional[str] = None
    num_ads: int = 1
    provider: ProviderChoice = ProviderChoice.PRIMARY

    def __post_init__(self) -> None:
        if not (self.product or "").strip() or not (self.description or "").strip():
            raise InvalidRequest("productName and productDescription are required")
        if not self.formats:
            raise InvalidRequest("At least one ad format is required")
        if not self.features:
            raise InvalidRequest("At least one feature is required")
        if int(self.num_ads) < 1:
            raise InvalidRequest("numAds must be a positive integer")


@dataclass(frozen=True)
class AdImage:
    format: str
    feature: str
    image: str
    provider_used: str
    used_fallback: bool = False


class AdGenerator:
    """Fan a brief out over every format x feature pair and collect what succeeds."""

    def __init__(self, coordinator: FallbackCoordinator, *, max_workers: int = 1) -> None:
        self.coordinator = coordinator
        self.max_workers = max(1, int(max_workers))

    def _one(
        self,
        brief: AdBrief,
        format_name: str,
        feature: AdFeature,
        prompt: str,
        cancel_event: Optional[threading.Event],
    ) -> GenerationResult:
        request = GenerationRequest(
            prompt=prompt,
            aspect_ratio=brief.aspect_ratio,
            language=brief.language or DEFAULT_LANGUAGE,
            num_outputs=brief.num_ads,
            provider=brief.provider,
        )
        return self.coordinator.generate(request, cancel_event=cancel_event)

    def generate(
        self,
        brief: AdBrief,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> dict[str, list[AdImage]]:
        trace = uuid.uuid4().hex[:8]
        jobs: list[tuple[str, AdFeature, str]] = []
        for format_name in brief.formats:
            for feature in brief.features:
                prompt = build_ad_prompt(
                    format_name,
                    brief.product,
                    brief.description,
                    feature.name,
                    feature.description,
                )
                if prompt is None:
                    logger.warning("[ads.skip>%s] unknown format=%r", trace, format_name)
                    break
                jobs.append((format_name, feature, prompt))

        logger.info(
            "[ads.start>%s] product=%r jobs=%d workers=%d",
            trace,
            brief.product,
            len(jobs),
            self.max_workers,
        )

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="ads") as pool:
            futures = [
                pool.submit(self._one, brief, format_name, feature, prompt, cancel_event)
                for format_name, feature, prompt in jobs
            ]

        results: dict[str, list[AdImage]] = {}
        for (format_name, feature, _), future in zip(jobs, futures):
            try:
                result = future.result()
            except (ConfigurationError, RequestCancelled):
                raise
            except Exception as exc:  # noqa: BLE001 - one failed pair does not sink the batch
                logger.warning(
                    "[ads.failed>%s] format=%r feature=%r error=%s",
                    trace,
                    format_name,
                    feature.name,
                    exc,
                )
                continue
            results.setdefault(format_name, []).extend(
                AdImage(
                    format=format_name,
                    feature=feature.name,
                    image=image,
                    provider_used=result.provider_used,
                    used_fallback=result.used_fallback,
                )
                for image in result.images
            )

        if not results:
            raise NoUsableImages("No images were generated")

        logger.info(
            "[ads.done>%s] formats=%d images=%d",
            trace,
            len(results),
            sum(len(items) for items in results.values()),
        )
        return results
