"""Minimal Replicate predictions client over httpx."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable, Mapping

import httpx

from app.config import ReplicateConfig
from app.errors import UpstreamError

logger = logging.getLogger("ad-gateway.replicate")

_TERMINAL = {"succeeded", "failed", "canceled"}


class ReplicateClient:
    def __init__(
        self,
        config: ReplicateConfig,
        *,
        poll_interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.poll_interval = poll_interval
        self._sleep = sleep

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_token}",
            "Content-Type": "application/json",
            "Prefer": "wait",
        }

    def run(self, model: str, payload: Mapping[str, Any]) -> Any:
        """Create a prediction for ``model`` and return its ``output`` once finished."""

        if not self.config.api_token:
            raise UpstreamError("REPLICATE_API_TOKEN is not configured", code="NOT_CONFIGURED")

        trace = uuid.uuid4().hex[:8]
        url = f"{self.config.api_url}/models/{model}/predictions"
        deadline = time.time() + self.config.timeout
        logger.info(
            "[replicate.call>%s] model=%s keys=%s",
            trace,
            model,
            sorted(k for k in payload.keys() if k != "openai_api_key"),
        )
        start = time.time()
        try:
            with httpx.Client(timeout=self.config.timeout) as client:
                r = client.post(url, json={"input": dict(payload)}, headers=self._headers())
                prediction = self._decode(r, model)
                while prediction.get("status") not in _TERMINAL:
                    if time.time() >= deadline:
                        raise UpstreamError(
                            f"{model} prediction did not finish within {self.config.timeout:.0f}s",
                            code="TIMEOUT",
                            provider=model,
                        )
                    poll_url = (prediction.get("urls") or {}).get("get")
                    if not poll_url:
                        raise UpstreamError(
                            f"{model} prediction returned no polling URL", provider=model
                        )
                    self._sleep(self.poll_interval)
                    prediction = self._decode(client.get(poll_url, headers=self._headers()), model)
        except UpstreamError:
            raise
        except httpx.TimeoutException as exc:
            raise UpstreamError(f"{model} request timed out: {exc}", code="TIMEOUT", provider=model) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"{model} transport error: {exc}", code="TRANSPORT_ERROR", provider=model) from exc

        status = prediction.get("status")
        if status != "succeeded":
            raise UpstreamError(
                f"{model} prediction {status}: {prediction.get('error') or 'no detail'}",
                code="PREDICTION_FAILED",
                provider=model,
            )

        logger.info(
            "[replicate.done>%s] model=%s time=%.0fms",
            trace,
            model,
            (time.time() - start) * 1000,
        )
        return prediction.get("output")

    @staticmethod
    def _decode(response: httpx.Response, model: str) -> dict[str, Any]:
        if response.status_code >= 400:
            raise UpstreamError(
                f"{model} returned HTTP {response.status_code}: {response.text[:300]}",
                code="HTTP_ERROR",
                status_code=response.status_code,
                provider=model,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamError(f"{model} returned non-JSON body: {exc}", provider=model) from exc
        if not isinstance(data, dict):
            raise UpstreamError(f"{model} returned unexpected body", provider=model)
        return data
