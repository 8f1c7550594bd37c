"""Error taxonomy shared by the provider adapters, the coordinator and the API layer."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Sequence


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class GatewayError(Exception):
    """Base class for every failure the gateway reports to a caller."""

    status_code: int = 500
    code: str = "GATEWAY_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "timestamp": utcnow_iso(),
        }


class ConfigurationError(GatewayError):
    """A credential or setting required for the operation is missing."""

    status_code = 500
    code = "CONFIGURATION_ERROR"


class InvalidRequest(GatewayError):
    status_code = 400
    code = "INVALID_REQUEST"


class InvalidImageData(InvalidRequest):
    code = "INVALID_IMAGE_DATA"


class UpstreamError(GatewayError):
    """Transport failure, non-success status or provider-reported error."""

    status_code = 502
    code = "UPSTREAM_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str = "UPSTREAM_ERROR",
        status_code: int | None = None,
        provider: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.upstream_status = status_code
        self.provider = provider

    @property
    def is_auth_failure(self) -> bool:
        return self.upstream_status in {401, 403}


class NoUsableImages(GatewayError):
    """The provider answered but no entry could be turned into an image reference."""

    status_code = 502
    code = "NO_USABLE_IMAGES"


class FallbackTransformError(GatewayError):
    status_code = 502
    code = "FALLBACK_TRANSFORM_ERROR"


class RequestCancelled(GatewayError):
    status_code = 499
    code = "REQUEST_CANCELLED"


@dataclass(frozen=True)
class ProviderAttempt:
    provider: str
    error: Exception

    def describe(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "error": getattr(self.error, "code", type(self.error).__name__),
            "message": str(self.error),
        }


class ProvidersExhausted(GatewayError):
    """Every available strategy failed; carries the terminal error of each one."""

    status_code = 502
    code = "PROVIDERS_EXHAUSTED"

    def __init__(self, attempts: Sequence[ProviderAttempt], message: str | None = None) -> None:
        self.attempts = list(attempts)
        if message is None:
            summary = "; ".join(f"{a.provider}: {a.error}" for a in self.attempts)
            message = f"All image providers failed. {summary}" if summary else "No provider available"
        super().__init__(message)

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["attempts"] = [attempt.describe() for attempt in self.attempts]
        return payload


# Raised as-is by the retry executor without consuming further attempts.
FATAL_ERRORS: tuple[type[Exception], ...] = (ConfigurationError, InvalidRequest, RequestCancelled)

__all__ = [
    "ConfigurationError",
    "FATAL_ERRORS",
    "FallbackTransformError",
    "GatewayError",
    "InvalidImageData",
    "InvalidRequest",
    "NoUsableImages",
    "ProviderAttempt",
    "ProvidersExhausted",
    "RequestCancelled",
    "UpstreamError",
    "utcnow_iso",
]
