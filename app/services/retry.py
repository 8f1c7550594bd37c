from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from app.config import RetryConfig
from app.errors import FATAL_ERRORS, RequestCancelled, UpstreamError

logger = logging.getLogger("ad-gateway.retry")

T = TypeVar("T")


@dataclass
class RetryState:
    """Bookkeeping for one ``RetryExecutor.run`` call."""

    max_attempts: int
    base_delay: float
    attempt: int = 0
    last_error: Optional[Exception] = None
    delay: float = 0.0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def next_delay(self) -> float:
        # Linear backoff: base, 2*base, 3*base ...
        self.delay = self.base_delay * self.attempt
        return self.delay


class RetryExecutor:
    """Bounded retry with linear backoff around a single provider call."""

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or RetryConfig()
        self._sleep = sleep

    def is_retryable(self, exc: Exception) -> bool:
        if isinstance(exc, FATAL_ERRORS):
            return False
        if isinstance(exc, UpstreamError) and exc.is_auth_failure:
            return not self.config.fast_fail_auth
        return True

    def run(
        self,
        attempt_fn: Callable[[], T],
        *,
        max_attempts: int | None = None,
        base_delay: float | None = None,
        label: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> T:
        state = RetryState(
            max_attempts=max(1, max_attempts or self.config.max_attempts),
            base_delay=self.config.base_delay if base_delay is None else max(base_delay, 0.0),
        )
        trace = uuid.uuid4().hex[:8]
        name = label or getattr(attempt_fn, "__name__", "call")

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise RequestCancelled(f"{name} cancelled before attempt {state.attempt + 1}")

            state.attempt += 1
            logger.info(
                "[retry.attempt>%s] %s attempt=%d/%d",
                trace,
                name,
                state.attempt,
                state.max_attempts,
            )
            start = time.time()
            try:
                result = attempt_fn()
            except Exception as exc:  # noqa: BLE001 - classified below
                state.last_error = exc
                elapsed_ms = (time.time() - start) * 1000
                if not self.is_retryable(exc):
                    logger.warning(
                        "[retry.fatal>%s] %s attempt=%d error=%s time=%.0fms",
                        trace,
                        name,
                        state.attempt,
                        exc,
                        elapsed_ms,
                    )
                    raise
                if state.exhausted:
                    logger.error(
                        "[retry.exhausted>%s] %s attempts=%d error=%s",
                        trace,
                        name,
                        state.attempt,
                        exc,
                    )
                    raise
                delay = state.next_delay()
                logger.warning(
                    "[retry.backoff>%s] %s attempt=%d error=%s retry_in=%.1fs",
                    trace,
                    name,
                    state.attempt,
                    exc,
                    delay,
                )
                self._wait(delay, cancel_event, name)
                continue

            logger.info(
                "[retry.done>%s] %s attempt=%d time=%.0fms",
                trace,
                name,
                state.attempt,
                (time.time() - start) * 1000,
            )
            return result

    def _wait(self, delay: float, cancel_event: threading.Event | None, name: str) -> None:
        if delay <= 0:
            return
        if cancel_event is None:
            self._sleep(delay)
            return
        if cancel_event.wait(delay):
            raise RequestCancelled(f"{name} cancelled during backoff")
