"""Retry and fallback policies for provider calls.

Each provider owns one ``RetryPolicy``: attempt budget, backoff schedule,
retryable-error predicate and per-attempt timeout. Policies are plain data
so they can be exercised without any HTTP traffic.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_chain,
    wait_fixed,
    wait_none,
)

from cutroom.common.errors import (
    GenerationCancelledError,
    InvalidRequestError,
    NoMediaInResponseError,
    ProviderError,
)
from cutroom.common.logging import get_logger
from cutroom.providers.cancellation import CancellationToken, guarded

logger = get_logger(__name__)

T = TypeVar("T")

FIELD_REJECTION_KEYWORDS: tuple[str, ...] = (
    "unknown",
    "unexpected",
    "invalid",
    "not allowed",
    "not permitted",
    "extra",
)

_FAL_RETRYABLE_STATUSES = frozenset({408, 409, 425, 429})


def is_transient_error(exc: BaseException) -> bool:
    """5xx, 429, network errors and timeouts."""
    if isinstance(exc, ProviderError):
        return exc.is_transient
    return isinstance(exc, (httpx.TransportError, TimeoutError))


def is_fal_retryable(exc: BaseException) -> bool:
    """Transient errors plus the extra statuses fal uses for queue pressure."""
    if isinstance(exc, ProviderError) and exc.status in _FAL_RETRYABLE_STATUSES:
        return True
    return is_transient_error(exc)


def _never_retry(exc: BaseException) -> bool:
    return isinstance(
        exc, (GenerationCancelledError, InvalidRequestError, NoMediaInResponseError)
    )


@dataclass
class RetryPolicy:
    """Attempt budget and backoff schedule for one provider.

    ``backoff[i]`` is the wait after the ``i+1``-th failed attempt; the last
    value repeats if the schedule is shorter than the budget.
    """

    name: str
    max_attempts: int = 1
    backoff: tuple[float, ...] = ()
    is_retryable: Callable[[BaseException], bool] = is_transient_error
    attempt_timeout: float | None = None
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        cancel: CancellationToken | None = None,
    ) -> T:
        """Run ``operation`` until it succeeds or the policy gives up.

        The last error is re-raised unchanged when attempts are exhausted
        or the error is not retryable.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=self._wait_strategy(),
            retry=retry_if_exception(self._should_retry),
            sleep=self._sleeper(cancel),
            before_sleep=self._log_retry,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                if cancel is not None:
                    cancel.raise_if_cancelled()
                return await guarded(self._attempt(operation), cancel)

        raise AssertionError("unreachable")  # pragma: no cover

    async def _attempt(self, operation: Callable[[], Awaitable[T]]) -> T:
        if self.attempt_timeout is None:
            return await operation()
        try:
            return await asyncio.wait_for(operation(), timeout=self.attempt_timeout)
        except asyncio.TimeoutError as exc:
            raise ProviderError(
                self.name,
                f"{self.name} request timed out after {self.attempt_timeout:g}s",
            ) from exc

    def _should_retry(self, exc: BaseException) -> bool:
        if _never_retry(exc):
            return False
        return self.is_retryable(exc)

    def _wait_strategy(self):
        if not self.backoff:
            return wait_none()
        return wait_chain(*(wait_fixed(delay) for delay in self.backoff))

    def _sleeper(self, cancel: CancellationToken | None):
        async def sleep(seconds: float) -> None:
            await guarded(self.sleep(seconds), cancel)

        return sleep

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "provider_retry",
            provider=self.name,
            attempt=retry_state.attempt_number,
            max_attempts=self.max_attempts,
            wait=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(error),
        )


def openrouter_policy(attempt_timeout: float | None = 120.0) -> RetryPolicy:
    return RetryPolicy(
        name="openrouter",
        max_attempts=3,
        backoff=(1.0, 2.0),
        is_retryable=is_transient_error,
        attempt_timeout=attempt_timeout,
    )


def fal_policy(attempt_timeout: float | None = None) -> RetryPolicy:
    return RetryPolicy(
        name="fal",
        max_attempts=4,
        backoff=(3.0, 6.0, 9.0),
        is_retryable=is_fal_retryable,
        attempt_timeout=attempt_timeout,
    )


def replicate_policy(attempt_timeout: float | None = None) -> RetryPolicy:
    # Replicate keeps one attempt; recovery is the field-rejection fallback
    return RetryPolicy(name="replicate", max_attempts=1, attempt_timeout=attempt_timeout)


def _error_haystack(exc: ProviderError) -> str:
    body = exc.body
    if not isinstance(body, str):
        try:
            body = json.dumps(body)
        except (TypeError, ValueError):
            body = str(body)
    return f"{exc.message} {body}".lower()


def is_field_rejection(
    exc: BaseException,
    field_names: Iterable[str],
    keywords: Iterable[str] = FIELD_REJECTION_KEYWORDS,
) -> bool:
    """True when a 400/422 names one of ``field_names`` next to a rejection keyword."""
    names = [name.lower() for name in field_names]
    if not names or not isinstance(exc, ProviderError):
        return False
    if exc.status is not None and exc.status not in (400, 422):
        return False

    haystack = _error_haystack(exc)
    if not any(name in haystack for name in names):
        return False
    return any(keyword in haystack for keyword in keywords)


def strip_fields(payload: dict[str, Any], field_names: Iterable[str]) -> dict[str, Any]:
    dropped = set(field_names)
    return {key: value for key, value in payload.items() if key not in dropped}
