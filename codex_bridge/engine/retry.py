"""Retry orchestration with exponential backoff and per-kind eligibility.

Every failure is classified before deciding. Installation, permission and
version problems are never retried regardless of policy; rate limits are
retried at most twice. On the final failure the host's show-error hook
sees the classified error, then the policy's on_failure hook runs, then
the original exception propagates unchanged.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import random
import sys
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar, Union

from .error_classifier import classify_exception
from .hooks import HostHooks, fire_hook
from .models import (
    FATAL_KINDS,
    ClassifiedError,
    ErrorKind,
    RetryAttemptState,
    RetryOutcome,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_MAX_RETRIES = 2
JITTER_RATIO = 0.1

DEFAULT_RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset({
    ErrorKind.TIMEOUT,
    ErrorKind.NETWORK_ERROR,
    ErrorKind.RATE_LIMITED,
    ErrorKind.EXECUTION_FAILED,
})

ShouldRetry = Callable[[ClassifiedError, int], Union[bool, Awaitable[bool]]]


@dataclass(frozen=True)
class RetryHooks:
    """Per-call lifecycle hooks; each optional, sync or async.

    on_retry(attempt, classified) fires before each backoff sleep.
    on_success(result, attempts) fires once on success.
    on_failure(classified, attempts) fires once on the final failure.
    should_retry(classified, attempt) overrides kind eligibility, but
    cannot revive a fatal kind or lift the rate-limit cap.
    """
    on_retry: Callable[[int, ClassifiedError], Any] | None = None
    on_success: Callable[[Any, int], Any] | None = None
    on_failure: Callable[[ClassifiedError, int], Any] | None = None
    should_retry: ShouldRetry | None = None


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    retryable_kinds: frozenset[ErrorKind] = DEFAULT_RETRYABLE_KINDS
    hooks: RetryHooks = field(default_factory=RetryHooks)


def compute_delay(
    policy: RetryPolicy,
    attempt: int,
    rng: Callable[[], float] = random.random,
) -> float:
    """Backoff before retry number *attempt* (1-based), with up to 10% jitter."""
    exponential = policy.base_delay * (policy.backoff_multiplier ** (attempt - 1))
    jitter = rng() * JITTER_RATIO * exponential
    return min(exponential + jitter, policy.max_delay)


class RetryRegistry:
    """In-flight retry calls. cancel_all() stops any further attempts."""

    def __init__(self) -> None:
        self._states: dict[str, RetryAttemptState] = {}

    def register(self, operation_name: str) -> tuple[str, RetryAttemptState]:
        operation_id = f"{operation_name}_{uuid.uuid4().hex[:12]}"
        state = RetryAttemptState(operation_name=operation_name)
        self._states[operation_id] = state
        return operation_id, state

    def unregister(self, operation_id: str) -> None:
        self._states.pop(operation_id, None)

    def is_active(self, operation_id: str) -> bool:
        return operation_id in self._states

    def active_operations(self) -> list[str]:
        return [state.operation_name for state in self._states.values()]

    def statistics(self) -> dict[str, Any]:
        now = time.monotonic()
        return {
            "active_count": len(self._states),
            "operations": [
                {
                    "id": operation_id,
                    "name": state.operation_name,
                    "attempt": state.attempt_number,
                    "elapsed": round(now - state.start_time, 3),
                    "last_error": str(state.last_error) if state.last_error else None,
                }
                for operation_id, state in self._states.items()
            ],
        }

    def cancel_all(self) -> int:
        count = len(self._states)
        self._states.clear()
        if count:
            logger.info("Cancelled %d retry operation(s)", count)
        return count

    def __len__(self) -> int:
        return len(self._states)


class RetryOrchestrator:
    """Runs async operations under a RetryPolicy."""

    def __init__(
        self,
        registry: RetryRegistry | None = None,
        *,
        host_hooks: HostHooks | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
        platform: str | None = None,
    ) -> None:
        self._registry = registry if registry is not None else RetryRegistry()
        self._host_hooks = host_hooks or HostHooks()
        self._sleep = sleep
        self._rng = rng
        self._platform = platform or sys.platform

    @property
    def registry(self) -> RetryRegistry:
        return self._registry

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str,
        policy: RetryPolicy | None = None,
    ) -> T:
        """Return the operation's result or re-raise its final exception."""
        outcome = await self.run(operation, operation_name, policy)
        if outcome.success:
            return outcome.result
        if outcome.error is None:
            raise RuntimeError(f"{operation_name} failed without an exception")
        raise outcome.error

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str,
        policy: RetryPolicy | None = None,
    ) -> RetryOutcome:
        """Like execute_with_retry() but reports the failure as a RetryOutcome."""
        policy = policy or RetryPolicy()
        operation_id, state = self._registry.register(operation_name)
        try:
            while True:
                state.attempt_number += 1
                attempt = state.attempt_number
                try:
                    result = await operation()
                except Exception as exc:
                    state.last_error = exc
                    classified = classify_exception(
                        exc,
                        platform=self._platform,
                        context={"operation": operation_name, "attempt": attempt},
                    )
                    logger.warning(
                        "%s attempt %d/%d failed kind=%s: %s",
                        operation_name, attempt, policy.max_attempts,
                        classified.kind.value, exc,
                    )
                    if not await self._should_retry(classified, attempt, policy):
                        return await self._fail(state, exc, classified, policy)
                    if not self._registry.is_active(operation_id):
                        logger.info("%s retries cancelled", operation_name)
                        return await self._fail(state, exc, classified, policy)

                    delay = compute_delay(policy, attempt, self._rng)
                    await fire_hook(
                        self._host_hooks.show_progress,
                        f"Retrying {operation_name} "
                        f"(attempt {attempt + 1}/{policy.max_attempts}) "
                        f"in {delay:.1f}s",
                    )
                    await fire_hook(policy.hooks.on_retry, attempt, classified)
                    await self._sleep(delay)
                    if not self._registry.is_active(operation_id):
                        logger.info("%s retries cancelled during backoff", operation_name)
                        return await self._fail(state, exc, classified, policy)
                    continue

                elapsed = time.monotonic() - state.start_time
                if attempt > 1:
                    logger.info("%s succeeded on attempt %d", operation_name, attempt)
                await fire_hook(policy.hooks.on_success, result, attempt)
                return RetryOutcome(
                    success=True, attempts=attempt, elapsed=elapsed, result=result,
                )
        finally:
            self._registry.unregister(operation_id)

    async def _should_retry(
        self, classified: ClassifiedError, attempt: int, policy: RetryPolicy,
    ) -> bool:
        if attempt >= policy.max_attempts:
            return False
        if classified.kind in FATAL_KINDS:
            return False
        if (
            classified.kind == ErrorKind.RATE_LIMITED
            and attempt > RATE_LIMIT_MAX_RETRIES
        ):
            return False
        override = policy.hooks.should_retry
        if override is not None:
            try:
                decision = override(classified, attempt)
                if inspect.isawaitable(decision):
                    decision = await decision
                return bool(decision)
            except Exception:
                logger.exception("should_retry hook raised; not retrying")
                return False
        return classified.is_retryable and classified.kind in policy.retryable_kinds

    async def _fail(
        self,
        state: RetryAttemptState,
        error: Exception,
        classified: ClassifiedError,
        policy: RetryPolicy,
    ) -> RetryOutcome:
        attempts = state.attempt_number
        logger.error(
            "%s failed after %d attempt(s) kind=%s",
            state.operation_name, attempts, classified.kind.value,
        )
        await fire_hook(self._host_hooks.show_error, classified)
        await fire_hook(policy.hooks.on_failure, classified, attempts)
        return RetryOutcome(
            success=False,
            attempts=attempts,
            elapsed=time.monotonic() - state.start_time,
            error=error,
            classified=classified,
        )

    def active_operations(self) -> list[str]:
        return self._registry.active_operations()

    def statistics(self) -> dict[str, Any]:
        return self._registry.statistics()

    def cancel_all(self) -> int:
        return self._registry.cancel_all()
