"""
Retry executor for flaky external AI and search calls.

Policies are named, immutable bundles of attempt/backoff settings plus the
error signatures that make a failure worth retrying. The executor delegates
the loop to tenacity and keeps the classification rule in one place so the
pipeline can reuse it when deciding whether an exhausted failure was
transient.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, Optional, TypeVar

from multilingual_rag.core.config import Settings
from multilingual_rag.metrics.retry_metrics import retry_attempts_total
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

LANGUAGE_MODEL_POLICY = "language_model"
TRANSLATION_POLICY = "translation"
FILE_SEARCH_POLICY = "file_search"


def error_message(exc: BaseException) -> str:
    """Text used for signature matching: the message, or the class name."""
    return str(exc) or type(exc).__name__


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt and backoff settings for one family of external calls."""

    name: str
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    retryable_error_signatures: frozenset[str] = frozenset()

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        # Normalize once so matching is a plain substring test
        object.__setattr__(
            self,
            "retryable_error_signatures",
            frozenset(s.lower() for s in self.retryable_error_signatures if s),
        )

    def delay_for(self, attempt: int) -> float:
        """Wait after the given (1-based) failed attempt."""
        return min(
            self.initial_delay * self.backoff_multiplier ** (attempt - 1),
            self.max_delay,
        )

    def is_retryable(self, exc: BaseException) -> bool:
        message = error_message(exc).lower()
        return any(sig in message for sig in self.retryable_error_signatures)


def build_retry_policies(settings: Settings) -> Dict[str, RetryPolicy]:
    """Build the named policies from application settings."""

    def _policy(name: str, prefix: str) -> RetryPolicy:
        return RetryPolicy(
            name=name,
            max_attempts=getattr(settings, f"{prefix}_MAX_ATTEMPTS"),
            initial_delay=getattr(settings, f"{prefix}_INITIAL_DELAY"),
            max_delay=getattr(settings, f"{prefix}_MAX_DELAY"),
            backoff_multiplier=getattr(settings, f"{prefix}_BACKOFF"),
            retryable_error_signatures=frozenset(getattr(settings, f"{prefix}_ERRORS")),
        )

    return {
        LANGUAGE_MODEL_POLICY: _policy(LANGUAGE_MODEL_POLICY, "RETRY_LANGUAGE_MODEL"),
        TRANSLATION_POLICY: _policy(TRANSLATION_POLICY, "RETRY_TRANSLATION"),
        FILE_SEARCH_POLICY: _policy(FILE_SEARCH_POLICY, "RETRY_FILE_SEARCH"),
    }


class RetryExecutor:
    """Run a coroutine factory under a RetryPolicy.

    Only the calling task is suspended between attempts. Non-retryable
    errors propagate after one invocation; on exhaustion the last error
    propagates unchanged and no wait follows the final attempt.
    """

    def __init__(
        self,
        policies: Optional[Iterable[RetryPolicy]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._sleep = sleep
        self.policies: Dict[str, RetryPolicy] = {
            policy.name: policy for policy in (policies or [])
        }

    def policy(self, name: str) -> RetryPolicy:
        try:
            return self.policies[name]
        except KeyError:
            raise KeyError(f"Unknown retry policy: {name}") from None

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy | str,
    ) -> T:
        if isinstance(policy, str):
            policy = self.policy(policy)

        def _before_sleep(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            wait = retry_state.next_action.sleep if retry_state.next_action else 0
            retry_attempts_total.labels(policy=policy.name, outcome="retry").inc()
            logger.warning(
                f"[{policy.name}] attempt {retry_state.attempt_number}/"
                f"{policy.max_attempts} failed ({type(exc).__name__}: {exc}); "
                f"retrying in {wait:.2f}s"
            )

        retrying = AsyncRetrying(
            sleep=self._sleep,
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_exponential(
                multiplier=policy.initial_delay,
                exp_base=policy.backoff_multiplier,
                max=policy.max_delay,
            ),
            retry=retry_if_exception(policy.is_retryable),
            before_sleep=_before_sleep,
            reraise=True,
        )

        async def _attempt() -> T:
            return await operation()

        try:
            result = await retrying(_attempt)
        except Exception as exc:
            attempts = retrying.statistics.get("attempt_number", 1)
            outcome = "exhausted" if policy.is_retryable(exc) else "non_retryable"
            retry_attempts_total.labels(policy=policy.name, outcome=outcome).inc()
            logger.error(
                f"[{policy.name}] giving up after {attempts} attempt(s): "
                f"{type(exc).__name__}: {exc}"
            )
            raise

        retry_attempts_total.labels(policy=policy.name, outcome="success").inc()
        return result
