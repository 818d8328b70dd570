"""
Resilient retry utilities.

Provides exponential-backoff execution of async operations, retryability
decisions on top of the error taxonomy, user-facing error guidance and an
in-memory store for partial results.
"""

import asyncio
import copy
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, Sequence, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from clonecheck.models.schemas import ErrorGuidance
from clonecheck.utils.errors import AppError, ErrorType, classify_by_type
from clonecheck.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


DEFAULT_RETRYABLE_PATTERNS: tuple[str, ...] = (
    "timeout",
    "etimedout",
    "econnreset",
    "econnrefused",
    "connection reset",
    "connection refused",
    "enotfound",
    "network",
    "fetch failed",
    "rate limit",
    "quota",
    "resource_exhausted",
    "deadline_exceeded",
    "429",
    "502",
    "503",
    "504",
)


# =============================================================================
# Results
# =============================================================================

class OperationCancelledError(Exception):
    """Raised inside the retry loop once its cancel event is set."""

    def __init__(self, message: str = "Operation cancelled"):
        super().__init__(message)


@dataclass
class RetryResult(Generic[T]):
    """Outcome of ``retry_with_backoff``."""
    success: bool
    data: Optional[T] = None
    error: Optional[BaseException] = None
    attempts: int = 0
    total_time_ms: int = 0
    cancelled: bool = False


# =============================================================================
# Retryability
# =============================================================================

def is_retryable_error(
    error: BaseException,
    patterns: Optional[Sequence[str]] = None,
) -> bool:
    """
    Decide whether a failed operation is worth re-attempting.

    Errors of our own taxonomy answer with their ``retryable`` flag, and
    exceptions the taxonomy knows by type (network stack, httpx, SDK errors)
    answer with the flag of the kind they classify to. Anything else is
    matched case-insensitively on message and class name against
    ``DEFAULT_RETRYABLE_PATTERNS``. Supplying ``patterns`` forces pattern
    matching against that list for every error.
    """
    if patterns is None:
        if isinstance(error, AppError):
            return error.retryable
        typed = classify_by_type(error)
        if typed is not None:
            return typed.retryable

    candidates = DEFAULT_RETRYABLE_PATTERNS if patterns is None else patterns
    haystack = f"{error} {type(error).__name__}".lower()
    return any(pattern.lower() in haystack for pattern in candidates)


# =============================================================================
# Retry Executor
# =============================================================================

async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    delay_ms: int = 1000,
    backoff_multiplier: float = 2.0,
    max_delay_ms: int = 10000,
    retryable_errors: Optional[Sequence[str]] = None,
    on_retry: Optional[Callable[[BaseException, int], None]] = None,
    cancel_event: Optional[asyncio.Event] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> RetryResult[T]:
    """
    Execute ``fn`` with exponential backoff.

    The n-th wait is ``delay_ms * backoff_multiplier ** (n - 1)`` capped at
    ``max_delay_ms``. Non-retryable failures stop immediately. Setting
    ``cancel_event`` stops the loop before the next attempt, interrupting a
    pending backoff sleep.

    Never raises for failures of ``fn``; the outcome is reported in the
    returned ``RetryResult``.

    Example:
        >>> result = await retry_with_backoff(call_provider, max_attempts=3)
        >>> if not result.success:
        ...     raise classify_error(result.error)
    """
    start = time.monotonic()
    attempts = 0

    def elapsed_ms() -> int:
        return int((time.monotonic() - start) * 1000)

    async def attempt() -> T:
        nonlocal attempts
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelledError()
        attempts += 1
        return await fn()

    def should_retry(error: BaseException) -> bool:
        if isinstance(error, OperationCancelledError):
            return False
        retryable = is_retryable_error(error, retryable_errors)
        if not retryable:
            logger.info(
                "Non-retryable error",
                attempt=attempts,
                error=str(error),
                error_class=type(error).__name__,
            )
        return retryable

    def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        wait_s = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            "Retryable error, backing off",
            attempt=retry_state.attempt_number,
            max_attempts=max_attempts,
            wait_ms=int(wait_s * 1000),
            error=str(error),
        )
        if on_retry:
            try:
                on_retry(error, retry_state.attempt_number)
            except Exception as callback_error:
                logger.warning("on_retry callback failed", error=str(callback_error))

    async def backoff_sleep(seconds: float) -> None:
        if cancel_event is None:
            await sleep(seconds)
            return
        sleeper = asyncio.ensure_future(sleep(seconds))
        waiter = asyncio.ensure_future(cancel_event.wait())
        _, pending = await asyncio.wait(
            {sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_exponential(
            multiplier=delay_ms / 1000,
            exp_base=backoff_multiplier,
            max=max_delay_ms / 1000,
        ),
        retry=retry_if_exception(should_retry),
        before_sleep=before_sleep,
        sleep=backoff_sleep,
        reraise=True,
    )

    try:
        data = await retrying(attempt)
    except OperationCancelledError as e:
        logger.info("Retry loop cancelled", attempts=attempts)
        return RetryResult(
            success=False,
            error=e,
            attempts=attempts,
            total_time_ms=elapsed_ms(),
            cancelled=True,
        )
    except Exception as e:
        return RetryResult(
            success=False,
            error=e,
            attempts=attempts,
            total_time_ms=elapsed_ms(),
        )

    return RetryResult(
        success=True,
        data=data,
        attempts=attempts,
        total_time_ms=elapsed_ms(),
    )


# =============================================================================
# Error Guidance
# =============================================================================

_GUIDANCE: dict[str, ErrorGuidance] = {
    "timeout": ErrorGuidance(
        user_message=(
            "The AI service took too long to respond. "
            "This usually happens during high traffic periods."
        ),
        next_steps=[
            "Wait 1-2 minutes and try again",
            "The system will automatically retry with a longer timeout",
            "If the problem persists, try a different time of day",
        ],
        retryable=True,
        estimated_wait_time="1-2 minutes",
    ),
    "rate_limit": ErrorGuidance(
        user_message="The AI service rate limit has been reached. This is temporary.",
        next_steps=[
            "Wait 5-10 minutes before trying again",
            "Rate limits reset automatically",
            "Consider upgrading your AI provider plan for higher limits",
        ],
        retryable=True,
        estimated_wait_time="5-10 minutes",
    ),
    "network": ErrorGuidance(
        user_message="A network error occurred while connecting to the AI service.",
        next_steps=[
            "Check your internet connection",
            "Try again in a few moments",
            "The system will automatically retry",
        ],
        retryable=True,
        estimated_wait_time="30 seconds",
    ),
    "api_key": ErrorGuidance(
        user_message="There is an issue with the AI service configuration.",
        next_steps=[
            "Contact support to verify API key configuration",
            "This is not a temporary issue and requires administrator action",
        ],
        retryable=False,
    ),
    "validation": ErrorGuidance(
        user_message="The AI service returned invalid data. This is usually temporary.",
        next_steps=[
            "Try again - the AI will generate a new response",
            "If this persists, the prompt may need adjustment",
            "Contact support if you see this repeatedly",
        ],
        retryable=True,
        estimated_wait_time="30 seconds",
    ),
}

# Ordered: first matching bucket wins.
_GUIDANCE_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("timeout", ("timeout", "etimedout")),
    ("rate_limit", ("rate limit", "quota", "429")),
    ("network", ("network", "econnrefused", "econnreset", "connection")),
    ("api_key", ("api key", "unauthorized", "401")),
    ("validation", ("validation", "schema", "invalid")),
]

_GUIDANCE_BY_KIND: dict[ErrorType, str] = {
    ErrorType.TIMEOUT: "timeout",
    ErrorType.RATE_LIMIT: "rate_limit",
    ErrorType.AI_PROVIDER: "network",
    ErrorType.FIRST_PARTY_EXTRACTION: "network",
    ErrorType.CONFIG: "api_key",
}


def _generic_guidance(context: Optional[str]) -> ErrorGuidance:
    suffix = f" while {context}" if context else ""
    return ErrorGuidance(
        user_message=f"An unexpected error occurred{suffix}.",
        next_steps=[
            "Try again in a few moments",
            "If the problem persists, contact support",
            "Include the error message when reporting issues",
        ],
        retryable=True,
        estimated_wait_time="1 minute",
    )


def generate_error_guidance(
    error: BaseException,
    context: Optional[str] = None,
) -> ErrorGuidance:
    """
    Map a failure to user-facing guidance with concrete next steps.

    Taxonomy errors are mapped by kind when the kind has a dedicated bucket;
    everything else is matched on lowercased message keywords. For taxonomy
    errors the ``retryable`` flag always comes from the error itself.

    Args:
        error: The failure to explain.
        context: What was being done, e.g. ``"analyzing the website"``.
    """
    guidance: Optional[ErrorGuidance] = None

    if isinstance(error, AppError):
        bucket = _GUIDANCE_BY_KIND.get(error.error_type)
        if bucket:
            guidance = _GUIDANCE[bucket]

    if guidance is None:
        message = str(error).lower()
        for bucket, keywords in _GUIDANCE_KEYWORDS:
            if any(keyword in message for keyword in keywords):
                guidance = _GUIDANCE[bucket]
                break

    if guidance is None:
        guidance = _generic_guidance(context)

    if isinstance(error, AppError) and guidance.retryable != error.retryable:
        return guidance.model_copy(update={"retryable": error.retryable}, deep=True)
    return guidance.model_copy(deep=True)


# =============================================================================
# Partial Results
# =============================================================================

class PartialResultStore:
    """
    In-memory holder for partially completed work.

    Keeps the last intermediate payload under a key so a failed stage can be
    inspected or resumed. Values are deep-copied on the way in and out.
    """

    def __init__(self):
        self._cache: dict[str, Any] = {}

    async def save(self, key: str, partial_data: Any) -> None:
        self._cache[key] = copy.deepcopy(partial_data)
        logger.debug("Saved partial result", key=key)

    async def load(self, key: str) -> Optional[Any]:
        data = self._cache.get(key)
        if data is None:
            return None
        logger.debug("Loaded partial result", key=key)
        return copy.deepcopy(data)

    async def clear(self, key: str) -> None:
        self._cache.pop(key, None)
        logger.debug("Cleared partial result", key=key)

    def __contains__(self, key: str) -> bool:
        return key in self._cache

    def __len__(self) -> int:
        return len(self._cache)


__all__ = [
    "DEFAULT_RETRYABLE_PATTERNS",
    "OperationCancelledError",
    "RetryResult",
    "is_retryable_error",
    "retry_with_backoff",
    "generate_error_guidance",
    "PartialResultStore",
]
