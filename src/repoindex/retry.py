"""Shared retry policy for the HTTP collaborators (GitHub, embedding APIs)."""

import logging

import httpx
import tenacity

# 429: rate limited, 5xx: transient server or gateway failure
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def is_retryable_http_error(exc: BaseException) -> bool:
    """Timeouts, network errors, malformed responses and transient status codes."""
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code in RETRYABLE_STATUS_CODES:
        return True
    return False


def _retry_logger(log: logging.Logger, label: str):
    def before_sleep(retry_state: tenacity.RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if exc is None:
            return
        detail = str(exc)
        if isinstance(exc, httpx.HTTPStatusError):
            detail = f"HTTP {exc.response.status_code}"
        log.warning(
            "[RETRY] %s attempt %d failed: %s: %s",
            label, retry_state.attempt_number, type(exc).__name__, detail,
        )

    return before_sleep


def retrying(
    log: logging.Logger,
    label: str,
    max_attempts: int = 3,
    initial_delay_s: float = 0.5,
) -> tenacity.AsyncRetrying:
    """Build an AsyncRetrying that re-raises the last error once attempts run out."""
    return tenacity.AsyncRetrying(
        retry=tenacity.retry_if_exception(is_retryable_http_error),
        stop=tenacity.stop_after_attempt(max_attempts),
        wait=tenacity.wait_exponential(multiplier=initial_delay_s, max=5),
        before_sleep=_retry_logger(log, label),
        reraise=True,
    )
