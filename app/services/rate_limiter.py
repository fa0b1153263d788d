"""Rate-limit detection and exponential backoff for provider calls"""

import logging
import math
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Mapping, Optional, TypeVar

from app.models.repository_connection import ProviderType
from app.services.cancellation import CancellationToken
from app.services.errors import OperationCancelledError, RateLimitError
from app.services.sync_types import RateLimitInfo

logger = logging.getLogger(__name__)

T = TypeVar("T")

_rng = random.SystemRandom()

# Header prefix carrying limit/remaining/reset, per provider
_RATE_LIMIT_HEADER_PREFIX = {
    ProviderType.GITHUB: "x-ratelimit-",
    ProviderType.GITLAB: "ratelimit-",
}


@dataclass(frozen=True)
class BackoffConfig:
    """Backoff tuning, all durations in seconds."""

    base_delay: float = 60
    max_attempts: int = 5
    max_delay: float = 600
    jitter_range: float = 10

    @classmethod
    def from_settings(cls, settings) -> "BackoffConfig":
        return cls(
            base_delay=settings.sync_backoff_base_delay,
            max_attempts=settings.sync_backoff_max_attempts,
            max_delay=settings.sync_backoff_max_delay,
            jitter_range=settings.sync_backoff_jitter,
        )


@dataclass(frozen=True)
class RateLimitDetection:
    is_rate_limited: bool
    rate_limit_info: Optional[RateLimitInfo] = None
    # Seconds to wait, when the response told us
    retry_after: Optional[float] = None


def _header(headers: Optional[Mapping[str, str]], name: str) -> Optional[str]:
    if not headers:
        return None
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def parse_retry_after(value: Optional[str], now: Optional[float] = None) -> Optional[float]:
    """Parse a Retry-After header given as delta-seconds or an HTTP date."""
    if value is None or not str(value).strip():
        return None
    value = str(value).strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = time.time() if now is None else now
    return max(0.0, when.timestamp() - now)


def _parse_rate_limit_info(
    headers: Optional[Mapping[str, str]], provider: ProviderType
) -> Optional[RateLimitInfo]:
    prefix = _RATE_LIMIT_HEADER_PREFIX.get(provider)
    if prefix is None:
        return None
    limit = _parse_int(_header(headers, prefix + "limit"))
    remaining = _parse_int(_header(headers, prefix + "remaining"))
    reset = _parse_int(_header(headers, prefix + "reset"))
    if limit is None or remaining is None or reset is None:
        return None
    return RateLimitInfo(limit=limit, remaining=remaining, reset=reset)


def detect_rate_limit(
    status_code: int,
    headers: Optional[Mapping[str, str]],
    provider: ProviderType,
    now: Optional[float] = None,
) -> RateLimitDetection:
    """Decide whether a response is a throttle and how long the provider wants us to wait.

    429 means rate-limited everywhere; GitHub also signals secondary limits with 403.
    An explicit Retry-After wins; otherwise an exhausted quota waits until its reset.
    """
    rate_limited = status_code == 429 or (status_code == 403 and provider == ProviderType.GITHUB)
    if not rate_limited:
        return RateLimitDetection(is_rate_limited=False)

    info = _parse_rate_limit_info(headers, provider)
    retry_after = parse_retry_after(_header(headers, "retry-after"), now=now)

    if retry_after is None and info is not None and info.remaining == 0 and info.reset:
        now = time.time() if now is None else now
        retry_after = max(0.0, info.reset - now)

    return RateLimitDetection(is_rate_limited=True, rate_limit_info=info, retry_after=retry_after)


def calculate_backoff_delay(attempt: int, config: Optional[BackoffConfig] = None) -> int:
    """Delay in milliseconds before retry number `attempt` (0-based)."""
    config = config or BackoffConfig()
    delay = config.base_delay * (2 ** attempt) + _rng.uniform(0, config.jitter_range)
    return math.floor(min(delay, config.max_delay) * 1000)


def create_rate_limit_error(
    status_code: int,
    headers: Optional[Mapping[str, str]],
    provider: ProviderType,
    message: Optional[str] = None,
) -> RateLimitError:
    detection = detect_rate_limit(status_code, headers, provider)
    if not detection.is_rate_limited:
        raise ValueError(f"Response with status {status_code} is not a rate limit response")
    return RateLimitError(
        message or f"{provider.value} API rate limit exceeded",
        provider=provider,
        rate_limit_info=detection.rate_limit_info,
        retry_after=detection.retry_after,
    )


def _sleep(seconds: float, cancel_token: Optional[CancellationToken]) -> None:
    if cancel_token is None:
        time.sleep(seconds)
        return
    if cancel_token.wait(seconds):
        raise OperationCancelledError("Operation cancelled while waiting for rate limit")


def with_retry(
    fn: Callable[[], T],
    config: Optional[BackoffConfig] = None,
    on_retry: Optional[Callable[[int, float, RateLimitError], None]] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> T:
    """Call `fn`, retrying only on RateLimitError.

    Waits the provider's Retry-After when given, the computed backoff otherwise.
    After `max_attempts` calls the last RateLimitError is re-raised.
    """
    config = config or BackoffConfig()
    attempt = 0
    while True:
        try:
            return fn()
        except RateLimitError as e:
            attempt += 1
            if attempt >= config.max_attempts:
                logger.error(
                    f"{e.provider.value} rate limit persisted after {attempt} attempts, giving up"
                )
                raise

            if e.retry_after is not None:
                delay_s = float(e.retry_after)
            else:
                delay_s = calculate_backoff_delay(attempt - 1, config) / 1000.0

            logger.warning(
                f"{e.provider.value} rate limit hit (attempt {attempt}/{config.max_attempts}), "
                f"retrying in {delay_s:.1f}s"
            )
            if on_retry is not None:
                on_retry(attempt, delay_s, e)

            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            _sleep(delay_s, cancel_token)
