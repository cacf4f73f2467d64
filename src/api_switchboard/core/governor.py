import asyncio
import time
from datetime import datetime, UTC
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from loguru import logger
from pydantic import BaseModel

from api_switchboard.core.control import JobControl
from api_switchboard.core.errors import TransportError
from api_switchboard.core.request import HttpResult
from api_switchboard.core.utils import parse_int

FetchFunc = Callable[[], Awaitable[HttpResult]]
RetryListener = Callable[[str], Any]

# Header name variants, checked in order
LIMIT_HEADERS = ['x-ratelimit-limit', 'x-rate-limit-limit', 'ratelimit-limit']
REMAINING_HEADERS = ['x-ratelimit-remaining', 'x-rate-limit-remaining', 'ratelimit-remaining']
RESET_HEADERS = ['x-ratelimit-reset', 'x-rate-limit-reset', 'ratelimit-reset', 'retry-after']


class RateLimitConfig(BaseModel):
    """Configuration for request pacing and retry with exponential backoff."""
    min_delay_ms: int = 500                    # Minimum gap between request starts
    retry_on_429: bool = True                  # Whether to retry Too Many Requests
    retry_budget: int = 3                      # Retries allowed per governed call
    backoff_base_ms: int = 2000                # First backoff step
    backoff_max_ms: int = 30000                # Cap for 429 exponential backoff


class QuotaHints(BaseModel):
    # Advisory values parsed from the last response, display only
    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset_at: Optional[int] = None


class RateGovernorState(BaseModel):
    min_delay_ms: int = 500
    last_request_at: Optional[float] = None    # Monotonic seconds
    retry_budget: int = 3
    consumed_retries: int = 0
    quota: Optional[QuotaHints] = None
    is_waiting: bool = False
    wait_reason: Optional[str] = None
    last_wait_ms: int = 0


def extract_quota_hints(headers: Mapping[str, str]) -> Optional[QuotaHints]:
    """Parse rate-limit headers (names already lower-cased)."""
    if not headers:
        return None

    def first(names):
        for name in names:
            if name in headers:
                return parse_int(headers[name])
        return None

    hints = QuotaHints(
        limit=first(LIMIT_HEADERS),
        remaining=first(REMAINING_HEADERS),
        reset_at=first(RESET_HEADERS)
    )
    if hints.limit is None and hints.remaining is None and hints.reset_at is None:
        return None
    return hints


def parse_retry_after_ms(value: Optional[str]) -> Optional[int]:
    """Retry-After as milliseconds: delta-seconds or an HTTP date."""
    if value is None:
        return None
    seconds = parse_int(value)
    if seconds is not None:
        return max(seconds, 0) * 1000
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(int((when - datetime.now(UTC)).total_seconds() * 1000), 0)


class RateGovernor:
    """Wraps single HTTP calls with pacing, 429 backoff and network retries.

    One call in flight at a time. Network failures and exhausted budgets
    come back as ``HttpResult`` values; nothing is raised to the caller.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        control: Optional[JobControl] = None,
        clock: Callable[[], float] = time.monotonic,
        on_retry: Optional[RetryListener] = None
    ):
        self.config = config or RateLimitConfig()
        self.control = control or JobControl()
        self._clock = clock
        self._on_retry = on_retry
        self.state = RateGovernorState(
            min_delay_ms=self.config.min_delay_ms,
            retry_budget=self.config.retry_budget
        )
        self._metrics: Dict[str, Any] = {
            'requests_made': 0,
            'rate_limit_hits': 0,
            'network_failures': 0,
            'retry_attempts': 0,
            'total_wait_ms': 0
        }

    def rate_limit_backoff_ms(self, result: HttpResult, attempt: int) -> int:
        """Wait before retrying a 429; ``attempt`` is the 1-based retry number."""
        header = result.header('retry-after')
        if header is not None:
            wait_ms = parse_retry_after_ms(header)
            if wait_ms is not None:
                return wait_ms
            return self.config.backoff_base_ms * attempt
        return min(
            self.config.backoff_base_ms * (2 ** (attempt - 1)),
            self.config.backoff_max_ms
        )

    def network_backoff_ms(self, attempt: int) -> int:
        return self.config.backoff_base_ms * attempt

    def _report_retry(self, kind: str, wait_ms: int) -> None:
        if self._on_retry:
            self._on_retry(
                f"{kind} (retry {self.state.consumed_retries}, waiting {wait_ms / 1000:g}s)"
            )

    async def _wait(self, wait_ms: int, reason: str) -> bool:
        self.state.is_waiting = True
        self.state.wait_reason = reason
        self.state.last_wait_ms = wait_ms
        self._metrics['total_wait_ms'] += wait_ms
        try:
            return await self.control.sleep(wait_ms / 1000)
        finally:
            self.state.is_waiting = False
            self.state.wait_reason = None

    async def _respect_min_delay(self) -> bool:
        if self.state.last_request_at is None or self.config.min_delay_ms <= 0:
            return not self.control.is_cancelled
        elapsed_ms = (self._clock() - self.state.last_request_at) * 1000
        if elapsed_ms >= self.config.min_delay_ms:
            return not self.control.is_cancelled
        return await self._wait(int(self.config.min_delay_ms - elapsed_ms), "delay")

    async def execute(self, fetch_fn: FetchFunc) -> HttpResult:
        """Run ``fetch_fn`` under the pacing and retry policy."""
        self.state.consumed_retries = 0
        attempts = 0

        while True:
            if not await self._respect_min_delay():
                return HttpResult.cancelled_result()
            if not await self.control.wait_while_paused():
                return HttpResult.cancelled_result()

            attempts += 1
            self.state.last_request_at = self._clock()
            self._metrics['requests_made'] += 1

            try:
                result = await fetch_fn()
            except (TransportError, asyncio.TimeoutError, OSError) as e:
                self._metrics['network_failures'] += 1
                if self.state.consumed_retries < self.config.retry_budget:
                    self.state.consumed_retries += 1
                    self._metrics['retry_attempts'] += 1
                    wait_ms = self.network_backoff_ms(self.state.consumed_retries)
                    logger.warning(
                        f"Request failed without response (attempt {attempts}): {e}. "
                        f"Retrying in {wait_ms}ms"
                    )
                    self._report_retry("network error", wait_ms)
                    if not await self._wait(wait_ms, "retry"):
                        return HttpResult.cancelled_result()
                    continue
                logger.error(f"Request failed after {attempts} attempts: {e}")
                return HttpResult.network_failure(str(e), attempts=attempts)

            quota = extract_quota_hints(result.headers)
            if quota:
                self.state.quota = quota

            if result.rate_limited:
                self._metrics['rate_limit_hits'] += 1
                if self.config.retry_on_429 and self.state.consumed_retries < self.config.retry_budget:
                    self.state.consumed_retries += 1
                    self._metrics['retry_attempts'] += 1
                    wait_ms = self.rate_limit_backoff_ms(result, self.state.consumed_retries)
                    logger.warning(
                        f"Rate limited (429), retry {self.state.consumed_retries}/"
                        f"{self.config.retry_budget} in {wait_ms}ms"
                    )
                    self._report_retry("rate-limited", wait_ms)
                    if not await self._wait(wait_ms, "rate-limit"):
                        return HttpResult.cancelled_result()
                    continue
                logger.error(f"Rate limit retry budget exhausted after {attempts} attempts")
                return result.model_copy(update={'attempts': attempts})

            self.state.consumed_retries = 0
            return result.model_copy(update={'attempts': attempts})

    def get_metrics(self) -> Dict[str, Any]:
        """Get current governor metrics."""
        metrics = self._metrics.copy()
        metrics['consumed_retries'] = self.state.consumed_retries
        if self.state.quota:
            metrics['quota_remaining'] = self.state.quota.remaining
        return metrics
