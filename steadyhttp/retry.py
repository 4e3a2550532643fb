"""Retry decisions and exponential backoff delays."""

from __future__ import annotations

import asyncio
import concurrent.futures
import math
import re
import secrets
from collections.abc import Iterator
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

from .errors import DNSError, NetError, OpError
from .models import Config, Response

_RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})

_NETWORK_PATTERNS = (
    "connection refused",
    "no such host",
    "timeout",
    "connection reset by peer",
    "broken pipe",
    "network unreachable",
    "host unreachable",
)

_CANCELLED = (asyncio.CancelledError, concurrent.futures.CancelledError)
_INTEGER = re.compile(r"[+-]?\d+")
_MAX_NANOS = 2**63 - 1


def _chain(err: BaseException | None) -> Iterator[BaseException]:
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        yield err
        err = err.__cause__


def _parse_retry_after(value: str) -> float | None:
    """Seconds to wait according to a Retry-After value, or None."""
    value = value.strip()
    if _INTEGER.fullmatch(value):
        seconds = int(value)
        return float(seconds) if seconds > 0 else None
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    delay = (when - datetime.now(timezone.utc)).total_seconds()
    return delay if delay > 0 else None


class RetryEngine:
    """Decides whether a request is retried and how long to wait first."""

    def __init__(self, config: Config):
        self.config = config

    def max_retries(self) -> int:
        return self.config.max_retries

    def should_retry(
        self, resp: Response | None, err: BaseException | None, attempt: int
    ) -> bool:
        """Whether attempt number ``attempt`` (from zero) may be followed by another."""
        if attempt >= self.config.max_retries:
            return False
        if err is not None:
            return self.is_retryable_error(err)
        if resp is not None:
            return self.is_retryable_status(resp.status_code)
        return False

    def get_delay(self, attempt: int) -> float:
        return self.get_delay_with_response(attempt, None)

    def get_delay_with_response(self, attempt: int, resp: Response | None) -> float:
        """Seconds to wait before the next attempt, honouring Retry-After."""
        if resp is not None and resp.headers:
            values = resp.headers.get("Retry-After")
            if values:
                delay = _parse_retry_after(values[0])
                if delay is not None:
                    return delay

        cfg = self.config
        base = cfg.retry_delay if cfg.retry_delay > 0 else 1.0
        factor = cfg.backoff_factor if cfg.backoff_factor > 0 else 2.0

        scaled = round(base * 1e9) * math.pow(factor, attempt) if attempt >= 0 else 0.0
        delay_ns = _MAX_NANOS if scaled >= _MAX_NANOS else int(scaled)

        if cfg.max_retry_delay > 0:
            delay_ns = min(delay_ns, round(cfg.max_retry_delay * 1e9))

        if cfg.jitter:
            spread = delay_ns // 10
            delay_ns = delay_ns - spread + self._jitter_ns(spread * 2)

        return delay_ns / 1e9

    def is_retryable_error(self, err: BaseException) -> bool:
        """Whether a transport-level failure is worth another attempt."""
        chain = list(_chain(err))
        if any(isinstance(e, _CANCELLED) for e in chain):
            return False
        if any(isinstance(e, TimeoutError) for e in chain):
            return False

        text = str(err)
        if "context canceled" in text or "request context canceled" in text:
            return False

        if isinstance(err, DNSError):
            return err.is_timeout or err.temporary()
        if isinstance(err, OpError):
            if "context" in text:
                return False
            return err.temporary()
        if isinstance(err, NetError):
            if "context" in text:
                return False
            return err.timeout()

        return any(pattern in text for pattern in _NETWORK_PATTERNS)

    def is_retryable_status(self, status_code: int) -> bool:
        return status_code in _RETRYABLE_STATUSES

    def secure_jitter(self, max_jitter: float) -> float:
        """A random duration in seconds in [0, max_jitter)."""
        return self._jitter_ns(int(max_jitter * 1e9)) / 1e9

    @staticmethod
    def _jitter_ns(max_ns: int) -> int:
        if max_ns <= 0:
            return 0
        return secrets.randbelow(max_ns)