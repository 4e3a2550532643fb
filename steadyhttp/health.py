"""Health scoring of the client from request outcomes and resource use."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime

_NS_PER_SECOND = 1_000_000_000
_NS_PER_MS = 1_000_000
_HOUR_NS = 3600 * _NS_PER_SECOND


@dataclass
class HealthStatus:
    """A snapshot of client health. Latencies are in seconds."""

    is_healthy: bool = False
    health_score: int = 0
    total_requests: int = 0
    success_rate: float = 0.0
    failure_rate: float = 0.0
    timeout_rate: float = 0.0
    average_latency: float = 0.0
    max_latency: float = 0.0
    min_latency: float = 0.0
    active_connections: int = 0
    pool_utilization: float = 0.0
    memory_usage: int = 0
    last_check: datetime | None = None
    issues: list[str] = field(default_factory=list)


class HealthChecker:
    """Tracks request outcomes and turns them into a 0-100 health score."""

    def __init__(self):
        self._lock = threading.Lock()
        self.max_failure_rate = 0.05
        self.max_latency_threshold_ns = 5 * _NS_PER_SECOND
        self.max_pool_utilization = 0.8
        self._healthy = False
        self._score = 0
        self._last_health_check = 0
        self._clear()

    def _clear(self) -> None:
        self._total = 0
        self._successful = 0
        self._failed = 0
        self._timeouts = 0
        self._avg_latency_ns = 0
        self._max_latency_ns = 0
        self._min_latency_ns = _HOUR_NS
        self._active_connections = 0
        self._pool_utilization = 0
        self._memory_usage = 0

    def record_request(self, success: bool, latency: float, is_timeout: bool) -> None:
        """Record a finished request; ``latency`` is in seconds."""
        latency_ns = round(latency * _NS_PER_SECOND)
        with self._lock:
            self._total += 1
            if success:
                self._successful += 1
            else:
                self._failed += 1
            if is_timeout:
                self._timeouts += 1

            self._avg_latency_ns = (self._avg_latency_ns * 9 + latency_ns) // 10
            self._max_latency_ns = max(self._max_latency_ns, latency_ns)
            if latency_ns < self._min_latency_ns or self._min_latency_ns == _HOUR_NS:
                self._min_latency_ns = latency_ns

    def update_resource_metrics(self, active_conns: int, pool_util: float, mem_usage: int) -> None:
        """Store current connection count, pool utilisation (0-1) and memory use."""
        with self._lock:
            self._active_connections = active_conns
            self._pool_utilization = int(pool_util * 100)
            self._memory_usage = mem_usage

    def check_health(self) -> HealthStatus:
        """Compute the current health status and remember its verdict."""
        now = datetime.now()
        with self._lock:
            self._last_health_check = int(now.timestamp())
            total = self._total
            success_rate = failure_rate = timeout_rate = 0.0
            if total > 0:
                success_rate = self._successful / total
                failure_rate = self._failed / total
                timeout_rate = self._timeouts / total

            avg_ns = self._avg_latency_ns
            max_ns = self._max_latency_ns
            min_ns = 0 if self._min_latency_ns == _HOUR_NS else self._min_latency_ns
            pool_util = self._pool_utilization / 100

            score, issues = self._score_of(failure_rate, timeout_rate, avg_ns, pool_util)
            healthy = score >= 70
            self._healthy = healthy
            self._score = score

            return HealthStatus(
                is_healthy=healthy,
                health_score=score,
                total_requests=total,
                success_rate=success_rate,
                failure_rate=failure_rate,
                timeout_rate=timeout_rate,
                average_latency=avg_ns / _NS_PER_SECOND,
                max_latency=max_ns / _NS_PER_SECOND,
                min_latency=min_ns / _NS_PER_SECOND,
                active_connections=self._active_connections,
                pool_utilization=pool_util,
                memory_usage=self._memory_usage,
                last_check=now,
                issues=issues,
            )

    def _score_of(
        self, failure_rate: float, timeout_rate: float, avg_latency_ns: int, pool_util: float
    ) -> tuple[int, list[str]]:
        score = 100
        issues: list[str] = []

        if failure_rate > self.max_failure_rate:
            score -= int((failure_rate - self.max_failure_rate) * 1000)
            issues.append("High failure rate detected")

        if timeout_rate > 0.02:
            score -= int(timeout_rate * 500)
            issues.append("High timeout rate detected")

        if avg_latency_ns > self.max_latency_threshold_ns:
            score -= (avg_latency_ns - self.max_latency_threshold_ns) // _NS_PER_MS // 10
            issues.append("High average latency detected")

        if pool_util > self.max_pool_utilization:
            score -= int((pool_util - self.max_pool_utilization) * 200)
            issues.append("High connection pool utilization")

        return max(0, min(100, score)), issues

    def is_healthy(self) -> bool:
        """The verdict of the last health check."""
        with self._lock:
            return self._healthy

    def health_score(self) -> int:
        """The score of the last health check."""
        with self._lock:
            return self._score

    def reset(self) -> None:
        """Forget all recorded metrics and report healthy."""
        with self._lock:
            self._clear()
            self._healthy = True
            self._score = 100