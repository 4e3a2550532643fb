"""Connection pool settings, the shared HTTP transport and connection metrics."""

from __future__ import annotations

import ssl
import threading
import time
from dataclasses import dataclass, field, replace
from urllib.parse import urlsplit

import httpx

_CIPHERS = ":".join(
    (
        "ECDHE-ECDSA-AES128-GCM-SHA256",
        "ECDHE-ECDSA-AES256-GCM-SHA384",
        "ECDHE-ECDSA-CHACHA20-POLY1305",
        "ECDHE-RSA-AES128-GCM-SHA256",
        "ECDHE-RSA-AES256-GCM-SHA384",
        "ECDHE-RSA-CHACHA20-POLY1305",
    )
)
_HEALTHY_WINDOW = 300


@dataclass
class PoolConfig:
    """Connection pool settings. Durations are in seconds; zero means unset."""

    max_idle_conns: int = 200
    max_idle_conns_per_host: int = 20
    max_conns_per_host: int = 50
    max_total_conns: int = 1000

    dial_timeout: float = 10.0
    keep_alive: float = 30.0
    tls_handshake_timeout: float = 10.0
    response_header_timeout: float = 30.0
    idle_conn_timeout: float = 90.0
    expect_continue_timeout: float = 1.0

    tls_config: ssl.SSLContext | None = None
    min_tls_version: ssl.TLSVersion | None = ssl.TLSVersion.TLSv1_2
    max_tls_version: ssl.TLSVersion | None = ssl.TLSVersion.TLSv1_3
    insecure_skip_verify: bool = False

    enable_http2: bool = True
    http2_max_streams: int = 100

    proxy_url: str = ""

    disable_compression: bool = False
    disable_keep_alives: bool = False
    force_attempt_http2: bool = True

    cookie_jar: object = None

    enable_metrics: bool = True
    metrics_interval: float = 30.0


@dataclass
class HostStats:
    """Connection statistics for one host. ``average_latency`` is in seconds."""

    host: str
    active_conns: int = 0
    idle_conns: int = 0
    total_conns: int = 0
    failed_conns: int = 0
    last_used: int = 0
    average_latency: float = 0.0


@dataclass
class PoolMetrics:
    """A snapshot of pool-wide connection metrics."""

    active_connections: int = 0
    idle_connections: int = 0
    total_connections: int = 0
    rejected_connections: int = 0
    host_count: int = 0
    average_conns_per_host: float = 0.0
    max_conns_per_host: int = 0
    average_conn_time: float = 0.0
    max_conn_time: float = 0.0
    connection_hit_rate: float = 0.0
    healthy_hosts: int = 0
    unhealthy_hosts: int = 0
    last_update: int = 0
    hosts: dict[str, HostStats] = field(default_factory=dict)


def create_ssl_context(config: PoolConfig) -> ssl.SSLContext:
    """The TLS context the pool's transport uses."""
    if config.tls_config is not None:
        return config.tls_config
    context = ssl.create_default_context()
    if config.min_tls_version is not None:
        context.minimum_version = config.min_tls_version
    if config.max_tls_version is not None:
        context.maximum_version = config.max_tls_version
    if config.insecure_skip_verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    context.set_ciphers(_CIPHERS)
    return context


def _check_proxy(url: str) -> None:
    try:
        parts = urlsplit(url)
        _ = parts.port
    except ValueError as exc:
        raise ValueError(f"invalid proxy URL: {exc}") from exc
    if url.startswith(":") or not parts.scheme:
        raise ValueError("invalid proxy URL: missing protocol scheme")


class PoolManager:
    """Owns the shared transport and tracks per-host connection statistics."""

    def __init__(self, config: PoolConfig | None = None):
        self.config = config if config is not None else PoolConfig()
        cfg = self.config

        proxy = None
        if cfg.proxy_url:
            _check_proxy(cfg.proxy_url)
            proxy = httpx.Proxy(cfg.proxy_url)
        self.proxy = proxy

        self.ssl_context = create_ssl_context(cfg)
        self.limits = httpx.Limits(
            max_connections=cfg.max_total_conns or None,
            max_keepalive_connections=0 if cfg.disable_keep_alives else (cfg.max_idle_conns or None),
            keepalive_expiry=cfg.idle_conn_timeout or None,
        )
        self._transport = httpx.HTTPTransport(
            verify=self.ssl_context, limits=self.limits, proxy=proxy
        )

        self._lock = threading.Lock()
        self._active = 0
        self._idle = 0
        self._total = 0
        self._rejected = 0
        self._hosts: dict[str, HostStats] = {}
        self._metrics = PoolMetrics()
        self._closed = False
        self._done = threading.Event()

        if cfg.enable_metrics and cfg.metrics_interval > 0:
            threading.Thread(target=self._metrics_loop, daemon=True).start()

    def transport(self) -> httpx.HTTPTransport:
        return self._transport

    def record_connection(self, host: str, conn_time: float, success: bool) -> None:
        """Record a connection attempt to ``host`` that took ``conn_time`` seconds."""
        now = int(time.time())
        with self._lock:
            stats = self._hosts.setdefault(host, HostStats(host=host, last_used=now))
            if success:
                stats.total_conns += 1
                stats.active_conns += 1
                stats.average_latency = (stats.average_latency * 9 + conn_time) / 10
                self._total += 1
                self._active += 1
            else:
                stats.failed_conns += 1
                self._rejected += 1
            stats.last_used = now

    def release_connection(self, host: str) -> None:
        """Record that a connection to ``host`` was closed."""
        with self._lock:
            self._active -= 1
            stats = self._hosts.get(host)
            if stats is not None:
                stats.active_conns -= 1

    def update_metrics(self) -> None:
        """Recompute the metrics snapshot from the current counters."""
        now = int(time.time())
        with self._lock:
            m = self._metrics
            m.active_connections = self._active
            m.idle_connections = self._idle
            m.total_connections = self._total
            m.rejected_connections = self._rejected

            host_count = len(self._hosts)
            conns = [s.active_conns for s in self._hosts.values()]
            healthy = sum(
                1
                for s in self._hosts.values()
                if now - s.last_used < _HEALTHY_WINDOW
                and (s.total_conns == 0 or s.failed_conns / s.total_conns < 0.1)
            )
            m.host_count = host_count
            m.max_conns_per_host = max([0, *conns])
            m.healthy_hosts = healthy
            m.unhealthy_hosts = host_count - healthy
            if host_count:
                m.average_conns_per_host = sum(conns) / host_count
            attempts = self._total + self._rejected
            if attempts:
                m.connection_hit_rate = self._total / attempts
            m.hosts = {k: replace(v) for k, v in self._hosts.items()}
            m.last_update = now

    def metrics(self) -> PoolMetrics:
        """A copy of the latest metrics snapshot."""
        with self._lock:
            snapshot = replace(self._metrics)
            snapshot.hosts = dict(self._metrics.hosts)
            return snapshot

    def _metrics_loop(self) -> None:
        while not self._done.wait(self.config.metrics_interval):
            self.update_metrics()

    def close(self) -> None:
        """Stop metrics collection and drop idle connections. Safe to repeat."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._done.set()
        self._transport.close()

    def is_healthy(self) -> bool:
        m = self.metrics()
        if m.connection_hit_rate < 0.9:
            return False
        if m.host_count > 0 and m.healthy_hosts == 0:
            return False
        return m.active_connections < self.config.max_total_conns * 9 // 10