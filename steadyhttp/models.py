"""Configuration, request and response records shared by the client."""

from __future__ import annotations

import ssl
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Cookie:
    """A single HTTP cookie."""

    name: str
    value: str = ""
    path: str = ""
    domain: str = ""
    secure: bool = False
    http_only: bool = False


@dataclass
class Config:
    """Client settings. Durations are in seconds; zero means unset."""

    timeout: float = 0.0
    dial_timeout: float = 0.0
    keep_alive: float = 0.0
    tls_handshake_timeout: float = 0.0
    response_header_timeout: float = 0.0
    idle_conn_timeout: float = 0.0
    max_idle_conns: int = 0
    max_idle_conns_per_host: int = 0
    max_conns_per_host: int = 0
    proxy_url: str = ""

    tls_config: ssl.SSLContext | None = None
    min_tls_version: ssl.TLSVersion | None = None
    max_tls_version: ssl.TLSVersion | None = None
    insecure_skip_verify: bool = False
    max_response_body_size: int = 0
    max_concurrent_requests: int = 0
    validate_url: bool = False
    validate_headers: bool = False
    allow_private_ips: bool = False
    strict_content_length: bool = False

    max_retries: int = 0
    retry_delay: float = 0.0
    max_retry_delay: float = 0.0
    backoff_factor: float = 0.0
    jitter: bool = False

    user_agent: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    follow_redirects: bool = False
    enable_http2: bool = False

    cookie_jar: Any = None
    enable_cookies: bool = False


@dataclass
class Request:
    """An outgoing request before it is built for the wire.

    ``deadline`` is a ``time.monotonic()`` value after which the request
    is abandoned; ``None`` means no deadline.
    """

    method: str = ""
    url: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    query_params: dict[str, Any] = field(default_factory=dict)
    body: Any = None
    timeout: float = 0.0
    max_retries: int = 0
    deadline: float | None = None
    cookies: list[Cookie] = field(default_factory=list)


@dataclass
class Response:
    """A fully read HTTP response. ``duration`` is in seconds."""

    status_code: int = 0
    status: str = ""
    headers: dict[str, list[str]] = field(default_factory=dict)
    body: str = ""
    raw_body: bytes = b""
    content_length: int = 0
    proto: str = ""
    duration: float = 0.0
    attempts: int = 0
    request: Any = None
    response: Any = None
    cookies: list[Cookie] = field(default_factory=list)