"""Validation of outgoing requests: URLs, target hosts, headers and body size."""

from __future__ import annotations

import socket
from dataclasses import dataclass, field
from ipaddress import IPv4Address, IPv6Address, ip_address, ip_network
from typing import Any
from urllib.parse import SplitResult, urlsplit

_MAX_URL_LENGTH = 2048
_MAX_HEADER_KEY_LENGTH = 256
_MAX_HEADER_VALUE_LENGTH = 8192
_VALID_SCHEMES = ("http", "https")
_MANAGED_HEADERS = frozenset({"content-length", "transfer-encoding"})
_HEADER_KEY_CHARS = frozenset(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-"
)
_PRIVATE_NETWORKS = tuple(
    ip_network(net) for net in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "fc00::/7")
)


class ValidationError(ValueError):
    """A request was rejected before it was sent."""


@dataclass
class SecurityConfig:
    """What the validator checks and the limits it applies."""

    validate_url: bool = True
    validate_headers: bool = True
    max_response_body_size: int = 50 * 1024 * 1024
    max_concurrent_requests: int = 1000
    allow_private_ips: bool = False


@dataclass
class ValidationRequest:
    """The parts of a request that are subject to validation."""

    method: str = ""
    url: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    query_params: dict[str, Any] = field(default_factory=dict)
    body: Any = None


def is_localhost(hostname: str) -> bool:
    """Whether the name denotes the local machine."""
    hostname = hostname.lower()
    return (
        hostname in ("localhost", "127.0.0.1", "::1", "0.0.0.0", "::")
        or hostname.startswith("127.")
        or hostname.startswith("localhost.")
    )


def is_private_or_reserved_ip(ip: str | IPv4Address | IPv6Address) -> bool:
    """Whether the address is loopback, private, link-local, multicast or reserved."""
    addr = ip if isinstance(ip, (IPv4Address, IPv6Address)) else ip_address(ip)
    if isinstance(addr, IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    if addr.is_loopback or addr.is_link_local or addr.is_multicast or addr.is_unspecified:
        return True
    if any(addr in net for net in _PRIVATE_NETWORKS if net.version == addr.version):
        return True
    if isinstance(addr, IPv4Address):
        first = addr.packed[0]
        return first >= 240 or first == 0
    return False


def _hostname_of(host: str) -> str:
    if host.startswith("["):
        end = host.find("]")
        return host[1:end] if end != -1 else host
    if host.count(":") == 1:
        return host.partition(":")[0]
    return host


def _parse_ip(text: str) -> IPv4Address | IPv6Address | None:
    try:
        return ip_address(text.partition("%")[0])
    except ValueError:
        return None


def _resolve(hostname: str) -> set[str]:
    try:
        infos = socket.getaddrinfo(hostname, None)
    except (OSError, UnicodeError):
        return set()
    return {str(info[4][0]) for info in infos}


class Validator:
    """Rejects requests that are malformed or aimed at internal addresses."""

    def __init__(self, config: SecurityConfig | None = None):
        self.config = config if config is not None else SecurityConfig()

    def validate_request(self, req: ValidationRequest) -> None:
        """Raise ValidationError if any part of the request is unacceptable."""
        if self.config.validate_url:
            try:
                self.validate_url(req.url)
            except ValidationError as exc:
                raise ValidationError(f"URL validation failed: {exc}") from exc

        if self.config.validate_headers:
            for key, value in req.headers.items():
                try:
                    self.validate_header(key, value)
                except ValidationError as exc:
                    raise ValidationError(
                        f"header validation failed for {key}: {exc}"
                    ) from exc

        if req.body is not None:
            try:
                self.validate_request_size(req.body)
            except ValidationError as exc:
                raise ValidationError(f"request size validation failed: {exc}") from exc

    def validate_url(self, url: str) -> SplitResult:
        """Check the URL and return its parsed form."""
        if not url:
            raise ValidationError("URL cannot be empty")
        if len(url) > _MAX_URL_LENGTH:
            raise ValidationError(f"URL too long (max {_MAX_URL_LENGTH} characters)")

        try:
            parts = urlsplit(url)
            _ = parts.port
        except ValueError as exc:
            raise ValidationError(f"invalid URL format: {exc}") from exc

        if not parts.scheme:
            raise ValidationError("URL scheme is required")
        host = parts.netloc.rpartition("@")[2]
        if not host:
            raise ValidationError("URL host is required")
        if parts.scheme not in _VALID_SCHEMES:
            raise ValidationError(
                f"unsupported URL scheme: {parts.scheme} (only http/https allowed)"
            )

        try:
            self.validate_host(host)
        except ValidationError as exc:
            raise ValidationError(f"host validation failed: {exc}") from exc
        return parts

    def validate_host(self, host: str) -> None:
        """Reject loopback, private and reserved targets unless they are allowed."""
        if self.config.allow_private_ips:
            return

        hostname = _hostname_of(host)
        if is_localhost(hostname):
            raise ValidationError("localhost and loopback addresses are not allowed")

        addr = _parse_ip(hostname)
        if addr is not None:
            if is_private_or_reserved_ip(addr):
                raise ValidationError(
                    f"private or reserved IP addresses are not allowed: {addr}"
                )
            return

        # A failed lookup is left for the request itself to report.
        for resolved in _resolve(hostname):
            found = _parse_ip(resolved)
            if found is not None and is_private_or_reserved_ip(found):
                raise ValidationError("private or reserved IP addresses are not allowed")

    def validate_header(self, key: str, value: str) -> None:
        """Reject header names and values that could corrupt the request."""
        if not key.strip():
            raise ValidationError("header key cannot be empty")
        if len(key) > _MAX_HEADER_KEY_LENGTH:
            raise ValidationError(
                f"header key too long (max {_MAX_HEADER_KEY_LENGTH} characters)"
            )
        if any(c in "\r\n\x00" for c in key) or any(c in "\r\n\x00" for c in value):
            raise ValidationError("header contains invalid characters")
        if len(value.encode("utf-8")) > _MAX_HEADER_VALUE_LENGTH:
            raise ValidationError("header value too long (max 8KB)")
        if not all(c in _HEADER_KEY_CHARS for c in key):
            raise ValidationError("invalid character in header key")
        if key.startswith(":"):
            raise ValidationError("pseudo-headers are not allowed")
        if key.lower() in _MANAGED_HEADERS:
            raise ValidationError("header is managed automatically")

    def validate_request_size(self, body: Any) -> None:
        """Reject string or byte bodies larger than the configured limit."""
        limit = self.config.max_response_body_size
        if limit <= 0 or body is None:
            return
        if isinstance(body, str):
            size = len(body.encode("utf-8"))
        elif isinstance(body, (bytes, bytearray, memoryview)):
            size = len(bytes(body))
        else:
            return
        if size > limit:
            raise ValidationError(f"request body size {size} exceeds maximum {limit}")