"""Client error types and classification of request failures."""

from __future__ import annotations

import asyncio
import concurrent.futures
import enum
import re
import socket
import string
from collections.abc import Iterator
from urllib.parse import SplitResult, quote, unquote, urlsplit, urlunsplit


class ErrorType(enum.IntEnum):
    """Category of a client failure."""

    UNKNOWN = 0
    NETWORK = 1
    TIMEOUT = 2
    CONTEXT_CANCELED = 3
    RESPONSE_READ = 4
    TRANSPORT = 5
    RETRY_EXHAUSTED = 6
    TLS = 7
    CERTIFICATE = 8
    DNS = 9
    VALIDATION = 10
    CIRCUIT_BREAKER = 11
    HTTP = 12


_CODES = {
    ErrorType.NETWORK: "NETWORK_ERROR",
    ErrorType.TIMEOUT: "TIMEOUT",
    ErrorType.CONTEXT_CANCELED: "CONTEXT_CANCELED",
    ErrorType.RESPONSE_READ: "RESPONSE_READ_ERROR",
    ErrorType.TRANSPORT: "TRANSPORT_ERROR",
    ErrorType.RETRY_EXHAUSTED: "RETRY_EXHAUSTED",
    ErrorType.TLS: "TLS_ERROR",
    ErrorType.CERTIFICATE: "CERTIFICATE_ERROR",
    ErrorType.DNS: "DNS_ERROR",
    ErrorType.VALIDATION: "VALIDATION_ERROR",
    ErrorType.CIRCUIT_BREAKER: "CIRCUIT_BREAKER_OPEN",
    ErrorType.HTTP: "HTTP_ERROR",
}

_CANCELLED = (asyncio.CancelledError, concurrent.futures.CancelledError)


class NetError(Exception):
    """A network failure that may be a timeout or a temporary condition."""

    def __init__(self, message: str = "", *, timeout: bool = False, temporary: bool = False):
        super().__init__(message)
        self._timeout = timeout
        self._temporary = temporary

    def timeout(self) -> bool:
        return self._timeout

    def temporary(self) -> bool:
        return self._temporary


class OpError(NetError):
    """A failed network operation such as a dial or a read."""

    def __init__(self, op: str = "", net: str = "", addr: str = "", err: BaseException | None = None):
        self.op = op
        self.net = net
        self.addr = addr
        self.err = err
        super().__init__(self._describe())
        if err is not None:
            self.__cause__ = err

    def _describe(self) -> str:
        text = " ".join(part for part in (self.op, self.net, self.addr) if part)
        if self.err is not None:
            text = f"{text}: {self.err}"
        return text

    def __str__(self) -> str:
        return self._describe()

    def timeout(self) -> bool:
        if isinstance(self.err, NetError):
            return self.err.timeout()
        return isinstance(self.err, TimeoutError)

    def temporary(self) -> bool:
        if isinstance(self.err, NetError):
            return self.err.temporary()
        return isinstance(self.err, TimeoutError)


class DNSError(NetError):
    """A failed name lookup."""

    def __init__(
        self,
        err: str = "",
        name: str = "",
        server: str = "",
        *,
        is_timeout: bool = False,
        is_temporary: bool = False,
        is_not_found: bool = False,
    ):
        self.err = err
        self.name = name
        self.server = server
        self.is_timeout = is_timeout
        self.is_temporary = is_temporary
        self.is_not_found = is_not_found
        super().__init__(self._describe())

    def _describe(self) -> str:
        text = f"lookup {self.name}"
        if self.server:
            text += f" on {self.server}"
        return f"{text}: {self.err}"

    def __str__(self) -> str:
        return self._describe()

    def timeout(self) -> bool:
        return self.is_timeout

    def temporary(self) -> bool:
        return self.is_timeout or self.is_temporary


def _chain(err: BaseException | None) -> Iterator[BaseException]:
    """Yield the error and every error it was raised from."""
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        yield err
        err = err.__cause__


class ClientError(Exception):
    """A classified failure of an HTTP request."""

    def __init__(
        self,
        error_type: ErrorType = ErrorType.UNKNOWN,
        message: str = "",
        cause: BaseException | None = None,
        url: str = "",
        method: str = "",
        attempts: int = 0,
        status_code: int = 0,
        host: str = "",
    ):
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.cause = cause
        self.url = url
        self.method = method
        self.attempts = attempts
        self.status_code = status_code
        self.host = host
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.url and self.method:
            base = f"{self.method} {sanitize_url(self.url)}: {self.message}"
        else:
            base = self.message
        if self.attempts > 0:
            return f"{base} (attempt {self.attempts})"
        return base

    def is_retryable(self) -> bool:
        """Whether the failure is likely transient."""
        kind = self.error_type
        if kind in (ErrorType.NETWORK, ErrorType.TIMEOUT, ErrorType.TRANSPORT, ErrorType.DNS):
            return True
        if kind == ErrorType.RESPONSE_READ:
            if self.cause is None:
                return True
            if any(isinstance(e, OpError) for e in _chain(self.cause)):
                return True
            text = str(self.cause)
            return any(word in text for word in ("EOF", "connection", "timeout"))
        if kind == ErrorType.HTTP:
            return any(
                f"HTTP {code}" in self.message for code in (429, 500, 502, 503, 504)
            )
        return False

    def code(self) -> str:
        """A stable string code for programmatic handling."""
        return _CODES.get(self.error_type, "UNKNOWN_ERROR")


_MESSAGE_RULES: tuple[tuple[object, ErrorType, str | None], ...] = (
    (lambda m: "HTTP " in m and ("HTTP 4" in m or "HTTP 5" in m), ErrorType.HTTP, None),
    (lambda m: "tls:" in m or "TLS handshake" in m, ErrorType.TLS, "TLS handshake error"),
    (lambda m: "certificate" in m or "x509" in m, ErrorType.CERTIFICATE, "certificate validation error"),
    (lambda m: "transport" in m or "round trip" in m, ErrorType.TRANSPORT, "HTTP transport error"),
    (
        lambda m: "failed to read response body" in m,
        ErrorType.RESPONSE_READ,
        "failed to read response body",
    ),
    (lambda m: "connection refused" in m, ErrorType.NETWORK, "connection refused by server"),
    (lambda m: "no such host" in m, ErrorType.NETWORK, "DNS resolution failed"),
    (lambda m: "timeout" in m and "context" not in m, ErrorType.TIMEOUT, "operation timed out"),
    (lambda m: "validation failed" in m, ErrorType.VALIDATION, "request validation failed"),
    (lambda m: "circuit breaker" in m, ErrorType.CIRCUIT_BREAKER, "circuit breaker is open"),
    (
        lambda m: "panic during request execution" in m,
        ErrorType.UNKNOWN,
        "internal error during request execution",
    ),
    (lambda m: "connection reset by peer" in m, ErrorType.NETWORK, "connection reset by peer"),
    (lambda m: "broken pipe" in m, ErrorType.NETWORK, "broken pipe"),
    (lambda m: "EOF" in m, ErrorType.RESPONSE_READ, "unexpected end of response"),
)


def _typed(err: BaseException, url: str, method: str, attempts: int) -> tuple[ErrorType, str] | None:
    chain = list(_chain(err))
    if any(isinstance(e, _CANCELLED) for e in chain):
        return ErrorType.CONTEXT_CANCELED, "request was canceled"
    if any(isinstance(e, TimeoutError) for e in chain):
        return ErrorType.TIMEOUT, "request timeout"

    text = str(err)
    if "context canceled" in text:
        return ErrorType.CONTEXT_CANCELED, "request context was canceled"
    if "context deadline exceeded" in text:
        return ErrorType.TIMEOUT, "request context deadline exceeded"
    if (
        "missing protocol scheme" in text
        or "invalid URL" in text
        or ("parse" in text and "://" in text)
    ):
        return ErrorType.VALIDATION, "URL validation failed"

    if isinstance(err, DNSError):
        if err.is_timeout:
            return ErrorType.NETWORK, "DNS resolution timed out"
        if err.is_temporary:
            return ErrorType.NETWORK, "temporary DNS resolution failure"
        return ErrorType.NETWORK, "DNS resolution failed"
    if isinstance(err, socket.gaierror):
        return ErrorType.NETWORK, "DNS resolution failed"
    if isinstance(err, OpError):
        if err.timeout():
            return ErrorType.NETWORK, "network operation timed out"
        if err.temporary():
            return ErrorType.NETWORK, "temporary network operation failed"
        return ErrorType.NETWORK, "network operation failed"
    if isinstance(err, NetError):
        if err.timeout():
            return ErrorType.TIMEOUT, "network timeout occurred"
        if err.temporary():
            return ErrorType.NETWORK, "temporary network error occurred"
        return ErrorType.NETWORK, "network error occurred"
    if isinstance(err, ConnectionError):
        return ErrorType.NETWORK, "network error occurred"
    return None


def classify_error(
    err: BaseException | None, url: str = "", method: str = "", attempts: int = 0
) -> ClientError | None:
    """Wrap an arbitrary failure in a categorised ClientError."""
    if err is None:
        return None
    found = _typed(err, url, method, attempts)
    if found is None:
        text = str(err)
        for matches, kind, message in _MESSAGE_RULES:
            if matches(text):  # type: ignore[operator]
                found = (kind, text if message is None else message)
                break
        else:
            found = (ErrorType.UNKNOWN, f"unknown error: {text}")
    kind, message = found
    return ClientError(kind, message, cause=err, url=url, method=method, attempts=attempts)


_VALID_ENCODED = frozenset(string.ascii_letters + string.digits + "-_.~!$&'()*+,;=:@[]/%")
_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def _parse(url: str) -> SplitResult:
    if any(ord(c) < 0x20 or ord(c) == 0x7F for c in url):
        raise ValueError("invalid control character in URL")
    if url.startswith(":"):
        raise ValueError("missing protocol scheme")
    parts = urlsplit(url)
    _ = parts.port
    for component in (parts.netloc, parts.path, parts.fragment):
        if _BAD_ESCAPE.search(component):
            raise ValueError("invalid URL escape")
    return parts


def _escaped_path(raw: str) -> str:
    if all(c in _VALID_ENCODED for c in raw):
        return raw
    return quote(unquote(raw), safe="$&+,/:;=@")


def sanitize_url(url: str) -> str:
    """Return the URL with any user credentials masked."""
    try:
        parts = _parse(url)
    except ValueError:
        return "[invalid-url]"

    if "@" in parts.netloc:
        host = parts.netloc.rpartition("@")[2]
        tail = unquote(parts.path)
        if parts.query:
            tail += "?" + parts.query
        if parts.fragment:
            tail += "#" + unquote(parts.fragment)
        mask = "***:***" if parts.password is not None else "***"
        return f"{parts.scheme}://{mask}@{host}{tail}"

    return urlunsplit(
        (parts.scheme, parts.netloc, _escaped_path(parts.path), parts.query, parts.fragment)
    )


_NETWORK_KEYWORDS = (
    "connection",
    "network",
    "timeout",
    "refused",
    "reset",
    "broken pipe",
    "no route",
    "unreachable",
    "dns",
    "resolve",
)


def is_network_related(err: BaseException | None) -> bool:
    """Whether the error looks like a network-level failure."""
    if err is None:
        return False
    if isinstance(err, (NetError, ConnectionError, TimeoutError, socket.gaierror)):
        return True
    text = str(err).lower()
    return any(keyword in text for keyword in _NETWORK_KEYWORDS)