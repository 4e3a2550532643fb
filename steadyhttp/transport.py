"""Sending built requests through the pool's shared transport."""

from __future__ import annotations

import httpx

from .models import Config
from .pool import PoolManager


def _timeout_of(pool: PoolManager) -> httpx.Timeout:
    cfg = pool.config
    return httpx.Timeout(
        connect=cfg.dial_timeout or None,
        read=cfg.response_header_timeout or None,
        write=None,
        pool=None,
    )


class Transport:
    """An HTTP client bound to a pool, with redirect and cookie policy applied."""

    def __init__(self, config: Config, pool: PoolManager):
        if config is None:
            raise ValueError("config cannot be None")
        if pool is None:
            raise ValueError("connection pool cannot be None")
        self.config = config
        self.pool = pool
        cookies = config.cookie_jar if config.enable_cookies and config.cookie_jar is not None else None
        self._client = httpx.Client(
            transport=pool.transport(),
            follow_redirects=config.follow_redirects,
            cookies=cookies,
            timeout=_timeout_of(pool),
        )
        self._closed = False

    def round_trip(self, request: httpx.Request) -> httpx.Response:
        """Send the request; the response body is left unread."""
        try:
            return self._client.send(request, stream=True)
        except httpx.TimeoutException as exc:
            raise TimeoutError(f"transport round trip failed: {exc}") from exc
        except httpx.ConnectError as exc:
            raise ConnectionError(f"transport round trip failed: {exc}") from exc
        except httpx.HTTPError as exc:
            raise OSError(f"transport round trip failed: {exc}") from exc

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._client.close()