"""The HTTP client: validation, retries, health tracking and resource pools."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import replace
from typing import Any

import httpx

from .errors import ClientError, classify_error
from .health import HealthChecker, HealthStatus
from .memory import MemoryConfig, MemoryManager
from .models import Config, Request, Response
from .pool import PoolConfig, PoolManager
from .request import RequestProcessor
from .response import ResponseProcessor
from .retry import RetryEngine
from .security import SecurityConfig, ValidationError, ValidationRequest, Validator
from .transport import Transport

RequestOption = Callable[[Request], Any]


class _RequestFailure(Exception):
    """A failure described in words, chained to what caused it."""


def _failure(message: str, cause: BaseException | None, req: Request, attempts: int = 0) -> ClientError:
    err = _RequestFailure(message)
    if cause is not None:
        err.__cause__ = cause
    return classify_error(err, req.url, req.method, attempts)  # type: ignore[return-value]


def _chain_has_timeout(err: BaseException) -> bool:
    seen: set[int] = set()
    current: BaseException | None = err
    while current is not None and id(current) not in seen:
        if isinstance(current, TimeoutError):
            return True
        seen.add(id(current))
        current = current.__cause__
    return False


class Client:
    """Sends HTTP requests with validation, retries and health monitoring."""

    def __init__(self, config: Config):
        if config is None:
            raise ValueError("config cannot be None")
        self.config = config

        self._memory = MemoryManager(MemoryConfig())
        pool_config = replace(
            PoolConfig(),
            max_idle_conns=config.max_idle_conns,
            max_idle_conns_per_host=config.max_idle_conns_per_host,
            max_conns_per_host=config.max_conns_per_host,
            dial_timeout=config.dial_timeout,
            keep_alive=config.keep_alive,
            tls_handshake_timeout=config.tls_handshake_timeout,
            response_header_timeout=config.response_header_timeout,
            idle_conn_timeout=config.idle_conn_timeout,
            min_tls_version=config.min_tls_version,
            max_tls_version=config.max_tls_version,
            insecure_skip_verify=config.insecure_skip_verify,
            enable_http2=config.enable_http2,
            proxy_url=config.proxy_url,
            cookie_jar=config.cookie_jar,
        )
        try:
            self._pool = PoolManager(pool_config)
        except ValueError as exc:
            self._memory.close()
            raise ValueError(f"failed to create connection pool: {exc}") from exc

        self._transport = Transport(config, self._pool)
        self._request_processor = RequestProcessor(config)
        self._response_processor = ResponseProcessor(config)
        self._retry = RetryEngine(config)
        self._validator = Validator(
            SecurityConfig(
                validate_url=config.validate_url,
                validate_headers=config.validate_headers,
                max_response_body_size=config.max_response_body_size,
                max_concurrent_requests=config.max_concurrent_requests,
                allow_private_ips=config.allow_private_ips,
            )
        )
        self._health = HealthChecker()

        self._lock = threading.Lock()
        self._closed = False
        self.total_requests = 0
        self.successful_requests = 0
        self.failed_requests = 0
        self.average_latency = 0.0

    def request(self, method: str, url: str, *args: RequestOption | None) -> Response:
        """Send a request; each option is called with the Request to adjust it."""
        return self._request(method, url, None, args)

    def get(self, url: str, *args: RequestOption | None) -> Response:
        return self._with_default_deadline("GET", url, args)

    def post(self, url: str, *args: RequestOption | None) -> Response:
        return self._with_default_deadline("POST", url, args)

    def put(self, url: str, *args: RequestOption | None) -> Response:
        return self._with_default_deadline("PUT", url, args)

    def patch(self, url: str, *args: RequestOption | None) -> Response:
        return self._with_default_deadline("PATCH", url, args)

    def delete(self, url: str, *args: RequestOption | None) -> Response:
        return self._with_default_deadline("DELETE", url, args)

    def head(self, url: str, *args: RequestOption | None) -> Response:
        return self._with_default_deadline("HEAD", url, args)

    def options(self, url: str, *args: RequestOption | None) -> Response:
        return self._with_default_deadline("OPTIONS", url, args)

    def _with_default_deadline(self, method: str, url: str, options: tuple) -> Response:
        deadline = time.monotonic() + self.config.timeout if self.config.timeout > 0 else None
        return self._request(method, url, deadline, options)

    def _request(self, method: str, url: str, deadline: float | None, options: tuple) -> Response:
        if self._closed:
            raise RuntimeError("client is closed")
        with self._lock:
            self.total_requests += 1
        start = time.monotonic()

        headers = self._memory.get_headers()
        try:
            req = Request(method=method, url=url, headers=headers, query_params={}, deadline=deadline)
            for option in options:
                if option is not None:
                    option(req)

            try:
                self._validator.validate_request(
                    ValidationRequest(
                        method=req.method,
                        url=req.url,
                        headers=req.headers,
                        query_params=req.query_params,
                        body=req.body,
                    )
                )
            except ValidationError as exc:
                raise ValidationError(f"request validation failed: {exc}") from exc

            try:
                response = self._execute_with_retry(req)
            except Exception as exc:
                self._record(time.monotonic() - start, exc)
                raise
            duration = time.monotonic() - start
            self._record(duration, None)
            response.duration = duration
            return response
        finally:
            self._memory.put_headers(headers)

    def _record(self, duration: float, err: BaseException | None) -> None:
        is_timeout = err is not None and (
            _chain_has_timeout(err) or "timeout" in str(err) or "deadline exceeded" in str(err)
        )
        with self._lock:
            self.average_latency = (self.average_latency * 9 + duration) / 10
            if err is None:
                self.successful_requests += 1
            else:
                self.failed_requests += 1
        self._health.record_request(err is None, duration, is_timeout)

    def _sleep(self, req: Request, delay: float, attempt: int) -> None:
        if req.deadline is None:
            time.sleep(delay)
            return
        remaining = req.deadline - time.monotonic()
        if remaining < delay:
            time.sleep(max(remaining, 0.0))
            raise _failure("context deadline exceeded", TimeoutError("context deadline exceeded"), req, attempt)
        time.sleep(delay)

    def _execute_with_retry(self, req: Request) -> Response:
        max_retries = req.max_retries if req.max_retries > 0 else self.config.max_retries
        last_resp: Response | None = None
        client_err: ClientError | None = None

        for attempt in range(max_retries + 1):
            should_retry = False
            try:
                resp = self._execute_request(req)
            except ClientError as exc:
                client_err = classify_error(exc, req.url, req.method, attempt + 1)
                if client_err is not None and client_err.is_retryable() and attempt < max_retries:
                    should_retry = self._retry.should_retry(None, exc, attempt)
            else:
                last_resp = resp
                if self._retry.is_retryable_status(resp.status_code) and attempt < max_retries:
                    should_retry = self._retry.should_retry(resp, None, attempt)
                else:
                    resp.attempts = attempt + 1
                    return resp

            if not should_retry:
                break
            self._sleep(req, self._retry.get_delay_with_response(attempt, last_resp), attempt + 1)

        if last_resp is not None:
            last_resp.attempts = max_retries + 1
            return last_resp
        if client_err is not None:
            client_err.attempts = max_retries + 1
            raise client_err
        raise RuntimeError(f"request failed after {max_retries + 1} attempts")

    def _execute_request(self, req: Request) -> Response:
        try:
            return self._execute_once(req)
        except ClientError:
            raise
        except Exception as exc:
            raise _failure(f"panic during request execution: {exc}", exc, req) from exc

    def _execute_once(self, req: Request) -> Response:
        timeout = req.timeout if req.timeout > 0 else self.config.timeout
        now = time.monotonic()
        deadline = req.deadline
        if timeout > 0 and (deadline is None or deadline - now > timeout):
            deadline = now + timeout

        if deadline is not None and now >= deadline:
            raise _failure("context deadline exceeded", TimeoutError("context deadline exceeded"), req)

        try:
            http_req = self._request_processor.build(replace(req, deadline=deadline))
        except (ValueError, TypeError) as exc:
            raise _failure(f"failed to build request: {exc}", exc, req) from exc
        self._apply_timeouts(http_req, deadline)

        start = time.monotonic()
        try:
            http_resp = self._transport.round_trip(http_req)
        except OSError as exc:
            raise _failure(f"transport error: {exc}", exc, req) from exc
        duration = time.monotonic() - start

        try:
            resp = self._response_processor.process(http_resp)
        except (ValueError, OSError) as exc:
            raise _failure(f"failed to process response: {exc}", exc, req) from exc
        finally:
            http_resp.close()

        resp.duration = duration
        return resp

    def _apply_timeouts(self, http_req: httpx.Request, deadline: float | None) -> None:
        remaining = None if deadline is None else max(deadline - time.monotonic(), 0.001)
        pool_cfg = self._pool.config

        def pick(limit: float) -> float | None:
            candidates = [value for value in (limit, remaining) if value]
            return min(candidates) if candidates else None

        http_req.extensions["timeout"] = {
            "connect": pick(pool_cfg.dial_timeout),
            "read": pick(pool_cfg.response_header_timeout),
            "write": pick(0.0),
            "pool": pick(0.0),
        }

    def health_status(self) -> HealthStatus:
        """Refresh resource metrics from the pool and run a health check."""
        metrics = self._pool.metrics()
        utilization = metrics.active_connections / (metrics.total_connections + 1)
        self._health.update_resource_metrics(metrics.active_connections, utilization, 0)
        return self._health.check_health()

    def is_healthy(self) -> bool:
        return self._health.is_healthy()

    def close(self) -> None:
        """Release the pool, memory manager and transport. Safe to repeat."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._pool.close()
        self._memory.close()
        self._transport.close()

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()