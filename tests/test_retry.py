import asyncio
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import pytest

from steadyhttp.errors import DNSError, OpError
from steadyhttp.models import Config, Response
from steadyhttp.retry import RetryEngine


def test_new_retry_engine_keeps_config():
    config = Config(max_retries=3, retry_delay=0.1, backoff_factor=2.0)
    engine = RetryEngine(config)
    assert engine.config is config


def test_max_retries():
    engine = RetryEngine(Config(max_retries=5))
    assert engine.max_retries() == 5


def test_should_retry_max_attempts_exceeded():
    engine = RetryEngine(Config(max_retries=3))
    assert engine.should_retry(None, Exception("network error"), 3) is False


def _op_error(message):
    return OpError(op="dial", net="tcp", addr="127.0.0.1:80", err=Exception(message))


@pytest.mark.parametrize(
    "err, expected",
    [
        (_op_error("connection refused"), False),
        (
            DNSError(err="no such host", name="example.com", server="8.8.8.8", is_temporary=True),
            True,
        ),
        (DNSError(err="no such host", name="example.com", server="8.8.8.8"), False),
        (asyncio.CancelledError(), False),
        (TimeoutError(), False),
    ],
)
def test_should_retry_network_errors(err, expected):
    engine = RetryEngine(Config(max_retries=3))
    assert engine.should_retry(None, err, 0) is expected


@pytest.mark.parametrize(
    "status, expected",
    [
        (408, True),
        (429, True),
        (500, True),
        (502, True),
        (503, True),
        (504, True),
        (200, False),
        (400, False),
        (404, False),
    ],
)
def test_should_retry_status_codes(status, expected):
    engine = RetryEngine(Config(max_retries=3))
    assert engine.should_retry(Response(status_code=status), None, 0) is expected


def test_should_retry_without_response_or_error():
    engine = RetryEngine(Config(max_retries=3))
    assert engine.should_retry(None, None, 0) is False


@pytest.mark.parametrize(
    "attempt, expected",
    [(0, 0.1), (1, 0.2), (2, 0.4), (3, 0.8)],
)
def test_get_delay_exponential_backoff(attempt, expected):
    engine = RetryEngine(Config(retry_delay=0.1, backoff_factor=2.0, jitter=False))
    assert engine.get_delay(attempt) == pytest.approx(expected)


def test_get_delay_with_jitter():
    engine = RetryEngine(Config(retry_delay=0.1, backoff_factor=2.0, jitter=True))
    delays = [engine.get_delay(1) for _ in range(10)]
    assert len(set(delays)) > 1
    base = 0.2
    for delay in delays:
        assert base - base / 10 <= delay <= base + base / 10


def test_get_delay_capped_by_max_retry_delay():
    engine = RetryEngine(
        Config(retry_delay=0.1, backoff_factor=2.0, max_retry_delay=0.5, jitter=False)
    )
    assert engine.get_delay(3) == pytest.approx(0.5)


def test_get_delay_zero_retry_delay_uses_default():
    engine = RetryEngine(Config(retry_delay=0, backoff_factor=2.0))
    assert engine.get_delay(0) == pytest.approx(1.0)


def test_get_delay_zero_backoff_uses_default():
    engine = RetryEngine(Config(retry_delay=0.1, backoff_factor=0))
    assert engine.get_delay(1) == pytest.approx(0.2)


def test_retry_after_seconds_header():
    engine = RetryEngine(Config(retry_delay=0.1))
    resp = Response(status_code=503, headers={"Retry-After": ["5"]})
    assert engine.get_delay_with_response(0, resp) == pytest.approx(5.0)


def test_retry_after_zero_falls_back_to_backoff():
    engine = RetryEngine(Config(retry_delay=0.1, backoff_factor=2.0))
    resp = Response(status_code=503, headers={"Retry-After": ["0"]})
    assert engine.get_delay_with_response(1, resp) == pytest.approx(0.2)


def test_retry_after_http_date():
    engine = RetryEngine(Config(retry_delay=0.1))
    when = datetime.now(timezone.utc) + timedelta(seconds=120)
    resp = Response(status_code=429, headers={"Retry-After": [format_datetime(when, usegmt=True)]})
    delay = engine.get_delay_with_response(0, resp)
    assert 100 < delay <= 121


def test_retry_after_garbage_falls_back():
    engine = RetryEngine(Config(retry_delay=0.1, backoff_factor=2.0))
    resp = Response(status_code=429, headers={"Retry-After": ["soon"]})
    assert engine.get_delay_with_response(0, resp) == pytest.approx(0.1)


@pytest.mark.parametrize(
    "err, expected",
    [
        (asyncio.CancelledError(), False),
        (TimeoutError(), False),
        (Exception("context canceled"), False),
        (Exception("request context canceled"), False),
        (_op_error("connection refused"), False),
        (_op_error("context deadline exceeded"), False),
        (
            DNSError(err="no such host", name="example.com", server="8.8.8.8", is_temporary=True),
            True,
        ),
        (DNSError(err="no such host", name="example.com", server="8.8.8.8"), False),
        (Exception("connection refused"), True),
        (Exception("broken pipe"), True),
        (Exception("invalid JSON"), False),
    ],
)
def test_is_retryable_error(err, expected):
    engine = RetryEngine(Config(max_retries=3))
    assert engine.is_retryable_error(err) is expected


def test_secure_jitter_bounds():
    engine = RetryEngine(Config())
    for _ in range(10):
        jitter = engine.secure_jitter(0.1)
        assert 0 <= jitter <= 0.1


def test_secure_jitter_zero_max():
    engine = RetryEngine(Config())
    assert engine.secure_jitter(0) == 0