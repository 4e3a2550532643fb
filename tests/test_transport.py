import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import httpx
import pytest

from steadyhttp.models import Config
from steadyhttp.pool import PoolConfig, PoolManager
from steadyhttp.transport import Transport

_received: dict = {}
_count = {"n": 0}


class _Handler(BaseHTTPRequestHandler):
    def do_GET(self):
        _count["n"] += 1
        _received["headers"] = dict(self.headers)
        if self.path == "/slow":
            time.sleep(2)
        body = b'{"message":"success"}'
        try:
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)
        except OSError:
            pass

    def log_message(self, *args):
        pass


@pytest.fixture
def base_url():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    server.daemon_threads = True
    threading.Thread(target=server.serve_forever, daemon=True).start()
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()


def _make(pool_config=None):
    pool = PoolManager(pool_config or PoolConfig())
    return pool, Transport(Config(timeout=30), pool)


def test_requires_config_and_pool():
    pool = PoolManager(None)
    try:
        with pytest.raises(ValueError):
            Transport(None, pool)
        with pytest.raises(ValueError):
            Transport(Config(), None)
    finally:
        pool.close()


def test_http_request(base_url):
    pool, transport = _make()
    try:
        resp = transport.round_trip(httpx.Request("GET", base_url + "/"))
        resp.read()
        assert resp.status_code == 200
        assert resp.json() == {"message": "success"}
    finally:
        transport.close()
        pool.close()


def test_timeout(base_url):
    pool, transport = _make(PoolConfig(dial_timeout=0.5, response_header_timeout=0.5))
    try:
        start = time.monotonic()
        with pytest.raises(TimeoutError):
            transport.round_trip(httpx.Request("GET", base_url + "/slow"))
        assert time.monotonic() - start < 1.5
    finally:
        transport.close()
        pool.close()


def test_connection_reuse(base_url):
    pool, transport = _make(PoolConfig(max_idle_conns=10, max_idle_conns_per_host=5))
    _count["n"] = 0
    try:
        for _ in range(5):
            resp = transport.round_trip(httpx.Request("GET", base_url + "/"))
            resp.read()
            resp.close()
            assert resp.status_code == 200
        assert _count["n"] == 5
    finally:
        transport.close()
        pool.close()


def test_close_twice():
    pool, transport = _make()
    transport.close()
    transport.close()
    assert transport._closed is True
    pool.close()


def test_headers_sent(base_url):
    pool, transport = _make()
    try:
        req = httpx.Request(
            "GET",
            base_url + "/",
            headers={"User-Agent": "TestClient/1.0", "X-Custom-Header": "test-value", "Accept": "application/json"},
        )
        resp = transport.round_trip(req)
        resp.read()
        assert resp.status_code == 200
        assert resp.json() == {"message": "success"}
        received = {k.lower(): v for k, v in _received["headers"].items()}
        assert received["user-agent"] == "TestClient/1.0"
        assert received["x-custom-header"] == "test-value"
        assert received["accept"] == "application/json"
    finally:
        transport.close()
        pool.close()


def test_connection_refused_is_connection_error():
    pool, transport = _make(PoolConfig(dial_timeout=2))
    try:
        with pytest.raises(ConnectionError) as info:
            transport.round_trip(httpx.Request("GET", "http://127.0.0.1:1/"))
        assert "transport round trip failed" in str(info.value)
    finally:
        transport.close()
        pool.close()