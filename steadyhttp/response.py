"""Reading httpx responses into Response records."""

from __future__ import annotations

import httpx

from .models import Config, Cookie, Response


def _canonical_key(key: str) -> str:
    if any(c in key for c in " \t\r\n:"):
        return key
    return "-".join(part.capitalize() for part in key.split("-"))


def _parse_set_cookie(line: str) -> Cookie | None:
    pieces = [piece.strip() for piece in line.split(";")]
    name, sep, value = pieces[0].partition("=")
    name, value = name.strip(), value.strip()
    if not sep or not name:
        return None
    if len(value) >= 2 and value[0] == value[-1] == '"':
        value = value[1:-1]
    cookie = Cookie(name=name, value=value)
    for attr in pieces[1:]:
        key, _, val = attr.partition("=")
        key, val = key.strip().lower(), val.strip()
        if key == "path":
            cookie.path = val
        elif key == "domain":
            cookie.domain = val[1:] if val.startswith(".") else val
        elif key == "secure":
            cookie.secure = True
        elif key == "httponly":
            cookie.http_only = True
    return cookie


def _request_of(http_resp: httpx.Response) -> httpx.Request | None:
    try:
        return http_resp.request
    except RuntimeError:
        return None


def _content_length(http_resp: httpx.Response) -> int:
    encoding = http_resp.headers.get("content-encoding", "").strip().lower()
    if encoding and encoding != "identity":
        return -1
    try:
        return int(http_resp.headers.get("content-length", ""))
    except ValueError:
        return -1


class ResponseProcessor:
    """Reads and checks response bodies according to the client settings."""

    def __init__(self, config: Config):
        self.config = config

    def process(self, http_resp: httpx.Response | None) -> Response:
        if http_resp is None:
            raise ValueError("HTTP response is None")

        body = self._read_body(http_resp)
        content_length = _content_length(http_resp)
        request = _request_of(http_resp)

        if content_length > 0 and content_length != len(body):
            is_head = request is not None and request.method == "HEAD"
            if not is_head and self.config.strict_content_length:
                raise ValueError(
                    f"content-length mismatch: expected {content_length} bytes, "
                    f"got {len(body)} bytes"
                )

        headers: dict[str, list[str]] = {}
        for key, value in http_resp.headers.multi_items():
            headers.setdefault(_canonical_key(key), []).append(value)

        cookies = [
            cookie
            for line in http_resp.headers.get_list("set-cookie")
            if (cookie := _parse_set_cookie(line)) is not None
        ]

        status = f"{http_resp.status_code} {http_resp.reason_phrase}".strip()
        return Response(
            status_code=http_resp.status_code,
            status=status,
            headers=headers,
            body=body.decode("utf-8", errors="replace"),
            raw_body=body,
            content_length=content_length,
            proto=http_resp.http_version,
            request=request,
            response=http_resp,
            cookies=cookies,
        )

    def _read_body(self, http_resp: httpx.Response) -> bytes:
        limit = self.config.max_response_body_size
        try:
            try:
                data = http_resp.content
            except httpx.ResponseNotRead:
                data = self._read_stream(http_resp, limit)
        except (httpx.HTTPError, httpx.StreamError, OSError) as exc:
            raise OSError(
                f"failed to read response body: failed to read response body: {exc}"
            ) from exc

        if limit > 0:
            data = data[:limit]
            if len(data) >= limit:
                raise ValueError(
                    f"failed to read response body: response body too large "
                    f"(limit: {limit} bytes)"
                )
        return data

    @staticmethod
    def _read_stream(http_resp: httpx.Response, limit: int) -> bytes:
        chunks: list[bytes] = []
        total = 0
        for chunk in http_resp.iter_bytes():
            chunks.append(chunk)
            total += len(chunk)
            if limit > 0 and total >= limit:
                break
        http_resp.close()
        return b"".join(chunks)