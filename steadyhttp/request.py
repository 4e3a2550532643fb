"""Building wire requests from Request records."""

from __future__ import annotations

import base64
import dataclasses
import json
import re
import secrets
import xml.etree.ElementTree as ET
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qsl, quote_plus, urlsplit, urlunsplit

import httpx

from .models import Config, Cookie, Request

_METHOD = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")


@dataclass
class FileData:
    """A file to upload in a multipart form."""

    filename: str = ""
    content: bytes = b""
    content_type: str = ""


@dataclass
class FormData:
    """Multipart form fields and files."""

    fields: dict[str, str] = field(default_factory=dict)
    files: dict[str, FileData] = field(default_factory=dict)


def escape_quotes(s: str) -> str:
    """Escape double quotes for use inside a quoted header parameter."""
    return s.replace('"', '\\"')


def _escape_multipart(s: str) -> str:
    return s.replace("\\", "\\\\").replace('"', '\\"')


def _lookup(mapping: Mapping, name: str) -> Any:
    if name in mapping:
        return mapping[name]
    folded = name.casefold()
    for key, value in mapping.items():
        if isinstance(key, str) and key.casefold() == folded:
            return value
    return None


def _as_bytes(value: Any) -> bytes | None:
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    return None


def _file_data(value: Any) -> FileData | None:
    if isinstance(value, FileData):
        return value
    if not isinstance(value, Mapping):
        return None
    filename = _lookup(value, "Filename") or ""
    content_type = _lookup(value, "ContentType") or ""
    content = _as_bytes(_lookup(value, "Content"))
    if not isinstance(filename, str) or not isinstance(content_type, str) or content is None:
        return None
    return FileData(filename=filename, content=content, content_type=content_type)


def extract_form_data(value: Any) -> FormData | None:
    """Return the form described by ``value``, or None if it is not a form."""
    if isinstance(value, FormData):
        return value
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = dataclasses.asdict(value)
    if not isinstance(value, Mapping):
        return None

    fields = _lookup(value, "Fields")
    files = _lookup(value, "Files")
    if fields is None and files is None:
        return None

    if fields is None:
        fields = {}
    if not isinstance(fields, Mapping) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in fields.items()
    ):
        return None

    extracted: dict[str, FileData] = {}
    if files is not None:
        if not isinstance(files, Mapping):
            return None
        for name, item in files.items():
            data = _file_data(item)
            if data is None:
                return None
            extracted[str(name)] = data

    return FormData(fields=dict(fields), files=extracted)


def _encode_multipart(form: FormData) -> tuple[bytes, str]:
    boundary = secrets.token_hex(30)
    parts: list[tuple[list[tuple[str, str]], bytes]] = []

    for name, value in form.fields.items():
        disposition = f'form-data; name="{_escape_multipart(name)}"'
        parts.append(([("Content-Disposition", disposition)], value.encode("utf-8")))

    for name, data in form.files.items():
        if data.content_type:
            disposition = (
                f'form-data; name="{escape_quotes(name)}"; '
                f'filename="{escape_quotes(data.filename)}"'
            )
            content_type = data.content_type
        else:
            disposition = (
                f'form-data; name="{_escape_multipart(name)}"; '
                f'filename="{_escape_multipart(data.filename)}"'
            )
            content_type = "application/octet-stream"
        parts.append(
            ([("Content-Disposition", disposition), ("Content-Type", content_type)], data.content)
        )

    delimiter = f"--{boundary}"
    chunks: list[bytes] = []
    for index, (headers, payload) in enumerate(parts):
        lead = "" if index == 0 else "\r\n"
        head = lead + delimiter + "\r\n"
        head += "".join(f"{key}: {value}\r\n" for key, value in headers) + "\r\n"
        chunks.append(head.encode("utf-8"))
        chunks.append(payload)
    chunks.append(f"\r\n{delimiter}--\r\n".encode("utf-8"))
    return b"".join(chunks), f"multipart/form-data; boundary={boundary}"


def _jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Mapping):
        return {str(k): _jsonable(value[k]) for k in sorted(value, key=str)}
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


_JSON_ESCAPES = {"<": "\\u003c", ">": "\\u003e", "&": "\\u0026", "\u2028": "\\u2028", "\u2029": "\\u2029"}


def _marshal_json(value: Any) -> bytes:
    try:
        text = json.dumps(
            _jsonable(value), separators=(",", ":"), ensure_ascii=False, allow_nan=False
        )
    except (TypeError, ValueError) as exc:
        raise ValueError(f"failed to marshal request body as JSON: {exc}") from exc
    for char, escaped in _JSON_ESCAPES.items():
        text = text.replace(char, escaped)
    return text.encode("utf-8")


def _xml_element(tag: str, value: Any) -> ET.Element:
    element = ET.Element(tag)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        for f in dataclasses.fields(value):
            item = getattr(value, f.name)
            if item is None:
                continue
            items = item if isinstance(item, (list, tuple)) else [item]
            for entry in items:
                element.append(_xml_element(f.name, entry))
    elif isinstance(value, Mapping):
        raise ValueError(f"xml: unsupported type: {type(value).__name__}")
    elif isinstance(value, bool):
        element.text = "true" if value else "false"
    elif isinstance(value, (bytes, bytearray)):
        element.text = bytes(value).decode("utf-8", errors="replace")
    else:
        element.text = str(value)
    return element


def _marshal_xml(value: Any) -> bytes:
    if not (dataclasses.is_dataclass(value) and not isinstance(value, type)):
        raise ValueError(
            f"failed to marshal request body as XML: unsupported type: {type(value).__name__}"
        )
    try:
        root = _xml_element(type(value).__name__, value)
    except ValueError as exc:
        raise ValueError(f"failed to marshal request body as XML: {exc}") from exc
    return ET.tostring(root, encoding="unicode", short_empty_elements=False).encode("utf-8")


def _format_query_value(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    return str(value)


def _cookie_pair(cookie: Cookie) -> str:
    value = cookie.value
    if " " in value or "," in value:
        value = f'"{value}"'
    return f"{cookie.name}={value}"


class RequestProcessor:
    """Turns Request records into httpx requests."""

    def __init__(self, config: Config):
        self.config = config

    def build(self, req: Request) -> httpx.Request:
        method = req.method or "GET"

        try:
            parts = urlsplit(req.url)
            _ = parts.port
        except ValueError as exc:
            raise ValueError(f"invalid URL: {exc}") from exc

        url = req.url
        if req.query_params:
            grouped: dict[str, list[str]] = {}
            for key, value in parse_qsl(parts.query, keep_blank_values=True):
                grouped.setdefault(key, []).append(value)
            for key, value in req.query_params.items():
                grouped.setdefault(str(key), []).append(_format_query_value(value))
            query = "&".join(
                f"{quote_plus(key)}={quote_plus(value)}"
                for key in sorted(grouped)
                for value in grouped[key]
            )
            url = urlunsplit(parts._replace(query=query))

        body, content_type = self._encode_body(req)

        if not _METHOD.fullmatch(method):
            raise ValueError(f"failed to create HTTP request: invalid method {method!r}")

        headers = httpx.Headers()
        if content_type and not headers.get("Content-Type"):
            headers["Content-Type"] = content_type
        for key, value in self.config.headers.items():
            if not headers.get(key):
                headers[key] = value
        for key, value in req.headers.items():
            headers[key] = value
        if not headers.get("User-Agent") and self.config.user_agent:
            headers["User-Agent"] = self.config.user_agent
        for cookie in req.cookies:
            pair = _cookie_pair(cookie)
            existing = headers.get("Cookie")
            headers["Cookie"] = f"{existing}; {pair}" if existing else pair

        try:
            return httpx.Request(method, url, headers=headers, content=body)
        except (httpx.InvalidURL, ValueError, TypeError) as exc:
            raise ValueError(f"failed to create HTTP request: {exc}") from exc

    def _encode_body(self, req: Request) -> tuple[bytes | None, str]:
        value = req.body
        if value is None:
            return None, ""
        if isinstance(value, str):
            return value.encode("utf-8"), "text/plain"
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value), "application/octet-stream"
        if hasattr(value, "read"):
            data = value.read()
            return (data.encode("utf-8") if isinstance(data, str) else bytes(data)), ""

        form = extract_form_data(value)
        if form is not None:
            return _encode_multipart(form)

        if req.headers.get("Content-Type") == "application/xml":
            return _marshal_xml(value), "application/xml"
        return _marshal_json(value), "application/json"