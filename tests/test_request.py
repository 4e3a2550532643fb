import email
import io
import json
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlsplit

import pytest

from steadyhttp.models import Config, Cookie, Request
from steadyhttp.request import (
    FileData,
    FormData,
    RequestProcessor,
    escape_quotes,
    extract_form_data,
)


def _build(req, config=None):
    return RequestProcessor(config or Config()).build(req)


@dataclass
class Point:
    x: int
    y: int


@dataclass
class Ordered:
    z: int
    a: int


def _multipart_parts(built):
    raw = b"Content-Type: " + built.headers["content-type"].encode() + b"\r\n\r\n" + built.content
    message = email.message_from_bytes(raw)
    assert message.is_multipart()
    return {
        part.get_param("name", header="content-disposition"): part
        for part in message.get_payload()
    }


def test_empty_method_defaults_to_get():
    built = _build(Request(url="https://example.com"))
    assert built.method == "GET"


def test_string_body():
    built = _build(Request(method="POST", url="https://example.com", body="hello world"))
    assert built.content == b"hello world"
    assert built.headers["content-type"] == "text/plain"


def test_bytes_body():
    built = _build(Request(method="POST", url="https://example.com", body=b"\x00\x01"))
    assert built.content == b"\x00\x01"
    assert built.headers["content-type"] == "application/octet-stream"


def test_file_like_body_has_no_content_type():
    built = _build(Request(method="PUT", url="https://example.com", body=io.BytesIO(b"stream")))
    assert built.content == b"stream"
    assert "content-type" not in built.headers


def test_mapping_body_is_json_with_sorted_keys():
    body = {"b": 1, "a": 2}
    built = _build(Request(method="POST", url="https://example.com", body=body))
    assert built.headers["content-type"] == "application/json"
    assert json.loads(built.content) == body
    text = built.content.decode()
    assert text.index('"a"') < text.index('"b"')


def test_dataclass_body_keeps_field_order():
    built = _build(Request(method="POST", url="https://example.com", body=Ordered(z=1, a=2)))
    assert json.loads(built.content) == {"z": 1, "a": 2}
    text = built.content.decode()
    assert text.index('"z"') < text.index('"a"')


def test_json_escapes_html_characters():
    body = {"k": "<a&b>"}
    built = _build(Request(method="POST", url="https://example.com", body=body))
    text = built.content.decode()
    assert "<" not in text and "&" not in text and ">" not in text
    assert json.loads(text) == body


def test_unserialisable_body_raises():
    with pytest.raises(ValueError, match="JSON"):
        _build(Request(method="POST", url="https://example.com", body=object()))


def test_xml_body_when_requested():
    req = Request(
        method="POST",
        url="https://example.com",
        headers={"Content-Type": "application/xml"},
        body=Point(x=1, y=2),
    )
    built = _build(req)
    assert built.headers["content-type"] == "application/xml"
    root = ET.fromstring(built.content)
    assert root.tag == "Point"
    assert root.find("x").text == "1"
    assert root.find("y").text == "2"


def test_xml_mapping_body_raises():
    req = Request(
        method="POST",
        url="https://example.com",
        headers={"Content-Type": "application/xml"},
        body={"k": "v"},
    )
    with pytest.raises(ValueError, match="XML"):
        _build(req)


def test_query_params_merged_and_sorted():
    req = Request(
        url="https://example.com/search?z=1",
        query_params={"b": "two words", "a": 1},
    )
    built = _build(req)
    pairs = parse_qsl(urlsplit(str(built.url)).query)
    keys = [key for key, _ in pairs]
    assert keys == sorted(keys)
    assert dict(pairs) == {"z": "1", "b": "two words", "a": "1"}


def test_query_bool_formatting():
    built = _build(Request(url="https://example.com", query_params={"flag": True}))
    assert dict(parse_qsl(urlsplit(str(built.url)).query)) == {"flag": "true"}


def test_header_precedence():
    config = Config(headers={"X-Env": "config", "X-Both": "config"})
    req = Request(url="https://example.com", headers={"X-Both": "request"})
    built = _build(req, config)
    assert built.headers["x-env"] == "config"
    assert built.headers["x-both"] == "request"


def test_config_content_type_does_not_override_body_type():
    config = Config(headers={"Content-Type": "text/html"})
    built = _build(Request(method="POST", url="https://example.com", body="x"), config)
    assert built.headers["content-type"] == "text/plain"


def test_request_content_type_overrides_body_type():
    req = Request(
        method="POST", url="https://example.com", headers={"Content-Type": "text/csv"}, body="x"
    )
    assert _build(req).headers["content-type"] == "text/csv"


def test_user_agent_default_and_override():
    config = Config(user_agent="agent/1.0")
    built = _build(Request(url="https://example.com"), config)
    assert built.headers["user-agent"] == "agent/1.0"
    custom = _build(
        Request(url="https://example.com", headers={"User-Agent": "custom/2.0"}), config
    )
    assert custom.headers["user-agent"] == "custom/2.0"


def test_cookies_joined():
    req = Request(url="https://example.com", cookies=[Cookie("a", "1"), Cookie("b", "2")])
    assert _build(req).headers["cookie"] == "a=1; b=2"


def test_multipart_form():
    form = FormData(fields={"name": "value"}, files={"upload": FileData("f.txt", b"data")})
    built = _build(Request(method="POST", url="https://example.com", body=form))
    assert built.headers["content-type"].split(";")[0] == "multipart/form-data"
    parts = _multipart_parts(built)
    assert parts["name"].get_payload(decode=True) == b"value"
    assert parts["upload"].get_filename() == "f.txt"
    assert parts["upload"].get_payload(decode=True) == b"data"
    assert parts["upload"].get_content_type() == "application/octet-stream"


def test_multipart_custom_file_content_type():
    form = FormData(files={"sheet": FileData("f.csv", b"1,2", "text/csv")})
    built = _build(Request(method="POST", url="https://example.com", body=form))
    parts = _multipart_parts(built)
    assert parts["sheet"].get_content_type() == "text/csv"
    assert parts["sheet"].get_payload(decode=True) == b"1,2"


def test_extract_form_data_from_mapping():
    form = extract_form_data({"fields": {"k": "v"}})
    assert form == FormData(fields={"k": "v"}, files={})


def test_extract_form_data_files_mapping():
    form = extract_form_data({"Files": {"f": {"Filename": "a.bin", "Content": b"xy"}}})
    assert form.files["f"] == FileData(filename="a.bin", content=b"xy", content_type="")


def test_extract_form_data_rejects_other_shapes():
    assert extract_form_data({"other": 1}) is None
    assert extract_form_data({"Fields": {"k": 1}}) is None
    assert extract_form_data([1, 2]) is None


def test_escape_quotes_round_trip():
    original = 'say "hi" now'
    escaped = escape_quotes(original)
    assert escaped.replace('\\"', '"') == original
    assert escaped.count('\\"') == original.count('"')


def test_invalid_url_raises():
    with pytest.raises(ValueError, match="invalid URL"):
        _build(Request(url="http://example.com:notaport/"))


def test_invalid_method_raises():
    with pytest.raises(ValueError, match="invalid method"):
        _build(Request(method="BAD METHOD", url="https://example.com"))