"""HTTP/1.1 request framing and response encoding for the editor bridge.

One request per TCP connection. Bytes are accumulated per connection until
the header terminator and ``Content-Length`` body bytes are in, then the
request is parsed once and answered with ``Connection: close``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any
from urllib.parse import parse_qs, urlsplit

from godot_ai_builder.exceptions import MalformedRequestError

HEADER_TERMINATOR = b"\r\n\r\n"
MAX_HEADER_BYTES = 64 * 1024
MAX_BODY_BYTES = 4 * 1024 * 1024


@dataclass
class HttpRequest:
    method: str
    path: str
    query: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def json(self) -> dict[str, Any]:
        """Decode the body as a JSON object.

        Empty, undecodable, or non-object bodies all give ``{}``; handlers
        apply their own defaults for missing fields.
        """
        if not self.body.strip():
            return {}
        try:
            data = json.loads(self.body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return {}
        return data if isinstance(data, dict) else {}


def _split_head(buffer: bytes) -> tuple[bytes, int] | None:
    end = buffer.find(HEADER_TERMINATOR)
    if end == -1:
        if len(buffer) > MAX_HEADER_BYTES:
            raise MalformedRequestError("Request headers too large")
        return None
    return buffer[:end], end + len(HEADER_TERMINATOR)


def _parse_headers(lines: list[str]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for line in lines:
        name, sep, value = line.partition(":")
        if sep:
            headers[name.strip().lower()] = value.strip()
    return headers


def _content_length(headers: dict[str, str]) -> int:
    raw = headers.get("content-length", "0") or "0"
    try:
        length = int(raw)
    except ValueError as exc:
        raise MalformedRequestError("Invalid Content-Length", {"value": raw}) from exc
    if length < 0 or length > MAX_BODY_BYTES:
        raise MalformedRequestError("Unsupported Content-Length", {"value": raw})
    return length


def request_complete(buffer: bytes) -> bool:
    """True once headers and the declared body have fully arrived."""
    split = _split_head(buffer)
    if split is None:
        return False
    head, body_start = split
    lines = head.decode("latin-1").split("\r\n")
    return len(buffer) - body_start >= _content_length(_parse_headers(lines[1:]))


def parse_request(buffer: bytes) -> HttpRequest:
    split = _split_head(buffer)
    if split is None:
        raise MalformedRequestError("Incomplete request headers")
    head, body_start = split
    lines = head.decode("latin-1").split("\r\n")
    parts = lines[0].split()
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise MalformedRequestError("Malformed request line", {"line": lines[0][:100]})

    method, target = parts[0].upper(), parts[1]
    headers = _parse_headers(lines[1:])
    length = _content_length(headers)
    url = urlsplit(target)
    query = {key: values[0] for key, values in parse_qs(url.query).items()}
    return HttpRequest(
        method=method,
        path=url.path or "/",
        query=query,
        headers=headers,
        body=buffer[body_start:body_start + length],
    )


def encode_response(status: int, payload: Any) -> bytes:
    body = json.dumps(payload, ensure_ascii=False, default=str).encode("utf-8")
    try:
        reason = HTTPStatus(status).phrase
    except ValueError:
        reason = "Unknown"
    head = (
        f"HTTP/1.1 {status} {reason}\r\n"
        "Content-Type: application/json; charset=utf-8\r\n"
        f"Content-Length: {len(body)}\r\n"
        "Access-Control-Allow-Origin: *\r\n"
        "Connection: close\r\n"
        "\r\n"
    )
    return head.encode("latin-1") + body
