"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional, Sequence, Tuple

import pytest


HTML_RESPONSE = (
    b"HTTP/1.1 200 OK\r\n"
    b"Content-Type: text/html; charset=utf-8\r\n"
    b"Server: nginx\r\n"
    b"\r\n"
    b"<html><body>Hello</body></html>"
)


def build_warc_record(
    block: bytes,
    *,
    warc_type: Optional[str] = "response",
    headers: Sequence[Tuple[str, str]] = (),
    content_length: Optional[int] = None,
    trailer: bytes = b"\r\n\r\n",
) -> bytes:
    """Minimal WARC record: version line + headers + blank line + block."""

    lines = ["WARC/1.0"]
    if warc_type is not None:
        lines.append(f"WARC-Type: {warc_type}")
    lines.extend(f"{k}: {v}" for k, v in headers)
    if content_length is None:
        content_length = len(block)
    if content_length >= 0:
        lines.append(f"Content-Length: {content_length}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8") + block + trailer


@pytest.fixture
def repo_root() -> Path:
    """Return the repository root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def make_warc() -> Callable[..., bytes]:
    return build_warc_record


@pytest.fixture
def html_response() -> bytes:
    return HTML_RESPONSE
