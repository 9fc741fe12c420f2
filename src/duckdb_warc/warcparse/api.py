"""Importable API for single-record WARC parsing.

The parser takes one buffer (a raw WARC record, or a gzip member holding one)
and returns a `ParsedRecord` describing the WARC envelope and, for `response`
records, the embedded HTTP status line, headers and body.

Parsing never raises: malformed input narrows the result (some fields None)
or empties it entirely (`ParsedRecord.empty()`).

Most users will want `parse_warc()`. The DuckDB scalar function lives in
`duckdb_warc.warcparse.udf`.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import time
import urllib.error
import urllib.request
import zlib
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union


logger = logging.getLogger(__name__)


# Receives one diagnostic event dict per occurrence.
EventHook = Callable[[Dict[str, object]], None]

JsonMapValue = Union[str, int]

WarcInput = Union[bytes, bytearray, memoryview, str, None]

DEFAULT_PREFIX = "https://data.commoncrawl.org/"

# WARC fields emitted into `warc_headers`, in output order. None marks the
# computed Content-Length slot.
_WARC_HEADER_FIELDS: Tuple[Optional[str], ...] = (
    "WARC-Type",
    "WARC-Date",
    "WARC-Record-ID",
    "WARC-Target-URI",
    "WARC-IP-Address",
    "Content-Type",
    None,
    "WARC-Payload-Digest",
    "WARC-Block-Digest",
    "WARC-Identified-Payload-Type",
)

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1

_STATUS_TOKEN_RE = re.compile(r"[+-]?[0-9]+")

# First blank line, whatever mix of CRLF and LF surrounds it.
_BLANK_LINE_RE = re.compile(rb"\r?\n\r?\n")


@dataclass(frozen=True)
class ParsedRecord:
    warc_version: Optional[str]
    warc_headers: Optional[str]
    http_version: Optional[str]
    http_status: Optional[int]
    http_headers: Optional[str]
    http_body: Optional[bytes]

    @classmethod
    def empty(cls) -> "ParsedRecord":
        """The fully-absent record (null input or unparseable buffer)."""

        return cls(
            warc_version=None,
            warc_headers=None,
            http_version=None,
            http_status=None,
            http_headers=None,
            http_body=None,
        )

    @property
    def ok(self) -> bool:
        return self.warc_version is not None

    def as_dict(self) -> Dict[str, object]:
        return asdict(self)


@dataclass(frozen=True)
class WarcFetchResult:
    ok: bool
    status: Optional[int]
    url: str
    bytes_requested: int
    bytes_returned: int
    sha256: Optional[str]
    data: Optional[bytes]
    error: Optional[str]


# ---- decompression ----


def decompress(data: bytes) -> bytes:
    """Inflate the first gzip member, or return `data` unchanged if that fails.

    Anything after the first member (a following record, a partial tail) is
    ignored. A member cut short before its trailer counts as a failure.
    """

    d = zlib.decompressobj(16 + zlib.MAX_WBITS)
    try:
        inflated = d.decompress(data)
    except zlib.error:
        return data
    if not d.eof:
        return data
    return inflated if inflated else data


# ---- sanitizing / encoding ----


def sanitize_text(value: str) -> str:
    return value.replace("\x00", "")


def sanitize_header_value(value: str) -> str:
    """Strip NULs and escape double quotes for a JSON-like map entry."""

    return sanitize_text(value).replace('"', '\\"')


def encode_json_map(pairs: Sequence[Tuple[str, JsonMapValue]]) -> str:
    """Render pairs as `{"k": "v", "n": 1}`.

    Keys and string values must already be escaped. Integer values are
    emitted bare. Repeated keys are kept as repeated entries.
    """

    parts: List[str] = []
    for key, value in pairs:
        if isinstance(value, int) and not isinstance(value, bool):
            parts.append(f'"{key}": {value}')
        else:
            parts.append(f'"{key}": "{value}"')
    return "{" + ", ".join(parts) + "}"


# ---- HTTP ----


def _find_header_end(data: bytes) -> Tuple[int, int]:
    """Return (offset, separator length) of the blank line, or (-1, 0)."""

    sep = data.find(b"\r\n\r\n")
    if sep != -1:
        return sep, 4
    sep = data.find(b"\n\n")
    if sep != -1:
        return sep, 2
    return -1, 0


def _split_lines(text: str) -> List[str]:
    # splitlines() would also split on form feeds and unicode separators inside values.
    return [ln[:-1] if ln.endswith("\r") else ln for ln in text.split("\n")]


def _parse_status_code(token: str) -> Optional[int]:
    if not _STATUS_TOKEN_RE.fullmatch(token):
        return None
    code = int(token)
    if code < _INT32_MIN or code > _INT32_MAX:
        return None
    return code


def parse_http_response(
    body: bytes,
    skip_body: bool = False,
) -> Tuple[Optional[str], Optional[int], Optional[str], Optional[bytes]]:
    """Split an HTTP response block into (version, status, headers, body).

    All four are None when the block does not start with `HTTP/` or has no
    blank line ending the header section. Otherwise each is computed
    independently: an unparseable status code leaves the others intact.
    """

    if not body.startswith(b"HTTP/"):
        return None, None, None, None

    sep, sep_len = _find_header_end(body)
    if sep == -1:
        return None, None, None, None

    lines = _split_lines(body[:sep].decode("utf-8", errors="replace"))

    status_parts = lines[0].split(" ", 2)
    http_version = sanitize_text(status_parts[0])
    http_status = _parse_status_code(status_parts[1]) if len(status_parts) > 1 else None

    pairs: List[Tuple[str, JsonMapValue]] = []
    for ln in lines[1:]:
        if ":" not in ln:
            continue
        k, v = ln.split(":", 1)
        pairs.append((sanitize_header_value(k.strip().lower()), sanitize_header_value(v.strip())))

    http_headers = sanitize_text(encode_json_map(pairs)) if pairs else None

    http_body = None if skip_body else bytes(body[sep + sep_len :])

    return http_version, http_status, http_headers, http_body


# ---- WARC ----


def _parse_warc_head(text: str) -> Optional[Tuple[str, Dict[str, str]]]:
    """Return (version, lower-cased header map) for a WARC header block."""

    lines = _split_lines(text)
    first = lines[0].strip()
    if not first.startswith("WARC/"):
        return None
    version = first[len("WARC/") :]
    if not version:
        return None

    headers: Dict[str, str] = {}
    for ln in lines[1:]:
        if ":" not in ln:
            continue
        k, v = ln.split(":", 1)
        headers.setdefault(k.strip().lower(), v.strip())
    return version, headers


def _warc_header_pairs(headers: Dict[str, str], content_length: int) -> List[Tuple[str, JsonMapValue]]:
    pairs: List[Tuple[str, JsonMapValue]] = []
    for name in _WARC_HEADER_FIELDS:
        if name is None:
            pairs.append(("Content-Length", content_length))
            continue
        value = headers.get(name.lower())
        if value is not None:
            pairs.append((name, sanitize_header_value(value)))
    return pairs


def _default_event_hook(evt: Dict[str, object]) -> None:
    logger.info(
        "%s: target_uri=%s identified_payload_type=%s",
        evt.get("event"),
        evt.get("target_uri"),
        evt.get("identified_payload_type"),
    )

    path = (os.environ.get("DUCKDB_WARC_EVENT_LOG_PATH") or "").strip()
    if not path:
        return
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    rec = dict(evt)
    rec.setdefault("ts", time.time())
    with p.open("a", encoding="utf-8") as f:
        f.write(json.dumps(rec, ensure_ascii=False) + "\n")


def _emit(on_event: Optional[EventHook], evt: Dict[str, object]) -> None:
    hook = on_event if on_event is not None else _default_event_hook
    try:
        hook(evt)
    except Exception:
        logger.debug("event hook failed for %s", evt.get("event"), exc_info=True)


def parse_warc_record(data: bytes, *, on_event: Optional[EventHook] = None) -> Optional[ParsedRecord]:
    """Parse the first WARC record in an (already decompressed) buffer.

    Returns None when the buffer has no `WARC/` version line, no header block,
    no readable Content-Length, or no WARC-Type. Bytes after the first record
    are ignored.

    The header block ends at the first blank line, CRLF or LF, regardless of
    the line endings used inside the block.

    A buffer shorter than its declared Content-Length is still accepted: the
    block is whatever bytes are present, and the emitted Content-Length is
    their count. A strict WARC reader would reject such a record outright.
    """

    m = _BLANK_LINE_RE.search(data)
    if m is None:
        return None

    head = _parse_warc_head(data[: m.start()].decode("utf-8", errors="replace"))
    if head is None:
        return None
    version, headers = head

    declared = headers.get("content-length")
    if declared is None or not declared.isascii() or not declared.isdigit():
        return None

    start = m.end()
    # A short buffer yields a short block; the reported length is what we got.
    block = bytes(data[start : start + int(declared)])

    warc_type = headers.get("warc-type")
    if warc_type is None:
        return None

    warc_version = sanitize_text(version)
    warc_headers = sanitize_text(encode_json_map(_warc_header_pairs(headers, len(block))))

    if warc_type != "response":
        return ParsedRecord(
            warc_version=warc_version,
            warc_headers=warc_headers,
            http_version=None,
            http_status=None,
            http_headers=None,
            http_body=None,
        )

    skip_body = b"\x00" in block
    if skip_body:
        _emit(
            on_event,
            {
                "event": "binary_body_skipped",
                "target_uri": headers.get("warc-target-uri"),
                "identified_payload_type": headers.get("warc-identified-payload-type"),
            },
        )

    http_version, http_status, http_headers, http_body = parse_http_response(block, skip_body)

    return ParsedRecord(
        warc_version=warc_version,
        warc_headers=warc_headers,
        http_version=http_version,
        http_status=http_status,
        http_headers=http_headers,
        http_body=http_body,
    )


def parse_warc(value: WarcInput, *, on_event: Optional[EventHook] = None) -> ParsedRecord:
    """Parse one raw or gzip-compressed WARC record.

    `value` may be bytes-like or text (encoded as UTF-8). None yields the
    fully-absent record without any parsing.
    """

    if value is None:
        return ParsedRecord.empty()
    if isinstance(value, str):
        raw = value.encode("utf-8", errors="surrogateescape")
    else:
        raw = bytes(value)

    rec = parse_warc_record(decompress(raw), on_event=on_event)
    return rec if rec is not None else ParsedRecord.empty()


# ---- Common Crawl range fetch ----


def default_prefix() -> str:
    return (os.environ.get("DUCKDB_WARC_PREFIX") or "").strip() or DEFAULT_PREFIX


def warc_download_url(warc_filename_or_url: str, *, prefix: Optional[str] = None) -> str:
    warc = (warc_filename_or_url or "").strip()
    if warc.startswith("http://") or warc.startswith("https://"):
        return warc
    pref = prefix if prefix else default_prefix()
    pref = pref if pref.endswith("/") else pref + "/"
    return pref + warc.lstrip("/")


def fetch_warc_record_range(
    *,
    warc_filename: str,
    warc_offset: int,
    warc_length: int,
    prefix: Optional[str] = None,
    timeout_s: float = 30.0,
    max_bytes: int = 2_000_000,
) -> WarcFetchResult:
    """Fetch the exact byte range for a WARC record pointer.

    Common Crawl WARC files are gzip-compressed per record, so the range
    `[warc_offset, warc_offset + warc_length)` is one gzip member that
    `parse_warc()` accepts directly.
    """

    start = int(warc_offset)
    length = int(warc_length)
    if start < 0 or length <= 0:
        raise ValueError("Invalid warc_offset/warc_length")

    url = warc_download_url(warc_filename, prefix=prefix)

    if int(max_bytes) > 0 and length > int(max_bytes):
        return WarcFetchResult(
            ok=False,
            status=None,
            url=url,
            bytes_requested=length,
            bytes_returned=0,
            sha256=None,
            data=None,
            error=f"record too large for max_bytes={max_bytes}: {length}",
        )

    req = urllib.request.Request(url, method="GET")
    req.add_header("Range", f"bytes={start}-{start + length - 1}")

    try:
        with urllib.request.urlopen(req, timeout=float(timeout_s)) as resp:
            status = int(getattr(resp, "status", 200))
            if status != 206:
                # Don't read the body: a server ignoring Range may send the whole file.
                return WarcFetchResult(
                    ok=False,
                    status=status,
                    url=url,
                    bytes_requested=length,
                    bytes_returned=0,
                    sha256=None,
                    data=None,
                    error=f"expected 206 for range GET, got {status}",
                )
            data = resp.read()
    except urllib.error.HTTPError as e:
        return WarcFetchResult(
            ok=False,
            status=int(e.code),
            url=url,
            bytes_requested=length,
            bytes_returned=0,
            sha256=None,
            data=None,
            error=f"http_error: {e.code} {e.reason}",
        )
    except (urllib.error.URLError, OSError) as e:
        return WarcFetchResult(
            ok=False,
            status=None,
            url=url,
            bytes_requested=length,
            bytes_returned=0,
            sha256=None,
            data=None,
            error=f"fetch_failed: {type(e).__name__}: {e}",
        )

    logger.debug("fetched %d bytes from %s @%d", len(data), url, start)

    return WarcFetchResult(
        ok=True,
        status=status,
        url=url,
        bytes_requested=length,
        bytes_returned=len(data),
        sha256=hashlib.sha256(data).hexdigest() if data else None,
        data=data,
        error=None,
    )


__all__ = [
    "DEFAULT_PREFIX",
    "EventHook",
    "ParsedRecord",
    "WarcFetchResult",
    "decompress",
    "default_prefix",
    "encode_json_map",
    "fetch_warc_record_range",
    "parse_http_response",
    "parse_warc",
    "parse_warc_record",
    "sanitize_header_value",
    "sanitize_text",
    "warc_download_url",
]
