"""Unified duckdb-warc CLI (application layer).

Examples:
    python -m duckdb_warc.cli --help
    duckdb-warc parse record.warc.gz
    duckdb-warc fetch --warc-filename crawl-data/.../x.warc.gz --warc-offset 46376769 --warc-length 945
    duckdb-warc sql "SELECT (parse_warc(content)).http_status FROM read_blob('*.warc.gz')"
"""

from __future__ import annotations

import argparse
import base64
import json
import logging
import os
import sys
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from duckdb_warc.warcparse import api


logger = logging.getLogger(__name__)


def _iter_files(paths: List[Path], directory: Optional[Path]) -> Iterator[Path]:
    for p in paths:
        yield p
    if directory:
        d = directory
        if d.exists() and d.is_dir():
            for p in sorted(d.iterdir()):
                if p.is_file():
                    yield p


def _record_json(
    rec: api.ParsedRecord,
    *,
    include_body_base64: bool,
    max_preview_chars: int,
) -> Dict[str, object]:
    body = rec.http_body
    preview: Optional[str] = None
    if body:
        preview = body.decode("utf-8", errors="replace")
        if len(preview) > int(max_preview_chars):
            preview = preview[: int(max_preview_chars)]

    out: Dict[str, object] = {
        "ok": rec.ok,
        "warc_version": rec.warc_version,
        "warc_headers": rec.warc_headers,
        "http_version": rec.http_version,
        "http_status": rec.http_status,
        "http_headers": rec.http_headers,
        "http_body_bytes": len(body) if body is not None else None,
        "http_body_preview": preview,
    }
    if include_body_base64:
        out["http_body_base64"] = base64.b64encode(body).decode("ascii") if body is not None else None
    return out


def _json_default(value: object) -> object:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return repr(value)


def _silence_events(_evt: Dict[str, object]) -> None:
    return None


def _cmd_parse(args: argparse.Namespace) -> int:
    files = list(
        _iter_files(
            [p.expanduser().resolve() for p in args.paths],
            args.dir.expanduser().resolve() if args.dir else None,
        )
    )
    if not files:
        print("No input files", file=sys.stderr)
        return 2

    on_event = _silence_events if args.quiet_events else None

    ok = 0
    n = 0
    for p in files:
        if not p.exists() or not p.is_file():
            logger.warning("Skipping missing file %s", p)
            continue
        n += 1
        rec = api.parse_warc(p.read_bytes(), on_event=on_event)
        if rec.ok:
            ok += 1
        out: Dict[str, object] = {"path": str(p)}
        out.update(
            _record_json(
                rec,
                include_body_base64=bool(args.include_body_base64),
                max_preview_chars=int(args.max_preview_chars),
            )
        )
        sys.stdout.write(json.dumps(out, ensure_ascii=False) + "\n")

    sys.stderr.write(f"checked={n} ok={ok}\n")
    return 0 if n and ok == n else 1


def _cmd_fetch(args: argparse.Namespace) -> int:
    try:
        fetch = api.fetch_warc_record_range(
            warc_filename=str(args.warc_filename),
            warc_offset=int(args.warc_offset),
            warc_length=int(args.warc_length),
            prefix=args.prefix,
            timeout_s=float(args.timeout_s),
            max_bytes=int(args.max_bytes),
        )
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    out: Dict[str, object] = {
        "ok": fetch.ok,
        "status": fetch.status,
        "url": fetch.url,
        "bytes_requested": fetch.bytes_requested,
        "bytes_returned": fetch.bytes_returned,
        "sha256": fetch.sha256,
        "error": fetch.error,
    }
    if fetch.ok and fetch.data is not None:
        rec = api.parse_warc(fetch.data)
        out["record"] = _record_json(
            rec,
            include_body_base64=bool(args.include_body_base64),
            max_preview_chars=int(args.max_preview_chars),
        )

    sys.stdout.write(json.dumps(out, ensure_ascii=False) + "\n")
    return 0 if fetch.ok else 1


def _cmd_sql(args: argparse.Namespace) -> int:
    from duckdb_warc.warcparse import udf

    con = udf.connect(str(args.database))
    try:
        rel = con.execute(str(args.query))
        cols = [d[0] for d in (rel.description or [])]
        for row in rel.fetchall():
            sys.stdout.write(json.dumps(dict(zip(cols, row)), ensure_ascii=False, default=_json_default) + "\n")
    finally:
        con.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(prog="duckdb-warc", description="Parse WARC records (standalone or via DuckDB)")
    ap.add_argument(
        "--log-level",
        default=(os.environ.get("DUCKDB_WARC_LOG_LEVEL") or "INFO").strip().upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: env DUCKDB_WARC_LOG_LEVEL or INFO)",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    # ---- parse ----
    ap_parse = sub.add_parser("parse", help="Parse local WARC record files (raw or gzip)")
    ap_parse.add_argument("paths", nargs="*", type=Path, help="One or more record files")
    ap_parse.add_argument("--dir", type=Path, default=None, help="Directory of record files")
    ap_parse.add_argument("--include-body-base64", action="store_true", default=False)
    ap_parse.add_argument("--max-preview-chars", type=int, default=2_000)
    ap_parse.add_argument(
        "--quiet-events",
        action="store_true",
        default=False,
        help="Do not log binary-body diagnostics",
    )
    ap_parse.set_defaults(func=_cmd_parse)

    # ---- fetch ----
    ap_fetch = sub.add_parser("fetch", help="Fetch a WARC record by offset/length and parse it")
    ap_fetch.add_argument("--warc-filename", required=True, help="WARC path within the prefix, or a full URL")
    ap_fetch.add_argument("--warc-offset", type=int, required=True)
    ap_fetch.add_argument("--warc-length", type=int, required=True)
    ap_fetch.add_argument(
        "--prefix",
        default=None,
        help=f"WARC base URL prefix (default: env DUCKDB_WARC_PREFIX or {api.DEFAULT_PREFIX})",
    )
    ap_fetch.add_argument("--timeout-s", type=float, default=30.0)
    ap_fetch.add_argument("--max-bytes", type=int, default=2_000_000)
    ap_fetch.add_argument("--include-body-base64", action="store_true", default=False)
    ap_fetch.add_argument("--max-preview-chars", type=int, default=2_000)
    ap_fetch.set_defaults(func=_cmd_fetch)

    # ---- sql ----
    ap_sql = sub.add_parser("sql", help="Run a DuckDB query with parse_warc() registered")
    ap_sql.add_argument("query", help="SQL to execute")
    ap_sql.add_argument("--database", default=":memory:", help="DuckDB database path (default: in-memory)")
    ap_sql.set_defaults(func=_cmd_sql)

    ns = ap.parse_args(argv)
    logging.basicConfig(level=getattr(logging, ns.log_level, logging.INFO), format="%(asctime)s [%(levelname)s] %(message)s")
    return int(ns.func(ns))


if __name__ == "__main__":
    raise SystemExit(main())
