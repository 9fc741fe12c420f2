from __future__ import annotations

import gzip

import pyarrow as pa
import pytest

from duckdb_warc.warcparse import udf


def _all_null(row: dict) -> bool:
    return all(row[name] is None for name, _ in udf.PARSED_RECORD_FIELDS)


def test_arrow_type_matches_field_list() -> None:
    t = udf.parsed_record_arrow_type()
    assert [f.name for f in t] == [
        "warc_version",
        "warc_headers",
        "http_version",
        "http_status",
        "http_headers",
        "http_body",
    ]
    assert t.field("http_status").type == pa.int32()
    assert t.field("http_body").type == pa.binary()


def test_parse_warc_arrow_rows(make_warc, html_response) -> None:
    values = pa.array([None, gzip.compress(make_warc(html_response)), b"Not HTTP data"], type=pa.binary())

    out = udf.parse_warc_arrow(values)
    assert isinstance(out, pa.StructArray)
    assert len(out) == 3
    assert out.null_count == 0

    rows = out.to_pylist()
    assert _all_null(rows[0])
    assert rows[1]["warc_version"] == "1.0"
    assert rows[1]["http_status"] == 200
    assert rows[1]["http_body"] == b"<html><body>Hello</body></html>"
    assert _all_null(rows[2])


def test_parse_warc_arrow_chunked_text() -> None:
    values = pa.chunked_array([["Not HTTP data"], [None]], type=pa.string())
    out = udf.parse_warc_arrow(values)
    assert len(out) == 2


@pytest.fixture
def con():
    c = udf.connect()
    yield c
    c.close()


def test_register_returns_names() -> None:
    import duckdb

    c = duckdb.connect()
    try:
        assert udf.register_parse_warc(c, name="warc_parse") == ("warc_parse", "warc_parse_text")
        row = c.execute("SELECT (warc_parse_text('Not HTTP data')).warc_version").fetchone()
        assert row == (None,)
    finally:
        c.close()


def test_sql_parse_warc_blob(con, make_warc, html_response) -> None:
    payload = gzip.compress(make_warc(html_response, headers=[("WARC-IP-Address", "10.0.0.7")]))

    row = con.execute(
        """
        SELECT
            (parse_warc(?)).warc_version,
            (parse_warc(?)).http_status,
            (parse_warc(?)).warc_headers
        """,
        [payload, payload, payload],
    ).fetchone()

    assert row[0] == "1.0"
    assert row[1] == 200
    assert '"WARC-IP-Address": "10.0.0.7"' in row[2]


def test_sql_full_struct(con, make_warc, html_response) -> None:
    row = con.execute("SELECT parse_warc(?) AS r", [make_warc(html_response)]).fetchone()

    rec = row[0]
    assert set(rec.keys()) == {name for name, _ in udf.PARSED_RECORD_FIELDS}
    assert rec["http_version"] == "HTTP/1.1"
    assert rec["http_headers"] == '{"content-type": "text/html; charset=utf-8", "server": "nginx"}'
    assert bytes(rec["http_body"]) == b"<html><body>Hello</body></html>"


def test_sql_text_overload(con, make_warc, html_response) -> None:
    text = make_warc(html_response).decode("utf-8")

    row = con.execute("SELECT (parse_warc_text(?)).http_status", [text]).fetchone()
    assert row == (200,)


def test_sql_null_rows_yield_null_fields(con, make_warc, html_response) -> None:
    con.execute("CREATE TABLE blobs (id INTEGER, content BLOB)")
    con.executemany(
        "INSERT INTO blobs VALUES (?, ?)",
        [[1, None], [2, make_warc(html_response)], [3, b"Not HTTP data"]],
    )

    rows = con.execute(
        """
        SELECT id, (parse_warc(content)).warc_version, (parse_warc(content)).http_status
        FROM blobs
        ORDER BY id
        """
    ).fetchall()

    assert rows == [(1, None, None), (2, "1.0", 200), (3, None, None)]


def test_sql_binary_body_is_null(con, make_warc) -> None:
    data = make_warc(b"HTTP/1.1 200 OK\r\nContent-Type: image/gif\r\n\r\nGIF89a\x00\x01")

    row = con.execute(
        "SELECT (parse_warc(?)).http_status, (parse_warc(?)).http_body",
        [data, data],
    ).fetchone()
    assert row == (200, None)


def test_sql_return_type(con) -> None:
    row = con.execute("SELECT typeof(parse_warc(?))", [b"Not HTTP data"]).fetchone()
    assert row == (
        "STRUCT(warc_version VARCHAR, warc_headers VARCHAR, http_version VARCHAR, "
        "http_status INTEGER, http_headers VARCHAR, http_body BLOB)",
    )
