"""DuckDB scalar function wrapping `parse_warc()`.

Registers `parse_warc(BLOB)` and `parse_warc_text(VARCHAR)` as vectorized
Arrow UDFs returning

    STRUCT(warc_version VARCHAR, warc_headers VARCHAR, http_version VARCHAR,
           http_status INTEGER, http_headers VARCHAR, http_body BLOB)

Example:
    con = connect()
    con.sql("SELECT (parse_warc(content)).http_status FROM read_blob('x.warc.gz')")
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Tuple

import duckdb
import pyarrow as pa
from duckdb.sqltypes import BLOB, INTEGER, VARCHAR

from duckdb_warc.warcparse.api import EventHook, parse_warc


logger = logging.getLogger(__name__)


PARSED_RECORD_FIELDS: List[Tuple[str, pa.DataType]] = [
    ("warc_version", pa.string()),
    ("warc_headers", pa.string()),
    ("http_version", pa.string()),
    ("http_status", pa.int32()),
    ("http_headers", pa.string()),
    ("http_body", pa.binary()),
]

_DUCKDB_FIELD_TYPES = {
    "warc_version": VARCHAR,
    "warc_headers": VARCHAR,
    "http_version": VARCHAR,
    "http_status": INTEGER,
    "http_headers": VARCHAR,
    "http_body": BLOB,
}


def parsed_record_arrow_type() -> pa.StructType:
    return pa.struct([pa.field(name, typ) for name, typ in PARSED_RECORD_FIELDS])


def _duckdb_struct_type(con: duckdb.DuckDBPyConnection) -> Any:
    return con.struct_type({name: _DUCKDB_FIELD_TYPES[name] for name, _ in PARSED_RECORD_FIELDS})


def parse_warc_arrow(values: Any, *, on_event: Optional[EventHook] = None) -> pa.StructArray:
    """Parse every row of an Arrow binary/string array.

    Null rows yield a struct whose six children are all null (the struct
    itself is not null).
    """

    rows = [parse_warc(v, on_event=on_event).as_dict() for v in values.to_pylist()]
    return pa.array(rows, type=parsed_record_arrow_type())


def register_parse_warc(
    con: duckdb.DuckDBPyConnection,
    *,
    name: str = "parse_warc",
    on_event: Optional[EventHook] = None,
) -> Tuple[str, str]:
    """Register `<name>(BLOB)` and `<name>_text(VARCHAR)` on `con`.

    Returns the two registered function names.
    """

    def _udf(values: Any) -> pa.StructArray:
        return parse_warc_arrow(values, on_event=on_event)

    return_type = _duckdb_struct_type(con)
    text_name = f"{name}_text"

    for fn_name, param in ((name, BLOB), (text_name, VARCHAR)):
        con.create_function(
            fn_name,
            _udf,
            [param],
            return_type,
            type="arrow",
            null_handling="special",
        )
        logger.debug("registered %s(%s)", fn_name, param)

    return name, text_name


def connect(database: str = ":memory:", **kwargs: Any) -> duckdb.DuckDBPyConnection:
    """Open a DuckDB connection with the parse_warc functions registered."""

    con = duckdb.connect(database, **kwargs)
    register_parse_warc(con)
    return con


__all__ = [
    "PARSED_RECORD_FIELDS",
    "connect",
    "parse_warc_arrow",
    "parsed_record_arrow_type",
    "register_parse_warc",
]
