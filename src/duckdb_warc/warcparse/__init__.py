"""Single-record WARC parsing.

`api` holds the pure parser (no third-party imports); `udf` exposes it to
DuckDB as the `parse_warc` scalar function.
"""

from . import api

__all__ = ["api"]
