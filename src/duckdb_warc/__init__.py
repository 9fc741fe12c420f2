"""Parse WARC capture records into structured rows, standalone or inside DuckDB."""

__version__ = "0.1.0"
