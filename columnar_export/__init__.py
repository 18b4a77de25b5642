"""Chunked export of relational tables, SQL dumps and delimited files into
directories of columnar part files."""

__version__ = "0.1.0"
