"""Columnar encoding of typed batches with pyarrow.

The part writer hands over columns already converted by the schema; this
module builds the Arrow schema and serialises one part into memory.
"""

import logging
from typing import Dict, List, Sequence, Union

import pyarrow as pa
import pyarrow.orc as orc
import pyarrow.parquet as pq

from columnar_export.errors import EncodeError
from .models import Compression, OutputFormat
from .schema_detector import ColumnSchema, arrow_type

log = logging.getLogger(__name__)

_ORC_COMPRESSION: Dict[Compression, str] = {
    Compression.FAST: "SNAPPY",
    Compression.HIGH_RATIO: "ZSTD",
    Compression.NONE: "UNCOMPRESSED",
}

_PARQUET_COMPRESSION: Dict[Compression, str] = {
    Compression.FAST: "snappy",
    Compression.HIGH_RATIO: "zstd",
    Compression.NONE: "none",
}


def arrow_schema(schema: ColumnSchema) -> pa.Schema:
    """Build the Arrow schema for a resolved column schema."""
    return pa.schema([pa.field(spec.name, arrow_type(spec), nullable=True) for spec in schema.columns])


def codec_name(compression: Compression, output_format: OutputFormat) -> str:
    """Return the codec identifier pyarrow expects for a compression choice."""
    if output_format is OutputFormat.ORC:
        return _ORC_COMPRESSION[compression]
    return _PARQUET_COMPRESSION[compression]


def encode(
    columns: Sequence[Union[pa.Array, List]],
    schema: ColumnSchema,
    compression: Compression,
    output_format: OutputFormat = OutputFormat.ORC,
) -> bytes:
    """Encode typed columns as one self-describing columnar file.

    Args:
        columns: One Arrow array, or list of converted values, per schema column.
        schema: The table's frozen schema.
        compression: Compression choice for the part.
        output_format: ORC or Parquet.

    Returns:
        The encoded file contents.

    Raises:
        EncodeError: If pyarrow rejects the data.
    """
    try:
        target = arrow_schema(schema)
        arrays = [
            values if isinstance(values, pa.Array) else pa.array(values, type=field.type)
            for values, field in zip(columns, target)
        ]
        table = pa.Table.from_arrays(arrays, schema=target)

        sink = pa.BufferOutputStream()
        if output_format is OutputFormat.ORC:
            orc.write_table(table, sink, compression=codec_name(compression, output_format))
        else:
            pq.write_table(table, sink, compression=codec_name(compression, output_format))
        data = sink.getvalue().to_pybytes()
        log.debug("Encoded %d rows into %d bytes of %s", table.num_rows, len(data), output_format.value)
        return data
    except (pa.ArrowException, ValueError, TypeError, OverflowError) as exc:
        raise EncodeError(f"Failed to encode {output_format.value} part: {exc}") from exc
