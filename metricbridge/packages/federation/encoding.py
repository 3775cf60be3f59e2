from __future__ import annotations

import csv
import io
import json
from typing import Any, Iterator

import pyarrow as pa

from metricbridge.packages.federation.table.columnar import ColumnarTable

ARROW_STREAM_MEDIA_TYPE = "application/vnd.apache.arrow.stream"
CSV_MEDIA_TYPE = "text/csv"


def arrow_stream_bytes(table: ColumnarTable) -> bytes:
    """Encode the whole table as a single Arrow IPC stream."""
    sink = pa.BufferOutputStream()
    with pa.ipc.new_stream(sink, table.arrow_schema()) as writer:
        writer.write_table(table.to_arrow())
    return sink.getvalue().to_pybytes()


def encode_arrow_stream(table: ColumnarTable, batch_size: int) -> Iterator[bytes]:
    """Yield an Arrow IPC stream in chunks, one record batch per ``batch_size`` rows.

    The first chunk carries the schema message and the last one the
    end-of-stream marker, so the concatenated chunks form a valid stream.
    """
    sink = io.BytesIO()
    writer = pa.ipc.new_stream(sink, table.arrow_schema())
    try:
        for batch in table.iter_batches(batch_size):
            writer.write_batch(batch)
            chunk = _drain(sink)
            if chunk:
                yield chunk
    finally:
        writer.close()
    chunk = _drain(sink)
    if chunk:
        yield chunk


def table_to_json(table: ColumnarTable) -> dict[str, Any]:
    return {"data": table.to_pylist(), "rowCount": table.row_count}


def iter_json_rows(table: ColumnarTable, batch_size: int) -> Iterator[bytes]:
    yield b'{"data":['
    row_count = table.row_count
    for start in range(0, row_count, max(1, batch_size)):
        stop = min(start + batch_size, row_count)
        rows = ",".join(json.dumps(table.row(index), allow_nan=False) for index in range(start, stop))
        yield (rows if start == 0 else "," + rows).encode("utf-8")
    yield f'],"rowCount":{row_count}}}'.encode("utf-8")


def table_to_csv(table: ColumnarTable) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(table.column_names)
    for index in range(table.row_count):
        writer.writerow([_csv_cell(value) for value in table.row(index).values()])
    return buffer.getvalue()


def _csv_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _drain(sink: io.BytesIO) -> bytes:
    data = sink.getvalue()
    sink.seek(0)
    sink.truncate(0)
    return data
