"""Binary record codec for metadata and data files.

Records are msgpack maps, gzip-compressed.  Row values are encoded by an
explicit switch over the ``RowValue`` set; types msgpack has no native
form for travel as extension types:

====  ==========  ===============================
code  type        payload
====  ==========  ===============================
1     Decimal     ``str(value)`` (exact)
2     datetime    ISO 8601, offset kept if aware
3     date        ISO 8601
4     time        ISO 8601
5     UUID        16 raw bytes
6     timedelta   total seconds as a decimal string
7     int         decimal string (beyond 64 bits)
====  ==========  ===============================

Usage:
    from db_migrator.archive.codec import decode_table_data, encode_table_data

    blob = encode_table_data(batch)
    batch = decode_table_data(blob, path="data/dbo_orders.bin")
"""

import gzip
import zlib
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

import msgpack

from db_migrator.archive.models import TableData, TableMetadata
from db_migrator.constants import FORMAT_VERSION
from db_migrator.exceptions import ArchiveFormatError
from db_migrator.logging import get_logger
from db_migrator.schema.models import RowValue

logger = get_logger(__name__)

EXT_DECIMAL = 1
EXT_DATETIME = 2
EXT_DATE = 3
EXT_TIME = 4
EXT_UUID = 5
EXT_TIMEDELTA = 6
EXT_BIGINT = 7

_INT64_MIN = -(2**63)
_UINT64_MAX = 2**64 - 1

RECORD_TABLE_DATA = "table_data"
RECORD_METADATA = "table_metadata"


# ============================================================================
# Values
# ============================================================================


def encode_value(value: RowValue) -> Any:
    """Convert a row value to a msgpack-native value or ``ExtType``.

    Raises:
        ArchiveFormatError: For values outside the supported set.
    """
    if value is None or isinstance(value, (bool, float, str, bytes)):
        return value
    if isinstance(value, int):
        if _INT64_MIN <= value <= _UINT64_MAX:
            return value
        return msgpack.ExtType(EXT_BIGINT, str(value).encode())
    if isinstance(value, Decimal):
        return msgpack.ExtType(EXT_DECIMAL, str(value).encode())
    # datetime is a subclass of date: test it first
    if isinstance(value, datetime):
        return msgpack.ExtType(EXT_DATETIME, value.isoformat().encode())
    if isinstance(value, date):
        return msgpack.ExtType(EXT_DATE, value.isoformat().encode())
    if isinstance(value, time):
        return msgpack.ExtType(EXT_TIME, value.isoformat().encode())
    if isinstance(value, UUID):
        return msgpack.ExtType(EXT_UUID, value.bytes)
    if isinstance(value, timedelta):
        seconds = Decimal(value.days * 86400 + value.seconds)
        seconds += Decimal(value.microseconds) / 1_000_000
        return msgpack.ExtType(EXT_TIMEDELTA, str(seconds).encode())
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    raise ArchiveFormatError(f"Unsupported value type {type(value).__name__}")


def _ext_hook(code: int, data: bytes) -> Any:
    text = data.decode() if code != EXT_UUID else ""
    if code == EXT_DECIMAL:
        return Decimal(text)
    if code == EXT_DATETIME:
        return datetime.fromisoformat(text)
    if code == EXT_DATE:
        return date.fromisoformat(text)
    if code == EXT_TIME:
        return time.fromisoformat(text)
    if code == EXT_UUID:
        return UUID(bytes=data)
    if code == EXT_TIMEDELTA:
        seconds = Decimal(text)
        whole = int(seconds)
        return timedelta(seconds=whole, microseconds=int((seconds - whole) * 1_000_000))
    if code == EXT_BIGINT:
        return int(text)
    raise ArchiveFormatError(f"Unknown extension type code {code}")


# ============================================================================
# Records
# ============================================================================


def pack_record(record: dict[str, Any]) -> bytes:
    """msgpack + gzip a record whose values are already msgpack-native."""
    return gzip.compress(msgpack.packb(record, use_bin_type=True), compresslevel=6)


def unpack_record(data: bytes, path: str | None = None) -> dict[str, Any]:
    """Inverse of ``pack_record``.

    Raises:
        ArchiveFormatError: If the bytes are not a gzip-compressed msgpack map.
    """
    try:
        raw = gzip.decompress(data)
        record = msgpack.unpackb(raw, raw=False, ext_hook=_ext_hook, strict_map_key=False)
    except (OSError, EOFError, zlib.error, ValueError, msgpack.UnpackException) as e:
        raise ArchiveFormatError(f"Corrupt archive record: {e}", path=path) from e
    if not isinstance(record, dict):
        raise ArchiveFormatError("Archive record is not a map", path=path)
    _check_version(record.get("format_version"), path)
    return record


def _check_version(version: Any, path: str | None) -> None:
    """Accept any minor version of the current major format."""
    if not isinstance(version, str) or not version:
        raise ArchiveFormatError("Archive record has no format_version", path=path)
    major = version.split(".", 1)[0]
    if major != FORMAT_VERSION.split(".", 1)[0]:
        raise ArchiveFormatError(
            f"Unsupported format_version '{version}' (expected {FORMAT_VERSION})", path=path
        )
    if version != FORMAT_VERSION:
        logger.debug("Reading format_version %s with reader %s", version, FORMAT_VERSION)


def encode_table_data(batch: TableData) -> bytes:
    """Serialize one batch; rows are stored as value lists in ``columns`` order."""
    rows = [[encode_value(row.get(c)) for c in batch.columns] for row in batch.rows]
    return pack_record(
        {
            "record_type": RECORD_TABLE_DATA,
            "format_version": FORMAT_VERSION,
            "table": batch.table_name,
            "schema": batch.schema_name,
            "batch_number": batch.batch_number,
            "total_batches": batch.total_batches,
            "is_last_batch": batch.is_last_batch,
            "total_count": batch.total_count,
            "columns": list(batch.columns),
            "rows": rows,
        }
    )


def decode_table_data(data: bytes, path: str | None = None) -> TableData:
    record = unpack_record(data, path)
    if record.get("record_type") != RECORD_TABLE_DATA:
        raise ArchiveFormatError("Not a table data file", path=path)
    columns = record.get("columns") or []
    rows = []
    for values in record.get("rows") or []:
        if len(values) != len(columns):
            raise ArchiveFormatError(
                f"Row has {len(values)} values for {len(columns)} columns", path=path
            )
        rows.append(dict(zip(columns, values)))
    return TableData(
        table_name=record["table"],
        schema=record.get("schema"),
        columns=columns,
        rows=rows,
        batch_number=record.get("batch_number", 1),
        total_batches=record.get("total_batches"),
        is_last_batch=record.get("is_last_batch", True),
        total_count=record.get("total_count", len(rows)),
    )


def encode_metadata(metadata: TableMetadata) -> bytes:
    payload = metadata.model_dump(mode="json", by_alias=True)
    payload["record_type"] = RECORD_METADATA
    return pack_record(payload)


def decode_metadata(data: bytes, path: str | None = None) -> TableMetadata:
    record = unpack_record(data, path)
    if record.pop("record_type", None) != RECORD_METADATA:
        raise ArchiveFormatError("Not a table metadata file", path=path)
    try:
        return TableMetadata.model_validate(record)
    except ValueError as e:
        raise ArchiveFormatError(f"Invalid table metadata: {e}", path=path) from e
