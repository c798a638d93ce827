"""Tests for the archive codec, directory layout and export validation."""

import gzip
import json
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from uuid import UUID

import msgpack
import pytest

from fakes import sample_tables

from db_migrator.archive.codec import (
    decode_metadata,
    decode_table_data,
    encode_metadata,
    encode_table_data,
    encode_value,
    pack_record,
    unpack_record,
)
from db_migrator.archive.models import (
    DependencyInfo,
    ExportManifest,
    ManifestEntry,
    TableData,
    TableMetadata,
)
from db_migrator.archive.store import (
    ArchiveReader,
    ArchiveWriter,
    data_file_name,
    file_prefix,
    metadata_file_name,
    validate_export,
)
from db_migrator.exceptions import ArchiveFormatError


def _batch(rows: list[dict], batch_number: int = 1, is_last: bool = True) -> TableData:
    return TableData(
        table_name="Orders",
        schema="dbo",
        columns=["OrderId", "CustomerId", "Total"],
        rows=rows,
        batch_number=batch_number,
        total_batches=batch_number if is_last else batch_number + 1,
        is_last_batch=is_last,
        total_count=len(rows),
    )


# ------------------------------------------------------------------
# Codec
# ------------------------------------------------------------------


class TestCodecValues:
    """Every RowValue type survives a write/read cycle with its type."""

    def test_all_value_types(self):
        values = {
            "none": None,
            "flag": True,
            "small": 7,
            "big": 2**70,
            "negative_big": -(2**70),
            "ratio": 0.25,
            "money": Decimal("12345678901234567890.1234"),
            "text": "naïve ünïcode",
            "created": datetime(2024, 2, 29, 23, 59, 59, 999999),
            "aware": datetime(2024, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=-5))),
            "day": date(1999, 12, 31),
            "clock": time(7, 8, 9, 10),
            "elapsed": timedelta(days=2, seconds=5, microseconds=250),
            "blob": b"\x00\xff\x10",
            "guid": UUID("12345678-1234-5678-1234-567812345678"),
        }
        batch = TableData(table_name="t", columns=list(values), rows=[values])
        decoded = decode_table_data(encode_table_data(batch))
        row = decoded.rows[0]
        assert row == values
        for key, value in values.items():
            assert type(row[key]) is type(value), key

    def test_unsupported_value_type(self):
        with pytest.raises(ArchiveFormatError, match="Unsupported value type"):
            encode_value(object())

    def test_bytearray_stored_as_bytes(self):
        assert encode_value(bytearray(b"ab")) == b"ab"


class TestCodecRecords:
    def test_table_data_header(self):
        batch = _batch([{"OrderId": 1, "CustomerId": 2, "Total": Decimal("3.50")}], 2, False)
        decoded = decode_table_data(encode_table_data(batch))
        assert decoded.full_name == "dbo.Orders"
        assert decoded.batch_number == 2
        assert decoded.total_batches == 3
        assert decoded.is_last_batch is False
        assert decoded.columns == ["OrderId", "CustomerId", "Total"]

    def test_missing_columns_written_as_null(self):
        decoded = decode_table_data(encode_table_data(_batch([{"OrderId": 1}])))
        assert decoded.rows == [{"OrderId": 1, "CustomerId": None, "Total": None}]

    def test_metadata_round_trip_keeps_schema(self):
        table = sample_tables()[1]
        decoded = decode_metadata(encode_metadata(TableMetadata(table=table, row_count=12)))
        assert decoded.table == table
        assert decoded.row_count == 12

    def test_corrupt_bytes(self):
        with pytest.raises(ArchiveFormatError, match="Corrupt"):
            unpack_record(b"not gzip at all", path="data/x.bin")

    def test_non_map_record(self):
        data = gzip.compress(msgpack.packb([1, 2, 3]))
        with pytest.raises(ArchiveFormatError, match="not a map"):
            unpack_record(data)

    def test_missing_version(self):
        with pytest.raises(ArchiveFormatError, match="format_version"):
            unpack_record(pack_record({"record_type": "table_data"}))

    def test_future_major_version_rejected(self):
        with pytest.raises(ArchiveFormatError, match="Unsupported format_version"):
            unpack_record(pack_record({"format_version": "3.0"}))

    def test_newer_minor_version_accepted(self):
        assert unpack_record(pack_record({"format_version": "2.7"}))["format_version"] == "2.7"

    def test_metadata_file_is_not_data(self):
        data = encode_metadata(TableMetadata(table=sample_tables()[0]))
        with pytest.raises(ArchiveFormatError, match="Not a table data file"):
            decode_table_data(data)

    def test_row_width_mismatch(self):
        record = {
            "record_type": "table_data",
            "format_version": "2.0",
            "table": "t",
            "columns": ["a", "b"],
            "rows": [[1]],
        }
        with pytest.raises(ArchiveFormatError, match="1 values for 2 columns"):
            decode_table_data(pack_record(record))


# ------------------------------------------------------------------
# Layout
# ------------------------------------------------------------------


class TestNaming:
    def test_prefix(self):
        assert file_prefix("Orders", "dbo") == "dbo_Orders"
        assert file_prefix("orders") == "orders"

    def test_single_data_file(self):
        assert data_file_name("dbo_Orders", 1, single=True) == "data/dbo_Orders.bin"

    def test_batched_data_file(self):
        assert data_file_name("dbo_Orders", 3, single=False) == "data/dbo_Orders_batch3.bin"

    def test_metadata_file(self):
        assert metadata_file_name("dbo_Orders") == "table_metadata/dbo_Orders.meta"


def _write_export(tmp_path, batches: int = 2, rows_per_batch: int = 2) -> tuple[ArchiveWriter, ManifestEntry]:
    """Write a one-table export and return the writer and its manifest entry."""
    writer = ArchiveWriter(tmp_path)
    writer.prepare()
    table = sample_tables()[1]
    entry = ManifestEntry(
        table_name="Orders",
        schema="dbo",
        metadata_file=writer.write_metadata(table, row_count=batches * rows_per_batch),
    )
    next_id = 1
    for n in range(1, batches + 1):
        rows = []
        for _ in range(rows_per_batch):
            rows.append({"OrderId": next_id, "CustomerId": 1, "Total": Decimal("1.00")})
            next_id += 1
        entry.data_files.append(
            writer.write_batch(_batch(rows, n, n == batches), single=batches == 1)
        )
    entry.row_count = batches * rows_per_batch
    entry.has_data = True
    writer.write_dependencies(DependencyInfo(levels={"0": ["dbo.Orders"]}))
    writer.write_manifest(ExportManifest(source_provider="SqlServer", tables=[entry]))
    return writer, entry


class TestWriterReader:
    """Archive files are written atomically and read back in batch order."""

    def test_layout(self, tmp_path):
        _write_export(tmp_path)
        assert (tmp_path / "export_manifest.json").is_file()
        assert (tmp_path / "dependencies.json").is_file()
        assert (tmp_path / "table_metadata" / "dbo_Orders.meta").is_file()
        assert (tmp_path / "data" / "dbo_Orders_batch1.bin").is_file()
        assert (tmp_path / "data" / "dbo_Orders_batch2.bin").is_file()
        assert not list(tmp_path.rglob("*.tmp"))

    def test_manifest_is_plain_json(self, tmp_path):
        _write_export(tmp_path)
        raw = json.loads((tmp_path / "export_manifest.json").read_text())
        assert raw["source_provider"] == "SqlServer"
        assert raw["tables"][0]["schema"] == "dbo"
        assert raw["tables"][0]["data_files"] == [
            "data/dbo_Orders_batch1.bin",
            "data/dbo_Orders_batch2.bin",
        ]

    def test_read_back(self, tmp_path):
        _write_export(tmp_path)
        reader = ArchiveReader(tmp_path)
        manifest = reader.load_manifest()
        entry = manifest.entry("dbo.Orders")
        assert reader.read_metadata(entry).table.name == "Orders"
        batches = list(reader.iter_batches(entry))
        assert [b.batch_number for b in batches] == [1, 2]
        assert [r["OrderId"] for b in batches for r in b.rows] == [1, 2, 3, 4]
        assert reader.load_dependencies().levels == {"0": ["dbo.Orders"]}

    def test_manifest_entry_by_bare_name(self, tmp_path):
        _write_export(tmp_path)
        assert ArchiveReader(tmp_path).load_manifest().entry("orders") is not None

    def test_missing_manifest(self, tmp_path):
        with pytest.raises(ArchiveFormatError, match="not found"):
            ArchiveReader(tmp_path).load_manifest()

    def test_invalid_manifest(self, tmp_path):
        (tmp_path / "export_manifest.json").write_text('{"tables": 5}')
        with pytest.raises(ArchiveFormatError, match="Invalid export manifest"):
            ArchiveReader(tmp_path).load_manifest()

    def test_missing_dependencies_file(self, tmp_path):
        assert ArchiveReader(tmp_path).load_dependencies() is None

    def test_remove_table_files(self, tmp_path):
        writer, _ = _write_export(tmp_path)
        removed = writer.remove_table_files("Orders", "dbo")
        assert sorted(removed) == [
            "data/dbo_Orders_batch1.bin",
            "data/dbo_Orders_batch2.bin",
            "table_metadata/dbo_Orders.meta",
        ]

    def test_remove_table_files_keeps_metadata(self, tmp_path):
        writer, _ = _write_export(tmp_path)
        writer.remove_table_files("Orders", "dbo", include_metadata=False)
        assert (tmp_path / "table_metadata" / "dbo_Orders.meta").is_file()
        assert not list((tmp_path / "data").iterdir())


# ------------------------------------------------------------------
# Validation
# ------------------------------------------------------------------


class TestValidateExport:
    """validate_export reads every file without a database."""

    def test_valid_export(self, tmp_path):
        _write_export(tmp_path)
        report = validate_export(tmp_path)
        assert report["valid"] is True
        assert report["errors"] == []

    def test_single_file_export(self, tmp_path):
        _write_export(tmp_path, batches=1)
        assert (tmp_path / "data" / "dbo_Orders.bin").is_file()
        assert validate_export(tmp_path)["valid"] is True

    def test_missing_manifest(self, tmp_path):
        report = validate_export(tmp_path)
        assert report["valid"] is False
        assert "manifest not found" in report["errors"][0]

    def test_missing_data_file(self, tmp_path):
        _write_export(tmp_path)
        (tmp_path / "data" / "dbo_Orders_batch2.bin").unlink()
        report = validate_export(tmp_path)
        assert report["valid"] is False
        assert any("Data file not found" in e for e in report["errors"])

    def test_corrupt_metadata(self, tmp_path):
        _write_export(tmp_path)
        (tmp_path / "table_metadata" / "dbo_Orders.meta").write_bytes(b"garbage")
        report = validate_export(tmp_path)
        assert report["valid"] is False
        assert any("dbo.Orders" in e for e in report["errors"])

    def test_row_count_mismatch(self, tmp_path):
        writer, entry = _write_export(tmp_path)
        entry.row_count = 10
        writer.write_manifest(ExportManifest(source_provider="SqlServer", tables=[entry]))
        report = validate_export(tmp_path)
        assert report["valid"] is False
        assert any("row_count 10" in e for e in report["errors"])

    def test_incomplete_export_warns(self, tmp_path):
        writer, entry = _write_export(tmp_path)
        writer.write_manifest(
            ExportManifest(source_provider="SqlServer", complete=False, tables=[entry])
        )
        report = validate_export(tmp_path)
        assert report["valid"] is True
        assert any("incomplete" in w for w in report["warnings"])

    def test_missing_dependencies_warns(self, tmp_path):
        _write_export(tmp_path)
        (tmp_path / "dependencies.json").unlink()
        report = validate_export(tmp_path)
        assert report["valid"] is True
        assert any("dependencies.json" in w for w in report["warnings"])

    def test_batch_gap(self, tmp_path):
        writer, entry = _write_export(tmp_path, batches=3, rows_per_batch=1)
        entry.data_files = [entry.data_files[0], entry.data_files[2]]
        entry.row_count = 2
        writer.write_manifest(ExportManifest(source_provider="SqlServer", tables=[entry]))
        report = validate_export(tmp_path)
        assert any("expected batch 2, found 3" in e for e in report["errors"])
