"""
Unit tests for the directory connector.
"""

import json

import pytest

from livetables.core.config import RETAIL_SCHEMA
from livetables.core.errors import ConnectorError, SchemaError
from livetables.sources import DirectoryConnector

ROW_1 = "536365,85123A,WHITE HANGING HEART T-LIGHT HOLDER,6,12/1/10 8:26,2.55,17850,United Kingdom"
ROW_2 = "536366,22633,HAND WARMER UNION JACK,6,12/1/10 8:28,1.85,17850,United Kingdom"
ROW_3 = "536367,84879,ASSORTED COLOUR BIRD ORNAMENT,32,12/1/10 8:34,1.69,13047,France"


@pytest.mark.unit
class TestDirectoryConnector:
    """Tests for DirectoryConnector.poll"""

    def test_reads_csv_with_schema(self, data_dir, write_retail_csv):
        path = write_retail_csv("part-000.csv", [ROW_1])

        batch = DirectoryConnector().poll(str(data_dir), "csv", RETAIL_SCHEMA, {"header": True})

        assert len(batch.rows) == 1
        record = batch.rows[0].record
        assert record["InvoiceNo"] == "536365"
        assert record["Quantity"] == 6.0
        assert record["UnitPrice"] == 2.55
        assert record["InvoiceDate"] == "12/1/10 8:26"
        assert batch.rows[0].source_record_id == str(path)
        assert batch.offsets == {str(path): 1}

    def test_offsets_skip_seen_rows(self, data_dir, write_retail_csv, append_retail_csv):
        write_retail_csv("part-000.csv", [ROW_1])
        connector = DirectoryConnector()
        first = connector.poll(str(data_dir), "csv", RETAIL_SCHEMA)

        append_retail_csv("part-000.csv", [ROW_2])
        write_retail_csv("part-001.csv", [ROW_3])
        second = connector.poll(str(data_dir), "csv", RETAIL_SCHEMA, offsets=first.offsets)

        assert [r.record["InvoiceNo"] for r in second.rows] == ["536366", "536367"]
        assert [r.row_number for r in second.rows] == [1, 0]

        third = connector.poll(str(data_dir), "csv", RETAIL_SCHEMA, offsets=second.offsets)
        assert third.rows == []

    def test_permissive_casting(self, data_dir, write_retail_csv):
        write_retail_csv("part-000.csv", ["536365,85123A,HEART,six,12/1/10 8:26,,,United Kingdom"])

        record = DirectoryConnector().poll(str(data_dir), "csv", RETAIL_SCHEMA).rows[0].record

        assert record["Quantity"] is None
        assert record["UnitPrice"] is None
        assert record["CustomerID"] is None

    def test_headerless_csv_uses_schema_order(self, data_dir, write_retail_csv):
        write_retail_csv("part-000.csv", [ROW_1], header=False)

        batch = DirectoryConnector().poll(str(data_dir), "csv", RETAIL_SCHEMA, {"header": "false"})

        assert batch.rows[0].record["Country"] == "United Kingdom"

    def test_custom_delimiter(self, data_dir):
        (data_dir / "part.csv").write_text("InvoiceNo;Quantity\n1;2.5\n")

        batch = DirectoryConnector().poll(str(data_dir), "csv", "InvoiceNo STRING, Quantity FLOAT", {"delimiter": ";"})

        assert dict(batch.rows[0].record) == {"InvoiceNo": "1", "Quantity": 2.5}

    def test_hidden_and_marker_files_ignored(self, data_dir, write_retail_csv):
        write_retail_csv("part-000.csv", [ROW_1])
        (data_dir / "_SUCCESS").write_text("")
        (data_dir / ".part-000.csv.crc").write_text("garbage")

        batch = DirectoryConnector().poll(str(data_dir), "csv", RETAIL_SCHEMA)

        assert len(batch.rows) == 1

    def test_json_lines_with_malformed_line(self, data_dir):
        lines = [json.dumps({"InvoiceNo": "1", "Quantity": "3"}), "{broken", "", json.dumps({"InvoiceNo": "2"})]
        (data_dir / "events.json").write_text("\n".join(lines) + "\n")

        batch = DirectoryConnector().poll(str(data_dir), "json", "InvoiceNo STRING, Quantity FLOAT")

        assert [dict(r.record) for r in batch.rows] == [
            {"InvoiceNo": "1", "Quantity": 3.0},
            {"InvoiceNo": None, "Quantity": None},
            {"InvoiceNo": "2", "Quantity": None},
        ]

    def test_missing_location(self, tmp_path):
        with pytest.raises(ConnectorError, match="does not exist"):
            DirectoryConnector().poll(str(tmp_path / "missing"), "csv", RETAIL_SCHEMA)

    def test_unsupported_format(self, data_dir):
        with pytest.raises(ConnectorError, match="parquet"):
            DirectoryConnector().poll(str(data_dir), "parquet", RETAIL_SCHEMA)

    def test_invalid_schema(self, data_dir):
        with pytest.raises(SchemaError):
            DirectoryConnector().poll(str(data_dir), "csv", "InvoiceNo")
