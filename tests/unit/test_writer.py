"""Tests for the file output sink."""

import os

import pandas as pd
import pytest
import yaml

from cdacopy.lib.config_loader import FileFormat, OutputSettings
from cdacopy.lib.errors import OutputValidationError
from cdacopy.lib.merge import MergedBatch
from cdacopy.lib.writer import SCHEMA_FILE_NAME, FileOutputWriter


def batch(count: int = 3, timestamp: int = 300) -> MergedBatch:
    data = pd.DataFrame({"id": list(range(count)), "name": [f"n{i}" for i in range(count)]})
    return MergedBatch(table="policy", fingerprint="fp1", manifest_timestamp=timestamp, data=data)


class TestValidate:
    def test_creates_missing_directory(self, output_dir):
        FileOutputWriter(OutputSettings(path=str(output_dir))).validate()
        assert output_dir.is_dir()

    def test_rejects_file(self, tmp_path):
        path = tmp_path / "not_a_dir"
        path.write_text("x", encoding="utf-8")
        with pytest.raises(OutputValidationError):
            FileOutputWriter(OutputSettings(path=str(path))).validate()


class TestWrite:
    def test_csv_layout(self, csv_writer, output_dir):
        result = csv_writer.write(batch())

        target = output_dir / "policy" / "fp1"
        assert result.success
        assert result.rows_written == 3
        assert result.files_written == [str(target / "policy_300.csv")]
        frame = pd.read_csv(target / "policy_300.csv")
        assert frame["id"].tolist() == [0, 1, 2]

    def test_csv_without_header(self, output_dir):
        writer = FileOutputWriter(OutputSettings(path=str(output_dir), include_column_names=False))
        writer.write(batch(2))
        lines = (output_dir / "policy" / "fp1" / "policy_300.csv").read_text(encoding="utf-8").splitlines()
        assert lines == ["0,n0", "1,n1"]

    def test_parquet(self, output_dir):
        writer = FileOutputWriter(OutputSettings(path=str(output_dir), file_format=FileFormat.PARQUET))
        result = writer.write(batch())
        assert result.success
        frame = pd.read_parquet(output_dir / "policy" / "fp1" / "policy_300.parquet")
        assert len(frame) == 3

    def test_timestamp_directory(self, output_dir):
        writer = FileOutputWriter(OutputSettings(path=str(output_dir), save_into_timestamp_directory=True))
        writer.write(batch())
        assert (output_dir / "policy" / "fp1" / "300" / "policy.csv").exists()
        assert (output_dir / "policy" / "fp1" / "300" / SCHEMA_FILE_NAME).exists()

    def test_split_by_max_rows(self, output_dir):
        writer = FileOutputWriter(OutputSettings(path=str(output_dir), max_rows_per_file=2))
        result = writer.write(batch(5))

        names = sorted(os.path.basename(f) for f in result.files_written)
        assert names == ["policy_300_part00000.csv", "policy_300_part00001.csv", "policy_300_part00002.csv"]
        total = sum(len(pd.read_csv(f)) for f in result.files_written)
        assert total == 5

    def test_rewrite_is_idempotent(self, output_dir):
        """Writing the same batch again replaces the earlier output."""
        writer = FileOutputWriter(OutputSettings(path=str(output_dir), max_rows_per_file=2))
        writer.write(batch(5))
        writer.write(batch(3))

        target = output_dir / "policy" / "fp1"
        parts = sorted(p.name for p in target.glob("policy_300*.csv"))
        assert parts == ["policy_300_part00000.csv", "policy_300_part00001.csv"]

    def test_other_timestamps_untouched(self, csv_writer, output_dir):
        csv_writer.write(batch(timestamp=300))
        csv_writer.write(batch(timestamp=3000))
        target = output_dir / "policy" / "fp1"
        assert (target / "policy_300.csv").exists()
        assert (target / "policy_3000.csv").exists()

    def test_schema_file(self, csv_writer, output_dir):
        csv_writer.write(batch())
        schema = yaml.safe_load((output_dir / "policy" / "fp1" / SCHEMA_FILE_NAME).read_text(encoding="utf-8"))
        assert schema["table"] == "policy"
        assert schema["manifest_timestamp"] == 300
        assert [c["name"] for c in schema["columns"]] == ["id", "name"]

    def test_failure_reported_not_raised(self, tmp_path):
        """An unwritable target becomes an unsuccessful WriteResult."""
        blocker = tmp_path / "out"
        blocker.mkdir()
        (blocker / "policy").write_text("a file where a directory should be", encoding="utf-8")

        result = FileOutputWriter(OutputSettings(path=str(blocker))).write(batch())
        assert not result.success
        assert result.error
