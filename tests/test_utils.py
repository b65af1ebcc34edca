"""Tests for utility functions."""

import hashlib
from datetime import datetime, timezone

import pytest

from pycsync.utils import (
    format_duration,
    format_size,
    join_remote_path,
    md5_file,
    parse_duration,
    parse_http_date,
    parse_iso_timestamp,
)


class TestParseDuration:
    """Test parse_duration."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("5m", 300.0),
            ("1h30m", 5400.0),
            ("250ms", 0.25),
            ("1.5s", 1.5),
            ("90", 90.0),
            (10, 10.0),
            (0.5, 0.5),
            ("0s", 0.0),
        ],
    )
    def test_valid(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["", "soon", "5x", "m5", "-1", -3, True, "5m junk"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)


class TestFormatting:
    """Test human readable formatting helpers."""

    def test_format_size(self):
        assert format_size(0) == "0 B"
        assert format_size(1023) == "1023 B"
        assert format_size(1536) == "1.5 KB"
        assert format_size(5 * 1024 * 1024) == "5.0 MB"
        assert format_size(3 * 1024**3) == "3.0 GB"

    def test_format_duration(self):
        assert format_duration(0.5) == "0.50s"
        assert format_duration(90) == "1m30s"
        assert format_duration(3600) == "1h0m0s"


class TestJoinRemotePath:
    """Test join_remote_path."""

    def test_join(self):
        assert join_remote_path("", "a/b.txt") == "a/b.txt"
        assert join_remote_path("/backup/", "a/b.txt") == "backup/a/b.txt"
        assert join_remote_path("backup", "") == "backup"
        assert join_remote_path("", "") == ""


class TestTimestamps:
    """Test timestamp parsing."""

    def test_iso_timestamp(self):
        expected = datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc).timestamp()
        assert parse_iso_timestamp("2025-01-15T10:30:00.000Z") == expected
        assert parse_iso_timestamp("2025-01-15T10:30:00+00:00") == expected

    def test_invalid_iso_timestamp(self):
        assert parse_iso_timestamp(None) is None
        assert parse_iso_timestamp("yesterday") is None

    def test_http_date(self):
        expected = datetime(2024, 3, 21, 10, 2, 33, tzinfo=timezone.utc).timestamp()
        assert parse_http_date("Thu, 21 Mar 2024 10:02:33 +0000") == expected
        assert parse_http_date("garbage") is None
        assert parse_http_date(None) is None


class TestMd5File:
    """Test md5_file."""

    def test_streams_in_chunks(self, temp_dir):
        data = b"x" * 10_000
        path = temp_dir / "data.bin"
        path.write_bytes(data)
        assert md5_file(path, chunk_size=333) == hashlib.md5(data).hexdigest()

    def test_missing_file(self, temp_dir):
        with pytest.raises(OSError):
            md5_file(temp_dir / "missing")
