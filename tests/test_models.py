"""Tests for timestamps and catalog models."""

import json
from datetime import UTC, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from catalog_replay.core.errors import MalformedDocument
from catalog_replay.core.models import CatalogItem, CatalogItemBatch, CursorEnvelope, read_items
from catalog_replay.core.timestamps import EPOCH, format_timestamp, parse_timestamp


class TestParseTimestamp:
    """Tests for parse_timestamp."""

    def test_zulu_suffix(self) -> None:
        """Test a Z suffix is read as UTC."""
        assert parse_timestamp("2024-03-01T12:30:45Z") == datetime(2024, 3, 1, 12, 30, 45, tzinfo=UTC)

    def test_seven_fraction_digits_kept(self) -> None:
        """Test catalog timestamps keep their 100 ns tick digit."""
        parsed = parse_timestamp("2024-03-01T12:30:45.1234567Z")
        assert parsed.microsecond == 123456
        assert parsed.sub_microsecond == Decimal("0.7")

    def test_sub_microsecond_ordering(self) -> None:
        """Test timestamps inside one microsecond stay distinct and ordered."""
        first = parse_timestamp("2024-01-01T00:00:01.0000001Z")
        second = parse_timestamp("2024-01-01T00:00:01.0000002Z")
        whole = datetime(2024, 1, 1, 0, 0, 1, tzinfo=UTC)

        assert first != second
        assert whole < first < second
        assert second > whole
        assert len({first, second, parse_timestamp("2024-01-01T00:00:01.00000010Z")}) == 2

    def test_equal_to_plain_datetime(self) -> None:
        """Test a value without sub-microsecond digits equals and hashes like a datetime."""
        parsed = parse_timestamp("2024-01-01T00:00:01.0000000Z")
        whole = datetime(2024, 1, 1, 0, 0, 1, tzinfo=UTC)

        assert parsed == whole
        assert whole == parsed
        assert hash(parsed) == hash(whole)

    def test_offset_converted_to_utc(self) -> None:
        """Test an explicit offset is normalized to UTC."""
        parsed = parse_timestamp("2024-03-01T14:30:45+02:00")
        assert parsed == datetime(2024, 3, 1, 12, 30, 45, tzinfo=UTC)
        assert parsed.tzinfo == UTC

    def test_naive_string_is_utc(self) -> None:
        """Test a string without offset is taken as UTC."""
        assert parse_timestamp("2024-03-01T12:30:45").tzinfo == UTC

    def test_datetime_passthrough(self) -> None:
        """Test datetimes are normalized rather than parsed."""
        value = datetime(2024, 3, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assert parse_timestamp(value) == datetime(2024, 3, 1, 12, 0, tzinfo=UTC)

    @pytest.mark.parametrize("value", ["", "yesterday", "2024-13-01T00:00:00Z", None])
    def test_invalid(self, value) -> None:
        """Test unrecognizable values raise ValueError."""
        with pytest.raises(ValueError):
            parse_timestamp(value)


class TestFormatTimestamp:
    """Tests for format_timestamp."""

    def test_format(self) -> None:
        """Test the output carries seven fractional digits and a Z suffix."""
        value = datetime(2024, 3, 1, 12, 30, 45, 120000, tzinfo=UTC)
        assert format_timestamp(value) == "2024-03-01T12:30:45.1200000Z"

    def test_epoch(self) -> None:
        """Test the lowest cursor value formats with a four digit year."""
        assert format_timestamp(EPOCH) == "0001-01-01T00:00:00.0000000Z"

    def test_parse_of_formatted_value(self) -> None:
        """Test formatted timestamps parse back to the same instant."""
        value = parse_timestamp("2024-03-01T12:30:45.1234567Z")
        assert parse_timestamp(format_timestamp(value)) == value

    def test_tick_digits_written_back(self) -> None:
        """Test formatting reproduces the catalog's seven digit value."""
        assert format_timestamp(parse_timestamp("2024-03-01T12:30:45.1234567Z")) == "2024-03-01T12:30:45.1234567Z"

    def test_longer_fraction_written_back(self) -> None:
        """Test digits past the tick are not dropped."""
        value = parse_timestamp("2024-03-01T12:30:45.123456789Z")
        assert format_timestamp(value) == "2024-03-01T12:30:45.123456789Z"


class TestCursorEnvelope:
    """Tests for CursorEnvelope."""

    def test_to_json(self) -> None:
        """Test the persisted document shape."""
        envelope = CursorEnvelope(value=datetime(2024, 1, 2, tzinfo=UTC))
        assert json.loads(envelope.to_json()) == {"value": "2024-01-02T00:00:00.0000000Z"}

    def test_validate_json(self) -> None:
        """Test reading a stored document."""
        envelope = CursorEnvelope.model_validate_json('{"value": "2024-01-02T00:00:00.0000000Z"}')
        assert envelope.value == datetime(2024, 1, 2, tzinfo=UTC)


class TestCatalogItem:
    """Tests for CatalogItem."""

    def test_from_dict(self) -> None:
        """Test building an item keeps the raw payload."""
        data = {
            "@id": "https://catalog.test/data/a.json",
            "@type": "nuget:PackageDetails",
            "commitTimeStamp": "2024-01-01T00:00:01Z",
            "nuget:id": "A",
        }
        item = CatalogItem.from_dict(data)

        assert item.uri == data["@id"]
        assert item.commit_timestamp == datetime(2024, 1, 1, 0, 0, 1, tzinfo=UTC)
        assert item.value["nuget:id"] == "A"

    @pytest.mark.parametrize(
        "data",
        [
            {"commitTimeStamp": "2024-01-01T00:00:01Z"},
            {"@id": "", "commitTimeStamp": "2024-01-01T00:00:01Z"},
            {"@id": "https://catalog.test/a.json"},
            {"@id": "https://catalog.test/a.json", "commitTimeStamp": "not a time"},
            ["not", "an", "object"],
        ],
    )
    def test_invalid_items(self, data) -> None:
        """Test invalid items raise MalformedDocument with the document URI."""
        with pytest.raises(MalformedDocument) as exc_info:
            CatalogItem.from_dict(data, "https://catalog.test/page0.json")
        assert exc_info.value.uri == "https://catalog.test/page0.json"

    def test_read_items_requires_items_array(self) -> None:
        """Test documents without an items list are rejected."""
        with pytest.raises(MalformedDocument):
            read_items({"@id": "x"}, "x")
        with pytest.raises(MalformedDocument):
            read_items([], "x")


class TestCatalogItemBatch:
    """Tests for CatalogItemBatch."""

    def test_items_sorted_by_uri(self) -> None:
        """Test items within a batch are in deterministic order."""
        stamp = "2024-01-01T00:00:01Z"
        b = CatalogItem.from_dict({"@id": "https://catalog.test/b.json", "commitTimeStamp": stamp})
        a = CatalogItem.from_dict({"@id": "https://catalog.test/a.json", "commitTimeStamp": stamp})

        batch = CatalogItemBatch(commit_timestamp=a.commit_timestamp, items=(b, a))

        assert len(batch) == 2
        assert [value["@id"] for value in batch.values] == [
            "https://catalog.test/a.json",
            "https://catalog.test/b.json",
        ]
