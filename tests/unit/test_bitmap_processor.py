"""Unit tests for Change Data Capture field bitmaps."""

from __future__ import annotations

import pytest

from salesforce_pubsub_cdc.utils import process_bitmap
from salesforce_pubsub_cdc.utils.bitmap_processor import convert_hexbinary_to_bitset

from .helpers import CDC_SCHEMA


class TestProcessBitmap:
    def test_top_level_bitmap(self):
        # bits 1 and 2: Name, Amount
        assert process_bitmap(CDC_SCHEMA, ["0x06"]) == ["Name", "Amount"]

    def test_nested_bitmap(self):
        # field 4 is BillingAddress, bit 1 of its record is City
        assert process_bitmap(CDC_SCHEMA, ["4-0x02"]) == ["BillingAddress.City"]

    def test_mixed_entries(self):
        fields = process_bitmap(CDC_SCHEMA, ["0x08", "4-0x03", "LastModifiedDate"])
        assert fields == [
            "StageName",
            "BillingAddress.Street",
            "BillingAddress.City",
            "LastModifiedDate",
        ]

    def test_empty(self):
        assert process_bitmap(CDC_SCHEMA, []) == []

    def test_input_not_mutated(self):
        bitmaps = ["0x06"]
        process_bitmap(CDC_SCHEMA, bitmaps)
        assert bitmaps == ["0x06"]

    def test_bit_beyond_schema(self):
        with pytest.raises(ValueError):
            process_bitmap(CDC_SCHEMA, ["0x0100"])

    def test_bitset_is_least_significant_first(self):
        assert convert_hexbinary_to_bitset("0x01") == "10000000"
