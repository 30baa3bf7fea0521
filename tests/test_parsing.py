"""Tests for middleman.utils.parsing module."""

import pytest
from middleman.utils.parsing import (
    collect_object_ids,
    expand_csv_or_range,
    expand_int_range,
    parse_host_port,
    parse_serial_baud,
)


class TestExpandCsvOrRange:
    """Tests for expand_csv_or_range function."""

    def test_empty_input_returns_empty_list(self):
        assert expand_csv_or_range(None) == []
        assert expand_csv_or_range("") == []
        assert expand_csv_or_range("   ") == []

    def test_csv_values(self):
        assert expand_csv_or_range("100,101,102") == ["100", "101", "102"]
        assert expand_csv_or_range("10, 20, 30") == ["10", "20", "30"]

    def test_simple_range(self):
        assert expand_csv_or_range("100-103") == ["100", "101", "102", "103"]

    def test_reverse_range(self):
        assert expand_csv_or_range("5-1") == ["5", "4", "3", "2", "1"]

    def test_combined_csv_and_range(self):
        assert expand_csv_or_range("1,5-8,10") == ["1", "5", "6", "7", "8", "10"]

    def test_comparison_expressions_pass_through(self):
        assert expand_csv_or_range(">=200") == [">=200"]

    def test_leading_dash_not_range(self):
        assert expand_csv_or_range("-5") == ["-5"]

    def test_trailing_dash_not_range(self):
        assert expand_csv_or_range("5-") == ["5-"]


class TestExpandIntRange:
    """Tests for expand_int_range function."""

    def test_empty_input_returns_empty_list(self):
        assert expand_int_range(None) == []
        assert expand_int_range("") == []

    def test_hex_values(self):
        assert expand_int_range("0x10,0x20") == [16, 32]

    def test_non_numeric_skipped(self):
        assert expand_int_range("1,abc,5") == [1, 5]

    def test_combined_csv_and_range(self):
        assert expand_int_range("1,5-8,10") == [1, 5, 6, 7, 8, 10]


class TestCollectObjectIds:
    def test_none(self):
        assert collect_object_ids(None) == []

    def test_single_int(self):
        assert collect_object_ids(1000) == [1000]

    def test_string(self):
        assert collect_object_ids("7,3-5") == [3, 4, 5, 7]

    def test_mixed_list_sorted_and_unique(self):
        assert collect_object_ids([20, "1-3", 2, "20"]) == [1, 2, 3, 20]


class TestParseHostPort:
    """Tests for parse_host_port function."""

    def test_host_with_port(self):
        assert parse_host_port("192.168.1.50:15471") == ("192.168.1.50", 15471)
        assert parse_host_port("localhost:4711") == ("localhost", 4711)

    def test_host_without_port(self):
        assert parse_host_port("192.168.1.50") == ("192.168.1.50", 15471)

    def test_custom_default_port(self):
        assert parse_host_port("ecos", default_port=1234) == ("ecos", 1234)

    def test_whitespace_stripped(self):
        assert parse_host_port("  192.168.1.50:15471  ") == ("192.168.1.50", 15471)

    def test_invalid_port_raises(self):
        with pytest.raises(ValueError, match="Invalid port"):
            parse_host_port("192.168.1.50:abc")


class TestParseSerialBaud:
    """Tests for parse_serial_baud function."""

    def test_port_with_baud(self):
        assert parse_serial_baud("COM5:19200") == ("COM5", 19200)
        assert parse_serial_baud("/dev/ttyUSB0:9600") == ("/dev/ttyUSB0", 9600)

    def test_port_without_baud(self):
        assert parse_serial_baud("/dev/ttyUSB0") == ("/dev/ttyUSB0", 9600)

    def test_custom_default_baud(self):
        assert parse_serial_baud("COM5", default_baud=19200) == ("COM5", 19200)

    def test_invalid_baud_raises(self):
        with pytest.raises(ValueError, match="Invalid baud"):
            parse_serial_baud("COM5:fast")
