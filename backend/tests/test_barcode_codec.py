# Overview: Pytest coverage for barcode formatting, validation and parsing.

from datetime import datetime

import pytest

from warranty.errors import BarcodeFormatError
from warranty.services import barcode_codec


class TestFormat:

    def test_format_uses_two_digit_year(self):
        number = barcode_codec.format_barcode(datetime(2025, 6, 1), "ABCDEFGHJKLM")
        assert number == "REX25ABCDEFGHJKLM"
        assert len(number) == barcode_codec.BARCODE_LENGTH == 17

    def test_year_wraps_at_century(self):
        assert barcode_codec.format_barcode(datetime(2100, 1, 1), "A" * 12) == "REX00" + "A" * 12
        assert barcode_codec.format_barcode(datetime(2009, 1, 1), "A" * 12).startswith("REX09")

    def test_alphabet_has_no_confusables(self):
        assert len(set(barcode_codec.ALPHABET)) == 32
        assert not barcode_codec.CONFUSABLES & set(barcode_codec.ALPHABET)

    def test_entropy_is_sixty_bits(self):
        assert barcode_codec.entropy_bits() == 60

    def test_qr_payload(self):
        assert (
            barcode_codec.qr_payload("REX25ABCDEFGHJKLM", "shop.test")
            == "https://warranty.shop.test/claim/REX25ABCDEFGHJKLM"
        )

    def test_qr_payload_requires_host(self):
        with pytest.raises(ValueError):
            barcode_codec.qr_payload("REX25ABCDEFGHJKLM", "")


class TestValidate:

    @pytest.mark.parametrize("value, kind", [
        ("REX25ABC", "length"),
        ("REX25ABCDEFGHJKLMN", "length"),
        ("ABC25ABCDEFGHJKLM", "prefix"),
        ("REXA5ABCDEFGHJKLM", "year"),
        ("REX25ABCDEFGHJKL0", "character"),
        ("REX25ABCDEFGHJKLI", "character"),
        ("REX25abcdefghjklm", "character"),
    ])
    def test_failure_kinds(self, value, kind):
        with pytest.raises(BarcodeFormatError) as exc:
            barcode_codec.validate_barcode(value)
        assert exc.value.kind == kind
        assert exc.value.http_status == 400

    def test_character_error_reports_position(self):
        with pytest.raises(BarcodeFormatError) as exc:
            barcode_codec.validate_barcode("REX25ABCDE1GHJKLM")
        assert exc.value.details["position"] == 10
        assert exc.value.details["character"] == "1"

    def test_valid_barcode(self):
        assert barcode_codec.is_valid_barcode("REX25ABCDEFGHJKLM")
        assert not barcode_codec.is_valid_barcode("REX25")
        assert barcode_codec.BARCODE_PATTERN.match("REX25ABCDEFGHJKLM")

    def test_parse(self):
        parsed = barcode_codec.parse_barcode("REX2523456789ABCD")
        assert parsed.year_digits == "25"
        assert parsed.random_part == "23456789ABCD"

    @pytest.mark.parametrize("value", ["REX2523456789ABCD", "REX25ZZZZZZZZZZZZ", "REX25ABCDEFGHJKLM"])
    def test_format_of_parsed_random_part_is_identity(self, value):
        random_part = barcode_codec.parse_barcode(value).random_part
        assert barcode_codec.format_barcode(datetime(2025, 6, 30), random_part) == value

    def test_normalize_scanner_input(self):
        assert barcode_codec.normalize_barcode(" rex25-abcd efgh-jklm ") == "REX25ABCDEFGHJKLM"
