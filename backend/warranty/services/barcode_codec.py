# Overview: Format, validate and parse the 17-character warranty barcode string.

"""
Barcode codec.

FORMAT: REX[YY][RANDOM_12]
- "REX" fixed prefix
- YY: last two digits of the year the barcode was generated
- RANDOM_12: 12 symbols from a 32-symbol alphabet with the confusable
  characters I, O, 1 and 0 removed (12 * log2(32) = 60 bits of entropy)

The string is a persisted format and must stay stable across versions.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime

from warranty.errors import BarcodeFormatError


PREFIX = "REX"
ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
RANDOM_LENGTH = 12
BARCODE_LENGTH = len(PREFIX) + 2 + RANDOM_LENGTH
CONFUSABLES = frozenset("IO10")

BARCODE_PATTERN = re.compile(r"^REX\d{2}[ABCDEFGHJKLMNPQRSTUVWXYZ23456789]{12}$")


@dataclass(frozen=True)
class ParsedBarcode:
    year_digits: str
    random_part: str


def entropy_bits(alphabet: str = ALPHABET, random_length: int = RANDOM_LENGTH) -> int:
    return int(random_length * math.log2(len(alphabet)))


def format_barcode(now: datetime, random_part: str) -> str:
    """Compose REX + two-digit year of `now` + the random part."""
    return f"{PREFIX}{now.year % 100:02d}{random_part}"


def validate_barcode(value: str, alphabet: str = ALPHABET) -> None:
    """
    Raise BarcodeFormatError with a distinct kind per failure:
    length, prefix, year, character.
    """
    if not isinstance(value, str) or len(value) != BARCODE_LENGTH:
        length = len(value) if isinstance(value, str) else None
        raise BarcodeFormatError(
            "length",
            f"Invalid barcode length: expected {BARCODE_LENGTH}, got {length}",
            expected=BARCODE_LENGTH,
            actual=length,
        )

    if not value.startswith(PREFIX):
        raise BarcodeFormatError(
            "prefix",
            f"Invalid barcode prefix: expected {PREFIX}, got {value[:3]}",
            actual=value[:3],
        )

    year_part = value[3:5]
    if not (year_part.isascii() and year_part.isdigit()):
        raise BarcodeFormatError(
            "year",
            f"Invalid year part: must be numeric, got {year_part}",
            actual=year_part,
        )

    for position, char in enumerate(value[5:], start=5):
        if char not in alphabet:
            raise BarcodeFormatError(
                "character",
                f"Invalid character in random part: {char!r}",
                character=char,
                position=position,
            )


def is_valid_barcode(value: str) -> bool:
    try:
        validate_barcode(value)
    except BarcodeFormatError:
        return False
    return True


def parse_barcode(value: str) -> ParsedBarcode:
    validate_barcode(value)
    return ParsedBarcode(year_digits=value[3:5], random_part=value[5:])


def normalize_barcode(value: str) -> str:
    """Uppercase, no spaces (scanner and hand-typed input)."""
    return value.upper().strip().replace(" ", "").replace("-", "")


def qr_payload(barcode_number: str, host: str) -> str:
    """Canonical deep link encoded into the printed QR code."""
    if not host:
        raise ValueError("QR host is not configured")
    return f"https://warranty.{host}/claim/{barcode_number}"
