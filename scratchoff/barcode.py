"""Barcode decoding for the supported lottery jurisdictions.

Each jurisdiction prints a different barcode layout on its scratch-off
tickets. A :class:`Jurisdiction` member carries its :class:`BarcodeFormat`,
so supporting a new state means adding a member and a format.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

_FORMAT_A = re.compile(r"[0-9]{20}")
_DIGITS = re.compile(r"[0-9]+")
_LONG_NUMERIC_MIN_DIGITS = 12


@dataclass(frozen=True)
class DecodedBarcode:
    game_number: str
    book_number: str
    ticket_number: int


def normalize_book_number(book_number: str) -> str:
    """Strip leading zeros, keeping at least one digit ("00" -> "0")."""
    return book_number.lstrip("0") or "0"


def parse_fixed_numeric(raw: str) -> Optional[DecodedBarcode]:
    """Format A: exactly 20 digits, 3-digit game, 6-digit book, 3-digit ticket."""
    if not _FORMAT_A.fullmatch(raw):
        return None
    return DecodedBarcode(
        game_number=raw[0:3],
        book_number=raw[3:9],
        ticket_number=int(raw[9:12]),
    )


def parse_dashed_or_long(raw: str) -> Optional[DecodedBarcode]:
    """Format B: ``GGGG-BBBBB-...-TTT`` or a run of at least 12 digits."""
    if "-" in raw:
        segments = raw.split("-")
        if len(segments) < 3:
            return None
        if not all(_DIGITS.fullmatch(segment) for segment in segments):
            return None
        return DecodedBarcode(
            game_number=segments[0],
            book_number=normalize_book_number(segments[1]),
            ticket_number=int(segments[-1]),
        )
    if len(raw) < _LONG_NUMERIC_MIN_DIGITS or not _DIGITS.fullmatch(raw):
        return None
    return DecodedBarcode(
        game_number=raw[0:4],
        book_number=normalize_book_number(raw[4:9]),
        ticket_number=int(raw[9:12]),
    )


def _keep_book_number(book_number: str) -> str:
    return book_number


@dataclass(frozen=True)
class BarcodeFormat:
    name: str
    parse: Callable[[str], Optional[DecodedBarcode]]
    normalize_book: Callable[[str], str]
    invalid_hint: str


FIXED_NUMERIC = BarcodeFormat(
    name="fixed-20-digit",
    parse=parse_fixed_numeric,
    normalize_book=_keep_book_number,
    invalid_hint="Invalid barcode format. Expected 20 digits.",
)

DASHED_OR_LONG = BarcodeFormat(
    name="dashed-or-long-numeric",
    parse=parse_dashed_or_long,
    normalize_book=normalize_book_number,
    invalid_hint=(
        "Invalid barcode format. Expected dashed format (e.g., 1619-04147-7-017) "
        "or at least 12 digits."
    ),
)


class Jurisdiction(str, Enum):
    MD = "MD"
    DC = "DC"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def barcode_format(self) -> BarcodeFormat:
        return _FORMATS[self]


_LABELS = {
    Jurisdiction.MD: "Maryland",
    Jurisdiction.DC: "Washington DC",
}

_FORMATS = {
    Jurisdiction.MD: FIXED_NUMERIC,
    Jurisdiction.DC: DASHED_OR_LONG,
}


def parse_barcode(raw: str, jurisdiction: Jurisdiction) -> Optional[DecodedBarcode]:
    """Decode ``raw`` with the jurisdiction's format, or return None."""
    if not isinstance(raw, str):
        return None
    return jurisdiction.barcode_format.parse(raw.strip())
