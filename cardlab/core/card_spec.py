"""Tolerant parser for card-specification arguments.

Accepts ``BIN|MM|YYYY|CVV`` with pipes or spaces as separators, placeholder
``x`` characters on the bin, combined ``MM/YY`` in the month slot and a
reversed ``YYYY MM`` ordering. Validation is a separate step.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from cardlab.core.errors import ValidationError

_TRAILING_PLACEHOLDER_RE = re.compile(r"x+$", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")
_YEAR_IN_MONTH_SLOT_RE = re.compile(r"^20[2-3][0-9]$")
# Unanchored alternation kept as-is: "1[0-2]" may match anywhere in the field.
_MONTH_IN_YEAR_SLOT_RE = re.compile(r"^0[1-9]|1[0-2]$")
_LETTER_RE = re.compile(r"[A-Za-z]")

_MONTH_RE = re.compile(r"^(0[1-9]|1[0-2])$")
_YEAR_RE = re.compile(r"^([0-9]{2}|20[2-3][0-9])$")
_CVV_RE = re.compile(r"^[0-9]{3,4}$")

MIN_BIN_LENGTH = 6
MAX_BIN_LENGTH = 16


@dataclass(frozen=True)
class CardSpecification:
    bin: str
    month: str | None = None
    year: str | None = None
    cvv: str | None = None


def _expand_year(value: str) -> str:
    return f"20{value}" if len(value) == 2 else value


def parse_card_spec(raw: str) -> CardSpecification:
    text = (raw or "").strip()
    text = _WHITESPACE_RE.sub(" ", text.replace("|", " "))
    fields = text.split(" ") if text else []
    fields += [""] * (4 - len(fields))
    bin_value, month, year, cvv = fields[:4]

    bin_value = _TRAILING_PLACEHOLDER_RE.sub("", bin_value)

    if month and "/" in month:
        # MM/YY fills both date slots; an explicit fourth field still wins as cvv.
        month, _, combined_year = month.partition("/")
        combined_year = combined_year.split("/", 1)[0]
        cvv = cvv or year
        year = _expand_year(combined_year) if combined_year else combined_year

    # The swap test looks at the year as typed, before "06" became "2006".
    year_as_typed = year
    if year and len(year) == 2:
        year = _expand_year(year)

    if (
        year
        and month
        and len(month) == 4
        and _YEAR_IN_MONTH_SLOT_RE.match(month)
        and _MONTH_IN_YEAR_SLOT_RE.search(year_as_typed)
    ):
        month, year = year_as_typed, month

    if cvv and _LETTER_RE.search(cvv):
        cvv = ""

    return CardSpecification(
        bin=bin_value,
        month=month or None,
        year=year or None,
        cvv=cvv or None,
    )


def is_valid_bin(value: str | None) -> bool:
    if not value or not value.isascii() or not value.isdigit():
        return False
    return MIN_BIN_LENGTH <= len(value) <= MAX_BIN_LENGTH


def validate_card_spec(spec: CardSpecification) -> CardSpecification:
    if not is_valid_bin(spec.bin):
        raise ValidationError("bin")
    if spec.month and not _MONTH_RE.match(spec.month):
        raise ValidationError("month")
    if spec.year and not _YEAR_RE.match(spec.year):
        raise ValidationError("year")
    if spec.cvv and not _CVV_RE.match(spec.cvv):
        raise ValidationError("cvv")
    return spec
