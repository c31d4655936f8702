from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from cardlab.core.card_spec import CardSpecification

CARD_LENGTH = 16
BATCH_SIZE = 10
EXPIRY_YEARS_AHEAD = (1, 5)
_FOUR_DIGIT_CVV_PREFIXES = ("34", "37")


@dataclass(frozen=True)
class GeneratedCard:
    number: str
    month: str
    year: str
    cvv: str

    def to_line(self) -> str:
        return f"{self.number}|{self.month}|{self.year}|{self.cvv}"


def luhn_check_digit(body: str) -> str:
    """Digit that makes ``body + digit`` pass the Luhn checksum."""
    total = 0
    # The check digit will sit at position 1 from the right, so the last
    # digit of the body is the first one to double.
    for index, char in enumerate(reversed(body)):
        digit = int(char)
        if index % 2 == 0:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return str((10 - total % 10) % 10)


def is_luhn_valid(number: str) -> bool:
    if not number or not number.isdigit():
        return False
    return luhn_check_digit(number[:-1]) == number[-1]


def _card_length(bin_value: str) -> int:
    return max(CARD_LENGTH, len(bin_value) + 1)


def _random_digits(rng: random.Random, count: int) -> str:
    return "".join(str(rng.randrange(10)) for _ in range(count))


def generate_card(
    bin_value: str,
    *,
    month: str | None = None,
    year: str | None = None,
    cvv: str | None = None,
    rng: random.Random | None = None,
    now_provider: Callable[[], datetime] | None = None,
) -> GeneratedCard:
    rng = rng or random.Random()
    now = (now_provider or (lambda: datetime.now(timezone.utc)))()

    filler = _card_length(bin_value) - len(bin_value) - 1
    body = bin_value + _random_digits(rng, filler)
    number = body + luhn_check_digit(body)

    if month:
        card_month = month
    else:
        card_month = f"{rng.randint(1, 12):02d}"
    if year:
        card_year = year[-2:]
    else:
        card_year = f"{(now.year + rng.randint(*EXPIRY_YEARS_AHEAD)) % 100:02d}"
    if cvv:
        card_cvv = cvv
    else:
        cvv_length = 4 if bin_value.startswith(_FOUR_DIGIT_CVV_PREFIXES) else 3
        card_cvv = _random_digits(rng, cvv_length)

    return GeneratedCard(number=number, month=card_month, year=card_year, cvv=card_cvv)


def generate_batch(
    spec: CardSpecification,
    *,
    rng: random.Random | None = None,
    now_provider: Callable[[], datetime] | None = None,
) -> list[GeneratedCard]:
    rng = rng or random.Random()
    return [
        generate_card(
            spec.bin,
            month=spec.month,
            year=spec.year,
            cvv=spec.cvv,
            rng=rng,
            now_provider=now_provider,
        )
        for _ in range(BATCH_SIZE)
    ]
