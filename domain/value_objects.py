"""Domain Value Objects"""
import random
import re
from datetime import timedelta
from typing import List
from decimal import Decimal, ROUND_HALF_UP

from pydantic import BaseModel, Field, field_validator

ACCESS_CODE_PATTERN = re.compile(r"^(\d)\1(\d)\2$")

MINUTES_PER_QUARTER = Decimal(15)
QUARTER_HOUR = Decimal("0.25")
CENT = Decimal("0.01")


class Money(BaseModel):
    """Value Object for monetary amounts"""
    amount: Decimal = Field(ge=0)
    currency: str = "EGP"

    class Config:
        frozen = True

    def __str__(self) -> str:
        return f"{self.amount:.2f} {self.currency}"


class AccessCode(BaseModel):
    """Four-digit join code made of two repeated digits, e.g. ``1133``.

    Only 100 values exist, so codes are meant to be read out loud to
    friends joining a running session, not to protect anything.
    """
    value: str

    class Config:
        frozen = True

    @field_validator("value")
    @classmethod
    def must_be_paired_digits(cls, v: str) -> str:
        if not ACCESS_CODE_PATTERN.match(v):
            raise ValueError("Access code must look like AABB, e.g. 7711")
        return v

    @classmethod
    def generate(cls, rng: random.Random) -> "AccessCode":
        """Draw two digits and repeat each one"""
        first = rng.randint(0, 9)
        second = rng.randint(0, 9)
        return cls(value=f"{first}{first}{second}{second}")

    def __str__(self) -> str:
        return self.value


class BillableTime(BaseModel):
    """Elapsed session time rounded to the nearest quarter hour"""
    minutes: Decimal = Field(ge=0)
    quarter_units: int = Field(ge=0)

    class Config:
        frozen = True

    @classmethod
    def from_duration(cls, duration: timedelta) -> "BillableTime":
        """Round a duration to quarter hours, ties away from zero.

        Minutes are divided by 15 before rounding: 37 minutes is 2.47
        quarters, which rounds to 2 and bills 0.50 h. 37.5 minutes is
        exactly 2.5 quarters and bills 0.75 h.
        """
        if duration < timedelta(0):
            raise ValueError("Session duration cannot be negative")

        microseconds = duration // timedelta(microseconds=1)
        minutes = Decimal(microseconds) / Decimal(60_000_000)
        quarters = (minutes / MINUTES_PER_QUARTER).to_integral_value(rounding=ROUND_HALF_UP)
        return cls(minutes=minutes, quarter_units=int(quarters))

    @property
    def hours(self) -> Decimal:
        return self.quarter_units * QUARTER_HOUR

    def cost(self, hourly_rate: Decimal) -> Decimal:
        return (self.hours * hourly_rate).quantize(CENT, rounding=ROUND_HALF_UP)

    def allocate(self, durations: List[timedelta]) -> List[int]:
        """Split the rounded quarters across parts in proportion to their durations.

        Each part gets the floor of its share; leftover quarters go to the
        largest remainders, earlier parts first on ties. The result always
        sums to ``quarter_units``.
        """
        if any(d < timedelta(0) for d in durations):
            raise ValueError("Duration cannot be negative")
        weights = [d // timedelta(microseconds=1) for d in durations]
        total = sum(weights)
        if total == 0:
            return [0] * len(durations)

        splits = [divmod(self.quarter_units * w, total) for w in weights]
        units = [whole for whole, _ in splits]
        leftover = self.quarter_units - sum(units)
        by_remainder = sorted(range(len(splits)), key=lambda i: (-splits[i][1], i))
        for i in by_remainder[:leftover]:
            units[i] += 1
        return units
