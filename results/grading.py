"""
Grade lookup against a validated percentage scale.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from .exceptions import ConfigurationError
from .types import ZERO, HUNDRED

# Bands are stored with two decimals, so 39.99 -> 40.00 is a contiguous boundary
BAND_STEP = Decimal('0.01')


@dataclass(frozen=True)
class Band:
    label: str
    min_percent: Decimal
    max_percent: Decimal
    remark: str = ''

    def contains(self, percentage):
        return self.min_percent <= percentage <= self.max_percent


class GradingScale:
    """
    An ordered set of grade bands covering 0-100 without gaps or overlaps.

    The scale is checked when it is built, so a lookup can only fail on a
    percentage outside 0-100.
    """

    def __init__(self, bands, name=''):
        self.name = name
        self.bands = sorted(
            (Band(b.label, Decimal(b.min_percent), Decimal(b.max_percent), b.remark) for b in bands),
            key=lambda b: b.min_percent
        )
        self._validate()

    def _validate(self):
        if not self.bands:
            raise ConfigurationError(f"Grading scale '{self.name}' has no grade bands.", grading_system=self.name)

        for band in self.bands:
            if band.min_percent > band.max_percent:
                raise ConfigurationError(
                    f"Grade band {band.label} has a minimum above its maximum.",
                    grading_system=self.name, grade=band.label
                )

        if self.bands[0].min_percent != ZERO:
            raise ConfigurationError(
                f"Grading scale '{self.name}' does not start at 0%.",
                grading_system=self.name
            )
        if self.bands[-1].max_percent != HUNDRED:
            raise ConfigurationError(
                f"Grading scale '{self.name}' does not reach 100%.",
                grading_system=self.name
            )

        for lower, upper in zip(self.bands, self.bands[1:]):
            if upper.min_percent <= lower.max_percent:
                raise ConfigurationError(
                    f"Grade bands {lower.label} and {upper.label} overlap.",
                    grading_system=self.name, grade=upper.label
                )
            if upper.min_percent - lower.max_percent > BAND_STEP:
                raise ConfigurationError(
                    f"Gap between grade bands {lower.label} and {upper.label} "
                    f"({lower.max_percent}-{upper.min_percent}).",
                    grading_system=self.name, grade=upper.label
                )

    def grade_for(self, percentage):
        """Grade label for a percentage, or None when there is no percentage."""
        band = self.band_for(percentage)
        return band.label if band else None

    def band_for(self, percentage):
        if percentage is None:
            return None
        # Match on two decimals so a value like 39.995 cannot fall between 39.99 and 40.00
        value = Decimal(percentage).quantize(BAND_STEP, rounding=ROUND_HALF_UP)
        for band in self.bands:
            if band.contains(value):
                return band
        raise ConfigurationError(
            f"No grade band covers {value}%.",
            grading_system=self.name, percentage=str(value)
        )

    @classmethod
    def from_grading_system(cls, grading_system):
        """Build a scale from an exams.GradingSystem and its bands."""
        return cls(
            [
                Band(b.grade_label, b.min_percent, b.max_percent, b.remark)
                for b in grading_system.bands.all()
            ],
            name=grading_system.name,
        )
