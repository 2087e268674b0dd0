"""Domain Value Objects"""
from pydantic import BaseModel, Field, validator
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Union
from uuid import UUID

from domain.enums import PackageCategory
from domain.exceptions import ValidationError


def parse_date(value: Union[date, str, None], field_name: str = "date") -> date:
    """Parse a calendar date from a date, ISO date or ISO datetime string"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        raise ValidationError(f"{field_name} is required")

    raw = value.strip()
    try:
        if "T" in raw or " " in raw:
            # Datetimes from a calendar widget; only the day matters
            return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
        return date.fromisoformat(raw)
    except ValueError:
        raise ValidationError(f"Invalid {field_name}: {value!r}") from None


class DateRange(BaseModel):
    """Value Object for a stay, half-open [from_date, to_date)"""
    from_date: date
    to_date: date

    @validator('to_date')
    def to_date_after_from_date(cls, v, values):
        if 'from_date' in values and v <= values['from_date']:
            raise ValueError('Check-out date must be after check-in date')
        return v

    @staticmethod
    def of(from_date: Union[date, str], to_date: Union[date, str]) -> "DateRange":
        """Build a range from raw input, raising the domain ValidationError"""
        start = parse_date(from_date, "fromDate")
        end = parse_date(to_date, "toDate")
        if end <= start:
            raise ValidationError(
                f"fromDate must be before toDate (got {start.isoformat()} to {end.isoformat()})"
            )
        return DateRange(from_date=start, to_date=end)

    def nights(self) -> int:
        """Calculate number of nights"""
        return (self.to_date - self.from_date).days

    def days(self) -> List[date]:
        """Occupied days; the check-out day is not included"""
        return [self.from_date + timedelta(days=i) for i in range(self.nights())]

    def overlaps(self, other: "DateRange") -> bool:
        return self.from_date < other.to_date and self.to_date > other.from_date

    class Config:
        frozen = True


class PricingTier(BaseModel):
    """Value Object for a stay-length price bracket"""
    tier_id: str
    label: str
    min_nights: int = Field(ge=0)
    max_nights: int = Field(ge=0)
    multiplier: Decimal = Field(ge=0)

    def contains(self, nights: int) -> bool:
        return self.min_nights <= nights <= self.max_nights

    @property
    def discount_percent(self) -> int:
        """Whole-percent discount relative to the nightly rate"""
        return int(round((1 - self.multiplier) * 100))

    class Config:
        frozen = True


class PackageType(BaseModel):
    """Value Object for a catalog package offering"""
    package_id: str
    name: str
    description: str
    multiplier: Decimal = Field(ge=0)
    features: List[str] = []
    billing_product_id: str
    min_nights: Optional[int] = None
    max_nights: Optional[int] = None
    is_hosted: bool = False
    category: PackageCategory = PackageCategory.STANDARD

    @property
    def overrides_tier(self) -> bool:
        """Add-on and hosted packages replace the stay-length multiplier"""
        return self.is_hosted or self.category in (
            PackageCategory.LUXURY,
            PackageCategory.HOSTED,
            PackageCategory.SPECIALTY,
        )

    class Config:
        frozen = True


class PropertyPackage(BaseModel):
    """Host-defined package on a single property"""
    package_id: str
    name: str
    multiplier: Decimal = Field(ge=0)

    class Config:
        frozen = True


class Quote(BaseModel):
    """Priced stay, before it is persisted as an estimate"""
    nights: int
    tier: PricingTier
    package_type: str
    base_rate: Decimal
    multiplier: Decimal
    total: Decimal

    class Config:
        frozen = True


class AvailabilityResult(BaseModel):
    """Outcome of an availability check for one property and range"""
    property_id: UUID
    date_range: DateRange
    is_available: bool
    conflicting_bookings: int = 0

    class Config:
        frozen = True
