"""Domain Entities - Aggregates"""
from pydantic import BaseModel, Field
from uuid import UUID, uuid4
from datetime import datetime, timezone
from typing import Optional, List
from decimal import Decimal

from domain.enums import PaymentStatus
from domain.exceptions import ConflictError
from domain.value_objects import DateRange, PropertyPackage, Quote


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Property(BaseModel):
    """Property listing ("plek") as seen by the booking core"""

    property_id: UUID = Field(default_factory=uuid4)
    slug: str
    title: str
    # Missing or invalid rates fall back to the configured default when priced
    base_rate: Optional[float] = None
    host_id: Optional[UUID] = None
    package_types: List[PropertyPackage] = []

    class Config:
        from_attributes = True

    def find_package(self, package_id: Optional[str]) -> Optional[PropertyPackage]:
        if not package_id:
            return None
        for package in self.package_types:
            if package.package_id == package_id:
                return package
        return None


class Estimate(BaseModel):
    """Estimate Aggregate Root Entity - a quote awaiting payment"""

    # Identity
    estimate_id: UUID = Field(default_factory=uuid4)
    title: str

    # References to other contexts
    property_id: UUID
    customer_id: UUID
    guests: List[UUID] = []

    # Value Objects
    date_range: DateRange

    # Pricing snapshot
    package_type: str
    tier_id: str
    nights: int
    base_rate: Decimal
    multiplier: Decimal
    total: Decimal

    # Status
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    token: Optional[str] = None

    # Set once the paid estimate has been promoted
    booking_id: Optional[UUID] = None
    converted_at: Optional[datetime] = None

    # Metadata
    created_at: datetime = Field(default_factory=_now)
    modified_at: datetime = Field(default_factory=_now)
    version: int = 1

    class Config:
        from_attributes = True

    # ==================== FACTORY METHOD ====================
    @staticmethod
    def create(
        property: Property,
        customer_id: UUID,
        date_range: DateRange,
        quote: Quote,
        guests: Optional[List[UUID]] = None,
        title: Optional[str] = None
    ) -> "Estimate":
        """Create new estimate from a priced quote"""
        return Estimate(
            title=title or f"Estimate for {property.title}",
            property_id=property.property_id,
            customer_id=customer_id,
            guests=list(guests or []),
            date_range=date_range,
            package_type=quote.package_type,
            tier_id=quote.tier.tier_id,
            nights=quote.nights,
            base_rate=quote.base_rate,
            multiplier=quote.multiplier,
            total=quote.total
        )

    # ==================== MODIFICATION METHODS ====================
    def reprice(self, quote: Quote, guests: Optional[List[UUID]] = None) -> None:
        """Apply a fresh quote to an unpaid estimate"""
        self._ensure_unpaid()

        self.package_type = quote.package_type
        self.tier_id = quote.tier.tier_id
        self.nights = quote.nights
        self.base_rate = quote.base_rate
        self.multiplier = quote.multiplier
        self.total = quote.total
        if guests is not None:
            self.guests = list(guests)

        self._touch()

    def add_guest(self, user_id: UUID) -> bool:
        """Add invited guest; False when the user is already on the estimate"""
        self._ensure_unpaid()
        if self.involves(user_id):
            return False
        self.guests.append(user_id)
        self._touch()
        return True

    def set_token(self, token: str) -> None:
        self._ensure_unpaid()
        self.token = token
        self._touch()

    # ==================== STATE TRANSITION METHODS ====================
    def mark_paid(self) -> None:
        """Record verified payment; the estimate is frozen afterwards"""
        self._ensure_unpaid()
        self.payment_status = PaymentStatus.PAID
        self._touch()

    def record_booking(self, booking_id: UUID) -> None:
        """Remember which booking the paid estimate became; the only change allowed after payment"""
        if not self.is_paid:
            raise ConflictError(f"Estimate {self.estimate_id} must be paid before booking")
        if self.booking_id is not None and self.booking_id != booking_id:
            raise ConflictError(f"Estimate {self.estimate_id} was already booked as {self.booking_id}")
        self.booking_id = booking_id
        self.converted_at = _now()
        self._touch()

    # ==================== QUERY METHODS ====================
    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    @property
    def is_converted(self) -> bool:
        return self.booking_id is not None

    def involves(self, user_id: UUID) -> bool:
        return self.customer_id == user_id or user_id in self.guests

    def _ensure_unpaid(self) -> None:
        if self.is_paid:
            raise ConflictError(f"Estimate {self.estimate_id} is already paid and cannot change")

    def _touch(self) -> None:
        self.modified_at = _now()
        self.version += 1


class Booking(BaseModel):
    """Booking Aggregate Root Entity - the authoritative reservation"""

    # Identity
    booking_id: UUID = Field(default_factory=uuid4)
    title: str

    # References to other contexts
    property_id: UUID
    customer_id: UUID
    guests: List[UUID] = []
    estimate_id: Optional[UUID] = None

    # Value Objects
    date_range: DateRange

    package_type: Optional[str] = None
    total: Optional[Decimal] = None
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    token: Optional[str] = None

    # Metadata
    created_at: datetime = Field(default_factory=_now)
    modified_at: datetime = Field(default_factory=_now)
    created_by: str = "SYSTEM"

    class Config:
        from_attributes = True

    # ==================== FACTORY METHODS ====================
    @staticmethod
    def from_estimate(estimate: Estimate, token: Optional[str] = None) -> "Booking":
        """Promote a paid estimate into a booking"""
        if not estimate.is_paid:
            raise ConflictError(f"Estimate {estimate.estimate_id} must be paid before booking")

        return Booking(
            title=estimate.title,
            property_id=estimate.property_id,
            customer_id=estimate.customer_id,
            guests=list(estimate.guests),
            estimate_id=estimate.estimate_id,
            date_range=estimate.date_range,
            package_type=estimate.package_type,
            total=estimate.total,
            payment_status=PaymentStatus.PAID,
            token=token,
            created_by="ESTIMATE"
        )

    @staticmethod
    def create_direct(
        property: Property,
        customer_id: UUID,
        date_range: DateRange,
        guests: Optional[List[UUID]] = None,
        package_type: Optional[str] = None,
        token: Optional[str] = None,
        created_by: str = "SYSTEM"
    ) -> "Booking":
        """Booking entered by a host or admin, without an estimate"""
        return Booking(
            title=property.title,
            property_id=property.property_id,
            customer_id=customer_id,
            guests=list(guests or []),
            date_range=date_range,
            package_type=package_type,
            payment_status=PaymentStatus.UNPAID,
            token=token,
            created_by=created_by
        )

    # ==================== MODIFICATION METHODS ====================
    def add_guest(self, user_id: UUID) -> bool:
        """Add invited guest; False when the user is already on the booking"""
        if self.involves(user_id):
            return False
        self.guests.append(user_id)
        self.modified_at = _now()
        return True

    def remove_guest(self, user_id: UUID) -> bool:
        if user_id not in self.guests:
            return False
        self.guests = [guest for guest in self.guests if guest != user_id]
        self.modified_at = _now()
        return True

    def set_token(self, token: str) -> None:
        self.token = token
        self.modified_at = _now()

    # ==================== QUERY METHODS ====================
    def involves(self, user_id: UUID) -> bool:
        return self.customer_id == user_id or user_id in self.guests

    def conflicts_with(self, date_range: DateRange) -> bool:
        return self.date_range.overlaps(date_range)
