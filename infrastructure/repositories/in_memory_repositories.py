"""In-Memory Repository Implementations"""
import asyncio
import logging
from typing import Optional, List, Dict, Tuple
from uuid import UUID
from datetime import date

from domain.auth import UserInDB
from domain.entities import Property, Estimate, Booking
from domain.enums import PaymentStatus, Role
from domain.exceptions import ConflictError, NotFoundError
from domain.repositories import PropertyRepository, BookingRepository, EstimateRepository, UserRepository
from domain.value_objects import DateRange

logger = logging.getLogger(__name__)


class InMemoryPropertyRepository(PropertyRepository):
    """In-memory implementation of PropertyRepository"""

    def __init__(self):
        self._storage: Dict[UUID, Property] = {}

    async def save(self, property: Property) -> Property:
        """Save property to memory"""
        for existing in self._storage.values():
            if existing.slug == property.slug and existing.property_id != property.property_id:
                raise ConflictError(f"Slug '{property.slug}' is already in use")
        self._storage[property.property_id] = property
        return property

    async def get(self, id_or_slug: str) -> Optional[Property]:
        """Find property by ID or slug"""
        try:
            found = self._storage.get(UUID(str(id_or_slug)))
            if found:
                return found
        except ValueError:
            pass  # Not a UUID, try the slug
        for prop in self._storage.values():
            if prop.slug == id_or_slug:
                return prop
        return None

    async def find_all(self) -> List[Property]:
        """Find all properties"""
        return list(self._storage.values())

    async def delete(self, property_id: UUID) -> bool:
        """Delete property"""
        if property_id in self._storage:
            del self._storage[property_id]
            return True
        return False


class InMemoryBookingRepository(BookingRepository):
    """In-memory implementation of BookingRepository"""

    def __init__(self):
        self._storage: Dict[UUID, Booking] = {}
        self._write_lock = asyncio.Lock()

    async def find_by_id(self, booking_id: UUID) -> Optional[Booking]:
        """Find booking by ID"""
        return self._storage.get(booking_id)

    async def find_by_estimate_id(self, estimate_id: UUID) -> Optional[Booking]:
        """Find the booking promoted from an estimate"""
        for booking in self._storage.values():
            if booking.estimate_id == estimate_id:
                return booking
        return None

    async def find_by_property(self, property_id: UUID) -> List[Booking]:
        """Find all bookings of a property"""
        return [b for b in self._storage.values() if b.property_id == property_id]

    async def find_overlapping(self, property_id: UUID, date_range: DateRange) -> List[Booking]:
        """Find bookings of a property intersecting a half-open range"""
        return self._overlapping(property_id, date_range)

    async def find_involving(self, user_id: UUID) -> List[Booking]:
        """Find bookings a user owns or is invited to"""
        return [b for b in self._storage.values() if b.involves(user_id)]

    async def find_all(self) -> List[Booking]:
        """Find all bookings"""
        return list(self._storage.values())

    async def insert_if_available(self, booking: Booking) -> Booking:
        """Check-and-insert under a single lock so racing writers cannot both succeed"""
        async with self._write_lock:
            if booking.estimate_id is not None:
                for existing in self._storage.values():
                    if existing.estimate_id == booking.estimate_id:
                        return existing

            conflicts = self._overlapping(booking.property_id, booking.date_range)
            if conflicts:
                raise ConflictError(
                    f"Property {booking.property_id} is already booked between "
                    f"{booking.date_range.from_date.isoformat()} and {booking.date_range.to_date.isoformat()}"
                )

            self._storage[booking.booking_id] = booking
            return booking

    async def update(self, booking: Booking) -> Booking:
        """Update booking"""
        if booking.booking_id in self._storage:
            self._storage[booking.booking_id] = booking
            return booking
        raise NotFoundError("Booking not found")

    async def delete(self, booking_id: UUID) -> bool:
        """Delete booking"""
        if booking_id in self._storage:
            del self._storage[booking_id]
            return True
        return False

    def _overlapping(self, property_id: UUID, date_range: DateRange) -> List[Booking]:
        return [
            b for b in self._storage.values()
            if b.property_id == property_id and b.conflicts_with(date_range)
        ]


class InMemoryEstimateRepository(EstimateRepository):
    """In-memory implementation of EstimateRepository"""

    def __init__(self):
        self._storage: Dict[UUID, Estimate] = {}

    async def find_by_id(self, estimate_id: UUID) -> Optional[Estimate]:
        """Find estimate by ID"""
        return self._storage.get(estimate_id)

    async def find_by_key(self, property_id: UUID, customer_id: UUID, date_range: DateRange) -> Optional[Estimate]:
        """Find estimate by property, customer and dates"""
        key = self._key(property_id, customer_id, date_range)
        for estimate in self._storage.values():
            if self._key(estimate.property_id, estimate.customer_id, estimate.date_range) == key:
                return estimate
        return None

    async def find_involving(self, user_id: UUID) -> List[Estimate]:
        """Find estimates a user owns or is invited to"""
        return [e for e in self._storage.values() if e.involves(user_id)]

    async def find_all(self) -> List[Estimate]:
        """Find all estimates"""
        return list(self._storage.values())

    async def upsert_by_property_customer_dates(self, estimate: Estimate) -> Estimate:
        """Insert, or replace the estimate with the same property, customer and dates"""
        existing = await self.find_by_key(estimate.property_id, estimate.customer_id, estimate.date_range)
        if existing and existing.estimate_id != estimate.estimate_id:
            if existing.payment_status == PaymentStatus.PAID:
                raise ConflictError(f"Estimate {existing.estimate_id} is already paid and cannot change")
            del self._storage[existing.estimate_id]
        self._storage[estimate.estimate_id] = estimate
        return estimate

    async def mark_paid(self, estimate_id: UUID) -> Estimate:
        """Flag estimate as paid"""
        estimate = self._storage.get(estimate_id)
        if not estimate:
            raise NotFoundError("Estimate not found")
        estimate.mark_paid()
        return estimate

    async def update(self, estimate: Estimate) -> Estimate:
        """Update estimate"""
        if estimate.estimate_id in self._storage:
            self._storage[estimate.estimate_id] = estimate
            return estimate
        raise NotFoundError("Estimate not found")

    async def delete(self, estimate_id: UUID) -> bool:
        """Delete estimate"""
        if estimate_id in self._storage:
            del self._storage[estimate_id]
            return True
        return False

    @staticmethod
    def _key(property_id: UUID, customer_id: UUID, date_range: DateRange) -> Tuple[UUID, UUID, date, date]:
        return (property_id, customer_id, date_range.from_date, date_range.to_date)


class InMemoryUserRepository(UserRepository):
    """In-memory implementation of UserRepository"""

    def __init__(self):
        self._storage: Dict[UUID, UserInDB] = {}

    async def save(self, user: UserInDB) -> UserInDB:
        """Save user to memory"""
        existing = await self.find_by_username(user.username)
        if existing and existing.user_id != user.user_id:
            raise ConflictError(f"Username '{user.username}' is already taken")
        self._storage[user.user_id] = user
        return user

    async def find_by_username(self, username: str) -> Optional[UserInDB]:
        """Find user by username"""
        for user in self._storage.values():
            if user.username == username:
                return user
        return None

    async def find_by_id(self, user_id: UUID) -> Optional[UserInDB]:
        """Find user by ID"""
        return self._storage.get(user_id)

    async def find_by_roles(self, roles: List[Role]) -> List[UserInDB]:
        """Find users holding any of the roles"""
        return [u for u in self._storage.values() if u.has_role(*roles)]

    async def update(self, user: UserInDB) -> UserInDB:
        """Update user"""
        if user.user_id in self._storage:
            self._storage[user.user_id] = user
            return user
        raise NotFoundError("User not found")
