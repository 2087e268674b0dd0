"""Domain Repository and Gateway Interfaces"""
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Optional, List
from uuid import UUID

from domain.auth import UserInDB
from domain.entities import Property, Estimate, Booking
from domain.enums import Role
from domain.value_objects import DateRange


class PropertyRepository(ABC):
    """Repository interface for Property lookups"""

    @abstractmethod
    async def save(self, property: Property) -> Property:
        """Save property"""
        pass

    @abstractmethod
    async def get(self, id_or_slug: str) -> Optional[Property]:
        """Find property by ID or slug"""
        pass

    @abstractmethod
    async def find_all(self) -> List[Property]:
        """Find all properties"""
        pass

    @abstractmethod
    async def delete(self, property_id: UUID) -> bool:
        """Delete property"""
        pass


class BookingRepository(ABC):
    """Repository interface for Booking Aggregate"""

    @abstractmethod
    async def find_by_id(self, booking_id: UUID) -> Optional[Booking]:
        """Find booking by ID"""
        pass

    @abstractmethod
    async def find_by_estimate_id(self, estimate_id: UUID) -> Optional[Booking]:
        """Find the booking promoted from an estimate"""
        pass

    @abstractmethod
    async def find_by_property(self, property_id: UUID) -> List[Booking]:
        """Find all bookings of a property"""
        pass

    @abstractmethod
    async def find_overlapping(self, property_id: UUID, date_range: DateRange) -> List[Booking]:
        """Find bookings of a property intersecting a half-open range"""
        pass

    @abstractmethod
    async def find_involving(self, user_id: UUID) -> List[Booking]:
        """Find bookings a user owns or is invited to"""
        pass

    @abstractmethod
    async def find_all(self) -> List[Booking]:
        """Find all bookings"""
        pass

    @abstractmethod
    async def insert_if_available(self, booking: Booking) -> Booking:
        """Atomically insert a booking unless its dates are taken.

        Returns the already stored booking when one exists for the same
        estimate. Raises ConflictError when another booking of the property
        overlaps the range.
        """
        pass

    @abstractmethod
    async def update(self, booking: Booking) -> Booking:
        """Update booking"""
        pass

    @abstractmethod
    async def delete(self, booking_id: UUID) -> bool:
        """Delete booking"""
        pass


class EstimateRepository(ABC):
    """Repository interface for Estimate Aggregate"""

    @abstractmethod
    async def find_by_id(self, estimate_id: UUID) -> Optional[Estimate]:
        """Find estimate by ID"""
        pass

    @abstractmethod
    async def find_by_key(self, property_id: UUID, customer_id: UUID, date_range: DateRange) -> Optional[Estimate]:
        """Find estimate by property, customer and dates"""
        pass

    @abstractmethod
    async def find_involving(self, user_id: UUID) -> List[Estimate]:
        """Find estimates a user owns or is invited to"""
        pass

    @abstractmethod
    async def find_all(self) -> List[Estimate]:
        """Find all estimates"""
        pass

    @abstractmethod
    async def upsert_by_property_customer_dates(self, estimate: Estimate) -> Estimate:
        """Insert, or replace the estimate with the same property, customer and dates"""
        pass

    @abstractmethod
    async def mark_paid(self, estimate_id: UUID) -> Estimate:
        """Flag estimate as paid"""
        pass

    @abstractmethod
    async def update(self, estimate: Estimate) -> Estimate:
        """Update estimate"""
        pass

    @abstractmethod
    async def delete(self, estimate_id: UUID) -> bool:
        """Delete estimate"""
        pass


class UserRepository(ABC):
    """Repository interface for users"""

    @abstractmethod
    async def save(self, user: UserInDB) -> UserInDB:
        """Save user"""
        pass

    @abstractmethod
    async def find_by_username(self, username: str) -> Optional[UserInDB]:
        """Find user by username"""
        pass

    @abstractmethod
    async def find_by_id(self, user_id: UUID) -> Optional[UserInDB]:
        """Find user by ID"""
        pass

    @abstractmethod
    async def find_by_roles(self, roles: List[Role]) -> List[UserInDB]:
        """Find users holding any of the roles"""
        pass

    @abstractmethod
    async def update(self, user: UserInDB) -> UserInDB:
        """Update user"""
        pass


class PaymentVerifier(ABC):
    """Gateway to the billing provider"""

    @abstractmethod
    async def has_recent_non_refunded_transaction(self, customer_id: UUID, within: timedelta) -> bool:
        """True when the customer bought something within the window and it was not refunded"""
        pass

    @abstractmethod
    async def has_active_entitlement(self, customer_id: UUID) -> bool:
        """True when the customer holds at least one active entitlement"""
        pass

    @abstractmethod
    async def active_product_ids(self, customer_id: UUID) -> List[str]:
        """Product identifiers behind the customer's active entitlements"""
        pass
