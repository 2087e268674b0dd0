"""API Schemas - Request and Response DTOs"""
from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID
from typing import Dict, List, Optional

from domain.enums import PaymentStatus, Role


# ============================================================================
# PROPERTY SCHEMAS
# ============================================================================

class PropertyPackageRequest(BaseModel):
    """Host-defined package DTO"""
    package_id: str
    name: str
    multiplier: Decimal = Field(ge=0)


class CreatePropertyRequest(BaseModel):
    """Create property request DTO"""
    title: str = Field(min_length=1)
    slug: str = Field(min_length=1)
    base_rate: Optional[float] = Field(None, ge=0)
    package_types: List[PropertyPackageRequest] = []


class UpdatePropertyRequest(BaseModel):
    """Update property request DTO; omitted fields keep their value"""
    title: Optional[str] = Field(None, min_length=1)
    base_rate: Optional[float] = Field(None, ge=0)
    package_types: Optional[List[PropertyPackageRequest]] = None


class PropertyResponse(BaseModel):
    """Property response DTO"""
    property_id: UUID
    slug: str
    title: str
    base_rate: Optional[float] = None
    host_id: Optional[UUID] = None
    package_types: List[PropertyPackageRequest] = []


# ============================================================================
# AVAILABILITY SCHEMAS
# ============================================================================

class AvailabilityResponse(BaseModel):
    """Availability response DTO"""
    property_id: UUID
    from_date: date
    to_date: date
    is_available: bool
    # Only reported to hosts and admins
    conflicting_bookings: Optional[int] = None


class UnavailableDatesResponse(BaseModel):
    """Occupied days of a property"""
    property_id: UUID
    unavailable_dates: List[date]


# ============================================================================
# PRICING SCHEMAS
# ============================================================================

class PricingTierResponse(BaseModel):
    """Pricing tier response DTO"""
    tier_id: str
    label: str
    min_nights: int
    max_nights: int
    multiplier: Decimal
    discount_percent: int


class PackageTypeResponse(BaseModel):
    """Catalog package response DTO"""
    package_id: str
    name: str
    description: str
    multiplier: Decimal
    features: List[str]
    billing_product_id: str
    min_nights: Optional[int] = None
    max_nights: Optional[int] = None
    is_hosted: bool
    category: str


class QuoteResponse(BaseModel):
    """Price of a stay, not persisted"""
    property_id: UUID
    from_date: date
    to_date: date
    nights: int
    tier_id: str
    package_type: str
    base_rate: Decimal
    multiplier: Decimal
    total: Decimal
    currency: str


# ============================================================================
# ESTIMATE SCHEMAS
# ============================================================================

class CreateEstimateRequest(BaseModel):
    """Create estimate request DTO"""
    property_ref: str = Field(alias="property", description="Property id or slug")
    from_date: str = Field(alias="fromDate")
    to_date: str = Field(alias="toDate")
    package_type: Optional[str] = Field(None, alias="packageType")
    guests: List[UUID] = []
    title: Optional[str] = None
    customer_id: Optional[UUID] = Field(None, alias="customer")

    class Config:
        populate_by_name = True


class ConfirmEstimateRequest(BaseModel):
    """Confirm estimate request DTO"""
    payment_reference: Optional[str] = None


class EstimateResponse(BaseModel):
    """Estimate response DTO"""
    estimate_id: UUID
    title: str
    property_id: UUID
    customer_id: UUID
    guests: List[UUID]
    from_date: date
    to_date: date
    package_type: str
    tier_id: str
    nights: int
    base_rate: Decimal
    multiplier: Decimal
    total: Decimal
    payment_status: PaymentStatus
    booking_id: Optional[UUID] = None
    created_at: datetime
    modified_at: datetime
    version: int


class DeleteEstimatesResponse(BaseModel):
    """Per-id outcome of a bulk delete"""
    deleted: List[UUID]
    errors: List[Dict[str, str]]


# ============================================================================
# BOOKING SCHEMAS
# ============================================================================

class CreateBookingRequest(BaseModel):
    """Create booking request DTO"""
    property_ref: str = Field(alias="property", description="Property id or slug")
    from_date: str = Field(alias="fromDate")
    to_date: str = Field(alias="toDate")
    customer_id: Optional[UUID] = Field(None, alias="customer")
    guests: List[UUID] = []
    package_type: Optional[str] = Field(None, alias="packageType")

    class Config:
        populate_by_name = True


class BookingResponse(BaseModel):
    """Booking response DTO"""
    booking_id: UUID
    title: str
    property_id: UUID
    customer_id: UUID
    guests: List[UUID]
    estimate_id: Optional[UUID] = None
    from_date: date
    to_date: date
    package_type: Optional[str] = None
    total: Optional[Decimal] = None
    payment_status: PaymentStatus
    created_at: datetime
    created_by: str


class BookedRangeResponse(BaseModel):
    """Booked range of a property"""
    from_date: date
    to_date: date


class InviteTokenResponse(BaseModel):
    """Invite token response DTO"""
    token: str


# ============================================================================
# ROLE SCHEMAS
# ============================================================================

class RoleUpgradeResponse(BaseModel):
    """Role upgrade outcome"""
    username: str
    roles: List[Role]
    changed: bool


class RoleDowngradeResponse(BaseModel):
    """Bulk downgrade outcome"""
    downgraded: List[str]
    errors: List[Dict[str, str]]


# ============================================================================
# AUTH SCHEMAS
# ============================================================================

class Token(BaseModel):
    """Token response DTO"""
    access_token: str
    token_type: str

class TokenData(BaseModel):
    """Token payload DTO"""
    username: Optional[str] = None

class RegisterUserRequest(BaseModel):
    """Registration request DTO"""
    username: str = Field(min_length=1)
    password: str
    email: Optional[str] = None
    full_name: Optional[str] = None

class UserResponse(BaseModel):
    """User response DTO"""
    user_id: UUID
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    roles: List[Role]
    disabled: bool
