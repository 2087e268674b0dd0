import logging
from uuid import UUID, uuid4
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Depends, Query, Request
from fastapi.security import OAuth2PasswordRequestForm

from api.schemas import (
    # Properties
    CreatePropertyRequest, UpdatePropertyRequest, PropertyResponse, PropertyPackageRequest,
    # Availability
    AvailabilityResponse, UnavailableDatesResponse,
    # Pricing
    PricingTierResponse, PackageTypeResponse, QuoteResponse,
    # Estimates
    CreateEstimateRequest, ConfirmEstimateRequest, EstimateResponse, DeleteEstimatesResponse,
    # Bookings
    CreateBookingRequest, BookingResponse, BookedRangeResponse, InviteTokenResponse,
    # Roles
    RoleUpgradeResponse, RoleDowngradeResponse,
    # Auth
    Token, UserResponse, RegisterUserRequest
)

from api.dependencies import get_current_active_user, get_optional_user, get_user, user_repository
from infrastructure.config import settings
from infrastructure.logging_context import set_request_id
from infrastructure.security import (
    verify_password, get_password_hash, create_access_token, create_invite_token, decode_token,
    ACCESS_TOKEN_EXPIRE_MINUTES
)
from infrastructure.billing import OfflinePaymentVerifier, RevenueCatPaymentVerifier
from domain.auth import User
from domain import access

from application.services import (
    PropertyService, AvailabilityService, EstimateService, BookingConfirmationService,
    BookingService, SubscriptionService, UserService
)
from infrastructure.repositories.in_memory_repositories import (
    InMemoryPropertyRepository, InMemoryBookingRepository, InMemoryEstimateRepository
)
from domain.enums import PaymentStatus, PackageCategory, Role
from domain.exceptions import (
    PlekError, ValidationError, NotFoundError, ConflictError,
    PaymentVerificationError, PermissionDeniedError
)
from domain.pricing import PACKAGE_TYPES, TIER_TABLE, validate_tier_table
from domain.value_objects import PropertyPackage

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.app_name,
    description="Booking core for Plek: pricing, availability and estimate confirmation",
    version="1.0.0"
)

for problem in validate_tier_table(TIER_TABLE):
    logger.warning("Pricing tier table: %s", problem)

# Initialize repositories
property_repo = InMemoryPropertyRepository()
booking_repo = InMemoryBookingRepository()
estimate_repo = InMemoryEstimateRepository()

if settings.billing.api_key:
    payment_verifier = RevenueCatPaymentVerifier(
        api_key=settings.billing.api_key,
        base_url=settings.billing.base_url,
        timeout=settings.billing.timeout_seconds
    )
else:
    payment_verifier = OfflinePaymentVerifier()

# Dependency injection
def get_property_service() -> PropertyService:
    return PropertyService(property_repo, booking_repo)

def get_availability_service() -> AvailabilityService:
    return AvailabilityService(get_property_service(), booking_repo)

def get_estimate_service() -> EstimateService:
    return EstimateService(
        estimate_repo,
        get_property_service(),
        get_availability_service(),
        token_factory=create_invite_token,
        default_base_rate=Decimal(str(settings.pricing.default_base_rate))
    )

def get_confirmation_service() -> BookingConfirmationService:
    return BookingConfirmationService(
        estimate_repo,
        booking_repo,
        get_availability_service(),
        payment_verifier,
        token_factory=create_invite_token,
        payment_window=timedelta(hours=settings.billing.payment_window_hours),
        max_retries=settings.billing.max_retries
    )

def get_booking_service() -> BookingService:
    return BookingService(
        booking_repo,
        get_property_service(),
        token_factory=create_invite_token,
        token_reader=decode_token
    )

def get_subscription_service() -> SubscriptionService:
    return SubscriptionService(
        user_repository,
        payment_verifier,
        host_product_markers=settings.billing.host_product_markers,
        max_retries=settings.billing.max_retries
    )

def get_user_service() -> UserService:
    return UserService(user_repository, get_password_hash)

# ============================================================================
# REQUEST CONTEXT
# ============================================================================

@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid4().hex
    set_request_id(request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response

# ============================================================================
# HEALTH & ENUM REFERENCE ENDPOINTS
# ============================================================================

@app.get("/api/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "message": "API is running"}

@app.get("/api/enums/role", tags=["Enum Reference"])
async def get_roles():
    """Get all Role enum values"""
    return {
        "values": [item.value for item in Role],
        "description": "User roles: guest (invited only), customer, host, admin"
    }

@app.get("/api/enums/payment-status", tags=["Enum Reference"])
async def get_payment_statuses():
    """Get all PaymentStatus enum values"""
    return {
        "values": [item.value for item in PaymentStatus],
        "description": "Payment status values: unpaid, paid"
    }

@app.get("/api/enums/package-category", tags=["Enum Reference"])
async def get_package_categories():
    """Get all PackageCategory enum values"""
    return {
        "values": [item.value for item in PackageCategory],
        "description": "Package categories: standard, luxury, hosted, specialty"
    }

# ============================================================================
# AUTH ENDPOINTS
# ============================================================================

@app.post("/token", response_model=Token, tags=["Auth"])
async def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends()):
    user = await get_user(form_data.username)
    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(
            status_code=401,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token_expires = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = create_access_token(
        data={"sub": user.username}, expires_delta=access_token_expires
    )
    return {"access_token": access_token, "token_type": "bearer"}

@app.get("/users/me", response_model=UserResponse, tags=["Auth"])
async def read_users_me(current_user: User = Depends(get_current_active_user)):
    return current_user

@app.post("/api/users/register", response_model=UserResponse, status_code=201, tags=["Auth"])
async def register_user(
    request: RegisterUserRequest,
    service: UserService = Depends(get_user_service)
):
    """Create a guest account"""
    try:
        return await service.register(
            username=request.username,
            password=request.password,
            email=request.email,
            full_name=request.full_name
        )
    except PlekError as e:
        raise _to_http_error(e)

# ============================================================================
# PROPERTY ENDPOINTS
# ============================================================================

@app.get("/api/properties", response_model=List[PropertyResponse], tags=["Properties"])
async def list_properties(service: PropertyService = Depends(get_property_service)):
    """Get all properties"""
    properties = await service.list()
    return [_property_to_response(p) for p in properties]

@app.get("/api/properties/{property_ref}", response_model=PropertyResponse, tags=["Properties"])
async def get_property(property_ref: str, service: PropertyService = Depends(get_property_service)):
    """Get property by id or slug"""
    try:
        return _property_to_response(await service.get(property_ref))
    except PlekError as e:
        raise _to_http_error(e)

@app.post("/api/properties", response_model=PropertyResponse, status_code=201, tags=["Properties"])
async def create_property(
    request: CreatePropertyRequest,
    service: PropertyService = Depends(get_property_service),
    current_user: User = Depends(get_current_active_user)
):
    """Create property listing (hosts and admins)"""
    try:
        property = await service.create(
            user=current_user,
            title=request.title,
            slug=request.slug,
            base_rate=request.base_rate,
            package_types=[
                PropertyPackage(package_id=p.package_id, name=p.name, multiplier=p.multiplier)
                for p in request.package_types
            ]
        )
        return _property_to_response(property)
    except PlekError as e:
        raise _to_http_error(e)

@app.patch("/api/properties/{property_ref}", response_model=PropertyResponse, tags=["Properties"])
async def update_property(
    property_ref: str,
    request: UpdatePropertyRequest,
    service: PropertyService = Depends(get_property_service),
    current_user: User = Depends(get_current_active_user)
):
    """Update property listing (owning host or admin)"""
    package_types = None
    if request.package_types is not None:
        package_types = [
            PropertyPackage(package_id=p.package_id, name=p.name, multiplier=p.multiplier)
            for p in request.package_types
        ]
    try:
        property = await service.update(
            user=current_user,
            property_ref=property_ref,
            title=request.title,
            base_rate=request.base_rate,
            package_types=package_types
        )
        return _property_to_response(property)
    except PlekError as e:
        raise _to_http_error(e)

@app.delete("/api/properties/{property_ref}", status_code=204, tags=["Properties"])
async def delete_property(
    property_ref: str,
    service: PropertyService = Depends(get_property_service),
    current_user: User = Depends(get_current_active_user)
):
    """Delete property listing without bookings (owning host or admin)"""
    try:
        await service.delete(current_user, property_ref)
    except PlekError as e:
        raise _to_http_error(e)

# ============================================================================
# AVAILABILITY ENDPOINTS
# ============================================================================

@app.get("/api/availability", response_model=AvailabilityResponse, tags=["Availability"])
async def check_availability(
    property: Optional[str] = Query(None, description="Property id or slug"),
    from_date: Optional[str] = Query(None),
    to_date: Optional[str] = Query(None),
    service: AvailabilityService = Depends(get_availability_service),
    current_user: Optional[User] = Depends(get_optional_user)
):
    """Check whether a property is free for [from_date, to_date)"""
    try:
        result = await service.check(property, from_date, to_date)
    except PlekError as e:
        raise _to_http_error(e)

    show_conflicts = current_user is not None and access.can_manage_bookings(current_user)
    return AvailabilityResponse(
        property_id=result.property_id,
        from_date=result.date_range.from_date,
        to_date=result.date_range.to_date,
        is_available=result.is_available,
        conflicting_bookings=result.conflicting_bookings if show_conflicts else None
    )

@app.get("/api/unavailable-dates", response_model=UnavailableDatesResponse, tags=["Availability"])
async def get_unavailable_dates(
    property: Optional[str] = Query(None, description="Property id or slug"),
    service: AvailabilityService = Depends(get_availability_service),
    property_service: PropertyService = Depends(get_property_service)
):
    """Every booked day of a property; check-out days stay free"""
    try:
        found = await property_service.get(property)
        dates = await service.list_unavailable_dates(str(found.property_id))
        return UnavailableDatesResponse(property_id=found.property_id, unavailable_dates=dates)
    except PlekError as e:
        raise _to_http_error(e)

# ============================================================================
# PRICING ENDPOINTS
# ============================================================================

@app.get("/api/pricing/tiers", response_model=List[PricingTierResponse], tags=["Pricing"])
async def get_pricing_tiers():
    """Stay-length tiers and their multipliers"""
    return [
        PricingTierResponse(
            tier_id=tier.tier_id,
            label=tier.label,
            min_nights=tier.min_nights,
            max_nights=tier.max_nights,
            multiplier=tier.multiplier,
            discount_percent=tier.discount_percent
        )
        for tier in TIER_TABLE
    ]

@app.get("/api/pricing/packages", response_model=List[PackageTypeResponse], tags=["Pricing"])
async def get_package_types(category: Optional[PackageCategory] = None):
    """Package catalog, optionally filtered by category"""
    packages = [p for p in PACKAGE_TYPES.values() if category is None or p.category == category]
    return [
        PackageTypeResponse(
            package_id=p.package_id,
            name=p.name,
            description=p.description,
            multiplier=p.multiplier,
            features=p.features,
            billing_product_id=p.billing_product_id,
            min_nights=p.min_nights,
            max_nights=p.max_nights,
            is_hosted=p.is_hosted,
            category=p.category.value
        )
        for p in packages
    ]

@app.get("/api/pricing/quote", response_model=QuoteResponse, tags=["Pricing"])
async def get_quote(
    property: Optional[str] = Query(None, description="Property id or slug"),
    from_date: Optional[str] = Query(None),
    to_date: Optional[str] = Query(None),
    package_type: Optional[str] = Query(None),
    service: EstimateService = Depends(get_estimate_service)
):
    """Price a stay without creating an estimate"""
    try:
        found, date_range, quote = await service.quote(property, from_date, to_date, package_type)
    except PlekError as e:
        raise _to_http_error(e)
    return QuoteResponse(
        property_id=found.property_id,
        from_date=date_range.from_date,
        to_date=date_range.to_date,
        nights=quote.nights,
        tier_id=quote.tier.tier_id,
        package_type=quote.package_type,
        base_rate=quote.base_rate,
        multiplier=quote.multiplier,
        total=quote.total,
        currency=settings.pricing.currency
    )

# ============================================================================
# ESTIMATE ENDPOINTS
# ============================================================================

@app.post("/api/estimates", response_model=EstimateResponse, status_code=201, tags=["Estimates"])
async def create_estimate(
    request: CreateEstimateRequest,
    service: EstimateService = Depends(get_estimate_service),
    current_user: User = Depends(get_current_active_user)
):
    """Create or refresh the estimate for a stay"""
    try:
        estimate = await service.request_quote(
            user=current_user,
            property_ref=request.property_ref,
            from_date=request.from_date,
            to_date=request.to_date,
            package_type=request.package_type,
            guests=request.guests,
            title=request.title,
            customer_id=request.customer_id
        )
        return _estimate_to_response(estimate)
    except PlekError as e:
        raise _to_http_error(e)

@app.get("/api/estimates", response_model=List[EstimateResponse], tags=["Estimates"])
async def list_estimates(
    service: EstimateService = Depends(get_estimate_service),
    current_user: User = Depends(get_current_active_user)
):
    """Estimates visible to the caller"""
    estimates = await service.list_estimates(current_user)
    return [_estimate_to_response(e) for e in estimates]

@app.delete("/api/estimates", response_model=DeleteEstimatesResponse, tags=["Estimates"])
async def delete_estimates(
    ids: List[UUID] = Query(...),
    service: EstimateService = Depends(get_estimate_service),
    current_user: User = Depends(get_current_active_user)
):
    """Delete several estimates; failures are reported per id"""
    deleted, errors = await service.delete_estimates(current_user, ids)
    return DeleteEstimatesResponse(deleted=deleted, errors=errors)

@app.get("/api/estimates/{estimate_id}", response_model=EstimateResponse, tags=["Estimates"])
async def get_estimate(
    estimate_id: UUID,
    service: EstimateService = Depends(get_estimate_service),
    current_user: User = Depends(get_current_active_user)
):
    """Get estimate by ID"""
    try:
        return _estimate_to_response(await service.get_estimate(current_user, estimate_id))
    except PlekError as e:
        raise _to_http_error(e)

@app.post("/api/estimates/{estimate_id}/confirm", response_model=BookingResponse, tags=["Estimates"])
async def confirm_estimate(
    estimate_id: UUID,
    request: Optional[ConfirmEstimateRequest] = None,
    service: BookingConfirmationService = Depends(get_confirmation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Turn a paid estimate into a booking"""
    try:
        booking = await service.confirm_estimate(
            user=current_user,
            estimate_id=estimate_id,
            payment_reference=request.payment_reference if request else None
        )
        return _booking_to_response(booking)
    except PlekError as e:
        raise _to_http_error(e)

@app.post("/api/estimates/{estimate_id}/token", response_model=InviteTokenResponse, tags=["Estimates"])
async def get_estimate_token(
    estimate_id: UUID,
    service: EstimateService = Depends(get_estimate_service),
    current_user: User = Depends(get_current_active_user)
):
    """Invite token for sharing an estimate"""
    try:
        return InviteTokenResponse(token=await service.issue_token(current_user, estimate_id))
    except PlekError as e:
        raise _to_http_error(e)

@app.post("/api/estimates/{estimate_id}/accept-invite/{token}", response_model=EstimateResponse, tags=["Estimates"])
async def accept_estimate_invite(
    estimate_id: UUID,
    token: str,
    service: EstimateService = Depends(get_estimate_service),
    current_user: User = Depends(get_current_active_user)
):
    """Join an estimate as guest"""
    try:
        return _estimate_to_response(await service.accept_invite(current_user, estimate_id, token))
    except PlekError as e:
        raise _to_http_error(e)

# ============================================================================
# BOOKING ENDPOINTS
# ============================================================================

@app.post("/api/bookings", response_model=BookingResponse, status_code=201, tags=["Bookings"])
async def create_booking(
    request: CreateBookingRequest,
    service: BookingService = Depends(get_booking_service),
    current_user: User = Depends(get_current_active_user)
):
    """Enter a booking directly (hosts and admins)"""
    try:
        booking = await service.create_booking(
            user=current_user,
            property_ref=request.property_ref,
            from_date=request.from_date,
            to_date=request.to_date,
            customer_id=request.customer_id,
            guests=request.guests,
            package_type=request.package_type
        )
        return _booking_to_response(booking)
    except PlekError as e:
        raise _to_http_error(e)

@app.get("/api/bookings", response_model=List[BookingResponse], tags=["Bookings"])
async def list_bookings(
    service: BookingService = Depends(get_booking_service),
    current_user: User = Depends(get_current_active_user)
):
    """Bookings visible to the caller"""
    bookings = await service.list_bookings(current_user)
    return [_booking_to_response(b) for b in bookings]

@app.get("/api/bookings/property/{property_ref}", response_model=List[BookedRangeResponse], tags=["Bookings"])
async def list_property_bookings(
    property_ref: str,
    service: BookingService = Depends(get_booking_service)
):
    """Booked ranges of a property"""
    try:
        ranges = await service.list_property_bookings(property_ref)
        return [BookedRangeResponse(from_date=r.from_date, to_date=r.to_date) for r in ranges]
    except PlekError as e:
        raise _to_http_error(e)

@app.get("/api/bookings/token/{token}", tags=["Bookings"])
async def read_booking_token(
    token: str,
    service: BookingService = Depends(get_booking_service)
):
    """Decode an invite token"""
    try:
        return service.read_token(token)
    except PlekError as e:
        raise _to_http_error(e)

@app.get("/api/bookings/{booking_id}", response_model=BookingResponse, tags=["Bookings"])
async def get_booking(
    booking_id: UUID,
    service: BookingService = Depends(get_booking_service),
    current_user: User = Depends(get_current_active_user)
):
    """Get booking by ID"""
    try:
        return _booking_to_response(await service.get_booking(current_user, booking_id))
    except PlekError as e:
        raise _to_http_error(e)

@app.delete("/api/bookings/{booking_id}", status_code=204, tags=["Bookings"])
async def delete_booking(
    booking_id: UUID,
    service: BookingService = Depends(get_booking_service),
    current_user: User = Depends(get_current_active_user)
):
    """Delete booking"""
    try:
        await service.delete_booking(current_user, booking_id)
    except PlekError as e:
        raise _to_http_error(e)

@app.post("/api/bookings/{booking_id}/token", response_model=InviteTokenResponse, tags=["Bookings"])
async def get_booking_token(
    booking_id: UUID,
    service: BookingService = Depends(get_booking_service),
    current_user: User = Depends(get_current_active_user)
):
    """Invite token for sharing a booking"""
    try:
        return InviteTokenResponse(token=await service.issue_token(current_user, booking_id))
    except PlekError as e:
        raise _to_http_error(e)

@app.post("/api/bookings/{booking_id}/refresh-token", response_model=InviteTokenResponse, tags=["Bookings"])
async def refresh_booking_token(
    booking_id: UUID,
    service: BookingService = Depends(get_booking_service),
    current_user: User = Depends(get_current_active_user)
):
    """Replace the booking's invite token"""
    try:
        return InviteTokenResponse(token=await service.refresh_token(current_user, booking_id))
    except PlekError as e:
        raise _to_http_error(e)

@app.post("/api/bookings/{booking_id}/accept-invite/{token}", response_model=BookingResponse, tags=["Bookings"])
async def accept_booking_invite(
    booking_id: UUID,
    token: str,
    service: BookingService = Depends(get_booking_service),
    current_user: User = Depends(get_current_active_user)
):
    """Join a booking as guest"""
    try:
        return _booking_to_response(await service.accept_invite(current_user, booking_id, token))
    except PlekError as e:
        raise _to_http_error(e)

@app.delete("/api/bookings/{booking_id}/guests/{guest_id}", response_model=BookingResponse, tags=["Bookings"])
async def remove_booking_guest(
    booking_id: UUID,
    guest_id: UUID,
    service: BookingService = Depends(get_booking_service),
    current_user: User = Depends(get_current_active_user)
):
    """Remove an invited guest"""
    try:
        return _booking_to_response(await service.remove_guest(current_user, booking_id, guest_id))
    except PlekError as e:
        raise _to_http_error(e)

# ============================================================================
# ROLE ENDPOINTS
# ============================================================================

@app.post("/api/roles/upgrade", response_model=RoleUpgradeResponse, tags=["Roles"])
async def upgrade_role(
    service: SubscriptionService = Depends(get_subscription_service),
    current_user: User = Depends(get_current_active_user)
):
    """Grant the role matching the caller's subscription"""
    try:
        user, changed = await service.upgrade_role(current_user)
        return RoleUpgradeResponse(username=user.username, roles=user.roles, changed=changed)
    except PlekError as e:
        raise _to_http_error(e)

@app.post("/api/roles/downgrade-lapsed", response_model=RoleDowngradeResponse, tags=["Roles"])
async def downgrade_lapsed_roles(
    service: SubscriptionService = Depends(get_subscription_service),
    current_user: User = Depends(get_current_active_user)
):
    """Demote users whose subscription lapsed (admins)"""
    try:
        downgraded, errors = await service.downgrade_lapsed(current_user)
        return RoleDowngradeResponse(downgraded=downgraded, errors=errors)
    except PlekError as e:
        raise _to_http_error(e)

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

_STATUS_CODES = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (PaymentVerificationError, 402),
    (PermissionDeniedError, 403),
)

def _to_http_error(error: PlekError) -> HTTPException:
    """Map a domain error onto its HTTP status"""
    for error_type, status_code in _STATUS_CODES:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    # Details were logged where the failure happened
    return HTTPException(status_code=500, detail="Internal server error")

def _property_to_response(property) -> PropertyResponse:
    """Convert Property entity to PropertyResponse"""
    return PropertyResponse(
        property_id=property.property_id,
        slug=property.slug,
        title=property.title,
        base_rate=property.base_rate,
        host_id=property.host_id,
        package_types=[
            PropertyPackageRequest(package_id=p.package_id, name=p.name, multiplier=p.multiplier)
            for p in property.package_types
        ]
    )

def _estimate_to_response(estimate) -> EstimateResponse:
    """Convert Estimate entity to EstimateResponse"""
    return EstimateResponse(
        estimate_id=estimate.estimate_id,
        title=estimate.title,
        property_id=estimate.property_id,
        customer_id=estimate.customer_id,
        guests=estimate.guests,
        from_date=estimate.date_range.from_date,
        to_date=estimate.date_range.to_date,
        package_type=estimate.package_type,
        tier_id=estimate.tier_id,
        nights=estimate.nights,
        base_rate=estimate.base_rate,
        multiplier=estimate.multiplier,
        total=estimate.total,
        payment_status=estimate.payment_status,
        booking_id=estimate.booking_id,
        created_at=estimate.created_at,
        modified_at=estimate.modified_at,
        version=estimate.version
    )

def _booking_to_response(booking) -> BookingResponse:
    """Convert Booking entity to BookingResponse"""
    return BookingResponse(
        booking_id=booking.booking_id,
        title=booking.title,
        property_id=booking.property_id,
        customer_id=booking.customer_id,
        guests=booking.guests,
        estimate_id=booking.estimate_id,
        from_date=booking.date_range.from_date,
        to_date=booking.date_range.to_date,
        package_type=booking.package_type,
        total=booking.total,
        payment_status=booking.payment_status,
        created_at=booking.created_at,
        created_by=booking.created_by
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
