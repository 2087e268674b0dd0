"""Application Services - Business use cases"""
import logging
from functools import partial
from uuid import UUID
from datetime import date, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from domain import access
from domain.auth import User, UserInDB
from domain.entities import Property, Estimate, Booking
from domain.enums import Permission, Role
from domain.exceptions import (
    BillingUnavailableError,
    ConflictError,
    InternalError,
    NotFoundError,
    PaymentVerificationError,
    PermissionDeniedError,
    PlekError,
    ValidationError,
)
from domain.pricing import build_quote
from domain.repositories import (
    PropertyRepository,
    BookingRepository,
    EstimateRepository,
    UserRepository,
    PaymentVerifier,
)
from domain.value_objects import AvailabilityResult, DateRange, PropertyPackage, Quote

logger = logging.getLogger(__name__)

# (customer_id, estimate_id=None, booking_id=None) -> token
TokenFactory = Callable[..., str]
TokenReader = Callable[[str], dict]

T = TypeVar("T")


async def call_billing(
    operation: Callable[[], Awaitable[T]],
    customer_id: UUID,
    max_retries: int = 1
) -> T:
    """Run a billing lookup, retrying transient failures.

    Once the retries are used up the failure surfaces as
    PaymentVerificationError, never as a silent "not paid".
    """
    attempts = max_retries + 1
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except BillingUnavailableError as e:
            if attempt < attempts:
                logger.warning(
                    "Billing unavailable for customer %s (attempt %d/%d): %s",
                    customer_id, attempt, attempts, e
                )
                continue
            logger.error("Billing unavailable for customer %s, giving up: %s", customer_id, e)
            raise PaymentVerificationError("Payment could not be verified, try again later") from e


class PropertyService:
    """Service for Property lookups and listing management"""

    def __init__(self, repository: PropertyRepository, booking_repo: BookingRepository):
        self.repository = repository
        self.booking_repo = booking_repo

    async def get(self, property_ref: str) -> Property:
        """Get property by id or slug"""
        if not property_ref or not str(property_ref).strip():
            raise ValidationError("property is required")
        found = await self.repository.get(str(property_ref).strip())
        if not found:
            raise NotFoundError(f"Property '{property_ref}' not found")
        return found

    async def list(self) -> List[Property]:
        """Get all properties"""
        return await self.repository.find_all()

    async def create(
        self,
        user: User,
        title: str,
        slug: str,
        base_rate: Optional[float] = None,
        package_types: Optional[List[PropertyPackage]] = None
    ) -> Property:
        """Create a property listing owned by the calling host"""
        access.require(user, Permission.MANAGE_PROPERTIES)
        property = Property(
            title=title,
            slug=slug,
            base_rate=base_rate,
            host_id=user.user_id,
            package_types=list(package_types or [])
        )
        return await self.repository.save(property)

    async def update(
        self,
        user: User,
        property_ref: str,
        title: Optional[str] = None,
        base_rate: Optional[float] = None,
        package_types: Optional[List[PropertyPackage]] = None
    ) -> Property:
        """Change a listing; fields left as None keep their value.

        Existing estimates keep the price they were quoted at.
        """
        property = await self.get(property_ref)
        if not access.can_edit_property(user, property):
            raise PermissionDeniedError("Only the listing's host or an admin can change it")

        if title is not None:
            if not title.strip():
                raise ValidationError("title must not be empty")
            property.title = title
        if base_rate is not None:
            property.base_rate = base_rate
        if package_types is not None:
            property.package_types = list(package_types)

        saved = await self.repository.save(property)
        logger.info("Property %s updated by %s", saved.property_id, user.username)
        return saved

    async def delete(self, user: User, property_ref: str) -> bool:
        """Remove a listing that has no bookings"""
        property = await self.get(property_ref)
        if not access.can_edit_property(user, property):
            raise PermissionDeniedError("Only the listing's host or an admin can delete it")
        if await self.booking_repo.find_by_property(property.property_id):
            raise ConflictError("Property has bookings and cannot be deleted")

        deleted = await self.repository.delete(property.property_id)
        if deleted:
            logger.info("Property %s deleted by %s", property.property_id, user.username)
        return deleted


class AvailabilityService:
    """Service for Availability business use cases"""

    def __init__(self, property_service: PropertyService, booking_repo: BookingRepository):
        self.property_service = property_service
        self.booking_repo = booking_repo

    async def check(self, property_ref: str, from_date, to_date) -> AvailabilityResult:
        """Check whether a property is free for a half-open range"""
        # Range is validated before any storage access
        date_range = DateRange.of(from_date, to_date)
        property = await self.property_service.get(property_ref)
        return await self.check_range(property.property_id, date_range)

    async def is_available(self, property_ref: str, from_date, to_date) -> bool:
        """True when no booking of the property overlaps the requested stay"""
        result = await self.check(property_ref, from_date, to_date)
        return result.is_available

    async def check_range(self, property_id: UUID, date_range: DateRange) -> AvailabilityResult:
        """Availability for an already resolved property and validated range"""
        conflicts = await self.booking_repo.find_overlapping(property_id, date_range)
        return AvailabilityResult(
            property_id=property_id,
            date_range=date_range,
            is_available=not conflicts,
            conflicting_bookings=len(conflicts)
        )

    async def list_unavailable_dates(self, property_ref: str) -> List[date]:
        """Every occupied day across the property's bookings, sorted"""
        property = await self.property_service.get(property_ref)
        bookings = await self.booking_repo.find_by_property(property.property_id)

        days = set()
        for booking in bookings:
            days.update(booking.date_range.days())
        return sorted(days)


class EstimateService:
    """Service for Estimate (quote) business use cases"""

    def __init__(
        self,
        repository: EstimateRepository,
        property_service: PropertyService,
        availability_service: AvailabilityService,
        token_factory: TokenFactory,
        default_base_rate: Decimal = Decimal("150")
    ):
        self.repository = repository
        self.property_service = property_service
        self.availability_service = availability_service
        self.token_factory = token_factory
        self.default_base_rate = default_base_rate

    async def quote(
        self,
        property_ref: str,
        from_date,
        to_date,
        package_type: Optional[str] = None
    ) -> Tuple[Property, DateRange, Quote]:
        """Price a stay without persisting anything"""
        date_range = DateRange.of(from_date, to_date)
        property = await self.property_service.get(property_ref)
        return property, date_range, build_quote(property, date_range, package_type, self.default_base_rate)

    async def request_quote(
        self,
        user: User,
        property_ref: str,
        from_date,
        to_date,
        package_type: Optional[str] = None,
        guests: Optional[List[UUID]] = None,
        title: Optional[str] = None,
        customer_id: Optional[UUID] = None
    ) -> Estimate:
        """Create or refresh the estimate for a property, customer and stay"""
        access.require(user, Permission.CREATE_ESTIMATE)

        # Only staff may quote on behalf of another customer
        owner_id = user.user_id
        if customer_id and customer_id != user.user_id:
            access.require(user, Permission.MANAGE_BOOKINGS)
            owner_id = customer_id

        property, date_range, quote = await self.quote(property_ref, from_date, to_date, package_type)

        availability = await self.availability_service.check_range(property.property_id, date_range)
        if not availability.is_available:
            logger.info(
                "Quote refused for property %s %s..%s: dates taken",
                property.property_id, date_range.from_date, date_range.to_date
            )
            raise ConflictError("Selected dates are not available")

        existing = await self.repository.find_by_key(property.property_id, owner_id, date_range)
        if existing:
            # Raises ConflictError when already paid
            existing.reprice(quote, guests)
            if title:
                existing.title = title
            return await self.repository.upsert_by_property_customer_dates(existing)

        estimate = Estimate.create(
            property=property,
            customer_id=owner_id,
            date_range=date_range,
            quote=quote,
            guests=guests,
            title=title
        )
        estimate.set_token(self.token_factory(owner_id, estimate_id=estimate.estimate_id))
        estimate = await self.repository.upsert_by_property_customer_dates(estimate)
        logger.info(
            "Estimate %s created for property %s: %s nights, total %s",
            estimate.estimate_id, property.property_id, quote.nights, quote.total
        )
        return estimate

    async def get_estimate(self, user: User, estimate_id: UUID) -> Estimate:
        """Get estimate by ID"""
        estimate = await self._find(estimate_id)
        if not access.can_read_estimate(user, estimate):
            raise PermissionDeniedError("Not allowed to view this estimate")
        return estimate

    async def list_estimates(self, user: User) -> List[Estimate]:
        """Get estimates visible to the user"""
        if access.can_manage_bookings(user):
            return await self.repository.find_all()
        return await self.repository.find_involving(user.user_id)

    async def delete_estimates(
        self,
        user: User,
        estimate_ids: Sequence[UUID]
    ) -> Tuple[List[UUID], List[Dict[str, str]]]:
        """Delete estimates one by one, collecting per-id failures"""
        deleted: List[UUID] = []
        errors: List[Dict[str, str]] = []
        for estimate_id in estimate_ids:
            estimate = await self.repository.find_by_id(estimate_id)
            if not estimate:
                errors.append({"id": str(estimate_id), "error": "Estimate not found"})
                continue
            if not access.can_modify_estimate(user, estimate):
                errors.append({"id": str(estimate_id), "error": "Not allowed to delete this estimate"})
                continue
            if estimate.is_paid:
                errors.append({"id": str(estimate_id), "error": "Estimate is paid and cannot be deleted"})
                continue
            if await self.repository.delete(estimate_id):
                deleted.append(estimate_id)
        return deleted, errors

    async def issue_token(self, user: User, estimate_id: UUID) -> str:
        """Return the estimate's invite token, creating one when missing"""
        estimate = await self._find(estimate_id)
        if estimate.customer_id != user.user_id:
            raise PermissionDeniedError("Only the estimate owner can share it")
        if not estimate.token:
            estimate.set_token(self.token_factory(estimate.customer_id, estimate_id=estimate.estimate_id))
            await self.repository.update(estimate)
        return estimate.token

    async def accept_invite(self, user: User, estimate_id: UUID, token: str) -> Estimate:
        """Join an estimate as guest using its invite token"""
        estimate = await self._find(estimate_id)
        if not token or estimate.token != token:
            raise ValidationError("Invalid invite token")
        if estimate.is_paid:
            raise ConflictError("Estimate is paid; join through the booking invite instead")
        if estimate.add_guest(user.user_id):
            await self.repository.update(estimate)
        return estimate

    async def _find(self, estimate_id: UUID) -> Estimate:
        estimate = await self.repository.find_by_id(estimate_id)
        if not estimate:
            raise NotFoundError(f"Estimate {estimate_id} not found")
        return estimate


class BookingConfirmationService:
    """Promotes a paid estimate into a booking without double-booking"""

    def __init__(
        self,
        estimate_repo: EstimateRepository,
        booking_repo: BookingRepository,
        availability_service: AvailabilityService,
        payment_verifier: PaymentVerifier,
        token_factory: TokenFactory,
        payment_window: timedelta = timedelta(hours=24),
        max_retries: int = 1
    ):
        self.estimate_repo = estimate_repo
        self.booking_repo = booking_repo
        self.availability_service = availability_service
        self.payment_verifier = payment_verifier
        self.token_factory = token_factory
        self.payment_window = payment_window
        self.max_retries = max_retries

    async def confirm_estimate(
        self,
        user: User,
        estimate_id: UUID,
        payment_reference: Optional[str] = None
    ) -> Booking:
        """
        Confirm an estimate once billing has a purchase on record.

        Re-running after a storage failure resumes at the booking insert;
        confirming an estimate that already produced a booking returns it.
        """
        access.require(user, Permission.CREATE_BOOKING)
        estimate = await self.estimate_repo.find_by_id(estimate_id)
        if not estimate:
            raise NotFoundError(f"Estimate {estimate_id} not found")
        if not access.is_owner_or_admin(user, estimate.customer_id):
            raise PermissionDeniedError("Only the estimate owner can confirm it")

        if estimate.is_paid:
            existing = await self.booking_repo.find_by_estimate_id(estimate.estimate_id)
            if existing:
                await self._record_booking(estimate, existing)
                return existing
            if estimate.is_converted:
                # The booking existed and was deleted since; payment is not re-checked here
                logger.warning(
                    "Estimate %s was booked as %s, which no longer exists; refusing to rebook",
                    estimate.estimate_id, estimate.booking_id
                )
                raise ConflictError("The booking for this estimate was cancelled; request a new estimate")
            logger.warning(
                "Estimate %s is paid but has no booking; resuming booking creation",
                estimate.estimate_id
            )
            return await self._insert_booking(estimate)

        availability = await self.availability_service.check_range(estimate.property_id, estimate.date_range)
        if not availability.is_available:
            logger.info(
                "Confirmation of estimate %s refused: property %s taken %s..%s",
                estimate.estimate_id, estimate.property_id,
                estimate.date_range.from_date, estimate.date_range.to_date
            )
            raise ConflictError("Selected dates are no longer available")

        await self._verify_payment(estimate.customer_id, payment_reference)

        # A concurrent confirmation of the same estimate may have marked it already
        current = await self.estimate_repo.find_by_id(estimate.estimate_id)
        if current is None:
            raise NotFoundError(f"Estimate {estimate_id} not found")
        if not current.is_paid:
            current = await self.estimate_repo.mark_paid(current.estimate_id)

        return await self._insert_booking(current)

    async def _verify_payment(self, customer_id: UUID, payment_reference: Optional[str]) -> None:
        async def has_paid() -> bool:
            if await self.payment_verifier.has_recent_non_refunded_transaction(customer_id, self.payment_window):
                return True
            return await self.payment_verifier.has_active_entitlement(customer_id)

        if await call_billing(has_paid, customer_id, self.max_retries):
            return

        logger.info(
            "No qualifying purchase for customer %s (reference %s)",
            customer_id, payment_reference or "-"
        )
        raise PaymentVerificationError("No completed payment found for this estimate")

    async def _insert_booking(self, estimate: Estimate) -> Booking:
        booking = Booking.from_estimate(estimate)
        booking.set_token(self.token_factory(
            estimate.customer_id, estimate_id=estimate.estimate_id, booking_id=booking.booking_id
        ))
        try:
            stored = await self.booking_repo.insert_if_available(booking)
        except ConflictError:
            logger.warning(
                "Lost booking race for property %s %s..%s (estimate %s)",
                estimate.property_id, estimate.date_range.from_date,
                estimate.date_range.to_date, estimate.estimate_id
            )
            raise
        except PlekError:
            raise
        except Exception as e:
            logger.exception(
                "Failed to store booking for property %s %s..%s, customer %s",
                estimate.property_id, estimate.date_range.from_date,
                estimate.date_range.to_date, estimate.customer_id
            )
            raise InternalError("Booking could not be saved") from e

        if stored.booking_id == booking.booking_id:
            logger.info("Booking %s created from estimate %s", stored.booking_id, estimate.estimate_id)
        await self._record_booking(estimate, stored)
        return stored

    async def _record_booking(self, estimate: Estimate, booking: Booking) -> None:
        if estimate.booking_id == booking.booking_id:
            return
        estimate.record_booking(booking.booking_id)
        try:
            await self.estimate_repo.update(estimate)
        except PlekError:
            raise
        except Exception as e:
            # The booking is stored; a retry finds it by estimate id and records it again
            logger.exception(
                "Failed to link estimate %s to booking %s", estimate.estimate_id, booking.booking_id
            )
            raise InternalError("Booking could not be saved") from e


class BookingService:
    """Service for Booking business use cases"""

    def __init__(
        self,
        repository: BookingRepository,
        property_service: PropertyService,
        token_factory: TokenFactory,
        token_reader: TokenReader
    ):
        self.repository = repository
        self.property_service = property_service
        self.token_factory = token_factory
        self.token_reader = token_reader

    async def create_booking(
        self,
        user: User,
        property_ref: str,
        from_date,
        to_date,
        customer_id: Optional[UUID] = None,
        guests: Optional[List[UUID]] = None,
        package_type: Optional[str] = None
    ) -> Booking:
        """Enter a booking directly, bypassing the estimate flow"""
        access.require(user, Permission.MANAGE_BOOKINGS)
        date_range = DateRange.of(from_date, to_date)
        property = await self.property_service.get(property_ref)

        owner_id = customer_id or user.user_id
        booking = Booking.create_direct(
            property=property,
            customer_id=owner_id,
            date_range=date_range,
            guests=guests,
            package_type=package_type,
            created_by=user.username
        )
        booking.set_token(self.token_factory(owner_id, booking_id=booking.booking_id))
        return await self.repository.insert_if_available(booking)

    async def get_booking(self, user: User, booking_id: UUID) -> Booking:
        """Get booking by ID"""
        booking = await self._find(booking_id)
        if not access.can_read_booking(user, booking):
            raise PermissionDeniedError("Not allowed to view this booking")
        return booking

    async def list_bookings(self, user: User) -> List[Booking]:
        """Get bookings visible to the user"""
        if access.can_manage_bookings(user):
            return await self.repository.find_all()
        return await self.repository.find_involving(user.user_id)

    async def list_property_bookings(self, property_ref: str) -> List[DateRange]:
        """Booked ranges of a property, without customer details"""
        property = await self.property_service.get(property_ref)
        bookings = await self.repository.find_by_property(property.property_id)
        return sorted((b.date_range for b in bookings), key=lambda r: r.from_date)

    async def delete_booking(self, user: User, booking_id: UUID) -> bool:
        """Delete booking"""
        booking = await self._find(booking_id)
        if not access.can_delete_booking(user, booking):
            raise PermissionDeniedError("Not allowed to delete this booking")
        deleted = await self.repository.delete(booking_id)
        if deleted:
            logger.info("Booking %s deleted by %s", booking_id, user.username)
        return deleted

    async def issue_token(self, user: User, booking_id: UUID) -> str:
        """Return the booking's invite token, creating one when missing"""
        booking = await self._find_owned(user, booking_id)
        if not booking.token:
            booking.set_token(self._new_token(booking))
            await self.repository.update(booking)
        return booking.token

    async def refresh_token(self, user: User, booking_id: UUID) -> str:
        """Replace the invite token; the previous one stops working"""
        booking = await self._find_owned(user, booking_id)
        booking.set_token(self._new_token(booking))
        await self.repository.update(booking)
        return booking.token

    async def accept_invite(self, user: User, booking_id: UUID, token: str) -> Booking:
        """Join a booking as guest using its invite token"""
        booking = await self._find(booking_id)
        if not token or booking.token != token:
            raise ValidationError("Invalid invite token")
        if booking.add_guest(user.user_id):
            await self.repository.update(booking)
        return booking

    async def remove_guest(self, user: User, booking_id: UUID, guest_id: UUID) -> Booking:
        """Remove an invited guest from a booking"""
        booking = await self._find_owned(user, booking_id)
        if not booking.remove_guest(guest_id):
            raise NotFoundError(f"User {guest_id} is not a guest of this booking")
        return await self.repository.update(booking)

    def read_token(self, token: str) -> dict:
        """Decode an invite token into its claims"""
        try:
            claims = self.token_reader(token)
        except ValueError as e:
            raise ValidationError(str(e)) from None
        # Login tokens are signed with the same key but are not invites
        if not claims.get("bookingId") and not claims.get("estimateId"):
            raise ValidationError("Not an invite token")
        return claims

    def _new_token(self, booking: Booking) -> str:
        return self.token_factory(
            booking.customer_id, estimate_id=booking.estimate_id, booking_id=booking.booking_id
        )

    async def _find(self, booking_id: UUID) -> Booking:
        booking = await self.repository.find_by_id(booking_id)
        if not booking:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    async def _find_owned(self, user: User, booking_id: UUID) -> Booking:
        booking = await self._find(booking_id)
        if booking.customer_id != user.user_id:
            raise PermissionDeniedError("Only the booking owner can manage invitations")
        return booking


class SubscriptionService:
    """Keeps user roles in line with their billing entitlements"""

    def __init__(
        self,
        user_repo: UserRepository,
        payment_verifier: PaymentVerifier,
        host_product_markers: Sequence[str] = ("six_month", "professional"),
        max_retries: int = 1
    ):
        self.user_repo = user_repo
        self.payment_verifier = payment_verifier
        self.host_product_markers = tuple(host_product_markers)
        self.max_retries = max_retries

    def target_role(self, product_ids: Sequence[str]) -> Role:
        """Host for professional products, customer for everything else"""
        for product_id in product_ids:
            if any(marker in product_id for marker in self.host_product_markers):
                return Role.HOST
        return Role.CUSTOMER

    async def upgrade_role(self, user: User) -> Tuple[UserInDB, bool]:
        """Grant the role matching the user's active subscription"""
        stored = await self.user_repo.find_by_id(user.user_id)
        if not stored:
            raise NotFoundError("User not found")

        products = await call_billing(
            partial(self.payment_verifier.active_product_ids, user.user_id),
            user.user_id, self.max_retries
        )
        if not products:
            raise PaymentVerificationError("No active subscription found")

        target = self.target_role(products)
        roles, changed = access.upgraded_roles(stored.roles, target)
        if not changed:
            return stored, False

        stored.roles = roles
        updated = await self.user_repo.update(stored)
        logger.info(
            "User %s upgraded to %s",
            stored.username, ", ".join(role.value for role in roles)
        )
        return updated, True

    async def downgrade_lapsed(self, admin: User) -> Tuple[List[str], List[Dict[str, str]]]:
        """Demote customers and hosts whose entitlements have lapsed"""
        access.require(admin, Permission.MANAGE_ROLES)

        downgraded: List[str] = []
        errors: List[Dict[str, str]] = []
        for member in await self.user_repo.find_by_roles([Role.CUSTOMER, Role.HOST]):
            if member.is_admin:
                continue
            try:
                entitled = await call_billing(
                    partial(self.payment_verifier.has_active_entitlement, member.user_id),
                    member.user_id, self.max_retries
                )
                if entitled:
                    continue
            except PlekError as e:
                logger.warning("Skipping downgrade check for %s: %s", member.username, e)
                errors.append({"user": member.username, "error": str(e)})
                continue

            member.roles = access.downgraded_roles(member.roles)
            await self.user_repo.update(member)
            downgraded.append(member.username)

        logger.info("Downgraded %d lapsed users (%d errors)", len(downgraded), len(errors))
        return downgraded, errors


class UserService:
    """Registration of new accounts"""

    def __init__(self, repository: UserRepository, password_hasher: Callable[[str], str]):
        self.repository = repository
        self.password_hasher = password_hasher

    async def register(
        self,
        username: str,
        password: str,
        email: Optional[str] = None,
        full_name: Optional[str] = None
    ) -> UserInDB:
        """Create a guest account; paid roles come from subscriptions"""
        if not username or not username.strip():
            raise ValidationError("username is required")
        if not password or len(password) < 8:
            raise ValidationError("password must be at least 8 characters")

        user = UserInDB(
            username=username.strip(),
            email=email,
            full_name=full_name,
            roles=[Role.GUEST],
            hashed_password=self.password_hasher(password)
        )
        return await self.repository.save(user)
