"""Domain access rules - one explicit check per operation"""
from typing import List, Tuple

from domain.auth import User
from domain.entities import Booking, Estimate, Property
from domain.enums import Permission, Role
from domain.exceptions import PermissionDeniedError


_PERMISSION_ROLES = {
    Permission.CREATE_ESTIMATE: (Role.CUSTOMER, Role.HOST, Role.ADMIN),
    Permission.CREATE_BOOKING: (Role.CUSTOMER, Role.HOST, Role.ADMIN),
    Permission.MANAGE_BOOKINGS: (Role.HOST, Role.ADMIN),
    Permission.MANAGE_PROPERTIES: (Role.HOST, Role.ADMIN),
    Permission.MANAGE_ROLES: (Role.ADMIN,),
}


def has_permission(user: User, permission: Permission) -> bool:
    return user.has_role(*_PERMISSION_ROLES[permission])


def require(user: User, permission: Permission) -> None:
    """Raise PermissionDeniedError unless the user holds the permission"""
    if not has_permission(user, permission):
        raise PermissionDeniedError(
            f"User '{user.username}' is not allowed to {permission.value.lower().replace('_', ' ')}"
        )


def can_create_estimate(user: User) -> bool:
    return has_permission(user, Permission.CREATE_ESTIMATE)


def can_create_booking(user: User) -> bool:
    return has_permission(user, Permission.CREATE_BOOKING)


def can_manage_bookings(user: User) -> bool:
    return has_permission(user, Permission.MANAGE_BOOKINGS)


def can_manage_properties(user: User) -> bool:
    return has_permission(user, Permission.MANAGE_PROPERTIES)


def can_edit_property(user: User, property: Property) -> bool:
    """Admins, or the host who owns the listing"""
    if user.is_admin:
        return True
    return can_manage_properties(user) and property.host_id == user.user_id


def can_read_booking(user: User, booking: Booking) -> bool:
    if can_manage_bookings(user):
        return True
    return booking.involves(user.user_id)


def can_delete_booking(user: User, booking: Booking) -> bool:
    if can_manage_bookings(user):
        return True
    return user.has_role(Role.CUSTOMER) and booking.customer_id == user.user_id


def can_read_estimate(user: User, estimate: Estimate) -> bool:
    if can_manage_bookings(user):
        return True
    return estimate.involves(user.user_id)


def can_modify_estimate(user: User, estimate: Estimate) -> bool:
    """Hosts/admins, or the owning customer; invited guests only read"""
    if can_manage_bookings(user):
        return True
    return user.has_role(Role.CUSTOMER) and estimate.customer_id == user.user_id


def is_owner_or_admin(user: User, customer_id) -> bool:
    return user.is_admin or user.user_id == customer_id


# ============================================================================
# ROLE TRANSITIONS
# ============================================================================

def upgraded_roles(current: List[Role], target: Role) -> Tuple[List[Role], bool]:
    """Roles after a subscription upgrade, and whether anything changed"""
    if target == Role.CUSTOMER and (Role.CUSTOMER in current or Role.HOST in current):
        return list(current), False
    if target == Role.HOST and Role.HOST in current:
        return list(current), False

    roles = [role for role in current if role != Role.GUEST]
    if target not in roles:
        roles.append(target)
    if target == Role.HOST and Role.CUSTOMER not in roles:
        roles.append(Role.CUSTOMER)
    return roles, True


def downgraded_roles(current: List[Role]) -> List[Role]:
    """Roles after a subscription lapses: paid roles go, guest remains"""
    roles = [role for role in current if role not in (Role.CUSTOMER, Role.HOST)]
    if Role.GUEST not in roles:
        roles.append(Role.GUEST)
    return roles
