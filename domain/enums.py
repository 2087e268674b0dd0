"""Domain Enums"""
from enum import Enum


class Role(str, Enum):
    GUEST = "guest"
    CUSTOMER = "customer"
    HOST = "host"
    ADMIN = "admin"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"


class PackageCategory(str, Enum):
    STANDARD = "standard"
    LUXURY = "luxury"
    HOSTED = "hosted"
    SPECIALTY = "specialty"


class Permission(str, Enum):
    CREATE_ESTIMATE = "CREATE_ESTIMATE"
    CREATE_BOOKING = "CREATE_BOOKING"
    MANAGE_BOOKINGS = "MANAGE_BOOKINGS"
    MANAGE_PROPERTIES = "MANAGE_PROPERTIES"
    MANAGE_ROLES = "MANAGE_ROLES"
