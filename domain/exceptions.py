"""Domain Errors"""


class PlekError(Exception):
    """Base class for errors raised by the booking core"""


class ValidationError(PlekError, ValueError):
    """Malformed input: bad dates, empty range, missing property reference"""


class NotFoundError(PlekError):
    """Unknown property, estimate, booking or user"""


class ConflictError(PlekError):
    """Requested dates are taken, or the record can no longer change"""


class PaymentVerificationError(PlekError):
    """Billing could not confirm a purchase for the customer"""


class PermissionDeniedError(PlekError):
    """Caller's roles do not allow the operation"""


class InternalError(PlekError):
    """Storage failure; details are logged, callers get a generic message"""


class BillingUnavailableError(PlekError):
    """Transient billing failure (network error, timeout, 5xx); safe to retry"""
