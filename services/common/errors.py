"""
Domain error taxonomy.

Services raise these internally and convert them into Result failures at
their public boundary; the stable ``code`` survives the conversion so routes
can map it to an HTTP status.
"""

from typing import Any, Dict


class RevenueEngineError(Exception):
    """Base class for all domain errors"""

    code = 'INTERNAL_ERROR'

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def __str__(self) -> str:
        return self.message


class ValidationError(RevenueEngineError):
    """Caller-supplied data violates a business rule"""
    code = 'VALIDATION_ERROR'


class InvalidSignature(RevenueEngineError):
    """Webhook authenticity check failed"""
    code = 'INVALID_SIGNATURE'


class MalformedPayload(RevenueEngineError):
    """Webhook body could not be parsed into a provider event"""
    code = 'MALFORMED_PAYLOAD'


class NotFoundError(RevenueEngineError):
    """Referenced entity does not exist"""
    code = 'NOT_FOUND'


class ConflictError(RevenueEngineError):
    """A uniqueness constraint was violated by a concurrent writer"""
    code = 'CONFLICT'


class DegradedDependencyError(RevenueEngineError):
    """A non-critical dependency failed; callers fall back to a minimal result"""
    code = 'DEGRADED_DEPENDENCY'


class PaymentProviderError(RevenueEngineError):
    """The payment provider rejected or failed a request"""
    code = 'PAYMENT_PROVIDER_ERROR'


class PaymentNotConfiguredError(PaymentProviderError):
    """Payment provider credentials are missing"""
    code = 'PAYMENT_NOT_CONFIGURED'
