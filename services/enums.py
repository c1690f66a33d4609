"""
Service layer enums
These enums are used by services and models alike and define the closed
value sets stored in string columns.
"""

from enum import Enum


class PageType(str, Enum):
    """The four fixed journey pages, in journey order"""
    ACTIVATION = 'activation'
    AGREEMENT = 'agreement'
    CONFIRMATION = 'confirmation'
    PROCESSING = 'processing'


class ClientStatus(str, Enum):
    """Soft lifecycle status of a client"""
    PENDING = 'pending'
    ACTIVATED = 'activated'
    ARCHIVED = 'archived'


class JourneyOutcome(str, Enum):
    """Realized result of a client's journey"""
    PENDING = 'pending'
    PAID = 'paid'
    GHOSTED = 'ghosted'
    RESPONDED = 'responded'

    @property
    def is_terminal(self) -> bool:
        return self is not JourneyOutcome.PENDING


class VersionOutcome(str, Enum):
    """Outcome label of a content version"""
    PENDING = 'pending'
    SUCCESS = 'success'
    FAILURE = 'failure'


class PaymentStatus(str, Enum):
    """Normalized payment event status"""
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'
    PENDING = 'pending'
    REFUNDED = 'refunded'


class CorrelationOutcome(str, Enum):
    """Outcome type recorded on a payment outcome correlation"""
    PAID = 'paid'
    FAILED = 'failed'
    REFUNDED = 'refunded'
    PENDING = 'pending'

    @classmethod
    def from_payment_status(cls, status: str) -> 'CorrelationOutcome':
        """Map a payment status to its outcome; anything unrecognized is pending"""
        return {
            PaymentStatus.SUCCEEDED.value: cls.PAID,
            PaymentStatus.FAILED.value: cls.FAILED,
            PaymentStatus.REFUNDED.value: cls.REFUNDED,
        }.get(status, cls.PENDING)


class CorrelationFlag(str, Enum):
    """Data quality flags attached to a correlation"""
    NEGATIVE_DURATION = 'negative_duration'
    EXCEEDS_MAX_WINDOW = 'exceeds_max_window'
    MISSING_SNAPSHOT = 'missing_snapshot'
    FALLBACK_SNAPSHOT = 'fallback_snapshot'


def enum_values(enum_class) -> list:
    """List the raw values of an enum, in declaration order"""
    return [member.value for member in enum_class]
