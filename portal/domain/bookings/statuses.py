"""
Booking taxonomy - status, payment and module enums shared across the portal.

Statuses are persisted lowercase (``pending_payment``) and exposed uppercase
(``PENDING_PAYMENT``) to clients and the automation hub.
"""

from enum import Enum


class BookingStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    PENDING_PAYMENT = "pending_payment"
    PENDING_ADMIN = "pending_admin"
    APPROVED = "approved"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELED = "canceled"
    DECLINED = "declined"
    PAYMENT_FAILED = "payment_failed"

    @property
    def client_value(self) -> str:
        """Uppercase form used at the client-facing boundary"""
        return self.value.upper()

    @property
    def label(self) -> str:
        return STATUS_LABELS[self]

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @classmethod
    def parse(cls, value) -> "BookingStatus":
        """Accept either the stored or the client form. Raises ValueError otherwise."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Invalid booking status: {value!r}")
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Invalid booking status: {value}") from None


TERMINAL_STATUSES = frozenset(
    {BookingStatus.COMPLETED, BookingStatus.CANCELED, BookingStatus.DECLINED}
)

STATUS_LABELS = {
    BookingStatus.DRAFT: "Draft",
    BookingStatus.PENDING: "Pending",
    BookingStatus.PENDING_PAYMENT: "Awaiting Payment",
    BookingStatus.PENDING_ADMIN: "Pending Admin Review",
    BookingStatus.APPROVED: "Approved",
    BookingStatus.IN_PROGRESS: "In Progress",
    BookingStatus.COMPLETED: "Completed",
    BookingStatus.CANCELED: "Canceled",
    BookingStatus.DECLINED: "Declined",
    BookingStatus.PAYMENT_FAILED: "Payment Failed",
}


class PaymentProvider(str, Enum):
    NONE = "none"
    WHOP = "whop"
    STRIPE = "stripe"
    MANUAL = "manual"

    @property
    def requires_online_payment(self) -> bool:
        return self in (PaymentProvider.WHOP, PaymentProvider.STRIPE)


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class TriggeredBy(str, Enum):
    USER = "user"
    WEBHOOK = "webhook"
    ADMIN = "admin"
    SYSTEM = "system"


class ModuleId(str, Enum):
    CLIENT_DELIVERY = "client-delivery"
    MARKETING_AUTOMATION = "marketing-automation"
    AI_OPTIMIZATION = "ai-optimization"
    DATA_INTELLIGENCE = "data-intelligence"


class ServiceCategory(str, Enum):
    ARTIST = "artist"
    CONSULTING = "consulting"
    STRATEGY = "strategy"
    PRODUCTION = "production"
    SMB = "smb"
    OTHER = "other"


# Which portal module a service category is delivered through
SERVICE_CATEGORY_MODULES = {
    ServiceCategory.ARTIST: ModuleId.CLIENT_DELIVERY,
    ServiceCategory.PRODUCTION: ModuleId.CLIENT_DELIVERY,
    ServiceCategory.CONSULTING: ModuleId.AI_OPTIMIZATION,
    ServiceCategory.STRATEGY: ModuleId.MARKETING_AUTOMATION,
    ServiceCategory.SMB: ModuleId.DATA_INTELLIGENCE,
    ServiceCategory.OTHER: ModuleId.CLIENT_DELIVERY,
}

_unmapped = set(ServiceCategory) - set(SERVICE_CATEGORY_MODULES)
assert not _unmapped, f"Service categories without a module: {sorted(c.value for c in _unmapped)}"
assert set(STATUS_LABELS) == set(BookingStatus), "Every booking status needs a label"


def module_for_category(category: ServiceCategory) -> ModuleId:
    return SERVICE_CATEGORY_MODULES[ServiceCategory(category)]
