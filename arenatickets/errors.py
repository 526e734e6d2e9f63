"""Error taxonomy for ticket issuance and the dashboards.

Errors raised before a ticket is persisted abort the request. Errors after
persistence are logged and reported, never rolled back.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCode(Enum):
    """Machine-readable error codes, also used as result reasons."""

    VALIDATION = "validation"
    PAYMENT_NOT_CONFIRMED = "payment-not-confirmed"
    CODE_EXHAUSTION = "code-exhaustion"
    DUPLICATE_CODE = "duplicate-code"
    DUPLICATE_PAYMENT_REFERENCE = "duplicate-payment-reference"
    DOCUMENT_RENDER_FAILURE = "document-render-failure"
    NOTIFICATION_DELIVERY_FAILURE = "notification-delivery-failure"
    AUTHENTICATION = "authentication"
    NOT_CONFIGURED = "not-configured"


@dataclass(eq=False)
class TicketingError(Exception):
    """Base error with code and user-safe message."""

    code: ErrorCode
    message: str

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class ValidationError(TicketingError):
    """Raised when an external payload fails schema validation."""

    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.VALIDATION, message=message)


class PaymentNotConfirmed(TicketingError):
    """Raised when the gateway does not confirm a completed payment."""

    def __init__(
        self, reference: str, reason: str = "Payment not completed"
    ) -> None:
        super().__init__(code=ErrorCode.PAYMENT_NOT_CONFIRMED, message=reason)
        self.reference = reference


class CodeExhaustion(TicketingError):
    """Raised when no unique ticket code was found within the retry cap."""

    def __init__(self, attempts: int) -> None:
        super().__init__(
            code=ErrorCode.CODE_EXHAUSTION,
            message=f"No unique ticket code after {attempts} attempts",
        )
        self.attempts = attempts


class DuplicateCodeError(TicketingError):
    """Raised by the ledger when a ticket code already exists."""

    def __init__(self, ticket_code: str) -> None:
        super().__init__(
            code=ErrorCode.DUPLICATE_CODE,
            message="Ticket code already exists",
        )
        self.ticket_code = ticket_code


class DuplicatePaymentReference(TicketingError):
    """Raised by the ledger when a payment reference already has a ticket."""

    def __init__(self, reference: str) -> None:
        super().__init__(
            code=ErrorCode.DUPLICATE_PAYMENT_REFERENCE,
            message="Payment reference already has a ticket",
        )
        self.reference = reference


class DocumentRenderFailure(TicketingError):
    """Raised when the ticket PDF cannot be produced."""

    def __init__(self, ticket_code: str, reason: str) -> None:
        super().__init__(
            code=ErrorCode.DOCUMENT_RENDER_FAILURE, message=reason
        )
        self.ticket_code = ticket_code


class NotificationDeliveryFailure(TicketingError):
    """Describes a failed mail hand-off. Carried in results, not raised."""

    def __init__(self, reason: str) -> None:
        super().__init__(
            code=ErrorCode.NOTIFICATION_DELIVERY_FAILURE, message=reason
        )


class AuthenticationError(TicketingError):
    """Raised for a bad passcode or an invalid or expired session token."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(code=ErrorCode.AUTHENTICATION, message=message)


class NotConfiguredError(TicketingError):
    """Raised when a dashboard passcode has not been configured."""

    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.NOT_CONFIGURED, message=message)
