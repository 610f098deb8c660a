import enum


class ErrorKind(enum.Enum):
    """Closed set of error kinds surfaced by the service: (HTTP status, public message)."""

    VALIDATION = (400, "Invalid request")
    UNAUTHENTICATED = (401, "Authentication required")
    PAYMENT_DECLINED = (402, "Payment was declined")
    FORBIDDEN = (403, "Access denied: insufficient permissions")
    NOT_FOUND = (404, "Resource not found")
    TRANSACTION_NOT_FOUND = (404, "Transaction not found")
    ALREADY_ENROLLED = (409, "User is already enrolled in this course")
    PAYMENT_PENDING = (409, "A payment for this course is already pending")
    ALREADY_REFUNDED = (409, "Transaction already refunded")
    EDUCATOR_ACCOUNT_NOT_FOUND = (400, "Educator account not found")
    GATEWAY_UNAVAILABLE = (503, "Payment gateway unavailable")
    INTERNAL = (500, "Something went wrong")

    @property
    def status_code(self) -> int:
        return self.value[0]

    @property
    def default_message(self) -> str:
        return self.value[1]


class AppError(Exception):
    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str | None = None, kind: ErrorKind | None = None):
        if kind is not None:
            self.kind = kind
        self.message = message or self.kind.default_message
        self.status_code = self.kind.status_code
        super().__init__(self.message)


class ValidationError(AppError):
    kind = ErrorKind.VALIDATION


class UnauthenticatedError(AppError):
    kind = ErrorKind.UNAUTHENTICATED


class PaymentDeclinedError(AppError):
    kind = ErrorKind.PAYMENT_DECLINED


class ForbiddenError(AppError):
    kind = ErrorKind.FORBIDDEN


class NotFoundError(AppError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, id: str):
        super().__init__(f"{entity} not found: {id}")


class TransactionNotFoundError(AppError):
    kind = ErrorKind.TRANSACTION_NOT_FOUND


class AlreadyEnrolledError(AppError):
    kind = ErrorKind.ALREADY_ENROLLED


class PaymentPendingError(AppError):
    kind = ErrorKind.PAYMENT_PENDING


class AlreadyRefundedError(AppError):
    kind = ErrorKind.ALREADY_REFUNDED


class EducatorAccountNotFoundError(AppError):
    kind = ErrorKind.EDUCATOR_ACCOUNT_NOT_FOUND


class GatewayUnavailableError(AppError):
    kind = ErrorKind.GATEWAY_UNAVAILABLE


class InternalError(AppError):
    kind = ErrorKind.INTERNAL
