from __future__ import annotations


class ServiceError(Exception):
    """Base for errors raised by the services layer.

    Routers translate these into ``HTTPException`` using ``status_code`` and
    ``code``; ``code`` ends up as the response ``detail``.
    """

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str | None = None, code: str | None = None):
        if code is not None:
            self.code = code
        super().__init__(message or self.code)


class ValidationError(ServiceError):
    status_code = 400
    code = "invalid_request"


class AuthenticationError(ServiceError):
    status_code = 403
    code = "invalid_telegram_data"


class NotFound(ServiceError):
    status_code = 404
    code = "not_found"


class UserNotFound(NotFound):
    code = "user_not_found"


class TransactionNotFound(NotFound):
    code = "transaction_not_found"


class AlreadyProcessed(ServiceError):
    status_code = 400

    def __init__(self, current_status: str):
        self.current_status = current_status
        super().__init__(
            f"Transaction already {current_status}",
            code=f"transaction_already_{current_status}",
        )


class PendingTransactionExists(ValidationError):
    code = "pending_transaction_exists"


class ConcurrencyExhausted(ServiceError):
    status_code = 500
    code = "concurrency_retries_exhausted"


class DownstreamUnavailable(ServiceError):
    status_code = 502
    code = "downstream_unavailable"
