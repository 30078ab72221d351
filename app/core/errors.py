"""Domain errors raised by the ledger, admission, and job services.

Each carries the HTTP status it maps to; ``app.main`` installs a single
handler that renders them, so service code never imports FastAPI.
"""


class LedgerError(Exception):
    status_code: int = 500
    code: str = "ledger_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class Forbidden(LedgerError):
    """Caller has no active membership on the tenant."""

    status_code = 403
    code = "forbidden"


class InvalidJobKind(LedgerError):
    status_code = 422
    code = "invalid_job_kind"


class InsufficientCredits(LedgerError):
    """Balance is below the job cost."""

    status_code = 402
    code = "insufficient_credits"


class StorageError(LedgerError):
    """A transaction failed and was rolled back. Safe to retry."""

    status_code = 503
    code = "storage_error"


class JobNotFound(LedgerError):
    status_code = 404
    code = "job_not_found"


class ProviderError(LedgerError):
    """Generation provider failed. Terminal for the job; triggers a refund."""

    status_code = 502
    code = "provider_error"


class AccountNotFound(LedgerError):
    status_code = 404
    code = "account_not_found"
