"""Error taxonomy for the lending core.

Every failure a core operation can report is a ``LedgerError`` subclass.  The
``kind`` string is what the HTTP layer hands to clients so they can pick their
own wording; ``retryable`` is only true for transient store failures.
"""


class LedgerError(Exception):
    kind = "ledger_error"
    status_code = 400
    retryable = False

    def __init__(self, detail: str = None):
        self.detail = detail or self.__class__.__doc__ or self.kind
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {"detail": self.detail, "kind": self.kind, "retryable": self.retryable}


class NotFound(LedgerError):
    """Requested book, user or loan does not exist."""
    kind = "not_found"
    status_code = 404


class OutOfStock(LedgerError):
    """No copies of this book are available."""
    kind = "out_of_stock"
    status_code = 409


class InvalidRole(LedgerError):
    """User does not have the role this operation requires."""
    kind = "invalid_role"
    status_code = 403


class DuplicateRoleAssignment(InvalidRole):
    """User already has a role assigned."""
    status_code = 409


class InvalidRange(LedgerError):
    """Value is outside the allowed range."""
    kind = "invalid_range"
    status_code = 422


class AlreadyReturned(LedgerError):
    """Loan has already been returned."""
    kind = "already_returned"
    status_code = 409


class DuplicateLoan(LedgerError):
    """Student already holds an issued copy of this book."""
    kind = "duplicate_loan"
    status_code = 409


class BookHasActiveLoans(LedgerError):
    """Book still has issued copies outstanding."""
    kind = "active_loans"
    status_code = 409


class AccountExists(LedgerError):
    """An account with this email already exists."""
    kind = "account_exists"
    status_code = 409


class IdempotencyConflict(LedgerError):
    """Idempotency key was already used for a different request."""
    kind = "idempotency_conflict"
    status_code = 409


class StoreUnavailable(LedgerError):
    """The database could not complete the transaction."""
    kind = "store_unavailable"
    status_code = 503
    retryable = True
