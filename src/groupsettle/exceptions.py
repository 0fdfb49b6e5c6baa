"""Custom exceptions for groupsettle."""


class GroupSettleError(Exception):
    """Base exception for all groupsettle errors."""

    pass


class ConfigurationError(GroupSettleError):
    """Raised when configuration is invalid or missing."""

    pass


class ValidationError(GroupSettleError):
    """Raised when expense or split input is rejected before any mutation."""

    pass


class InternalInvariantError(GroupSettleError):
    """Raised when ledger totals disagree and a settlement plan cannot be trusted."""

    def __init__(self, message: str, credit_total=None, debit_total=None):
        self.credit_total = credit_total
        self.debit_total = debit_total
        super().__init__(message)


class NotFoundError(GroupSettleError):
    """Raised when a group, expense or settlement does not exist."""

    def __init__(self, kind: str, identifier, message: str | None = None):
        self.kind = kind
        self.identifier = identifier
        super().__init__(message or f"{kind.capitalize()} {identifier} not found")


class AuthorizationError(GroupSettleError):
    """Raised when a member acts on a record they are not a party to."""

    def __init__(self, member_id: str, message: str | None = None):
        self.member_id = member_id
        super().__init__(message or f"Member '{member_id}' is not allowed to do that")
