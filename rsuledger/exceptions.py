"""Custom exceptions for rsuledger."""

from datetime import date


class RSULedgerError(Exception):
    """Base exception for grant, sale, price and timeline errors."""


class ValidationError(RSULedgerError):
    """Raised when caller input fails validation."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"Validation error on '{field}': {message}")


class UnknownPlanError(ValidationError):
    """Raised when a vesting plan id is not in the plan registry."""

    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__("plan_id", f"Unknown vesting plan: {plan_id}")


class InsufficientSharesError(ValidationError):
    """Raised when a sale requires more shares than are available."""

    def __init__(self, grant_id: str, requested: int, available: int, on_date: date):
        self.grant_id = grant_id
        self.requested = requested
        self.available = available
        self.on_date = on_date
        super().__init__(
            "shares",
            f"Insufficient shares in grant {grant_id} on {on_date.isoformat()}: "
            f"requested={requested}, available={available}",
        )


class PlanChangeError(ValidationError):
    """Raised when a plan change is not allowed for a grant."""

    def __init__(self, grant_id: str, message: str):
        self.grant_id = grant_id
        super().__init__("plan_id", f"Cannot change plan for grant {grant_id}: {message}")


class NotFoundError(RSULedgerError):
    """Raised when a referenced entity does not exist for the requesting user."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class GrantNotFoundError(NotFoundError):
    def __init__(self, grant_id: str):
        super().__init__("Grant", grant_id)


class SaleNotFoundError(NotFoundError):
    def __init__(self, sale_id: str):
        super().__init__("Sale", sale_id)


class DataUnavailableError(RSULedgerError):
    """Raised when no price record is reachable for a symbol."""

    def __init__(self, symbol: str, on_date: date | None = None):
        self.symbol = symbol
        self.on_date = on_date
        if on_date is None:
            message = f"No price data available for {symbol}"
        else:
            message = f"No price data available for {symbol} on or before {on_date.isoformat()}"
        super().__init__(message)


class ComputationError(RSULedgerError):
    """Raised when a runtime invariant check fails. Indicates a bug, not bad input."""

    def __init__(self, message: str):
        super().__init__(f"Computation error: {message}")
