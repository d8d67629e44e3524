"""Custom exceptions for Trip Expenses."""


class TripExpensesError(Exception):
    """Base exception for all Trip Expenses errors."""

    pass


class ConfigurationError(TripExpensesError):
    """Raised when configuration is invalid or missing."""

    pass


class ExpenseValidationError(TripExpensesError):
    """Raised when an expense draft fails validation before any write."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


class TransportError(TripExpensesError):
    """Base class for store errors (unreachable store or rejected write)."""

    pass


class SupabaseAPIError(TransportError):
    """Raised when a Supabase (PostgREST) request fails."""

    pass


class DatabaseError(TransportError):
    """Raised when a local SQLite operation fails."""

    pass
