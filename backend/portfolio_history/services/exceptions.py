# backend/portfolio_history/services/exceptions.py
"""
Service layer exceptions.

These exceptions represent domain-specific errors and contain NO HTTP knowledge.
The application layer maps them to HTTP responses.

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError
    │   └── InvalidDateRangeError
    ├── NotFoundError
    │   ├── AccountsNotFoundError
    │   └── CalculationJobNotFoundError
    ├── PriceDataError
    │   └── LivePriceUnavailableError
    ├── PersistenceError
    └── CalculationJobError
        └── InvalidJobTransitionError

Per-day valuation and persistence failures inside a range run are NOT raised
to the caller: the range calculator records them as "YYYY-MM-DD: message"
strings and continues. Only setup failures propagate.
"""

from datetime import date


class ServiceError(Exception):
    """
    Base exception for all service layer errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(ServiceError):
    """
    Raised when service input is invalid.

    Attributes:
        field: The field that failed validation (optional)
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class InvalidDateRangeError(ValidationError):
    """
    Raised when a calculation range is inverted or too long.

    Attributes:
        start_date: Requested first day
        end_date: Requested last day
    """

    def __init__(self, start_date: date, end_date: date, reason: str | None = None) -> None:
        self.start_date = start_date
        self.end_date = end_date
        detail = reason or "start_date must be on or before end_date"
        super().__init__(
            f"Invalid date range {start_date} to {end_date}: {detail}",
            field="start_date",
        )


# =============================================================================
# NOT FOUND ERRORS
# =============================================================================


class NotFoundError(ServiceError):
    """
    Base exception for resource not found errors.

    Attributes:
        resource_type: Type of resource (e.g., "Account", "CalculationJob")
        resource_id: Identifier of the resource
    """

    def __init__(
            self,
            message: str,
            resource_type: str | None = None,
            resource_id: int | str | None = None,
    ) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(message)


class AccountsNotFoundError(NotFoundError):
    """
    Raised when a user has no asset accounts to value.

    This is a setup failure: a range run cannot start without accounts.
    """

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(
            f"No asset accounts found for user {user_id}",
            resource_type="Account",
            resource_id=user_id,
        )


class CalculationJobNotFoundError(NotFoundError):
    """Raised when a calculation job id does not exist for the user."""

    def __init__(self, job_id: int) -> None:
        self.job_id = job_id
        super().__init__(
            f"Calculation job {job_id} not found",
            resource_type="CalculationJob",
            resource_id=job_id,
        )


# =============================================================================
# PRICE DATA ERRORS
# =============================================================================


class PriceDataError(ServiceError):
    """
    Raised when price data cannot be read.

    Attributes:
        symbol: Symbol involved (None for bulk operations)
    """

    def __init__(self, message: str, symbol: str | None = None) -> None:
        self.symbol = symbol
        super().__init__(message)


class LivePriceUnavailableError(PriceDataError):
    """
    Raised when the live quote provider cannot be reached.

    Retryable: the live provider retries this before giving up.
    """

    def __init__(self, symbol: str, reason: str | None = None) -> None:
        self.reason = reason
        message = f"Live price unavailable for {symbol}"
        if reason:
            message += f": {reason}"
        super().__init__(message, symbol=symbol)


# =============================================================================
# PERSISTENCE ERRORS
# =============================================================================


class PersistenceError(ServiceError):
    """
    Raised when a daily value record cannot be written.

    Attributes:
        value_date: Date of the record that failed
    """

    def __init__(self, message: str, value_date: date | None = None) -> None:
        self.value_date = value_date
        super().__init__(message)


# =============================================================================
# CALCULATION JOB ERRORS
# =============================================================================


class CalculationJobError(ServiceError):
    """Raised when a calculation job record cannot be created or updated."""

    def __init__(self, message: str, job_id: int | None = None) -> None:
        self.job_id = job_id
        super().__init__(message)


class InvalidJobTransitionError(CalculationJobError):
    """
    Raised when a job status change is not allowed.

    Attributes:
        current: Status the job is in
        target: Status that was requested
    """

    def __init__(self, job_id: int | None, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(
            f"Calculation job {job_id} cannot move from '{current}' to '{target}'",
            job_id=job_id,
        )


__all__ = [
    "ServiceError",
    "ValidationError",
    "InvalidDateRangeError",
    "NotFoundError",
    "AccountsNotFoundError",
    "CalculationJobNotFoundError",
    "PriceDataError",
    "LivePriceUnavailableError",
    "PersistenceError",
    "CalculationJobError",
    "InvalidJobTransitionError",
]
