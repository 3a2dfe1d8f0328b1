"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Auth/Gateway
  2xxx: Account/Balance
  5xxx: Position
  6xxx: Distribution
  9xxx: System
"""


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 1xxx: Auth/Gateway ---

class InvalidTriggerKeyError(AppError):
    def __init__(self) -> None:
        super().__init__(1001, "Missing or invalid trigger key", 401)


# --- 2xxx: Account/Balance ---

class BalanceNotFoundError(AppError):
    def __init__(self, user_id: str) -> None:
        super().__init__(2001, f"Balance not found for user {user_id}", 404)


# --- 5xxx: Position ---

class PositionNotFoundError(AppError):
    def __init__(self, position_id: str) -> None:
        super().__init__(5001, f"Position not found: {position_id}", 404)


class PositionNotActiveError(AppError):
    def __init__(self, position_id: str, status: str | None = None) -> None:
        self.position_id = position_id
        detail = f" (status={status})" if status else ""
        super().__init__(5002, f"Position {position_id} is not ACTIVE{detail}", 422)


# --- 6xxx: Distribution ---

class DistributionScanError(AppError):
    """Fatal: the eligibility scan could not read the ledger store. Nothing was mutated."""

    def __init__(self, detail: str) -> None:
        super().__init__(6001, f"Eligibility scan failed: {detail}", 503)


class DuplicatePeriodError(AppError):
    """Benign: the (position, period key) pair was already recorded by another run."""

    def __init__(self, position_id: str, period_key: str) -> None:
        self.position_id = position_id
        self.period_key = period_key
        super().__init__(
            6002, f"Period {period_key} already distributed for position {position_id}", 409
        )


# --- 9xxx: System ---

class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)
