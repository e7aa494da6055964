from app.core.enums import RollErrorCode

ERROR_MESSAGES: dict[RollErrorCode, str] = {
    RollErrorCode.INVALID_AMOUNT: "Roll amount must be 1, 5 or 10.",
    RollErrorCode.USER_NOT_FOUND: "User not found.",
    RollErrorCode.INSUFFICIENT_TICKETS: "Not enough tickets to roll.",
    RollErrorCode.POOL_NOT_FOUND: "Wonderspin not found.",
    RollErrorCode.POOL_INACTIVE: "Wonderspin is not active.",
    RollErrorCode.TICKET_MISMATCH: "This ticket cannot be used for this Wonderspin.",
    RollErrorCode.PERSISTENCE_FAILURE: "Failed to save the roll results.",
    RollErrorCode.INTERNAL_ERROR: "An unexpected error occurred while rolling.",
}


class RollJobError(Exception):
    """A roll job failure, stored on the job instead of crossing the queue boundary."""

    def __init__(self, code: RollErrorCode, message: str | None = None) -> None:
        self.code = code
        self.message = message or ERROR_MESSAGES[code]
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return self.code.retryable


class WonderspinConfigError(ValueError):
    """Raised when a Wonderspin cannot produce a roll from its asset data."""
