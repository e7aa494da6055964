from enum import StrEnum


class WonderspinTier(StrEnum):
    """Tier of an asset within a Wonderspin. A is the highest, C the lowest.

    This is not the rarity of the asset itself, only the bucket it is rolled in.
    """

    A = "A"
    B = "B"
    C = "C"


class AssetType(StrEnum):
    ITEM = "item"
    RESOURCE = "resource"
    FOOD = "food"
    CURRENCY = "currency"


class Currency(StrEnum):
    X_COOKIES = "xCookies"
    DIAMONDS = "diamonds"


class WonderspinTicketType(StrEnum):
    STANDARD = "Wonderspin Ticket"
    PREMIUM = "Premium Wonderspin Ticket"


class PityRuleKind(StrEnum):
    """Which pity rule decided the eligible assets of a roll."""

    PEAK = "peak"
    BLESSING = "blessing"
    CREST = "crest"
    NORMAL = "normal"


class RollJobStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RollErrorCode(StrEnum):
    INVALID_AMOUNT = "INVALID_AMOUNT"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    INSUFFICIENT_TICKETS = "INSUFFICIENT_TICKETS"
    POOL_NOT_FOUND = "POOL_NOT_FOUND"
    POOL_INACTIVE = "POOL_INACTIVE"
    TICKET_MISMATCH = "TICKET_MISMATCH"
    PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    @property
    def retryable(self) -> bool:
        return self is RollErrorCode.PERSISTENCE_FAILURE


class EventType(StrEnum):
    WONDERSPIN_ROLL = "wonderspin_roll"
