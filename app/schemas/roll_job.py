import datetime

from pydantic import BaseModel, Field

from app.core.enums import RollErrorCode, RollJobStatus, WonderspinTicketType
from app.schemas.wonderspin import RollBatchResult


class RollJobCreate(BaseModel):
    """Request to roll a Wonderspin."""

    user_id: int
    wonderspin: str = Field(min_length=1, max_length=100, description="Wonderspin name")
    ticket_type: WonderspinTicketType
    roll_count: int = Field(description="Number of rolls (1, 5 or 10)")


class RollJobResponse(BaseModel):
    id: str
    user_id: int
    wonderspin: str
    ticket_type: WonderspinTicketType
    roll_count: int
    status: RollJobStatus
    attempts: int
    error_code: RollErrorCode | None = None
    error_message: str | None = None
    result: RollBatchResult | None = None
    created_at: datetime.datetime
    updated_at: datetime.datetime
