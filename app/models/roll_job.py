import datetime
import uuid

import sqlmodel

from app.core.enums import RollErrorCode, RollJobStatus, WonderspinTicketType

from ._base import BaseModel


class RollJob(BaseModel, table=True):
    """A queued Wonderspin roll. The table doubles as the durable job queue."""

    __tablename__: str = "roll_jobs"

    id: str = sqlmodel.Field(
        default_factory=lambda: uuid.uuid4().hex, primary_key=True, max_length=32
    )
    user_id: int = sqlmodel.Field(index=True)
    wonderspin: str = sqlmodel.Field(max_length=100)
    ticket_type: WonderspinTicketType
    roll_count: int

    lock_key: str = sqlmodel.Field(index=True, max_length=150)
    """Serialization key, one job per key runs at a time"""
    status: RollJobStatus = sqlmodel.Field(default=RollJobStatus.PENDING, index=True)
    attempts: int = sqlmodel.Field(default=0, ge=0)
    locked_until: datetime.datetime | None = sqlmodel.Field(
        default=None, nullable=True, sa_type=sqlmodel.DateTime(timezone=True)
    )
    """Lease expiry while running; an expired lease makes the job claimable again"""

    error_code: RollErrorCode | None = sqlmodel.Field(default=None, nullable=True)
    error_message: str | None = sqlmodel.Field(default=None, nullable=True)
    result: dict | None = sqlmodel.Field(
        default=None, sa_column=sqlmodel.Column(sqlmodel.JSON, nullable=True)
    )
