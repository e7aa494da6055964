import sqlmodel

from app.core.enums import EventType

from ._base import BaseModel


class EventLog(BaseModel, table=True):
    """Audit trail of state changes made on a user's behalf."""

    __tablename__: str = "event_logs"

    id: int = sqlmodel.Field(primary_key=True, index=True, default=None)
    user_id: int = sqlmodel.Field(foreign_key="users.id", index=True)
    event_type: EventType = sqlmodel.Field(index=True)
    roll_job_id: str | None = sqlmodel.Field(
        default=None, nullable=True, foreign_key="roll_jobs.id", index=True, max_length=32
    )
    """The roll job that caused the event, if any"""
    context: dict = sqlmodel.Field(sa_column=sqlmodel.Column(sqlmodel.JSON))
