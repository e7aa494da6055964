import sqlmodel

from ._base import BaseModel


class WonderspinPity(BaseModel, table=True):
    """Track a user's pity counters for each Wonderspin."""

    __tablename__: str = "wonderspin_pity"
    __table_args__ = (
        sqlmodel.UniqueConstraint("user_id", "wonderspin_id", name="uq_wonderspin_pity_user"),
    )

    id: int = sqlmodel.Field(primary_key=True, index=True, default=None)
    user_id: int = sqlmodel.Field(foreign_key="users.id", index=True)
    wonderspin_id: int = sqlmodel.Field(foreign_key="wonderspins.id", index=True)

    total_rolls: int = sqlmodel.Field(default=0, ge=0)
    rolls_until_crest: int | None = sqlmodel.Field(default=None, nullable=True)
    rolls_until_surge: int | None = sqlmodel.Field(default=None, nullable=True)
    current_surge_step: int = sqlmodel.Field(default=1, ge=1)
    """Position within the fortune surge ramp, only meaningful once surge is due"""
    rolls_until_blessing: int | None = sqlmodel.Field(default=None, nullable=True)
    rolls_until_peak: int | None = sqlmodel.Field(default=None, nullable=True)
