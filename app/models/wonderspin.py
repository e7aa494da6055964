import sqlmodel

from app.core.enums import WonderspinTicketType

from ._base import BaseModel


class Wonderspin(BaseModel, table=True):
    """A gacha pool. Treated as immutable once saved; changes are new pools."""

    __tablename__: str = "wonderspins"

    id: int = sqlmodel.Field(primary_key=True, index=True, default=None)
    name: str = sqlmodel.Field(max_length=100, index=True, unique=True)
    ticket_type: WonderspinTicketType
    active: bool = True

    crest_threshold: int | None = sqlmodel.Field(default=None, nullable=True, ge=1)
    """Rolls until an asset of tier B or better is guaranteed"""
    surge_threshold: int | None = sqlmodel.Field(default=None, nullable=True, ge=1)
    """Rolls until tier A odds start ramping up"""
    blessing_threshold: int | None = sqlmodel.Field(default=None, nullable=True, ge=1)
    """Rolls until a tier A asset is guaranteed"""
    peak_threshold: int | None = sqlmodel.Field(default=None, nullable=True, ge=1)
    """Rolls until a featured asset is guaranteed"""

    asset_data: list[dict] = sqlmodel.Field(
        default_factory=list, sa_column=sqlmodel.Column(sqlmodel.JSON, nullable=False)
    )
