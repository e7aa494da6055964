import sqlmodel

from app.core.enums import AssetType

from ._base import BaseModel


class Inventory(BaseModel, table=True):
    """One stack of a quantitative asset (item, resource or food) owned by a user."""

    __tablename__: str = "inventories"
    __table_args__ = (
        sqlmodel.UniqueConstraint(
            "user_id", "asset_type", "asset", name="uq_inventories_user_asset"
        ),
    )

    id: int = sqlmodel.Field(primary_key=True, index=True, default=None)
    user_id: int = sqlmodel.Field(foreign_key="users.id", index=True)
    asset_type: AssetType = sqlmodel.Field(index=True)
    asset: str = sqlmodel.Field(max_length=100)
    amount: int = sqlmodel.Field(default=0, ge=0)

    total_amount_consumed: int = sqlmodel.Field(default=0, ge=0)
    """Lifetime amount used, only tracked for items"""
    weekly_amount_consumed: int = sqlmodel.Field(default=0, ge=0)
    """Amount used since the last weekly reset, only tracked for items"""
    mintable_amount: int = sqlmodel.Field(default=0, ge=0)
    """Portion of `amount` that can be minted, only tracked for food"""
    origin: str | None = sqlmodel.Field(default=None, nullable=True)
    """Where a resource stack came from"""
