from collections.abc import Sequence
from typing import Annotated

from fastapi import Depends
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.db import get_db
from app.core.enums import AssetType, Currency
from app.models.inventory import Inventory
from app.models.user import User
from app.schemas.wonderspin import ObtainedAsset

CURRENCY_COLUMNS: dict[str, str] = {Currency.X_COOKIES: "x_cookies", Currency.DIAMONDS: "diamonds"}


class InventoryService:
    """The user's holdings. Writes are staged on the session; the caller commits."""

    def __init__(self, db: Annotated[AsyncSession, Depends(get_db)]) -> None:
        self.db = db

    async def get_user(self, user_id: int, *, for_update: bool = False) -> User | None:
        """Get a user. With `for_update`, the user's holdings are locked until commit."""
        stmt = select(User).where(User.id == user_id)
        if for_update:
            stmt = stmt.with_for_update()

        result = await self.db.exec(stmt)
        return result.first()

    async def get_user_inventory(self, user_id: int) -> Sequence[Inventory]:
        result = await self.db.exec(select(Inventory).where(Inventory.user_id == user_id))
        return result.all()

    async def get_inventory_entry(
        self, user_id: int, asset_type: AssetType, asset: str
    ) -> Inventory | None:
        result = await self.db.exec(
            select(Inventory).where(
                Inventory.user_id == user_id,
                Inventory.asset_type == asset_type,
                Inventory.asset == asset,
            )
        )
        return result.first()

    async def get_ticket_balance(self, user_id: int, ticket_type: str) -> int:
        """Return how many tickets of `ticket_type` the user holds."""
        entry = await self.get_inventory_entry(user_id, AssetType.ITEM, ticket_type)
        return entry.amount if entry else 0

    async def debit_item(self, user_id: int, item: str, amount: int) -> Inventory:
        """Consume `amount` of an item and count it towards its consumption totals.

        Raises:
            ValueError: If the user does not hold enough of the item
        """
        entry = await self.get_inventory_entry(user_id, AssetType.ITEM, item)
        owned = entry.amount if entry else 0
        if entry is None or owned < amount:
            msg = f"Not enough {item}. Owned: {owned}, needed: {amount}"
            raise ValueError(msg)

        entry.amount -= amount
        entry.total_amount_consumed += amount
        entry.weekly_amount_consumed += amount
        self.db.add(entry)
        return entry

    async def credit(self, user: User, obtained: ObtainedAsset) -> None:
        """Add an obtained asset to the matching bucket.

        Currencies increase the user's balance. Items, resources and food increase an existing
        stack in place or start a new stack with zeroed consumption counters.
        """
        if obtained.asset_type is AssetType.CURRENCY:
            column = CURRENCY_COLUMNS.get(obtained.asset)
            if column is None:
                msg = f"Unknown currency {obtained.asset!r}"
                raise ValueError(msg)
            setattr(user, column, getattr(user, column) + obtained.amount)
            self.db.add(user)
            return

        entry = await self.get_inventory_entry(user.id, obtained.asset_type, obtained.asset)
        if entry:
            entry.amount += obtained.amount
            if obtained.asset_type is AssetType.FOOD:
                entry.mintable_amount += obtained.amount
            self.db.add(entry)
            return

        self.db.add(
            Inventory(
                user_id=user.id,
                asset_type=obtained.asset_type,
                asset=obtained.asset,
                amount=obtained.amount,
                total_amount_consumed=0,
                weekly_amount_consumed=0,
                mintable_amount=obtained.amount if obtained.asset_type is AssetType.FOOD else 0,
                origin="Wonderspin" if obtained.asset_type is AssetType.RESOURCE else None,
            )
        )

    async def apply_delta(
        self, user: User, *, debits: Sequence[ObtainedAsset], credits: Sequence[ObtainedAsset]
    ) -> None:
        """Stage debits and credits for the user in the current transaction.

        Only item debits are supported, which is all a roll needs (tickets).
        """
        for debit in debits:
            if debit.asset_type is not AssetType.ITEM:
                msg = f"Cannot debit {debit.asset_type} assets"
                raise ValueError(msg)
            await self.debit_item(user.id, debit.asset, debit.amount)

        for credit in credits:
            await self.credit(user, credit)
