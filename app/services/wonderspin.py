from collections.abc import Sequence
from typing import Annotated

from fastapi import Depends, HTTPException
from loguru import logger
from pydantic import ValidationError
from sqlalchemy import func
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.db import get_db
from app.core.exceptions import WonderspinConfigError
from app.models.user import User
from app.models.wonderspin import Wonderspin
from app.models.wonderspin_pity import WonderspinPity
from app.schemas.wonderspin import PityState, PoolConfig, WonderspinCreate, WonderspinData
from app.services.roll_resolver import current_probabilities


class WonderspinService:
    """Wonderspin pool configuration and the per-user pity counters."""

    def __init__(self, db: Annotated[AsyncSession, Depends(get_db)]) -> None:
        self.db = db

    async def get_wonderspin(self, wonderspin_id: int) -> Wonderspin | None:
        result = await self.db.exec(select(Wonderspin).where(Wonderspin.id == wonderspin_id))
        return result.first()

    async def get_wonderspin_by_name(self, name: str) -> Wonderspin | None:
        """Find a Wonderspin by exact name, ignoring case."""
        result = await self.db.exec(
            select(Wonderspin).where(func.lower(col(Wonderspin.name)) == name.lower())
        )
        return result.first()

    async def get_active_wonderspins(self) -> Sequence[Wonderspin]:
        result = await self.db.exec(
            select(Wonderspin).where(col(Wonderspin.active).is_(True)).order_by(col(Wonderspin.id))
        )
        return result.all()

    async def create_wonderspin(self, data: WonderspinCreate) -> Wonderspin:
        """Save a new Wonderspin.

        Threshold and asset checks already ran when `data` was validated, so only the name is
        checked here.

        Raises:
            HTTPException: If a Wonderspin with the same name (case insensitive) exists
        """
        if await self.get_wonderspin_by_name(data.name):
            raise HTTPException(
                status_code=400, detail="A Wonderspin with the same name already exists"
            )

        wonderspin = Wonderspin(
            **data.model_dump(exclude={"asset_data"}),
            asset_data=[entry.model_dump(mode="json") for entry in data.asset_data],
        )
        self.db.add(wonderspin)
        await self.db.commit()
        await self.db.refresh(wonderspin)
        return wonderspin

    async def set_wonderspin_active(self, wonderspin_id: int, active: bool) -> Wonderspin | None:
        wonderspin = await self.get_wonderspin(wonderspin_id)
        if not wonderspin:
            return None

        wonderspin.active = active
        self.db.add(wonderspin)
        await self.db.commit()
        await self.db.refresh(wonderspin)
        return wonderspin

    async def get_pity(
        self, user_id: int, wonderspin_id: int, *, for_update: bool = False
    ) -> WonderspinPity | None:
        """Get a user's pity record for a Wonderspin.

        With `for_update`, the row stays locked until the transaction ends so concurrent rolls
        cannot interleave their read-modify-write.
        """
        stmt = select(WonderspinPity).where(
            WonderspinPity.user_id == user_id, WonderspinPity.wonderspin_id == wonderspin_id
        )
        if for_update:
            stmt = stmt.with_for_update()

        result = await self.db.exec(stmt)
        return result.first()

    async def get_user_pity(self, user_id: int) -> Sequence[WonderspinPity]:
        result = await self.db.exec(
            select(WonderspinPity)
            .where(WonderspinPity.user_id == user_id)
            .order_by(col(WonderspinPity.wonderspin_id))
        )
        return result.all()

    def stage_pity(
        self, user_id: int, wonderspin_id: int, state: PityState, existing: WonderspinPity | None
    ) -> WonderspinPity:
        """Insert or overwrite the pity record without committing."""
        pity = existing or WonderspinPity(user_id=user_id, wonderspin_id=wonderspin_id)
        pity.sqlmodel_update(state.model_dump())
        self.db.add(pity)
        return pity

    async def upsert_pity(self, user_id: int, wonderspin_id: int, state: PityState) -> None:
        existing = await self.get_pity(user_id, wonderspin_id, for_update=True)
        self.stage_pity(user_id, wonderspin_id, state, existing)
        await self.db.commit()

    async def get_active_wonderspin_data(self, user_id: int) -> list[WonderspinData]:
        """Get every active Wonderspin with the user's pity counters and current odds.

        Users who never rolled a Wonderspin see its default counters. Stored pools that cannot be
        rolled are logged and left out.

        Raises:
            HTTPException: If the user does not exist
        """
        user_result = await self.db.exec(select(User).where(User.id == user_id))
        if not user_result.first():
            raise HTTPException(status_code=404, detail="User not found")

        pity_by_wonderspin = {
            pity.wonderspin_id: pity for pity in await self.get_user_pity(user_id)
        }

        data: list[WonderspinData] = []
        for wonderspin in await self.get_active_wonderspins():
            try:
                pool = PoolConfig.model_validate(wonderspin)
                pity = pity_by_wonderspin.get(wonderspin.id)
                state = PityState.model_validate(pity) if pity else PityState.initial(pool)
                probabilities = current_probabilities(pool, state)
            except (ValidationError, WonderspinConfigError) as e:
                logger.error(
                    f"Skipping invalid Wonderspin {wonderspin.id} ({wonderspin.name!r}): {e}"
                )
                continue

            data.append(
                WonderspinData(
                    wonderspin_id=pool.id,
                    name=pool.name,
                    ticket_type=pool.ticket_type,
                    crest_threshold=pool.crest_threshold,
                    surge_threshold=pool.surge_threshold,
                    blessing_threshold=pool.blessing_threshold,
                    peak_threshold=pool.peak_threshold,
                    pity=state,
                    asset_probabilities=probabilities,
                )
            )

        return data
