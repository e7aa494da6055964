"""
Shared fixtures.

Every test gets its own SQLite database file, created from the SQLModel metadata.
"""

import os

os.environ.setdefault("DB_URL", "sqlite+aiosqlite://")
os.environ["ROLL_WORKER_ENABLED"] = "false"

from collections.abc import AsyncIterator, Awaitable, Callable  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel  # noqa: E402
from sqlmodel.ext.asyncio.session import AsyncSession  # noqa: E402

from app.core.enums import AssetType, WonderspinTicketType, WonderspinTier  # noqa: E402
from app.models.event_log import EventLog  # noqa: E402, F401
from app.models.inventory import Inventory  # noqa: E402
from app.models.roll_job import RollJob  # noqa: E402, F401
from app.models.user import User  # noqa: E402
from app.models.wonderspin import Wonderspin  # noqa: E402
from app.models.wonderspin_pity import WonderspinPity  # noqa: E402, F401
from app.schemas.wonderspin import WonderspinCreate  # noqa: E402
from app.services.wonderspin import WonderspinService  # noqa: E402


@pytest.fixture
async def engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'wonderspin.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine, class_=AsyncSession, autoflush=False, expire_on_commit=False
    )


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(session: AsyncSession) -> Callable[..., Awaitable[User]]:
    """Create a user holding `tickets` of each ticket type in `ticket_types`."""

    async def _make_user(
        *,
        tickets: int = 10,
        ticket_types: tuple[WonderspinTicketType, ...] = (WonderspinTicketType.STANDARD,),
        name: str = "tester",
    ) -> User:
        user = User(name=name)
        session.add(user)
        await session.commit()
        await session.refresh(user)

        for ticket_type in ticket_types:
            session.add(
                Inventory(
                    user_id=user.id, asset_type=AssetType.ITEM, asset=ticket_type, amount=tickets
                )
            )
        await session.commit()
        return user

    return _make_user


@pytest.fixture
def make_wonderspin(session: AsyncSession) -> Callable[..., Awaitable[Wonderspin]]:
    """Save a Wonderspin. Without `asset_data`, it holds one asset per tier."""

    async def _make_wonderspin(**overrides: Any) -> Wonderspin:
        data: dict[str, Any] = {
            "name": "Starter Wonderspin",
            "ticket_type": WonderspinTicketType.STANDARD,
            "asset_data": [
                {
                    "asset_type": AssetType.CURRENCY,
                    "asset": "diamonds",
                    "amount": 50,
                    "tier": WonderspinTier.A,
                    "probability_weight": 5,
                },
                {
                    "asset_type": AssetType.FOOD,
                    "asset": "Burger",
                    "amount": 2,
                    "tier": WonderspinTier.B,
                    "probability_weight": 25,
                },
                {
                    "asset_type": AssetType.RESOURCE,
                    "asset": "Stone",
                    "amount": 10,
                    "tier": WonderspinTier.C,
                    "probability_weight": 70,
                },
            ],
        }
        data.update(overrides)
        return await WonderspinService(session).create_wonderspin(WonderspinCreate(**data))

    return _make_wonderspin
