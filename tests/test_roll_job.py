"""
Tests for roll job processing

A job either commits its ticket debit, rewards, pity update and audit log together, or fails
with an error code and leaves no trace outside the job row.
"""

import random
from typing import Any

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import select

from app.core.config import settings
from app.core.enums import (
    AssetType,
    EventType,
    RollErrorCode,
    RollJobStatus,
    WonderspinTicketType,
    WonderspinTier,
)
from app.models.event_log import EventLog
from app.schemas.roll_job import RollJobCreate
from app.schemas.wonderspin import RollBatchResult
from app.services.inventory import InventoryService
from app.services.wonderspin import WonderspinService
from app.utils.misc import get_utc_after
from app.workers.roll_worker import build_roll_job_service


async def snapshot(session_factory, user_id: int) -> dict[str, Any]:
    """Read a user's holdings, pity records and audit log from a fresh session."""
    async with session_factory() as fresh:
        inventory = InventoryService(fresh)
        user = await inventory.get_user(user_id)
        entries = await inventory.get_user_inventory(user_id)
        pity = await WonderspinService(fresh).get_user_pity(user_id)
        events = (await fresh.exec(select(EventLog).where(EventLog.user_id == user_id))).all()

        return {
            "diamonds": user.diamonds if user else None,
            "inventory": {(entry.asset_type, entry.asset): entry.amount for entry in entries},
            "pity": [record.model_dump(exclude={"created_at", "updated_at"}) for record in pity],
            "events": [event.context for event in events],
        }


class TestRollJobService:
    @pytest.fixture
    def service(self, session):
        return build_roll_job_service(session)

    @staticmethod
    async def run(service, rng: random.Random | None = None, **payload: Any):
        data: dict[str, Any] = {
            "wonderspin": "Starter Wonderspin",
            "ticket_type": WonderspinTicketType.STANDARD,
            "roll_count": 10,
        }
        data.update(payload)
        job = await service.submit(RollJobCreate(**data))
        claimed = await service.claim_next_job()
        assert claimed is not None
        assert claimed.id == job.id
        return await service.process_job(job.id, rng or random.Random(7))

    # =========================================================================
    # Successful rolls
    # =========================================================================

    @pytest.mark.asyncio
    async def test_successful_roll(self, service, session_factory, make_user, make_wonderspin):
        """A 10x roll debits 10 tickets and credits exactly what was rolled."""
        user = await make_user(tickets=12)
        await make_wonderspin(crest_threshold=10)

        job = await self.run(service, user_id=user.id)

        assert job.status is RollJobStatus.COMPLETED
        assert job.error_code is None
        assert job.attempts == 1
        result = RollBatchResult.model_validate(job.result)
        assert len(result.outcomes) == 10
        assert result.pity.total_rolls == 10

        tiers = [outcome.tier for outcome in result.outcomes]
        state = await snapshot(session_factory, user.id)
        assert state["inventory"][(AssetType.ITEM, WonderspinTicketType.STANDARD)] == 2
        assert state["diamonds"] == 50 * tiers.count(WonderspinTier.A)
        assert state["inventory"].get((AssetType.FOOD, "Burger"), 0) == 2 * tiers.count(
            WonderspinTier.B
        )
        assert state["inventory"].get((AssetType.RESOURCE, "Stone"), 0) == 10 * tiers.count(
            WonderspinTier.C
        )
        assert state["pity"][0]["total_rolls"] == 10
        assert state["pity"][0]["rolls_until_crest"] == result.pity.rolls_until_crest

    @pytest.mark.asyncio
    async def test_roll_is_audited(self, service, session, make_user, make_wonderspin):
        user = await make_user()
        wonderspin = await make_wonderspin()

        job = await self.run(service, user_id=user.id, roll_count=5)

        events = (await session.exec(select(EventLog))).all()
        assert len(events) == 1
        assert events[0].event_type is EventType.WONDERSPIN_ROLL
        assert events[0].roll_job_id == job.id
        assert events[0].context["wonderspin_id"] == wonderspin.id
        assert len(events[0].context["rolls"]) == 5
        assert events[0].context["pity_before"]["total_rolls"] == 0
        assert events[0].context["pity_after"]["total_rolls"] == 5

    @pytest.mark.asyncio
    async def test_pool_name_ignores_case(self, service, make_user, make_wonderspin):
        user = await make_user()
        await make_wonderspin()

        job = await self.run(
            service, user_id=user.id, wonderspin="starter WONDERSPIN", roll_count=1
        )

        assert job.status is RollJobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_pity_carries_over_between_jobs(
        self, service, session_factory, make_user, make_wonderspin
    ):
        user = await make_user(tickets=15)
        await make_wonderspin(crest_threshold=10)

        await self.run(service, user_id=user.id, roll_count=10)
        job = await self.run(service, user_id=user.id, roll_count=5)

        assert job.status is RollJobStatus.COMPLETED
        state = await snapshot(session_factory, user.id)
        assert len(state["pity"]) == 1
        assert state["pity"][0]["total_rolls"] == 15
        assert state["inventory"][(AssetType.ITEM, WonderspinTicketType.STANDARD)] == 0

    @pytest.mark.asyncio
    async def test_completed_job_is_not_processed_again(
        self, service, session_factory, make_user, make_wonderspin
    ):
        """Delivering a committed job again changes nothing."""
        user = await make_user()
        await make_wonderspin()
        job = await self.run(service, user_id=user.id)
        before = await snapshot(session_factory, user.id)

        again = await service.process_job(job.id, random.Random(99))

        assert again is not None
        assert again.status is RollJobStatus.COMPLETED
        assert again.result == job.result
        assert await snapshot(session_factory, user.id) == before
        assert await service.claim_next_job() is None

    @pytest.mark.asyncio
    async def test_outdated_copy_of_job_does_not_roll_again(
        self, service, session_factory, make_user, make_wonderspin
    ):
        """A second delivery still holding the RUNNING job debits nothing once the first commits."""
        user = await make_user(tickets=20)
        user_id = user.id
        await make_wonderspin()
        job = await service.submit(
            RollJobCreate(
                user_id=user_id,
                wonderspin="Starter Wonderspin",
                ticket_type=WonderspinTicketType.STANDARD,
                roll_count=10,
            )
        )
        await service.claim_next_job()

        async with session_factory() as other_session:
            other_service = build_roll_job_service(other_session)
            outdated = await other_service.get_job(job.id)
            await other_session.commit()
            assert outdated.status is RollJobStatus.RUNNING

            done = await service.process_job(job.id, random.Random(1))
            assert done.status is RollJobStatus.COMPLETED

            assert await other_service.execute_roll(outdated, random.Random(2)) is None

        state = await snapshot(session_factory, user_id)
        assert state["inventory"][(AssetType.ITEM, WonderspinTicketType.STANDARD)] == 10
        assert state["pity"][0]["total_rolls"] == 10
        assert len(state["events"]) == 1
        assert (await service.get_job(job.id)).result == done.result

    @pytest.mark.asyncio
    async def test_superseded_attempt_leaves_job_to_new_claim(
        self, service, session, session_factory, make_user, make_wonderspin
    ):
        """A delivery whose lease expired and was claimed again writes nothing."""
        user = await make_user(tickets=10)
        user_id = user.id
        await make_wonderspin()
        before = await snapshot(session_factory, user_id)
        job = await service.submit(
            RollJobCreate(
                user_id=user_id,
                wonderspin="Starter Wonderspin",
                ticket_type=WonderspinTicketType.STANDARD,
                roll_count=10,
            )
        )
        claimed = await service.claim_next_job()
        claimed.locked_until = get_utc_after(-300)
        session.add(claimed)
        await session.commit()
        reclaimed = await service.claim_next_job()
        assert reclaimed.attempts == 2

        superseded = await service.process_job(job.id, random.Random(1), attempt=1)

        assert superseded.status is RollJobStatus.RUNNING
        assert superseded.attempts == 2
        assert superseded.error_code is None
        assert await snapshot(session_factory, user_id) == before

        done = await service.process_job(job.id, random.Random(1), attempt=2)

        assert done.status is RollJobStatus.COMPLETED
        state = await snapshot(session_factory, user_id)
        assert state["inventory"][(AssetType.ITEM, WonderspinTicketType.STANDARD)] == 0
        assert len(state["events"]) == 1

    # =========================================================================
    # Validation failures
    # =========================================================================

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("payload", "pool", "code"),
        [
            ({"roll_count": 3}, {}, RollErrorCode.INVALID_AMOUNT),
            ({"roll_count": 10, "tickets": 9}, {}, RollErrorCode.INSUFFICIENT_TICKETS),
            ({"wonderspin": "Missing Wonderspin"}, {}, RollErrorCode.POOL_NOT_FOUND),
            ({}, {"active": False}, RollErrorCode.POOL_INACTIVE),
            (
                {"ticket_type": WonderspinTicketType.PREMIUM},
                {},
                RollErrorCode.TICKET_MISMATCH,
            ),
        ],
    )
    async def test_validation_failure_has_no_side_effects(  # noqa: PLR0913, PLR0917
        self, service, session_factory, make_user, make_wonderspin, payload, pool, code
    ):
        payload = dict(payload)
        tickets = payload.pop("tickets", 10)
        user = await make_user(
            tickets=tickets,
            ticket_types=(WonderspinTicketType.STANDARD, WonderspinTicketType.PREMIUM),
        )
        user_id = user.id
        await make_wonderspin(**pool)
        before = await snapshot(session_factory, user_id)

        job = await self.run(service, user_id=user_id, **payload)

        assert job.status is RollJobStatus.FAILED
        assert job.error_code is code
        assert job.error_message
        assert job.result is None
        assert await snapshot(session_factory, user_id) == before

    @pytest.mark.asyncio
    async def test_unknown_user(self, service, make_wonderspin):
        await make_wonderspin()

        job = await self.run(service, user_id=999)

        assert job.status is RollJobStatus.FAILED
        assert job.error_code is RollErrorCode.USER_NOT_FOUND

    @pytest.mark.asyncio
    async def test_unexpected_error_is_terminal(
        self, service, session_factory, make_user, make_wonderspin, monkeypatch
    ):
        user = await make_user()
        user_id = user.id
        await make_wonderspin()
        before = await snapshot(session_factory, user_id)

        def broken_resolve(*_args, **_kwargs):
            msg = "boom"
            raise RuntimeError(msg)

        monkeypatch.setattr("app.services.roll_job.resolve", broken_resolve)
        job = await self.run(service, user_id=user_id)

        assert job.status is RollJobStatus.FAILED
        assert job.error_code is RollErrorCode.INTERNAL_ERROR
        assert await snapshot(session_factory, user_id) == before

    # =========================================================================
    # Persistence failures
    # =========================================================================

    @staticmethod
    def fail_next_commit(session, monkeypatch) -> None:
        original_commit = session.commit
        calls = 0

        async def flaky_commit():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise OperationalError("COMMIT", None, Exception("database is locked"))
            await original_commit()

        monkeypatch.setattr(session, "commit", flaky_commit)

    @pytest.mark.asyncio
    async def test_persistence_failure_is_retried(
        self, service, session, session_factory, make_user, make_wonderspin, monkeypatch
    ):
        """A failed commit puts the job back in the queue, and the retry debits once."""
        user = await make_user(tickets=10)
        user_id = user.id
        await make_wonderspin()
        before = await snapshot(session_factory, user_id)

        job = await service.submit(
            RollJobCreate(
                user_id=user_id,
                wonderspin="Starter Wonderspin",
                ticket_type=WonderspinTicketType.STANDARD,
                roll_count=10,
            )
        )
        await service.claim_next_job()
        self.fail_next_commit(session, monkeypatch)

        failed = await service.process_job(job.id, random.Random(1))

        assert failed.status is RollJobStatus.PENDING
        assert failed.error_code is RollErrorCode.PERSISTENCE_FAILURE
        assert failed.attempts == 1
        assert await snapshot(session_factory, user_id) == before

        retried = await service.claim_next_job()
        assert retried is not None
        assert retried.attempts == 2
        done = await service.process_job(job.id, random.Random(1))

        assert done.status is RollJobStatus.COMPLETED
        assert done.error_code is None
        state = await snapshot(session_factory, user_id)
        assert state["inventory"][(AssetType.ITEM, WonderspinTicketType.STANDARD)] == 0
        assert len(state["events"]) == 1

    @pytest.mark.asyncio
    async def test_persistence_failure_without_attempts_left(
        self, service, session, session_factory, make_user, make_wonderspin, monkeypatch
    ):
        user = await make_user()
        user_id = user.id
        await make_wonderspin()
        monkeypatch.setattr(settings, "roll_job_max_attempts", 1)

        job = await service.submit(
            RollJobCreate(
                user_id=user_id,
                wonderspin="Starter Wonderspin",
                ticket_type=WonderspinTicketType.STANDARD,
                roll_count=1,
            )
        )
        await service.claim_next_job()
        self.fail_next_commit(session, monkeypatch)

        failed = await service.process_job(job.id)

        assert failed.status is RollJobStatus.FAILED
        assert failed.error_code is RollErrorCode.PERSISTENCE_FAILURE
        assert await service.claim_next_job() is None
        assert (await snapshot(session_factory, user_id))["events"] == []

    @pytest.mark.asyncio
    async def test_database_error_before_commit_is_retried(
        self, service, session_factory, make_user, make_wonderspin, monkeypatch
    ):
        """A failed read, such as a lock timeout, puts the job back in the queue."""
        user = await make_user()
        user_id = user.id
        await make_wonderspin()
        before = await snapshot(session_factory, user_id)

        async def lock_timeout(*_args, **_kwargs):
            raise OperationalError("SELECT", None, Exception("lock wait timeout"))

        monkeypatch.setattr(service.wonderspin_service, "get_pity", lock_timeout)
        job = await self.run(service, user_id=user_id)

        assert job.status is RollJobStatus.PENDING
        assert job.error_code is RollErrorCode.PERSISTENCE_FAILURE
        assert await snapshot(session_factory, user_id) == before


class TestRollJobQueries:
    @pytest.mark.asyncio
    async def test_user_jobs_are_paginated(self, session, make_user):
        user = await make_user()
        service = build_roll_job_service(session)
        for _ in range(3):
            await service.submit(
                RollJobCreate(
                    user_id=user.id,
                    wonderspin="Starter Wonderspin",
                    ticket_type=WonderspinTicketType.STANDARD,
                    roll_count=1,
                )
            )

        jobs, pagination = await service.get_user_jobs(user.id, page=2, page_size=2)

        assert len(jobs) == 1
        assert pagination.total_items == 3
        assert pagination.total_pages == 2

    @pytest.mark.asyncio
    async def test_wait_for_job_times_out_on_queued_job(self, session, make_user):
        user = await make_user()
        service = build_roll_job_service(session)
        job = await service.submit(
            RollJobCreate(
                user_id=user.id,
                wonderspin="Starter Wonderspin",
                ticket_type=WonderspinTicketType.STANDARD,
                roll_count=1,
            )
        )

        waited = await service.wait_for_job(job.id, timeout=0.05, poll_interval=0.01)

        assert waited is not None
        assert waited.status is RollJobStatus.PENDING
        assert await service.wait_for_job("missing", timeout=0.05) is None
