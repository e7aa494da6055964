import asyncio
import random
from collections.abc import Sequence
from typing import Annotated

from fastapi import Depends
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import and_, col, func, or_, select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.config import settings
from app.core.db import get_db
from app.core.enums import AssetType, EventType, RollErrorCode, RollJobStatus
from app.core.exceptions import RollJobError
from app.models.event_log import EventLog
from app.models.roll_job import RollJob
from app.schemas.common import PaginationData
from app.schemas.roll_job import RollJobCreate
from app.schemas.wonderspin import ObtainedAsset, PityState, PoolConfig, RollBatchResult
from app.services.inventory import InventoryService
from app.services.roll_resolver import ROLL_COUNTS, aggregate_outcomes, resolve
from app.services.wonderspin import WonderspinService
from app.utils.misc import get_utc_after, get_utc_now

FINISHED_STATUSES = frozenset({RollJobStatus.COMPLETED, RollJobStatus.FAILED})


def roll_lock_key(user_id: int, wonderspin: str) -> str:
    """Jobs sharing this key never run at the same time."""
    return f"{user_id}:{wonderspin.strip().lower()}"


class RollJobService:
    """Queue and process Wonderspin roll jobs.

    The `roll_jobs` table is the queue: jobs are submitted as PENDING, claimed by a worker with a
    lease, and finish as COMPLETED or FAILED with an error code. A roll's inventory writes, pity
    update and the job's COMPLETED status are committed together, so a job that is delivered again
    after it committed is skipped. A delivery whose lease was taken over by a newer claim writes
    nothing.
    """

    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db)],
        inventory_service: Annotated[InventoryService, Depends()],
        wonderspin_service: Annotated[WonderspinService, Depends()],
    ) -> None:
        self.db = db
        self.inventory_service = inventory_service
        self.wonderspin_service = wonderspin_service

    async def submit(self, payload: RollJobCreate) -> RollJob:
        job = RollJob(
            user_id=payload.user_id,
            wonderspin=payload.wonderspin,
            ticket_type=payload.ticket_type,
            roll_count=payload.roll_count,
            lock_key=roll_lock_key(payload.user_id, payload.wonderspin),
        )
        self.db.add(job)
        await self.db.commit()
        await self.db.refresh(job)

        logger.info(f"Queued roll job {job.id} ({job.roll_count}x {job.wonderspin!r})")
        return job

    async def get_job(self, job_id: str, *, for_update: bool = False) -> RollJob | None:
        stmt = select(RollJob).where(RollJob.id == job_id).execution_options(populate_existing=True)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.exec(stmt)
        return result.first()

    async def get_user_jobs(
        self, user_id: int, *, page: int, page_size: int
    ) -> tuple[Sequence[RollJob], PaginationData]:
        offset = (page - 1) * page_size

        total_items_result = await self.db.exec(
            select(func.count()).select_from(RollJob).where(RollJob.user_id == user_id)
        )
        total_items = total_items_result.one()

        result = await self.db.exec(
            select(RollJob)
            .where(RollJob.user_id == user_id)
            .order_by(col(RollJob.created_at).desc())
            .offset(offset)
            .limit(page_size)
        )
        jobs = result.all()

        pagination = PaginationData.from_total(
            page=page, page_size=page_size, total_items=total_items
        )

        return jobs, pagination

    async def wait_for_job(
        self, job_id: str, *, timeout: float | None = None, poll_interval: float | None = None
    ) -> RollJob | None:
        """Poll a job until it finishes or `timeout` seconds pass.

        Returns:
            The job in its latest state, which is still unfinished on timeout, or `None` if no job
            has this ID.
        """
        if timeout is None:
            timeout = settings.roll_job_wait_timeout
        if poll_interval is None:
            poll_interval = settings.roll_worker_poll_interval

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            job = await self.get_job(job_id)
            # End the read transaction so the next poll sees the worker's commit
            await self.db.commit()

            if job is None or job.status in FINISHED_STATUSES or loop.time() >= deadline:
                return job
            await asyncio.sleep(poll_interval)

    async def claim_next_job(self) -> RollJob | None:
        """Lease the oldest runnable job.

        Runnable jobs are PENDING, or RUNNING with an expired lease (the worker holding it died).
        Jobs whose key already has a job under a live lease are skipped, keeping one job per key
        in flight.
        A job that already used up its attempts is marked FAILED instead and returned as is.
        """
        now = get_utc_now()
        busy_keys = select(RollJob.lock_key).where(
            RollJob.status == RollJobStatus.RUNNING, col(RollJob.locked_until) > now
        )
        result = await self.db.exec(
            select(RollJob)
            .where(
                or_(
                    RollJob.status == RollJobStatus.PENDING,
                    and_(
                        RollJob.status == RollJobStatus.RUNNING, col(RollJob.locked_until) <= now
                    ),
                ),
                col(RollJob.lock_key).not_in(busy_keys),
            )
            .order_by(col(RollJob.created_at), col(RollJob.id))
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        job = result.first()
        if job is None:
            await self.db.commit()
            return None

        if job.attempts >= settings.roll_job_max_attempts:
            job.status = RollJobStatus.FAILED
            job.locked_until = None
            job.error_code = RollErrorCode.INTERNAL_ERROR
            job.error_message = f"Gave up after {job.attempts} attempts"
            self.db.add(job)
            await self.db.commit()
            logger.error(f"Roll job {job.id} abandoned after {job.attempts} attempts")
            return job

        job.status = RollJobStatus.RUNNING
        job.attempts += 1
        job.locked_until = get_utc_after(settings.roll_job_lease_seconds)
        self.db.add(job)
        await self.db.commit()

        logger.debug(f"Claimed roll job {job.id} (attempt {job.attempts}, key {job.lock_key})")
        return job

    async def process_job(
        self, job_id: str, rng: random.Random | None = None, *, attempt: int | None = None
    ) -> RollJob | None:
        """Run a claimed job to completion or failure.

        `attempt` is the attempt number the job was claimed with. Without it, the job's current
        attempt is used.

        Errors never escape: they are stored on the job. Only persistence failures, database errors
        included, are put back in the queue, and only while attempts remain.
        """
        job = await self.get_job(job_id)
        if job is None:
            logger.warning(f"Roll job {job_id} does not exist")
            return None
        if job.status in FINISHED_STATUSES:
            logger.info(f"Roll job {job_id} already {job.status}, skipping")
            return job

        if attempt is None:
            attempt = job.attempts
        try:
            result = await self.execute_roll(job, rng, attempt=attempt)
        except RollJobError as e:
            await self.db.rollback()
            return await self._record_failure(job_id, attempt, e)
        except SQLAlchemyError as e:
            logger.warning(f"Database error while processing roll job {job_id}: {e}")
            await self.db.rollback()
            return await self._record_failure(
                job_id, attempt, RollJobError(RollErrorCode.PERSISTENCE_FAILURE)
            )
        except Exception:
            logger.exception(f"Unexpected error while processing roll job {job_id}")
            await self.db.rollback()
            return await self._record_failure(
                job_id, attempt, RollJobError(RollErrorCode.INTERNAL_ERROR)
            )

        if result is None:
            return await self.get_job(job_id)

        logger.info(f"Roll job {job_id} completed")
        return job

    async def execute_roll(
        self, job: RollJob, rng: random.Random | None = None, *, attempt: int | None = None
    ) -> RollBatchResult | None:
        """Validate, resolve and apply a roll job in a single commit.

        The job row is locked and checked again once the user row is locked. If the job finished
        or was claimed again by another delivery in the meantime, nothing is written.

        Returns:
            The roll result, or `None` if this delivery no longer owns the job.

        Raises:
            RollJobError: If validation fails. Nothing is written.
            SQLAlchemyError: If a database call or the commit fails. Nothing is written.
        """
        if attempt is None:
            attempt = job.attempts
        if job.roll_count not in ROLL_COUNTS:
            raise RollJobError(RollErrorCode.INVALID_AMOUNT)

        user = await self.inventory_service.get_user(job.user_id, for_update=True)
        if not await self._owns_job(job.id, attempt):
            await self.db.rollback()
            logger.info(f"Roll job {job.id} attempt {attempt} is no longer current, skipping")
            return None
        if not user:
            raise RollJobError(RollErrorCode.USER_NOT_FOUND)

        tickets = await self.inventory_service.get_ticket_balance(user.id, job.ticket_type)
        if tickets < job.roll_count:
            raise RollJobError(
                RollErrorCode.INSUFFICIENT_TICKETS,
                f"Not enough {job.ticket_type}. Owned: {tickets}, needed: {job.roll_count}",
            )

        wonderspin = await self.wonderspin_service.get_wonderspin_by_name(job.wonderspin)
        if not wonderspin:
            raise RollJobError(RollErrorCode.POOL_NOT_FOUND)
        if not wonderspin.active:
            raise RollJobError(RollErrorCode.POOL_INACTIVE)
        if wonderspin.ticket_type != job.ticket_type:
            raise RollJobError(RollErrorCode.TICKET_MISMATCH)

        pool = PoolConfig.model_validate(wonderspin)

        pity = await self.wonderspin_service.get_pity(user.id, pool.id, for_update=True)
        state = PityState.model_validate(pity) if pity else PityState.initial(pool)

        outcomes, new_state = resolve(pool, state, job.roll_count, rng)
        result = RollBatchResult(
            outcomes=outcomes, obtained_assets=aggregate_outcomes(outcomes), pity=new_state
        )

        ticket_debit = ObtainedAsset(
            asset_type=AssetType.ITEM, asset=job.ticket_type, amount=job.roll_count
        )
        await self.inventory_service.apply_delta(
            user, debits=[ticket_debit], credits=result.obtained_assets
        )
        self.wonderspin_service.stage_pity(user.id, pool.id, new_state, pity)

        self.db.add(
            EventLog(
                user_id=user.id,
                event_type=EventType.WONDERSPIN_ROLL,
                roll_job_id=job.id,
                context={
                    "wonderspin_id": pool.id,
                    "ticket_type": job.ticket_type,
                    "roll_count": job.roll_count,
                    "rolls": [
                        {"asset": o.asset.asset, "tier": o.tier, "rule": o.rule} for o in outcomes
                    ],
                    "pity_before": state.model_dump(),
                    "pity_after": new_state.model_dump(),
                },
            )
        )

        job.status = RollJobStatus.COMPLETED
        job.locked_until = None
        job.error_code = None
        job.error_message = None
        job.result = result.model_dump(mode="json")
        self.db.add(job)

        await self.db.commit()

        return result

    async def _owns_job(self, job_id: str, attempt: int) -> bool:
        """Lock the job row and check it is still RUNNING under the given attempt."""
        job = await self.get_job(job_id, for_update=True)
        return (
            job is not None and job.status == RollJobStatus.RUNNING and job.attempts == attempt
        )

    async def _record_failure(
        self, job_id: str, attempt: int, error: RollJobError
    ) -> RollJob | None:
        job = await self.get_job(job_id, for_update=True)
        if job is None:
            return None
        if job.status != RollJobStatus.RUNNING or job.attempts != attempt:
            await self.db.commit()
            logger.info(
                f"Not recording {error.code} for roll job {job_id} attempt {attempt}, "
                f"it is now {job.status} on attempt {job.attempts}"
            )
            return job

        job.error_code = error.code
        job.error_message = error.message
        job.locked_until = None

        if error.retryable and job.attempts < settings.roll_job_max_attempts:
            job.status = RollJobStatus.PENDING
            logger.warning(
                f"Roll job {job_id} failed with {error.code}, retrying "
                f"(attempt {job.attempts}/{settings.roll_job_max_attempts})"
            )
        else:
            job.status = RollJobStatus.FAILED
            logger.info(f"Roll job {job_id} failed with {error.code}")

        self.db.add(job)
        await self.db.commit()
        return job
