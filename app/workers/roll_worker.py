"""
Roll Worker

Background worker consuming the Wonderspin roll job queue.

Each consumer task:
1. Claims the oldest runnable job with a lease
2. Waits for the job's (user, Wonderspin) key lock
3. Validates, resolves and commits the roll
4. Records the failure code on the job if anything goes wrong

Run with: python run_worker.py
"""

import asyncio
import contextlib
import random
from collections.abc import AsyncIterator

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.config import settings
from app.core.db import engine
from app.core.db import session_factory as default_session_factory
from app.core.enums import RollJobStatus
from app.models.roll_job import RollJob
from app.services.inventory import InventoryService
from app.services.roll_job import RollJobService
from app.services.wonderspin import WonderspinService


def build_roll_job_service(session: AsyncSession) -> RollJobService:
    return RollJobService(session, InventoryService(session), WonderspinService(session))


class KeyedLock:
    """One `asyncio.Lock` per key, dropped once nobody holds or waits for it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


class RollWorker:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = default_session_factory,
        *,
        concurrency: int | None = None,
        poll_interval: float | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.concurrency = concurrency or settings.roll_worker_concurrency
        self.poll_interval = (
            settings.roll_worker_poll_interval if poll_interval is None else poll_interval
        )
        self.rng = rng

        self._key_locks = KeyedLock()
        self._stopping = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []

    async def run_once(self) -> RollJob | None:
        """Claim and process a single job. Returns `None` if the queue had nothing runnable."""
        async with self.session_factory() as session:
            job = await build_roll_job_service(session).claim_next_job()
            if job is None or job.status is not RollJobStatus.RUNNING:
                return job
            job_id, lock_key, attempt = job.id, job.lock_key, job.attempts

        async with self._key_locks.hold(lock_key), self.session_factory() as session:
            return await build_roll_job_service(session).process_job(
                job_id, self.rng, attempt=attempt
            )

    async def drain(self) -> int:
        """Process jobs until none is runnable. Returns how many were processed."""
        processed = 0
        while await self.run_once() is not None:
            processed += 1
        return processed

    async def _consume(self, name: str) -> None:
        logger.info(f"Roll consumer {name} started")
        while not self._stopping.is_set():
            try:
                job = await self.run_once()
            except Exception:
                logger.exception(f"Roll consumer {name} failed to process a job")
                job = None

            if job is None:
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
        logger.info(f"Roll consumer {name} stopped")

    def start(self) -> None:
        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._consume(f"roll-{index}"), name=f"roll-{index}")
            for index in range(self.concurrency)
        ]

    async def stop(self) -> None:
        self._stopping.set()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []


async def main() -> None:
    worker = RollWorker()
    logger.info(f"Starting roll worker with {worker.concurrency} consumers")
    worker.start()
    try:
        await asyncio.Event().wait()
    finally:
        await worker.stop()
        await engine.dispose()

