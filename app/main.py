from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.db import engine
from app.utils.exception_handlers import register_exception_handlers
from app.utils.router_discovery import register_routers
from app.workers.roll_worker import RollWorker


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncGenerator[None, FastAPI]:
    worker = RollWorker() if settings.roll_worker_enabled else None
    if worker:
        worker.start()

    yield

    if worker:
        await worker.stop()
    await engine.dispose()


app = FastAPI(
    title="Wonderspin API",
    lifespan=app_lifespan,
    servers=[{"url": "http://localhost:8080", "description": "Local server"}],
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


register_routers(app)
register_exception_handlers(app)


@app.get("/")
async def healthz() -> str:
    return "OK"
