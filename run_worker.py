import asyncio
import contextlib

from app.core.config import settings
from app.utils.logging import setup_logging
from app.workers.roll_worker import main

if __name__ == "__main__":
    setup_logging("roll_worker.log", level="DEBUG" if settings.is_dev else "INFO")
    with contextlib.suppress(KeyboardInterrupt, asyncio.CancelledError):
        asyncio.run(main())
