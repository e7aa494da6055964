from typing import Literal

from dotenv import load_dotenv
from pydantic_settings import BaseSettings


class Config(BaseSettings):
    db_url: str
    env: Literal["prod", "dev"] = "prod"
    host: str = "127.0.0.1"
    port: int = 3011

    # Roll job worker
    roll_worker_enabled: bool = True
    roll_worker_concurrency: int = 4
    roll_worker_poll_interval: float = 0.5  # seconds
    roll_job_lease_seconds: int = 30
    roll_job_max_attempts: int = 3
    roll_job_wait_timeout: float = 10.0  # seconds

    @property
    def is_dev(self) -> bool:
        return self.env == "dev"


load_dotenv()
settings = Config()  # pyright: ignore[reportCallIssue]
