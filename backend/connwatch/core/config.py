from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Connection Watch"
    debug: bool = False

    # Paths
    db_path: Path = Path(__file__).resolve().parent.parent.parent / "connwatch.db"

    # Scheduler
    scheduler_enabled: bool = True
    tick_interval_seconds: float = 60.0
    per_connection_timeout_seconds: float = 30.0
    max_concurrent_tests: int = 5
    run_timeout_seconds: float = 300.0
    lease_ttl_seconds: float = 600.0

    # Result persistence
    persist_retries: int = 3
    persist_retry_delay_seconds: float = 0.5

    # Default testers
    http_probe_expected_status_below: int = 500

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["*"]

    @model_validator(mode="after")
    def check_lease_outlives_run(self) -> "Settings":
        # Longest a lease is held: the run deadline plus the sleeps between save attempts
        retry_wait = self.persist_retry_delay_seconds * sum(range(1, self.persist_retries))
        longest_run = self.run_timeout_seconds + retry_wait
        if self.lease_ttl_seconds <= longest_run:
            raise ValueError(
                f"lease_ttl_seconds ({self.lease_ttl_seconds}) must exceed run_timeout_seconds "
                f"plus persistence retry delays ({longest_run})"
            )
        return self

    model_config = {
        "env_file": str(Path(__file__).resolve().parent.parent.parent / ".env"),
        "env_prefix": "CONNWATCH_",
    }


settings = Settings()
