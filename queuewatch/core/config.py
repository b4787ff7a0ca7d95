from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


# Keep the remote service default in one place so the client and scripts agree.
DEFAULT_ENDPOINT = "https://api.queuewatch.io"
DEFAULT_CONNECTION = "default"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="QUEUEWATCH_",
        extra="ignore",
    )

    app_name: str = "app"
    log_level: str = "INFO"

    # Reporting credential; doubles as the HMAC key for inbound retry requests.
    api_key: str | None = None
    # Project name reported to the dashboard; falls back to app_name.
    project: str | None = None
    environment: str = "production"
    endpoint: str = DEFAULT_ENDPOINT
    # HTTP timeout for calls to the remote service (seconds).
    timeout: float = 5.0
    # Master switch for failure reporting; the test script still works when off.
    enabled: bool = True

    # Queue used for delivery tasks; "sync" delivers inline in the failing worker.
    queue: str = "default"
    # Named connection for delivery tasks; None uses the default connection.
    queue_connection: str | None = None
    # DSN of the "default" connection.
    redis_url: str = "redis://localhost:6379/0"
    # Extra named connections (name -> Redis DSN) for multi-Redis deployments.
    redis_connections: dict[str, str] = {}

    # Ignore lists are matched exactly against job class, queue and exception type names.
    ignored_jobs: list[str] = []
    ignored_queues: list[str] = []
    ignored_exceptions: list[str] = []
    # Include the job payload in reports; disable when payloads carry sensitive data.
    collect_job_data: bool = True

    # Delivery task attempt budget and fixed backoff between attempts.
    delivery_tries: int = 3
    delivery_backoff_seconds: int = 10

    # Remote retry endpoint; also keeps command blobs in reported payloads.
    retry_enabled: bool = False
    retry_path: str = "queuewatch/retry"
    # Use ["*"] to allow every queue.
    retry_allowed_queues: list[str] = ["*"]
    # Defer re-dispatched jobs by this many seconds (0 runs immediately).
    retry_delay: int = 0
    # Connection used when a retry request does not name one.
    retry_connection: str = DEFAULT_CONNECTION

    @property
    def project_name(self) -> str:
        return self.project or self.app_name

    @property
    def normalized_endpoint(self) -> str:
        return (self.endpoint or DEFAULT_ENDPOINT).rstrip("/")

    def connection_dsn(self, name: str | None) -> str | None:
        # Resolve a named connection to a DSN; None signals an unknown name.
        resolved = name or DEFAULT_CONNECTION
        if resolved in self.redis_connections:
            return self.redis_connections[resolved]
        if resolved == DEFAULT_CONNECTION:
            return self.redis_url
        return None


@lru_cache
def get_settings() -> Settings:
    return Settings()
