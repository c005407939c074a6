import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    API_KEY: str = os.getenv("API_KEY", "")
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    RQ_QUEUE_NAME: str = os.getenv("RQ_QUEUE_NAME", "escrow")

    # Backends: "redis" keeps contracts durable, "memory" is for local runs and tests
    STORE_BACKEND: str = os.getenv("STORE_BACKEND", "redis").lower()
    # "thread" arms in-process timers, "rq" schedules jobs on the RQ scheduler
    SCHEDULER_BACKEND: str = os.getenv("SCHEDULER_BACKEND", "thread").lower()
    SCHEDULER_POLL_SEC: float = float(os.getenv("SCHEDULER_POLL_SEC", "30"))

    # Escrow lifecycle
    AUTO_RELEASE_WINDOW_HOURS: float = float(os.getenv("AUTO_RELEASE_WINDOW_HOURS", "72"))
    CAS_MAX_RETRIES: int = int(os.getenv("CAS_MAX_RETRIES", "8"))
    DEFAULT_CURRENCY: str = os.getenv("DEFAULT_CURRENCY", "USD").upper()

    # Payment rail
    # - "simulated": deterministic-looking mock chain tx ids (no network)
    # - "http": POST to PAYMENT_RAIL_URL and read back {"tx_id": ...}
    PAYMENT_RAIL_MODE: str = os.getenv("PAYMENT_RAIL_MODE", "simulated").lower()
    PAYMENT_RAIL_URL: str = os.getenv("PAYMENT_RAIL_URL", "")
    PAYMENT_RAIL_TIMEOUT_SEC: float = float(os.getenv("PAYMENT_RAIL_TIMEOUT_SEC", "10"))

    # Lifecycle event fan-out
    # - "log": only emit a log line per event
    # - "rq": enqueue webhook delivery jobs
    EVENT_DISPATCH_MODE: str = os.getenv("EVENT_DISPATCH_MODE", "log").lower()
    EVENT_WEBHOOK_URL: str = os.getenv("EVENT_WEBHOOK_URL", "")
    EVENT_TIMEOUT_SEC: float = float(os.getenv("EVENT_TIMEOUT_SEC", "5"))
    EVENT_MAX_ATTEMPTS: int = int(os.getenv("EVENT_MAX_ATTEMPTS", "12"))
    EVENT_BASE_DELAY_MS: int = int(os.getenv("EVENT_BASE_DELAY_MS", "1000"))
    EVENT_MAX_DELAY_MS: int = int(os.getenv("EVENT_MAX_DELAY_MS", "3600000"))

    # Observability
    ENABLE_PII_REDACTION: bool = os.getenv("ENABLE_PII_REDACTION", "true").lower() == "true"
    METRICS_ENABLED: bool = os.getenv("METRICS_ENABLED", "true").lower() == "true"

    # Admin access
    # ADMIN_IDS: comma-separated identities allowed to force release/refund
    ADMIN_IDS: str = os.getenv("ADMIN_IDS", "")
    ADMIN_RBAC_ENABLED: bool = os.getenv("ADMIN_RBAC_ENABLED", "true").lower() == "true"
    ADMIN_API_KEY: str = os.getenv("ADMIN_API_KEY", "")

    def admin_ids(self) -> set:
        return {x.strip() for x in (self.ADMIN_IDS or "").split(",") if x.strip()}

    def auto_release_window_ms(self) -> int:
        return int(float(self.AUTO_RELEASE_WINDOW_HOURS) * 3600 * 1000)

settings = Settings()
