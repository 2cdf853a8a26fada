from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./hotel_booking.db"

    # This service only VERIFIES tokens issued by the auth service
    SECRET_KEY: str
    ALGORITHM: str = "HS256"

    # Guest-type lookup (role / membership) lives in another service
    MEMBERSHIP_SERVICE_URL: str = "http://membership:8000"
    MEMBERSHIP_TIMEOUT_SECONDS: float = 2.0

    # Shared secret the payment collaborator sends in X-Service-Key
    PAYMENT_SERVICE_KEY: str

    # --- KAFKA SETTINGS ---
    KAFKA_BOOTSTRAP_SERVERS: str = "kafka:9092"
    KAFKA_BOOKING_TOPIC: str = "booking_events"
    KAFKA_WAITLIST_TOPIC: str = "waitlist_notifications"

    REDIS_URL: str = "redis://redis:6379/0"
    RATE_LIMIT_ENABLED: bool = True

    # --- BOOKING POLICY ---
    WAITLIST_HOLD_HOURS: int = 24
    # (minimum hours of notice, percent refunded), most generous tier first
    REFUND_TIERS: list[tuple[int, int]] = [(168, 100), (72, 75), (24, 50)]

    TRANSACTION_MAX_ATTEMPTS: int = 3
    TRANSACTION_RETRY_BACKOFF_SECONDS: float = 0.05

    SCHEDULER_POLL_SECONDS: int = 3600
    OUTBOX_POLL_SECONDS: int = 5

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
