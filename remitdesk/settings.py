import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    API_KEY: str = os.getenv("API_KEY", "")
    DEFAULT_PRINCIPAL_ID: str = os.getenv("DEFAULT_PRINCIPAL_ID", "agent1")
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    RQ_QUEUE_NAME: str = os.getenv("RQ_QUEUE_NAME", "notifications")
    # "redis" for the shared store, "memory" for a single-process run
    ORDER_STORE: str = os.getenv("ORDER_STORE", "redis").lower()
    CAS_MAX_RETRIES: int = int(os.getenv("CAS_MAX_RETRIES", "5"))

    # Verification gate
    DELAY_THRESHOLD_MINUTES: int = int(os.getenv("DELAY_THRESHOLD_MINUTES", "10"))
    VERIFICATION_TTL_MINUTES: int = int(os.getenv("VERIFICATION_TTL_MINUTES", "30"))
    # 0 disables the periodic sweep; expiry is still evaluated on read
    VERIFICATION_SWEEP_SEC: int = int(os.getenv("VERIFICATION_SWEEP_SEC", "60"))

    # Dispute resolution
    DISPUTE_WINDOW_DAYS: int = int(os.getenv("DISPUTE_WINDOW_DAYS", "7"))
    ESCALATION_SLA_HOURS: int = int(os.getenv("ESCALATION_SLA_HOURS", "24"))
    PENDING_ETA_HOURS: int = int(os.getenv("PENDING_ETA_HOURS", "2"))
    REFUND_ETA: str = os.getenv("REFUND_ETA", "2-3 business days")

    # Transfer protocol
    DEFAULT_CALLBACK_PROVIDER: str = os.getenv("DEFAULT_CALLBACK_PROVIDER", "voice").lower()
    CALLBACK_VOICE_URL: str = os.getenv("CALLBACK_VOICE_URL", "http://localhost:8080/callback/voice")
    CALLBACK_VOICE_TOKEN: str = os.getenv("CALLBACK_VOICE_TOKEN", "")
    CALLBACK_TEXT_URL: str = os.getenv("CALLBACK_TEXT_URL", "http://localhost:8080/callback/text")
    CALLBACK_TEXT_TOKEN: str = os.getenv("CALLBACK_TEXT_TOKEN", "")
    CALLBACK_REQUIRE_TOKEN: bool = os.getenv("CALLBACK_REQUIRE_TOKEN", "false").lower() == "true"
    PAYMENT_LINK_BASE: str = os.getenv("PAYMENT_LINK_BASE", "botimapp://pay")
    MAX_SEND_AMOUNT: float = float(os.getenv("MAX_SEND_AMOUNT", "50000"))
    KYC_SEND_AMOUNT: float = float(os.getenv("KYC_SEND_AMOUNT", "10000"))
    SUGGESTED_AMOUNTS: str = os.getenv("SUGGESTED_AMOUNTS", "1000,2000,5000,10000")

    # Authoritative status source. Empty URL means "use the reconciled actualStatus".
    BACKEND_STATUS_URL: str = os.getenv("BACKEND_STATUS_URL", "")
    BACKEND_STATUS_TIMEOUT_SEC: float = float(os.getenv("BACKEND_STATUS_TIMEOUT_SEC", "5"))

    # Outbound notifications (email/voice rendering lives behind NOTIFY_URL)
    NOTIFY_URL: str = os.getenv("NOTIFY_URL", "")
    NOTIFY_TIMEOUT_SEC: float = float(os.getenv("NOTIFY_TIMEOUT_SEC", "5"))
    # Modes:
    # - "sync": deliver inline only
    # - "rq": queue only
    # - "hybrid": try inline first (deadline-bounded), then queue as backup
    NOTIFY_MODE: str = os.getenv("NOTIFY_MODE", "hybrid").lower()
    NOTIFY_DEADLINE_SEC: float = float(os.getenv("NOTIFY_DEADLINE_SEC", "4.0"))
    NOTIFY_SYNC_RETRIES: int = int(os.getenv("NOTIFY_SYNC_RETRIES", "1"))
    NOTIFY_PAYLOAD_VERSION: str = os.getenv("NOTIFY_PAYLOAD_VERSION", "1.0.0")
    PAYLOAD_FINGERPRINT_ALGO: str = os.getenv("PAYLOAD_FINGERPRINT_ALGO", "sha256")

    # Security & privacy
    ENABLE_PII_REDACTION: bool = os.getenv("ENABLE_PII_REDACTION", "true").lower() == "true"
    ADMIN_RBAC_ENABLED: bool = os.getenv("ADMIN_RBAC_ENABLED", "true").lower() == "true"
    ADMIN_API_KEY: str = os.getenv("ADMIN_API_KEY", "")

settings = Settings()
