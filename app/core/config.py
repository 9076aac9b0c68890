"""
Application Configuration
Loads settings from environment variables (.env supported)
"""
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional
from dotenv import load_dotenv

from app.models.payment.gateway import VerificationPolicy

load_dotenv()


EASEBUZZ_TEST_URL = "https://testpay.easebuzz.in"
EASEBUZZ_PROD_URL = "https://pay.easebuzz.in"
EASEBUZZ_DASHBOARD_URL = "https://dashboard.easebuzz.in"
UPIGATEWAY_URL = "https://api.ekqr.in/api"


def _env(name: str, default: str = "") -> str:
    """Read an environment variable and trim surrounding whitespace"""
    return (os.getenv(name) or default).strip()


def _env_bool(name: str, default: str = "false") -> bool:
    return _env(name, default).lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, built once at startup"""
    app_name: str = "PaymentOrchestrator"
    app_version: str = "1.0.0"
    app_env: str = "development"
    log_level: str = "INFO"

    mongodb_url: str = "mongodb://localhost:27017"
    database_name: str = "payment_orchestrator"

    secret_key: str = ""
    algorithm: str = "HS256"

    # Easebuzz (hosted checkout)
    easebuzz_key: str = ""
    easebuzz_salt: str = ""
    easebuzz_env: str = "test"
    easebuzz_base_url: str = EASEBUZZ_TEST_URL
    easebuzz_dashboard_url: str = EASEBUZZ_DASHBOARD_URL
    easebuzz_merchant_email: str = ""

    # UPI Gateway (EKQR)
    ekqr_key: str = ""
    upigateway_base_url: str = UPIGATEWAY_URL
    upigateway_default_redirect_url: str = "/payment/status"

    verification_policy_override: Optional[str] = None

    # Background status polling
    status_poll_enabled: bool = False
    status_poll_interval_minutes: int = 5
    status_poll_min_age_minutes: int = 10
    status_poll_batch_size: int = 50

    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() in ("prod", "production")

    @property
    def include_stack_traces(self) -> bool:
        """Stack traces are attached to error responses outside production only"""
        return not self.is_production

    @property
    def verification_policy(self) -> VerificationPolicy:
        """
        Hash verification policy injected into gateway adapters.
        Strict in production unless explicitly overridden.
        """
        if self.verification_policy_override:
            return VerificationPolicy(self.verification_policy_override.lower())
        return VerificationPolicy.STRICT if self.is_production else VerificationPolicy.PERMISSIVE

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the current environment"""
        easebuzz_env = _env("EASEBUZZ_ENV", "test").lower()
        default_easebuzz_url = (
            EASEBUZZ_PROD_URL if easebuzz_env in ("prod", "production") else EASEBUZZ_TEST_URL
        )
        cors = _env("CORS_ORIGINS", "*")

        return cls(
            app_name=_env("APP_NAME", "PaymentOrchestrator"),
            app_version=_env("APP_VERSION", "1.0.0"),
            app_env=_env("APP_ENV", "development").lower(),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
            mongodb_url=_env("MONGODB_URL", "mongodb://localhost:27017"),
            database_name=_env("DATABASE_NAME", "payment_orchestrator"),
            secret_key=_env("SECRET_KEY"),
            algorithm=_env("ALGORITHM", "HS256"),
            easebuzz_key=_env("EASEBUZZ_KEY"),
            easebuzz_salt=_env("EASEBUZZ_SALT"),
            easebuzz_env=easebuzz_env,
            easebuzz_base_url=_env("EASEBUZZ_BASE_URL", default_easebuzz_url).rstrip("/"),
            easebuzz_dashboard_url=_env("EASEBUZZ_DASHBOARD_URL", EASEBUZZ_DASHBOARD_URL).rstrip("/"),
            easebuzz_merchant_email=_env("EASEBUZZ_MERCHANT_EMAIL").lower(),
            ekqr_key=_env("EKQR_KEY"),
            upigateway_base_url=_env("UPIGATEWAY_BASE_URL", UPIGATEWAY_URL).rstrip("/"),
            upigateway_default_redirect_url=_env("UPIGATEWAY_DEFAULT_REDIRECT_URL", "/payment/status"),
            verification_policy_override=_env("HASH_VERIFICATION_POLICY") or None,
            status_poll_enabled=_env_bool("STATUS_POLL_ENABLED"),
            status_poll_interval_minutes=int(_env("STATUS_POLL_INTERVAL_MINUTES", "5")),
            status_poll_min_age_minutes=int(_env("STATUS_POLL_MIN_AGE_MINUTES", "10")),
            status_poll_batch_size=int(_env("STATUS_POLL_BATCH_SIZE", "50")),
            cors_origins=[origin.strip() for origin in cors.split(",") if origin.strip()],
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings.from_env()
