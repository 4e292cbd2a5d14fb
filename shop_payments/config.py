import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")


@dataclass(frozen=True)
class StripeSettings:
    secret_key: str
    webhook_secret: str
    success_url: str
    cancel_url: str
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class MockProviderSettings:
    webhook_secret: str
    checkout_base_url: str = "http://localhost:5173/mock-checkout"


@dataclass(frozen=True)
class AuthSettings:
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    jwt_audience: Optional[str] = None


def load_stripe_settings() -> Optional[StripeSettings]:
    """Stripe is only wired when both the API key and the webhook secret are set."""
    secret_key = os.getenv("STRIPE_SECRET_KEY")
    webhook_secret = os.getenv("STRIPE_WEBHOOK_SECRET")
    if not secret_key or not webhook_secret:
        return None

    frontend = os.getenv("FRONTEND_ORIGIN", "http://localhost:5173")
    return StripeSettings(
        secret_key=secret_key,
        webhook_secret=webhook_secret,
        success_url=os.getenv(
            "STRIPE_SUCCESS_URL",
            f"{frontend}/payment/success?session_id={{CHECKOUT_SESSION_ID}}",
        ),
        cancel_url=os.getenv("STRIPE_CANCEL_URL", f"{frontend}/payment/fail"),
        timeout_seconds=float(os.getenv("STRIPE_TIMEOUT_SECONDS", "30")),
    )


def load_mock_settings() -> Optional[MockProviderSettings]:
    secret = os.getenv("MOCK_WEBHOOK_SECRET")
    if not secret:
        return None
    return MockProviderSettings(
        webhook_secret=secret,
        checkout_base_url=os.getenv(
            "MOCK_CHECKOUT_BASE_URL", "http://localhost:5173/mock-checkout"
        ),
    )


def load_auth_settings() -> AuthSettings:
    return AuthSettings(
        jwt_secret=os.getenv("JWT_SECRET", ""),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        jwt_audience=os.getenv("JWT_AUDIENCE") or None,
    )
