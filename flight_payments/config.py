import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def _flag(name: str, default: bool = True) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


@dataclass(frozen=True)
class PaymentSettings:
    database_url: str = "sqlite:///./payments.db"
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    jwt_secret: str = ""
    points_ledger_url: str = "http://points-ledger:8000"
    points_ledger_timeout: float = 5.0
    default_currency: str = "USD"
    supported_currencies: List[str] = field(
        default_factory=lambda: ["USD", "EUR", "GBP", "CAD", "AUD"]
    )
    enable_points_payments: bool = True
    enable_mixed_payments: bool = True
    log_level: str = "INFO"


def get_payment_settings() -> PaymentSettings:
    currencies = os.getenv("SUPPORTED_CURRENCIES", "USD,EUR,GBP,CAD,AUD")
    settings = PaymentSettings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./payments.db"),
        stripe_secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
        stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET", ""),
        jwt_secret=os.getenv("JWT_SECRET", ""),
        points_ledger_url=os.getenv("POINTS_LEDGER_URL", "http://points-ledger:8000").rstrip("/"),
        points_ledger_timeout=float(os.getenv("POINTS_LEDGER_TIMEOUT", "5.0")),
        default_currency=os.getenv("DEFAULT_CURRENCY", "USD").upper(),
        supported_currencies=[c.strip().upper() for c in currencies.split(",") if c.strip()],
        enable_points_payments=_flag("ENABLE_POINTS_PAYMENTS"),
        enable_mixed_payments=_flag("ENABLE_MIXED_PAYMENTS"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
    validate_payment_settings(settings)
    return settings


def validate_payment_settings(settings: PaymentSettings) -> None:
    if not _CURRENCY_RE.match(settings.default_currency):
        raise RuntimeError(f"Invalid default currency: {settings.default_currency}")
    for currency in settings.supported_currencies:
        if not _CURRENCY_RE.match(currency):
            raise RuntimeError(f"Invalid supported currency: {currency}")
    if settings.points_ledger_timeout <= 0:
        raise RuntimeError("POINTS_LEDGER_TIMEOUT must be positive")
