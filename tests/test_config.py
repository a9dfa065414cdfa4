import pytest

from flight_payments.config import PaymentSettings, get_payment_settings, validate_payment_settings
from flight_payments.database import engine_options


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("SUPPORTED_CURRENCIES", "usd, eur")
    monkeypatch.setenv("ENABLE_MIXED_PAYMENTS", "false")
    monkeypatch.setenv("POINTS_LEDGER_URL", "http://ledger.local/")

    settings = get_payment_settings()

    assert settings.supported_currencies == ["USD", "EUR"]
    assert settings.enable_mixed_payments is False
    assert settings.enable_points_payments is True
    assert settings.points_ledger_url == "http://ledger.local"


def test_invalid_currency_is_rejected():
    with pytest.raises(RuntimeError, match="Invalid supported currency"):
        validate_payment_settings(PaymentSettings(supported_currencies=["DOLLARS"]))


def test_non_positive_timeout_is_rejected(monkeypatch):
    monkeypatch.setenv("POINTS_LEDGER_TIMEOUT", "0")

    with pytest.raises(RuntimeError, match="POINTS_LEDGER_TIMEOUT"):
        get_payment_settings()


def test_sqlite_engine_is_shared_across_threads():
    assert engine_options("sqlite:///./payments.db") == {"connect_args": {"check_same_thread": False}}


def test_server_database_engine_checks_connections():
    options = engine_options("postgresql://payments@db/payments")

    assert options["pool_pre_ping"] is True
    assert "connect_args" not in options
