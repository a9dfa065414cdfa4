from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import flight_payments.models  # noqa: F401  (registers tables)
from flight_payments.database import Base
from flight_payments.errors import ProviderError
from flight_payments.orchestrator import PaymentOrchestrator
from flight_payments.points_ledger import PointsCredit, PointsDebit, PointsLedger
from flight_payments.store import PaymentStore
from flight_payments.stripe_service import CardGateway, CardIntent, CardSettlement

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_payments.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)

CARD_EXPIRY_YEAR = datetime.now().year + 3


class FakeCardGateway(CardGateway):
    """Card gateway double; flip the attributes to make calls fail."""

    def __init__(self, events):
        self.events = events
        self.calls = []
        self.confirm_status = "succeeded"
        self.refund_status = "succeeded"
        self.create_error = None
        self.refund_error = None

    def create_intent(self, amount, currency, card, idempotency_key, metadata=None):
        self.calls.append({"method": "create_intent", "amount": amount, "idempotency_key": idempotency_key})
        self.events.append("stripe.create")
        if self.create_error:
            raise ProviderError("stripe", self.create_error)
        return CardIntent(provider_intent_id=f"pi_stripe_{len(self.calls)}", status="requires_confirmation")

    def confirm_intent(self, provider_intent_id, payment_method_id=None):
        self.calls.append({"method": "confirm_intent", "provider_intent_id": provider_intent_id})
        self.events.append("stripe.confirm")
        return CardSettlement(status=self.confirm_status, provider_transaction_id=f"ch_{len(self.calls)}")

    def refund(self, provider_intent_id, amount, reason, idempotency_key):
        self.calls.append({"method": "refund", "provider_intent_id": provider_intent_id, "amount": amount})
        self.events.append("stripe.refund")
        if self.refund_error:
            raise ProviderError("stripe", self.refund_error)
        return CardSettlement(status=self.refund_status, provider_transaction_id=f"re_{len(self.calls)}")


class FakePointsLedger(PointsLedger):
    """In-memory ledger holding a single balance for every user and program."""

    def __init__(self, events, balance=50000):
        self.events = events
        self.balance = balance
        self.calls = []
        self.intents = {}
        self.confirm_error = None
        self.refund_error = None

    def check_balance(self, user_id, program):
        self.calls.append({"method": "check_balance", "program": program})
        return self.balance

    def create_points_intent(self, user_id, program, points, value, currency):
        self.calls.append({"method": "create_points_intent", "points": points, "value": value})
        self.events.append("points.create")
        ref = f"pts_{len(self.intents) + 1}"
        self.intents[ref] = (points, value)
        return ref

    def confirm_points_payment(self, intent_ref, account_id=None):
        self.calls.append({"method": "confirm_points_payment", "intent_ref": intent_ref})
        self.events.append("points.confirm")
        if self.confirm_error:
            raise ProviderError("points", self.confirm_error)
        points, value = self.intents[intent_ref]
        self.balance -= points
        return PointsDebit(points_used=points, points_value=value, transaction_ref=f"ptx_{intent_ref}")

    def refund_points_payment(self, intent_ref, amount):
        self.calls.append({"method": "refund_points_payment", "intent_ref": intent_ref, "amount": amount})
        self.events.append("points.refund")
        if self.refund_error:
            raise ProviderError("points", self.refund_error)
        points, value = self.intents[intent_ref]
        credited = points * amount // value if value else 0
        self.balance += credited
        return PointsCredit(points_credited=credited, transaction_ref=f"prf_{len(self.calls)}")


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def events():
    return []


@pytest.fixture
def gateway(events):
    return FakeCardGateway(events)


@pytest.fixture
def ledger(events):
    return FakePointsLedger(events)


@pytest.fixture
def store():
    return PaymentStore(TestingSessionLocal)


@pytest.fixture
def orchestrator(store, gateway, ledger):
    return PaymentOrchestrator(store, gateway, ledger)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    yield session
    session.close()


def _card():
    return {
        "last4": "4242",
        "brand": "visa",
        "expiry_month": 12,
        "expiry_year": CARD_EXPIRY_YEAR,
        "holder_name": "Ada Lovelace",
    }


@pytest.fixture
def card_request():
    def build(amount=10000, currency="USD", **overrides):
        request = {
            "booking_id": "booking-1",
            "user_id": "user-1",
            "amount": amount,
            "currency": currency,
            "payment_method": {"type": "credit_card", "credit_card": _card()},
        }
        request.update(overrides)
        return request
    return build


@pytest.fixture
def points_request():
    def build(amount=20000, points=20000, program="chase-ur", **overrides):
        request = {
            "booking_id": "booking-1",
            "user_id": "user-1",
            "amount": amount,
            "currency": "USD",
            "payment_method": {
                "type": "points",
                "points_used": {"program": program, "points": points},
            },
        }
        request.update(overrides)
        return request
    return build


@pytest.fixture
def mixed_request():
    def build(amount=30000, points=15000, cash_component=15000, **overrides):
        request = {
            "booking_id": "booking-1",
            "user_id": "user-1",
            "amount": amount,
            "currency": "USD",
            "payment_method": {
                "type": "mixed",
                "credit_card": _card(),
                "points_used": {
                    "program": "chase-ur",
                    "points": points,
                    "cash_component": cash_component,
                },
            },
        }
        request.update(overrides)
        return request
    return build
