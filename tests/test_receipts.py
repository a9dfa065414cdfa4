import re
from datetime import datetime, timezone

from flight_payments.receipts import build_receipt, generate_receipt_number
from flight_payments.schemas import (
    CreditCardInfo,
    CreditCardMethod,
    MixedMethod,
    PaymentTransaction,
    PointsInfo,
    PointsTransaction,
)

ISSUED_AT = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)
CARD = CreditCardInfo(
    last4="4242", brand="visa", expiry_month=12, expiry_year=2099, holder_name="Ada Lovelace"
)


def charge(provider, amount, **fields):
    return PaymentTransaction(
        id=f"txn_{provider}",
        payment_intent_id="pi_1",
        booking_id="booking-1",
        user_id="user-1",
        amount=amount,
        currency="USD",
        type="charge",
        status="completed",
        provider=provider,
        created_at=ISSUED_AT,
        **fields,
    )


def test_receipt_number_format():
    number = generate_receipt_number(ISSUED_AT)

    assert re.fullmatch(r"RCP-20260314-[A-Z0-9]{6}", number)


def test_card_receipt():
    method = CreditCardMethod(type="credit_card", credit_card=CARD)

    receipt = build_receipt(charge("stripe", 10000), method, issued_at=ISSUED_AT)

    assert receipt.total_amount == 10000
    assert receipt.payment_breakdown.cash_amount == 10000
    assert receipt.payment_breakdown.points_used is None
    assert receipt.payment_method.last4 == "4242"
    assert receipt.payment_method.provider == "stripe"
    assert receipt.receipt_number.startswith("RCP-20260314-")
    assert receipt.id.startswith("rcpt_")


def test_mixed_receipt_folds_in_points_leg():
    method = MixedMethod(
        type="mixed",
        credit_card=CARD,
        points_used=PointsInfo(program="chase-ur", points=15000, cash_component=15000),
    )
    points_leg = charge(
        "points",
        15000,
        points_transaction=PointsTransaction(program="chase-ur", points_used=15000, points_value=15000),
    )

    receipt = build_receipt(charge("stripe", 15000), method, points_leg=points_leg, issued_at=ISSUED_AT)

    assert receipt.total_amount == 30000
    assert receipt.payment_breakdown.cash_amount == 15000
    assert receipt.payment_breakdown.points_used == 15000
    assert receipt.payment_breakdown.points_value == 15000
    assert receipt.payment_method.program == "chase-ur"
    assert receipt.payment_method.type == "mixed"
