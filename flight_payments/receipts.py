import secrets
import string
from datetime import datetime, timezone
from typing import Optional

from flight_payments import ids
from flight_payments.schemas import (
    PaymentBreakdown,
    PaymentMethod,
    PaymentReceipt,
    PaymentTransaction,
    ReceiptPaymentMethod,
)

_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def generate_receipt_number(issued_at: datetime) -> str:
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(6))
    return f"RCP-{issued_at:%Y%m%d}-{suffix}"


def build_receipt(
    transaction: PaymentTransaction,
    payment_method: PaymentMethod,
    points_leg: Optional[PaymentTransaction] = None,
    taxes: int = 0,
    fees: int = 0,
    issued_at: Optional[datetime] = None,
) -> PaymentReceipt:
    """Build the receipt for a settled charge.

    ``points_leg`` is the ledger half of a mixed settlement; it is folded into
    the same breakdown so the receipt total matches what the customer paid.
    """
    issued_at = issued_at or datetime.now(timezone.utc)

    breakdown = PaymentBreakdown(taxes=taxes, fees=fees)
    if transaction.provider == "stripe":
        breakdown.cash_amount = transaction.amount
    points_source = points_leg or transaction
    if points_source.points_transaction is not None:
        breakdown.points_used = points_source.points_transaction.points_used
        breakdown.points_value = points_source.points_transaction.points_value

    total = transaction.amount + (points_leg.amount if points_leg else 0)

    card = getattr(payment_method, "credit_card", None)
    points = getattr(payment_method, "points_used", None)
    snapshot = ReceiptPaymentMethod(
        id=ids.new_id(ids.PAYMENT_METHOD),
        type=payment_method.type,
        provider=transaction.provider,
        last4=card.last4 if card else None,
        brand=card.brand if card else None,
        program=points.program if points else None,
    )

    return PaymentReceipt(
        id=ids.new_id(ids.RECEIPT),
        payment_intent_id=transaction.payment_intent_id,
        booking_id=transaction.booking_id,
        user_id=transaction.user_id,
        receipt_number=generate_receipt_number(issued_at),
        total_amount=total,
        currency=transaction.currency,
        payment_breakdown=breakdown,
        payment_method=snapshot,
        issued_at=issued_at,
    )
