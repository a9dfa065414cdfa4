"""Relational persistence for intents, transactions and receipts.

Every method runs in its own session. Status changes and refund reservations
are single conditional UPDATE statements so that concurrent callers cannot
both pass the same precondition.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from flight_payments.models import (
    PaymentIntentRecord,
    PaymentReceiptRecord,
    PaymentTransactionRecord,
)
from flight_payments.schemas import PaymentIntent, PaymentReceipt, PaymentTransaction

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _intent_from_record(row: PaymentIntentRecord) -> PaymentIntent:
    return PaymentIntent.model_validate({
        "id": row.id,
        "booking_id": row.booking_id,
        "user_id": row.user_id,
        "amount": row.amount,
        "currency": row.currency,
        "payment_method": row.payment_method,
        "status": row.status,
        "provider_intent_id": row.provider_intent_id,
        "metadata": row.metadata_ or {},
        "refunded_amount": row.refunded_amount or 0,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    })


def _transaction_from_record(row: PaymentTransactionRecord) -> PaymentTransaction:
    return PaymentTransaction.model_validate({
        "id": row.id,
        "payment_intent_id": row.payment_intent_id,
        "booking_id": row.booking_id,
        "user_id": row.user_id,
        "amount": row.amount,
        "currency": row.currency,
        "type": row.type,
        "status": row.status,
        "provider": row.provider,
        "provider_transaction_id": row.provider_transaction_id,
        "points_transaction": row.points_transaction,
        "failure_reason": row.failure_reason,
        "processed_at": row.processed_at,
        "created_at": row.created_at,
    })


def _receipt_from_record(row: PaymentReceiptRecord) -> PaymentReceipt:
    return PaymentReceipt.model_validate({
        "id": row.id,
        "payment_intent_id": row.payment_intent_id,
        "booking_id": row.booking_id,
        "user_id": row.user_id,
        "receipt_number": row.receipt_number,
        "total_amount": row.total_amount,
        "currency": row.currency,
        "payment_breakdown": row.payment_breakdown,
        "payment_method": row.payment_method,
        "issued_at": row.issued_at,
        "receipt_url": row.receipt_url,
    })


class PaymentStore:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    # intents

    def save_intent(self, intent: PaymentIntent) -> None:
        with self.session_factory() as db:
            db.add(PaymentIntentRecord(
                id=intent.id,
                booking_id=intent.booking_id,
                user_id=intent.user_id,
                amount=intent.amount,
                currency=intent.currency,
                payment_method=intent.payment_method.model_dump(mode="json"),
                status=intent.status,
                provider_intent_id=intent.provider_intent_id,
                metadata_=intent.metadata,
                refunded_amount=intent.refunded_amount,
                created_at=intent.created_at,
                updated_at=intent.updated_at,
            ))
            db.commit()

    def get_intent(self, intent_id: str) -> Optional[PaymentIntent]:
        with self.session_factory() as db:
            row = db.get(PaymentIntentRecord, intent_id)
            return _intent_from_record(row) if row else None

    def claim_for_confirmation(self, intent_id: str) -> bool:
        """Move a pending intent to processing; False if someone else got there first."""
        with self.session_factory() as db:
            claimed = (
                db.query(PaymentIntentRecord)
                .filter(
                    PaymentIntentRecord.id == intent_id,
                    PaymentIntentRecord.status == "pending",
                )
                .update({"status": "processing", "updated_at": _now()}, synchronize_session=False)
            )
            db.commit()
        return claimed == 1

    def finish_confirmation(
        self,
        intent_id: str,
        status: str,
        metadata: Optional[Dict[str, Any]] = None,
        receipt: Optional[PaymentReceipt] = None,
    ) -> PaymentIntent:
        values: Dict[Any, Any] = {"status": status, "updated_at": _now()}
        if metadata is not None:
            values[PaymentIntentRecord.metadata_] = metadata

        with self.session_factory() as db:
            updated = (
                db.query(PaymentIntentRecord)
                .filter(
                    PaymentIntentRecord.id == intent_id,
                    PaymentIntentRecord.status == "processing",
                )
                .update(values, synchronize_session=False)
            )
            if updated != 1:
                db.rollback()
                raise RuntimeError(f"Payment intent {intent_id} was not in processing state")
            if receipt is not None:
                db.add(self._receipt_record(receipt))
            db.commit()

        logger.info("Payment intent %s -> %s", intent_id, status)
        return self.get_intent(intent_id)

    def reserve_refund(self, intent_id: str, amount: int) -> bool:
        """Add ``amount`` to the refunded total unless it would pass the original amount."""
        with self.session_factory() as db:
            reserved = (
                db.query(PaymentIntentRecord)
                .filter(
                    PaymentIntentRecord.id == intent_id,
                    PaymentIntentRecord.status == "completed",
                    PaymentIntentRecord.refunded_amount + amount <= PaymentIntentRecord.amount,
                )
                .update(
                    {
                        "refunded_amount": PaymentIntentRecord.refunded_amount + amount,
                        "updated_at": _now(),
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
        return reserved == 1

    def release_refund(self, intent_id: str, amount: int) -> None:
        with self.session_factory() as db:
            (
                db.query(PaymentIntentRecord)
                .filter(PaymentIntentRecord.id == intent_id)
                .update(
                    {
                        "refunded_amount": PaymentIntentRecord.refunded_amount - amount,
                        "updated_at": _now(),
                    },
                    synchronize_session=False,
                )
            )
            db.commit()

    # transactions

    def save_transaction(self, transaction: PaymentTransaction) -> None:
        points = transaction.points_transaction
        with self.session_factory() as db:
            db.add(PaymentTransactionRecord(
                id=transaction.id,
                payment_intent_id=transaction.payment_intent_id,
                booking_id=transaction.booking_id,
                user_id=transaction.user_id,
                amount=transaction.amount,
                currency=transaction.currency,
                type=transaction.type,
                status=transaction.status,
                provider=transaction.provider,
                provider_transaction_id=transaction.provider_transaction_id,
                points_transaction=points.model_dump() if points else None,
                failure_reason=transaction.failure_reason,
                processed_at=transaction.processed_at,
                created_at=transaction.created_at,
            ))
            db.commit()

    def list_transactions(self, booking_id: str, user_id: Optional[str] = None) -> List[PaymentTransaction]:
        with self.session_factory() as db:
            query = db.query(PaymentTransactionRecord).filter(
                PaymentTransactionRecord.booking_id == booking_id
            )
            if user_id is not None:
                query = query.filter(PaymentTransactionRecord.user_id == user_id)
            rows = query.order_by(PaymentTransactionRecord.created_at.desc()).all()
            return [_transaction_from_record(row) for row in rows]

    def list_intent_transactions(self, intent_id: str) -> List[PaymentTransaction]:
        with self.session_factory() as db:
            rows = (
                db.query(PaymentTransactionRecord)
                .filter(PaymentTransactionRecord.payment_intent_id == intent_id)
                .order_by(PaymentTransactionRecord.created_at)
                .all()
            )
            return [_transaction_from_record(row) for row in rows]

    # receipts

    def get_receipt(self, intent_id: str) -> Optional[PaymentReceipt]:
        with self.session_factory() as db:
            row = (
                db.query(PaymentReceiptRecord)
                .filter(PaymentReceiptRecord.payment_intent_id == intent_id)
                .first()
            )
            return _receipt_from_record(row) if row else None

    @staticmethod
    def _receipt_record(receipt: PaymentReceipt) -> PaymentReceiptRecord:
        return PaymentReceiptRecord(
            id=receipt.id,
            payment_intent_id=receipt.payment_intent_id,
            booking_id=receipt.booking_id,
            user_id=receipt.user_id,
            receipt_number=receipt.receipt_number,
            total_amount=receipt.total_amount,
            currency=receipt.currency,
            payment_breakdown=receipt.payment_breakdown.model_dump(),
            payment_method=receipt.payment_method.model_dump(),
            issued_at=receipt.issued_at,
            receipt_url=receipt.receipt_url,
        )
