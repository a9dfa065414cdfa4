"""Payment orchestration: create, confirm and refund payment intents.

An intent is settled by the card gateway, the points ledger, or both (mixed
tender). Mixed settlement always debits points before charging the card; if
the card leg fails the points debit is credited back so the customer is never
left half-charged.

Public methods never raise. Failures come back as ``PaymentResult`` values
carrying the error message and its taxonomy code.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import pydantic

from flight_payments import ids
from flight_payments.config import PaymentSettings
from flight_payments.errors import (
    InsufficientPointsError,
    NotFoundError,
    PaymentError,
    ProviderError,
    StateError,
    UnknownError,
    ValidationError,
)
from flight_payments.points_ledger import PointsLedger
from flight_payments.receipts import build_receipt
from flight_payments.schemas import (
    ConfirmPaymentRequest,
    CreatePaymentIntentRequest,
    CreditCardMethod,
    MixedMethod,
    PaymentIntent,
    PaymentMethodDetails,
    PaymentResult,
    PaymentTransaction,
    PointsInfo,
    PointsMethod,
    PointsTransaction,
    RefundPaymentRequest,
)
from flight_payments.store import PaymentStore
from flight_payments.stripe_service import SUCCEEDED, CardGateway

logger = logging.getLogger(__name__)

# Stripe refund states that mean the money is on its way back
_REFUND_ACCEPTED = {SUCCEEDED, "pending"}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse(model, data):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ValidationError(f"Validation error: {location}: {first['msg']}")


def _failure_message(error: Exception) -> str:
    if isinstance(error, PaymentError):
        return error.message
    return str(error) or type(error).__name__


def split_refund(refund_amount: int, total_amount: int, points_value: int) -> Tuple[int, int]:
    """Split a mixed refund into (points, card) shares using the creation-time ratio.

    The points share is rounded down and the card takes the remainder, so the
    two shares always add up to ``refund_amount``.
    """
    if total_amount <= 0:
        return 0, refund_amount
    points_share = points_value * refund_amount // total_amount
    return points_share, refund_amount - points_share


class PaymentOrchestrator:
    def __init__(
        self,
        store: PaymentStore,
        card_gateway: CardGateway,
        points_ledger: PointsLedger,
        settings: Optional[PaymentSettings] = None,
    ):
        self.store = store
        self.card_gateway = card_gateway
        self.points_ledger = points_ledger
        self.settings = settings or PaymentSettings()

    def create_payment_intent(self, request) -> PaymentResult:
        return self._run("creation", self._create, request)

    def confirm_payment(self, request) -> PaymentResult:
        return self._run("confirmation", self._confirm, request)

    def refund_payment(self, request) -> PaymentResult:
        return self._run("refund", self._refund, request)

    def get_payment_intent(self, payment_intent_id: str) -> Optional[PaymentIntent]:
        return self.store.get_intent(payment_intent_id)

    def get_payment_transactions(
        self, booking_id: str, user_id: Optional[str] = None
    ) -> List[PaymentTransaction]:
        return self.store.list_transactions(booking_id, user_id=user_id)

    def _run(self, operation: str, handler, request) -> PaymentResult:
        try:
            return handler(request)
        except PaymentError as e:
            logger.warning("Payment %s failed (%s): %s", operation, e.code, e.message)
            return PaymentResult(success=False, error=e.message, error_code=e.code)
        except Exception as e:
            logger.exception("Unexpected error during payment %s", operation)
            error = UnknownError(str(e) or f"Unknown payment {operation} error")
            return PaymentResult(success=False, error=error.message, error_code=error.code)

    # creation

    def _create(self, request) -> PaymentResult:
        req = _parse(CreatePaymentIntentRequest, request)
        self._check_create(req)

        intent_id = ids.new_id(ids.INTENT)
        method = req.payment_method
        metadata: Dict[str, Any] = dict(req.metadata)
        provider_intent_id = None

        if isinstance(method, CreditCardMethod):
            card_intent = self.card_gateway.create_intent(
                req.amount,
                req.currency,
                method.credit_card,
                idempotency_key=intent_id,
                metadata={"payment_intent_id": intent_id, "booking_id": req.booking_id, "user_id": req.user_id},
            )
            provider_intent_id = card_intent.provider_intent_id
        elif isinstance(method, PointsMethod):
            provider_intent_id = self._open_points_intent(
                req.user_id, method.points_used, req.amount, req.currency
            )
        elif isinstance(method, MixedMethod):
            points_value = method.points_used.cash_component or 0
            credit_card_amount = req.amount - points_value
            if credit_card_amount < 0:
                raise ValidationError("Points value exceeds total amount")
            self._require_points(req.user_id, method.points_used)
            # frozen here: the ledger's valuation may drift before confirm/refund
            metadata.update(
                mixed_payment=True,
                points_value=points_value,
                credit_card_amount=credit_card_amount,
            )
        else:
            raise ValidationError("Unsupported payment method type")

        now = _now()
        intent = PaymentIntent(
            id=intent_id,
            booking_id=req.booking_id,
            user_id=req.user_id,
            amount=req.amount,
            currency=req.currency,
            payment_method=method,
            status="pending",
            provider_intent_id=provider_intent_id,
            metadata=metadata,
            created_at=now,
            updated_at=now,
        )
        self.store.save_intent(intent)
        logger.info(
            "Created %s payment intent %s for booking %s", method.type, intent.id, intent.booking_id
        )
        return PaymentResult(success=True, payment_intent=intent)

    def _check_create(self, req: CreatePaymentIntentRequest) -> None:
        method = req.payment_method
        if req.currency not in self.settings.supported_currencies:
            raise ValidationError(f"Unsupported currency: {req.currency}")
        if method.type in ("points", "mixed") and not self.settings.enable_points_payments:
            raise ValidationError("Points payments are disabled")
        if method.type == "mixed" and not self.settings.enable_mixed_payments:
            raise ValidationError("Mixed payments are disabled")

        card = getattr(method, "credit_card", None)
        if card is not None:
            today = _now()
            if (card.expiry_year, card.expiry_month) < (today.year, today.month):
                raise ValidationError("Validation error: credit card has expired")

    def _require_points(self, user_id: str, points: PointsInfo) -> None:
        available = self.points_ledger.check_balance(user_id, points.program)
        if available < points.points:
            raise InsufficientPointsError(points.points, available, points.program)

    def _open_points_intent(self, user_id: str, points: PointsInfo, value: int, currency: str) -> str:
        self._require_points(user_id, points)
        return self.points_ledger.create_points_intent(
            user_id, points.program, points.points, value, currency
        )

    # confirmation

    def _confirm(self, request) -> PaymentResult:
        req = _parse(ConfirmPaymentRequest, request)
        intent = self._load(req.payment_intent_id)
        if intent.status != "pending":
            raise StateError(
                f"Payment intent is in {intent.status} status and cannot be confirmed"
            )
        if not self.store.claim_for_confirmation(intent.id):
            raise StateError("Payment intent is already being confirmed")

        details = req.payment_method_details or PaymentMethodDetails()
        metadata = dict(intent.metadata)
        try:
            legs = self._settle(intent, details, metadata)
        except Exception:
            self.store.finish_confirmation(intent.id, "failed", metadata=metadata)
            raise

        primary = next((leg for leg in legs if leg.provider == "stripe"), legs[0] if legs else None)
        try:
            receipt = None
            if primary is not None:
                points_leg = next(
                    (leg for leg in legs if leg.provider == "points" and leg is not primary), None
                )
                receipt = build_receipt(primary, intent.payment_method, points_leg=points_leg)

            updated = self.store.finish_confirmation(
                intent.id, "completed", metadata=metadata, receipt=receipt
            )
        except Exception:
            # money has moved: complete without a receipt and flag for follow-up
            logger.exception(
                "Payment intent %s settled but could not be recorded; needs reconciliation",
                intent.id,
            )
            metadata["needs_reconciliation"] = True
            self.store.finish_confirmation(intent.id, "completed", metadata=metadata)
            raise
        return PaymentResult(
            success=True,
            payment_intent=updated,
            transaction=primary,
            transactions=legs,
            receipt=receipt,
        )

    def _settle(self, intent: PaymentIntent, details: PaymentMethodDetails, metadata) -> List[PaymentTransaction]:
        method = intent.payment_method
        if isinstance(method, CreditCardMethod):
            return [self._charge_card(intent, intent.provider_intent_id, intent.amount, details)]
        if isinstance(method, PointsMethod):
            return [
                self._debit_points(
                    intent, intent.provider_intent_id, intent.amount, method.points_used.program, details
                )
            ]
        if isinstance(method, MixedMethod):
            return self._settle_mixed(intent, method, details, metadata)
        raise ValidationError("Unsupported payment method type")

    def _settle_mixed(
        self,
        intent: PaymentIntent,
        method: MixedMethod,
        details: PaymentMethodDetails,
        metadata: Dict[str, Any],
    ) -> List[PaymentTransaction]:
        points_value = int(metadata.get("points_value", 0))
        credit_card_amount = int(metadata.get("credit_card_amount", intent.amount - points_value))
        legs: List[PaymentTransaction] = []

        points_leg = None
        if points_value > 0:
            ref = self._open_points_intent(
                intent.user_id, method.points_used, points_value, intent.currency
            )
            metadata["points_intent_ref"] = ref
            points_leg = self._debit_points(
                intent, ref, points_value, method.points_used.program, details
            )
            legs.append(points_leg)

        if credit_card_amount > 0:
            try:
                card_intent = self.card_gateway.create_intent(
                    credit_card_amount,
                    intent.currency,
                    method.credit_card,
                    idempotency_key=f"{intent.id}-card",
                    metadata={"payment_intent_id": intent.id, "booking_id": intent.booking_id},
                )
                metadata["card_provider_intent_id"] = card_intent.provider_intent_id
                legs.append(
                    self._charge_card(intent, card_intent.provider_intent_id, credit_card_amount, details)
                )
            except Exception as e:
                if points_leg is not None:
                    self._compensate_points(intent, metadata, points_leg, e)
                raise
        return legs

    def _charge_card(
        self,
        intent: PaymentIntent,
        provider_intent_id: Optional[str],
        amount: int,
        details: PaymentMethodDetails,
    ) -> PaymentTransaction:
        if not provider_intent_id:
            raise ProviderError("stripe", "No Stripe payment intent ID found")
        try:
            settlement = self.card_gateway.confirm_intent(
                provider_intent_id, details.stripe_payment_method_id
            )
        except PaymentError as e:
            self._record_failure(intent, "charge", "stripe", amount, e.message)
            raise
        if not settlement.succeeded:
            reason = f"Card payment {settlement.status}"
            self._record_failure(
                intent, "charge", "stripe", amount, reason, settlement.provider_transaction_id
            )
            raise ProviderError("stripe", reason)

        transaction = self._transaction(
            intent, "charge", "stripe", amount,
            provider_transaction_id=settlement.provider_transaction_id,
        )
        self.store.save_transaction(transaction)
        return transaction

    def _debit_points(
        self,
        intent: PaymentIntent,
        intent_ref: Optional[str],
        amount: int,
        program: str,
        details: PaymentMethodDetails,
    ) -> PaymentTransaction:
        if not intent_ref:
            raise ProviderError("points", "No points intent reference found")
        try:
            debit = self.points_ledger.confirm_points_payment(intent_ref, details.points_account_id)
        except PaymentError as e:
            self._record_failure(intent, "charge", "points", amount, e.message)
            raise

        transaction = self._transaction(
            intent, "charge", "points", amount,
            provider_transaction_id=debit.transaction_ref,
            points_transaction=PointsTransaction(
                program=program, points_used=debit.points_used, points_value=debit.points_value
            ),
        )
        self.store.save_transaction(transaction)
        return transaction

    def _compensate_points(
        self,
        intent: PaymentIntent,
        metadata: Dict[str, Any],
        points_leg: PaymentTransaction,
        error: Exception,
    ) -> None:
        """Credit back a settled points leg after the card leg failed."""
        try:
            credit = self.points_ledger.refund_points_payment(
                metadata["points_intent_ref"], points_leg.amount
            )
        except Exception:
            logger.exception(
                "Compensating points credit failed for payment intent %s; manual follow-up needed",
                intent.id,
            )
            metadata["compensation_failed"] = True
            return

        transaction = self._transaction(
            intent, "refund", "points", points_leg.amount,
            provider_transaction_id=credit.transaction_ref,
            points_transaction=PointsTransaction(
                program=points_leg.points_transaction.program,
                points_used=-credit.points_credited,
                points_value=points_leg.amount,
            ),
            failure_reason=f"compensation: {error}",
        )
        self.store.save_transaction(transaction)
        metadata["compensated"] = True
        logger.warning(
            "Credited back %s points for payment intent %s after card failure",
            credit.points_credited, intent.id,
        )

    # refunds

    def _refund(self, request) -> PaymentResult:
        req = _parse(RefundPaymentRequest, request)
        intent = self._load(req.payment_intent_id)
        if intent.status != "completed":
            raise StateError(
                f"Payment intent is in {intent.status} status and cannot be refunded"
            )

        amount = req.amount if req.amount is not None else intent.amount
        remaining = intent.amount - intent.refunded_amount
        if amount <= 0:
            raise ValidationError("Refund amount must be positive")
        if amount > remaining or not self.store.reserve_refund(intent.id, amount):
            raise ValidationError(
                f"Refund amount {amount} exceeds refundable balance {remaining}"
            )

        method = intent.payment_method
        if isinstance(method, MixedMethod):
            points_share, card_share = split_refund(
                amount, intent.amount, int(intent.metadata.get("points_value", 0))
            )
            plan = [("points", points_share), ("stripe", card_share)]
        elif isinstance(method, PointsMethod):
            plan = [("points", amount)]
        else:
            plan = [("stripe", amount)]

        refunds: List[PaymentTransaction] = []
        failures: List[Exception] = []
        released = 0
        for provider, share in plan:
            if share <= 0:
                continue
            try:
                refunds.append(self._refund_leg(intent, provider, share, req.reason))
            except PaymentError as e:
                failures.append(e)
                released += share
            except Exception as e:
                # outcome unknown: the reservation stays until reconciled
                logger.exception(
                    "Unexpected error refunding %s leg of payment intent %s", provider, intent.id
                )
                self._record_failure(intent, "refund", provider, share, f"unknown outcome: {e}")
                failures.append(e)
        if released:
            self.store.release_refund(intent.id, released)

        if not refunds:
            if len(failures) == 1:
                raise failures[0]
            raise ProviderError("refund", "; ".join(_failure_message(f) for f in failures))

        logger.info(
            "Refunded %s of payment intent %s in %d leg(s)",
            sum(r.amount for r in refunds), intent.id, len(refunds),
        )
        return PaymentResult(
            success=True,
            payment_intent=self.store.get_intent(intent.id),
            transaction=refunds[0],
            transactions=refunds,
            error="; ".join(_failure_message(f) for f in failures) or None,
        )

    def _refund_leg(
        self, intent: PaymentIntent, provider: str, amount: int, reason: Optional[str]
    ) -> PaymentTransaction:
        if provider == "points":
            ref = intent.metadata.get("points_intent_ref") or intent.provider_intent_id
            try:
                credit = self.points_ledger.refund_points_payment(ref, amount)
            except PaymentError as e:
                self._record_failure(intent, "refund", "points", amount, e.message)
                raise
            transaction = self._transaction(
                intent, "refund", "points", amount,
                provider_transaction_id=credit.transaction_ref,
                points_transaction=PointsTransaction(
                    program=intent.payment_method.points_used.program,
                    points_used=-credit.points_credited,
                    points_value=amount,
                ),
            )
        else:
            ref = intent.metadata.get("card_provider_intent_id") or intent.provider_intent_id
            transaction_id = ids.new_id(ids.TRANSACTION)
            try:
                settlement = self.card_gateway.refund(ref, amount, reason, idempotency_key=transaction_id)
            except PaymentError as e:
                self._record_failure(intent, "refund", "stripe", amount, e.message)
                raise
            if settlement.status not in _REFUND_ACCEPTED:
                reason_text = f"Card refund {settlement.status}"
                self._record_failure(
                    intent, "refund", "stripe", amount, reason_text, settlement.provider_transaction_id
                )
                raise ProviderError("stripe", reason_text)
            transaction = self._transaction(
                intent, "refund", "stripe", amount,
                transaction_id=transaction_id,
                provider_transaction_id=settlement.provider_transaction_id,
            )
        self.store.save_transaction(transaction)
        return transaction

    # helpers

    def _load(self, payment_intent_id: str) -> PaymentIntent:
        intent = self.store.get_intent(payment_intent_id)
        if intent is None:
            raise NotFoundError("Payment intent not found")
        return intent

    def _transaction(
        self,
        intent: PaymentIntent,
        type_: str,
        provider: str,
        amount: int,
        status: str = "completed",
        transaction_id: Optional[str] = None,
        **fields,
    ) -> PaymentTransaction:
        now = _now()
        return PaymentTransaction(
            id=transaction_id or ids.new_id(ids.TRANSACTION),
            payment_intent_id=intent.id,
            booking_id=intent.booking_id,
            user_id=intent.user_id,
            amount=amount,
            currency=intent.currency,
            type=type_,
            status=status,
            provider=provider,
            processed_at=now if status == "completed" else None,
            created_at=now,
            **fields,
        )

    def _record_failure(
        self,
        intent: PaymentIntent,
        type_: str,
        provider: str,
        amount: int,
        reason: str,
        provider_transaction_id: Optional[str] = None,
    ) -> None:
        self.store.save_transaction(
            self._transaction(
                intent, type_, provider, amount,
                status="failed",
                provider_transaction_id=provider_transaction_id,
                failure_reason=reason,
            )
        )
