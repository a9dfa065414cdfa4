import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import stripe

from flight_payments.errors import ProviderError
from flight_payments.schemas import CreditCardInfo

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"


@dataclass(frozen=True)
class CardIntent:
    provider_intent_id: str
    status: str


@dataclass(frozen=True)
class CardSettlement:
    status: str
    provider_transaction_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED


class CardGateway(ABC):
    """Card processor contract used by the orchestrator."""

    @abstractmethod
    def create_intent(
        self,
        amount: int,
        currency: str,
        card: CreditCardInfo,
        idempotency_key: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CardIntent:
        ...

    @abstractmethod
    def confirm_intent(
        self, provider_intent_id: str, payment_method_id: Optional[str] = None
    ) -> CardSettlement:
        ...

    @abstractmethod
    def refund(
        self,
        provider_intent_id: str,
        amount: int,
        reason: Optional[str],
        idempotency_key: str,
    ) -> CardSettlement:
        ...


class StripeCardGateway(CardGateway):
    def __init__(self, api_key: str):
        stripe.api_key = api_key

    def create_intent(self, amount, currency, card, idempotency_key, metadata=None):
        stripe_metadata = {key: str(value) for key, value in (metadata or {}).items()}
        stripe_metadata.update({"card_brand": card.brand, "card_last4": card.last4})
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=currency.lower(),
                automatic_payment_methods={"enabled": True},
                metadata=stripe_metadata,
                idempotency_key=idempotency_key
            )
        except stripe.StripeError as e:
            raise self._provider_error("create", e)
        return CardIntent(provider_intent_id=intent.id, status=intent.status)

    def confirm_intent(self, provider_intent_id, payment_method_id=None):
        params = {}
        if payment_method_id:
            params["payment_method"] = payment_method_id
        try:
            intent = stripe.PaymentIntent.confirm(provider_intent_id, **params)
        except stripe.StripeError as e:
            raise self._provider_error("confirm", e)
        # latest_charge is the settled charge; fall back to the intent itself
        charge_id = getattr(intent, "latest_charge", None)
        return CardSettlement(
            status=intent.status,
            provider_transaction_id=charge_id if isinstance(charge_id, str) else intent.id,
        )

    def refund(self, provider_intent_id, amount, reason, idempotency_key):
        params: Dict[str, Any] = {
            "payment_intent": provider_intent_id,
            "amount": amount,
            "idempotency_key": idempotency_key,
        }
        if reason:
            params["reason"] = "requested_by_customer"
            params["metadata"] = {"reason": reason}
        try:
            refund = stripe.Refund.create(**params)
        except stripe.StripeError as e:
            raise self._provider_error("refund", e)
        return CardSettlement(status=refund.status, provider_transaction_id=refund.id)

    @staticmethod
    def _provider_error(action: str, error: Exception) -> ProviderError:
        message = getattr(error, "user_message", None) or str(error)
        logger.warning("Stripe %s failed: %s", action, message)
        return ProviderError("stripe", message)
