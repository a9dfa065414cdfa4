from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException

from flight_payments.auth import verify_token
from flight_payments.config import get_payment_settings
from flight_payments.database import SessionLocal
from flight_payments.errors import HTTP_STATUS_BY_CODE
from flight_payments.orchestrator import PaymentOrchestrator
from flight_payments.points_ledger import HttpPointsLedger
from flight_payments.schemas import PaymentResult
from flight_payments.store import PaymentStore
from flight_payments.stripe_service import StripeCardGateway

router = APIRouter()


@lru_cache
def get_orchestrator() -> PaymentOrchestrator:
    settings = get_payment_settings()
    return PaymentOrchestrator(
        store=PaymentStore(SessionLocal),
        card_gateway=StripeCardGateway(settings.stripe_secret_key),
        points_ledger=HttpPointsLedger(settings.points_ledger_url, settings.points_ledger_timeout),
        settings=settings,
    )


def _raise_for_failure(result: PaymentResult) -> None:
    if not result.success:
        raise HTTPException(
            status_code=HTTP_STATUS_BY_CODE.get(result.error_code, 500),
            detail={"error": result.error, "code": result.error_code},
        )


def _owned_intent(orchestrator: PaymentOrchestrator, payment_intent_id: str, claims: dict):
    intent = orchestrator.get_payment_intent(payment_intent_id)
    if intent is None:
        raise HTTPException(
            status_code=404,
            detail={"error": "Payment intent not found", "code": "NotFoundError"},
        )
    if claims.get("sub") and intent.user_id != claims["sub"]:
        raise _access_denied()
    return intent


def _access_denied() -> HTTPException:
    return HTTPException(status_code=403, detail={"error": "Access denied", "code": "AccessDenied"})


@router.post("/intents", status_code=201)
def create_payment_intent_api(
    payload: dict = Body(...),
    claims: dict = Depends(verify_token),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    owner = claims.get("sub")
    if owner:
        if payload.get("user_id") and payload["user_id"] != owner:
            raise _access_denied()
        payload["user_id"] = owner

    result = orchestrator.create_payment_intent(payload)
    _raise_for_failure(result)

    return {
        "payment_intent": result.payment_intent,
        # the Stripe intent id, for the frontend's card element
        "client_secret": result.payment_intent.provider_intent_id,
    }


@router.post("/intents/{payment_intent_id}/confirm")
def confirm_payment_api(
    payment_intent_id: str,
    payload: Optional[dict] = Body(default=None),
    claims: dict = Depends(verify_token),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    _owned_intent(orchestrator, payment_intent_id, claims)

    result = orchestrator.confirm_payment({
        "payment_intent_id": payment_intent_id,
        "payment_method_details": (payload or {}).get("payment_method_details"),
    })
    _raise_for_failure(result)

    return {
        "payment_intent": result.payment_intent,
        "transaction": result.transaction,
        "transactions": result.transactions,
        "receipt": result.receipt,
    }


@router.get("/intents/{payment_intent_id}")
def get_payment_intent_api(
    payment_intent_id: str,
    claims: dict = Depends(verify_token),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    return {"payment_intent": _owned_intent(orchestrator, payment_intent_id, claims)}


@router.post("/intents/{payment_intent_id}/refund")
def refund_payment_api(
    payment_intent_id: str,
    payload: Optional[dict] = Body(default=None),
    claims: dict = Depends(verify_token),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    _owned_intent(orchestrator, payment_intent_id, claims)

    payload = payload or {}
    result = orchestrator.refund_payment({
        "payment_intent_id": payment_intent_id,
        "amount": payload.get("amount"),
        "reason": payload.get("reason"),
    })
    _raise_for_failure(result)

    return {
        "payment_intent": result.payment_intent,
        "transaction": result.transaction,
        "transactions": result.transactions,
        "message": "Refund processed successfully",
    }


@router.get("/bookings/{booking_id}/transactions")
def list_booking_transactions_api(
    booking_id: str,
    claims: dict = Depends(verify_token),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
):
    return {"transactions": orchestrator.get_payment_transactions(booking_id, user_id=claims.get("sub"))}
