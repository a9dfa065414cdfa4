import logging
from datetime import datetime, timezone

import stripe
from fastapi import FastAPI, Request, Header, HTTPException

from flight_payments.config import get_payment_settings
from flight_payments.routes import router
from flight_payments.database import Base, engine

settings = get_payment_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Flight Payment Orchestrator")

app.include_router(router)

Base.metadata.create_all(bind=engine)


@app.post("/webhooks/stripe")
async def stripe_webhook(request: Request, stripe_signature: str = Header(None)):
    if not stripe_signature:
        raise HTTPException(status_code=400, detail="Missing Stripe signature")

    payload = await request.body()

    try:
        event = stripe.Webhook.construct_event(
            payload,
            stripe_signature,
            settings.stripe_webhook_secret
        )
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        raise HTTPException(status_code=400, detail="Invalid signature")

    # acknowledged only; settlement state is driven by confirm/refund
    logger.info("Received Stripe event %s", event["type"])
    return {"received": True}


@app.get("/health")
def health():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {
            "payment": "operational",
            "stripe": "configured" if settings.stripe_secret_key else "unconfigured",
            "points": settings.points_ledger_url,
        },
    }
