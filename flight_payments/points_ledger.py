"""Client for the loyalty-points ledger service.

The ledger owns balances and the points-to-cash valuation. It is reached over
HTTP; any transport or protocol failure surfaces as a ``ProviderError``.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from flight_payments.errors import InsufficientPointsError, ProviderError

logger = logging.getLogger(__name__)

PROVIDER = "points"
BAD_RESPONSE = "Bad response from points ledger"


@contextmanager
def _bad_response():
    try:
        yield
    except (KeyError, TypeError, ValueError):
        raise ProviderError(PROVIDER, BAD_RESPONSE)


@dataclass(frozen=True)
class PointsDebit:
    points_used: int
    points_value: int
    transaction_ref: str


@dataclass(frozen=True)
class PointsCredit:
    points_credited: int
    transaction_ref: str


class PointsLedger(ABC):
    @abstractmethod
    def check_balance(self, user_id: str, program: str) -> int:
        ...

    @abstractmethod
    def create_points_intent(
        self, user_id: str, program: str, points: int, value: int, currency: str
    ) -> str:
        """Open (but do not debit) a points payment; returns the ledger's reference."""

    @abstractmethod
    def confirm_points_payment(
        self, intent_ref: str, account_id: Optional[str] = None
    ) -> PointsDebit:
        ...

    @abstractmethod
    def refund_points_payment(self, intent_ref: str, amount: int) -> PointsCredit:
        ...


class HttpPointsLedger(PointsLedger):
    def __init__(self, base_url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def check_balance(self, user_id, program):
        data = self._request("GET", f"/accounts/{user_id}/balances/{program}")
        with _bad_response():
            return int(data["points"])

    def create_points_intent(self, user_id, program, points, value, currency):
        data = self._request(
            "POST",
            "/intents",
            json={
                "user_id": user_id,
                "program": program,
                "points": points,
                "value": value,
                "currency": currency,
            },
        )
        with _bad_response():
            return str(data["intent_ref"])

    def confirm_points_payment(self, intent_ref, account_id=None):
        body = {"account_id": account_id} if account_id else {}
        data = self._request("POST", f"/intents/{intent_ref}/confirm", json=body)
        with _bad_response():
            return PointsDebit(
                points_used=int(data["points_used"]),
                points_value=int(data["points_value"]),
                transaction_ref=str(data["transaction_ref"]),
            )

    def refund_points_payment(self, intent_ref, amount):
        data = self._request("POST", f"/intents/{intent_ref}/refunds", json={"amount": amount})
        with _bad_response():
            return PointsCredit(
                points_credited=int(data["points_credited"]),
                transaction_ref=str(data["transaction_ref"]),
            )

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            r = self.client.request(method, path, json=json)
        except httpx.TimeoutException:
            raise ProviderError(PROVIDER, "Points ledger timeout")
        except httpx.RequestError:
            raise ProviderError(PROVIDER, "Points ledger unavailable")

        if r.status_code == 402:
            body = self._json_or_empty(r)
            with _bad_response():
                error = InsufficientPointsError(
                    required=int(body.get("required", 0)),
                    available=int(body.get("available", 0)),
                    program=str(body.get("program", "")),
                )
            raise error
        if r.status_code >= 400:
            detail = self._json_or_empty(r).get("detail") or r.text
            logger.warning("Points ledger %s %s returned %s: %s", method, path, r.status_code, detail)
            raise ProviderError(PROVIDER, f"Points ledger error {r.status_code}: {detail}")

        try:
            body = r.json()
        except ValueError:
            raise ProviderError(PROVIDER, BAD_RESPONSE)
        if not isinstance(body, dict):
            raise ProviderError(PROVIDER, BAD_RESPONSE)
        return body

    @staticmethod
    def _json_or_empty(r: httpx.Response) -> Dict[str, Any]:
        try:
            body = r.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
