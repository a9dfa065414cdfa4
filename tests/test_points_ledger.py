import json

import httpx
import pytest

from flight_payments.errors import InsufficientPointsError, ProviderError
from flight_payments.orchestrator import PaymentOrchestrator
from flight_payments.points_ledger import HttpPointsLedger


def ledger_with(handler):
    client = httpx.Client(base_url="http://ledger.test", transport=httpx.MockTransport(handler))
    return HttpPointsLedger("http://ledger.test", client=client)


def test_check_balance():
    def handler(request):
        assert request.url.path == "/accounts/user-1/balances/chase-ur"
        return httpx.Response(200, json={"points": 42000})

    assert ledger_with(handler).check_balance("user-1", "chase-ur") == 42000


def test_create_points_intent_sends_valuation():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"intent_ref": "pts_abc"})

    ref = ledger_with(handler).create_points_intent("user-1", "chase-ur", 20000, 20000, "USD")

    assert ref == "pts_abc"
    assert seen["body"] == {
        "user_id": "user-1",
        "program": "chase-ur",
        "points": 20000,
        "value": 20000,
        "currency": "USD",
    }


def test_confirm_points_payment():
    def handler(request):
        assert request.url.path == "/intents/pts_abc/confirm"
        assert json.loads(request.content) == {"account_id": "acct-9"}
        return httpx.Response(
            200, json={"points_used": 20000, "points_value": 20000, "transaction_ref": "ptx_1"}
        )

    debit = ledger_with(handler).confirm_points_payment("pts_abc", account_id="acct-9")

    assert debit.points_used == 20000
    assert debit.transaction_ref == "ptx_1"


def test_refund_points_payment():
    def handler(request):
        assert request.url.path == "/intents/pts_abc/refunds"
        assert json.loads(request.content) == {"amount": 5000}
        return httpx.Response(200, json={"points_credited": 5000, "transaction_ref": "prf_1"})

    credit = ledger_with(handler).refund_points_payment("pts_abc", 5000)

    assert credit.points_credited == 5000


def test_payment_required_is_insufficient_points():
    def handler(request):
        return httpx.Response(
            402, json={"required": 20000, "available": 100, "program": "chase-ur"}
        )

    with pytest.raises(InsufficientPointsError) as exc_info:
        ledger_with(handler).confirm_points_payment("pts_abc")

    assert exc_info.value.available == 100
    assert exc_info.value.message == "Insufficient points: required 20000, available 100 (chase-ur)"


def test_server_error_is_provider_error():
    def handler(request):
        return httpx.Response(500, json={"detail": "ledger exploded"})

    with pytest.raises(ProviderError) as exc_info:
        ledger_with(handler).check_balance("user-1", "chase-ur")

    assert exc_info.value.message == "points: Points ledger error 500: ledger exploded"


def test_connection_refused():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProviderError, match="Points ledger unavailable"):
        ledger_with(handler).check_balance("user-1", "chase-ur")


def test_timeout():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ProviderError, match="Points ledger timeout"):
        ledger_with(handler).check_balance("user-1", "chase-ur")


def test_non_json_body():
    def handler(request):
        return httpx.Response(200, text="<html>maintenance</html>")

    with pytest.raises(ProviderError, match="Bad response"):
        ledger_with(handler).check_balance("user-1", "chase-ur")


@pytest.mark.parametrize("body", [{"unexpected": 1}, [1, 2, 3], {"points": None}, {"points": "lots"}])
def test_malformed_body_is_provider_error(body):
    def handler(request):
        return httpx.Response(200, json=body)

    with pytest.raises(ProviderError, match="Bad response from points ledger"):
        ledger_with(handler).check_balance("user-1", "chase-ur")


def test_confirm_with_missing_fields_records_failed_leg(store, gateway, points_request):
    def handler(request):
        if request.url.path.startswith("/accounts/"):
            return httpx.Response(200, json={"points": 50000})
        if request.url.path == "/intents":
            return httpx.Response(201, json={"intent_ref": "pts_abc"})
        return httpx.Response(200, json={"points_used": 20000})

    orchestrator = PaymentOrchestrator(store, gateway, ledger_with(handler))
    intent = orchestrator.create_payment_intent(points_request()).payment_intent

    result = orchestrator.confirm_payment({"payment_intent_id": intent.id})

    assert result.error_code == "ProviderError"
    assert store.get_intent(intent.id).status == "failed"
    [failed] = store.list_intent_transactions(intent.id)
    assert failed.status == "failed"
    assert failed.failure_reason == "points: Bad response from points ledger"
