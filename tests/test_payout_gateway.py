"""
Tests for the Paystack payout gateway client over httpx.MockTransport.
"""
import json
from typing import Any, Callable, Dict, List

import httpx
import pytest

from settlement.config import Settings
from settlement.integrations.payout_gateway import (
    CircuitBreaker,
    GatewayErrorType,
    PayoutGatewayClient,
    PayoutGatewayError,
)


def _client(
    settings: Settings,
    handler: Callable[[httpx.Request], httpx.Response],
    circuit_breaker: CircuitBreaker = None,
) -> PayoutGatewayClient:
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url="https://api.paystack.co",
    )
    return PayoutGatewayClient(settings, http_client=http_client, circuit_breaker=circuit_breaker)


def _ok(data: Dict[str, Any]) -> httpx.Response:
    return httpx.Response(200, json={"status": True, "message": "ok", "data": data})


@pytest.mark.unit
@pytest.mark.asyncio
class TestPayoutGatewayClient:
    """Test suite for PayoutGatewayClient."""

    async def test_create_transfer_recipient(self, test_settings: Settings) -> None:
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"status": True, "data": {"recipient_code": "RCP_1"}})

        client = _client(test_settings, handler)
        code = await client.create_transfer_recipient("Kofi Seller", "0202222222", "VOD")

        assert code == "RCP_1"
        request = seen[0]
        assert request.url.path == "/transferrecipient"
        assert request.headers["Authorization"] == f"Bearer {test_settings.paystack_secret_key}"
        assert json.loads(request.content) == {
            "type": "mobile_money",
            "name": "Kofi Seller",
            "account_number": "0202222222",
            "bank_code": "VOD",
            "currency": "GHS",
        }

    async def test_initiate_transfer_returns_handle(self, test_settings: Settings) -> None:
        seen: List[Dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return _ok({"transfer_code": "TRF_1", "reference": "cm_abc_0", "status": "pending"})

        client = _client(test_settings, handler)
        handle = await client.initiate_transfer(4500, "RCP_1", "seller commission", "cm_abc_0")

        assert handle.transfer_code == "TRF_1"
        assert handle.reference == "cm_abc_0"
        assert handle.status == "pending"
        assert not handle.is_settled
        assert seen[0]["source"] == "balance"
        assert seen[0]["amount"] == 4500
        assert seen[0]["recipient"] == "RCP_1"
        assert seen[0]["reference"] == "cm_abc_0"

    async def test_client_error_is_permanent(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"status": False, "message": "Invalid bank code"})

        client = _client(test_settings, handler)
        with pytest.raises(PayoutGatewayError) as exc_info:
            await client.create_transfer_recipient("Esi", "0263333333", "XXX")

        assert exc_info.value.error_type is GatewayErrorType.PERMANENT
        assert exc_info.value.status_code == 400
        assert "Invalid bank code" in str(exc_info.value)

    async def test_server_error_is_transient(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="unavailable")

        client = _client(test_settings, handler)
        with pytest.raises(PayoutGatewayError) as exc_info:
            await client.initiate_transfer(100, "RCP_1", "reason", "ref_1")

        assert exc_info.value.is_transient
        assert exc_info.value.status_code == 503

    async def test_false_status_body_is_rejected(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"status": False, "message": "Insufficient balance"})

        client = _client(test_settings, handler)
        with pytest.raises(PayoutGatewayError) as exc_info:
            await client.initiate_transfer(100, "RCP_1", "reason", "ref_1")

        assert exc_info.value.error_type is GatewayErrorType.PERMANENT

    async def test_timeout_is_transient(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = _client(test_settings, handler)
        with pytest.raises(PayoutGatewayError) as exc_info:
            await client.initiate_transfer(100, "RCP_1", "reason", "ref_1")

        assert exc_info.value.is_transient
        assert isinstance(exc_info.value.original_error, httpx.TimeoutException)

    async def test_network_error_is_transient(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(test_settings, handler)
        with pytest.raises(PayoutGatewayError) as exc_info:
            await client.create_transfer_recipient("Esi", "0263333333", "ATL")

        assert exc_info.value.is_transient

    async def test_circuit_opens_after_repeated_failures(self, test_settings: Settings) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(502, text="bad gateway")

        breaker = CircuitBreaker(failure_threshold=2, timeout=60)
        client = _client(test_settings, handler, circuit_breaker=breaker)

        for _ in range(2):
            with pytest.raises(PayoutGatewayError):
                await client.initiate_transfer(100, "RCP_1", "reason", "ref_1")
        assert breaker.state == "open"

        with pytest.raises(PayoutGatewayError, match="Circuit breaker is open"):
            await client.initiate_transfer(100, "RCP_1", "reason", "ref_1")
        assert len(calls) == 2

    async def test_permanent_errors_do_not_open_circuit(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(422, json={"status": False, "message": "Invalid"})

        breaker = CircuitBreaker(failure_threshold=2)
        client = _client(test_settings, handler, circuit_breaker=breaker)

        for _ in range(3):
            with pytest.raises(PayoutGatewayError):
                await client.initiate_transfer(100, "RCP_1", "reason", "ref_1")
        assert breaker.state == "closed"

    async def test_initialize_transaction_payload(self, test_settings: Settings) -> None:
        seen: List[Dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/transaction/initialize"
            seen.append(json.loads(request.content))
            return _ok({"authorization_url": "https://checkout.paystack.com/x", "reference": "txn_1"})

        client = _client(test_settings, handler)
        data = await client.initialize_transaction(
            email="yaw@example.com",
            amount_minor=10000,
            reference="txn_1",
            phone="0554444444",
            provider="mtn",
            callback_url="http://localhost:8000/checkout/complete",
        )

        assert data["authorization_url"] == "https://checkout.paystack.com/x"
        assert seen[0]["channels"] == ["mobile_money"]
        assert seen[0]["mobile_money"] == {"phone": "0554444444", "provider": "mtn"}
        assert seen[0]["amount"] == 10000
        assert seen[0]["currency"] == "GHS"

    async def test_initialize_transaction_retries_transient_failure(
        self, test_settings: Settings
    ) -> None:
        responses = [
            httpx.Response(503, text="unavailable"),
            _ok({"authorization_url": "https://checkout.paystack.com/y", "reference": "txn_2"}),
        ]

        def handler(request: httpx.Request) -> httpx.Response:
            return responses.pop(0)

        client = _client(test_settings, handler)
        data = await client.initialize_transaction(
            email="yaw@example.com",
            amount_minor=10000,
            reference="txn_2",
            phone="0554444444",
            provider="mtn",
        )

        assert data["authorization_url"] == "https://checkout.paystack.com/y"
        assert responses == []

    async def test_initialize_transaction_does_not_retry_permanent_failure(
        self, test_settings: Settings
    ) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, json={"status": False, "message": "Invalid email"})

        client = _client(test_settings, handler)
        with pytest.raises(PayoutGatewayError):
            await client.initialize_transaction(
                email="bad",
                amount_minor=10000,
                reference="txn_3",
                phone="0554444444",
                provider="mtn",
            )
        assert len(calls) == 1
