"""
Tests for webhook signature verification, routing and deduplication.
"""
import json
from typing import Any, Dict
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as aioredis

from conftest import TEST_SECRET_KEY, sign
from settlement.integrations.webhook_handler import (
    InvalidSignature,
    WebhookError,
    WebhookEvent,
    WebhookHandler,
)


def _body(event: str = "charge.success", reference: str = "txn_abc") -> bytes:
    return json.dumps({"event": event, "data": {"reference": reference, "status": "success"}}).encode()


@pytest.mark.unit
class TestSignatureVerification:
    """Test suite for delivery signature checks."""

    def test_valid_signature_parses_event(self) -> None:
        handler = WebhookHandler(TEST_SECRET_KEY)
        body = _body()

        event = handler.verify_signature(body, sign(body))

        assert event.event_type == "charge.success"
        assert event.data["reference"] == "txn_abc"
        assert len(event.event_id) == 64

    def test_same_body_yields_same_event_id(self) -> None:
        handler = WebhookHandler(TEST_SECRET_KEY)
        body = _body()

        first = handler.verify_signature(body, sign(body))
        second = handler.verify_signature(body, sign(body))

        assert first.event_id == second.event_id

    def test_uppercase_signature_accepted(self) -> None:
        handler = WebhookHandler(TEST_SECRET_KEY)
        body = _body()

        event = handler.verify_signature(body, sign(body).upper())

        assert event.event_type == "charge.success"

    def test_tampered_body_rejected(self) -> None:
        handler = WebhookHandler(TEST_SECRET_KEY)
        signature = sign(_body())

        with pytest.raises(InvalidSignature):
            handler.verify_signature(_body(reference="txn_other"), signature)

    def test_wrong_secret_rejected(self) -> None:
        handler = WebhookHandler(TEST_SECRET_KEY)
        body = _body()

        with pytest.raises(InvalidSignature):
            handler.verify_signature(body, sign(body, secret="sk_test_someone_else"))

    @pytest.mark.parametrize("signature", [None, ""])
    def test_missing_signature_rejected(self, signature: Any) -> None:
        handler = WebhookHandler(TEST_SECRET_KEY)

        with pytest.raises(InvalidSignature):
            handler.verify_signature(_body(), signature)

    def test_signed_garbage_is_a_webhook_error(self) -> None:
        handler = WebhookHandler(TEST_SECRET_KEY)
        body = b"not json"

        with pytest.raises(WebhookError) as exc_info:
            handler.verify_signature(body, sign(body))
        assert not isinstance(exc_info.value, InvalidSignature)

    def test_signed_body_without_event_rejected(self) -> None:
        handler = WebhookHandler(TEST_SECRET_KEY)
        body = json.dumps({"data": {}}).encode()

        with pytest.raises(WebhookError):
            handler.verify_signature(body, sign(body))


@pytest.mark.unit
@pytest.mark.asyncio
class TestEventProcessing:
    """Test suite for event routing and deduplication."""

    async def test_routes_to_registered_handler(self) -> None:
        handler = WebhookHandler(TEST_SECRET_KEY)
        received: Dict[str, Any] = {}

        async def on_charge(data: Dict[str, Any]) -> Dict[str, Any]:
            received.update(data)
            return {"message": "Transaction settled"}

        handler.register_handler("charge.success", on_charge)
        result = await handler.process_event(
            WebhookEvent(event_id="e1", event_type="charge.success", data={"reference": "txn_1"})
        )

        assert result == {"status": "success", "message": "Transaction settled"}
        assert received == {"reference": "txn_1"}

    async def test_unknown_event_not_handled(self) -> None:
        handler = WebhookHandler(TEST_SECRET_KEY)

        result = await handler.process_event(
            WebhookEvent(event_id="e2", event_type="subscription.create")
        )

        assert result == {"status": "no_handler", "message": "Event not handled"}

    async def test_handler_failure_wrapped(self) -> None:
        handler = WebhookHandler(TEST_SECRET_KEY)

        async def broken(data: Dict[str, Any]) -> Dict[str, Any]:
            raise RuntimeError("ledger unavailable")

        handler.register_handler("charge.success", broken)
        with pytest.raises(WebhookError, match="ledger unavailable"):
            await handler.process_event(WebhookEvent(event_id="e3", event_type="charge.success"))

    async def test_processed_delivery_is_skipped(self) -> None:
        redis_client = AsyncMock()
        redis_client.exists.return_value = 1
        handler = WebhookHandler(TEST_SECRET_KEY, redis_client=redis_client)
        on_charge = AsyncMock(return_value={"message": "Transaction settled"})
        handler.register_handler("charge.success", on_charge)

        result = await handler.process_event(WebhookEvent(event_id="e4", event_type="charge.success"))

        assert result["status"] == "duplicate"
        on_charge.assert_not_awaited()
        redis_client.exists.assert_awaited_once_with("webhook:processed:e4")

    async def test_successful_delivery_is_remembered(self) -> None:
        redis_client = AsyncMock()
        redis_client.exists.return_value = 0
        handler = WebhookHandler(TEST_SECRET_KEY, redis_client=redis_client, dedup_ttl_seconds=60)
        handler.register_handler(
            "charge.success", AsyncMock(return_value={"message": "Transaction settled"})
        )

        await handler.process_event(WebhookEvent(event_id="e5", event_type="charge.success"))

        redis_client.setex.assert_awaited_once_with("webhook:processed:e5", 60, "1")

    async def test_redis_outage_still_processes(self) -> None:
        redis_client = AsyncMock()
        redis_client.exists.side_effect = aioredis.RedisError("connection refused")
        redis_client.setex.side_effect = aioredis.RedisError("connection refused")
        handler = WebhookHandler(TEST_SECRET_KEY, redis_client=redis_client)
        on_charge = AsyncMock(return_value={"message": "Transaction settled"})
        handler.register_handler("charge.success", on_charge)

        result = await handler.process_event(WebhookEvent(event_id="e6", event_type="charge.success"))

        assert result["status"] == "success"
        on_charge.assert_awaited_once()
