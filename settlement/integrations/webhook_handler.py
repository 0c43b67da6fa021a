"""
Paystack webhook handler with signature verification and delivery deduplication.

Implements:
- HMAC-SHA512 signature verification over the raw request body
- Optional delivery deduplication using Redis
- Event type routing to registered handlers
"""
import hashlib
import hmac
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger(__name__)

EventHandler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


class WebhookError(Exception):
    """Raised when webhook processing fails."""

    pass


class InvalidSignature(WebhookError):
    """Raised when the delivery signature does not match the body."""

    pass


@dataclass
class WebhookEvent:
    """A verified webhook delivery."""

    event_id: str
    event_type: str
    data: Dict[str, Any] = field(default_factory=dict)


class WebhookHandler:
    """
    Handles Paystack webhook deliveries.

    Features:
    - Signature verification with the account's secret key
    - Delivery deduplication (processed body digests kept in Redis)
    - Event type routing to appropriate handlers
    """

    def __init__(
        self,
        secret: str,
        redis_client: Optional[aioredis.Redis] = None,
        dedup_ttl_seconds: int = 86400 * 7,
    ):
        """
        Initialize webhook handler.

        Args:
            secret: Shared secret the gateway signs deliveries with
            redis_client: Optional Redis client for delivery deduplication
            dedup_ttl_seconds: How long processed deliveries are remembered
        """
        self._secret = secret.encode("utf-8")
        self.redis_client = redis_client
        self.dedup_ttl_seconds = dedup_ttl_seconds
        self.event_handlers: Dict[str, EventHandler] = {}

        logger.info("webhook_handler_initialized", dedup_enabled=redis_client is not None)

    def register_handler(self, event_type: str, handler: EventHandler) -> None:
        """
        Register a handler for a specific event type.

        Args:
            event_type: Paystack event type (e.g., 'charge.success')
            handler: Async callable receiving the event's data object
        """
        self.event_handlers[event_type] = handler
        logger.info("webhook_handler_registered", event_type=event_type)

    def compute_signature(self, payload: bytes) -> str:
        return hmac.new(self._secret, payload, hashlib.sha512).hexdigest()

    def verify_signature(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        """
        Verify the delivery signature and parse the event.

        Args:
            payload: Raw request body as bytes
            signature: x-paystack-signature header value

        Returns:
            WebhookEvent: Verified event

        Raises:
            InvalidSignature: If the signature is missing or does not match
            WebhookError: If the verified body is not a JSON event object
        """
        expected = self.compute_signature(payload)
        if not signature or not hmac.compare_digest(expected, signature.strip().lower()):
            logger.error("webhook_signature_verification_failed")
            raise InvalidSignature("Invalid signature")

        try:
            body = json.loads(payload)
        except ValueError as e:
            logger.error("webhook_payload_invalid", error=str(e))
            raise WebhookError(f"Invalid webhook payload: {e}")

        if not isinstance(body, dict) or not isinstance(body.get("event"), str):
            raise WebhookError("Webhook payload carries no event type")

        data = body.get("data")
        event = WebhookEvent(
            event_id=hashlib.sha256(payload).hexdigest(),
            event_type=body["event"],
            data=data if isinstance(data, dict) else {},
        )
        logger.info(
            "webhook_signature_verified",
            event_id=event.event_id,
            event_type=event.event_type,
        )
        return event

    async def is_event_processed(self, event_id: str) -> bool:
        """
        Check if webhook delivery has already been processed.

        Returns False when no Redis client is configured.
        """
        if self.redis_client is None:
            return False
        try:
            exists = await self.redis_client.exists(f"webhook:processed:{event_id}")
            return bool(exists)
        except aioredis.RedisError as e:
            logger.warning("webhook_dedup_check_error", error=str(e), event_id=event_id)
            # If Redis is down, process the event anyway to avoid losing it
            return False

    async def mark_event_processed(self, event_id: str) -> None:
        """Mark webhook delivery as processed."""
        if self.redis_client is None:
            return
        try:
            await self.redis_client.setex(
                f"webhook:processed:{event_id}", self.dedup_ttl_seconds, "1"
            )
            logger.info("webhook_marked_processed", event_id=event_id)
        except aioredis.RedisError as e:
            logger.warning("webhook_mark_processed_error", error=str(e), event_id=event_id)

    async def process_event(self, event: WebhookEvent) -> Dict[str, Any]:
        """
        Process a verified webhook event.

        Args:
            event: Verified event

        Returns:
            Dict[str, Any]: Processing result with status and message

        Raises:
            WebhookError: If the registered handler fails
        """
        logger.info(
            "processing_webhook_event",
            event_id=event.event_id,
            event_type=event.event_type,
        )

        if await self.is_event_processed(event.event_id):
            logger.info(
                "webhook_event_already_processed",
                event_id=event.event_id,
                event_type=event.event_type,
            )
            return {"status": "duplicate", "message": "Event already processed"}

        handler = self.event_handlers.get(event.event_type)
        if handler is None:
            logger.info("webhook_no_handler", event_type=event.event_type)
            return {"status": "no_handler", "message": "Event not handled"}

        try:
            result = await handler(event.data)
        except Exception as e:
            logger.error(
                "webhook_event_processing_failed",
                event_id=event.event_id,
                event_type=event.event_type,
                error=str(e),
            )
            raise WebhookError(f"Failed to process event {event.event_type}: {e}") from e

        await self.mark_event_processed(event.event_id)

        logger.info(
            "webhook_event_processed_successfully",
            event_id=event.event_id,
            event_type=event.event_type,
        )
        return {"status": "success", **result}
