"""
Paystack payout gateway client with circuit breaking and error classification.

Implements:
- Transfer recipient creation and transfer initiation for mobile-money payouts
- Checkout initialization for mobile-money charges
- Classification of failures as transient or permanent
- Circuit breaker pattern
"""
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from settlement.config import Settings
from settlement.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class GatewayErrorType(Enum):
    """Classification of gateway errors for retry logic."""

    TRANSIENT = "transient"  # Timeouts, network errors, 429 and 5xx
    PERMANENT = "permanent"  # Rejected requests


class PayoutGatewayError(Exception):
    """Raised for any unsuccessful payout gateway call."""

    def __init__(
        self,
        message: str,
        error_type: GatewayErrorType,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize gateway error.

        Args:
            message: Error message
            error_type: Classification of error
            status_code: HTTP status returned by the gateway, if any
            original_error: Underlying transport exception
        """
        super().__init__(message)
        self.error_type = error_type
        self.status_code = status_code
        self.original_error = original_error

    @property
    def is_transient(self) -> bool:
        return self.error_type is GatewayErrorType.TRANSIENT


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, PayoutGatewayError) and error.is_transient


class CircuitBreaker:
    """
    Circuit breaker for payout gateway calls.

    Opens after repeated transient failures so that a struggling gateway is
    not hammered by every pending commission in a sweep.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    async def call(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """
        Await a coroutine function with circuit breaker protection.

        Raises:
            PayoutGatewayError: If circuit is open
        """
        if self.state == "open":
            if (
                self.last_failure_time
                and time.time() - self.last_failure_time > self.timeout
            ):
                self._set_state("half_open")
                self.success_count = 0
                logger.info("circuit_breaker_half_open")
            else:
                raise PayoutGatewayError(
                    "Circuit breaker is open",
                    GatewayErrorType.TRANSIENT,
                )

        try:
            result = await func(*args, **kwargs)
        except PayoutGatewayError as e:
            if e.is_transient:
                self.on_failure()
            raise
        self.on_success()
        return result

    def _set_state(self, state: str) -> None:
        self.state = state
        metrics.set_circuit_breaker_state(state)

    def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")
                logger.info("circuit_breaker_closed")

    def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.state == "half_open" or self.failure_count >= self.failure_threshold:
            self._set_state("open")
            logger.warning(
                "circuit_breaker_opened",
                failure_count=self.failure_count,
            )


@dataclass(frozen=True)
class TransferHandle:
    """Gateway acknowledgement of an initiated transfer."""

    transfer_code: str
    reference: str
    status: str

    @property
    def is_settled(self) -> bool:
        return self.status == "success"


class PayoutGatewayClient:
    """
    Async client for the Paystack transfer and transaction APIs.

    Payout calls are single-attempt; the caller decides what a failure means
    for its records. Only checkout initialization is retried, and only for
    transient failures.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        """
        Initialize gateway client.

        Args:
            settings: Application settings
            http_client: Optional preconfigured client (tests pass a MockTransport)
            circuit_breaker: Optional circuit breaker shared between clients
        """
        self.settings = settings
        self.currency = settings.payout_currency
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            base_url=settings.paystack_base_url,
            timeout=settings.paystack_timeout_seconds,
        )
        self._headers = {
            "Authorization": f"Bearer {settings.paystack_secret_key}",
            "Content-Type": "application/json",
        }
        self.circuit_breaker = circuit_breaker or CircuitBreaker()

        logger.info(
            "payout_gateway_initialized",
            base_url=settings.paystack_base_url,
            test_mode=settings.is_test_mode,
        )

    async def _post(self, operation: str, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        started = time.perf_counter()
        try:
            response = await self.http_client.post(path, json=payload, headers=self._headers)
        except httpx.TimeoutException as e:
            metrics.record_gateway_call(operation, "timeout", time.perf_counter() - started)
            raise PayoutGatewayError(
                f"{operation} timed out", GatewayErrorType.TRANSIENT, original_error=e
            )
        except httpx.HTTPError as e:
            metrics.record_gateway_call(operation, "network_error", time.perf_counter() - started)
            raise PayoutGatewayError(
                f"{operation} failed: {e}", GatewayErrorType.TRANSIENT, original_error=e
            )

        metrics.record_gateway_call(
            operation, str(response.status_code), time.perf_counter() - started
        )

        try:
            body = response.json()
        except ValueError:
            body = {}

        message = body.get("message") if isinstance(body, dict) else None
        if response.status_code == 429 or response.status_code >= 500:
            raise PayoutGatewayError(
                message or f"{operation} returned {response.status_code}",
                GatewayErrorType.TRANSIENT,
                status_code=response.status_code,
            )
        if response.status_code >= 400 or not isinstance(body, dict) or not body.get("status"):
            raise PayoutGatewayError(
                message or f"{operation} was rejected",
                GatewayErrorType.PERMANENT,
                status_code=response.status_code,
            )

        return body.get("data") or {}

    async def _call(self, operation: str, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return await self.circuit_breaker.call(self._post, operation, path, payload)
        except PayoutGatewayError as e:
            metrics.record_gateway_error(e.error_type.value)
            logger.error(
                "payout_gateway_error",
                operation=operation,
                error_type=e.error_type.value,
                status_code=e.status_code,
                error_message=str(e),
            )
            raise

    async def create_transfer_recipient(
        self, name: str, account_number: str, bank_code: str
    ) -> str:
        """
        Register a mobile-money transfer recipient.

        Args:
            name: Recipient's full name
            account_number: Mobile-money number
            bank_code: Provider code from the routing table

        Returns:
            str: Recipient code used for transfers

        Raises:
            PayoutGatewayError: If registration fails
        """
        data = await self._call(
            "create_recipient",
            "/transferrecipient",
            {
                "type": "mobile_money",
                "name": name,
                "account_number": account_number,
                "bank_code": bank_code,
                "currency": self.currency,
            },
        )
        recipient_code = data.get("recipient_code")
        if not recipient_code:
            raise PayoutGatewayError(
                "Recipient response carried no recipient_code", GatewayErrorType.PERMANENT
            )
        return recipient_code

    async def initiate_transfer(
        self, amount_minor: int, recipient_code: str, reason: str, reference: str
    ) -> TransferHandle:
        """
        Initiate a transfer from the platform balance.

        Args:
            amount_minor: Amount in minor units
            recipient_code: Code from create_transfer_recipient
            reason: Narration shown to the recipient
            reference: Unique transfer reference; the gateway rejects duplicates

        Returns:
            TransferHandle: Transfer code, reference and reported status

        Raises:
            PayoutGatewayError: If the transfer is not accepted
        """
        logger.info(
            "initiating_transfer",
            amount_minor=amount_minor,
            reference=reference,
        )
        data = await self._call(
            "initiate_transfer",
            "/transfer",
            {
                "source": "balance",
                "amount": amount_minor,
                "recipient": recipient_code,
                "reason": reason,
                "reference": reference,
                "currency": self.currency,
            },
        )
        handle = TransferHandle(
            transfer_code=data.get("transfer_code", ""),
            reference=data.get("reference", reference),
            status=data.get("status", "pending"),
        )
        logger.info(
            "transfer_initiated",
            reference=handle.reference,
            transfer_code=handle.transfer_code,
            status=handle.status,
        )
        return handle

    @retry(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def initialize_transaction(
        self,
        email: str,
        amount_minor: int,
        reference: str,
        phone: str,
        provider: str,
        callback_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Initialize a mobile-money checkout charge.

        Args:
            email: Customer email
            amount_minor: Amount in minor units
            reference: Transaction payment reference
            phone: Paying mobile-money number
            provider: Charge provider code (mtn, vod, atl)
            callback_url: Where the customer is sent after paying
            metadata: Optional metadata echoed back in webhooks

        Returns:
            Dict[str, Any]: Gateway data with authorization_url and reference

        Raises:
            PayoutGatewayError: If initialization fails after retries
        """
        payload: Dict[str, Any] = {
            "email": email,
            "amount": amount_minor,
            "currency": self.currency,
            "reference": reference,
            "channels": ["mobile_money"],
            "mobile_money": {"phone": phone, "provider": provider},
            "metadata": metadata or {},
        }
        if callback_url:
            payload["callback_url"] = callback_url
        return await self._call("initialize_transaction", "/transaction/initialize", payload)

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self.http_client.aclose()
