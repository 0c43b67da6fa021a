"""
Service wiring for the API.

All collaborators are built once per application and stored on app.state;
routes reach them through the dependency functions below.
"""
import hmac
from dataclasses import dataclass
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
import structlog
from fastapi import Header, Request

from settlement.config import Settings
from settlement.core.distributor import (
    TRANSFER_FAILED,
    TRANSFER_REVERSED,
    TRANSFER_SUCCESS,
    CommissionDistributor,
)
from settlement.core.exceptions import Forbidden, SettlementError, Unauthorized
from settlement.core.payments import PaymentInitiator
from settlement.core.settlement_engine import SettlementEngine
from settlement.core.splits import CommissionRates
from settlement.core.withdrawals import WithdrawalHandler
from settlement.database.ledger_store import LedgerStore
from settlement.integrations.auth import AuthVerifier, Identity
from settlement.integrations.payout_gateway import PayoutGatewayClient
from settlement.integrations.webhook_handler import WebhookHandler
from settlement.monitoring.health import HealthCheck

logger = structlog.get_logger(__name__)

CHARGE_SUCCESS = "charge.success"


@dataclass
class Services:
    settings: Settings
    store: LedgerStore
    gateway: PayoutGatewayClient
    distributor: CommissionDistributor
    engine: SettlementEngine
    withdrawals: WithdrawalHandler
    payments: PaymentInitiator
    webhook_handler: WebhookHandler
    auth: AuthVerifier
    health: HealthCheck


def register_webhook_handlers(
    handler: WebhookHandler, engine: SettlementEngine, distributor: CommissionDistributor
) -> None:
    """Route charge and transfer events to the settlement engine and distributor."""

    async def on_charge_success(data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            result = await engine.settle(str(data.get("reference") or ""), str(data.get("status") or ""))
        except SettlementError as e:
            # Acknowledged; the gateway must not keep redelivering
            logger.warning("charge_settlement_rejected", error=e.message, code=e.code)
            return {"message": e.message}
        return result.to_dict()

    def on_transfer(event_type: str):
        async def apply(data: Dict[str, Any]) -> Dict[str, Any]:
            return await distributor.apply_transfer_outcome(event_type, data)

        return apply

    handler.register_handler(CHARGE_SUCCESS, on_charge_success)
    for event_type in (TRANSFER_SUCCESS, TRANSFER_FAILED, TRANSFER_REVERSED):
        handler.register_handler(event_type, on_transfer(event_type))


def build_services(
    settings: Settings,
    store: LedgerStore,
    gateway: PayoutGatewayClient,
    redis_client: Optional[aioredis.Redis] = None,
) -> Services:
    """Construct every component around one store, gateway and Redis client."""
    distributor = CommissionDistributor(
        store, gateway, settle_on_initiation=settings.settle_on_transfer_initiation
    )
    engine = SettlementEngine(
        store,
        distributor,
        rates=CommissionRates.from_settings(settings),
        assign_residue_to_platform=settings.assign_rounding_residue_to_platform,
    )
    webhook_handler = WebhookHandler(
        settings.paystack_secret_key,
        redis_client=redis_client,
        dedup_ttl_seconds=settings.webhook_dedup_ttl_seconds,
    )
    register_webhook_handlers(webhook_handler, engine, distributor)

    return Services(
        settings=settings,
        store=store,
        gateway=gateway,
        distributor=distributor,
        engine=engine,
        withdrawals=WithdrawalHandler(store, gateway, minimum_amount=settings.minimum_withdrawal),
        payments=PaymentInitiator(
            store,
            gateway,
            callback_url=f"{settings.public_base_url.rstrip('/')}/checkout/complete",
        ),
        webhook_handler=webhook_handler,
        auth=AuthVerifier(settings),
        health=HealthCheck(store.session_factory, redis_client, gateway.circuit_breaker),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def require_identity(
    request: Request, authorization: Optional[str] = Header(default=None)
) -> Identity:
    """Authenticate the caller from the bearer token."""
    return get_services(request).auth.verify_header(authorization)


def require_operator(request: Request) -> None:
    """Authenticate an operator call with the admin API key."""
    settings = get_services(request).settings
    if not settings.admin_api_key:
        raise Forbidden("Operator API key is not configured")
    supplied = request.headers.get(settings.api_key_header)
    if not supplied or not hmac.compare_digest(supplied, settings.admin_api_key):
        raise Unauthorized("Invalid API key")
