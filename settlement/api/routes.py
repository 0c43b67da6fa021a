"""
API routes for checkout, settlement webhooks, commissions and withdrawals.
"""
import time
import uuid
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from settlement.core.exceptions import NotFound
from settlement.integrations.auth import Identity
from settlement.integrations.webhook_handler import InvalidSignature, WebhookError
from settlement.monitoring.metrics import metrics

from .schemas import (
    AffiliateStatsResponse,
    DistributeCommissionsRequest,
    DistributionResponse,
    ErrorResponse,
    HealthCheckResponse,
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    WebhookResponse,
    WithdrawalRequest,
    WithdrawalResponse,
    WithdrawalSchema,
)
from .services import Services, get_services, require_identity, require_operator

logger = structlog.get_logger(__name__)

payment_router = APIRouter(prefix="/payments", tags=["payments"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
commission_router = APIRouter(prefix="/commissions", tags=["commissions"])
affiliate_router = APIRouter(tags=["affiliates"])
monitoring_router = APIRouter(tags=["monitoring"])

_ERRORS: Dict[int | str, Dict[str, Any]] = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


@payment_router.post(
    "/initiate",
    response_model=InitiatePaymentResponse,
    responses={**_ERRORS, 502: {"model": ErrorResponse}},
    summary="Start a checkout",
    description="Create a pending transaction and initialize its mobile-money charge",
)
async def initiate_payment(
    request: InitiatePaymentRequest,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Start a checkout for a single product."""
    session = await services.payments.initiate(
        product_id=request.product_id,
        customer_name=request.customer_name,
        customer_email=request.customer_email,
        customer_phone=request.customer_phone,
        shipping_address=request.shipping_address,
        payment_number=request.payment_number,
        referral_code=request.referral_code,
    )
    return {"authorization_url": session.authorization_url, "reference": session.reference}


@webhook_router.post(
    "/paystack",
    response_model=WebhookResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Paystack webhook endpoint",
    description="Handle charge and transfer events",
)
async def paystack_webhook(
    request: Request,
    x_paystack_signature: Optional[str] = Header(default=None, alias="x-paystack-signature"),
    services: Services = Depends(get_services),
) -> Any:
    """
    Handle Paystack webhook events.

    Answers 200 for every delivery whose signature verifies, whatever
    happens afterwards, so the gateway does not keep redelivering.
    """
    start_time = time.time()
    body = await request.body()

    try:
        event = services.webhook_handler.verify_signature(body, x_paystack_signature)
    except InvalidSignature:
        metrics.record_webhook_signature_failure()
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid signature"})
    except WebhookError as e:
        logger.warning("api_webhook_unparseable", error=str(e))
        return {"status": "ignored", "message": str(e)}

    try:
        result = await services.webhook_handler.process_event(event)
    except Exception as e:
        logger.error(
            "api_webhook_processing_error",
            event_type=event.event_type,
            error=str(e),
        )
        result = {"status": "error", "message": "Event received; processing failed"}

    metrics.record_webhook_event(event.event_type, result["status"], time.time() - start_time)
    return {"status": result["status"], "message": result.get("message")}


@commission_router.post(
    "/distribute",
    response_model=DistributionResponse,
    responses=_ERRORS,
    dependencies=[Depends(require_operator)],
    summary="Retry commission payouts",
    description="Pay out a transaction's pending commissions, optionally retrying failed ones",
)
async def distribute_commissions(
    request: DistributeCommissionsRequest,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Re-run the distributor for one transaction."""
    transaction = await services.store.get_transaction(request.transaction_id)
    if transaction is None:
        raise NotFound("Transaction not found")

    logger.info(
        "api_distribution_requested",
        transaction_id=str(request.transaction_id),
        reopen_failed=request.reopen_failed,
    )
    report = await services.distributor.distribute(
        request.transaction_id, reopen_failed=request.reopen_failed
    )
    return report.to_dict()


@affiliate_router.post(
    "/withdrawals",
    response_model=WithdrawalResponse,
    responses=_ERRORS,
    summary="Request a withdrawal",
    description="Withdraw paid commissions to the affiliate's mobile-money number",
)
async def request_withdrawal(
    request: WithdrawalRequest,
    identity: Identity = Depends(require_identity),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Reserve and pay out an affiliate withdrawal."""
    result = await services.withdrawals.request_withdrawal(
        requester_id=identity.user_id,
        affiliate_id=request.user_id,
        amount=request.amount,
    )
    return {"success": True, "withdrawal": WithdrawalSchema.from_model(result.withdrawal)}


@affiliate_router.get(
    "/affiliates/{user_id}/stats",
    response_model=AffiliateStatsResponse,
    responses=_ERRORS,
    summary="Affiliate statistics",
    description="Earnings, referral sales and withdrawal history",
)
async def affiliate_stats(
    user_id: uuid.UUID,
    identity: Identity = Depends(require_identity),
    services: Services = Depends(get_services),
) -> AffiliateStatsResponse:
    """Earnings statistics for the authenticated affiliate."""
    stats = await services.withdrawals.get_affiliate_stats(identity.user_id, user_id)
    return AffiliateStatsResponse.from_stats(stats)


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await services.health.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
    description="Kubernetes liveness probe endpoint",
)
async def liveness(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Liveness probe endpoint."""
    return await services.health.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
    description="Kubernetes readiness probe endpoint",
)
async def readiness(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Readiness probe endpoint."""
    result = await services.health.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
