"""FastAPI application and routes."""
from .main import create_app
from .schemas import (
    AffiliateStatsResponse,
    DistributeCommissionsRequest,
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    WithdrawalRequest,
    WithdrawalResponse,
)

__all__ = [
    "create_app",
    "AffiliateStatsResponse",
    "DistributeCommissionsRequest",
    "InitiatePaymentRequest",
    "InitiatePaymentResponse",
    "WithdrawalRequest",
    "WithdrawalResponse",
]
