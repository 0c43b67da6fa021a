"""
Pydantic schemas for API request/response models.

Amounts cross the API in major units (e.g. 12.50 GHS); the ledger keeps
integer minor units, which responses echo as *_minor fields.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from settlement.core.money import to_major
from settlement.database.models import Transaction, Withdrawal


class InitiatePaymentRequest(BaseModel):
    """Request schema for starting a checkout."""

    product_id: UUID = Field(..., description="Product being purchased")
    customer_name: str = Field(..., min_length=1, max_length=255, description="Buyer's name")
    customer_email: str = Field(..., min_length=3, max_length=255, description="Buyer's email")
    customer_phone: str = Field(..., min_length=1, max_length=32, description="Buyer's contact number")
    shipping_address: str = Field(..., min_length=1, description="Delivery address")
    payment_number: str = Field(..., min_length=1, max_length=32, description="Mobile-money number to charge")
    referral_code: Optional[str] = Field(default=None, description="Affiliate referral code")

    @field_validator("customer_email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v.strip()

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "product_id": "123e4567-e89b-12d3-a456-426614174000",
                    "customer_name": "Ama Mensah",
                    "customer_email": "ama@example.com",
                    "customer_phone": "0241234567",
                    "shipping_address": "12 Ring Road, Accra",
                    "payment_number": "0241234567",
                    "referral_code": "AMA-REF",
                }
            ]
        }
    }


class InitiatePaymentResponse(BaseModel):
    """Response schema for checkout initialization."""

    authorization_url: str = Field(..., description="Where the customer completes the payment")
    reference: str = Field(..., description="Payment reference")


class DistributeCommissionsRequest(BaseModel):
    """Request schema for re-running commission distribution."""

    transaction_id: UUID = Field(..., description="Transaction whose pending commissions to pay")
    reopen_failed: bool = Field(default=False, description="Retry commissions marked failed")


class SkippedPayoutSchema(BaseModel):
    commission_id: str
    commission_type: str
    reason: str


class DistributionResponse(BaseModel):
    """Response schema for a distribution run."""

    transaction_id: str = Field(..., description="Transaction ID")
    paid: List[str] = Field(default_factory=list, description="Commissions confirmed paid")
    submitted: List[str] = Field(default_factory=list, description="Commissions awaiting transfer confirmation")
    skipped: List[SkippedPayoutSchema] = Field(default_factory=list, description="Commissions left pending")
    reopened: int = Field(default=0, description="Failed commissions moved back to pending")


class WithdrawalRequest(BaseModel):
    """Request schema for an affiliate withdrawal."""

    user_id: UUID = Field(..., description="Affiliate requesting the withdrawal")
    amount: Decimal = Field(..., description="Amount in major units (minimum 10)")

    model_config = {
        "json_schema_extra": {
            "examples": [{"user_id": "123e4567-e89b-12d3-a456-426614174000", "amount": 25.5}]
        }
    }


class WithdrawalSchema(BaseModel):
    """A withdrawal record."""

    id: UUID
    affiliate_id: UUID
    amount: Decimal
    amount_minor: int
    status: str
    transfer_reference: Optional[str] = None
    requested_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, withdrawal: Withdrawal) -> "WithdrawalSchema":
        return cls(
            id=withdrawal.id,
            affiliate_id=withdrawal.affiliate_id,
            amount=to_major(withdrawal.amount_minor),
            amount_minor=withdrawal.amount_minor,
            status=withdrawal.status,
            transfer_reference=withdrawal.transfer_reference,
            requested_at=withdrawal.requested_at,
            completed_at=withdrawal.completed_at,
        )


class WithdrawalResponse(BaseModel):
    """Response schema for a withdrawal request."""

    success: bool = Field(..., description="Whether the withdrawal was recorded")
    withdrawal: WithdrawalSchema


class ReferralSaleSchema(BaseModel):
    """A transaction referred by an affiliate."""

    id: UUID
    product_id: UUID
    customer_name: str
    amount: Decimal
    amount_minor: int
    payment_status: str
    payment_reference: str
    created_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, transaction: Transaction) -> "ReferralSaleSchema":
        return cls(
            id=transaction.id,
            product_id=transaction.product_id,
            customer_name=transaction.customer_name,
            amount=to_major(transaction.amount_minor),
            amount_minor=transaction.amount_minor,
            payment_status=transaction.payment_status,
            payment_reference=transaction.payment_reference,
            created_at=transaction.created_at,
            completed_at=transaction.completed_at,
        )


class AffiliateStatsResponse(BaseModel):
    """Response schema for affiliate earnings statistics."""

    referral_code: Optional[str]
    total_earnings: Decimal
    pending_earnings: Decimal
    submitted_earnings: Decimal
    paid_earnings: Decimal
    failed_earnings: Decimal
    available_balance: Decimal
    referral_sales: List[ReferralSaleSchema]
    withdrawal_history: List[WithdrawalSchema]

    @classmethod
    def from_stats(cls, stats: Dict[str, Any]) -> "AffiliateStatsResponse":
        return cls(
            referral_code=stats["referral_code"],
            total_earnings=to_major(stats["total_earnings_minor"]),
            pending_earnings=to_major(stats["pending_earnings_minor"]),
            submitted_earnings=to_major(stats["submitted_earnings_minor"]),
            paid_earnings=to_major(stats["paid_earnings_minor"]),
            failed_earnings=to_major(stats["failed_earnings_minor"]),
            available_balance=to_major(stats["available_balance_minor"]),
            referral_sales=[ReferralSaleSchema.from_model(t) for t in stats["referral_sales"]],
            withdrawal_history=[WithdrawalSchema.from_model(w) for w in stats["withdrawals"]],
        )


class WebhookResponse(BaseModel):
    """Response schema for webhook processing."""

    status: str = Field(..., description="Processing status")
    message: Optional[str] = Field(default=None, description="Status message")


class ErrorResponse(BaseModel):
    error: str


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
