"""
Affiliate withdrawals and earnings statistics.

A withdrawal is reserved against the affiliate's available balance (paid
commissions minus withdrawals already requested) in a single locked store
transaction, then paid out through the gateway. A failed payout leaves the
withdrawal pending for manual processing, and its amount stays held.
"""
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Union

import structlog
from sqlalchemy.exc import SQLAlchemyError

from settlement.core.exceptions import (
    Forbidden,
    InsufficientBalance,
    NotFound,
    UpstreamFailure,
    ValidationError,
)
from settlement.core.money import to_major, to_minor
from settlement.database.ledger_store import LedgerStore
from settlement.database.models import (
    COMMISSION_FAILED,
    COMMISSION_PAID,
    COMMISSION_PENDING,
    COMMISSION_SUBMITTED,
    ROLE_AFFILIATE,
    User,
    Withdrawal,
)
from settlement.integrations.mobile_money import RoutingError, resolve_route
from settlement.integrations.payout_gateway import PayoutGatewayClient, PayoutGatewayError
from settlement.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


def withdrawal_reference_for(withdrawal: Withdrawal) -> str:
    return f"wd_{withdrawal.id.hex}"


@dataclass
class WithdrawalResult:
    withdrawal: Withdrawal
    available_minor: int

    @property
    def completed(self) -> bool:
        return self.withdrawal.completed_at is not None


class WithdrawalHandler:
    """Validates, reserves and pays out affiliate withdrawal requests."""

    def __init__(
        self,
        store: LedgerStore,
        gateway: PayoutGatewayClient,
        minimum_amount: Decimal = Decimal("10"),
    ):
        self.store = store
        self.gateway = gateway
        self.minimum_minor = to_minor(minimum_amount)

    async def _require_affiliate(self, requester_id: uuid.UUID, affiliate_id: uuid.UUID) -> User:
        if requester_id != affiliate_id:
            raise Forbidden("Forbidden: User ID mismatch")

        user = await self.store.get_user(affiliate_id)
        if user is None:
            raise NotFound("User not found")
        if user.role != ROLE_AFFILIATE:
            raise Forbidden("User is not an affiliate")
        return user

    def _parse_amount(self, amount: Union[Decimal, int, str]) -> int:
        try:
            amount_minor = to_minor(amount)
        except ValueError as e:
            raise ValidationError(str(e))
        if amount_minor <= 0:
            raise ValidationError("Amount must be positive")
        if amount_minor < self.minimum_minor:
            raise ValidationError(
                f"Minimum withdrawal amount is {to_major(self.minimum_minor)} {self.gateway.currency}"
            )
        return amount_minor

    async def request_withdrawal(
        self,
        requester_id: uuid.UUID,
        affiliate_id: uuid.UUID,
        amount: Union[Decimal, int, str],
    ) -> WithdrawalResult:
        """
        Reserve and pay out an affiliate withdrawal.

        Args:
            requester_id: Authenticated caller
            affiliate_id: Affiliate the withdrawal is for
            amount: Amount in major units

        Returns:
            WithdrawalResult: The withdrawal (completed, or pending when the
                payout could not be made) and the balance it was checked against

        Raises:
            Forbidden: If the caller is not the affiliate, or the user is not an affiliate
            NotFound: If the user does not exist
            ValidationError: If the amount or the payout phone number is invalid
            InsufficientBalance: If the amount exceeds the available balance
            UpstreamFailure: If the withdrawal cannot be recorded
        """
        user = await self._require_affiliate(requester_id, affiliate_id)
        amount_minor = self._parse_amount(amount)

        try:
            route = resolve_route(user.phone or "")
        except RoutingError:
            metrics.record_withdrawal("rejected")
            raise ValidationError("Unsupported phone number for mobile money")

        try:
            withdrawal, available = await self.store.reserve_withdrawal(affiliate_id, amount_minor)
        except SQLAlchemyError as e:
            logger.error("withdrawal_reservation_failed", affiliate_id=str(affiliate_id), error=str(e))
            raise UpstreamFailure("Failed to create withdrawal request")

        if withdrawal is None:
            logger.info(
                "withdrawal_rejected_insufficient_balance",
                affiliate_id=str(affiliate_id),
                amount_minor=amount_minor,
                available_minor=available,
            )
            metrics.record_withdrawal("rejected")
            raise InsufficientBalance("Insufficient balance")

        log = logger.bind(withdrawal_id=str(withdrawal.id), affiliate_id=str(affiliate_id))
        log.info("withdrawal_reserved", amount_minor=amount_minor, available_minor=available)

        reference = withdrawal_reference_for(withdrawal)
        try:
            recipient_code = await self.gateway.create_transfer_recipient(
                user.full_name, route.msisdn, route.bank_code
            )
            handle = await self.gateway.initiate_transfer(
                amount_minor, recipient_code, "Affiliate withdrawal", reference
            )
        except PayoutGatewayError as e:
            # Kept pending for manual processing
            log.warning("withdrawal_payout_failed", error=str(e), error_type=e.error_type.value)
            metrics.record_withdrawal("pending")
            return WithdrawalResult(withdrawal, available)

        try:
            completed = await self.store.complete_withdrawal(withdrawal.id, handle.reference)
        except SQLAlchemyError as e:
            log.error(
                "withdrawal_completion_write_failed",
                reference=handle.reference,
                error=str(e),
                requires_reconciliation=True,
            )
            metrics.record_withdrawal("pending")
            return WithdrawalResult(withdrawal, available)

        if completed is None:
            log.warning("withdrawal_no_longer_pending", reference=handle.reference)
            current = await self.store.get_withdrawal(withdrawal.id)
            return WithdrawalResult(current or withdrawal, available)

        log.info("withdrawal_completed", reference=handle.reference)
        metrics.record_withdrawal("completed")
        return WithdrawalResult(completed, available)

    async def get_affiliate_stats(
        self, requester_id: uuid.UUID, affiliate_id: uuid.UUID
    ) -> Dict[str, Any]:
        """
        Earnings, referral sales and withdrawal history for an affiliate.

        Raises:
            Forbidden: If the caller is not the affiliate, or the user is not an affiliate
            NotFound: If the user does not exist
        """
        user = await self._require_affiliate(requester_id, affiliate_id)
        summary = await self.store.affiliate_summary(affiliate_id)
        totals = summary["totals"]

        return {
            "referral_code": user.referral_code,
            "total_earnings_minor": sum(totals.values()),
            "pending_earnings_minor": totals.get(COMMISSION_PENDING, 0),
            "submitted_earnings_minor": totals.get(COMMISSION_SUBMITTED, 0),
            "paid_earnings_minor": totals.get(COMMISSION_PAID, 0),
            "failed_earnings_minor": totals.get(COMMISSION_FAILED, 0),
            "available_balance_minor": summary["available_minor"],
            "referral_sales": summary["referral_sales"],
            "withdrawals": summary["withdrawals"],
        }
