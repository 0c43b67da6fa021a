"""
Commission distributor: turns pending commissions into mobile-money transfers.

Every pending commission of a transaction is handled on its own. A missing
recipient, an unroutable phone number or a failed gateway call skips that row
and leaves it pending for the next run; it never affects the other recipients.
Status writes are compare-and-set, so running the distributor again (or twice
at once) cannot pay a row twice or count it twice.
"""
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from settlement.database.ledger_store import LedgerStore
from settlement.database.models import (
    COMMISSION_FAILED,
    COMMISSION_PAID,
    COMMISSION_PENDING,
    COMMISSION_SUBMITTED,
    Commission,
)
from settlement.integrations.mobile_money import RoutingError, resolve_route
from settlement.integrations.payout_gateway import PayoutGatewayClient, PayoutGatewayError
from settlement.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

TRANSFER_SUCCESS = "transfer.success"
TRANSFER_FAILED = "transfer.failed"
TRANSFER_REVERSED = "transfer.reversed"

# Statuses a transfer webhook may move a commission out of
_TRANSFER_TRANSITIONS = {
    TRANSFER_SUCCESS: ([COMMISSION_PENDING, COMMISSION_SUBMITTED], COMMISSION_PAID),
    TRANSFER_FAILED: ([COMMISSION_PENDING, COMMISSION_SUBMITTED], COMMISSION_FAILED),
    TRANSFER_REVERSED: (
        [COMMISSION_PENDING, COMMISSION_SUBMITTED, COMMISSION_PAID],
        COMMISSION_FAILED,
    ),
}


def transfer_reference_for(commission: Commission) -> str:
    """Per-attempt transfer reference; the gateway rejects a reused one."""
    return f"cm_{commission.id.hex}_{commission.payout_attempts}"


@dataclass
class SkippedPayout:
    commission_id: uuid.UUID
    commission_type: str
    reason: str


@dataclass
class DistributionReport:
    """Outcome of one distributor run over a transaction."""

    transaction_id: uuid.UUID
    paid: List[uuid.UUID] = field(default_factory=list)
    submitted: List[uuid.UUID] = field(default_factory=list)
    skipped: List[SkippedPayout] = field(default_factory=list)
    reopened: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": str(self.transaction_id),
            "paid": [str(c) for c in self.paid],
            "submitted": [str(c) for c in self.submitted],
            "skipped": [
                {
                    "commission_id": str(s.commission_id),
                    "commission_type": s.commission_type,
                    "reason": s.reason,
                }
                for s in self.skipped
            ],
            "reopened": self.reopened,
        }


class CommissionDistributor:
    """
    Drives pending commissions to the payout gateway.

    Invoked by the settlement engine right after commissions are written and
    independently by the retry endpoint and the sweeper worker.
    """

    def __init__(
        self,
        store: LedgerStore,
        gateway: PayoutGatewayClient,
        settle_on_initiation: bool = False,
    ):
        """
        Initialize distributor.

        Args:
            store: Ledger store
            gateway: Payout gateway client
            settle_on_initiation: Mark rows paid as soon as a transfer is
                accepted instead of waiting for the transfer webhook
        """
        self.store = store
        self.gateway = gateway
        self.settle_on_initiation = settle_on_initiation

    async def distribute(
        self, transaction_id: uuid.UUID, reopen_failed: bool = False
    ) -> DistributionReport:
        """
        Pay out every pending commission of a transaction.

        Args:
            transaction_id: Transaction whose commissions to pay
            reopen_failed: Move failed rows back to pending first

        Returns:
            DistributionReport: Paid, submitted and skipped commissions
        """
        report = DistributionReport(transaction_id=transaction_id)

        if reopen_failed:
            report.reopened = await self.store.reopen_failed_commissions(transaction_id)
            if report.reopened:
                logger.info(
                    "failed_commissions_reopened",
                    transaction_id=str(transaction_id),
                    count=report.reopened,
                )

        commissions = await self.store.list_commissions(transaction_id, status=COMMISSION_PENDING)
        logger.info(
            "distributing_commissions",
            transaction_id=str(transaction_id),
            pending=len(commissions),
        )

        for commission in commissions:
            await self._pay_commission(commission, report)

        logger.info(
            "commission_distribution_finished",
            transaction_id=str(transaction_id),
            paid=len(report.paid),
            submitted=len(report.submitted),
            skipped=len(report.skipped),
        )
        return report

    def _skip(self, commission: Commission, report: DistributionReport, reason: str, **extra: Any) -> None:
        logger.warning(
            "commission_payout_skipped",
            commission_id=str(commission.id),
            transaction_id=str(commission.transaction_id),
            commission_type=commission.commission_type,
            reason=reason,
            **extra,
        )
        metrics.record_commission_payout("skipped")
        report.skipped.append(SkippedPayout(commission.id, commission.commission_type, reason))

    async def _pay_commission(self, commission: Commission, report: DistributionReport) -> None:
        if commission.amount_minor <= 0:
            # Nothing to send; the row is settled as it stands
            if await self.store.transition_commission(
                commission.id, [COMMISSION_PENDING], COMMISSION_PAID
            ):
                metrics.record_commission_payout(COMMISSION_PAID)
                report.paid.append(commission.id)
                logger.info(
                    "zero_commission_settled",
                    commission_id=str(commission.id),
                    commission_type=commission.commission_type,
                )
            return

        recipient = await self.store.get_user(commission.recipient_id)
        if recipient is None:
            self._skip(commission, report, "recipient_not_found")
            return

        try:
            route = resolve_route(recipient.phone or "")
        except RoutingError as e:
            self._skip(commission, report, "unroutable_phone", error=str(e))
            return

        reference = transfer_reference_for(commission)
        try:
            # Recorded before the transfer so an early transfer webhook can find the row
            if commission.transfer_reference != reference:
                recorded = await self.store.transition_commission(
                    commission.id,
                    [COMMISSION_PENDING],
                    COMMISSION_PENDING,
                    transfer_reference=reference,
                )
                if not recorded:
                    logger.info("commission_no_longer_pending", commission_id=str(commission.id))
                    metrics.record_commission_payout("lost_race")
                    return

            recipient_code = await self.gateway.create_transfer_recipient(
                recipient.full_name, route.msisdn, route.bank_code
            )
            handle = await self.gateway.initiate_transfer(
                commission.amount_minor,
                recipient_code,
                f"{commission.commission_type} commission",
                reference,
            )
        except PayoutGatewayError as e:
            self._skip(
                commission,
                report,
                "gateway_error",
                error=str(e),
                error_type=e.error_type.value,
            )
            return
        except SQLAlchemyError as e:
            self._skip(commission, report, "store_error", error=str(e))
            return

        target = (
            COMMISSION_PAID
            if handle.is_settled or self.settle_on_initiation
            else COMMISSION_SUBMITTED
        )
        try:
            moved = await self.store.transition_commission(
                commission.id,
                [COMMISSION_PENDING],
                target,
                transfer_code=handle.transfer_code,
                failure_reason=None,
            )
        except SQLAlchemyError as e:
            # The transfer went out; the transfer webhook settles the row later
            logger.error(
                "commission_status_write_failed",
                commission_id=str(commission.id),
                reference=reference,
                error=str(e),
            )
            self._skip(commission, report, "store_error", error=str(e))
            return

        if not moved:
            logger.info(
                "commission_transition_lost",
                commission_id=str(commission.id),
                reference=reference,
            )
            metrics.record_commission_payout("lost_race")
            return

        metrics.record_commission_payout(target)
        (report.paid if target == COMMISSION_PAID else report.submitted).append(commission.id)
        logger.info(
            "commission_payout_initiated",
            commission_id=str(commission.id),
            commission_type=commission.commission_type,
            amount_minor=commission.amount_minor,
            reference=reference,
            status=target,
        )

    async def apply_transfer_outcome(
        self, event_type: str, data: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Reconcile a commission with a transfer webhook.

        Args:
            event_type: transfer.success, transfer.failed or transfer.reversed
            data: Webhook data object carrying the transfer reference

        Returns:
            Dict[str, Any]: Message describing what was applied
        """
        reference = data.get("reference")
        if event_type not in _TRANSFER_TRANSITIONS or not reference:
            return {"message": "Event not handled"}

        commission = await self.store.get_commission_by_transfer_reference(reference)
        if commission is None:
            # Withdrawals and foreign transfers share the webhook
            logger.info("transfer_reference_not_a_commission", reference=reference)
            metrics.record_transfer_outcome(event_type, False)
            return {"message": "Transfer not tracked"}

        from_statuses, to_status = _TRANSFER_TRANSITIONS[event_type]
        values: Dict[str, Any] = {}
        if to_status == COMMISSION_FAILED:
            values["failure_reason"] = data.get("reason") or data.get("gateway_response") or event_type
        if data.get("transfer_code"):
            values["transfer_code"] = data["transfer_code"]

        moved = await self.store.transition_commission(
            commission.id, from_statuses, to_status, **values
        )
        metrics.record_transfer_outcome(event_type, moved)
        logger.info(
            "transfer_outcome_applied" if moved else "transfer_outcome_ignored",
            commission_id=str(commission.id),
            reference=reference,
            event_type=event_type,
            previous_status=commission.status,
            status=to_status,
        )
        if not moved:
            return {"message": f"Commission already {commission.status}"}
        return {"message": f"Commission {to_status}"}
