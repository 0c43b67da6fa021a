"""
Settlement engine: turns a confirmed payment into commission records.

Flow for a payment confirmation:
1. Look up the transaction by payment reference
2. Return early if it is already completed or the payment did not succeed
3. Move it pending -> completed with a conditional update
4. Resolve the seller and the platform admin
5. Compute the split and insert all commission rows as one batch
6. Hand the transaction to the commission distributor

Only the caller that wins step 3 runs steps 4-6, which is what makes
duplicate webhook deliveries harmless.
"""
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from settlement.core.distributor import CommissionDistributor, DistributionReport
from settlement.core.exceptions import ConfigurationError, Conflict, NotFound
from settlement.core.splits import CommissionRates, compute_split
from settlement.database.ledger_store import LedgerStore
from settlement.database.models import PAYMENT_COMPLETED, ROLE_ADMIN
from settlement.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

PAYMENT_SUCCESS = "success"

OUTCOME_SETTLED = "settled"
OUTCOME_ALREADY_PROCESSED = "already_processed"
OUTCOME_NOT_SUCCESSFUL = "not_successful"
OUTCOME_UNCOMMISSIONED = "uncommissioned"

_MESSAGES = {
    OUTCOME_SETTLED: "Payment processed",
    OUTCOME_ALREADY_PROCESSED: "Transaction already processed",
    OUTCOME_NOT_SUCCESSFUL: "Payment not successful",
    OUTCOME_UNCOMMISSIONED: "Payment recorded; commissions require reconciliation",
}


@dataclass
class SettlementResult:
    """What a settlement call did."""

    outcome: str
    transaction_id: Optional[uuid.UUID] = None
    commissions_created: int = 0
    distribution: Optional[DistributionReport] = None
    requires_reconciliation: bool = False

    @property
    def message(self) -> str:
        return _MESSAGES[self.outcome]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome,
            "message": self.message,
            "transaction_id": str(self.transaction_id) if self.transaction_id else None,
            "commissions_created": self.commissions_created,
            "requires_reconciliation": self.requires_reconciliation,
        }


class SettlementEngine:
    """Settles confirmed payments exactly once."""

    def __init__(
        self,
        store: LedgerStore,
        distributor: CommissionDistributor,
        rates: CommissionRates = CommissionRates(),
        assign_residue_to_platform: bool = True,
    ):
        self.store = store
        self.distributor = distributor
        self.rates = rates
        self.assign_residue_to_platform = assign_residue_to_platform

    async def _platform_admin_id(self) -> uuid.UUID:
        admins = await self.store.list_users_by_role(ROLE_ADMIN, limit=2)
        if not admins:
            raise ConfigurationError("No platform admin user is configured")
        if len(admins) > 1:
            raise ConfigurationError("More than one platform admin user is configured")
        return admins[0].id

    async def _claim(self, transaction: Any, status: str) -> bool:
        """
        Move a transaction pending -> completed for this caller only.

        Returns:
            bool: False if the payment did not succeed

        Raises:
            Conflict: If the transaction was already completed, by an earlier
                delivery or by a concurrent one that won the update
        """
        if transaction.payment_status == PAYMENT_COMPLETED:
            raise Conflict("Transaction already processed")
        if status != PAYMENT_SUCCESS:
            return False
        if not await self.store.complete_transaction(transaction.id):
            raise Conflict("Transaction already processed")
        return True

    async def _already_processed(self, transaction: Any, log: Any) -> SettlementResult:
        metrics.record_settlement(OUTCOME_ALREADY_PROCESSED)
        if transaction.payment_status != PAYMENT_COMPLETED:
            # Lost the update to a concurrent delivery still writing commissions
            log.info("settlement_transition_lost")
            return SettlementResult(OUTCOME_ALREADY_PROCESSED, transaction.id)

        existing = await self.store.count_commissions(transaction.id)
        if existing == 0:
            # Completed earlier without commissions, e.g. while no admin existed
            log.warning("settlement_redelivery_uncommissioned", requires_reconciliation=True)
        else:
            log.info("settlement_already_processed", commissions=existing)
        return SettlementResult(
            OUTCOME_ALREADY_PROCESSED,
            transaction.id,
            requires_reconciliation=existing == 0,
        )

    async def settle(self, reference: str, status: str) -> SettlementResult:
        """
        Settle a verified payment confirmation.

        Args:
            reference: Payment reference assigned at checkout
            status: Payment status reported by the processor

        Returns:
            SettlementResult: Outcome of the call

        Raises:
            NotFound: If no transaction or product matches
            ConfigurationError: If the platform admin cannot be resolved
        """
        log = logger.bind(reference=reference)

        transaction = await self.store.get_transaction_by_reference(reference)
        if transaction is None:
            log.warning("settlement_transaction_not_found")
            raise NotFound("Transaction not found")

        log = log.bind(transaction_id=str(transaction.id))

        try:
            claimed = await self._claim(transaction, status)
        except Conflict:
            return await self._already_processed(transaction, log)

        if not claimed:
            log.info("settlement_payment_not_successful", status=status)
            metrics.record_settlement(OUTCOME_NOT_SUCCESSFUL)
            return SettlementResult(OUTCOME_NOT_SUCCESSFUL, transaction.id)

        log.info("transaction_completed", amount_minor=transaction.amount_minor)

        product = await self.store.get_product(transaction.product_id)
        if product is None:
            log.error(
                "settlement_product_not_found",
                product_id=str(transaction.product_id),
                requires_reconciliation=True,
            )
            metrics.record_uncommissioned_transaction()
            raise NotFound("Product not found")
        try:
            admin_id = await self._platform_admin_id()
        except ConfigurationError as e:
            log.error("settlement_admin_unresolved", error=e.message, requires_reconciliation=True)
            metrics.record_uncommissioned_transaction()
            raise

        shares = compute_split(
            transaction.amount_minor,
            seller_id=product.seller_id,
            admin_id=admin_id,
            affiliate_id=transaction.affiliate_id,
            rates=self.rates,
            assign_residue_to_platform=self.assign_residue_to_platform,
        )

        try:
            rows = await self.store.insert_commissions(transaction.id, shares)
        except SQLAlchemyError as e:
            log.error(
                "commission_insert_failed",
                error=str(e),
                requires_reconciliation=True,
            )
            metrics.record_uncommissioned_transaction()
            metrics.record_settlement(OUTCOME_UNCOMMISSIONED)
            return SettlementResult(OUTCOME_UNCOMMISSIONED, transaction.id)

        log.info(
            "commissions_created",
            count=len(rows),
            has_affiliate=transaction.affiliate_id is not None,
        )
        metrics.record_settlement(OUTCOME_SETTLED, transaction.amount_minor)
        result = SettlementResult(OUTCOME_SETTLED, transaction.id, commissions_created=len(rows))

        try:
            result.distribution = await self.distributor.distribute(transaction.id)
        except Exception as e:
            # Commissions stay pending for the retry endpoint and the sweeper
            log.error("commission_distribution_failed", error=str(e))

        return result
