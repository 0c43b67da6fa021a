"""
Ledger store: durable records for transactions, commissions and withdrawals.

Each primitive runs in its own short session. Status changes go through
conditional updates ("update where status = expected") and report whether the
row was actually moved, which is the only strong-consistency primitive the
settlement pipeline relies on.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement.database.models import (
    COMMISSION_FAILED,
    COMMISSION_PAID,
    COMMISSION_PENDING,
    PAYMENT_COMPLETED,
    PAYMENT_PENDING,
    WITHDRAWAL_COMPLETED,
    WITHDRAWAL_PENDING,
    Commission,
    Product,
    Transaction,
    User,
    Withdrawal,
)

logger = structlog.get_logger(__name__)


class LedgerStore:
    """
    Async repository over the ledger tables.

    Constructed with an explicit session factory so that every component
    sharing a store talks to the same database without global handles.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # Transactions

    async def create_transaction(
        self,
        product_id: uuid.UUID,
        customer_name: str,
        customer_phone: str,
        amount_minor: int,
        payment_reference: str,
        customer_email: Optional[str] = None,
        shipping_address: Optional[str] = None,
        affiliate_id: Optional[uuid.UUID] = None,
    ) -> Transaction:
        async with self.session_factory() as session:
            transaction = Transaction(
                product_id=product_id,
                customer_name=customer_name,
                customer_email=customer_email,
                customer_phone=customer_phone,
                shipping_address=shipping_address,
                amount_minor=amount_minor,
                payment_status=PAYMENT_PENDING,
                payment_reference=payment_reference,
                affiliate_id=affiliate_id,
            )
            session.add(transaction)
            await session.commit()
            await session.refresh(transaction)
            return transaction

    async def get_transaction(self, transaction_id: uuid.UUID) -> Optional[Transaction]:
        async with self.session_factory() as session:
            return await session.get(Transaction, transaction_id)

    async def get_transaction_by_reference(self, reference: str) -> Optional[Transaction]:
        async with self.session_factory() as session:
            stmt = select(Transaction).where(Transaction.payment_reference == reference)
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def complete_transaction(self, transaction_id: uuid.UUID) -> bool:
        """
        Move a transaction from pending to completed.

        Returns:
            bool: True only for the caller that performed the transition
        """
        async with self.session_factory() as session:
            stmt = (
                update(Transaction)
                .where(
                    Transaction.id == transaction_id,
                    Transaction.payment_status == PAYMENT_PENDING,
                )
                .values(
                    payment_status=PAYMENT_COMPLETED,
                    completed_at=datetime.now(timezone.utc),
                )
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    # Users and catalog (read-only)

    async def get_user(self, user_id: uuid.UUID) -> Optional[User]:
        async with self.session_factory() as session:
            return await session.get(User, user_id)

    async def get_user_by_referral_code(self, referral_code: str) -> Optional[User]:
        async with self.session_factory() as session:
            stmt = select(User).where(User.referral_code == referral_code)
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def list_users_by_role(self, role: str, limit: int = 2) -> List[User]:
        async with self.session_factory() as session:
            stmt = select(User).where(User.role == role).limit(limit)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_product(self, product_id: uuid.UUID) -> Optional[Product]:
        async with self.session_factory() as session:
            return await session.get(Product, product_id)

    # Commissions

    async def insert_commissions(
        self, transaction_id: uuid.UUID, shares: Iterable[Any]
    ) -> List[Commission]:
        """
        Insert a transaction's commission rows as a single batch.

        Either all rows are written or none are.
        """
        async with self.session_factory() as session:
            async with session.begin():
                rows = [
                    Commission(
                        transaction_id=transaction_id,
                        recipient_id=share.recipient_id,
                        amount_minor=share.amount_minor,
                        commission_type=share.commission_type,
                        status=COMMISSION_PENDING,
                    )
                    for share in shares
                ]
                session.add_all(rows)
            return rows

    async def list_commissions(
        self, transaction_id: uuid.UUID, status: Optional[str] = None
    ) -> List[Commission]:
        async with self.session_factory() as session:
            stmt = select(Commission).where(Commission.transaction_id == transaction_id)
            if status is not None:
                stmt = stmt.where(Commission.status == status)
            stmt = stmt.order_by(Commission.created_at, Commission.commission_type)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def count_commissions(self, transaction_id: uuid.UUID) -> int:
        async with self.session_factory() as session:
            stmt = select(func.count(Commission.id)).where(
                Commission.transaction_id == transaction_id
            )
            result = await session.execute(stmt)
            return int(result.scalar_one())

    async def get_commission_by_transfer_reference(self, reference: str) -> Optional[Commission]:
        async with self.session_factory() as session:
            stmt = select(Commission).where(Commission.transfer_reference == reference)
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def transition_commission(
        self,
        commission_id: uuid.UUID,
        from_statuses: Sequence[str],
        to_status: str,
        **values: Any,
    ) -> bool:
        """
        Compare-and-set a commission's status.

        Args:
            commission_id: Commission to move
            from_statuses: Statuses the row must currently be in
            to_status: Target status
            **values: Extra columns to write alongside the status

        Returns:
            bool: True if this call moved the row
        """
        async with self.session_factory() as session:
            stmt = (
                update(Commission)
                .where(
                    Commission.id == commission_id,
                    Commission.status.in_(list(from_statuses)),
                )
                .values(status=to_status, **values)
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    async def reopen_failed_commissions(self, transaction_id: uuid.UUID) -> int:
        """Return failed commissions to pending for another payout attempt."""
        async with self.session_factory() as session:
            stmt = (
                update(Commission)
                .where(
                    Commission.transaction_id == transaction_id,
                    Commission.status == COMMISSION_FAILED,
                )
                .values(
                    status=COMMISSION_PENDING,
                    payout_attempts=Commission.payout_attempts + 1,
                    transfer_reference=None,
                    transfer_code=None,
                )
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount

    async def transactions_with_pending_commissions(
        self,
        limit: int = 100,
        include_failed: bool = False,
        after: Optional[Tuple[datetime, uuid.UUID]] = None,
    ) -> List[Tuple[uuid.UUID, datetime]]:
        """
        One page of transactions with commissions still to pay, oldest first.

        Args:
            limit: Page size
            include_failed: Also match transactions whose rows are failed
            after: Keyset of the last row of the previous page

        Returns:
            List[Tuple[uuid.UUID, datetime]]: Transaction ids with the
            creation time of their oldest open commission
        """
        statuses = [COMMISSION_PENDING, COMMISSION_FAILED] if include_failed else [COMMISSION_PENDING]
        first_open = func.min(Commission.created_at).label("first_open")
        async with self.session_factory() as session:
            stmt = (
                select(Commission.transaction_id, first_open)
                .where(Commission.status.in_(statuses))
                .group_by(Commission.transaction_id)
            )
            if after is not None:
                after_created, after_id = after
                stmt = stmt.having(
                    or_(
                        first_open > after_created,
                        and_(first_open == after_created, Commission.transaction_id > after_id),
                    )
                )
            stmt = stmt.order_by(first_open, Commission.transaction_id).limit(limit)
            result = await session.execute(stmt)
            return [(row.transaction_id, row.first_open) for row in result]

    # Withdrawals

    @staticmethod
    async def _balance(session: AsyncSession, affiliate_id: uuid.UUID) -> int:
        earned = await session.execute(
            select(func.coalesce(func.sum(Commission.amount_minor), 0)).where(
                Commission.recipient_id == affiliate_id,
                Commission.status == COMMISSION_PAID,
            )
        )
        withdrawn = await session.execute(
            select(func.coalesce(func.sum(Withdrawal.amount_minor), 0)).where(
                Withdrawal.affiliate_id == affiliate_id,
                Withdrawal.status.in_([WITHDRAWAL_PENDING, WITHDRAWAL_COMPLETED]),
            )
        )
        return int(earned.scalar_one()) - int(withdrawn.scalar_one())

    async def available_balance(self, affiliate_id: uuid.UUID) -> int:
        """Paid commissions minus completed and pending withdrawals, in minor units."""
        async with self.session_factory() as session:
            return await self._balance(session, affiliate_id)

    async def reserve_withdrawal(
        self, affiliate_id: uuid.UUID, amount_minor: int
    ) -> Tuple[Optional[Withdrawal], int]:
        """
        Insert a pending withdrawal if the balance covers it.

        The affiliate's user row is locked for the duration of the check and
        the insert, so two concurrent requests cannot both spend the same
        balance.

        Returns:
            Tuple of the new withdrawal (None when not covered) and the
            balance that was checked
        """
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    select(User.id).where(User.id == affiliate_id).with_for_update()
                )
                available = await self._balance(session, affiliate_id)
                if amount_minor > available:
                    return None, available

                withdrawal = Withdrawal(
                    affiliate_id=affiliate_id,
                    amount_minor=amount_minor,
                    status=WITHDRAWAL_PENDING,
                    requested_at=datetime.now(timezone.utc),
                )
                session.add(withdrawal)
            return withdrawal, available

    async def complete_withdrawal(
        self, withdrawal_id: uuid.UUID, transfer_reference: str
    ) -> Optional[Withdrawal]:
        """Move a withdrawal from pending to completed; None if it was not pending."""
        async with self.session_factory() as session:
            stmt = (
                update(Withdrawal)
                .where(
                    Withdrawal.id == withdrawal_id,
                    Withdrawal.status == WITHDRAWAL_PENDING,
                )
                .values(
                    status=WITHDRAWAL_COMPLETED,
                    transfer_reference=transfer_reference,
                    completed_at=datetime.now(timezone.utc),
                )
            )
            result = await session.execute(stmt)
            await session.commit()
            if result.rowcount != 1:
                return None
            return await session.get(Withdrawal, withdrawal_id, populate_existing=True)

    async def get_withdrawal(self, withdrawal_id: uuid.UUID) -> Optional[Withdrawal]:
        async with self.session_factory() as session:
            return await session.get(Withdrawal, withdrawal_id)

    async def affiliate_summary(self, affiliate_id: uuid.UUID) -> Dict[str, Any]:
        """Commission totals by status, referral sales and withdrawal history."""
        async with self.session_factory() as session:
            totals_result = await session.execute(
                select(Commission.status, func.sum(Commission.amount_minor))
                .where(Commission.recipient_id == affiliate_id)
                .group_by(Commission.status)
            )
            totals = {status: int(total or 0) for status, total in totals_result.all()}

            sales_result = await session.execute(
                select(Transaction)
                .where(Transaction.affiliate_id == affiliate_id)
                .order_by(Transaction.created_at.desc())
            )
            withdrawals_result = await session.execute(
                select(Withdrawal)
                .where(Withdrawal.affiliate_id == affiliate_id)
                .order_by(Withdrawal.requested_at.desc())
            )
            available = await self._balance(session, affiliate_id)

            return {
                "totals": totals,
                "referral_sales": list(sales_result.scalars().all()),
                "withdrawals": list(withdrawals_result.scalars().all()),
                "available_minor": available,
            }
