"""
Integration tests for affiliate withdrawals and earnings statistics.
"""
import uuid
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from conftest import create_pending_transaction, credit_paid_commission
from settlement.core.distributor import CommissionDistributor
from settlement.core.exceptions import (
    Forbidden,
    InsufficientBalance,
    NotFound,
    ValidationError,
)
from settlement.core.settlement_engine import SettlementEngine
from settlement.core.withdrawals import WithdrawalHandler, withdrawal_reference_for
from settlement.database.ledger_store import LedgerStore
from settlement.database.models import WITHDRAWAL_COMPLETED, WITHDRAWAL_PENDING, User
from settlement.integrations.payout_gateway import GatewayErrorType, PayoutGatewayError


@pytest.mark.integration
@pytest.mark.asyncio
class TestRequestWithdrawal:
    """Test suite for WithdrawalHandler.request_withdrawal."""

    async def test_withdrawing_exact_balance_completes(
        self, store: LedgerStore, seeded: SimpleNamespace, gateway: AsyncMock
    ) -> None:
        affiliate_id = seeded.affiliate.id
        await credit_paid_commission(store, seeded, affiliate_id, 5000)

        result = await WithdrawalHandler(store, gateway).request_withdrawal(
            affiliate_id, affiliate_id, Decimal("50.00")
        )

        assert result.completed
        assert result.available_minor == 5000
        withdrawal = result.withdrawal
        assert withdrawal.status == WITHDRAWAL_COMPLETED
        assert withdrawal.amount_minor == 5000
        assert withdrawal.transfer_reference == withdrawal_reference_for(withdrawal)
        assert withdrawal.completed_at is not None

        gateway.create_transfer_recipient.assert_awaited_once_with(
            "Esi Affiliate", "0263333333", "ATL"
        )
        gateway.initiate_transfer.assert_awaited_once_with(
            5000, "RCP_test", "Affiliate withdrawal", withdrawal_reference_for(withdrawal)
        )
        assert await store.available_balance(affiliate_id) == 0

    async def test_amount_above_balance_is_rejected(
        self, store: LedgerStore, seeded: SimpleNamespace, gateway: AsyncMock
    ) -> None:
        affiliate_id = seeded.affiliate.id
        await credit_paid_commission(store, seeded, affiliate_id, 5000)

        with pytest.raises(InsufficientBalance, match="Insufficient balance"):
            await WithdrawalHandler(store, gateway).request_withdrawal(
                affiliate_id, affiliate_id, "50.01"
            )

        summary = await store.affiliate_summary(affiliate_id)
        assert summary["withdrawals"] == []
        gateway.initiate_transfer.assert_not_awaited()

    async def test_unpaid_commissions_are_not_withdrawable(
        self, store: LedgerStore, seeded: SimpleNamespace, gateway: AsyncMock
    ) -> None:
        affiliate_id = seeded.affiliate.id
        transaction = await create_pending_transaction(
            store, seeded.product, affiliate_id=affiliate_id
        )
        await SettlementEngine(store, AsyncMock(spec=CommissionDistributor)).settle(
            transaction.payment_reference, "success"
        )

        assert await store.available_balance(affiliate_id) == 0
        with pytest.raises(InsufficientBalance):
            await WithdrawalHandler(store, gateway).request_withdrawal(
                affiliate_id, affiliate_id, "10"
            )

    async def test_failed_payout_keeps_withdrawal_pending_and_held(
        self, store: LedgerStore, seeded: SimpleNamespace, gateway: AsyncMock
    ) -> None:
        affiliate_id = seeded.affiliate.id
        await credit_paid_commission(store, seeded, affiliate_id, 3000)
        gateway.initiate_transfer.side_effect = PayoutGatewayError(
            "Insufficient platform balance", GatewayErrorType.PERMANENT
        )
        handler = WithdrawalHandler(store, gateway)

        result = await handler.request_withdrawal(affiliate_id, affiliate_id, "30")

        assert not result.completed
        assert result.withdrawal.status == WITHDRAWAL_PENDING
        stored = await store.get_withdrawal(result.withdrawal.id)
        assert stored.status == WITHDRAWAL_PENDING
        assert stored.completed_at is None

        # The pending withdrawal still holds its amount
        assert await store.available_balance(affiliate_id) == 0
        with pytest.raises(InsufficientBalance):
            await handler.request_withdrawal(affiliate_id, affiliate_id, "10")

    async def test_successive_withdrawals_draw_down_balance(
        self, store: LedgerStore, seeded: SimpleNamespace, gateway: AsyncMock
    ) -> None:
        affiliate_id = seeded.affiliate.id
        await credit_paid_commission(store, seeded, affiliate_id, 2500)
        handler = WithdrawalHandler(store, gateway)

        first = await handler.request_withdrawal(affiliate_id, affiliate_id, "15")
        assert first.completed
        assert await store.available_balance(affiliate_id) == 1000

        second = await handler.request_withdrawal(affiliate_id, affiliate_id, "10")
        assert second.available_minor == 1000
        assert await store.available_balance(affiliate_id) == 0

    async def test_other_users_withdrawal_is_forbidden(
        self, store: LedgerStore, seeded: SimpleNamespace, gateway: AsyncMock
    ) -> None:
        with pytest.raises(Forbidden, match="User ID mismatch"):
            await WithdrawalHandler(store, gateway).request_withdrawal(
                seeded.customer.id, seeded.affiliate.id, "10"
            )

    async def test_non_affiliate_is_forbidden(
        self, store: LedgerStore, seeded: SimpleNamespace, gateway: AsyncMock
    ) -> None:
        with pytest.raises(Forbidden, match="not an affiliate"):
            await WithdrawalHandler(store, gateway).request_withdrawal(
                seeded.seller.id, seeded.seller.id, "10"
            )

    async def test_unknown_user(self, store: LedgerStore, gateway: AsyncMock) -> None:
        user_id = uuid.uuid4()

        with pytest.raises(NotFound, match="User not found"):
            await WithdrawalHandler(store, gateway).request_withdrawal(user_id, user_id, "10")

    async def test_below_minimum_rejected(
        self, store: LedgerStore, seeded: SimpleNamespace, gateway: AsyncMock
    ) -> None:
        affiliate_id = seeded.affiliate.id
        await credit_paid_commission(store, seeded, affiliate_id, 5000)

        with pytest.raises(ValidationError, match="Minimum withdrawal amount is 10.00 GHS"):
            await WithdrawalHandler(store, gateway).request_withdrawal(
                affiliate_id, affiliate_id, "9.99"
            )

    @pytest.mark.parametrize("amount", ["0", "-10", "10.005", "ten"])
    async def test_invalid_amount_rejected(
        self, store: LedgerStore, seeded: SimpleNamespace, gateway: AsyncMock, amount: str
    ) -> None:
        affiliate_id = seeded.affiliate.id

        with pytest.raises(ValidationError) as exc_info:
            await WithdrawalHandler(store, gateway).request_withdrawal(
                affiliate_id, affiliate_id, amount
            )
        assert not isinstance(exc_info.value, InsufficientBalance)

    async def test_custom_minimum(
        self, store: LedgerStore, seeded: SimpleNamespace, gateway: AsyncMock
    ) -> None:
        affiliate_id = seeded.affiliate.id
        await credit_paid_commission(store, seeded, affiliate_id, 500)

        result = await WithdrawalHandler(
            store, gateway, minimum_amount=Decimal("1")
        ).request_withdrawal(affiliate_id, affiliate_id, "5")

        assert result.completed

    async def test_unsupported_phone_rejected_before_reservation(
        self, store: LedgerStore, seeded: SimpleNamespace, gateway: AsyncMock
    ) -> None:
        affiliate_id = seeded.affiliate.id
        await credit_paid_commission(store, seeded, affiliate_id, 5000)
        async with store.session_factory() as session:
            affiliate = await session.get(User, affiliate_id)
            affiliate.phone = "0301234567"
            await session.commit()

        with pytest.raises(ValidationError, match="Unsupported phone number"):
            await WithdrawalHandler(store, gateway).request_withdrawal(
                affiliate_id, affiliate_id, "20"
            )

        assert await store.available_balance(affiliate_id) == 5000
        gateway.create_transfer_recipient.assert_not_awaited()


@pytest.mark.integration
@pytest.mark.asyncio
class TestAffiliateStats:
    """Test suite for WithdrawalHandler.get_affiliate_stats."""

    async def test_stats_summarize_earnings_and_history(
        self, store: LedgerStore, seeded: SimpleNamespace, gateway: AsyncMock
    ) -> None:
        affiliate_id = seeded.affiliate.id
        await credit_paid_commission(store, seeded, affiliate_id, 5000)
        transaction = await create_pending_transaction(
            store, seeded.product, affiliate_id=affiliate_id
        )
        await SettlementEngine(store, AsyncMock(spec=CommissionDistributor)).settle(
            transaction.payment_reference, "success"
        )
        handler = WithdrawalHandler(store, gateway)
        await handler.request_withdrawal(affiliate_id, affiliate_id, "20")

        stats = await handler.get_affiliate_stats(affiliate_id, affiliate_id)

        assert stats["referral_code"] == "ESI-REF"
        assert stats["total_earnings_minor"] == 5800
        assert stats["pending_earnings_minor"] == 800
        assert stats["submitted_earnings_minor"] == 0
        assert stats["paid_earnings_minor"] == 5000
        assert stats["failed_earnings_minor"] == 0
        assert stats["available_balance_minor"] == 3000
        assert len(stats["referral_sales"]) == 2
        assert [w.amount_minor for w in stats["withdrawals"]] == [2000]

    async def test_stats_for_new_affiliate_are_zero(
        self, store: LedgerStore, seeded: SimpleNamespace, gateway: AsyncMock
    ) -> None:
        affiliate_id = seeded.affiliate.id

        stats = await WithdrawalHandler(store, gateway).get_affiliate_stats(
            affiliate_id, affiliate_id
        )

        assert stats["total_earnings_minor"] == 0
        assert stats["available_balance_minor"] == 0
        assert stats["referral_sales"] == []
        assert stats["withdrawals"] == []

    async def test_stats_of_another_user_forbidden(
        self, store: LedgerStore, seeded: SimpleNamespace, gateway: AsyncMock
    ) -> None:
        with pytest.raises(Forbidden):
            await WithdrawalHandler(store, gateway).get_affiliate_stats(
                seeded.admin.id, seeded.affiliate.id
            )
