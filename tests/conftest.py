"""
Pytest configuration and fixtures.

The ledger runs against a throwaway SQLite file per test; the payout
gateway is an AsyncMock unless a test exercises the real client over
httpx.MockTransport.
"""
import hashlib
import hmac
import os
import uuid
from types import SimpleNamespace
from typing import Any, AsyncGenerator, Optional
from unittest.mock import AsyncMock

os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_fake_key_for_testing")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AUTH_JWT_SECRET", "test-jwt-secret-0123456789abcdef0123456789")

import pytest
import pytest_asyncio

from settlement.config import Settings
from settlement.database.connection import close_db, create_engine, create_session_factory, init_db
from settlement.database.ledger_store import LedgerStore
from settlement.database.models import (
    COMMISSION_PAID,
    ROLE_ADMIN,
    ROLE_AFFILIATE,
    ROLE_CUSTOMER,
    ROLE_SELLER,
    Commission,
    Product,
    Seller,
    Transaction,
    User,
)
from settlement.integrations.payout_gateway import (
    CircuitBreaker,
    PayoutGatewayClient,
    TransferHandle,
)

TEST_SECRET_KEY = "sk_test_fake_key_for_testing"


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings backed by a temporary SQLite ledger."""
    return Settings(
        _env_file=None,
        paystack_secret_key=TEST_SECRET_KEY,
        database_url=f"sqlite+aiosqlite:///{tmp_path}/ledger.db",
        auth_jwt_secret="test-jwt-secret-0123456789abcdef0123456789",
        admin_api_key="test-admin-key",
        app_name="marketplace-settlement-test",
        app_env="test",
        log_level="DEBUG",
        debug=True,
    )


@pytest_asyncio.fixture
async def store(test_settings: Settings) -> AsyncGenerator[LedgerStore, Any]:
    """Create a ledger store over a fresh schema."""
    engine = create_engine(test_settings)
    await init_db(engine)
    yield LedgerStore(create_session_factory(engine))
    await close_db(engine)


@pytest_asyncio.fixture
async def seeded(store: LedgerStore) -> SimpleNamespace:
    """Admin, seller, affiliate and customer users plus one 100.00 product."""
    admin = User(full_name="Platform Admin", phone="0241111111", role=ROLE_ADMIN)
    seller = User(full_name="Kofi Seller", phone="0202222222", role=ROLE_SELLER)
    affiliate = User(
        full_name="Esi Affiliate",
        phone="0263333333",
        role=ROLE_AFFILIATE,
        referral_code="ESI-REF",
    )
    customer = User(full_name="Yaw Customer", phone="0554444444", role=ROLE_CUSTOMER)

    async with store.session_factory() as session:
        session.add_all([admin, seller, affiliate, customer])
        await session.flush()
        session.add(Seller(id=seller.id, business_name="Kofi Crafts", product_count=1))
        product = Product(seller_id=seller.id, name="Kente Scarf", price_minor=10000)
        session.add(product)
        await session.commit()

    return SimpleNamespace(
        admin=admin,
        seller=seller,
        affiliate=affiliate,
        customer=customer,
        product=product,
    )


async def add_product(store: LedgerStore, seller_id: uuid.UUID, price_minor: int) -> Product:
    async with store.session_factory() as session:
        product = Product(seller_id=seller_id, name="Test Product", price_minor=price_minor)
        session.add(product)
        await session.commit()
        return product


async def create_pending_transaction(
    store: LedgerStore,
    product: Product,
    affiliate_id: Optional[uuid.UUID] = None,
) -> Transaction:
    return await store.create_transaction(
        product_id=product.id,
        customer_name="Yaw Customer",
        customer_phone="0554444444",
        amount_minor=product.price_minor,
        payment_reference=f"txn_{uuid.uuid4().hex}",
        customer_email="yaw@example.com",
        shipping_address="1 Oxford Street, Accra",
        affiliate_id=affiliate_id,
    )


async def credit_paid_commission(
    store: LedgerStore, seeded: SimpleNamespace, recipient_id: uuid.UUID, amount_minor: int
) -> Commission:
    """Record a completed sale whose affiliate commission has been paid."""
    transaction = await create_pending_transaction(store, seeded.product, affiliate_id=recipient_id)
    await store.complete_transaction(transaction.id)
    async with store.session_factory() as session:
        commission = Commission(
            transaction_id=transaction.id,
            recipient_id=recipient_id,
            amount_minor=amount_minor,
            commission_type="affiliate",
            status=COMMISSION_PAID,
        )
        session.add(commission)
        await session.commit()
        return commission


def accept_transfer(status: str = "pending"):
    """Side effect for a mocked initiate_transfer that echoes the reference."""

    async def _accept(amount_minor: int, recipient_code: str, reason: str, reference: str) -> TransferHandle:
        return TransferHandle(transfer_code=f"TRF_{reference}", reference=reference, status=status)

    return _accept


@pytest.fixture
def gateway() -> AsyncMock:
    """Mocked payout gateway that accepts every transfer as pending."""
    mock_gateway = AsyncMock(spec=PayoutGatewayClient)
    mock_gateway.currency = "GHS"
    mock_gateway.circuit_breaker = CircuitBreaker()
    mock_gateway.create_transfer_recipient = AsyncMock(return_value="RCP_test")
    mock_gateway.initiate_transfer = AsyncMock(side_effect=accept_transfer())
    mock_gateway.initialize_transaction = AsyncMock(
        return_value={
            "authorization_url": "https://checkout.paystack.com/test",
            "access_code": "ac_test",
        }
    )
    return mock_gateway


def sign(body: bytes, secret: str = TEST_SECRET_KEY) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()
