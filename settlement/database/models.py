"""SQLAlchemy database models for the settlement ledger."""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

SELLER_PRODUCT_LIMIT = 30

PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"

COMMISSION_PENDING = "pending"
COMMISSION_SUBMITTED = "submitted"
COMMISSION_PAID = "paid"
COMMISSION_FAILED = "failed"

COMMISSION_SELLER = "seller"
COMMISSION_AFFILIATE = "affiliate"
COMMISSION_ADMIN_DIRECT = "admin_direct"
COMMISSION_ADMIN_AFFILIATE = "admin_affiliate"

WITHDRAWAL_PENDING = "pending"
WITHDRAWAL_COMPLETED = "completed"

ROLE_ADMIN = "admin"
ROLE_SELLER = "seller"
ROLE_AFFILIATE = "affiliate"
ROLE_CUSTOMER = "customer"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class User(Base):
    """
    Marketplace user as mirrored from the identity provider.

    Only the payout identity (name + phone) and the role are read here.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    referral_code: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "role IN ('admin', 'seller', 'affiliate', 'customer')",
            name="valid_role",
        ),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, role={self.role})>"


class Seller(Base):
    """Seller profile. product_count is maintained by the catalog service."""

    __tablename__ = "sellers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), primary_key=True)
    business_name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint(
            f"product_count >= 0 AND product_count <= {SELLER_PRODUCT_LIMIT}",
            name="seller_product_limit",
        ),
    )


class Product(Base):
    """Catalog product; read here to find the owning seller and the price."""

    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    seller_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (CheckConstraint("price_minor > 0", name="positive_price"),)


class Transaction(Base):
    """
    Customer purchase of a single product.

    Created pending at checkout and moved to completed exactly once by the
    settlement engine. payment_reference is assigned at creation and never changes.
    """

    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("products.id"), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[str] = mapped_column(String(32), nullable=False)
    shipping_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PAYMENT_PENDING, index=True
    )
    payment_reference: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    affiliate_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, index=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("amount_minor > 0", name="positive_amount"),
        CheckConstraint(
            "payment_status IN ('pending', 'completed')",
            name="valid_payment_status",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction(id={self.id}, reference={self.payment_reference}, "
            f"amount={self.amount_minor}, status={self.payment_status})>"
        )


class Commission(Base):
    """
    One recipient's share of a completed transaction.

    Each row moves independently: pending -> submitted -> paid | failed.
    The (transaction_id, commission_type) unique constraint keeps a second
    batch for the same transaction from being inserted.
    """

    __tablename__ = "commissions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=False, index=True
    )
    recipient_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    commission_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=COMMISSION_PENDING)
    transfer_reference: Mapped[Optional[str]] = mapped_column(String(100), unique=True, nullable=True)
    transfer_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payout_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        UniqueConstraint("transaction_id", "commission_type", name="one_commission_per_type"),
        CheckConstraint("amount_minor >= 0", name="non_negative_commission"),
        CheckConstraint(
            "commission_type IN ('seller', 'affiliate', 'admin_direct', 'admin_affiliate')",
            name="valid_commission_type",
        ),
        CheckConstraint(
            "status IN ('pending', 'submitted', 'paid', 'failed')",
            name="valid_commission_status",
        ),
        Index("idx_commissions_transaction_status", "transaction_id", "status"),
        Index("idx_commissions_recipient_status", "recipient_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Commission(id={self.id}, type={self.commission_type}, "
            f"amount={self.amount_minor}, status={self.status})>"
        )


class Withdrawal(Base):
    """Affiliate request to cash out paid commissions."""

    __tablename__ = "withdrawals"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    affiliate_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=WITHDRAWAL_PENDING)
    transfer_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("amount_minor > 0", name="positive_withdrawal"),
        CheckConstraint(
            "status IN ('pending', 'completed')",
            name="valid_withdrawal_status",
        ),
        Index("idx_withdrawals_affiliate_status", "affiliate_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Withdrawal(id={self.id}, affiliate_id={self.affiliate_id}, "
            f"amount={self.amount_minor}, status={self.status})>"
        )
