"""
Commission split between seller, affiliate and platform.

Shares are computed on integer minor units. Each fraction is rounded
independently to the nearest minor unit (half-up). When residue assignment is
enabled the platform share absorbs the rounding difference so that the shares
always add up to the transaction amount.
"""
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from settlement.core.money import round_half_up
from settlement.database.models import (
    COMMISSION_ADMIN_AFFILIATE,
    COMMISSION_ADMIN_DIRECT,
    COMMISSION_AFFILIATE,
    COMMISSION_SELLER,
)


@dataclass(frozen=True)
class CommissionRates:
    """Split fractions for sales with and without a referring affiliate."""

    direct_admin: Decimal = Decimal("0.10")
    direct_seller: Decimal = Decimal("0.90")
    affiliate: Decimal = Decimal("0.08")
    affiliate_admin: Decimal = Decimal("0.02")
    affiliate_seller: Decimal = Decimal("0.90")

    @classmethod
    def from_settings(cls, settings) -> "CommissionRates":
        return cls(
            direct_admin=settings.direct_admin_rate,
            direct_seller=settings.direct_seller_rate,
            affiliate=settings.affiliate_rate,
            affiliate_admin=settings.affiliate_admin_rate,
            affiliate_seller=settings.affiliate_seller_rate,
        )


@dataclass(frozen=True)
class CommissionShare:
    """A single recipient's computed share, before it is persisted."""

    recipient_id: uuid.UUID
    commission_type: str
    amount_minor: int


def _share(amount_minor: int, rate: Decimal) -> int:
    return round_half_up(Decimal(amount_minor) * rate)


def compute_split(
    amount_minor: int,
    seller_id: uuid.UUID,
    admin_id: uuid.UUID,
    affiliate_id: Optional[uuid.UUID] = None,
    rates: CommissionRates = CommissionRates(),
    assign_residue_to_platform: bool = True,
) -> List[CommissionShare]:
    """
    Compute the commission shares for a transaction amount.

    Args:
        amount_minor: Transaction amount in minor units
        seller_id: Owning seller of the purchased product
        admin_id: Platform admin recipient
        affiliate_id: Referring affiliate, if any
        rates: Split fractions
        assign_residue_to_platform: Add the rounding residue to the admin share

    Returns:
        List[CommissionShare]: Two shares without an affiliate, three with one

    Raises:
        ValueError: If the amount is not positive
    """
    if amount_minor <= 0:
        raise ValueError("Transaction amount must be positive")

    if affiliate_id is not None:
        shares = [
            CommissionShare(affiliate_id, COMMISSION_AFFILIATE, _share(amount_minor, rates.affiliate)),
            CommissionShare(admin_id, COMMISSION_ADMIN_AFFILIATE, _share(amount_minor, rates.affiliate_admin)),
            CommissionShare(seller_id, COMMISSION_SELLER, _share(amount_minor, rates.affiliate_seller)),
        ]
        platform_index = 1
    else:
        shares = [
            CommissionShare(admin_id, COMMISSION_ADMIN_DIRECT, _share(amount_minor, rates.direct_admin)),
            CommissionShare(seller_id, COMMISSION_SELLER, _share(amount_minor, rates.direct_seller)),
        ]
        platform_index = 0

    residue = amount_minor - sum(share.amount_minor for share in shares)
    if residue and assign_residue_to_platform:
        platform = shares[platform_index]
        shares[platform_index] = CommissionShare(
            platform.recipient_id,
            platform.commission_type,
            platform.amount_minor + residue,
        )

    return shares
