"""
Mobile-money routing table.

A single prefix -> provider table used for checkout charges, commission
payouts and affiliate withdrawals. Numbers are normalized to the local
ten-digit form (0XXXXXXXXX) before lookup.
"""
import re
from dataclasses import dataclass
from typing import Dict

ROUTING_TABLE_VERSION = "2024-01"


class RoutingError(ValueError):
    """Raised when a phone number cannot be mapped to a mobile-money provider."""

    pass


@dataclass(frozen=True)
class MobileMoneyProvider:
    name: str
    bank_code: str
    charge_provider: str


MTN = MobileMoneyProvider("MTN Mobile Money", "MTN", "mtn")
TELECEL = MobileMoneyProvider("Telecel Cash", "VOD", "vod")
AIRTELTIGO = MobileMoneyProvider("AirtelTigo Money", "ATL", "atl")

PREFIX_TABLE: Dict[str, MobileMoneyProvider] = {
    "024": MTN,
    "025": MTN,
    "053": MTN,
    "054": MTN,
    "055": MTN,
    "059": MTN,
    "020": TELECEL,
    "050": TELECEL,
    "026": AIRTELTIGO,
    "027": AIRTELTIGO,
    "056": AIRTELTIGO,
    "057": AIRTELTIGO,
}

_SEPARATORS = re.compile(r"[\s\-().]")
_COUNTRY_CODE = "233"


@dataclass(frozen=True)
class MobileMoneyRoute:
    """A resolved payout/charge destination."""

    provider: str
    bank_code: str
    charge_provider: str
    msisdn: str


def normalize_msisdn(phone: str) -> str:
    """
    Normalize a Ghanaian mobile number to 0XXXXXXXXX.

    Accepts +233, 233 and 0 prefixed forms with spaces or dashes.

    Raises:
        RoutingError: If the result is not a ten-digit local number
    """
    if not phone:
        raise RoutingError("Phone number is required")

    digits = _SEPARATORS.sub("", phone.strip())
    if digits.startswith("+"):
        digits = digits[1:]
    if digits.startswith(_COUNTRY_CODE) and len(digits) == 12:
        digits = "0" + digits[3:]

    if not digits.isdigit() or len(digits) != 10 or not digits.startswith("0"):
        raise RoutingError(f"Unsupported phone number format: {phone!r}")
    return digits


def resolve_route(phone: str) -> MobileMoneyRoute:
    """
    Resolve a phone number to its mobile-money route.

    Raises:
        RoutingError: If the number is malformed or its prefix is not served
    """
    msisdn = normalize_msisdn(phone)
    provider = PREFIX_TABLE.get(msisdn[:3])
    if provider is None:
        raise RoutingError(f"Unsupported mobile money prefix: {msisdn[:3]}")

    return MobileMoneyRoute(
        provider=provider.name,
        bank_code=provider.bank_code,
        charge_provider=provider.charge_provider,
        msisdn=msisdn,
    )
