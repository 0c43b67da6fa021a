"""
Unit tests for the mobile-money routing table.
"""
import pytest

from settlement.integrations.mobile_money import (
    PREFIX_TABLE,
    RoutingError,
    normalize_msisdn,
    resolve_route,
)


@pytest.mark.unit
class TestRouting:
    """Test suite for phone number routing."""

    @pytest.mark.parametrize("prefix", ["024", "025", "053", "054", "055", "059"])
    def test_mtn_prefixes(self, prefix: str) -> None:
        route = resolve_route(f"{prefix}1234567")
        assert route.bank_code == "MTN"
        assert route.charge_provider == "mtn"

    @pytest.mark.parametrize("prefix", ["020", "050"])
    def test_telecel_prefixes(self, prefix: str) -> None:
        route = resolve_route(f"{prefix}1234567")
        assert route.bank_code == "VOD"
        assert route.charge_provider == "vod"

    @pytest.mark.parametrize("prefix", ["026", "027", "056", "057"])
    def test_airteltigo_prefixes(self, prefix: str) -> None:
        route = resolve_route(f"{prefix}1234567")
        assert route.bank_code == "ATL"
        assert route.charge_provider == "atl"

    def test_table_covers_all_providers_once(self) -> None:
        assert len(PREFIX_TABLE) == 12

    @pytest.mark.parametrize(
        "phone",
        ["+233241234567", "233241234567", "024 123 4567", "024-123-4567", " 0241234567 "],
    )
    def test_international_and_formatted_numbers_normalize(self, phone: str) -> None:
        assert normalize_msisdn(phone) == "0241234567"
        assert resolve_route(phone).msisdn == "0241234567"

    @pytest.mark.parametrize("phone", ["0231234567", "0301234567", "0991234567"])
    def test_unknown_prefix_rejected(self, phone: str) -> None:
        with pytest.raises(RoutingError):
            resolve_route(phone)

    @pytest.mark.parametrize("phone", ["", "12345", "024123456789", "02412345ab", "1241234567"])
    def test_malformed_numbers_rejected(self, phone: str) -> None:
        with pytest.raises(RoutingError):
            resolve_route(phone)

    def test_routing_error_is_a_value_error(self) -> None:
        with pytest.raises(ValueError):
            resolve_route("0001234567")
