from dataclasses import dataclass

import pytest

from common.config import FirewallConfig
from composition.firewall import AddressMatch, GeoMatch, HeaderMatch, assemble


# ------------------- Test Case Data Classes -------------------
@dataclass(frozen=True)
class FirewallCase:
    id: str
    firewall: FirewallConfig
    expected: tuple[tuple[str, int], ...]


FIREWALL_CASES = (
    FirewallCase(id="nothing_enabled", firewall=FirewallConfig(), expected=()),
    FirewallCase(
        id="every_kind",
        firewall=FirewallConfig(
            country_codes=("KP", "IR"),
            ip_addresses=("203.0.113.7/32",),
            http_headers=("x-blocked", "x-bot"),
        ),
        expected=(
            ("CountryRule", 1),
            ("IpAddressRule", 2),
            ("HttpHeaderRule0", 3),
            ("HttpHeaderRule1", 4),
        ),
    ),
    FirewallCase(
        id="countries_disabled",
        firewall=FirewallConfig(ip_addresses=("203.0.113.7/32",), http_headers=("x-blocked",)),
        expected=(("IpAddressRule", 1), ("HttpHeaderRule0", 2)),
    ),
    FirewallCase(
        id="headers_only",
        firewall=FirewallConfig(http_headers=("x-a", "x-b", "x-c")),
        expected=(("HttpHeaderRule0", 1), ("HttpHeaderRule1", 2), ("HttpHeaderRule2", 3)),
    ),
)


@pytest.mark.parametrize("case", FIREWALL_CASES, ids=lambda case: case.id)
def test_priorities_are_dense_over_enabled_kinds(case: FirewallCase):
    rules = assemble(case.firewall)
    assert tuple((rule.name, rule.priority) for rule in rules) == case.expected


def test_enabling_an_earlier_kind_renumbers_later_rules():
    without_countries = assemble(FirewallConfig(http_headers=("x-blocked",)))
    with_countries = assemble(FirewallConfig(country_codes=("KP",), http_headers=("x-blocked",)))

    assert without_countries[0].priority == 1
    assert with_countries[-1].name == "HttpHeaderRule0"
    assert with_countries[-1].priority == 2


def test_rules_carry_their_match_statements():
    country, address, header = assemble(
        FirewallConfig(
            country_codes=("KP",),
            ip_addresses=("203.0.113.7/32", "198.51.100.0/24"),
            http_headers=("x-blocked",),
        )
    )

    assert country.statement == GeoMatch(country_codes=("KP",))
    assert address.statement == AddressMatch(addresses=("203.0.113.7/32", "198.51.100.0/24"))
    assert header.statement == HeaderMatch(header="x-blocked")
    assert {rule.action for rule in (country, address, header)} == {"block"}
    assert header.metric_name == "HttpHeaderRule0"


def test_firewall_config_accepts_single_strings():
    firewall = FirewallConfig(country_codes="KP")
    assert firewall.country_codes == ("KP",)
