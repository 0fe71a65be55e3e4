"""Firewall rule assembly.

Rule kinds are visited in a fixed order and each enabled kind appends its
rules with ``priority = number of rules appended so far``. Priorities are
therefore dense over enabled kinds only: enabling a kind that sits earlier
in ``RULE_KINDS`` renumbers every rule after it on the next deploy.
"""
from typing import Callable, Union

from attrs import define, field

from common.config import FirewallConfig


@define(slots=True, frozen=True)
class GeoMatch:
    country_codes: tuple[str, ...]


@define(slots=True, frozen=True)
class AddressMatch:
    addresses: tuple[str, ...]
    ip_version: str = "IPV4"


@define(slots=True, frozen=True)
class HeaderMatch:
    header: str
    search_string: str = "true"
    positional_constraint: str = "EXACTLY"


Statement = Union[GeoMatch, AddressMatch, HeaderMatch]


@define(slots=True, frozen=True)
class FirewallRule:
    name: str
    priority: int
    statement: Statement
    action: str = field(default="block")

    @property
    def metric_name(self) -> str:
        return self.name


@define(slots=True, frozen=True)
class RuleKind:
    name: str
    build: Callable[[FirewallConfig], list[tuple[str, Statement]]]


def _country_rules(firewall: FirewallConfig) -> list[tuple[str, Statement]]:
    if not firewall.country_codes:
        return []
    return [("CountryRule", GeoMatch(country_codes=firewall.country_codes))]


def _address_rules(firewall: FirewallConfig) -> list[tuple[str, Statement]]:
    if not firewall.ip_addresses:
        return []
    return [("IpAddressRule", AddressMatch(addresses=firewall.ip_addresses))]


def _header_rules(firewall: FirewallConfig) -> list[tuple[str, Statement]]:
    return [
        (f"HttpHeaderRule{index}", HeaderMatch(header=header))
        for index, header in enumerate(firewall.http_headers)
    ]


RULE_KINDS: tuple[RuleKind, ...] = (
    RuleKind("country", _country_rules),
    RuleKind("address", _address_rules),
    RuleKind("header", _header_rules),
)


def assemble(
    firewall: FirewallConfig, kinds: tuple[RuleKind, ...] = RULE_KINDS
) -> tuple[FirewallRule, ...]:
    """Build the ordered block rule list for the enabled firewall predicates."""
    rules: list[FirewallRule] = []
    for kind in kinds:
        for name, statement in kind.build(firewall):
            rules.append(
                FirewallRule(name=name, priority=len(rules) + 1, statement=statement)
            )
    return tuple(rules)
