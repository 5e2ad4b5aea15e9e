"""
Data models for inbound security group rules.
"""

import ipaddress
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

ALL_PORTS = "*"


class Protocol(Enum):
    """Protocol of an inbound rule."""
    TCP = "tcp"
    ALL = "all"


class Scope(Enum):
    """Where the source address of a required rule comes from."""
    OPERATOR = "operator"  # the operator's current external address
    NETWORK = "network"    # the cluster VPC / VNet CIDR


def normalize_address(address: str) -> str:
    """
    Return the canonical CIDR form of an address.

    A bare host address gets its full prefix length ("1.2.3.4" becomes
    "1.2.3.4/32"). Tokens that are not IP networks, such as Azure service
    tags ("*", "Internet", "VirtualNetwork"), are returned unchanged.

    Args:
        address: Address or CIDR string

    Returns:
        Normalized address
    """
    address = address.strip()
    try:
        return str(ipaddress.ip_network(address, strict=False))
    except ValueError:
        return address


@dataclass(frozen=True)
class SecurityRule:
    """An inbound rule as observed on, or to be applied to, a security group."""
    name: str
    protocol: Protocol
    source_addresses: Tuple[str, ...]
    destination_port_range: str
    priority: Optional[int] = None

    def allows(self, address: str) -> bool:
        """Check if the rule already authorizes an address."""
        wanted = normalize_address(address)
        return any(normalize_address(source) == wanted for source in self.source_addresses)

    def port_bounds(self) -> Optional[Tuple[int, int]]:
        """
        Parse the destination port range.

        Returns:
            (from_port, to_port), or None when the rule covers all ports
        """
        port_range = self.destination_port_range.strip()
        if port_range in ("", ALL_PORTS):
            return None
        if "-" in port_range:
            low, high = port_range.split("-", 1)
            return int(low), int(high)
        return int(port_range), int(port_range)

    def with_source(self, address: str) -> "SecurityRule":
        """Return a copy of the rule with an address appended to its sources."""
        if self.allows(address):
            return self
        return replace(self, source_addresses=self.source_addresses + (address,))


@dataclass(frozen=True)
class RequiredRule:
    """An inbound rule that must exist on the Windows worker security group."""
    name: str
    protocol: Protocol
    destination_port_range: str
    priority: int
    scope: Scope = Scope.OPERATOR
    source_address: Optional[str] = None  # fixed source, overrides the scope

    def required_source_address(self, requester_address: str, network_cidr: str) -> str:
        """
        Resolve the source address this rule must authorize.

        Args:
            requester_address: Operator's external IP (bare or /32)
            network_cidr: CIDR of the cluster network

        Returns:
            Normalized source address
        """
        if self.source_address:
            return normalize_address(self.source_address)
        if self.scope is Scope.NETWORK:
            return normalize_address(network_cidr)
        return normalize_address(requester_address)

    def is_satisfied_by(self, rule: SecurityRule, address: str) -> bool:
        """Check name, protocol, ports and source address of an observed rule."""
        return (
            rule.name == self.name
            and rule.protocol is self.protocol
            and _same_ports(rule.destination_port_range, self.destination_port_range)
            and rule.allows(address)
        )

    def new_rule(self, address: str) -> SecurityRule:
        """Build a brand-new rule from the required fields."""
        return SecurityRule(
            name=self.name,
            protocol=self.protocol,
            source_addresses=(address,),
            destination_port_range=self.destination_port_range,
            priority=self.priority,
        )


def _same_ports(observed: str, required: str) -> bool:
    # "1-65535" and "*" both mean every port
    def canonical(port_range: str) -> str:
        port_range = port_range.strip()
        if port_range in ("", ALL_PORTS, "0-65535", "1-65535"):
            return ALL_PORTS
        if "-" in port_range:
            low, high = port_range.split("-", 1)
            if low.strip() == high.strip():
                return low.strip()
        return port_range

    return canonical(observed) == canonical(required)
