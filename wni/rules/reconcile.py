"""
Security group rule reconciliation.

Computes which inbound rules have to be created or updated so that a
security group satisfies the required-access policy. The computation is
pure: fetching the observed rules and applying the result is the caller's
job.
"""

from typing import Any, Dict, List, Optional, Sequence

from .models import Protocol, RequiredRule, Scope, SecurityRule


def reconcile(
    current_rules: Optional[Sequence[SecurityRule]],
    required_rules: Sequence[RequiredRule],
    requester_address: str,
    network_cidr: str,
) -> List[SecurityRule]:
    """
    Compute the rules that must be created or updated.

    Rules are only ever added to or extended. An address already authorized
    on a rule is kept even when it is not the requester's, since another
    operator may have added it.

    Args:
        current_rules: Rules observed on the security group
        required_rules: Rules the group must satisfy
        requester_address: Operator's external IP
        network_cidr: CIDR of the cluster VPC / VNet

    Returns:
        Rules to create or update; empty when the group already complies
    """
    current_rules = list(current_rules or [])
    changes: List[SecurityRule] = []

    for required in required_rules:
        address = required.required_source_address(requester_address, network_cidr)

        if required.scope is Scope.NETWORK and _find_network_rule(current_rules, address):
            continue

        existing = _find_by_name(current_rules, required.name)
        if existing is None:
            changes.append(required.new_rule(address))
        elif not required.is_satisfied_by(existing, address):
            changes.append(_updated_rule(existing, required, address))

    return changes


def _find_network_rule(rules: List[SecurityRule], cidr: str) -> Optional[SecurityRule]:
    # Intra-network reachability does not depend on the rule's name.
    for rule in rules:
        if rule.protocol is Protocol.ALL and rule.allows(cidr):
            return rule
    return None


def _find_by_name(rules: List[SecurityRule], name: str) -> Optional[SecurityRule]:
    for rule in rules:
        if rule.name == name:
            return rule
    return None


def _updated_rule(existing: SecurityRule, required: RequiredRule, address: str) -> SecurityRule:
    # Priority of an existing rule is never changed.
    return SecurityRule(
        name=existing.name,
        protocol=required.protocol,
        source_addresses=existing.with_source(address).source_addresses,
        destination_port_range=required.destination_port_range,
        priority=existing.priority if existing.priority is not None else required.priority,
    )


def plan_summary(rules: Sequence[SecurityRule]) -> List[Dict[str, Any]]:
    """
    Render reconciliation output as plain dictionaries.

    Args:
        rules: Output of reconcile()

    Returns:
        One dictionary per rule, suitable for JSON output
    """
    return [
        {
            "name": rule.name,
            "protocol": rule.protocol.value,
            "source_addresses": list(rule.source_addresses),
            "destination_port_range": rule.destination_port_range,
            "priority": rule.priority,
        }
        for rule in rules
    ]
