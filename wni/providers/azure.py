"""
Azure network security groups and virtual machines.

The NSG of the cluster's worker subnet is shared with the Linux workers, so
wni only ever adds the required rules to it and removes them on teardown;
the NSG itself is never deleted.
"""

import logging
from typing import List, Optional, Sequence

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError
from azure.identity import DefaultAzureCredential
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.network.models import NetworkSecurityGroup
from azure.mgmt.network.models import SecurityRule as AzureSecurityRule

from ..errors import ProviderError
from ..rules.models import Protocol, SecurityRule
from ..rules.required import AZURE_RULES
from .base import SecurityGroupProvider

logger = logging.getLogger(__name__)

# the '*' is used to match all the ports of the source IP address
SOURCE_PORT_RANGE = "*"
# the '*' is used to match all the destination addresses
DESTINATION_ADDRESS_PREFIX = "*"

_PROTOCOLS = {
    "*": Protocol.ALL,
    "tcp": Protocol.TCP,
}


def azure_rule_to_rule(azure_rule) -> Optional[SecurityRule]:
    """
    Translate an Azure security rule into a SecurityRule.

    Azure stores a single source in source_address_prefix and several in
    source_address_prefixes; both are folded into source_addresses.

    Returns:
        SecurityRule, or None for outbound, deny or non TCP rules
    """
    if (azure_rule.direction or "Inbound").lower() != "inbound":
        return None
    if (azure_rule.access or "Allow").lower() != "allow":
        return None
    protocol = _PROTOCOLS.get((azure_rule.protocol or "").lower())
    if protocol is None:
        return None

    sources = list(azure_rule.source_address_prefixes or [])
    if azure_rule.source_address_prefix and azure_rule.source_address_prefix not in sources:
        sources.insert(0, azure_rule.source_address_prefix)

    port_range = azure_rule.destination_port_range
    if not port_range and azure_rule.destination_port_ranges:
        port_range = ",".join(azure_rule.destination_port_ranges)

    return SecurityRule(
        name=azure_rule.name,
        protocol=protocol,
        source_addresses=tuple(sources),
        destination_port_range=port_range or "*",
        priority=azure_rule.priority,
    )


def rule_to_azure_rule(rule: SecurityRule) -> AzureSecurityRule:
    """Build the Azure model for a rule, always using the plural source field."""
    return AzureSecurityRule(
        name=rule.name,
        protocol="*" if rule.protocol is Protocol.ALL else "Tcp",
        source_port_range=SOURCE_PORT_RANGE,
        source_address_prefixes=list(rule.source_addresses),
        destination_address_prefix=DESTINATION_ADDRESS_PREFIX,
        destination_port_range=rule.destination_port_range,
        access="Allow",
        direction="Inbound",
        priority=rule.priority,
    )


class AzureSecurityGroups(SecurityGroupProvider):
    """Azure implementation of the provider interface; group IDs are NSG names."""

    name = "azure"
    required_rules = AZURE_RULES
    tracks_existing_groups = True

    def __init__(self, network_client, compute_client, resource_group: str,
                 location: Optional[str] = None):
        self.network = network_client
        self.compute = compute_client
        self.resource_group = resource_group
        self.location = location

    def security_group_name(self, infra_id: str) -> str:
        # the OpenShift installer creates one NSG for all cluster nodes
        return f"{infra_id}-nsg"

    @classmethod
    def from_credentials(cls, subscription_id: str, resource_group: str,
                         location: Optional[str] = None) -> "AzureSecurityGroups":
        """
        Build the provider with DefaultAzureCredential.

        Args:
            subscription_id: Azure subscription of the cluster
            resource_group: Resource group of the cluster
            location: Region used when creating an NSG
        """
        credential = DefaultAzureCredential()
        return cls(
            NetworkManagementClient(credential, subscription_id),
            ComputeManagementClient(credential, subscription_id),
            resource_group,
            location,
        )

    def find_security_group(self, name: str) -> Optional[str]:
        try:
            nsg = self.network.network_security_groups.get(self.resource_group, name)
        except ResourceNotFoundError:
            return None
        except HttpResponseError as e:
            raise ProviderError(f"cannot obtain the security group {name}: {e}") from e
        return nsg.name

    def create_security_group(self, name: str) -> str:
        if not self.location:
            raise ProviderError("a location is required to create a network security group")
        try:
            poller = self.network.network_security_groups.begin_create_or_update(
                self.resource_group, name, NetworkSecurityGroup(location=self.location)
            )
            nsg = poller.result()
        except HttpResponseError as e:
            raise ProviderError(f"failed to create security group {name}: {e}") from e
        logger.info(f"Created network security group {nsg.name}")
        return nsg.name

    def list_rules(self, group_id: str) -> List[SecurityRule]:
        try:
            nsg = self.network.network_security_groups.get(self.resource_group, group_id)
        except HttpResponseError as e:
            raise ProviderError(f"cannot obtain the security group {group_id}: {e}") from e

        rules = []
        for azure_rule in nsg.security_rules or []:
            rule = azure_rule_to_rule(azure_rule)
            if rule is not None:
                rules.append(rule)
        return rules

    def apply_rules(self, group_id: str, rules: Sequence[SecurityRule],
                    current_rules: Sequence[SecurityRule]) -> None:
        # create_or_update replaces the whole rule, and the reconciled rule
        # already carries every source of the observed one.
        for rule in rules:
            try:
                poller = self.network.security_rules.begin_create_or_update(
                    self.resource_group, group_id, rule.name, rule_to_azure_rule(rule)
                )
                poller.result()
            except HttpResponseError as e:
                raise ProviderError(f"unable to create or update {group_id}/{rule.name}: {e}") from e
            logger.info(f"Created or updated rule {group_id}/{rule.name}")

    def delete_security_group(self, group_id: str) -> None:
        for required in self.required_rules:
            try:
                self.network.security_rules.begin_delete(
                    self.resource_group, group_id, required.name
                ).result()
            except ResourceNotFoundError:
                logger.debug(f"Rule {group_id}/{required.name} was already gone")
            except HttpResponseError as e:
                raise ProviderError(f"unable to delete {group_id}/{required.name}: {e}") from e
        logger.info(f"Removed the Windows worker rules from {group_id}")

    def terminate_instances(self, instance_ids: Sequence[str]) -> List[str]:
        terminated = []
        for vm_name in instance_ids:
            try:
                self.compute.virtual_machines.begin_delete(self.resource_group, vm_name).result()
                terminated.append(vm_name)
            except HttpResponseError as e:
                logger.error(f"Failed to delete virtual machine {vm_name}: {e}")
        return terminated
