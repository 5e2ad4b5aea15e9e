"""
AWS EC2 security groups and instances.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import boto3
from botocore.exceptions import ClientError, WaiterError

from ..errors import ProviderError
from ..rules.models import ALL_PORTS, Protocol, SecurityRule
from ..rules.required import (
    AWS_RULES,
    RDP_PORT,
    RDP_RULE_NAME,
    SSH_PORT,
    SSH_RULE_NAME,
    VPC_RULE_NAME,
    WINRM_PORT,
    WINRM_RULE_NAME,
)
from .base import SecurityGroupProvider

logger = logging.getLogger(__name__)

SECURITY_GROUP_DESCRIPTION = "security group for RDP and all traffic within VPC"

# EC2 rules carry no name; fall back to the port they open.
_PORT_RULE_NAMES = {
    RDP_PORT: RDP_RULE_NAME,
    WINRM_PORT: WINRM_RULE_NAME,
    SSH_PORT: SSH_RULE_NAME,
}
_KNOWN_RULE_NAMES = set(_PORT_RULE_NAMES.values()) | {VPC_RULE_NAME}


def _rule_name(permission: Dict[str, Any], protocol: Protocol) -> str:
    # One permission holds every range of a protocol and port, so the
    # descriptions may belong to unrelated ranges.
    descriptions = [r["Description"] for r in permission.get("IpRanges", []) if r.get("Description")]
    for description in descriptions:
        if description in _KNOWN_RULE_NAMES:
            return description
    if protocol is Protocol.ALL:
        return VPC_RULE_NAME
    from_port = permission.get("FromPort")
    if from_port == permission.get("ToPort") and from_port in _PORT_RULE_NAMES:
        return _PORT_RULE_NAMES[from_port]
    if descriptions:
        return descriptions[0]
    return f"tcp-{from_port}-{permission.get('ToPort')}"


def permission_to_rule(permission: Dict[str, Any]) -> Optional[SecurityRule]:
    """
    Translate an EC2 IpPermission into a SecurityRule.

    Args:
        permission: Entry of a group's IpPermissions

    Returns:
        SecurityRule, or None for protocols wni does not manage (udp, icmp, ...)
    """
    ip_protocol = str(permission.get("IpProtocol", ""))
    if ip_protocol == "-1":
        protocol = Protocol.ALL
        port_range = ALL_PORTS
    elif ip_protocol in ("tcp", "6"):
        protocol = Protocol.TCP
        from_port = permission.get("FromPort")
        to_port = permission.get("ToPort")
        port_range = str(from_port) if from_port == to_port else f"{from_port}-{to_port}"
    else:
        return None

    sources = tuple(r["CidrIp"] for r in permission.get("IpRanges", []) if r.get("CidrIp"))
    sources += tuple(r["CidrIpv6"] for r in permission.get("Ipv6Ranges", []) if r.get("CidrIpv6"))

    return SecurityRule(
        name=_rule_name(permission, protocol),
        protocol=protocol,
        source_addresses=sources,
        destination_port_range=port_range,
    )


def rule_to_permission(rule: SecurityRule, addresses: Sequence[str]) -> Dict[str, Any]:
    """
    Build the IpPermission authorizing addresses for a rule.

    Args:
        rule: Rule to authorize
        addresses: CIDRs to authorize on it

    Returns:
        IpPermission dictionary for authorize_security_group_ingress
    """
    ip_ranges = [{"CidrIp": a, "Description": rule.name} for a in addresses if ":" not in a]
    ipv6_ranges = [{"CidrIpv6": a, "Description": rule.name} for a in addresses if ":" in a]

    permission: Dict[str, Any] = {"IpRanges": ip_ranges}
    if ipv6_ranges:
        permission["Ipv6Ranges"] = ipv6_ranges

    if rule.protocol is Protocol.ALL:
        # -1 is to allow all ports
        permission["IpProtocol"] = "-1"
    else:
        from_port, to_port = rule.port_bounds() or (0, 65535)
        permission["IpProtocol"] = "tcp"
        permission["FromPort"] = from_port
        permission["ToPort"] = to_port
    return permission


class AwsSecurityGroups(SecurityGroupProvider):
    """EC2 implementation of the provider interface."""

    name = "aws"
    required_rules = AWS_RULES

    def __init__(self, ec2_client, vpc_id: Optional[str] = None):
        self.ec2 = ec2_client
        self.vpc_id = vpc_id

    @classmethod
    def from_session(cls, region: str, profile: Optional[str] = None,
                     vpc_id: Optional[str] = None) -> "AwsSecurityGroups":
        """
        Build the provider from a boto3 session.

        Args:
            region: AWS region of the cluster
            profile: Named profile in the shared credentials file
            vpc_id: VPC of the cluster, needed to create groups
        """
        session = boto3.session.Session(profile_name=profile, region_name=region)
        return cls(session.client("ec2"), vpc_id=vpc_id)

    def find_security_group(self, name: str) -> Optional[str]:
        filters = [{"Name": "group-name", "Values": [name]}]
        if self.vpc_id:
            filters.append({"Name": "vpc-id", "Values": [self.vpc_id]})
        try:
            response = self.ec2.describe_security_groups(Filters=filters)
        except ClientError as e:
            raise ProviderError(f"failed to look up security group {name}: {e}") from e

        groups = response.get("SecurityGroups", [])
        if not groups:
            return None
        return groups[0]["GroupId"]

    def create_security_group(self, name: str) -> str:
        if not self.vpc_id:
            raise ProviderError("a VPC ID is required to create a security group")
        try:
            response = self.ec2.create_security_group(
                GroupName=name,
                Description=SECURITY_GROUP_DESCRIPTION,
                VpcId=self.vpc_id,
            )
        except ClientError as e:
            raise ProviderError(f"failed to create security group {name}: {e}") from e

        group_id = response["GroupId"]
        logger.info(f"Created security group {name} ({group_id})")
        return group_id

    def list_rules(self, group_id: str) -> List[SecurityRule]:
        try:
            response = self.ec2.describe_security_groups(GroupIds=[group_id])
        except ClientError as e:
            raise ProviderError(f"failed to describe security group {group_id}: {e}") from e

        rules = []
        for group in response.get("SecurityGroups", []):
            for permission in group.get("IpPermissions", []):
                rule = permission_to_rule(permission)
                if rule is None:
                    logger.debug(f"Skipping {permission.get('IpProtocol')} rule on {group_id}")
                    continue
                rules.append(rule)
        return rules

    def apply_rules(self, group_id: str, rules: Sequence[SecurityRule],
                    current_rules: Sequence[SecurityRule]) -> None:
        permissions = []
        for rule in rules:
            observed = self._observed(rule, current_rules)
            addresses = [a for a in rule.source_addresses if observed is None or not observed.allows(a)]
            if addresses:
                permissions.append(rule_to_permission(rule, addresses))

        if not permissions:
            return

        try:
            self.ec2.authorize_security_group_ingress(GroupId=group_id, IpPermissions=permissions)
        except ClientError as e:
            raise ProviderError(f"failed to authorize ingress on {group_id}: {e}") from e
        logger.info(f"Authorized {len(permissions)} ingress rules on {group_id}")

    @staticmethod
    def _observed(rule: SecurityRule, current_rules: Sequence[SecurityRule]) -> Optional[SecurityRule]:
        # EC2 ingress is additive per protocol and port range, so only CIDRs
        # missing from the same protocol and ports need authorizing.
        for current in current_rules:
            if current.protocol is not rule.protocol:
                continue
            if rule.protocol is Protocol.ALL or current.port_bounds() == rule.port_bounds():
                return current
        return None

    def is_security_group_in_use(self, group_id: str) -> bool:
        """
        Check if any instance still uses a security group.

        The instances holding on to the group are logged.
        """
        try:
            response = self.ec2.describe_instances(
                Filters=[{"Name": "instance.group-id", "Values": [group_id]}]
            )
        except ClientError as e:
            raise ProviderError(f"failed to list instances of {group_id}: {e}") from e

        reserving = [
            instance["InstanceId"]
            for reservation in response.get("Reservations", [])
            for instance in reservation.get("Instances", [])
        ]
        if reserving:
            logger.info(f"Security Group {group_id} is in use by: {', '.join(reserving)}")
            return True
        return False

    def delete_security_group(self, group_id: str) -> None:
        if self.is_security_group_in_use(group_id):
            raise ProviderError(f"security group {group_id} is in use")
        try:
            self.ec2.delete_security_group(GroupId=group_id)
        except ClientError as e:
            raise ProviderError(f"failed to delete security group {group_id}: {e}") from e
        logger.info(f"Deleted security group {group_id}")

    def terminate_instances(self, instance_ids: Sequence[str]) -> List[str]:
        requested = []
        for instance_id in instance_ids:
            try:
                self.ec2.terminate_instances(InstanceIds=[instance_id])
                requested.append(instance_id)
            except ClientError as e:
                logger.error(f"Failed to terminate instance {instance_id}: {e}")

        terminated = []
        waiter = self.ec2.get_waiter("instance_terminated")
        for instance_id in requested:
            try:
                waiter.wait(InstanceIds=[instance_id])
                terminated.append(instance_id)
            except WaiterError as e:
                logger.error(f"Timeout waiting for instance {instance_id} to terminate: {e}")
        return terminated
