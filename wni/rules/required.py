"""
The fixed sets of inbound rules a Windows worker security group must carry.
"""

from typing import Tuple

from .models import ALL_PORTS, Protocol, RequiredRule, Scope

WINRM_PORT = 5986
RDP_PORT = 3389
SSH_PORT = 22

WINRM_RULE_NAME = "WinRM"
RDP_RULE_NAME = "RDP"
SSH_RULE_NAME = "SSH"
VNET_RULE_NAME = "vnet_traffic"
VPC_RULE_NAME = "vpc_traffic"

# WinRM over HTTPS, used to bootstrap the node
WINRM_RULE = RequiredRule(WINRM_RULE_NAME, Protocol.TCP, str(WINRM_PORT), 600)
RDP_RULE = RequiredRule(RDP_RULE_NAME, Protocol.TCP, str(RDP_PORT), 601)
SSH_RULE = RequiredRule(SSH_RULE_NAME, Protocol.TCP, str(SSH_PORT), 603)

VNET_RULE = RequiredRule(VNET_RULE_NAME, Protocol.ALL, "1-65535", 602, scope=Scope.NETWORK)
VPC_RULE = RequiredRule(VPC_RULE_NAME, Protocol.ALL, ALL_PORTS, 602, scope=Scope.NETWORK)

AZURE_RULES: Tuple[RequiredRule, ...] = (WINRM_RULE, RDP_RULE, VNET_RULE, SSH_RULE)
AWS_RULES: Tuple[RequiredRule, ...] = (WINRM_RULE, RDP_RULE, VPC_RULE, SSH_RULE)


def rules_for(provider: str) -> Tuple[RequiredRule, ...]:
    """
    Get the required rules of a cloud provider.

    Args:
        provider: "aws" or "azure"

    Returns:
        Tuple of required rules

    Raises:
        ValueError: If the provider is not supported
    """
    rules = {"aws": AWS_RULES, "azure": AZURE_RULES}.get(provider.lower())
    if rules is None:
        raise ValueError(f"the '{provider}' cloud provider is not supported")
    return rules
