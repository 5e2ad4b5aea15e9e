"""
Cloud provider adapters.
"""

from .base import SecurityGroupProvider, security_group_name
from .aws import AwsSecurityGroups
from .azure import AzureSecurityGroups

__all__ = [
    "SecurityGroupProvider",
    "security_group_name",
    "AwsSecurityGroups",
    "AzureSecurityGroups",
]
