"""
Provider interface used by the provisioner.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

from ..rules.models import RequiredRule, SecurityRule


def security_group_name(infra_id: str) -> str:
    """Name of the Windows worker security group of a cluster."""
    return "-".join([infra_id, "windows", "worker", "sg"])


class SecurityGroupProvider(ABC):
    """Cloud specific operations on security groups and instances."""

    name: str = ""
    required_rules: Tuple[RequiredRule, ...] = ()
    # Record groups found rather than created, so teardown removes the rules added to them.
    tracks_existing_groups: bool = False

    def security_group_name(self, infra_id: str) -> str:
        """Name of the group holding the Windows worker rules."""
        return security_group_name(infra_id)

    @abstractmethod
    def find_security_group(self, name: str) -> Optional[str]:
        """
        Look up a security group by name.

        Returns:
            Security group ID, or None if no such group exists
        """
        pass

    @abstractmethod
    def create_security_group(self, name: str) -> str:
        """Create a security group and return its ID."""
        pass

    @abstractmethod
    def list_rules(self, group_id: str) -> List[SecurityRule]:
        """Return the inbound rules of a group translated to SecurityRule."""
        pass

    @abstractmethod
    def apply_rules(self, group_id: str, rules: Sequence[SecurityRule],
                    current_rules: Sequence[SecurityRule]) -> None:
        """
        Create or update rules on a group.

        Args:
            group_id: Security group ID
            rules: Output of reconcile()
            current_rules: Rules observed before reconciling
        """
        pass

    @abstractmethod
    def delete_security_group(self, group_id: str) -> None:
        """Delete a group created by the installer."""
        pass

    @abstractmethod
    def terminate_instances(self, instance_ids: Sequence[str]) -> List[str]:
        """
        Terminate instances and wait for them to go away.

        Returns:
            IDs of the instances that were terminated
        """
        pass
