"""
Ties the rule reconciler and the resource tracker to a cloud provider.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .errors import DuplicateEntryError, ProviderError, TrackerError
from .myip import get_my_ip
from .providers.base import SecurityGroupProvider
from .resource.tracker import (
    Credentials,
    append_info,
    delete_credential_data,
    read_info,
    remove_info,
    store_credential_data,
)
from .rules.reconcile import reconcile

logger = logging.getLogger(__name__)


@dataclass
class TeardownResult:
    """Outcome of Provisioner.teardown()."""
    terminated: List[str] = field(default_factory=list)
    deleted_groups: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class Provisioner:
    """
    One installer run against one cloud provider and one tracker file.

    Args:
        provider: Cloud adapter
        tracker_path: Path of windows-node-installer.json
        ip_lookup: Returns the operator's external IP
    """

    def __init__(self, provider: SecurityGroupProvider, tracker_path: str,
                 ip_lookup: Callable[[], str] = get_my_ip):
        self.provider = provider
        self.tracker_path = tracker_path
        self.ip_lookup = ip_lookup

    @property
    def tracker_dir(self) -> str:
        return os.path.dirname(self.tracker_path) or "."

    def ensure_security_group(self, infra_id: str, network_cidr: str) -> str:
        """
        Find or create the Windows worker security group and make it compliant.

        A newly created group is recorded in the tracker only once its rules
        were applied. Providers that add rules to a group they do not own
        record it on every run, and a group already tracked is not an error.
        A tracking failure is logged and does not fail the call.

        Args:
            infra_id: Infrastructure ID of the cluster
            network_cidr: CIDR of the cluster VPC / VNet

        Returns:
            str: Security group ID

        Raises:
            IPLookupError: If the operator's address cannot be determined
            ProviderError: If a cloud call fails
        """
        requester_address = self.ip_lookup()

        name = self.provider.security_group_name(infra_id)
        group_id = self.provider.find_security_group(name)
        created = group_id is None
        if created:
            group_id = self.provider.create_security_group(name)

        current_rules = self.provider.list_rules(group_id)
        changes = reconcile(current_rules, self.provider.required_rules, requester_address, network_cidr)
        if changes:
            logger.info(f"Applying {len(changes)} rule changes to {group_id}: "
                        f"{', '.join(rule.name for rule in changes)}")
            self.provider.apply_rules(group_id, changes, current_rules)
        else:
            logger.info(f"Security group {group_id} already has the required rules")

        if created or self.provider.tracks_existing_groups:
            try:
                append_info([], [group_id], self.tracker_path)
            except DuplicateEntryError:
                logger.debug(f"Security group {group_id} is already tracked")
            except TrackerError as e:
                logger.warning(f"Failed to record security group ID to file at '{self.tracker_path}', "
                               f"security group {group_id} will not be deleted: {e}")
        return group_id

    def track_instance(self, instance_id: str, credentials: Optional[Credentials] = None) -> bool:
        """
        Record a created instance.

        Args:
            instance_id: ID of the created instance
            credentials: Access information stored next to the tracker file

        Returns:
            bool: False if the instance could not be tracked
        """
        try:
            append_info([instance_id], [], self.tracker_path)
        except TrackerError as e:
            logger.warning(f"Failed to record instance ID to file at '{self.tracker_path}', "
                           f"instance {instance_id} will not be able to be deleted: {e}")
            return False

        if credentials is not None:
            path = os.path.join(self.tracker_dir, instance_id)
            try:
                store_credential_data(path, credentials.to_text())
            except TrackerError as e:
                logger.warning(f"Unable to write credentials of {instance_id}: {e}")
        return True

    def teardown(self) -> TeardownResult:
        """
        Delete everything listed in the tracker file.

        Instances go first so that their security groups are free to delete.
        Failures are logged and the remaining resources are still processed;
        only what was actually deleted is removed from the tracker.

        Raises:
            NotFoundError: If there is no tracker file
        """
        logger.info(f"Processing file '{self.tracker_path}'")
        info = read_info(self.tracker_path)
        result = TeardownResult()

        if info.instance_ids:
            result.terminated = self.provider.terminate_instances(info.instance_ids)
        result.failed.extend(i for i in info.instance_ids if i not in result.terminated)

        for group_id in info.security_group_ids:
            try:
                self.provider.delete_security_group(group_id)
                result.deleted_groups.append(group_id)
            except ProviderError as e:
                logger.error(f"Failed to delete security group {group_id}: {e}")
                result.failed.append(group_id)

        try:
            remove_info(result.terminated, result.deleted_groups, self.tracker_path)
        except TrackerError as e:
            logger.warning(f"{self.tracker_path} file was not updated: {e}")

        for instance_id in result.terminated:
            path = os.path.join(self.tracker_dir, instance_id)
            if os.path.exists(path):
                try:
                    delete_credential_data(path)
                except TrackerError as e:
                    logger.warning(f"Unable to remove file {path}: {e}")

        return result
