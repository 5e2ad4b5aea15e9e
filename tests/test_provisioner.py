"""
Tests for the provisioner workflow with an in-memory provider.
"""

import logging
import os

import pytest
from types import SimpleNamespace
from unittest.mock import Mock
from wni.errors import IPLookupError, NotFoundError, ProviderError
from wni.provisioner import Provisioner
from wni.providers.aws import AwsSecurityGroups
from wni.providers.azure import AzureSecurityGroups
from wni.providers.base import SecurityGroupProvider
from wni.resource.tracker import Credentials, TrackedResources, append_info, make_file_path, read_info
from wni.rules.required import AWS_RULES

MY_IP = "203.0.113.7"
VPC_CIDR = "10.0.0.0/16"


class FakeProvider(SecurityGroupProvider):
    """Keeps groups and rules in dictionaries."""

    name = "fake"
    required_rules = AWS_RULES

    def __init__(self, groups=None):
        self.groups = groups or {}
        self.calls = []
        self.undeletable = set()
        self.unterminatable = set()

    def find_security_group(self, name):
        self.calls.append(("find", name))
        for group_id, group in self.groups.items():
            if group["name"] == name:
                return group_id
        return None

    def create_security_group(self, name):
        self.calls.append(("create", name))
        group_id = f"sg-{len(self.groups) + 1}"
        self.groups[group_id] = {"name": name, "rules": {}}
        return group_id

    def list_rules(self, group_id):
        return list(self.groups[group_id]["rules"].values())

    def apply_rules(self, group_id, rules, current_rules):
        self.calls.append(("apply", group_id, [rule.name for rule in rules]))
        for rule in rules:
            self.groups[group_id]["rules"][rule.name] = rule

    def delete_security_group(self, group_id):
        if group_id in self.undeletable:
            raise ProviderError(f"security group {group_id} is in use")
        del self.groups[group_id]

    def terminate_instances(self, instance_ids):
        return [i for i in instance_ids if i not in self.unterminatable]


@pytest.fixture
def tracker_path(tmp_path):
    return make_file_path(str(tmp_path))


def make_provisioner(provider, tracker_path):
    return Provisioner(provider, tracker_path, ip_lookup=lambda: MY_IP)


class TestEnsureSecurityGroup:
    """Test creating and reconciling the Windows worker group."""

    def test_creates_and_tracks_new_group(self, tracker_path):
        provider = FakeProvider()

        group_id = make_provisioner(provider, tracker_path).ensure_security_group("infra", VPC_CIDR)

        assert group_id == "sg-1"
        assert provider.groups["sg-1"]["name"] == "infra-windows-worker-sg"
        assert set(provider.groups["sg-1"]["rules"]) == {"WinRM", "RDP", "vpc_traffic", "SSH"}
        assert read_info(tracker_path).security_group_ids == ["sg-1"]

    def test_existing_group_is_not_tracked(self, tracker_path):
        provider = FakeProvider({"sg-7": {"name": "infra-windows-worker-sg", "rules": {}}})

        group_id = make_provisioner(provider, tracker_path).ensure_security_group("infra", VPC_CIDR)

        assert group_id == "sg-7"
        assert ("create", "infra-windows-worker-sg") not in provider.calls
        assert not os.path.exists(tracker_path)

    def test_second_run_applies_nothing(self, tracker_path):
        provider = FakeProvider()
        provisioner = make_provisioner(provider, tracker_path)

        provisioner.ensure_security_group("infra", VPC_CIDR)
        provisioner.ensure_security_group("infra", VPC_CIDR)

        applies = [call for call in provider.calls if call[0] == "apply"]
        assert len(applies) == 1

    def test_ip_lookup_failure_aborts(self, tracker_path):
        provider = FakeProvider()

        def failing_lookup():
            raise IPLookupError("unreachable")

        with pytest.raises(IPLookupError):
            Provisioner(provider, tracker_path, ip_lookup=failing_lookup).ensure_security_group("infra", VPC_CIDR)

        assert provider.calls == []

    def test_tracking_failure_is_a_warning(self, tracker_path, caplog):
        """An unreadable tracker file does not fail the run."""
        with open(tracker_path, "w") as f:
            f.write("{broken")
        provider = FakeProvider()

        with caplog.at_level(logging.WARNING):
            group_id = make_provisioner(provider, tracker_path).ensure_security_group("infra", VPC_CIDR)

        assert group_id == "sg-1"
        assert "will not be deleted" in caplog.text


class TestTrackInstance:
    """Test recording created instances."""

    def test_track_with_credentials(self, tracker_path, tmp_path):
        provisioner = make_provisioner(FakeProvider(), tracker_path)

        assert provisioner.track_instance("i-1", Credentials("i-1", "198.51.100.5", "pw"))

        assert read_info(tracker_path).instance_ids == ["i-1"]
        assert (tmp_path / "i-1").read_text().startswith("xfreerdp /u:core /v:198.51.100.5")

    def test_track_duplicate(self, tracker_path, caplog):
        provisioner = make_provisioner(FakeProvider(), tracker_path)
        provisioner.track_instance("i-1")

        with caplog.at_level(logging.WARNING):
            assert provisioner.track_instance("i-1") is False
        assert "will not be able to be deleted" in caplog.text


class TestTeardown:
    """Test deleting tracked resources."""

    def test_teardown_everything(self, tracker_path, tmp_path):
        provider = FakeProvider()
        provisioner = make_provisioner(provider, tracker_path)
        provisioner.ensure_security_group("infra", VPC_CIDR)
        provisioner.track_instance("i-1", Credentials("i-1", "198.51.100.5", "pw"))

        result = provisioner.teardown()

        assert result.terminated == ["i-1"]
        assert result.deleted_groups == ["sg-1"]
        assert result.failed == []
        assert provider.groups == {}
        assert not os.path.exists(tracker_path)
        assert not (tmp_path / "i-1").exists()

    def test_partial_failure_keeps_remaining_ids(self, tracker_path):
        provider = FakeProvider({
            "sg-1": {"name": "a", "rules": {}},
            "sg-2": {"name": "b", "rules": {}},
        })
        provider.undeletable.add("sg-2")
        provider.unterminatable.add("i-2")
        append_info(["i-1", "i-2"], ["sg-1", "sg-2"], tracker_path)

        result = make_provisioner(provider, tracker_path).teardown()

        assert result.terminated == ["i-1"]
        assert result.deleted_groups == ["sg-1"]
        assert result.failed == ["i-2", "sg-2"]
        assert read_info(tracker_path) == TrackedResources(["i-2"], ["sg-2"])

    def test_teardown_without_tracker_file(self, tracker_path):
        with pytest.raises(NotFoundError):
            make_provisioner(FakeProvider(), tracker_path).teardown()


class TestSharedAzureGroup:
    """Test the cluster NSG that Azure workers share with Linux workers."""

    def make_provider(self, existing_rules=None):
        provider = AzureSecurityGroups(Mock(), Mock(), "infra-rg")
        provider.network.network_security_groups.get.return_value = SimpleNamespace(
            name="infra-nsg", security_rules=existing_rules or [],
        )
        return provider

    def test_existing_nsg_is_tracked(self, tracker_path):
        provider = self.make_provider()

        group_id = make_provisioner(provider, tracker_path).ensure_security_group("infra", VPC_CIDR)

        assert group_id == "infra-nsg"
        assert provider.network.security_rules.begin_create_or_update.call_count == 4
        assert read_info(tracker_path).security_group_ids == ["infra-nsg"]

    def test_rerun_tolerates_tracked_nsg(self, tracker_path, caplog):
        provider = self.make_provider()
        provisioner = make_provisioner(provider, tracker_path)
        provisioner.ensure_security_group("infra", VPC_CIDR)

        with caplog.at_level(logging.WARNING):
            assert provisioner.ensure_security_group("infra", VPC_CIDR) == "infra-nsg"

        assert "will not be deleted" not in caplog.text
        assert read_info(tracker_path).security_group_ids == ["infra-nsg"]

    def test_teardown_removes_added_rules(self, tracker_path):
        provider = self.make_provider()
        provisioner = make_provisioner(provider, tracker_path)
        provisioner.ensure_security_group("infra", VPC_CIDR)

        result = provisioner.teardown()

        assert result.deleted_groups == ["infra-nsg"]
        deleted = [c.args[2] for c in provider.network.security_rules.begin_delete.call_args_list]
        assert deleted == ["WinRM", "RDP", "vnet_traffic", "SSH"]
        assert not os.path.exists(tracker_path)

    def test_aws_existing_group_is_not_tracked(self, tracker_path):
        ec2 = Mock()
        ec2.describe_security_groups.side_effect = [
            {"SecurityGroups": [{"GroupId": "sg-7"}]},
            {"SecurityGroups": [{"IpPermissions": []}]},
        ]

        make_provisioner(AwsSecurityGroups(ec2), tracker_path).ensure_security_group("infra", VPC_CIDR)

        assert not os.path.exists(tracker_path)
