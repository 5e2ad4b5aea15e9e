"""
Tests for security group rule reconciliation.
"""

from wni.rules.models import Protocol, RequiredRule, Scope, SecurityRule
from wni.rules.reconcile import plan_summary, reconcile
from wni.rules.required import AWS_RULES, AZURE_RULES, WINRM_RULE

MY_IP = "203.0.113.7"
OTHER_IP = "198.51.100.20"
VPC_CIDR = "10.0.0.0/16"


def apply(current, changes):
    """Replace rules by name the way a create-or-update API does."""
    by_name = {rule.name: rule for rule in current}
    for rule in changes:
        by_name[rule.name] = rule
    return list(by_name.values())


class TestConvergence:
    """Test reconciliation reaching a fixed point."""

    def test_empty_group_gets_every_rule(self):
        changes = reconcile([], AZURE_RULES, MY_IP, VPC_CIDR)

        assert len(changes) == 4
        assert {rule.name for rule in changes} == {"WinRM", "RDP", "vnet_traffic", "SSH"}

    def test_none_current_rules(self):
        assert len(reconcile(None, AWS_RULES, MY_IP, VPC_CIDR)) == 4

    def test_second_pass_is_empty(self):
        changes = reconcile([], AZURE_RULES, MY_IP, VPC_CIDR)

        assert reconcile(changes, AZURE_RULES, MY_IP, VPC_CIDR) == []

    def test_new_rules_use_required_fields(self):
        changes = {rule.name: rule for rule in reconcile([], AZURE_RULES, MY_IP, VPC_CIDR)}

        winrm = changes["WinRM"]
        assert winrm.protocol is Protocol.TCP
        assert winrm.destination_port_range == "5986"
        assert winrm.priority == 600
        assert winrm.source_addresses == (MY_IP + "/32",)

        vnet = changes["vnet_traffic"]
        assert vnet.protocol is Protocol.ALL
        assert vnet.source_addresses == (VPC_CIDR,)
        assert vnet.priority == 602

    def test_empty_required_rules(self):
        current = [SecurityRule("RDP", Protocol.TCP, (MY_IP,), "3389", 601)]

        assert reconcile(current, [], MY_IP, VPC_CIDR) == []


class TestAdditiveUpdate:
    """Test updates never drop previously authorized addresses."""

    def test_other_operator_address_is_kept(self):
        current = [SecurityRule("WinRM", Protocol.TCP, (OTHER_IP + "/32",), "5986", 600)]

        changes = reconcile(current, [WINRM_RULE], MY_IP, VPC_CIDR)

        assert len(changes) == 1
        assert changes[0].name == "WinRM"
        assert changes[0].source_addresses == (OTHER_IP + "/32", MY_IP + "/32")

    def test_update_then_converge(self):
        current = [SecurityRule("WinRM", Protocol.TCP, (OTHER_IP,), "5986", 600)]

        changes = reconcile(current, [WINRM_RULE], MY_IP, VPC_CIDR)
        assert reconcile(apply(current, changes), [WINRM_RULE], MY_IP, VPC_CIDR) == []

    def test_existing_priority_is_kept(self):
        current = [SecurityRule("WinRM", Protocol.TCP, (OTHER_IP,), "5986", 4000)]

        changes = reconcile(current, [WINRM_RULE], MY_IP, VPC_CIDR)

        assert changes[0].priority == 4000

    def test_bare_address_satisfies(self):
        """Azure may record the address without a prefix length."""
        current = [SecurityRule("WinRM", Protocol.TCP, (MY_IP,), "5986", 600)]

        assert reconcile(current, [WINRM_RULE], MY_IP + "/32", VPC_CIDR) == []

    def test_wrong_port_is_corrected(self):
        current = [SecurityRule("WinRM", Protocol.TCP, (MY_IP,), "5985", 600)]

        changes = reconcile(current, [WINRM_RULE], MY_IP, VPC_CIDR)

        assert len(changes) == 1
        assert changes[0].destination_port_range == "5986"
        assert changes[0].source_addresses == (MY_IP,)

    def test_input_is_not_mutated(self):
        rule = SecurityRule("WinRM", Protocol.TCP, (OTHER_IP,), "5986", 600)
        current = [rule]

        reconcile(current, [WINRM_RULE], MY_IP, VPC_CIDR)

        assert current == [rule]
        assert rule.source_addresses == (OTHER_IP,)


class TestNetworkRule:
    """Test the intra-network rule matched by protocol and CIDR."""

    def test_matched_regardless_of_name(self):
        current = [SecurityRule("allow-cluster", Protocol.ALL, (VPC_CIDR,), "*")]

        changes = reconcile(current, AWS_RULES, MY_IP, VPC_CIDR)

        assert "vpc_traffic" not in {rule.name for rule in changes}
        assert len(changes) == 3

    def test_tcp_rule_with_cidr_does_not_match(self):
        current = [SecurityRule("allow-cluster", Protocol.TCP, (VPC_CIDR,), "1-65535")]

        changes = reconcile(current, AWS_RULES, MY_IP, VPC_CIDR)

        assert "vpc_traffic" in {rule.name for rule in changes}

    def test_first_match_wins(self):
        current = [
            SecurityRule("one", Protocol.ALL, (VPC_CIDR,), "*"),
            SecurityRule("two", Protocol.ALL, (VPC_CIDR,), "*"),
        ]

        changes = reconcile(current, AZURE_RULES, MY_IP, VPC_CIDR)

        assert [rule.name for rule in changes] == ["WinRM", "RDP", "SSH"]

    def test_named_rule_missing_cidr_is_extended(self):
        current = [SecurityRule("vnet_traffic", Protocol.ALL, ("10.1.0.0/16",), "1-65535", 602)]

        changes = reconcile(current, AZURE_RULES, MY_IP, VPC_CIDR)
        vnet = [rule for rule in changes if rule.name == "vnet_traffic"]

        assert vnet[0].source_addresses == ("10.1.0.0/16", VPC_CIDR)

    def test_fixed_source_address(self):
        rule = RequiredRule("lb", Protocol.TCP, "443", 700, scope=Scope.NETWORK,
                            source_address="168.63.129.16")

        changes = reconcile([], [rule], MY_IP, VPC_CIDR)

        assert changes[0].source_addresses == ("168.63.129.16/32",)


class TestIrrelevantRules:
    """Test unrelated rules are ignored and left alone."""

    def test_unrelated_rules_never_satisfy(self):
        current = [
            SecurityRule("HTTPS", Protocol.TCP, (MY_IP + "/32",), "5986", 100),
            SecurityRule("office", Protocol.ALL, ("192.168.0.0/24",), "*", 101),
        ]

        changes = reconcile(current, AZURE_RULES, MY_IP, VPC_CIDR)

        assert len(changes) == 4
        assert all(rule.name in {"WinRM", "RDP", "vnet_traffic", "SSH"} for rule in changes)

    def test_unrelated_rules_are_not_returned(self):
        unrelated = SecurityRule("HTTPS", Protocol.TCP, ("0.0.0.0/0",), "443", 100)
        changes = reconcile([], AZURE_RULES, MY_IP, VPC_CIDR)

        result = reconcile([unrelated] + changes, AZURE_RULES, MY_IP, VPC_CIDR)

        assert result == []


def test_plan_summary():
    changes = reconcile([], [WINRM_RULE], MY_IP, VPC_CIDR)

    assert plan_summary(changes) == [{
        "name": "WinRM",
        "protocol": "tcp",
        "source_addresses": ["203.0.113.7/32"],
        "destination_port_range": "5986",
        "priority": 600,
    }]
