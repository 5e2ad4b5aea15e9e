"""
Click CLI for the Windows node installer bookkeeping.
"""

import json
import logging
import sys
from pathlib import Path
from typing import NoReturn, Optional

import click

from .config import get_aws_region, get_log_level, get_tracker_dir
from .errors import WniError
from .myip import get_my_ip
from .provisioner import Provisioner
from .resource.tracker import append_info, make_file_path, read_info, remove_info
from .rules.models import Protocol, SecurityRule
from .rules.reconcile import plan_summary, reconcile
from .rules.required import rules_for


def configure_logging(level: str) -> None:
    """Configure root logging for a CLI run."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _fail(message: str) -> NoReturn:
    click.echo(f"❌ {message}", err=True)
    sys.exit(1)


def _tracker_path(ctx: click.Context) -> str:
    return make_file_path(ctx.obj["tracker_dir"])


def _load_rules(rules_file: str) -> list:
    """Read a JSON list of rules as written by `plan-rules`."""
    with open(rules_file, "r") as f:
        data = json.load(f)
    return [
        SecurityRule(
            name=item["name"],
            protocol=Protocol(item.get("protocol", "tcp")),
            source_addresses=tuple(item.get("source_addresses", [])),
            destination_port_range=str(item.get("destination_port_range", "*")),
            priority=item.get("priority"),
        )
        for item in data
    ]


@click.group()
@click.option("--dir", "tracker_dir", default=None, help="Directory of windows-node-installer.json")
@click.option("--log-level", default=None, help="debug, info, warning or error")
@click.pass_context
def main(ctx, tracker_dir: Optional[str], log_level: Optional[str]):
    """
    wni - track and clean up Windows worker resources of an OpenShift cluster.
    """
    configure_logging(log_level or get_log_level())
    ctx.ensure_object(dict)
    ctx.obj["tracker_dir"] = tracker_dir or str(get_tracker_dir())


@main.command()
@click.option("--json", "output_json", is_flag=True, help="Output machine-readable JSON")
@click.pass_context
def show(ctx, output_json: bool):
    """Show the tracked instances and security groups."""
    try:
        info = read_info(_tracker_path(ctx))
    except WniError as e:
        _fail(str(e))

    if output_json:
        click.echo(info.to_json())
        return

    click.echo(f"📦 Instances ({len(info.instance_ids)}):")
    for instance_id in info.instance_ids:
        click.echo(f"  • {instance_id}")
    click.echo(f"🔒 Security groups ({len(info.security_group_ids)}):")
    for group_id in info.security_group_ids:
        click.echo(f"  • {group_id}")


@main.command()
@click.option("--instance-id", "instance_ids", multiple=True, help="Instance ID (repeatable)")
@click.option("--sg-id", "sg_ids", multiple=True, help="Security group ID (repeatable)")
@click.pass_context
def track(ctx, instance_ids: tuple, sg_ids: tuple):
    """Add IDs to the tracker file."""
    try:
        path = _tracker_path(ctx)
        append_info(list(instance_ids), list(sg_ids), path)
    except WniError as e:
        _fail(str(e))
    click.echo(f"✅ Tracked {len(instance_ids)} instances and {len(sg_ids)} security groups in {path}")


@main.command()
@click.option("--instance-id", "instance_ids", multiple=True, help="Instance ID (repeatable)")
@click.option("--sg-id", "sg_ids", multiple=True, help="Security group ID (repeatable)")
@click.pass_context
def forget(ctx, instance_ids: tuple, sg_ids: tuple):
    """Remove IDs from the tracker file."""
    try:
        path = _tracker_path(ctx)
        remove_info(list(instance_ids), list(sg_ids), path)
    except WniError as e:
        _fail(str(e))
    if not Path(path).exists():
        click.echo(f"✅ Nothing left to track, removed {path}")
    else:
        click.echo(f"✅ Forgot {len(instance_ids)} instances and {len(sg_ids)} security groups")


@main.command("plan-rules")
@click.argument("rules_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--provider", type=click.Choice(["aws", "azure"]), required=True, help="Cloud provider")
@click.option("--cidr", required=True, help="CIDR of the cluster VPC / VNet")
@click.option("--ip", "requester_ip", default=None, help="Operator IP (looked up when omitted)")
def plan_rules(rules_file: str, provider: str, cidr: str, requester_ip: Optional[str]):
    """
    Print the rules missing from a security group.

    RULES_FILE is a JSON list of the group's current rules.
    """
    try:
        current_rules = _load_rules(rules_file)
    except (OSError, ValueError, KeyError, TypeError) as e:
        _fail(f"Invalid rules file {rules_file}: {e}")

    try:
        requester_ip = requester_ip or get_my_ip()
    except WniError as e:
        _fail(str(e))

    changes = reconcile(current_rules, rules_for(provider), requester_ip, cidr)
    click.echo(json.dumps(plan_summary(changes), indent=2))


@main.group()
def aws():
    """AWS commands."""
    pass


@aws.command("ensure-sg")
@click.option("--infra-id", required=True, help="Infrastructure ID of the cluster")
@click.option("--vpc-id", required=True, help="VPC of the cluster")
@click.option("--cidr", required=True, help="CIDR block of the VPC")
@click.option("--region", default=None, help="AWS region")
@click.option("--profile", default=None, help="AWS credentials profile")
@click.pass_context
def aws_ensure_sg(ctx, infra_id: str, vpc_id: str, cidr: str, region: Optional[str], profile: Optional[str]):
    """Create or update the Windows worker security group."""
    from .providers.aws import AwsSecurityGroups

    try:
        provider = AwsSecurityGroups.from_session(region or get_aws_region(), profile, vpc_id=vpc_id)
        provisioner = Provisioner(provider, _tracker_path(ctx))
        group_id = provisioner.ensure_security_group(infra_id, cidr)
    except WniError as e:
        _fail(str(e))
    click.echo(f"✅ Security group {group_id} is ready")


@aws.command("destroy")
@click.option("--region", default=None, help="AWS region")
@click.option("--profile", default=None, help="AWS credentials profile")
@click.option("--yes", is_flag=True, help="Auto-confirm without prompting")
@click.pass_context
def aws_destroy(ctx, region: Optional[str], profile: Optional[str], yes: bool):
    """Delete the tracked instances and security groups."""
    from .providers.aws import AwsSecurityGroups

    provider = AwsSecurityGroups.from_session(region or get_aws_region(), profile)
    _destroy(ctx, provider, yes)


@main.group()
def azure():
    """Azure commands."""
    pass


@azure.command("ensure-sg")
@click.option("--infra-id", required=True, help="Infrastructure ID of the cluster")
@click.option("--subscription-id", required=True, help="Azure subscription ID")
@click.option("--resource-group", required=True, help="Resource group of the cluster")
@click.option("--cidr", required=True, help="Address space of the VNet")
@click.option("--location", default=None, help="Location used if the NSG must be created")
@click.pass_context
def azure_ensure_sg(ctx, infra_id: str, subscription_id: str, resource_group: str, cidr: str,
                    location: Optional[str]):
    """Add the Windows worker rules to the cluster NSG."""
    from .providers.azure import AzureSecurityGroups

    try:
        provider = AzureSecurityGroups.from_credentials(subscription_id, resource_group, location)
        provisioner = Provisioner(provider, _tracker_path(ctx))
        group_id = provisioner.ensure_security_group(infra_id, cidr)
    except WniError as e:
        _fail(str(e))
    click.echo(f"✅ Network security group {group_id} is ready")


@azure.command("destroy")
@click.option("--subscription-id", required=True, help="Azure subscription ID")
@click.option("--resource-group", required=True, help="Resource group of the cluster")
@click.option("--yes", is_flag=True, help="Auto-confirm without prompting")
@click.pass_context
def azure_destroy(ctx, subscription_id: str, resource_group: str, yes: bool):
    """Delete the tracked virtual machines and Windows worker rules."""
    from .providers.azure import AzureSecurityGroups

    provider = AzureSecurityGroups.from_credentials(subscription_id, resource_group)
    _destroy(ctx, provider, yes)


def _destroy(ctx: click.Context, provider, yes: bool) -> None:
    try:
        provisioner = Provisioner(provider, _tracker_path(ctx))
        info = read_info(provisioner.tracker_path)
    except WniError as e:
        _fail(str(e))

    click.echo(f"🗑️  {len(info.instance_ids)} instances and {len(info.security_group_ids)} "
               f"security groups are tracked in {provisioner.tracker_path}")
    if not yes and not click.confirm("Do you want to delete them?"):
        click.echo("❌ Destruction cancelled")
        return

    try:
        result = provisioner.teardown()
    except WniError as e:
        _fail(str(e))

    click.echo(f"✅ Terminated {len(result.terminated)} instances, "
               f"deleted {len(result.deleted_groups)} security groups")
    if result.failed:
        _fail(f"Failed to delete: {', '.join(result.failed)}")


if __name__ == "__main__":
    main()
