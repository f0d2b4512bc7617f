"""GCP provider: describe/create/delete addresses, instances and firewall rules via gcloud."""

import json
import logging

from syncdock.provisioning.shell import format_cmd, run_shell_cmd

logger = logging.getLogger(__name__)

# ── Command builders ───────────────────────────────────────────────


def _with_project(cmd, project):
    if project:
        cmd.append(f"--project={project}")
    return cmd


def _auth_list_cmd():
    """Build gcloud command listing active accounts."""
    return ["gcloud", "auth", "list", "--filter=status:ACTIVE", "--format=value(account)"]


def _project_describe_cmd(project):
    """Build gcloud command to describe a project."""
    return ["gcloud", "projects", "describe", project]


def _services_list_enabled_cmd(project=None):
    """Build gcloud command to list enabled service APIs."""
    return _with_project(["gcloud", "services", "list", "--enabled", "--format=value(config.name)"], project)


def _services_enable_cmd(api, project=None):
    """Build gcloud command to enable a service API."""
    return _with_project(["gcloud", "services", "enable", api], project)


def _address_describe_cmd(name, region, project=None, fmt=None):
    """Build gcloud command to describe a regional static address."""
    cmd = ["gcloud", "compute", "addresses", "describe", name, f"--region={region}"]
    if fmt:
        cmd.append(f"--format={fmt}")
    return _with_project(cmd, project)


def _address_create_cmd(name, region, project=None):
    """Build gcloud command to reserve a regional static address."""
    return _with_project(["gcloud", "compute", "addresses", "create", name, f"--region={region}"], project)


def _address_delete_cmd(name, region, project=None):
    """Build gcloud command to release a static address."""
    return _with_project(["gcloud", "compute", "addresses", "delete", name, f"--region={region}", "--quiet"], project)


def _instance_describe_cmd(name, zone, project=None, fmt=None):
    """Build gcloud command to describe an instance."""
    cmd = ["gcloud", "compute", "instances", "describe", name, f"--zone={zone}"]
    if fmt:
        cmd.append(f"--format={fmt}")
    return _with_project(cmd, project)


def _instance_create_cmd(instance, ip_address, ssh_key_entry, project=None):
    """Build gcloud command to create the instance.

    Args:
        instance: InstanceConfig with machine, disk and image settings.
        ip_address: static external IP to attach.
        ssh_key_entry: ``user:public-key`` line injected into instance metadata.
    """
    cmd = [
        "gcloud",
        "compute",
        "instances",
        "create",
        instance.name,
        f"--zone={instance.zone}",
        f"--machine-type={instance.machine_type}",
        f"--network-tier={instance.network_tier}",
        f"--tags={instance.tag}",
        f"--image-family={instance.image_family}",
        f"--image-project={instance.image_project}",
        f"--address={ip_address}",
        f"--boot-disk-size={instance.boot_disk_size}",
        f"--boot-disk-type={instance.boot_disk_type}",
        f"--metadata=ssh-keys={ssh_key_entry}",
    ]
    return _with_project(cmd, project)


def _instance_add_metadata_cmd(name, zone, metadata_file, project=None):
    """Build gcloud command to set instance ssh-keys metadata from a file."""
    cmd = [
        "gcloud",
        "compute",
        "instances",
        "add-metadata",
        name,
        f"--zone={zone}",
        f"--metadata-from-file=ssh-keys={metadata_file}",
    ]
    return _with_project(cmd, project)


def _instance_delete_cmd(name, zone, project=None):
    """Build gcloud command to delete an instance."""
    return _with_project(["gcloud", "compute", "instances", "delete", name, f"--zone={zone}", "--quiet"], project)


def _firewall_describe_cmd(name, project=None):
    """Build gcloud command to describe a firewall rule."""
    return _with_project(["gcloud", "compute", "firewall-rules", "describe", name], project)


def _firewall_create_cmd(rule, target_tag, project=None):
    """Build gcloud command to create a firewall rule from a FirewallRule."""
    cmd = [
        "gcloud",
        "compute",
        "firewall-rules",
        "create",
        rule.name,
        f"--direction={rule.direction}",
        f"--priority={rule.priority}",
        f"--network={rule.network}",
        f"--action={rule.action}",
        f"--rules={rule.rules}",
        f"--target-tags={target_tag}",
    ]
    return _with_project(cmd, project)


def _firewall_delete_cmd(name, project=None):
    """Build gcloud command to delete a firewall rule."""
    return _with_project(["gcloud", "compute", "firewall-rules", "delete", name, "--quiet"], project)


def _project_add_metadata_cmd(metadata_file, project=None):
    """Build gcloud command to set project-wide ssh-keys metadata from a file."""
    return _with_project(
        ["gcloud", "compute", "project-info", "add-metadata", f"--metadata-from-file=ssh-keys={metadata_file}"],
        project,
    )


def _project_metadata_cmd(project=None):
    """Build gcloud command to read project-wide metadata as JSON."""
    return _with_project(
        ["gcloud", "compute", "project-info", "describe", "--format=json(commonInstanceMetadata)"],
        project,
    )


def _project_remove_metadata_cmd(key, project=None):
    """Build gcloud command to drop one project-wide metadata key."""
    return _with_project(["gcloud", "compute", "project-info", "remove-metadata", f"--keys={key}"], project)


# ── Core logic ─────────────────────────────────────────────────────


async def _exists(cmd, dry_run=False):
    """Run a describe command; a zero exit status means the resource exists.

    In dry-run mode nothing is queried and the resource is reported absent,
    so the full creation sequence is shown.
    """
    if dry_run:
        logger.info(f"[dry-run] {format_cmd(cmd)} (assuming absent)")
        return False
    rc, _, _ = await run_shell_cmd(cmd)
    return rc == 0


async def _mutate(cmd, action, dry_run=False):
    """Run a create/delete command, logging gcloud's stderr on failure."""
    rc, _, stderr = await run_shell_cmd(cmd, dry_run=dry_run)
    if rc != 0:
        logger.error(f"Failed to {action}: {stderr.strip()}")
        return False
    return True


async def active_accounts():
    """Return the list of active gcloud accounts (empty if not logged in)."""
    rc, stdout, _ = await run_shell_cmd(_auth_list_cmd())
    if rc != 0:
        return []
    return [line.strip() for line in stdout.splitlines() if "@" in line]


async def project_exists(project):
    rc, _, _ = await run_shell_cmd(_project_describe_cmd(project))
    return rc == 0


async def api_enabled(api, project=None):
    """True if ``api`` appears in the project's enabled services."""
    rc, stdout, _ = await run_shell_cmd(_services_list_enabled_cmd(project))
    if rc != 0:
        return False
    return api in stdout.split()


async def enable_api(api, project=None, dry_run=False):
    return await _mutate(_services_enable_cmd(api, project), f"enable {api}", dry_run=dry_run)


async def address_exists(name, region, project=None, dry_run=False):
    return await _exists(_address_describe_cmd(name, region, project), dry_run=dry_run)


async def create_address(name, region, project=None, dry_run=False):
    return await _mutate(_address_create_cmd(name, region, project), f"create static IP address '{name}'", dry_run=dry_run)


async def get_address_ip(name, region, project=None, dry_run=False):
    """Return the allocated IP value of a static address ("" if unavailable)."""
    if dry_run:
        logger.info(f"[dry-run] {format_cmd(_address_describe_cmd(name, region, project, fmt='value(address)'))}")
        return "203.0.113.10"
    rc, stdout, _ = await run_shell_cmd(_address_describe_cmd(name, region, project, fmt="value(address)"))
    return stdout.strip() if rc == 0 else ""


async def delete_address(name, region, project=None, dry_run=False):
    return await _mutate(_address_delete_cmd(name, region, project), f"delete static IP address '{name}'", dry_run=dry_run)


async def instance_exists(name, zone, project=None, dry_run=False):
    return await _exists(_instance_describe_cmd(name, zone, project), dry_run=dry_run)


async def get_instance_status(name, zone, project=None):
    """Return the instance status (RUNNING, TERMINATED, ...) or "" if unavailable."""
    rc, stdout, _ = await run_shell_cmd(_instance_describe_cmd(name, zone, project, fmt="value(status)"))
    return stdout.strip() if rc == 0 else ""


async def create_instance(instance, ip_address, ssh_key_entry, project=None, dry_run=False):
    cmd = _instance_create_cmd(instance, ip_address, ssh_key_entry, project)
    return await _mutate(cmd, f"create instance '{instance.name}'", dry_run=dry_run)


async def add_instance_metadata(name, zone, metadata_file, project=None, dry_run=False):
    cmd = _instance_add_metadata_cmd(name, zone, metadata_file, project)
    return await _mutate(cmd, f"add SSH key to instance '{name}'", dry_run=dry_run)


async def delete_instance(name, zone, project=None, dry_run=False):
    return await _mutate(_instance_delete_cmd(name, zone, project), f"delete instance '{name}'", dry_run=dry_run)


async def firewall_rule_exists(name, project=None, dry_run=False):
    return await _exists(_firewall_describe_cmd(name, project), dry_run=dry_run)


async def create_firewall_rule(rule, target_tag, project=None, dry_run=False):
    cmd = _firewall_create_cmd(rule, target_tag, project)
    return await _mutate(cmd, f"create firewall rule '{rule.name}'", dry_run=dry_run)


async def delete_firewall_rule(name, project=None, dry_run=False):
    return await _mutate(_firewall_delete_cmd(name, project), f"delete firewall rule '{name}'", dry_run=dry_run)


async def add_project_metadata(metadata_file, project=None, dry_run=False):
    cmd = _project_add_metadata_cmd(metadata_file, project)
    return await _mutate(cmd, "add SSH key to project metadata", dry_run=dry_run)


async def remove_project_metadata(key, project=None, dry_run=False):
    cmd = _project_remove_metadata_cmd(key, project)
    return await _mutate(cmd, f"remove project metadata key '{key}'", dry_run=dry_run)


async def get_project_metadata(key, project=None):
    """Return the value of one project-wide metadata key.

    Returns:
        The value string, "" if the key is not set, or None if the
        metadata could not be read.
    """
    rc, stdout, stderr = await run_shell_cmd(_project_metadata_cmd(project))
    if rc != 0:
        logger.error(f"Failed to read project metadata: {stderr.strip()}")
        return None
    try:
        info = json.loads(stdout or "{}")
    except json.JSONDecodeError as e:
        logger.error(f"Unparseable project metadata: {e}")
        return None
    items = (info.get("commonInstanceMetadata") or {}).get("items") or []
    for item in items:
        if item.get("key") == key:
            return item.get("value", "")
    return ""
