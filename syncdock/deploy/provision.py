"""Provisioning workflow: ensure every resource exists, then bootstrap the instance.

Each ensure step is create-if-absent, so re-running after an interruption
or a failure picks up where the previous run stopped without duplicating
anything.
"""

import asyncio
import logging
import os
import tempfile
import time

from syncdock.deploy.bootstrap import render_bootstrap_script
from syncdock.deploy.workflow import ExecutionPolicy, Step, StepFailed, run_steps
from syncdock.provisioning import gcp
from syncdock.provisioning.keys import apply_instance_key, ensure_keypair, format_ssh_key_entry, read_public_key
from syncdock.provisioning.retry import RetryPolicy, command_not_found, retry_with_backoff
from syncdock.provisioning.ssh import wait_for_ssh
from syncdock.provisioning.ssh_transport import run_ssh, scp_file
from syncdock.provisioning.types import VMConnectionInfo

logger = logging.getLogger(__name__)


async def ensure_resource(kind, name, exists, create, dry_run=False):
    """Create-if-absent for one named resource.

    Args:
        kind: human-readable resource kind for log lines.
        exists: async callable() -> bool.
        create: async callable() -> bool.

    Returns:
        True if the resource was created, False if it already existed.

    Raises:
        StepFailed: creation failed, or the resource is still absent after it.
    """
    logger.info(f"Checking if {kind} '{name}' already exists")
    if await exists():
        logger.info(f"{kind.capitalize()} '{name}' already exists")
        return False

    logger.info(f"Creating {kind}: {name}")
    if not await create():
        raise StepFailed(f"Failed to create {kind} '{name}'")
    if not dry_run and not await exists():
        raise StepFailed(f"{kind.capitalize()} '{name}' not found after creation")
    return True


# ── Steps ──────────────────────────────────────────────────────────


async def enable_compute_api(config, state):
    api = config.required_api
    timings = config.timings
    logger.info(f"Checking if {api} is enabled...")
    if not state.dry_run and await gcp.api_enabled(api, project=state.project_id):
        logger.info(f"{api} is already enabled.")
        return

    logger.info(f"Enabling {api} (this may take a few minutes)...")
    if not await gcp.enable_api(api, project=state.project_id, dry_run=state.dry_run):
        raise StepFailed(f"Failed to enable {api}")
    if state.dry_run:
        return

    deadline = time.monotonic() + timings.api_enable_timeout
    while not await gcp.api_enabled(api, project=state.project_id):
        if time.monotonic() >= deadline:
            raise StepFailed(f"Timeout after {timings.api_enable_timeout}s waiting for {api} to be enabled")
        logger.info(f"Still waiting for {api} to be enabled...")
        await asyncio.sleep(timings.api_poll_interval)
    logger.info(f"{api} enabled successfully!")


async def ensure_ssh_keypair(config, state):
    created = await ensure_keypair(
        config.keys,
        project=state.project_id,
        propagation_wait=config.timings.key_propagation_wait,
        dry_run=state.dry_run,
    )
    if created is None:
        raise StepFailed("Failed to set up the deployment SSH key")
    if created:
        state.created.append(f"ssh-key:{config.keys.private_key_path}")
    state.public_key = "ssh-rsa DRY-RUN-KEY" if state.dry_run else read_public_key(config.keys)


async def ensure_static_address(config, state):
    inst = config.instance
    region = inst.resolved_region
    created = await ensure_resource(
        "static IP address",
        inst.address_name,
        lambda: gcp.address_exists(inst.address_name, region, project=state.project_id, dry_run=state.dry_run),
        lambda: gcp.create_address(inst.address_name, region, project=state.project_id, dry_run=state.dry_run),
        dry_run=state.dry_run,
    )
    if created:
        state.created.append(f"address:{inst.address_name}")

    logger.info("Retrieving static IP address")
    state.ip_address = await gcp.get_address_ip(inst.address_name, region, project=state.project_id, dry_run=state.dry_run)
    if not state.ip_address:
        raise StepFailed("Failed to get IP address")
    logger.info(f"Static IP address: {state.ip_address}")


async def ensure_instance(config, state):
    inst = config.instance
    entry = format_ssh_key_entry(config.keys.user, state.public_key)
    created = await ensure_resource(
        "instance",
        inst.name,
        lambda: gcp.instance_exists(inst.name, inst.zone, project=state.project_id, dry_run=state.dry_run),
        lambda: gcp.create_instance(inst, state.ip_address, entry, project=state.project_id, dry_run=state.dry_run),
        dry_run=state.dry_run,
    )
    if created:
        state.created.append(f"instance:{inst.name}")
        return

    # Keep the current key on an instance created by an earlier run
    if not await apply_instance_key(inst, config.keys, state.public_key, project=state.project_id, dry_run=state.dry_run):
        raise StepFailed(f"Failed to add SSH key to instance '{inst.name}'")


async def ensure_firewall_rules(config, state):
    for rule in config.firewall_rules:
        created = await ensure_resource(
            "firewall rule",
            rule.name,
            lambda rule=rule: gcp.firewall_rule_exists(rule.name, project=state.project_id, dry_run=state.dry_run),
            lambda rule=rule: gcp.create_firewall_rule(rule, config.instance.tag, project=state.project_id, dry_run=state.dry_run),
            dry_run=state.dry_run,
        )
        if created:
            state.created.append(f"firewall:{rule.name}")


def make_bootstrap_step(credentials=None, retry_policy=None, sleep=asyncio.sleep):
    """Build the remote bootstrap step.

    Args:
        credentials: optional Credentials for the Syncthing web UI.
        retry_policy: RetryPolicy for the connection test, the transfer and
            the package-manager calls inside the script.
        sleep: async callable(seconds), injectable for tests.
    """
    policy = retry_policy or RetryPolicy()

    async def run_remote_bootstrap(config, state):
        conn = VMConnectionInfo(
            host=state.ip_address,
            username=config.keys.user,
            ssh_key=config.keys.private_key_path,
            ssh_port=config.instance.ssh_port,
        )
        svc = config.service

        if config.timings.instance_boot_wait and not state.dry_run:
            logger.info(f"Waiting {config.timings.instance_boot_wait:g} seconds for the instance to be ready for SSH...")
            await sleep(config.timings.instance_boot_wait)

        logger.info("Testing SSH connection to the VM")
        probe = await wait_for_ssh(
            conn.address,
            conn.ssh_key,
            ssh_port=conn.ssh_port,
            connect_timeout=config.timings.ssh_connect_timeout,
            policy=policy,
            sleep=sleep,
            dry_run=state.dry_run,
        )
        if not probe.ok:
            status = "" if state.dry_run else await gcp.get_instance_status(config.instance.name, config.instance.zone, project=state.project_id)
            raise StepFailed(
                f"SSH connection to {conn.address} failed (instance status: {status or 'unknown'}). "
                "Please check your VM and SSH keys."
            )

        script = render_bootstrap_script(config, state.ip_address, credentials, retry_policy=policy)
        with tempfile.NamedTemporaryFile(mode="w", suffix="_deploy_syncthing.sh", delete=False) as f:
            f.write(script)
            tmp_path = f.name
        try:
            os.chmod(tmp_path, 0o600)
            logger.info("Copying deployment script to VM")
            transfer = await retry_with_backoff(
                lambda: scp_file(
                    tmp_path, conn.address, conn.ssh_key, svc.remote_script_path, ssh_port=conn.ssh_port, dry_run=state.dry_run
                ),
                policy,
                is_retryable=command_not_found,
                sleep=sleep,
                label="Copy deployment script",
            )
        finally:
            os.unlink(tmp_path)
        if not transfer.ok:
            raise StepFailed(f"Failed to copy deployment script to VM: {transfer.stderr.strip()}")

        logger.info("Executing deployment script on VM")
        rc, _, _ = await run_ssh(
            conn.address,
            conn.ssh_key,
            f"chmod +x {svc.remote_script_path} && sudo {svc.remote_script_path}",
            ssh_port=conn.ssh_port,
            log_output=True,
            dry_run=state.dry_run,
        )
        if rc != 0:
            raise StepFailed(f"Deployment script failed on VM with exit code {rc}")

    return run_remote_bootstrap


def provision_steps(credentials=None, retry_policy=None, sleep=asyncio.sleep):
    """Ordered mutating steps of the provisioning workflow (after preflight)."""
    return [
        Step("Enable Compute Engine API", enable_compute_api),
        Step("Ensure SSH keypair", ensure_ssh_keypair),
        Step("Ensure static IP address", ensure_static_address),
        Step("Ensure instance", ensure_instance),
        Step("Ensure firewall rules", ensure_firewall_rules),
        Step("Run remote bootstrap", make_bootstrap_step(credentials, retry_policy, sleep)),
    ]


async def run_provision(config, state, credentials=None, retry_policy=None, sleep=asyncio.sleep, bootstrap=True):
    """Run the provisioning steps fail-fast.

    Args:
        bootstrap: if False, stop after the firewall rules (cloud resources only).

    Raises:
        StepFailed: the first failing step; earlier resources are left in place.
    """
    steps = provision_steps(credentials, retry_policy, sleep)
    if not bootstrap:
        steps = steps[:-1]
    return await run_steps(steps, config, state, ExecutionPolicy.FAIL_FAST)


def log_summary(config, state):
    """Final operator-facing summary of a successful provisioning run."""
    svc = config.service
    key_path = config.keys.private_key_path
    logger.info("")
    logger.info("==============================================")
    logger.info("Deployment complete! Syncthing should now be running.")
    logger.info("It is recommended to mark this instance as 'Untrusted' on your other devices,")
    logger.info("so the files it stores are encrypted.")
    logger.info(f"Web UI: https://{state.ip_address}:{svc.web_port}")
    logger.info("If no GUI credentials were given, set them on your first login to the web interface. Do it NOW!")
    logger.info(f"SSH key location: {key_path}")
    logger.info(f"To connect to the VM in the future: ssh -i {key_path} {config.keys.user}@{state.ip_address}")
    logger.info("==============================================")
