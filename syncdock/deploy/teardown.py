"""Teardown workflow: best-effort deletion of everything provisioning creates."""

import logging

from syncdock.deploy.workflow import ExecutionPolicy, Step, StepFailed, run_steps
from syncdock.provisioning import gcp
from syncdock.provisioning.keys import revoke_project_ssh_key

logger = logging.getLogger(__name__)


async def delete_if_present(kind, name, exists, delete, dry_run=False):
    """Delete a named resource if it exists.

    In dry-run mode nothing is queried and the resource is assumed present,
    so every delete command is shown.

    Returns:
        True if deleted, False if it was already absent.

    Raises:
        StepFailed: the delete call failed.
    """
    logger.info(f"Checking if {kind} {name} exists")
    if dry_run:
        logger.info(f"[dry-run] assuming {kind} {name} exists")
    elif not await exists():
        logger.info(f"{kind.capitalize()} {name} does not exist")
        return False
    logger.info(f"Deleting {kind} {name}")
    if not await delete():
        raise StepFailed(f"Failed to delete {kind} {name}")
    return True


def _instance_step(config):
    inst = config.instance

    async def delete_instance(config, state):
        if await delete_if_present(
            "instance",
            inst.name,
            lambda: gcp.instance_exists(inst.name, inst.zone, project=state.project_id, dry_run=state.dry_run),
            lambda: gcp.delete_instance(inst.name, inst.zone, project=state.project_id, dry_run=state.dry_run),
            dry_run=state.dry_run,
        ):
            state.deleted.append(f"instance:{inst.name}")

    return Step(f"Delete instance {inst.name}", delete_instance)


def _address_step(config):
    inst = config.instance
    region = inst.resolved_region

    async def delete_address(config, state):
        if await delete_if_present(
            "static IP address",
            inst.address_name,
            lambda: gcp.address_exists(inst.address_name, region, project=state.project_id, dry_run=state.dry_run),
            lambda: gcp.delete_address(inst.address_name, region, project=state.project_id, dry_run=state.dry_run),
            dry_run=state.dry_run,
        ):
            state.deleted.append(f"address:{inst.address_name}")

    return Step(f"Delete static IP address {inst.address_name}", delete_address)


def _firewall_step(rule_name):
    async def delete_rule(config, state):
        if await delete_if_present(
            "firewall rule",
            rule_name,
            lambda: gcp.firewall_rule_exists(rule_name, project=state.project_id, dry_run=state.dry_run),
            lambda: gcp.delete_firewall_rule(rule_name, project=state.project_id, dry_run=state.dry_run),
            dry_run=state.dry_run,
        ):
            state.deleted.append(f"firewall:{rule_name}")

    return Step(f"Delete firewall rule {rule_name}", delete_rule)


async def revoke_ssh_key(config, state):
    if state.dry_run:
        logger.info("[dry-run] remove deployment SSH key from project ssh-keys metadata")
        return
    if not await revoke_project_ssh_key(config.keys, project=state.project_id):
        raise StepFailed("Failed to remove the deployment SSH key from project metadata")
    state.deleted.append("ssh-key:project-metadata")


def teardown_steps(config, revoke_key=False):
    """One independent step per resource; instance first so the address is released."""
    steps = [_instance_step(config), _address_step(config)]
    steps += [_firewall_step(rule.name) for rule in config.firewall_rules]
    if revoke_key:
        steps.append(Step("Revoke deployment SSH key", revoke_ssh_key))
    return steps


async def run_teardown(config, state, revoke_key=False):
    """Run every deletion step; failures are logged and do not stop the others.

    Returns:
        WorkflowResult; ``result.failed`` names the steps that need attention.
    """
    result = await run_steps(teardown_steps(config, revoke_key), config, state, ExecutionPolicy.BEST_EFFORT)
    if not revoke_key:
        log_key_notice(config)
    return result


def log_key_notice(config):
    """Manual cleanup instructions for the project-wide SSH key."""
    user = config.keys.user
    logger.info("[!] The deployment SSH key is still registered in project metadata.")
    logger.info("[!] Re-run with --revoke-ssh-key to remove it, or clean it up manually:")
    logger.info("[!] 1. Go to Compute Engine > Metadata > SSH Keys")
    logger.info(f"[!] 2. Remove the key for '{user}' that was added by the provision command")


def log_verification_hints(config):
    inst = config.instance
    key_dir = config.keys.private_key_path.rsplit("/", 1)[0]
    logger.info(f"SSH keys are located at: {key_dir}")
    logger.info(f"To completely remove the keys from your local machine, run: rm -rf {key_dir}")
    logger.info("")
    logger.info("==============================================")
    logger.info("Please verify that all resources have been removed:")
    logger.info(f"  - Instance: gcloud compute instances list --filter='name={inst.name}'")
    logger.info(f"  - IP Address: gcloud compute addresses list --filter='name={inst.address_name}'")
    logger.info(f"  - Firewall rules: gcloud compute firewall-rules list --filter='name~{inst.tag}'")
    logger.info("==============================================")
