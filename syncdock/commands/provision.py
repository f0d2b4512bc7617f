"""Provision command: create the Syncthing VM and deploy the service on it."""

import asyncio
import logging
import sys

from syncdock.commands import (
    add_credential_args,
    add_project_args,
    confirm,
    load_config_or_exit,
    prompt_project_id,
    resolve_credentials,
)
from syncdock.deploy.preflight import PROVISION_COMMANDS, run_preflight
from syncdock.deploy.provision import log_summary, run_provision
from syncdock.deploy.workflow import RunState, StepFailed

logger = logging.getLogger(__name__)


def handle_provision(args):
    """Handle the provision command."""
    asyncio.run(_handle_provision(args))


async def _handle_provision(args):
    config = load_config_or_exit(args.config)
    credentials = resolve_credentials(args)

    try:
        project_id = await run_preflight(PROVISION_COMMANDS, prompt_project_id(args), dry_run=args.dry_run)
    except StepFailed as e:
        logger.error(f"[-] Error: {e}")
        sys.exit(1)

    inst = config.instance
    ports = ", ".join(str(rule.port) for rule in config.firewall_rules)
    logger.info(f"This will create the following resources in project '{project_id}':")
    logger.info(f"  - A VM instance ({inst.machine_type}) named '{inst.name}'")
    logger.info(f"  - A static IP address named '{inst.address_name}'")
    logger.info(f"  - Firewall rules for Syncthing (ports {ports})")
    logger.info(f"  - Docker containers for Syncthing within {inst.name}")
    if not confirm("Do you want to proceed?", assume_yes=args.yes):
        logger.info("Deployment canceled.")
        return

    state = RunState(project_id=project_id, dry_run=args.dry_run)
    try:
        await run_provision(config, state, credentials=credentials, bootstrap=not args.skip_bootstrap)
    except StepFailed as e:
        logger.error(f"[-] {e}")
        if state.created:
            logger.error(f"Resources created before the failure: {', '.join(state.created)}")
        logger.error("Re-run provision to resume, or run teardown to remove them.")
        sys.exit(1)

    if args.skip_bootstrap:
        logger.info(f"Cloud resources are ready. Static IP address: {state.ip_address}")
        return
    log_summary(config, state)


def register_provision_command(subparsers):
    """Register the provision subcommand."""
    parser = subparsers.add_parser("provision", help="Create the VM, address and firewall rules, then deploy Syncthing")
    add_project_args(parser)
    add_credential_args(parser)
    parser.add_argument(
        "--skip-bootstrap",
        action="store_true",
        help="Only ensure the cloud resources; do not run the bootstrap script on the VM",
    )
    parser.set_defaults(func=handle_provision)
