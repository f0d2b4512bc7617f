"""Teardown command: delete every resource the provision command creates."""

import asyncio
import logging
import sys

from syncdock.commands import add_project_args, confirm, load_config_or_exit, prompt_project_id
from syncdock.deploy.preflight import TEARDOWN_COMMANDS, run_preflight
from syncdock.deploy.teardown import log_verification_hints, run_teardown
from syncdock.deploy.workflow import RunState, StepFailed

logger = logging.getLogger(__name__)


def handle_teardown(args):
    """Handle the teardown command."""
    asyncio.run(_handle_teardown(args))


async def _handle_teardown(args):
    config = load_config_or_exit(args.config)
    logger.info("Starting Syncthing deployment cleanup...")

    try:
        project_id = await run_preflight(TEARDOWN_COMMANDS, prompt_project_id(args), dry_run=args.dry_run)
    except StepFailed as e:
        logger.error(f"[-] Error: {e}")
        sys.exit(1)

    inst = config.instance
    logger.info(f"This will delete the following resources from project '{project_id}':")
    logger.info(f"  - VM instance named '{inst.name}'")
    logger.info(f"  - Static IP address named '{inst.address_name}'")
    logger.info(f"  - Firewall rules: {', '.join(config.firewall_rule_names)}")
    if args.revoke_ssh_key:
        logger.info("  - The deployment SSH key in project metadata")
    if not confirm("Are you sure you want to proceed? This action is irreversible.", assume_yes=args.yes):
        logger.info("Cleanup canceled.")
        return

    state = RunState(project_id=project_id, dry_run=args.dry_run)
    result = await run_teardown(config, state, revoke_key=args.revoke_ssh_key)
    log_verification_hints(config)

    if not result.ok:
        logger.error(f"Cleanup finished with {len(result.failed)} failure(s): {', '.join(result.failed)}")
        sys.exit(1)
    logger.info("Cleanup process completed!")


def register_teardown_command(subparsers):
    """Register the teardown subcommand."""
    parser = subparsers.add_parser("teardown", help="Delete the Syncthing VM, address and firewall rules")
    add_project_args(parser)
    parser.add_argument(
        "--revoke-ssh-key",
        action="store_true",
        help="Also remove the deployment SSH key from project-wide metadata",
    )
    parser.set_defaults(func=handle_teardown)
