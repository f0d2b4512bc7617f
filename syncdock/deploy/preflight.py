"""Read-only checks run before any resource is touched."""

import logging

from syncdock.deploy.workflow import PreflightError
from syncdock.provisioning import gcp
from syncdock.provisioning.shell import command_exists

logger = logging.getLogger(__name__)

PROVISION_COMMANDS = ("gcloud", "ssh-keygen", "openssl")
TEARDOWN_COMMANDS = ("gcloud",)


def check_dependencies(commands):
    """Raise PreflightError for the first command not found on PATH."""
    for cmd in commands:
        if not command_exists(cmd):
            raise PreflightError(f"Required command '{cmd}' not found. Please install it and try again.")


def validate_project_id(project_id):
    """Return the stripped project id; an empty one is rejected."""
    project_id = (project_id or "").strip()
    if not project_id:
        raise PreflightError("Project ID is required")
    return project_id


async def check_authenticated(dry_run=False):
    """Require at least one active gcloud account."""
    logger.info("Checking if you're logged in to Google Cloud CLI...")
    if dry_run:
        logger.info("[dry-run] gcloud auth list --filter=status:ACTIVE --format=value(account)")
        return []
    accounts = await gcp.active_accounts()
    if not accounts:
        raise PreflightError("You are not logged in to Google Cloud CLI. Please run 'gcloud auth login' first.")
    logger.info(f"You are logged in to Google Cloud CLI as {accounts[0]}.")
    return accounts


async def check_project(project_id, dry_run=False):
    """Require that ``project_id`` exists and is accessible."""
    logger.info(f"Checking if project {project_id} exists...")
    if dry_run:
        logger.info(f"[dry-run] gcloud projects describe {project_id}")
        return
    if not await gcp.project_exists(project_id):
        raise PreflightError(
            f"Project {project_id} does not exist or you don't have access to it. "
            f"Check the project ID or create it with: gcloud projects create {project_id}"
        )
    logger.info(f"Project {project_id} exists.")


async def run_preflight(commands, project_id, dry_run=False):
    """Full preflight sequence: tools, then authentication, then project.

    Returns:
        The validated project id.
    """
    check_dependencies(commands)
    project_id = validate_project_id(project_id)
    await check_authenticated(dry_run=dry_run)
    await check_project(project_id, dry_run=dry_run)
    return project_id
