"""Shared CLI helpers: prompts, config loading and credential flags."""

import logging
import os
import re
import sys

from syncdock.config import load_config
from syncdock.deploy.compose import Credentials
from syncdock.redact import register_secret

logger = logging.getLogger(__name__)

_YES = re.compile(r"^[Yy]$")


def _read(prompt):
    try:
        return input(prompt)
    except EOFError:
        return ""


def prompt_project_id(args):
    """Project id from --project, or asked for interactively."""
    if args.project is not None:
        return args.project
    return _read("Enter your Google Cloud Project ID: ")


def confirm(prompt, assume_yes=False):
    """Ask a y/n question; only a single 'y' or 'Y' counts as yes."""
    if assume_yes:
        return True
    return bool(_YES.match(_read(f"{prompt} (y/n): ").strip()))


def load_config_or_exit(path):
    try:
        return load_config(path)
    except (FileNotFoundError, ValueError, TypeError) as e:
        logger.error(f"Error: {e}")
        sys.exit(1)


def resolve_credentials(args):
    """GUI credentials from flags (password may come from SYNCTHING_GUI_PASSWORD).

    Returns None when no username is given; the web UI login is then left
    for the operator to set on first visit.
    """
    password = args.gui_password or os.environ.get("SYNCTHING_GUI_PASSWORD")
    if not args.gui_user:
        if args.gui_password:
            logger.error("Error: --gui-password requires --gui-user")
            sys.exit(1)
        return None
    if not password:
        logger.error("Error: --gui-user requires --gui-password or SYNCTHING_GUI_PASSWORD")
        sys.exit(1)
    register_secret(password)
    try:
        return Credentials(args.gui_user, password)
    except ValueError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)


def add_config_arg(parser):
    parser.add_argument("--config", default=None, help="YAML file overriding resource names, zone, timings")


def add_project_args(parser):
    add_config_arg(parser)
    parser.add_argument("--project", default=None, help="Google Cloud project ID (prompted for when omitted)")
    parser.add_argument("--yes", "-y", action="store_true", help="Skip the confirmation prompt")
    parser.add_argument("--dry-run", action="store_true", help="Print commands without executing")


def add_credential_args(parser):
    parser.add_argument("--gui-user", default=None, help="Syncthing web UI username")
    parser.add_argument(
        "--gui-password",
        default=None,
        help="Syncthing web UI password (default: $SYNCTHING_GUI_PASSWORD)",
    )
