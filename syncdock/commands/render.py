"""Render command: print generated artifacts without touching any resource."""

import sys

from syncdock.commands import add_config_arg, add_credential_args, load_config_or_exit, resolve_credentials
from syncdock.deploy.bootstrap import render_bootstrap_script
from syncdock.deploy.compose import generate_compose, render_env_file, render_health_check

ARTIFACTS = ("script", "compose", "env", "healthcheck")


def handle_render(args):
    """Write the requested artifact to stdout."""
    config = load_config_or_exit(args.config)
    credentials = resolve_credentials(args)

    if args.artifact == "script":
        content = render_bootstrap_script(config, args.ip, credentials)
    elif args.artifact == "compose":
        content = generate_compose(config.service, credentials)
    elif args.artifact == "env":
        content = render_env_file(credentials)
    else:
        content = render_health_check(config.service)
    sys.stdout.write(content)


def register_render_command(subparsers):
    """Register the render subcommand."""
    parser = subparsers.add_parser("render", help="Print the bootstrap script or service files")
    parser.add_argument("artifact", choices=ARTIFACTS, help="Which artifact to print")
    parser.add_argument("--ip", default="203.0.113.10", help="External IP shown in the script (default: 203.0.113.10)")
    add_config_arg(parser)
    add_credential_args(parser)
    parser.set_defaults(func=handle_render)
