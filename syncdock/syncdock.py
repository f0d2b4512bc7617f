#!/usr/bin/env python3
"""Syncthing on a GCP free-tier VM: CLI entrypoint."""

import argparse

from syncdock.commands.provision import register_provision_command
from syncdock.commands.render import register_render_command
from syncdock.commands.teardown import register_teardown_command
from syncdock.logging_setup import setup_cli_logging


def main():
    parser = argparse.ArgumentParser(description="Provision and tear down Syncthing on a GCP free-tier VM")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show every gcloud/ssh command line")
    subparsers = parser.add_subparsers(dest="command", required=True)

    register_provision_command(subparsers)
    register_teardown_command(subparsers)
    register_render_command(subparsers)

    args = parser.parse_args()
    setup_cli_logging(verbose=args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
