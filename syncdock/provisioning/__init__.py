"""Provisioning primitives: gcloud wrappers, SSH transport, keys, retry."""

from syncdock.provisioning.keys import (
    ensure_keypair,
    format_ssh_key_entry,
    revoke_project_ssh_key,
)
from syncdock.provisioning.retry import (
    RetryOutcome,
    RetryPolicy,
    RetryResult,
    render_shell_retry_function,
    retry_with_backoff,
)
from syncdock.provisioning.shell import command_exists, run_shell_cmd
from syncdock.provisioning.ssh import wait_for_ssh
from syncdock.provisioning.ssh_transport import run_ssh, scp_file, ssh_base_args
from syncdock.provisioning.types import VMConnectionInfo

__all__ = [
    "VMConnectionInfo",
    "RetryOutcome",
    "RetryPolicy",
    "RetryResult",
    "retry_with_backoff",
    "render_shell_retry_function",
    "command_exists",
    "run_shell_cmd",
    "wait_for_ssh",
    "run_ssh",
    "scp_file",
    "ssh_base_args",
    "ensure_keypair",
    "format_ssh_key_entry",
    "revoke_project_ssh_key",
]
