"""SSH readiness check against a freshly booted instance."""

import asyncio
import logging

from syncdock.provisioning.retry import RetryPolicy, command_not_found, retry_with_backoff
from syncdock.provisioning.ssh_transport import run_ssh

logger = logging.getLogger(__name__)


async def wait_for_ssh(server, ssh_key, ssh_port=22, connect_timeout=10, policy=None, sleep=asyncio.sleep, dry_run=False):
    """Retry a no-op SSH command until the instance accepts our key.

    Returns:
        RetryResult of the connection test.
    """

    async def _probe():
        return await run_ssh(
            server,
            ssh_key,
            "echo 'SSH connection test successful'",
            ssh_port=ssh_port,
            connect_timeout=connect_timeout,
            timeout=connect_timeout + 30,
            dry_run=dry_run,
        )

    result = await retry_with_backoff(
        _probe,
        policy or RetryPolicy(),
        is_retryable=command_not_found,
        sleep=sleep,
        label=f"SSH connection test to {server}",
    )
    if not result.ok:
        logger.error(f"SSH connection to {server} failed: {result.stderr.strip()}")
    return result
