"""Local command execution helpers."""

import asyncio
import logging
import shlex
import shutil

logger = logging.getLogger(__name__)


def format_cmd(command):
    """Render an argument list as a copy-pasteable shell line."""
    return " ".join(shlex.quote(str(part)) for part in command)


def command_exists(name):
    """True if ``name`` resolves to an executable on PATH."""
    return shutil.which(name) is not None


async def run_shell_cmd(command, dry_run=False, timeout=600):
    """Run a command and return (returncode, stdout, stderr).

    Args:
        command: list of command arguments
        dry_run: if True, log the command instead of executing
        timeout: maximum seconds to wait for the command

    Returns:
        (returncode, stdout, stderr) tuple
    """
    if dry_run:
        logger.info(f"[dry-run] {format_cmd(command)}")
        return 0, "", ""

    logger.debug(f"$ {format_cmd(command)}")
    try:
        proc = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        stdout = stdout_bytes.decode() if stdout_bytes else ""
        stderr = stderr_bytes.decode() if stderr_bytes else ""
        return proc.returncode, stdout, stderr
    except TimeoutError:
        logger.error(f"Command timed out after {timeout}s: {format_cmd(command)}")
        proc.kill()
        await proc.wait()
        return 1, "", ""
    except FileNotFoundError:
        logger.error(f"Error: '{command[0]}' not found. Is it installed and on PATH?")
        return 127, "", f"'{command[0]}' not found"
