"""SSH transport: run commands and copy files to the instance via SSH/SCP."""

import asyncio
import logging

from syncdock.provisioning.shell import format_cmd

logger = logging.getLogger(__name__)

_COMMON_OPTS = [
    "-o", "StrictHostKeyChecking=no",
    "-o", "UserKnownHostsFile=/dev/null",
    "-o", "BatchMode=yes",
    "-o", "ServerAliveInterval=60",
    "-o", "ServerAliveCountMax=5",
]


def ssh_base_args(server, ssh_key, ssh_port=22, connect_timeout=None):
    """Build base SSH arguments."""
    args = ["ssh", *_COMMON_OPTS]
    if connect_timeout:
        args += ["-o", f"ConnectTimeout={connect_timeout}"]
    if ssh_key:
        args += ["-i", ssh_key]
    if ssh_port and ssh_port != 22:
        args += ["-p", str(ssh_port)]
    args.append(server)
    return args


def scp_args(local_path, server, ssh_key, remote_path, ssh_port=22):
    """Build SCP arguments copying one local file to ``server:remote_path``."""
    args = ["scp", *_COMMON_OPTS]
    if ssh_key:
        args += ["-i", ssh_key]
    if ssh_port and ssh_port != 22:
        args += ["-P", str(ssh_port)]
    args += [local_path, f"{server}:{remote_path}"]
    return args


async def scp_file(local_path, server, ssh_key, remote_path, ssh_port=22, timeout=300, dry_run=False):
    """Copy a file to the remote server via SCP.

    Returns:
        (returncode, stdout, stderr) tuple
    """
    args = scp_args(local_path, server, ssh_key, remote_path, ssh_port)
    if dry_run:
        logger.info(f"[dry-run] {format_cmd(args)}")
        return 0, "", ""

    proc = None
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        stdout = stdout_bytes.decode() if stdout_bytes else ""
        stderr = stderr_bytes.decode() if stderr_bytes else ""
        return proc.returncode, stdout, stderr
    except TimeoutError:
        logger.error(f"SCP timed out after {timeout}s: {local_path} -> {server}:{remote_path}")
        proc.kill()
        await proc.wait()
        return 1, "", "timeout"
    except FileNotFoundError:
        logger.error("Error: 'scp' not found. Is it installed and on PATH?")
        return 127, "", "'scp' not found"


async def run_ssh(server, ssh_key, command, ssh_port=22, timeout=3600, log_output=False, connect_timeout=None, dry_run=False):
    """Run ``command`` on the remote server.

    With ``log_output`` each stdout line is logged at INFO and each stderr
    line at WARNING as it arrives; otherwise output is captured.

    Returns:
        (returncode, stdout, stderr) tuple
    """
    args = ssh_base_args(server, ssh_key, ssh_port, connect_timeout=connect_timeout)
    args.append(command)
    if dry_run:
        logger.info(f"[dry-run] {format_cmd(args)}")
        return 0, "", ""

    proc = None
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        if log_output:
            stdout_lines, stderr_lines = [], []

            async def _read_stream(pipe, lines, level):
                async for raw_line in pipe:
                    line = raw_line.decode(errors="replace").rstrip("\n")
                    logger.log(level, line)
                    lines.append(line)

            await asyncio.wait_for(
                asyncio.gather(
                    _read_stream(proc.stdout, stdout_lines, logging.INFO),
                    _read_stream(proc.stderr, stderr_lines, logging.WARNING),
                    proc.wait(),
                ),
                timeout=timeout,
            )
            return proc.returncode, "\n".join(stdout_lines), "\n".join(stderr_lines)

        stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        stdout = stdout_bytes.decode() if stdout_bytes else ""
        stderr = stderr_bytes.decode() if stderr_bytes else ""
        return proc.returncode, stdout, stderr
    except TimeoutError:
        logger.error(f"SSH command timed out after {timeout}s: {command}")
        proc.kill()
        await proc.wait()
        return 1, "", "timeout"
    except FileNotFoundError:
        logger.error("Error: 'ssh' not found. Is it installed and on PATH?")
        return 127, "", "'ssh' not found"
