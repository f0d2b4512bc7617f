"""Local SSH keypair management and its registration in project metadata."""

import asyncio
import logging
import os
import tempfile
from contextlib import contextmanager

from syncdock.provisioning import gcp
from syncdock.provisioning.shell import run_shell_cmd

logger = logging.getLogger(__name__)


def format_ssh_key_entry(user, public_key):
    """Build the ``user:key`` line GCE expects in ssh-keys metadata."""
    return f"{user}:{public_key.strip()}"


def read_public_key(keys):
    """Return the public key text for a KeyConfig."""
    with open(keys.public_key_path) as f:
        return f.read().strip()


@contextmanager
def metadata_file(content):
    """Write ``content`` to a temp file for --metadata-from-file; removed on exit."""
    with tempfile.NamedTemporaryFile(mode="w", suffix="_ssh-keys", delete=False) as f:
        f.write(content + "\n")
        tmp_path = f.name
    try:
        yield tmp_path
    finally:
        os.unlink(tmp_path)


def _ssh_keygen_cmd(keys):
    return [
        "ssh-keygen",
        "-t", keys.key_type,
        "-b", str(keys.bits),
        "-f", keys.private_key_path,
        "-N", "",
        "-C", f"{keys.user}@syncdock",
    ]


async def ensure_keypair(keys, project=None, propagation_wait=15, dry_run=False):
    """Create the deployment keypair once and register it project-wide.

    The key is appended to the existing project-wide ssh-keys value, so keys
    registered by other users stay in place. Subsequent runs find the private
    key and skip both generation and the metadata push; the key is assumed to
    still be registered.

    Returns:
        True if a new key was generated, False if an existing one was kept.
        None on failure.
    """
    key_dir = os.path.dirname(keys.private_key_path)
    if not os.path.isdir(key_dir):
        logger.info(f"Creating directory for SSH keys: {key_dir}")
        if not dry_run:
            os.makedirs(key_dir, mode=0o700, exist_ok=True)
            os.chmod(key_dir, 0o700)

    if os.path.isfile(keys.private_key_path):
        logger.info(f"Using existing SSH key at {keys.private_key_path}")
        return False

    logger.info(f"Generating SSH key for deployment at {keys.private_key_path}")
    rc, _, stderr = await run_shell_cmd(_ssh_keygen_cmd(keys), dry_run=dry_run)
    if rc != 0:
        logger.error(f"ssh-keygen failed: {stderr.strip()}")
        return None

    public_key = "ssh-rsa DRY-RUN-KEY" if dry_run else read_public_key(keys)
    entry = format_ssh_key_entry(keys.user, public_key)
    current = "" if dry_run else await gcp.get_project_metadata("ssh-keys", project=project)
    if current is None:
        return None

    logger.info("Adding SSH key to project metadata")
    with metadata_file(merge_key_entry(current, entry)) as path:
        ok = await gcp.add_project_metadata(path, project=project, dry_run=dry_run)
    if not ok:
        return None

    if propagation_wait and not dry_run:
        logger.info("Waiting for SSH key to propagate...")
        await asyncio.sleep(propagation_wait)
    return True


async def apply_instance_key(instance, keys, public_key, project=None, dry_run=False):
    """Re-apply the deployment key to an existing instance's metadata."""
    logger.info("Adding SSH key to instance metadata")
    with metadata_file(format_ssh_key_entry(keys.user, public_key)) as path:
        return await gcp.add_instance_metadata(instance.name, instance.zone, path, project=project, dry_run=dry_run)


def merge_key_entry(ssh_keys_value, entry):
    """Append ``entry`` to an ssh-keys metadata value, keeping every other line."""
    lines = [line for line in ssh_keys_value.splitlines() if line.strip()]
    if entry not in (line.strip() for line in lines):
        lines.append(entry)
    return "\n".join(lines)


def strip_key_entry(ssh_keys_value, entry):
    """Remove every line equal to ``entry`` from an ssh-keys metadata value.

    Returns:
        (remaining_value, removed_count)
    """
    kept, removed = [], 0
    for line in ssh_keys_value.splitlines():
        if line.strip() == entry:
            removed += 1
        elif line.strip():
            kept.append(line)
    return "\n".join(kept), removed


async def revoke_project_ssh_key(keys, project=None, dry_run=False):
    """Remove this deployment's key from project-wide ssh-keys metadata.

    Other users' keys are preserved; the ssh-keys entry is dropped entirely
    when ours was the only one.

    Returns:
        True if the key is no longer registered, False on failure.
    """
    if not os.path.isfile(keys.public_key_path):
        logger.error(f"Public key {keys.public_key_path} not found; cannot tell which entry to remove.")
        return False

    entry = format_ssh_key_entry(keys.user, read_public_key(keys))
    current = await gcp.get_project_metadata("ssh-keys", project=project)
    if current is None:
        return False

    remaining, removed = strip_key_entry(current, entry)
    if removed == 0:
        logger.info("Deployment SSH key is not present in project metadata.")
        return True

    logger.info(f"Removing deployment SSH key from project metadata ({removed} entr{'y' if removed == 1 else 'ies'})")
    if not remaining:
        return await gcp.remove_project_metadata("ssh-keys", project=project, dry_run=dry_run)
    with metadata_file(remaining) as path:
        return await gcp.add_project_metadata(path, project=project, dry_run=dry_run)
