"""Shared data types for the provisioning layer."""

from dataclasses import dataclass


@dataclass
class VMConnectionInfo:
    """How to reach the provisioned instance over SSH."""

    host: str
    username: str
    ssh_key: str
    ssh_port: int = 22

    @property
    def address(self) -> str:
        """SSH address string (user@host)."""
        return f"{self.username}@{self.host}" if self.username else self.host
