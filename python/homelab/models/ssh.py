"""
homelab/models/ssh.py

SSH connection target for the Proxmox host and freshly cloned guests.
Authentication relies on the operator's SSH agent or an identity file on disk.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class SSHTarget(BaseModel):
    """
    Where and how to open an SSH session.

    Attributes:
        user: Remote login user.
        hostname: Remote host name or address.
        port: SSH port.
        identity_file: Optional private key path passed with -i.
        strict_host_keys: If False, host keys are neither checked nor recorded.
            Only used for guests whose keys change on every re-provision.
        connect_timeout: Seconds for the TCP/SSH handshake.
    """

    user: str
    hostname: str
    port: int = Field(default=22, ge=1, le=65535)
    identity_file: Optional[str] = None
    strict_host_keys: bool = True
    connect_timeout: int = 5

    @property
    def destination(self) -> str:
        return f"{self.user}@{self.hostname}"

    def base_options(self) -> List[str]:
        opts = [
            "-o",
            "BatchMode=yes",
            "-o",
            f"ConnectTimeout={self.connect_timeout}",
        ]
        if not self.strict_host_keys:
            opts += [
                "-o",
                "StrictHostKeyChecking=no",
                "-o",
                "UserKnownHostsFile=/dev/null",
                "-o",
                "LogLevel=ERROR",
            ]
        if self.identity_file:
            opts += ["-i", self.identity_file]
        return opts

    def build_ssh_args(self) -> List[str]:
        return ["ssh", "-p", str(self.port)] + self.base_options() + [self.destination]

    def build_scp_args(self, local_path: str, remote_path: str) -> List[str]:
        return (
            ["scp", "-P", str(self.port)]
            + self.base_options()
            + [local_path, f"{self.destination}:{remote_path}"]
        )
