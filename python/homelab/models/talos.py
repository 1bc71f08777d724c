"""
homelab/models/talos.py

Defines Pydantic models for the Talos bootstrap:
 - TalosNode: a resolved node (hostname, address, role)
 - TalosCluster: the node set plus cluster identity (name, VIP, SANs)
 - TalosArtifacts: where secrets, patches and rendered files live
"""

from __future__ import annotations

from pathlib import Path
from typing import List

from pydantic import BaseModel, Field, model_validator

from homelab.models.config import NodeRole


class TalosNode(BaseModel):
    hostname: str
    address: str
    role: NodeRole

    @property
    def is_control_plane(self) -> bool:
        return self.role == NodeRole.CONTROLPLANE


class TalosCluster(BaseModel):
    """
    A Talos cluster ready to be configured.

    The single control plane node is the bootstrap node and the only address
    used for talosctl endpoints after configuration is pushed.
    """

    name: str
    vip: str
    interface: str = "eth0"
    nodes: List[TalosNode]
    extra_cert_sans: List[str] = Field(default_factory=list)
    allow_scheduling_on_control_planes: bool = True

    @model_validator(mode="after")
    def check_single_control_plane(self) -> TalosCluster:
        if len([n for n in self.nodes if n.is_control_plane]) != 1:
            raise ValueError("A Talos cluster needs exactly one control plane node.")
        return self

    @property
    def endpoint(self) -> str:
        return f"https://{self.vip}:6443"

    @property
    def control_plane(self) -> TalosNode:
        return next(n for n in self.nodes if n.is_control_plane)

    @property
    def workers(self) -> List[TalosNode]:
        return [n for n in self.nodes if not n.is_control_plane]

    def ordered_nodes(self) -> List[TalosNode]:
        """Control plane first, then workers in declaration order."""
        return [self.control_plane] + self.workers

    @property
    def cert_sans(self) -> List[str]:
        sans = [self.vip, self.control_plane.address] + self.extra_cert_sans
        return list(dict.fromkeys(sans))


class TalosArtifacts(BaseModel):
    talos_dir: Path
    patches_dir: Path
    rendered_dir: Path

    @property
    def secrets_file(self) -> Path:
        return self.talos_dir / "secrets.yaml"

    @property
    def talosconfig(self) -> Path:
        return self.rendered_dir / "talosconfig"

    @property
    def kubeconfig(self) -> Path:
        return self.rendered_dir / "kubeconfig"

    def rendered_config(self, node: TalosNode) -> Path:
        return self.rendered_dir / f"{node.hostname}.yaml"
