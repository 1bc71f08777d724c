"""
homelab/models/k8s.py

Defines Pydantic models for the slice of Kubernetes state the pipeline reads:
node membership/readiness and the kubectl invocation context.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

from pydantic import BaseModel, Field


class KubeNode(BaseModel):
    """A cluster member as reported by 'kubectl get nodes -o json'."""

    name: str = Field(..., description="Node name (Talos hostname).")
    ready: bool = Field(False, description="True if the Ready condition is 'True'.")

    model_config = {"frozen": True}

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> KubeNode:
        conditions = item.get("status", {}).get("conditions", []) or []
        ready = any(
            c.get("type") == "Ready" and c.get("status") == "True" for c in conditions
        )
        return cls(name=item.get("metadata", {}).get("name", ""), ready=ready)


class NodeSnapshot(BaseModel):
    """All nodes seen by one poll."""

    nodes: List[KubeNode] = Field(default_factory=list)

    @property
    def ready_count(self) -> int:
        return sum(1 for n in self.nodes if n.ready)

    def describe(self) -> str:
        if not self.nodes:
            return "no nodes registered"
        return ", ".join(
            f"{n.name}={'Ready' if n.ready else 'NotReady'}" for n in self.nodes
        )


class KubectlContext(BaseModel):
    """
    Which cluster a kubectl/helm command talks to.

    Attributes:
        kubeconfig: Path exported as KUBECONFIG for the child process.
    """

    kubeconfig: Path

    def env(self) -> Dict[str, str]:
        return {"KUBECONFIG": str(self.kubeconfig)}
