"""
homelab/models/pipeline.py

Models describing pipeline layers and the outcome of running each one.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import FrozenSet, Optional

from pydantic import BaseModel, Field


class Layer(IntEnum):
    PHYSICAL = 0
    INFRASTRUCTURE = 1
    CONFIGURATION = 2
    KUBERNETES = 3
    GITOPS = 4

    @property
    def title(self) -> str:
        return {
            Layer.PHYSICAL: "Physical Setup Check",
            Layer.INFRASTRUCTURE: "Infrastructure (Terraform)",
            Layer.CONFIGURATION: "Configuration (Ansible)",
            Layer.KUBERNETES: "Kubernetes (Talos)",
            Layer.GITOPS: "GitOps (Argo CD)",
        }[self]


SKIPPABLE_LAYERS = (
    Layer.INFRASTRUCTURE,
    Layer.CONFIGURATION,
    Layer.KUBERNETES,
    Layer.GITOPS,
)


class LayerStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class LayerResult(BaseModel):
    """
    Outcome of one layer.

    Attributes:
        layer: Which layer ran.
        status: completed, skipped or failed.
        elapsed: Wall-clock seconds spent in the layer.
        error: Failure message when status is failed.
        retryable: True if the failure may clear on a plain re-run
            (e.g. a readiness timeout); False for terminal failures.
    """

    layer: Layer
    status: LayerStatus
    elapsed: float = 0.0
    error: Optional[str] = None
    retryable: bool = False


class PipelineOptions(BaseModel):
    skip_layers: FrozenSet[Layer] = Field(default_factory=frozenset)
    assume_yes: bool = False

    def should_run(self, layer: Layer) -> bool:
        return layer not in self.skip_layers
