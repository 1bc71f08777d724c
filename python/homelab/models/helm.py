"""
homelab/models/helm.py

Describes a Helm chart release and renders the 'helm install' argument list.
"""

from __future__ import annotations

from typing import Dict, List

from pydantic import BaseModel, Field


class HelmRelease(BaseModel):
    """
    A pinned chart release.

    Attributes:
        release: Release name.
        repo_name: Local alias for the chart repository.
        repo_url: Chart repository URL.
        chart: Chart name inside the repository.
        version: Exact chart version; releases are never installed unpinned.
        namespace: Target namespace.
        values: Flat `--set key=value` pairs, in insertion order.
    """

    release: str
    repo_name: str
    repo_url: str
    chart: str
    version: str
    namespace: str
    values: Dict[str, str] = Field(default_factory=dict)

    @property
    def chart_ref(self) -> str:
        return f"{self.repo_name}/{self.chart}"

    def build_install_args(self) -> List[str]:
        base = [
            "helm",
            "install",
            self.release,
            self.chart_ref,
            "--version",
            self.version,
            "--namespace",
            self.namespace,
        ]
        for key, value in self.values.items():
            base += ["--set", f"{key}={value}"]
        return base
