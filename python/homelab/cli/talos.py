#!/usr/bin/env python3
"""
homelab/cli/talos.py

Layer 3: Talos bootstrap, Cilium and node readiness, using the saved
Terraform outputs for node addresses.
"""

from __future__ import annotations

from typing import List, Optional

from homelab.cli.common import make_parser, run
from homelab.deployment.talos import deploy_kubernetes
from homelab.models.config import HomelabConfig


def main(argv: Optional[List[str]] = None) -> None:
    parser = make_parser(
        "homelabctl talos", "Bootstrap the Talos Kubernetes cluster."
    )

    async def _deploy(config: HomelabConfig) -> None:
        await deploy_kubernetes(config)

    run(parser.parse_args(argv), _deploy)


if __name__ == "__main__":
    main()
