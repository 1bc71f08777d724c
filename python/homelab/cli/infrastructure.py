#!/usr/bin/env python3
"""
homelab/cli/infrastructure.py

Layer 1 deployment: terraform init/validate/plan/apply, save outputs,
generate the Ansible inventory.
"""

from __future__ import annotations

from typing import List, Optional

from homelab.cli.common import make_parser, run
from homelab.deployment.infrastructure import deploy_infrastructure
from homelab.models.config import HomelabConfig


def main(argv: Optional[List[str]] = None) -> None:
    parser = make_parser(
        "homelabctl infrastructure",
        "Converge the Proxmox infrastructure with Terraform.",
    )

    async def _deploy(config: HomelabConfig) -> None:
        await deploy_infrastructure(config)

    run(parser.parse_args(argv), _deploy)


if __name__ == "__main__":
    main()
