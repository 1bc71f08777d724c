#!/usr/bin/env python3
"""
homelab/cli/gitops.py

Layer 4: install Argo CD and apply the app-of-apps manifest.
"""

from __future__ import annotations

from typing import List, Optional

from homelab.cli.common import make_parser, run
from homelab.deployment.gitops import deploy_gitops
from homelab.models.config import HomelabConfig


def main(argv: Optional[List[str]] = None) -> None:
    parser = make_parser("homelabctl gitops", "Install Argo CD.")

    async def _deploy(config: HomelabConfig) -> None:
        await deploy_gitops(config)

    run(parser.parse_args(argv), _deploy)


if __name__ == "__main__":
    main()
