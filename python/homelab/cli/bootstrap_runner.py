#!/usr/bin/env python3
"""
homelab/cli/bootstrap_runner.py

Layer 0: create the GitHub Actions self-hosted runner VM on Proxmox.
Requires GITHUB_TOKEN and GITHUB_REPO.
"""

from __future__ import annotations

from typing import List, Optional

from homelab.cli.common import make_parser, run
from homelab.deployment.runner import bootstrap_runner
from homelab.models.config import HomelabConfig
from homelab.utils.prompt import always_yes, confirm_yes


def main(argv: Optional[List[str]] = None) -> None:
    parser = make_parser(
        "homelabctl bootstrap_runner",
        "Bootstrap the GitHub Actions self-hosted runner VM.",
        assume_yes=True,
    )
    args = parser.parse_args(argv)
    confirm = always_yes if args.assume_yes else confirm_yes

    async def _bootstrap(config: HomelabConfig) -> None:
        await bootstrap_runner(config, confirm)

    run(args, _bootstrap)


if __name__ == "__main__":
    main()
