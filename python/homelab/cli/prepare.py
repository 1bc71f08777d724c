#!/usr/bin/env python3
"""
homelab/cli/prepare.py

Layer 1 preparation only: Talos ISO, LXC template and VM template checks on
the Proxmox host.
"""

from __future__ import annotations

from typing import List, Optional

from homelab.cli.common import make_parser, run
from homelab.deployment.infrastructure import prepare_proxmox


def main(argv: Optional[List[str]] = None) -> None:
    parser = make_parser(
        "homelabctl prepare", "Prepare the Proxmox host for Layer 1."
    )
    run(parser.parse_args(argv), prepare_proxmox)


if __name__ == "__main__":
    main()
