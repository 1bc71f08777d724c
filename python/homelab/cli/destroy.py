#!/usr/bin/env python3
"""
homelab/cli/destroy.py

Destroy all Terraform-managed infrastructure after a typed 'yes'.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from homelab.cli.common import make_parser, run
from homelab.deployment.destroy import destroy_infrastructure
from homelab.models.config import HomelabConfig
from homelab.utils.log import banner
from homelab.utils.prompt import ask

logger = logging.getLogger("homelab.cli.destroy")


def main(argv: Optional[List[str]] = None) -> None:
    parser = make_parser(
        "homelabctl destroy",
        "Destroy all VMs and LXC containers managed by Terraform.",
        assume_yes=True,
    )
    args = parser.parse_args(argv)

    async def _destroy(config: HomelabConfig) -> None:
        logger.warning(
            "\n%s",
            banner("DESTROY INFRASTRUCTURE", "This cannot be undone!"),
        )
        logger.warning("All Talos nodes, Ubuntu VMs and LXC containers will be destroyed.")
        if not args.assume_yes:
            if await ask("Type 'yes' to confirm: ") != "yes":
                logger.info("Destruction cancelled.")
                return
        await destroy_infrastructure(config)
        logger.info("Terraform destroy completed")

    run(args, _destroy)


if __name__ == "__main__":
    main()
