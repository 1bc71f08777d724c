#!/usr/bin/env python3
"""
homelab/cli/inventory.py

Regenerate ansible/inventory.yml from the saved Terraform outputs
(ansible/terraform_outputs.json), probing Proxmox for guests the outputs miss.
"""

from __future__ import annotations

from typing import List, Optional

from homelab.cli.common import make_parser, run
from homelab.deployment.inventory import generate_inventory
from homelab.models.config import HomelabConfig
from homelab.utils.terraform import load_terraform_outputs


def main(argv: Optional[List[str]] = None) -> None:
    parser = make_parser(
        "homelabctl inventory", "Regenerate the Ansible inventory."
    )
    parser.add_argument(
        "--no-probe",
        action="store_true",
        default=False,
        help="Use only the saved outputs; do not query Proxmox for missing guests.",
    )
    args = parser.parse_args(argv)

    async def _generate(config: HomelabConfig) -> None:
        outputs = await load_terraform_outputs(config.outputs_file)
        await generate_inventory(config, outputs, probe=not args.no_probe)

    run(args, _generate)


if __name__ == "__main__":
    main()
