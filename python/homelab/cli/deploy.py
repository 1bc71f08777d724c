#!/usr/bin/env python3
"""
homelab/cli/deploy.py

Master deployment: runs Layers 0-4 in order.

  homelabctl deploy [--skip-layer1] [--skip-layer2] [--skip-layer3] [--skip-layer4]
                    [--assume-yes] [--config PATH]
"""

from __future__ import annotations

import argparse
from typing import List, Optional

from homelab.cli.common import make_parser, run
from homelab.deployment.pipeline import pipeline_succeeded, run_pipeline
from homelab.models.config import HomelabConfig
from homelab.models.pipeline import SKIPPABLE_LAYERS, PipelineOptions

LAYER_HELP = {
    1: "Skip Layer 1 (Proxmox preparation + Terraform infrastructure)",
    2: "Skip Layer 2 (Ansible configuration)",
    3: "Skip Layer 3 (Talos Kubernetes setup)",
    4: "Skip Layer 4 (GitOps deployment)",
}


def build_parser() -> argparse.ArgumentParser:
    parser = make_parser(
        "homelabctl deploy",
        "Deploy the homelab: Layer 0 check, Terraform, Ansible, Talos, Argo CD.",
        assume_yes=True,
    )
    for layer in SKIPPABLE_LAYERS:
        parser.add_argument(
            f"--skip-layer{layer.value}",
            action="store_true",
            default=False,
            help=LAYER_HELP[layer.value],
        )
    return parser


def options_from_args(args: argparse.Namespace) -> PipelineOptions:
    return PipelineOptions(
        skip_layers=frozenset(
            layer
            for layer in SKIPPABLE_LAYERS
            if getattr(args, f"skip_layer{layer.value}")
        ),
        assume_yes=args.assume_yes,
    )


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    options = options_from_args(args)

    async def _deploy(config: HomelabConfig) -> bool:
        return pipeline_succeeded(await run_pipeline(config, options))

    run(args, _deploy)


if __name__ == "__main__":
    main()
