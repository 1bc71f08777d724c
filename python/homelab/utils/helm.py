"""
homelab/utils/helm.py

Helm repository and release commands, run with the cluster's KUBECONFIG.
"""

from __future__ import annotations

import logging

from homelab.models.helm import HelmRelease
from homelab.models.k8s import KubectlContext
from homelab.utils.async_command_runner import run_command

logger = logging.getLogger(__name__)


async def repo_add(name: str, url: str) -> None:
    # --force-update keeps re-runs from failing on an existing alias
    await run_command(
        ["helm", "repo", "add", name, url, "--force-update"], sensitive=False
    )


async def repo_update() -> None:
    await run_command(["helm", "repo", "update"], sensitive=False)


async def install(ctx: KubectlContext, release: HelmRelease) -> str:
    """
    Add the chart repository, refresh indexes and install `release`.

    Install, not upgrade: an existing release of the same name fails the call.
    """
    logger.info("Adding Helm repository %s (%s)", release.repo_name, release.repo_url)
    await repo_add(release.repo_name, release.repo_url)
    await repo_update()
    logger.info(
        "Installing %s %s into %s", release.chart_ref, release.version, release.namespace
    )
    return await run_command(
        release.build_install_args(), env=ctx.env(), sensitive=False
    )
