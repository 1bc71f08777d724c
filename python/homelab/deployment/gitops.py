"""
Layer 4: install Argo CD and hand application lifecycle over to it.
"""

from __future__ import annotations

import logging

from homelab.errors import PreconditionError
from homelab.models.config import HomelabConfig
from homelab.models.k8s import KubectlContext
from homelab.utils import k8s
from homelab.utils.async_command_runner import require_tools
from homelab.utils.log import banner

logger = logging.getLogger(__name__)

ARGOCD_SERVER = "argocd-server"


async def deploy_gitops(config: HomelabConfig) -> bool:
    """
    Create the Argo CD namespace, apply the install manifest, wait for the
    API server, then apply the app-of-apps manifest if the repo has one.

    Returns:
        True if an app-of-apps manifest was applied.

    Raises:
        PreconditionError: No kubeconfig (Layer 3 has not run) or no kubectl.
    """
    logger.info("\n%s", banner("LAYER 4 - GITOPS", "Argo CD"))
    require_tools(["kubectl"])
    if not config.kubeconfig.is_file():
        raise PreconditionError(
            f"Kubeconfig not found: {config.kubeconfig}. Run Layer 3 first."
        )
    ctx = KubectlContext(kubeconfig=config.kubeconfig)
    opts = config.gitops

    await k8s.ensure_namespace(ctx, opts.namespace)
    logger.info("Applying Argo CD manifest %s", opts.manifest_url)
    await k8s.apply_manifest(ctx, opts.manifest_url, namespace=opts.namespace)

    logger.info("Waiting for %s to become available...", ARGOCD_SERVER)
    await k8s.wait_for_deployment(ctx, ARGOCD_SERVER, opts.namespace, opts.ready_timeout)

    applied = False
    app_of_apps = config.gitops_dir / opts.app_of_apps
    if app_of_apps.is_file():
        logger.info("Applying %s", app_of_apps)
        await k8s.apply_manifest(ctx, str(app_of_apps))
        applied = True
    else:
        logger.warning("%s not found, skipping app-of-apps", app_of_apps)

    await k8s.show(ctx, "get", "pods", "-n", opts.namespace)
    logger.info("Layer 4 GitOps deployment complete")
    return applied
