"""
homelab/deployment/pipeline.py

The master deployment:
  0) Physical setup check: the operator confirms PiKVM/Proxmox prerequisites.
  1) Infrastructure: Proxmox preparation, Terraform, outputs, inventory, then
     a bounded wait for the guests to accept connections.
  2) Configuration: Ansible site playbook.
  3) Kubernetes: Talos bootstrap, Cilium, node readiness.
  4) GitOps: Argo CD and the app-of-apps handoff.

Layers run strictly in order. A skipped layer invokes none of its tools. The
first failure stops the run; every layer yields a LayerResult recording its
status, duration and whether a plain re-run may succeed. Errors outside the
homelab and command families are recorded as terminal failures.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from homelab.deployment.configuration import configure_services
from homelab.deployment.gitops import deploy_gitops
from homelab.deployment.infrastructure import run_infrastructure_layer
from homelab.deployment.talos import deploy_kubernetes
from homelab.errors import HomelabError
from homelab.models.config import HomelabConfig
from homelab.models.pipeline import (
    Layer,
    LayerResult,
    LayerStatus,
    PipelineOptions,
)
from homelab.utils.async_command_runner import CommandError
from homelab.utils.log import banner
from homelab.utils.prompt import wait_for_enter

logger = logging.getLogger(__name__)

LayerFn = Callable[[HomelabConfig], Awaitable[Any]]
Acknowledge = Callable[[str], Awaitable[bool]]

LAYER0_CHECKLIST = (
    "PiKVM is connected and accessible",
    "Proxmox VE is running and accessible",
    "Proxmox API token is created",
    "SSH access to Proxmox is configured",
)


def default_layers() -> Dict[Layer, LayerFn]:
    return {
        Layer.INFRASTRUCTURE: run_infrastructure_layer,
        Layer.CONFIGURATION: configure_services,
        Layer.KUBERNETES: deploy_kubernetes,
        Layer.GITOPS: deploy_gitops,
    }


async def physical_check(options: PipelineOptions, acknowledge: Acknowledge) -> None:
    logger.info("Please confirm the following:")
    for item in LAYER0_CHECKLIST:
        logger.info("  - %s", item)
    if options.assume_yes:
        logger.info("--assume-yes given, not waiting for confirmation")
        return
    await acknowledge("Have you completed all Layer 0 prerequisites?")


def _failure(layer: Layer, exc: BaseException, elapsed: float) -> LayerResult:
    retryable = isinstance(exc, HomelabError) and exc.retryable
    message = str(exc) or type(exc).__name__
    last_state = getattr(exc, "last_state", None)
    if last_state:
        message = f"{message} (last observed: {last_state})"
    return LayerResult(
        layer=layer,
        status=LayerStatus.FAILED,
        elapsed=elapsed,
        error=message,
        retryable=retryable,
    )


async def run_pipeline(
    config: HomelabConfig,
    options: PipelineOptions,
    layers: Optional[Mapping[Layer, LayerFn]] = None,
    acknowledge: Acknowledge = wait_for_enter,
) -> List[LayerResult]:
    """
    Run layers 0-4 in order.

    Args:
        config: Deployment configuration passed to every layer.
        options: Skip flags and whether to assume "yes" to prompts.
        layers: Overrides for the layer implementations (Layer 0 is built in).
        acknowledge: Prompt used for the Layer 0 confirmation.

    Returns:
        One LayerResult per layer reached. After a failure no further layers
        are attempted, so the list ends with the failed result.
    """
    impls: Dict[Layer, LayerFn] = default_layers()
    if layers:
        impls.update(layers)

    loop = asyncio.get_running_loop()
    results: List[LayerResult] = []
    logger.info("\n%s", banner("HOMELAB MASTER DEPLOYMENT"))

    for layer in Layer:
        if not options.should_run(layer):
            logger.warning(
                "Skipping Layer %d: %s (--skip-layer%d flag)",
                layer.value,
                layer.title,
                layer.value,
            )
            results.append(LayerResult(layer=layer, status=LayerStatus.SKIPPED))
            continue

        logger.info("=== LAYER %d: %s ===", layer.value, layer.title)
        started = loop.time()
        try:
            if layer == Layer.PHYSICAL:
                await physical_check(options, acknowledge)
            else:
                await impls[layer](config)
        except Exception as exc:
            result = _failure(layer, exc, loop.time() - started)
            results.append(result)
            logger.error("Layer %d failed: %s", layer.value, result.error)
            if not isinstance(exc, (HomelabError, CommandError)):
                logger.debug("Unexpected error in layer %d", layer.value, exc_info=True)
            break

        elapsed = loop.time() - started
        results.append(
            LayerResult(layer=layer, status=LayerStatus.COMPLETED, elapsed=elapsed)
        )
        logger.info("Layer %d complete (%.0fs)", layer.value, elapsed)

    log_summary(results)
    return results


def pipeline_succeeded(results: List[LayerResult]) -> bool:
    return all(r.status != LayerStatus.FAILED for r in results)


def log_summary(results: List[LayerResult]) -> None:
    total = sum(r.elapsed for r in results)
    ok = pipeline_succeeded(results)
    logger.info(
        "\n%s", banner("DEPLOYMENT COMPLETE" if ok else "DEPLOYMENT FAILED")
    )
    for r in results:
        line = f"Layer {r.layer.value}: {r.layer.title} - {r.status.value}"
        if r.status == LayerStatus.COMPLETED:
            line += f" ({r.elapsed:.0f}s)"
        if r.status == LayerStatus.FAILED:
            hint = "retryable, re-run" if r.retryable else "fix the cause, then re-run"
            logger.error("%s: %s [%s]", line, r.error, hint)
        else:
            logger.info(line)
    logger.info("Total time: %.0f seconds (%d minutes)", total, int(total // 60))
