"""
homelab/utils/k8s.py

Provides utilities to interact with the freshly bootstrapped cluster via
'kubectl': node readiness, namespaces, manifests and rollout waits. Every call
takes a KubectlContext so the generated kubeconfig is used explicitly.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

from homelab.errors import ReadinessTimeout
from homelab.models.k8s import KubectlContext, KubeNode, NodeSnapshot
from homelab.utils.async_command_runner import (
    CommandError,
    run_command,
    run_command_passthrough,
)
from homelab.utils.polling import CheckResult, wait_until

logger = logging.getLogger(__name__)


async def kubectl(ctx: KubectlContext, *args: str) -> str:
    """Run a kubectl command against `ctx` and return stdout."""
    return await run_command(["kubectl", *args], env=ctx.env(), sensitive=False)


async def get_nodes(ctx: KubectlContext) -> NodeSnapshot:
    """
    Read cluster membership via 'kubectl get nodes -o json'.

    Raises:
        CommandError: If kubectl fails (API not reachable yet, bad kubeconfig).
    """
    raw = await kubectl(ctx, "get", "nodes", "-o", "json")
    parsed: Dict[str, Any] = json.loads(raw)
    items: List[Dict[str, Any]] = parsed.get("items", [])
    return NodeSnapshot(nodes=[KubeNode.from_item(item) for item in items])


def evaluate_nodes(
    snapshot: NodeSnapshot, expected: int, require_ready: bool
) -> CheckResult:
    """
    Decide whether `snapshot` satisfies the gate.

    Registration only: at least `expected` nodes are members. With
    `require_ready`, each of them must also report Ready.
    """
    registered = len(snapshot.nodes)
    state = f"{registered}/{expected} registered, {snapshot.ready_count} Ready ({snapshot.describe()})"
    if registered < expected:
        return False, state
    if require_ready and snapshot.ready_count < registered:
        return False, state
    return True, state


async def wait_for_nodes(
    ctx: KubectlContext,
    expected: int,
    *,
    require_ready: bool,
    timeout: float,
    interval: float,
) -> str:
    """
    Block until `expected` nodes are registered (and Ready, if required).

    On timeout the node table is printed for the operator before the
    ReadinessTimeout propagates.

    Returns:
        The final observed state.
    """

    async def _check() -> CheckResult:
        return evaluate_nodes(await get_nodes(ctx), expected, require_ready)

    what = "Ready" if require_ready else "registered"
    try:
        return await wait_until(
            _check,
            description=f"{expected} node(s) to be {what}",
            timeout=timeout,
            interval=interval,
        )
    except ReadinessTimeout as exc:
        logger.error("Nodes failed to become %s. Last state: %s", what, exc.last_state)
        try:
            await run_command_passthrough(["kubectl", "get", "nodes"], env=ctx.env())
        except CommandError as table_err:
            logger.error("Could not list nodes: %s", table_err)
        raise


async def namespace_exists(ctx: KubectlContext, namespace: str) -> bool:
    try:
        await kubectl(ctx, "get", "namespace", namespace)
        return True
    except CommandError:
        return False


async def ensure_namespace(ctx: KubectlContext, namespace: str) -> bool:
    """Create `namespace` if absent. Returns True if it was created."""
    if await namespace_exists(ctx, namespace):
        logger.info("Namespace %s already exists", namespace)
        return False
    await kubectl(ctx, "create", "namespace", namespace)
    logger.info("Namespace %s created", namespace)
    return True


async def apply_manifest(ctx: KubectlContext, source: str, namespace: str = "") -> str:
    """`kubectl apply -f <source>`; `source` may be a path or a URL."""
    args = ["apply"]
    if namespace:
        args += ["-n", namespace]
    return await kubectl(ctx, *args, "-f", source)


async def wait_for_pods(
    ctx: KubectlContext, selector: str, namespace: str, timeout: str
) -> None:
    """`kubectl wait --for=condition=ready pod -l <selector>`; kubectl enforces the timeout."""
    await kubectl(
        ctx,
        "wait",
        "--for=condition=ready",
        "pod",
        "-l",
        selector,
        "-n",
        namespace,
        f"--timeout={timeout}",
    )


async def wait_for_deployment(
    ctx: KubectlContext, name: str, namespace: str, timeout: str
) -> None:
    await kubectl(
        ctx,
        "wait",
        "--for=condition=Available",
        f"deployment/{name}",
        "-n",
        namespace,
        f"--timeout={timeout}",
    )


async def show(ctx: KubectlContext, *args: str) -> None:
    """Print a kubectl listing straight to the terminal."""
    await run_command_passthrough(["kubectl", *args], env=ctx.env())
