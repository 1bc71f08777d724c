"""
Layer ordering, skip flags and failure handling of the master deployment.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from homelab.deployment.pipeline import pipeline_succeeded, run_pipeline
from homelab.errors import PreconditionError, ReadinessTimeout
from homelab.models.config import HomelabConfig
from homelab.models.pipeline import Layer, LayerStatus, PipelineOptions
from homelab.utils import talos as talos_utils
from homelab.utils import terraform as terraform_utils
from homelab.utils.async_command_runner import CommandError

WORK_LAYERS = (Layer.INFRASTRUCTURE, Layer.CONFIGURATION, Layer.KUBERNETES, Layer.GITOPS)


def _recording_layers(ran: List[Layer], fail: Optional[Dict[Layer, Exception]] = None):
    fail = fail or {}

    def make(layer: Layer):
        async def _layer(config: HomelabConfig) -> Any:
            ran.append(layer)
            if layer in fail:
                raise fail[layer]
            return None

        return _layer

    return {layer: make(layer) for layer in WORK_LAYERS}


async def _no_prompt(message: str) -> bool:
    raise AssertionError("Layer 0 prompt shown despite assume_yes")


async def test_all_layers_run_in_order(config: HomelabConfig) -> None:
    ran: List[Layer] = []

    results = await run_pipeline(
        config,
        PipelineOptions(assume_yes=True),
        layers=_recording_layers(ran),
        acknowledge=_no_prompt,
    )

    assert ran == list(WORK_LAYERS)
    assert [r.layer for r in results] == list(Layer)
    assert all(r.status == LayerStatus.COMPLETED for r in results)
    assert pipeline_succeeded(results)


async def test_skip_kubernetes_layer_invokes_no_talosctl(
    config: HomelabConfig, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def forbidden(command: List[str], **kwargs: Any) -> str:
        raise AssertionError(f"talosctl invoked: {command}")

    monkeypatch.setattr(talos_utils, "run_command", forbidden)
    ran: List[Layer] = []
    layers = _recording_layers(ran)
    del layers[Layer.KUBERNETES]

    results = await run_pipeline(
        config,
        PipelineOptions(skip_layers=frozenset({Layer.KUBERNETES}), assume_yes=True),
        layers=layers,
        acknowledge=_no_prompt,
    )

    assert ran == [Layer.INFRASTRUCTURE, Layer.CONFIGURATION, Layer.GITOPS]
    statuses = {r.layer: r.status for r in results}
    assert statuses[Layer.KUBERNETES] == LayerStatus.SKIPPED
    assert statuses[Layer.GITOPS] == LayerStatus.COMPLETED
    assert pipeline_succeeded(results)


async def test_layer0_waits_for_operator(config: HomelabConfig) -> None:
    prompts: List[str] = []

    async def acknowledge(message: str) -> bool:
        prompts.append(message)
        return True

    await run_pipeline(
        config,
        PipelineOptions(skip_layers=frozenset(WORK_LAYERS)),
        layers={},
        acknowledge=acknowledge,
    )

    assert len(prompts) == 1


async def test_readiness_timeout_stops_run_as_retryable(config: HomelabConfig) -> None:
    ran: List[Layer] = []
    layers = _recording_layers(
        ran,
        fail={
            Layer.CONFIGURATION: ReadinessTimeout(
                "Timed out waiting for guests", last_state="unreachable: redis"
            )
        },
    )

    results = await run_pipeline(
        config, PipelineOptions(assume_yes=True), layers=layers, acknowledge=_no_prompt
    )

    assert ran == [Layer.INFRASTRUCTURE, Layer.CONFIGURATION]
    assert [r.layer for r in results] == [
        Layer.PHYSICAL,
        Layer.INFRASTRUCTURE,
        Layer.CONFIGURATION,
    ]
    failed = results[-1]
    assert failed.status == LayerStatus.FAILED
    assert failed.retryable
    assert "unreachable: redis" in (failed.error or "")
    assert not pipeline_succeeded(results)


@pytest.mark.parametrize(
    "error",
    [
        PreconditionError("terraform.auto.tfvars not found"),
        CommandError("terraform exited with return code 1", 1),
    ],
)
async def test_terminal_failures_are_not_retryable(
    config: HomelabConfig, error: Exception
) -> None:
    ran: List[Layer] = []
    layers = _recording_layers(ran, fail={Layer.INFRASTRUCTURE: error})

    results = await run_pipeline(
        config, PipelineOptions(assume_yes=True), layers=layers, acknowledge=_no_prompt
    )

    assert ran == [Layer.INFRASTRUCTURE]
    assert results[-1].status == LayerStatus.FAILED
    assert not results[-1].retryable
    assert results[-1].error == str(error)


async def test_empty_terraform_output_fails_layer(
    config: HomelabConfig, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def silent(command: List[str], **kwargs: Any) -> str:
        return ""

    monkeypatch.setattr(terraform_utils, "run_command", silent)
    config.terraform_dir.mkdir(parents=True)

    async def infrastructure(cfg: HomelabConfig) -> None:
        await terraform_utils.read_terraform_outputs(cfg.terraform_dir)

    ran: List[Layer] = []
    layers = _recording_layers(ran)
    layers[Layer.INFRASTRUCTURE] = infrastructure

    results = await run_pipeline(
        config, PipelineOptions(assume_yes=True), layers=layers, acknowledge=_no_prompt
    )

    assert ran == []
    assert results[-1].layer == Layer.INFRASTRUCTURE
    assert results[-1].status == LayerStatus.FAILED
    assert not results[-1].retryable
    assert "printed nothing" in (results[-1].error or "")


async def test_unexpected_error_is_recorded_as_terminal(config: HomelabConfig) -> None:
    ran: List[Layer] = []
    layers = _recording_layers(ran, fail={Layer.CONFIGURATION: KeyError("talos_ips")})

    results = await run_pipeline(
        config, PipelineOptions(assume_yes=True), layers=layers, acknowledge=_no_prompt
    )

    assert ran == [Layer.INFRASTRUCTURE, Layer.CONFIGURATION]
    assert results[-1].status == LayerStatus.FAILED
    assert not results[-1].retryable
    assert "talos_ips" in (results[-1].error or "")
    assert not pipeline_succeeded(results)
