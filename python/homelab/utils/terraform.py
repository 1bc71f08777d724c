"""
homelab/utils/terraform.py

Implements Terraform commands (init, validate, plan, apply, output, show,
destroy), plus helpers for building command arrays and summarising a plan.

Exports the following primary functions:
    - init_terraform
    - validate_terraform
    - plan_terraform / summarize_plan
    - apply_terraform
    - read_terraform_outputs / save_terraform_outputs / load_terraform_outputs
    - read_terraform_state
    - destroy_terraform
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from homelab.errors import PreconditionError
from homelab.models.terraform import TerraformOutputs, TerraformState
from homelab.utils.async_command_runner import (
    CommandError,
    run_command,
    run_command_passthrough,
)
from homelab.utils.files import atomic_write_text, read_text

logger = logging.getLogger(__name__)

PLAN_FILE = "tfplan"


def _proxmox_api_parser(stderr: str) -> Optional[str]:
    """Parse stderr for Proxmox API authentication errors.

    Args:
        stderr (str): The standard error output from Terraform.

    Returns:
        Optional[str]: A short user-friendly message if the API rejected the
            credentials, otherwise None.
    """
    low = stderr.lower()
    if "401 authentication failure" in low or "permission check failed" in low:
        return (
            "Proxmox API rejected the credentials. Check proxmox_api_url and the "
            "API token in terraform.auto.tfvars."
        )
    return None


def _make_base_command(action: str) -> List[str]:
    """Builds the initial Terraform command, adding per-action flags.

    Args:
        action: "init", "validate", "plan", "destroy", "output" or "show".
            apply_terraform builds its own argv since it may apply a saved plan.

    Returns:
        A list of command tokens, e.g. ["terraform","destroy","-no-color","-auto-approve"].
    """
    base = ["terraform", action, "-no-color"]

    json_flags = ["-json"] if action in ("show", "output") else []
    approve_flags = ["-auto-approve"] if action == "destroy" else []
    plan_flags = ["-input=false", f"-out={PLAN_FILE}"] if action == "plan" else []
    init_flags = ["-input=false"] if action == "init" else []

    return base + json_flags + approve_flags + plan_flags + init_flags


def _check_dir(terraform_dir: Path) -> str:
    if not terraform_dir.is_dir():
        raise PreconditionError(f"Terraform directory not found: {terraform_dir}")
    return str(terraform_dir)


async def init_terraform(terraform_dir: Path, force: bool = False) -> bool:
    """Run 'terraform init' unless the working directory is already initialised.

    Args:
        terraform_dir: Root module directory.
        force: Run init even if '.terraform/' exists.

    Returns:
        True if init ran, False if it was skipped.
    """
    cwd = _check_dir(terraform_dir)
    if not force and (terraform_dir / ".terraform").is_dir():
        logger.warning(".terraform directory already exists, skipping initialization")
        return False
    await run_command_passthrough(_make_base_command("init"), cwd=cwd)
    return True


async def validate_terraform(terraform_dir: Path) -> str:
    """Run 'terraform validate' and return its output."""
    return await run_command(
        _make_base_command("validate"),
        cwd=_check_dir(terraform_dir),
        sensitive=False,
    )


async def plan_terraform(terraform_dir: Path) -> str:
    """Run 'terraform plan', saving the plan to `tfplan`, and return the plan text."""
    return await run_command(
        _make_base_command("plan"),
        cwd=_check_dir(terraform_dir),
        sensitive=False,
        error_parser=_proxmox_api_parser,
    )


async def apply_terraform(terraform_dir: Path, use_plan: bool = True) -> None:
    """Run 'terraform apply' with progress output on the terminal.

    Args:
        terraform_dir: Root module directory.
        use_plan: Apply the saved `tfplan` (which needs no approval) when it
            exists; otherwise apply with -auto-approve.
    """
    cwd = _check_dir(terraform_dir)
    cmd = ["terraform", "apply", "-no-color", "-input=false"]
    if use_plan and (terraform_dir / PLAN_FILE).is_file():
        cmd.append(PLAN_FILE)
    else:
        cmd.append("-auto-approve")
    await run_command_passthrough(cmd, cwd=cwd)


async def destroy_terraform(terraform_dir: Path) -> None:
    """Run 'terraform destroy -auto-approve' with progress output on the terminal."""
    await run_command_passthrough(
        _make_base_command("destroy"), cwd=_check_dir(terraform_dir)
    )


async def read_terraform_outputs(terraform_dir: Path) -> TerraformOutputs:
    """Run 'terraform output -json' and parse it.

    Raises:
        CommandError: If terraform printed nothing.
    """
    output = await run_command(
        _make_base_command("output"), cwd=_check_dir(terraform_dir)
    )
    if not output:
        raise CommandError("terraform output -json printed nothing")
    return TerraformOutputs.model_validate_json(output)


async def read_terraform_state(terraform_dir: Path) -> TerraformState:
    """Run 'terraform show -json' and parse the state.

    Raises:
        CommandError: If terraform printed nothing.
    """
    output = await run_command(
        _make_base_command("show"), cwd=_check_dir(terraform_dir)
    )
    if not output:
        raise CommandError("terraform show -json printed nothing")
    return TerraformState.model_validate_json(output)


async def save_terraform_outputs(outputs: TerraformOutputs, path: Path) -> Path:
    """Persist outputs as JSON for later stages. The file is replaced wholesale."""
    content = json.dumps(outputs.model_dump(), indent=2) + "\n"
    return await atomic_write_text(path, content, mode=0o600)


async def load_terraform_outputs(path: Path) -> TerraformOutputs:
    """Load a previously saved outputs file.

    Raises:
        PreconditionError: If the file does not exist (Layer 1 has not run).
    """
    if not path.is_file():
        raise PreconditionError(
            f"Terraform outputs file not found: {path}. Run Layer 1 (terraform apply) first."
        )
    return TerraformOutputs.model_validate_json(await read_text(path))


def state_exists(terraform_dir: Path) -> bool:
    """True if a local or legacy-backend state file exists."""
    return (terraform_dir / "terraform.tfstate").is_file() or (
        terraform_dir / ".terraform" / "terraform.tfstate"
    ).is_file()


def remove_plan_file(terraform_dir: Path) -> bool:
    """Remove the transient plan file. Returns True if one was removed."""
    plan = terraform_dir / PLAN_FILE
    if plan.is_file():
        plan.unlink()
        return True
    return False


class PlanSummary(BaseModel):
    """
    What a plan is about to do.

    Attributes:
        vms: Addresses of proxmox_vm_qemu resources to be created.
        containers: Addresses of proxmox_lxc resources to be created.
        add / change / destroy: Totals from the 'Plan:' line.
    """

    vms: List[str] = Field(default_factory=list)
    containers: List[str] = Field(default_factory=list)
    add: int = 0
    change: int = 0
    destroy: int = 0


_CREATE_RE = re.compile(r"#\s+(?P<address>\S+)\s+will be created")
_PLAN_LINE_RE = re.compile(
    r"Plan:\s+(?P<add>\d+)\s+to add,\s+(?P<change>\d+)\s+to change,\s+(?P<destroy>\d+)\s+to destroy"
)


def summarize_plan(plan_output: str) -> PlanSummary:
    """Extract the resources to be created and the totals from plan text."""
    created = [m.group("address") for m in _CREATE_RE.finditer(plan_output)]
    totals: Dict[str, int] = {"add": 0, "change": 0, "destroy": 0}
    match = _PLAN_LINE_RE.search(plan_output)
    if match:
        totals = {k: int(v) for k, v in match.groupdict().items()}
    return PlanSummary(
        vms=[a for a in created if "proxmox_vm_qemu" in a],
        containers=[a for a in created if "proxmox_lxc" in a],
        **totals,
    )
