"""
Layer 1: Proxmox preparation and Terraform convergence.

prepare_proxmox:
  1) Verify SSH access to the Proxmox host.
  2) Ensure the Talos ISO is in the ISO store (download if absent).
  3) Ensure the LXC template is cached (pveam).
  4) Require the Ubuntu VM template (fatal if missing; it is built manually or
     by the Layer 0 runner bootstrap).
  5) Verify all of the above.

deploy_infrastructure:
  1) Preconditions: terraform on PATH, terraform.auto.tfvars with proxmox_api_url.
  2) init (skipped when already initialised), validate, plan to `tfplan`.
  3) Log a summary of what the plan creates, then apply the saved plan.
  4) Read `terraform output -json` and persist it for later stages.
  5) Generate the Ansible inventory from those outputs.

Any Terraform failure aborts. The plan file is removed on the way out whether
or not the run succeeded; nothing else is reverted.
"""

from __future__ import annotations

import logging

from homelab.deployment.inventory import generate_inventory
from homelab.errors import PreconditionError
from homelab.models.config import HomelabConfig
from homelab.models.inventory import (
    LXC_CONTAINERS,
    UBUNTU_VMS,
    Inventory,
    InventoryGroup,
)
from homelab.utils.async_command_runner import require_tools
from homelab.utils.log import banner
from homelab.utils.polling import wait_for_tcp_ports
from homelab.utils.proxmox import (
    check_ssh_access,
    ensure_lxc_template,
    ensure_talos_iso,
    proxmox_target,
    require_vm_template,
    verify_assets,
)
from homelab.utils.terraform import (
    apply_terraform,
    init_terraform,
    plan_terraform,
    read_terraform_outputs,
    remove_plan_file,
    save_terraform_outputs,
    summarize_plan,
    validate_terraform,
)

logger = logging.getLogger(__name__)

TFVARS_FILE = "terraform.auto.tfvars"


async def prepare_proxmox(config: HomelabConfig) -> None:
    logger.info("\n%s", banner("LAYER 1 - PROXMOX PREPARATION"))
    logger.info("Proxmox host: %s, node: %s", config.proxmox.host, config.proxmox.node)
    require_tools(["ssh"])

    target = proxmox_target(config.proxmox)
    await check_ssh_access(target)
    await ensure_talos_iso(target, config)
    await ensure_lxc_template(target, config)
    await require_vm_template(target, config.assets.vm_template_name)
    await verify_assets(target, config)
    logger.info("Layer 1 preparation completed")


def check_terraform_prerequisites(config: HomelabConfig) -> None:
    """
    Raises:
        PreconditionError: Missing terraform binary, tfvars file or API URL.
    """
    require_tools(["terraform"])
    tfvars = config.terraform_dir / TFVARS_FILE
    if not tfvars.is_file():
        raise PreconditionError(f"{TFVARS_FILE} not found in {config.terraform_dir}")
    if "proxmox_api_url" not in tfvars.read_text(encoding="utf-8"):
        raise PreconditionError(f"Proxmox API URL not configured in {tfvars}")


async def deploy_infrastructure(config: HomelabConfig) -> Inventory:
    """
    Converge the Proxmox resources and hand their addresses to later stages.

    Returns:
        The generated inventory. The raw outputs are written to
        `config.outputs_file`.
    """
    logger.info("\n%s", banner("LAYER 1 - INFRASTRUCTURE DEPLOYMENT"))
    check_terraform_prerequisites(config)
    tf_dir = config.terraform_dir

    try:
        if await init_terraform(tf_dir):
            logger.info("Terraform initialized")
        await validate_terraform(tf_dir)
        logger.info("Terraform configuration is valid")

        plan_text = await plan_terraform(tf_dir)
        summary = summarize_plan(plan_text)
        logger.warning("Terraform deployment plan:")
        if summary.vms:
            logger.warning("  Virtual machines:")
            for address in summary.vms:
                logger.warning("    - %s", address)
        if summary.containers:
            logger.warning("  LXC containers:")
            for address in summary.containers:
                logger.warning("    - %s", address)
        logger.info(
            "Plan summary: %d to add, %d to change, %d to destroy",
            summary.add,
            summary.change,
            summary.destroy,
        )

        await apply_terraform(tf_dir)
        logger.info("Infrastructure deployed")
    finally:
        if remove_plan_file(tf_dir):
            logger.info("Cleaned up temporary plan file")

    outputs = await read_terraform_outputs(tf_dir)
    logger.info("Terraform outputs: %s", ", ".join(outputs.names()) or "(none)")
    path = await save_terraform_outputs(outputs, config.outputs_file)
    logger.info("Outputs saved to %s", path)

    return await generate_inventory(config, outputs)


async def wait_for_guests(config: HomelabConfig, inventory: Inventory) -> None:
    """Wait for SSH on every Ubuntu VM and LXC container in the inventory."""
    targets = {
        host: (entry.ansible_host, 22)
        for group in (UBUNTU_VMS, LXC_CONTAINERS)
        for host, entry in inventory.groups.get(group, InventoryGroup()).hosts.items()
    }
    if not targets:
        return
    logger.info("Waiting for %d guest(s) to accept SSH connections...", len(targets))
    await wait_for_tcp_ports(targets, timeout=config.network.guest_ready_timeout)
    logger.info("All guests are reachable")


async def run_infrastructure_layer(config: HomelabConfig) -> Inventory:
    """Layer 1 as the pipeline runs it: prepare, converge, wait for guests."""
    await prepare_proxmox(config)
    inventory = await deploy_infrastructure(config)
    await wait_for_guests(config, inventory)
    return inventory
