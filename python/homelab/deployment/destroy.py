"""
Tear down everything Terraform manages (all Talos nodes, Ubuntu VMs and LXC
containers). Generated files (outputs, inventory, Talos artifacts) are left in
place; the next deploy regenerates them.
"""

from __future__ import annotations

import logging

from homelab.errors import PreconditionError
from homelab.models.config import HomelabConfig
from homelab.utils.async_command_runner import require_tools
from homelab.utils.terraform import (
    destroy_terraform,
    init_terraform,
    read_terraform_state,
    state_exists,
)

logger = logging.getLogger(__name__)


async def destroy_infrastructure(config: HomelabConfig) -> bool:
    """
    Run `terraform destroy -auto-approve` if there is anything to destroy.

    Returns:
        True if a destroy ran, False if there was no state or it was empty.

    Raises:
        PreconditionError: If the Terraform directory is missing.
    """
    tf_dir = config.terraform_dir
    if not tf_dir.is_dir():
        raise PreconditionError(f"Terraform directory not found: {tf_dir}")
    require_tools(["terraform"])

    if not state_exists(tf_dir):
        logger.info("No Terraform state found, nothing to destroy")
        return False

    logger.info("Initializing Terraform...")
    await init_terraform(tf_dir, force=True)

    state = await read_terraform_state(tf_dir)
    if state.is_empty():
        logger.info("Terraform state has no resources, nothing to destroy")
        return False

    addresses = state.resource_addresses()
    logger.info("Destroying %d resources...", len(addresses))
    for address in addresses:
        logger.debug("  %s", address)
    await destroy_terraform(tf_dir)
    logger.info("Infrastructure destroyed successfully")
    return True
