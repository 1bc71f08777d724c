"""
Layer 2: run the Ansible site playbook against the generated inventory.
"""

from __future__ import annotations

import logging

from homelab.errors import PreconditionError
from homelab.models.config import HomelabConfig
from homelab.utils.async_command_runner import require_tools, run_command_passthrough
from homelab.utils.log import banner

logger = logging.getLogger(__name__)

SITE_PLAYBOOK = "site.yaml"


async def configure_services(config: HomelabConfig) -> bool:
    """
    Run `ansible-playbook -i inventory.yml site.yaml` from the ansible directory.

    Returns:
        True if the playbook ran, False if there was no playbook to run.

    Raises:
        PreconditionError: If the inventory has not been generated or
            ansible-playbook is missing.
        CommandError: If the playbook fails.
    """
    logger.info("\n%s", banner("LAYER 2 - CONFIGURATION", "Ansible"))
    playbook = config.ansible_dir / SITE_PLAYBOOK
    if not playbook.is_file():
        logger.warning("Ansible %s not found in %s, skipping Layer 2", SITE_PLAYBOOK, config.ansible_dir)
        return False

    if not config.inventory_file.is_file():
        raise PreconditionError(
            f"Inventory not found: {config.inventory_file}. Run Layer 1 first."
        )
    require_tools(["ansible-playbook"])

    logger.info("Running Ansible playbook %s...", playbook)
    await run_command_passthrough(
        [
            "ansible-playbook",
            "-i",
            str(config.inventory_file),
            str(playbook),
        ],
        cwd=str(config.ansible_dir),
        env={"ANSIBLE_HOST_KEY_CHECKING": "False"},
    )
    logger.info("Layer 2 configuration complete")
    return True
