"""
Builds the Ansible inventory from the Terraform outputs.

Addresses come from the `talos_ips`, `vm_ips` and `lxc_ips` outputs
(hostname -> address). Guests the outputs do not cover are probed live on the
Proxmox host: VMs through the QEMU guest agent, containers through
`pct exec ... ip addr`. If any declared host is still without an address,
generation fails and nothing is written.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from homelab.errors import InventoryError
from homelab.models.config import GuestSpec, HomelabConfig
from homelab.models.inventory import (
    LXC_CONTAINERS,
    TALOS_CONTROL_PLANE,
    TALOS_WORKERS,
    UBUNTU_VMS,
    Inventory,
    InventoryGroup,
    InventoryHost,
)
from homelab.models.terraform import TerraformOutputs
from homelab.utils.files import atomic_write_text
from homelab.utils.proxmox import (
    list_containers,
    list_vms,
    probe_container_address,
    probe_vm_address,
    proxmox_target,
)

logger = logging.getLogger(__name__)

TALOS_OUTPUT = "talos_ips"
VM_OUTPUT = "vm_ips"
LXC_OUTPUT = "lxc_ips"

TALOS_USER = "root"


def addresses_from_outputs(outputs: TerraformOutputs) -> Dict[str, str]:
    """Merge the three address outputs into one hostname -> address map."""
    merged: Dict[str, str] = {}
    for name in (TALOS_OUTPUT, VM_OUTPUT, LXC_OUTPUT):
        merged.update(outputs.get_address_map(name))
    return merged


def declared_hosts(config: HomelabConfig) -> List[str]:
    topo = config.topology
    return (
        [n.hostname for n in topo.talos_nodes]
        + [g.hostname for g in topo.vms]
        + [g.hostname for g in topo.containers]
    )


def missing_hosts(config: HomelabConfig, addresses: Dict[str, str]) -> List[str]:
    return [h for h in declared_hosts(config) if not addresses.get(h)]


def _find_service_host(guests: List[GuestSpec], service: str) -> Optional[str]:
    return next((g.hostname for g in guests if service in g.services), None)


def build_inventory(config: HomelabConfig, addresses: Dict[str, str]) -> Inventory:
    """
    Produce one inventory entry per declared host, address copied verbatim.

    Raises:
        InventoryError: If any declared host has no address.
    """
    missing = missing_hosts(config, addresses)
    if missing:
        raise InventoryError(
            "No address found for: "
            + ", ".join(missing)
            + ". Check the talos_ips/vm_ips/lxc_ips Terraform outputs and that the "
            "guests are running."
        )

    topo = config.topology
    net = config.network

    def _guest_group(guests: List[GuestSpec]) -> InventoryGroup:
        return InventoryGroup(
            hosts={
                g.hostname: InventoryHost(
                    ansible_host=addresses[g.hostname],
                    ansible_user=g.user,
                    services=list(g.services),
                )
                for g in guests
            }
        )

    groups = {
        TALOS_CONTROL_PLANE: InventoryGroup(
            hosts={
                topo.control_plane.hostname: InventoryHost(
                    ansible_host=addresses[topo.control_plane.hostname],
                    ansible_user=TALOS_USER,
                    services=["kubernetes-control-plane"],
                )
            }
        ),
        TALOS_WORKERS: InventoryGroup(
            hosts={
                n.hostname: InventoryHost(
                    ansible_host=addresses[n.hostname],
                    ansible_user=TALOS_USER,
                    services=["kubernetes-worker"],
                )
                for n in topo.workers
            }
        ),
        UBUNTU_VMS: _guest_group(topo.vms),
        LXC_CONTAINERS: _guest_group(topo.containers),
    }

    nfs_host = _find_service_host(topo.vms + topo.containers, "nfs-server")
    variables = {
        "ansible_python_interpreter": "/usr/bin/python3",
        "network_cidr": net.cidr,
        "network_gateway": net.gateway,
        "nfs_server_ip": addresses[nfs_host] if nfs_host else "",
        "nfs_export_path": net.nfs_export_path,
        "postgres_db": net.postgres_db,
        "postgres_user": net.postgres_user,
        "redis_port": net.redis_port,
        "jellyfin_data_path": net.jellyfin_data_path,
    }
    return Inventory(groups=groups, vars=variables)


async def probe_missing_guests(
    config: HomelabConfig, missing: List[str]
) -> Dict[str, str]:
    """
    Ask Proxmox for the live addresses of the missing VMs/containers.

    Talos nodes are not probed: their addresses must come from the outputs.
    """
    topo = config.topology
    vms = [g for g in topo.vms if g.hostname in missing]
    containers = [g for g in topo.containers if g.hostname in missing]
    if not vms and not containers:
        return {}

    target = proxmox_target(config.proxmox)
    cidr = config.network.cidr
    found: Dict[str, str] = {}

    vm_ids = await list_vms(target) if any(g.vmid is None for g in vms) else {}
    for guest in vms:
        vmid = guest.vmid if guest.vmid is not None else vm_ids.get(guest.hostname)
        if vmid is None:
            logger.warning("VM %s not found on Proxmox", guest.hostname)
            continue
        address = await probe_vm_address(target, vmid, cidr)
        if address:
            found[guest.hostname] = address

    ct_ids = (
        await list_containers(target) if any(g.vmid is None for g in containers) else {}
    )
    for guest in containers:
        vmid = guest.vmid if guest.vmid is not None else ct_ids.get(guest.hostname)
        if vmid is None:
            logger.warning("Container %s not found on Proxmox", guest.hostname)
            continue
        address = await probe_container_address(target, vmid, cidr)
        if address:
            found[guest.hostname] = address

    return found


async def generate_inventory(
    config: HomelabConfig, outputs: TerraformOutputs, probe: bool = True
) -> Inventory:
    """
    Resolve every declared host's address and write `ansible/inventory.yml`.

    Args:
        config: Deployment configuration (topology, paths, network vars).
        outputs: Terraform outputs from the latest apply.
        probe: Query Proxmox for guests missing from the outputs.

    Returns:
        The inventory that was written.

    Raises:
        InventoryError: If an address is still missing; no file is written.
    """
    logger.info("Generating Ansible inventory...")
    addresses = addresses_from_outputs(outputs)
    missing = missing_hosts(config, addresses)
    if missing and probe:
        logger.info("Probing Proxmox for: %s", ", ".join(missing))
        addresses.update(await probe_missing_guests(config, missing))

    inventory = build_inventory(config, addresses)
    path = await atomic_write_text(config.inventory_file, inventory.to_yaml())
    logger.info("Ansible inventory written to %s (%d hosts)", path, inventory.host_count())
    for group, body in inventory.groups.items():
        logger.info(
            "  %s: %s",
            group,
            ", ".join(f"{h}={e.ansible_host}" for h, e in body.hosts.items()),
        )
    return inventory
