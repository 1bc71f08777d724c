"""
homelab/utils/proxmox.py

Helpers that drive the Proxmox host over SSH: asset checks and downloads for
Layer 1 preparation, VM/container id lookups, and live address probes through
the QEMU guest agent (VMs) or `pct exec` (LXC containers).
"""

from __future__ import annotations

import ipaddress
import json
import logging
import re
import shlex
from typing import Any, Dict, List, Optional

from homelab.errors import PreconditionError
from homelab.models.config import HomelabConfig, ProxmoxSettings
from homelab.models.ssh import SSHTarget
from homelab.utils.async_command_runner import CommandError
from homelab.utils.ssh import (
    run_ssh_command,
    run_ssh_script,
    run_ssh_shell,
    ssh_reachable,
)

logger = logging.getLogger(__name__)

TALOS_RELEASES_URL = "https://github.com/siderolabs/talos/releases/download"

_INET_RE = re.compile(r"inet\s+(\d{1,3}(?:\.\d{1,3}){3})")


def proxmox_target(settings: ProxmoxSettings) -> SSHTarget:
    return SSHTarget(user=settings.user, hostname=settings.host, port=settings.ssh_port)


async def check_ssh_access(target: SSHTarget) -> None:
    """Fail with operator guidance if a BatchMode login to Proxmox is refused."""
    logger.info("Checking SSH access to Proxmox (%s)...", target.destination)
    if not await ssh_reachable(target):
        raise PreconditionError(
            f"Cannot SSH to Proxmox server {target.destination} on port {target.port}. "
            f"Ensure the key is installed (ssh-copy-id {target.destination}), "
            "the host is reachable and the SSH port is correct."
        )
    logger.info("SSH access verified")


async def remote_file_exists(target: SSHTarget, path: str) -> bool:
    out = await run_ssh_shell(
        target, f"test -f {shlex.quote(path)} && echo yes || echo no", retries=3
    )
    return out.strip() == "yes"


def parse_id_list(listing: str) -> Dict[str, int]:
    """
    Parse `qm list` / `pct list` output into name -> id.

    `qm list` prints VMID first and NAME second; `pct list` prints VMID,
    Status, optional Lock and Name last. The id is the first column and the
    name is taken as the second column for qm and the last for pct, so both
    layouts resolve correctly.
    """
    result: Dict[str, int] = {}
    lines = listing.strip().splitlines()
    if not lines:
        return result
    header = lines[0].split()
    name_last = bool(header) and header[-1].lower() == "name"
    for line in lines[1:]:
        cols = line.split()
        if len(cols) < 2 or not cols[0].isdigit():
            continue
        name = cols[-1] if name_last else cols[1]
        result[name] = int(cols[0])
    return result


async def list_vms(target: SSHTarget) -> Dict[str, int]:
    return parse_id_list(await run_ssh_command(target, ["qm", "list"]))


async def list_containers(target: SSHTarget) -> Dict[str, int]:
    return parse_id_list(await run_ssh_command(target, ["pct", "list"]))


async def ensure_talos_iso(target: SSHTarget, config: HomelabConfig) -> bool:
    """
    Download the Talos ISO into the ISO store unless it is already there.

    Returns:
        True if a download happened.
    """
    assets = config.assets
    iso_path = f"{assets.iso_dir}/{assets.talos_iso_name}"
    if await remote_file_exists(target, iso_path):
        logger.info("Talos ISO already exists, skipping download")
        return False

    url = f"{TALOS_RELEASES_URL}/{config.talos.version}/{assets.talos_iso_name}"
    logger.info("Downloading Talos %s ISO to Proxmox...", config.talos.version)
    await run_ssh_script(
        target,
        f"""
        cd {shlex.quote(assets.iso_dir)}
        wget -q --show-progress -O {shlex.quote(assets.talos_iso_name)} {shlex.quote(url)}
        """,
    )
    logger.info("Talos ISO uploaded successfully")
    return True


async def ensure_lxc_template(target: SSHTarget, config: HomelabConfig) -> bool:
    """
    Cache the LXC template via `pveam` unless it is already present.

    Returns:
        True if a download happened.
    """
    assets = config.assets
    cached = f"{assets.lxc_cache_dir}/{assets.lxc_template}"
    if await remote_file_exists(target, cached):
        logger.info("LXC template %s already exists, skipping download", assets.lxc_template)
        return False

    logger.info("Downloading LXC template %s...", assets.lxc_template)
    await run_ssh_script(
        target,
        f"""
        pveam update
        pveam download {shlex.quote(assets.lxc_template_storage)} {shlex.quote(assets.lxc_template)}
        """,
    )
    logger.info("LXC template downloaded successfully")
    return True


async def vm_template_exists(target: SSHTarget, name: str) -> bool:
    return name in await list_vms(target)


async def require_vm_template(target: SSHTarget, name: str) -> None:
    logger.info("Checking %s VM template...", name)
    if not await vm_template_exists(target, name):
        raise PreconditionError(
            f"{name} VM template not found on Proxmox. Create an Ubuntu cloud-init "
            "template with that name before running Layer 1 (or run bootstrap_runner, "
            "which can build one)."
        )
    logger.info("%s VM template exists", name)


async def verify_assets(target: SSHTarget, config: HomelabConfig) -> None:
    """Final listing of the prepared assets; any missing one fails the call."""
    assets = config.assets
    logger.info("Verifying setup...")
    for path in (
        f"{assets.iso_dir}/{assets.talos_iso_name}",
        f"{assets.lxc_cache_dir}/{assets.lxc_template}",
    ):
        listing = await run_ssh_command(target, ["ls", "-lh", path])
        logger.info("  %s", listing)
    await require_vm_template(target, assets.vm_template_name)
    logger.info("Verification complete")


def address_in_network(address: str, cidr: str) -> bool:
    try:
        return ipaddress.ip_address(address) in ipaddress.ip_network(cidr, strict=False)
    except ValueError:
        return False


def parse_guest_agent_addresses(payload: str, cidr: str) -> List[str]:
    """
    Extract IPv4 addresses inside `cidr` from `qm guest cmd <id>
    network-get-interfaces` JSON, in interface order.
    """
    try:
        interfaces: Any = json.loads(payload)
    except json.JSONDecodeError:
        return []
    if isinstance(interfaces, dict):
        interfaces = interfaces.get("result", [])
    found: List[str] = []
    for iface in interfaces or []:
        for entry in iface.get("ip-addresses", []) or []:
            if entry.get("ip-address-type") != "ipv4":
                continue
            addr = entry.get("ip-address", "")
            if address_in_network(addr, cidr):
                found.append(addr)
    return found


def parse_ip_addr_output(output: str, cidr: str) -> List[str]:
    """Extract IPv4 addresses inside `cidr` from `ip -4 addr show` output."""
    return [a for a in _INET_RE.findall(output) if address_in_network(a, cidr)]


async def probe_vm_address(target: SSHTarget, vmid: int, cidr: str) -> Optional[str]:
    """Ask the QEMU guest agent of `vmid` for its address. None if unavailable."""
    try:
        payload = await run_ssh_command(
            target, ["qm", "guest", "cmd", str(vmid), "network-get-interfaces"]
        )
    except CommandError as exc:
        logger.debug("Guest agent query for VM %d failed: %s", vmid, exc)
        return None
    addresses = parse_guest_agent_addresses(payload, cidr)
    return addresses[0] if addresses else None


async def probe_container_address(
    target: SSHTarget, vmid: int, cidr: str
) -> Optional[str]:
    """Read eth0's address inside container `vmid`. None if unavailable."""
    try:
        output = await run_ssh_command(
            target, ["pct", "exec", str(vmid), "--", "ip", "-4", "addr", "show", "eth0"]
        )
    except CommandError as exc:
        logger.debug("Address query for container %d failed: %s", vmid, exc)
        return None
    addresses = parse_ip_addr_output(output, cidr)
    return addresses[0] if addresses else None
