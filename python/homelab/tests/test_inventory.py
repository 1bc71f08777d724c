"""
Inventory generation from Terraform outputs.
"""

from __future__ import annotations

from typing import Dict, List

import pytest

from conftest import LXC_IPS, TALOS_IPS, VM_IPS, make_outputs
from homelab.deployment import inventory as inventory_mod
from homelab.deployment.inventory import (
    addresses_from_outputs,
    build_inventory,
    generate_inventory,
    missing_hosts,
)
from homelab.errors import InventoryError, PreconditionError
from homelab.models.config import HomelabConfig
from homelab.models.inventory import (
    LXC_CONTAINERS,
    TALOS_CONTROL_PLANE,
    TALOS_WORKERS,
    UBUNTU_VMS,
    Inventory,
)


def _all_addresses() -> Dict[str, str]:
    return {**TALOS_IPS, **VM_IPS, **LXC_IPS}


def test_one_entry_per_declared_host(config: HomelabConfig) -> None:
    inv = build_inventory(config, _all_addresses())

    assert inv.host_count() == 9
    for host, address in _all_addresses().items():
        assert inv.address_of(host) == address


def test_talos_nodes_grouped_by_role(config: HomelabConfig) -> None:
    inv = build_inventory(config, _all_addresses())

    cp = inv.groups[TALOS_CONTROL_PLANE].hosts
    workers = inv.groups[TALOS_WORKERS].hosts
    assert list(cp) == ["talos-cp-01"]
    assert cp["talos-cp-01"].ansible_host == "10.20.0.40"
    assert {h: e.ansible_host for h, e in workers.items()} == {
        "talos-wk-01": "10.20.0.41",
        "talos-wk-02": "10.20.0.42",
    }


def test_guest_groups_and_variables(config: HomelabConfig) -> None:
    inv = build_inventory(config, _all_addresses())

    assert set(inv.groups[UBUNTU_VMS].hosts) == {"ubuntu-vpn", "ubuntu-nfs", "ubuntu-media"}
    assert set(inv.groups[LXC_CONTAINERS].hosts) == {"redis", "postgres", "pihole"}
    assert inv.groups[UBUNTU_VMS].hosts["ubuntu-media"].services == [
        "casaos",
        "jellyfin",
        "qbittorrent",
    ]
    assert inv.groups[LXC_CONTAINERS].hosts["redis"].ansible_user == "root"
    assert inv.vars["nfs_server_ip"] == "10.20.0.61"
    assert inv.vars["network_gateway"] == "10.20.0.1"


def test_missing_address_is_reported_by_name(config: HomelabConfig) -> None:
    addresses = _all_addresses()
    del addresses["talos-wk-02"]
    del addresses["pihole"]

    assert missing_hosts(config, addresses) == ["talos-wk-02", "pihole"]
    with pytest.raises(InventoryError) as excinfo:
        build_inventory(config, addresses)
    assert "talos-wk-02" in str(excinfo.value)
    assert "pihole" in str(excinfo.value)
    assert isinstance(excinfo.value, PreconditionError)


def test_cidr_suffix_and_empty_values_in_outputs() -> None:
    outputs = make_outputs(
        talos_ips={"talos-cp-01": "10.20.0.40/24", "talos-wk-01": ""},
        vm_ips={"ubuntu-vpn": None},
    )
    assert addresses_from_outputs(outputs) == {"talos-cp-01": "10.20.0.40"}


async def test_generate_writes_inventory(config: HomelabConfig, lab_outputs) -> None:
    inv = await generate_inventory(config, lab_outputs, probe=False)

    written = config.inventory_file.read_text(encoding="utf-8")
    assert written.startswith("---\n")
    parsed = Inventory.from_yaml(written)
    assert parsed.groups == inv.groups
    assert parsed.vars == inv.vars
    assert parsed.address_of("talos-cp-01") == "10.20.0.40"


async def test_generate_fails_without_touching_existing_file(
    config: HomelabConfig,
) -> None:
    config.inventory_file.parent.mkdir(parents=True)
    config.inventory_file.write_text("previous inventory\n", encoding="utf-8")
    outputs = make_outputs(talos_ips=TALOS_IPS, vm_ips=VM_IPS)

    with pytest.raises(InventoryError):
        await generate_inventory(config, outputs, probe=False)

    assert config.inventory_file.read_text(encoding="utf-8") == "previous inventory\n"


async def test_generate_fails_without_writing(config: HomelabConfig) -> None:
    outputs = make_outputs(talos_ips={"talos-cp-01": "10.20.0.40"})

    with pytest.raises(InventoryError):
        await generate_inventory(config, outputs, probe=False)

    assert not config.inventory_file.exists()


async def test_generate_fills_gaps_from_proxmox(
    config: HomelabConfig, monkeypatch: pytest.MonkeyPatch
) -> None:
    probed: List[List[str]] = []

    async def fake_probe(cfg: HomelabConfig, missing: List[str]) -> Dict[str, str]:
        probed.append(list(missing))
        return {h: LXC_IPS[h] for h in missing}

    monkeypatch.setattr(inventory_mod, "probe_missing_guests", fake_probe)
    outputs = make_outputs(talos_ips=TALOS_IPS, vm_ips=VM_IPS)

    inv = await generate_inventory(config, outputs)

    assert probed == [["redis", "postgres", "pihole"]]
    assert inv.address_of("postgres") == "10.20.0.71"
    assert config.inventory_file.is_file()


async def test_probe_skips_talos_nodes(config: HomelabConfig) -> None:
    # Talos nodes are never probed, so nothing touches Proxmox here
    assert await inventory_mod.probe_missing_guests(config, ["talos-wk-01"]) == {}
