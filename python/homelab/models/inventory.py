"""
homelab/models/inventory.py

Pydantic models for the generated Ansible inventory. The inventory is keyed by
role group (talos_control_plane, talos_workers, ubuntu_vms, lxc_containers),
each group mapping hostname -> connection entry.
"""

from __future__ import annotations

from typing import Any, Dict, List

import yaml
from pydantic import BaseModel, Field

TALOS_CONTROL_PLANE = "talos_control_plane"
TALOS_WORKERS = "talos_workers"
UBUNTU_VMS = "ubuntu_vms"
LXC_CONTAINERS = "lxc_containers"


class InventoryHost(BaseModel):
    ansible_host: str
    ansible_user: str
    ansible_ssh_common_args: str = "-o StrictHostKeyChecking=no"
    services: List[str] = Field(default_factory=list)


class InventoryGroup(BaseModel):
    hosts: Dict[str, InventoryHost] = Field(default_factory=dict)


class Inventory(BaseModel):
    """
    Role-tagged connection entries derived from the provisioning outputs.

    Attributes:
        groups: role group -> InventoryGroup.
        vars: Inventory-wide variables under 'all.vars'.
    """

    groups: Dict[str, InventoryGroup] = Field(default_factory=dict)
    vars: Dict[str, Any] = Field(default_factory=dict)

    def host_count(self) -> int:
        return sum(len(group.hosts) for group in self.groups.values())

    def address_of(self, hostname: str) -> str:
        """Return the address of `hostname`, searching every group.

        Raises:
            KeyError: If the host is not in the inventory.
        """
        for group in self.groups.values():
            if hostname in group.hosts:
                return group.hosts[hostname].ansible_host
        raise KeyError(f"Host '{hostname}' not found in inventory.")

    def to_ansible_dict(self) -> Dict[str, Any]:
        """Render the Ansible YAML layout: all.children.<group>.hosts + all.vars."""
        return {
            "all": {
                "children": {
                    name: {
                        "hosts": {
                            host: entry.model_dump()
                            for host, entry in group.hosts.items()
                        }
                    }
                    for name, group in self.groups.items()
                },
                "vars": dict(self.vars),
            }
        }

    def to_yaml(self) -> str:
        header = "---\n# Generated Ansible inventory. Regenerated on every Layer 1 run.\n"
        return header + yaml.safe_dump(
            self.to_ansible_dict(), sort_keys=False, default_flow_style=False
        )

    @classmethod
    def from_yaml(cls, yaml_str: str) -> Inventory:
        """Parse an inventory previously produced by `to_yaml`."""
        data = yaml.safe_load(yaml_str) or {}
        root = data.get("all", {})
        children = root.get("children", {}) or {}
        return cls(
            groups={
                name: InventoryGroup(hosts=(body or {}).get("hosts", {}) or {})
                for name, body in children.items()
            },
            vars=root.get("vars", {}) or {},
        )
