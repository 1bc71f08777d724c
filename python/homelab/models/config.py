"""
homelab/models/config.py

Configuration for the whole deployment, passed explicitly to every stage:

 - ProxmoxSettings / GitHubSettings: pydantic-settings models populated from
   PROXMOX_* and GITHUB_* environment variables.
 - Topology: which Talos nodes, Ubuntu VMs and LXC containers make up the lab.
 - HomelabConfig: everything else that used to live as in-script constants
   (paths, cluster identity, versions, timeouts), optionally overridden from
   a YAML file.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProxmoxSettings(BaseSettings):
    """
    SSH access to the Proxmox host. Maps to PROXMOX_HOST, PROXMOX_USER,
    PROXMOX_NODE and PROXMOX_SSH_PORT.
    """

    model_config = SettingsConfigDict(env_prefix="PROXMOX_")

    host: str = "10.20.0.10"
    user: str = "root"
    node: str = "alif"
    ssh_port: int = Field(default=22, ge=1, le=65535)


class GitHubSettings(BaseSettings):
    """
    GitHub credentials for registering the self-hosted runner. Maps to
    GITHUB_TOKEN and GITHUB_REPO ('owner/name').
    """

    model_config = SettingsConfigDict(env_prefix="GITHUB_")

    token: Optional[str] = None
    repo: Optional[str] = None
    api_url: str = "https://api.github.com"


class NodeRole(str, Enum):
    CONTROLPLANE = "controlplane"
    WORKER = "worker"


class TalosNodeSpec(BaseModel):
    hostname: str
    role: NodeRole


class GuestSpec(BaseModel):
    """An Ubuntu VM or LXC container expected in the inventory.

    Attributes:
        hostname: Proxmox name of the guest, also the inventory host key.
        user: SSH user Ansible connects as.
        services: Services the guest is expected to run.
        vmid: Optional Proxmox id; looked up by name when absent.
    """

    hostname: str
    user: str
    services: List[str] = Field(default_factory=list)
    vmid: Optional[int] = None


def _default_talos_nodes() -> List[TalosNodeSpec]:
    return [
        TalosNodeSpec(hostname="talos-cp-01", role=NodeRole.CONTROLPLANE),
        TalosNodeSpec(hostname="talos-wk-01", role=NodeRole.WORKER),
        TalosNodeSpec(hostname="talos-wk-02", role=NodeRole.WORKER),
    ]


def _default_vms() -> List[GuestSpec]:
    return [
        GuestSpec(hostname="ubuntu-vpn", user="ubuntu", services=["openvpn"]),
        GuestSpec(hostname="ubuntu-nfs", user="ubuntu", services=["nfs-server"]),
        GuestSpec(
            hostname="ubuntu-media",
            user="ubuntu",
            services=["casaos", "jellyfin", "qbittorrent"],
        ),
    ]


def _default_containers() -> List[GuestSpec]:
    return [
        GuestSpec(hostname="redis", user="root", services=["redis"]),
        GuestSpec(hostname="postgres", user="root", services=["postgres"]),
        GuestSpec(hostname="pihole", user="root", services=["pihole"]),
    ]


class Topology(BaseModel):
    """
    Declared lab topology. Exactly one Talos control plane node is required,
    and every hostname must be unique across all groups.
    """

    talos_nodes: List[TalosNodeSpec] = Field(default_factory=_default_talos_nodes)
    vms: List[GuestSpec] = Field(default_factory=_default_vms)
    containers: List[GuestSpec] = Field(default_factory=_default_containers)

    @model_validator(mode="after")
    def check_nodes(self) -> Topology:
        control_planes = [
            n for n in self.talos_nodes if n.role == NodeRole.CONTROLPLANE
        ]
        if len(control_planes) != 1:
            raise ValueError(
                f"Exactly one Talos control plane node is required, got {len(control_planes)}."
            )
        names = (
            [n.hostname for n in self.talos_nodes]
            + [g.hostname for g in self.vms]
            + [g.hostname for g in self.containers]
        )
        if len(names) != len(set(names)):
            raise ValueError("Duplicate hostname(s) detected in the topology.")
        return self

    @property
    def control_plane(self) -> TalosNodeSpec:
        return next(n for n in self.talos_nodes if n.role == NodeRole.CONTROLPLANE)

    @property
    def workers(self) -> List[TalosNodeSpec]:
        return [n for n in self.talos_nodes if n.role == NodeRole.WORKER]


class TalosOptions(BaseModel):
    cluster_name: str = "homelab-cluster"
    vip: str = "10.20.0.50"
    interface: str = "eth0"
    extra_cert_sans: List[str] = Field(
        default_factory=lambda: ["homelab.local", "homelab-k8s.local"]
    )
    version: str = "v1.11.5"
    allow_scheduling_on_control_planes: bool = True
    health_timeout: float = 300.0
    health_interval: float = 10.0
    nodes_timeout: float = 600.0
    nodes_interval: float = 15.0


class CiliumOptions(BaseModel):
    repo_name: str = "cilium"
    repo_url: str = "https://helm.cilium.io/"
    chart_version: str = "1.18.0"
    namespace: str = "kube-system"
    ready_timeout: str = "300s"


class GitOpsOptions(BaseModel):
    namespace: str = "argocd"
    manifest_url: str = (
        "https://raw.githubusercontent.com/argoproj/argo-cd/stable/manifests/install.yaml"
    )
    app_of_apps: str = "app-of-apps.yaml"
    ready_timeout: str = "300s"


class ProxmoxAssets(BaseModel):
    iso_dir: str = "/var/lib/vz/template/iso"
    talos_iso_name: str = "metal-amd64.iso"
    lxc_template: str = "debian-13-standard_13.1-2_amd64.tar.zst"
    lxc_template_storage: str = "local"
    lxc_cache_dir: str = "/var/lib/vz/template/cache"
    vm_template_name: str = "ubuntu-temp"


class NetworkOptions(BaseModel):
    cidr: str = "10.20.0.0/24"
    gateway: str = "10.20.0.1"
    guest_ready_timeout: float = 300.0
    nfs_export_path: str = "/srv/nfs/shared"
    postgres_db: str = "homelab"
    postgres_user: str = "homelab"
    redis_port: int = 6379
    jellyfin_data_path: str = "/opt/jellyfin"


class RunnerOptions(BaseModel):
    vm_id: int = 8000
    vm_name: str = "vm-github-runner"
    ip_cidr: str = "10.20.0.30/24"
    memory_mb: int = 4096
    cores: int = 2
    disk_size: str = "50G"
    storage: str = "local-lvm"
    labels: List[str] = Field(
        default_factory=lambda: ["self-hosted", "homelab", "proxmox"]
    )
    template_vm_id: int = 9000
    image_url: str = (
        "https://cloud-images.ubuntu.com/releases/24.04/release/"
        "ubuntu-24.04-server-cloudimg-amd64.img"
    )
    vm_user: str = "ubuntu"
    vm_password: str = "changeme"
    ssh_key_path: str = "~/.ssh/id_rsa"
    ssh_timeout: float = 300.0

    @property
    def ip(self) -> str:
        return self.ip_cidr.split("/", 1)[0]


class HomelabConfig(BaseModel):
    """
    Top-level configuration object. Relative paths are resolved against
    `project_root` (the directory holding terraform/, ansible/, talos/ and
    gitops/).
    """

    project_root: Path = Field(default_factory=Path.cwd)
    topology: Topology = Field(default_factory=Topology)
    talos: TalosOptions = Field(default_factory=TalosOptions)
    cilium: CiliumOptions = Field(default_factory=CiliumOptions)
    gitops: GitOpsOptions = Field(default_factory=GitOpsOptions)
    assets: ProxmoxAssets = Field(default_factory=ProxmoxAssets)
    network: NetworkOptions = Field(default_factory=NetworkOptions)
    runner: RunnerOptions = Field(default_factory=RunnerOptions)
    proxmox: ProxmoxSettings = Field(default_factory=ProxmoxSettings)
    github: GitHubSettings = Field(default_factory=GitHubSettings)

    @property
    def terraform_dir(self) -> Path:
        return self.project_root / "terraform" / "proxmox-homelab"

    @property
    def ansible_dir(self) -> Path:
        return self.project_root / "ansible"

    @property
    def outputs_file(self) -> Path:
        return self.ansible_dir / "terraform_outputs.json"

    @property
    def inventory_file(self) -> Path:
        return self.ansible_dir / "inventory.yml"

    @property
    def talos_dir(self) -> Path:
        return self.project_root / "talos"

    @property
    def patches_dir(self) -> Path:
        return self.talos_dir / "patches"

    @property
    def rendered_dir(self) -> Path:
        return self.talos_dir / "rendered"

    @property
    def talosconfig(self) -> Path:
        return self.rendered_dir / "talosconfig"

    @property
    def kubeconfig(self) -> Path:
        return self.rendered_dir / "kubeconfig"

    @property
    def gitops_dir(self) -> Path:
        return self.project_root / "gitops"


def load_config(
    path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None
) -> HomelabConfig:
    """
    Build a HomelabConfig from defaults, an optional YAML file and overrides.

    The file path comes from `path` or $HOMELAB_CONFIG. A relative
    `project_root` in the file is resolved against the file's directory;
    without one, the file's directory is the project root.

    Args:
        path: Optional YAML configuration file.
        overrides: Optional top-level keys applied after the file.

    Returns:
        The validated HomelabConfig.

    Raises:
        FileNotFoundError: If an explicit config file does not exist.
        ValueError: If the file is not a YAML mapping or fails validation.
    """
    config_path = path or os.environ.get("HOMELAB_CONFIG")
    data: Dict[str, Any] = {}

    if config_path:
        file_path = Path(config_path).expanduser()
        if not file_path.is_file():
            raise FileNotFoundError(f"Config file not found: {file_path}")
        loaded = yaml.safe_load(file_path.read_text(encoding="utf-8")) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file {file_path} must contain a YAML mapping.")
        data.update(loaded)
        root = Path(str(data.get("project_root", ".")))
        data["project_root"] = (
            root if root.is_absolute() else (file_path.parent / root).resolve()
        )

    if overrides:
        data.update(overrides)
    return HomelabConfig.model_validate(data)
