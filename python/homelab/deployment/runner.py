"""
Layer 0: bootstrap a GitHub Actions self-hosted runner VM on Proxmox.

The runner later drives Layers 1-4 from CI. Steps:
  1) Preconditions: SSH to Proxmox, the Ubuntu cloud-init template (offer to
     build it), GITHUB_TOKEN/GITHUB_REPO.
  2) Clone the template into the runner VM (asking before replacing one).
  3) Wait for SSH on the runner (bounded poll).
  4) Base packages, then Node.js, Docker, Terraform, Ansible and
     kubectl/helm/talosctl, each skipped when already present.
  5) Replace any stale runner registration of the same name, exchange the
     token for a registration token, install the runner service.
  6) Authorise the operator's key on Proxmox and copy it to the runner.
  7) Prepare the workspace and write ansible/inventory/runner.yml.

Every remote step is a bash script streamed over SSH with `set -euo pipefail`.
"""

from __future__ import annotations

import logging
import shlex
from pathlib import Path
from typing import Dict, Optional

import yaml

from homelab.errors import PreconditionError
from homelab.models.config import HomelabConfig, RunnerOptions
from homelab.models.ssh import SSHTarget
from homelab.utils.async_command_runner import require_tools
from homelab.utils.files import atomic_write_text, read_text
from homelab.utils.github import AsyncGitHubClient
from homelab.utils.log import banner
from homelab.utils.polling import CheckResult, wait_until
from homelab.utils.prompt import Confirm, confirm_yes
from homelab.utils.proxmox import check_ssh_access, list_vms, proxmox_target
from homelab.utils.ssh import (
    copy_to_remote,
    remote_command_exists,
    run_ssh_command,
    run_ssh_script,
    run_ssh_shell,
    ssh_reachable,
)

logger = logging.getLogger(__name__)

RUNNER_INVENTORY = Path("inventory") / "runner.yml"
RUNNER_TAGS = "github-runner,automation,layer0"


def runner_target(opts: RunnerOptions, identity_file: Optional[str] = None) -> SSHTarget:
    # Host keys change on every re-clone
    return SSHTarget(
        user=opts.vm_user,
        hostname=opts.ip,
        identity_file=identity_file,
        strict_host_keys=False,
    )


def _key_paths(opts: RunnerOptions) -> Dict[str, Path]:
    private = Path(opts.ssh_key_path).expanduser()
    return {"private": private, "public": private.with_name(private.name + ".pub")}


async def create_ubuntu_template(
    proxmox: SSHTarget, config: HomelabConfig, confirm: Confirm
) -> bool:
    """
    Build the Ubuntu 24.04 cloud-init template from the upstream cloud image.

    Returns:
        True if a template was built, False if an existing one was kept.
    """
    opts = config.runner
    name = config.assets.vm_template_name
    if opts.template_vm_id in (await list_vms(proxmox)).values():
        logger.warning("Template already exists (ID: %d)", opts.template_vm_id)
        if not await confirm("Do you want to destroy and recreate it?"):
            logger.info("Keeping existing template")
            return False
        await run_ssh_command(proxmox, ["qm", "destroy", str(opts.template_vm_id)])

    public_key = _key_paths(opts)["public"]
    if not public_key.is_file():
        raise PreconditionError(f"SSH public key not found at {public_key}")
    ssh_key = (await read_text(public_key)).strip()
    if opts.vm_password == "changeme":
        logger.warning("Runner template uses the default password; set runner.vm_password")

    image = opts.image_url.rsplit("/", 1)[-1]
    vmid = str(opts.template_vm_id)
    storage = opts.storage
    logger.info("Downloading Ubuntu cloud image and creating template %s (%s)...", name, vmid)
    await run_ssh_script(
        proxmox,
        f"""
        cd {shlex.quote(config.assets.iso_dir)}
        rm -f {shlex.quote(image)}*
        wget -q --show-progress {shlex.quote(opts.image_url)} -O {shlex.quote(image)}

        apt-get update
        apt-get install -y libguestfs-tools
        virt-customize -a {shlex.quote(image)} \\
            --install qemu-guest-agent \\
            --run-command 'echo "{opts.vm_user} ALL=(ALL) NOPASSWD:ALL" > /etc/sudoers.d/99-{opts.vm_user}-nopasswd' \\
            --run-command 'chmod 440 /etc/sudoers.d/99-{opts.vm_user}-nopasswd'

        qm create {vmid} --name {shlex.quote(name)} --memory 2048 --cores 2 \\
            --net0 virtio,bridge=vmbr0 --ostype l26
        qm importdisk {vmid} {shlex.quote(image)} {storage}
        qm set {vmid} --scsihw virtio-scsi-pci --scsi0 {storage}:vm-{vmid}-disk-0
        qm set {vmid} --ide2 {storage}:cloudinit
        qm set {vmid} --boot c --bootdisk scsi0
        qm set {vmid} --serial0 socket --vga serial0
        qm set {vmid} --agent enabled=1
        qm set {vmid} --ipconfig0 ip=dhcp
        qm set {vmid} --ciuser {shlex.quote(opts.vm_user)}
        qm set {vmid} --cipassword {shlex.quote(opts.vm_password)}
        KEYFILE=$(mktemp)
        printf '%s\\n' {shlex.quote(ssh_key)} > "$KEYFILE"
        qm set {vmid} --sshkeys "$KEYFILE"
        rm -f "$KEYFILE"
        qm set {vmid} --nameserver 8.8.8.8
        qm template {vmid}
        rm -f {shlex.quote(image)}
        """,
    )
    logger.info("Ubuntu template created (ID %s, name %s)", vmid, name)
    return True


async def check_prerequisites(
    proxmox: SSHTarget, config: HomelabConfig, confirm: Confirm
) -> None:
    logger.info("Checking prerequisites...")
    require_tools(["ssh", "scp"])
    await check_ssh_access(proxmox)

    name = config.assets.vm_template_name
    if name not in await list_vms(proxmox):
        logger.warning("%s template not found!", name)
        if not await confirm("Would you like to create it now?"):
            raise PreconditionError(f"The {name} template is required to continue")
        await create_ubuntu_template(proxmox, config, confirm)
    logger.info("Prerequisites checked")


async def create_runner_vm(
    proxmox: SSHTarget, config: HomelabConfig, confirm: Confirm
) -> bool:
    """
    Clone the template into the runner VM and start it.

    Returns:
        True if a VM was created, False if the operator kept an existing one.
    """
    opts = config.runner
    vmid = str(opts.vm_id)
    if opts.vm_id in (await list_vms(proxmox)).values():
        logger.warning("Runner VM already exists (ID: %s)", vmid)
        if not await confirm("Do you want to destroy and recreate it?"):
            logger.info("Keeping existing VM, skipping creation")
            return False
        logger.info("Destroying existing VM...")
        await run_ssh_shell(proxmox, f"qm stop {vmid} || true; qm destroy {vmid}")

    logger.info("Cloning VM from %s...", config.assets.vm_template_name)
    await run_ssh_script(
        proxmox,
        f"""
        TEMPLATE_ID=$(qm list | awk -v n={shlex.quote(config.assets.vm_template_name)} '$2 == n {{print $1; exit}}')
        qm clone "$TEMPLATE_ID" {vmid} --name {shlex.quote(opts.vm_name)} --full
        qm set {vmid} --memory {opts.memory_mb}
        qm set {vmid} --cores {opts.cores}
        qm set {vmid} --cpu host
        qm set {vmid} --onboot 1
        qm set {vmid} --agent enabled=1
        qm set {vmid} --tags {RUNNER_TAGS}
        qm resize {vmid} scsi0 {opts.disk_size}
        qm set {vmid} --ipconfig0 "ip={opts.ip_cidr},gw={config.network.gateway}"
        qm set {vmid} --nameserver {config.network.gateway}
        qm start {vmid}
        """,
    )
    logger.info("Runner VM created and started")
    return True


async def wait_for_runner_ssh(target: SSHTarget, timeout: float) -> None:
    async def _check() -> CheckResult:
        if await ssh_reachable(target):
            return True, "ssh ok"
        return False, f"no SSH on {target.hostname}"

    await wait_until(
        _check,
        description=f"SSH on runner VM {target.hostname}",
        timeout=timeout,
        interval=10.0,
    )
    logger.info("SSH access established to %s", target.hostname)


BASE_PACKAGES_SCRIPT = """
sudo apt-get update
sudo DEBIAN_FRONTEND=noninteractive apt-get upgrade -y
sudo apt-get install -y curl wget git vim nano ca-certificates gnupg lsb-release \\
    software-properties-common apt-transport-https jq unzip
"""

NODEJS_SCRIPT = """
curl -fsSL https://deb.nodesource.com/setup_20.x | sudo -E bash -
sudo apt-get install -y nodejs
"""

DOCKER_SCRIPT = """
curl -fsSL https://get.docker.com -o get-docker.sh
sudo sh get-docker.sh
rm get-docker.sh
sudo usermod -aG docker "$USER"
sudo curl -L "https://github.com/docker/compose/releases/latest/download/docker-compose-$(uname -s)-$(uname -m)" \\
    -o /usr/local/bin/docker-compose
sudo chmod +x /usr/local/bin/docker-compose
sudo systemctl enable docker
sudo systemctl start docker
"""

TERRAFORM_SCRIPT = """
wget -O- https://apt.releases.hashicorp.com/gpg | sudo gpg --batch --yes --dearmor -o /usr/share/keyrings/hashicorp-archive-keyring.gpg
echo "deb [signed-by=/usr/share/keyrings/hashicorp-archive-keyring.gpg] https://apt.releases.hashicorp.com $(lsb_release -cs) main" \\
    | sudo tee /etc/apt/sources.list.d/hashicorp.list
sudo apt-get update
sudo apt-get install -y terraform
"""

ANSIBLE_SCRIPT = """
sudo apt-get update
sudo apt-get install -y ansible
"""

KUBE_TOOLS_SCRIPT = """
case "$(uname -m)" in
    x86_64) ARCH=amd64 ;;
    aarch64|arm64) ARCH=arm64 ;;
    *) echo "Unsupported architecture: $(uname -m)"; exit 1 ;;
esac
if ! command -v kubectl >/dev/null 2>&1; then
    curl -LO "https://dl.k8s.io/release/$(curl -L -s https://dl.k8s.io/release/stable.txt)/bin/linux/${ARCH}/kubectl"
    sudo install -o root -g root -m 0755 kubectl /usr/local/bin/kubectl
    rm kubectl
fi
if ! command -v helm >/dev/null 2>&1; then
    curl -fsSL https://raw.githubusercontent.com/helm/helm/main/scripts/get-helm-3 | bash
fi
if ! command -v talosctl >/dev/null 2>&1; then
    curl -Lo /tmp/talosctl "https://github.com/siderolabs/talos/releases/download/%(talos_version)s/talosctl-linux-${ARCH}"
    sudo install -o root -g root -m 0755 /tmp/talosctl /usr/local/bin/talosctl
    rm /tmp/talosctl
fi
"""


async def install_tooling(target: SSHTarget, config: HomelabConfig) -> None:
    """Install each tool unless its command already resolves on the runner."""
    logger.info("Configuring runner VM (basic setup)...")
    await run_ssh_script(target, BASE_PACKAGES_SCRIPT)

    steps = (
        ("Node.js", ["node"], NODEJS_SCRIPT),
        ("Docker", ["docker"], DOCKER_SCRIPT),
        ("Terraform", ["terraform"], TERRAFORM_SCRIPT),
        ("Ansible", ["ansible"], ANSIBLE_SCRIPT),
        (
            "Kubernetes tools",
            ["kubectl", "helm", "talosctl"],
            KUBE_TOOLS_SCRIPT % {"talos_version": config.talos.version},
        ),
    )
    for label, commands, script in steps:
        present = [await remote_command_exists(target, c) for c in commands]
        if all(present):
            logger.info("%s already installed, skipping installation", label)
            continue
        logger.info("Installing %s...", label)
        await run_ssh_script(target, script)
        logger.info("%s installed", label)


async def runner_service_active(target: SSHTarget) -> bool:
    out = await run_ssh_shell(
        target,
        "[ -d ~/actions-runner ] && sudo systemctl is-active --quiet 'actions.runner.*' "
        "&& echo yes || echo no",
    )
    return out.strip() == "yes"


async def install_github_runner(
    target: SSHTarget, config: HomelabConfig, client: AsyncGitHubClient
) -> bool:
    """
    Register and start the runner service.

    Returns:
        False if a runner service was already active on the VM.
    """
    opts = config.runner
    if await runner_service_active(target):
        logger.info("GitHub Actions runner already installed and running, skipping")
        return False

    await client.remove_runner_named(opts.vm_name)
    logger.info("Getting runner registration token from GitHub...")
    token = await client.create_registration_token()

    # The registration token is short-lived and reaches the VM only over SSH stdin
    await run_ssh_script(
        target,
        f"""
        mkdir -p ~/actions-runner
        cd ~/actions-runner
        RUNNER_VERSION=$(curl -s https://api.github.com/repos/actions/runner/releases/latest | jq -r .tag_name | sed 's/^v//')
        curl -o actions-runner-linux-x64.tar.gz -L \\
            "https://github.com/actions/runner/releases/download/v${{RUNNER_VERSION}}/actions-runner-linux-x64-${{RUNNER_VERSION}}.tar.gz"
        tar xzf ./actions-runner-linux-x64.tar.gz
        rm actions-runner-linux-x64.tar.gz
        ./config.sh --unattended \\
            --url {shlex.quote("https://github.com/" + client.repo)} \\
            --token {shlex.quote(token.token)} \\
            --name {shlex.quote(opts.vm_name)} \\
            --labels {shlex.quote(",".join(opts.labels))} \\
            --work _work
        sudo ./svc.sh install
        sudo ./svc.sh start
        """,
    )
    logger.info("GitHub Actions runner installed and configured")
    return True


async def configure_proxmox_ssh_access(
    proxmox: SSHTarget, target: SSHTarget, config: HomelabConfig
) -> None:
    """Authorise the operator key on Proxmox and give the runner a copy of it."""
    keys = _key_paths(config.runner)
    if not keys["private"].is_file() or not keys["public"].is_file():
        raise PreconditionError(
            f"SSH key pair not found at {keys['private']} (+ .pub); "
            "the runner needs it to reach Proxmox"
        )
    public_key = (await read_text(keys["public"])).strip()

    out = await run_ssh_shell(
        proxmox,
        f"grep -qxF {shlex.quote(public_key)} ~/.ssh/authorized_keys 2>/dev/null "
        "&& echo yes || echo no",
    )
    if out.strip() != "yes":
        await run_ssh_shell(
            proxmox,
            "mkdir -p ~/.ssh && chmod 700 ~/.ssh && "
            f"printf '%s\\n' {shlex.quote(public_key)} >> ~/.ssh/authorized_keys && "
            "chmod 600 ~/.ssh/authorized_keys",
        )
        logger.info("SSH key added to Proxmox authorized_keys")
    else:
        logger.info("SSH key already authorized on Proxmox")

    logger.info("Copying SSH key to runner VM...")
    await copy_to_remote(target, str(keys["private"]), "~/.ssh/id_rsa")
    await copy_to_remote(target, str(keys["public"]), "~/.ssh/id_rsa.pub")

    await run_ssh_script(
        target,
        f"""
        chmod 600 ~/.ssh/id_rsa
        chmod 644 ~/.ssh/id_rsa.pub
        ssh-keyscan -p {proxmox.port} -H {shlex.quote(proxmox.hostname)} >> ~/.ssh/known_hosts 2>/dev/null || true
        if ssh -o BatchMode=yes -o ConnectTimeout=5 -p {proxmox.port} {shlex.quote(proxmox.destination)} exit 2>/dev/null; then
            echo "SSH connection to Proxmox successful"
        else
            echo "Warning: could not establish SSH connection to Proxmox"
        fi
        """,
    )
    logger.info("Proxmox SSH access configured")


async def setup_runner_workspace(target: SSHTarget) -> None:
    await run_ssh_shell(
        target,
        "mkdir -p ~/homelab-workspace/terraform ~/homelab-workspace/ansible "
        "~/homelab-workspace/talos ~/homelab-workspace/gitops",
    )
    logger.info("Runner workspace setup complete")


def runner_inventory(opts: RunnerOptions) -> str:
    doc = {
        "all": {
            "hosts": {
                "github-runner": {
                    "ansible_host": opts.ip,
                    "ansible_user": opts.vm_user,
                    "ansible_become": True,
                    "ansible_python_interpreter": "/usr/bin/python3",
                }
            },
            "vars": {"ansible_ssh_common_args": "-o StrictHostKeyChecking=no"},
        }
    }
    return "# GitHub Runner VM Inventory\n" + yaml.safe_dump(doc, sort_keys=False)


async def bootstrap_runner(
    config: HomelabConfig, confirm: Confirm = confirm_yes
) -> None:
    """Run the full Layer 0 runner bootstrap."""
    logger.info("\n%s", banner("LAYER 0 - BOOTSTRAP", "GitHub Actions Self-Hosted Runner"))
    opts = config.runner
    proxmox = proxmox_target(config.proxmox)

    await check_prerequisites(proxmox, config, confirm)
    logger.info("Checking GitHub configuration...")
    async with AsyncGitHubClient(config.github) as client:
        await create_runner_vm(proxmox, config, confirm)

        keys = _key_paths(opts)
        identity = str(keys["private"]) if keys["private"].is_file() else None
        target = runner_target(opts, identity)
        await wait_for_runner_ssh(target, opts.ssh_timeout)

        await install_tooling(target, config)
        await install_github_runner(target, config, client)

    await configure_proxmox_ssh_access(proxmox, target, config)
    await setup_runner_workspace(target)

    path = await atomic_write_text(
        config.ansible_dir / RUNNER_INVENTORY, runner_inventory(opts)
    )
    logger.info("Ansible inventory created at %s", path)

    logger.info("\n%s", banner("LAYER 0 - GITHUB RUNNER BOOTSTRAP COMPLETE"))
    logger.info(
        "Runner VM %s (ID %d) at %s: %d MB, %d cores, %s disk",
        opts.vm_name,
        opts.vm_id,
        opts.ip,
        opts.memory_mb,
        opts.cores,
        opts.disk_size,
    )
    logger.info(
        "Verify the runner at https://github.com/%s/settings/actions/runners",
        config.github.repo,
    )
