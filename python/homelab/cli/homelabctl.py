"""
homelab/cli/homelabctl.py

Dispatcher: `homelabctl <subcommand> [args...]` runs
`python -m homelab.cli.<subcommand> [args...]`.
"""

import subprocess
import sys

SUBCOMMANDS = (
    "deploy",
    "prepare",
    "infrastructure",
    "inventory",
    "talos",
    "gitops",
    "destroy",
    "bootstrap_runner",
)


def main() -> None:
    if len(sys.argv) < 2 or sys.argv[1] in ("-h", "--help"):
        print("Usage: homelabctl <subcommand> [args...]")
        print("Subcommands: " + ", ".join(SUBCOMMANDS))
        sys.exit(0 if len(sys.argv) >= 2 else 1)

    subcommand = sys.argv[1].replace("-", "_")
    if subcommand not in SUBCOMMANDS:
        print(f"Unknown subcommand: {sys.argv[1]}", file=sys.stderr)
        sys.exit(1)

    cmd = [sys.executable, "-m", f"homelab.cli.{subcommand}"] + sys.argv[2:]
    sys.exit(subprocess.call(cmd))


if __name__ == "__main__":
    main()
