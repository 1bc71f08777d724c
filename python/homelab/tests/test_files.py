from __future__ import annotations

import stat
from pathlib import Path

from homelab.utils.files import atomic_write_text, backup_existing, read_text, reset_directory


async def test_atomic_write_creates_parents_and_mode(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "outputs.json"

    written = await atomic_write_text(target, "{}\n", mode=0o600)

    assert written == target
    assert await read_text(target) == "{}\n"
    assert stat.S_IMODE(target.stat().st_mode) == 0o600
    assert [p.name for p in target.parent.iterdir()] == ["outputs.json"]


async def test_atomic_write_replaces_content(tmp_path: Path) -> None:
    target = tmp_path / "inventory.yml"
    target.write_text("old", encoding="utf-8")

    await atomic_write_text(target, "new")

    assert target.read_text(encoding="utf-8") == "new"


def test_backup_nothing_to_do(tmp_path: Path) -> None:
    assert backup_existing(tmp_path / "secrets.yaml") is None


def test_backup_moves_file_aside(tmp_path: Path) -> None:
    secrets = tmp_path / "secrets.yaml"
    secrets.write_text("first", encoding="utf-8")

    backup = backup_existing(secrets, now=1700000000)

    assert backup == tmp_path / "secrets.yaml.bak.1700000000"
    assert backup.read_text(encoding="utf-8") == "first"
    assert not secrets.exists()


def test_backup_never_overwrites_previous_backup(tmp_path: Path) -> None:
    secrets = tmp_path / "secrets.yaml"
    secrets.write_text("first", encoding="utf-8")
    first = backup_existing(secrets, now=1700000000)
    secrets.write_text("second", encoding="utf-8")

    second = backup_existing(secrets, now=1700000000)

    assert first is not None and second is not None
    assert second.name == "secrets.yaml.bak.1700000000.1"
    assert first.read_text(encoding="utf-8") == "first"
    assert second.read_text(encoding="utf-8") == "second"


def test_reset_directory_wipes_contents(tmp_path: Path) -> None:
    rendered = tmp_path / "rendered"
    (rendered / "sub").mkdir(parents=True)
    (rendered / "stale.yaml").write_text("x", encoding="utf-8")

    reset_directory(rendered)

    assert rendered.is_dir()
    assert list(rendered.iterdir()) == []
