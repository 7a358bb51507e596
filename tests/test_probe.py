"""Tests for installer availability detection."""
from __future__ import annotations

from pathlib import Path

import pytest

from embedded_ansible.lifecycle import AvailabilityProbe


def test_available_in_default_location(tmp_path: Path) -> None:
    """The default root is used when no override is set."""
    probe = AvailabilityProbe(default_root=tmp_path, env={})

    assert probe.location() == tmp_path
    assert probe.available() is True


def test_not_available_when_default_missing(tmp_path: Path) -> None:
    """A missing default root reports not available instead of raising."""
    probe = AvailabilityProbe(default_root=tmp_path / "missing", env={})

    assert probe.available() is False


def test_default_must_be_a_directory(tmp_path: Path) -> None:
    """A regular file at the installer path does not count as installed."""
    marker = tmp_path / "ansible-installer"
    marker.write_text("", encoding="utf-8")
    probe = AvailabilityProbe(default_root=marker, env={})

    assert probe.available() is False


@pytest.mark.parametrize("default_exists", [True, False])
@pytest.mark.parametrize("override_exists", [True, False])
def test_override_takes_precedence(
    tmp_path: Path,
    default_exists: bool,
    override_exists: bool,
) -> None:
    """When the override is set only the override location is consulted."""
    default_root = tmp_path / "default"
    override_root = tmp_path / "override"
    if default_exists:
        default_root.mkdir()
    if override_exists:
        override_root.mkdir()

    probe = AvailabilityProbe(
        default_root=default_root,
        env={"APPLIANCE_ANSIBLE_DIRECTORY": str(override_root)},
    )

    assert probe.location() == override_root
    assert probe.available() is override_exists


def test_empty_override_is_ignored(tmp_path: Path) -> None:
    """An empty override value falls back to the default."""
    probe = AvailabilityProbe(
        default_root=tmp_path,
        env={"APPLIANCE_ANSIBLE_DIRECTORY": ""},
    )

    assert probe.location() == tmp_path


def test_reads_process_environment_on_each_call(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Without an explicit env mapping the live environment is consulted per call."""
    probe = AvailabilityProbe(default_root=tmp_path / "missing")
    assert probe.available() is False

    monkeypatch.setenv("APPLIANCE_ANSIBLE_DIRECTORY", str(tmp_path))

    assert probe.available() is True


def test_custom_env_var_name(tmp_path: Path) -> None:
    """The override variable name is configurable."""
    probe = AvailabilityProbe(
        default_root=tmp_path / "missing",
        env_var="TOWER_SETUP_DIR",
        env={"TOWER_SETUP_DIR": str(tmp_path), "APPLIANCE_ANSIBLE_DIRECTORY": "/nowhere"},
    )

    assert probe.available() is True
