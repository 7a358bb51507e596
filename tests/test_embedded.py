"""Tests for the EmbeddedAnsible facade and its derived install state."""
from __future__ import annotations

from pathlib import Path

import pytest
from conftest import FakeRunner, FakeSystemd

from embedded_ansible.config import AppConfig
from embedded_ansible.lifecycle import EmbeddedAnsible, InstallState
from embedded_ansible.locking import LockManager


def _build(
    app_config: AppConfig,
    installer_root: Path,
    *,
    running: dict[str, bool] | None = None,
) -> tuple[EmbeddedAnsible, FakeRunner, FakeSystemd]:
    runner = FakeRunner(roster="nginx rabbitmq")
    systemd = FakeSystemd(running=running)
    ansible = EmbeddedAnsible.from_config(
        app_config,
        locks=LockManager(app_config.runtime_dir, default_timeout=1.0),
        runner=runner,
        systemd=systemd,
        env={"APPLIANCE_ANSIBLE_DIRECTORY": str(installer_root)},
    )
    return ansible, runner, systemd


def test_state_not_installed(app_config: AppConfig, tmp_path: Path) -> None:
    """A missing installer directory wins over everything else."""
    ansible, runner, systemd = _build(app_config, tmp_path / "missing")

    assert ansible.state() is InstallState.NOT_INSTALLED
    assert runner.shell_calls == []
    assert systemd.calls == []


def test_state_installed_but_unconfigured(app_config: AppConfig, tmp_path: Path) -> None:
    """Without a persisted secret key the installer is unconfigured."""
    ansible, _, _ = _build(app_config, tmp_path)

    assert ansible.available() is True
    assert ansible.state() is InstallState.INSTALLED_UNCONFIGURED


def test_state_configured_stopped(app_config: AppConfig, tmp_path: Path) -> None:
    """A mirrored secret key with stopped services reports configured_stopped."""
    ansible, _, _ = _build(app_config, tmp_path, running={"nginx": True})
    ansible.orchestrator.configure_secret_key()

    assert ansible.configured() is True
    assert ansible.state() is InstallState.CONFIGURED_STOPPED


def test_state_configured_running(app_config: AppConfig, tmp_path: Path) -> None:
    """All services running moves the state to configured_running."""
    ansible, _, _ = _build(app_config, tmp_path, running={"nginx": True, "rabbitmq": True})
    ansible.orchestrator.configure_secret_key()

    assert ansible.state() is InstallState.CONFIGURED_RUNNING
    assert InstallState.CONFIGURED_RUNNING.value == "configured_running"


def test_tampered_secret_key_file_is_unconfigured(app_config: AppConfig, tmp_path: Path) -> None:
    """A SECRET_KEY file that no longer matches the record is not configured."""
    ansible, _, _ = _build(app_config, tmp_path)
    ansible.orchestrator.configure_secret_key()
    app_config.installer.secret_key_file.write_text("something-else", encoding="utf-8")

    assert ansible.configured() is False
    assert ansible.state() is InstallState.INSTALLED_UNCONFIGURED


def test_facade_delegates_service_operations(app_config: AppConfig, tmp_path: Path) -> None:
    """services/stop/start_services go through the service directory and controller."""
    ansible, _, systemd = _build(app_config, tmp_path)

    assert ansible.services() == ["nginx", "rabbitmq"]

    stop_report = ansible.stop()
    start_report = ansible.start_services()

    assert stop_report.ok and start_report.ok
    assert systemd.calls == [
        ("stop", "nginx"),
        ("disable", "nginx"),
        ("stop", "rabbitmq"),
        ("disable", "rabbitmq"),
        ("start", "nginx"),
        ("enable", "nginx"),
        ("start", "rabbitmq"),
        ("enable", "rabbitmq"),
    ]


@pytest.mark.parametrize(
    ("available", "configured", "running", "expected"),
    [
        (False, True, True, InstallState.NOT_INSTALLED),
        (True, False, True, InstallState.INSTALLED_UNCONFIGURED),
        (True, True, False, InstallState.CONFIGURED_STOPPED),
        (True, True, True, InstallState.CONFIGURED_RUNNING),
    ],
)
def test_derive_state_from_observations(
    available: bool,
    configured: bool,
    running: bool,
    expected: InstallState,
) -> None:
    """Earlier facts take precedence over later ones."""
    state = InstallState.derive(available=available, configured=configured, running=running)

    assert state is expected
