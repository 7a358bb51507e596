"""Pytest configuration helpers and shared fakes for the test suite."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Callable, Mapping
from pathlib import Path

import pytest

from embedded_ansible.config import AppConfig, load_config
from embedded_ansible.providers.process import ProcessError, ProcessRunner
from embedded_ansible.providers.systemd import SystemdError, SystemdProvider

ROSTER = "nginx supervisord rabbitmq"


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


class FakeRunner(ProcessRunner):
    """Records commands instead of executing them."""

    def __init__(
        self,
        roster: str = ROSTER,
        *,
        on_run: Callable[[str, Mapping[str, object]], None] | None = None,
        fail_run: bool = False,
        fail_shell: bool = False,
    ) -> None:
        """Configure the canned roster output and failure behaviour."""
        super().__init__(shell="/bin/bash")
        self.roster = roster
        self.on_run = on_run
        self.fail_run = fail_run
        self.fail_shell = fail_shell
        self.shell_calls: list[str] = []
        self.run_calls: list[tuple[str, dict[str, object]]] = []

    def run_shell(self, script, *, env=None, check=True):  # type: ignore[override]
        self.shell_calls.append(script)
        if self.fail_shell:
            raise ProcessError("/bin/bash failed (exit 1): no such file", returncode=1)
        return subprocess.CompletedProcess(
            ["/bin/bash", "-c", script], returncode=0, stdout=f"{self.roster}\n", stderr=""
        )

    def run(self, command, *, params=None, env=None, check=True):  # type: ignore[override]
        captured = dict(params or {})
        self.run_calls.append((str(command), captured))
        if self.on_run is not None:
            self.on_run(str(command), captured)
        if self.fail_run:
            raise ProcessError(f"{command} failed (exit 2): boom", returncode=2)
        return subprocess.CompletedProcess([str(command)], returncode=0, stdout="ok\n", stderr="")


class FakeSystemd(SystemdProvider):
    """In-memory service manager recording every call."""

    def __init__(
        self,
        running: Mapping[str, bool] | None = None,
        *,
        failing: set[tuple[str, str]] | None = None,
    ) -> None:
        """Seed running states and the (action, name) pairs that should fail."""
        super().__init__(systemctl_bin="systemctl")
        self.running_state = dict(running or {})
        self.failing = set(failing or set())
        self.calls: list[tuple[str, str]] = []

    def is_active(self, name: str) -> bool:
        self.calls.append(("is-active", name))
        return self.running_state.get(name, False)

    def start(self, name: str):  # type: ignore[override]
        return self._act("start", name)

    def stop(self, name: str):  # type: ignore[override]
        return self._act("stop", name)

    def enable(self, name: str):  # type: ignore[override]
        return self._act("enable", name)

    def disable(self, name: str):  # type: ignore[override]
        return self._act("disable", name)

    def _act(self, action: str, name: str) -> subprocess.CompletedProcess[str]:
        self.calls.append((action, name))
        if (action, name) in self.failing:
            raise SystemdError(f"systemctl {action} failed (exit 1): {name} refused")
        return subprocess.CompletedProcess(["systemctl", action, name], returncode=0)


def make_config(tmp_path: Path, **overrides: object) -> AppConfig:
    """Build an :class:`AppConfig` rooted in *tmp_path*."""
    values: dict[str, object] = {
        "state_dir": str(tmp_path / "state"),
        "logs_dir": str(tmp_path / "logs"),
        "runtime_dir": str(tmp_path / "run"),
        "templates_dir": str(tmp_path / "templates"),
        "installer": {"secret_key_file": str(tmp_path / "tower" / "SECRET_KEY")},
    }
    values.update(overrides)
    return load_config(config_file=tmp_path / "config.yml", env={}, overrides=values)


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Configuration with every writable path under the temporary directory."""
    return make_config(tmp_path)


@pytest.fixture(autouse=True)
def _clear_installer_override(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the host's installer override out of every test."""
    monkeypatch.delenv("APPLIANCE_ANSIBLE_DIRECTORY", raising=False)
