"""Tests for the configure/start workflow."""
from __future__ import annotations

import re
from collections.abc import Mapping
from pathlib import Path

import pytest
from conftest import FakeRunner, FakeSystemd

from embedded_ansible.config import AppConfig
from embedded_ansible.lifecycle import (
    EmbeddedAnsible,
    InstallationOrchestrator,
    LifecycleController,
    NotConfiguredError,
    QuiesceError,
    SetupScriptError,
)
from embedded_ansible.state import CredentialStore, CredentialStoreError, StateRegistry

SETUP_SCRIPT = "/opt/ansible-installer/setup.sh"


class InventoryCapture:
    """Reads the inventory file while the setup script 'runs'."""

    def __init__(self) -> None:
        """Start with no captured invocation."""
        self.script: str | None = None
        self.params: dict[str, object] = {}
        self.contents = ""
        self.path: Path | None = None

    def __call__(self, command: str, params: Mapping[str, object]) -> None:
        self.script = command
        self.params = dict(params)
        self.path = Path(str(params["i"]))
        self.contents = self.path.read_text(encoding="utf-8")


def _build(
    app_config: AppConfig,
    *,
    runner: FakeRunner | None = None,
    systemd: FakeSystemd | None = None,
) -> tuple[EmbeddedAnsible, CredentialStore, FakeRunner]:
    runner = runner or FakeRunner()
    store = CredentialStore(StateRegistry(app_config.registry_dir))
    ansible = EmbeddedAnsible.from_config(
        app_config,
        runner=runner,
        systemd=systemd or FakeSystemd(),
        credentials=store,
        env={},
    )
    return ansible, store, runner


def _orchestrator(ansible: EmbeddedAnsible) -> InstallationOrchestrator:
    return ansible.orchestrator


def test_configure_generates_passwords_when_unset(app_config: AppConfig) -> None:
    """Missing passwords are generated, persisted and rendered into the inventory."""
    capture = InventoryCapture()
    ansible, store, _ = _build(app_config, runner=FakeRunner(on_run=capture))

    result = ansible.configure()

    assert capture.script == SETUP_SCRIPT
    assert capture.params["e"] == "minimum_var_space=0"
    assert capture.params["k"] == "packages,migrations,supervisor"

    credentials = store.load()
    assert credentials.admin_password is not None
    assert credentials.rabbitmq_password is not None
    assert f"admin_password='{credentials.admin_password}'" in capture.contents
    assert f"rabbitmq_password='{credentials.rabbitmq_password}'" in capture.contents
    assert set(result.generated) == {"secret_key", "admin_password", "rabbitmq_password"}


def test_configure_reuses_existing_passwords(app_config: AppConfig) -> None:
    """Persisted passwords are used verbatim and left unchanged."""
    capture = InventoryCapture()
    ansible, store, _ = _build(app_config, runner=FakeRunner(on_run=capture))
    store.set("admin_password", "adminpassword")
    store.set("rabbitmq_password", "rabbitpassword")

    result = ansible.configure()

    assert capture.script == SETUP_SCRIPT
    assert capture.params["e"] == "minimum_var_space=0"
    assert capture.params["k"] == "packages,migrations,supervisor"
    assert "admin_password='adminpassword'" in capture.contents
    assert "rabbitmq_password='rabbitpassword'" in capture.contents
    assert store.get("admin_password") == "adminpassword"
    assert store.get("rabbitmq_password") == "rabbitpassword"
    assert "admin_password" not in result.generated


def test_configure_fills_each_password_independently(app_config: AppConfig) -> None:
    """Only the missing field is generated."""
    capture = InventoryCapture()
    ansible, store, _ = _build(app_config, runner=FakeRunner(on_run=capture))
    store.set("admin_password", "adminpassword")

    ansible.configure()

    rabbit = store.get("rabbitmq_password")
    assert store.get("admin_password") == "adminpassword"
    assert rabbit
    assert f"rabbitmq_password='{rabbit}'" in capture.contents


def test_configure_quiesces_before_running_setup(
    app_config: AppConfig,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """The secret key and the service stop both complete before the script runs."""
    events: list[str] = []
    runner = FakeRunner(on_run=lambda command, params: events.append("setup"))
    ansible, _, _ = _build(app_config, runner=runner)
    orchestrator = _orchestrator(ansible)

    original_key = orchestrator.configure_secret_key
    original_stop = LifecycleController.stop

    def record_key():
        events.append("secret_key")
        return original_key()

    def record_stop(self: LifecycleController):
        events.append("stop")
        return original_stop(self)

    monkeypatch.setattr(orchestrator, "configure_secret_key", record_key)
    monkeypatch.setattr(LifecycleController, "stop", record_stop)

    orchestrator.configure()

    assert events == ["secret_key", "stop", "setup"]


def test_configure_stops_all_services(app_config: AppConfig) -> None:
    """configure() stops and disables every service first."""
    systemd = FakeSystemd()
    ansible, _, _ = _build(app_config, systemd=systemd)

    result = ansible.configure()

    assert ("stop", "rabbitmq") in systemd.calls
    assert ("disable", "rabbitmq") in systemd.calls
    assert result.stop_report is not None
    assert result.stop_report.ok is True


def test_configure_aborts_when_a_service_fails_to_stop(app_config: AppConfig) -> None:
    """A service left running stops configure before passwords or setup."""
    systemd = FakeSystemd(running={"nginx": True}, failing={("stop", "nginx")})
    ansible, store, runner = _build(app_config, systemd=systemd)

    with pytest.raises(QuiesceError, match="nginx") as excinfo:
        ansible.configure()

    report = excinfo.value.report
    assert [failure.name for failure in report.failures] == ["nginx"]
    assert report.succeeded == ["supervisord", "rabbitmq"]
    assert ("stop", "rabbitmq") in systemd.calls
    assert runner.run_calls == []
    assert store.get("admin_password") is None
    assert store.get("rabbitmq_password") is None


def test_start_uses_persisted_passwords_without_supervisor(app_config: AppConfig) -> None:
    """start() runs setup with packages,migrations only."""
    capture = InventoryCapture()
    systemd = FakeSystemd()
    ansible, store, _ = _build(app_config, runner=FakeRunner(on_run=capture), systemd=systemd)
    store.set("admin_password", "adminpassword")
    store.set("rabbitmq_password", "rabbitpassword")

    ansible.start()

    assert capture.script == SETUP_SCRIPT
    assert capture.params["e"] == "minimum_var_space=0"
    assert capture.params["k"] == "packages,migrations"
    assert "admin_password='adminpassword'" in capture.contents
    assert "rabbitmq_password='rabbitpassword'" in capture.contents
    assert systemd.calls == []
    assert not app_config.installer.secret_key_file.exists()


def test_start_requires_configured_passwords(app_config: AppConfig) -> None:
    """start() refuses to render empty credentials."""
    ansible, store, runner = _build(app_config)
    store.set("admin_password", "adminpassword")

    with pytest.raises(NotConfiguredError, match="rabbitmq_password"):
        ansible.start()

    assert runner.run_calls == []


def test_inventory_file_removed_after_setup(app_config: AppConfig) -> None:
    """The rendered inventory is ephemeral and private."""
    modes: list[int] = []
    capture = InventoryCapture()

    def on_run(command: str, params: Mapping[str, object]) -> None:
        capture(command, params)
        modes.append(Path(str(params["i"])).stat().st_mode & 0o777)

    ansible, _, _ = _build(app_config, runner=FakeRunner(on_run=on_run))

    ansible.configure()

    assert capture.path is not None
    assert capture.path.parent == app_config.runtime_dir
    assert not capture.path.exists()
    assert modes == [0o600]


def test_inventory_includes_static_vars(app_config: AppConfig) -> None:
    """Configured inventory variables are rendered alongside the passwords."""
    capture = InventoryCapture()
    ansible, _, _ = _build(app_config, runner=FakeRunner(on_run=capture))

    ansible.configure()

    assert "[tower]\nlocalhost ansible_connection=local" in capture.contents
    assert "rabbitmq_port=5672" in capture.contents
    assert "rabbitmq_vhost=tower" in capture.contents


def test_setup_failure_surfaces_and_cleans_up(app_config: AppConfig) -> None:
    """A failing setup script raises SetupScriptError and removes the inventory."""
    capture = InventoryCapture()
    ansible, _, _ = _build(app_config, runner=FakeRunner(on_run=capture, fail_run=True))

    with pytest.raises(SetupScriptError):
        ansible.configure()

    assert capture.path is not None
    assert not capture.path.exists()


def test_configure_secret_key_generates_when_unset(app_config: AppConfig) -> None:
    """A new hex key is persisted and mirrored into the key file."""
    ansible, store, _ = _build(app_config)
    assert store.get("secret_key") is None

    _orchestrator(ansible).configure_secret_key()

    key = store.get("secret_key")
    assert key is not None
    assert re.fullmatch(r"[0-9a-f]{32}", key)
    assert app_config.installer.secret_key_file.read_text(encoding="utf-8") == key


def test_configure_secret_key_reuses_persisted_key(
    app_config: AppConfig,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """An existing key is written to disk without rewriting the record."""
    ansible, store, _ = _build(app_config)
    store.set("secret_key", "supasecret")
    key_file = app_config.installer.secret_key_file
    key_file.parent.mkdir(parents=True, exist_ok=True)
    key_file.write_text("stale-value-from-elsewhere", encoding="utf-8")

    def fail_set(field: str, value: str) -> None:
        raise AssertionError(f"{field} must not be rewritten")

    monkeypatch.setattr(store, "set", fail_set)

    result = _orchestrator(ansible).configure_secret_key()

    assert result.generated is False
    assert key_file.read_text(encoding="utf-8") == "supasecret"


def test_configured_reflects_key_file(app_config: AppConfig) -> None:
    """configured() requires the persisted key and the file to match."""
    ansible, store, _ = _build(app_config)
    assert ansible.configured() is False

    _orchestrator(ansible).configure_secret_key()
    assert ansible.configured() is True

    app_config.installer.secret_key_file.write_text("different", encoding="utf-8")
    assert ansible.configured() is False


def test_custom_password_generator(app_config: AppConfig) -> None:
    """The password generator is injectable."""
    capture = InventoryCapture()
    ansible, store, _ = _build(app_config, runner=FakeRunner(on_run=capture))
    _orchestrator(ansible).password_generator = lambda: "generated"

    ansible.configure()

    assert store.get("admin_password") == "generated"
    assert "admin_password='generated'" in capture.contents


def test_start_rejects_password_that_breaks_inventory_quoting(app_config: AppConfig) -> None:
    """A stored password containing a quote is refused before setup runs."""
    ansible, _, runner = _build(app_config)
    StateRegistry(app_config.registry_dir).write(
        "ansible.yml",
        {"admin_password": "it's", "rabbitmq_password": "rabbitpassword"},
    )

    with pytest.raises(CredentialStoreError, match="admin_password"):
        ansible.start()

    assert runner.run_calls == []
