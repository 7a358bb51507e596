"""Entry point tying the lifecycle components together."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from ..config import AppConfig
from ..locking import LockManager
from ..providers.process import ProcessRunner
from ..providers.systemd import SystemdProvider
from ..state.credentials import CredentialStore
from ..state.registry import StateRegistry
from ..templates import TemplateEngine
from .controller import LifecycleController, ServiceActionReport, ServiceStatus
from .orchestrator import InstallationOrchestrator, SetupResult
from .probe import AvailabilityProbe
from .services import ServiceDirectory


class InstallState(str, Enum):
    """Where the appliance stands relative to the embedded installer."""

    NOT_INSTALLED = "not_installed"
    INSTALLED_UNCONFIGURED = "installed_unconfigured"
    CONFIGURED_STOPPED = "configured_stopped"
    CONFIGURED_RUNNING = "configured_running"

    @classmethod
    def derive(cls, *, available: bool, configured: bool, running: bool) -> InstallState:
        """Return the state implied by the observed installer facts."""
        if not available:
            return cls.NOT_INSTALLED
        if not configured:
            return cls.INSTALLED_UNCONFIGURED
        if running:
            return cls.CONFIGURED_RUNNING
        return cls.CONFIGURED_STOPPED


@dataclass(slots=True)
class EmbeddedAnsible:
    """Facade over probe, service directory, controller and orchestrator."""

    probe: AvailabilityProbe
    directory: ServiceDirectory
    controller: LifecycleController
    orchestrator: InstallationOrchestrator

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        locks: LockManager | None = None,
        runner: ProcessRunner | None = None,
        systemd: SystemdProvider | None = None,
        templates: TemplateEngine | None = None,
        credentials: CredentialStore | None = None,
        env: Mapping[str, str] | None = None,
    ) -> EmbeddedAnsible:
        """Build the component graph from *config*, accepting injected collaborators."""
        runner = runner or ProcessRunner(shell=config.setup.shell)
        systemd = systemd or SystemdProvider(systemctl_bin=config.systemd.systemctl_bin)
        templates = templates or TemplateEngine.with_overrides(config.templates_dir)
        if credentials is None:
            credentials = CredentialStore(StateRegistry(config.registry_dir), locks=locks)

        probe = AvailabilityProbe(
            default_root=config.installer.root,
            env_var=config.installer.root_env_var,
            env=env,
        )
        directory = ServiceDirectory(
            runner=runner,
            systemd=systemd,
            env_file=config.installer.env_file,
            services_var=config.installer.services_var,
        )
        controller = LifecycleController(directory=directory)
        orchestrator = InstallationOrchestrator(
            config=config,
            controller=controller,
            credentials=credentials,
            runner=runner,
            templates=templates,
        )
        return cls(
            probe=probe,
            directory=directory,
            controller=controller,
            orchestrator=orchestrator,
        )

    def available(self) -> bool:
        return self.probe.available()

    def services(self) -> list[str]:
        return self.directory.discover_service_names()

    def running(self) -> bool:
        return self.controller.running()

    def status(self) -> list[ServiceStatus]:
        return self.controller.status()

    def stop(self) -> ServiceActionReport:
        return self.controller.stop()

    def start_services(self) -> ServiceActionReport:
        return self.controller.start()

    def configured(self) -> bool:
        return self.orchestrator.configured()

    def configure(self) -> SetupResult:
        return self.orchestrator.configure()

    def start(self) -> SetupResult:
        return self.orchestrator.start()

    def state(self) -> InstallState:
        """Derive the current :class:`InstallState`.

        Services are only queried once the installer is present and configured.
        """
        available = self.available()
        configured = available and self.configured()
        running = configured and self.running()
        return InstallState.derive(available=available, configured=configured, running=running)


__all__ = ["EmbeddedAnsible", "InstallState"]
