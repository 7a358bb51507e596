"""Discover the OS services that make up the embedded installation."""
from __future__ import annotations

import shlex
from dataclasses import dataclass
from pathlib import Path

from ..providers.process import ProcessError, ProcessRunner
from ..providers.systemd import ServiceHandle, SystemdProvider


class ServiceDiscoveryError(RuntimeError):
    """Raised when the installer's service roster cannot be obtained."""


@dataclass(slots=True)
class ServiceDirectory:
    """Ask the installer which services it owns.

    The installer declares its roster as a shell variable inside its
    environment file, so discovery sources that file and echoes the variable.
    Nothing is cached: a reinstall may change the roster between calls.
    """

    runner: ProcessRunner
    systemd: SystemdProvider
    env_file: Path
    services_var: str = "TOWER_SERVICES"

    def __post_init__(self) -> None:
        """Reject variable names that would not expand in the shell."""
        if not self.services_var.isidentifier():
            raise ValueError(f"Invalid services variable name: {self.services_var!r}")

    def roster_command(self) -> str:
        """Return the shell snippet that prints the service roster."""
        return f"source {shlex.quote(str(self.env_file))}; echo ${self.services_var}"

    def discover_service_names(self) -> list[str]:
        """Return the installer's service names in declared order."""
        try:
            result = self.runner.run_shell(self.roster_command())
        except ProcessError as exc:
            raise ServiceDiscoveryError(f"Unable to list installer services: {exc}") from exc
        output = result.stdout or ""
        return output.split()

    def handle_for(self, name: str) -> ServiceHandle:
        """Bind *name* to a service handle; no systemd call is made."""
        return self.systemd.handle(name)

    def handles(self) -> list[ServiceHandle]:
        """Discover the roster and bind a handle per service."""
        return [self.handle_for(name) for name in self.discover_service_names()]


__all__ = ["ServiceDirectory", "ServiceDiscoveryError"]
