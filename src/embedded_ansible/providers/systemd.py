"""Systemd provider for the services owned by the embedded installer."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass


class SystemdError(RuntimeError):
    """Raised when systemd operations fail."""


@dataclass(slots=True)
class SystemdProvider:
    """Thin wrapper around ``systemctl`` for named services."""

    systemctl_bin: str = "systemctl"

    def handle(self, name: str) -> ServiceHandle:
        """Bind *name* to a :class:`ServiceHandle` without touching systemd."""
        return ServiceHandle(name=name, provider=self)

    def is_active(self, name: str) -> bool:
        """Return whether the service *name* is currently active."""
        result = self._systemctl("is-active", name, check=False)
        return result.returncode == 0

    def enable(self, name: str) -> subprocess.CompletedProcess[str]:
        """Enable the service."""
        return self._systemctl("enable", name)

    def disable(self, name: str) -> subprocess.CompletedProcess[str]:
        """Disable the service."""
        return self._systemctl("disable", name)

    def start(self, name: str) -> subprocess.CompletedProcess[str]:
        """Start the service."""
        return self._systemctl("start", name)

    def stop(self, name: str) -> subprocess.CompletedProcess[str]:
        """Stop the service."""
        return self._systemctl("stop", name)

    # ------------------------------------------------------------------
    def _systemctl(
        self,
        command: str,
        unit: str | None = None,
        *,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        args: list[str] = [self.systemctl_bin, command]
        if unit is not None:
            args.append(unit)
        return self._run_command(args, check=check, error_prefix=f"{self.systemctl_bin} {command}")

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        try:
            result = subprocess.run(  # noqa: S603, S607
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise SystemdError(f"{args[0]} not found: {exc}") from exc
        except OSError as exc:
            raise SystemdError(f"{args[0]} could not be started: {exc}") from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise SystemdError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


@dataclass(slots=True)
class ServiceHandle:
    """A named OS service bound to the provider that controls it.

    Mutating calls return the handle so they can be chained, e.g.
    ``handle.stop().disable()``. Any failure raises :class:`SystemdError`.
    """

    name: str
    provider: SystemdProvider

    def running(self) -> bool:
        return self.provider.is_active(self.name)

    def start(self) -> ServiceHandle:
        self.provider.start(self.name)
        return self

    def stop(self) -> ServiceHandle:
        self.provider.stop(self.name)
        return self

    def enable(self) -> ServiceHandle:
        self.provider.enable(self.name)
        return self

    def disable(self) -> ServiceHandle:
        self.provider.disable(self.name)
        return self


__all__ = ["ServiceHandle", "SystemdError", "SystemdProvider"]
