"""Aggregate operations over the installer's service roster."""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from ..providers.systemd import ServiceHandle, SystemdError
from .services import ServiceDirectory

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ServiceFailure:
    """A service that could not complete an action."""

    name: str
    error: str


@dataclass(slots=True)
class ServiceActionReport:
    """Outcome of a best-effort action across every service."""

    action: str
    succeeded: list[str] = field(default_factory=list)
    failures: list[ServiceFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """``True`` when every service completed the action."""
        return not self.failures


@dataclass(slots=True)
class ServiceStatus:
    """Running state of a single service."""

    name: str
    running: bool


@dataclass(slots=True)
class LifecycleController:
    """Query, stop and start every service the installer declares."""

    directory: ServiceDirectory

    def running(self) -> bool:
        """Return ``True`` only when every discovered service is running.

        Stops querying at the first service that is not running.
        """
        return all(handle.running() for handle in self.directory.handles())

    def status(self) -> list[ServiceStatus]:
        """Return the running state of every discovered service."""
        return [
            ServiceStatus(name=handle.name, running=handle.running())
            for handle in self.directory.handles()
        ]

    def stop(self) -> ServiceActionReport:
        """Stop and then disable every discovered service."""
        return self._apply("stop", lambda handle: handle.stop().disable())

    def start(self) -> ServiceActionReport:
        """Start and then enable every discovered service."""
        return self._apply("start", lambda handle: handle.start().enable())

    def _apply(
        self,
        action: str,
        operation: Callable[[ServiceHandle], ServiceHandle],
    ) -> ServiceActionReport:
        report = ServiceActionReport(action=action)
        for handle in self.directory.handles():
            try:
                operation(handle)
            except SystemdError as exc:
                LOGGER.warning("Failed to %s service %s: %s", action, handle.name, exc)
                report.failures.append(ServiceFailure(name=handle.name, error=str(exc)))
                continue
            report.succeeded.append(handle.name)
        return report


__all__ = [
    "LifecycleController",
    "ServiceActionReport",
    "ServiceFailure",
    "ServiceStatus",
]
