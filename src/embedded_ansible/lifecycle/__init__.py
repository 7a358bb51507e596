"""Lifecycle management for the embedded Ansible installation."""
from __future__ import annotations

from .controller import LifecycleController, ServiceActionReport, ServiceFailure, ServiceStatus
from .embedded import EmbeddedAnsible, InstallState
from .orchestrator import (
    InstallationOrchestrator,
    NotConfiguredError,
    QuiesceError,
    SecretKeyError,
    SetupResult,
    SetupScriptError,
)
from .probe import AvailabilityProbe
from .services import ServiceDirectory, ServiceDiscoveryError

__all__ = [
    "AvailabilityProbe",
    "EmbeddedAnsible",
    "InstallState",
    "InstallationOrchestrator",
    "LifecycleController",
    "NotConfiguredError",
    "QuiesceError",
    "SecretKeyError",
    "ServiceActionReport",
    "ServiceDirectory",
    "ServiceDiscoveryError",
    "ServiceFailure",
    "ServiceStatus",
    "SetupResult",
    "SetupScriptError",
]
