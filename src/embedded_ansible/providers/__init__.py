"""Provider interfaces for embedded-ansible."""
from __future__ import annotations

from .process import ProcessError, ProcessRunner, build_args
from .systemd import ServiceHandle, SystemdError, SystemdProvider

__all__ = [
    "ProcessError",
    "ProcessRunner",
    "ServiceHandle",
    "SystemdError",
    "SystemdProvider",
    "build_args",
]
