"""Detect whether the embedded Ansible installer is present."""
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path


@dataclass(slots=True)
class AvailabilityProbe:
    """Resolve the installer directory and report whether it exists.

    The environment variable named by *env_var* overrides *default_root*. The
    environment is read on every call (``os.environ`` unless *env* is given)
    so a changed override takes effect without rebuilding the probe.
    """

    default_root: Path
    env_var: str = "APPLIANCE_ANSIBLE_DIRECTORY"
    env: Mapping[str, str] | None = None

    def location(self) -> Path:
        """Return the single directory this probe consults."""
        env = os.environ if self.env is None else self.env
        override = env.get(self.env_var)
        if override:
            return Path(override).expanduser()
        return self.default_root.expanduser()

    def available(self) -> bool:
        """Return ``True`` when the resolved location is an existing directory."""
        try:
            return self.location().is_dir()
        except OSError:
            return False


__all__ = ["AvailabilityProbe"]
