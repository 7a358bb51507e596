"""State management helpers for embedded-ansible."""
from __future__ import annotations

from .credentials import (
    AnsibleCredentials,
    CredentialStore,
    CredentialStoreError,
    FillResult,
    generate_password,
    generate_secret_key,
)
from .registry import StateRegistry, StateRegistryError

__all__ = [
    "AnsibleCredentials",
    "CredentialStore",
    "CredentialStoreError",
    "FillResult",
    "StateRegistry",
    "StateRegistryError",
    "generate_password",
    "generate_secret_key",
]
