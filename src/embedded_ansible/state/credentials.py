"""Persisted credentials for the embedded Ansible installation.

The appliance keeps exactly one credential record, ``ansible.yml`` in the
state registry, holding three optional secrets:

* ``admin_password`` - the automation product's admin user password.
* ``rabbitmq_password`` - the message bus password.
* ``secret_key`` - key material mirrored into the product's SECRET_KEY file.

A populated field is never regenerated. :meth:`CredentialStore.fill_if_absent`
is the single place that decides between reusing and generating a value.
"""
from __future__ import annotations

import secrets
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import asdict, dataclass

from ..locking import LockHandle, LockManager
from .registry import StateRegistry, StateRegistryError

CREDENTIALS_DOCUMENT = "ansible.yml"
ADMIN_PASSWORD = "admin_password"
RABBITMQ_PASSWORD = "rabbitmq_password"
SECRET_KEY = "secret_key"
CREDENTIAL_FIELDS = (ADMIN_PASSWORD, RABBITMQ_PASSWORD, SECRET_KEY)
_UNSAFE_CHARACTERS = frozenset("'\"\\\n\r")


class CredentialStoreError(RuntimeError):
    """Raised when the credential record cannot be read or written."""


@dataclass(frozen=True, slots=True)
class AnsibleCredentials:
    """Snapshot of the persisted credential record."""

    admin_password: str | None = None
    rabbitmq_password: str | None = None
    secret_key: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        """Return the record as a plain mapping."""
        return asdict(self)


@dataclass(frozen=True, slots=True)
class FillResult:
    """Outcome of :meth:`CredentialStore.fill_if_absent`."""

    field: str
    value: str
    generated: bool


def generate_password() -> str:
    """Return a random password safe to embed in single-quoted inventory values."""
    return secrets.token_urlsafe(18)


def generate_secret_key() -> str:
    """Return a random 32 character hexadecimal secret key."""
    return secrets.token_hex(16)


class CredentialStore:
    """Read and conditionally write the appliance-wide credential record."""

    def __init__(
        self,
        registry: StateRegistry,
        *,
        locks: LockManager | None = None,
        document: str = CREDENTIALS_DOCUMENT,
    ) -> None:
        """Bind the store to *registry*, optionally serialising writers via *locks*."""
        self.registry = registry
        self.locks = locks
        self.document = document

    def load(self) -> AnsibleCredentials:
        """Return the current record; missing fields are ``None``."""
        raw = self._read_raw()
        return AnsibleCredentials(**{name: _normalize(raw.get(name)) for name in CREDENTIAL_FIELDS})

    def get(self, field: str) -> str | None:
        """Return the value of *field*, treating empty strings as unset."""
        _check_field(field)
        return _normalize(self._read_raw().get(field))

    def set(self, field: str, value: str) -> None:
        """Persist *value* for *field*; the write is durable on return."""
        _check_field(field)
        check_credential_value(field, value)
        raw = self._read_raw()
        payload = {name: _normalize(raw.get(name)) for name in CREDENTIAL_FIELDS}
        payload[field] = value
        try:
            self.registry.write(self.document, payload, mode=0o600)
        except StateRegistryError as exc:
            raise CredentialStoreError(str(exc)) from exc

    def fill_if_absent(self, field: str, generator: Callable[[], str]) -> FillResult:
        """Return the persisted *field*, generating and persisting it when unset."""
        _check_field(field)
        with self._writer_lock():
            current = self.get(field)
            if current:
                return FillResult(field=field, value=current, generated=False)
            value = generator()
            if not value:
                raise CredentialStoreError(f"Generator returned an empty value for {field}.")
            self.set(field, value)
            return FillResult(field=field, value=value, generated=True)

    @contextmanager
    def _writer_lock(self) -> Iterator[LockHandle | None]:
        if self.locks is None:
            yield None
            return
        with self.locks.credentials_lock() as handle:
            yield handle

    def _read_raw(self) -> Mapping[str, object]:
        try:
            data = self.registry.read(self.document, default={})
        except StateRegistryError as exc:
            raise CredentialStoreError(str(exc)) from exc
        if not isinstance(data, Mapping):
            raise CredentialStoreError(
                f"Credential record {self.registry.path_for(self.document)} is not a mapping."
            )
        return data


def check_credential_value(field: str, value: str) -> None:
    """Reject values that cannot be written inside a single-quoted inventory value."""
    if not value:
        raise CredentialStoreError(f"Refusing to persist an empty value for {field}.")
    unsafe = set(value) & _UNSAFE_CHARACTERS
    if unsafe:
        shown = ", ".join(repr(char) for char in sorted(unsafe))
        raise CredentialStoreError(f"Value for {field} contains unsupported characters: {shown}.")


def _check_field(field: str) -> None:
    if field not in CREDENTIAL_FIELDS:
        allowed = ", ".join(CREDENTIAL_FIELDS)
        raise CredentialStoreError(f"Unknown credential field '{field}'. Allowed: {allowed}.")


def _normalize(value: object) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text or None


__all__ = [
    "ADMIN_PASSWORD",
    "AnsibleCredentials",
    "CREDENTIAL_FIELDS",
    "CredentialStore",
    "CredentialStoreError",
    "FillResult",
    "RABBITMQ_PASSWORD",
    "SECRET_KEY",
    "check_credential_value",
    "generate_password",
    "generate_secret_key",
]
