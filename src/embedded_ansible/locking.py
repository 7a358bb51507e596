"""File-based locks that serialise mutating embedded-ansible operations.

Two locks exist:

* ``embedded-ansible.lock`` guards whole lifecycle operations (configure,
  start, stop) so two callers never drive the installer at the same time.
* ``credentials.lock`` guards the read-then-write sequence used when filling
  missing credentials, so concurrent callers cannot both observe an empty
  field and persist different values.

Locks are advisory ``flock`` locks. Each lockfile receives a small JSON
payload describing the holder; the file is left behind after release for
diagnostics.
"""
from __future__ import annotations

import fcntl
import json
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

GLOBAL_LOCK_NAME = "embedded-ansible"
CREDENTIALS_LOCK_NAME = "credentials"
_POLL_INTERVAL = 0.05


class LockError(RuntimeError):
    """Raised when a lock cannot be prepared or acquired."""


class LockTimeoutError(LockError):
    """Raised when a lock could not be acquired before the timeout."""


@dataclass(slots=True)
class LockHandle:
    """A held lock together with the time spent waiting for it."""

    name: str
    path: Path
    wait_ms: int


@dataclass(slots=True)
class LockManager:
    """Acquire named advisory locks under *root*."""

    root: Path
    default_timeout: float = 30.0

    def lock_path(self, name: str) -> Path:
        """Return the lockfile path for *name*."""
        safe = name.replace("/", "-")
        return self.root / f"{safe}.lock"

    @contextmanager
    def global_lock(self, *, timeout: float | None = None) -> Iterator[LockHandle]:
        """Hold the global lifecycle lock."""
        with self.lock(GLOBAL_LOCK_NAME, timeout=timeout) as handle:
            yield handle

    @contextmanager
    def credentials_lock(self, *, timeout: float | None = None) -> Iterator[LockHandle]:
        """Hold the lock guarding credential reconciliation."""
        with self.lock(CREDENTIALS_LOCK_NAME, timeout=timeout) as handle:
            yield handle

    @contextmanager
    def lock(self, name: str, *, timeout: float | None = None) -> Iterator[LockHandle]:
        """Acquire the lock called *name*, waiting at most *timeout* seconds."""
        limit = self.default_timeout if timeout is None else timeout
        path = self.lock_path(name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o640)
        except OSError as exc:
            raise LockError(f"Unable to open lockfile {path}: {exc}") from exc

        started = time.monotonic()
        try:
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() - started >= limit:
                        raise LockTimeoutError(
                            f"Timed out after {limit:.1f}s waiting for lock {path}"
                        ) from None
                    time.sleep(_POLL_INTERVAL)

            wait_ms = int((time.monotonic() - started) * 1000)
            _write_metadata(fd, path)
            try:
                yield LockHandle(name=name, path=path, wait_ms=wait_ms)
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)


def _write_metadata(fd: int, path: Path) -> None:
    payload = {
        "pid": os.getpid(),
        "path": str(path),
        "acquired_at": datetime.now(UTC).isoformat(),
    }
    data = json.dumps(payload).encode("utf-8")
    os.ftruncate(fd, 0)
    os.lseek(fd, 0, os.SEEK_SET)
    os.write(fd, data)


__all__ = [
    "CREDENTIALS_LOCK_NAME",
    "GLOBAL_LOCK_NAME",
    "LockError",
    "LockHandle",
    "LockManager",
    "LockTimeoutError",
]
