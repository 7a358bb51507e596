"""Configure and start the embedded installer via its setup script.

``configure()`` quiesces the services (aborting with :class:`QuiesceError`
when any of them fails to stop), makes sure every credential exists
(generating only the missing ones) and runs ``setup.sh`` with the full tag
set. ``start()`` reuses the persisted credentials and runs the script without
the ``supervisor`` stage.

The persisted record is the source of truth for credentials: the SECRET_KEY
file is always rewritten from it, never read back into it.
"""
from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from ..config import AppConfig
from ..providers.process import ProcessError, ProcessRunner
from ..state.credentials import (
    ADMIN_PASSWORD,
    RABBITMQ_PASSWORD,
    SECRET_KEY,
    CredentialStore,
    FillResult,
    check_credential_value,
    generate_password,
    generate_secret_key,
)
from ..templates import TemplateEngine, write_text_atomic
from .controller import LifecycleController, ServiceActionReport

LOGGER = logging.getLogger(__name__)

INVENTORY_TEMPLATE = "ansible/inventory.j2"


class SetupScriptError(RuntimeError):
    """Raised when the installer's setup script fails or cannot be launched."""


class NotConfiguredError(RuntimeError):
    """Raised when an operation needs credentials that were never persisted."""


class SecretKeyError(RuntimeError):
    """Raised when the SECRET_KEY file cannot be written."""


class QuiesceError(RuntimeError):
    """Raised when configure cannot stop every service before running setup."""

    def __init__(self, report: ServiceActionReport) -> None:
        """Keep the stop report so callers can show which services stayed up."""
        names = ", ".join(failure.name for failure in report.failures)
        super().__init__(f"Unable to stop services before setup: {names}")
        self.report = report


@dataclass(slots=True)
class SetupResult:
    """Outcome of a setup script run."""

    script: Path
    tags: str
    returncode: int
    stdout: str = ""
    stderr: str = ""
    generated: list[str] = field(default_factory=list)
    stop_report: ServiceActionReport | None = None


class InstallationOrchestrator:
    """Drive ``setup.sh`` with reconciled credentials."""

    def __init__(
        self,
        *,
        config: AppConfig,
        controller: LifecycleController,
        credentials: CredentialStore,
        runner: ProcessRunner,
        templates: TemplateEngine,
        password_generator: Callable[[], str] = generate_password,
        secret_key_generator: Callable[[], str] = generate_secret_key,
    ) -> None:
        """Wire the orchestrator to its collaborators."""
        self.config = config
        self.controller = controller
        self.credentials = credentials
        self.runner = runner
        self.templates = templates
        self.password_generator = password_generator
        self.secret_key_generator = secret_key_generator

    @property
    def setup_script(self) -> Path:
        return self.config.setup_script

    @property
    def secret_key_file(self) -> Path:
        return self.config.installer.secret_key_file

    def configured(self) -> bool:
        """Return whether the secret key is persisted and mirrored on disk."""
        key = self.credentials.get(SECRET_KEY)
        if not key:
            return False
        try:
            return self.secret_key_file.read_text(encoding="utf-8") == key
        except OSError:
            return False

    def configure_secret_key(self) -> FillResult:
        """Ensure a secret key is persisted and write it to the SECRET_KEY file."""
        result = self.credentials.fill_if_absent(SECRET_KEY, self.secret_key_generator)
        try:
            write_text_atomic(self.secret_key_file, result.value, mode=0o600)
        except OSError as exc:
            raise SecretKeyError(f"Unable to write {self.secret_key_file}: {exc}") from exc
        LOGGER.info(
            "Secret key %s and written to %s",
            "generated" if result.generated else "reused",
            self.secret_key_file,
        )
        return result

    def configure(self) -> SetupResult:
        """Quiesce services, reconcile credentials and run the full setup."""
        key = self.configure_secret_key()
        stop_report = self.controller.stop()
        if not stop_report.ok:
            raise QuiesceError(stop_report)

        admin = self.credentials.fill_if_absent(ADMIN_PASSWORD, self.password_generator)
        rabbitmq = self.credentials.fill_if_absent(RABBITMQ_PASSWORD, self.password_generator)

        result = self._run_setup(
            self.config.setup.configure_tags,
            admin_password=admin.value,
            rabbitmq_password=rabbitmq.value,
        )
        result.generated = [fill.field for fill in (key, admin, rabbitmq) if fill.generated]
        result.stop_report = stop_report
        return result

    def start(self) -> SetupResult:
        """Run setup with the persisted credentials, skipping supervisor setup."""
        current = self.credentials.load()
        admin_password = current.admin_password
        rabbitmq_password = current.rabbitmq_password
        if not admin_password or not rabbitmq_password:
            missing = [
                name
                for name, value in (
                    (ADMIN_PASSWORD, admin_password),
                    (RABBITMQ_PASSWORD, rabbitmq_password),
                )
                if not value
            ]
            raise NotConfiguredError(
                f"Embedded Ansible has not been configured (missing: {', '.join(missing)}). "
                "Run configure first."
            )
        return self._run_setup(
            self.config.setup.start_tags,
            admin_password=admin_password,
            rabbitmq_password=rabbitmq_password,
        )

    # ------------------------------------------------------------------
    def inventory_context(self, admin_password: str, rabbitmq_password: str) -> dict[str, object]:
        check_credential_value(ADMIN_PASSWORD, admin_password)
        check_credential_value(RABBITMQ_PASSWORD, rabbitmq_password)
        return {
            "admin_password": admin_password,
            "rabbitmq_password": rabbitmq_password,
            "inventory_vars": dict(self.config.inventory.vars),
        }

    def _run_setup(
        self,
        tags: str,
        *,
        admin_password: str,
        rabbitmq_password: str,
    ) -> SetupResult:
        context = self.inventory_context(admin_password, rabbitmq_password)
        with self._inventory_file(context) as inventory_path:
            params: Mapping[str, str] = {
                "e": self.config.setup.extra_vars,
                "k": tags,
                "i": str(inventory_path),
            }
            LOGGER.info("Running %s with tags %s", self.setup_script, tags)
            try:
                completed = self.runner.run(self.setup_script, params=params)
            except ProcessError as exc:
                raise SetupScriptError(f"Setup script {self.setup_script} failed: {exc}") from exc
        return SetupResult(
            script=self.setup_script,
            tags=tags,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )

    @contextmanager
    def _inventory_file(self, context: Mapping[str, object]) -> Iterator[Path]:
        rendered = self.templates.render_to_string(INVENTORY_TEMPLATE, context)
        work_dir = self.config.runtime_dir
        work_dir.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(dir=str(work_dir), prefix="inventory-", suffix=".ini")
        path = Path(name)
        try:
            os.fchmod(fd, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(rendered)
            yield path
        finally:
            path.unlink(missing_ok=True)


__all__ = [
    "InstallationOrchestrator",
    "NotConfiguredError",
    "QuiesceError",
    "SecretKeyError",
    "SetupResult",
    "SetupScriptError",
]
