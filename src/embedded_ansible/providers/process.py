"""Process execution with named parameters and captured output."""
from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

ParamValue = str | int | Path | Sequence[str] | None


class ProcessError(RuntimeError):
    """Raised when an external command cannot be launched or exits non-zero."""

    def __init__(
        self,
        message: str,
        *,
        args: Sequence[str] = (),
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        """Store the failed command and its captured output."""
        super().__init__(message)
        self.command = list(args)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def build_args(command: str | Path, params: Mapping[str, ParamValue] | None = None) -> list[str]:
    """Expand *params* into command-line arguments following *command*.

    Single-letter keys become short options (``{"e": "x"}`` -> ``-e x``), longer
    keys become long options (``{"skip-tags": "a"}`` -> ``--skip-tags a``).
    Keys may also be given with their dashes already attached. ``None`` values
    produce a bare flag and sequences repeat the option once per item.
    """
    args = [str(command)]
    for key, value in (params or {}).items():
        option = _option_name(key)
        if value is None:
            args.append(option)
        elif isinstance(value, (str, int, Path)):
            args.extend([option, str(value)])
        else:
            for item in value:
                args.extend([option, str(item)])
    return args


def _option_name(key: str) -> str:
    if key.startswith("-"):
        return key
    normalized = key.replace("_", "-")
    return f"-{normalized}" if len(normalized) == 1 else f"--{normalized}"


@dataclass(slots=True)
class ProcessRunner:
    """Blocking command runner used for installer interaction."""

    shell: str = "/bin/bash"

    def run(
        self,
        command: str | Path,
        *,
        params: Mapping[str, ParamValue] | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Run *command* with *params*, raising :class:`ProcessError` on failure."""
        return self._execute(build_args(command, params), env=env, check=check)

    def run_shell(
        self,
        script: str,
        *,
        env: Mapping[str, str] | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Run *script* through the configured shell (``source`` needs bash)."""
        return self._execute([self.shell, "-c", script], env=env, check=check)

    def _execute(
        self,
        args: Sequence[str],
        *,
        env: Mapping[str, str] | None,
        check: bool,
    ) -> subprocess.CompletedProcess[str]:
        env_vars = None
        if env:
            env_vars = os.environ.copy()
            env_vars.update(env)
        try:
            result = subprocess.run(  # noqa: S603
                list(args),
                capture_output=True,
                text=True,
                check=False,
                env=env_vars,
            )
        except OSError as exc:
            raise ProcessError(f"{args[0]} could not be started: {exc}", args=args) from exc
        if check and result.returncode != 0:
            stdout = result.stdout or ""
            stderr = result.stderr or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise ProcessError(
                f"{args[0]} failed (exit {result.returncode}): {message}",
                args=args,
                returncode=result.returncode,
                stdout=stdout,
                stderr=stderr,
            )
        return result


__all__ = ["ParamValue", "ProcessError", "ProcessRunner", "build_args"]
