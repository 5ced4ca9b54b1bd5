"""
Applier capability: the thing that actually performs or undoes an update.

The state machine only depends on the Applier protocol. CommandApplier is
the implementation the CLI uses: it runs configured shell command
templates with {name} and {version} substituted per argument.
"""

import logging
import os
import shlex
import subprocess
from typing import Dict, List, Optional, Protocol

from .core.errors import ApplierError

logger = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 2000


class Applier(Protocol):
    """
    Performs (apply) or undoes (rollback) the effect of one update.

    Both methods return None on success and raise ApplierError on failure.
    They may block for as long as the underlying work takes.
    """

    def apply(self, name: str, version: Optional[str]) -> None:
        ...

    def rollback(self, name: str, version: Optional[str]) -> None:
        ...


def _tail(text: Optional[str], limit: int = STDERR_TAIL_CHARS) -> str:
    if not text:
        return ""
    text = text.strip()
    return text[-limit:]


class CommandApplier:
    """
    Applier running external commands.

    Templates are split with shlex first and placeholders substituted per
    argument afterwards, so a version string cannot inject shell syntax.

    Usage:
        applier = CommandApplier("apt-get install -y {name}={version}", "apt-get remove -y {name}")
    """

    def __init__(
        self,
        apply_command: Optional[str],
        rollback_command: Optional[str] = None,
        timeout: float = 600.0,
        cwd: Optional[str] = None,
    ) -> None:
        self.apply_command = apply_command
        self.rollback_command = rollback_command
        self.timeout = timeout
        self.cwd = cwd

    def apply(self, name: str, version: Optional[str]) -> None:
        self._run("apply", self.apply_command, name, version)

    def rollback(self, name: str, version: Optional[str]) -> None:
        self._run("rollback", self.rollback_command, name, version)

    def build_argv(self, template: str, name: str, version: Optional[str]) -> List[str]:
        try:
            parts = shlex.split(template)
        except ValueError as ex:
            raise ApplierError(f"malformed command template: {ex}", {"template": template}) from ex
        if not parts:
            raise ApplierError("command template is empty", {"template": template})
        try:
            return [p.format(name=name, version=version or "") for p in parts]
        except (KeyError, IndexError, ValueError) as ex:
            raise ApplierError(f"bad placeholder in command template: {ex}", {"template": template}) from ex

    def _env(self, name: str, version: Optional[str]) -> Dict[str, str]:
        env = dict(os.environ)
        env["WARDEN_UPDATE_NAME"] = name
        env["WARDEN_UPDATE_VERSION"] = version or ""
        return env

    def _run(self, operation: str, template: Optional[str], name: str, version: Optional[str]) -> None:
        if not template:
            raise ApplierError(f"no {operation} command configured", {"operation": operation})

        argv = self.build_argv(template, name, version)
        logger.info("Running %s command: %s", operation, shlex.join(argv))
        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                cwd=self.cwd,
                env=self._env(name, version),
            )
        except subprocess.TimeoutExpired as ex:
            raise ApplierError(
                f"{operation} timed out after {self.timeout:g}s",
                {
                    "operation": operation,
                    "timeout_secs": self.timeout,
                    "stderr": _tail(ex.stderr if isinstance(ex.stderr, str) else None),
                },
            ) from ex
        except OSError as ex:
            raise ApplierError(
                f"{operation} could not start: {ex}",
                {"operation": operation, "command": argv[0]},
            ) from ex

        if proc.returncode != 0:
            stderr = _tail(proc.stderr)
            raise ApplierError(
                stderr.splitlines()[-1] if stderr else f"{operation} exited with {proc.returncode}",
                {"operation": operation, "exit_code": proc.returncode, "stderr": stderr},
            )
