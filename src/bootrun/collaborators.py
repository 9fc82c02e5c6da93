"""Entry point adapters: turn a task's ``entry``/``rollback``/``verify`` reference into a call.

Two reference forms are supported:

* ``package.module:function``: a Python callable, called with the project
  root as a :class:`~pathlib.Path`. ``True``/``None``/``0`` mean success.
* a script path, relative to the manifest directory. ``.sh`` scripts run
  through ``bash``, ``.py`` scripts through the current interpreter, anything
  else is executed directly. The project root is passed as the only argument.
"""

from __future__ import annotations

import importlib
import re
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from rich.markup import escape

from bootrun import log
from bootrun.errors import CollaboratorError
from bootrun.io_utils import open_text

_CALLABLE_REF = re.compile(r"^[A-Za-z_][\w.]*:[A-Za-z_]\w*$")


@dataclass
class CollaboratorResult:
    """Uniform result from any collaborator invocation."""

    ok: bool = False
    return_code: int = 0
    error: str = ""
    duration: float = 0.0


class Collaborator:
    """A resolved reference, ready to be invoked."""

    kind: str = "base"

    def __init__(self, ref: str) -> None:
        self.ref = ref

    def invoke(self, project_root: Path, *, log_file: Path | None = None) -> CollaboratorResult:
        raise NotImplementedError


class CallableCollaborator(Collaborator):
    kind = "callable"

    def __init__(self, ref: str, func: Callable[[Path], object]) -> None:
        super().__init__(ref)
        self.func = func

    def invoke(self, project_root: Path, *, log_file: Path | None = None) -> CollaboratorResult:
        start = time.monotonic()
        try:
            value = self.func(project_root)
        except KeyboardInterrupt:
            raise
        except Exception as e:
            log.debug(f"{escape(self.ref)} raised {type(e).__name__}: {escape(str(e))}")
            return CollaboratorResult(
                ok=False,
                return_code=1,
                error=f"{type(e).__name__}: {e}",
                duration=time.monotonic() - start,
            )
        elapsed = time.monotonic() - start
        if value is None or value is True:
            return CollaboratorResult(ok=True, duration=elapsed)
        if isinstance(value, int) and not isinstance(value, bool):
            return CollaboratorResult(
                ok=value == 0,
                return_code=value,
                error="" if value == 0 else f"returned {value}",
                duration=elapsed,
            )
        return CollaboratorResult(ok=False, return_code=1, error=f"returned {value!r}", duration=elapsed)


class ScriptCollaborator(Collaborator):
    kind = "script"

    def __init__(self, ref: str, script: Path, *, timeout: float | None = None) -> None:
        super().__init__(ref)
        self.script = script
        self.timeout = timeout

    def build_cmd(self, project_root: Path) -> list[str]:
        match self.script.suffix:
            case ".sh" | ".bash":
                return ["bash", str(self.script), str(project_root)]
            case ".py":
                return [sys.executable, str(self.script), str(project_root)]
            case _:
                return [str(self.script), str(project_root)]

    def invoke(self, project_root: Path, *, log_file: Path | None = None) -> CollaboratorResult:
        cmd = self.build_cmd(project_root)
        start = time.monotonic()
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                cwd=project_root,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return CollaboratorResult(
                ok=False, return_code=-1, error="timeout", duration=time.monotonic() - start
            )
        except (FileNotFoundError, PermissionError) as e:
            return CollaboratorResult(
                ok=False, return_code=-1, error=str(e), duration=time.monotonic() - start
            )
        elapsed = time.monotonic() - start

        if log_file:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            with open_text(log_file, "a") as f:
                f.write(f"$ {' '.join(cmd)}\n")
                if proc.stdout:
                    f.write(proc.stdout)
                if proc.stderr:
                    f.write(proc.stderr)

        if proc.returncode == 0:
            return CollaboratorResult(ok=True, duration=elapsed)

        # Surface the last stderr line; scripts usually print the reason last.
        stderr = (proc.stderr or "").strip()
        error = stderr.splitlines()[-1] if stderr else f"exit code {proc.returncode}"
        return CollaboratorResult(
            ok=False, return_code=proc.returncode, error=error, duration=elapsed
        )


def resolve(ref: str, *, base_dir: str | Path, timeout: float | None = None) -> Collaborator:
    """Resolve *ref* or raise :class:`CollaboratorError`."""
    ref = ref.strip()
    if not ref:
        raise CollaboratorError(ref, "empty reference")

    if _CALLABLE_REF.match(ref):
        module_name, func_name = ref.split(":", 1)
        try:
            module = importlib.import_module(module_name)
        except ImportError as e:
            raise CollaboratorError(ref, f"cannot import {module_name}: {e}") from e
        func = getattr(module, func_name, None)
        if not callable(func):
            raise CollaboratorError(ref, f"{module_name} has no callable {func_name}")
        return CallableCollaborator(ref, func)

    script = Path(ref)
    if not script.is_absolute():
        script = Path(base_dir) / script
    if not script.is_file():
        raise CollaboratorError(ref, f"script not found: {script}")
    return ScriptCollaborator(ref, script, timeout=timeout)
