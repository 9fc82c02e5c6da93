"""Logging utilities with colored output via Rich.

While a run log is attached (see :func:`run_log`), every message is also
appended to that file as plain text with a timestamp.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, TextIO

from rich.console import Console
from rich.errors import MarkupError
from rich.text import Text

from bootrun.io_utils import open_text

console = Console(highlight=False)
_err_console = Console(highlight=False, stderr=True)

_verbose = False
_run_log: TextIO | None = None


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = enabled


def is_verbose() -> bool:
    return _verbose


def _mirror(level: str, msg: str) -> None:
    if _run_log is None:
        return
    stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    try:
        plain = Text.from_markup(msg).plain
    except MarkupError:
        plain = msg
    _run_log.write(f"{stamp} {level:<5} {plain}\n")
    _run_log.flush()


def info(msg: str) -> None:
    console.print(f"[blue]\\[INFO][/blue] {msg}")
    _mirror("INFO", msg)


def success(msg: str) -> None:
    console.print(f"[green]\\[OK][/green] {msg}")
    _mirror("OK", msg)


def warn(msg: str) -> None:
    console.print(f"[yellow]\\[WARN][/yellow] {msg}")
    _mirror("WARN", msg)


def error(msg: str) -> None:
    _err_console.print(f"[red]\\[ERROR][/red] {msg}")
    _mirror("ERROR", msg)


def debug(msg: str) -> None:
    if _verbose:
        console.print(f"[dim]\\[DEBUG] {msg}[/dim]")
    _mirror("DEBUG", msg)


def section(title: str) -> None:
    console.print("")
    console.print(f"[bold]>>> {title}[/bold]")
    _mirror("", f">>> {title}")


@contextmanager
def run_log(path: str | Path | None) -> Iterator[Path | None]:
    """Mirror messages into *path* for the duration of the block.

    ``None`` disables mirroring. Nesting replaces the outer file until the
    inner block exits.
    """
    global _run_log
    if path is None:
        yield None
        return
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    previous = _run_log
    with open_text(p, "a") as f:
        _run_log = f
        try:
            yield p
        finally:
            _run_log = previous
