"""Shared fixtures for bootrun tests.

File handling in tests:
- Use tmp_path for any directory or file creation so tests are isolated and cleaned up.
- Use bootrun.io_utils read_text/write_text for consistent UTF-8 I/O.
- Never probe the real machine for tools; use the ``fake_tools`` fixture.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any

import pytest

from bootrun.io_utils import write_text
from bootrun.manifest.io import build_manifest, parse_tool_requirement
from bootrun.manifest.model import Manifest, Task, ToolSpec
from bootrun.tools import VersionProbe

# Marks a fake tool as installed but with a version nobody can parse.
NO_VERSION = object()


class FakeProbe(VersionProbe):
    """Answers from a dict instead of PATH and subprocesses."""

    def __init__(self, env: FakeToolEnv, name: str) -> None:
        self.env = env
        self.name = name
        self.command = name

    def build_cmd(self, executable: str) -> list[str]:
        return [executable, "--version"]

    def parse_version(self, raw: str) -> str | None:
        return raw or None

    def locate(self) -> str | None:
        self.env.record(self.name)
        if self.name not in self.env.tools:
            return None
        return f"/usr/bin/{self.name}"

    def detect_version(self, executable: str, *, timeout: int = 10) -> str | None:
        gate = self.env.gates.get(self.name)
        if gate is not None:
            gate.wait(timeout=5)
        value = self.env.tools.get(self.name)
        if value is NO_VERSION or value is None:
            return None
        return str(value)


class FakeToolEnv:
    """A fake machine: tool name -> version (or ``NO_VERSION``)."""

    def __init__(self, tools: dict[str, Any] | None = None) -> None:
        self.tools: dict[str, Any] = dict(tools or {})
        self.gates: dict[str, threading.Event] = {}
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def record(self, name: str) -> None:
        with self._lock:
            self.calls.append((name, threading.current_thread().name))

    def install(self, name: str, version: Any = NO_VERSION) -> None:
        self.tools[name] = version

    def remove(self, name: str) -> None:
        self.tools.pop(name, None)

    def factory(self, name: str, spec: ToolSpec | None = None) -> VersionProbe:
        return FakeProbe(self, name)


@pytest.fixture
def fake_tools():
    """Factory fixture: ``fake_tools({"node": "18.2.0"})`` -> FakeToolEnv."""

    def _make(tools: dict[str, Any] | None = None) -> FakeToolEnv:
        return FakeToolEnv(tools)

    return _make


def _make_task(
    id: str,
    phase: int = 1,
    tools: list[str] | None = None,
    optional: list[str] | None = None,
    requires: list[str] | None = None,
    entry: str = "",
    **kwargs: Any,
) -> Task:
    return Task(
        id=id,
        phase=phase,
        required_tools=tuple(
            parse_tool_requirement(t, f"tasks.{id}") for t in (tools or [])
        ),
        optional_tools=tuple(optional or []),
        required_tasks=tuple(requires or []),
        entry_point=entry,
        **kwargs,
    )


def _make_manifest(doc: dict[str, Any], source_path: str = "") -> Manifest:
    return build_manifest(doc, source_path=source_path)


def _write_manifest(directory: Path, doc: dict[str, Any], name: str = "bootrun.json") -> Path:
    path = directory / name
    if path.suffix in (".yaml", ".yml"):
        import yaml

        write_text(path, yaml.safe_dump(doc, sort_keys=False))
    else:
        write_text(path, json.dumps(doc, indent=2))
    return path


@pytest.fixture
def make_task():
    """Factory fixture that creates Task instances."""
    return _make_task


@pytest.fixture
def make_manifest():
    """Factory fixture that builds a Manifest from a raw document."""
    return _make_manifest


@pytest.fixture
def write_manifest():
    """Factory fixture that writes a manifest document to disk."""
    return _write_manifest


@pytest.fixture
def git_packages_doc() -> dict[str, Any]:
    """Two phase-1 tasks where ``packages`` needs ``git`` first."""
    return {
        "tasks": {
            "git": {"phase": 1, "category": "core", "entry": "os.path:isdir"},
            "packages": {
                "phase": 1,
                "category": "core",
                "entry": "os.path:isdir",
                "requires": {"tasks": ["git"]},
            },
        },
        "phases": {"1": {"name": "Foundation"}},
    }
