"""Task, Phase, Profile and Manifest data models used across loading, validation and execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Mapping


DEFAULT_PHASE_NAMES: dict[int, str] = {
    1: "Foundation",
    2: "Development Environment",
    3: "Infrastructure & Databases",
    4: "Services & Deployment",
    5: "Advanced Services",
}


def default_phase_name(number: int) -> str:
    return DEFAULT_PHASE_NAMES.get(number, f"Phase {number}")


class Comparator(str, Enum):
    MIN = "min"
    MAX = "max"
    EXACT = "exact"


@dataclass(frozen=True)
class ToolRequirement:
    name: str
    version: str | None = None
    comparator: Comparator = Comparator.MIN

    def describe(self) -> str:
        if not self.version:
            return self.name
        return f"{self.name} ({self.comparator.value} {self.version})"


@dataclass(frozen=True)
class ToolSpec:
    """Manifest-level hints on how to probe or install a tool."""

    name: str
    command: str | None = None
    version_args: tuple[str, ...] = ()
    version_pattern: str | None = None
    install_hint: str | None = None


@dataclass(frozen=True)
class Task:
    id: str
    phase: int = 1
    category: str = ""
    description: str = ""
    hidden: bool = False
    required_tools: tuple[ToolRequirement, ...] = ()
    optional_tools: tuple[str, ...] = ()
    required_tasks: tuple[str, ...] = ()
    entry_point: str = ""
    rollback: str = ""
    verify: str = ""

    @property
    def run_command(self) -> str:
        return f"bootrun run --task={self.id}"


@dataclass(frozen=True)
class Phase:
    number: int
    name: str
    task_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class Profile:
    name: str
    description: str = ""
    task_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class Manifest:
    """Aggregate root. Immutable once built; reload to change."""

    tasks: Mapping[str, Task] = field(default_factory=lambda: MappingProxyType({}))
    phases: Mapping[int, Phase] = field(default_factory=lambda: MappingProxyType({}))
    profiles: Mapping[str, Profile] = field(default_factory=lambda: MappingProxyType({}))
    tools: Mapping[str, ToolSpec] = field(default_factory=lambda: MappingProxyType({}))
    source_path: str = ""
    source_mtime_ns: int = 0

    def get_task(self, task_id: str) -> Task | None:
        return self.tasks.get(task_id)

    def task_ids(self) -> list[str]:
        return list(self.tasks)

    @property
    def base_dir(self) -> str:
        return str(Path(self.source_path).parent) if self.source_path else "."
