"""Task graph: expands run selectors into ordered task lists."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from bootrun.errors import UnknownPhaseError, UnknownProfileError, UnknownTaskError
from bootrun.manifest.model import Manifest, Phase, Profile, Task


class SelectorKind(str, Enum):
    TASK = "task"
    PHASE = "phase"
    PROFILE = "profile"


@dataclass(frozen=True)
class Selector:
    """What to run: one task, a whole phase, or a profile."""

    kind: SelectorKind
    value: str

    @classmethod
    def task(cls, task_id: str) -> Selector:
        return cls(SelectorKind.TASK, task_id)

    @classmethod
    def phase(cls, number: int) -> Selector:
        return cls(SelectorKind.PHASE, str(number))

    @classmethod
    def profile(cls, name: str) -> Selector:
        return cls(SelectorKind.PROFILE, name)

    def label(self) -> str:
        match self.kind:
            case SelectorKind.TASK:
                return f"task {self.value}"
            case SelectorKind.PHASE:
                return f"phase {self.value}"
            case _:
                return f"profile '{self.value}'"


class TaskGraph:
    """Read-only index over a manifest's tasks, phases and profiles.

    Phase expansion follows manifest declaration order; no topological
    re-sort happens. A task must be declared after the same-phase tasks it
    depends on, otherwise preflight rejects the run.
    """

    def __init__(self, manifest: Manifest) -> None:
        self._m = manifest

    @property
    def manifest(self) -> Manifest:
        return self._m

    def task(self, task_id: str) -> Task:
        task = self._m.get_task(task_id)
        if task is None:
            raise UnknownTaskError(task_id)
        return task

    def phases(self) -> list[Phase]:
        return [self._m.phases[n] for n in sorted(self._m.phases)]

    def profiles(self) -> list[Profile]:
        return list(self._m.profiles.values())

    def tasks_for_phase(self, number: int) -> list[Task]:
        phase = self._m.phases.get(number)
        if phase is None:
            raise UnknownPhaseError(number, sorted(self._m.phases))
        return [self._m.tasks[tid] for tid in phase.task_ids]

    def tasks_for_profile(self, name: str) -> list[Task]:
        profile = self._m.profiles.get(name)
        if profile is None:
            raise UnknownProfileError(name, list(self._m.profiles))
        return [self.task(tid) for tid in profile.task_ids]

    def resolve(self, selector: Selector) -> list[Task]:
        match selector.kind:
            case SelectorKind.TASK:
                return [self.task(selector.value)]
            case SelectorKind.PHASE:
                try:
                    number = int(selector.value)
                except ValueError:
                    raise UnknownPhaseError(selector.value, sorted(self._m.phases)) from None
                return self.tasks_for_phase(number)
            case SelectorKind.PROFILE:
                return self.tasks_for_profile(selector.value)
        raise ValueError(f"Unsupported selector: {selector}")

    def dependents(self, task_id: str) -> list[str]:
        """Ids of tasks that list *task_id* as a prerequisite."""
        return [t.id for t in self._m.tasks.values() if task_id in t.required_tasks]
