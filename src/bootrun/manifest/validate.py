"""Structural manifest validation: references, phase ordering, cycles."""

from __future__ import annotations

from bootrun.errors import (
    DependencyCycleError,
    ManifestValidationError,
    PhaseOrderViolationError,
    ProfilePhaseOrderError,
    UnknownDependencyError,
    UnknownProfileMemberError,
)
from bootrun.manifest.model import Manifest


def detect_cycles(manifest: Manifest) -> list[str]:
    """Return the task ids of one dependency cycle, or ``[]`` if there is none.

    The returned path starts and ends with the same id (``A -> B -> A``).
    Unknown dependency ids are ignored here; :func:`validate` reports them.
    """
    WHITE, GREY, BLACK = 0, 1, 2
    color = {tid: WHITE for tid in manifest.tasks}

    for root in manifest.tasks:
        if color[root] != WHITE:
            continue
        # Each frame is (task id, iterator over its dependencies).
        path: list[str] = [root]
        frames = [(root, iter(manifest.tasks[root].required_tasks))]
        color[root] = GREY
        while frames:
            tid, deps = frames[-1]
            for dep in deps:
                if dep not in color:
                    continue
                if color[dep] == GREY:
                    return path[path.index(dep):] + [dep]
                if color[dep] == WHITE:
                    color[dep] = GREY
                    path.append(dep)
                    frames.append((dep, iter(manifest.tasks[dep].required_tasks)))
                    break
            else:
                frames.pop()
                path.pop()
                color[tid] = BLACK
    return []


def validate(manifest: Manifest) -> list[ManifestValidationError]:
    """Return every structural problem found, in manifest declaration order."""
    issues: list[ManifestValidationError] = []

    for task in manifest.tasks.values():
        for dep in task.required_tasks:
            target = manifest.get_task(dep)
            if target is None:
                issues.append(UnknownDependencyError(task.id, dep))
            elif target.phase > task.phase:
                issues.append(
                    PhaseOrderViolationError(task.id, task.phase, dep, target.phase)
                )

    for profile in manifest.profiles.values():
        previous_phase = 0
        for tid in profile.task_ids:
            member = manifest.get_task(tid)
            if member is None:
                issues.append(UnknownProfileMemberError(profile.name, tid))
                continue
            if member.phase < previous_phase:
                issues.append(
                    ProfilePhaseOrderError(profile.name, tid, member.phase, previous_phase)
                )
            previous_phase = max(previous_phase, member.phase)

    cycle = detect_cycles(manifest)
    if cycle:
        issues.append(DependencyCycleError(cycle))

    return issues


def raise_for_issues(issues: list[ManifestValidationError]) -> None:
    """Raise the first issue, carrying the whole list on ``.issues``."""
    if not issues:
        return
    first = issues[0]
    first.issues = list(issues)
    raise first
