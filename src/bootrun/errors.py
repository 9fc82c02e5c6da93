"""Exception hierarchy for manifest loading, resolution, and marker storage.

Preflight problems and task failures are not exceptions: they are collected
as values (see :mod:`bootrun.validator` and :mod:`bootrun.orchestrator`) so
a whole batch can be reported at once.
"""

from __future__ import annotations


class BootrunError(Exception):
    """Base class for all bootrun errors."""


# ── Manifest ─────────────────────────────────────────────────────────


class ManifestError(BootrunError):
    """The manifest could not be loaded. Always fatal to loading."""


class ManifestNotFoundError(ManifestError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Manifest not found: {path}")
        self.path = path


class ManifestValidationError(ManifestError):
    """Structural problem in the manifest.

    ``issues`` holds every problem found during the same validation pass,
    this one included, so callers can print a complete list.
    """

    def __init__(self, message: str, *, task_id: str = "") -> None:
        super().__init__(message)
        self.task_id = task_id
        self.issues: list[ManifestValidationError] = [self]


class UnknownDependencyError(ManifestValidationError):
    def __init__(self, task_id: str, dependency: str) -> None:
        super().__init__(
            f"Task '{task_id}' requires unknown task '{dependency}'",
            task_id=task_id,
        )
        self.dependency = dependency


class PhaseOrderViolationError(ManifestValidationError):
    def __init__(
        self, task_id: str, phase: int, dependency: str, dependency_phase: int
    ) -> None:
        super().__init__(
            f"Task '{task_id}' (phase {phase}) requires '{dependency}' "
            f"from later phase {dependency_phase}; expected phase <= {phase}",
            task_id=task_id,
        )
        self.phase = phase
        self.dependency = dependency
        self.dependency_phase = dependency_phase


class UnknownProfileMemberError(ManifestValidationError):
    def __init__(self, profile: str, task_id: str) -> None:
        super().__init__(
            f"Profile '{profile}' lists unknown task '{task_id}'",
            task_id=task_id,
        )
        self.profile = profile


class ProfilePhaseOrderError(ManifestValidationError):
    def __init__(self, profile: str, task_id: str, phase: int, previous_phase: int) -> None:
        super().__init__(
            f"Profile '{profile}' lists '{task_id}' (phase {phase}) after a "
            f"phase {previous_phase} task; profile tasks must not go back in phase",
            task_id=task_id,
        )
        self.profile = profile


class DependencyCycleError(ManifestValidationError):
    def __init__(self, cycle: list[str]) -> None:
        super().__init__(
            f"Dependency cycle: {' -> '.join(cycle)}",
            task_id=cycle[0] if cycle else "",
        )
        self.cycle = cycle


# ── Resolution ───────────────────────────────────────────────────────


class ResolutionError(BootrunError):
    """A run selector does not name anything in the manifest."""


class UnknownTaskError(ResolutionError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Unknown task: {task_id}")
        self.task_id = task_id


class UnknownPhaseError(ResolutionError):
    def __init__(self, phase: int | str, available: list[int] | None = None) -> None:
        msg = f"Unknown phase: {phase}"
        if available:
            msg += f" (available: {', '.join(str(p) for p in available)})"
        super().__init__(msg)
        self.phase = phase


class UnknownProfileError(ResolutionError):
    def __init__(self, profile: str, available: list[str] | None = None) -> None:
        msg = f"Unknown profile: {profile}"
        if available:
            msg += f" (available: {', '.join(available)})"
        super().__init__(msg)
        self.profile = profile


# ── Markers / collaborators ──────────────────────────────────────────


class TrackerError(BootrunError):
    """A completion marker could not be read or written."""

    def __init__(self, task_id: str, detail: str) -> None:
        super().__init__(f"Completion marker for '{task_id}' unavailable: {detail}")
        self.task_id = task_id


class CollaboratorError(BootrunError):
    """An entry/rollback/verify reference cannot be resolved."""

    def __init__(self, ref: str, detail: str) -> None:
        super().__init__(f"Cannot resolve '{ref}': {detail}")
        self.ref = ref
