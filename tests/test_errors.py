"""Tests for bootrun.errors: messages and the exception hierarchy callers rely on."""

from __future__ import annotations

import pytest

from bootrun.errors import (
    BootrunError,
    CollaboratorError,
    DependencyCycleError,
    ManifestError,
    ManifestNotFoundError,
    ManifestValidationError,
    PhaseOrderViolationError,
    ProfilePhaseOrderError,
    ResolutionError,
    TrackerError,
    UnknownDependencyError,
    UnknownPhaseError,
    UnknownProfileError,
    UnknownProfileMemberError,
    UnknownTaskError,
)


class TestHierarchy:
    @pytest.mark.parametrize(
        "exc",
        [
            UnknownDependencyError("a", "b"),
            PhaseOrderViolationError("a", 1, "b", 2),
            UnknownProfileMemberError("qa", "x"),
            ProfilePhaseOrderError("qa", "x", 1, 3),
            DependencyCycleError(["a", "b", "a"]),
        ],
    )
    def test_validation_errors_are_manifest_errors(self, exc):
        assert isinstance(exc, ManifestValidationError)
        assert isinstance(exc, ManifestError)
        assert exc.issues == [exc]

    @pytest.mark.parametrize(
        "exc", [UnknownTaskError("x"), UnknownPhaseError(7), UnknownProfileError("qa")]
    )
    def test_resolution_errors(self, exc):
        assert isinstance(exc, ResolutionError)
        assert not isinstance(exc, ManifestError)

    def test_everything_is_a_bootrun_error(self):
        for exc in (
            ManifestNotFoundError("x"),
            TrackerError("a", "io"),
            CollaboratorError("m:f", "nope"),
        ):
            assert isinstance(exc, BootrunError)


class TestMessages:
    def test_phase_order_names_both_tasks(self):
        msg = str(PhaseOrderViolationError("A", 1, "B", 2))
        assert "'A' (phase 1)" in msg
        assert "'B'" in msg
        assert "phase 2" in msg

    def test_cycle_path(self):
        err = DependencyCycleError(["a", "b", "a"])
        assert str(err) == "Dependency cycle: a -> b -> a"
        assert err.task_id == "a"

    def test_unknown_phase_lists_available(self):
        assert str(UnknownPhaseError(9, [1, 2])) == "Unknown phase: 9 (available: 1, 2)"
        assert str(UnknownPhaseError(9)) == "Unknown phase: 9"

    def test_unknown_profile_lists_available(self):
        assert "quickstart" in str(UnknownProfileError("qs", ["quickstart"]))

    def test_tracker_error(self):
        err = TrackerError("git", "permission denied")
        assert err.task_id == "git"
        assert "permission denied" in str(err)

    def test_collaborator_error(self):
        err = CollaboratorError("scripts/x.sh", "script not found")
        assert err.ref == "scripts/x.sh"
        assert str(err) == "Cannot resolve 'scripts/x.sh': script not found"
