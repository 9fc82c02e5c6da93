"""Tests for bootrun.cli: commands, options and exit codes via click's CliRunner."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from bootrun import __version__
from bootrun.cli import main
from bootrun.io_utils import write_text
from bootrun.manifest.store import CACHE_FILE_NAME

_ENV_VARS = (
    "BOOTRUN_MANIFEST",
    "BOOTRUN_STATE_DIR",
    "BOOTRUN_CACHE_DIR",
    "BOOTRUN_LOG_DIR",
    "BOOTRUN_CACHE_TTL",
    "BOOTRUN_VERSION_TIMEOUT",
    "BOOTRUN_TOOL_CHECK_TIMEOUT",
    "BOOTRUN_SCRIPT_TIMEOUT",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def project(tmp_path, write_manifest, git_packages_doc) -> Path:
    write_manifest(tmp_path, git_packages_doc)
    return tmp_path


def _invoke(project: Path, *args: str, input: str | None = None):
    return CliRunner().invoke(main, ["--project", str(project), *args], input=input)


def _markers(project: Path) -> list[str]:
    state = project / ".bootrun" / "state"
    if not state.is_dir():
        return []
    return sorted(p.name for p in state.iterdir())


class TestRun:
    def test_version(self):
        result = CliRunner().invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_phase_success(self, project):
        result = _invoke(project, "run", "--phase", "1")
        assert result.exit_code == 0, result.output
        assert _markers(project) == [".git.completed", ".packages.completed"]
        assert "Done!" in result.output

    def test_missing_prerequisite_exits_1_with_fix(self, project):
        result = _invoke(project, "run", "--task", "packages")
        assert result.exit_code == 1
        assert "bootrun run --task=git" in result.output
        assert _markers(project) == []

    def test_then_succeeds_after_prerequisite(self, project):
        assert _invoke(project, "run", "--task", "git").exit_code == 0
        assert _invoke(project, "run", "--task", "packages").exit_code == 0

    def test_failing_entry_exits_2(self, tmp_path, write_manifest):
        write_manifest(tmp_path, {"tasks": {"broken": {"phase": 1, "entry": "os.path:isfile"}}})
        result = _invoke(tmp_path, "run", "--task", "broken")
        assert result.exit_code == 2
        assert _markers(tmp_path) == []

    def test_missing_tool_exits_1(self, tmp_path, write_manifest):
        doc = {
            "tasks": {
                "web": {
                    "phase": 1,
                    "entry": "os.path:isdir",
                    "requires": {"tools": ["bootrun-test-no-such-tool"]},
                }
            }
        }
        write_manifest(tmp_path, doc)
        result = _invoke(tmp_path, "run", "--phase", "1")
        assert result.exit_code == 1
        assert "bootrun-test-no-such-tool" in result.output

    def test_skip_preflight_with_missing_tool_exits_2(self, tmp_path, write_manifest):
        doc = {
            "tasks": {
                "web": {
                    "phase": 1,
                    "entry": "os.path:isdir",
                    "requires": {"tools": ["bootrun-test-no-such-tool"]},
                }
            }
        }
        write_manifest(tmp_path, doc)
        result = _invoke(tmp_path, "run", "--task", "web", "--skip-preflight")
        assert result.exit_code == 2
        assert "Tasks skipped: 1" in result.output
        assert _markers(tmp_path) == []

    def test_dry_run(self, project):
        result = _invoke(project, "run", "--phase", "1", "--dry-run")
        assert result.exit_code == 0
        assert "Dry run plan" in result.output
        assert _markers(project) == []

    def test_unknown_task_exits_1(self, project):
        result = _invoke(project, "run", "--task", "nope")
        assert result.exit_code == 1
        assert "nope" in result.output

    def test_unknown_profile_exits_1(self, project):
        assert _invoke(project, "run", "--profile", "nope").exit_code == 1

    def test_selector_required(self, project):
        result = _invoke(project, "run")
        assert result.exit_code == 2
        assert "exactly one" in result.output

    def test_two_selectors_rejected(self, project):
        assert _invoke(project, "run", "--phase", "1", "--task", "git").exit_code == 2

    def test_missing_manifest_exits_1(self, tmp_path):
        result = _invoke(tmp_path, "run", "--phase", "1")
        assert result.exit_code == 1
        assert "Manifest not found" in result.output

    def test_invalid_manifest_lists_problems(self, tmp_path, write_manifest):
        doc = {
            "tasks": {
                "a": {"phase": 1, "requires": {"tasks": ["b"]}},
                "b": {"phase": 1, "requires": {"tasks": ["a"]}},
            }
        }
        write_manifest(tmp_path, doc)
        result = _invoke(tmp_path, "run", "--phase", "1")
        assert result.exit_code == 1
        assert "cycle" in result.output

    def test_explicit_manifest_path(self, tmp_path, write_manifest, git_packages_doc):
        path = write_manifest(tmp_path, git_packages_doc, name="setup.yaml")
        result = CliRunner().invoke(
            main, ["--project", str(tmp_path), "--manifest", str(path), "run", "--task", "git"]
        )
        assert result.exit_code == 0

    def test_install_missing_asks_and_installs(self, tmp_path, write_manifest):
        doc = {"tasks": {"fmt": {"phase": 1, "entry": "os.path:isdir", "requires": {"tools": ["jq"]}}}}
        write_manifest(tmp_path, doc)
        with patch("bootrun.tools.shutil.which", return_value=None), \
                patch("bootrun.cli.install_tool", return_value=False) as installer:
            result = _invoke(tmp_path, "run", "--phase", "1", "--install-missing", "--yes")
        installer.assert_called_once()
        assert installer.call_args.args == ("jq",)
        assert result.exit_code == 1

    def test_install_missing_declined(self, tmp_path, write_manifest):
        doc = {"tasks": {"fmt": {"phase": 1, "entry": "os.path:isdir", "requires": {"tools": ["jq"]}}}}
        write_manifest(tmp_path, doc)
        with patch("bootrun.tools.shutil.which", return_value=None), \
                patch("bootrun.cli.install_tool") as installer:
            result = _invoke(tmp_path, "run", "--phase", "1", "--install-missing", input="n\n")
        installer.assert_not_called()
        assert result.exit_code == 1


class TestCheck:
    def test_check_passes(self, project):
        result = _invoke(project, "check", "--phase", "1")
        assert result.exit_code == 0
        assert "All preflight checks passed" in result.output
        assert _markers(project) == []

    def test_check_fails(self, project):
        assert _invoke(project, "check", "--task", "packages").exit_code == 1


class TestInspection:
    def test_list(self, project):
        result = _invoke(project, "list")
        assert result.exit_code == 0
        assert "Foundation" in result.output
        assert "packages" in result.output

    def test_status(self, project):
        _invoke(project, "run", "--task", "git")
        result = _invoke(project, "status")
        assert result.exit_code == 0
        assert "1/2" in result.output


class TestReset:
    def test_reset_task(self, project):
        _invoke(project, "run", "--phase", "1")
        result = _invoke(project, "reset", "--task", "git")
        assert result.exit_code == 0
        assert _markers(project) == [".packages.completed"]

    def test_reset_all(self, project):
        _invoke(project, "run", "--phase", "1")
        assert _invoke(project, "reset", "--all").exit_code == 0
        assert _markers(project) == []

    def test_reset_unknown_task(self, project):
        assert _invoke(project, "reset", "--task", "nope").exit_code == 1

    def test_reset_needs_target(self, project):
        assert _invoke(project, "reset").exit_code == 2


class TestRollbackVerify:
    @pytest.fixture
    def project(self, tmp_path, write_manifest) -> Path:
        doc: dict[str, Any] = {
            "tasks": {
                "git": {
                    "phase": 1,
                    "entry": "os.path:isdir",
                    "rollback": "os.path:isdir",
                    "verify": "os.path:isfile",
                },
                "plain": {"phase": 1, "entry": "os.path:isdir"},
            }
        }
        write_manifest(tmp_path, doc)
        return tmp_path

    def test_rollback_clears_marker(self, project):
        _invoke(project, "run", "--task", "git")
        result = _invoke(project, "rollback", "--task", "git")
        assert result.exit_code == 0
        assert _markers(project) == []

    def test_verify_failure_exits_2(self, project):
        assert _invoke(project, "verify", "--task", "git").exit_code == 2

    def test_nothing_declared_exits_1(self, project):
        assert _invoke(project, "rollback", "--task", "plain").exit_code == 1

    def test_unknown_task(self, project):
        assert _invoke(project, "verify", "--task", "nope").exit_code == 1


class TestCache:
    def test_status_and_clear(self, project):
        _invoke(project, "list")
        cache_file = project / ".bootrun" / "cache" / CACHE_FILE_NAME
        assert cache_file.exists()

        result = _invoke(project, "cache", "status")
        assert result.exit_code == 0
        assert "Cache is valid" in result.output

        result = _invoke(project, "cache", "clear")
        assert result.exit_code == 0
        assert not cache_file.exists()

    def test_no_cache_flag(self, project):
        result = CliRunner().invoke(main, ["--project", str(project), "--no-cache", "list"])
        assert result.exit_code == 0
        assert not (project / ".bootrun" / "cache").exists()

    def test_status_without_cache(self, project):
        result = _invoke(project, "cache", "status")
        assert result.exit_code == 0
        assert "No cache" in result.output

    def test_stale_cache_reported(self, project):
        _invoke(project, "list")
        manifest = project / "bootrun.json"
        doc = json.loads(manifest.read_text(encoding="utf-8"))
        doc["tasks"]["extra"] = {"phase": 1}
        write_text(manifest, json.dumps(doc))
        st = manifest.stat()
        os.utime(manifest, ns=(st.st_atime_ns, st.st_mtime_ns + 5_000_000_000))
        result = _invoke(project, "cache", "status")
        assert "stale" in result.output
