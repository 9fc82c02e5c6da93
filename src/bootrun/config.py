"""Configuration defaults, env vars, and runtime options for bootrun."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


DEFAULT_MANIFEST_NAME = "bootrun.json"
STATE_DIR_NAME = ".bootrun"

DEFAULT_CACHE_TTL = 3600
DEFAULT_VERSION_TIMEOUT = 10
DEFAULT_INSTALL_TIMEOUT = 300
DEFAULT_MAX_TOOL_WORKERS = 8


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str) -> float | None:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if value > 0 else None


@dataclass
class Config:
    """Runtime configuration: defaults < environment < CLI flags."""

    # Locations
    project_root: str = ""
    manifest_file: str = ""
    state_dir: str = ""
    cache_dir: str = ""
    log_dir: str = ""

    # Manifest cache
    disk_cache: bool = True
    cache_ttl: int = 0

    # Validation
    version_timeout: int = 0
    tool_check_timeout: float | None = None
    max_tool_workers: int = DEFAULT_MAX_TOOL_WORKERS
    install_timeout: int = DEFAULT_INSTALL_TIMEOUT

    # Execution
    script_timeout: float | None = None
    dry_run: bool = False
    skip_preflight: bool = False
    stop_on_first_failure: bool = False

    # Misc
    verbose: bool = False

    def __post_init__(self) -> None:
        if not self.project_root:
            self.project_root = str(resolve_project_root())
        root = Path(self.project_root)

        if not self.manifest_file:
            self.manifest_file = os.environ.get("BOOTRUN_MANIFEST") or str(
                root / DEFAULT_MANIFEST_NAME
            )
        if not self.state_dir:
            self.state_dir = os.environ.get("BOOTRUN_STATE_DIR") or str(
                root / STATE_DIR_NAME / "state"
            )
        if not self.cache_dir:
            self.cache_dir = os.environ.get("BOOTRUN_CACHE_DIR") or str(
                root / STATE_DIR_NAME / "cache"
            )
        if not self.log_dir:
            self.log_dir = os.environ.get("BOOTRUN_LOG_DIR") or str(
                root / STATE_DIR_NAME / "logs"
            )
        if not self.cache_ttl:
            self.cache_ttl = _env_int("BOOTRUN_CACHE_TTL", DEFAULT_CACHE_TTL)
        if not self.version_timeout:
            self.version_timeout = _env_int("BOOTRUN_VERSION_TIMEOUT", DEFAULT_VERSION_TIMEOUT)
        if self.tool_check_timeout is None:
            self.tool_check_timeout = _env_float("BOOTRUN_TOOL_CHECK_TIMEOUT")
        if self.script_timeout is None:
            self.script_timeout = _env_float("BOOTRUN_SCRIPT_TIMEOUT")
        if self.max_tool_workers < 1:
            self.max_tool_workers = 1


def resolve_project_root() -> Path:
    """Return the git repository root, falling back to cwd."""
    import subprocess

    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            capture_output=True,
            text=True,
            check=True,
        )
        return Path(result.stdout.strip())
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Path.cwd()


