"""Completion markers: one ``.{task_id}.completed`` file per finished task."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path

from bootrun import log
from bootrun.errors import TrackerError
from bootrun.io_utils import read_text, write_text_atomic

_MARKER_RE = re.compile(r"^\.(?P<id>.+)\.completed$")


class CompletionTracker:
    """Persists which tasks have completed successfully.

    A marker only exists after the task's entry point reported success and
    only goes away through :meth:`clear` / :meth:`clear_all`. Re-marking
    overwrites the timestamp; other tasks' markers are untouched.
    """

    def __init__(self, state_dir: str | Path) -> None:
        self.state_dir = Path(state_dir)

    def marker_path(self, task_id: str) -> Path:
        if not task_id or "/" in task_id or "\\" in task_id or task_id in (".", ".."):
            raise TrackerError(task_id, "invalid task id for a marker file name")
        return self.state_dir / f".{task_id}.completed"

    def mark_complete(self, task_id: str) -> None:
        path = self.marker_path(task_id)
        stamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        try:
            write_text_atomic(path, stamp + "\n")
        except OSError as e:
            raise TrackerError(task_id, str(e)) from e
        log.debug(f"Marked {task_id} complete at {stamp}")

    def is_complete(self, task_id: str) -> bool:
        path = self.marker_path(task_id)
        try:
            return path.is_file()
        except OSError as e:
            raise TrackerError(task_id, str(e)) from e

    def completed_at(self, task_id: str) -> datetime | None:
        """Timestamp recorded in the marker, or ``None`` if absent or unreadable as a date."""
        path = self.marker_path(task_id)
        try:
            raw = read_text(path).strip()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise TrackerError(task_id, str(e)) from e
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            return None

    def completed(self) -> list[str]:
        """Ids with a marker, sorted."""
        if not self.state_dir.is_dir():
            return []
        ids = []
        for entry in self.state_dir.iterdir():
            m = _MARKER_RE.match(entry.name)
            if m and entry.is_file():
                ids.append(m.group("id"))
        return sorted(ids)

    def clear(self, task_id: str) -> bool:
        """Remove the marker. Returns ``True`` if one existed."""
        path = self.marker_path(task_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise TrackerError(task_id, str(e)) from e
        return True

    def clear_all(self) -> int:
        """Remove every marker. Returns how many were removed."""
        removed = 0
        for task_id in self.completed():
            if self.clear(task_id):
                removed += 1
        return removed
