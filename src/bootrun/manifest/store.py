"""Manifest store: load, validate and cache the task manifest.

The in-memory cache holds a single entry ``(path, mtime_ns, manifest)``.
A load with an unchanged modification time returns the very same
:class:`Manifest` object; any mtime change forces a re-parse, even when the
bytes are identical. A manifest that fails validation never replaces the
cached entry.

An optional on-disk cache (``manifest-cache.json`` under the cache dir)
keeps the raw document between processes, keyed by the source mtime and
bounded by a TTL.
"""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from rich.markup import escape

from bootrun import log
from bootrun.config import DEFAULT_CACHE_TTL
from bootrun.errors import ManifestNotFoundError, ManifestValidationError
from bootrun.io_utils import read_text, write_text_atomic
from bootrun.manifest.io import build_manifest, read_document
from bootrun.manifest.model import Manifest
from bootrun.manifest.validate import raise_for_issues, validate

CACHE_FILE_NAME = "manifest-cache.json"
CACHE_FORMAT_VERSION = 1


@dataclass(frozen=True)
class CacheEntry:
    path: str
    mtime_ns: int
    manifest: Manifest


@dataclass
class CacheStatus:
    cache_file: str
    exists: bool = False
    valid: bool = False
    reason: str = ""
    age_seconds: float = 0.0
    source: str = ""
    source_mtime_ns: int = 0
    task_count: int = 0


class ManifestStore:
    """Loads manifests and serves them from cache until the source changes."""

    def __init__(
        self,
        cache_dir: str | Path | None = None,
        *,
        ttl: int = DEFAULT_CACHE_TTL,
    ) -> None:
        self._lock = threading.Lock()
        self._entry: CacheEntry | None = None
        self._cache_file = Path(cache_dir) / CACHE_FILE_NAME if cache_dir else None
        self._ttl = ttl
        self.parse_count = 0

    @property
    def cache_file(self) -> Path | None:
        return self._cache_file

    # ── loading ──────────────────────────────────────────────────

    def load(self, source: str | Path) -> Manifest:
        path = Path(source).resolve()
        try:
            mtime_ns = path.stat().st_mtime_ns
        except FileNotFoundError:
            raise ManifestNotFoundError(str(path)) from None

        entry = self._entry
        if entry is not None and entry.path == str(path) and entry.mtime_ns == mtime_ns:
            log.debug(f"Manifest cache hit: {escape(str(path))}")
            return entry.manifest

        doc = self._read_disk_cache(path, mtime_ns)
        from_disk = doc is not None
        if doc is None:
            try:
                doc = read_document(path)
            except OSError as e:
                raise ManifestValidationError(f"Cannot read {path}: {e}") from e

        self.parse_count += 1
        manifest = build_manifest(doc, source_path=str(path), source_mtime_ns=mtime_ns)
        raise_for_issues(validate(manifest))

        with self._lock:
            self._entry = CacheEntry(path=str(path), mtime_ns=mtime_ns, manifest=manifest)

        if not from_disk:
            self._write_disk_cache(path, mtime_ns, doc)
        log.debug(
            f"Loaded manifest {escape(str(path))} ({len(manifest.tasks)} tasks"
            f"{', from disk cache' if from_disk else ''})"
        )
        return manifest

    def cached(self) -> Manifest | None:
        entry = self._entry
        return entry.manifest if entry else None

    def invalidate(self) -> None:
        with self._lock:
            self._entry = None

    # ── on-disk cache ────────────────────────────────────────────

    def _read_cache_payload(self) -> dict[str, Any] | None:
        if self._cache_file is None or not self._cache_file.is_file():
            return None
        try:
            payload = json.loads(read_text(self._cache_file))
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            log.debug(f"Ignoring unreadable manifest cache {escape(str(self._cache_file))}: {escape(str(e))}")
            return None
        if not isinstance(payload, dict) or payload.get("version") != CACHE_FORMAT_VERSION:
            return None
        return payload

    def _payload_problem(self, payload: dict[str, Any], path: Path, mtime_ns: int) -> str:
        if payload.get("source") != str(path):
            return "cached for a different manifest"
        if payload.get("mtime_ns") != mtime_ns:
            return "manifest modified since cached"
        age = time.time() - float(payload.get("cached_at", 0))
        if age > self._ttl:
            return f"expired ({int(age)}s > {self._ttl}s)"
        if not isinstance(payload.get("document"), dict):
            return "corrupted"
        return ""

    def _read_disk_cache(self, path: Path, mtime_ns: int) -> dict[str, Any] | None:
        payload = self._read_cache_payload()
        if payload is None:
            return None
        problem = self._payload_problem(payload, path, mtime_ns)
        if problem:
            log.debug(f"Manifest disk cache stale: {escape(problem)}")
            return None
        return payload["document"]

    def _write_disk_cache(self, path: Path, mtime_ns: int, doc: dict[str, Any]) -> None:
        if self._cache_file is None:
            return
        payload = {
            "version": CACHE_FORMAT_VERSION,
            "source": str(path),
            "mtime_ns": mtime_ns,
            "cached_at": time.time(),
            "document": doc,
        }
        try:
            write_text_atomic(self._cache_file, json.dumps(payload))
        except (OSError, TypeError, ValueError) as e:
            log.warn(f"Could not write manifest cache {escape(str(self._cache_file))}: {escape(str(e))}")

    def status(self, source: str | Path) -> CacheStatus:
        """Describe the on-disk cache relative to *source*."""
        st = CacheStatus(cache_file=str(self._cache_file or ""))
        payload = self._read_cache_payload()
        if payload is None:
            st.reason = "no cache file"
            return st
        st.exists = True
        st.source = str(payload.get("source", ""))
        st.source_mtime_ns = int(payload.get("mtime_ns", 0))
        st.age_seconds = max(0.0, time.time() - float(payload.get("cached_at", 0)))
        doc = payload.get("document")
        if isinstance(doc, dict) and isinstance(doc.get("tasks"), dict):
            st.task_count = len(doc["tasks"])

        path = Path(source).resolve()
        try:
            mtime_ns = path.stat().st_mtime_ns
        except FileNotFoundError:
            st.reason = "manifest missing"
            return st
        st.reason = self._payload_problem(payload, path, mtime_ns)
        st.valid = not st.reason
        return st

    def clear(self) -> bool:
        """Drop both caches. Returns ``True`` if a cache file was removed."""
        self.invalidate()
        if self._cache_file is None or not self._cache_file.exists():
            return False
        self._cache_file.unlink()
        return True
