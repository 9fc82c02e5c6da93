"""Tests for bootrun.manifest.store: mtime-keyed in-memory cache and on-disk cache."""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path

import pytest

from bootrun.errors import ManifestNotFoundError, PhaseOrderViolationError
from bootrun.io_utils import read_text, write_text
from bootrun.manifest.store import CACHE_FILE_NAME, ManifestStore


def _bump_mtime(path: Path, seconds: int = 5) -> None:
    st = path.stat()
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + seconds * 1_000_000_000))


class TestInMemoryCache:
    def test_same_mtime_returns_identical_object(self, tmp_path, write_manifest, git_packages_doc):
        path = write_manifest(tmp_path, git_packages_doc)
        store = ManifestStore()
        first = store.load(path)
        second = store.load(path)
        assert first is second
        assert store.parse_count == 1

    def test_mtime_change_forces_reparse_even_with_same_bytes(
        self, tmp_path, write_manifest, git_packages_doc
    ):
        path = write_manifest(tmp_path, git_packages_doc)
        store = ManifestStore()
        first = store.load(path)
        _bump_mtime(path)
        second = store.load(path)
        assert second is not first
        assert second.task_ids() == first.task_ids()
        assert store.parse_count == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(ManifestNotFoundError):
            ManifestStore().load(tmp_path / "nope.json")

    def test_invalid_manifest_keeps_previous_entry(self, tmp_path, write_manifest, git_packages_doc):
        path = write_manifest(tmp_path, git_packages_doc)
        store = ManifestStore()
        good = store.load(path)

        bad = {"tasks": {"A": {"phase": 1, "requires": {"tasks": ["B"]}}, "B": {"phase": 2}}}
        write_manifest(tmp_path, bad)
        _bump_mtime(path)
        with pytest.raises(PhaseOrderViolationError):
            store.load(path)
        assert store.cached() is good

    def test_yaml_manifest(self, tmp_path, write_manifest, git_packages_doc):
        path = write_manifest(tmp_path, git_packages_doc, name="bootrun.yaml")
        m = ManifestStore().load(path)
        assert m.task_ids() == ["git", "packages"]
        assert m.source_mtime_ns == path.stat().st_mtime_ns

    def test_concurrent_loads_see_a_complete_manifest(
        self, tmp_path, write_manifest, git_packages_doc
    ):
        path = write_manifest(tmp_path, git_packages_doc)
        store = ManifestStore()
        seen: list[list[str]] = []

        def worker() -> None:
            for _ in range(20):
                seen.append(store.load(path).task_ids())

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert all(ids == ["git", "packages"] for ids in seen)

    def test_invalidate(self, tmp_path, write_manifest, git_packages_doc):
        path = write_manifest(tmp_path, git_packages_doc)
        store = ManifestStore()
        first = store.load(path)
        store.invalidate()
        assert store.cached() is None
        assert store.load(path) is not first


class TestDiskCache:
    def test_written_on_first_load(self, tmp_path, write_manifest, git_packages_doc):
        path = write_manifest(tmp_path, git_packages_doc)
        cache_dir = tmp_path / "cache"
        ManifestStore(cache_dir).load(path)
        payload = json.loads(read_text(cache_dir / CACHE_FILE_NAME))
        assert payload["source"] == str(path.resolve())
        assert payload["mtime_ns"] == path.stat().st_mtime_ns
        assert set(payload["document"]["tasks"]) == {"git", "packages"}

    def test_new_store_reads_cached_document(self, tmp_path, write_manifest, git_packages_doc):
        path = write_manifest(tmp_path, git_packages_doc)
        cache_dir = tmp_path / "cache"
        ManifestStore(cache_dir).load(path)

        # Rewrite the cached document; a fresh store must trust it while mtime matches.
        cache_file = cache_dir / CACHE_FILE_NAME
        payload = json.loads(read_text(cache_file))
        payload["document"]["tasks"] = {"only-from-cache": {"phase": 1}}
        write_text(cache_file, json.dumps(payload))

        m = ManifestStore(cache_dir).load(path)
        assert m.task_ids() == ["only-from-cache"]

    def test_stale_after_mtime_change(self, tmp_path, write_manifest, git_packages_doc):
        path = write_manifest(tmp_path, git_packages_doc)
        cache_dir = tmp_path / "cache"
        store = ManifestStore(cache_dir)
        store.load(path)
        _bump_mtime(path)
        st = store.status(path)
        assert st.exists
        assert not st.valid
        assert "modified" in st.reason

    def test_expired_by_ttl(self, tmp_path, write_manifest, git_packages_doc):
        path = write_manifest(tmp_path, git_packages_doc)
        cache_dir = tmp_path / "cache"
        cache_file = cache_dir / CACHE_FILE_NAME
        ManifestStore(cache_dir).load(path)
        payload = json.loads(read_text(cache_file))
        payload["cached_at"] -= 7200
        write_text(cache_file, json.dumps(payload))

        st = ManifestStore(cache_dir, ttl=3600).status(path)
        assert not st.valid
        assert "expired" in st.reason

    def test_status_valid(self, tmp_path, write_manifest, git_packages_doc):
        path = write_manifest(tmp_path, git_packages_doc)
        store = ManifestStore(tmp_path / "cache")
        store.load(path)
        st = store.status(path)
        assert st.valid
        assert st.task_count == 2

    def test_status_without_cache(self, tmp_path, write_manifest, git_packages_doc):
        path = write_manifest(tmp_path, git_packages_doc)
        st = ManifestStore(tmp_path / "cache").status(path)
        assert not st.exists
        assert st.reason == "no cache file"

    def test_corrupt_cache_ignored(self, tmp_path, write_manifest, git_packages_doc):
        path = write_manifest(tmp_path, git_packages_doc)
        cache_dir = tmp_path / "cache"
        cache_dir.mkdir()
        write_text(cache_dir / CACHE_FILE_NAME, "{garbage")
        m = ManifestStore(cache_dir).load(path)
        assert m.task_ids() == ["git", "packages"]

    def test_clear(self, tmp_path, write_manifest, git_packages_doc):
        path = write_manifest(tmp_path, git_packages_doc)
        cache_dir = tmp_path / "cache"
        store = ManifestStore(cache_dir)
        store.load(path)
        assert store.clear() is True
        assert not (cache_dir / CACHE_FILE_NAME).exists()
        assert store.cached() is None
        assert store.clear() is False
