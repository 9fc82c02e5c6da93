"""Tests for version parsing and comparison."""

from __future__ import annotations

import pytest

from bootrun.manifest.model import Comparator
from bootrun.versions import compare_versions, extract_version, parse_version, satisfies


class TestSatisfies:
    def test_min_satisfied(self):
        assert satisfies("18.2.0", "18.0.0", "min") is True

    def test_min_not_satisfied(self):
        assert satisfies("16.0.0", "18.0.0", "min") is False

    def test_exact(self):
        assert satisfies("18.0.0", "18.0.0", "exact") is True

    def test_max_not_satisfied(self):
        assert satisfies("20.0.0", "18.0.0", "max") is False

    def test_max_satisfied(self):
        assert satisfies("18.0.0", "18.0.0", Comparator.MAX) is True

    def test_default_is_min(self):
        assert satisfies("3.12.1", "3.10") is True

    def test_numeric_not_lexicographic(self):
        assert satisfies("1.10.0", "1.9.0", "min") is True

    def test_exact_pads_missing_segments(self):
        assert satisfies("18", "18.0.0", "exact") is True

    def test_leading_v(self):
        assert satisfies("v18.2.0", "18.0.0") is True

    @pytest.mark.parametrize("current,required", [("", "1.0"), ("abc", "1.0"), ("1.0", "")])
    def test_unparseable_never_satisfies(self, current, required):
        assert satisfies(current, required) is False

    def test_unknown_comparator(self):
        assert satisfies("1.0", "1.0", "gte") is False


class TestParsing:
    def test_parse_version(self):
        assert parse_version("v18.2.0") == (18, 2, 0)
        assert parse_version("2.39.2.windows.1") == (2, 39, 2)
        assert parse_version("1.2.0-rc1") == (1, 2, 0)

    def test_compare(self):
        assert compare_versions("1.2", "1.2.0") == 0
        assert compare_versions("1.2.1", "1.2") == 1
        assert compare_versions("0.9", "1") == -1

    def test_extract_version(self):
        assert extract_version("Docker version 24.0.5, build ced0996") == "24.0.5"
        assert extract_version("v18.2.0\n") == "18.2.0"
        assert extract_version("no numbers here") is None
        assert extract_version("") is None
