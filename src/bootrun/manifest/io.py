"""Read manifest documents (JSON or YAML) and build :class:`Manifest` objects."""

from __future__ import annotations

import json
from collections.abc import Hashable
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml
from yaml.constructor import ConstructorError

from bootrun.errors import ManifestValidationError
from bootrun.io_utils import read_text
from bootrun.manifest.model import (
    Comparator,
    Manifest,
    Phase,
    Profile,
    Task,
    ToolRequirement,
    ToolSpec,
    default_phase_name,
)

YAML_SUFFIXES = (".yaml", ".yml")


class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that refuses a mapping with the same key twice."""

    def construct_mapping(self, node, deep=False):
        if isinstance(node, yaml.MappingNode):
            seen: set[Any] = set()
            for key_node, _ in node.value:
                if key_node.tag == "tag:yaml.org,2002:merge":
                    continue
                key = self.construct_object(key_node, deep=deep)
                if not isinstance(key, Hashable):
                    continue
                if key in seen:
                    raise ConstructorError(
                        "while constructing a mapping",
                        node.start_mark,
                        f"found duplicate key {key!r}",
                        key_node.start_mark,
                    )
                seen.add(key)
        return super().construct_mapping(node, deep=deep)


def read_document(path: Path) -> dict[str, Any]:
    """Parse the raw manifest file into a plain mapping."""
    text = read_text(path)
    try:
        if path.suffix.lower() in YAML_SUFFIXES:
            doc = yaml.load(text, Loader=_UniqueKeyLoader)
        else:
            doc = json.loads(text, object_pairs_hook=_reject_duplicate_keys)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ManifestValidationError(f"Cannot parse {path}: {e}") from e

    if doc is None:
        doc = {}
    if not isinstance(doc, dict):
        raise ManifestValidationError(f"{path}: top level must be a mapping")
    return doc


def _reject_duplicate_keys(pairs: list[tuple[str, Any]]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in pairs:
        if key in out:
            raise ManifestValidationError(f"Duplicate key: {key}")
        out[key] = value
    return out


def _as_mapping(value: Any, where: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ManifestValidationError(f"{where} must be a mapping")
    return value


def _as_str_list(value: Any, where: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = value.split()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ManifestValidationError(f"{where} must be a list of strings")
    return tuple(v.strip() for v in value if v.strip())


def _parse_comparator(raw: Any, where: str) -> Comparator:
    if raw is None or raw == "":
        return Comparator.MIN
    try:
        return Comparator(str(raw).lower())
    except ValueError:
        raise ManifestValidationError(
            f"{where}: unknown comparator '{raw}' (expected min, max or exact)"
        ) from None


def parse_tool_requirement(raw: Any, where: str) -> ToolRequirement:
    """Accept ``{"name", "version", "cmp"}``, ``"node"`` or ``"node:18.0.0:min"``."""
    if isinstance(raw, str):
        name, _, rest = raw.partition(":")
        version, _, cmp = rest.partition(":")
        raw = {"name": name, "version": version or None, "cmp": cmp or None}
    if not isinstance(raw, dict):
        raise ManifestValidationError(f"{where}: tool entry must be a string or mapping")

    name = str(raw.get("name") or "").strip()
    if not name:
        raise ManifestValidationError(f"{where}: tool entry is missing a name")
    version = raw.get("version")
    version = str(version).strip() if version not in (None, "") else None
    comparator = _parse_comparator(raw.get("cmp", raw.get("comparator")), where)
    return ToolRequirement(name=name, version=version, comparator=comparator)


def _parse_phase_number(raw: Any, where: str) -> int:
    if isinstance(raw, bool):
        raise ManifestValidationError(f"{where}: phase must be a positive integer")
    try:
        number = int(raw)
    except (TypeError, ValueError):
        raise ManifestValidationError(f"{where}: phase must be a positive integer") from None
    if number < 1:
        raise ManifestValidationError(f"{where}: phase must be a positive integer")
    return number


def _parse_task(task_id: str, raw: Any) -> Task:
    where = f"tasks.{task_id}"
    body = _as_mapping(raw, where)
    requires = _as_mapping(body.get("requires"), f"{where}.requires")

    tools_raw = requires.get("tools") or []
    if not isinstance(tools_raw, list):
        raise ManifestValidationError(f"{where}.requires.tools must be a list")
    tools = tuple(
        parse_tool_requirement(t, f"{where}.requires.tools[{i}]")
        for i, t in enumerate(tools_raw)
    )

    return Task(
        id=task_id,
        phase=_parse_phase_number(body.get("phase", 1), where),
        category=str(body.get("category") or ""),
        description=str(body.get("description") or ""),
        hidden=bool(body.get("hidden", False)),
        required_tools=tools,
        optional_tools=_as_str_list(body.get("optional"), f"{where}.optional"),
        required_tasks=_as_str_list(requires.get("tasks"), f"{where}.requires.tasks"),
        entry_point=str(body.get("entry") or ""),
        rollback=str(body.get("rollback") or ""),
        verify=str(body.get("verify") or ""),
    )


def _parse_tool_spec(name: str, raw: Any) -> ToolSpec:
    where = f"tools.{name}"
    body = _as_mapping(raw, where)
    return ToolSpec(
        name=name,
        command=body.get("command") or None,
        version_args=_as_str_list(body.get("version_args"), f"{where}.version_args"),
        version_pattern=body.get("version_pattern") or None,
        install_hint=body.get("install_hint") or None,
    )


def build_manifest(
    doc: dict[str, Any],
    *,
    source_path: str = "",
    source_mtime_ns: int = 0,
) -> Manifest:
    """Turn a raw document into a :class:`Manifest`.

    Only shape errors are raised here; cross-references are checked by
    :func:`bootrun.manifest.validate.validate`.
    """
    tasks_raw = _as_mapping(doc.get("tasks"), "tasks")
    tasks: dict[str, Task] = {}
    for task_id, body in tasks_raw.items():
        task_id = str(task_id).strip()
        if not task_id:
            raise ManifestValidationError("tasks: task with empty id")
        tasks[task_id] = _parse_task(task_id, body)

    phase_names: dict[int, str] = {}
    for key, body in _as_mapping(doc.get("phases"), "phases").items():
        number = _parse_phase_number(key, f"phases.{key}")
        if isinstance(body, str):
            phase_names[number] = body
        else:
            phase_names[number] = str(
                _as_mapping(body, f"phases.{key}").get("name") or default_phase_name(number)
            )

    numbers = sorted(set(phase_names) | {t.phase for t in tasks.values()})
    phases = {
        n: Phase(
            number=n,
            name=phase_names.get(n) or default_phase_name(n),
            task_ids=tuple(t.id for t in tasks.values() if t.phase == n and not t.hidden),
        )
        for n in numbers
    }

    profiles: dict[str, Profile] = {}
    for name, body in _as_mapping(doc.get("profiles"), "profiles").items():
        where = f"profiles.{name}"
        if isinstance(body, list):
            body = {"tasks": body}
        body = _as_mapping(body, where)
        profiles[str(name)] = Profile(
            name=str(name),
            description=str(body.get("description") or ""),
            task_ids=_as_str_list(body.get("tasks"), f"{where}.tasks"),
        )

    tools = {
        str(name): _parse_tool_spec(str(name), body)
        for name, body in _as_mapping(doc.get("tools"), "tools").items()
    }

    return Manifest(
        tasks=MappingProxyType(tasks),
        phases=MappingProxyType(phases),
        profiles=MappingProxyType(profiles),
        tools=MappingProxyType(tools),
        source_path=source_path,
        source_mtime_ns=source_mtime_ns,
    )
