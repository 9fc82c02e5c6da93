"""Tool probes and installers.

Each tool with a version check gets a :class:`VersionProbe` registered by
name; adding a tool is a registration, not a new branch in the validator.
Tools without a registered probe fall back to ``<tool> --version`` and the
first dotted number in its output. A manifest ``tools`` entry can override
the command, the version arguments and the extraction pattern.
"""

from __future__ import annotations

import json
import os
import re
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable

from rich.markup import escape

from bootrun import log
from bootrun.config import DEFAULT_INSTALL_TIMEOUT, DEFAULT_VERSION_TIMEOUT
from bootrun.manifest.model import ToolSpec
from bootrun.versions import extract_version


@dataclass
class ProbeOutput:
    """Raw result of running a probe's version command."""

    text: str = ""
    error: str = ""
    return_code: int = 0


class VersionProbe(ABC):
    """Locates one tool and extracts its version."""

    name: str = "base"
    command: str = ""

    @abstractmethod
    def build_cmd(self, executable: str) -> list[str]:
        """Return the command list that prints the tool's version."""
        ...

    @abstractmethod
    def parse_version(self, raw: str) -> str | None:
        """Pull a version string out of the command's output."""
        ...

    def locate(self) -> str | None:
        return shutil.which(self.command or self.name)

    def detect_version(
        self, executable: str, *, timeout: int = DEFAULT_VERSION_TIMEOUT
    ) -> str | None:
        out = self._run(self.build_cmd(executable), timeout=timeout)
        if out.error:
            log.debug(f"Version probe for {self.name} failed: {escape(out.error)}")
            return None
        return self.parse_version(out.text)

    @staticmethod
    def _run(cmd: list[str], *, timeout: int) -> ProbeOutput:
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return ProbeOutput(error="timeout", return_code=-1)
        except (FileNotFoundError, PermissionError) as e:
            return ProbeOutput(error=str(e), return_code=-1)
        # Some tools (old pythons, java) print their version on stderr.
        text = "\n".join(p for p in (proc.stdout, proc.stderr) if p)
        if proc.returncode != 0 and not text.strip():
            return ProbeOutput(error=f"exit code {proc.returncode}", return_code=proc.returncode)
        return ProbeOutput(text=text, return_code=proc.returncode)


class RegexProbe(VersionProbe):
    """``<command> <args>`` and the first match of *pattern* (or a dotted number)."""

    def __init__(
        self,
        name: str,
        *,
        command: str | None = None,
        args: tuple[str, ...] = ("--version",),
        pattern: str | None = None,
    ) -> None:
        self.name = name
        self.command = command or name
        self.args = tuple(args)
        self.pattern = re.compile(pattern) if pattern else None

    def build_cmd(self, executable: str) -> list[str]:
        return [executable, *self.args]

    def parse_version(self, raw: str) -> str | None:
        if self.pattern is None:
            return extract_version(raw)
        m = self.pattern.search(raw)
        if not m:
            return None
        return m.group(1) if m.groups() else m.group(0)


class NodeProbe(RegexProbe):
    """``node --version`` prints ``v18.2.0``."""

    def __init__(self) -> None:
        super().__init__("node")


class PythonProbe(RegexProbe):
    """``python3 --version`` prints ``Python 3.12.1``."""

    def __init__(self, name: str = "python3") -> None:
        super().__init__(name, pattern=r"Python\s+(\d+(?:\.\d+)*)")


class DockerProbe(RegexProbe):
    """``docker --version`` prints ``Docker version 24.0.5, build ced0996``."""

    def __init__(self) -> None:
        super().__init__("docker", pattern=r"version\s+v?(\d+(?:\.\d+)*)")


class GitProbe(RegexProbe):
    def __init__(self) -> None:
        super().__init__("git", pattern=r"git version\s+(\d+(?:\.\d+)*)")


class HelmProbe(RegexProbe):
    def __init__(self) -> None:
        super().__init__("helm", args=("version", "--short"), pattern=r"v(\d+(?:\.\d+)*)")


class KubectlProbe(VersionProbe):
    """Reads ``clientVersion.gitVersion`` from ``kubectl version --client -o json``."""

    name = "kubectl"
    command = "kubectl"

    def build_cmd(self, executable: str) -> list[str]:
        return [executable, "version", "--client", "-o", "json"]

    def parse_version(self, raw: str) -> str | None:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return extract_version(raw)
        if not isinstance(data, dict):
            return None
        client = data.get("clientVersion")
        if not isinstance(client, dict):
            return None
        return extract_version(str(client.get("gitVersion", "")))


# ── Registry ──────────────────────────────────────────────────────────

_PROBES: dict[str, Callable[[], VersionProbe]] = {
    "node": NodeProbe,
    "python": lambda: PythonProbe("python"),
    "python3": PythonProbe,
    "docker": DockerProbe,
    "git": GitProbe,
    "helm": HelmProbe,
    "kubectl": KubectlProbe,
}


def register_probe(name: str, factory: Callable[[], VersionProbe]) -> None:
    """Register (or replace) the probe used for tool *name*."""
    _PROBES[name] = factory


def registered_probes() -> list[str]:
    return sorted(_PROBES)


def get_probe(name: str, spec: ToolSpec | None = None) -> VersionProbe:
    """Return the probe for *name*; manifest overrides win over the registry."""
    if spec is not None and (spec.command or spec.version_args or spec.version_pattern):
        return RegexProbe(
            name,
            command=spec.command,
            args=spec.version_args or ("--version",),
            pattern=spec.version_pattern,
        )
    factory = _PROBES.get(name)
    if factory is not None:
        return factory()
    return RegexProbe(name, command=spec.command if spec else None)


# ── Installers ────────────────────────────────────────────────────────

_PACKAGE_NAME = re.compile(r"^[A-Za-z0-9._+-]+$")

# tool -> system packages, for tools allowed to be installed automatically
_SYSTEM_PACKAGES: dict[str, tuple[str, ...]] = {
    "node": ("nodejs", "npm"),
    "npm": ("nodejs", "npm"),
    "docker": ("docker.io", "docker-compose"),
    "python3": ("python3", "python3-pip"),
    "pip3": ("python3", "python3-pip"),
    "git": ("git",),
    "jq": ("jq",),
    "curl": ("curl",),
}

# tool -> global npm package
_NPM_PACKAGES: dict[str, str] = {
    "pnpm": "pnpm",
    "yarn": "yarn",
}

_INSTALL_HINTS: dict[str, tuple[str, ...]] = {
    "node": (
        "curl -o- https://raw.githubusercontent.com/nvm-sh/nvm/v0.39.7/install.sh | bash",
        "nvm install --lts",
        "or https://nodejs.org/",
    ),
    "npm": ("https://nodejs.org/",),
    "docker": (
        "https://docs.docker.com/get-docker/",
        "sudo apt-get install docker.io docker-compose",
    ),
    "python3": (
        "sudo apt-get install python3 python3-pip  # Ubuntu/Debian",
        "brew install python3                      # macOS",
    ),
    "git": (
        "sudo apt-get install git  # Ubuntu/Debian",
        "brew install git          # macOS",
    ),
    "kubectl": ("https://kubernetes.io/docs/tasks/tools/",),
    "helm": ("https://helm.sh/docs/intro/install/",),
    "jq": (
        "sudo apt-get install jq  # Ubuntu/Debian",
        "brew install jq          # macOS",
    ),
    "pnpm": ("npm install -g pnpm",),
    "yarn": ("npm install -g yarn",),
    "psql": ("sudo apt-get install postgresql-client",),
    "mysql": ("sudo apt-get install mysql-client",),
    "redis-cli": ("sudo apt-get install redis-tools",),
}


def install_hint(tool: str, spec: ToolSpec | None = None) -> list[str]:
    """Human-readable install suggestions for *tool*."""
    if spec is not None and spec.install_hint:
        return [spec.install_hint]
    hints = _INSTALL_HINTS.get(tool)
    if hints:
        return list(hints)
    return [f"https://command-not-found.com/{tool}"]


def can_auto_install(tool: str) -> bool:
    return tool in _SYSTEM_PACKAGES or tool in _NPM_PACKAGES


def _privileged(cmd: list[str]) -> list[str]:
    if hasattr(os, "geteuid") and os.geteuid() != 0 and shutil.which("sudo"):
        return ["sudo", *cmd]
    return cmd


@dataclass
class InstallPlan:
    tool: str
    commands: list[list[str]] = field(default_factory=list)
    error: str = ""


def plan_install(tool: str) -> InstallPlan:
    """Work out the commands that would install *tool* on this machine."""
    plan = InstallPlan(tool=tool)
    if not can_auto_install(tool):
        plan.error = f"{tool} is not in the auto-install list"
        return plan

    if tool in _NPM_PACKAGES:
        if not shutil.which("npm"):
            plan.error = f"npm is required to install {tool}"
            return plan
        plan.commands = [["npm", "install", "-g", _NPM_PACKAGES[tool]]]
        return plan

    packages = list(_SYSTEM_PACKAGES[tool])
    bad = [p for p in packages if not _PACKAGE_NAME.match(p)]
    if bad:
        plan.error = f"Invalid package name(s): {', '.join(bad)}"
        return plan

    if shutil.which("apt-get"):
        plan.commands = [
            _privileged(["apt-get", "update"]),
            _privileged(["apt-get", "install", "-y", *packages]),
        ]
    elif shutil.which("brew"):
        plan.commands = [["brew", "install", *packages]]
    elif shutil.which("dnf"):
        plan.commands = [_privileged(["dnf", "install", "-y", *packages])]
    elif shutil.which("yum"):
        plan.commands = [_privileged(["yum", "install", "-y", *packages])]
    else:
        plan.error = "No supported package manager found (apt-get, brew, dnf, yum)"
    return plan


def install_tool(tool: str, *, timeout: int = DEFAULT_INSTALL_TIMEOUT) -> bool:
    """Run the install plan for *tool*. Returns ``True`` when every step succeeded."""
    plan = plan_install(tool)
    if plan.error:
        log.error(escape(plan.error))
        return False

    log.info(f"Installing {tool} (timeout: {timeout}s)…")
    for cmd in plan.commands:
        log.debug(f"Running: {escape(' '.join(cmd))}")
        try:
            proc = subprocess.run(cmd, timeout=timeout)
        except subprocess.TimeoutExpired:
            log.error(f"Installing {tool} timed out after {timeout}s")
            return False
        except FileNotFoundError as e:
            log.error(f"Installing {tool} failed: {escape(str(e))}")
            return False
        if proc.returncode != 0:
            log.error(f"Installing {tool} failed: {escape(' '.join(cmd))} exited {proc.returncode}")
            return False
    return True
