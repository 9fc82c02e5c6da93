"""Precondition checks: tool presence, tool versions, prerequisite tasks.

Problems are collected as :class:`Issue` values instead of raised so a whole
batch can be reported before anything runs. Required-tool checks for one task
fan out over a thread pool and are joined back in declaration order.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Collection, Iterable, Sequence

from bootrun import log
from bootrun.config import DEFAULT_MAX_TOOL_WORKERS, DEFAULT_VERSION_TIMEOUT
from bootrun.errors import TrackerError
from bootrun.manifest.model import Manifest, Task, ToolRequirement, ToolSpec
from bootrun.tools import VersionProbe, can_auto_install, get_probe, install_hint, install_tool
from bootrun.tracker import CompletionTracker
from bootrun.versions import satisfies

ProbeFactory = Callable[[str, ToolSpec | None], VersionProbe]


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class IssueKind(str, Enum):
    MISSING_TOOL = "missing_tool"
    VERSION_MISMATCH = "version_mismatch"
    MISSING_PREREQUISITE = "missing_prerequisite"
    TRACKER_FAILURE = "tracker_failure"
    TOOL_CHECK_TIMEOUT = "tool_check_timeout"
    OPTIONAL_TOOL_MISSING = "optional_tool_missing"
    UNKNOWN_VERSION = "unknown_version"


@dataclass(frozen=True)
class Issue:
    """One preflight finding for one task.

    ``subject`` is the tool name or prerequisite task id the issue is about.
    ``remediation`` lists commands to run, in order, to clear the issue.
    """

    kind: IssueKind
    severity: Severity
    task_id: str
    subject: str
    message: str
    expected: str = ""
    actual: str = ""
    remediation: tuple[str, ...] = ()

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR


@dataclass(frozen=True)
class ToolCheck:
    """Result of probing one required tool."""

    requirement: ToolRequirement
    present: bool = False
    path: str | None = None
    version: str | None = None
    satisfied: bool = False
    timed_out: bool = False


@dataclass
class TaskReport:
    task_id: str
    issues: list[Issue] = field(default_factory=list)
    tool_checks: list[ToolCheck] = field(default_factory=list)

    @property
    def errors(self) -> list[Issue]:
        return [i for i in self.issues if i.is_error]

    @property
    def warnings(self) -> list[Issue]:
        return [i for i in self.issues if not i.is_error]

    @property
    def ok(self) -> bool:
        return not self.errors

    def missing_prerequisites(self) -> list[str]:
        return [i.subject for i in self.issues if i.kind is IssueKind.MISSING_PREREQUISITE]

    def missing_tools(self) -> list[str]:
        return [i.subject for i in self.issues if i.kind is IssueKind.MISSING_TOOL]


@dataclass
class BatchReport:
    reports: list[TaskReport] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.reports)

    @property
    def errors(self) -> list[Issue]:
        return [i for r in self.reports for i in r.errors]

    @property
    def warnings(self) -> list[Issue]:
        return [i for r in self.reports for i in r.warnings]

    def failing(self) -> list[TaskReport]:
        return [r for r in self.reports if not r.ok]

    def get(self, task_id: str) -> TaskReport | None:
        for r in self.reports:
            if r.task_id == task_id:
                return r
        return None

    def remediation_commands(self) -> list[str]:
        """Every remediation command across the batch, first occurrence wins."""
        seen: dict[str, None] = {}
        for issue in self.errors:
            for cmd in issue.remediation:
                seen.setdefault(cmd, None)
        return list(seen)


class PreconditionValidator:
    """Checks whether tasks can run in the current environment.

    ``probe_factory`` maps a tool name (and its manifest hints) to a
    :class:`~bootrun.tools.VersionProbe`. ``join_timeout`` bounds how long
    :meth:`validate_one` waits for its tool-check workers; unfinished checks
    become ``TOOL_CHECK_TIMEOUT`` errors.
    """

    def __init__(
        self,
        tracker: CompletionTracker,
        *,
        manifest: Manifest | None = None,
        probe_factory: ProbeFactory = get_probe,
        max_workers: int = DEFAULT_MAX_TOOL_WORKERS,
        join_timeout: float | None = None,
        version_timeout: int = DEFAULT_VERSION_TIMEOUT,
        parallel: bool = True,
    ) -> None:
        self.tracker = tracker
        self.manifest = manifest
        self.probe_factory = probe_factory
        self.max_workers = max(1, max_workers)
        self.join_timeout = join_timeout
        self.version_timeout = version_timeout
        self.parallel = parallel

    # ── Tools ────────────────────────────────────────────────────────

    def _tool_spec(self, name: str) -> ToolSpec | None:
        if self.manifest is None:
            return None
        return self.manifest.tools.get(name)

    def _probe(self, name: str) -> VersionProbe:
        return self.probe_factory(name, self._tool_spec(name))

    def check_tool(self, requirement: ToolRequirement) -> ToolCheck:
        probe = self._probe(requirement.name)
        path = probe.locate()
        if path is None:
            return ToolCheck(requirement=requirement)
        if not requirement.version:
            return ToolCheck(requirement=requirement, present=True, path=path, satisfied=True)

        version = probe.detect_version(path, timeout=self.version_timeout)
        if version is None:
            # Treated as satisfied; the caller reports it as a warning.
            return ToolCheck(requirement=requirement, present=True, path=path, satisfied=True)
        return ToolCheck(
            requirement=requirement,
            present=True,
            path=path,
            version=version,
            satisfied=satisfies(version, requirement.version, requirement.comparator),
        )

    def check_tools(self, requirements: Sequence[ToolRequirement]) -> list[ToolCheck]:
        """Probe every distinct requirement; results follow *requirements* order."""
        distinct = list(dict.fromkeys(requirements))
        if not distinct:
            return []
        if not self.parallel or len(distinct) == 1:
            results = {req: self.check_tool(req) for req in distinct}
        else:
            results = self._check_tools_parallel(distinct)
        return [results[req] for req in requirements]

    def _check_tools_parallel(
        self, requirements: list[ToolRequirement]
    ) -> dict[ToolRequirement, ToolCheck]:
        pool = ThreadPoolExecutor(
            max_workers=min(len(requirements), self.max_workers),
            thread_name_prefix="bootrun-toolcheck",
        )
        try:
            futures: dict[ToolRequirement, Future[ToolCheck]] = {
                req: pool.submit(self.check_tool, req) for req in requirements
            }
            wait(futures.values(), timeout=self.join_timeout)
            results: dict[ToolRequirement, ToolCheck] = {}
            for req, fut in futures.items():
                if fut.done():
                    results[req] = fut.result()
                else:
                    fut.cancel()
                    log.debug(f"Tool check for {req.name} did not finish in {self.join_timeout}s")
                    results[req] = ToolCheck(requirement=req, timed_out=True)
            return results
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

    def _tool_issues(self, task: Task, check: ToolCheck) -> list[Issue]:
        req = check.requirement
        if check.timed_out:
            return [
                Issue(
                    IssueKind.TOOL_CHECK_TIMEOUT,
                    Severity.ERROR,
                    task.id,
                    req.name,
                    f"Checking {req.name} timed out after {self.join_timeout}s",
                )
            ]
        if not check.present:
            return [
                Issue(
                    IssueKind.MISSING_TOOL,
                    Severity.ERROR,
                    task.id,
                    req.name,
                    f"Task '{task.id}' requires {req.describe()}, which is not installed",
                    expected=req.version or "installed",
                    actual="not found",
                    remediation=tuple(install_hint(req.name, self._tool_spec(req.name))),
                )
            ]
        if req.version and check.version is None:
            return [
                Issue(
                    IssueKind.UNKNOWN_VERSION,
                    Severity.WARNING,
                    task.id,
                    req.name,
                    f"Could not determine the version of {req.name}; "
                    f"assuming it satisfies {req.comparator.value} {req.version}",
                    expected=req.version,
                    actual="unknown",
                )
            ]
        if not check.satisfied:
            return [
                Issue(
                    IssueKind.VERSION_MISMATCH,
                    Severity.ERROR,
                    task.id,
                    req.name,
                    f"Task '{task.id}' requires {req.describe()}, found {check.version}",
                    expected=f"{req.comparator.value} {req.version}",
                    actual=check.version or "",
                    remediation=tuple(install_hint(req.name, self._tool_spec(req.name))),
                )
            ]
        return []

    # ── Prerequisite tasks ───────────────────────────────────────────

    def _run_chain(self, task_id: str) -> list[str]:
        """Run commands for *task_id* preceded by its own unmet prerequisites."""
        if self.manifest is None:
            return [f"bootrun run --task={task_id}"]
        order: list[str] = []
        seen: set[str] = set()

        def visit(tid: str) -> None:
            if tid in seen:
                return
            seen.add(tid)
            task = self.manifest.get_task(tid)
            if task is None:
                order.append(tid)
                return
            for dep in task.required_tasks:
                try:
                    done = self.tracker.is_complete(dep)
                except TrackerError:
                    done = False
                if not done:
                    visit(dep)
            order.append(tid)

        visit(task_id)
        return [f"bootrun run --task={tid}" for tid in order]

    def _prerequisite_issues(
        self,
        task: Task,
        scheduled_before: Collection[str],
        scheduled_after: Collection[str],
    ) -> list[Issue]:
        issues: list[Issue] = []
        for dep in task.required_tasks:
            if dep in scheduled_before:
                continue
            try:
                done = self.tracker.is_complete(dep)
            except TrackerError as e:
                issues.append(
                    Issue(
                        IssueKind.TRACKER_FAILURE,
                        Severity.ERROR,
                        task.id,
                        dep,
                        str(e),
                    )
                )
                continue
            if done:
                continue
            message = f"Task '{task.id}' requires '{dep}' to be completed first"
            if dep in scheduled_after:
                message += f" ('{dep}' is ordered after '{task.id}' in this run)"
            issues.append(
                Issue(
                    IssueKind.MISSING_PREREQUISITE,
                    Severity.ERROR,
                    task.id,
                    dep,
                    message,
                    expected="completed",
                    actual="not completed",
                    remediation=tuple(self._run_chain(dep)),
                )
            )
        return issues

    # ── Public entry points ──────────────────────────────────────────

    def validate_one(
        self,
        task: Task,
        *,
        scheduled_before: Collection[str] = (),
        scheduled_after: Collection[str] = (),
    ) -> TaskReport:
        """Check a single task.

        Prerequisites listed in *scheduled_before* count as satisfied because
        they run earlier in the same batch.
        """
        report = TaskReport(task_id=task.id)

        for name in task.optional_tools:
            if self._probe(name).locate() is None:
                report.issues.append(
                    Issue(
                        IssueKind.OPTIONAL_TOOL_MISSING,
                        Severity.WARNING,
                        task.id,
                        name,
                        f"Optional tool {name} not found; '{task.id}' may run with reduced features",
                        remediation=tuple(install_hint(name, self._tool_spec(name))),
                    )
                )

        report.tool_checks = self.check_tools(task.required_tools)
        for check in report.tool_checks:
            report.issues.extend(self._tool_issues(task, check))

        report.issues.extend(
            self._prerequisite_issues(task, scheduled_before, scheduled_after)
        )
        return report

    def validate_batch(self, tasks: Iterable[Task]) -> BatchReport:
        """Validate *tasks* in order without executing anything."""
        ordered = list(tasks)
        ids = [t.id for t in ordered]
        batch = BatchReport()
        for idx, task in enumerate(ordered):
            batch.reports.append(
                self.validate_one(
                    task,
                    scheduled_before=set(ids[:idx]),
                    scheduled_after=set(ids[idx + 1:]),
                )
            )
        return batch

    def recheck_tool(self, task: Task, tool: str) -> TaskReport:
        """Re-run only the checks that concern *tool* for *task*."""
        report = TaskReport(task_id=task.id)
        reqs = [r for r in task.required_tools if r.name == tool]
        if reqs:
            report.tool_checks = self.check_tools(reqs)
            for check in report.tool_checks:
                report.issues.extend(self._tool_issues(task, check))
        elif tool in task.optional_tools and self._probe(tool).locate() is None:
            report.issues.append(
                Issue(
                    IssueKind.OPTIONAL_TOOL_MISSING,
                    Severity.WARNING,
                    task.id,
                    tool,
                    f"Optional tool {tool} not found",
                )
            )
        return report

    # ── Remediation ──────────────────────────────────────────────────

    @staticmethod
    def installable_tools(report: BatchReport | TaskReport) -> list[str]:
        """Missing tools that have a known installer, in report order."""
        reports = report.reports if isinstance(report, BatchReport) else [report]
        names: dict[str, None] = {}
        for r in reports:
            for name in r.missing_tools():
                if can_auto_install(name):
                    names.setdefault(name, None)
        return list(names)

    def remediate(
        self,
        task: Task,
        tool: str,
        *,
        installer: Callable[[str], bool] = install_tool,
    ) -> TaskReport:
        """Install *tool* and re-check it for *task*. Never called implicitly."""
        if installer(tool):
            log.success(f"Installed {tool}")
        else:
            log.warn(f"Could not install {tool}")
        return self.recheck_tool(task, tool)


def tasks_needing(tool: str, tasks: Iterable[Task]) -> list[Task]:
    return [t for t in tasks if any(r.name == tool for r in t.required_tools)]
