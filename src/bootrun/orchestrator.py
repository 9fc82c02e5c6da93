"""Orchestrator: resolve a selector, preflight the batch, run tasks in order."""

from __future__ import annotations

import signal
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from rich.markup import escape

from bootrun import collaborators, log
from bootrun.collaborators import Collaborator, CollaboratorResult
from bootrun.errors import CollaboratorError, ResolutionError, TrackerError
from bootrun.graph import Selector, TaskGraph
from bootrun.manifest.model import Task
from bootrun.tracker import CompletionTracker
from bootrun.validator import BatchReport, PreconditionValidator, TaskReport

Resolver = Callable[..., Collaborator]

RUN_LOG_NAME = "bootrun.log"


class RunStatus(str, Enum):
    RESOLUTION_ERROR = "resolution_error"
    PREFLIGHT_FAILED = "preflight_failed"
    COMPLETED = "completed"


class TaskStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    SKIPPED = "skipped"
    DRY_RUN = "dry_run"


@dataclass
class RunOptions:
    dry_run: bool = False
    skip_preflight: bool = False
    stop_on_first_failure: bool = False


@dataclass
class TaskOutcome:
    task_id: str
    status: TaskStatus
    duration: float = 0.0
    error: str = ""
    report: TaskReport | None = None


@dataclass
class Progress:
    """Reported after every task: position, wall time so far, and an ETA."""

    index: int
    total: int
    task_id: str
    status: TaskStatus
    elapsed: float
    eta: float | None = None


@dataclass
class RunResult:
    selector: Selector
    status: RunStatus
    task_ids: list[str] = field(default_factory=list)
    outcomes: list[TaskOutcome] = field(default_factory=list)
    preflight: BatchReport | None = None
    error: str = ""
    dry_run: bool = False
    interrupted: bool = False
    elapsed: float = 0.0

    def _count(self, status: TaskStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)

    @property
    def run_count(self) -> int:
        return self._count(TaskStatus.OK)

    @property
    def failed_count(self) -> int:
        return self._count(TaskStatus.FAILED)

    @property
    def skipped_count(self) -> int:
        return self._count(TaskStatus.SKIPPED)

    @property
    def dry_run_count(self) -> int:
        return self._count(TaskStatus.DRY_RUN)

    @property
    def failures(self) -> list[TaskOutcome]:
        return [o for o in self.outcomes if o.status is TaskStatus.FAILED]

    @property
    def exit_code(self) -> int:
        """``0`` every task ran, ``1`` nothing executed (resolution/preflight),
        ``2`` a task failed, was skipped or the run was interrupted.
        """
        if self.status in (RunStatus.RESOLUTION_ERROR, RunStatus.PREFLIGHT_FAILED):
            return 1
        if self.failed_count or self.interrupted:
            return 2
        if self.skipped_count and not self.dry_run:
            return 2
        return 0


def estimate_eta(durations: list[float], remaining: int) -> float | None:
    """Average duration of tasks finished in this run, times tasks left."""
    if remaining <= 0:
        return 0.0
    if not durations:
        return None
    return sum(durations) / len(durations) * remaining


class Orchestrator:
    """Runs tasks one at a time, in the order the task graph yields them.

    Nothing runs until the whole batch has passed preflight. Each task is
    re-validated immediately before it runs; a task that no longer passes is
    skipped rather than failed. Ctrl-C stops the run at the next task
    boundary and the partial result is still returned.
    """

    def __init__(
        self,
        graph: TaskGraph,
        validator: PreconditionValidator,
        tracker: CompletionTracker,
        *,
        project_root: str | Path,
        resolver: Resolver = collaborators.resolve,
        on_progress: Callable[[Progress], None] | None = None,
        log_dir: str | Path | None = None,
        script_timeout: float | None = None,
        handle_signals: bool = True,
    ) -> None:
        self.graph = graph
        self.validator = validator
        self.tracker = tracker
        self.project_root = Path(project_root)
        self.resolver = resolver
        self.on_progress = on_progress
        self.log_dir = Path(log_dir) if log_dir else None
        self.script_timeout = script_timeout
        self.handle_signals = handle_signals
        self._stop_requested = False
        self._interrupt_count = 0
        self._orig_signal_handlers: dict[int, object] = {}

    # ── Run ──────────────────────────────────────────────────────────

    def run(self, selector: Selector, options: RunOptions | None = None) -> RunResult:
        run_log = self.log_dir / RUN_LOG_NAME if self.log_dir else None
        with log.run_log(run_log):
            return self._run(selector, options or RunOptions())

    def _run(self, selector: Selector, opts: RunOptions) -> RunResult:
        start = time.monotonic()
        result = RunResult(selector=selector, status=RunStatus.COMPLETED, dry_run=opts.dry_run)

        try:
            tasks = self.graph.resolve(selector)
        except ResolutionError as e:
            result.status = RunStatus.RESOLUTION_ERROR
            result.error = str(e)
            result.elapsed = time.monotonic() - start
            return result
        result.task_ids = [t.id for t in tasks]

        if opts.skip_preflight:
            log.warn("Skipping preflight validation")
        else:
            log.info(f"Preflight: validating {len(tasks)} task(s)…")
            result.preflight = self.validator.validate_batch(tasks)
            if not result.preflight.ok:
                result.status = RunStatus.PREFLIGHT_FAILED
                result.error = (
                    f"Preflight failed for {len(result.preflight.failing())} task(s); "
                    "nothing was executed"
                )
                result.elapsed = time.monotonic() - start
                return result

        self._stop_requested = False
        self._interrupt_count = 0
        if self.handle_signals:
            self._install_signal_handlers()
        try:
            self._execute(tasks, opts, result, start)
            if self._stop_requested:
                result.interrupted = True
        finally:
            if self.handle_signals:
                self._restore_signal_handlers()

        result.elapsed = time.monotonic() - start
        return result

    def request_stop(self) -> None:
        """Stop before the next task starts."""
        self._stop_requested = True

    def _execute(
        self, tasks: list[Task], opts: RunOptions, result: RunResult, start: float
    ) -> None:
        total = len(tasks)
        durations: list[float] = []

        for idx, task in enumerate(tasks, 1):
            if self._stop_requested:
                result.interrupted = True
                log.warn(f"Stopped before {escape(task.id)}; {total - idx + 1} task(s) not started")
                break

            log.section(f"[{idx}/{total}] {escape(task.id)}")
            try:
                outcome = self._execute_one(task, opts)
            except KeyboardInterrupt:
                result.interrupted = True
                self._stop_requested = True
                outcome = TaskOutcome(task.id, TaskStatus.FAILED, error="interrupted")
            result.outcomes.append(outcome)
            durations.append(outcome.duration)
            self._log_outcome(outcome)

            if self.on_progress is not None:
                self.on_progress(
                    Progress(
                        index=idx,
                        total=total,
                        task_id=task.id,
                        status=outcome.status,
                        elapsed=time.monotonic() - start,
                        eta=estimate_eta(durations, total - idx),
                    )
                )

            if result.interrupted:
                break
            if outcome.status is TaskStatus.FAILED and opts.stop_on_first_failure:
                log.warn("Stopping on first failure")
                break

    def _execute_one(self, task: Task, opts: RunOptions) -> TaskOutcome:
        t0 = time.monotonic()
        if opts.dry_run:
            log.info(f"\\[dry run] would run {escape(task.entry_point or task.id)}")
            return TaskOutcome(task.id, TaskStatus.DRY_RUN, duration=time.monotonic() - t0)

        report = self.validator.validate_one(task)
        if not report.ok:
            return TaskOutcome(
                task.id,
                TaskStatus.SKIPPED,
                duration=time.monotonic() - t0,
                error=report.errors[0].message,
                report=report,
            )

        try:
            collaborator = self._resolve(task.entry_point, task)
        except CollaboratorError as e:
            log.warn(f"Skipping unavailable: {escape(task.id)} ({escape(str(e))})")
            return TaskOutcome(task.id, TaskStatus.SKIPPED, duration=time.monotonic() - t0, error=str(e))

        res = collaborator.invoke(self.project_root, log_file=self._log_file(task.id))
        duration = time.monotonic() - t0
        if not res.ok:
            return TaskOutcome(task.id, TaskStatus.FAILED, duration=duration, error=res.error)

        try:
            self.tracker.mark_complete(task.id)
        except TrackerError as e:
            return TaskOutcome(task.id, TaskStatus.FAILED, duration=duration, error=str(e))
        return TaskOutcome(task.id, TaskStatus.OK, duration=duration)

    def _resolve(self, ref: str, task: Task) -> Collaborator:
        if not ref:
            raise CollaboratorError(task.id, "no entry point declared")
        return self.resolver(
            ref, base_dir=self.graph.manifest.base_dir, timeout=self.script_timeout
        )

    def _log_file(self, task_id: str) -> Path | None:
        if self.log_dir is None:
            return None
        return self.log_dir / f"{task_id}.log"

    @staticmethod
    def _log_outcome(outcome: TaskOutcome) -> None:
        match outcome.status:
            case TaskStatus.OK:
                log.success(f"{escape(outcome.task_id)} completed ({outcome.duration:.1f}s)")
            case TaskStatus.FAILED:
                log.error(f"{escape(outcome.task_id)} failed: {escape(outcome.error)}")
            case TaskStatus.SKIPPED:
                log.warn(f"{escape(outcome.task_id)} skipped: {escape(outcome.error)}")
            case TaskStatus.DRY_RUN:
                log.debug(f"{escape(outcome.task_id)} dry run")

    # ── Rollback / verify ────────────────────────────────────────────

    def rollback(self, task_id: str) -> TaskOutcome:
        """Run the task's rollback collaborator and clear its marker on success."""
        task = self.graph.task(task_id)
        outcome = self._invoke_aux(task, task.rollback, "rollback")
        if outcome.status is TaskStatus.OK:
            try:
                self.tracker.clear(task.id)
            except TrackerError as e:
                return TaskOutcome(task.id, TaskStatus.FAILED, duration=outcome.duration, error=str(e))
        return outcome

    def verify(self, task_id: str) -> TaskOutcome:
        """Run the task's verify collaborator. Markers are left alone."""
        task = self.graph.task(task_id)
        return self._invoke_aux(task, task.verify, "verify")

    def _invoke_aux(self, task: Task, ref: str, action: str) -> TaskOutcome:
        if not ref:
            return TaskOutcome(task.id, TaskStatus.SKIPPED, error=f"no {action} declared")
        try:
            collaborator = self._resolve(ref, task)
        except CollaboratorError as e:
            return TaskOutcome(task.id, TaskStatus.SKIPPED, error=str(e))
        res: CollaboratorResult = collaborator.invoke(
            self.project_root, log_file=self._log_file(f"{task.id}.{action}")
        )
        status = TaskStatus.OK if res.ok else TaskStatus.FAILED
        return TaskOutcome(task.id, status, duration=res.duration, error=res.error)

    # ── Signals ──────────────────────────────────────────────────────

    def _install_signal_handlers(self) -> None:
        """Install handlers so Ctrl-C stops the run at the next task boundary."""
        self._orig_signal_handlers = {}
        signals_to_handle = [signal.SIGINT]
        if hasattr(signal, "SIGBREAK"):
            signals_to_handle.append(signal.SIGBREAK)
        if hasattr(signal, "SIGTERM"):
            signals_to_handle.append(signal.SIGTERM)

        for sig in signals_to_handle:
            try:
                self._orig_signal_handlers[sig] = signal.getsignal(sig)
                signal.signal(sig, self._on_signal)
            except (OSError, RuntimeError, ValueError):
                continue

    def _restore_signal_handlers(self) -> None:
        for sig, handler in self._orig_signal_handlers.items():
            try:
                signal.signal(sig, handler)
            except (OSError, RuntimeError, ValueError, TypeError):
                continue
        self._orig_signal_handlers = {}

    def _on_signal(self, signum: int, _frame: object) -> None:
        self._interrupt_count += 1
        self._stop_requested = True
        if self._interrupt_count == 1:
            log.warn(f"Interrupt received (signal {signum}). Finishing current task, then stopping...")
        else:
            log.warn(f"Interrupt received again (signal {signum}). Stopping after current task...")
