"""BOOTRUN CLI — run manifest-defined project setup tasks.

Installed as the ``bootrun`` console_script.
"""

from __future__ import annotations

import functools
import sys
from pathlib import Path
from typing import Any, Callable

import click
from rich.markup import escape

from bootrun import __version__, log, report
from bootrun.config import Config
from bootrun.errors import BootrunError, ManifestError, ManifestValidationError, ResolutionError
from bootrun.graph import Selector, TaskGraph
from bootrun.manifest.model import Manifest
from bootrun.manifest.store import ManifestStore
from bootrun.orchestrator import Orchestrator, RunOptions, RunStatus, TaskOutcome, TaskStatus
from bootrun.tools import install_tool
from bootrun.tracker import CompletionTracker
from bootrun.validator import PreconditionValidator, tasks_needing

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])


# ── Shared plumbing ──────────────────────────────────────────────────

def _config(ctx: click.Context, project: str = "") -> Config:
    """Build the Config from global options, letting a command-level --project win."""
    opts = ctx.find_root().obj or {}
    root = project or opts.get("project", "")
    return Config(
        project_root=str(Path(root).resolve()) if root else "",
        manifest_file=opts.get("manifest_file", ""),
        disk_cache=not opts.get("no_cache", False),
        verbose=opts.get("verbose", False),
    )


def _store(cfg: Config) -> ManifestStore:
    return ManifestStore(cfg.cache_dir if cfg.disk_cache else None, ttl=cfg.cache_ttl)


def _load(cfg: Config) -> Manifest:
    try:
        return _store(cfg).load(cfg.manifest_file)
    except ManifestValidationError as e:
        if len(e.issues) == 1:
            log.error(escape(str(e)))
        else:
            log.error(f"Manifest {cfg.manifest_file} has {len(e.issues)} problems:")
            for issue in e.issues:
                log.console.print(f"  - {escape(str(issue))}")
        sys.exit(1)
    except ManifestError as e:
        log.error(escape(str(e)))
        sys.exit(1)


def _validator(cfg: Config, manifest: Manifest, tracker: CompletionTracker) -> PreconditionValidator:
    return PreconditionValidator(
        tracker,
        manifest=manifest,
        max_workers=cfg.max_tool_workers,
        join_timeout=cfg.tool_check_timeout,
        version_timeout=cfg.version_timeout,
    )


def _orchestrator(cfg: Config, manifest: Manifest) -> Orchestrator:
    tracker = CompletionTracker(cfg.state_dir)
    return Orchestrator(
        TaskGraph(manifest),
        _validator(cfg, manifest, tracker),
        tracker,
        project_root=cfg.project_root,
        on_progress=report.show_progress,
        log_dir=cfg.log_dir,
        script_timeout=cfg.script_timeout,
    )


def _selector(phase: int | None, profile: str, task: str) -> Selector:
    given = [s for s in (
        Selector.phase(phase) if phase is not None else None,
        Selector.profile(profile) if profile else None,
        Selector.task(task) if task else None,
    ) if s is not None]
    if len(given) != 1:
        raise click.UsageError("Specify exactly one of --phase, --profile or --task.")
    return given[0]


def selector_options(f: Callable[..., Any]) -> Callable[..., Any]:
    f = click.option("--task", "task_id", default="", help="Run a single task by id")(f)
    f = click.option("--profile", default="", help="Run the tasks of a profile")(f)
    f = click.option("--phase", type=int, default=None, help="Run every task of a phase")(f)
    return f


def _exit_for_outcome(outcome: TaskOutcome, action: str) -> None:
    match outcome.status:
        case TaskStatus.OK:
            log.success(f"{action} of {escape(outcome.task_id)} succeeded")
            sys.exit(0)
        case TaskStatus.SKIPPED:
            log.warn(f"{action} of {escape(outcome.task_id)} not run: {escape(outcome.error)}")
            sys.exit(1)
        case _:
            log.error(f"{action} of {escape(outcome.task_id)} failed: {escape(outcome.error)}")
            sys.exit(2)


# ── Group ────────────────────────────────────────────────────────────

@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("--manifest", "manifest_file", default="", help="Manifest file (default: <project>/bootrun.json)")
@click.option("--project", default="", help="Project root (default: git root or cwd)")
@click.option("--no-cache", is_flag=True, help="Do not read or write the on-disk manifest cache")
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.version_option(__version__, prog_name="bootrun")
@click.pass_context
def main(ctx: click.Context, manifest_file: str, project: str, no_cache: bool, verbose: bool) -> None:
    """BOOTRUN — Manifest-driven project setup.

    Resolves phases and profiles into ordered task lists, checks tools and
    prerequisites for the whole batch up front, then runs tasks one by one,
    recording completion so reruns pick up where they left off.

    \b
    EXAMPLES:
      bootrun list                               # Phases, tasks and profiles
      bootrun check --phase 1                    # Preflight only
      bootrun run --phase 1                      # Run phase 1
      bootrun run --profile quickstart --dry-run # Show what would run
      bootrun run --task packages                # Run one task
      bootrun reset --task git                   # Forget a completion marker
    """
    log.set_verbose(verbose)
    ctx.obj = {
        "manifest_file": manifest_file,
        "project": project,
        "no_cache": no_cache,
        "verbose": verbose,
    }


# ── run ──────────────────────────────────────────────────────────────

@main.command()
@selector_options
@click.option("--dry-run", is_flag=True, help="Resolve and preflight, but do not execute")
@click.option("--skip-preflight", is_flag=True, help="Skip batch validation before execution")
@click.option("--stop-on-failure", is_flag=True, help="Stop at the first failed task")
@click.option("--project", default="", help="Project root for this run")
@click.option("--install-missing", is_flag=True, help="Offer to install missing tools before running")
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Do not ask before installing")
@click.pass_context
def run(
    ctx: click.Context,
    phase: int | None,
    profile: str,
    task_id: str,
    dry_run: bool,
    skip_preflight: bool,
    stop_on_failure: bool,
    project: str,
    install_missing: bool,
    assume_yes: bool,
) -> None:
    """Run a phase, a profile, or a single task."""
    selector = _selector(phase, profile, task_id)
    cfg = _config(ctx, project)
    cfg.dry_run = dry_run
    cfg.skip_preflight = skip_preflight
    cfg.stop_on_first_failure = stop_on_failure

    manifest = _load(cfg)
    orch = _orchestrator(cfg, manifest)

    report.show_banner(
        selector.label(),
        dry_run=dry_run,
        skip_preflight=skip_preflight,
        stop_on_failure=stop_on_failure,
        manifest=cfg.manifest_file,
    )

    if install_missing and not dry_run:
        _offer_install(cfg, orch, selector, assume_yes)

    result = orch.run(
        selector,
        RunOptions(
            dry_run=cfg.dry_run,
            skip_preflight=cfg.skip_preflight,
            stop_on_first_failure=cfg.stop_on_first_failure,
        ),
    )

    if result.status is RunStatus.RESOLUTION_ERROR:
        log.error(escape(result.error))
    elif result.preflight is not None and (result.preflight.errors or result.preflight.warnings):
        report.show_preflight_report(result.preflight)

    if result.dry_run and result.status is RunStatus.COMPLETED:
        report.show_plan([orch.graph.task(tid) for tid in result.task_ids], title="Dry run plan")

    report.show_summary(result)
    sys.exit(result.exit_code)


def _offer_install(cfg: Config, orch: Orchestrator, selector: Selector, assume_yes: bool) -> None:
    """Explicit, consented remediation step before the run's own preflight."""
    try:
        tasks = orch.graph.resolve(selector)
    except ResolutionError:
        return
    batch = orch.validator.validate_batch(tasks)
    tools = orch.validator.installable_tools(batch)
    if not tools:
        log.info("No installable missing tools")
        return

    log.info(f"Missing tools with a known installer: {', '.join(tools)}")
    if not assume_yes and not click.confirm(f"Install {', '.join(tools)} now?", default=False):
        log.warn("Skipping installation")
        return

    installer = functools.partial(install_tool, timeout=cfg.install_timeout)
    for tool in tools:
        needing = tasks_needing(tool, tasks)
        if not needing:
            continue
        recheck = orch.validator.remediate(needing[0], tool, installer=installer)
        if recheck.ok:
            log.success(f"{tool} now satisfies {needing[0].id}")
        else:
            for issue in recheck.errors:
                log.warn(escape(issue.message))


# ── check ────────────────────────────────────────────────────────────

@main.command()
@selector_options
@click.option("--project", default="", help="Project root")
@click.pass_context
def check(ctx: click.Context, phase: int | None, profile: str, task_id: str, project: str) -> None:
    """Preflight only: validate tools and prerequisites, run nothing."""
    selector = _selector(phase, profile, task_id)
    cfg = _config(ctx, project)
    manifest = _load(cfg)
    orch = _orchestrator(cfg, manifest)

    try:
        tasks = orch.graph.resolve(selector)
    except ResolutionError as e:
        log.error(escape(str(e)))
        sys.exit(1)

    batch = orch.validator.validate_batch(tasks)
    report.show_preflight_report(batch)
    if not batch.ok:
        log.error(f"Preflight failed for {len(batch.failing())} of {len(tasks)} task(s)")
        sys.exit(1)
    log.success(f"All preflight checks passed for {selector.label()} ({len(tasks)} task(s))")


# ── list / status / reset ────────────────────────────────────────────

@main.command("list")
@click.pass_context
def list_cmd(ctx: click.Context) -> None:
    """Show phases, tasks and profiles."""
    cfg = _config(ctx)
    manifest = _load(cfg)
    tracker = CompletionTracker(cfg.state_dir)
    report.show_listing(TaskGraph(manifest), set(tracker.completed()))


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show completion markers."""
    cfg = _config(ctx)
    manifest = _load(cfg)
    tracker = CompletionTracker(cfg.state_dir)
    try:
        stamps = {tid: tracker.completed_at(tid) for tid in tracker.completed()}
    except BootrunError as e:
        log.error(escape(str(e)))
        sys.exit(1)
    report.show_status(TaskGraph(manifest), stamps)


@main.command()
@click.option("--task", "task_ids", multiple=True, help="Task whose marker to clear (repeatable)")
@click.option("--all", "clear_all", is_flag=True, help="Clear every marker")
@click.pass_context
def reset(ctx: click.Context, task_ids: tuple[str, ...], clear_all: bool) -> None:
    """Clear completion markers so tasks run again."""
    if bool(task_ids) == clear_all:
        raise click.UsageError("Specify --task ID (one or more) or --all.")
    cfg = _config(ctx)
    tracker = CompletionTracker(cfg.state_dir)

    try:
        if clear_all:
            removed = tracker.clear_all()
            log.success(f"Cleared {removed} marker(s)")
            return
        graph = TaskGraph(_load(cfg))
        for tid in task_ids:
            graph.task(tid)
            if tracker.clear(tid):
                log.success(f"Cleared marker for {tid}")
            else:
                log.info(f"{tid} had no marker")
    except BootrunError as e:
        log.error(escape(str(e)))
        sys.exit(1)


# ── rollback / verify ────────────────────────────────────────────────

@main.command()
@click.option("--task", "task_id", required=True, help="Task to roll back")
@click.pass_context
def rollback(ctx: click.Context, task_id: str) -> None:
    """Run a task's rollback entry point and clear its marker."""
    cfg = _config(ctx)
    orch = _orchestrator(cfg, _load(cfg))
    try:
        outcome = orch.rollback(task_id)
    except BootrunError as e:
        log.error(escape(str(e)))
        sys.exit(1)
    _exit_for_outcome(outcome, "Rollback")


@main.command()
@click.option("--task", "task_id", required=True, help="Task to verify")
@click.pass_context
def verify(ctx: click.Context, task_id: str) -> None:
    """Run a task's verify entry point."""
    cfg = _config(ctx)
    orch = _orchestrator(cfg, _load(cfg))
    try:
        outcome = orch.verify(task_id)
    except BootrunError as e:
        log.error(escape(str(e)))
        sys.exit(1)
    _exit_for_outcome(outcome, "Verify")


# ── cache ────────────────────────────────────────────────────────────

@main.group()
def cache() -> None:
    """Inspect or clear the on-disk manifest cache."""


@cache.command("status")
@click.pass_context
def cache_status(ctx: click.Context) -> None:
    """Show whether the cached manifest is still usable."""
    cfg = _config(ctx)
    st = _store(cfg).status(cfg.manifest_file)
    log.console.print(f"Cache file: [cyan]{st.cache_file or '(disabled)'}[/cyan]")
    if not st.exists:
        log.info(f"No cache ({escape(st.reason)})")
        return
    log.console.print(f"Source:     {st.source}")
    log.console.print(f"Tasks:      {st.task_count}")
    log.console.print(f"Age:        {report.format_duration(st.age_seconds)} (TTL {cfg.cache_ttl}s)")
    if st.valid:
        log.success("Cache is valid")
    else:
        log.warn(f"Cache is stale: {escape(st.reason)}")


@cache.command("clear")
@click.pass_context
def cache_clear(ctx: click.Context) -> None:
    """Delete the on-disk manifest cache."""
    cfg = _config(ctx)
    if _store(cfg).clear():
        log.success("Manifest cache cleared")
    else:
        log.info("No manifest cache to clear")
