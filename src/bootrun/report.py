"""Console rendering: run banner, plans, preflight reports, progress, summaries."""

from __future__ import annotations

from datetime import datetime

from rich.markup import escape

from bootrun import log
from bootrun.graph import TaskGraph
from bootrun.manifest.model import Task
from bootrun.orchestrator import Progress, RunResult, RunStatus, TaskStatus
from bootrun.validator import BatchReport, Issue

_RULE = "[bold]============================================[/bold]"


def format_duration(seconds: float | None) -> str:
    if seconds is None:
        return "?"
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(round(seconds)), 60)
    if minutes < 60:
        return f"{minutes}m {secs:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes:02d}m"


def show_banner(label: str, *, dry_run: bool = False, skip_preflight: bool = False,
                stop_on_failure: bool = False, manifest: str = "") -> None:
    log.console.print(_RULE)
    log.console.print(f"[bold]BOOTRUN[/bold] — Running {label}")
    if manifest:
        log.console.print(f"Manifest: [cyan]{manifest}[/cyan]")

    parts: list[str] = []
    if dry_run:
        parts.append("dry-run")
    if skip_preflight:
        parts.append("skip-preflight")
    if stop_on_failure:
        parts.append("stop-on-failure")
    if parts:
        log.console.print(f"Mode: [yellow]{' '.join(parts)}[/yellow]")
    log.console.print(_RULE)


def show_plan(tasks: list[Task], *, title: str = "Execution plan") -> None:
    log.section(title)
    if not tasks:
        log.success("Nothing to run.")
        return
    for idx, task in enumerate(tasks, 1):
        line = f"  {idx:>2}. \\[{escape(task.id)}] phase {task.phase}"
        if task.category:
            line += f" [dim]({escape(task.category)})[/dim]"
        if task.description:
            line += f" — {escape(task.description)}"
        log.console.print(line)


def _issue_line(issue: Issue) -> str:
    text = escape(issue.message)
    if issue.expected or issue.actual:
        text += f" [dim](expected: {issue.expected or '-'}, actual: {issue.actual or '-'})[/dim]"
    return text


def show_preflight_report(batch: BatchReport, *, show_warnings: bool = True) -> None:
    """Print every error (and warning) by task, then one ordered fix-up list."""
    failing = batch.failing()
    if failing:
        log.section(f"Preflight failed for {len(failing)} task(s)")
        for report in failing:
            log.console.print(f"  [bold]{report.task_id}[/bold]")
            for issue in report.errors:
                log.console.print(f"    [red]✗[/red] {_issue_line(issue)}")

    warnings = batch.warnings
    if show_warnings and warnings:
        log.section("Warnings")
        for issue in warnings:
            log.console.print(f"  [yellow]![/yellow] \\[{escape(issue.task_id)}] {_issue_line(issue)}")

    commands = batch.remediation_commands()
    if failing and commands:
        log.section("Run these first, in this order")
        for idx, cmd in enumerate(commands, 1):
            log.console.print(f"  {idx}. {cmd}")


def show_progress(progress: Progress) -> None:
    pct = int(progress.index * 100 / progress.total) if progress.total else 100
    eta = "" if progress.index >= progress.total else f", ETA {format_duration(progress.eta)}"
    log.console.print(
        f"[dim]Progress: {progress.index}/{progress.total} ({pct}%), "
        f"elapsed {format_duration(progress.elapsed)}{eta}[/dim]"
    )


def show_summary(result: RunResult) -> None:
    """Print the final run summary."""
    log.console.print("")
    log.console.print(_RULE)
    match result.status:
        case RunStatus.RESOLUTION_ERROR:
            log.console.print(f"[red]Could not resolve {result.selector.label()}[/red]")
        case RunStatus.PREFLIGHT_FAILED:
            log.console.print("[red]Preflight failed[/red] — no tasks were executed.")
        case _ if result.interrupted:
            log.console.print("[yellow]Interrupted[/yellow] — stopped at a task boundary.")
        case _ if result.failed_count:
            log.console.print(f"[red]Finished with {result.failed_count} failure(s).[/red]")
        case _ if result.skipped_count and not result.dry_run:
            log.console.print(f"[yellow]Finished with {result.skipped_count} skipped task(s).[/yellow]")
        case _ if result.dry_run:
            log.console.print(f"[green]Dry run complete.[/green] {result.dry_run_count} task(s) planned.")
        case _:
            log.console.print(f"[green]Done![/green] Finished {result.run_count} task(s).")
    log.console.print(_RULE)

    if result.status is RunStatus.COMPLETED:
        log.console.print(f"Tasks run:     {result.run_count}")
        log.console.print(f"Tasks failed:  {result.failed_count}")
        log.console.print(f"Tasks skipped: {result.skipped_count}")
        if result.dry_run:
            log.console.print(f"Dry run:       {result.dry_run_count}")
        not_started = len(result.task_ids) - len(result.outcomes)
        if not_started > 0:
            log.console.print(f"Not started:   {not_started}")
    log.console.print(f"Elapsed:       {format_duration(result.elapsed)}")

    if result.failures:
        log.console.print("")
        log.console.print("[bold]>>> Failures[/bold]")
        for outcome in result.failures:
            log.console.print(f"  - \\[{escape(outcome.task_id)}] {escape(outcome.error)}")

    skipped = [o for o in result.outcomes if o.status is TaskStatus.SKIPPED]
    if skipped:
        log.console.print("")
        log.console.print("[bold]>>> Skipped[/bold]")
        for outcome in skipped:
            log.console.print(f"  - \\[{escape(outcome.task_id)}] {escape(outcome.error)}")

    log.console.print(_RULE)


def show_listing(graph: TaskGraph, completed: set[str]) -> None:
    """Phases with their tasks, then profiles."""
    for phase in graph.phases():
        log.section(f"Phase {phase.number}: {escape(phase.name)}")
        if not phase.task_ids:
            log.console.print("  [dim](no tasks)[/dim]")
        for tid in phase.task_ids:
            task = graph.task(tid)
            mark = "[green]✓[/green]" if tid in completed else " "
            desc = f" — {escape(task.description)}" if task.description else ""
            log.console.print(f"  {mark} {escape(tid)}{desc}")

    profiles = graph.profiles()
    if profiles:
        log.section("Profiles")
        for profile in profiles:
            desc = f" — {escape(profile.description)}" if profile.description else ""
            log.console.print(f"  [cyan]{escape(profile.name)}[/cyan]{desc}")
            log.console.print(f"    [dim]{escape(', '.join(profile.task_ids))}[/dim]")


def show_status(graph: TaskGraph, stamps: dict[str, datetime | None]) -> None:
    """Completion markers for every task in the manifest, in declaration order."""
    log.section("Completion status")
    done = 0
    for tid in graph.manifest.task_ids():
        if tid in stamps:
            done += 1
            when = stamps[tid]
            stamp = when.strftime("%Y-%m-%d %H:%M:%S %Z").strip() if when else "unknown time"
            log.console.print(f"  [green]✓[/green] {escape(tid)} [dim]({stamp})[/dim]")
        else:
            log.console.print(f"  [dim]·[/dim] {escape(tid)}")
    log.console.print("")
    log.info(f"{done}/{len(graph.manifest.tasks)} task(s) completed")
