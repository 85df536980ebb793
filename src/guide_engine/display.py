# display.py
# All terminal output for the guide engine.
#
# This module owns presentation entirely. Engine modules never format
# strings for the terminal; they call named functions here.
#
# Colour language:
#   cyan    : orchestration and routing
#   blue    : page actions
#   yellow  : requirement checks and verification
#   green   : success / confirmed
#   red     : failures and halts
#   magenta : auto-detection internals

import os

from dotenv import load_dotenv
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

load_dotenv()

console = Console(quiet=os.getenv("GUIDE_ENGINE_QUIET", "").lower() in ("1", "true", "yes"))


def set_quiet(quiet: bool) -> None:
    console.quiet = quiet


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        return value[:max_len] + "…"
    return value


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


def session_banner(content_key: str, host: str, section_count: int) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]Interactive Guide Engine[/bold cyan]\n"
            "[dim]Requirements-gated step orchestration with auto-detection[/dim]\n\n"
            f"[dim]Content  :[/dim] [white]{content_key}[/white]\n"
            f"[dim]Page host:[/dim] [white]{host}[/white]\n"
            f"[dim]Sections :[/dim] [white]{section_count}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def observation_started(sources: list[str]) -> None:
    console.print(
        _label("OBSERVE", "magenta"),
        f"[magenta] watching {', '.join(sources) or 'nothing'}[/magenta]",
    )


def observation_stopped() -> None:
    console.print(_label("OBSERVE", "magenta"), "[dim magenta] stopped[/dim magenta]")


def reactive_check(step_count: int) -> None:
    console.print(f"  [magenta]↻ Reactive check[/magenta] [dim]{step_count} step(s)[/dim]")


def check_exception(step_id: str, error: str) -> None:
    console.print(
        f"  [red]✗ Checker for[/red] [bold white]{step_id}[/bold white] "
        f"[red]raised:[/red] [dim]{_mono(error, 160)}[/dim]"
    )


# ---------------------------------------------------------------------------
# Section runs
# ---------------------------------------------------------------------------


def section_start(section_id: str, title: str, start_index: int, total: int) -> None:
    console.print()
    heading = title or section_id
    console.print(Rule(f"[cyan]SECTION {heading} ({start_index + 1}..{total})[/cyan]", style="cyan"))


def step_start(index: int, total: int, step_id: str, kind: str) -> None:
    console.print()
    console.print(
        f"[bold cyan]  STEP [{index + 1}/{total}][/bold cyan]  "
        f"[white]{step_id}[/white] [dim]({kind})[/dim]"
    )


def show_phase(step_id: str, summary: str) -> None:
    console.print(f"  [blue]↳ Show[/blue] [dim]{_mono(summary, 100)}[/dim]")


def do_phase(step_id: str, summary: str) -> None:
    console.print(f"  [blue]↳ Do[/blue]   [white]{_mono(summary, 100)}[/white]")


def page_action(verb: str, target: str) -> None:
    console.print(f"    [blue]{verb}[/blue] [dim]{_mono(target, 100)}[/dim]")


def step_completed(step_id: str, reason: str) -> None:
    console.print(f"  [bold green]✓ {step_id}[/bold green] [dim]{reason}[/dim]")


def step_skipped(step_id: str, reason: str) -> None:
    console.print(f"  [yellow]↷ Skipped {step_id}[/yellow] [dim]{_mono(reason, 120)}[/dim]")


def section_paused(section_id: str, step_id: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[white]Step [bold]{step_id}[/bold] must be performed by hand.[/white]\n"
            "[dim]Run paused. Complete the guided step, then resume the section.[/dim]",
            title=_label("PAUSED", "cyan"),
            subtitle=f"[dim]{section_id}[/dim]",
            border_style="cyan",
            padding=(0, 2),
        )
    )


def section_halted(section_id: str, index: int, step_id: str, reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold red]Halted at step {index + 1} ({step_id}).[/bold red]\n\n"
            f"[white]{reason}[/white]",
            title=_label("SECTION HALTED ✗", "red"),
            subtitle=f"[dim]{section_id}[/dim]",
            border_style="red",
            padding=(0, 2),
        )
    )


def section_cancelled(section_id: str, index: int) -> None:
    console.print(
        _label("CANCELLED", "red"),
        f"[red] {section_id} stopped before step {index + 1}[/red]",
    )


def section_complete(section_id: str, completed: int, total: int) -> None:
    console.print(
        f"  [bold green]✓ Section {section_id} complete[/bold green] "
        f"[dim]{completed}/{total} step(s)[/dim]"
    )


# ---------------------------------------------------------------------------
# Requirements and fixes
# ---------------------------------------------------------------------------


def requirement_failed(step_id: str, requirements: str, explanation: str) -> None:
    console.print(
        f"  [yellow]✗ Requirements[/yellow] [dim yellow]{_mono(requirements, 60)}[/dim yellow] "
        f"[white]{_mono(explanation, 140)}[/white]"
    )


def requirement_retry(step_id: str, attempt: int, max_retries: int) -> None:
    console.print(f"  [dim yellow]↻ {step_id} retry {attempt}/{max_retries}[/dim yellow]")


def unknown_requirement(token: str) -> None:
    console.print(
        f"  [yellow]? Unknown requirement[/yellow] [bold white]{token!r}[/bold white] "
        "[dim](treated as not met)[/dim]"
    )


def fix_attempt(step_id: str, fix_type: str, target: str | None) -> None:
    suffix = f" → {target}" if target else ""
    console.print(f"  [yellow]⚙ Fixing[/yellow] [white]{fix_type}[/white][dim]{suffix}[/dim]")


def fix_failed(step_id: str, error: str) -> None:
    console.print(f"  [red]✗ Fix failed for {step_id}[/red] [dim]{_mono(error, 140)}[/dim]")


def action_failed(step_id: str, error: str) -> None:
    console.print(f"  [red]✗ Action failed for {step_id}[/red] [white]{_mono(error, 140)}[/white]")


def verify_failed(step_id: str, error: str) -> None:
    console.print(f"  [red]✗ Verification failed for {step_id}[/red] [dim]{_mono(error, 140)}[/dim]")


# ---------------------------------------------------------------------------
# Auto-detection and guided steps
# ---------------------------------------------------------------------------


def user_action_detected(action_type: str, identity: str, value: str | None) -> None:
    extra = f" = {value!r}" if value is not None else ""
    console.print(
        f"  [magenta]Detected[/magenta] [bold white]{action_type}[/bold white] "
        f"[dim]{_mono(identity, 80)}{extra}[/dim]"
    )


def step_auto_completed(step_id: str) -> None:
    console.print(f"  [magenta]Matched[/magenta]  [green]{step_id} completed by user action[/green]")


def guided_waiting(step_id: str, index: int, total: int, target: str) -> None:
    console.print(
        f"  [magenta]Waiting[/magenta]  [white]{step_id}[/white] "
        f"[dim]action {index + 1}/{total}: {_mono(target or 'confirm', 80)}[/dim]"
    )


def guided_outcome(step_id: str, outcome: str) -> None:
    color = "green" if outcome == "completed" else "yellow"
    console.print(f"  [{color}]Guided {step_id}: {outcome}[/{color}]")


def analytics_failed(error: str) -> None:
    console.print(f"  [dim red]analytics dropped: {_mono(error, 100)}[/dim red]")


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------


def run_summary(rows: list[tuple[str, str, int, int]]) -> None:
    """rows: (section id, status, completed count, total)."""
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="dim",
        show_header=True,
        header_style="bold dim",
        padding=(0, 1),
    )
    table.add_column("Section", style="bold white")
    table.add_column("Status", justify="center", width=12)
    table.add_column("Steps", justify="right", width=8)

    styles = {"completed": "bold green", "halted": "bold red", "cancelled": "red", "paused": "cyan"}
    for section_id, status, done, total in rows:
        style = styles.get(status, "white")
        table.add_row(section_id, f"[{style}]{status}[/{style}]", f"{done}/{total}")

    console.print(Panel(table, title="[dim]RUN SUMMARY[/dim]", border_style="dim", padding=(0, 1)))


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{reason}[/bold white]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()
