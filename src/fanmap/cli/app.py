"""
Root Typer application for the fanmap CLI.

    fanmap run mypkg.tasks:score 1 2 3 --backend fork --workers 4
    fanmap run mypkg.tasks:scale --items-file items.json --export FACTOR=3
    fanmap settings
"""

from __future__ import annotations

import threading
from pathlib import Path

import typer
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn

from fanmap.core.capabilities import available_parallelism, fork_supported
from fanmap.core.enums import Backend, CancelPolicy
from fanmap.core.errors import FanmapError
from fanmap.core.logging import configure_logging
from fanmap.core.settings import get_settings
from fanmap.execution.collector import ResultSlot
from fanmap.execution.config import PoolConfig
from fanmap.execution.engine import ParallelMap
from fanmap.execution.pool.factory import fallback_config

from .utils import console, err_console, load_target, output_run_result, parse_exports, print_dict, read_items

app = typer.Typer(
    name="fanmap",
    help="fanmap - parallel map with ordered results.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("fanmap")
        except Exception:
            from fanmap import __version__ as v
        typer.echo(f"fanmap {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override FANMAP_LOG_LEVEL."),
) -> None:
    """fanmap CLI - run a function over many inputs in parallel."""
    settings = get_settings()
    configure_logging(
        level=log_level or settings.log_level,
        json_format=settings.log_format == "json",
    )


# ── Progress bar ─────────────────────────────────────────────────────────


class RichProgressReporter:
    """Advances a Rich progress bar once per completed item."""

    def __init__(self, progress: Progress, task_id: int):
        self._progress = progress
        self._task_id = task_id
        self._lock = threading.Lock()
        self.failed = 0

    def on_item_completed(self, index: int, slot: ResultSlot) -> None:
        with self._lock:
            if not slot.ok:
                self.failed += 1
            self._progress.update(
                self._task_id, advance=1, description=f"items ([red]{self.failed} failed[/red])"
            )


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("run")
def run_command(
    target: str = typer.Argument(..., help="Task function as MODULE:FUNCTION."),
    items: list[str] = typer.Argument(None, help="Items (JSON literals; other text is a string)."),
    items_file: Path | None = typer.Option(
        None, "--items-file", "-f", exists=True, dir_okay=False, help="JSON array or JSON-lines file."
    ),
    backend: Backend | None = typer.Option(None, "--backend", "-b", help="fork, isolated or sequential."),
    workers: int | None = typer.Option(None, "--workers", "-w", min=1, help="Worker count."),
    timeout: float | None = typer.Option(None, "--timeout", "-t", help="Per-item timeout in seconds."),
    retries: int | None = typer.Option(None, "--retries", "-r", min=0, help="Retries per item."),
    retry_delay: float | None = typer.Option(None, "--retry-delay", min=0.0),
    retry_backoff: float | None = typer.Option(
        None, "--retry-backoff", min=1.0, help="Multiply the retry delay by this after each retry."
    ),
    retry_jitter: bool | None = typer.Option(None, "--retry-jitter/--no-retry-jitter"),
    cancel_policy: CancelPolicy | None = typer.Option(None, "--cancel-policy"),
    export: list[str] = typer.Option(
        None, "--export", "-e", help="NAME=JSON binding for the isolated backend (repeatable)."
    ),
    fallback: bool = typer.Option(
        False, "--fallback", help="Run sequentially when the fork backend is unavailable."
    ),
    show_progress: bool = typer.Option(False, "--progress", "-p", help="Show a progress bar."),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run TARGET over every item and print the ordered outcomes."""
    fn = load_target(target)
    values = read_items(items or [], items_file)

    try:
        config = PoolConfig.from_settings(
            backend=backend,
            worker_count=workers,
            per_item_timeout=timeout,
            retry_count=retries,
            retry_delay=retry_delay,
            retry_backoff=retry_backoff,
            retry_jitter=retry_jitter,
            cancel_policy=cancel_policy,
            exported_bindings=parse_exports(export or []),
        )
        if fallback:
            config = fallback_config(config)

        if show_progress and values:
            with Progress(
                TextColumn("{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=err_console,
                transient=json_out,
            ) as progress:
                task_id = progress.add_task("items", total=len(values))
                reporter = RichProgressReporter(progress, task_id)
                result = ParallelMap(config.replace(on_progress=reporter)).run(values, fn)
        else:
            result = ParallelMap(config).run(values, fn)
    except FanmapError as exc:
        err_console.print(f"[bold red]Error[/bold red] ({exc.category.value}): {exc.message}")
        raise typer.Exit(code=2) from exc

    output_run_result(result, as_json=json_out)
    if not result.ok:
        raise typer.Exit(code=1)


@app.command("settings")
def settings_command(json_out: bool = typer.Option(False, "--json")) -> None:
    """Show resolved settings and platform capabilities."""
    import json

    settings = get_settings()
    data = settings.model_dump(mode="json")
    data["available_parallelism"] = available_parallelism()
    data["fork_supported"] = fork_supported()
    data["resolved_worker_count"] = settings.resolved_worker_count()

    if json_out:
        console.print_json(json.dumps(data, default=str))
        return
    print_dict(data, title="fanmap settings")
