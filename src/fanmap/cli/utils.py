"""
CLI utility helpers - target loading, input parsing and output formatting.
"""

from __future__ import annotations

import importlib
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from fanmap.execution.collector import RunResult

console = Console()
err_console = Console(stderr=True)


# ── Input helpers ────────────────────────────────────────────────────────


def load_target(target: str) -> Callable[[Any], Any]:
    """Resolve ``package.module:function`` (or ``package.module.function``)."""
    if ":" in target:
        module_path, _, attr = target.partition(":")
    else:
        module_path, _, attr = target.rpartition(".")
    if not module_path or not attr:
        raise typer.BadParameter(f"expected MODULE:FUNCTION, got {target!r}")
    try:
        module = importlib.import_module(module_path)
    except ImportError as exc:
        raise typer.BadParameter(f"cannot import {module_path!r}: {exc}") from exc
    fn = module
    for part in attr.split("."):
        try:
            fn = getattr(fn, part)
        except AttributeError:
            raise typer.BadParameter(f"{module_path!r} has no attribute {attr!r}") from None
    if not callable(fn):
        raise typer.BadParameter(f"{target!r} is not callable")
    return fn  # type: ignore[return-value]


def parse_value(raw: str) -> Any:
    """Decode a JSON literal; anything that is not JSON stays a string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def parse_exports(pairs: list[str]) -> dict[str, Any]:
    """``["SCALE=3", "NAMES=[\\"a\\"]"]`` → ``{"SCALE": 3, "NAMES": ["a"]}``."""
    exports: dict[str, Any] = {}
    for pair in pairs:
        name, sep, raw = pair.partition("=")
        if not sep or not name:
            raise typer.BadParameter(f"expected NAME=VALUE, got {pair!r}")
        exports[name.strip()] = parse_value(raw)
    return exports


def read_items(values: list[str], items_file: Path | None) -> list[Any]:
    """Collect items from positional arguments and/or a file.

    The file holds either one JSON array or one JSON value per line.
    """
    items = [parse_value(v) for v in values]
    if items_file is not None:
        text = items_file.read_text(encoding="utf-8").strip()
        if text.startswith("["):
            loaded = json.loads(text)
            items.extend(loaded)
        else:
            items.extend(parse_value(line) for line in text.splitlines() if line.strip())
    return items


# ── Output helpers ───────────────────────────────────────────────────────


def _slot_row(slot: Any) -> dict[str, Any]:
    if not slot.completed:
        return {"index": slot.index, "status": "not run", "value": ""}
    if slot.ok:
        return {"index": slot.index, "status": "ok", "value": slot.value}
    return {
        "index": slot.index,
        "status": type(slot.error).__name__,
        "value": str(slot.error),
    }


def output_run_result(result: RunResult, *, as_json: bool = False) -> None:
    """Render a ``RunResult`` as a Rich table or JSON."""
    rows = [_slot_row(slot) for slot in result.slots]

    if as_json:
        payload = {"summary": result.to_dict(), "items": rows}
        console.print_json(json.dumps(payload, default=str))
        return

    table = Table(title=f"Run {result.run_id}", show_lines=False, pad_edge=False)
    table.add_column("index", justify="right")
    table.add_column("status")
    table.add_column("value", overflow="fold")
    for row in rows:
        style = "green" if row["status"] == "ok" else "red"
        table.add_row(str(row["index"]), f"[{style}]{row['status']}[/{style}]", str(row["value"]))
    console.print(table)

    summary = result.to_dict()
    console.print(
        f"\n[dim]{summary['succeeded']} succeeded, {summary['failed']} failed, "
        f"{len(summary['unfinished'])} unfinished[/dim]"
    )
    if result.aborted:
        err_console.print(f"[bold red]Run aborted[/bold red]: {result.abort_reason}")


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
