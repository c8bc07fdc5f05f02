"""Output formatting utilities for the CLI."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import questionary
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.theme import Theme

from imgops.cli.common.tui_style import (
    QUESTIONARY_STYLE_CONFIRM,
    QUESTIONARY_STYLE_SELECT,
)
from imgops.core.runlog import SUCCESS

_THEME = Theme(
    {
        "ok": "bold green",
        "warn": "yellow",
        "err": "bold red",
        "title": "bold cyan",
        "meta": "dim",
    }
)

console = Console(theme=_THEME)


@dataclass(frozen=True)
class Out:
    """Output formatter for CLI messages and tables."""

    def _q_try(self, fn, *args, **kwargs):
        """Call questionary prompts and drop unsupported kwargs on older versions."""
        try:
            return fn(*args, **kwargs)
        except TypeError:
            for k in ("pointer", "auto_enter", "instruction"):
                kwargs.pop(k, None)
            return fn(*args, **kwargs)

    def _q(self, message: str) -> str:
        """Prefix questionary prompts so they stand out from log lines."""
        return f"[imgops] {message}"

    def info(self, msg: str) -> None:
        """Print an info message."""
        console.print(f"[title]›[/] {msg}")

    @contextmanager
    def status(self, msg: str):
        """Show a transient status spinner while work is in progress."""
        with console.status(msg, spinner="dots"):
            yield

    def success(self, msg: str) -> None:
        """Print a success message."""
        console.print(f"[ok]✓[/] {msg}")

    def warn(self, msg: str) -> None:
        """Print a warning message."""
        console.print(f"[warn]⚠[/] {msg}")

    def error(self, msg: str) -> None:
        """Print an error message."""
        console.print(f"[err]✗[/] {msg}")

    def header(self, title: str) -> None:
        """Print a header message."""
        console.print(f"[title]{title}[/]")

    def kv(self, items: Mapping[str, Any]) -> None:
        """Print key-value pairs."""
        for k, v in items.items():
            console.print(f"[meta]{k}[/]: {escape(str(v))}")

    def select_one(self, message: str, choices: list[Any]) -> Any | None:
        """
        Prompt the user to select a single item from a list.

        Choices may be plain strings or questionary.Choice objects.

        Returns:
            The selected value, or None if cancelled.
        """
        if not choices:
            return None

        prompt = self._q_try(
            questionary.select,
            self._q(message),
            choices=choices,
            style=QUESTIONARY_STYLE_SELECT,
            qmark="✦",
            instruction="Use ↑/↓ then Enter",
            pointer="❯",
        )
        return prompt.ask()

    def confirm(self, message: str, *, default: bool = False) -> bool:
        """
        Ask the user for confirmation using a standardized questionary prompt.

        Args:
            message: Confirmation question shown to the user.
            default: Default answer if the user just presses enter.

        Returns:
            True if the user confirms, False otherwise.
        """
        console.print("[meta]Use y/n then Enter[/]")

        prompt = self._q_try(
            questionary.confirm,
            self._q(message),
            default=default,
            style=QUESTIONARY_STYLE_CONFIRM,
            qmark="✦",
            auto_enter=False,
        )
        return bool(prompt.ask())

    def names_table(self, names: Any, title: str = "Resource names") -> None:
        """
        Expects a NameSet (see imgops.core.naming).
        """
        durable = set(names.durable())
        t = Table(title=title, show_lines=False)
        t.add_column("Resource", style="meta")
        t.add_column("Name", style="ok", no_wrap=True)
        t.add_column("Lifetime", style="meta")

        rows = [
            ("Resource group", names.resource_group),
            ("Network", names.network_name),
            ("Security group", names.nsg_name),
            ("VM", names.vm_name),
            ("Public IP", names.public_ip_name),
            ("NIC", names.nic_name),
            ("OS disk", names.os_disk_name),
            ("Image", names.image_name),
        ]
        for label, value in rows:
            lifetime = "durable" if value in durable else "per build"
            if label == "Image":
                lifetime = "output"
            t.add_row(label, value, lifetime)

        console.print(t)

    def stages_table(self, outcomes: Iterable[Any], title: str = "Stages") -> None:
        """
        Expects StageOutcome objects (.stage, .ok, .error).
        """
        t = Table(title=title, show_lines=False)
        t.add_column("Stage", style="title")
        t.add_column("Result")
        t.add_column("Detail", style="meta")

        for o in outcomes:
            if o.ok:
                t.add_row(o.stage.value, "[ok]OK[/]", "")
            else:
                t.add_row(o.stage.value, "[err]FAIL[/]", escape(o.error.message))

        console.print(t)

    def cleanup_table(self, results: Iterable[Any], title: str = "Cleanup") -> None:
        """
        Expects CleanupResult objects (.kind, .name, .deleted, .error).
        """
        t = Table(title=title, show_lines=False)
        t.add_column("Kind", style="meta")
        t.add_column("Name", style="ok")
        t.add_column("Deleted")
        t.add_column("Error", style="err")

        for r in results:
            deleted = "yes" if getattr(r, "deleted", False) else "no"
            err = escape(str(getattr(r, "error", "") or ""))
            t.add_row(str(r.kind), str(r.name), deleted, err)

        console.print(t)

    def images_table(self, images: Iterable[Any], title: str = "Images") -> None:
        """Render managed images (objects with .name and .id)."""
        t = Table(title=title, show_lines=False)
        t.add_column("Name", style="ok", no_wrap=True)
        t.add_column("Id", style="meta")

        for img in images:
            t.add_row(str(img.name), str(img.id))

        console.print(t)

    def resources_table(self, resources: Iterable[Any], title: str = "Resources") -> None:
        """Render ResourceRef objects (.name, .kind)."""
        t = Table(title=title, show_lines=False)
        t.add_column("Name", style="ok")
        t.add_column("Type", style="meta")

        for r in resources:
            t.add_row(str(r.name), str(r.kind))

        console.print(t)


out = Out()


class OutHandler(logging.Handler):
    """Mirror run-log records to the console through `out`."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = escape(record.getMessage())
            if record.levelno >= logging.ERROR:
                out.error(msg)
            elif record.levelno >= logging.WARNING:
                out.warn(msg)
            elif record.levelno == SUCCESS:
                out.success(msg)
            else:
                out.info(msg)
        except Exception:  # noqa: BLE001
            self.handleError(record)
