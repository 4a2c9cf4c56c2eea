from __future__ import annotations

import logging
from abc import ABC
from typing import Any, Dict, Optional

from rich.console import Console

logger = logging.getLogger(__name__)

_STATUS_STYLE = {
    "success": "green",
    "error": "red",
    "skipped": "yellow",
    "dry_run": "cyan",
    "not_run": "dim",
}


class Hook(ABC):
    """Base Hook with no-op defaults.

    Hooks observe provisioning and step execution. The runner treats them as
    best-effort: an exception raised by a hook is logged and never aborts the
    run.
    """

    def on_provision_start(self, provisioner: Any, context: Optional[Dict[str, Any]] = None) -> None:  # noqa: D401
        return None

    def on_provision_end(self, provisioner: Any, result: Dict[str, Any], context: Optional[Dict[str, Any]] = None) -> None:  # noqa: D401
        return None

    def on_step_start(self, step: Any, context: Optional[Dict[str, Any]] = None) -> None:  # noqa: D401
        return None

    def on_step_end(self, step: Any, result: Dict[str, Any], context: Optional[Dict[str, Any]] = None) -> None:  # noqa: D401
        return None

    def on_error(self, scope: str, error: Exception, context: Optional[Dict[str, Any]] = None) -> None:  # noqa: D401
        return None


class LoggingHook(Hook):
    """Emit lifecycle events through the logging module."""

    def __init__(self, level: int = logging.INFO, log: Optional[logging.Logger] = None) -> None:
        self.level = level
        self.log = log or logger

    def on_provision_start(self, provisioner: Any, context: Optional[Dict[str, Any]] = None) -> None:
        spec = getattr(provisioner, "spec", None)
        self.log.log(self.level, "provision_start: %s (%d steps)", getattr(spec, "name", "?"), len(getattr(spec, "steps", [])))

    def on_provision_end(self, provisioner: Any, result: Dict[str, Any], context: Optional[Dict[str, Any]] = None) -> None:
        self.log.log(self.level, "provision_end: %s", result.get("status"))

    def on_step_start(self, step: Any, context: Optional[Dict[str, Any]] = None) -> None:
        self.log.log(self.level, "step_start: %s", getattr(step, "id", "?"))

    def on_step_end(self, step: Any, result: Dict[str, Any], context: Optional[Dict[str, Any]] = None) -> None:
        self.log.log(self.level, "step_end: %s -> %s", getattr(step, "id", "?"), result.get("status"))

    def on_error(self, scope: str, error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
        self.log.error("error in %s: %s", scope, error)


class ConsoleHook(Hook):
    """Rich console progress output for interactive runs."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    def on_provision_start(self, provisioner: Any, context: Optional[Dict[str, Any]] = None) -> None:
        spec = getattr(provisioner, "spec", None)
        base = getattr(spec, "base_image", "")
        suffix = f" [dim](base: {base})[/dim]" if base else ""
        self.console.print(f"[bold]Provisioning {getattr(spec, 'name', '?')}[/bold]{suffix}")

    def on_step_start(self, step: Any, context: Optional[Dict[str, Any]] = None) -> None:
        self.console.print(f"[dim]→[/dim] {getattr(step, 'id', '?')}")

    def on_step_end(self, step: Any, result: Dict[str, Any], context: Optional[Dict[str, Any]] = None) -> None:
        status = result.get("status", "?")
        style = _STATUS_STYLE.get(status, "white")
        extra = ""
        if status == "error":
            extra = f" {result.get('error', '')}"
            if getattr(step, "best_effort", False):
                extra += " [yellow](best effort, continuing)[/yellow]"
        self.console.print(f"  [{style}]{status}[/{style}]{extra}")

    def on_provision_end(self, provisioner: Any, result: Dict[str, Any], context: Optional[Dict[str, Any]] = None) -> None:
        status = result.get("status", "?")
        style = _STATUS_STYLE.get(status, "white")
        self.console.print(f"[{style}]Provisioning {status}[/{style}]")

    def on_error(self, scope: str, error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
        self.console.print(f"[red]Error in {scope}:[/red] {error}")
