"""Exceptions raised by provisor."""
from __future__ import annotations

from typing import Any, Dict, Optional


class ProvisorError(Exception):
    """Base class for provisor errors."""


class SpecError(ProvisorError):
    """Raised when a provisioning spec cannot be loaded or is invalid."""

    def __init__(self, message: str, source: Optional[str] = None, line: Optional[int] = None):
        self.message = message
        self.source = source
        self.line = line
        location = ""
        if source:
            location = f"{source}:{line}: " if line else f"{source}: "
        elif line:
            location = f"line {line}: "
        super().__init__(f"{location}{message}")


class ProvisionFailed(ProvisorError):
    """Raised by Provisioner.provision(raise_on_error=True) when a step fails."""

    def __init__(self, result: Dict[str, Any]):
        self.result = result
        self.failed_step = result.get("failed_step")
        super().__init__(f"Provisioning failed at step '{self.failed_step}'")
