from __future__ import annotations

import os
import re
import shutil
import subprocess
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Mapping, Optional

from .spec import CheckSpec


@dataclass
class EnvIssue:
    kind: str         # 'env_var_missing' | 'tool_missing' | 'tool_version' | 'shell_missing' | 'shell_invalid'
    name: str         # variable, tool or shell name
    message: str
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class EnvValidator:
    """Base class for validators that check an assembled environment.

    Validators collect issues without raising.
    """

    def run(self, env: Mapping[str, str]) -> List[EnvIssue]:
        raise NotImplementedError


class EnvVarValidator(EnvValidator):
    """Validate required environment variables are present and non-empty."""

    def __init__(self, required: List[str]) -> None:
        self.required = list(required)

    def run(self, env: Mapping[str, str]) -> List[EnvIssue]:
        issues: List[EnvIssue] = []
        for var in self.required:
            val = env.get(var)
            if val is None or val.strip() == "":
                issues.append(EnvIssue(kind="env_var_missing", name=var, message=f"Environment variable {var} is required"))
        return issues


class ToolValidator(EnvValidator):
    """Validate required CLI tools exist on the environment's PATH and
    optionally meet a minimum version.

    Each item in tools should be a dict with:
      - name: str (executable name)
      - min_version: str (optional, e.g. '1.0.0')
      - version_args: List[str] (optional override, default: ['--version'])
      - version_regex: str (optional regex to extract version, default: first x.y.z-like token)
    """

    def __init__(self, tools: List[Dict[str, Any]]) -> None:
        self.tools = tools

    def _parse_version(self, text: str, pattern: Optional[str]) -> Optional[str]:
        if pattern:
            m = re.search(pattern, text)
            return m.group(1) if m else None
        m = re.search(r"\b(\d+\.\d+(?:\.\d+)*)\b", text)
        return m.group(1) if m else None

    def _version_tuple(self, s: str) -> List[int]:
        return [int(p) for p in re.split(r"[._-]", s) if p.isdigit()]

    def run(self, env: Mapping[str, str]) -> List[EnvIssue]:
        issues: List[EnvIssue] = []
        path = env.get("PATH", os.defpath)
        for t in self.tools:
            name = t.get("name")
            if not name:
                continue
            exe = shutil.which(name, path=path)
            if not exe:
                issues.append(EnvIssue(kind="tool_missing", name=name, message=f"Required tool '{name}' not found on PATH"))
                continue
            minv = t.get("min_version")
            if not minv:
                continue
            args = t.get("version_args") or ["--version"]
            try:
                cp = subprocess.run([exe] + list(args), capture_output=True, text=True, check=False, env=dict(env), timeout=30)
            except (OSError, subprocess.SubprocessError) as e:
                issues.append(EnvIssue(kind="tool_version", name=name, message=f"Failed to check version for '{name}': {e}"))
                continue
            out = (cp.stdout or "") + "\n" + (cp.stderr or "")
            found = self._parse_version(out, t.get("version_regex"))
            if not found or self._version_tuple(found) < self._version_tuple(str(minv)):
                issues.append(
                    EnvIssue(
                        kind="tool_version",
                        name=name,
                        message=f"Tool '{name}' version {found or 'unknown'} is below required {minv}",
                        details={"found": found, "required": str(minv)},
                    )
                )
        return issues


class ShellValidator(EnvValidator):
    """Validate that SHELL is set and points at an executable file."""

    def run(self, env: Mapping[str, str]) -> List[EnvIssue]:
        shell = env.get("SHELL")
        if not shell:
            return [EnvIssue(kind="shell_missing", name="SHELL", message="Default shell (SHELL) is not set")]
        if not (os.path.isfile(shell) and os.access(shell, os.X_OK)):
            return [EnvIssue(kind="shell_invalid", name=shell, message=f"Default shell {shell} is not an executable file")]
        return []


def validators_for(checks: CheckSpec) -> List[EnvValidator]:
    validators: List[EnvValidator] = []
    if checks.env:
        validators.append(EnvVarValidator(required=checks.env))
    if checks.tools:
        validators.append(ToolValidator(tools=checks.tools))
    if checks.shell:
        validators.append(ShellValidator())
    return validators


def run_validators(validators: List[EnvValidator], env: Mapping[str, str]) -> Dict[str, Any]:
    """Run all validators and return a report; a validator that raises is reported as an issue."""
    issues: List[Dict[str, Any]] = []
    for v in validators:
        try:
            issues.extend(i.to_dict() for i in v.run(env))
        except Exception as e:  # noqa: BLE001
            issues.append({"kind": "validator_error", "name": type(v).__name__, "message": str(e), "details": None})
    return {"status": "ok" if not issues else "failed", "issues": issues}
