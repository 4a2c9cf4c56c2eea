"""Provisioning spec loader.

A provisioning spec is an ordered list of declarative steps (environment
assignments, commands, package installs, locale setup, cache cleanup and the
default shell) plus optional post-run checks. Specs are written in YAML or as
a Dockerfile subset (see :mod:`provisor.dockerfile`).
"""
from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import SpecError
from .packages import MANAGERS
from .step import DEFAULT_INTERPRETER

logger = logging.getLogger(__name__)

STEP_KINDS = ("env", "run", "packages", "locale", "cleanup", "shell")

# Keys accepted on every step in addition to the kind key
_COMMON_KEYS = {"id", "best_effort", "timeout", "retries", "cwd", "environment", "interpreter"}
_KIND_KEYS = {
    "env": set(),
    "run": set(),
    "packages": {"manager", "update", "no_install_recommends", "args"},
    "locale": {"set_env"},
    "cleanup": set(),
    "shell": set(),
}


@dataclass
class StepSpec:
    """One declared provisioning step."""
    id: str
    kind: str
    config: Dict[str, Any] = field(default_factory=dict)
    best_effort: bool = False
    line: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "kind": self.kind, "config": dict(self.config), "best_effort": self.best_effort}


@dataclass
class CheckSpec:
    """Post-provision smoke checks."""
    env: List[str] = field(default_factory=list)
    tools: List[Dict[str, Any]] = field(default_factory=list)
    shell: bool = False

    def is_empty(self) -> bool:
        return not (self.env or self.tools or self.shell)


@dataclass
class ProvisionSpec:
    name: str
    steps: List[StepSpec] = field(default_factory=list)
    base_image: str = ""
    interpreter: List[str] = field(default_factory=lambda: list(DEFAULT_INTERPRETER))
    checks: CheckSpec = field(default_factory=CheckSpec)
    source: Optional[str] = None

    def step_ids(self) -> List[str]:
        return [s.id for s in self.steps]

    def get(self, step_id: str) -> Optional[StepSpec]:
        for s in self.steps:
            if s.id == step_id:
                return s
        return None


def _as_interpreter(value: Any, source: Optional[str], line: Optional[int] = None) -> List[str]:
    if isinstance(value, str):
        parts = shlex.split(value)
    elif isinstance(value, list) and all(isinstance(p, str) for p in value):
        parts = list(value)
    else:
        raise SpecError("interpreter must be a string or a list of strings", source, line)
    if not parts:
        raise SpecError("interpreter must not be empty", source, line)
    return parts


def _as_str_list(value: Any, what: str, source: Optional[str], line: Optional[int] = None) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return value.split()
    if isinstance(value, list) and all(isinstance(v, (str, int, float)) for v in value):
        return [str(v) for v in value]
    raise SpecError(f"{what} must be a string or a list of strings", source, line)


def _kind_config(kind: str, value: Any, raw: Dict[str, Any], source: Optional[str], line: Optional[int]) -> Dict[str, Any]:
    if kind == "env":
        if not isinstance(value, dict) or not value:
            raise SpecError("env step requires a non-empty mapping of NAME: value", source, line)
        values: Dict[str, Any] = {}
        for k, v in value.items():
            if isinstance(v, (dict, list)):
                raise SpecError(f"env value for {k} must be a scalar", source, line)
            values[str(k)] = "" if v is None else (str(v).lower() if isinstance(v, bool) else str(v))
        return {"values": values}

    if kind == "run":
        if isinstance(value, str):
            if not value.strip():
                raise SpecError("run step requires a non-empty command", source, line)
            return {"cmd": value}
        if isinstance(value, list) and value and all(isinstance(p, (str, int, float)) for p in value):
            return {"cmd": [str(p) for p in value]}
        raise SpecError("run step requires a non-empty command string or argv list", source, line)

    if kind == "packages":
        manager = raw.get("manager")
        if not isinstance(manager, str) or manager not in MANAGERS:
            known = ", ".join(sorted(MANAGERS))
            raise SpecError(f"packages step requires manager (one of: {known}), got {manager!r}", source, line)
        packages = _as_str_list(value, "packages", source, line)
        if not packages and not MANAGERS[manager].allows_empty:
            raise SpecError(f"packages step for {manager} requires at least one package", source, line)
        cfg: Dict[str, Any] = {"manager": manager, "packages": packages}
        for key in ("update", "no_install_recommends"):
            if key in raw:
                cfg[key] = bool(raw[key])
        if "args" in raw:
            cfg["args"] = _as_str_list(raw["args"], "args", source, line)
        return cfg

    if kind == "locale":
        if not isinstance(value, str) or not value.strip():
            raise SpecError("locale step requires a locale name such as en_US.UTF-8", source, line)
        return {"locale": value.strip(), "set_env": bool(raw.get("set_env", True))}

    if kind == "cleanup":
        if not isinstance(value, str) or value not in MANAGERS or not MANAGERS[value].cleanup:
            known = ", ".join(sorted(k for k, m in MANAGERS.items() if m.cleanup))
            raise SpecError(f"cleanup step requires a manager with cleanup support (one of: {known}), got {value!r}", source, line)
        return {"manager": value}

    if kind == "shell":
        if not isinstance(value, str) or not value.strip():
            raise SpecError("shell step requires a path such as /bin/bash", source, line)
        return {"path": value.strip()}

    raise SpecError(f"Unknown step kind: {kind}", source, line)


def parse_step(raw: Any, index: int, source: Optional[str] = None, line: Optional[int] = None) -> StepSpec:
    """Validate a single raw step mapping and build a StepSpec."""
    if not isinstance(raw, dict):
        raise SpecError(f"step {index} must be a mapping", source, line)
    kinds = [k for k in STEP_KINDS if k in raw]
    if not kinds:
        raise SpecError(f"step {index} has no kind (expected one of: {', '.join(STEP_KINDS)})", source, line)
    if len(kinds) > 1:
        raise SpecError(f"step {index} declares more than one kind: {', '.join(kinds)}", source, line)
    kind = kinds[0]

    unknown = set(raw) - {kind} - _COMMON_KEYS - _KIND_KEYS[kind]
    if unknown:
        raise SpecError(f"step {index} has unknown keys: {', '.join(sorted(map(str, unknown)))}", source, line)

    config = _kind_config(kind, raw[kind], raw, source, line)

    if "timeout" in raw and raw["timeout"] is not None:
        try:
            config["timeout"] = float(raw["timeout"])
        except (TypeError, ValueError):
            raise SpecError(f"step {index} timeout must be a number", source, line) from None
    if "retries" in raw:
        try:
            config["retries"] = int(raw["retries"])
        except (TypeError, ValueError):
            raise SpecError(f"step {index} retries must be an integer", source, line) from None
    if raw.get("cwd"):
        config["cwd"] = str(raw["cwd"])
    if raw.get("environment"):
        if not isinstance(raw["environment"], dict):
            raise SpecError(f"step {index} environment must be a mapping", source, line)
        config["environment"] = {str(k): "" if v is None else str(v) for k, v in raw["environment"].items()}
    if raw.get("interpreter"):
        config["interpreter"] = _as_interpreter(raw["interpreter"], source, line)

    step_id = raw.get("id")
    if step_id is None or str(step_id).strip() == "":
        step_id = f"{index}-{kind}"
    return StepSpec(id=str(step_id), kind=kind, config=config, best_effort=bool(raw.get("best_effort", False)), line=line)


def parse_checks(raw: Any, source: Optional[str] = None) -> CheckSpec:
    if raw is None:
        return CheckSpec()
    if not isinstance(raw, dict):
        raise SpecError("checks must be a mapping", source)
    raw_tools = raw.get("tools") or []
    if isinstance(raw_tools, str):
        raw_tools = raw_tools.split()
    if not isinstance(raw_tools, list):
        raise SpecError("checks.tools must be a list", source)
    tools: List[Dict[str, Any]] = []
    for t in raw_tools:
        if isinstance(t, str):
            tools.append({"name": t})
        elif isinstance(t, dict) and t.get("name"):
            tools.append(dict(t))
        else:
            raise SpecError("checks.tools entries must be a name or a mapping with 'name'", source)
    return CheckSpec(
        env=_as_str_list(raw.get("env"), "checks.env", source),
        tools=tools,
        shell=bool(raw.get("shell", False)),
    )


def check_unique_ids(steps: List[StepSpec], source: Optional[str] = None) -> None:
    seen: Dict[str, StepSpec] = {}
    for s in steps:
        if s.id in seen:
            raise SpecError(f"duplicate step id '{s.id}'", source, s.line)
        seen[s.id] = s


def parse_spec(data: Any, source: Optional[str] = None) -> ProvisionSpec:
    """Build a ProvisionSpec from an already-decoded mapping."""
    if not isinstance(data, dict):
        raise SpecError("spec must be a mapping with a 'steps' list", source)
    raw_steps = data.get("steps")
    if not isinstance(raw_steps, list):
        raise SpecError("spec requires a 'steps' list", source)

    steps = [parse_step(raw, i, source) for i, raw in enumerate(raw_steps, start=1)]
    check_unique_ids(steps, source)

    default_name = Path(source).stem if source else "provision"
    spec = ProvisionSpec(
        name=str(data.get("name") or default_name),
        steps=steps,
        base_image=str(data.get("base_image") or ""),
        interpreter=_as_interpreter(data["interpreter"], source) if data.get("interpreter") else list(DEFAULT_INTERPRETER),
        checks=parse_checks(data.get("checks"), source),
        source=source,
    )
    logger.debug("Parsed spec %s with %d steps", spec.name, len(spec.steps))
    return spec


def is_dockerfile(path: Path) -> bool:
    name = path.name
    return name == "Dockerfile" or name.endswith(".Dockerfile") or name.startswith("Dockerfile.") or name.lower().endswith(".dockerfile")


def load_spec(path: Path | str, strict: bool = True) -> ProvisionSpec:
    """Load a provisioning spec from a YAML file or a Dockerfile."""
    p = Path(path)
    if not p.exists():
        raise SpecError("spec file not found", str(p))
    try:
        text = p.read_text()
    except OSError as e:
        raise SpecError(f"cannot read spec: {e}", str(p)) from e

    if is_dockerfile(p):
        from .dockerfile import parse_dockerfile

        return parse_dockerfile(text, source=str(p), strict=strict)

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        raise SpecError(f"invalid YAML: {e}", str(p), mark.line + 1 if mark else None) from e
    return parse_spec(data, source=str(p))
