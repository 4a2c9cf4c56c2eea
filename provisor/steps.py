from __future__ import annotations

# Registry of step kinds and the builder that turns a ProvisionSpec
# into executable Step objects.

from typing import TYPE_CHECKING, Dict, List, Optional, Type

from .packages import CleanupStep, PackageInstallStep
from .spec import ProvisionSpec, StepSpec
from .step import CommandStep, EnvStep, LocaleStep, ShellStep, Step

if TYPE_CHECKING:
    from .data import Data
    from .hook import Hook


STEP_TYPES: Dict[str, Type[Step]] = {
    "env": EnvStep,
    "run": CommandStep,
    "packages": PackageInstallStep,
    "locale": LocaleStep,
    "cleanup": CleanupStep,
    "shell": ShellStep,
}


def build_step(step_spec: StepSpec, interpreter: Optional[List[str]] = None, data: Optional["Data"] = None, hook: Optional["Hook"] = None) -> Step:
    cls = STEP_TYPES[step_spec.kind]
    config = dict(step_spec.config)
    if interpreter and "interpreter" not in config:
        config["interpreter"] = list(interpreter)
    return cls(step_spec.id, config, data=data, hook=hook, best_effort=step_spec.best_effort)


def build_steps(spec: ProvisionSpec, data: Optional["Data"] = None, hook: Optional["Hook"] = None) -> List[Step]:
    return [build_step(s, spec.interpreter, data=data, hook=hook) for s in spec.steps]


__all__ = [
    "STEP_TYPES",
    "build_step",
    "build_steps",
    "CommandStep",
    "EnvStep",
    "LocaleStep",
    "ShellStep",
    "PackageInstallStep",
    "CleanupStep",
]
