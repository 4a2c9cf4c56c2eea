"""
provisor: a small container-image provisioning core.

This package provides:
- Spec loading: declarative provisioning steps from YAML or a Dockerfile subset.
- Step execution: ordered steps (env, run, packages, locale, cleanup, shell)
  with captured output, stopping on the first failure unless a step is
  best-effort.
- Environment assembly: declared variables merged into a final process
  environment snapshot.
- Provisioner: runs a spec end to end, records it in SQLite and smoke-checks
  the result.
"""

from .data import Data, SqliteData
from .environment import EnvironmentAssembler
from .envvalidate import EnvIssue, EnvValidator, EnvVarValidator, ShellValidator, ToolValidator
from .errors import ProvisionFailed, ProvisorError, SpecError
from .hook import ConsoleHook, Hook, LoggingHook
from .dockerfile import parse_dockerfile
from .packages import MANAGERS, CleanupStep, PackageInstallStep
from .provisioner import Provisioner
from .runner import Runner
from .spec import CheckSpec, ProvisionSpec, StepSpec, load_spec, parse_spec
from .step import CommandStep, EnvStep, LocaleStep, ShellStep, Step
from .steps import STEP_TYPES, build_steps

__version__ = "0.1.0"

__all__ = [
    "Data",
    "SqliteData",
    "EnvironmentAssembler",
    # Spec loading
    "ProvisionSpec",
    "StepSpec",
    "CheckSpec",
    "load_spec",
    "parse_spec",
    "parse_dockerfile",
    # Steps
    "Step",
    "CommandStep",
    "EnvStep",
    "LocaleStep",
    "ShellStep",
    "PackageInstallStep",
    "CleanupStep",
    "MANAGERS",
    "STEP_TYPES",
    "build_steps",
    # Execution
    "Runner",
    "Provisioner",
    # Hooks
    "Hook",
    "LoggingHook",
    "ConsoleHook",
    # Checks
    "EnvIssue",
    "EnvValidator",
    "EnvVarValidator",
    "ToolValidator",
    "ShellValidator",
    # Errors
    "ProvisorError",
    "SpecError",
    "ProvisionFailed",
]
