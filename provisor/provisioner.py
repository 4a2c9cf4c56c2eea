from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .data import Data
from .envvalidate import EnvValidator, run_validators, validators_for
from .environment import EnvironmentAssembler
from .errors import ProvisionFailed
from .hook import Hook
from .runner import Runner
from .spec import ProvisionSpec, load_spec
from .steps import build_steps

logger = logging.getLogger(__name__)


class Provisioner:
    """Run a ProvisionSpec: execute its steps in order, assemble the declared
    environment, persist the run and smoke-check the result.

    Config options:
    - fail_fast: bool (default True)
    - dry_run: bool (default False)
    - show: bool (default False)
    - inherit_environment: bool (default True) – start from the host environment
    - checks: bool (default True) – run post-provision checks after a successful run
    """

    def __init__(
        self,
        spec: ProvisionSpec,
        data: Optional[Data] = None,
        hook: Optional[Hook] = None,
        environment: Optional[EnvironmentAssembler] = None,
        config: Optional[Dict[str, Any]] = None,
        validators: Optional[List[EnvValidator]] = None,
    ) -> None:
        self.spec = spec
        self.data = data
        self.hook = hook
        self.config: Dict[str, Any] = {
            "fail_fast": True,
            "dry_run": False,
            "show": False,
            "inherit_environment": True,
            "checks": True,
        }
        self.config.update(config or {})
        self._initial_environment = environment
        self.environment = environment
        self.validators = validators if validators is not None else validators_for(spec.checks)

    @classmethod
    def from_path(cls, path: Path | str, strict: bool = True, **kwargs: Any) -> "Provisioner":
        return cls(load_spec(path, strict=strict), **kwargs)

    def _new_environment(self) -> EnvironmentAssembler:
        return EnvironmentAssembler(inherit=bool(self.config.get("inherit_environment", True)))

    def _safe_hook(self, method: str, *args: Any) -> None:
        if not self.hook:
            return
        try:
            getattr(self.hook, method)(*args, context=None)
        except Exception:  # noqa: BLE001
            logger.debug("hook %s failed", method, exc_info=True)

    def plan(self) -> Dict[str, Dict[str, Any]]:
        """Dry-run every step against a fresh environment without recording anything."""
        runner = Runner(
            build_steps(self.spec),
            environment=self._new_environment(),
            config={"fail_fast": False, "dry_run": True},
        )
        return runner.execute()

    def assemble_environment(self) -> EnvironmentAssembler:
        """Apply only the environment effects of the steps; no command runs."""
        env = self._new_environment()
        Runner(build_steps(self.spec), environment=env, config={"fail_fast": False, "dry_run": True}).execute()
        return env

    def check(self, environment: Optional[EnvironmentAssembler] = None) -> Dict[str, Any]:
        env = environment if environment is not None else self.environment
        if env is None:
            env = self.assemble_environment()
        return run_validators(self.validators, env.process_env())

    def provision(self, raise_on_error: bool = False) -> Dict[str, Any]:
        provision_id = uuid.uuid4().hex
        dry_run = bool(self.config.get("dry_run", False))
        self.environment = self._initial_environment if self._initial_environment is not None else self._new_environment()

        if self.data is not None:
            self.data.insert(
                "provisions",
                {
                    "provision_id": provision_id,
                    "name": self.spec.name,
                    "base_image": self.spec.base_image,
                    "source": self.spec.source,
                    "status": "running",
                    "dry_run": int(dry_run),
                    "spec_json": {
                        "interpreter": self.spec.interpreter,
                        "steps": [s.to_dict() for s in self.spec.steps],
                    },
                },
            )

        logger.info("provisioning %s (%d steps)%s", self.spec.name, len(self.spec.steps), " [dry run]" if dry_run else "")
        self._safe_hook("on_provision_start", self)
        runner = Runner(
            build_steps(self.spec, data=self.data),
            environment=self.environment,
            data=self.data,
            hook=self.hook,
            config={k: self.config[k] for k in ("fail_fast", "dry_run", "show")},
            provision_id=provision_id,
        )
        try:
            steps = runner.execute()
        except Exception as e:
            self._safe_hook("on_error", "provision", e)
            if self.data is not None:
                self.data.update("provisions", {"status": "error", "end_timestamp": _now()}, "provision_id = ?", (provision_id,))
            raise

        failed = [sid for sid, res in steps.items() if res.get("status") == "error" and not res.get("best_effort")]
        status = "error" if failed else "success"
        result: Dict[str, Any] = {
            "provision_id": provision_id,
            "status": status,
            "spec": self.spec.name,
            "base_image": self.spec.base_image,
            "dry_run": dry_run,
            "steps": steps,
            "environment": self.environment.snapshot(),
            "failed_step": runner.failed_step or (failed[0] if failed else None),
        }

        if status == "success" and not dry_run and self.config.get("checks", True) and self.validators:
            result["checks"] = run_validators(self.validators, self.environment.process_env())

        if self.data is not None:
            self.data.update(
                "provisions",
                {"status": status, "failed_step": result["failed_step"], "end_timestamp": _now()},
                "provision_id = ?",
                (provision_id,),
            )
            self.data.insert("environments", {"provision_id": provision_id, "environment_json": result["environment"]})

        self._safe_hook("on_provision_end", self, result)
        if status == "error" and raise_on_error:
            raise ProvisionFailed(result)
        return result


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
