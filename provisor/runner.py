from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .data import Data
from .environment import EnvironmentAssembler
from .hook import Hook
from .step import Step

logger = logging.getLogger(__name__)


class Runner:
    """Sequential executor for a list of steps.

    Config options:
    - fail_fast: bool (default True) – stop on the first error of a step
      that is not best-effort; later steps are reported as ``not_run``
    - dry_run: bool (default False) – report commands instead of running them
    - show: bool (default False) – echo command output while running
    """

    def __init__(
        self,
        steps: List[Step],
        environment: Optional[EnvironmentAssembler] = None,
        data: Optional[Data] = None,
        hook: Optional[Hook] = None,
        config: Optional[Dict[str, Any]] = None,
        provision_id: Optional[str] = None,
    ) -> None:
        self.steps = steps
        self.environment = environment if environment is not None else EnvironmentAssembler()
        self.data = data
        self.hook = hook
        self.config = {"fail_fast": True, "dry_run": False, "show": False}
        self.config.update(config or {})
        self.provision_id = provision_id
        self.failed_step: Optional[str] = None

    def _notify(self, method: str, *args: Any) -> None:
        hooks = [self.hook] if self.hook else []
        step = args[0] if args else None
        step_hook = getattr(step, "hook", None)
        if step_hook is not None and step_hook is not self.hook:
            hooks.append(step_hook)
        for hook in hooks:
            try:
                getattr(hook, method)(*args, context=None)
            except Exception:  # noqa: BLE001
                logger.debug("hook %s.%s failed", type(hook).__name__, method, exc_info=True)

    def _record(self, position: int, step: Step, result: Dict[str, Any]) -> None:
        data = step.data or self.data
        if data is None:
            return
        data.insert(
            "steps_output",
            {
                "provision_id": self.provision_id,
                "step_id": step.id,
                "kind": step.kind,
                "position": position,
                "output_json": result,
                "stdout": result.get("stdout"),
                "stderr": result.get("stderr"),
                "status": result.get("status"),
                "duration": result.get("duration"),
            },
        )

    def execute(self) -> Dict[str, Dict[str, Any]]:
        results: Dict[str, Dict[str, Any]] = {}
        fail_fast = bool(self.config.get("fail_fast", True))
        self.failed_step = None

        for position, step in enumerate(self.steps):
            if self.failed_step is not None:
                results[step.id] = {"status": "not_run", "reason": f"step '{self.failed_step}' failed"}
                continue

            if step.environment is None:
                step.environment = self.environment
            step.show = bool(self.config.get("show", False))
            step.dry_run = bool(self.config.get("dry_run", False))

            self._notify("on_step_start", step)
            try:
                if not step.validate():
                    res: Dict[str, Any] = {"status": "skipped", "reason": "validate() returned False"}
                else:
                    res = step.run()
            except Exception as e:  # noqa: BLE001
                logger.exception("step %s raised", step.id)
                res = {"status": "error", "error": str(e)}
                self._notify("on_error", "step", e)

            if res.get("status") == "error":
                if step.best_effort:
                    res["best_effort"] = True
                    logger.warning("best-effort step %s failed: %s", step.id, res.get("error"))
                elif fail_fast:
                    self.failed_step = step.id
                    logger.error("step %s failed: %s", step.id, res.get("error"))

            results[step.id] = res
            self._record(position, step, res)
            self._notify("on_step_end", step, res)
        return results
