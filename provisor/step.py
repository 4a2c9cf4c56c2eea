from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Union

from .environment import EnvironmentAssembler

if TYPE_CHECKING:
    from .data import Data
    from .hook import Hook

logger = logging.getLogger(__name__)

Command = Union[str, List[str]]

DEFAULT_INTERPRETER = ["/bin/sh", "-c"]


class Step(ABC):
    """A single provisioning step.

    Steps return a JSON-serializable dict with at least a ``status`` key.
    The runner injects ``environment``, ``show`` and ``dry_run`` before
    calling :meth:`run`.
    """

    kind = "step"

    def __init__(
        self,
        id: str,
        config: Optional[Dict[str, Any]] = None,
        data: Optional["Data"] = None,
        hook: Optional["Hook"] = None,
        best_effort: bool = False,
    ) -> None:
        self.id = id
        self.config = config or {}
        self.data = data
        self.hook = hook
        self.best_effort = best_effort
        self.environment: Optional[EnvironmentAssembler] = None
        self.show = False
        self.dry_run = False

    @abstractmethod
    def run(self) -> Dict[str, Any]:
        """Execute the step and return structured output."""

    def validate(self) -> bool:
        """Optional pre-run validation hook."""
        return True

    def _env(self) -> EnvironmentAssembler:
        if self.environment is None:
            self.environment = EnvironmentAssembler()
        return self.environment

    def _command_step(self, cmd: Command, suffix: str) -> "CommandStep":
        """Build a CommandStep that inherits this step's execution settings."""
        cfg = self.config
        cs = CommandStep(
            id=f"{self.id}__{suffix}",
            config={
                "cmd": cmd,
                "cwd": cfg.get("cwd"),
                "environment": cfg.get("environment"),
                "interpreter": cfg.get("interpreter"),
                "timeout": cfg.get("timeout"),
                "retries": cfg.get("retries", 0),
            },
        )
        cs.environment = self._env()
        cs.show = self.show
        cs.dry_run = self.dry_run
        return cs

    def run_commands(self, cmds: Sequence[Command]) -> Dict[str, Any]:
        """Run commands in order, stopping at the first failure.

        The combined result reports every command attempted under ``cmd``
        and concatenates their output.
        """
        results: List[Dict[str, Any]] = []
        for i, cmd in enumerate(cmds):
            res = self._command_step(cmd, str(i)).run()
            results.append(res)
            if res.get("status") == "error":
                break
        if len(results) == 1:
            return results[0]
        last = results[-1] if results else {"status": "success"}
        combined: Dict[str, Any] = {
            "status": last.get("status", "success"),
            "cmd": [r.get("cmd") for r in results],
        }
        if any("stdout" in r for r in results):
            combined["stdout"] = "\n".join(r.get("stdout", "") for r in results if r.get("stdout"))
            combined["stderr"] = "\n".join(r.get("stderr", "") for r in results if r.get("stderr"))
            combined["returncode"] = last.get("returncode")
            combined["duration"] = sum(r.get("duration", 0.0) for r in results)
        if "error" in last:
            combined["error"] = last["error"]
        return combined


_READER_GRACE = 2.0


def _kill_group(proc: subprocess.Popen) -> None:
    """Kill the process and everything it spawned in its process group."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        proc.kill()


class CommandStep(Step):
    """Run a command and capture output.

    Config:
    - cmd: list[str] | str – Required. A string is passed to the interpreter.
    - interpreter: list[str] – Interpreter for string commands (default /bin/sh -c).
    - environment: dict[str, str] – Per-command overrides, not kept afterwards.
    - timeout: float – Optional timeout in seconds.
    - retries: int – retry count on failure (default 0).
    - cwd: str – optional working directory.
    """

    kind = "run"

    def argv(self) -> List[str]:
        cmd = self.config.get("cmd")
        if isinstance(cmd, str):
            interpreter = self.config.get("interpreter") or DEFAULT_INTERPRETER
            return list(interpreter) + [cmd]
        return list(cmd or [])

    def run(self) -> Dict[str, Any]:
        cmd = self.config.get("cmd")
        if not cmd or not (isinstance(cmd, str) or isinstance(cmd, list)):
            return {"status": "error", "error": "CommandStep requires config['cmd'] as non-empty list or string"}
        argv = self.argv()
        env_asm = self._env()
        cwd = self.config.get("cwd")
        if cwd:
            cwd = env_asm.expand(str(cwd))

        if self.dry_run:
            return {"status": "dry_run", "cmd": argv, "cwd": cwd}

        env = env_asm.process_env(self.config.get("environment"))
        timeout = self.config.get("timeout")
        retries = int(self.config.get("retries", 0))
        show = bool(self.show)

        attempt = 0
        last_error: Optional[str] = None
        while attempt <= retries:
            start = time.time()
            stdout_buf: list[str] = []
            stderr_buf: list[str] = []
            logger.info("[%s] running: %s", self.id, " ".join(argv))
            try:
                proc = subprocess.Popen(
                    argv,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    bufsize=1,  # line-buffered
                    env=env,
                    cwd=cwd,
                    start_new_session=True,  # own process group, killed as a whole on timeout
                )
            except (OSError, ValueError) as e:
                last_error = str(e)
                attempt += 1
                logger.warning("[%s] failed to start: %s", self.id, e)
                if attempt > retries:
                    return {
                        "status": "error",
                        "error": last_error,
                        "cmd": argv,
                        "stdout": "",
                        "stderr": "",
                        "returncode": None,
                        "duration": time.time() - start,
                        "attempts": attempt,
                    }
                continue

            def _read_stream(stream, buf):
                try:
                    for line in iter(stream.readline, ""):
                        buf.append(line)
                        if show:
                            print(line, end="", flush=True)
                finally:
                    stream.close()

            readers = [
                threading.Thread(target=_read_stream, args=(proc.stdout, stdout_buf), daemon=True),
                threading.Thread(target=_read_stream, args=(proc.stderr, stderr_buf), daemon=True),
            ]
            for t in readers:
                t.start()

            timed_out = False
            try:
                proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                timed_out = True
                _kill_group(proc)
                proc.wait()

            for t in readers:
                # A descendant that left the group may still hold the pipes
                t.join(timeout=_READER_GRACE if timed_out else None)

            duration = time.time() - start
            rc = proc.returncode if proc.returncode is not None else -1
            result: Dict[str, Any] = {
                "status": "success",
                "cmd": argv,
                "stdout": "".join(stdout_buf).strip(),
                "stderr": "".join(stderr_buf).strip(),
                "returncode": rc,
                "duration": duration,
                "attempts": attempt + 1,
            }
            if rc == 0 and not timed_out:
                return result

            last_error = f"Timed out after {timeout}s" if timed_out else f"Process exited with code {rc}"
            attempt += 1
            if attempt > retries:
                result.update({"status": "error", "error": last_error, "attempts": attempt})
                return result
            logger.info("[%s] %s; retrying (%d/%d)", self.id, last_error, attempt, retries)
        return {"status": "error", "error": last_error or "unknown error"}


class EnvStep(Step):
    """Apply environment assignments.

    Config:
    - values: dict[str, str] – assignments, applied in order.
    """

    kind = "env"

    def run(self) -> Dict[str, Any]:
        values = self.config.get("values") or {}
        try:
            applied = self._env().update(values, source=self.id)
        except ValueError as e:
            return {"status": "error", "error": str(e)}
        return {"status": "success", "set": applied}


class LocaleStep(Step):
    """Generate a locale with locale-gen and optionally export it.

    Config:
    - locale: str – e.g. 'en_US.UTF-8'
    - set_env: bool (default True) – assign LANG and LC_ALL afterwards
    """

    kind = "locale"

    def run(self) -> Dict[str, Any]:
        locale = self.config.get("locale")
        if not locale:
            return {"status": "error", "error": "LocaleStep requires config['locale']"}
        res = self.run_commands([["locale-gen", locale]])
        if res.get("status") != "error" and self.config.get("set_env", True):
            res["set"] = self._env().update({"LANG": locale, "LC_ALL": locale}, source=self.id)
        return res


class ShellStep(Step):
    """Set the default shell (SHELL) of the assembled environment."""

    kind = "shell"

    def run(self) -> Dict[str, Any]:
        path = self.config.get("path")
        if not path:
            return {"status": "error", "error": "ShellStep requires config['path']"}
        return {"status": "success", "set": {"SHELL": self._env().set("SHELL", path, source=self.id)}}
