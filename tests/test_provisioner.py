"""End-to-end tests for Provisioner"""
import pytest
from rich.console import Console

from provisor.errors import ProvisionFailed
from provisor.hook import ConsoleHook, Hook, LoggingHook
from provisor.provisioner import Provisioner
from provisor.spec import parse_spec


SIMPLE = """
name: simple
base_image: debian:stable
steps:
  - env: {GREETING: hello, TARGET: world}
  - env: {MESSAGE: "$GREETING, ${TARGET}!"}
  - id: say
    run: echo "$MESSAGE"
  - shell: /bin/sh
checks:
  env: [MESSAGE]
  tools: [sh]
  shell: true
"""


class EventHook(Hook):
    def __init__(self):
        self.events = []

    def on_provision_start(self, provisioner, context=None):
        self.events.append("provision_start")

    def on_step_end(self, step, result, context=None):
        self.events.append(f"step:{step.id}:{result['status']}")

    def on_provision_end(self, provisioner, result, context=None):
        self.events.append(f"provision_end:{result['status']}")


class TestProvision:
    """Test full provisioning runs"""

    def test_successful_run(self, write_spec):
        result = Provisioner.from_path(write_spec(SIMPLE)).provision()

        assert result["status"] == "success"
        assert result["spec"] == "simple"
        assert result["base_image"] == "debian:stable"
        assert result["failed_step"] is None
        assert result["steps"]["say"]["stdout"] == "hello, world!"
        assert result["environment"] == {
            "GREETING": "hello",
            "TARGET": "world",
            "MESSAGE": "hello, world!",
            "SHELL": "/bin/sh",
        }
        assert result["checks"] == {"status": "ok", "issues": []}

    def test_failed_check_does_not_change_status(self):
        spec = parse_spec({"steps": [{"run": "true"}], "checks": {"env": ["NEVER_DECLARED_XYZ"]}})
        result = Provisioner(spec, config={"inherit_environment": False}).provision()

        assert result["status"] == "success"
        assert result["checks"]["status"] == "failed"

    def test_checks_can_be_disabled(self, write_spec):
        result = Provisioner.from_path(write_spec(SIMPLE), config={"checks": False}).provision()
        assert "checks" not in result

    def test_failure_stops_and_reports(self, temp_dir):
        marker = temp_dir / "after"
        spec = parse_spec({"steps": [
            {"run": "exit 4"},
            {"run": ["touch", str(marker)]},
        ]})
        result = Provisioner(spec).provision()

        assert result["status"] == "error"
        assert result["failed_step"] == "1-run"
        assert result["steps"]["1-run"]["returncode"] == 4
        assert result["steps"]["2-run"]["status"] == "not_run"
        assert "checks" not in result
        assert not marker.exists()

    def test_best_effort_failure_keeps_success(self):
        spec = parse_spec({"steps": [
            {"run": ["false"], "best_effort": True},
            {"run": ["true"]},
        ]})
        result = Provisioner(spec).provision()

        assert result["status"] == "success"
        assert result["steps"]["1-run"]["best_effort"] is True

    def test_keep_going_reports_first_failure(self):
        spec = parse_spec({"steps": [{"run": ["false"]}, {"run": ["true"]}, {"run": "exit 2"}]})
        result = Provisioner(spec, config={"fail_fast": False}).provision()

        assert result["status"] == "error"
        assert result["failed_step"] == "1-run"
        assert result["steps"]["2-run"]["status"] == "success"

    def test_raise_on_error(self):
        spec = parse_spec({"steps": [{"run": ["false"]}]})

        with pytest.raises(ProvisionFailed) as exc:
            Provisioner(spec).provision(raise_on_error=True)
        assert exc.value.failed_step == "1-run"
        assert exc.value.result["status"] == "error"

    def test_dry_run_runs_nothing(self, temp_dir):
        marker = temp_dir / "created"
        spec = parse_spec({"steps": [
            {"env": {"A": "1"}},
            {"run": ["touch", str(marker)]},
        ], "checks": {"env": ["MISSING"]}})
        result = Provisioner(spec, config={"dry_run": True}).provision()

        assert result["status"] == "success"
        assert result["dry_run"] is True
        assert result["steps"]["2-run"]["status"] == "dry_run"
        assert result["environment"] == {"A": "1"}
        assert "checks" not in result
        assert not marker.exists()

    def test_spec_interpreter_is_used(self):
        spec = parse_spec({"interpreter": ["/bin/sh", "-eu", "-c"], "steps": [{"run": "echo $UNSET_VAR_XYZ"}]})
        result = Provisioner(spec, config={"inherit_environment": False}).provision()

        assert result["status"] == "error"
        assert result["steps"]["1-run"]["cmd"][:3] == ["/bin/sh", "-eu", "-c"]


class TestPersistence:
    """Test run history in the data store"""

    def test_run_is_recorded(self, write_spec, test_db):
        result = Provisioner.from_path(write_spec(SIMPLE), data=test_db).provision()
        pid = result["provision_id"]

        rows = test_db.query("SELECT * FROM provisions WHERE provision_id = ?", (pid,))
        assert rows[0]["status"] == "success"
        assert rows[0]["name"] == "simple"
        assert rows[0]["end_timestamp"] is not None
        assert [s["id"] for s in rows[0]["spec_json"]["steps"]] == ["1-env", "2-env", "say", "4-shell"]

        assert [s["step_id"] for s in test_db.steps_for(pid)] == ["1-env", "2-env", "say", "4-shell"]
        assert test_db.environment_for(pid)["MESSAGE"] == "hello, world!"

    def test_failed_run_is_recorded(self, test_db):
        spec = parse_spec({"name": "broken", "steps": [{"id": "boom", "run": ["false"]}]})
        result = Provisioner(spec, data=test_db).provision()

        rows = test_db.recent_provisions()
        assert rows[0]["provision_id"] == result["provision_id"]
        assert rows[0]["status"] == "error"
        assert rows[0]["failed_step"] == "boom"


class TestPlanAndEnvironment:
    """Test operations that do not execute commands"""

    def test_plan(self, write_spec):
        plan = Provisioner.from_path(write_spec(SIMPLE)).plan()

        assert list(plan) == ["1-env", "2-env", "say", "4-shell"]
        assert plan["say"]["status"] == "dry_run"
        assert plan["say"]["cmd"] == ["/bin/sh", "-c", 'echo "$MESSAGE"']
        assert plan["1-env"]["set"] == {"GREETING": "hello", "TARGET": "world"}

    def test_assemble_environment(self, write_spec):
        env = Provisioner.from_path(write_spec(SIMPLE)).assemble_environment()

        assert env.snapshot()["MESSAGE"] == "hello, world!"
        assert env.default_shell == "/bin/sh"

    def test_check_uses_assembled_environment(self, write_spec):
        report = Provisioner.from_path(write_spec(SIMPLE)).check()
        assert report["status"] == "ok"

    def test_dockerfile_spec(self, write_spec):
        path = write_spec(
            "FROM alpine:3.19\nENV GREETING=hi\nWORKDIR /\nRUN echo $GREETING from $(pwd)\n",
            "Dockerfile",
        )
        result = Provisioner.from_path(path).provision()

        assert result["base_image"] == "alpine:3.19"
        assert result["steps"]["2-run"]["stdout"] == "hi from /"


class TestHooks:
    """Test hook integration"""

    def test_hook_event_order(self):
        hook = EventHook()
        spec = parse_spec({"steps": [{"run": ["true"]}, {"run": ["false"]}, {"run": ["true"]}]})
        Provisioner(spec, hook=hook).provision()

        assert hook.events == [
            "provision_start",
            "step:1-run:success",
            "step:2-run:error",
            "provision_end:error",
        ]

    def test_logging_hook(self, write_spec, caplog):
        with caplog.at_level("INFO", logger="provisor.hook"):
            Provisioner.from_path(write_spec(SIMPLE), hook=LoggingHook()).provision()

        assert "provision_start: simple (4 steps)" in caplog.text
        assert "step_end: say -> success" in caplog.text
        assert "provision_end: success" in caplog.text

    def test_console_hook(self, write_spec):
        console = Console(record=True, width=120)
        Provisioner.from_path(write_spec(SIMPLE), hook=ConsoleHook(console)).provision()
        text = console.export_text()

        assert "Provisioning simple" in text
        assert "debian:stable" in text
        assert "Provisioning success" in text
