"""Tests for YAML spec loading"""
from pathlib import Path

import pytest
from provisor.errors import SpecError
from provisor.spec import DEFAULT_INTERPRETER, load_spec, parse_spec


RUST_DEV = """
name: rust-dev
base_image: rust:1.38-stretch
steps:
  - env: {CONTAINER_IMAGE_VER: v1.0.0}
  - run: echo $CONTAINER_IMAGE_VER
  - packages: [rls, rust-analysis, rust-src]
    manager: rustup
  - id: apt_tools
    packages: [sudo, curl, locales]
    manager: apt
    update: true
    no_install_recommends: true
  - locale: en_US.UTF-8
  - cleanup: apt
  - shell: /bin/bash
  - run: ["lldb", "--version"]
    best_effort: true
    timeout: 30
checks:
  env: [CONTAINER_IMAGE_VER]
  tools: [cargo, {name: git, min_version: "2.0"}]
  shell: true
"""


class TestParseSpec:
    """Test parse_spec() on decoded mappings"""

    def test_full_spec(self, write_spec):
        spec = load_spec(write_spec(RUST_DEV))

        assert spec.name == "rust-dev"
        assert spec.base_image == "rust:1.38-stretch"
        assert spec.interpreter == DEFAULT_INTERPRETER
        assert [s.kind for s in spec.steps] == ["env", "run", "packages", "packages", "locale", "cleanup", "shell", "run"]
        assert spec.step_ids() == ["1-env", "2-run", "3-packages", "apt_tools", "5-locale", "6-cleanup", "7-shell", "8-run"]

    def test_step_configs(self, write_spec):
        spec = load_spec(write_spec(RUST_DEV))

        assert spec.get("1-env").config == {"values": {"CONTAINER_IMAGE_VER": "v1.0.0"}}
        assert spec.get("apt_tools").config == {
            "manager": "apt",
            "packages": ["sudo", "curl", "locales"],
            "update": True,
            "no_install_recommends": True,
        }
        assert spec.get("5-locale").config == {"locale": "en_US.UTF-8", "set_env": True}
        last = spec.get("8-run")
        assert last.best_effort is True
        assert last.config == {"cmd": ["lldb", "--version"], "timeout": 30.0}

    def test_checks(self, write_spec):
        checks = load_spec(write_spec(RUST_DEV)).checks

        assert checks.env == ["CONTAINER_IMAGE_VER"]
        assert checks.tools == [{"name": "cargo"}, {"name": "git", "min_version": "2.0"}]
        assert checks.shell is True

    def test_name_defaults_to_file_stem(self, write_spec):
        spec = load_spec(write_spec("steps:\n  - run: 'true'\n", name="toolbox.yaml"))
        assert spec.name == "toolbox"

    def test_scalar_env_values_become_strings(self):
        spec = parse_spec({"steps": [{"env": {"DEBUG": True, "PORT": 8080, "EMPTY": None}}]})
        assert spec.steps[0].config["values"] == {"DEBUG": "true", "PORT": "8080", "EMPTY": ""}

    def test_interpreter_string_is_split(self):
        spec = parse_spec({"interpreter": "/bin/bash -lc", "steps": []})
        assert spec.interpreter == ["/bin/bash", "-lc"]

    def test_run_environment_overrides(self):
        spec = parse_spec({"steps": [{"run": "make", "environment": {"CC": "clang"}, "cwd": "/src"}]})
        assert spec.steps[0].config == {"cmd": "make", "environment": {"CC": "clang"}, "cwd": "/src"}

    def test_rustup_without_packages_is_allowed(self):
        spec = parse_spec({"steps": [{"packages": [], "manager": "rustup"}]})
        assert spec.steps[0].config["packages"] == []

    def test_check_tools_string_is_split(self):
        spec = parse_spec({"steps": [], "checks": {"tools": "cargo git"}})
        assert spec.checks.tools == [{"name": "cargo"}, {"name": "git"}]

    def test_packages_string_is_split(self):
        spec = parse_spec({"steps": [{"packages": "curl wget", "manager": "apt"}]})
        assert spec.steps[0].config["packages"] == ["curl", "wget"]


class TestSpecErrors:
    """Test validation failures raise SpecError"""

    @pytest.mark.parametrize(
        "step, fragment",
        [
            ({"copy": "a b"}, "has no kind"),
            ({"run": "x", "env": {"A": "1"}}, "more than one kind"),
            ({"run": ""}, "non-empty command"),
            ({"run": []}, "non-empty command"),
            ({"env": {}}, "non-empty mapping"),
            ({"packages": ["curl"]}, "requires manager"),
            ({"packages": ["curl"], "manager": "brew"}, "requires manager"),
            ({"packages": [], "manager": "apt"}, "at least one package"),
            ({"cleanup": "cargo"}, "cleanup support"),
            ({"locale": ""}, "locale name"),
            ({"shell": 3}, "requires a path"),
            ({"run": "x", "retries": "many"}, "retries must be an integer"),
            ({"run": "x", "bogus": 1}, "unknown keys: bogus"),
        ],
    )
    def test_invalid_steps(self, step, fragment):
        with pytest.raises(SpecError) as exc:
            parse_spec({"steps": [step]})
        assert fragment in str(exc.value)

    def test_duplicate_ids(self):
        with pytest.raises(SpecError, match="duplicate step id 'x'"):
            parse_spec({"steps": [{"id": "x", "run": "a"}, {"id": "x", "run": "b"}]})

    def test_generated_id_collision_detected(self):
        with pytest.raises(SpecError, match="duplicate"):
            parse_spec({"steps": [{"run": "a"}, {"id": "1-run", "run": "b"}]})

    def test_missing_steps(self):
        with pytest.raises(SpecError, match="steps"):
            parse_spec({"name": "nothing"})
        with pytest.raises(SpecError):
            parse_spec(["not", "a", "mapping"])

    def test_invalid_yaml_reports_source_and_line(self, write_spec):
        path = write_spec("steps:\n  - run: [unterminated\n")
        with pytest.raises(SpecError) as exc:
            load_spec(path)
        assert exc.value.source == str(path)
        assert exc.value.line is not None
        assert str(path) in str(exc.value)

    def test_missing_file(self, temp_dir):
        with pytest.raises(SpecError, match="not found"):
            load_spec(temp_dir / "absent.yaml")


class TestFormatDetection:
    """Test load_spec() routing between YAML and Dockerfile"""

    def test_dockerfile_name_routes_to_dockerfile_parser(self, write_spec):
        path = write_spec("FROM debian:stable\nENV A=1\nRUN echo $A\n", name=".devcontainer/Dockerfile")
        spec = load_spec(path)

        assert spec.base_image == "debian:stable"
        assert spec.name == "devcontainer"
        assert [s.kind for s in spec.steps] == ["env", "run"]

    def test_suffixed_dockerfile(self, write_spec):
        path = write_spec("FROM alpine\nRUN true\n", name="dev.Dockerfile")
        assert load_spec(path).base_image == "alpine"


class TestShippedExamples:
    """The specs under examples/ stay loadable"""

    EXAMPLES = Path(__file__).resolve().parent.parent / "examples"

    def test_rust_dev_yaml(self):
        spec = load_spec(self.EXAMPLES / "rust_dev.yaml")

        assert spec.name == "rust-dev"
        assert spec.get("toolchain").config["packages"] == []
        assert spec.get("lldb").best_effort is True
        assert spec.steps[-1].kind == "shell"

    def test_devcontainer_dockerfile(self):
        spec = load_spec(self.EXAMPLES / "devcontainer.Dockerfile")

        assert spec.base_image == "rust:1.38-stretch"
        assert len(spec.steps) == 12
        assert spec.steps[-1].config["values"] == {"SHELL": "/bin/bash"}
