from __future__ import annotations

import json
import logging
import os
import shlex
import shutil
import sqlite3
from pathlib import Path
from typing import Any, Dict, Optional

import click
import typer
from rich.console import Console
from rich.table import Table

from .config import Config, coerce_value
from .data import SqliteData
from .errors import SpecError
from .hook import ConsoleHook
from .paths import (
    CONFIG_FILENAME,
    DB_FILENAME,
    PROVISOR_DIRNAME,
    SPECS_SUBDIR,
    ensure_in_project,
    find_project_root,
    get_project_db_path,
    resolve_spec_path,
)
from .provisioner import Provisioner
from .spec import load_spec


app = typer.Typer(name="provisor", help="Provisor CLI: load, run and check provisioning specs.", no_args_is_help=True)
console = Console()
logger = logging.getLogger(__name__)

EXAMPLE_SPEC = """\
name: example
base_image: debian:stable
steps:
  - env: {CONTAINER_IMAGE_VER: v1.0.0}
  - run: echo "provisioning $CONTAINER_IMAGE_VER"
  - run: ["uname", "-a"]
    best_effort: true
  - shell: /bin/bash
checks:
  env: [CONTAINER_IMAGE_VER]
  tools: [{name: sh}]
"""


def _configure_logging(verbose: bool = False, config: Optional[Config] = None) -> None:
    default = "INFO" if verbose else (config.log_level if config else "WARNING")
    log_level = os.getenv("PROVISOR_LOG_LEVEL", default)
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(name)s: %(message)s",
    )


def _resolve_db_path(config: Config) -> Optional[Path]:
    """Database path from config db_path, else the project default; None outside a project."""
    root = find_project_root()
    if config.db_path:
        db_path = Path(config.db_path).expanduser()
        if not db_path.is_absolute() and root:
            db_path = root / db_path
        return db_path
    return get_project_db_path(root) if root else None


def _open_data(config: Config, use_db: bool = True) -> Optional[SqliteData]:
    if not use_db:
        return None
    db_path = _resolve_db_path(config)
    if db_path is None:
        return None
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return SqliteData(db_path=str(db_path))


def _exit_code(result: Dict[str, Any]) -> int:
    if result.get("status") == "error":
        failed = result.get("steps", {}).get(result.get("failed_step") or "", {})
        rc = failed.get("returncode")
        if isinstance(rc, int) and rc > 0:
            return rc
        return 1
    if result.get("checks", {}).get("status") == "failed":
        return 1
    return 0


def _print_issues(report: Dict[str, Any]) -> None:
    if report.get("status") == "ok":
        console.print("[green]All checks passed[/green]")
        return
    console.print(f"[red]Checks failed:[/red] {len(report['issues'])} issue(s)")
    for issue in report["issues"]:
        console.print(f"  [red]•[/red] {issue['message']}")


def _format_cmd(cmd: Any) -> str:
    if isinstance(cmd, list) and cmd and all(isinstance(c, list) for c in cmd):
        return "\n".join(_format_cmd(c) for c in cmd)
    if isinstance(cmd, list):
        return shlex.join(str(c) for c in cmd)
    return str(cmd or "")


def cmd_run(
    spec_arg: str,
    dry_run: bool = False,
    show: bool = False,
    keep_going: bool = False,
    checks: bool = True,
    use_db: bool = True,
    as_json: bool = False,
    strict: bool = True,
) -> int:
    config = Config.load_with_project_context()
    try:
        spec = load_spec(resolve_spec_path(spec_arg), strict=strict)
    except SpecError as e:
        typer.echo(f"Error: {e}", err=True)
        return 2

    data = _open_data(config, use_db=use_db)
    try:
        provisioner = Provisioner(
            spec,
            data=data,
            hook=None if as_json else ConsoleHook(console),
            config={
                "fail_fast": config.fail_fast and not keep_going,
                "dry_run": dry_run,
                "show": show or config.show,
                "inherit_environment": config.inherit_environment,
                "checks": checks,
            },
        )
        result = provisioner.provision()
    finally:
        if data is not None:
            data.close()

    if as_json:
        typer.echo(json.dumps(result, indent=2))
    elif "checks" in result:
        _print_issues(result["checks"])
    return _exit_code(result)


def cmd_plan(spec_arg: str, strict: bool = True) -> int:
    try:
        spec = load_spec(resolve_spec_path(spec_arg), strict=strict)
    except SpecError as e:
        typer.echo(f"Error: {e}", err=True)
        return 2
    plan = Provisioner(spec).plan()
    table = Table(title=f"{spec.name}" + (f" ({spec.base_image})" if spec.base_image else ""))
    table.add_column("#", justify="right")
    table.add_column("Step")
    table.add_column("Kind")
    table.add_column("Action")
    for i, step in enumerate(spec.steps, start=1):
        res = plan.get(step.id, {})
        if "set" in res and "cmd" not in res:
            action = " ".join(f"{k}={v}" for k, v in res["set"].items())
        else:
            action = _format_cmd(res.get("cmd"))
            if "set" in res:
                action += "\n" + " ".join(f"{k}={v}" for k, v in res["set"].items())
        name = step.id + (" (best effort)" if step.best_effort else "")
        table.add_row(str(i), name, step.kind, action)
    console.print(table)
    return 0


def cmd_env(spec_arg: str, include_base: bool = False, as_json: bool = False, strict: bool = True) -> int:
    config = Config.load_with_project_context()
    try:
        spec = load_spec(resolve_spec_path(spec_arg), strict=strict)
    except SpecError as e:
        typer.echo(f"Error: {e}", err=True)
        return 2
    env = Provisioner(spec, config={"inherit_environment": config.inherit_environment}).assemble_environment()
    snapshot = env.snapshot(include_base=include_base)
    if as_json:
        typer.echo(json.dumps(snapshot, indent=2))
    else:
        for name, value in snapshot.items():
            typer.echo(f"{name}={value}")
    return 0


def cmd_check(spec_arg: str, strict: bool = True) -> int:
    config = Config.load_with_project_context()
    try:
        spec = load_spec(resolve_spec_path(spec_arg), strict=strict)
    except SpecError as e:
        typer.echo(f"Error: {e}", err=True)
        return 2
    provisioner = Provisioner(spec, config={"inherit_environment": config.inherit_environment})
    if not provisioner.validators:
        console.print("[yellow]No checks declared[/yellow]")
        return 0
    report = provisioner.check()
    _print_issues(report)
    return 0 if report["status"] == "ok" else 1


def cmd_validate(spec_arg: str, strict: bool = True) -> int:
    try:
        spec = load_spec(resolve_spec_path(spec_arg), strict=strict)
    except SpecError as e:
        typer.echo(f"Invalid: {e}")
        return 2
    typer.echo(f"Valid: {spec.name} ({len(spec.steps)} steps)")
    return 0


def cmd_init(path: Optional[Path], force: bool) -> int:
    target = Path(path or ".").resolve()
    target.mkdir(parents=True, exist_ok=True)
    project_dir = target / PROVISOR_DIRNAME
    if project_dir.exists() and force:
        shutil.rmtree(project_dir)
    (project_dir / SPECS_SUBDIR).mkdir(parents=True, exist_ok=True)
    cfg = project_dir / CONFIG_FILENAME
    if not cfg.exists():
        cfg.write_text("")
    SqliteData(db_path=str(project_dir / DB_FILENAME)).close()

    example = project_dir / SPECS_SUBDIR / "example.yaml"
    if not example.exists():
        example.write_text(EXAMPLE_SPEC)
    typer.echo(f"Initialized provisor project at {project_dir}")
    return 0


def cmd_history(limit: int) -> int:
    config = Config.load_with_project_context()
    if not config.db_path:
        try:
            ensure_in_project()
        except RuntimeError as e:
            typer.echo(f"Error: {e}", err=True)
            return 2
    data = _open_data(config)
    try:
        rows = data.recent_provisions(limit=limit)
    finally:
        data.close()
    table = Table(title="Provisioning runs")
    for col in ("Started", "Name", "Base image", "Status", "Failed step"):
        table.add_column(col)
    for r in rows:
        status = r["status"] or ""
        if r.get("dry_run"):
            status += " (dry run)"
        table.add_row(str(r["start_timestamp"]), r["name"] or "", r["base_image"] or "", status, r["failed_step"] or "")
    console.print(table)
    return 0


def cmd_db(db: Optional[Path]) -> int:
    db_path = Path(db) if db else _resolve_db_path(Config.load_with_project_context())
    if db_path is None or not db_path.exists():
        typer.echo(json.dumps({"error": f"Database not found: {db_path}"}, indent=2))
        return 2
    try:
        data = SqliteData(db_path=str(db_path))
        try:
            tables = [r["name"] for r in data.query("SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'")]
            dump: Dict[str, Any] = {"db": str(db_path), "tables": {t: data.query(f"SELECT * FROM {t}") for t in tables}}
        finally:
            data.close()
        typer.echo(json.dumps(dump, indent=2))
        return 0
    except sqlite3.Error as e:
        typer.echo(json.dumps({"error": str(e)}))
        return 2


def cmd_config_set(key: str, value: str) -> int:
    try:
        config = Config.load_with_project_context()
        config.set(key, coerce_value(key, value))
        config.save()
        typer.echo(f"✓ Set {key} = {value}")
        return 0
    except (ValueError, RuntimeError) as e:
        typer.echo(f"Error: {e}", err=True)
        return 2


def cmd_config_get(key: Optional[str]) -> int:
    try:
        config = Config.load_with_project_context()
    except RuntimeError as e:
        typer.echo(f"Error: {e}", err=True)
        return 2
    if key:
        value = config.get(key)
        typer.echo(f"{key} = {'(not set)' if value is None else value}")
        return 0
    typer.echo("Configuration:")
    typer.echo(f"  log_level: {config.log_level}")
    typer.echo(f"  inherit_environment: {config.inherit_environment}")
    typer.echo(f"  fail_fast: {config.fail_fast}")
    typer.echo(f"  show: {config.show}")
    if config.db_path:
        typer.echo(f"  db_path: {config.db_path}")
    return 0


# Typer command bindings


@app.callback()
def _root(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable informational logging"),
) -> None:
    try:
        config = Config.load_with_project_context()
    except RuntimeError:
        config = None
    _configure_logging(verbose, config)


@app.command("init", help="Create a .provisor project structure")
def init_command(
    path: Optional[Path] = typer.Argument(None, help="Directory to initialize"),
    force: bool = typer.Option(False, "--force", help="Recreate an existing .provisor folder"),
):
    raise typer.Exit(cmd_init(path=path, force=force))


@app.command("run", help="Execute a provisioning spec (YAML or Dockerfile)")
def run_command(
    spec: str = typer.Argument(..., help="Path to a spec, or a name under .provisor/specs"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show commands without running them"),
    show: bool = typer.Option(False, "--show", help="Echo command output while running"),
    keep_going: bool = typer.Option(False, "--keep-going", help="Continue after failing steps"),
    no_checks: bool = typer.Option(False, "--no-checks", help="Skip post-provision checks"),
    no_db: bool = typer.Option(False, "--no-db", help="Do not record the run"),
    as_json: bool = typer.Option(False, "--json", help="Print the full result as JSON"),
    lenient: bool = typer.Option(False, "--lenient", help="Skip unsupported Dockerfile instructions"),
):
    raise typer.Exit(
        cmd_run(
            spec,
            dry_run=dry_run,
            show=show,
            keep_going=keep_going,
            checks=not no_checks,
            use_db=not no_db,
            as_json=as_json,
            strict=not lenient,
        )
    )


@app.command("plan", help="List the steps of a spec and the commands they would run")
def plan_command(
    spec: str = typer.Argument(..., help="Path to a spec, or a name under .provisor/specs"),
    lenient: bool = typer.Option(False, "--lenient", help="Skip unsupported Dockerfile instructions"),
):
    raise typer.Exit(cmd_plan(spec, strict=not lenient))


@app.command("env", help="Print the environment a spec declares")
def env_command(
    spec: str = typer.Argument(..., help="Path to a spec, or a name under .provisor/specs"),
    include_base: bool = typer.Option(False, "--all", help="Include the inherited base environment"),
    as_json: bool = typer.Option(False, "--json", help="Print as JSON"),
    lenient: bool = typer.Option(False, "--lenient", help="Skip unsupported Dockerfile instructions"),
):
    raise typer.Exit(cmd_env(spec, include_base=include_base, as_json=as_json, strict=not lenient))


@app.command("check", help="Run a spec's checks against its declared environment")
def check_command(
    spec: str = typer.Argument(..., help="Path to a spec, or a name under .provisor/specs"),
    lenient: bool = typer.Option(False, "--lenient", help="Skip unsupported Dockerfile instructions"),
):
    raise typer.Exit(cmd_check(spec, strict=not lenient))


@app.command("validate", help="Validate a spec without running it")
def validate_command(
    spec: str = typer.Argument(..., help="Path to a spec, or a name under .provisor/specs"),
    lenient: bool = typer.Option(False, "--lenient", help="Skip unsupported Dockerfile instructions"),
):
    raise typer.Exit(cmd_validate(spec, strict=not lenient))


@app.command("history", help="List recent provisioning runs")
def history_command(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of runs to show"),
):
    raise typer.Exit(cmd_history(limit))


@app.command("db", help="Dump the provisor SQLite DB as JSON")
def db_command(
    db: Optional[Path] = typer.Option(None, "--db", help="Path to sqlite db (default: db_path config, else ./.provisor/provisor.db)"),
):
    raise typer.Exit(cmd_db(db=db))


@app.command("config", help="Get or set configuration values")
def config_command(
    key: Optional[str] = typer.Argument(None, help="Configuration key"),
    value: Optional[str] = typer.Argument(None, help="Value to set (omit to get current value)"),
):
    if key and value is not None:
        code = cmd_config_set(key, value)
    else:
        code = cmd_config_get(key)
    raise typer.Exit(code)


def main(argv: list[str] | None = None) -> int:
    try:
        # Without standalone mode click returns the Exit code instead of raising
        rv = app(args=argv, prog_name="provisor", standalone_mode=False)
        return rv if isinstance(rv, int) else 0
    except typer.Exit as e:
        return int(e.exit_code or 0)
    except SystemExit as e:
        return int(e.code or 0)
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except Exception as e:  # noqa: BLE001
        if str(e):
            typer.echo(f"Unexpected error: {e}", err=True)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
