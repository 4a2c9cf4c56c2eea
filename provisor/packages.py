from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .step import Command, Step


@dataclass
class PackageManager:
    """Command templates for one package manager.

    install(packages, options) returns the ordered commands for an install;
    cleanup lists the commands that drop the manager's caches.
    """
    name: str
    install: Callable[[List[str], Dict[str, Any]], List[Command]]
    cleanup: List[Command] = field(default_factory=list)
    allows_empty: bool = False


def _apt_install(packages: List[str], options: Dict[str, Any]) -> List[Command]:
    cmds: List[Command] = []
    if options.get("update"):
        cmds.append(["apt-get", "update"])
    cmd = ["apt-get", "-y", "install"]
    if options.get("no_install_recommends"):
        cmd.append("--no-install-recommends")
    cmds.append(cmd + list(options.get("args") or []) + packages)
    return cmds


def _apk_install(packages: List[str], options: Dict[str, Any]) -> List[Command]:
    cmds: List[Command] = []
    if options.get("update"):
        cmds.append(["apk", "update"])
    cmds.append(["apk", "add", "--no-cache"] + list(options.get("args") or []) + packages)
    return cmds


def _cargo_install(packages: List[str], options: Dict[str, Any]) -> List[Command]:
    return [["cargo", "install"] + list(options.get("args") or []) + packages]


def _rustup_install(packages: List[str], options: Dict[str, Any]) -> List[Command]:
    cmds: List[Command] = []
    if options.get("update") or not packages:
        cmds.append(["rustup", "update"])
    if packages:
        cmds.append(["rustup", "component", "add"] + list(options.get("args") or []) + packages)
    return cmds


def _pip_install(packages: List[str], options: Dict[str, Any]) -> List[Command]:
    return [["python3", "-m", "pip", "install"] + list(options.get("args") or []) + packages]


MANAGERS: Dict[str, PackageManager] = {
    "apt": PackageManager(
        "apt",
        _apt_install,
        cleanup=[["apt-get", "autoremove", "-y"], ["apt-get", "clean", "-y"], "rm -rf /var/lib/apt/lists/*"],
    ),
    "apk": PackageManager("apk", _apk_install, cleanup=["rm -rf /var/cache/apk/*"]),
    "cargo": PackageManager("cargo", _cargo_install),
    "rustup": PackageManager("rustup", _rustup_install, allows_empty=True),
    "pip": PackageManager("pip", _pip_install, cleanup=[["python3", "-m", "pip", "cache", "purge"]]),
}


def get_manager(name: Optional[str]) -> PackageManager:
    if name not in MANAGERS:
        raise KeyError(f"Unknown package manager: {name!r}")
    return MANAGERS[name]


class PackageInstallStep(Step):
    """Install packages with a package manager.

    Config:
    - manager: str – one of apt, apk, cargo, rustup, pip
    - packages: List[str]
    - update: bool (optional) – refresh the index first (apt, apk, rustup)
    - no_install_recommends: bool (optional, apt)
    - args: List[str] (optional) – extra install arguments
    - cwd, environment, timeout, retries – standard
    """

    kind = "packages"

    def commands(self) -> List[Command]:
        manager = get_manager(self.config.get("manager"))
        packages = [str(p) for p in (self.config.get("packages") or [])]
        return manager.install(packages, self.config)

    def run(self) -> Dict[str, Any]:
        try:
            cmds = self.commands()
        except KeyError as e:
            return {"status": "error", "error": str(e.args[0])}
        res = self.run_commands(cmds)
        res["manager"] = self.config.get("manager")
        res["packages"] = list(self.config.get("packages") or [])
        return res


class CleanupStep(Step):
    """Drop a package manager's caches (e.g. apt lists)."""

    kind = "cleanup"

    def commands(self) -> List[Command]:
        return list(get_manager(self.config.get("manager")).cleanup)

    def run(self) -> Dict[str, Any]:
        try:
            cmds = self.commands()
        except KeyError as e:
            return {"status": "error", "error": str(e.args[0])}
        if not cmds:
            return {"status": "skipped", "reason": f"no cleanup defined for {self.config.get('manager')}"}
        res = self.run_commands(cmds)
        res["manager"] = self.config.get("manager")
        return res
