from __future__ import annotations

import logging
import os
import re
from typing import Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_REF_RE = re.compile(
    r"\$(?:(?P<dollar>\$)|\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<default>[^}]*))?\}|(?P<bare>[A-Za-z_][A-Za-z0-9_]*))"
)


class EnvironmentAssembler:
    """Ordered accumulator of declared environment variables.

    The assembler starts from a base environment (the host environment by
    default) and layers declared assignments on top. Later assignments of the
    same name win. Values may reference earlier variables with ``$NAME``,
    ``${NAME}`` or ``${NAME:-default}``; ``$$`` yields a literal ``$``.
    """

    def __init__(self, base: Optional[Mapping[str, str]] = None, inherit: bool = True) -> None:
        if base is not None:
            self._base: Dict[str, str] = dict(base)
        elif inherit:
            self._base = dict(os.environ)
        else:
            self._base = {}
        self._declared: Dict[str, str] = {}
        self._removed: set[str] = set()
        self._history: List[Tuple[str, Optional[str], Optional[str]]] = []

    def lookup(self, name: str) -> Optional[str]:
        if name in self._declared:
            return self._declared[name]
        if name in self._removed:
            return None
        return self._base.get(name)

    def expand(self, text: str) -> str:
        """Expand variable references in text against the current environment."""

        def _sub(m: re.Match) -> str:
            if m.group("dollar"):
                return "$"
            name = m.group("braced") or m.group("bare")
            value = self.lookup(name)
            if m.group("braced") and m.group("default") is not None and not value:
                return self.expand(m.group("default"))
            return value or ""

        return _REF_RE.sub(_sub, text)

    def set(self, name: str, value: object, source: Optional[str] = None) -> str:
        if not isinstance(name, str) or not NAME_RE.match(name):
            raise ValueError(f"Invalid environment variable name: {name!r}")
        expanded = self.expand("" if value is None else str(value))
        self._declared[name] = expanded
        self._removed.discard(name)
        self._history.append((name, expanded, source))
        logger.debug("env %s=%s (%s)", name, expanded, source or "-")
        return expanded

    def update(self, values: Mapping[str, object], source: Optional[str] = None) -> Dict[str, str]:
        applied: Dict[str, str] = {}
        for name, value in values.items():
            applied[name] = self.set(name, value, source=source)
        return applied

    def unset(self, name: str, source: Optional[str] = None) -> None:
        self._declared.pop(name, None)
        self._removed.add(name)
        self._history.append((name, None, source))

    def snapshot(self, include_base: bool = False) -> Dict[str, str]:
        """Return the assembled environment.

        By default only declared variables are returned, in the order they
        were first declared. With include_base the host/base environment is
        merged underneath.
        """
        if not include_base:
            return dict(self._declared)
        env = {k: v for k, v in self._base.items() if k not in self._removed}
        env.update(self._declared)
        return env

    def process_env(self, overrides: Optional[Mapping[str, object]] = None) -> Dict[str, str]:
        """Full environment for a child process, with optional per-command overrides."""
        env = self.snapshot(include_base=True)
        for name, value in (overrides or {}).items():
            env[name] = self.expand(str(value))
        return env

    def history(self) -> List[Tuple[str, Optional[str], Optional[str]]]:
        return list(self._history)

    @property
    def default_shell(self) -> Optional[str]:
        return self.lookup("SHELL")

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.lookup(name) is not None

    def __len__(self) -> int:
        return len(self._declared)
