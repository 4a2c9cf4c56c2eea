"""Dockerfile subset loader.

Turns the provisioning part of a Dockerfile (FROM, ENV, ARG, RUN, WORKDIR,
SHELL) into a ProvisionSpec. Instructions that only concern image layering or
container runtime metadata are rejected in strict mode and skipped otherwise.
"""
from __future__ import annotations

import json
import logging
import posixpath
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .errors import SpecError
from .spec import DEFAULT_INTERPRETER, ProvisionSpec, check_unique_ids, parse_step

logger = logging.getLogger(__name__)

_DIRECTIVE_RE = re.compile(r"^#\s*([A-Za-z]+)\s*=\s*(.*?)\s*$")
UNSUPPORTED = {
    "ADD", "COPY", "CMD", "ENTRYPOINT", "EXPOSE", "HEALTHCHECK", "LABEL",
    "MAINTAINER", "ONBUILD", "STOPSIGNAL", "USER", "VOLUME",
}


def logical_lines(text: str) -> List[Tuple[int, str]]:
    """Join continuation lines and drop comments.

    Returns (line_number, instruction_text) pairs where line_number is the
    1-based line the instruction starts on.
    """
    escape = "\\"
    out: List[Tuple[int, str]] = []
    buf: List[str] = []
    start = 0
    directives_allowed = True

    for lineno, raw in enumerate(text.splitlines(), start=1):
        stripped = raw.strip()
        if not buf:
            if not stripped:
                directives_allowed = False
                continue
            if stripped.startswith("#"):
                m = _DIRECTIVE_RE.match(stripped)
                if directives_allowed and m:
                    if m.group(1).lower() == "escape" and m.group(2) in ("\\", "`"):
                        escape = m.group(2)
                    continue
                directives_allowed = False
                continue
            directives_allowed = False
            start = lineno
        elif not stripped or stripped.startswith("#"):
            # Comments and blank lines inside a continuation are dropped
            continue

        line = raw.rstrip()
        if line.endswith(escape):
            buf.append(line[: -len(escape)])
            continue
        buf.append(line)
        out.append((start, "".join(buf).strip()))
        buf = []

    if buf:
        out.append((start, "".join(buf).strip()))
    return out


def _env_words(text: str, source: Optional[str], line: int, split: bool = True) -> List[str]:
    """Split ENV/ARG text into words, removing quotes and backslash escapes.

    ``$`` inside single quotes or escaped with a backslash is emitted as
    ``$$`` so the environment assembler keeps it literal. With ``split``
    false, unquoted whitespace is kept and a single word is returned.
    """
    words: List[str] = []
    buf: List[str] = []
    in_word = False
    quote: Optional[str] = None
    i = 0
    while i < len(text):
        c = text[i]
        if quote == "'":
            if c == "'":
                quote = None
            else:
                buf.append("$$" if c == "$" else c)
        elif c == "\\" and i + 1 < len(text):
            i += 1
            nxt = text[i]
            if quote == '"' and nxt not in '"\\$':
                buf.append(c)
            buf.append("$$" if nxt == "$" else nxt)
            in_word = True
        elif quote == '"':
            if c == '"':
                quote = None
            else:
                buf.append(c)
        elif c in "'\"":
            quote = c
            in_word = True
        elif c.isspace() and split:
            if in_word:
                words.append("".join(buf))
                buf = []
                in_word = False
        else:
            buf.append(c)
            in_word = True
        i += 1
    if quote:
        raise SpecError(f"cannot parse ENV: unterminated {quote} quote", source, line)
    if in_word:
        words.append("".join(buf))
    return words


def _parse_env_args(args: str, source: Optional[str], line: int) -> Dict[str, str]:
    first = args.split(None, 1)[0] if args.strip() else ""
    if "=" not in first:
        # Legacy form: ENV NAME value with spaces
        parts = args.split(None, 1)
        if len(parts) < 2:
            raise SpecError(f"ENV requires a value: {args!r}", source, line)
        value = _env_words(parts[1].strip(), source, line, split=False)
        return {parts[0]: value[0] if value else ""}
    values: Dict[str, str] = {}
    for tok in _env_words(args, source, line):
        if "=" not in tok:
            raise SpecError(f"ENV expects NAME=value pairs, got {tok!r}", source, line)
        name, value = tok.split("=", 1)
        values[name] = value
    return values


def _parse_json_array(args: str) -> Optional[List[str]]:
    if not args.startswith("["):
        return None
    try:
        value = json.loads(args)
    except json.JSONDecodeError:
        return None
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return value
    return None


def _strip_flags(args: str) -> Tuple[List[str], str]:
    flags: List[str] = []
    rest = args
    while rest.startswith("--"):
        parts = rest.split(None, 1)
        flags.append(parts[0])
        rest = parts[1] if len(parts) > 1 else ""
    return flags, rest


def parse_dockerfile(text: str, source: Optional[str] = None, strict: bool = True, name: Optional[str] = None) -> ProvisionSpec:
    """Parse Dockerfile text into a ProvisionSpec."""
    raw_steps: List[Tuple[int, Dict[str, Any]]] = []
    base_image = ""
    workdir: Optional[str] = None
    interpreter: Optional[List[str]] = None

    for line, instr in logical_lines(text):
        parts = instr.split(None, 1)
        keyword = parts[0].upper()
        args = parts[1].strip() if len(parts) > 1 else ""

        if keyword == "FROM":
            _, rest = _strip_flags(args)
            tokens = rest.split()
            if not tokens:
                raise SpecError("FROM requires an image", source, line)
            if base_image:
                logger.warning("%s:%d: multiple FROM stages; using the last one", source or "<dockerfile>", line)
            base_image = tokens[0]
        elif keyword == "ENV":
            raw_steps.append((line, {"env": _parse_env_args(args, source, line)}))
        elif keyword == "ARG":
            if "=" in args:
                arg_name, default = args.split("=", 1)
                value = _env_words(default.strip(), source, line, split=False)
                raw_steps.append((line, {"env": {arg_name.strip(): value[0] if value else ""}}))
            else:
                logger.debug("ARG %s has no default; ignored", args)
        elif keyword == "RUN":
            flags, rest = _strip_flags(args)
            if flags:
                logger.warning("%s:%d: ignoring RUN flags %s", source or "<dockerfile>", line, " ".join(flags))
            exec_form = _parse_json_array(rest)
            raw: Dict[str, Any] = {"run": exec_form if exec_form is not None else rest}
            if exec_form is None and interpreter:
                raw["interpreter"] = list(interpreter)
            if workdir:
                raw["cwd"] = workdir
            raw_steps.append((line, raw))
        elif keyword == "WORKDIR":
            if not args:
                raise SpecError("WORKDIR requires a path", source, line)
            workdir = posixpath.join(workdir or "/", args)
        elif keyword == "SHELL":
            shell = _parse_json_array(args)
            if not shell:
                raise SpecError("SHELL requires a JSON array, e.g. [\"/bin/bash\", \"-c\"]", source, line)
            interpreter = shell
        elif keyword in UNSUPPORTED:
            if strict:
                raise SpecError(f"unsupported instruction {keyword}", source, line)
            logger.warning("%s:%d: skipping unsupported instruction %s", source or "<dockerfile>", line, keyword)
        else:
            raise SpecError(f"unknown instruction {keyword}", source, line)

    steps = [parse_step(raw, i, source, line) for i, (line, raw) in enumerate(raw_steps, start=1)]
    check_unique_ids(steps, source)

    if name is None:
        name = "dockerfile"
        if source:
            parent = Path(source).resolve().parent.name.lstrip(".")
            name = parent or name
    return ProvisionSpec(
        name=name,
        steps=steps,
        base_image=base_image,
        interpreter=list(DEFAULT_INTERPRETER),
        source=source,
    )
