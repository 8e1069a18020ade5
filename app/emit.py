"""Printing stage for generated artifacts.

Synthesizers build plain description dicts (imports, declarations,
statements) and hand them to a Jinja2 template here. Output is normalized
and syntax-checked before any caller writes it to disk.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any

from jinja2 import StrictUndefined, TemplateSyntaxError, UndefinedError
from jinja2.sandbox import ImmutableSandboxedEnvironment

from app.errors import ArtifactError

_BLANK_RUNS = re.compile(r"\n{4,}")
_TRAILING_WS = re.compile(r"[ \t]+\n")


def py_literal(value: Any, indent: int = 0, step: int = 4) -> str:
    """Render JSON-like data as a deterministic Python literal.

    Dict keys are sorted, strings use double quotes, nested containers are
    broken one item per line.
    """
    pad = " " * (indent + step)
    close = " " * indent
    if value is None:
        return "None"
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"Non-finite float cannot be emitted: {value!r}")
        return repr(value)
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, (list, tuple)):
        if not value:
            return "[]"
        items = [f"{pad}{py_literal(item, indent + step, step)}," for item in value]
        return "[\n" + "\n".join(items) + f"\n{close}]"
    if isinstance(value, dict):
        if not value:
            return "{}"
        items = [
            f"{pad}{json.dumps(str(key), ensure_ascii=False)}: {py_literal(value[key], indent + step, step)},"
            for key in sorted(value, key=str)
        ]
        return "{\n" + "\n".join(items) + f"\n{close}}}"
    raise TypeError(f"Unsupported literal type: {type(value).__name__}")


def py_string(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def _env() -> ImmutableSandboxedEnvironment:
    env = ImmutableSandboxedEnvironment(
        autoescape=False,
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    env.filters["py"] = py_literal
    env.filters["pystr"] = py_string
    return env


_ENV = _env()


def _tidy(text: str) -> str:
    text = _TRAILING_WS.sub("\n", text)
    text = _BLANK_RUNS.sub("\n\n\n", text)
    return text.strip("\n") + "\n"


def render_source(template_text: str, filename: str, **context: Any) -> str:
    """Render a Python artifact and verify it compiles."""
    try:
        text = _tidy(_ENV.from_string(template_text).render(**context))
    except (TemplateSyntaxError, UndefinedError) as exc:
        raise ArtifactError("ARTIFACT_RENDER_FAILED", f"{filename}: {exc}", filename) from exc
    try:
        compile(text, filename, "exec")
    except SyntaxError as exc:
        raise ArtifactError(
            "ARTIFACT_SYNTAX_INVALID",
            f"{filename}: generated source does not compile: {exc.msg}",
            filename,
            {"line": exc.lineno, "col": exc.offset},
        ) from exc
    return text
