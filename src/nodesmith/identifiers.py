"""Identifier sanitization for generated Python source."""

from __future__ import annotations

import keyword
import re

_UNSAFE = re.compile(r"[^A-Za-z0-9_]")
_WORD_SPLIT = re.compile(r"[^A-Za-z0-9]+")


def to_identifier(value: str) -> str:
    """Turn an arbitrary resource name into a safe Python identifier.

    Characters outside [A-Za-z0-9_] become "_", a leading digit gets a "_"
    prefix and Python keywords get a "_" suffix. Case is preserved.
    """
    ident = _UNSAFE.sub("_", value or "")
    if not ident:
        return "_"
    if ident[0].isdigit():
        ident = f"_{ident}"
    if keyword.iskeyword(ident):
        ident = f"{ident}_"
    return ident


def to_function_name(value: str, fallback: str) -> str:
    """Lower snake-case callable name derived from a display name."""
    words = [w for w in _WORD_SPLIT.split(value or "") if w]
    if not words:
        return fallback
    name = "_".join(w.lower() for w in words)
    return to_identifier(name)


def column_accessor(table_ident: str, column_key: str) -> str:
    """Expression selecting a column from a generated Table variable."""
    return f"{table_ident}.c.{column_key}"
