"""Route and API path normalization.

Route keys use bracket segments ("/todos/[id]"), which is also the on-disk
directory layout. API keys keep ":param" segments and live under "/api".
"""

from __future__ import annotations

from typing import Dict, List


def _split(path: str) -> List[str]:
    return [segment for segment in (path or "").strip().split("/") if segment]


def unsafe_segments(path: str) -> List[str]:
    """Segments that would step outside the directory a path is joined onto."""
    return [segment for segment in _split(path) if segment in (".", "..") or "\\" in segment]


def _bracket(segment: str) -> str:
    if segment.startswith(":") and len(segment) > 1:
        return f"[{segment[1:]}]"
    return segment


def normalize_route_path(path: str) -> str:
    segments = [_bracket(segment) for segment in _split(path)]
    return "/" + "/".join(segments)


def route_segments(path: str) -> List[str]:
    return _split(normalize_route_path(path))


def dynamic_segment_names(path: str) -> List[str]:
    names = []
    for segment in route_segments(path):
        if segment.startswith("[") and segment.endswith("]"):
            names.append(segment[1:-1])
    return names


def breadcrumbs(path: str) -> List[Dict[str, str]]:
    crumbs: List[Dict[str, str]] = []
    href = ""
    for segment in route_segments(path):
        href = f"{href}/{segment}"
        crumbs.append({"label": segment, "href": href})
    return crumbs


def archive_slug(path: str) -> str:
    """Flatten a normalized route path into a single directory name."""
    return normalize_route_path(path).replace("/", "_")


def normalize_api_path(path: str) -> str:
    segments = _split(path)
    if not segments or segments[0] != "api":
        segments.insert(0, "api")
    return "/" + "/".join(segments)


def api_route_segments(api_key: str) -> List[str]:
    segments = _split(normalize_api_path(api_key))
    return [_bracket(segment) for segment in segments[1:]]
