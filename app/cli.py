"""Command line entry point: apply flow nodes locally or against a running server."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, List

import httpx

from manifest_store import MANIFEST_KINDS

from app.dispatcher import run_node
from app.workspace import Workspace, load_env_file


def _read_node(source: str) -> Any:
    if source == "-":
        return json.load(sys.stdin)
    with open(source, encoding="utf-8") as handle:
        return json.load(handle)


def _print(body: dict) -> None:
    print(json.dumps(body, indent=2, ensure_ascii=False, sort_keys=True))


def cmd_apply(args: argparse.Namespace) -> int:
    try:
        node = _read_node(args.file)
    except (OSError, ValueError) as exc:
        _print({"ok": False, "error": f"Cannot read node: {exc}", "errors": [], "warnings": []})
        return 1
    if args.url:
        try:
            response = httpx.post(f"{args.url.rstrip('/')}/api/generate", json=node, timeout=args.timeout)
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            _print({"ok": False, "error": f"Request failed: {exc}", "errors": [], "warnings": []})
            return 1
    else:
        _, body = run_node(Workspace.from_env(), node)
    _print(body)
    return 0 if body.get("ok") else 1


def cmd_show(args: argparse.Namespace) -> int:
    if args.url:
        try:
            response = httpx.get(f"{args.url.rstrip('/')}/api/manifests/{args.kind}", timeout=args.timeout)
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            _print({"ok": False, "error": f"Request failed: {exc}", "errors": [], "warnings": []})
            return 1
    else:
        manifest, head = Workspace.from_env().store.read_with_head(args.kind)
        body = {"ok": True, "kind": args.kind, "head": head, "manifest": manifest}
    _print(body)
    return 0 if body.get("ok") else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="nodesmith", description="Compile flow nodes into application source.")
    parser.add_argument("--workspace", help="application tree root (defaults to NODESMITH_WORKSPACE or cwd)")
    parser.add_argument("-v", "--verbose", action="store_true")
    remote = argparse.ArgumentParser(add_help=False)
    remote.add_argument("--url", help="talk to a running nodesmith server instead of the local workspace")
    remote.add_argument("--timeout", type=float, default=120.0, help="HTTP timeout in seconds")
    sub = parser.add_subparsers(dest="command", required=True)

    apply_parser = sub.add_parser("apply", parents=[remote], help="apply one flow node read from a file or '-' for stdin")
    apply_parser.add_argument("file")
    apply_parser.set_defaults(func=cmd_apply)

    show_parser = sub.add_parser("show", parents=[remote], help="print one manifest")
    show_parser.add_argument("kind", choices=MANIFEST_KINDS)
    show_parser.set_defaults(func=cmd_show)
    return parser


def main(argv: List[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    load_env_file(Path.cwd() / "app" / ".env")
    if args.workspace:
        os.environ["NODESMITH_WORKSPACE"] = args.workspace
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else os.getenv("NODESMITH_LOG_LEVEL", "WARNING").upper(),
        stream=sys.stderr,
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
