"""FastAPI ingress for the nodesmith resource compiler."""

from __future__ import annotations

import os
import sys
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.workspace import load_env_file

load_env_file(ROOT / "app" / ".env")

import logging

import anyio

from manifest_store import MANIFEST_KINDS
from app.dispatcher import run_node
from app.workspace import Workspace

logger = logging.getLogger("nodesmith")
logging.basicConfig(level=os.getenv("NODESMITH_LOG_LEVEL", "INFO").upper())

_CORS_ORIGINS = {
    origin.strip()
    for origin in os.getenv("NODESMITH_CORS_ORIGINS", "").split(",")
    if origin.strip()
}

app = FastAPI(title="nodesmith")
app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted(_CORS_ORIGINS),
    allow_origin_regex=r"http://localhost:\d+|http://127\.0\.0\.1:\d+",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _workspace() -> Workspace:
    ws = getattr(app.state, "workspace", None)
    if ws is None:
        ws = Workspace.from_env()
        app.state.workspace = ws
        logger.info("workspace root %s", ws.root)
    return ws


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    body = {
        "ok": False,
        "error": message,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


@app.post("/api/generate")
async def generate(request: Request) -> JSONResponse:
    try:
        raw = await request.json()
    except ValueError as exc:
        # JSONDecodeError and UnicodeDecodeError
        return _error_response("NODE_INVALID", f"Request body is not valid JSON: {exc}")
    ws = _workspace()
    status, body = await anyio.to_thread.run_sync(run_node, ws, raw)
    return JSONResponse(jsonable_encoder(body), status_code=status)


@app.get("/api/manifests/{kind}")
async def get_manifest(kind: str) -> JSONResponse:
    if kind not in MANIFEST_KINDS:
        return _error_response(
            "MANIFEST_KIND_UNKNOWN",
            f"Unknown manifest kind: {kind}",
            "kind",
            {"supported": list(MANIFEST_KINDS)},
            status=404,
        )
    ws = _workspace()
    manifest, head = ws.store.read_with_head(kind)
    body = {"ok": True, "kind": kind, "head": head, "manifest": manifest}
    return JSONResponse(jsonable_encoder(body), status_code=200)
