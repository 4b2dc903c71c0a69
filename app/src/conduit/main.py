"""
Conduit: LLM streaming sidecar.

Serves the canonical event stream over HTTP for the desktop client:
- POST /v1/llm/generate   (SSE: llm:stream / llm:error / llm:done)
- GET  /v1/llm/providers
- GET  /health
- POST /config/reload

Run: uv run uvicorn conduit.main:app --host 127.0.0.1 --port 8765
"""

from __future__ import annotations

import logging
import os

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

import conduit.core.config as _config_mod
from conduit.core.config import reload_config
from conduit.core.logging import setup_logging
from conduit.core.metrics import metrics
from conduit.http.stream_api import create_router

VERSION = "0.1.0"

# --- Setup ---
setup_logging()
logger = logging.getLogger("conduit")

# --- App ---
app = FastAPI(title="Conduit", version=VERSION)
app.include_router(create_router())


@app.on_event("startup")
async def startup():
    cfg = _config_mod.config
    logger.info(
        "Conduit %s ready (default LLM=%s/%s, retries=%s)",
        VERSION,
        cfg.llm.provider,
        cfg.llm.model,
        cfg.llm.max_retries,
    )


@app.get("/health")
async def health():
    """Health check: status plus in-process metrics."""
    return JSONResponse(
        {
            "status": "ok",
            "version": VERSION,
            "metrics": metrics.snapshot(),
        }
    )


@app.post("/config/reload")
async def config_reload(request_body: dict | None = None):
    """Re-read env defaults (or apply the provided overrides first)."""
    if request_body:
        for key, value in request_body.items():
            os.environ[key] = str(value)

    new_config = reload_config()
    logger.info(
        "Config reloaded (LLM=%s/%s, timeout=%ss)",
        new_config.llm.provider,
        new_config.llm.model,
        new_config.llm.timeout,
    )
    return JSONResponse({"status": "reloaded"})


def run() -> None:
    server = _config_mod.config.server
    uvicorn.run("conduit.main:app", host=server.host, port=server.port)


if __name__ == "__main__":
    run()
