"""
FastAPI application for the PlantUML → draw.io converter.

Stateless JSON API over puml2drawio.parse/render: detect a diagram kind,
or convert PlantUML text into draw.io XML plus an SVG preview.
"""

from __future__ import annotations

import asyncio
import os
import sys
import traceback
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from puml2drawio.converter import (
    ConversionError,
    NoElementsFoundError,
    UnrecognizedSyntaxError,
    parse,
    render,
)
from puml2drawio.diagram_model import summarize
from puml2drawio.plantuml_to_model import detect_diagram_type

env_path = Path(".env")
if not env_path.exists():
    for parent in Path.cwd().parents:
        candidate = parent / ".env"
        if candidate.exists():
            env_path = candidate
            break
if env_path.exists():
    load_dotenv(env_path)


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


DEFAULT_STRICT = _env_flag("PUML2DRAWIO_STRICT")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    print(f"[app] Converter ready (strict={DEFAULT_STRICT})", file=sys.stderr)
    yield
    print("[app] Shutdown complete", file=sys.stderr)


app = FastAPI(title="puml2drawio — PlantUML to draw.io", lifespan=lifespan)


def _convert_sync(text: str, strict: bool, compact: bool, compress: bool):
    model = parse(text, strict=strict)
    return model, render(model, compact=compact, compress=compress)


async def _read_text(request: Request) -> tuple[dict, str]:
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be JSON")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    text = body.get("text") or ""
    if not isinstance(text, str) or not text.strip():
        raise HTTPException(status_code=400, detail="Please enter PlantUML code")
    return body, text


# ──────────────────────────────────────────────────────────────────
# REST API
# ──────────────────────────────────────────────────────────────────

@app.get("/api/health")
async def api_health():
    return JSONResponse(content={"ok": True, "strict": DEFAULT_STRICT})


@app.post("/api/detect")
async def api_detect(request: Request):
    _, text = await _read_text(request)
    return JSONResponse(content={"kind": detect_diagram_type(text)})


@app.post("/api/convert")
async def api_convert(request: Request):
    body, text = await _read_text(request)
    strict = bool(body.get("strict", DEFAULT_STRICT))

    loop = asyncio.get_event_loop()
    try:
        model, outputs = await loop.run_in_executor(
            None, _convert_sync, text, strict,
            bool(body.get("compact", False)), bool(body.get("compress", False)),
        )
    except UnrecognizedSyntaxError as exc:
        raise HTTPException(status_code=422, detail={
            "error": str(exc), "diagnostics": exc.diagnostics,
        })
    except NoElementsFoundError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except ConversionError as exc:
        traceback.print_exc(file=sys.stderr)
        raise HTTPException(status_code=500, detail=str(exc))

    print(f"[app] Converted {summarize(model)}", file=sys.stderr)
    return JSONResponse(content={
        "kind": model.kind,
        "title": model.title,
        "nodes": sum(1 for n in model.nodes if not n.is_marker),
        "edges": len(model.edges),
        "diagnostics": model.diagnostics,
        "xml": outputs["xml"],
        "preview": outputs["preview"],
    })


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server.app:app",
        host=os.environ.get("PUML2DRAWIO_HOST", "0.0.0.0"),
        port=int(os.environ.get("PUML2DRAWIO_PORT", "8000")),
        reload=True,
    )
