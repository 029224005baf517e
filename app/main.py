"""FastAPI app exposing the forge contract pipeline."""

from __future__ import annotations

import os
import re
import sys
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

import logging

from app.doctype_docs import generate_doctype_docs
from app.frappe_client import FrappeMetadataSource
from contract_build import parse_preset
from pipeline_errors import (
    DESCRIPTOR_NOT_FOUND,
    SYNC_PATH_INVALID,
    SYNC_WRITE_FAILED,
    PipelineError,
    describe_error,
)
from script_extract import lint_script
from ui_pipeline import UiPipeline

logger = logging.getLogger("forge.api")


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    global _pipeline
    yield
    pipeline, _pipeline = _pipeline, None
    aclose = getattr(pipeline.source, "aclose", None) if pipeline is not None else None
    if aclose is not None:
        await aclose()
        logger.info("source_closed")


app = FastAPI(title="forge", lifespan=_lifespan)
logging.basicConfig(level=logging.INFO)

_LOCAL_CORS_ORIGINS = {
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:8080",
    "http://127.0.0.1:8080",
}
_EXTRA_CORS_ORIGINS = {
    origin.strip().rstrip("/")
    for origin in os.getenv("FORGE_CORS_ORIGINS", "").split(",")
    if origin.strip()
}
_CORS_ORIGINS = _LOCAL_CORS_ORIGINS | _EXTRA_CORS_ORIGINS
_LOCAL_CORS_REGEX = re.compile(r"^http://(localhost|127\.0\.0\.1):\d+$")

app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted(_CORS_ORIGINS),
    allow_origin_regex=_LOCAL_CORS_REGEX.pattern,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_pipeline: UiPipeline | None = None

_ERROR_STATUS = {
    DESCRIPTOR_NOT_FOUND: 404,
    SYNC_PATH_INVALID: 400,
    SYNC_WRITE_FAILED: 500,
}


def _get_pipeline() -> UiPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = UiPipeline(FrappeMetadataSource())
    return _pipeline


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _pipeline_error_response(exc: PipelineError) -> JSONResponse:
    status = _ERROR_STATUS.get(exc.code, 502)
    logger.warning("pipeline_error code=%s operation=%s status=%s", exc.code, exc.operation, status)
    return _error_response(exc.code, exc.message, None, describe_error(exc), status=status)


async def _safe_json(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _preset_or_error(value):
    try:
        return parse_preset(value), None
    except ValueError as exc:
        return None, _error_response("PRESET_INVALID", str(exc), "preset", status=400)


def _pipeline_or_error():
    try:
        return _get_pipeline(), None
    except ValueError as exc:
        return None, _error_response("SOURCE_NOT_CONFIGURED", str(exc), None, status=503)


@app.get("/health")
async def health() -> dict:
    return {"ok": True, "service": "forge"}


@app.get("/doctypes/{doctype}/contract")
async def get_contract(doctype: str, preset: str | None = None):
    chosen, err = _preset_or_error(preset)
    if err:
        return err
    pipeline, err = _pipeline_or_error()
    if err:
        return err
    try:
        contract = await pipeline.build_contract(doctype, chosen)
    except PipelineError as exc:
        return _pipeline_error_response(exc)
    return _ok_response({"contract": contract.to_dict(), "contract_hash": contract.contract_hash})


@app.get("/doctypes/{doctype}/files")
async def get_files(doctype: str, preset: str | None = None):
    chosen, err = _preset_or_error(preset)
    if err:
        return err
    pipeline, err = _pipeline_or_error()
    if err:
        return err
    try:
        files = await pipeline.generate_files(doctype, chosen)
    except PipelineError as exc:
        return _pipeline_error_response(exc)
    return _ok_response({"files": [f.to_dict() for f in files]})


@app.post("/doctypes/{doctype}/sync")
async def sync_doctype(doctype: str, request: Request):
    body = await _safe_json(request)
    chosen, err = _preset_or_error(body.get("preset"))
    if err:
        return err
    destination = body.get("destination")
    if destination is not None and (not isinstance(destination, str) or not destination.strip()):
        return _error_response("DESTINATION_INVALID", "destination must be a non-empty string", "destination", status=400)
    pipeline, err = _pipeline_or_error()
    if err:
        return err
    try:
        result = await pipeline.sync_files(doctype, chosen, destination)
    except PipelineError as exc:
        return _pipeline_error_response(exc)
    return _ok_response(result)


@app.post("/doctypes/{doctype}/invalidate")
async def invalidate_doctype(doctype: str, request: Request):
    body = await _safe_json(request)
    preset = body.get("preset")
    if preset is not None:
        chosen, err = _preset_or_error(preset)
        if err:
            return err
        preset = chosen
    pipeline, err = _pipeline_or_error()
    if err:
        return err
    removed = pipeline.invalidate(doctype, preset)
    return _ok_response({"removed": removed})


@app.get("/doctypes/{doctype}/docs")
async def get_docs(doctype: str, preset: str | None = None):
    chosen, err = _preset_or_error(preset)
    if err:
        return err
    pipeline, err = _pipeline_or_error()
    if err:
        return err
    try:
        contract = await pipeline.build_contract(doctype, chosen)
    except PipelineError as exc:
        return _pipeline_error_response(exc)
    return PlainTextResponse(generate_doctype_docs(contract), media_type="text/markdown")


@app.post("/scripts/lint")
async def lint(request: Request):
    body = await _safe_json(request)
    script = body.get("script")
    doctype = body.get("doctype")
    if not isinstance(script, str):
        return _error_response("SCRIPT_REQUIRED", "script must be a string", "script", status=400)
    if not isinstance(doctype, str) or not doctype.strip():
        return _error_response("DOCTYPE_REQUIRED", "doctype required", "doctype", status=400)
    return _ok_response({"lint": lint_script(script, doctype.strip())})
