"""
bpm_portal/file_main.py
FastAPI application, flat JSON file variant.
Endpoints: GET /, GET|PUT /api/data, GET|PUT /api/settings, GET /health

The settings document is stored as sent. On read, any `anthropic_api_key` or
`openai_api_key` string in it is replaced with a masked hint; documents
without those fields are returned byte for byte.
"""

from contextlib import asynccontextmanager
import json
import logging

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response

from bpm_portal.ai_proxy import KEY_HINT_PREFIXES, mask_key
from bpm_portal.common.http import index_response, install_http_handlers, parse_json_body
from bpm_portal.config import build_data_file_path, build_index_path, build_settings_file_path
from bpm_portal.storage.file_store import FileStore

logger = logging.getLogger(__name__)
load_dotenv()


def build_store() -> FileStore:
    store = FileStore(build_data_file_path(), build_settings_file_path())
    store.initialize()
    return store


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan hook: resolve JSON document paths once per process."""
    app.state.store = build_store()
    logger.info("Portal JSON documents at %s.", app.state.store.data_path.parent)
    yield


app = FastAPI(title="BPM Portal (JSON files)", lifespan=lifespan, redirect_slashes=False)
install_http_handlers(app)


def get_store(request: Request) -> FileStore:
    return request.app.state.store


def _json_text(text: str) -> Response:
    return Response(content=text, media_type="application/json")


def masked_settings_response(text: str) -> Response:
    """Return the settings text, swapping stored API keys for hints when present."""
    try:
        document = json.loads(text)
    except ValueError:
        return _json_text(text)
    if not isinstance(document, dict):
        return _json_text(text)
    secret_fields = [
        name for name in KEY_HINT_PREFIXES if isinstance(document.get(name), str) and document[name]
    ]
    if not secret_fields:
        return _json_text(text)
    for name in secret_fields:
        document[name] = mask_key(document[name], KEY_HINT_PREFIXES[name])
    return JSONResponse(document)


@app.get("/")
def index() -> Response:
    return index_response(build_index_path())


@app.get("/api/data")
def read_data(request: Request) -> Response:
    """Return the stored data document as written, or the empty default shape."""
    return _json_text(get_store(request).read_data_text())


@app.put("/api/data")
async def write_data(request: Request) -> dict[str, bool]:
    """
    Overwrite the data document with the request body.

    Raises:
        HTTPException 400: Malformed body.
    """
    payload = await parse_json_body(request)
    await run_in_threadpool(get_store(request).write_data, payload)
    return {"ok": True}


@app.get("/api/settings")
def read_settings(request: Request) -> Response:
    return masked_settings_response(get_store(request).read_settings_text())


@app.put("/api/settings")
async def write_settings(request: Request) -> dict[str, bool]:
    payload = await parse_json_body(request)
    await run_in_threadpool(get_store(request).write_settings, payload)
    return {"ok": True}


@app.get("/health")
def health_check(request: Request) -> dict[str, str]:
    store = get_store(request)
    return {
        "status": "ok",
        "storage": "json",
        "dataFile": str(store.data_path),
        "settingsFile": str(store.settings_path),
    }
