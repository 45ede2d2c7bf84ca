"""
bpm_portal/main.py
FastAPI application, SQLite-backed variant.
Endpoints: GET /, GET|PUT /api/data, GET|POST /api/tickets, PUT|DELETE /api/tickets/{id},
GET /api/activity, GET|PUT /api/settings, POST /api/ai/prompt, GET /health
"""

from contextlib import asynccontextmanager
from typing import Any
import logging

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response

from bpm_portal.ai_proxy import (
    ANTHROPIC_KEY_SETTING,
    KEY_HINT_PREFIXES,
    OPENAI_KEY_SETTING,
    mask_key,
    run_prompt,
)
from bpm_portal.common.http import (
    index_response,
    install_http_handlers,
    parse_json_body,
    validate_body,
)
from bpm_portal.config import build_ai_timeout, build_db_path, build_index_path
from bpm_portal.models import (
    ActivityEntry,
    PromptRequest,
    SettingsUpdate,
    SyncSnapshot,
    TicketCreate,
    TicketPatch,
)
from bpm_portal.storage.sqlite_store import PortalStore, TicketExistsError

logger = logging.getLogger(__name__)
load_dotenv()

DEFAULT_THEME = "marshmallow"


def build_store() -> PortalStore:
    """Create the SQLite store at the configured path and ensure its schema."""
    store = PortalStore(build_db_path())
    store.initialize()
    return store


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan hook: open the store once per process."""
    app.state.store = build_store()
    logger.info("Portal database ready at %s.", app.state.store.db_path)
    yield


app = FastAPI(title="BPM Portal", lifespan=lifespan, redirect_slashes=False)
install_http_handlers(app)


def get_store(request: Request) -> PortalStore:
    return request.app.state.store


def _activity_payload(entry: ActivityEntry | None) -> dict[str, Any] | None:
    return entry.model_dump() if entry is not None else None


def apply_settings(store: PortalStore, body: SettingsUpdate) -> None:
    """Write a settings update: truthy values upsert, a present but empty key field deletes."""
    if body.theme:
        store.set_setting("theme", body.theme)
    for field_name in (ANTHROPIC_KEY_SETTING, OPENAI_KEY_SETTING):
        if field_name not in body.model_fields_set:
            continue
        value = getattr(body, field_name)
        if value:
            store.set_setting(field_name, value)
        else:
            store.delete_setting(field_name)


@app.get("/")
def index() -> Response:
    """Serve the portal UI page."""
    return index_response(build_index_path())


@app.get("/api/data")
def read_all_data(request: Request) -> dict[str, Any]:
    """Return tickets and recent activity as one consistent snapshot."""
    snapshot = get_store(request).snapshot()
    return {"tickets": snapshot["tickets"], "activity": snapshot["activity"], "kbNotes": {}}


@app.put("/api/data")
async def write_all_data(request: Request) -> dict[str, bool]:
    """
    Replace all tickets and activity with the client snapshot (full sync).

    Raises:
        HTTPException 400: Malformed body.
    """
    payload = await parse_json_body(request)
    snapshot = validate_body(SyncSnapshot, payload)
    await run_in_threadpool(
        get_store(request).full_sync,
        tickets=[ticket.model_dump(exclude={"activity"}) for ticket in snapshot.tickets or []],
        activity=[entry.model_dump() for entry in snapshot.activity or []],
    )
    return {"ok": True}


@app.get("/api/tickets")
def list_tickets(request: Request) -> list[dict[str, Any]]:
    return get_store(request).list_tickets()


@app.post("/api/tickets", status_code=201)
async def create_ticket(request: Request) -> dict[str, Any]:
    """
    Create a ticket, optionally logging a client-supplied `_activity` entry.

    Returns:
        The stored ticket with defaults applied.
    Raises:
        HTTPException 400: Malformed body or missing id/title.
        HTTPException 409: Ticket id already exists.
    """
    payload = await parse_json_body(request)
    body = validate_body(TicketCreate, payload)
    try:
        return await run_in_threadpool(
            get_store(request).insert_ticket,
            body.ticket_fields(),
            activity=_activity_payload(body.activity),
        )
    except TicketExistsError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.put("/api/tickets/{ticket_id}")
async def update_ticket(ticket_id: str, request: Request) -> dict[str, Any]:
    """
    Partially update a ticket; omitted fields keep their stored values.

    Raises:
        HTTPException 400: Malformed body.
        HTTPException 404: Unknown ticket id.
    """
    payload = await parse_json_body(request)
    body = validate_body(TicketPatch, payload)
    ticket = await run_in_threadpool(
        get_store(request).update_ticket,
        ticket_id,
        body.ticket_fields(),
        activity=_activity_payload(body.activity),
    )
    if ticket is None:
        raise HTTPException(status_code=404, detail="Ticket not found")
    return ticket


@app.delete("/api/tickets/{ticket_id}")
async def delete_ticket(ticket_id: str, request: Request) -> dict[str, Any]:
    """
    Delete a ticket. An unparsable body is treated as empty.

    Raises:
        HTTPException 404: Unknown ticket id.
    """
    payload = await parse_json_body(request, lenient=True)
    activity = payload.get("_activity")
    entry = validate_body(ActivityEntry, activity) if isinstance(activity, dict) else None
    deleted = await run_in_threadpool(
        get_store(request).delete_ticket, ticket_id, activity=_activity_payload(entry)
    )
    if not deleted:
        raise HTTPException(status_code=404, detail="Ticket not found")
    return {"ok": True, "deleted": ticket_id}


@app.get("/api/activity")
def list_activity(request: Request) -> list[dict[str, Any]]:
    return get_store(request).recent_activity()


@app.get("/api/settings")
def read_settings(request: Request) -> dict[str, Any]:
    """Return settings with API keys reduced to masked hints."""
    store = get_store(request)
    theme = store.get_setting("theme")
    anthropic_key = store.get_setting(ANTHROPIC_KEY_SETTING)
    openai_key = store.get_setting(OPENAI_KEY_SETTING)
    return {
        "theme": theme or DEFAULT_THEME,
        "hasAnthropicKey": bool(anthropic_key),
        "anthropicKeyHint": mask_key(anthropic_key, KEY_HINT_PREFIXES[ANTHROPIC_KEY_SETTING]),
        "hasOpenAIKey": bool(openai_key),
        "openaiKeyHint": mask_key(openai_key, KEY_HINT_PREFIXES[OPENAI_KEY_SETTING]),
    }


@app.put("/api/settings")
async def write_settings(request: Request) -> dict[str, bool]:
    """
    Update settings. A key field that is present but empty removes the stored key.

    Raises:
        HTTPException 400: Malformed body.
    """
    payload = await parse_json_body(request)
    body = validate_body(SettingsUpdate, payload)
    await run_in_threadpool(apply_settings, get_store(request), body)
    return {"ok": True}


@app.post("/api/ai/prompt")
async def ai_prompt(request: Request) -> JSONResponse:
    """
    Proxy one chat-completion request to Anthropic (default) or OpenAI.

    Returns:
        200 with `{ok, content, usage}`, or the upstream error status.
    Raises:
        HTTPException 400: Malformed body or no API key available.
    """
    payload = await parse_json_body(request)
    prompt = validate_body(PromptRequest, payload)
    timeout = build_ai_timeout()
    try:
        outcome = await run_in_threadpool(run_prompt, prompt, get_store(request), timeout=timeout)
    except RuntimeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JSONResponse(status_code=outcome.status, content=outcome.body)


@app.get("/health")
def health_check(request: Request) -> dict[str, Any]:
    """Return service health with the database path and ticket count."""
    store = get_store(request)
    return {"status": "ok", "database": store.db_path, "tickets": store.count_tickets()}
