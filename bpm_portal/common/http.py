"""
bpm_portal/common/http.py
HTTP glue shared by the SQLite and JSON-file apps.
Exports: CORS_HEADERS, install_http_handlers, parse_json_body, validate_body, index_response
"""

import logging
from pathlib import Path
from typing import Any, TypeVar

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

ModelT = TypeVar("ModelT", bound=BaseModel)


class CorsAndErrorsMiddleware(BaseHTTPMiddleware):
    """Answer every OPTIONS with 204, attach CORS headers, and turn crashes into JSON 500s."""

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=CORS_HEADERS)
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.exception("Unhandled error on %s %s.", request.method, request.url.path)
            response = JSONResponse(status_code=500, content={"error": str(exc)})
        response.headers.update(CORS_HEADERS)
        return response


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Unknown path and known path with another method both read as "not found".
    if exc.status_code in (404, 405) and exc.detail in ("Not Found", "Method Not Allowed"):
        logger.info("No route for %s %s.", request.method, request.url.path)
        return JSONResponse(status_code=404, content={"error": "Not found"})
    logger.warning(
        "%s %s failed with %s: %s", request.method, request.url.path, exc.status_code, exc.detail
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


def install_http_handlers(app: FastAPI) -> None:
    """Register the JSON error envelope and CORS/preflight middleware on an app."""
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_middleware(CorsAndErrorsMiddleware)


async def parse_json_body(request: Request, *, lenient: bool = False) -> dict[str, Any]:
    """
    Parse an optional JSON object body.

    Args:
        request: Incoming FastAPI request.
        lenient: Return {} instead of failing on malformed input.
    Returns:
        Parsed JSON dict, or {} when the body is empty.
    Raises:
        HTTPException 400: If a non-empty body is not a JSON object (unless lenient).
    """
    body = await request.body()
    if not body.strip():
        return {}
    try:
        payload = await request.json()
    except Exception as exc:
        if lenient:
            return {}
        raise HTTPException(status_code=400, detail="Invalid JSON body.") from exc
    if not isinstance(payload, dict):
        if lenient:
            return {}
        raise HTTPException(status_code=400, detail="JSON body must be an object.")
    return payload


def validate_body(model: type[ModelT], payload: dict[str, Any]) -> ModelT:
    """Validate a parsed body, mapping the first pydantic error to a 400."""
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or "body"
        raise HTTPException(status_code=400, detail=f"Invalid {location}: {first['msg']}") from exc


def index_response(index_path: Path) -> Response:
    """Serve the UI page, or a plain 500 when it cannot be read."""
    try:
        html = index_path.read_text(encoding="utf-8")
    except OSError:
        logger.exception("Failed to read index page: %s", index_path)
        return PlainTextResponse("Internal Server Error", status_code=500)
    return HTMLResponse(html)
