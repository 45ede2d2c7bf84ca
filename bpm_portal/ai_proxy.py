"""
bpm_portal/ai_proxy.py
Chat-completion proxy for Anthropic and OpenAI.
Exports: PromptOutcome, mask_key, resolve_api_key, build_provider_request, post_json, run_prompt
"""

import json
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Protocol

from bpm_portal.models import PromptRequest

logger = logging.getLogger(__name__)

PROVIDER_ANTHROPIC = "anthropic"
PROVIDER_OPENAI = "openai"
ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-20250514"
DEFAULT_OPENAI_MODEL = "gpt-4o"
MAX_TOKENS = 1024

ANTHROPIC_KEY_SETTING = "anthropic_api_key"
OPENAI_KEY_SETTING = "openai_api_key"
KEY_HINT_PREFIXES = {ANTHROPIC_KEY_SETTING: "sk-ant-", OPENAI_KEY_SETTING: "sk-"}
KEY_HINT_SUFFIX_LENGTH = 4


class SettingsReader(Protocol):
    def get_setting(self, key: str) -> str | None: ...


@dataclass
class PromptOutcome:
    """Terminal result of one proxy call: HTTP status plus JSON body for the caller."""

    status: int
    body: dict[str, Any]


def mask_key(value: str | None, prefix: str) -> str:
    """
    Return a display hint for a stored secret.

    At most the last four characters are shown, and never the whole value:
    a secret of four characters or fewer gets the prefix alone.
    """
    if not value:
        return ""
    if len(value) <= KEY_HINT_SUFFIX_LENGTH:
        return f"{prefix}•••"
    return f"{prefix}•••{value[-KEY_HINT_SUFFIX_LENGTH:]}"


def normalize_provider(provider: str | None) -> str:
    return PROVIDER_OPENAI if provider == PROVIDER_OPENAI else PROVIDER_ANTHROPIC


def resolve_api_key(provider: str, request_key: str | None, settings: SettingsReader) -> str:
    """
    Pick the API key for a provider.

    OpenAI keys come only from server settings; Anthropic prefers the key in the
    request body and falls back to server settings.

    Raises:
        RuntimeError: When no key is available; the message says where to add one.
    """
    if provider == PROVIDER_OPENAI:
        key = settings.get_setting(OPENAI_KEY_SETTING)
        if not key:
            raise RuntimeError("No OpenAI API key configured. Add one in the Prompt Lab settings.")
        return key
    key = request_key or settings.get_setting(ANTHROPIC_KEY_SETTING)
    if not key:
        raise RuntimeError("No Anthropic API key configured. Add one in the Prompt Lab settings.")
    return key


def build_provider_request(
    provider: str, request: PromptRequest, api_key: str
) -> tuple[str, dict[str, str], dict[str, Any]]:
    """
    Build URL, headers, and JSON payload for one provider call.

    Returns:
        Tuple of (url, headers, payload).
    """
    messages = [{"role": m.role, "content": m.content} for m in (request.messages or [])]
    if provider == PROVIDER_OPENAI:
        if request.system:
            messages.insert(0, {"role": "system", "content": request.system})
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {api_key}"}
        payload = {
            "model": request.model or DEFAULT_OPENAI_MODEL,
            "max_tokens": MAX_TOKENS,
            "messages": messages,
        }
        return OPENAI_API_URL, headers, payload
    headers = {
        "Content-Type": "application/json",
        "x-api-key": api_key,
        "anthropic-version": ANTHROPIC_VERSION,
    }
    payload = {
        "model": request.model or DEFAULT_ANTHROPIC_MODEL,
        "max_tokens": MAX_TOKENS,
        "system": request.system or "",
        "messages": messages,
    }
    return ANTHROPIC_API_URL, headers, payload


def post_json(
    url: str,
    headers: dict[str, str],
    payload: dict[str, Any],
    timeout: float | None = None,
) -> tuple[int, bytes]:
    """
    POST a JSON payload once and return (status, raw body).

    HTTP error statuses are returned, not raised. Transport failures raise
    `urllib.error.URLError` / `OSError`.
    """
    data = json.dumps(payload).encode("utf-8")
    request = urllib.request.Request(url, data=data, headers=headers, method="POST")
    kwargs: dict[str, Any] = {}
    if timeout is not None:
        kwargs["timeout"] = timeout
    try:
        with urllib.request.urlopen(request, **kwargs) as response:  # noqa: S310 - fixed provider URLs
            return response.status, response.read()
    except urllib.error.HTTPError as exc:
        return exc.code, exc.read()


def _extract_content(provider: str, parsed: dict[str, Any]) -> str:
    if provider == PROVIDER_OPENAI:
        choices = parsed.get("choices") or [{}]
        return (choices[0].get("message") or {}).get("content") or ""
    blocks = parsed.get("content") or [{}]
    return blocks[0].get("text") or ""


def _error_message(parsed: Any, status: int) -> str:
    error = parsed.get("error") if isinstance(parsed, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str) and error:
        return error
    return f"API error {status}"


def run_prompt(
    request: PromptRequest,
    settings: SettingsReader,
    *,
    timeout: float | None = None,
) -> PromptOutcome:
    """
    Forward one prompt to the selected provider.

    Args:
        request: Validated prompt body.
        settings: Source of server-held API keys.
        timeout: Optional outbound timeout in seconds.
    Returns:
        PromptOutcome with 200 + content, upstream error status, or 500.
    Raises:
        RuntimeError: When no API key is available (no network call is made).
    """
    provider = normalize_provider(request.provider)
    api_key = resolve_api_key(provider, request.apiKey, settings)
    url, headers, payload = build_provider_request(provider, request, api_key)

    try:
        status, raw = post_json(url, headers, payload, timeout=timeout)
    except (urllib.error.URLError, OSError) as exc:
        reason = getattr(exc, "reason", None) or exc
        logger.warning("%s request failed: %s", provider, reason)
        return PromptOutcome(status=500, body={"error": str(reason)})

    try:
        parsed = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        logger.warning("%s returned an unparsable body (status %s).", provider, status)
        return PromptOutcome(status=500, body={"error": "Failed to parse API response"})

    if status >= 400:
        message = _error_message(parsed, status)
        logger.warning("%s returned %s: %s", provider, status, message)
        return PromptOutcome(status=status, body={"error": message})

    if not isinstance(parsed, dict):
        return PromptOutcome(status=500, body={"error": "Failed to parse API response"})
    return PromptOutcome(
        status=200,
        body={"ok": True, "content": _extract_content(provider, parsed), "usage": parsed.get("usage")},
    )
