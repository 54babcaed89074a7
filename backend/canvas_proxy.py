"""Same-origin pass-through to the Canvas REST API."""

from __future__ import annotations

import json
import logging
from http.client import HTTPException
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from backend.canvas_client import CanvasApiError, normalize_canvas_base_url

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_SECONDS = 20
FORWARDED_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})


def _decode_payload(raw: bytes, url: str) -> Any:
    text = raw.decode("utf-8", errors="replace")
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise CanvasApiError(f"canvas response was not valid JSON for {url}") from exc


def forward_canvas_request(
    *,
    base_url: str,
    method: str,
    path: str,
    query: str,
    authorization: str,
    user_agent: str,
    body: Any = None,
) -> tuple[int, Any]:
    """
    Forward one request to Canvas and relay its status and JSON body.

    The caller's Authorization header is passed through untouched. Upstream
    error statuses are returned, not raised; only transport failures and
    non-JSON bodies raise ``CanvasApiError``.
    """
    verb = method.upper()
    if verb not in FORWARDED_METHODS:
        raise ValueError(f"method {method} is not forwarded")

    url = f"{normalize_canvas_base_url(base_url)}/api/v1/{path.lstrip('/')}"
    if query:
        url = f"{url}?{query.lstrip('?')}"

    data = None
    if verb != "GET" and body is not None:
        data = json.dumps(body).encode("utf-8")

    req = Request(
        url=url,
        data=data,
        headers={
            "Authorization": authorization,
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": user_agent,
        },
        method=verb,
    )
    logger.info("proxying %s %s", verb, url)
    try:
        with urlopen(req, timeout=_DEFAULT_TIMEOUT_SECONDS) as resp:
            return resp.status, _decode_payload(resp.read(), url)
    except HTTPError as exc:
        raw = exc.read() if exc.fp is not None else b""
        return exc.code, _decode_payload(raw, url)
    except URLError as exc:
        raise CanvasApiError(f"canvas proxy request failed for {url}: {exc.reason}") from exc
    except (OSError, HTTPException) as exc:
        raise CanvasApiError(f"canvas proxy request failed for {url}: {exc!r}") from exc
