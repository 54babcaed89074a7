"""API Gateway Lambda runtime handler for the CourseCompanion backend."""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Dict, Mapping
from urllib.parse import urlencode

from backend.canvas_client import (
    CanvasAccessDeniedError,
    CanvasApiError,
    canvas_base_url_from_env,
    canvas_user_agent_from_env,
    fetch_active_courses,
    fetch_current_user,
)
from backend.canvas_proxy import FORWARDED_METHODS, forward_canvas_request
from backend.chat import ChatError, chat_reply, format_course_context
from backend.course_data import fetch_all_course_data
from coursecompanion.models.canvas import Course, ModelValidationError
from snapsyllabus.accounts import (
    AccountExistsError,
    AccountValidationError,
    InvalidCredentialsError,
    ProfileNotFoundError,
    S3UserProfileStore,
    SessionClaims,
    SessionConfigError,
    SessionTokenConfig,
    SessionTokenError,
    UserProfile,
    extract_bearer_token,
    google_sign_in,
    link_canvas_token,
    log_in,
    mint_session_token,
    sign_up,
    verify_session_token,
)

logger = logging.getLogger(__name__)

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_CANVAS_PROXY_PREFIX = "/canvas-api/"
_DEFAULT_ALLOW_HEADERS = "Content-Type,Authorization,X-Amz-Date,X-Api-Key,X-Amz-Security-Token"


def _json_response(status_code: int, payload: Any) -> Dict[str, Any]:
    origin = os.getenv("CORS_ALLOW_ORIGIN", "*").strip() or "*"
    methods = os.getenv("CORS_ALLOW_METHODS", "GET,POST,OPTIONS").strip() or "GET,POST,OPTIONS"
    allow_headers = os.getenv("CORS_ALLOW_HEADERS", _DEFAULT_ALLOW_HEADERS).strip() or _DEFAULT_ALLOW_HEADERS
    return {
        "statusCode": status_code,
        "headers": {
            "Content-Type": "application/json",
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Methods": methods,
            "Access-Control-Allow-Headers": allow_headers,
        },
        "body": json.dumps(payload),
    }


def _request_method(event: Mapping[str, Any]) -> str:
    if isinstance(event.get("requestContext"), dict):
        context = event["requestContext"]
        if isinstance(context.get("http"), dict):
            method = context["http"].get("method")
            if isinstance(method, str) and method:
                return method.upper()

    method = event.get("httpMethod", "")
    if isinstance(method, str):
        return method.upper()
    return ""


def _request_path(event: Mapping[str, Any]) -> str:
    raw_path = event.get("rawPath")
    if isinstance(raw_path, str) and raw_path:
        return raw_path

    path = event.get("path")
    if isinstance(path, str) and path:
        return path

    return "/"


def _normalized_path(event: Mapping[str, Any], path: str) -> str:
    """Strip API Gateway stage prefixes (for example '/dev') from request paths."""
    context = event.get("requestContext")
    if not isinstance(context, dict):
        return path

    stage = context.get("stage")
    if not isinstance(stage, str) or not stage.strip() or stage.strip() == "$default":
        return path

    stage_prefix = f"/{stage.strip()}"
    if path == stage_prefix:
        return "/"
    if path.startswith(f"{stage_prefix}/"):
        return path[len(stage_prefix) :]
    return path


def _query_params(event: Mapping[str, Any]) -> dict[str, str]:
    raw = event.get("queryStringParameters")
    if not isinstance(raw, dict):
        return {}

    params: dict[str, str] = {}
    for key, value in raw.items():
        if isinstance(key, str) and isinstance(value, str):
            params[key] = value
    return params


def _raw_query_string(event: Mapping[str, Any]) -> str:
    raw = event.get("rawQueryString")
    if isinstance(raw, str):
        return raw

    multi = event.get("multiValueQueryStringParameters")
    if isinstance(multi, dict) and multi:
        pairs = [
            (key, value)
            for key, values in multi.items()
            if isinstance(key, str) and isinstance(values, list)
            for value in values
            if isinstance(value, str)
        ]
        return urlencode(pairs)

    return urlencode(list(_query_params(event).items()))


def _headers(event: Mapping[str, Any]) -> dict[str, str]:
    raw = event.get("headers")
    if not isinstance(raw, dict):
        return {}

    normalized: dict[str, str] = {}
    for key, value in raw.items():
        if isinstance(key, str) and isinstance(value, str):
            normalized[key.lower()] = value
    return normalized


def _parse_json_body(event: Mapping[str, Any]) -> tuple[dict[str, Any] | None, str | None]:
    body = event.get("body")

    if isinstance(body, dict):
        return body, None

    if not isinstance(body, str):
        return None, "request body must be a JSON object"

    try:
        decoded = json.loads(body)
    except json.JSONDecodeError:
        return None, "request body must be valid JSON"

    if not isinstance(decoded, dict):
        return None, "request body must be a JSON object"

    return decoded, None


def _is_truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return isinstance(value, str) and value.strip().lower() in _TRUE_VALUES


def _s3_client() -> Any:
    import boto3

    return boto3.client("s3")


def _profile_store() -> S3UserProfileStore:
    bucket = os.getenv("S3_BUCKET_NAME", "").strip()
    if not bucket:
        raise RuntimeError("server misconfiguration: S3_BUCKET_NAME missing")
    return S3UserProfileStore(_s3_client(), bucket)


def _auth_response(profile: UserProfile) -> Dict[str, Any]:
    token = mint_session_token(profile, config=SessionTokenConfig.from_env())
    return _json_response(
        200,
        {
            "success": True,
            "token": token,
            "canvasToken": profile.canvas_token,
            "user": profile.public_dict(),
        },
    )


def _require_session(event: Mapping[str, Any]) -> tuple[SessionClaims | None, Dict[str, Any] | None]:
    token = extract_bearer_token(_headers(event).get("authorization"))
    if token is None:
        return None, _json_response(401, {"error": "access token required"})
    try:
        claims = verify_session_token(token, config=SessionTokenConfig.from_env())
    except SessionTokenError as exc:
        return None, _json_response(401, {"error": str(exc)})
    except SessionConfigError as exc:
        return None, _json_response(500, {"error": str(exc)})
    return claims, None


def _require_linked_canvas_token(claims: SessionClaims) -> tuple[str | None, Dict[str, Any] | None]:
    try:
        profile = _profile_store().get(claims.user_id)
    except RuntimeError as exc:
        return None, _json_response(500, {"error": str(exc)})
    if profile is None:
        return None, _json_response(404, {"error": "user profile not found"})
    if not profile.canvas_token:
        return None, _json_response(400, {"error": "canvas token not linked; call POST /auth/setup-canvas first"})
    return profile.canvas_token, None


def _handle_signup(event: Mapping[str, Any]) -> Dict[str, Any]:
    payload, parse_error = _parse_json_body(event)
    if parse_error is not None or payload is None:
        return _json_response(400, {"error": parse_error or "request body must be valid JSON"})
    try:
        profile = sign_up(payload, store=_profile_store())
        return _auth_response(profile)
    except AccountValidationError as exc:
        return _json_response(400, {"error": str(exc)})
    except AccountExistsError as exc:
        return _json_response(409, {"error": str(exc)})
    except RuntimeError as exc:
        return _json_response(500, {"error": str(exc)})


def _handle_login(event: Mapping[str, Any]) -> Dict[str, Any]:
    payload, parse_error = _parse_json_body(event)
    if parse_error is not None or payload is None:
        return _json_response(400, {"error": parse_error or "request body must be valid JSON"})
    try:
        profile = log_in(payload, store=_profile_store())
        return _auth_response(profile)
    except AccountValidationError as exc:
        return _json_response(400, {"error": str(exc)})
    except InvalidCredentialsError:
        return _json_response(401, {"error": "invalid credentials"})
    except RuntimeError as exc:
        return _json_response(500, {"error": str(exc)})


def _handle_google_auth(event: Mapping[str, Any]) -> Dict[str, Any]:
    payload, parse_error = _parse_json_body(event)
    if parse_error is not None or payload is None:
        return _json_response(400, {"error": parse_error or "request body must be valid JSON"})
    try:
        profile = google_sign_in(
            payload,
            store=_profile_store(),
            client_id=os.getenv("GOOGLE_CLIENT_ID", "").strip(),
        )
        return _auth_response(profile)
    except AccountValidationError as exc:
        return _json_response(400, {"error": str(exc)})
    except InvalidCredentialsError:
        return _json_response(401, {"error": "invalid Google token"})
    except RuntimeError as exc:
        return _json_response(500, {"error": str(exc)})


def _handle_setup_canvas(event: Mapping[str, Any]) -> Dict[str, Any]:
    claims, auth_error = _require_session(event)
    if auth_error is not None or claims is None:
        return auth_error or _json_response(401, {"error": "access token required"})

    payload, parse_error = _parse_json_body(event)
    if parse_error is not None or payload is None:
        return _json_response(400, {"error": parse_error or "request body must be valid JSON"})

    canvas_token = str(payload.get("canvasToken", "")).strip()
    if not canvas_token:
        return _json_response(400, {"error": "canvasToken is required"})

    try:
        canvas_user = fetch_current_user(
            base_url=canvas_base_url_from_env(),
            token=canvas_token,
            user_agent=canvas_user_agent_from_env(),
        )
    except CanvasApiError:
        return _json_response(400, {"error": "invalid Canvas token"})

    try:
        link_canvas_token(
            user_id=claims.user_id,
            canvas_token=canvas_token,
            canvas_user=canvas_user,
            store=_profile_store(),
        )
    except ProfileNotFoundError as exc:
        return _json_response(404, {"error": str(exc)})
    except RuntimeError as exc:
        return _json_response(500, {"error": str(exc)})

    return _json_response(
        200,
        {
            "success": True,
            "canvasUser": {"id": canvas_user.get("id"), "name": canvas_user.get("name")},
        },
    )


def _handle_session(event: Mapping[str, Any]) -> Dict[str, Any]:
    claims, auth_error = _require_session(event)
    if auth_error is not None or claims is None:
        return auth_error or _json_response(401, {"error": "access token required"})
    return _json_response(200, {"success": True, "user": claims.to_api_dict()})


def _handle_canvas_proxy(event: Mapping[str, Any], method: str, path: str) -> Dict[str, Any]:
    authorization = _headers(event).get("authorization", "").strip()
    if not authorization:
        return _json_response(401, {"error": "no authorization token provided"})
    if method not in FORWARDED_METHODS:
        return _json_response(405, {"error": f"method {method} not allowed"})

    body = None
    if method != "GET":
        body, _ = _parse_json_body(event)

    try:
        status, payload = forward_canvas_request(
            base_url=canvas_base_url_from_env(),
            method=method,
            path=path[len(_CANVAS_PROXY_PREFIX) :],
            query=_raw_query_string(event),
            authorization=authorization,
            user_agent=canvas_user_agent_from_env(),
            body=body,
        )
    except CanvasApiError as exc:
        logger.warning("canvas proxy failed: %s", exc)
        return _json_response(502, {"error": str(exc)})
    return _json_response(status, payload)


def _handle_canvas_courses(event: Mapping[str, Any]) -> Dict[str, Any]:
    claims, auth_error = _require_session(event)
    if auth_error is not None or claims is None:
        return auth_error or _json_response(401, {"error": "access token required"})

    canvas_token, token_error = _require_linked_canvas_token(claims)
    if token_error is not None or canvas_token is None:
        return token_error or _json_response(400, {"error": "canvas token not linked"})

    try:
        rows = fetch_active_courses(
            base_url=canvas_base_url_from_env(),
            token=canvas_token,
            user_agent=canvas_user_agent_from_env(),
        )
    except CanvasAccessDeniedError as exc:
        return _json_response(401, {"error": str(exc)})
    except CanvasApiError as exc:
        return _json_response(502, {"error": str(exc)})

    courses: list[dict[str, Any]] = []
    for row in rows:
        try:
            courses.append(Course.from_api_dict(row).to_api_dict())
        except ModelValidationError as exc:
            logger.info("skipping malformed course row %s: %s", row.get("id"), exc)
    return _json_response(200, courses)


def _handle_canvas_course_data(event: Mapping[str, Any]) -> Dict[str, Any]:
    claims, auth_error = _require_session(event)
    if auth_error is not None or claims is None:
        return auth_error or _json_response(401, {"error": "access token required"})

    canvas_token, token_error = _require_linked_canvas_token(claims)
    if token_error is not None or canvas_token is None:
        return token_error or _json_response(400, {"error": "canvas token not linked"})

    include_questions = _is_truthy(_query_params(event).get("includeQuizQuestions", ""))
    try:
        bundles = fetch_all_course_data(
            base_url=canvas_base_url_from_env(),
            token=canvas_token,
            user_agent=canvas_user_agent_from_env(),
            include_quiz_questions=include_questions,
        )
    except CanvasAccessDeniedError as exc:
        return _json_response(401, {"error": str(exc)})
    except CanvasApiError as exc:
        return _json_response(502, {"error": str(exc)})

    return _json_response(
        200,
        {
            "courses": [bundle.to_api_dict() for bundle in bundles],
            "failedCourseIds": [bundle.course_id for bundle in bundles if bundle.fetch_error is not None],
        },
    )


def _handle_chat(event: Mapping[str, Any]) -> Dict[str, Any]:
    payload, parse_error = _parse_json_body(event)
    if parse_error is not None or payload is None:
        return _json_response(400, {"error": parse_error or "request body must be valid JSON"})

    prompt = payload.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        return _json_response(400, {"error": "prompt is required"})

    course_context = None
    if _is_truthy(payload.get("includeCourseContext", False)):
        claims, auth_error = _require_session(event)
        if auth_error is not None or claims is None:
            return auth_error or _json_response(401, {"error": "access token required"})
        canvas_token, token_error = _require_linked_canvas_token(claims)
        if token_error is not None or canvas_token is None:
            return token_error or _json_response(400, {"error": "canvas token not linked"})
        try:
            bundles = fetch_all_course_data(
                base_url=canvas_base_url_from_env(),
                token=canvas_token,
                user_agent=canvas_user_agent_from_env(),
            )
        except CanvasApiError as exc:
            return _json_response(502, {"error": str(exc)})
        course_context = format_course_context(bundles)

    try:
        reply = chat_reply(
            prompt=prompt,
            history=payload.get("history"),
            reasoning_budget=payload.get("reasoningBudget"),
            course_context=course_context,
        )
    except ChatError as exc:
        logger.exception("chat generation failed")
        return _json_response(502, {"error": f"failed to generate AI response: {exc}"})

    return _json_response(200, reply)


def lambda_handler(event: Mapping[str, Any], context: Any) -> Dict[str, Any]:
    """API Gateway Lambda entrypoint."""
    try:
        return _route(event)
    except Exception as exc:
        logger.exception(
            "unhandled error for %s %s",
            _request_method(event),
            _request_path(event),
        )
        return _json_response(500, {"error": f"internal server error: {exc}"})


def _route(event: Mapping[str, Any]) -> Dict[str, Any]:
    method = _request_method(event)
    path = _normalized_path(event, _request_path(event))

    if method == "OPTIONS":
        return _json_response(204, {})

    if method == "GET" and path == "/health":
        return _json_response(200, {"status": "ok"})

    if path.startswith(_CANVAS_PROXY_PREFIX):
        return _handle_canvas_proxy(event, method, path)

    if method == "POST" and path == "/auth/signup":
        return _handle_signup(event)

    if method == "POST" and path == "/auth/login":
        return _handle_login(event)

    if method == "POST" and path == "/auth/google":
        return _handle_google_auth(event)

    if method == "POST" and path == "/auth/setup-canvas":
        return _handle_setup_canvas(event)

    if method == "GET" and path == "/auth/session":
        return _handle_session(event)

    if method == "POST" and path == "/auth/logout":
        # Session tokens are stateless; the browser discards its copy.
        return _json_response(200, {"success": True})

    if method == "GET" and path == "/canvas/courses":
        return _handle_canvas_courses(event)

    if method == "GET" and path == "/canvas/course-data":
        return _handle_canvas_course_data(event)

    if method == "POST" and path == "/ai/chat":
        return _handle_chat(event)

    if re.fullmatch(r"/(auth|canvas|ai)(/.*)?", path):
        return _json_response(405, {"error": "method not allowed"})

    return _json_response(404, {"error": "not found"})
