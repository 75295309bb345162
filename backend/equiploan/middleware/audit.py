"""Audit middleware: records every API call in the audit trail.

For each non-exempt request:
  1. Capture caller id (from the bearer token), client IP, user agent,
     method, path and a sanitized copy of the JSON body.
  2. Run the request.
  3. Classify it (method → action, URL → entity) and hand an entry to
     the audit dispatcher: a user action for 2xx/3xx, an error entry for
     4xx/5xx responses or raised exceptions.

The write is fire-and-forget.  A raised exception is re-raised untouched
after its error entry has been scheduled.
"""

import json
import logging
import re
import time
import traceback
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from equiploan.auth.jwt import decode_token
from equiploan.config import settings
from equiploan.models.audit_log import AuditAction, AuditEntity
from equiploan.services import audit as audit_service
from equiploan.utils.redaction import sanitize, truncate

logger = logging.getLogger(__name__)

DEFAULT_EXEMPT_PATHS = [
    "/api/audit",
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/favicon.ico",
]

# Checked in order; first substring match wins
ENTITY_PATTERNS: list[tuple[str, AuditEntity]] = [
    ("/auth", AuditEntity.AUTH),
    ("/users", AuditEntity.USER),
    ("/permissions", AuditEntity.USER),
    ("/products/instances", AuditEntity.PRODUCT_INSTANCE),
    ("/products", AuditEntity.PRODUCT),
    ("/loans", AuditEntity.LOAN),
    ("/volunteers", AuditEntity.VOLUNTEER_ACTIVITY),
]

_ID_SEGMENT = re.compile(r"^[A-Za-z0-9_-]{20,}$")
_BODY_ID_KEYS = ("id", "user_id", "product_id", "product_instance_id", "loan_id")


def classify_action(method: str) -> AuditAction:
    method = method.upper()
    if method == "POST":
        return AuditAction.CREATE
    if method in ("PUT", "PATCH"):
        return AuditAction.UPDATE
    if method == "DELETE":
        return AuditAction.DELETE
    return AuditAction.READ


def classify_entity(path: str) -> AuditEntity:
    path = path.split("?", 1)[0].lower()
    for pattern, entity in ENTITY_PATTERNS:
        if pattern in path:
            return entity
    return AuditEntity.SYSTEM


def extract_entity_id(path: str, body) -> str | None:
    for segment in path.split("/"):
        if _ID_SEGMENT.match(segment):
            return segment
    if isinstance(body, dict):
        for key in _BODY_ID_KEYS:
            if body.get(key):
                return str(body[key])
    return None


def describe(action: AuditAction, entity: AuditEntity, succeeded: bool, status_code: int) -> str:
    outcome = "succeeded" if succeeded else "failed"
    return f"{action.value} {entity.value} {outcome} ({status_code})"


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def caller_id(request: Request) -> str | None:
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        return decode_token(auth_header[7:]).get("sub")
    return None


def _parse_json(raw: bytes):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


class AuditMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, exempt_paths: Optional[list[str]] = None):
        super().__init__(app)
        self.exempt_paths = exempt_paths or DEFAULT_EXEMPT_PATHS

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if any(path.startswith(prefix) for prefix in self.exempt_paths):
            return await call_next(request)

        started = time.perf_counter()
        request_body = None
        if "application/json" in request.headers.get("content-type", ""):
            request_body = _parse_json(await request.body())

        context = {
            "method": request.method,
            "path": path,
            "user_id": caller_id(request),
            "ip_address": client_ip(request),
            "user_agent": request.headers.get("user-agent"),
            "request_body": request_body,
        }

        try:
            response = await call_next(request)
        except Exception as exc:
            self._record_exception(context, exc, self._elapsed_ms(started))
            raise

        response_body = None
        if "application/json" in response.headers.get("content-type", ""):
            raw = b"".join([chunk async for chunk in response.body_iterator])
            response_body = _parse_json(raw)
            rebuilt = Response(content=raw, status_code=response.status_code)
            # Raw list keeps repeated headers such as Set-Cookie
            rebuilt.raw_headers = list(response.raw_headers)
            response = rebuilt

        self._record_response(context, response.status_code, response_body, self._elapsed_ms(started))
        return response

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.perf_counter() - started) * 1000)

    def _base_entry(self, context: dict, status_code: int, elapsed_ms: int) -> dict:
        action = classify_action(context["method"])
        entity = classify_entity(context["path"])
        return {
            "action": action,
            "entity": entity,
            "fields": {
                "entity_id": extract_entity_id(context["path"], context["request_body"]),
                "ip_address": context["ip_address"],
                "user_agent": context["user_agent"],
                "endpoint": context["path"],
                "method": context["method"],
                "status_code": status_code,
                "execution_time": elapsed_ms,
            },
        }

    def _snapshot(self, payload):
        return truncate(sanitize(payload), settings.audit_max_payload_chars)

    def _record_response(self, context: dict, status_code: int, response_body, elapsed_ms: int) -> None:
        try:
            entry = self._base_entry(context, status_code, elapsed_ms)
            action, entity = entry["action"], entry["entity"]
            metadata = {
                "request_body": self._snapshot(context["request_body"]),
                "response_body": self._snapshot(response_body),
                "user_agent": context["user_agent"],
            }
            if status_code < 400:
                audit_service.log_user_action(
                    context["user_id"],
                    action,
                    entity,
                    describe(action, entity, True, status_code),
                    metadata=metadata,
                    **entry["fields"],
                )
                return

            error_message = None
            if isinstance(response_body, dict):
                error_message = (response_body.get("error") or {}).get("message")
            audit_service.log_error(
                error_message or f"HTTP {status_code}",
                describe(action, entity, False, status_code),
                user_id=context["user_id"],
                entity_type=entity,
                metadata=metadata,
                **entry["fields"],
            )
        except Exception:
            logger.exception("Audit capture failed for %s %s", context["method"], context["path"])

    def _record_exception(self, context: dict, exc: Exception, elapsed_ms: int) -> None:
        try:
            status_code = getattr(exc, "status_code", 500)
            entry = self._base_entry(context, status_code, elapsed_ms)
            audit_service.log_error(
                str(exc) or type(exc).__name__,
                describe(entry["action"], entry["entity"], False, status_code),
                user_id=context["user_id"],
                entity_type=entry["entity"],
                metadata={
                    "request_body": self._snapshot(context["request_body"]),
                    "error": {
                        "name": type(exc).__name__,
                        "message": str(exc),
                        "stack": "".join(traceback.format_exception(exc))[-4000:],
                    },
                    "user_agent": context["user_agent"],
                },
                **entry["fields"],
            )
        except Exception:
            logger.exception("Audit capture failed for %s %s", context["method"], context["path"])
