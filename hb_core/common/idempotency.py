# hb_core/common/idempotency.py
"""
Idempotency-Key handling for POSTs that move money.

Records live in the database when COMMON_IDEMPOTENCY_USE_DB is set (shared by
all workers); otherwise in a process-local dict, which is only good enough for
a single dev server.
"""
from __future__ import annotations

import json
import logging
import threading

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import IntegrityError, transaction
from rest_framework.response import Response

from hb_core.common.models import IdempotencyRecord

logger = logging.getLogger(__name__)

HEADER = "HTTP_IDEMPOTENCY_KEY"

_memory_lock = threading.Lock()
_memory: dict[tuple, tuple[int, dict]] = {}


def _db_enabled() -> bool:
    return bool(getattr(settings, "COMMON_IDEMPOTENCY_USE_DB", False))


def get_key(request) -> str | None:
    key = (request.META.get(HEADER) or "").strip()
    return key or None


def _identity(tenant_id, facility_id, user_id, method, path, key) -> dict:
    return {
        "tenant_id": tenant_id,
        "facility_id": facility_id,
        "user_id": int(user_id),
        "request_method": method.upper(),
        "request_path": path,
        "key": str(key),
    }


def load_response(tenant_id, facility_id, user_id, method, path, key) -> tuple[int, dict] | None:
    """(status, body) stored for this request identity, or None."""
    if not key:
        return None

    ident = _identity(tenant_id, facility_id, user_id, method, path, key)
    if not _db_enabled():
        with _memory_lock:
            return _memory.get(tuple(str(v) for v in ident.values()))

    rec = IdempotencyRecord.objects.filter(**ident).only("response_status", "response_body").first()
    if rec is None:
        return None
    return rec.response_status, rec.response_body


def save_response(tenant_id, facility_id, user_id, method, path, key, response_data, status_code: int = 200) -> None:
    if not key:
        return

    body = json.loads(json.dumps(response_data, cls=DjangoJSONEncoder))
    ident = _identity(tenant_id, facility_id, user_id, method, path, key)

    if not _db_enabled():
        with _memory_lock:
            _memory[tuple(str(v) for v in ident.values())] = (int(status_code), body)
        return

    try:
        with transaction.atomic():
            IdempotencyRecord.objects.create(response_status=int(status_code), response_body=body, **ident)
    except IntegrityError:
        # a concurrent retry stored it first; its copy wins
        logger.info("Idempotency key %s already recorded for %s %s", key, method, path)


def replay(request, scope) -> Response | None:
    """Stored response for a retried keyed request, ready to return from a view."""
    key = get_key(request)
    if key is None:
        return None
    cached = load_response(scope.tenant_id, scope.facility_id, request.user.id, request.method, request.path, key)
    if cached is None:
        return None
    logger.info("Replaying %s %s for idempotency key %s", request.method, request.path, key)
    status_code, body = cached
    return Response(body, status=status_code)


def remember(request, scope, data, *, status_code: int) -> None:
    key = get_key(request)
    if key is None:
        return
    save_response(
        scope.tenant_id,
        scope.facility_id,
        request.user.id,
        request.method,
        request.path,
        key,
        data,
        status_code=status_code,
    )
