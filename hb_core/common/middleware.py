# hb_core/common/middleware.py
from __future__ import annotations

import logging

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

from hb_core.common.api.exceptions import build_error_envelope
from hb_core.common.scope import MISSING_SCOPE_MSG, ScopeError, scope_from_meta

logger = logging.getLogger(__name__)


class TenantFacilityScopeMiddleware(MiddlewareMixin):
    """
    Attaches request.scope for authenticated calls under /api/v1/.

    Both X-Tenant-Id and X-Facility-Id must be present UUIDs, otherwise the
    request is answered here with a 400 envelope. Anonymous requests pass
    through so DRF can report the authentication failure itself.
    """

    SCOPED_PREFIX = "/api/v1/"
    UNSCOPED_PATHS = frozenset({"/api/v1/"})

    def _needs_scope(self, request) -> bool:
        path = request.path or ""
        if not path.startswith(self.SCOPED_PREFIX) or path in self.UNSCOPED_PATHS:
            return False
        user = getattr(request, "user", None)
        return bool(user and user.is_authenticated)

    def _reject(self, request, message: str) -> JsonResponse:
        body = build_error_envelope(request=request, code="validation_error", message=message)
        return JsonResponse(body, status=400)

    def process_request(self, request):
        request.scope = None
        if not self._needs_scope(request):
            return None

        try:
            scope = scope_from_meta(request.META)
        except ScopeError as e:
            logger.info("Rejected scope headers on %s: %s", request.path, e.message)
            return self._reject(request, e.message)
        if scope is None:
            return self._reject(request, MISSING_SCOPE_MSG)

        request.scope = scope
        return None
