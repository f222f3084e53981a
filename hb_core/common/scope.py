# hb_core/common/scope.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from rest_framework.exceptions import ValidationError


@dataclass(frozen=True)
class Scope:
    """The tenant/facility pair a request is allowed to see."""
    tenant_id: UUID
    facility_id: UUID


TENANT_HEADER = "X-Tenant-Id"
FACILITY_HEADER = "X-Facility-Id"

MISSING_SCOPE_MSG = f"Missing scope headers. Provide {TENANT_HEADER} and {FACILITY_HEADER}."
INVALID_SCOPE_MSG = f"Invalid scope headers. Provide valid UUIDs for {TENANT_HEADER} and {FACILITY_HEADER}."


class ScopeError(ValueError):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def parse_uuid(value) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


def _meta_key(header: str) -> str:
    return "HTTP_" + header.upper().replace("-", "_")


def scope_from_meta(meta) -> Scope | None:
    """
    Read the scope headers out of a WSGI META dict.

    None when neither header is sent; ScopeError when only one is sent or
    either is not a UUID.
    """
    tenant_raw = (meta.get(_meta_key(TENANT_HEADER)) or "").strip()
    facility_raw = (meta.get(_meta_key(FACILITY_HEADER)) or "").strip()

    if not tenant_raw and not facility_raw:
        return None
    if not tenant_raw or not facility_raw:
        raise ScopeError(MISSING_SCOPE_MSG)

    tenant_id, facility_id = parse_uuid(tenant_raw), parse_uuid(facility_raw)
    if tenant_id is None or facility_id is None:
        raise ScopeError(INVALID_SCOPE_MSG)
    return Scope(tenant_id=tenant_id, facility_id=facility_id)


def resolve_scope(request) -> Scope | None:
    attached = getattr(request, "scope", None)
    if isinstance(attached, Scope):
        return attached
    try:
        return scope_from_meta(request.META)
    except ScopeError as e:
        raise ValidationError(e.message)


def require_scope(request) -> Scope:
    """Scope for a view; 400 when the request carries none."""
    scope = resolve_scope(request)
    if scope is None:
        raise ValidationError(MISSING_SCOPE_MSG)
    return scope
