# hb_core/audit/services.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from uuid import UUID

from django.core.serializers.json import DjangoJSONEncoder
from django.db import transaction

from hb_core.audit.models import AuditEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditRecord:
    event_code: str
    entity_type: str
    entity_id: UUID
    tenant_id: UUID
    facility_id: UUID
    actor_user_id: int | None
    metadata: Dict[str, Any]


def _json_safe(metadata: Dict[str, Any]) -> Dict[str, Any]:
    # Decimals, UUIDs and datetimes are stored as strings.
    return json.loads(json.dumps(metadata, cls=DjangoJSONEncoder))


class AuditService:
    """
    Central audit writer. Persists into AuditEvent (immutable).
    """

    @staticmethod
    @transaction.atomic
    def log(
        *,
        event_code: str,
        entity_type: str,
        entity_id: UUID,
        tenant_id: UUID,
        facility_id: UUID,
        actor_user_id: int | None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditRecord:
        metadata = _json_safe(metadata or {})

        AuditEvent.objects.create(
            tenant_id=tenant_id,
            facility_id=facility_id,
            event_code=event_code,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_user_id=actor_user_id,
            metadata=metadata,
        )
        logger.info("audit %s %s:%s", event_code, entity_type, entity_id)

        return AuditRecord(
            event_code=event_code,
            entity_type=entity_type,
            entity_id=entity_id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata=metadata,
        )
