# hb_core/audit/models.py
from django.db import models

from hb_core.common.models import ScopedModel


class AuditEvent(ScopedModel):
    """
    Immutable audit record.
    Every money movement on a stay (payment, advance draw, discount, cancel) lands here.
    """
    event_code = models.CharField(max_length=128, db_index=True)  # e.g. "billing.payment_allocated"
    entity_type = models.CharField(max_length=128, db_index=True)  # e.g. "PaymentTransaction"
    entity_id = models.UUIDField(db_index=True)

    actor_user_id = models.IntegerField(null=True, blank=True)

    occurred_at = models.DateTimeField(auto_now_add=True, db_index=True)
    metadata = models.JSONField(default=dict)

    class Meta:
        db_table = "audit_audit_event"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "occurred_at"]),
            models.Index(fields=["entity_type", "entity_id"]),
            models.Index(fields=["tenant_id", "facility_id", "event_code"]),
        ]

    def __str__(self) -> str:
        return f"{self.event_code} {self.entity_type}:{self.entity_id}"
