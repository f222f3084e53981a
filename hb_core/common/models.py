# hb_core/common/models.py
from __future__ import annotations

import uuid

from django.db import models


class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class ScopedModel(TimeStampedModel):
    """
    Base for every billing row: UUID key plus the tenant/facility pair that
    every query filters on. Rows outside the caller's pair are "not found".
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    tenant_id = models.UUIDField(db_index=True)
    facility_id = models.UUIDField(db_index=True)

    class Meta:
        abstract = True


class IdempotencyRecord(ScopedModel):
    """
    First response to a keyed POST (payment, advance, counter collection).
    A retry with the same key from the same user on the same path gets this
    response back instead of moving money a second time.
    """
    user_id = models.BigIntegerField(db_index=True)
    request_method = models.CharField(max_length=16)
    request_path = models.CharField(max_length=255)
    key = models.CharField(max_length=255, db_index=True)

    response_status = models.PositiveIntegerField(default=200)
    response_body = models.JSONField(default=dict)

    class Meta:
        db_table = "common_idempotency_record"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "facility_id", "user_id", "request_method", "request_path", "key"],
                name="uq_idempotency_scope_request_key",
            )
        ]

    def __str__(self) -> str:
        return f"{self.request_method} {self.request_path} [{self.key}]"
