# hb_core/common/numbering.py
from __future__ import annotations

import re
from datetime import datetime
from uuid import UUID

from django.utils import timezone

SEQUENCE_WIDTH = 4


def period_prefix(prefix: str, at: datetime | None = None) -> str:
    """`IPR` -> `IPR-2410-` for October 2024."""
    at = timezone.localtime(at or timezone.now())
    return f"{prefix}-{at:%y%m}-"


def next_number_locked(
    *,
    model,
    field: str,
    prefix: str,
    tenant_id: UUID,
    facility_id: UUID,
    at: datetime | None = None,
) -> str:
    """
    Next `{PREFIX}-{YYMM}-{NNNN}` number for `model.field` within scope.

    Must run inside a transaction: the latest row of the period is read
    with select_for_update so two writers cannot hand out the same number.
    """
    head = period_prefix(prefix, at)
    latest = (
        model.objects.select_for_update()
        .filter(tenant_id=tenant_id, facility_id=facility_id, **{f"{field}__startswith": head})
        .order_by(f"-{field}")
        .first()
    )

    seq = 1
    if latest is not None:
        m = re.match(rf"{re.escape(head)}(\d+)$", getattr(latest, field).strip())
        if m:
            seq = int(m.group(1)) + 1

    return f"{head}{seq:0{SEQUENCE_WIDTH}d}"
