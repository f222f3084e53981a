# hb_core/billing/exceptions.py
from __future__ import annotations

from hb_core.common.api.exceptions import ConflictError, ServiceUnavailableError


class InsufficientAdvance(ConflictError):
    """
    Live advance balance cannot cover the requested draw.
    Re-read the balance and retry with a smaller advance amount.
    """
    default_detail = "Insufficient advance balance."
    default_code = "insufficient_advance"


class PersistenceFailure(ServiceUnavailableError):
    """
    The store rejected a write during an allocation. Nothing was applied;
    the caller must retry the whole allocation.
    """
    default_detail = "Payment could not be recorded. Nothing was applied; retry the whole payment."
    default_code = "persistence_failure"


class ChargeSourceUnavailable(Exception):
    """Raised by a charge source that cannot be read right now."""
