# hb_core/billing/aggregator.py
"""
Single entry point for a stay's billing totals.

Nothing here is stored: every call re-reads the charge sources, bill items,
advances and ledger rows and derives the summary from scratch.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from django.db import DatabaseError, transaction

from hb_core.admissions.models import Admission
from hb_core.admissions.selectors import AdmissionSelectors
from hb_core.billing.exceptions import ChargeSourceUnavailable
from hb_core.billing.models import (
    Advance,
    AdvanceStatus,
    BillCategory,
    BillItem,
    BillItemStatus,
    ChargeSourceType,
    PaymentTransaction,
)
from hb_core.billing.sources import CHARGE_SOURCES, ChargeLine, ChargeSource
from hb_core.common.choices import PaymentMethod
from hb_core.common.money import ZERO, money, money_sum

logger = logging.getLogger(__name__)


class SummaryStatus:
    PAID = "paid"
    PARTIAL = "partial"
    PENDING = "pending"


def derive_summary_status(*, pending: Decimal, paid_total: Decimal) -> str:
    if pending <= ZERO:
        return SummaryStatus.PAID
    if paid_total > ZERO:
        return SummaryStatus.PARTIAL
    return SummaryStatus.PENDING


@dataclass(frozen=True)
class BillingSummary:
    admission_id: UUID
    stay_days: int
    subtotals: dict[str, Decimal]
    gross_total: Decimal
    advance_paid: Decimal
    discount: Decimal
    receipts_total: Decimal
    source_paid_total: Decimal
    paid_total: Decimal
    net_payable: Decimal
    pending_amount: Decimal
    status: str
    total_advance: Decimal
    available_advance: Decimal
    degraded_categories: tuple[str, ...] = field(default_factory=tuple)

    @property
    def breakdown(self) -> list[dict]:
        """Non-zero categories only, in category order."""
        return [
            {"category": c, "label": BillCategory(c).label, "amount": amount}
            for c, amount in self.subtotals.items()
            if amount != ZERO
        ]

    @property
    def is_complete(self) -> bool:
        return not self.degraded_categories


@dataclass(frozen=True)
class SourceLoad:
    lines: list[ChargeLine]
    failed: list[ChargeSource]


def load_charge_lines(
    admission: Admission,
    *,
    at: datetime | None = None,
    sources: Iterable[ChargeSource] = CHARGE_SOURCES,
) -> SourceLoad:
    """
    Reads every source. A source that fails contributes no lines and is
    reported back instead of aborting the whole read.
    """
    lines: list[ChargeLine] = []
    failed: list[ChargeSource] = []
    for source in sources:
        try:
            # savepoint: a failed query must not poison an enclosing transaction
            with transaction.atomic():
                lines.extend(source.load(admission, at=at))
        except (DatabaseError, ChargeSourceUnavailable) as exc:
            logger.warning(
                "Charge source %s unavailable for admission %s: %s",
                source.source_type,
                admission.id,
                exc,
            )
            failed.append(source)
    return SourceLoad(lines=lines, failed=failed)


def compute_summary(
    *,
    tenant_id: UUID,
    facility_id: UUID,
    admission_id: UUID,
    at: datetime | None = None,
) -> BillingSummary:
    admission = AdmissionSelectors.get_admission(
        tenant_id=tenant_id,
        facility_id=facility_id,
        admission_id=admission_id,
    )
    return summarize_admission(admission, at=at)


def _counter_credit(line: ChargeLine, item: BillItem | None) -> Decimal:
    """
    Counter collection credited for a line. Once the line has a bill item,
    receipts already cover the item's allocated part, so the counter can only
    add up to the rest of its net.
    """
    if item is None:
        return line.source_paid
    return min(line.source_paid, max(ZERO, money(item.net_amount - item.allocated_amount)))


def summarize_admission(admission: Admission, *, at: datetime | None = None) -> BillingSummary:
    scope = {"tenant_id": admission.tenant_id, "facility_id": admission.facility_id, "admission": admission}

    items = list(BillItem.objects.filter(**scope))
    live_items = [i for i in items if i.status != BillItemStatus.CANCELLED]
    live_by_source = {(i.source_type, i.source_id): i for i in live_items if i.source_id is not None}
    cancelled_sources = {
        (i.source_type, i.source_id)
        for i in items
        if i.status == BillItemStatus.CANCELLED and i.source_id is not None
    }

    subtotals: dict[str, Decimal] = {c: ZERO for c in BillCategory.values}
    source_paid_total = ZERO

    loaded = load_charge_lines(admission, at=at)
    for line in loaded.lines:
        if (line.source_type, line.source_id) in cancelled_sources:
            continue
        subtotals[line.category] += line.amount
        source_paid_total += _counter_credit(line, live_by_source.get((line.source_type, line.source_id)))

    for item in live_items:
        if item.source_type == ChargeSourceType.MANUAL:
            subtotals[item.category] += item.gross_amount

    subtotals = {c: money(v) for c, v in subtotals.items()}
    degraded = []
    for source in loaded.failed:
        if str(source.category) not in degraded:
            degraded.append(str(source.category))

    advances = list(Advance.objects.filter(**scope))
    advance_paid = money_sum(a.used_amount for a in advances)
    total_advance = money_sum(a.amount for a in advances if a.status != AdvanceStatus.CANCELLED)
    available_advance = money_sum(a.available_amount for a in advances if a.status == AdvanceStatus.ACTIVE)

    # advance-funded receipts are already in advance_paid
    receipts_total = money_sum(
        PaymentTransaction.objects.filter(**scope).exclude(method=PaymentMethod.ADVANCE).values_list("amount", flat=True)
    )

    gross_total = money_sum(subtotals.values())
    discount = money(admission.discount_amount + money_sum(i.discount_amount for i in live_items))
    source_paid_total = money(source_paid_total)
    paid_total = money(advance_paid + receipts_total + source_paid_total)
    pending_amount = max(ZERO, money(gross_total - discount - paid_total))
    net_payable = money(gross_total - advance_paid - discount)

    return BillingSummary(
        admission_id=admission.id,
        stay_days=admission.stay_days(at),
        subtotals=subtotals,
        gross_total=gross_total,
        advance_paid=advance_paid,
        discount=discount,
        receipts_total=receipts_total,
        source_paid_total=source_paid_total,
        paid_total=paid_total,
        net_payable=net_payable,
        pending_amount=pending_amount,
        status=derive_summary_status(pending=pending_amount, paid_total=paid_total),
        total_advance=total_advance,
        available_advance=available_advance,
        degraded_categories=tuple(degraded),
    )
