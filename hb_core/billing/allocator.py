# hb_core/billing/allocator.py
"""
Applies one payment across selected bill items of a stay, optionally funded
in part by the stay's advances.

Everything that moves money (advance draws, ledger rows, item balances)
commits together or not at all.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Iterable, Sequence
from uuid import UUID

from django.db import DatabaseError, transaction
from django.db.models import F
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from hb_core.admissions.models import Admission
from hb_core.admissions.selectors import AdmissionSelectors
from hb_core.audit.services import AuditService
from hb_core.billing.aggregator import BillingSummary, load_charge_lines, summarize_admission
from hb_core.billing.exceptions import InsufficientAdvance, PersistenceFailure
from hb_core.billing.models import (
    Advance,
    AdvanceDraw,
    AdvanceStatus,
    BillItem,
    PaymentAllocation,
    PaymentTransaction,
)
from hb_core.billing.sources import COUNTER_SOURCE_TYPES, COUNTER_SOURCES
from hb_core.common.choices import COLLECTION_METHODS, PaymentMethod
from hb_core.common.money import TWOPLACES, ZERO, amounts_match, money, money_sum, parse_money
from hb_core.common.numbering import next_number_locked
from hb_core.common.scope import parse_uuid

logger = logging.getLogger(__name__)

RECEIPT_PREFIX = "IPR"


@dataclass(frozen=True)
class Selection:
    bill_item_id: UUID
    pay_amount: Decimal


@dataclass(frozen=True)
class AllocationResult:
    transactions: list[PaymentTransaction]
    summary: BillingSummary


def _parse_selections(raw: Iterable) -> list[Selection]:
    """Accepts Selection objects, (id, amount) pairs or {"bill_item_id", "pay_amount"} dicts."""
    out: list[Selection] = []
    for idx, entry in enumerate(raw):
        if isinstance(entry, Selection):
            item_id, amount = entry.bill_item_id, entry.pay_amount
        elif isinstance(entry, dict):
            item_id, amount = entry.get("bill_item_id"), entry.get("pay_amount")
        else:
            try:
                item_id, amount = entry
            except (TypeError, ValueError):
                raise ValidationError({"selections": f"Entry {idx} must be a (bill_item_id, pay_amount) pair."})

        parsed_id = parse_uuid(item_id)
        if parsed_id is None:
            raise ValidationError({"selections": f"Entry {idx} has an invalid bill_item_id."})
        out.append(Selection(bill_item_id=parsed_id, pay_amount=parse_money(amount, "pay_amount")))
    return out


def split_advance(selections: Sequence[Selection], *, advance_amount: Decimal, total_amount: Decimal) -> list[Decimal]:
    """
    Advance-funded share of each selection, proportional to pay_amount.

    Shares are floored to the cent and the leftover cents go to the largest
    remainders (ties to the earlier selection), so every share stays within
    0..pay_amount and the shares add up to advance_amount exactly.
    total_amount must be the exact sum of the pay amounts.
    """
    if advance_amount <= ZERO:
        return [ZERO for _ in selections]

    exact = [s.pay_amount * advance_amount / total_amount for s in selections]
    shares = [e.quantize(TWOPLACES, rounding=ROUND_DOWN) for e in exact]
    leftover_cents = int((advance_amount - sum(shares, ZERO)) / TWOPLACES)

    by_remainder = sorted(range(len(shares)), key=lambda i: (-(exact[i] - shares[i]), i))
    for i in by_remainder[:leftover_cents]:
        shares[i] += TWOPLACES
    return shares


class PaymentAllocator:
    @staticmethod
    def allocate_payment(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        admission_id: UUID,
        selections: Iterable,
        method: str,
        total_amount,
        use_advance: bool = False,
        advance_amount=None,
        reference: str = "",
        notes: str = "",
        actor_user_id: int | None = None,
    ) -> AllocationResult:
        # ---- validation that needs no stored state ----
        parsed = _parse_selections(selections)
        if not parsed:
            raise ValidationError({"selections": "Select at least one bill item."})

        ids = [s.bill_item_id for s in parsed]
        if len(set(ids)) != len(ids):
            raise ValidationError({"selections": "A bill item may appear only once per payment."})

        for s in parsed:
            if s.pay_amount <= ZERO:
                raise ValidationError({"pay_amount": f"Pay amount for {s.bill_item_id} must be > 0."})

        requested = parse_money(total_amount, "total_amount")
        if requested <= ZERO:
            raise ValidationError({"total_amount": "Payment amount must be > 0."})
        # the ledger records what the selections add up to, not the caller's figure
        total = money_sum(s.pay_amount for s in parsed)
        if not amounts_match(total, requested):
            raise ValidationError({"total_amount": "Payment must equal the sum of the selected amounts."})

        advance = ZERO
        if use_advance:
            advance = parse_money(advance_amount, "advance_amount")
            if advance <= ZERO:
                raise ValidationError({"advance_amount": "Advance amount must be > 0."})
            if advance > total:
                raise ValidationError({"advance_amount": "Advance amount cannot exceed the payment amount."})

        remainder = money(total - advance)
        if remainder > ZERO and method not in COLLECTION_METHODS:
            raise ValidationError({"method": "A cash/card/UPI/bank/cheque/insurance method is required for the amount not covered by advance."})

        try:
            with transaction.atomic():
                admission, transactions = PaymentAllocator._apply(
                    tenant_id=tenant_id,
                    facility_id=facility_id,
                    admission_id=admission_id,
                    selections=parsed,
                    method=method,
                    total=total,
                    advance=advance,
                    remainder=remainder,
                    reference=reference,
                    notes=notes,
                    actor_user_id=actor_user_id,
                )
        except DatabaseError as exc:
            logger.exception("Payment allocation failed for admission %s; rolled back", admission_id)
            raise PersistenceFailure() from exc

        return AllocationResult(transactions=transactions, summary=summarize_admission(admission))

    @staticmethod
    def pay_single_bill(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        bill_item_id: UUID,
        amount,
        method: str,
        use_advance: bool = False,
        advance_amount=None,
        reference: str = "",
        notes: str = "",
        actor_user_id: int | None = None,
    ) -> AllocationResult:
        try:
            item = BillItem.objects.only("id", "admission_id").get(
                id=bill_item_id,
                tenant_id=tenant_id,
                facility_id=facility_id,
            )
        except BillItem.DoesNotExist:
            raise NotFound("Bill item not found.")

        return PaymentAllocator.allocate_payment(
            tenant_id=tenant_id,
            facility_id=facility_id,
            admission_id=item.admission_id,
            selections=[Selection(bill_item_id=item.id, pay_amount=parse_money(amount, "amount"))],
            method=method,
            total_amount=amount,
            use_advance=use_advance,
            advance_amount=advance_amount,
            reference=reference,
            notes=notes,
            actor_user_id=actor_user_id,
        )

    # ------------------------------------------------------------------
    # Writes (caller holds the transaction)
    # ------------------------------------------------------------------
    @staticmethod
    def _apply(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        admission_id: UUID,
        selections: list[Selection],
        method: str,
        total: Decimal,
        advance: Decimal,
        remainder: Decimal,
        reference: str,
        notes: str,
        actor_user_id: int | None,
    ) -> tuple[Admission, list[PaymentTransaction]]:
        # Serializes allocations on the same stay.
        admission = AdmissionSelectors.get_admission(
            tenant_id=tenant_id,
            facility_id=facility_id,
            admission_id=admission_id,
            for_update=True,
        )

        items = {
            i.id: i
            for i in BillItem.objects.select_for_update().filter(
                tenant_id=tenant_id,
                facility_id=facility_id,
                admission=admission,
                id__in=[s.bill_item_id for s in selections],
            )
        }
        PaymentAllocator._refresh_counter_collections(admission, list(items.values()))

        for s in selections:
            item = items.get(s.bill_item_id)
            if item is None:
                raise NotFound(f"Bill item {s.bill_item_id} not found on this admission.")
            if item.is_cancelled:
                raise ValidationError({"selections": f"Bill item {item.id} is cancelled."})
            if s.pay_amount > item.pending_amount:
                raise ValidationError(
                    {"pay_amount": f"Pay amount {s.pay_amount} exceeds pending {item.pending_amount} for {item.id}."}
                )

        advances: list[Advance] = []
        if advance > ZERO:
            advances = list(
                Advance.objects.select_for_update()
                .filter(
                    tenant_id=tenant_id,
                    facility_id=facility_id,
                    admission=admission,
                    status=AdvanceStatus.ACTIVE,
                    available_amount__gt=ZERO,
                )
                .order_by("created_at", "id")
            )
            available = money_sum(a.available_amount for a in advances)
            if available < advance:
                raise InsufficientAdvance(f"Requested {advance} from advance but only {available} is available.")

        shares = split_advance(selections, advance_amount=advance, total_amount=total)
        received_at = timezone.now()
        transactions: list[PaymentTransaction] = []

        if advance > ZERO:
            adv_txn = PaymentAllocator._record_transaction(
                admission=admission,
                amount=advance,
                method=PaymentMethod.ADVANCE,
                reference="",
                notes=notes,
                received_at=received_at,
                actor_user_id=actor_user_id,
                allocations=[(s.bill_item_id, share) for s, share in zip(selections, shares)],
            )
            PaymentAllocator._draw_advances(advances, amount=advance, txn=adv_txn)
            transactions.append(adv_txn)

        if remainder > ZERO:
            txn = PaymentAllocator._record_transaction(
                admission=admission,
                amount=remainder,
                method=method,
                reference=reference,
                notes=notes,
                received_at=received_at,
                actor_user_id=actor_user_id,
                allocations=[(s.bill_item_id, money(s.pay_amount - share)) for s, share in zip(selections, shares)],
            )
            transactions.append(txn)

        for s in selections:
            item = items[s.bill_item_id]
            item.paid_amount = money(item.paid_amount + s.pay_amount)
            item.recompute()
            item.save(update_fields=["paid_amount", "pending_amount", "gross_amount", "net_amount", "status", "updated_at"])

        AuditService.log(
            event_code="billing.payment_allocated",
            entity_type="Admission",
            entity_id=admission.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={
                "total_amount": total,
                "advance_amount": advance,
                "method": method,
                "receipts": [t.receipt_number for t in transactions],
                "items": [{"bill_item_id": s.bill_item_id, "amount": s.pay_amount} for s in selections],
            },
        )
        logger.info(
            "Allocated %s (advance %s) across %d item(s) on admission %s",
            total,
            advance,
            len(selections),
            admission.id,
        )
        return admission, transactions

    @staticmethod
    def _refresh_counter_collections(admission: Admission, items: list[BillItem]) -> None:
        """
        Pull counter collections made since the last sync into the selected
        items, so pending reflects money already taken at the counter.
        """
        tracked = {
            (i.source_type, i.source_id): i
            for i in items
            if i.source_type in COUNTER_SOURCE_TYPES and not i.is_cancelled
        }
        if not tracked:
            return

        loaded = load_charge_lines(admission, sources=COUNTER_SOURCES)
        if loaded.failed:
            # pending cannot be trusted without the counter totals
            raise PersistenceFailure("Counter collections could not be read. Nothing was applied; retry the payment.")

        for line in loaded.lines:
            item = tracked.get((line.source_type, line.source_id))
            if item is None:
                continue
            applied = item.absorb_source_paid(line.source_paid)
            if applied > ZERO:
                item.save(
                    update_fields=[
                        "paid_amount",
                        "source_paid_amount",
                        "pending_amount",
                        "gross_amount",
                        "net_amount",
                        "status",
                        "updated_at",
                    ]
                )
                logger.info("Bill item %s picked up %s collected at the counter", item.id, applied)

    @staticmethod
    def _record_transaction(
        *,
        admission: Admission,
        amount: Decimal,
        method: str,
        reference: str,
        notes: str,
        received_at,
        actor_user_id: int | None,
        allocations: list[tuple[UUID, Decimal]],
    ) -> PaymentTransaction:
        txn = PaymentTransaction.objects.create(
            tenant_id=admission.tenant_id,
            facility_id=admission.facility_id,
            admission=admission,
            receipt_number=next_number_locked(
                model=PaymentTransaction,
                field="receipt_number",
                prefix=RECEIPT_PREFIX,
                tenant_id=admission.tenant_id,
                facility_id=admission.facility_id,
            ),
            amount=amount,
            method=method,
            reference=reference or "",
            notes=notes or "",
            received_at=received_at,
            recorded_by_user_id=actor_user_id,
        )
        rows = [
            PaymentAllocation(
                tenant_id=admission.tenant_id,
                facility_id=admission.facility_id,
                transaction=txn,
                bill_item_id=item_id,
                amount=part,
            )
            for item_id, part in allocations
            if part > ZERO
        ]
        PaymentAllocation.objects.bulk_create(rows)

        allocated = money_sum(r.amount for r in rows)
        if allocated != amount:
            raise ValidationError({"total_amount": f"Allocations {allocated} do not add up to {amount}."})
        return txn

    @staticmethod
    def _draw_advances(advances: list[Advance], *, amount: Decimal, txn: PaymentTransaction) -> None:
        """
        Oldest advance first. Each draw is a conditional UPDATE; a row that no
        longer holds enough balance means someone else drew it first.
        """
        remaining = amount
        now = timezone.now()
        for adv in advances:
            if remaining <= ZERO:
                break
            draw = min(adv.available_amount, remaining)
            if draw <= ZERO:
                continue

            updated = Advance.objects.filter(
                pk=adv.pk,
                status=AdvanceStatus.ACTIVE,
                available_amount__gte=draw,
            ).update(
                used_amount=F("used_amount") + draw,
                available_amount=F("available_amount") - draw,
                updated_at=now,
            )
            if updated == 0:
                raise InsufficientAdvance("Advance balance changed during payment. Refresh and retry.")

            Advance.objects.filter(pk=adv.pk, available_amount__lte=ZERO).update(
                status=AdvanceStatus.FULLY_USED,
                updated_at=now,
            )
            AdvanceDraw.objects.create(
                tenant_id=txn.tenant_id,
                facility_id=txn.facility_id,
                advance=adv,
                transaction=txn,
                amount=draw,
            )
            remaining = money(remaining - draw)

        if remaining > ZERO:
            raise InsufficientAdvance(f"Advance balance short by {remaining}.")
