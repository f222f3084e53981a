# hb_core/billing/services.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from hb_core.admissions.models import Admission
from hb_core.admissions.selectors import AdmissionSelectors
from hb_core.audit.services import AuditService
from hb_core.billing.aggregator import BillingSummary, load_charge_lines, summarize_admission
from hb_core.billing.models import (
    Advance,
    AdvanceStatus,
    BillCategory,
    BillDiscount,
    BillItem,
    BillItemStatus,
    ChargeSourceType,
    DiscountType,
)
from hb_core.billing.sources import CHARGE_SOURCES, ChargeSource
from hb_core.common.choices import COLLECTION_METHODS, PaymentMethod
from hb_core.common.money import ZERO, money, parse_money

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")

# Bed and consultation items follow admission scalars, so they are never auto-cancelled.
ADMISSION_SOURCE_TYPES = (ChargeSourceType.BED, ChargeSourceType.CONSULTATION)


@dataclass
class SyncResult:
    created: int = 0
    updated: int = 0
    cancelled: int = 0
    skipped: int = 0
    degraded_categories: list[str] = field(default_factory=list)


def _get_item_locked(*, tenant_id: UUID, facility_id: UUID, item_id: UUID) -> BillItem:
    try:
        return BillItem.objects.select_for_update().get(id=item_id, tenant_id=tenant_id, facility_id=facility_id)
    except BillItem.DoesNotExist:
        raise NotFound("Bill item not found.")


class BillItemService:
    @staticmethod
    @transaction.atomic
    def sync_bill_items(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        admission_id: UUID,
        actor_user_id: int | None = None,
        sources: Iterable[ChargeSource] = CHARGE_SOURCES,
        at=None,
    ) -> SyncResult:
        """
        Materializes one BillItem per charge line (dedupe on source type + id).

        - new lines become items
        - existing live items follow their source's quantity/rate, unless that
          would drop net below what is already paid
        - counter collections on self-tracking sources are copied into paid
        - unpaid items whose source disappeared are cancelled
        """
        admission = AdmissionSelectors.get_admission(
            tenant_id=tenant_id,
            facility_id=facility_id,
            admission_id=admission_id,
            for_update=True,
        )
        sources = tuple(sources)
        loaded = load_charge_lines(admission, at=at, sources=sources)
        result = SyncResult()
        for s in loaded.failed:
            if str(s.category) not in result.degraded_categories:
                result.degraded_categories.append(str(s.category))

        existing = {
            (i.source_type, i.source_id): i
            for i in BillItem.objects.select_for_update().filter(
                tenant_id=tenant_id,
                facility_id=facility_id,
                admission=admission,
                source_id__isnull=False,
            )
        }
        seen = set()

        for line in loaded.lines:
            key = (line.source_type, line.source_id)
            seen.add(key)
            item = existing.get(key)

            if item is None:
                if line.amount <= ZERO:
                    continue
                item = BillItem(
                    tenant_id=tenant_id,
                    facility_id=facility_id,
                    admission=admission,
                    category=line.category,
                    description=line.description,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    source_type=line.source_type,
                    source_id=line.source_id,
                    service_date=line.service_date,
                )
                item.recompute()
                collected = min(line.source_paid, item.net_amount)
                item.paid_amount = collected
                item.source_paid_amount = collected
                item.recompute()
                item.save()
                result.created += 1
                continue

            if item.is_cancelled:
                continue

            changed = False
            if item.quantity != line.quantity or item.unit_price != line.unit_price:
                new_net = money(line.quantity * line.unit_price - item.discount_amount)
                if new_net < item.paid_amount:
                    logger.warning(
                        "Skipping refresh of bill item %s: new net %s is below paid %s",
                        item.id,
                        new_net,
                        item.paid_amount,
                    )
                    result.skipped += 1
                else:
                    item.quantity = line.quantity
                    item.unit_price = line.unit_price
                    item.description = line.description
                    changed = True

            if item.absorb_source_paid(line.source_paid) > ZERO:
                changed = True

            if changed:
                item.recompute()
                item.save()
                result.updated += 1

        loaded_types = {str(s.source_type) for s in sources if s not in loaded.failed}
        for key, item in existing.items():
            source_type, _ = key
            if key in seen or item.is_cancelled:
                continue
            if source_type not in loaded_types or source_type in ADMISSION_SOURCE_TYPES:
                continue
            if item.paid_amount > ZERO:
                logger.warning("Source of bill item %s is gone but %s was already paid", item.id, item.paid_amount)
                continue
            item.status = BillItemStatus.CANCELLED
            item.cancelled_at = timezone.now()
            item.cancel_reason = "Charge source cancelled"
            item.save(update_fields=["status", "cancelled_at", "cancel_reason", "updated_at"])
            result.cancelled += 1

        if result.created or result.updated or result.cancelled:
            AuditService.log(
                event_code="billing.items_synced",
                entity_type="Admission",
                entity_id=admission.id,
                tenant_id=tenant_id,
                facility_id=facility_id,
                actor_user_id=actor_user_id,
                metadata={
                    "created": result.created,
                    "updated": result.updated,
                    "cancelled": result.cancelled,
                    "skipped": result.skipped,
                },
            )
        return result

    @staticmethod
    @transaction.atomic
    def add_manual_item(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        admission_id: UUID,
        category: str,
        description: str,
        quantity=Decimal("1.00"),
        unit_price=Decimal("0.00"),
        service_date=None,
        actor_user_id: int | None = None,
    ) -> BillItem:
        admission = AdmissionSelectors.get_admission(
            tenant_id=tenant_id,
            facility_id=facility_id,
            admission_id=admission_id,
        )
        if category not in BillCategory.values:
            raise ValidationError({"category": f"Unknown category '{category}'."})

        quantity = parse_money(quantity, "quantity")
        unit_price = parse_money(unit_price, "unit_price")
        if quantity <= ZERO:
            raise ValidationError({"quantity": "Must be > 0"})
        if unit_price < ZERO:
            raise ValidationError({"unit_price": "Must be >= 0"})

        item = BillItem(
            tenant_id=tenant_id,
            facility_id=facility_id,
            admission=admission,
            category=category,
            description=description,
            quantity=quantity,
            unit_price=unit_price,
            source_type=ChargeSourceType.MANUAL,
            service_date=service_date or timezone.localdate(),
        )
        item.recompute()
        item.save()

        AuditService.log(
            event_code="billing.item_added",
            entity_type="BillItem",
            entity_id=item.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"category": category, "gross_amount": item.gross_amount},
        )
        return item

    @staticmethod
    @transaction.atomic
    def update_item(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        item_id: UUID,
        data: dict,
        actor_user_id: int | None = None,
    ) -> BillItem:
        """
        Edits quantity/unit_price/description of a manual item and re-derives
        its amounts. Source-backed items follow their source (see sync).
        """
        item = _get_item_locked(tenant_id=tenant_id, facility_id=facility_id, item_id=item_id)

        if item.is_cancelled:
            raise ValidationError({"bill_item": "Cancelled items cannot be edited."})
        if item.source_type != ChargeSourceType.MANUAL:
            raise ValidationError({"bill_item": "Only manual items can be edited; update the charge source instead."})

        if "quantity" in data:
            item.quantity = parse_money(data["quantity"], "quantity")
            if item.quantity <= ZERO:
                raise ValidationError({"quantity": "Must be > 0"})
        if "unit_price" in data:
            item.unit_price = parse_money(data["unit_price"], "unit_price")
            if item.unit_price < ZERO:
                raise ValidationError({"unit_price": "Must be >= 0"})
        if "description" in data:
            item.description = data["description"]

        gross = money(item.quantity * item.unit_price)
        if item.discount_amount > gross:
            raise ValidationError({"bill_item": "Discount would exceed the new gross amount."})
        if money(gross - item.discount_amount) < item.paid_amount:
            raise ValidationError({"bill_item": f"Net amount cannot drop below the paid amount {item.paid_amount}."})

        item.recompute()
        item.save()

        AuditService.log(
            event_code="billing.item_updated",
            entity_type="BillItem",
            entity_id=item.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"quantity": item.quantity, "unit_price": item.unit_price, "net_amount": item.net_amount},
        )
        return item

    @staticmethod
    @transaction.atomic
    def apply_discount(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        item_id: UUID,
        discount_type: str,
        discount_value,
        reason: str = "",
        approved_by: str = "",
        actor_user_id: int | None = None,
    ) -> BillItem:
        """
        Sets the item's discount (replacing any earlier one) and keeps a
        BillDiscount history row.
        """
        item = _get_item_locked(tenant_id=tenant_id, facility_id=facility_id, item_id=item_id)
        if item.is_cancelled:
            raise ValidationError({"bill_item": "Cannot discount a cancelled item."})

        value = parse_money(discount_value, "discount_value")
        if value < ZERO:
            raise ValidationError({"discount_value": "Must be >= 0"})

        if discount_type == DiscountType.PERCENTAGE:
            if value > HUNDRED:
                raise ValidationError({"discount_value": "Percentage cannot exceed 100."})
            amount = money(item.gross_amount * value / HUNDRED)
        elif discount_type == DiscountType.FIXED:
            amount = value
        else:
            raise ValidationError({"discount_type": f"Unknown discount type '{discount_type}'."})

        if amount > item.gross_amount:
            raise ValidationError({"discount_value": "Discount cannot exceed the gross amount."})
        if money(item.gross_amount - amount) < item.paid_amount:
            raise ValidationError({"discount_value": f"Net amount cannot drop below the paid amount {item.paid_amount}."})

        item.discount_amount = amount
        item.recompute()
        item.save()

        BillDiscount.objects.create(
            tenant_id=tenant_id,
            facility_id=facility_id,
            bill_item=item,
            discount_type=discount_type,
            discount_value=value,
            discount_amount=amount,
            reason=reason or "",
            approved_by=approved_by or "",
            applied_by_user_id=actor_user_id,
        )

        AuditService.log(
            event_code="billing.item_discounted",
            entity_type="BillItem",
            entity_id=item.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"discount_type": discount_type, "discount_value": value, "discount_amount": amount},
        )
        return item

    @staticmethod
    @transaction.atomic
    def cancel_item(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        item_id: UUID,
        reason: str = "",
        actor_user_id: int | None = None,
    ) -> BillItem:
        """
        Administrative cancel. Terminal; the paid amount stays on the row.
        """
        item = _get_item_locked(tenant_id=tenant_id, facility_id=facility_id, item_id=item_id)
        if item.is_cancelled:
            return item

        previous = item.status
        item.status = BillItemStatus.CANCELLED
        item.cancelled_at = timezone.now()
        item.cancel_reason = reason or ""
        item.save(update_fields=["status", "cancelled_at", "cancel_reason", "updated_at"])

        AuditService.log(
            event_code="billing.item_cancelled",
            entity_type="BillItem",
            entity_id=item.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"previous_status": previous, "paid_amount": item.paid_amount, "reason": reason},
        )
        return item


class AdvanceService:
    @staticmethod
    @transaction.atomic
    def receive_advance(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        admission_id: UUID,
        amount,
        method: str = PaymentMethod.CASH,
        reference: str = "",
        notes: str = "",
        received_at=None,
        actor_user_id: int | None = None,
    ) -> Advance:
        admission = AdmissionSelectors.get_admission(
            tenant_id=tenant_id,
            facility_id=facility_id,
            admission_id=admission_id,
        )

        amount = parse_money(amount, "amount")
        if amount <= ZERO:
            raise ValidationError({"amount": "Advance amount must be > 0."})
        if method not in COLLECTION_METHODS:
            raise ValidationError({"method": f"Unsupported payment method '{method}'."})

        advance = Advance.objects.create(
            tenant_id=tenant_id,
            facility_id=facility_id,
            admission=admission,
            amount=amount,
            used_amount=ZERO,
            available_amount=amount,
            method=method,
            reference=reference or "",
            notes=notes or "",
            status=AdvanceStatus.ACTIVE,
            received_at=received_at or timezone.now(),
            received_by_user_id=actor_user_id,
        )

        AuditService.log(
            event_code="billing.advance_received",
            entity_type="Advance",
            entity_id=advance.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"amount": amount, "method": method},
        )
        return advance

    @staticmethod
    @transaction.atomic
    def cancel_advance(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        advance_id: UUID,
        reason: str = "",
        actor_user_id: int | None = None,
    ) -> Advance:
        try:
            advance = Advance.objects.select_for_update().get(id=advance_id, tenant_id=tenant_id, facility_id=facility_id)
        except Advance.DoesNotExist:
            raise NotFound("Advance not found.")

        if advance.status == AdvanceStatus.CANCELLED:
            return advance
        if advance.used_amount > ZERO or advance.status != AdvanceStatus.ACTIVE:
            raise ValidationError({"advance": "An advance that has been drawn on cannot be cancelled."})

        advance.status = AdvanceStatus.CANCELLED
        advance.cancelled_at = timezone.now()
        if reason:
            advance.notes = (advance.notes + "\n" + f"CANCELLED: {reason}").strip()
        advance.save(update_fields=["status", "cancelled_at", "notes", "updated_at"])

        AuditService.log(
            event_code="billing.advance_cancelled",
            entity_type="Advance",
            entity_id=advance.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"amount": advance.amount, "reason": reason},
        )
        return advance


EDITABLE_ADMISSION_FIELDS = ("bed_daily_rate", "billed_days", "consultation_fee", "discount_amount", "discount_reason")


class AdmissionBillingService:
    @staticmethod
    @transaction.atomic
    def update_admission_billing(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        admission_id: UUID,
        data: dict,
        actor_user_id: int | None = None,
    ) -> BillingSummary:
        """
        Edits the stay's billing scalars, re-syncs bed/consultation items and
        returns a freshly derived summary (never a patched one).
        """
        admission: Admission = AdmissionSelectors.get_admission(
            tenant_id=tenant_id,
            facility_id=facility_id,
            admission_id=admission_id,
            for_update=True,
        )

        unknown = set(data) - set(EDITABLE_ADMISSION_FIELDS)
        if unknown:
            raise ValidationError({k: "Field is not editable." for k in sorted(unknown)})

        changes = {}
        for name in ("bed_daily_rate", "consultation_fee", "discount_amount"):
            if name in data:
                value = parse_money(data[name], name)
                if value < ZERO:
                    raise ValidationError({name: "Must be >= 0"})
                changes[name] = value
        if "billed_days" in data:
            days = data["billed_days"]
            if days is not None:
                try:
                    days = int(days)
                except (TypeError, ValueError):
                    raise ValidationError({"billed_days": "Must be a whole number."})
                if days < 1:
                    raise ValidationError({"billed_days": "Must be >= 1"})
            changes["billed_days"] = days
        if "discount_reason" in data:
            changes["discount_reason"] = data["discount_reason"] or ""

        for name, value in changes.items():
            setattr(admission, name, value)
        if changes:
            admission.save(update_fields=[*changes.keys(), "updated_at"])

        BillItemService.sync_bill_items(
            tenant_id=tenant_id,
            facility_id=facility_id,
            admission_id=admission.id,
            actor_user_id=actor_user_id,
            sources=[s for s in CHARGE_SOURCES if s.source_type in ADMISSION_SOURCE_TYPES],
        )

        AuditService.log(
            event_code="billing.admission_updated",
            entity_type="Admission",
            entity_id=admission.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata=changes,
        )
        return summarize_admission(admission)
