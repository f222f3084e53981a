# hb_core/charges/services.py
from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from hb_core.admissions.models import Admission
from hb_core.audit.services import AuditService
from hb_core.billing.models import BillItem, BillItemStatus, ChargeSourceType
from hb_core.charges.models import (
    ChargeStatus,
    OtherBill,
    OtherBillPayment,
    OtherBillPaymentStatus,
    OtherChargeCategory,
    PatientType,
)
from hb_core.common.choices import COLLECTION_METHODS, PaymentMethod
from hb_core.common.money import ZERO, money, parse_money
from hb_core.common.numbering import next_number_locked
from hb_core.patients.models import Patient

logger = logging.getLogger(__name__)

OTHER_BILL_PREFIX = "OB"
HUNDRED = Decimal("100")


def calculate_other_bill_amounts(*, quantity, unit_price, discount_percent=ZERO, tax_percent=ZERO) -> dict:
    """
    subtotal = quantity * unit_price
    discount = subtotal * discount% (tax is charged on the discounted amount)
    """
    subtotal = money(quantity * unit_price)
    discount_amount = money(subtotal * discount_percent / HUNDRED)
    after_discount = subtotal - discount_amount
    tax_amount = money(after_discount * tax_percent / HUNDRED)
    total_amount = money(after_discount + tax_amount)
    return {
        "subtotal": subtotal,
        "discount_amount": discount_amount,
        "tax_amount": tax_amount,
        "total_amount": total_amount,
    }


def _payment_status_for(*, paid: Decimal, total: Decimal) -> str:
    if paid >= total:
        return OtherBillPaymentStatus.PAID
    if paid > ZERO:
        return OtherBillPaymentStatus.PARTIAL
    return OtherBillPaymentStatus.PENDING


class OtherBillService:
    @staticmethod
    def _get_locked(*, tenant_id: UUID, facility_id: UUID, bill_id: UUID) -> OtherBill:
        try:
            return OtherBill.objects.select_for_update().get(id=bill_id, tenant_id=tenant_id, facility_id=facility_id)
        except OtherBill.DoesNotExist:
            raise NotFound("Other bill not found.")

    @staticmethod
    def _linked_item_locked(bill: OtherBill) -> BillItem | None:
        if bill.admission_id is None:
            return None
        return (
            BillItem.objects.select_for_update()
            .filter(
                tenant_id=bill.tenant_id,
                facility_id=bill.facility_id,
                admission_id=bill.admission_id,
                source_type=ChargeSourceType.OTHER_BILL,
                source_id=bill.id,
            )
            .exclude(status=BillItemStatus.CANCELLED)
            .first()
        )

    @staticmethod
    @transaction.atomic
    def create(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        patient_id: UUID,
        actor_user_id: int | None,
        charge_description: str,
        quantity=Decimal("1.00"),
        unit_price=Decimal("0.00"),
        discount_percent=Decimal("0.00"),
        tax_percent=Decimal("0.00"),
        charge_category: str = OtherChargeCategory.OTHER,
        patient_type: str = PatientType.IP,
        admission_id: UUID | None = None,
        reference_number: str = "",
        remarks: str = "",
    ) -> OtherBill:
        try:
            patient = Patient.objects.get(id=patient_id, tenant_id=tenant_id, facility_id=facility_id)
        except Patient.DoesNotExist:
            raise NotFound("Patient not found.")

        admission = None
        if admission_id:
            try:
                admission = Admission.objects.get(id=admission_id, tenant_id=tenant_id, facility_id=facility_id)
            except Admission.DoesNotExist:
                raise NotFound("Admission not found.")
            if admission.patient_id != patient.id:
                raise ValidationError({"admission": "Admission belongs to a different patient."})

        quantity = parse_money(quantity, "quantity")
        unit_price = parse_money(unit_price, "unit_price")
        discount_percent = parse_money(discount_percent, "discount_percent")
        tax_percent = parse_money(tax_percent, "tax_percent")

        if quantity <= ZERO:
            raise ValidationError({"quantity": "Must be > 0"})
        if unit_price < ZERO:
            raise ValidationError({"unit_price": "Must be >= 0"})
        if not (ZERO <= discount_percent <= HUNDRED):
            raise ValidationError({"discount_percent": "Must be between 0 and 100"})
        if tax_percent < ZERO:
            raise ValidationError({"tax_percent": "Must be >= 0"})

        amounts = calculate_other_bill_amounts(
            quantity=quantity,
            unit_price=unit_price,
            discount_percent=discount_percent,
            tax_percent=tax_percent,
        )

        bill = OtherBill.objects.create(
            tenant_id=tenant_id,
            facility_id=facility_id,
            patient=patient,
            admission=admission,
            bill_number=next_number_locked(
                model=OtherBill,
                field="bill_number",
                prefix=OTHER_BILL_PREFIX,
                tenant_id=tenant_id,
                facility_id=facility_id,
            ),
            patient_type=patient_type,
            charge_category=charge_category,
            charge_description=charge_description,
            quantity=quantity,
            unit_price=unit_price,
            discount_percent=discount_percent,
            tax_percent=tax_percent,
            paid_amount=ZERO,
            balance_amount=amounts["total_amount"],
            payment_status=OtherBillPaymentStatus.PENDING,
            reference_number=reference_number or "",
            remarks=remarks or "",
            created_by_user_id=actor_user_id,
            **amounts,
        )

        AuditService.log(
            event_code="other_bill.created",
            entity_type="OtherBill",
            entity_id=bill.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"bill_number": bill.bill_number, "total_amount": bill.total_amount},
        )
        return bill

    @staticmethod
    @transaction.atomic
    def record_payment(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        bill_id: UUID,
        amount,
        method: str = PaymentMethod.CASH,
        reference: str = "",
        notes: str = "",
        actor_user_id: int | None = None,
    ) -> OtherBillPayment:
        bill = OtherBillService._get_locked(tenant_id=tenant_id, facility_id=facility_id, bill_id=bill_id)

        if bill.is_cancelled:
            raise ValidationError({"bill": "Cannot record payment for a cancelled bill."})

        amount = parse_money(amount, "amount")
        if amount <= ZERO:
            raise ValidationError({"amount": "Payment amount must be > 0."})
        if method not in COLLECTION_METHODS:
            raise ValidationError({"method": f"Unsupported payment method '{method}'."})

        # A bill on a stay shares its balance with the stay's bill item, which
        # may already carry allocator payments.
        item = OtherBillService._linked_item_locked(bill)
        collectable = bill.outstanding
        if item is not None:
            item.absorb_source_paid(bill.paid_amount)
            collectable = min(collectable, item.pending_amount)
        if amount > collectable:
            raise ValidationError({"amount": f"Payment exceeds outstanding balance {collectable}."})

        payment = OtherBillPayment.objects.create(
            tenant_id=tenant_id,
            facility_id=facility_id,
            bill=bill,
            amount=amount,
            method=method,
            reference=reference or "",
            notes=notes or "",
            received_by_user_id=actor_user_id,
        )

        bill.paid_amount = money(bill.paid_amount + amount)
        bill.balance_amount = max(ZERO, money(bill.total_amount - bill.paid_amount))
        bill.payment_status = _payment_status_for(paid=bill.paid_amount, total=bill.total_amount)
        bill.save(update_fields=["paid_amount", "balance_amount", "payment_status", "updated_at"])

        if item is not None:
            item.absorb_source_paid(bill.paid_amount)
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

        AuditService.log(
            event_code="other_bill.payment_recorded",
            entity_type="OtherBill",
            entity_id=bill.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"amount": amount, "method": method, "payment_id": payment.id},
        )
        return payment

    @staticmethod
    @transaction.atomic
    def cancel(
        *,
        tenant_id: UUID,
        facility_id: UUID,
        bill_id: UUID,
        actor_user_id: int | None = None,
        reason: str = "",
    ) -> OtherBill:
        bill = OtherBillService._get_locked(tenant_id=tenant_id, facility_id=facility_id, bill_id=bill_id)

        if bill.is_cancelled:
            return bill
        if bill.payment_status == OtherBillPaymentStatus.PAID:
            raise ValidationError({"bill": "Cannot cancel a fully paid bill."})

        bill.status = ChargeStatus.CANCELLED
        bill.payment_status = OtherBillPaymentStatus.CANCELLED
        if reason:
            bill.remarks = (bill.remarks + "\n" + f"CANCELLED {timezone.localdate():%Y-%m-%d}: {reason}").strip()
        bill.save(update_fields=["status", "payment_status", "remarks", "updated_at"])

        if bill.paid_amount > ZERO:
            logger.warning("Other bill %s cancelled with %s already collected", bill.bill_number, bill.paid_amount)

        AuditService.log(
            event_code="other_bill.cancelled",
            entity_type="OtherBill",
            entity_id=bill.id,
            tenant_id=tenant_id,
            facility_id=facility_id,
            actor_user_id=actor_user_id,
            metadata={"reason": reason, "paid_amount": bill.paid_amount},
        )
        return bill
