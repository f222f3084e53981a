# hb_core/billing/sources.py
"""
Charge sources feeding a stay's bill.

Each source reads one kind of department record and flattens it into
ChargeLine values. The aggregator sums lines per category; bill item sync
materializes one BillItem per line, keyed on (source_type, source_id).
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID

from hb_core.admissions.models import Admission
from hb_core.billing.models import BillCategory, ChargeSourceType
from hb_core.charges.models import (
    ChargeStatus,
    DoctorService,
    LabOrderTest,
    OtherBill,
    OtherBillPaymentStatus,
    PharmacyBill,
    PrescribedMedicine,
    RadiologyOrderScan,
    SurgeryCharge,
)
from hb_core.common.money import ZERO, money


@dataclass(frozen=True)
class ChargeLine:
    source_type: str
    source_id: UUID
    category: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    service_date: date | None = None
    # amount already collected at a department counter for this line
    source_paid: Decimal = ZERO


class ChargeSource:
    source_type: ClassVar[str]
    category: ClassVar[str]

    def load(self, admission: Admission, *, at: datetime | None = None) -> list[ChargeLine]:
        raise NotImplementedError

    def _line(self, *, source_id, description, quantity, unit_price, amount=None, service_date=None, source_paid=ZERO):
        quantity = Decimal(quantity)
        unit_price = money(unit_price)
        return ChargeLine(
            source_type=str(self.source_type),
            source_id=source_id,
            category=str(self.category),
            description=description,
            quantity=quantity,
            unit_price=unit_price,
            amount=money(quantity * unit_price) if amount is None else money(amount),
            service_date=service_date,
            source_paid=money(source_paid),
        )


class BedSource(ChargeSource):
    """daily rate x stay days, recomputed on every read"""
    source_type = ChargeSourceType.BED
    category = BillCategory.BED_CHARGES

    def load(self, admission, *, at=None):
        label = " ".join(p for p in (admission.bed_type, admission.bed_number) if p) or "Bed"
        return [
            self._line(
                source_id=admission.id,
                description=f"Bed charges ({label})",
                quantity=admission.stay_days(at),
                unit_price=admission.bed_daily_rate,
                service_date=admission.admitted_at.date(),
            )
        ]


class ConsultationSource(ChargeSource):
    source_type = ChargeSourceType.CONSULTATION
    category = BillCategory.DOCTOR_CONSULTATION

    def load(self, admission, *, at=None):
        doctor = admission.consulting_doctor or "Consulting doctor"
        return [
            self._line(
                source_id=admission.id,
                description=f"Consultation - {doctor}",
                quantity=admission.stay_days(at),
                unit_price=admission.consultation_fee,
                service_date=admission.admitted_at.date(),
            )
        ]


class DoctorServiceSource(ChargeSource):
    source_type = ChargeSourceType.DOCTOR_SERVICE
    category = BillCategory.DOCTOR_SERVICES

    def load(self, admission, *, at=None):
        rows = DoctorService.objects.filter(
            tenant_id=admission.tenant_id,
            facility_id=admission.facility_id,
            admission=admission,
            status=ChargeStatus.ACTIVE,
        ).order_by("service_date", "created_at")
        return [
            self._line(
                source_id=r.id,
                description=f"{r.service_name} - {r.doctor_name}",
                quantity=r.quantity,
                unit_price=r.fee,
                service_date=r.service_date,
            )
            for r in rows
        ]


class SurgerySource(ChargeSource):
    source_type = ChargeSourceType.SURGERY
    category = BillCategory.SURGERY

    def load(self, admission, *, at=None):
        rows = SurgeryCharge.objects.filter(
            tenant_id=admission.tenant_id,
            facility_id=admission.facility_id,
            admission=admission,
            status=ChargeStatus.ACTIVE,
        ).order_by("surgery_date", "created_at")
        return [
            self._line(
                source_id=r.id,
                description=f"Surgery - {r.procedure_name}",
                quantity=1,
                unit_price=r.total_amount,
                service_date=r.surgery_date,
            )
            for r in rows
        ]


class PrescriptionSource(ChargeSource):
    source_type = ChargeSourceType.PRESCRIPTION
    category = BillCategory.PHARMACY

    def load(self, admission, *, at=None):
        rows = PrescribedMedicine.objects.filter(
            tenant_id=admission.tenant_id,
            facility_id=admission.facility_id,
            admission=admission,
            status=ChargeStatus.ACTIVE,
        ).order_by("prescribed_on", "created_at")
        return [
            self._line(
                source_id=r.id,
                description=r.medicine_name,
                quantity=r.quantity,
                unit_price=r.unit_price,
                service_date=r.prescribed_on,
            )
            for r in rows
        ]


class PharmacyBillSource(ChargeSource):
    """
    Flattens pharmacy bills into their lines. A bill's counter collection is
    spread over its lines in order, each line taking at most its own total.
    """
    source_type = ChargeSourceType.PHARMACY_BILL
    category = BillCategory.PHARMACY

    def load(self, admission, *, at=None):
        bills = (
            PharmacyBill.objects.filter(
                tenant_id=admission.tenant_id,
                facility_id=admission.facility_id,
                admission=admission,
                status=ChargeStatus.ACTIVE,
            )
            .prefetch_related("lines")
            .order_by("bill_date", "created_at")
        )

        out: list[ChargeLine] = []
        for bill in bills:
            unapplied = money(bill.paid_amount)
            for line in sorted(bill.lines.all(), key=lambda l: (l.created_at, l.id)):
                total = line.total_amount
                paid = min(total, unapplied)
                unapplied -= paid
                out.append(
                    self._line(
                        source_id=line.id,
                        description=f"{line.medicine_name} ({bill.bill_number})",
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                        service_date=bill.bill_date,
                        source_paid=paid,
                    )
                )
        return out


class LabOrderSource(ChargeSource):
    source_type = ChargeSourceType.LAB_ORDER
    category = BillCategory.LAB

    def load(self, admission, *, at=None):
        tests = (
            LabOrderTest.objects.filter(
                tenant_id=admission.tenant_id,
                facility_id=admission.facility_id,
                order__admission=admission,
                order__status=ChargeStatus.ACTIVE,
                status=ChargeStatus.ACTIVE,
            )
            .select_related("order")
            .order_by("order__ordered_on", "created_at")
        )
        return [
            self._line(
                source_id=t.id,
                description=f"{t.test_name} ({t.order.order_number})",
                quantity=1,
                unit_price=t.cost,
                service_date=t.order.ordered_on,
            )
            for t in tests
        ]


class RadiologyOrderSource(ChargeSource):
    source_type = ChargeSourceType.RADIOLOGY_ORDER
    category = BillCategory.RADIOLOGY

    def load(self, admission, *, at=None):
        scans = (
            RadiologyOrderScan.objects.filter(
                tenant_id=admission.tenant_id,
                facility_id=admission.facility_id,
                order__admission=admission,
                order__status=ChargeStatus.ACTIVE,
                status=ChargeStatus.ACTIVE,
            )
            .select_related("order")
            .order_by("order__ordered_on", "created_at")
        )
        return [
            self._line(
                source_id=s.id,
                description=f"{s.scan_name} ({s.order.order_number})",
                quantity=1,
                unit_price=s.cost,
                service_date=s.order.ordered_on,
            )
            for s in scans
        ]


class OtherBillSource(ChargeSource):
    """Other bills linked to the stay, at their final (discounted, taxed) total."""
    source_type = ChargeSourceType.OTHER_BILL
    category = BillCategory.OTHER

    def load(self, admission, *, at=None):
        bills = (
            OtherBill.objects.filter(
                tenant_id=admission.tenant_id,
                facility_id=admission.facility_id,
                admission=admission,
                status=ChargeStatus.ACTIVE,
            )
            .exclude(payment_status=OtherBillPaymentStatus.CANCELLED)
            .order_by("bill_date", "created_at")
        )
        return [
            self._line(
                source_id=b.id,
                description=f"{b.charge_description} ({b.bill_number})",
                quantity=1,
                unit_price=b.total_amount,
                service_date=b.bill_date.date(),
                source_paid=min(b.paid_amount, b.total_amount),
            )
            for b in bills
        ]


# Every source type except MANUAL, which lives only as bill items.
CHARGE_SOURCES: tuple[ChargeSource, ...] = (
    BedSource(),
    ConsultationSource(),
    DoctorServiceSource(),
    SurgerySource(),
    PrescriptionSource(),
    PharmacyBillSource(),
    LabOrderSource(),
    RadiologyOrderSource(),
    OtherBillSource(),
)

# Sources that collect money at their own counter (ChargeLine.source_paid).
COUNTER_SOURCES: tuple[ChargeSource, ...] = tuple(
    s for s in CHARGE_SOURCES if s.source_type in (ChargeSourceType.PHARMACY_BILL, ChargeSourceType.OTHER_BILL)
)
COUNTER_SOURCE_TYPES = frozenset(str(s.source_type) for s in COUNTER_SOURCES)
