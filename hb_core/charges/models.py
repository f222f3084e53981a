# hb_core/charges/models.py
from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.utils import timezone

from hb_core.admissions.models import Admission
from hb_core.common.choices import PaymentMethod
from hb_core.common.models import ScopedModel
from hb_core.common.money import ZERO, money, money_sum
from hb_core.patients.models import Patient


class ChargeStatus(models.TextChoices):
    ACTIVE = "ACTIVE", "Active"
    CANCELLED = "CANCELLED", "Cancelled"


# -------------------------------------------------------------------
# Department charges posted against a stay
# -------------------------------------------------------------------

class DoctorService(ScopedModel):
    """
    Visits/procedures by a doctor other than the consulting doctor.
    """
    admission = models.ForeignKey(Admission, on_delete=models.PROTECT, related_name="doctor_services")

    doctor_name = models.CharField(max_length=255)
    service_name = models.CharField(max_length=255)
    fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    quantity = models.PositiveIntegerField(default=1)
    service_date = models.DateField(default=timezone.localdate)

    status = models.CharField(max_length=16, choices=ChargeStatus.choices, default=ChargeStatus.ACTIVE, db_index=True)

    class Meta:
        db_table = "charges_doctor_service"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "admission"]),
        ]

    @property
    def total_amount(self) -> Decimal:
        return money(self.fee * self.quantity)


class SurgeryCharge(ScopedModel):
    admission = models.ForeignKey(Admission, on_delete=models.PROTECT, related_name="surgery_charges")

    procedure_name = models.CharField(max_length=255)
    surgeon_name = models.CharField(max_length=255, blank=True)
    surgery_date = models.DateField(default=timezone.localdate)

    surgeon_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    anesthesia_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    ot_charges = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    equipment_charges = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    consumables_charges = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    other_charges = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    status = models.CharField(max_length=16, choices=ChargeStatus.choices, default=ChargeStatus.ACTIVE, db_index=True)

    class Meta:
        db_table = "charges_surgery_charge"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "admission"]),
        ]

    @property
    def total_amount(self) -> Decimal:
        return money_sum(
            [
                self.surgeon_fee,
                self.anesthesia_fee,
                self.ot_charges,
                self.equipment_charges,
                self.consumables_charges,
                self.other_charges,
            ]
        )


class PrescribedMedicine(ScopedModel):
    """
    Ward medication issued against the stay without a separate pharmacy bill.
    """
    admission = models.ForeignKey(Admission, on_delete=models.PROTECT, related_name="prescribed_medicines")

    medicine_name = models.CharField(max_length=255)
    quantity = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("1.00"))
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    prescribed_on = models.DateField(default=timezone.localdate)

    status = models.CharField(max_length=16, choices=ChargeStatus.choices, default=ChargeStatus.ACTIVE, db_index=True)

    class Meta:
        db_table = "charges_prescribed_medicine"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "admission"]),
        ]

    @property
    def total_amount(self) -> Decimal:
        return money(self.quantity * self.unit_price)


class PharmacyBill(ScopedModel):
    """
    Pharmacy sale billed to the stay. Collections made at the pharmacy counter
    are tracked on `paid_amount`.
    """
    admission = models.ForeignKey(Admission, on_delete=models.PROTECT, related_name="pharmacy_bills")

    bill_number = models.CharField(max_length=32)
    bill_date = models.DateField(default=timezone.localdate)
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    status = models.CharField(max_length=16, choices=ChargeStatus.choices, default=ChargeStatus.ACTIVE, db_index=True)

    class Meta:
        db_table = "charges_pharmacy_bill"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "admission"]),
        ]

    @property
    def total_amount(self) -> Decimal:
        return money_sum(line.total_amount for line in self.lines.all())


class PharmacyBillLine(ScopedModel):
    bill = models.ForeignKey(PharmacyBill, on_delete=models.CASCADE, related_name="lines")

    medicine_name = models.CharField(max_length=255)
    batch_number = models.CharField(max_length=64, blank=True)
    quantity = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("1.00"))
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    class Meta:
        db_table = "charges_pharmacy_bill_line"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "bill"]),
        ]

    @property
    def total_amount(self) -> Decimal:
        return money(self.quantity * self.unit_price)


class LabOrder(ScopedModel):
    admission = models.ForeignKey(Admission, on_delete=models.PROTECT, related_name="lab_orders")

    order_number = models.CharField(max_length=32)
    ordered_on = models.DateField(default=timezone.localdate)

    status = models.CharField(max_length=16, choices=ChargeStatus.choices, default=ChargeStatus.ACTIVE, db_index=True)

    class Meta:
        db_table = "charges_lab_order"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "admission"]),
        ]


class LabOrderTest(ScopedModel):
    order = models.ForeignKey(LabOrder, on_delete=models.CASCADE, related_name="tests")

    test_name = models.CharField(max_length=255)
    cost = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    status = models.CharField(max_length=16, choices=ChargeStatus.choices, default=ChargeStatus.ACTIVE, db_index=True)

    class Meta:
        db_table = "charges_lab_order_test"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "order"]),
        ]


class RadiologyOrder(ScopedModel):
    admission = models.ForeignKey(Admission, on_delete=models.PROTECT, related_name="radiology_orders")

    order_number = models.CharField(max_length=32)
    ordered_on = models.DateField(default=timezone.localdate)

    status = models.CharField(max_length=16, choices=ChargeStatus.choices, default=ChargeStatus.ACTIVE, db_index=True)

    class Meta:
        db_table = "charges_radiology_order"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "admission"]),
        ]


class RadiologyOrderScan(ScopedModel):
    order = models.ForeignKey(RadiologyOrder, on_delete=models.CASCADE, related_name="scans")

    scan_name = models.CharField(max_length=255)
    cost = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    status = models.CharField(max_length=16, choices=ChargeStatus.choices, default=ChargeStatus.ACTIVE, db_index=True)

    class Meta:
        db_table = "charges_radiology_order_scan"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "order"]),
        ]


# -------------------------------------------------------------------
# Miscellaneous ("other") bills
# -------------------------------------------------------------------

class OtherChargeCategory(models.TextChoices):
    NURSING_CHARGES = "nursing_charges", "Nursing Charges"
    ATTENDANT_CHARGES = "attendant_charges", "Attendant Charges"
    MEDICAL_EQUIPMENT = "medical_equipment", "Medical Equipment"
    AMBULANCE_SERVICE = "ambulance_service", "Ambulance Service"
    SPECIAL_PROCEDURES = "special_procedures", "Special Procedures"
    DIETARY_CHARGES = "dietary_charges", "Dietary Charges"
    LAUNDRY_SERVICE = "laundry_service", "Laundry Service"
    ACCOMMODATION_EXTRA = "accommodation_extra", "Extra Accommodation"
    MORTUARY_CHARGES = "mortuary_charges", "Mortuary Charges"
    CERTIFICATE_CHARGES = "certificate_charges", "Certificate Fees"
    PHOTOCOPYING = "photocopying", "Photocopying"
    MISC_SUPPLIES = "misc_supplies", "Miscellaneous Supplies"
    OTHER = "other", "Other"


class PatientType(models.TextChoices):
    IP = "IP", "Inpatient"
    OP = "OP", "Outpatient"
    EMERGENCY = "Emergency", "Emergency"
    GENERAL = "General", "General"


class OtherBillPaymentStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PARTIAL = "partial", "Partial"
    PAID = "paid", "Paid"
    CANCELLED = "cancelled", "Cancelled"


class OtherBill(ScopedModel):
    """
    Miscellaneous charge collected at the billing counter.
    When linked to an admission it is also part of that stay's bill.
    """
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name="other_bills")
    admission = models.ForeignKey(
        Admission,
        on_delete=models.PROTECT,
        related_name="other_bills",
        null=True,
        blank=True,
    )

    bill_number = models.CharField(max_length=32)
    bill_date = models.DateTimeField(default=timezone.now)
    patient_type = models.CharField(max_length=16, choices=PatientType.choices, default=PatientType.IP)

    charge_category = models.CharField(
        max_length=32,
        choices=OtherChargeCategory.choices,
        default=OtherChargeCategory.OTHER,
    )
    charge_description = models.CharField(max_length=255)

    quantity = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("1.00"))
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    discount_percent = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("0.00"))
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    tax_percent = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("0.00"))
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    balance_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    payment_status = models.CharField(
        max_length=16,
        choices=OtherBillPaymentStatus.choices,
        default=OtherBillPaymentStatus.PENDING,
        db_index=True,
    )

    status = models.CharField(max_length=16, choices=ChargeStatus.choices, default=ChargeStatus.ACTIVE, db_index=True)

    reference_number = models.CharField(max_length=64, blank=True)
    remarks = models.TextField(blank=True)
    created_by_user_id = models.IntegerField(null=True, blank=True)

    class Meta:
        db_table = "charges_other_bill"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "facility_id", "bill_number"],
                name="uq_other_bill_scope_number",
            )
        ]
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "bill_date"]),
            models.Index(fields=["tenant_id", "facility_id", "patient"]),
            models.Index(fields=["tenant_id", "facility_id", "admission"]),
            models.Index(fields=["tenant_id", "facility_id", "payment_status"]),
        ]

    def __str__(self) -> str:
        return f"{self.bill_number} ({self.payment_status})"

    @property
    def is_cancelled(self) -> bool:
        return self.status == ChargeStatus.CANCELLED or self.payment_status == OtherBillPaymentStatus.CANCELLED

    @property
    def outstanding(self) -> Decimal:
        return max(ZERO, money(self.total_amount - self.paid_amount))


class OtherBillPayment(ScopedModel):
    bill = models.ForeignKey(OtherBill, on_delete=models.PROTECT, related_name="payments")

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    method = models.CharField(max_length=32, choices=PaymentMethod.choices, default=PaymentMethod.CASH)
    reference = models.CharField(max_length=64, blank=True)
    notes = models.TextField(blank=True)
    received_at = models.DateTimeField(default=timezone.now)
    received_by_user_id = models.IntegerField(null=True, blank=True)

    class Meta:
        db_table = "charges_other_bill_payment"
        indexes = [
            models.Index(fields=["tenant_id", "facility_id", "bill"]),
        ]
