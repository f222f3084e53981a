# hb_core/charges/tests/test_other_bills.py
from decimal import Decimal

import pytest
from rest_framework.exceptions import NotFound, ValidationError

from hb_core.billing.aggregator import compute_summary
from hb_core.charges.models import ChargeStatus, OtherBill, OtherBillPaymentStatus
from hb_core.charges.services import OtherBillService, calculate_other_bill_amounts
from hb_core.patients.models import Patient


def _bill(tenant_id, facility_id, patient, **kw):
    data = {
        "charge_description": "Ambulance transfer",
        "charge_category": "ambulance_service",
        "quantity": "2",
        "unit_price": "500.00",
        "discount_percent": "10",
        "tax_percent": "5",
    }
    data.update(kw)
    return OtherBillService.create(
        tenant_id=tenant_id,
        facility_id=facility_id,
        patient_id=patient.id,
        actor_user_id=None,
        **data,
    )


def test_tax_is_charged_on_the_discounted_amount():
    out = calculate_other_bill_amounts(
        quantity=Decimal("2"),
        unit_price=Decimal("500.00"),
        discount_percent=Decimal("10"),
        tax_percent=Decimal("5"),
    )

    assert out == {
        "subtotal": Decimal("1000.00"),
        "discount_amount": Decimal("100.00"),
        "tax_amount": Decimal("45.00"),
        "total_amount": Decimal("945.00"),
    }


@pytest.mark.django_db
def test_create_numbers_and_prices_the_bill(tenant_id, facility_id, patient):
    bill = _bill(tenant_id, facility_id, patient)

    assert bill.bill_number.startswith("OB-")
    assert bill.bill_number.endswith("-0001")
    assert bill.total_amount == Decimal("945.00")
    assert bill.balance_amount == Decimal("945.00")
    assert bill.payment_status == OtherBillPaymentStatus.PENDING

    second = _bill(tenant_id, facility_id, patient)
    assert second.bill_number.endswith("-0002")


@pytest.mark.django_db
def test_create_rejects_admission_of_another_patient(tenant_id, facility_id, patient, admission):
    other = Patient.objects.create(tenant_id=tenant_id, facility_id=facility_id, full_name="Other", mrn="MRN-OTHER")

    with pytest.raises(ValidationError):
        _bill(tenant_id, facility_id, other, admission_id=admission.id)


@pytest.mark.django_db
@pytest.mark.parametrize(
    "field,value",
    [("quantity", "0"), ("unit_price", "-1"), ("discount_percent", "101"), ("tax_percent", "-2")],
)
def test_create_rejects_bad_amounts(tenant_id, facility_id, patient, field, value):
    with pytest.raises(ValidationError):
        _bill(tenant_id, facility_id, patient, **{field: value})


@pytest.mark.django_db
def test_payments_move_status_pending_partial_paid(tenant_id, facility_id, patient):
    bill = _bill(tenant_id, facility_id, patient)

    OtherBillService.record_payment(tenant_id=tenant_id, facility_id=facility_id, bill_id=bill.id, amount="445.00")
    bill.refresh_from_db()
    assert bill.payment_status == OtherBillPaymentStatus.PARTIAL
    assert bill.balance_amount == Decimal("500.00")

    OtherBillService.record_payment(
        tenant_id=tenant_id, facility_id=facility_id, bill_id=bill.id, amount="500.00", method="upi"
    )
    bill.refresh_from_db()
    assert bill.payment_status == OtherBillPaymentStatus.PAID
    assert bill.balance_amount == Decimal("0.00")
    assert bill.payments.count() == 2


@pytest.mark.django_db
def test_overpayment_is_rejected(tenant_id, facility_id, patient):
    bill = _bill(tenant_id, facility_id, patient)

    with pytest.raises(ValidationError):
        OtherBillService.record_payment(tenant_id=tenant_id, facility_id=facility_id, bill_id=bill.id, amount="1000.00")

    bill.refresh_from_db()
    assert bill.paid_amount == Decimal("0.00")


@pytest.mark.django_db
def test_cancel_rules(tenant_id, facility_id, patient):
    partly = _bill(tenant_id, facility_id, patient)
    OtherBillService.record_payment(tenant_id=tenant_id, facility_id=facility_id, bill_id=partly.id, amount="100.00")

    out = OtherBillService.cancel(tenant_id=tenant_id, facility_id=facility_id, bill_id=partly.id, reason="Not used")
    assert out.status == ChargeStatus.CANCELLED
    assert out.payment_status == OtherBillPaymentStatus.CANCELLED
    assert "Not used" in out.remarks

    with pytest.raises(ValidationError):
        OtherBillService.record_payment(tenant_id=tenant_id, facility_id=facility_id, bill_id=partly.id, amount="10.00")

    paid = _bill(tenant_id, facility_id, patient)
    OtherBillService.record_payment(tenant_id=tenant_id, facility_id=facility_id, bill_id=paid.id, amount="945.00")
    with pytest.raises(ValidationError):
        OtherBillService.cancel(tenant_id=tenant_id, facility_id=facility_id, bill_id=paid.id)


@pytest.mark.django_db
def test_unknown_bill_is_not_found(tenant_id, facility_id):
    with pytest.raises(NotFound):
        OtherBillService.cancel(
            tenant_id=tenant_id,
            facility_id=facility_id,
            bill_id="11111111-2222-3333-4444-555555555555",
        )


@pytest.mark.django_db
def test_linked_bill_joins_the_stay_summary_with_its_collection(tenant_id, facility_id, patient, admission):
    bill = _bill(tenant_id, facility_id, patient, admission_id=admission.id)
    OtherBillService.record_payment(tenant_id=tenant_id, facility_id=facility_id, bill_id=bill.id, amount="345.00")

    s = compute_summary(tenant_id=tenant_id, facility_id=facility_id, admission_id=admission.id)

    assert s.subtotals["other"] == Decimal("945.00")
    assert s.source_paid_total == Decimal("345.00")
    assert s.pending_amount == Decimal("2100.00")


@pytest.mark.django_db
def test_api_create_list_filter_and_pay(api_client, headers, tenant_id, facility_id, patient, admission):
    r = api_client.post(
        "/api/v1/other-bills/",
        {
            "patient": str(patient.id),
            "admission": str(admission.id),
            "charge_category": "dietary_charges",
            "charge_description": "Special diet",
            "unit_price": "250.00",
        },
        format="json",
        **headers,
    )
    assert r.status_code == 201, r.data
    bill_id = r.data["id"]
    assert r.data["patient_name"] == "Test Patient"

    _bill(tenant_id, facility_id, patient)

    r = api_client.get("/api/v1/other-bills/?charge_category=dietary_charges", **headers)
    assert r.status_code == 200
    assert r.data["count"] == 1
    assert r.data["results"][0]["id"] == bill_id

    r = api_client.get("/api/v1/other-bills/?q=Test", **headers)
    assert r.data["count"] == 2

    r = api_client.post(
        f"/api/v1/other-bills/{bill_id}/payments/",
        {"amount": "250.00", "method": "cash"},
        format="json",
        HTTP_IDEMPOTENCY_KEY="ob-pay-1",
        **headers,
    )
    assert r.status_code == 201, r.data
    r = api_client.post(
        f"/api/v1/other-bills/{bill_id}/payments/",
        {"amount": "250.00", "method": "cash"},
        format="json",
        HTTP_IDEMPOTENCY_KEY="ob-pay-1",
        **headers,
    )
    assert r.status_code == 201

    assert OtherBill.objects.get(pk=bill_id).payment_status == OtherBillPaymentStatus.PAID
    r = api_client.get(f"/api/v1/other-bills/{bill_id}/payments/", **headers)
    assert len(r.data) == 1


@pytest.mark.django_db
def test_api_rejects_bad_filter_value(api_client, headers):
    r = api_client.get("/api/v1/other-bills/?payment_status=bogus", **headers)

    assert r.status_code == 400
    assert r.data["error"]["code"] == "validation_error"
