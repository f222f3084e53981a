# hb_core/billing/tests/test_billing_api.py
from decimal import Decimal

import pytest
from rest_framework.test import APIClient

from hb_core.billing.models import Advance, BillItem, BillItemStatus, PaymentTransaction
from hb_core.billing.services import AdvanceService, BillItemService


def _billing_url(admission, suffix=""):
    return f"/api/v1/admissions/{admission.id}/billing/{suffix}"


def _manual_item(admission, amount):
    return BillItemService.add_manual_item(
        tenant_id=admission.tenant_id,
        facility_id=admission.facility_id,
        admission_id=admission.id,
        category="consumables",
        description="Catheter",
        unit_price=amount,
    )


@pytest.mark.django_db
def test_summary_endpoint_returns_derived_totals(api_client, headers, admission):
    r = api_client.get(_billing_url(admission, "summary/"), **headers)

    assert r.status_code == 200, r.data
    assert r.data["stay_days"] == 5
    assert Decimal(r.data["gross_total"]) == Decimal("1500.00")
    assert Decimal(r.data["pending_amount"]) == Decimal("1500.00")
    assert r.data["status"] == "pending"
    assert r.data["is_complete"] is True
    assert [b["category"] for b in r.data["breakdown"]] == ["bed_charges", "doctor_consultation"]


@pytest.mark.django_db
def test_patch_billing_updates_rates_and_returns_summary(api_client, headers, admission):
    r = api_client.patch(
        _billing_url(admission),
        {"consultation_fee": "150.00", "billed_days": 2},
        format="json",
        **headers,
    )

    assert r.status_code == 200, r.data
    assert Decimal(r.data["subtotals"]["doctor_consultation"]) == Decimal("300.00")
    assert Decimal(r.data["subtotals"]["bed_charges"]) == Decimal("400.00")
    assert r.data["stay_days"] == 2


@pytest.mark.django_db
def test_sync_then_list_outstanding_items(api_client, headers, admission):
    r = api_client.post(_billing_url(admission, "sync/"), {}, format="json", **headers)
    assert r.status_code == 200, r.data
    assert r.data["created"] == 2

    bed = BillItem.objects.get(admission=admission, category="bed_charges")
    bed.paid_amount = bed.net_amount
    bed.recompute()
    bed.save()

    r = api_client.get(_billing_url(admission, "items/?outstanding=1"), **headers)

    assert r.status_code == 200
    assert r.data["count"] == 1
    assert r.data["results"][0]["category"] == "doctor_consultation"


@pytest.mark.django_db
def test_add_manual_item_via_api(api_client, headers, admission):
    r = api_client.post(
        _billing_url(admission, "items/"),
        {"category": "nursing", "description": "ICU nursing", "quantity": "2", "unit_price": "400.00"},
        format="json",
        **headers,
    )

    assert r.status_code == 201, r.data
    assert r.data["source_type"] == "MANUAL"
    assert Decimal(r.data["net_amount"]) == Decimal("800.00")


@pytest.mark.django_db
def test_payment_post_replays_on_same_idempotency_key(api_client, headers, admission):
    item = _manual_item(admission, "500.00")
    payload = {
        "selections": [{"bill_item_id": str(item.id), "pay_amount": "200.00"}],
        "method": "cash",
        "total_amount": "200.00",
    }

    r1 = api_client.post(
        _billing_url(admission, "payments/"), payload, format="json", HTTP_IDEMPOTENCY_KEY="pay-1", **headers
    )
    r2 = api_client.post(
        _billing_url(admission, "payments/"), payload, format="json", HTTP_IDEMPOTENCY_KEY="pay-1", **headers
    )

    assert r1.status_code == 201, r1.data
    assert r2.status_code == 201
    assert r2.data["transactions"][0]["receipt_number"] == r1.data["transactions"][0]["receipt_number"]
    assert PaymentTransaction.objects.filter(admission=admission).count() == 1

    item.refresh_from_db()
    assert item.paid_amount == Decimal("200.00")
    assert item.status == BillItemStatus.PARTIAL


@pytest.mark.django_db
def test_payment_list_includes_allocations(api_client, headers, admission):
    item = _manual_item(admission, "300.00")
    api_client.post(
        _billing_url(admission, "payments/"),
        {
            "selections": [{"bill_item_id": str(item.id), "pay_amount": "300.00"}],
            "method": "upi",
            "total_amount": "300.00",
        },
        format="json",
        **headers,
    )

    r = api_client.get(_billing_url(admission, "payments/"), **headers)

    assert r.status_code == 200
    assert r.data["count"] == 1
    txn = r.data["results"][0]
    assert txn["method"] == "upi"
    assert len(txn["allocations"]) == 1
    assert str(txn["allocations"][0]["bill_item"]) == str(item.id)


@pytest.mark.django_db
def test_insufficient_advance_is_a_409_envelope(api_client, headers, admission):
    item = _manual_item(admission, "500.00")
    AdvanceService.receive_advance(
        tenant_id=admission.tenant_id,
        facility_id=admission.facility_id,
        admission_id=admission.id,
        amount="100.00",
    )

    r = api_client.post(
        _billing_url(admission, "payments/"),
        {
            "selections": [{"bill_item_id": str(item.id), "pay_amount": "300.00"}],
            "method": "cash",
            "total_amount": "300.00",
            "use_advance": True,
            "advance_amount": "250.00",
        },
        format="json",
        **headers,
    )

    assert r.status_code == 409
    assert r.data["error"]["code"] == "insufficient_advance"
    assert r.data["error"]["request_id"]


@pytest.mark.django_db
def test_advance_post_is_idempotent(api_client, headers, admission):
    url = _billing_url(admission, "advances/")
    body = {"amount": "1000.00", "method": "card", "reference": "POS-55"}

    r1 = api_client.post(url, body, format="json", HTTP_IDEMPOTENCY_KEY="adv-1", **headers)
    r2 = api_client.post(url, body, format="json", HTTP_IDEMPOTENCY_KEY="adv-1", **headers)

    assert r1.status_code == 201, r1.data
    assert r2.status_code == 201
    assert r1.data["id"] == r2.data["id"]
    assert Advance.objects.filter(admission=admission).count() == 1

    listed = api_client.get(url, **headers)
    assert listed.data["count"] == 1


@pytest.mark.django_db
def test_item_actions_discount_cancel_and_pay(api_client, headers, admission):
    item = _manual_item(admission, "1000.00")
    base = f"/api/v1/billing/items/{item.id}/"

    r = api_client.post(base + "discount/", {"discount_type": "percentage", "discount_value": "10"}, format="json", **headers)
    assert r.status_code == 200, r.data
    assert Decimal(r.data["net_amount"]) == Decimal("900.00")

    r = api_client.post(base + "pay/", {"amount": "900.00", "method": "card"}, format="json", **headers)
    assert r.status_code == 201, r.data
    assert r.data["summary"]["admission_id"] == str(admission.id)

    r = api_client.get(base, **headers)
    assert r.data["status"] == "paid"

    r = api_client.post(base + "cancel/", {"reason": "Billed in error"}, format="json", **headers)
    assert r.status_code == 200
    assert r.data["status"] == "cancelled"
    assert Decimal(r.data["paid_amount"]) == Decimal("900.00")


@pytest.mark.django_db
def test_missing_scope_headers_is_400(api_client, admission):
    r = api_client.get(_billing_url(admission, "summary/"))

    assert r.status_code == 400
    assert r.data["error"]["code"] == "validation_error"


@pytest.mark.django_db
def test_unknown_admission_is_404_envelope(api_client, headers):
    r = api_client.get("/api/v1/admissions/11111111-2222-3333-4444-555555555555/billing/summary/", **headers)

    assert r.status_code == 404
    assert r.data["error"]["code"] == "not_found"
    assert r.data["error"]["message"] == "Admission not found."


@pytest.mark.django_db
def test_anonymous_requests_are_rejected(headers, admission):
    r = APIClient().get(_billing_url(admission, "summary/"), **headers)

    assert r.status_code in (401, 403)
    assert r.data["error"]["code"] == "not_authenticated"
