# hb_core/billing/tests/test_bill_item_services.py
from decimal import Decimal

import pytest
from rest_framework.exceptions import NotFound, ValidationError

from hb_core.audit.models import AuditEvent
from hb_core.billing.allocator import PaymentAllocator
from hb_core.billing.models import (
    AdvanceStatus,
    BillDiscount,
    BillItem,
    BillItemStatus,
    ChargeSourceType,
)
from hb_core.billing.services import AdvanceService, BillItemService


@pytest.fixture
def item(tenant_id, facility_id, admission):
    return BillItemService.add_manual_item(
        tenant_id=tenant_id,
        facility_id=facility_id,
        admission_id=admission.id,
        category="equipment",
        description="Infusion pump",
        quantity="2",
        unit_price="300.00",
        actor_user_id=7,
    )


@pytest.mark.django_db
def test_add_manual_item_derives_amounts(item):
    assert item.source_type == ChargeSourceType.MANUAL
    assert item.gross_amount == Decimal("600.00")
    assert item.net_amount == Decimal("600.00")
    assert item.pending_amount == Decimal("600.00")
    assert item.status == BillItemStatus.PENDING
    assert AuditEvent.objects.filter(event_code="billing.item_added", entity_id=item.id, actor_user_id=7).exists()


@pytest.mark.django_db
def test_add_manual_item_rejects_unknown_category(tenant_id, facility_id, admission):
    with pytest.raises(ValidationError):
        BillItemService.add_manual_item(
            tenant_id=tenant_id,
            facility_id=facility_id,
            admission_id=admission.id,
            category="spa",
            description="Massage",
            unit_price="100.00",
        )


@pytest.mark.django_db
def test_update_item_reprices_manual_item(tenant_id, facility_id, item):
    updated = BillItemService.update_item(
        tenant_id=tenant_id,
        facility_id=facility_id,
        item_id=item.id,
        data={"quantity": "3", "description": "Infusion pump (3 days)"},
    )

    assert updated.gross_amount == Decimal("900.00")
    assert updated.pending_amount == Decimal("900.00")
    assert updated.description == "Infusion pump (3 days)"


@pytest.mark.django_db
def test_update_item_refuses_source_backed_items(tenant_id, facility_id, admission):
    BillItemService.sync_bill_items(tenant_id=tenant_id, facility_id=facility_id, admission_id=admission.id)
    bed = BillItem.objects.get(admission=admission, source_type=ChargeSourceType.BED)

    with pytest.raises(ValidationError):
        BillItemService.update_item(
            tenant_id=tenant_id,
            facility_id=facility_id,
            item_id=bed.id,
            data={"unit_price": "10.00"},
        )


@pytest.mark.django_db
def test_update_item_cannot_drop_net_below_paid(tenant_id, facility_id, admission, item):
    PaymentAllocator.allocate_payment(
        tenant_id=tenant_id,
        facility_id=facility_id,
        admission_id=admission.id,
        selections=[(item.id, "500.00")],
        method="cash",
        total_amount="500.00",
    )

    with pytest.raises(ValidationError):
        BillItemService.update_item(
            tenant_id=tenant_id,
            facility_id=facility_id,
            item_id=item.id,
            data={"quantity": "1"},
        )


@pytest.mark.django_db
def test_percentage_discount_keeps_history(tenant_id, facility_id, item):
    out = BillItemService.apply_discount(
        tenant_id=tenant_id,
        facility_id=facility_id,
        item_id=item.id,
        discount_type="percentage",
        discount_value="25",
        reason="Senior citizen",
        approved_by="Dr. Mehta",
    )

    assert out.discount_amount == Decimal("150.00")
    assert out.net_amount == Decimal("450.00")
    assert out.pending_amount == Decimal("450.00")

    row = BillDiscount.objects.get(bill_item=item)
    assert row.discount_type == "percentage"
    assert row.discount_value == Decimal("25.00")
    assert row.discount_amount == Decimal("150.00")
    assert row.approved_by == "Dr. Mehta"


@pytest.mark.django_db
def test_fixed_discount_replaces_earlier_discount(tenant_id, facility_id, item):
    BillItemService.apply_discount(
        tenant_id=tenant_id, facility_id=facility_id, item_id=item.id, discount_type="percentage", discount_value="10"
    )
    out = BillItemService.apply_discount(
        tenant_id=tenant_id, facility_id=facility_id, item_id=item.id, discount_type="fixed", discount_value="100.00"
    )

    assert out.discount_amount == Decimal("100.00")
    assert out.net_amount == Decimal("500.00")
    assert BillDiscount.objects.filter(bill_item=item).count() == 2


@pytest.mark.django_db
@pytest.mark.parametrize(
    "discount_type,value",
    [
        ("percentage", "120"),
        ("fixed", "700.00"),
        ("fixed", "-5"),
        ("loyalty", "10"),
    ],
)
def test_invalid_discounts_are_rejected(tenant_id, facility_id, item, discount_type, value):
    with pytest.raises(ValidationError):
        BillItemService.apply_discount(
            tenant_id=tenant_id,
            facility_id=facility_id,
            item_id=item.id,
            discount_type=discount_type,
            discount_value=value,
        )

    item.refresh_from_db()
    assert item.discount_amount == Decimal("0.00")


@pytest.mark.django_db
def test_discount_cannot_push_net_below_paid(tenant_id, facility_id, admission, item):
    PaymentAllocator.allocate_payment(
        tenant_id=tenant_id,
        facility_id=facility_id,
        admission_id=admission.id,
        selections=[(item.id, "550.00")],
        method="cash",
        total_amount="550.00",
    )

    with pytest.raises(ValidationError):
        BillItemService.apply_discount(
            tenant_id=tenant_id,
            facility_id=facility_id,
            item_id=item.id,
            discount_type="fixed",
            discount_value="100.00",
        )


@pytest.mark.django_db
def test_cancel_item_is_idempotent(tenant_id, facility_id, item):
    first = BillItemService.cancel_item(tenant_id=tenant_id, facility_id=facility_id, item_id=item.id, reason="Duplicate")
    second = BillItemService.cancel_item(tenant_id=tenant_id, facility_id=facility_id, item_id=item.id, reason="Again")

    assert first.status == BillItemStatus.CANCELLED
    assert second.cancel_reason == "Duplicate"
    assert AuditEvent.objects.filter(event_code="billing.item_cancelled", entity_id=item.id).count() == 1


@pytest.mark.django_db
def test_cancelled_item_cannot_be_discounted(tenant_id, facility_id, item):
    BillItemService.cancel_item(tenant_id=tenant_id, facility_id=facility_id, item_id=item.id)

    with pytest.raises(ValidationError):
        BillItemService.apply_discount(
            tenant_id=tenant_id, facility_id=facility_id, item_id=item.id, discount_type="fixed", discount_value="10"
        )


@pytest.mark.django_db
def test_item_outside_scope_is_not_found(facility_id, item):
    with pytest.raises(NotFound):
        BillItemService.cancel_item(
            tenant_id="99999999-9999-9999-9999-999999999999",
            facility_id=facility_id,
            item_id=item.id,
        )


@pytest.mark.django_db
def test_receive_advance_starts_fully_available(tenant_id, facility_id, admission):
    adv = AdvanceService.receive_advance(
        tenant_id=tenant_id,
        facility_id=facility_id,
        admission_id=admission.id,
        amount="5000.00",
        method="net_banking",
        reference="NEFT-1",
    )

    assert adv.available_amount == Decimal("5000.00")
    assert adv.used_amount == Decimal("0.00")
    assert adv.status == AdvanceStatus.ACTIVE


@pytest.mark.django_db
@pytest.mark.parametrize("amount,method", [("0", "cash"), ("-10", "cash"), ("100.00", "advance"), ("100.00", "barter")])
def test_receive_advance_rejects_bad_input(tenant_id, facility_id, admission, amount, method):
    with pytest.raises(ValidationError):
        AdvanceService.receive_advance(
            tenant_id=tenant_id,
            facility_id=facility_id,
            admission_id=admission.id,
            amount=amount,
            method=method,
        )


@pytest.mark.django_db
def test_cancel_advance_only_when_untouched(tenant_id, facility_id, admission, item):
    unused = AdvanceService.receive_advance(
        tenant_id=tenant_id, facility_id=facility_id, admission_id=admission.id, amount="200.00"
    )
    out = AdvanceService.cancel_advance(
        tenant_id=tenant_id, facility_id=facility_id, advance_id=unused.id, reason="Entered twice"
    )
    assert out.status == AdvanceStatus.CANCELLED
    assert "CANCELLED: Entered twice" in out.notes

    drawn = AdvanceService.receive_advance(
        tenant_id=tenant_id, facility_id=facility_id, admission_id=admission.id, amount="300.00"
    )
    PaymentAllocator.allocate_payment(
        tenant_id=tenant_id,
        facility_id=facility_id,
        admission_id=admission.id,
        selections=[(item.id, "100.00")],
        method="cash",
        total_amount="100.00",
        use_advance=True,
        advance_amount="100.00",
    )

    with pytest.raises(ValidationError):
        AdvanceService.cancel_advance(tenant_id=tenant_id, facility_id=facility_id, advance_id=drawn.id)
