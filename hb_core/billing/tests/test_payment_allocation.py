# hb_core/billing/tests/test_payment_allocation.py
from datetime import timedelta
from decimal import Decimal

import pytest
from django.db import DatabaseError
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from hb_core.billing.aggregator import compute_summary
from hb_core.billing.allocator import PaymentAllocator, Selection, split_advance
from hb_core.billing.exceptions import InsufficientAdvance, PersistenceFailure
from hb_core.billing.models import (
    Advance,
    AdvanceDraw,
    AdvanceStatus,
    BillItem,
    BillItemStatus,
    PaymentAllocation,
    PaymentTransaction,
)
from hb_core.billing.services import AdvanceService, BillItemService


def _manual_item(admission, amount, description="Dressing"):
    return BillItemService.add_manual_item(
        tenant_id=admission.tenant_id,
        facility_id=admission.facility_id,
        admission_id=admission.id,
        category="consumables",
        description=description,
        quantity=Decimal("1"),
        unit_price=Decimal(amount),
    )


def _advance(admission, amount, *, age_hours=0):
    adv = AdvanceService.receive_advance(
        tenant_id=admission.tenant_id,
        facility_id=admission.facility_id,
        admission_id=admission.id,
        amount=Decimal(amount),
        method="cash",
    )
    if age_hours:
        Advance.objects.filter(pk=adv.pk).update(created_at=timezone.now() - timedelta(hours=age_hours))
    return adv


@pytest.mark.django_db
def test_cash_payment_moves_item_to_partial_then_paid(tenant_id, facility_id, admission):
    item = _manual_item(admission, "500.00")

    res = PaymentAllocator.allocate_payment(
        tenant_id=tenant_id,
        facility_id=facility_id,
        admission_id=admission.id,
        selections=[{"bill_item_id": item.id, "pay_amount": "200.00"}],
        method="upi",
        total_amount="200.00",
        reference="UTR-001",
    )
    item.refresh_from_db()
    assert item.status == BillItemStatus.PARTIAL
    assert item.paid_amount == Decimal("200.00")
    assert item.pending_amount == Decimal("300.00")

    assert len(res.transactions) == 1
    txn = res.transactions[0]
    assert txn.method == "upi"
    assert txn.amount == Decimal("200.00")
    assert txn.receipt_number.startswith("IPR-")
    assert res.summary.receipts_total == Decimal("200.00")

    PaymentAllocator.allocate_payment(
        tenant_id=tenant_id,
        facility_id=facility_id,
        admission_id=admission.id,
        selections=[(item.id, Decimal("300.00"))],
        method="cash",
        total_amount=Decimal("300.00"),
    )
    item.refresh_from_db()
    assert item.status == BillItemStatus.PAID
    assert item.pending_amount == Decimal("0.00")

    receipts = list(PaymentTransaction.objects.filter(admission=admission).order_by("receipt_number"))
    assert [r.receipt_number[-4:] for r in receipts] == ["0001", "0002"]


@pytest.mark.django_db
def test_advance_draws_oldest_first(tenant_id, facility_id, admission):
    item = _manual_item(admission, "1000.00")
    a1 = _advance(admission, "500.00", age_hours=2)
    a2 = _advance(admission, "300.00", age_hours=1)

    res = PaymentAllocator.allocate_payment(
        tenant_id=tenant_id,
        facility_id=facility_id,
        admission_id=admission.id,
        selections=[Selection(bill_item_id=item.id, pay_amount=Decimal("600.00"))],
        method="cash",
        total_amount=Decimal("600.00"),
        use_advance=True,
        advance_amount=Decimal("600.00"),
    )

    a1.refresh_from_db()
    a2.refresh_from_db()
    assert a1.used_amount == Decimal("500.00")
    assert a1.available_amount == Decimal("0.00")
    assert a1.status == AdvanceStatus.FULLY_USED
    assert a2.used_amount == Decimal("100.00")
    assert a2.available_amount == Decimal("200.00")
    assert a2.status == AdvanceStatus.ACTIVE

    assert len(res.transactions) == 1
    assert res.transactions[0].method == "advance"
    draws = {d.advance_id: d.amount for d in AdvanceDraw.objects.filter(transaction=res.transactions[0])}
    assert draws == {a1.id: Decimal("500.00"), a2.id: Decimal("100.00")}

    assert res.summary.advance_paid == Decimal("600.00")
    assert res.summary.receipts_total == Decimal("0.00")
    assert res.summary.available_advance == Decimal("200.00")


@pytest.mark.django_db
def test_split_payment_records_advance_and_cash_transactions(tenant_id, facility_id, admission):
    first = _manual_item(admission, "600.00", description="Oxygen")
    second = _manual_item(admission, "400.00", description="Nebulizer")
    _advance(admission, "400.00")

    res = PaymentAllocator.allocate_payment(
        tenant_id=tenant_id,
        facility_id=facility_id,
        admission_id=admission.id,
        selections=[(first.id, "600.00"), (second.id, "400.00")],
        method="card",
        total_amount="1000.00",
        use_advance=True,
        advance_amount="400.00",
    )

    by_method = {t.method: t for t in res.transactions}
    assert set(by_method) == {"advance", "card"}
    assert by_method["advance"].amount == Decimal("400.00")
    assert by_method["card"].amount == Decimal("600.00")

    adv_parts = {
        a.bill_item_id: a.amount for a in PaymentAllocation.objects.filter(transaction=by_method["advance"])
    }
    card_parts = {a.bill_item_id: a.amount for a in PaymentAllocation.objects.filter(transaction=by_method["card"])}
    assert adv_parts == {first.id: Decimal("240.00"), second.id: Decimal("160.00")}
    assert card_parts == {first.id: Decimal("360.00"), second.id: Decimal("240.00")}

    first.refresh_from_db()
    second.refresh_from_db()
    assert first.status == second.status == BillItemStatus.PAID

    assert res.summary.advance_paid == Decimal("400.00")
    assert res.summary.receipts_total == Decimal("600.00")


def _sels(*amounts):
    return [Selection(bill_item_id=None, pay_amount=Decimal(a)) for a in amounts]


@pytest.mark.parametrize(
    "amounts, advance, expected",
    [
        (("100.00", "100.00", "100.00"), "100.00", ["33.34", "33.33", "33.33"]),
        (("600.00", "400.00"), "400.00", ["240.00", "160.00"]),
        (("100.05", "100.05", "100.05", "0.01"), "150.08", ["50.03", "50.03", "50.02", "0.00"]),
        (("0.01", "0.01", "0.01"), "0.02", ["0.01", "0.01", "0.00"]),
        (("10.00", "0.03"), "10.03", ["10.00", "0.03"]),
    ],
)
def test_split_advance_is_exact_and_bounded_by_each_pay_amount(amounts, advance, expected):
    sels = _sels(*amounts)
    total = sum((s.pay_amount for s in sels), Decimal("0.00"))

    shares = split_advance(sels, advance_amount=Decimal(advance), total_amount=total)

    assert shares == [Decimal(e) for e in expected]
    assert sum(shares) == Decimal(advance)
    assert all(Decimal("0.00") <= share <= s.pay_amount for s, share in zip(sels, shares))


@pytest.mark.django_db
def test_every_transaction_allocates_exactly_its_amount(tenant_id, facility_id, admission):
    items = [_manual_item(admission, a, description=f"Line {n}") for n, a in enumerate(["100.05", "100.05", "100.05", "0.01"])]
    _advance(admission, "200.00")

    res = PaymentAllocator.allocate_payment(
        tenant_id=tenant_id,
        facility_id=facility_id,
        admission_id=admission.id,
        selections=[(i.id, i.net_amount) for i in items],
        method="cash",
        total_amount="300.16",
        use_advance=True,
        advance_amount="150.08",
    )

    assert sorted(t.amount for t in res.transactions) == [Decimal("150.08"), Decimal("150.08")]
    for txn in res.transactions:
        parts = PaymentAllocation.objects.filter(transaction=txn).values_list("amount", flat=True)
        assert sum(parts) == txn.amount

    for item in items:
        received = PaymentAllocation.objects.filter(bill_item=item).values_list("amount", flat=True)
        assert sum(received) == item.net_amount
        item.refresh_from_db()
        assert item.status == BillItemStatus.PAID


@pytest.mark.django_db
def test_receipt_records_the_sum_of_selections_not_the_stated_total(tenant_id, facility_id, admission):
    item = _manual_item(admission, "300.00")

    res = PaymentAllocator.allocate_payment(
        tenant_id=tenant_id,
        facility_id=facility_id,
        admission_id=admission.id,
        selections=[(item.id, "100.00")],
        method="cash",
        total_amount="100.01",
    )

    (txn,) = res.transactions
    assert txn.amount == Decimal("100.00")
    assert res.summary.receipts_total == Decimal("100.00")
    item.refresh_from_db()
    assert item.paid_amount == Decimal("100.00")


@pytest.mark.django_db
def test_overpaying_an_item_is_rejected_and_nothing_changes(tenant_id, facility_id, admission):
    item = _manual_item(admission, "200.00")

    with pytest.raises(ValidationError):
        PaymentAllocator.allocate_payment(
            tenant_id=tenant_id,
            facility_id=facility_id,
            admission_id=admission.id,
            selections=[(item.id, "250.00")],
            method="cash",
            total_amount="250.00",
        )

    item.refresh_from_db()
    assert item.paid_amount == Decimal("0.00")
    assert item.pending_amount == Decimal("200.00")
    assert item.status == BillItemStatus.PENDING
    assert not PaymentTransaction.objects.filter(admission=admission).exists()


@pytest.mark.django_db
@pytest.mark.parametrize(
    "kwargs",
    [
        {"selections": [], "total_amount": "100.00"},
        {"selections": "dup", "total_amount": "200.00"},
        {"selections": "one", "total_amount": "150.00"},
        {"selections": "zero", "total_amount": "0.00"},
        {"selections": "one", "total_amount": "100.00", "method": "advance"},
        {"selections": "one", "total_amount": "100.00", "use_advance": True, "advance_amount": "150.00"},
        {"selections": "one", "total_amount": "100.00", "use_advance": True, "advance_amount": "0"},
    ],
)
def test_invalid_payment_requests_are_rejected(tenant_id, facility_id, admission, kwargs):
    item = _manual_item(admission, "500.00")
    kwargs = dict(kwargs)
    shapes = {
        "dup": [(item.id, "100.00"), (item.id, "100.00")],
        "one": [(item.id, "100.00")],
        "zero": [(item.id, "0.00")],
    }
    if isinstance(kwargs["selections"], str):
        kwargs["selections"] = shapes[kwargs["selections"]]
    kwargs.setdefault("method", "cash")

    with pytest.raises(ValidationError):
        PaymentAllocator.allocate_payment(
            tenant_id=tenant_id,
            facility_id=facility_id,
            admission_id=admission.id,
            **kwargs,
        )

    assert not PaymentTransaction.objects.filter(admission=admission).exists()


@pytest.mark.django_db
def test_paying_a_cancelled_item_is_rejected(tenant_id, facility_id, admission):
    item = _manual_item(admission, "300.00")
    BillItemService.cancel_item(tenant_id=tenant_id, facility_id=facility_id, item_id=item.id)

    with pytest.raises(ValidationError):
        PaymentAllocator.allocate_payment(
            tenant_id=tenant_id,
            facility_id=facility_id,
            admission_id=admission.id,
            selections=[(item.id, "100.00")],
            method="cash",
            total_amount="100.00",
        )


@pytest.mark.django_db
def test_receipts_on_a_cancelled_item_stay_credited_to_the_stay(tenant_id, facility_id, admission):
    item = _manual_item(admission, "300.00")
    PaymentAllocator.pay_single_bill(
        tenant_id=tenant_id,
        facility_id=facility_id,
        bill_item_id=item.id,
        amount="300.00",
        method="cash",
    )

    BillItemService.cancel_item(tenant_id=tenant_id, facility_id=facility_id, item_id=item.id, reason="Charged in error")
    s = compute_summary(tenant_id=tenant_id, facility_id=facility_id, admission_id=admission.id)

    # bed 1000 + consultation 500; the 300 collected is held against them
    assert s.gross_total == Decimal("1500.00")
    assert s.subtotals["consumables"] == Decimal("0.00")
    assert s.receipts_total == Decimal("300.00")
    assert s.pending_amount == Decimal("1200.00")
    item.refresh_from_db()
    assert item.paid_amount == Decimal("300.00")


@pytest.mark.django_db
def test_item_from_another_stay_is_not_found(tenant_id, facility_id, admission, patient):
    from hb_core.admissions.services import AdmissionService

    other = AdmissionService.admit(
        tenant_id=tenant_id,
        facility_id=facility_id,
        patient_id=patient.id,
        actor_user_id=None,
    )
    item = _manual_item(other, "300.00")

    with pytest.raises(NotFound):
        PaymentAllocator.allocate_payment(
            tenant_id=tenant_id,
            facility_id=facility_id,
            admission_id=admission.id,
            selections=[(item.id, "100.00")],
            method="cash",
            total_amount="100.00",
        )


@pytest.mark.django_db
def test_insufficient_advance_raises_conflict_and_leaves_balances(tenant_id, facility_id, admission):
    item = _manual_item(admission, "500.00")
    adv = _advance(admission, "100.00")

    with pytest.raises(InsufficientAdvance):
        PaymentAllocator.allocate_payment(
            tenant_id=tenant_id,
            facility_id=facility_id,
            admission_id=admission.id,
            selections=[(item.id, "300.00")],
            method="cash",
            total_amount="300.00",
            use_advance=True,
            advance_amount="200.00",
        )

    adv.refresh_from_db()
    item.refresh_from_db()
    assert adv.available_amount == Decimal("100.00")
    assert adv.used_amount == Decimal("0.00")
    assert item.paid_amount == Decimal("0.00")
    assert not PaymentTransaction.objects.filter(admission=admission).exists()


@pytest.mark.django_db
def test_store_failure_mid_allocation_rolls_everything_back(tenant_id, facility_id, admission, monkeypatch):
    item = _manual_item(admission, "500.00")
    adv = _advance(admission, "300.00")

    def broken_draw(advances, *, amount, txn):
        raise DatabaseError("connection reset")

    monkeypatch.setattr(PaymentAllocator, "_draw_advances", staticmethod(broken_draw))

    with pytest.raises(PersistenceFailure):
        PaymentAllocator.allocate_payment(
            tenant_id=tenant_id,
            facility_id=facility_id,
            admission_id=admission.id,
            selections=[(item.id, "500.00")],
            method="cash",
            total_amount="500.00",
            use_advance=True,
            advance_amount="300.00",
        )

    adv.refresh_from_db()
    item.refresh_from_db()
    assert adv.available_amount == Decimal("300.00")
    assert item.paid_amount == Decimal("0.00")
    assert item.status == BillItemStatus.PENDING
    assert not PaymentTransaction.objects.filter(admission=admission).exists()
    assert not PaymentAllocation.objects.filter(bill_item=item).exists()


@pytest.mark.django_db
def test_pay_single_bill_uses_the_items_stay(tenant_id, facility_id, admission):
    item = _manual_item(admission, "250.00")

    res = PaymentAllocator.pay_single_bill(
        tenant_id=tenant_id,
        facility_id=facility_id,
        bill_item_id=item.id,
        amount="250.00",
        method="cheque",
        reference="CHQ-778",
    )

    item.refresh_from_db()
    assert item.status == BillItemStatus.PAID
    assert res.transactions[0].admission_id == admission.id
    assert res.transactions[0].reference == "CHQ-778"


@pytest.mark.django_db
def test_pay_single_bill_unknown_item_is_not_found(tenant_id, facility_id, admission):
    with pytest.raises(NotFound):
        PaymentAllocator.pay_single_bill(
            tenant_id=tenant_id,
            facility_id=facility_id,
            bill_item_id="11111111-2222-3333-4444-555555555555",
            amount="10.00",
            method="cash",
        )


@pytest.mark.django_db
def test_ledger_rows_cannot_be_edited_or_deleted(tenant_id, facility_id, admission):
    from django.core.exceptions import ValidationError as DjangoValidationError

    item = _manual_item(admission, "100.00")
    res = PaymentAllocator.allocate_payment(
        tenant_id=tenant_id,
        facility_id=facility_id,
        admission_id=admission.id,
        selections=[(item.id, "100.00")],
        method="cash",
        total_amount="100.00",
    )
    txn = res.transactions[0]

    txn.notes = "edited"
    with pytest.raises(DjangoValidationError):
        txn.save()
    with pytest.raises(DjangoValidationError):
        txn.delete()

    assert BillItem.objects.get(pk=item.pk).paid_amount == Decimal("100.00")
