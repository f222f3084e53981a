from __future__ import annotations

from uuid import UUID

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.response import Response
from rest_framework.views import APIView

from hb_core.admissions.selectors import AdmissionSelectors
from hb_core.billing.aggregator import compute_summary
from hb_core.billing.allocator import PaymentAllocator
from hb_core.billing.api.serializers import (
    AdmissionBillingUpdateSerializer,
    AdvanceCreateSerializer,
    AdvanceSerializer,
    AllocationResultSerializer,
    BillingSummarySerializer,
    BillItemCreateSerializer,
    BillItemDiscountSerializer,
    BillItemSerializer,
    BillItemUpdateSerializer,
    CancelSerializer,
    PaymentCreateSerializer,
    PaymentTransactionSerializer,
    SingleBillPaymentSerializer,
    SyncResultSerializer,
)
from hb_core.billing.models import Advance, BillItem
from hb_core.billing.selectors import (
    bill_items_for_admission,
    get_bill_item,
    list_advances,
    payment_transactions_for_admission,
)
from hb_core.billing.services import AdmissionBillingService, AdvanceService, BillItemService
from hb_core.common.api.pagination import paginate
from hb_core.common.idempotency import remember, replay
from hb_core.common.scope import require_scope

TRUTHY = {"1", "true", "yes"}


def _uuid_or_none(value: str | None, field_name: str) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise DRFValidationError({field_name: "Invalid UUID"})


def _ensure_admission(scope, admission_id) -> None:
    # 404 before any work on an unknown or foreign admission
    AdmissionSelectors.get_admission(
        tenant_id=scope.tenant_id,
        facility_id=scope.facility_id,
        admission_id=UUID(str(admission_id)),
    )


class AdmissionBillingSummaryView(APIView):
    """
    /admissions/<admission_id>/billing/summary/
    """

    @extend_schema(tags=["Billing"], responses={200: BillingSummarySerializer})
    def get(self, request, admission_id: UUID):
        scope = require_scope(request)

        summary = compute_summary(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            admission_id=UUID(str(admission_id)),
        )
        return Response(BillingSummarySerializer(summary).data, status=status.HTTP_200_OK)


class AdmissionBillingView(APIView):
    """
    /admissions/<admission_id>/billing/
    - PATCH bed rate, billed days, consultation fee, stay discount
    """

    @extend_schema(
        tags=["Billing"],
        request=AdmissionBillingUpdateSerializer,
        responses={200: BillingSummarySerializer},
    )
    def patch(self, request, admission_id: UUID):
        scope = require_scope(request)

        ser = AdmissionBillingUpdateSerializer(data=request.data, partial=True)
        ser.is_valid(raise_exception=True)

        summary = AdmissionBillingService.update_admission_billing(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            admission_id=UUID(str(admission_id)),
            data=dict(ser.validated_data),
            actor_user_id=getattr(request.user, "id", None),
        )
        return Response(BillingSummarySerializer(summary).data, status=status.HTTP_200_OK)


class AdmissionBillingSyncView(APIView):
    """
    /admissions/<admission_id>/billing/sync/
    """

    @extend_schema(tags=["Billing"], request=None, responses={200: SyncResultSerializer})
    def post(self, request, admission_id: UUID):
        scope = require_scope(request)

        result = BillItemService.sync_bill_items(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            admission_id=UUID(str(admission_id)),
            actor_user_id=getattr(request.user, "id", None),
        )
        return Response(SyncResultSerializer(result).data, status=status.HTTP_200_OK)


class AdmissionBillItemsView(APIView):
    """
    /admissions/<admission_id>/billing/items/
    - GET list items (?status, ?category, ?outstanding=1)
    - POST add a manual item
    """

    @extend_schema(
        tags=["Billing"],
        responses={200: BillItemSerializer(many=True)},
        parameters=[
            OpenApiParameter(name="status", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="category", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(
                name="outstanding",
                type=OpenApiTypes.BOOL,
                location=OpenApiParameter.QUERY,
                required=False,
                description="Only items that still have something to collect.",
            ),
        ],
    )
    def get(self, request, admission_id: UUID):
        scope = require_scope(request)
        _ensure_admission(scope, admission_id)

        qs = bill_items_for_admission(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            admission_id=UUID(str(admission_id)),
            status=request.query_params.get("status"),
            category=request.query_params.get("category"),
            outstanding_only=(request.query_params.get("outstanding") or "").lower() in TRUTHY,
        )
        return paginate(request, qs, BillItemSerializer)

    @extend_schema(
        tags=["Billing"],
        request=BillItemCreateSerializer,
        responses={201: BillItemSerializer},
    )
    def post(self, request, admission_id: UUID):
        scope = require_scope(request)

        ser = BillItemCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        item = BillItemService.add_manual_item(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            admission_id=UUID(str(admission_id)),
            actor_user_id=getattr(request.user, "id", None),
            **ser.validated_data,
        )
        return Response(BillItemSerializer(item).data, status=status.HTTP_201_CREATED)


class AdmissionAdvancesView(APIView):
    """
    /admissions/<admission_id>/billing/advances/
    - GET list advances (FIFO order)
    - POST record an advance deposit (honours Idempotency-Key)
    """

    @extend_schema(tags=["Billing"], responses={200: AdvanceSerializer(many=True)})
    def get(self, request, admission_id: UUID):
        scope = require_scope(request)
        _ensure_admission(scope, admission_id)

        qs = list_advances(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            admission_id=UUID(str(admission_id)),
        )
        return paginate(request, qs, AdvanceSerializer)

    @extend_schema(
        tags=["Billing"],
        request=AdvanceCreateSerializer,
        responses={201: AdvanceSerializer},
    )
    def post(self, request, admission_id: UUID):
        scope = require_scope(request)

        cached = replay(request, scope)
        if cached is not None:
            return cached

        ser = AdvanceCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        advance = AdvanceService.receive_advance(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            admission_id=UUID(str(admission_id)),
            actor_user_id=getattr(request.user, "id", None),
            **ser.validated_data,
        )
        out = AdvanceSerializer(advance).data

        remember(request, scope, out, status_code=status.HTTP_201_CREATED)
        return Response(out, status=status.HTTP_201_CREATED)


class AdmissionPaymentsView(APIView):
    """
    /admissions/<admission_id>/billing/payments/
    - GET list receipts with their allocations and advance draws
    - POST allocate one payment across selected bill items (honours Idempotency-Key)
    """

    @extend_schema(tags=["Billing"], responses={200: PaymentTransactionSerializer(many=True)})
    def get(self, request, admission_id: UUID):
        scope = require_scope(request)
        _ensure_admission(scope, admission_id)

        qs = payment_transactions_for_admission(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            admission_id=UUID(str(admission_id)),
        )
        return paginate(request, qs, PaymentTransactionSerializer)

    @extend_schema(
        tags=["Billing"],
        request=PaymentCreateSerializer,
        responses={201: AllocationResultSerializer},
    )
    def post(self, request, admission_id: UUID):
        scope = require_scope(request)

        cached = replay(request, scope)
        if cached is not None:
            return cached

        ser = PaymentCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        v = ser.validated_data

        result = PaymentAllocator.allocate_payment(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            admission_id=UUID(str(admission_id)),
            selections=[dict(s) for s in v["selections"]],
            method=v["method"],
            total_amount=v["total_amount"],
            use_advance=v.get("use_advance", False),
            advance_amount=v.get("advance_amount"),
            reference=v.get("reference", ""),
            notes=v.get("notes", ""),
            actor_user_id=getattr(request.user, "id", None),
        )
        out = AllocationResultSerializer(result).data

        remember(request, scope, out, status_code=status.HTTP_201_CREATED)
        return Response(out, status=status.HTTP_201_CREATED)


class BillItemViewSet(viewsets.GenericViewSet):
    """
    Single bill item:
    - retrieve / partial_update (manual items)
    - discount
    - cancel
    - pay (single-item payment)
    """
    serializer_class = BillItemSerializer
    queryset = BillItem.objects.none()

    @extend_schema(tags=["Billing"], responses={200: BillItemSerializer})
    def retrieve(self, request, pk=None):
        scope = require_scope(request)

        item = get_bill_item(tenant_id=scope.tenant_id, facility_id=scope.facility_id, item_id=UUID(str(pk)))
        return Response(BillItemSerializer(item).data, status=status.HTTP_200_OK)

    @extend_schema(
        tags=["Billing"],
        request=BillItemUpdateSerializer,
        responses={200: BillItemSerializer},
    )
    def partial_update(self, request, pk=None):
        scope = require_scope(request)

        ser = BillItemUpdateSerializer(data=request.data, partial=True)
        ser.is_valid(raise_exception=True)

        item = BillItemService.update_item(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            item_id=UUID(str(pk)),
            data=dict(ser.validated_data),
            actor_user_id=getattr(request.user, "id", None),
        )
        return Response(BillItemSerializer(item).data, status=status.HTTP_200_OK)

    @extend_schema(
        tags=["Billing"],
        request=BillItemDiscountSerializer,
        responses={200: BillItemSerializer},
    )
    @action(detail=True, methods=["post"], url_path="discount")
    def discount(self, request, pk=None):
        scope = require_scope(request)

        ser = BillItemDiscountSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        item = BillItemService.apply_discount(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            item_id=UUID(str(pk)),
            actor_user_id=getattr(request.user, "id", None),
            **ser.validated_data,
        )
        return Response(BillItemSerializer(item).data, status=status.HTTP_200_OK)

    @extend_schema(
        tags=["Billing"],
        request=CancelSerializer,
        responses={200: BillItemSerializer},
    )
    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        scope = require_scope(request)

        ser = CancelSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        item = BillItemService.cancel_item(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            item_id=UUID(str(pk)),
            reason=ser.validated_data.get("reason", ""),
            actor_user_id=getattr(request.user, "id", None),
        )
        return Response(BillItemSerializer(item).data, status=status.HTTP_200_OK)

    @extend_schema(
        tags=["Billing"],
        request=SingleBillPaymentSerializer,
        responses={201: AllocationResultSerializer},
    )
    @action(detail=True, methods=["post"], url_path="pay")
    def pay(self, request, pk=None):
        scope = require_scope(request)

        ser = SingleBillPaymentSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        v = ser.validated_data

        result = PaymentAllocator.pay_single_bill(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            bill_item_id=UUID(str(pk)),
            amount=v["amount"],
            method=v["method"],
            use_advance=v.get("use_advance", False),
            advance_amount=v.get("advance_amount"),
            reference=v.get("reference", ""),
            notes=v.get("notes", ""),
            actor_user_id=getattr(request.user, "id", None),
        )
        return Response(AllocationResultSerializer(result).data, status=status.HTTP_201_CREATED)


class AdvanceViewSet(viewsets.GenericViewSet):
    serializer_class = AdvanceSerializer
    queryset = Advance.objects.none()

    @extend_schema(
        tags=["Billing"],
        request=CancelSerializer,
        responses={200: AdvanceSerializer},
    )
    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        scope = require_scope(request)

        ser = CancelSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        advance = AdvanceService.cancel_advance(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            advance_id=_uuid_or_none(pk, "advance"),
            reason=ser.validated_data.get("reason", ""),
            actor_user_id=getattr(request.user, "id", None),
        )
        return Response(AdvanceSerializer(advance).data, status=status.HTTP_200_OK)
