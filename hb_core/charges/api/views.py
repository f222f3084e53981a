# hb_core/charges/api/views.py
from __future__ import annotations

from uuid import UUID

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.response import Response

from hb_core.charges.api.serializers import (
    OtherBillCancelSerializer,
    OtherBillCreateSerializer,
    OtherBillPaymentCreateSerializer,
    OtherBillPaymentSerializer,
    OtherBillSerializer,
)
from hb_core.charges.filters import OtherBillFilter
from hb_core.charges.models import OtherBill
from hb_core.charges.selectors import get_other_bill, other_bills_filtered
from hb_core.charges.services import OtherBillService
from hb_core.common.api.pagination import paginate
from hb_core.common.idempotency import remember, replay
from hb_core.common.scope import require_scope


class OtherBillViewSet(viewsets.GenericViewSet):
    """
    Counter bills for miscellaneous charges:
    - list/retrieve/create
    - payments: GET/POST
    - cancel
    """
    serializer_class = OtherBillSerializer
    queryset = OtherBill.objects.none()

    @extend_schema(
        tags=["Other Bills"],
        responses={200: OtherBillSerializer(many=True)},
        parameters=[
            OpenApiParameter(name="patient", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="admission", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="payment_status", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="charge_category", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="date_from", type=OpenApiTypes.DATE, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="date_to", type=OpenApiTypes.DATE, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="q", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(
                name="status",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                required=False,
                description="Defaults to active bills.",
            ),
        ],
    )
    def list(self, request):
        scope = require_scope(request)

        qs = other_bills_filtered(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            status=request.query_params.get("status"),
        )
        f = OtherBillFilter(request.query_params, queryset=qs)
        if not f.is_valid():
            raise DRFValidationError(f.errors)
        return paginate(request, f.qs, OtherBillSerializer)

    @extend_schema(tags=["Other Bills"], responses={200: OtherBillSerializer})
    def retrieve(self, request, pk=None):
        scope = require_scope(request)

        bill = get_other_bill(tenant_id=scope.tenant_id, facility_id=scope.facility_id, bill_id=UUID(str(pk)))
        return Response(OtherBillSerializer(bill).data, status=status.HTTP_200_OK)

    @extend_schema(
        tags=["Other Bills"],
        request=OtherBillCreateSerializer,
        responses={201: OtherBillSerializer},
    )
    def create(self, request):
        scope = require_scope(request)

        ser = OtherBillCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        v = dict(ser.validated_data)

        bill = OtherBillService.create(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            patient_id=v.pop("patient"),
            admission_id=v.pop("admission", None),
            actor_user_id=getattr(request.user, "id", None),
            **v,
        )
        return Response(OtherBillSerializer(bill).data, status=status.HTTP_201_CREATED)

    @extend_schema(
        tags=["Other Bills"],
        request=OtherBillPaymentCreateSerializer,
        responses={
            200: OtherBillPaymentSerializer(many=True),
            201: OtherBillPaymentSerializer,
        },
    )
    @action(detail=True, methods=["get", "post"], url_path="payments")
    def payments(self, request, pk=None):
        """
        /other-bills/<bill_id>/payments/
        - GET: list counter payments
        - POST: record a payment (honours Idempotency-Key)
        """
        scope = require_scope(request)
        bill_id = UUID(str(pk))

        if request.method.lower() == "get":
            bill = get_other_bill(tenant_id=scope.tenant_id, facility_id=scope.facility_id, bill_id=bill_id)
            qs = bill.payments.order_by("-received_at")
            return Response(OtherBillPaymentSerializer(qs, many=True).data, status=status.HTTP_200_OK)

        cached = replay(request, scope)
        if cached is not None:
            return cached

        ser = OtherBillPaymentCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        payment = OtherBillService.record_payment(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            bill_id=bill_id,
            actor_user_id=getattr(request.user, "id", None),
            **ser.validated_data,
        )
        out = OtherBillPaymentSerializer(payment).data

        remember(request, scope, out, status_code=status.HTTP_201_CREATED)
        return Response(out, status=status.HTTP_201_CREATED)

    @extend_schema(
        tags=["Other Bills"],
        request=OtherBillCancelSerializer,
        responses={200: OtherBillSerializer},
    )
    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        scope = require_scope(request)

        ser = OtherBillCancelSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        bill = OtherBillService.cancel(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            bill_id=UUID(str(pk)),
            actor_user_id=getattr(request.user, "id", None),
            reason=ser.validated_data.get("reason", ""),
        )
        return Response(OtherBillSerializer(bill).data, status=status.HTTP_200_OK)
