# hb_core/admissions/api/views.py
from __future__ import annotations

from uuid import UUID

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.response import Response

from hb_core.admissions.api.serializers import (
    AdmissionCreateSerializer,
    AdmissionDischargeSerializer,
    AdmissionSerializer,
)
from hb_core.admissions.models import Admission
from hb_core.admissions.selectors import AdmissionSelectors
from hb_core.admissions.services import AdmissionService
from hb_core.common.api.pagination import paginate
from hb_core.common.scope import require_scope


def _uuid_or_none(value: str | None, field_name: str) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise DRFValidationError({field_name: "Invalid UUID"})


class AdmissionViewSet(viewsets.GenericViewSet):
    """
    Inpatient stays:
    - list/retrieve
    - admit (create)
    - discharge
    """
    serializer_class = AdmissionSerializer
    queryset = Admission.objects.none()

    @extend_schema(
        tags=["Admissions"],
        responses={200: AdmissionSerializer(many=True)},
        parameters=[
            OpenApiParameter(name="patient", type=OpenApiTypes.UUID, location=OpenApiParameter.QUERY, required=False),
            OpenApiParameter(name="status", type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, required=False),
        ],
    )
    def list(self, request):
        scope = require_scope(request)

        qs = AdmissionSelectors.list_admissions(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            patient_id=_uuid_or_none(request.query_params.get("patient"), "patient"),
            status=request.query_params.get("status"),
        )
        return paginate(request, qs, AdmissionSerializer)

    @extend_schema(tags=["Admissions"], responses={200: AdmissionSerializer})
    def retrieve(self, request, pk=None):
        scope = require_scope(request)

        admission = AdmissionSelectors.get_admission(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            admission_id=UUID(str(pk)),
        )
        return Response(AdmissionSerializer(admission).data, status=status.HTTP_200_OK)

    @extend_schema(
        tags=["Admissions"],
        request=AdmissionCreateSerializer,
        responses={201: AdmissionSerializer},
    )
    def create(self, request):
        scope = require_scope(request)

        ser = AdmissionCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        v = dict(ser.validated_data)

        admission = AdmissionService.admit(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            patient_id=v.pop("patient"),
            actor_user_id=getattr(request.user, "id", None),
            **v,
        )
        return Response(AdmissionSerializer(admission).data, status=status.HTTP_201_CREATED)

    @extend_schema(
        tags=["Admissions"],
        request=AdmissionDischargeSerializer,
        responses={200: AdmissionSerializer},
    )
    @action(detail=True, methods=["post"], url_path="discharge")
    def discharge(self, request, pk=None):
        scope = require_scope(request)

        ser = AdmissionDischargeSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        admission = AdmissionService.discharge(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            admission_id=UUID(str(pk)),
            actor_user_id=getattr(request.user, "id", None),
            discharged_at=ser.validated_data.get("discharged_at"),
        )
        return Response(AdmissionSerializer(admission).data, status=status.HTTP_200_OK)
