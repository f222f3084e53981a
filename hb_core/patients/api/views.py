# hb_core/patients/api/views.py
from __future__ import annotations

from uuid import UUID

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status, viewsets
from rest_framework.response import Response

from hb_core.common.api.pagination import paginate
from hb_core.common.scope import require_scope
from hb_core.patients.api.serializers import PatientCreateSerializer, PatientSerializer
from hb_core.patients.models import Patient
from hb_core.patients.selectors import get_patient, search_patients
from hb_core.patients.services import PatientService


class PatientViewSet(viewsets.GenericViewSet):
    serializer_class = PatientSerializer
    queryset = Patient.objects.none()

    @extend_schema(
        tags=["Patients"],
        responses={200: PatientSerializer(many=True)},
        parameters=[
            OpenApiParameter(
                name="q",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                required=False,
                description="Matches name, MRN or phone.",
            ),
        ],
    )
    def list(self, request):
        scope = require_scope(request)

        qs = search_patients(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            q=request.query_params.get("q", ""),
        )
        return paginate(request, qs, PatientSerializer)

    @extend_schema(tags=["Patients"], responses={200: PatientSerializer})
    def retrieve(self, request, pk=None):
        scope = require_scope(request)

        patient = get_patient(tenant_id=scope.tenant_id, facility_id=scope.facility_id, patient_id=UUID(str(pk)))
        return Response(PatientSerializer(patient).data, status=status.HTTP_200_OK)

    @extend_schema(
        tags=["Patients"],
        request=PatientCreateSerializer,
        responses={201: PatientSerializer},
    )
    def create(self, request):
        scope = require_scope(request)

        ser = PatientCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        patient = PatientService.register(
            tenant_id=scope.tenant_id,
            facility_id=scope.facility_id,
            actor_user_id=getattr(request.user, "id", None),
            **ser.validated_data,
        )
        return Response(PatientSerializer(patient).data, status=status.HTTP_201_CREATED)
