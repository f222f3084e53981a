# hb_core/conftest.py
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.test import APIClient

from hb_core.admissions.models import Admission
from hb_core.patients.models import Patient


def scope_headers(tenant_id, facility_id):
    """
    Standard scope headers used by the scope resolver.
    DRF test client requires HTTP_ prefix.
    """
    return {
        "HTTP_X_TENANT_ID": str(tenant_id),
        "HTTP_X_FACILITY_ID": str(facility_id),
    }


@pytest.fixture
def tenant_id():
    return uuid.UUID("00000000-0000-0000-0000-000000000001")


@pytest.fixture
def facility_id():
    return uuid.UUID("00000000-0000-0000-0000-000000000101")


@pytest.fixture
def headers(tenant_id, facility_id):
    return scope_headers(tenant_id, facility_id)


@pytest.fixture
def user(db):
    User = get_user_model()
    return User.objects.create_user(username="cashier", password="testpass", is_active=True)


@pytest.fixture
def api_client(user):
    c = APIClient()
    c.force_authenticate(user=user)
    return c


@pytest.fixture
def patient(db, tenant_id, facility_id):
    return Patient.objects.create(
        tenant_id=tenant_id,
        facility_id=facility_id,
        full_name="Test Patient",
        mrn="MRN-TEST-001",
    )


@pytest.fixture
def admission(db, tenant_id, facility_id, patient):
    """
    Five-day stay: bed 200/day, consultation 100/day.
    billed_days pins the day count so totals don't drift with the clock.
    """
    return Admission.objects.create(
        tenant_id=tenant_id,
        facility_id=facility_id,
        patient=patient,
        ip_number="IP-TEST-0001",
        admitted_at=timezone.now() - timedelta(days=4, hours=2),
        bed_type="General",
        bed_number="G-12",
        bed_daily_rate=Decimal("200.00"),
        consulting_doctor="Dr. Rao",
        consultation_fee=Decimal("100.00"),
        billed_days=5,
    )
