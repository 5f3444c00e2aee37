# hp_core/conftest.py
import uuid
from datetime import datetime, timezone

import pytest

from hp_core.guard.services import RecordGuard
from hp_core.iam.principals import OrgAssignment, Principal, RoleType
from hp_core.lifecycle.services import ComplianceHoldService
from hp_core.lifecycle.store import DjangoRecordStore

FIXED_NOW = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def org_id():
    return uuid.UUID("00000000-0000-0000-0000-0000000000a1")


@pytest.fixture
def other_org_id():
    return uuid.UUID("00000000-0000-0000-0000-0000000000a2")


@pytest.fixture
def department_id():
    return uuid.UUID("00000000-0000-0000-0000-0000000000d1")


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def store():
    return DjangoRecordStore()


@pytest.fixture
def guard(store, clock):
    return RecordGuard(store, clock, uuid.uuid4)


@pytest.fixture
def hold_service(store, clock):
    return ComplianceHoldService(store=store, clock=clock)


@pytest.fixture
def make_principal(org_id):
    """
    Principal factory. By default assigned organization-wide to org_id;
    pass department_id to narrow, or assignments=() for none.
    """

    def _make(role, *, organization_id=None, department_id=None, assignments=None, principal_id=None):
        if assignments is None:
            assignments = (OrgAssignment(organization_id=organization_id or org_id, department_id=department_id),)
        return Principal(
            id=principal_id or uuid.uuid4(),
            role_type=RoleType(role),
            organization_assignments=tuple(assignments),
        )

    return _make


@pytest.fixture
def system_admin():
    return Principal(id=uuid.uuid4(), role_type=RoleType.SYSTEM_ADMIN)


@pytest.fixture
def org_admin(make_principal):
    return make_principal(RoleType.ORGANIZATION_ADMIN)


@pytest.fixture
def doctor(make_principal):
    return make_principal(RoleType.MEDICAL_DOCTOR)


@pytest.fixture
def technician(make_principal):
    return make_principal(RoleType.TECHNICIAN)


@pytest.fixture
def receptionist(make_principal):
    return make_principal(RoleType.RECEPTIONIST)


@pytest.fixture
def patient(make_principal):
    return make_principal(RoleType.PATIENT)


@pytest.fixture
def patient_record(db, org_id, patient):
    from hp_core.records.models import PatientRecord

    return PatientRecord.objects.create(organization_id=org_id, patient_id=patient.id, mrn="MRN-0001")
