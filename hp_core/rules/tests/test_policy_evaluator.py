# hp_core/rules/tests/test_policy_evaluator.py
import uuid

import pytest

from hp_core.common.errors import UnknownResourceType
from hp_core.common.results import ResultKind
from hp_core.common.types import ActionType, ResourceRef
from hp_core.iam.principals import RoleType
from hp_core.lifecycle import registry as types
from hp_core.rules.capabilities import DEFAULT_TABLE, Capability, CapabilityTable
from hp_core.rules.engine import PolicyEvaluator
from hp_core.rules.predicates import DenyReason


def _ref(resource_type, org_id, **kw):
    return ResourceRef(resource_type=resource_type, resource_id=uuid.uuid4(), organization_id=org_id, **kw)


def test_unknown_combination_is_denied():
    assert DEFAULT_TABLE.lookup(RoleType.RECEPTIONIST, ActionType.HARD_DELETE, types.MEDICAL_IMAGE) == Capability.DENIED
    assert DEFAULT_TABLE.lookup(RoleType.PATIENT, ActionType.READ, "unknown_type") == Capability.DENIED


def test_every_catalog_type_is_declared():
    for resource_type in types.DEFAULT_REGISTRY.types():
        assert DEFAULT_TABLE.lookup(RoleType.SYSTEM_ADMIN, ActionType.READ, resource_type) == Capability.ALLOWED


def test_role_not_permitted_short_circuits_before_scope(receptionist, other_org_id):
    decision = PolicyEvaluator().evaluate(receptionist, ActionType.HARD_DELETE, _ref(types.MEDICAL_IMAGE, other_org_id))

    assert not decision.allowed
    assert decision.reason == DenyReason.ROLE_NOT_PERMITTED
    assert decision.result_kind == ResultKind.FORBIDDEN
    assert decision.matched_rule == "medical_image.hard_delete.receptionist"


def test_org_admin_outside_scope(org_admin, other_org_id):
    decision = PolicyEvaluator().evaluate(org_admin, ActionType.SOFT_DELETE, _ref(types.APPOINTMENT, other_org_id))

    assert decision.reason == DenyReason.OUT_OF_SCOPE
    assert decision.result_kind == ResultKind.OUT_OF_SCOPE


def test_delete_alias_resolves_per_type(org_admin, org_id):
    evaluator = PolicyEvaluator()

    assert evaluator.evaluate(org_admin, ActionType.DELETE, _ref(types.APPOINTMENT, org_id)).action == ActionType.SOFT_DELETE
    assert evaluator.evaluate(org_admin, ActionType.DELETE, _ref(types.MEDICAL_IMAGE, org_id)).action == ActionType.HARD_DELETE


def test_assignment_predicate(doctor, make_principal, org_id):
    evaluator = PolicyEvaluator()
    ref = _ref(types.LAB_RESULT, org_id, assigned_provider_id=doctor.id)

    assert evaluator.evaluate(doctor, ActionType.UPDATE, ref).allowed

    # the other doctor is not a participant, so scope rejects first
    other = make_principal(RoleType.MEDICAL_DOCTOR)
    assert evaluator.evaluate(other, ActionType.UPDATE, ref).reason == DenyReason.OUT_OF_SCOPE

    unassigned = _ref(types.LAB_RESULT, org_id)
    assert evaluator.evaluate(doctor, ActionType.UPDATE, unassigned).reason == DenyReason.NOT_ASSIGNED_PROVIDER


def test_only_uploader_technician_may_delete_image(technician, make_principal, org_id):
    evaluator = PolicyEvaluator()
    ref = _ref(types.MEDICAL_IMAGE, org_id, owner_id=technician.id)
    other = make_principal(RoleType.TECHNICIAN)

    assert evaluator.evaluate(technician, ActionType.DELETE, ref).allowed
    assert evaluator.evaluate(other, ActionType.DELETE, ref).reason == DenyReason.NOT_OWNER


def test_self_only_mfa_factor(make_principal, org_id):
    nurse = make_principal(RoleType.NURSE)
    evaluator = PolicyEvaluator()

    own = _ref(types.MFA_FACTOR, org_id, owner_id=nurse.id)
    foreign = _ref(types.MFA_FACTOR, org_id, owner_id=uuid.uuid4())

    assert evaluator.evaluate(nurse, ActionType.HARD_DELETE, own).allowed
    assert evaluator.evaluate(nurse, ActionType.HARD_DELETE, foreign).reason == DenyReason.NOT_SELF


def test_patient_reads_own_record_only(patient, org_id):
    evaluator = PolicyEvaluator()

    assert evaluator.evaluate(patient, ActionType.READ, _ref(types.PATIENT_RECORD, org_id, owner_id=patient.id)).allowed
    assert not evaluator.evaluate(patient, ActionType.READ, _ref(types.PATIENT_RECORD, org_id, owner_id=uuid.uuid4())).allowed
    assert not evaluator.evaluate(patient, ActionType.SOFT_DELETE, _ref(types.PATIENT_RECORD, org_id, owner_id=patient.id)).allowed


def test_constrain_filter_overrides_owner_for_self_only(make_principal, system_admin):
    nurse = make_principal(RoleType.NURSE)
    evaluator = PolicyEvaluator()

    assert evaluator.constrain_filter(nurse, types.MFA_FACTOR, {"user_id": uuid.uuid4()}) == {"user_id": nurse.id}
    assert evaluator.constrain_filter(nurse, types.APPOINTMENT, {"status": "scheduled"}) == {"status": "scheduled"}

    requested = {"user_id": uuid.uuid4()}
    assert evaluator.constrain_filter(system_admin, types.MFA_FACTOR, requested) == requested


def test_unknown_resource_type_is_misconfiguration(system_admin, org_id):
    with pytest.raises(UnknownResourceType):
        PolicyEvaluator().evaluate(system_admin, ActionType.READ, _ref("spaceship", org_id))


def test_custom_table(org_admin, org_id):
    table = CapabilityTable.from_declarations({types.VITAL: {RoleType.ORGANIZATION_ADMIN: {ActionType.READ: Capability.ALLOWED}}})
    evaluator = PolicyEvaluator(table=table)

    assert evaluator.evaluate(org_admin, ActionType.READ, _ref(types.VITAL, org_id)).allowed
    assert not evaluator.evaluate(org_admin, ActionType.UPDATE, _ref(types.VITAL, org_id)).allowed
