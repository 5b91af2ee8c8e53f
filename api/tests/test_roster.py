import pytest
from sqlmodel import Session

from leasesign.errors import IncompleteProfileError, NotFoundError, ValidationError
from leasesign.models import LeaseTenant
from leasesign.roster import check_signable, resolve_roster

from conftest import tenant


def test_roster_puts_principal_first_then_cotenants_in_creation_order(session, lease_factory):
    # the principal association is created last on purpose
    lease = lease_factory([
        tenant("Bob Martin"),
        tenant("Carla Diaz"),
        tenant("Alice Durand", role="principal"),
    ])
    roster = resolve_roster(session, lease["lease_id"])
    bob, carla, alice = lease["tenant_ids"]
    assert [e.tenant_id for e in roster] == [alice, bob, carla]
    assert [e.position for e in roster] == [0, 1, 2]
    assert [e.role for e in roster] == ["principal", "cotenant", "cotenant"]


def test_roster_deduplicates_repeated_association(session, test_engine, lease_factory):
    lease = lease_factory([tenant("Alice Durand", role="principal"), tenant("Bob Martin")])
    with Session(test_engine) as s:
        s.add(LeaseTenant(lease_id=lease["lease_id"], tenant_id=lease["tenant_ids"][1], role="cotenant"))
        s.commit()
    roster = resolve_roster(session, lease["lease_id"])
    assert [e.tenant_id for e in roster] == lease["tenant_ids"]


def test_roster_falls_back_to_primary_tenant(session, lease_factory):
    lease = lease_factory([tenant("Alice Durand")], link=False)
    roster = resolve_roster(session, lease["lease_id"])
    assert len(roster) == 1
    assert roster[0].tenant_id == lease["tenant_ids"][0]
    assert roster[0].role == "principal"
    assert roster[0].full_name == "Alice Durand"


def test_roster_rejects_unknown_role(session, lease_factory):
    lease = lease_factory([tenant("Alice Durand", role="guarantor")])
    with pytest.raises(ValidationError):
        resolve_roster(session, lease["lease_id"])


def test_roster_rejects_dangling_association(session, test_engine, lease_factory):
    lease = lease_factory([tenant("Alice Durand", role="principal")])
    with Session(test_engine) as s:
        s.add(LeaseTenant(lease_id=lease["lease_id"], tenant_id=9999, role="cotenant"))
        s.commit()
    with pytest.raises(NotFoundError):
        resolve_roster(session, lease["lease_id"])


def test_unknown_lease(session, setup_db):
    with pytest.raises(NotFoundError):
        resolve_roster(session, 12345)


def test_check_signable_lists_missing_fields_per_tenant(session, lease_factory):
    lease = lease_factory([
        tenant("Alice Durand", role="principal"),
        tenant("Bob Martin", birth_place=None, current_address="  "),
    ])
    with pytest.raises(IncompleteProfileError) as exc:
        check_signable(session, lease["lease_id"])
    assert exc.value.incomplete == [{
        "tenantId": lease["tenant_ids"][1],
        "name": "Bob Martin",
        "missing": ["birth_place", "current_address"],
    }]
    assert "birth_place" in exc.value.message


def test_check_signable_names_unnamed_tenant(session, lease_factory):
    lease = lease_factory([tenant("", role="principal")])
    with pytest.raises(IncompleteProfileError) as exc:
        check_signable(session, lease["lease_id"])
    assert exc.value.incomplete[0]["name"] == "(unnamed tenant)"
    assert exc.value.incomplete[0]["missing"] == ["full_name"]


def test_check_signable_returns_roster(session, lease_factory):
    lease = lease_factory([tenant("Alice Durand", role="principal"), tenant("Bob Martin")])
    roster = check_signable(session, lease["lease_id"])
    assert [e.full_name for e in roster] == ["Alice Durand", "Bob Martin"]
