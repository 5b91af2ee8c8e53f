"""Tenant roster: who must sign a lease's documents, and in which order.

The roster is derived from the lease's tenant associations, principal first
and co-tenants by association creation time. A lease without associations
falls back to its primary tenant. Rows that do not fit the expected shape
raise instead of being defaulted.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import case
from sqlmodel import Session, select

from .errors import IncompleteProfileError, NotFoundError, ValidationError
from .models import Lease, LeaseTenant, Tenant

ROLES = ("principal", "cotenant")

REQUIRED_FIELDS = ("full_name", "birth_date", "birth_place", "current_address")


@dataclass(frozen=True)
class RosterEntry:
    tenant_id: int
    full_name: str
    birth_date: Optional[str]
    birth_place: Optional[str]
    current_address: Optional[str]
    role: str
    position: int

    def missing_fields(self) -> list[str]:
        return [name for name in REQUIRED_FIELDS if not (getattr(self, name) or "").strip()]

    def to_candidate(self) -> dict:
        return {"tenantId": self.tenant_id, "fullName": self.full_name, "role": self.role}


def _entry(tenant: Tenant, role: str, position: int) -> RosterEntry:
    if role not in ROLES:
        raise ValidationError(f"tenant {tenant.id} has unknown lease role {role!r}")
    return RosterEntry(
        tenant_id=tenant.id,
        full_name=(tenant.full_name or "").strip(),
        birth_date=tenant.birth_date,
        birth_place=tenant.birth_place,
        current_address=tenant.current_address,
        role=role,
        position=position,
    )


def resolve_roster(session: Session, lease_id: int) -> list[RosterEntry]:
    lease = session.get(Lease, lease_id)
    if not lease:
        raise NotFoundError("lease", lease_id)
    rows = session.exec(
        select(LeaseTenant, Tenant)
        .join(Tenant, Tenant.id == LeaseTenant.tenant_id, isouter=True)
        .where(LeaseTenant.lease_id == lease_id)
        .order_by(
            case((LeaseTenant.role == "principal", 0), else_=1),
            LeaseTenant.created_at,
            LeaseTenant.id,
        )
    ).all()

    roster: list[RosterEntry] = []
    seen = set()
    for link, tenant in rows:
        if tenant is None:
            raise NotFoundError("tenant", link.tenant_id)
        if tenant.id in seen:
            continue
        seen.add(tenant.id)
        roster.append(_entry(tenant, link.role, len(roster)))

    if not roster:
        tenant = session.get(Tenant, lease.tenant_id)
        if not tenant:
            raise NotFoundError("tenant", lease.tenant_id)
        roster.append(_entry(tenant, "principal", 0))
    return roster


def incomplete_entries(roster: list[RosterEntry]) -> list[dict]:
    incomplete = []
    for entry in roster:
        missing = entry.missing_fields()
        if missing:
            incomplete.append({
                "tenantId": entry.tenant_id,
                "name": entry.full_name or "(unnamed tenant)",
                "missing": missing,
            })
    return incomplete


def check_signable(session: Session, lease_id: int) -> list[RosterEntry]:
    """Return the roster, or raise IncompleteProfileError naming each tenant's missing fields."""
    roster = resolve_roster(session, lease_id)
    incomplete = incomplete_entries(roster)
    if incomplete:
        raise IncompleteProfileError(incomplete)
    return roster
