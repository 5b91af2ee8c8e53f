"""Signature ledger: identity keys, latest-wins reduction and completeness."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from sqlmodel import Session, select

from .models import Signature
from .roster import RosterEntry


class SignerRole(str, Enum):
    LANDLORD = "LANDLORD"
    TENANT = "TENANT"


@dataclass(frozen=True)
class SignerIdentity:
    role: SignerRole
    tenant_id: Optional[int] = None

    @classmethod
    def landlord(cls) -> "SignerIdentity":
        return cls(SignerRole.LANDLORD)

    @classmethod
    def tenant(cls, tenant_id: int) -> "SignerIdentity":
        return cls(SignerRole.TENANT, tenant_id)

    @classmethod
    def from_signature(cls, sig: Signature) -> "SignerIdentity":
        if sig.signer_role == SignerRole.LANDLORD.value:
            return cls.landlord()
        return cls.tenant(sig.tenant_id)

    @property
    def key(self) -> str:
        if self.role is SignerRole.LANDLORD:
            return "LANDLORD"
        return f"TENANT:{self.tenant_id}"

    @property
    def actor(self) -> str:
        return "landlord" if self.role is SignerRole.LANDLORD else f"tenant:{self.tenant_id}"


def latest_per_identity(events: Iterable[Signature]) -> dict[str, Signature]:
    """Reduce ledger rows to the active (most recent) event per identity key."""
    active: dict[str, Signature] = {}
    for sig in events:
        current = active.get(sig.identity_key)
        if current is None or (sig.signed_at, sig.id or 0) > (current.signed_at, current.id or 0):
            active[sig.identity_key] = sig
    return active


def load_events(session: Session, document_id: int) -> list[Signature]:
    return session.exec(select(Signature).where(Signature.document_id == document_id)).all()


def find_active(session: Session, document_id: int, identity: SignerIdentity) -> Optional[Signature]:
    return session.exec(
        select(Signature)
        .where(Signature.document_id == document_id, Signature.identity_key == identity.key)
        .order_by(Signature.signed_at.desc(), Signature.id.desc())
    ).first()


def sequence_for(identity: SignerIdentity, roster: list[RosterEntry]) -> int:
    """Assembly position: tenants by roster position, landlord after all of them."""
    if identity.role is SignerRole.LANDLORD:
        return len(roster) + 1
    for entry in roster:
        if entry.tenant_id == identity.tenant_id:
            return entry.position + 1
    raise ValueError(f"tenant {identity.tenant_id} is not on the roster")


@dataclass
class Completeness:
    signed_tenant_ids: list[int]
    missing_tenant_ids: list[int]
    landlord_signed: bool
    # active signatures in assembly order: roster tenants, then landlord
    ordered: list[Signature] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.missing_tenant_ids and self.landlord_signed

    @property
    def state(self) -> str:
        if self.complete:
            return "FullySignedPendingFinalize"
        if self.signed_tenant_ids or self.landlord_signed:
            return "PartiallySigned"
        return "Unsigned"

    def need(self) -> dict:
        return {
            "landlord": not self.landlord_signed,
            "tenantsMissing": self.missing_tenant_ids,
            "tenantsSigned": self.signed_tenant_ids,
            "tenantsTotal": len(self.signed_tenant_ids) + len(self.missing_tenant_ids),
        }


def compute_completeness(events: Iterable[Signature], roster: list[RosterEntry]) -> Completeness:
    active = latest_per_identity(events)
    signed, missing, ordered = [], [], []
    for entry in roster:
        sig = active.get(SignerIdentity.tenant(entry.tenant_id).key)
        if sig is None:
            missing.append(entry.tenant_id)
        else:
            signed.append(entry.tenant_id)
            ordered.append(sig)
    landlord = active.get(SignerIdentity.landlord().key)
    if landlord is not None:
        ordered.append(landlord)
    return Completeness(
        signed_tenant_ids=signed,
        missing_tenant_ids=missing,
        landlord_signed=landlord is not None,
        ordered=ordered,
    )


def serialize_signature(sig: Signature) -> dict:
    return {
        "id": sig.id,
        "documentId": sig.document_id,
        "signerRole": sig.signer_role,
        "tenantId": sig.tenant_id,
        "signerName": sig.signer_name,
        "sequence": sig.sequence,
        "signedAt": sig.signed_at.isoformat() if sig.signed_at else None,
        "pdfSha256": sig.pdf_sha256,
        "audit": json.loads(sig.audit_json or "{}"),
    }
