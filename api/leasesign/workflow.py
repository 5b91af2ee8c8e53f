"""Signature workflow engine.

A document moves ``Unsigned -> PartiallySigned -> FullySignedPendingFinalize
-> Finalized``; every transition is driven by ``SignatureWorkflow.submit``.

Two guarantees hold under concurrent callers:

* one ledger row per (document, signer identity), enforced by the
  ``uq_signature_identity`` constraint; a writer losing that race answers as
  an idempotent resubmission;
* one finalization per document, claimed with a conditional UPDATE on the
  document row. The claim's row lock lasts until the finalize transaction
  ends, so a concurrent claimer re-evaluates the predicate after the winner
  commits and returns the winner's artifact.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from .audit import append_event, build_signature_audit
from .errors import (
    AmbiguousIdentityError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    UnknownTenantError,
    ValidationError,
)
from .finalize import FinalizationAssembler
from .ledger import (
    Completeness,
    SignerIdentity,
    SignerRole,
    compute_completeness,
    find_active,
    load_events,
    sequence_for,
    serialize_signature,
)
from .models import Document, Signature
from .pdf import PdfService
from .roster import RosterEntry, check_signable, resolve_roster
from .storage import BlobStore
from .utils import b64png_to_bytes, canonical_json, sha256_bytes

logger = logging.getLogger(__name__)

FINALIZED = "Finalized"


def serialize_document(doc: Document) -> dict:
    return {
        "id": doc.id,
        "leaseId": doc.lease_id,
        "unitId": doc.unit_id,
        "type": doc.type,
        "filename": doc.filename,
        "sha256": doc.sha256,
        "parentDocumentId": doc.parent_document_id,
        "signedFinalDocumentId": doc.signed_final_document_id,
        "finalizedAt": doc.finalized_at.isoformat() if doc.finalized_at else None,
        "createdAt": doc.created_at.isoformat() if doc.created_at else None,
    }


def _normalize_name(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def resolve_identity(
    role: SignerRole,
    roster: list[RosterEntry],
    signer_name: str,
    tenant_id: Union[int, str, None] = None,
) -> SignerIdentity:
    if role is SignerRole.LANDLORD:
        return SignerIdentity.landlord()
    if len(roster) == 1:
        return SignerIdentity.tenant(roster[0].tenant_id)

    if tenant_id is not None and str(tenant_id).strip():
        by_id = {str(entry.tenant_id): entry for entry in roster}
        entry = by_id.get(str(tenant_id).strip())
        if entry is None:
            raise UnknownTenantError(tenant_id)
        return SignerIdentity.tenant(entry.tenant_id)

    wanted = _normalize_name(signer_name)
    matches = [entry for entry in roster if _normalize_name(entry.full_name) == wanted]
    if len(matches) != 1:
        raise AmbiguousIdentityError([entry.to_candidate() for entry in roster])
    return SignerIdentity.tenant(matches[0].tenant_id)


@dataclass
class WorkflowResult:
    completeness: Completeness
    final_document: Optional[Document] = None
    already_signed: bool = False
    already_finalized: bool = False
    signature: Optional[Signature] = None

    @property
    def pending(self) -> bool:
        return self.final_document is None

    @property
    def state(self) -> str:
        return FINALIZED if self.final_document is not None else self.completeness.state

    def to_response(self) -> dict:
        body = {
            "ok": True,
            "pending": self.pending,
            "state": self.state,
            "signatures": [serialize_signature(s) for s in self.completeness.ordered],
        }
        if self.already_signed:
            body["alreadySigned"] = True
        if self.pending:
            body["need"] = self.completeness.need()
            return body
        if self.already_finalized:
            body["alreadyFinalized"] = True
        body["finalSignedDocument"] = serialize_document(self.final_document)
        body["signedPdfSha256"] = self.final_document.sha256
        return body


class SignatureWorkflow:
    def __init__(self, session: Session, blobs: BlobStore, pdf: PdfService):
        self.session = session
        self.blobs = blobs
        self.pdf = pdf

    def _load_document(self, document_id: int) -> Document:
        doc = self.session.get(Document, document_id)
        if not doc:
            raise NotFoundError("document", document_id)
        if doc.parent_document_id is not None:
            raise ValidationError("a finalized signed copy cannot be signed again")
        return doc

    def status(self, document_id: int) -> WorkflowResult:
        doc = self._load_document(document_id)
        roster = resolve_roster(self.session, doc.lease_id)
        completeness = compute_completeness(load_events(self.session, doc.id), roster)
        if doc.signed_final_document_id is not None:
            return self._finalized_result(doc, completeness, already_finalized=True)
        return WorkflowResult(completeness=completeness)

    def submit(
        self,
        document_id: int,
        role: Union[SignerRole, str],
        signer_name: str,
        signature_image: str,
        tenant_id: Union[int, str, None] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> WorkflowResult:
        try:
            role = SignerRole(role)
        except ValueError:
            raise ValidationError("role must be LANDLORD or TENANT")
        signer_name = (signer_name or "").strip()
        if not signer_name:
            raise ValidationError("signer_name is required")

        doc = self._load_document(document_id)
        roster = check_signable(self.session, doc.lease_id)
        png = b64png_to_bytes(signature_image)

        if doc.signed_final_document_id is not None:
            completeness = compute_completeness(load_events(self.session, doc.id), roster)
            return self._finalized_result(doc, completeness, already_finalized=True)

        identity = resolve_identity(role, roster, signer_name, tenant_id)
        written = None
        if find_active(self.session, doc.id, identity) is None:
            written = self._record(doc, roster, identity, signer_name, png, ip, user_agent)
        if written is None:
            logger.info("document %s: %s already signed, returning current state", doc.id, identity.key)
        return self._advance(doc, roster, already_signed=written is None, written=written)

    def _record(self, doc, roster, identity, signer_name, png, ip, user_agent) -> Optional[Signature]:
        """Write one ledger row; None means another writer holds the key."""
        original_sha = sha256_bytes(self.blobs.get_bytes(doc.storage_key))
        signed_at = datetime.utcnow()
        suffix = f"_{identity.tenant_id}" if identity.tenant_id is not None else ""
        image_key = (
            f"units/{doc.unit_id}/leases/{doc.lease_id}/signatures/"
            f"signature_{doc.id}_{identity.role.value}{suffix}_{int(signed_at.timestamp() * 1000)}.png"
        )
        audit = build_signature_audit(doc.id, identity, signer_name, original_sha, signed_at, ip, user_agent)
        sig = Signature(
            document_id=doc.id,
            signer_role=identity.role.value,
            tenant_id=identity.tenant_id,
            identity_key=identity.key,
            signer_name=signer_name,
            image_key=image_key,
            sequence=sequence_for(identity, roster),
            signed_at=signed_at,
            ip=ip,
            user_agent=user_agent,
            pdf_sha256=original_sha,
            audit_json=canonical_json(audit),
        )
        self.session.add(sig)
        try:
            self.session.flush()
        except IntegrityError:
            self.session.rollback()
            return None

        try:
            self.blobs.put_bytes(image_key, png, content_type="image/png")
            append_event(self.session, doc.id, identity.actor, "signed",
                         {"signature_id": sig.id, "sequence": sig.sequence}, ip=ip, ua=user_agent)
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            self._remove_blob(image_key)
            return None
        except Exception:
            self.session.rollback()
            self._remove_blob(image_key)
            raise
        self.session.refresh(sig)
        logger.info("document %s: recorded %s signature (sequence %s)", doc.id, identity.key, sig.sequence)
        return sig

    def _remove_blob(self, key: str):
        try:
            self.blobs.delete_object(key)
        except ExternalServiceError:
            logger.exception("could not remove orphaned signature image %s", key)

    def _advance(self, doc, roster, already_signed=False, written=None) -> WorkflowResult:
        completeness = compute_completeness(load_events(self.session, doc.id), roster)
        if not completeness.complete:
            return WorkflowResult(completeness=completeness, already_signed=already_signed, signature=written)
        self.session.refresh(doc)
        if doc.signed_final_document_id is not None:
            result = self._finalized_result(doc, completeness, already_finalized=True)
        else:
            result = self._finalize(doc, roster, completeness)
        result.already_signed = already_signed
        result.signature = written
        return result

    def _claim(self, doc: Document) -> bool:
        result = self.session.exec(
            update(Document)
            .where(Document.id == doc.id, Document.signed_final_document_id.is_(None))
            .values(finalized_at=datetime.utcnow())
        )
        return result.rowcount == 1

    def _finalize(self, doc: Document, roster: list[RosterEntry], completeness: Completeness) -> WorkflowResult:
        if not self._claim(doc):
            self.session.rollback()
            self.session.refresh(doc)
            if doc.signed_final_document_id is None:
                raise ConflictError(f"document {doc.id} finalization is in progress")
            logger.info("document %s: finalization already done by a concurrent request", doc.id)
            return self._finalized_result(doc, completeness, already_finalized=True)

        assembler = FinalizationAssembler(self.session, self.blobs, self.pdf)
        try:
            final = assembler.finalize(doc, roster, completeness.ordered)
            append_event(self.session, doc.id, "system", "finalized",
                         {"final_document_id": final.id, "sha256_final": final.sha256})
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            assembler.discard()
            logger.warning("document %s: finalization failed: %s", doc.id, exc)
            self._record_failure(doc.id, exc)
            raise
        self.session.refresh(doc)
        self.session.refresh(final)
        return WorkflowResult(completeness=completeness, final_document=final)

    def _record_failure(self, document_id: int, exc: Exception):
        try:
            append_event(self.session, document_id, "system", "finalize_failed", {"error": str(exc)})
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("document %s: could not record finalization failure", document_id)

    def _finalized_result(self, doc: Document, completeness: Completeness, already_finalized: bool) -> WorkflowResult:
        final = self.session.get(Document, doc.signed_final_document_id)
        if final is None:
            raise NotFoundError("final signed document", doc.signed_final_document_id)
        return WorkflowResult(completeness=completeness, final_document=final, already_finalized=already_finalized)
