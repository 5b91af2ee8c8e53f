import json
import logging
import re
from datetime import datetime

from sqlmodel import Session

from .errors import ExternalServiceError
from .ledger import SignerRole
from .models import Document, Signature, Unit
from .pdf import AttestationPage, PdfService
from .roster import RosterEntry
from .storage import BlobStore
from .utils import sha256_bytes

logger = logging.getLogger(__name__)


def assembly_order(signatures: list[Signature], roster: list[RosterEntry]) -> list[Signature]:
    """Tenants in roster order, then the landlord; arrival order is ignored."""
    position = {entry.tenant_id: entry.position for entry in roster}
    tenants = [s for s in signatures if s.signer_role == SignerRole.TENANT.value and s.tenant_id in position]
    landlord = [s for s in signatures if s.signer_role == SignerRole.LANDLORD.value]
    tenants.sort(key=lambda s: position[s.tenant_id])
    return tenants + landlord[:1]


def final_storage_key(document: Document) -> str:
    base = re.sub(r"\.pdf$", "", document.filename or "document.pdf", flags=re.IGNORECASE)
    return f"units/{document.unit_id}/leases/{document.lease_id}/documents/{base}_SIGNED_FINAL.pdf"


class FinalizationAssembler:
    """Merges the original document with one attestation page per signer.

    ``finalize`` only stages rows in the session; the caller commits, or
    rolls back and calls ``discard`` to remove the stored final PDF.
    """

    def __init__(self, session: Session, blobs: BlobStore, pdf: PdfService):
        self.session = session
        self.blobs = blobs
        self.pdf = pdf
        self.written_key = None

    def finalize(self, document: Document, roster: list[RosterEntry], signatures: list[Signature]) -> Document:
        if document.signed_final_document_id is not None:
            raise ValueError(f"document {document.id} is already finalized")
        ordered = assembly_order(signatures, roster)
        original = self.blobs.get_bytes(document.storage_key)
        original_sha = sha256_bytes(original)
        unit = self.session.get(Unit, document.unit_id)
        unit_code = unit.code if unit else "UNIT"

        pages = []
        for sig in ordered:
            pages.append(self.pdf.render_attestation(AttestationPage(
                lease_id=document.lease_id,
                unit_code=unit_code,
                signer_name=sig.signer_name,
                signer_role=sig.signer_role,
                signed_at=sig.signed_at.isoformat() + "Z",
                signature_png=self.blobs.get_bytes(sig.image_key),
                original_sha256=original_sha,
                audit=json.loads(sig.audit_json or "{}"),
            )))
        merged = self.pdf.merge([original, *pages])
        if not merged:
            raise ExternalServiceError("PDF merge returned an empty document")
        merged_sha = sha256_bytes(merged)

        key = final_storage_key(document)
        self.blobs.put_bytes(key, merged, content_type="application/pdf")
        self.written_key = key

        final = Document(
            lease_id=document.lease_id,
            unit_id=document.unit_id,
            type=document.type,
            filename=key.rsplit("/", 1)[-1],
            storage_key=key,
            sha256=merged_sha,
            parent_document_id=document.id,
        )
        self.session.add(final)
        self.session.flush()

        document.signed_final_document_id = final.id
        document.signed_final_sha256 = merged_sha
        document.finalized_at = datetime.utcnow()
        self.session.add(document)
        self.session.flush()
        logger.info(
            "document %s finalized as %s (%d attestation pages, sha256 %s)",
            document.id, final.id, len(pages), merged_sha,
        )
        return final

    def discard(self):
        if not self.written_key:
            return
        try:
            self.blobs.delete_object(self.written_key)
        except ExternalServiceError:
            logger.exception("could not remove orphaned final PDF %s", self.written_key)
        self.written_key = None
