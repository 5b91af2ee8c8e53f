from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlmodel import Session, select

from .ledger import SignerIdentity
from .models import Document, DocumentEvent
from .utils import canonical_json, sha256_bytes


def build_signature_audit(
    document_id: int,
    identity: SignerIdentity,
    signer_name: str,
    original_sha256: str,
    signed_at: datetime,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> dict:
    # consent is enforced by the signing UI; a submission implies it
    return {
        "consent": True,
        "signed_at": signed_at.isoformat() + "Z",
        "ip": ip,
        "user_agent": user_agent,
        "document_id": document_id,
        "signer_role": identity.role.value,
        "signer_name": signer_name,
        "tenant_id": identity.tenant_id,
        "original_pdf_sha256": original_sha256,
    }


def append_event(session: Session, document_id: int, actor: str, type_: str, meta: dict, ip=None, ua=None) -> DocumentEvent:
    """Add a hash-chained event; the caller owns the transaction.

    The document row is written before the chain head is read, so concurrent
    appenders for one document queue on its lock (a row lock on PostgreSQL,
    the database write lock on SQLite) and each one sees the previous head.
    """
    session.exec(
        update(Document)
        .where(Document.id == document_id)
        .values(event_head=Document.event_head)
        .execution_options(synchronize_session=False)
    )
    last = session.exec(
        select(DocumentEvent).where(DocumentEvent.document_id == document_id).order_by(DocumentEvent.id.desc())
    ).first()
    prev_hash = last.hash if last else "0" * 64
    payload = {"actor": actor, "type": type_, "meta": meta}
    event = DocumentEvent(
        document_id=document_id, actor=actor, type=type_,
        meta_json=canonical_json(payload), prev_hash=prev_hash,
        ip=ip, ua=ua,
    )
    event.hash = sha256_bytes((prev_hash + event.meta_json).encode())
    session.add(event)
    session.flush()
    session.exec(
        update(Document)
        .where(Document.id == document_id)
        .values(event_head=event.hash)
        .execution_options(synchronize_session=False)
    )
    return event


def verify_chain(events: list[DocumentEvent]) -> bool:
    prev_hash = "0" * 64
    for event in events:
        if event.prev_hash != prev_hash:
            return False
        if event.hash != sha256_bytes((prev_hash + event.meta_json).encode()):
            return False
        prev_hash = event.hash
    return True
