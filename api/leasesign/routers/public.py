import time
from datetime import datetime
from html import escape
from fastapi import APIRouter, Depends, HTTPException, Request, status
from itsdangerous import BadSignature
from sqlmodel import Session
from ..audit import append_event
from ..config import LANDLORD_NAME, SIGN_LINK_TTL_HOURS, WEB_BASE_URL
from ..db import get_session
from ..deps import get_workflow
from ..email import send_email
from ..errors import ConflictError, NotFoundError, ValidationError
from ..ledger import SignerRole
from ..models import Document, Unit
from ..roster import check_signable, resolve_roster
from ..schemas import PublicSignatureSubmit, SignLinkCreate
from ..utils import make_token, read_token
from ..workflow import SignatureWorkflow, resolve_identity, serialize_document

router = APIRouter()

PURPOSES = {
    SignerRole.TENANT: "TENANT_SIGN_CONTRACT",
    SignerRole.LANDLORD: "LANDLORD_SIGN_CONTRACT",
}
ROLE_BY_PURPOSE = {purpose: role for role, purpose in PURPOSES.items()}

# ---------- helpers ----------
def _decode(token: str) -> dict:
    try:
        data = read_token(token)
    except BadSignature:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "invalid signing link")
    if data.get("purpose") not in ROLE_BY_PURPOSE:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "invalid token purpose")
    if int(data.get("exp", 0)) < time.time():
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "signing link expired")
    return data

def _default_signer_name(session: Session, doc: Document, role: SignerRole, tenant_id) -> str:
    # a blank tenant name borrows the roster name of the tenant that resolves without one
    if role is SignerRole.LANDLORD:
        return LANDLORD_NAME
    roster = check_signable(session, doc.lease_id)
    identity = resolve_identity(role, roster, "", tenant_id)
    entry = next(e for e in roster if e.tenant_id == identity.tenant_id)
    return entry.full_name

def _link_email(url: str, role: SignerRole, unit_code: str, expires_at: str):
    if role is SignerRole.LANDLORD:
        subject = "Landlord signature - lease contract"
    else:
        subject = f"Lease contract signature - {unit_code}"
    text_body = f"""Hello,

Please sign the lease contract for unit {unit_code}.

Signing link: {url}

This link expires on {expires_at}.
"""
    html_body = f"""
<html>
  <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; padding: 24px;">
    <p>Please sign the lease contract for unit <b>{escape(unit_code)}</b>.</p>
    <p><a href="{escape(url)}">Review &amp; Sign</a></p>
    <p style="font-size: 12px; color: #64748b;">This link expires on {escape(expires_at)}.</p>
  </body>
</html>
"""
    return subject, text_body, html_body

# ---------- routes ----------

@router.post("/sign-links", status_code=201)
def create_sign_link(payload: SignLinkCreate, session: Session = Depends(get_session)):
    doc = session.get(Document, payload.document_id)
    if not doc:
        raise NotFoundError("document", payload.document_id)
    if doc.parent_document_id is not None:
        raise ValidationError("signing links are issued for original documents only")
    if doc.signed_final_document_id:
        raise ConflictError("document already finalized")
    ttl_hours = SIGN_LINK_TTL_HOURS if payload.ttl_hours is None else payload.ttl_hours
    exp = int(time.time()) + ttl_hours * 3600
    purpose = PURPOSES[payload.role]
    token = make_token({"document_id": doc.id, "purpose": purpose, "exp": exp})
    url = f"{WEB_BASE_URL}/public/sign/{token}"
    if payload.role is SignerRole.LANDLORD:
        url += "?role=landlord"
    expires_at = datetime.utcfromtimestamp(exp).isoformat() + "Z"

    sent_to = None
    if payload.email:
        if "@" not in payload.email:
            raise ValidationError("invalid email address")
        unit = session.get(Unit, doc.unit_id)
        subject, text_body, html_body = _link_email(url, payload.role, unit.code if unit else "-", expires_at)
        send_email(payload.email.strip(), subject, text_body, html_body=html_body)
        sent_to = payload.email.strip()

    append_event(session, doc.id, "system", "link_issued", {"purpose": purpose, "exp": exp, "sent_to": sent_to})
    session.commit()
    return {
        "token": token,
        "url": url,
        "expiresAt": expires_at,
        "documentId": doc.id,
        "leaseId": doc.lease_id,
        "sentTo": sent_to,
    }

@router.get("/sign/{token}")
def load_public_signing(token: str, workflow: SignatureWorkflow = Depends(get_workflow)):
    data = _decode(token)
    session = workflow.session
    doc = session.get(Document, data.get("document_id"))
    if not doc:
        raise NotFoundError("document", data.get("document_id"))
    unit = session.get(Unit, doc.unit_id)
    roster = resolve_roster(session, doc.lease_id)
    return {
        "role": ROLE_BY_PURPOSE[data["purpose"]].value,
        "document": serialize_document(doc),
        "unitCode": unit.code if unit else None,
        "tenants": [entry.to_candidate() for entry in roster],
        "status": workflow.status(doc.id).to_response(),
    }

@router.post("/sign/{token}")
def public_sign(
    token: str,
    payload: PublicSignatureSubmit,
    request: Request,
    workflow: SignatureWorkflow = Depends(get_workflow),
):
    data = _decode(token)
    role = ROLE_BY_PURPOSE[data["purpose"]]
    doc = workflow.session.get(Document, data.get("document_id"))
    if not doc:
        raise NotFoundError("document", data.get("document_id"))
    signer_name = (payload.signer_name or "").strip()
    if not signer_name:
        signer_name = _default_signer_name(workflow.session, doc, role, payload.tenant_id)
    result = workflow.submit(
        doc.id,
        role,
        signer_name,
        payload.signature_image,
        tenant_id=payload.tenant_id,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return result.to_response()
