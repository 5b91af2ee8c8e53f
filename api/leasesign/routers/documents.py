from fastapi import APIRouter, Depends, Request, Response
from sqlmodel import Session
from ..db import get_session
from ..deps import get_workflow
from ..errors import NotFoundError
from ..models import Document
from ..schemas import SignatureSubmit
from ..storage import BlobStore, get_blob_store
from ..workflow import SignatureWorkflow

router = APIRouter()

def _pdf_response(data: bytes, filename: str) -> Response:
    return Response(
        content=data,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )

@router.post("/{document_id}/sign")
def sign_document(
    document_id: int,
    payload: SignatureSubmit,
    request: Request,
    workflow: SignatureWorkflow = Depends(get_workflow),
):
    result = workflow.submit(
        document_id,
        payload.role,
        payload.signer_name,
        payload.signature_image,
        tenant_id=payload.tenant_id,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return result.to_response()

@router.get("/{document_id}/signatures")
def signature_status(document_id: int, workflow: SignatureWorkflow = Depends(get_workflow)):
    return workflow.status(document_id).to_response()

@router.get("/{document_id}/pdf")
def download_document_pdf(
    document_id: int,
    session: Session = Depends(get_session),
    blobs: BlobStore = Depends(get_blob_store),
):
    doc = session.get(Document, document_id)
    if not doc:
        raise NotFoundError("document", document_id)
    return _pdf_response(blobs.get_bytes(doc.storage_key), doc.filename or f"document-{document_id}.pdf")

@router.get("/{document_id}/final-pdf")
def download_final_pdf(
    document_id: int,
    session: Session = Depends(get_session),
    blobs: BlobStore = Depends(get_blob_store),
):
    doc = session.get(Document, document_id)
    if not doc:
        raise NotFoundError("document", document_id)
    if not doc.signed_final_document_id:
        raise NotFoundError("final signed document for document", document_id)
    final = session.get(Document, doc.signed_final_document_id)
    if not final:
        raise NotFoundError("final signed document", doc.signed_final_document_id)
    return _pdf_response(blobs.get_bytes(final.storage_key), final.filename)
