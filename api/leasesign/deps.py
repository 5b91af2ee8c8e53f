from fastapi import Depends
from sqlmodel import Session

from .db import get_session
from .pdf import PdfService, get_pdf_service
from .storage import BlobStore, get_blob_store
from .workflow import SignatureWorkflow


def get_workflow(
    session: Session = Depends(get_session),
    blobs: BlobStore = Depends(get_blob_store),
    pdf: PdfService = Depends(get_pdf_service),
) -> SignatureWorkflow:
    return SignatureWorkflow(session, blobs, pdf)
