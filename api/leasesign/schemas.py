from pydantic import BaseModel, Field
from typing import Optional, Union
from .ledger import SignerRole

class SignatureSubmit(BaseModel):
    role: SignerRole
    signer_name: str
    signature_image: str  # data:image/png;base64,...
    tenant_id: Optional[Union[int, str]] = None

class PublicSignatureSubmit(BaseModel):
    signer_name: Optional[str] = None
    signature_image: str
    tenant_id: Optional[Union[int, str]] = None

class SignLinkCreate(BaseModel):
    document_id: int
    role: SignerRole = SignerRole.TENANT
    ttl_hours: Optional[int] = Field(default=None, gt=0)
    email: Optional[str] = None
