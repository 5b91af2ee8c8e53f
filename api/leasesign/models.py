
from typing import Optional
from datetime import datetime
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field

class Unit(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    code: str

class Tenant(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    birth_date: Optional[str] = None
    birth_place: Optional[str] = None
    current_address: Optional[str] = None

class Lease(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    unit_id: int
    tenant_id: int  # primary tenant, roster fallback
    created_at: datetime = Field(default_factory=datetime.utcnow)

class LeaseTenant(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    lease_id: int = Field(index=True)
    tenant_id: int
    role: str = "cotenant"  # principal|cotenant
    created_at: datetime = Field(default_factory=datetime.utcnow)

class Document(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    lease_id: int = Field(index=True)
    unit_id: int
    type: str = "CONTRACT"  # CONTRACT|NOTICE|EDL|INVENTORY|PACK
    filename: str
    storage_key: str
    sha256: Optional[str] = None
    parent_document_id: Optional[int] = None
    signed_final_document_id: Optional[int] = None
    signed_final_sha256: Optional[str] = None
    finalized_at: Optional[datetime] = None
    event_head: Optional[str] = None  # hash of the latest DocumentEvent
    created_at: datetime = Field(default_factory=datetime.utcnow)

class Signature(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("document_id", "identity_key", name="uq_signature_identity"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    document_id: int = Field(index=True)
    signer_role: str  # LANDLORD|TENANT
    tenant_id: Optional[int] = None
    identity_key: str  # LANDLORD|TENANT:<id>
    signer_name: str
    image_key: str
    sequence: int
    signed_at: datetime = Field(default_factory=datetime.utcnow)
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    pdf_sha256: str
    audit_json: str = "{}"

class DocumentEvent(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    document_id: int = Field(index=True)
    actor: str  # system|landlord|tenant:<id>
    type: str   # signed|finalized|finalize_failed|link_issued
    meta_json: str = "{}"
    ip: Optional[str] = None
    ua: Optional[str] = None
    at: datetime = Field(default_factory=datetime.utcnow)
    prev_hash: Optional[str] = None
    hash: Optional[str] = None
