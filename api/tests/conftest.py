import base64
import os
from io import BytesIO
from typing import Dict

import pytest
from fastapi.testclient import TestClient
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas
from sqlmodel import SQLModel, Session, create_engine

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

from leasesign.main import app  # noqa: E402
from leasesign import db as db_module  # noqa: E402
from leasesign.db import get_session  # noqa: E402
from leasesign.errors import ExternalServiceError, NotFoundError  # noqa: E402
from leasesign.models import Document, Lease, LeaseTenant, Tenant, Unit  # noqa: E402
from leasesign.pdf import LocalPdfService, get_pdf_service  # noqa: E402
from leasesign.storage import get_blob_store  # noqa: E402
from leasesign.utils import sha256_bytes  # noqa: E402
from leasesign.workflow import SignatureWorkflow  # noqa: E402

SIGNATURE_PNG_B64 = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8/5+hHgAHggJ/Pf8icQAAAABJRU5ErkJggg=="
SIGNATURE_DATA_URL = f"data:image/png;base64,{SIGNATURE_PNG_B64}"
SIGNATURE_PNG = base64.b64decode(SIGNATURE_PNG_B64)


def make_pdf(text: str = "Lease contract") -> bytes:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    c.drawString(72, 720, text)
    c.showPage(); c.save()
    return buf.getvalue()


class MemoryBlobStore:
    def __init__(self):
        self.objects: Dict[str, bytes] = {}

    def put_bytes(self, key: str, data: bytes, content_type: str = "application/octet-stream"):
        self.objects[key] = bytes(data)

    def get_bytes(self, key: str) -> bytes:
        if key not in self.objects:
            raise NotFoundError("stored file", key)
        return self.objects[key]

    def delete_object(self, key: str):
        self.objects.pop(key, None)


class RecordingPdfService(LocalPdfService):
    """Real local rendering, with a log of what was rendered and merged."""

    def __init__(self):
        self.attestations = []
        self.merges = []
        self.fail_merge = False

    def render_attestation(self, page):
        self.attestations.append(page)
        return super().render_attestation(page)

    def merge(self, parts):
        if self.fail_merge:
            raise ExternalServiceError("PDF merge failed: service unavailable")
        self.merges.append(len(parts))
        return super().merge(parts)


@pytest.fixture(scope="session")
def test_engine(tmp_path_factory):
    db_path = tmp_path_factory.mktemp("data") / "test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    return engine


@pytest.fixture
def setup_db(test_engine):
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def blobs() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def pdf_service() -> RecordingPdfService:
    return RecordingPdfService()


@pytest.fixture
def session(test_engine, setup_db):
    with Session(test_engine) as s:
        yield s


@pytest.fixture
def workflow(session, blobs, pdf_service) -> SignatureWorkflow:
    return SignatureWorkflow(session, blobs, pdf_service)


@pytest.fixture
def lease_factory(test_engine, setup_db, blobs):
    """Create a unit, tenants, a lease and its contract document.

    ``tenants`` is a list of dicts of Tenant fields plus an optional
    ``role``; the first one is the lease's primary tenant. With
    ``link=False`` no LeaseTenant rows are written.
    """

    def create(tenants, link=True, unit_code="A-101", content=None):
        content = content or make_pdf()
        with Session(test_engine) as s:
            unit = Unit(code=unit_code)
            s.add(unit); s.flush()
            rows = []
            for row in tenants:
                fields = {k: v for k, v in row.items() if k != "role"}
                tenant = Tenant(**fields)
                s.add(tenant); s.flush()
                rows.append((tenant, row.get("role", "cotenant")))
            lease = Lease(unit_id=unit.id, tenant_id=rows[0][0].id)
            s.add(lease); s.flush()
            if link:
                for tenant, role in rows:
                    s.add(LeaseTenant(lease_id=lease.id, tenant_id=tenant.id, role=role))
                    s.flush()
            key = f"units/{unit.id}/leases/{lease.id}/documents/contract.pdf"
            doc = Document(
                lease_id=lease.id, unit_id=unit.id, type="CONTRACT",
                filename="contract.pdf", storage_key=key, sha256=sha256_bytes(content),
            )
            s.add(doc)
            s.commit()
            blobs.put_bytes(key, content, "application/pdf")
            return {
                "lease_id": lease.id,
                "document_id": doc.id,
                "tenant_ids": [t.id for t, _ in rows],
                "original": content,
            }

    return create


def tenant(name, role="cotenant", **overrides):
    fields = {
        "full_name": name,
        "birth_date": "1990-01-01",
        "birth_place": "Lyon",
        "current_address": "1 rue de la Paix, Paris",
        "role": role,
    }
    fields.update(overrides)
    return fields


@pytest.fixture
def client(test_engine, setup_db, blobs, pdf_service):
    db_module.engine = test_engine

    def override_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_blob_store] = lambda: blobs
    app.dependency_overrides[get_pdf_service] = lambda: pdf_service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
