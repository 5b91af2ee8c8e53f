import logging

from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy import text, inspect
from sqlalchemy.exc import NoSuchTableError
from .config import DATABASE_URL

logger = logging.getLogger(__name__)

engine = create_engine(DATABASE_URL, echo=False, pool_pre_ping=True)

def init_db():
    from .models import Unit, Tenant, Lease, LeaseTenant, Document, Signature, DocumentEvent
    SQLModel.metadata.create_all(engine)
    _ensure_signature_identity_index()

def get_session():
    with Session(engine) as session:
        yield session


def _ensure_signature_identity_index():
    # Tables created before the ledger constraint existed get it as a unique index.
    inspector = inspect(engine)
    try:
        indexes = inspector.get_indexes("signature")
        constraints = inspector.get_unique_constraints("signature")
    except NoSuchTableError:
        return
    names = {idx.get("name") for idx in indexes} | {uc.get("name") for uc in constraints}
    if names & {"uq_signature_identity", "ix_signature_identity"}:
        return
    with engine.begin() as conn:
        duplicates = conn.execute(
            text(
                "SELECT document_id, identity_key FROM signature "
                "GROUP BY document_id, identity_key HAVING COUNT(*) > 1"
            )
        ).fetchall()
        if duplicates:
            logger.warning(
                "duplicate signatures detected; resolve before enforcing uniqueness: %s",
                ", ".join(f"{row[0]}/{row[1]}" for row in duplicates),
            )
            return
        conn.execute(
            text(
                "CREATE UNIQUE INDEX IF NOT EXISTS ix_signature_identity "
                "ON signature(document_id, identity_key)"
            )
        )
