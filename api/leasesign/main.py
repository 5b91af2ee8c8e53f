import logging
import sys

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .config import LOG_LEVEL
from .errors import register_exception_handlers
from .routers import documents, leases, public
from .db import init_db


def _configure_logging() -> None:
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


_configure_logging()

app = FastAPI(title="Lease Signing API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)

@app.on_event("startup")
def on_startup():
    init_db()

app.include_router(documents.router, prefix="/api/documents", tags=["documents"])
app.include_router(leases.router, prefix="/api/leases", tags=["leases"])
app.include_router(public.router, prefix="/api/public", tags=["public"])

@app.get("/")
def root():
    return {"ok": True, "service": "lease-signing-api"}
