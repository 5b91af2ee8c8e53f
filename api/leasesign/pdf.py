"""Attestation page rendering and PDF merging.

Two backends share one interface: ``LocalPdfService`` draws pages with
reportlab and merges with pypdf in-process; ``GotenbergPdfService`` renders
HTML and merges through a Gotenberg instance over HTTP. Every failure leaves
this module as ``ExternalServiceError``.
"""

import json
import logging
import textwrap
from abc import ABC, abstractmethod
from dataclasses import dataclass
from html import escape
from io import BytesIO
from typing import Optional

import httpx
from pypdf import PdfReader, PdfWriter
from pypdf.errors import PyPdfError
from reportlab.lib.pagesizes import letter
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from .config import GOTENBERG_TIMEOUT, GOTENBERG_URL, PDF_BACKEND
from .errors import ExternalServiceError
from .utils import bytes_to_b64png

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttestationPage:
    lease_id: int
    unit_code: str
    signer_name: str
    signer_role: str
    signed_at: str
    signature_png: bytes
    original_sha256: str
    audit: dict


class PdfService(ABC):
    @abstractmethod
    def render_attestation(self, page: AttestationPage) -> bytes:
        """Render one signer's attestation page as a standalone PDF."""

    @abstractmethod
    def merge(self, parts: list[bytes]) -> bytes:
        """Concatenate PDFs in the given order."""


class LocalPdfService(PdfService):
    def render_attestation(self, page: AttestationPage) -> bytes:
        try:
            return self._draw(page)
        except Exception as exc:
            raise ExternalServiceError(f"attestation rendering failed: {exc}") from exc

    def _draw(self, page: AttestationPage) -> bytes:
        buf = BytesIO()
        c = canvas.Canvas(buf, pagesize=letter)
        c.setFont("Helvetica-Bold", 14)
        c.drawString(72, 750, "Appendix - Signature attestation")
        c.setFont("Helvetica", 10)
        y = 720
        for label, value in (
            ("Lease", page.lease_id),
            ("Unit", page.unit_code),
            ("Signer", f"{page.signer_name} ({page.signer_role})"),
            ("Date", page.signed_at),
        ):
            c.drawString(72, y, f"{label}: {value}"[:95])
            y -= 14
        y -= 100
        c.drawImage(ImageReader(BytesIO(page.signature_png)), 72, y, width=240, height=90,
                    preserveAspectRatio=True, mask="auto")
        y -= 24
        c.setFont("Helvetica-Bold", 10)
        c.drawString(72, y, "SHA-256 of the original PDF:")
        y -= 14
        c.setFont("Courier", 9)
        c.drawString(72, y, page.original_sha256)
        y -= 24
        c.setFont("Helvetica-Bold", 10)
        c.drawString(72, y, "Audit:")
        y -= 14
        c.setFont("Courier", 8)
        for raw in json.dumps(page.audit, indent=2, sort_keys=True).splitlines():
            for line in textwrap.wrap(raw, 100, subsequent_indent="    ") or [""]:
                if y < 72:
                    c.showPage(); c.setFont("Courier", 8); y = 750
                c.drawString(72, y, line)
                y -= 11
        c.showPage(); c.save()
        return buf.getvalue()

    def merge(self, parts: list[bytes]) -> bytes:
        writer = PdfWriter()
        try:
            for part in parts:
                writer.append(PdfReader(BytesIO(part)))
            out = BytesIO(); writer.write(out)
        except (PyPdfError, ValueError, KeyError) as exc:
            raise ExternalServiceError(f"PDF merge failed: {exc}") from exc
        return out.getvalue()


def attestation_html(page: AttestationPage) -> str:
    return f"""<!doctype html>
<html><head><meta charset="utf-8"/>
<style>
body{{font-family:Arial,sans-serif;font-size:11pt;line-height:1.35}}
h1{{font-size:15pt;margin:0 0 10px 0}}
.box{{border:1px solid #ddd;padding:10px;margin:10px 0;border-radius:8px}}
.small{{color:#555;font-size:10pt}}
img{{max-width:520px;height:auto;border:1px solid #aaa;border-radius:8px}}
code{{word-break:break-all}}
</style></head>
<body>
<h1>Appendix - Signature attestation</h1>
<div class="box">
<b>Lease:</b> {escape(str(page.lease_id))}<br/>
<b>Unit:</b> {escape(page.unit_code)}<br/>
<b>Signer:</b> {escape(page.signer_name)} ({escape(page.signer_role)})<br/>
<b>Date:</b> {escape(page.signed_at)}<br/>
</div>
<div class="box">
<b>Signature</b><br/>
<img src="{bytes_to_b64png(page.signature_png)}" alt="signature"/>
</div>
<div class="box small">
<b>SHA-256 of the original PDF:</b><br/>
<code>{escape(page.original_sha256)}</code><br/><br/>
<b>Audit:</b><br/>
<pre>{escape(json.dumps(page.audit, indent=2, sort_keys=True))}</pre>
</div>
</body></html>"""


class GotenbergPdfService(PdfService):
    def __init__(self, base_url: str = GOTENBERG_URL, timeout: float = GOTENBERG_TIMEOUT,
                 client: Optional[httpx.Client] = None):
        self._client = client or httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)

    def _post(self, path: str, files: list) -> bytes:
        try:
            response = self._client.post(path, files=files)
        except httpx.RequestError as exc:
            raise ExternalServiceError(f"PDF service unreachable: {exc}") from exc
        if response.status_code >= 400:
            raise ExternalServiceError(f"PDF service error {response.status_code}: {response.text[:500]}")
        return response.content

    def render_html(self, html: str) -> bytes:
        return self._post(
            "/forms/chromium/convert/html",
            [("files", ("index.html", html.encode("utf-8"), "text/html"))],
        )

    def render_attestation(self, page: AttestationPage) -> bytes:
        return self.render_html(attestation_html(page))

    def merge(self, parts: list[bytes]) -> bytes:
        # merge order follows the alphabetical order of the file names
        files = [("files", (f"{idx:03d}.pdf", part, "application/pdf")) for idx, part in enumerate(parts)]
        return self._post("/forms/pdfengines/merge", files)


_service = None

def get_pdf_service() -> PdfService:
    global _service
    if _service is None:
        if PDF_BACKEND == "gotenberg":
            _service = GotenbergPdfService()
        else:
            _service = LocalPdfService()
        logger.info("pdf backend: %s", type(_service).__name__)
    return _service
