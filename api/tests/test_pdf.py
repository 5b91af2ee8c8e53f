from io import BytesIO

import httpx
import pytest
from pypdf import PdfReader

from leasesign.errors import ExternalServiceError, ValidationError
from leasesign.pdf import AttestationPage, GotenbergPdfService, LocalPdfService, PdfService, attestation_html
from leasesign.utils import b64png_to_bytes, bytes_to_b64png

from conftest import SIGNATURE_DATA_URL, SIGNATURE_PNG, make_pdf


def page(**overrides):
    fields = dict(
        lease_id=3, unit_code="A-101", signer_name="Alice Durand", signer_role="TENANT",
        signed_at="2026-03-01T12:00:00Z", signature_png=SIGNATURE_PNG, original_sha256="ab" * 32,
        audit={"consent": True, "signer_name": "Alice Durand"},
    )
    fields.update(overrides)
    return AttestationPage(**fields)


def test_local_render_and_merge():
    svc = LocalPdfService()
    attestation = svc.render_attestation(page())
    merged = svc.merge([make_pdf("page one"), attestation, attestation])
    assert len(PdfReader(BytesIO(merged)).pages) == 3


def test_local_render_breaks_long_audit_over_pages():
    audit = {f"field_{i:03d}": "x" * 40 for i in range(120)}
    out = LocalPdfService().render_attestation(page(audit=audit))
    assert len(PdfReader(BytesIO(out)).pages) > 1


def test_local_render_rejects_broken_image():
    with pytest.raises(ExternalServiceError):
        LocalPdfService().render_attestation(page(signature_png=b"\x89PNG\r\n\x1a\nbroken"))


def test_local_merge_rejects_garbage():
    with pytest.raises(ExternalServiceError):
        LocalPdfService().merge([make_pdf(), b"not a pdf at all"])


def test_attestation_html_escapes_user_text():
    html = attestation_html(page(signer_name="<script>alert(1)</script>"))
    assert "<script>" not in html
    assert "&lt;script&gt;" in html
    assert bytes_to_b64png(SIGNATURE_PNG) in html


def gotenberg(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://gotenberg:3000")
    return GotenbergPdfService(client=client)


def test_gotenberg_merge_posts_ordered_files():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = request.content
        return httpx.Response(200, content=b"%PDF-merged")

    out = gotenberg(handler).merge([b"%PDF-a", b"%PDF-b", b"%PDF-c"])
    assert out == b"%PDF-merged"
    assert seen["path"] == "/forms/pdfengines/merge"
    body = seen["body"]
    assert body.index(b'filename="000.pdf"') < body.index(b'filename="001.pdf"') < body.index(b'filename="002.pdf"')


def test_gotenberg_renders_attestation_html():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = request.content
        return httpx.Response(200, content=b"%PDF-page")

    assert gotenberg(handler).render_attestation(page()) == b"%PDF-page"
    assert seen["path"] == "/forms/chromium/convert/html"
    assert b'filename="index.html"' in seen["body"]
    assert b"Alice Durand" in seen["body"]


def test_gotenberg_error_status_is_external_failure():
    svc = gotenberg(lambda request: httpx.Response(500, text="chromium crashed"))
    with pytest.raises(ExternalServiceError) as exc:
        svc.merge([b"%PDF-a"])
    assert "500" in exc.value.message


def test_gotenberg_unreachable_is_external_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ExternalServiceError):
        gotenberg(handler).render_html("<p>x</p>")


def test_png_data_url_decoding():
    assert b64png_to_bytes(SIGNATURE_DATA_URL) == SIGNATURE_PNG
    assert b64png_to_bytes(f"  {SIGNATURE_DATA_URL}\n") == SIGNATURE_PNG
    with pytest.raises(ValidationError):
        b64png_to_bytes(None)


def test_incomplete_backend_fails_at_construction():
    class RenderOnly(PdfService):
        def render_attestation(self, page):
            return b"%PDF"

    with pytest.raises(TypeError):
        RenderOnly()
