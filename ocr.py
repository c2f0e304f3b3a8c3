"""
OCR ingest through the OCR.space API.

Two callers with different degraded modes:
- importing a PDF as a note falls back to a placeholder note the user can fill in;
- extracting a PDF for a test raises ``UnusableContentError`` instead.
"""
import io
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict

import httpx
from PyPDF2 import PdfReader

import notes
from config import get_settings
from errors import ProviderNotConfiguredError, UnusableContentError, UpstreamProviderError, ValidationError

logger = logging.getLogger(__name__)

MIN_OCR_CHARS = 20
MAX_NOTE_CHARS = 12000


@dataclass
class OcrResult:
    text: str
    errored: bool = False
    error_message: str = ""

    @property
    def usable(self) -> bool:
        return not self.errored and len(self.text) >= MIN_OCR_CHARS


def ensure_readable_pdf(data: bytes) -> None:
    """Reject uploads that are empty, not a PDF, or have no pages."""
    if not data:
        raise ValidationError("No PDF file received")
    try:
        page_count = len(PdfReader(io.BytesIO(data)).pages)
    except Exception as e:
        raise ValidationError(f"Failed to read PDF: {str(e)[:100]}")
    if page_count == 0:
        raise ValidationError("PDF has no pages")


def _base_name(filename: str) -> str:
    return re.sub(r"\.pdf$", "", filename or "", flags=re.IGNORECASE).strip()


def parse_ocr_payload(payload: Any) -> OcrResult:
    if not isinstance(payload, dict):
        # OCR.space answers rate limits and some failures with a bare JSON string
        return OcrResult(text="", errored=True, error_message=str(payload))
    text = ""
    results = payload.get("ParsedResults")
    if isinstance(results, list) and results and isinstance(results[0], dict):
        text = (results[0].get("ParsedText") or "").strip()
    error_message = payload.get("ErrorMessage") or ""
    if isinstance(error_message, list):
        error_message = error_message[0] if error_message else ""
    return OcrResult(
        text=text,
        errored=bool(payload.get("IsErroredOnProcessing")),
        error_message=str(error_message),
    )


async def extract_text(filename: str, data: bytes) -> OcrResult:
    settings = get_settings()
    if not settings.ocr_space_api_key:
        raise ProviderNotConfiguredError("OCR API key not configured on server")

    form = {
        "apikey": settings.ocr_space_api_key,
        "filetype": "PDF",
        "language": "eng",
        "isOverlayRequired": "false",
        "OCREngine": "2",
    }
    files = {"file": (filename or "upload.pdf", data, "application/pdf")}
    timeout = httpx.Timeout(settings.ocr_timeout_seconds, connect=10.0)

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(settings.ocr_space_url, data=form, files=files)
    except httpx.HTTPError as exc:
        raise UpstreamProviderError(f"OCR request failed: {exc}") from exc

    if resp.status_code >= 400:
        raise UpstreamProviderError(f"OCR error {resp.status_code}")
    try:
        payload = resp.json()
    except ValueError as exc:
        logger.error("OCR service returned non-JSON response: %s", resp.text[:500])
        raise UpstreamProviderError("OCR service returned an invalid response") from exc
    return parse_ocr_payload(payload)


def _placeholder_content(filename: str) -> str:
    return (
        f'This note was created from the PDF file "{filename}".\n\n'
        "The online OCR service could not read much text from this PDF. "
        "It might be scanned, low-quality, or formatted in a way that is hard to read automatically.\n\n"
        "You can now type or paste your own notes here for this PDF."
    )


async def import_pdf_as_note(user_id: str, filename: str, data: bytes, title: str = "") -> Dict[str, Any]:
    ensure_readable_pdf(data)
    note_title = (title or "").strip() or _base_name(filename) or "PDF note"

    try:
        result = await extract_text(filename, data)
    except ProviderNotConfiguredError:
        raise
    except UpstreamProviderError as exc:
        logger.warning("OCR provider failed for %s: %s", filename, exc)
        result = OcrResult(text="", errored=True, error_message=str(exc))

    if not result.usable:
        logger.warning("OCR failed or too little text: %s", result.error_message)
        note = notes.create_note(user_id, note_title, _placeholder_content(filename))
        return {
            "note": note,
            "degraded": True,
            "warning": "OCR could not extract clear text from this PDF. A placeholder note was created instead.",
        }

    text = result.text
    if len(text) > MAX_NOTE_CHARS:
        text = text[:MAX_NOTE_CHARS] + "\n\n(Truncated because the PDF was very long.)"
    note = notes.create_note(user_id, note_title, text)
    return {"note": note, "degraded": False}


async def extract_pdf_for_test(filename: str, data: bytes, title: str = "") -> Dict[str, str]:
    ensure_readable_pdf(data)
    result = await extract_text(filename, data)
    if not result.usable:
        logger.warning("OCR (test) failed or too little text: %s", result.error_message)
        raise UnusableContentError(
            "OCR could not extract clear text from this PDF. Please try another file or clearer scan."
        )
    return {
        "text": result.text,
        "title": (title or "").strip() or _base_name(filename) or "PDF test",
    }
