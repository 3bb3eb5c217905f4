"""
Shared helpers for building PDFs and faking collaborators in tests.
"""

import asyncio
import base64
import io
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import httpx
from pypdf import PdfReader
from reportlab.pdfgen.canvas import Canvas

from pdf_toolkit_backend.errors import DeliveryError
from pdf_toolkit_backend.storage import StoredObject

REMOTE_BASE = "https://files.example.com"


def page_width(number: int) -> float:
    """Each generated page gets a distinct width so pages can be identified after copying."""
    return 300.0 + number * 10


def build_pdf(pages: int = 3, metadata: Optional[Dict[str, str]] = None, label: str = "Page") -> bytes:
    """Create a PDF whose page N is ``page_width(N)`` wide and reads "<label> N"."""
    buffer = io.BytesIO()
    canvas = Canvas(buffer)
    for key, value in (metadata or {}).items():
        getattr(canvas, f"set{key.capitalize()}")(value)
    for number in range(1, pages + 1):
        canvas.setPageSize((page_width(number), 400))
        canvas.setFont("Helvetica", 14)
        canvas.drawString(40, 200, f"{label} {number}")
        canvas.showPage()
    canvas.save()
    return buffer.getvalue()


def read_pdf(data: bytes, password: Optional[str] = None) -> PdfReader:
    reader = PdfReader(io.BytesIO(data))
    if password is not None:
        reader.decrypt(password)
    return reader


def page_numbers(reader: PdfReader) -> List[int]:
    """Original page numbers of the pages in ``reader``, recovered from their widths."""
    return [int(round((float(page.mediabox.width) - 300) / 10)) for page in reader.pages]


def as_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@dataclass
class FakeStorage:
    """In-memory stand-in for the S3 storage collaborator."""

    uploads: List[Dict[str, object]] = field(default_factory=list)
    fail: bool = False

    def upload_file(self, path: Path, filename: str, content_type: str = "application/pdf") -> StoredObject:
        if self.fail:
            raise DeliveryError("Upload to storage failed: simulated outage")
        key = f"test/{len(self.uploads)}-{filename}"
        self.uploads.append({"key": key, "filename": filename, "data": path.read_bytes(), "content_type": content_type})
        return StoredObject(key=key, url=f"https://cdn.example.com/{key}")


class RemoteFiles:
    """Serves registered byte payloads through an ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.files: Dict[str, bytes] = {}
        self.delays: Dict[str, float] = {}
        self.requests: List[str] = []

    def add(self, name: str, data: bytes, delay: float = 0.0) -> str:
        url = f"{REMOTE_BASE}/{name}"
        self.files[url] = data
        if delay:
            self.delays[url] = delay
        return url

    async def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if url in self.delays:
            await asyncio.sleep(self.delays[url])
        if url not in self.files:
            return httpx.Response(404, content=b"not found")
        return httpx.Response(200, content=self.files[url], headers={"content-type": "application/pdf"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)
