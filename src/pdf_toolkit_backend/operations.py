"""
Operation registry and PDF transformations.

Each operation is a function ``(documents, params, context) -> OperationResult``
registered under a name together with its parameter schema and source-count
limits. Synchronous operations run in the framework threadpool; coroutine
operations (Ghostscript) are awaited so they can be cancelled by the request
deadline.

Operations never touch the network and only allocate files through the
request workspace, so the pipeline's cleanup covers everything they create.
"""

from __future__ import annotations

import base64
import inspect
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type

from pypdf import PageObject, PdfReader, PdfWriter
from reportlab.lib import colors
from reportlab.pdfgen.canvas import Canvas

from . import ghostscript
from .configuration import Settings
from .errors import NoValidPages, TransformationError, ValidationError
from .models import (
    METADATA_KEYS,
    MetadataParams,
    MetadataWriteParams,
    NoParams,
    OperationParams,
    PageSelectionParams,
    ProtectParams,
    ReorderParams,
    RotateParams,
    TextParams,
    UnlockParams,
    WatermarkParams,
)
from .utils import normalize_angle, resolve_order, resolve_pages
from .workspace import RequestWorkspace

logger = logging.getLogger(__name__)


@dataclass
class LoadedDocument:
    label: str
    path: Path
    size: int
    reader: PdfReader

    @property
    def page_count(self) -> int:
        return len(self.reader.pages)


@dataclass
class OperationContext:
    settings: Settings
    workspace: RequestWorkspace


@dataclass
class OperationResult:
    """
    Output of an operation. Exactly one of ``writer``, ``path`` or ``payload`` is set.

    Attributes:
        writer: New document to be persisted by the pipeline
        path: File already inside the request workspace
        payload: JSON body fields (merged into ``{"ok": true, ...}``)
        headers: Extra response headers
    """

    writer: Optional[PdfWriter] = None
    path: Optional[Path] = None
    payload: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def is_file(self) -> bool:
        return self.payload is None


OperationFunc = Callable[..., Any]


@dataclass(frozen=True)
class Operation:
    name: str
    func: OperationFunc
    params_model: Type[OperationParams] = NoParams
    min_sources: int = 1
    max_sources: Optional[int] = 1
    output_filename: str = "document.pdf"
    allow_encrypted: bool = False
    reports_size: bool = False

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.func)


OPERATIONS: Dict[str, Operation] = {}


def operation(name: str, **options: Any) -> Callable[[OperationFunc], OperationFunc]:
    """Register the decorated function as operation ``name``."""

    def decorator(func: OperationFunc) -> OperationFunc:
        if name in OPERATIONS:
            raise ValueError(f"Operation {name!r} registered twice")
        OPERATIONS[name] = Operation(name=name, func=func, **options)
        return func

    return decorator


def get_operation(name: str) -> Operation:
    try:
        return OPERATIONS[name]
    except KeyError as exc:
        raise ValidationError(f"Unknown operation {name!r}") from exc


def load_document(path: Path, label: str, size: int, allow_encrypted: bool = False) -> LoadedDocument:
    """
    Open a materialized source with pypdf.

    Documents protected only by an owner password (empty user password) are
    decrypted transparently. Other encrypted documents are rejected unless
    ``allow_encrypted`` is set.

    Raises:
        TransformationError: If the file is not a readable PDF or needs a password
    """
    try:
        reader = PdfReader(path)
        if reader.is_encrypted and not allow_encrypted and not reader.decrypt(""):
            raise TransformationError(f"{label} is password protected; unlock it first", source=label)
        if not allow_encrypted:
            # Forces the page tree to be parsed so broken files fail here
            len(reader.pages)
    except TransformationError:
        raise
    except Exception as exc:
        raise TransformationError(f"Could not read PDF {label}: {exc}", source=label) from exc
    return LoadedDocument(label=label, path=path, size=size, reader=reader)


def _copy_metadata(reader: PdfReader, writer: PdfWriter) -> None:
    info = reader.metadata
    if not info:
        return
    entries = {key: info[key] for key in info if isinstance(info[key], str)}
    if entries:
        writer.add_metadata(entries)


def _metadata_payload(reader: PdfReader) -> Dict[str, Optional[str]]:
    info = reader.metadata or {}
    payload: Dict[str, Optional[str]] = {}
    for name, key in METADATA_KEYS.items():
        value = info[key] if key in info else None
        payload[name] = str(value) if value is not None else None
    return payload


def _single(documents: Sequence[LoadedDocument]) -> LoadedDocument:
    return documents[0]


@operation("compress", output_filename="compressed.pdf", reports_size=True)
def compress(documents: Sequence[LoadedDocument], params: NoParams, context: OperationContext) -> OperationResult:
    writer = PdfWriter(clone_from=_single(documents).reader)
    for page in writer.pages:
        page.compress_content_streams()
    # Defaults drop duplicate and unreferenced objects
    writer.compress_identical_objects()
    return OperationResult(writer=writer)


@operation("compress-ghostscript", output_filename="compressed.pdf", reports_size=True)
async def compress_with_ghostscript(
    documents: Sequence[LoadedDocument], params: NoParams, context: OperationContext
) -> OperationResult:
    destination = context.workspace.allocate("ghostscript")
    await ghostscript.compress(context.settings.ghostscript, _single(documents).path, destination)
    return OperationResult(path=destination)


@operation("merge", min_sources=2, max_sources=None, output_filename="merged_document.pdf")
def merge(documents: Sequence[LoadedDocument], params: NoParams, context: OperationContext) -> OperationResult:
    writer = PdfWriter()
    for document in documents:
        writer.append(document.reader)
    logger.info(f"Merged {len(documents)} documents into {len(writer.pages)} pages")
    return OperationResult(writer=writer)


@operation("extract-pages", params_model=PageSelectionParams, output_filename="extracted_pages.pdf")
def extract_pages(
    documents: Sequence[LoadedDocument], params: PageSelectionParams, context: OperationContext
) -> OperationResult:
    reader = _single(documents).reader
    pages = resolve_pages(params.pages, len(reader.pages))
    if not pages:
        raise NoValidPages("No valid pages selected", pages=params.pages)
    writer = PdfWriter()
    for number in pages:
        writer.add_page(reader.pages[number - 1])
    _copy_metadata(reader, writer)
    return OperationResult(writer=writer)


@operation("rotate", params_model=RotateParams, output_filename="rotated.pdf")
def rotate(documents: Sequence[LoadedDocument], params: RotateParams, context: OperationContext) -> OperationResult:
    writer = PdfWriter(clone_from=_single(documents).reader)
    total = len(writer.pages)
    if params.pages is None:
        targets: List[int] = list(range(1, total + 1))
    else:
        targets = resolve_pages(params.pages, total)
    if not targets:
        raise NoValidPages("No valid pages selected for rotation", pages=params.pages)

    delta = normalize_angle(params.angle)
    for number in targets:
        page = writer.pages[number - 1]
        page.rotation = normalize_angle(page.rotation + delta)
    return OperationResult(writer=writer)


@operation("reorder", params_model=ReorderParams, output_filename="reordered.pdf")
def reorder(documents: Sequence[LoadedDocument], params: ReorderParams, context: OperationContext) -> OperationResult:
    reader = _single(documents).reader
    order = resolve_order(params.order, len(reader.pages))
    if not order:
        raise NoValidPages("Page order contains no valid page numbers", order=params.order)
    writer = PdfWriter()
    for number in order:
        writer.add_page(reader.pages[number - 1])
    _copy_metadata(reader, writer)
    return OperationResult(writer=writer)


def _watermark_overlay(box: Tuple[float, float, float, float], params: WatermarkParams) -> PageObject:
    left, bottom, right, top = box
    width, height = right - left, top - bottom
    font_size = params.font_size or max(18.0, min(72.0, min(width, height) / 10))

    buffer = io.BytesIO()
    canvas = Canvas(buffer, pagesize=(right, top))
    canvas.setFillColor(colors.toColor(params.color), alpha=params.opacity)
    canvas.setFont("Helvetica-Bold", font_size)
    canvas.translate(left + width / 2, bottom + height / 2)
    canvas.rotate(params.angle)
    canvas.drawCentredString(0, -font_size / 3, params.text)
    canvas.showPage()
    canvas.save()
    buffer.seek(0)
    return PdfReader(buffer).pages[0]


@operation("watermark", params_model=WatermarkParams, output_filename="watermarked.pdf")
def watermark(
    documents: Sequence[LoadedDocument], params: WatermarkParams, context: OperationContext
) -> OperationResult:
    writer = PdfWriter(clone_from=_single(documents).reader)
    overlays: Dict[Tuple[float, float, float, float], PageObject] = {}
    for page in writer.pages:
        box = page.mediabox
        key = (float(box.left), float(box.bottom), float(box.right), float(box.top))
        if key not in overlays:
            overlays[key] = _watermark_overlay(key, params)
        page.merge_page(overlays[key])
    return OperationResult(writer=writer)


def _write_metadata(document: LoadedDocument, params: MetadataParams) -> OperationResult:
    writer = PdfWriter(clone_from=document.reader)
    _copy_metadata(document.reader, writer)
    writer.add_metadata(params.updates())
    return OperationResult(writer=writer)


def _read_metadata(document: LoadedDocument) -> OperationResult:
    return OperationResult(payload={"metadata": _metadata_payload(document.reader), "pages": document.page_count})


@operation("metadata", params_model=MetadataParams, output_filename="metadata.pdf")
def metadata(documents: Sequence[LoadedDocument], params: MetadataParams, context: OperationContext) -> OperationResult:
    """Write the supplied fields, or read the metadata when none are supplied."""
    if params.updates():
        return _write_metadata(_single(documents), params)
    return _read_metadata(_single(documents))


@operation("metadata-read")
def metadata_read(documents: Sequence[LoadedDocument], params: NoParams, context: OperationContext) -> OperationResult:
    return _read_metadata(_single(documents))


@operation("metadata-write", params_model=MetadataWriteParams, output_filename="metadata.pdf")
def metadata_write(
    documents: Sequence[LoadedDocument], params: MetadataWriteParams, context: OperationContext
) -> OperationResult:
    return _write_metadata(_single(documents), params)


@operation("protect", params_model=ProtectParams, output_filename="protected.pdf")
def protect(documents: Sequence[LoadedDocument], params: ProtectParams, context: OperationContext) -> OperationResult:
    writer = PdfWriter(clone_from=_single(documents).reader)
    writer.encrypt(user_password=params.password, owner_password=None, algorithm="AES-256")
    return OperationResult(writer=writer)


@operation("unlock", params_model=UnlockParams, output_filename="unlocked.pdf", allow_encrypted=True)
def unlock(documents: Sequence[LoadedDocument], params: UnlockParams, context: OperationContext) -> OperationResult:
    reader = _single(documents).reader
    if reader.is_encrypted and not reader.decrypt(params.password or ""):
        if not params.password:
            raise ValidationError("password is required to unlock this document")
        raise ValidationError("Incorrect password")
    return OperationResult(writer=PdfWriter(clone_from=reader))


@operation("extract-text", params_model=TextParams)
def extract_text(documents: Sequence[LoadedDocument], params: TextParams, context: OperationContext) -> OperationResult:
    reader = _single(documents).reader
    total = len(reader.pages)
    numbers = list(range(1, total + 1)) if params.pages is None else resolve_pages(params.pages, total)
    if not numbers:
        raise NoValidPages("No valid pages selected", pages=params.pages)

    page_texts = [{"page": number, "text": reader.pages[number - 1].extract_text() or ""} for number in numbers]
    return OperationResult(
        payload={
            "text": "\n\n".join(entry["text"] for entry in page_texts),
            "pages": total,
            "pageTexts": page_texts,
        }
    )


@operation("info", allow_encrypted=True)
def info(documents: Sequence[LoadedDocument], params: NoParams, context: OperationContext) -> OperationResult:
    document = _single(documents)
    reader = document.reader
    encrypted = reader.is_encrypted
    readable = not encrypted or bool(reader.decrypt(""))
    return OperationResult(
        payload={
            "pages": len(reader.pages) if readable else None,
            "size": document.size,
            "version": reader.pdf_header.replace("%PDF-", ""),
            "encrypted": encrypted,
            "metadata": _metadata_payload(reader) if readable else None,
        }
    )


@operation("pdf-to-base64")
def pdf_to_base64(documents: Sequence[LoadedDocument], params: NoParams, context: OperationContext) -> OperationResult:
    document = _single(documents)
    encoded = base64.b64encode(document.path.read_bytes()).decode("ascii")
    return OperationResult(payload={"base64": encoded, "size": document.size, "pages": document.page_count})


@operation("base64-to-pdf", output_filename="decoded.pdf")
def base64_to_pdf(documents: Sequence[LoadedDocument], params: NoParams, context: OperationContext) -> OperationResult:
    # Loading already proved the decoded bytes are a PDF
    return OperationResult(path=_single(documents).path)
