"""
Request pipeline: acquire → size check → transform → persist → deliver.

The :class:`PdfPipeline` owns the temporary-file lifecycle for every request.
A fresh :class:`RequestWorkspace` is created per request and released exactly
once:

- at the first failure, before the error propagates to the exception handlers
- after a JSON or storage-link response has been built
- when a streamed file response finishes (or fails) sending

Acquisition and transformation run under the configured request deadline.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import anyio
import httpx
from fastapi.responses import FileResponse, JSONResponse, Response
from starlette.concurrency import run_in_threadpool
from starlette.types import Message, Receive, Scope, Send

from .configuration import Settings
from .errors import (
    DeadlineExceeded,
    DeliveryError,
    PayloadTooLarge,
    PipelineError,
    TransformationError,
    ValidationError,
)
from .operations import LoadedDocument, Operation, OperationContext, OperationResult, load_document
from .sources import SourceReference
from .storage import S3Storage
from .utils import ensure_directory, sanitize_filename
from .workspace import RequestWorkspace

logger = logging.getLogger(__name__)


@dataclass
class TransformationRequest:
    """A validated request: sources, operation parameters and delivery options."""

    sources: List[SourceReference]
    params: Any
    filename: Optional[str] = None
    upload: bool = False


@dataclass
class ProcessedOutput:
    result: OperationResult
    documents: List[LoadedDocument]
    path: Optional[Path] = None
    size: int = 0
    headers: Dict[str, str] = field(default_factory=dict)


class CleanupFileResponse(FileResponse):
    """
    File response that releases the request workspace once sending ends.

    Errors raised before the response headers went out become a
    ``DeliveryError``; once headers are sent they can only be logged.
    """

    def __init__(self, *args: Any, on_close: Callable[[], Any], **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._on_close = on_close

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        started = False

        async def tracking_send(message: Message) -> None:
            nonlocal started
            if message["type"] == "http.response.start":
                started = True
            await send(message)

        try:
            await super().__call__(scope, receive, tracking_send)
        except Exception as exc:
            if not started:
                raise DeliveryError(f"Failed to stream result: {exc}") from exc
            logger.error(f"Streaming failed after headers were sent: {exc}")
        finally:
            self._on_close()


class PdfPipeline:
    """
    Runs one registry operation per request with uniform cleanup.

    Args:
        settings: Process-wide configuration
        storage: Storage collaborator for ``upload`` delivery, or None when disabled
        http_transport: Optional httpx transport for source downloads (tests use a mock)
    """

    def __init__(
        self,
        settings: Settings,
        storage: Optional[S3Storage] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.storage = storage
        self.http_transport = http_transport
        self.workspace_root = ensure_directory(settings.workspace.path)

    def new_workspace(self, request_id: Optional[str] = None) -> RequestWorkspace:
        return RequestWorkspace(self.workspace_root, request_id=request_id)

    async def run(
        self,
        operation: Operation,
        request: TransformationRequest,
        request_id: Optional[str] = None,
    ) -> Response:
        """
        Execute ``operation`` for ``request`` and build the HTTP response.

        Raises:
            PipelineError: Any stage failure; the workspace is already cleaned up
        """
        if request.upload and self.storage is None:
            raise ValidationError("Upload delivery requested but storage is not configured")

        workspace = self.new_workspace(request_id)
        started = time.perf_counter()
        handed_off = False
        try:
            # Threadpool calls are shielded from the cancel scope, so a late
            # worker finishes before the finally block releases the workspace
            with anyio.move_on_after(self.settings.limits.deadline) as deadline:
                output = await self._process(operation, request, workspace)
            if deadline.cancel_called:
                raise DeadlineExceeded(
                    f"Request exceeded the {self.settings.limits.request_deadline_seconds:g}s deadline"
                )

            response = await self._deliver(operation, request, output, workspace)
            handed_off = isinstance(response, CleanupFileResponse)
            logger.info(f"{operation.name} finished in {time.perf_counter() - started:.2f}s")
            return response
        finally:
            if not handed_off:
                workspace.cleanup()

    async def _process(
        self, operation: Operation, request: TransformationRequest, workspace: RequestWorkspace
    ) -> ProcessedOutput:
        # Stages 1 and 2: acquire every source and enforce the ceiling
        materialized: List[tuple] = []
        max_bytes = self.settings.limits.max_source_bytes
        timeout = httpx.Timeout(self.settings.limits.download_timeout_seconds)
        async with httpx.AsyncClient(transport=self.http_transport, timeout=timeout, follow_redirects=True) as client:
            for source in request.sources:
                path = workspace.allocate("source")
                size = await source.materialize(path, client=client, max_bytes=max_bytes)
                if size > max_bytes:
                    raise PayloadTooLarge(
                        f"Source {source.label} exceeds the {self.settings.limits.max_source_mb:g}MB limit",
                        source=source.label,
                    )
                logger.debug(f"Materialized {source.kind} source {source.label} ({size} bytes)")
                materialized.append((source.label, path, size))

        documents = await run_in_threadpool(self._load_all, operation, materialized)

        # Stage 3: transform
        context = OperationContext(settings=self.settings, workspace=workspace)
        try:
            if operation.is_async:
                result = await operation.func(documents, request.params, context)
            else:
                result = await run_in_threadpool(operation.func, documents, request.params, context)
        except PipelineError:
            raise
        except Exception as exc:
            raise TransformationError(f"{operation.name} failed: {exc}") from exc

        # Stage 4: persist
        output = ProcessedOutput(result=result, documents=documents, headers=dict(result.headers))
        if result.writer is not None:
            output.path = workspace.allocate("output")
            await run_in_threadpool(self._write, result, output.path)
        elif result.path is not None:
            output.path = result.path
        if output.path is not None:
            output.size = output.path.stat().st_size
            if operation.reports_size:
                output.headers["X-PDF-Info"] = self._size_report(documents[0], output.size)
        return output

    def _load_all(self, operation: Operation, materialized: List[tuple]) -> List[LoadedDocument]:
        documents: List[LoadedDocument] = []
        failures: List[Dict[str, str]] = []
        for label, path, size in materialized:
            try:
                documents.append(load_document(path, label, size, allow_encrypted=operation.allow_encrypted))
            except TransformationError as exc:
                failures.append({"source": label, "error": exc.message})

        if failures:
            if len(materialized) == 1:
                raise TransformationError(failures[0]["error"], source=failures[0]["source"])
            # Multi-input operations abort as a whole, naming every unreadable input
            raise TransformationError(
                f"{len(failures)} of {len(materialized)} sources could not be read",
                failedSources=failures,
            )
        return documents

    @staticmethod
    def _write(result: OperationResult, path: Path) -> None:
        try:
            with path.open("wb") as buffer:
                result.writer.write(buffer)
        except Exception as exc:
            raise TransformationError(f"Failed to serialize output PDF: {exc}") from exc

    @staticmethod
    def _size_report(source: LoadedDocument, output_size: int) -> str:
        ratio = round(output_size / source.size, 4) if source.size else None
        return json.dumps(
            {
                "originalSize": source.size,
                "outputSize": output_size,
                "ratio": ratio,
                "savedPercent": round((1 - ratio) * 100, 2) if ratio is not None else None,
                "pages": source.page_count,
            }
        )

    async def _deliver(
        self,
        operation: Operation,
        request: TransformationRequest,
        output: ProcessedOutput,
        workspace: RequestWorkspace,
    ) -> Response:
        result = output.result
        if not result.is_file:
            return JSONResponse({"ok": True, **result.payload}, headers=output.headers)

        filename = sanitize_filename(request.filename or "", operation.output_filename)
        if request.upload:
            stored = await run_in_threadpool(self.storage.upload_file, output.path, filename)
            return JSONResponse(
                {"ok": True, "url": stored.url, "key": stored.key, "filename": filename, "size": output.size},
                headers=output.headers,
            )

        return CleanupFileResponse(
            output.path,
            media_type="application/pdf",
            filename=filename,
            headers=output.headers,
            on_close=workspace.cleanup,
        )
