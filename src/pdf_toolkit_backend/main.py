from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException

from . import __version__, ghostscript
from .configuration import Settings, describe_settings, get_settings
from .errors import PipelineError
from .intake import parse_transformation_request
from .middleware import RequestContextMiddleware
from .models import HealthStatus
from .operations import OPERATIONS, get_operation
from .pipeline import PdfPipeline
from .storage import S3Storage, build_storage

logger = logging.getLogger(__name__)

# Public path -> registry operation. Several paths are kept as aliases of one operation.
ROUTES: Dict[str, str] = {
    "/compress": "compress",
    "/compress-ghostscript": "compress-ghostscript",
    "/merge": "merge",
    "/extract-pages": "extract-pages",
    "/split": "extract-pages",
    "/rotate-pages": "rotate",
    "/rotate": "rotate",
    "/reorder-pages": "reorder",
    "/watermark-text": "watermark",
    "/protect": "protect",
    "/unlock": "unlock",
    "/metadata": "metadata",
    "/metadata-read": "metadata-read",
    "/metadata-write": "metadata-write",
    "/info": "info",
    "/extract-text": "extract-text",
    "/pdf-to-base64": "pdf-to-base64",
    "/base64-to-pdf": "base64-to-pdf",
}


def get_pipeline(request: Request) -> PdfPipeline:
    return request.app.state.pipeline


def _make_endpoint(operation_name: str) -> Callable[..., Awaitable[Response]]:
    operation = get_operation(operation_name)

    async def endpoint(request: Request, pipeline: PdfPipeline = Depends(get_pipeline)) -> Response:
        job = await parse_transformation_request(request, operation)
        return await pipeline.run(operation, job, request_id=getattr(request.state, "request_id", None))

    endpoint.__name__ = f"run_{operation_name.replace('-', '_')}"
    return endpoint


async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": str(exc.detail)})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"ok": False, "error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[S3Storage] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Configuration; loaded from defaults and the environment when omitted
        storage: Storage collaborator; built from ``settings.storage`` when omitted
        http_transport: httpx transport used for source downloads (tests inject a mock)
    """
    settings = settings or get_settings()
    logging.basicConfig(level=settings.service.log_level.upper())
    if storage is None:
        storage = build_storage(settings.storage)

    app = FastAPI(title=settings.service.name, version=__version__)
    app.state.settings = settings
    app.state.pipeline = PdfPipeline(settings, storage=storage, http_transport=http_transport)
    logger.debug(f"Effective settings: {describe_settings(settings)}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.service.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "X-PDF-Info", "X-Request-ID"],
    )
    app.add_middleware(RequestContextMiddleware)

    app.add_exception_handler(PipelineError, pipeline_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    @app.get("/")
    def root() -> Dict[str, Any]:
        return {
            "ok": True,
            "message": f"{settings.service.name} is running.",
            "version": __version__,
            "endpoints": sorted(ROUTES),
        }

    @app.get("/health", response_model=HealthStatus)
    def health() -> HealthStatus:
        pipeline: PdfPipeline = app.state.pipeline
        return HealthStatus(
            max_source_mb=settings.limits.max_source_mb,
            request_deadline_seconds=settings.limits.request_deadline_seconds,
            storage_configured=pipeline.storage is not None,
            ghostscript_available=ghostscript.is_available(settings.ghostscript),
            operations=sorted(OPERATIONS),
        )

    for path, operation_name in ROUTES.items():
        app.add_api_route(path, _make_endpoint(operation_name), methods=["POST"], tags=[operation_name])

    return app


app = create_app()


def run() -> None:
    uvicorn.run("pdf_toolkit_backend.main:app", host="0.0.0.0", port=8000)
