"""
Turn an incoming HTTP request into a validated :class:`TransformationRequest`.

Nothing here touches the filesystem or the network, so a request that fails
validation never allocates a temporary resource.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Tuple

from fastapi import Request
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError
from starlette.datastructures import UploadFile

from .errors import ValidationError
from .models import SourceFields
from .operations import Operation
from .pipeline import TransformationRequest
from .sources import Base64Source, SourceReference, UploadSource, UrlSource

UPLOAD_FIELDS = ("file", "files", "files[]")


def _describe_schema_error(exc: SchemaError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error["loc"]) or "body"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


def _validate(model: type[BaseModel], fields: Dict[str, Any]) -> Any:
    try:
        return model.model_validate(fields)
    except SchemaError as exc:
        raise ValidationError(_describe_schema_error(exc)) from exc


async def _read_body(request: Request) -> Tuple[Dict[str, Any], List[UploadFile]]:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data") or content_type.startswith(
        "application/x-www-form-urlencoded"
    ):
        form = await request.form()
        fields: Dict[str, Any] = {}
        uploads: List[UploadFile] = []
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                if key in UPLOAD_FIELDS:
                    uploads.append(value)
                continue
            # Repeated fields ("publicUrls" posted once per URL) become lists
            if key in fields:
                existing = fields[key]
                fields[key] = existing + [value] if isinstance(existing, list) else [existing, value]
            else:
                fields[key] = value
        return fields, uploads

    raw = await request.body()
    if not raw.strip():
        return {}, []
    try:
        body = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Invalid JSON body: {exc}") from exc
    if not isinstance(body, dict):
        raise ValidationError("JSON body must be an object")
    return body, []


def _collect_sources(fields: SourceFields, uploads: List[UploadFile]) -> List[SourceReference]:
    if uploads:
        return [UploadSource(upload) for upload in uploads]
    if fields.public_urls:
        return [UrlSource(str(url)) for url in fields.public_urls]
    if fields.public_url:
        return [UrlSource(str(fields.public_url))]
    if fields.base64_data:
        return [Base64Source(fields.base64_data)]
    return []


async def parse_transformation_request(request: Request, operation: Operation) -> TransformationRequest:
    """
    Parse and validate the body for ``operation``.

    Raises:
        ValidationError: On malformed bodies, missing sources, wrong source count
            or invalid operation parameters
    """
    fields, uploads = await _read_body(request)
    source_fields = _validate(SourceFields, fields)
    sources = _collect_sources(source_fields, uploads)

    if not sources:
        raise ValidationError("A PDF source is required: publicUrl, publicUrls, base64 or a file upload")
    if len(sources) < operation.min_sources:
        raise ValidationError(f"{operation.name} requires at least {operation.min_sources} PDF sources")
    if operation.max_sources is not None and len(sources) > operation.max_sources:
        raise ValidationError(f"{operation.name} accepts at most {operation.max_sources} PDF source")

    params = _validate(operation.params_model, fields)
    return TransformationRequest(
        sources=sources,
        params=params,
        filename=source_fields.filename,
        upload=source_fields.upload,
    )
