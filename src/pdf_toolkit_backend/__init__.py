"""
PDF Toolkit Backend - HTTP service for everyday PDF transformations

This package provides a FastAPI-based web service that accepts a PDF by URL,
multipart upload or base64 payload, applies one transformation and returns the
result. It enables:

- Compression (pypdf re-serialization or Ghostscript)
- Merging, page extraction, rotation and reordering
- Text watermarks, metadata reading and writing
- Password protection and unlocking
- Text extraction, document info and base64 conversion

Every request runs through one pipeline (acquire, size check, transform,
persist, deliver) that owns its temporary files and removes them on every
exit path.

Key Components:
    - main: FastAPI application, route table and error handlers
    - pipeline: The five-stage request pipeline and streamed responses
    - operations: Operation registry and the PDF transformations
    - intake: Request body parsing and validation
    - sources: URL, upload and base64 source materialization
    - workspace: Per-request temporary file ownership
    - storage: S3 upload delivery
    - configuration: Settings loading and merging logic

Usage:
    Run the API server with:
        uvicorn pdf_toolkit_backend.main:app --reload --host 0.0.0.0 --port 8000
"""

__version__ = "0.1.0"
