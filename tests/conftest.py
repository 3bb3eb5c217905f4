"""
Pytest configuration and fixtures for PDF Toolkit Backend tests.
"""

import os
import tempfile
from typing import List

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
os.environ["PDF_WORKSPACE_DIR"] = tempfile.mkdtemp(prefix="pdf_toolkit_test_")
os.environ["S3_BUCKET_NAME"] = ""

from helpers import FakeStorage, RemoteFiles, build_pdf
from pdf_toolkit_backend.configuration import load_settings
from pdf_toolkit_backend.main import create_app


@pytest.fixture
def workspace_dir(tmp_path):
    """Workspace directory for the app under test; must be empty after every request."""
    return tmp_path / "workspace"


@pytest.fixture
def settings_overrides(workspace_dir):
    return {
        "workspace": {"root": str(workspace_dir)},
        "storage": {"bucket": ""},
        "limits": {"max_source_mb": 5, "request_deadline_seconds": 30, "download_timeout_seconds": 5},
    }


@pytest.fixture
def settings(settings_overrides):
    return load_settings(overrides=settings_overrides)


@pytest.fixture
def remote():
    return RemoteFiles()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def app(settings, storage, remote):
    return create_app(settings, storage=storage, http_transport=remote.transport())


@pytest.fixture
def client(app):
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def leftover_files(workspace_dir):
    """Callable listing files still present in the workspace directory."""

    def _list() -> List[str]:
        if not workspace_dir.exists():
            return []
        return sorted(path.name for path in workspace_dir.iterdir())

    return _list


@pytest.fixture
def sample_pdf():
    """A three-page PDF with known metadata."""
    return build_pdf(3, metadata={"title": "Original Title", "author": "Ann Author"})


@pytest.fixture
def sample_url(remote, sample_pdf):
    return remote.add("sample.pdf", sample_pdf)
