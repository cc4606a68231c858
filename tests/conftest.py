"""
Pytest configuration and fixtures for Publication Backend tests.
"""

import os
import shutil
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
_TEST_ROOT = tempfile.mkdtemp(prefix="publication_test_")
os.environ["PUBLICATION_DB_PATH"] = os.path.join(_TEST_ROOT, "data", "publications.db")
os.environ["ARTIFACTS_DIR"] = os.path.join(_TEST_ROOT, "uploads")
os.environ["ARTIFACT_BACKEND"] = "file"
os.environ["SIDECAR_ENABLED"] = "true"
os.environ.pop("SIDECAR_DIR", None)
os.environ.pop("REMOTE_BASE_URL", None)

from publication_backend.configuration import load_settings  # noqa: E402
from publication_backend.context import build_context  # noqa: E402
from publication_backend.main import app, create_app  # noqa: E402

PDF_CONTENT = b"""%PDF-1.4
1 0 obj
<< /Type /Catalog /Pages 2 0 R >>
endobj
2 0 obj
<< /Type /Pages /Kids [3 0 R] /Count 1 >>
endobj
3 0 obj
<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >>
endobj
xref
0 4
0000000000 65535 f
0000000009 00000 n
0000000058 00000 n
0000000115 00000 n
trailer
<< /Size 4 /Root 1 0 R >>
startxref
196
%%EOF"""


@pytest.fixture(scope="session", autouse=True)
def test_dirs():
    """Expose and cleanup the directories used by the module-level app."""
    yield {
        "root": _TEST_ROOT,
        "uploads": os.environ["ARTIFACTS_DIR"],
    }

    shutil.rmtree(_TEST_ROOT, ignore_errors=True)


@pytest.fixture
def client():
    """Create a test client for the default FastAPI app."""
    return TestClient(app)


@pytest.fixture
def pdf_bytes():
    """A minimal PDF that is technically valid."""
    return PDF_CONTENT


@pytest.fixture
def sample_pdf(tmp_path):
    """Create a minimal valid PDF file for testing."""
    path = tmp_path / "sample.pdf"
    path.write_bytes(PDF_CONTENT)
    return path


@pytest.fixture
def publication_form():
    """Form fields for a complete publication."""
    return {
        "year": "2022",
        "volume": "12",
        "issue": "3",
        "title": "Measuring Shelf Life of Research Data",
        "content": "An abstract about long-term data preservation.",
        "author": "R. Okafor",
        "doi": "10.1234/shelf.2022.3",
        "isSpecialIssue": "false",
    }


@pytest.fixture
def make_settings(tmp_path):
    """Build isolated settings rooted in the test's tmp_path."""

    def _make(backend="file", **sections):
        overrides = {
            "database": {"path": str(tmp_path / "data" / "publications.db")},
            "storage": {"backend": backend, "artifacts_dir": str(tmp_path / "uploads")},
            "sidecar": {"enabled": True, "output_dir": str(tmp_path / "sidecars")},
        }
        for name, values in sections.items():
            overrides.setdefault(name, {}).update(values)
        return load_settings(overrides)

    return _make


@pytest.fixture
def make_context(make_settings):
    def _make(backend="file", remote_client=None, **sections):
        return build_context(make_settings(backend, **sections), remote_client=remote_client)

    return _make


@pytest.fixture
def make_client(make_context):
    """Test client for an app with its own database and directories."""

    def _make(backend="file", remote_client=None, **sections):
        context = make_context(backend, remote_client=remote_client, **sections)
        return TestClient(create_app(context))

    return _make


@pytest.fixture
def peer_client(tmp_path_factory):
    """A second, independent instance of the service for remote-backend tests."""
    root = tmp_path_factory.mktemp("peer")
    settings = load_settings({
        "database": {"path": str(Path(root) / "peer.db")},
        "storage": {"backend": "file", "artifacts_dir": str(Path(root) / "uploads")},
        "sidecar": {"enabled": False},
    })
    context = build_context(settings)
    return TestClient(create_app(context))
