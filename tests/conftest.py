# FILE: tests/conftest.py

import os
import sys
import tempfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Settings are a process-wide singleton; point them at scratch dirs before first import
_scratch = tempfile.mkdtemp(prefix="capsule-tests-")
os.environ.setdefault("DATA_DIR", os.path.join(_scratch, "data"))
os.environ.setdefault("METADATA_DIR", os.path.join(_scratch, "data", "memories"))
os.environ.setdefault("LOGS_DIR", os.path.join(_scratch, "logs"))
os.environ.setdefault("TELEMETRY_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from capsule.config import get_settings
from capsule.services.blob_store import BlobDeletionReport, BlobStore, UploadGrant, get_blob_store
from capsule.services.memory_service import MemoryService, get_memory_service
from capsule.services.metadata_store import MetadataStore
from capsule.services.telemetry import reset_telemetry

PUBLIC_BASE = "https://cdn.example.com"


class FakeBlobStore:
    """Blob store double that records delete calls and can be told to fail"""

    def __init__(self):
        self.public_base = PUBLIC_BASE
        self.delete_calls: List[Set[str]] = []
        self.fail_locations: Set[str] = set()
        self.missing_locations: Set[str] = set()
        self.grants: List[UploadGrant] = []

    def request_upload_grant(self, filename: str, content_type: str) -> UploadGrant:
        key = f"upload-{len(self.grants) + 1}.jpg"
        grant = UploadGrant(
            upload_url=f"https://storage.example.com/bucket/{key}?X-Amz-Signature=sig",
            public_url=f"{PUBLIC_BASE}/{key}",
            key=key,
            expires_in=360,
        )
        self.grants.append(grant)
        return grant

    async def exists(self, location: str) -> bool:
        return location not in self.missing_locations

    async def delete_objects(self, locations: Iterable[str]) -> BlobDeletionReport:
        locations = set(locations)
        self.delete_calls.append(locations)
        report = BlobDeletionReport()
        for location in locations:
            if location in self.fail_locations:
                report.failed[location] = "AccessDenied: Access Denied"
            else:
                report.deleted.append(location)
        return report


def image_url(name: str) -> str:
    return f"{PUBLIC_BASE}/{name}.jpg"


@pytest.fixture(scope="session")
def settings():
    """Provide settings for tests"""
    return get_settings()


@pytest.fixture
def metadata_store(tmp_path):
    return MetadataStore(str(tmp_path / "memories"))


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def service(metadata_store, blob_store):
    return MemoryService(metadata_store=metadata_store, blob_store=blob_store)


@pytest.fixture
def api(service, blob_store):
    """TestClient wired to the fake stores"""
    from capsule.app import app

    app.dependency_overrides[get_memory_service] = lambda: service
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def telemetry_enabled(settings, tmp_path, monkeypatch):
    """Turn telemetry on for one test, writing under tmp_path"""
    monkeypatch.setattr(settings, "telemetry_enabled", True)
    monkeypatch.setattr(settings, "logs_dir", str(tmp_path / "logs"))
    reset_telemetry()
    yield
    reset_telemetry()


def read_raw(store: MetadataStore, code: str) -> Optional[bytes]:
    path = store.metadata_dir / f"{code}.json"
    return path.read_bytes() if path.exists() else None
