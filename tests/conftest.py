"""Shared fixtures: in-memory database, repositories and fake collaborators."""

import io
from datetime import datetime
from typing import Dict, List, Optional

import pytest
from cryptography.fernet import Fernet

from nasbox.database.database import Database
from nasbox.models.plan import Plan
from nasbox.models.server import Server
from nasbox.repositories import (
    BackupRecordRepository,
    PlanRepository,
    RunLogRepository,
    RunRepository,
    ServerRepository,
)
from nasbox.services.credential_store import EncryptedCredentialStore
from nasbox.services.encryption_service import EncryptionService
from nasbox.services.media_source import MediaAlbum, MediaItem, MediaSource, SourceDescriptor, aggregate_albums
from nasbox.services.share_client import ShareClient


class FakeMediaSource(MediaSource):
    """In-memory media source; items listed in insertion order."""

    def __init__(self, items: Optional[List[MediaItem]] = None, unreadable: Optional[set] = None):
        self.items = list(items or [])
        self.unreadable = set(unreadable or ())
        self.supported = {"ALBUM", "FOLDER", "FULL_DEVICE"}
        self.scan_error: Optional[Exception] = None
        self.opened: List[str] = []

    def supports(self, source_type: str) -> bool:
        return source_type in self.supported

    def list_albums(self):
        return aggregate_albums(self.items)

    def list_items(self, descriptor: SourceDescriptor) -> List[MediaItem]:
        if self.scan_error is not None:
            raise self.scan_error
        return list(self.items)

    def open_stream(self, media_id: str):
        if media_id in self.unreadable:
            return None
        self.opened.append(media_id)
        return io.BytesIO(f"content of {media_id}".encode())


class FakeShareClient(ShareClient):
    """Records uploads; raises the configured error for a remote path suffix."""

    def __init__(self):
        self.uploads: List[str] = []
        self.upload_errors: Dict[str, Exception] = {}
        self.connection_error: Optional[Exception] = None
        self.latency_ms = 12
        self.directories: List[str] = ["Photos", "Backups"]
        self.shares: List[str] = ["photos", "backup"]
        self.share_requests = []
        self.on_upload = None

    async def test_connection(self, request) -> int:
        if self.connection_error is not None:
            raise self.connection_error
        return self.latency_ms

    async def list_shares(self, request) -> List[str]:
        self.share_requests.append(request)
        if self.connection_error is not None:
            raise self.connection_error
        return sorted(self.shares, key=str.lower)

    async def list_directories(self, request, path: str = "") -> List[str]:
        if self.connection_error is not None:
            raise self.connection_error
        return sorted(self.directories, key=str.lower)

    async def upload_file(self, request, remote_path, stream, size_bytes=None, progress_callback=None) -> None:
        stream.read()
        for suffix, error in self.upload_errors.items():
            if remote_path.endswith(suffix):
                raise error
        self.uploads.append(remote_path)
        if self.on_upload is not None:
            self.on_upload(remote_path)


def make_item(media_id: str, captured_at: Optional[datetime] = None, album: Optional[str] = "Camera") -> MediaItem:
    return MediaItem(
        media_id=media_id,
        display_name=f"{media_id}.jpg",
        mime_type="image/jpeg",
        captured_at=captured_at or datetime(2024, 5, 17, 8, 30, 0),
        size_bytes=1024,
        album=album,
    )


@pytest.fixture
def database():
    """Create an in-memory database with all tables."""
    db = Database("sqlite://")
    db.init_db()
    yield db
    db.dispose()


@pytest.fixture
def encryption_service():
    return EncryptionService(Fernet.generate_key().decode())


@pytest.fixture
def credential_store(database, encryption_service):
    return EncryptedCredentialStore(database.session_factory, encryption_service)


@pytest.fixture
def plan_repository(database):
    return PlanRepository(database.session_factory)


@pytest.fixture
def server_repository(database):
    return ServerRepository(database.session_factory)


@pytest.fixture
def backup_record_repository(database):
    return BackupRecordRepository(database.session_factory)


@pytest.fixture
def run_repository(database):
    return RunRepository(database.session_factory)


@pytest.fixture
def run_log_repository(database):
    return RunLogRepository(database.session_factory)


@pytest.fixture
def media_source():
    return FakeMediaSource([make_item("IMG_0001"), make_item("IMG_0002"), make_item("IMG_0003")])


@pytest.fixture
def share_client():
    return FakeShareClient()


@pytest.fixture
def server(server_repository, credential_store):
    """Create a saved server with a stored password."""
    credential_store.save_secret("server-test", "s3cret")
    return server_repository.create_server(Server(
        name="Home NAS",
        host="nas.local",
        share_name="photos",
        base_path="Backups/Phone",
        username="alice",
        credential_alias="server-test",
    ))


@pytest.fixture
def plan(plan_repository, server):
    """Create an enabled album plan targeting the saved server."""
    return plan_repository.create_plan(Plan(
        name="Camera backup",
        enabled=True,
        source_type="ALBUM",
        source_album="Camera",
        server_id=server.id,
    ))
