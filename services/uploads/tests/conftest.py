import hashlib
import importlib
import sys
import threading

import pytest

from services.uploads.application.coordinator import UploadCoordinator
from services.uploads.application.dto import CoordinatorSettings
from services.uploads.domain.errors import StorageError
from services.uploads.infrastructure.ids import TimestampedIdProvider
from services.uploads.infrastructure.memory_sessions import InMemoryUploadSessionStore


class FakeMultipartStorage:
    def __init__(self) -> None:
        self.opened: dict[str, tuple[str, str]] = {}
        self.parts: dict[tuple[str, int], bytes] = {}
        self.finalized: dict[str, list[tuple[int, str]]] = {}
        self.aborted: list[str] = []
        self.calls: list[str] = []
        self.failing: set[str] = set()
        self._lock = threading.Lock()
        self._counter = 0

    def _record(self, operation: str) -> None:
        with self._lock:
            self.calls.append(operation)
        if operation in self.failing:
            raise StorageError(f"Failed to {operation}")

    def open(self, *, storage_key: str, content_type: str) -> str:
        self._record("open")
        with self._lock:
            self._counter += 1
            remote_id = f"mpu-{self._counter}"
            self.opened[remote_id] = (storage_key, content_type)
        return remote_id

    def put_part(self, *, storage_key, remote_multipart_id, part_number, data) -> str:
        self._record("put_part")
        with self._lock:
            self.parts[(remote_multipart_id, part_number)] = data
        return '"%s"' % hashlib.md5(data).hexdigest()

    def finalize(self, *, storage_key, remote_multipart_id, parts) -> None:
        self._record("finalize")
        self.finalized[remote_multipart_id] = list(parts)

    def abort(self, *, storage_key, remote_multipart_id) -> None:
        self._record("abort")
        self.aborted.append(remote_multipart_id)

    def count(self, operation: str) -> int:
        return self.calls.count(operation)


class RecordingEventSink:
    def __init__(self) -> None:
        self.events = []

    def publish(self, event) -> None:
        self.events.append(event)

    def outcomes(self, operation: str) -> list[str]:
        return [e.outcome for e in self.events if e.operation == operation]


@pytest.fixture
def settings():
    return CoordinatorSettings(
        max_file_size=1024 * 1024,
        chunk_size=5,
        max_chunk_index=99,
        version_conflict_retries=3,
    )


@pytest.fixture
def store():
    return InMemoryUploadSessionStore()


@pytest.fixture
def storage():
    return FakeMultipartStorage()


@pytest.fixture
def events():
    return RecordingEventSink()


@pytest.fixture
def coordinator(store, storage, events, settings):
    return UploadCoordinator(
        store=store,
        storage=storage,
        id_provider=TimestampedIdProvider(),
        events=events,
        settings=settings,
    )


@pytest.fixture
def init_upload(coordinator):
    def _init(**overrides):
        params = {
            "file_name": "a.txt",
            "total_size": 13,
            "content_type": "text/plain",
            "user_id": "u1",
            "user_role": "creator",
        }
        params.update(overrides)
        return coordinator.init(**params)

    return _init


UPLOADS_ENV = {
    "UPLOADS_STORAGE_ACCESS_KEY": "minio",
    "UPLOADS_STORAGE_BUCKET": "uploads",
    "UPLOADS_STORAGE_ENDPOINT_URL": "http://localhost:9000",
    "UPLOADS_STORAGE_SECRET_KEY": "minio123",
    "UPLOADS_DATABASE_URL": "sqlite://",
}


@pytest.fixture
def uploads_env(monkeypatch):
    for name, value in UPLOADS_ENV.items():
        monkeypatch.setenv(name, value)
    return UPLOADS_ENV


@pytest.fixture
def main_module(uploads_env):
    """Import the app module fresh; it builds an app from the environment on import."""
    sys.modules.pop("services.uploads.main", None)
    return importlib.import_module("services.uploads.main")
