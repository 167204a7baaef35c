import re

import pytest

from services.uploads.application.dto import CompletionPart
from services.uploads.domain.errors import (
    FileTooLargeError,
    InvalidFieldError,
    MissingFieldError,
    PersistenceError,
    StorageError,
    UploadCancelledError,
    UploadCompletedError,
    UploadNotFoundError,
)
from services.uploads.domain.upload import UploadStatus


def test_scenario_init_chunk_complete_then_cancel_refused(coordinator, store, init_upload):
    upload = init_upload()
    assert upload.status is UploadStatus.INITIATED
    assert store.get(upload.upload_id).session.status is UploadStatus.INITIATED

    chunk = coordinator.chunk(upload.upload_id, 0, b"Hello, World!")
    assert chunk.etag
    assert store.get(upload.upload_id).session.status is UploadStatus.IN_PROGRESS

    completed = coordinator.complete(upload.upload_id)
    assert re.fullmatch(
        r"creator/u1/\d{8}/document/a[^/]*\.txt", completed.storage_key
    )
    assert store.get(upload.upload_id).session.status is UploadStatus.COMPLETED

    before = store.get(upload.upload_id)
    with pytest.raises(UploadCompletedError):
        coordinator.cancel(upload.upload_id)
    assert store.get(upload.upload_id) == before


def test_init_returns_unique_ids_and_opens_remote_upload(init_upload, storage, store):
    uploads = [init_upload() for _ in range(25)]
    ids = {upload.upload_id for upload in uploads}
    assert len(ids) == 25
    assert storage.count("open") == 25
    for upload in uploads:
        stored = store.get(upload.upload_id)
        assert stored.session.version == 0
        assert stored.session.status is UploadStatus.INITIATED
        assert stored.session.storage_key == upload.storage_key


def test_init_echoes_chunk_size_hint(init_upload, settings):
    assert init_upload().chunk_size == settings.chunk_size


def test_init_accepts_role_in_any_case(init_upload, store):
    upload = init_upload(user_role="MEMBER")
    assert store.get(upload.upload_id).session.user_role.value == "member"
    assert upload.storage_key.startswith("member/")


@pytest.mark.parametrize(
    "overrides,error",
    [
        ({"file_name": ""}, MissingFieldError),
        ({"user_id": "  "}, MissingFieldError),
        ({"total_size": None}, MissingFieldError),
        ({"total_size": 0}, InvalidFieldError),
        ({"total_size": -5}, InvalidFieldError),
        ({"total_size": "13"}, InvalidFieldError),
        ({"total_size": 1024 * 1024 + 1}, FileTooLargeError),
        ({"user_role": "admin"}, InvalidFieldError),
    ],
)
def test_init_validation_touches_nothing(init_upload, storage, overrides, error):
    with pytest.raises(error):
        init_upload(**overrides)
    assert storage.calls == []


def test_init_accepts_exactly_max_size(init_upload, settings):
    assert init_upload(total_size=settings.max_file_size).upload_id


def test_init_surfaces_storage_error_without_persisting(init_upload, storage, store):
    storage.failing.add("open")
    with pytest.raises(StorageError):
        init_upload()
    assert store._entries == {}


def test_init_persistence_failure_abandons_remote_upload(init_upload, storage, store):
    def broken_create(session):
        raise PersistenceError("database unavailable")

    store.create = broken_create
    with pytest.raises(PersistenceError):
        init_upload()
    assert storage.count("open") == 1
    assert storage.aborted == []


def test_chunk_uses_one_based_part_numbers(coordinator, init_upload, storage, store):
    upload = init_upload(total_size=6)
    remote_id = store.get(upload.upload_id).session.remote_multipart_id
    coordinator.chunk(upload.upload_id, 0, b"abc")
    coordinator.chunk(upload.upload_id, 1, b"def")
    assert storage.parts[(remote_id, 1)] == b"abc"
    assert storage.parts[(remote_id, 2)] == b"def"


def test_chunk_resubmission_is_idempotent(coordinator, init_upload, storage, store):
    upload = init_upload()
    first = coordinator.chunk(upload.upload_id, 0, b"Hello, World!")
    version = store.get(upload.upload_id).session.version

    second = coordinator.chunk(upload.upload_id, 0, b"Hello, World!")

    assert second.etag == first.etag
    assert storage.count("put_part") == 1
    stored = store.get(upload.upload_id)
    assert len(stored.chunks) == 1
    assert stored.session.version == version


def test_chunk_with_same_index_and_different_size_is_rejected(
    coordinator, init_upload, storage
):
    upload = init_upload()
    coordinator.chunk(upload.upload_id, 0, b"Hello")
    with pytest.raises(InvalidFieldError):
        coordinator.chunk(upload.upload_id, 0, b"Hello, World!")
    assert storage.count("put_part") == 1


@pytest.mark.parametrize("chunk_index", [-1, 100])
def test_chunk_index_out_of_range(coordinator, init_upload, storage, chunk_index):
    upload = init_upload()
    with pytest.raises(InvalidFieldError):
        coordinator.chunk(upload.upload_id, chunk_index, b"x")
    assert storage.count("put_part") == 0


def test_empty_chunk_is_rejected(coordinator, init_upload):
    upload = init_upload()
    with pytest.raises(InvalidFieldError):
        coordinator.chunk(upload.upload_id, 0, b"")


def test_chunk_for_unknown_upload(coordinator):
    with pytest.raises(UploadNotFoundError):
        coordinator.chunk("missing", 0, b"x")


def test_failed_part_upload_leaves_session_unchanged(
    coordinator, init_upload, storage, store
):
    upload = init_upload()
    before = store.get(upload.upload_id)
    storage.failing.add("put_part")

    with pytest.raises(StorageError):
        coordinator.chunk(upload.upload_id, 0, b"Hello, World!")
    assert store.get(upload.upload_id) == before

    storage.failing.clear()
    coordinator.chunk(upload.upload_id, 0, b"Hello, World!")
    assert store.get(upload.upload_id).chunk_indices == [0]


def test_chunk_set_is_independent_of_arrival_order(coordinator, init_upload, storage, store):
    upload = init_upload(total_size=5)
    for index in [3, 0, 4, 1, 2]:
        coordinator.chunk(upload.upload_id, index, bytes([index]))
    assert coordinator.status(upload.upload_id).chunks == [0, 1, 2, 3, 4]

    coordinator.complete(upload.upload_id)
    remote_id = store.get(upload.upload_id).session.remote_multipart_id
    assert [part for part, _ in storage.finalized[remote_id]] == [1, 2, 3, 4, 5]


@pytest.mark.parametrize("indices", [[1, 2], [0, 2], [0, 1, 3], [5]])
def test_complete_requires_contiguous_chunks(coordinator, init_upload, storage, store, indices):
    upload = init_upload()
    for index in indices:
        coordinator.chunk(upload.upload_id, index, b"x")
    with pytest.raises(InvalidFieldError):
        coordinator.complete(upload.upload_id)
    assert storage.count("finalize") == 0
    assert store.get(upload.upload_id).session.status is UploadStatus.IN_PROGRESS


def test_complete_without_chunks_is_rejected(coordinator, init_upload, storage):
    upload = init_upload()
    with pytest.raises(InvalidFieldError):
        coordinator.complete(upload.upload_id)
    assert storage.count("finalize") == 0


def test_complete_cross_checks_client_parts(coordinator, init_upload, storage):
    upload = init_upload(total_size=2)
    a = coordinator.chunk(upload.upload_id, 0, b"a")
    b = coordinator.chunk(upload.upload_id, 1, b"b")

    with pytest.raises(InvalidFieldError):
        coordinator.complete(
            upload.upload_id, parts=[CompletionPart(part_no=1, etag=a.etag)]
        )
    with pytest.raises(InvalidFieldError):
        coordinator.complete(
            upload.upload_id,
            parts=[
                CompletionPart(part_no=1, etag=b.etag),
                CompletionPart(part_no=2, etag=a.etag),
            ],
        )
    assert storage.count("finalize") == 0

    completed = coordinator.complete(
        upload.upload_id,
        parts=[
            CompletionPart(part_no=2, etag=b.etag.strip('"')),
            CompletionPart(part_no=1, etag=a.etag),
        ],
    )
    assert completed.status is UploadStatus.COMPLETED


def test_complete_storage_failure_is_retryable(coordinator, init_upload, storage, store):
    upload = init_upload()
    coordinator.chunk(upload.upload_id, 0, b"Hello, World!")
    storage.failing.add("finalize")

    with pytest.raises(StorageError):
        coordinator.complete(upload.upload_id)
    assert store.get(upload.upload_id).session.status is UploadStatus.IN_PROGRESS

    storage.failing.clear()
    assert coordinator.complete(upload.upload_id).status is UploadStatus.COMPLETED


def test_complete_twice_reports_completed_with_storage_key(coordinator, init_upload):
    upload = init_upload()
    coordinator.chunk(upload.upload_id, 0, b"Hello, World!")
    completed = coordinator.complete(upload.upload_id)

    with pytest.raises(UploadCompletedError) as excinfo:
        coordinator.complete(upload.upload_id)
    assert excinfo.value.storage_key == completed.storage_key


def test_completed_upload_is_immutable(coordinator, init_upload, storage, store):
    upload = init_upload()
    coordinator.chunk(upload.upload_id, 0, b"Hello, World!")
    coordinator.complete(upload.upload_id)
    before = store.get(upload.upload_id)
    calls = list(storage.calls)

    with pytest.raises(UploadCompletedError):
        coordinator.chunk(upload.upload_id, 1, b"more")
    with pytest.raises(UploadCompletedError):
        coordinator.complete(upload.upload_id)
    with pytest.raises(UploadCompletedError):
        coordinator.cancel(upload.upload_id)

    assert store.get(upload.upload_id) == before
    assert storage.calls == calls


def test_cancel_aborts_and_clears_chunks(coordinator, init_upload, storage, store):
    upload = init_upload()
    coordinator.chunk(upload.upload_id, 0, b"Hello")
    result = coordinator.cancel(upload.upload_id)

    assert result.status is UploadStatus.CANCELLED
    stored = store.get(upload.upload_id)
    assert stored.session.status is UploadStatus.CANCELLED
    assert stored.chunks == ()
    assert storage.aborted == [stored.session.remote_multipart_id]


def test_cancel_of_initiated_upload(coordinator, init_upload):
    upload = init_upload()
    assert coordinator.cancel(upload.upload_id).status is UploadStatus.CANCELLED


def test_cancelled_upload_is_immutable(coordinator, init_upload, storage, store):
    upload = init_upload()
    coordinator.cancel(upload.upload_id)
    before = store.get(upload.upload_id)
    calls = list(storage.calls)

    with pytest.raises(UploadCancelledError):
        coordinator.chunk(upload.upload_id, 0, b"x")
    with pytest.raises(UploadCancelledError):
        coordinator.complete(upload.upload_id)
    with pytest.raises(UploadCancelledError):
        coordinator.cancel(upload.upload_id)

    assert store.get(upload.upload_id) == before
    assert storage.calls == calls


def test_cancel_storage_failure_keeps_session(coordinator, init_upload, storage, store):
    upload = init_upload()
    coordinator.chunk(upload.upload_id, 0, b"Hello")
    storage.failing.add("abort")
    with pytest.raises(StorageError):
        coordinator.cancel(upload.upload_id)
    stored = store.get(upload.upload_id)
    assert stored.session.status is UploadStatus.IN_PROGRESS
    assert stored.chunk_indices == [0]


def test_status_reports_sorted_chunks_and_bytes(coordinator, init_upload, settings):
    upload = init_upload(total_size=10)
    coordinator.chunk(upload.upload_id, 1, b"world")
    coordinator.chunk(upload.upload_id, 0, b"hello")

    view = coordinator.status(upload.upload_id)
    assert view.chunks == [0, 1]
    assert view.uploaded_bytes == 10
    assert view.status is UploadStatus.IN_PROGRESS
    assert view.chunk_size == settings.chunk_size
    assert view.updated_at >= view.created_at


def test_status_for_unknown_upload(coordinator):
    with pytest.raises(UploadNotFoundError):
        coordinator.status("missing")


def test_operations_emit_events(coordinator, init_upload, events):
    upload = init_upload()
    coordinator.chunk(upload.upload_id, 0, b"Hello, World!")
    coordinator.complete(upload.upload_id)
    with pytest.raises(UploadCompletedError):
        coordinator.cancel(upload.upload_id)

    assert events.outcomes("init") == ["succeeded"]
    assert events.outcomes("chunk") == ["succeeded"]
    assert events.outcomes("complete") == ["succeeded"]
    assert events.outcomes("cancel") == ["UPLOAD_COMPLETED"]
    complete_event = [e for e in events.events if e.operation == "complete"][0]
    assert complete_event.details["uploaded_bytes"] == 13


def test_broken_event_sink_does_not_fail_operations(coordinator, init_upload, events):
    def explode(event):
        raise RuntimeError("sink down")

    events.publish = explode
    upload = init_upload()
    assert coordinator.chunk(upload.upload_id, 0, b"Hello, World!").etag
    assert coordinator.complete(upload.upload_id).status is UploadStatus.COMPLETED
