from __future__ import annotations

import logging
from typing import Optional

from ..domain.errors import PersistenceError, VersionConflictError
from ..domain.upload import StoredUpload
from .interfaces import Mutator, UploadSessionStore

LOGGER = logging.getLogger(__name__)


def update_with_retry(
    store: UploadSessionStore,
    upload_id: str,
    mutator: Mutator,
    *,
    attempts: int,
    current: Optional[StoredUpload] = None,
) -> StoredUpload:
    """Apply ``mutator`` through the store's version check.

    On a conflict the session is re-read and the mutator runs again against
    the fresh state, so it must re-validate everything it depends on.
    """
    for attempt in range(1, max(attempts, 1) + 1):
        if current is None:
            current = store.get(upload_id)
        try:
            return store.compare_and_update(
                upload_id, current.session.version, mutator
            )
        except VersionConflictError:
            LOGGER.info(
                "Version conflict on upload %s (attempt %s of %s)",
                upload_id,
                attempt,
                attempts,
            )
            current = None
    raise PersistenceError(
        f"Upload {upload_id} could not be updated due to concurrent modifications",
        {"upload_id": upload_id, "attempts": attempts},
    )
