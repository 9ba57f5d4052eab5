from __future__ import annotations
"""Multipart uploads with aggregated progress and activity logging."""
import io
import logging
from typing import Callable, Optional

from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError

from .activity import ACTION_UPLOAD, ActivityLog
from .models import TransferType, UploadPayload
from .services import (
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_PART_SIZE,
    InvalidInputError,
    ObjectStoreService,
    TransferCancelledError,
    TransferFailedError,
)
from .transfers import CancellationToken, TransferRegistry

LOGGER = logging.getLogger(__name__)

ProgressFn = Callable[[int], None]


def resolve_upload_key(destination: str | None, name: str) -> str:
    """Turn a destination path into the object key for ``name``.

    A leading ``./`` and leading slashes are dropped. An empty destination
    means the bucket root and a destination ending in ``/`` is a folder.
    """

    path = (destination or "").strip()
    if path.startswith("./"):
        path = path[2:]
    path = path.lstrip("/")
    if not path:
        return name
    if path.endswith("/"):
        return f"{path}{name}"
    return path


def _payload_size(fileobj) -> int:
    position = fileobj.tell()
    fileobj.seek(0, io.SEEK_END)
    size = fileobj.tell()
    fileobj.seek(position)
    return size - position


class UploadOrchestrator:
    """Uploads payloads in fixed-size parts and records them in the activity log."""

    def __init__(
        self,
        store: ObjectStoreService,
        activity_log: ActivityLog,
        *,
        registry: TransferRegistry | None = None,
        part_size: int = DEFAULT_PART_SIZE,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        self._store = store
        self._activity_log = activity_log
        self._registry = registry
        self._part_size = part_size
        self._max_concurrency = max_concurrency

    def upload(
        self,
        payload: UploadPayload,
        destination: str = "",
        *,
        progress_callback: Optional[ProgressFn] = None,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        """Upload ``payload`` and return its object key.

        Raises:
            InvalidInputError: when the payload or its name is missing.
            TransferCancelledError: when ``cancel_token`` is cancelled before the
                upload is recorded as complete.
            TransferFailedError: when any part fails; the multipart upload is aborted.
        """

        if payload is None:
            raise InvalidInputError("No file provided")
        name = (payload.name or "").strip()
        if not name:
            raise InvalidInputError("File must have a name")
        body = payload.body
        if isinstance(body, (bytes, bytearray)):
            fileobj = io.BytesIO(bytes(body))
        elif hasattr(body, "read") and hasattr(body, "seek"):
            fileobj = body
        else:
            raise InvalidInputError("Invalid file type - must be bytes or a binary file object")

        key = resolve_upload_key(destination, name)
        size = _payload_size(fileobj)
        token = cancel_token or CancellationToken()
        transfer_id = None
        if self._registry is not None:
            transfer_id = self._registry.add(
                name=key.rsplit("/", 1)[-1],
                type=TransferType.UPLOAD,
                total=size,
                cancel_token=token,
            )

        reported = -1

        def on_bytes(transferred: int) -> None:
            nonlocal reported
            if transfer_id is not None:
                self._registry.update_progress(transfer_id, transferred, size)
            percent = min(100, round(transferred / size * 100)) if size else 0
            # retried parts rewind the byte count; never report less than before
            percent = max(reported, percent, 0)
            reported = percent
            if progress_callback:
                progress_callback(percent)

        LOGGER.debug("Uploading %d byte(s) to '%s'", size, key)
        try:
            self._store.upload_fileobj(
                key,
                fileobj,
                content_type=payload.content_type,
                part_size=self._part_size,
                max_concurrency=self._max_concurrency,
                progress_callback=on_bytes,
                cancel_requested=token,
            )
            # cancelled after the last part; the object stays in the bucket
            token.raise_if_cancelled()
        except TransferCancelledError:
            LOGGER.info("Upload of '%s' cancelled", key)
            if transfer_id is not None:
                self._registry.cancel(transfer_id)
            raise
        except (BotoCoreError, ClientError, S3UploadFailedError) as exc:
            LOGGER.exception("Upload of '%s' failed", key)
            if transfer_id is not None:
                self._registry.error(transfer_id, exc)
            raise TransferFailedError(f"Upload of '{key}' failed: {exc}") from exc

        if reported != 100 and progress_callback:
            progress_callback(100)
        if transfer_id is not None:
            self._registry.complete(transfer_id)
        self._activity_log.append(action=ACTION_UPLOAD, item_name=key, size=size, file_count=1)
        LOGGER.info("Uploaded '%s' (%d bytes)", key, size)
        return key
