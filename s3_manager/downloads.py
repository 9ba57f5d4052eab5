from __future__ import annotations
"""Single-file downloads via signed URLs and folder downloads as ZIP archives."""
from dataclasses import dataclass
import io
import logging
from pathlib import Path
from typing import Callable, Optional
import zipfile

from botocore.exceptions import BotoCoreError, ClientError
import requests

from .activity import ACTION_DOWNLOAD, ActivityLog
from .folders import FolderService, is_system_key, normalize_prefix
from .models import ObjectKey, TransferType
from .services import (
    DEFAULT_SIGNED_URL_EXPIRY,
    ObjectNotFoundError,
    ObjectStoreService,
    TransferCancelledError,
    TransferFailedError,
)
from .transfers import CancellationToken, TransferRegistry

LOGGER = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_TIMEOUT = (10, 60)
# Fetching objects fills the first 90% of the bar, compression the rest.
FETCH_PROGRESS_SHARE = 90

ByteProgressFn = Callable[[int, int], None]
PercentProgressFn = Callable[[int], None]


@dataclass
class FileDownload:
    """Result of a single-file download.

    ``url`` is always set. ``data`` or ``path`` hold the content when it was
    fetched by the engine rather than handed to the caller.
    """

    key: str
    name: str
    size: int
    url: str
    data: Optional[bytes] = None
    path: Optional[Path] = None


@dataclass
class FolderArchive:
    name: str
    data: bytes
    file_count: int
    total_size: int
    path: Optional[Path] = None


class DownloadEngine:
    """Downloads files and folders, reporting into the transfer registry."""

    def __init__(
        self,
        store: ObjectStoreService,
        activity_log: ActivityLog,
        *,
        folders: FolderService | None = None,
        registry: TransferRegistry | None = None,
        session: requests.Session | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        url_expiry: int = DEFAULT_SIGNED_URL_EXPIRY,
        timeout=DEFAULT_TIMEOUT,
    ):
        self._store = store
        self._activity_log = activity_log
        self._folders = folders or FolderService(store)
        self._registry = registry
        self._session = session or requests.Session()
        self._chunk_size = chunk_size if chunk_size > 0 else DEFAULT_CHUNK_SIZE
        self._url_expiry = url_expiry
        self._timeout = timeout

    def download_file(
        self,
        key: str,
        size: int | None = None,
        *,
        track: bool = False,
        destination: str | Path | None = None,
        cancel_token: CancellationToken | None = None,
        progress_callback: Optional[ByteProgressFn] = None,
    ) -> FileDownload:
        """Log the download and return a signed URL for ``key``.

        With ``track``, a destination, a cancellation token or a progress
        callback the engine streams the URL itself, reporting every chunk.
        """

        name = ObjectKey.parse(key).name or key
        if not size:
            size = self._store.get_object_details(key).size or 0
        self._activity_log.append(action=ACTION_DOWNLOAD, item_name=name, size=size, file_count=1)
        url = self._store.generate_presigned_url(key, expires_in=self._url_expiry)
        result = FileDownload(key=key, name=name, size=size, url=url)

        streaming = track or destination is not None or cancel_token is not None or progress_callback
        if not streaming:
            return result

        token = cancel_token or CancellationToken()
        transfer_id = self._register(name, size, token)
        target = Path(destination) if destination is not None else None
        try:
            content = self._stream_url(url, size, token, transfer_id, progress_callback, target)
        except TransferCancelledError:
            LOGGER.info("Download of '%s' cancelled", key)
            self._mark_cancelled(transfer_id)
            raise
        except (requests.RequestException, OSError) as exc:
            LOGGER.exception("Download of '%s' failed", key)
            if transfer_id is not None:
                self._registry.error(transfer_id, exc)
            raise TransferFailedError(f"Download of '{key}' failed: {exc}") from exc

        if transfer_id is not None:
            self._registry.complete(transfer_id)
        if target is not None:
            result.path = target
        else:
            result.data = content
        return result

    def _stream_url(
        self,
        url: str,
        size: int,
        token: CancellationToken,
        transfer_id: str | None,
        progress_callback: Optional[ByteProgressFn],
        target: Path | None,
    ) -> bytes | None:
        partial = target.with_name(target.name + ".part") if target is not None else None
        response = self._session.get(url, stream=True, timeout=self._timeout)
        token.add_callback(response.close)
        sink = None
        completed = False
        try:
            with response:
                response.raise_for_status()
                sink = partial.open("wb") if partial is not None else io.BytesIO()
                total = int(response.headers.get("Content-Length") or size or 0)
                loaded = 0
                try:
                    for chunk in response.iter_content(chunk_size=self._chunk_size):
                        token.raise_if_cancelled()
                        if not chunk:
                            continue
                        sink.write(chunk)
                        loaded += len(chunk)
                        if transfer_id is not None:
                            self._registry.update_progress(transfer_id, loaded, total)
                        if progress_callback:
                            progress_callback(loaded, total)
                except TransferCancelledError:
                    raise
                except Exception as exc:
                    # Closing the response from another thread surfaces here.
                    if token.is_cancelled:
                        raise TransferCancelledError("Transfer cancelled by user") from exc
                    raise
                token.raise_if_cancelled()
            completed = True
        finally:
            token.remove_callback(response.close)
            if partial is not None:
                if sink is not None:
                    sink.close()
                if completed:
                    partial.replace(target)
                else:
                    partial.unlink(missing_ok=True)
        if partial is not None:
            return None
        return sink.getvalue()

    def download_folder(
        self,
        folder_key: str,
        *,
        destination: str | Path | None = None,
        cancel_token: CancellationToken | None = None,
        progress_callback: Optional[PercentProgressFn] = None,
    ) -> FolderArchive:
        """Fetch every object below ``folder_key`` into ``<folderName>.zip``.

        Cancellation is checked before each object and before compression; a
        cancelled download produces no archive.
        """

        prefix = normalize_prefix(folder_key)
        folder = ObjectKey.parse(prefix)
        folder_name = self._store.bucket_name if folder.is_root else folder.name
        archive_name = f"{folder_name}.zip"
        objects = [
            summary
            for summary in self._folders.list_all_recursive(prefix)
            if not is_system_key(summary.key) and summary.key[len(prefix):]
        ]
        total_size = sum(summary.size for summary in objects)
        file_count = len(objects)

        self._activity_log.append(
            action=ACTION_DOWNLOAD,
            item_name=prefix,
            size=total_size,
            file_count=file_count,
        )
        token = cancel_token or CancellationToken()
        transfer_id = self._register(archive_name, total_size, token, file_count=file_count)
        last_percent = 0

        def report(percent: float) -> None:
            nonlocal last_percent
            value = max(last_percent, min(100, int(round(percent))))
            if progress_callback and value != last_percent:
                progress_callback(value)
            last_percent = value

        def fetch_progress(loaded: int) -> None:
            if transfer_id is not None:
                self._registry.update_progress(
                    transfer_id, loaded, total_size, ceiling=FETCH_PROGRESS_SHARE
                )
            if total_size:
                report(loaded / total_size * FETCH_PROGRESS_SHARE)

        def archive_progress(share: float) -> None:
            percent = FETCH_PROGRESS_SHARE + share * (100 - FETCH_PROGRESS_SHARE) / 100
            if transfer_id is not None:
                self._registry.set_meta(transfer_id, progress=round(percent))
            report(percent)

        try:
            entries = self._fetch_all(prefix, objects, token, fetch_progress)
            token.raise_if_cancelled()
            data = _build_archive(entries, archive_progress)
            token.raise_if_cancelled()
            path = None
            if destination is not None:
                path = Path(destination)
                path.write_bytes(data)
        except TransferCancelledError:
            LOGGER.info("Download of folder '%s' cancelled", prefix)
            self._mark_cancelled(transfer_id)
            raise
        except (BotoCoreError, ClientError, ObjectNotFoundError, OSError) as exc:
            LOGGER.exception("Download of folder '%s' failed", prefix)
            if transfer_id is not None:
                self._registry.error(transfer_id, exc)
            raise TransferFailedError(f"Download of folder '{prefix}' failed: {exc}") from exc

        if transfer_id is not None:
            self._registry.complete(transfer_id)
        if progress_callback and last_percent != 100:
            progress_callback(100)
        LOGGER.info("Archived %d object(s) from '%s' into %s", file_count, prefix, archive_name)
        return FolderArchive(
            name=archive_name,
            data=data,
            file_count=file_count,
            total_size=total_size,
            path=path,
        )

    def _fetch_all(self, prefix, objects, token, on_progress) -> list[tuple[str, bytes]]:
        entries: list[tuple[str, bytes]] = []
        loaded = 0
        for summary in objects:
            token.raise_if_cancelled()
            stored = self._store.get_object(summary.key)
            body = stored.body
            if hasattr(body, "iter_chunks"):
                chunks = []
                for chunk in body.iter_chunks(chunk_size=self._chunk_size):
                    chunks.append(chunk)
                    loaded += len(chunk)
                    on_progress(loaded)
                data = b"".join(chunks)
            else:
                data = stored.read()
                loaded += summary.size
                on_progress(loaded)
            entries.append((summary.key[len(prefix):], data))
        return entries

    def _register(self, name, total, token, *, file_count=None) -> str | None:
        if self._registry is None:
            return None
        return self._registry.add(
            name=name,
            type=TransferType.DOWNLOAD,
            total=total,
            cancel_token=token,
            file_count=file_count,
        )

    def _mark_cancelled(self, transfer_id: str | None) -> None:
        if transfer_id is not None:
            self._registry.cancel(transfer_id)


def _build_archive(entries: list[tuple[str, bytes]], on_progress: Callable[[float], None]) -> bytes:
    """Serialize ``entries`` into a deflated ZIP, reporting 0-100 as it goes."""

    buffer = io.BytesIO()
    total = sum(len(data) for _, data in entries)
    written = 0
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for index, (name, data) in enumerate(entries, start=1):
            archive.writestr(name, data)
            written += len(data)
            on_progress(written / total * 100 if total else index / len(entries) * 100)
    on_progress(100)
    return buffer.getvalue()
