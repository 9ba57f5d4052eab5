from __future__ import annotations
"""Controller layer wiring the bucket services to a connection profile."""

import logging
from pathlib import Path
from typing import Callable, Optional

from .activity import ActivityLog, AIHistoryStore
from .downloads import DownloadEngine, FileDownload, FolderArchive
from .folders import FolderService
from .models import ActivityEntry, BucketMetrics, FolderNode, ListingEntry, Transfer, UploadPayload
from .profiles import ConnectionProfile, ProfileStorage
from .rename import RenameEngine
from .services import InvalidInputError, ObjectStoreService
from .settings import AppSettings
from .transfers import CancellationToken, TransferRegistry
from .uploads import UploadOrchestrator

LOGGER = logging.getLogger(__name__)

ServiceFactory = Callable[..., ObjectStoreService]


class NotConnectedError(RuntimeError):
    """Raised when a bucket operation is attempted before connecting."""


class FileManagerController:
    """Coordinates user actions with the bucket services of one connection."""

    def __init__(
        self,
        storage: ProfileStorage | None = None,
        *,
        settings: AppSettings | None = None,
        service_factory: ServiceFactory | None = None,
        registry: TransferRegistry | None = None,
        session=None,
    ):
        self._storage = storage or ProfileStorage()
        self._settings = settings or AppSettings()
        self._service_factory = service_factory or ObjectStoreService
        self._session = session
        self._profiles: list[ConnectionProfile] = self._storage.load()
        self._selected_profile: str | None = None
        self.registry = registry or TransferRegistry(
            auto_remove_delay=self._settings.transfer_auto_remove_delay
        )
        self._store: ObjectStoreService | None = None
        self._folders: FolderService | None = None
        self._renamer: RenameEngine | None = None
        self._uploader: UploadOrchestrator | None = None
        self._downloader: DownloadEngine | None = None
        self._activity_log: ActivityLog | None = None
        self._ai_history: AIHistoryStore | None = None

    @property
    def is_connected(self) -> bool:
        return self._store is not None

    @property
    def selected_profile(self) -> str | None:
        return self._selected_profile

    @property
    def bucket_name(self) -> str | None:
        return self._store.bucket_name if self._store else None

    def list_profiles(self) -> list[ConnectionProfile]:
        return list(self._profiles)

    def save_profile(self, profile: ConnectionProfile, *, original_name: str | None = None) -> None:
        if original_name and original_name != profile.name:
            self._profiles = [p for p in self._profiles if p.name != original_name]
        self._upsert_profile(profile)
        self._storage.save(self._profiles)

    def delete_profile(self, name: str) -> None:
        before = len(self._profiles)
        self._profiles = [p for p in self._profiles if p.name != name]
        if len(self._profiles) == before:
            raise ValueError(f"Profile '{name}' does not exist")
        if self._selected_profile == name:
            self._selected_profile = None
        self._storage.save(self._profiles)

    def get_profile(self, name: str) -> ConnectionProfile:
        for profile in self._profiles:
            if profile.name == name:
                return profile
        raise ValueError(f"Profile '{name}' does not exist")

    def connect_with_profile(self, name: str) -> list[ListingEntry]:
        profile = self.get_profile(name)
        entries = self.connect(
            endpoint_url=profile.endpoint_url,
            access_key=profile.access_key,
            secret_key=profile.secret_key,
            bucket_name=profile.bucket_name,
            region_name=profile.region_name,
        )
        self._selected_profile = name
        return entries

    def connect(
        self,
        *,
        endpoint_url: str,
        access_key: str,
        secret_key: str,
        bucket_name: str,
        region_name: str = "",
    ) -> list[ListingEntry]:
        """Bind to ``bucket_name`` and return its root listing."""

        if not bucket_name:
            raise InvalidInputError("A bucket name is required to connect")
        store = self._service_factory(
            bucket_name=bucket_name,
            endpoint_url=endpoint_url,
            access_key=access_key,
            secret_key=secret_key,
            region_name=region_name,
            max_attempts=self._settings.max_attempts,
        )
        folders = FolderService(store)
        entries = folders.list("")

        activity_log = ActivityLog(store)
        self._store = store
        self._folders = folders
        self._activity_log = activity_log
        self._ai_history = AIHistoryStore(store)
        self._renamer = RenameEngine(store, folders)
        self._uploader = UploadOrchestrator(
            store,
            activity_log,
            registry=self.registry,
            part_size=self._settings.upload_part_size,
            max_concurrency=self._settings.upload_max_concurrency,
        )
        self._downloader = DownloadEngine(
            store,
            activity_log,
            folders=folders,
            registry=self.registry,
            session=self._session,
            chunk_size=self._settings.download_chunk_size,
            url_expiry=self._settings.signed_url_expiry,
        )
        LOGGER.info("Connected to bucket '%s'", bucket_name)
        return entries

    def list_folder(self, prefix: str = "") -> list[ListingEntry]:
        return self._require(self._folders).list(prefix)

    def build_tree(self, prefix: str = "") -> dict[str, FolderNode]:
        return self._require(self._folders).build_tree(prefix)

    def folder_size(self, prefix: str) -> int:
        return self._require(self._folders).folder_size(prefix)

    def bucket_metrics(self) -> BucketMetrics:
        return self._require(self._folders).bucket_metrics()

    def create_folder(self, parent: str, name: str) -> str:
        return self._require(self._folders).create_folder(parent, name)

    def delete_item(self, key: str) -> int:
        return self._require(self._folders).delete(key)

    def rename_item(self, key: str, new_name: str, *, is_folder: bool | None = None) -> str:
        return self._require(self._renamer).rename(key, new_name, is_folder=is_folder)

    def upload(
        self,
        payload: UploadPayload,
        destination: str = "",
        *,
        progress_callback: Optional[Callable[[int], None]] = None,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        return self._require(self._uploader).upload(
            payload,
            destination,
            progress_callback=progress_callback,
            cancel_token=cancel_token,
        )

    def upload_file(
        self,
        source_path: str | Path,
        destination: str = "",
        *,
        content_type: str | None = None,
        progress_callback: Optional[Callable[[int], None]] = None,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        path = Path(source_path)
        if not path.is_file():
            raise InvalidInputError(f"'{source_path}' is not a file")
        with path.open("rb") as handle:
            return self.upload(
                UploadPayload(name=path.name, body=handle, content_type=content_type),
                destination,
                progress_callback=progress_callback,
                cancel_token=cancel_token,
            )

    def download_file(
        self,
        key: str,
        size: int | None = None,
        *,
        track: bool = False,
        destination: str | Path | None = None,
        cancel_token: CancellationToken | None = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> FileDownload:
        return self._require(self._downloader).download_file(
            key,
            size,
            track=track,
            destination=destination,
            cancel_token=cancel_token,
            progress_callback=progress_callback,
        )

    def download_folder(
        self,
        folder_key: str,
        *,
        destination: str | Path | None = None,
        cancel_token: CancellationToken | None = None,
        progress_callback: Optional[Callable[[int], None]] = None,
    ) -> FolderArchive:
        return self._require(self._downloader).download_folder(
            folder_key,
            destination=destination,
            cancel_token=cancel_token,
            progress_callback=progress_callback,
        )

    def activity_history(self) -> list[ActivityEntry]:
        return self._require(self._activity_log).read()

    def clear_activity_history(self) -> None:
        self._require(self._activity_log).clear()

    def ai_history(self):
        return self._require(self._ai_history).read()

    def signed_url(self, key: str, expires_in: int | None = None) -> str:
        store = self._require(self._store)
        return store.generate_presigned_url(key, expires_in=expires_in or self._settings.signed_url_expiry)

    def transfers(self) -> list[Transfer]:
        return self.registry.list()

    def cancel_transfer(self, transfer_id: str) -> bool:
        return self.registry.cancel(transfer_id)

    def dismiss_transfer(self, transfer_id: str) -> None:
        self.registry.remove(transfer_id)

    def _require(self, component):
        if component is None:
            raise NotConnectedError("Not connected to a bucket")
        return component

    def _upsert_profile(self, profile: ConnectionProfile) -> None:
        for idx, existing in enumerate(self._profiles):
            if existing.name == profile.name:
                self._profiles[idx] = profile
                break
        else:
            self._profiles.append(profile)
