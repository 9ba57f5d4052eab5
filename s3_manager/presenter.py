from __future__ import annotations
"""View-agnostic presenter that wraps controller operations."""
from dataclasses import replace
import logging
from pathlib import Path
import threading
from typing import Callable

from botocore.exceptions import BotoCoreError, ClientError

from .controller import FileManagerController
from .downloads import FileDownload, FolderArchive
from .models import ActivityEntry, ListingEntry, Transfer
from .profiles import ConnectionProfile
from .services import TransferCancelledError
from .settings import AppSettings, SettingsStorage
from .transfers import CancellationToken
from .ui_utils import PackageInfo, load_package_info


DispatchFn = Callable[[Callable[[], None]], None]
SuccessFn = Callable[[object], None]
ErrorFn = Callable[[str], None]
DoneFn = Callable[[], None]

LOGGER = logging.getLogger(__name__)


def _format_error(exc: Exception) -> str:
    return str(exc) or type(exc).__name__


class FileManagerPresenter:
    """Runs background operations and returns results via callbacks."""

    def __init__(
        self,
        *,
        controller: FileManagerController | None = None,
        settings_storage: SettingsStorage | None = None,
        dispatch: DispatchFn | None = None,
    ) -> None:
        self._settings_storage = settings_storage or SettingsStorage()
        self._settings = self._settings_storage.load()
        self._controller = controller or FileManagerController(settings=self._settings)
        self._dispatch = dispatch or (lambda func: func())
        self._package_info = load_package_info()

    @property
    def settings(self) -> AppSettings:
        return replace(self._settings)

    @property
    def package_info(self) -> PackageInfo:
        return self._package_info

    @property
    def is_connected(self) -> bool:
        return self._controller.is_connected

    @property
    def selected_profile(self) -> str | None:
        return self._controller.selected_profile

    def save_settings(self, settings: AppSettings) -> None:
        self._settings = settings
        self._settings_storage.save(settings)

    def update_last_connection(self, connection: str) -> None:
        if not self._settings.remember_last_connection:
            return
        self._settings = replace(self._settings, last_connection=connection or "")
        self._settings_storage.save(self._settings)

    def maybe_auto_connect_profile(self) -> str | None:
        if not self._settings.remember_last_connection:
            return None
        return self._settings.last_connection or None

    def list_profiles(self) -> list[ConnectionProfile]:
        return self._controller.list_profiles()

    def save_profile(self, profile: ConnectionProfile, *, original_name: str | None = None) -> None:
        self._controller.save_profile(profile, original_name=original_name)

    def delete_profile(self, name: str) -> None:
        self._controller.delete_profile(name)

    def subscribe_transfers(self, listener: Callable[[list[Transfer]], None]) -> Callable[[], None]:
        """Forward registry changes to ``listener`` through the dispatcher."""

        return self._controller.registry.subscribe(
            lambda transfers: self._dispatch(lambda: listener(transfers))
        )

    def cancel_transfer(self, transfer_id: str) -> bool:
        LOGGER.debug("Cancelling transfer %s", transfer_id)
        return self._controller.cancel_transfer(transfer_id)

    def dismiss_transfer(self, transfer_id: str) -> None:
        self._controller.dismiss_transfer(transfer_id)

    def connect(
        self,
        *,
        profile_name: str,
        on_success: Callable[[list[ListingEntry]], None],
        on_error: ErrorFn,
        on_done: DoneFn | None = None,
    ) -> None:
        LOGGER.debug("Connecting using profile '%s'", profile_name)

        def work():
            entries = self._controller.connect_with_profile(profile_name)
            self.update_last_connection(profile_name)
            return entries

        self._run(
            work,
            description=f"connect with profile '{profile_name}'",
            on_success=on_success,
            on_error=on_error,
            on_done=on_done,
        )

    def list_folder(
        self,
        *,
        prefix: str,
        on_success: Callable[[list[ListingEntry]], None],
        on_error: ErrorFn,
        on_done: DoneFn | None = None,
    ) -> None:
        self._run(
            lambda: self._controller.list_folder(prefix),
            description=f"list '{prefix}'",
            on_success=on_success,
            on_error=on_error,
            on_done=on_done,
        )

    def create_folder(self, *, parent: str, name: str, on_success: SuccessFn, on_error: ErrorFn) -> None:
        self._run(
            lambda: self._controller.create_folder(parent, name),
            description=f"create folder '{name}'",
            on_success=on_success,
            on_error=on_error,
        )

    def delete_item(self, *, key: str, on_success: SuccessFn, on_error: ErrorFn) -> None:
        self._run(
            lambda: self._controller.delete_item(key),
            description=f"delete '{key}'",
            on_success=on_success,
            on_error=on_error,
        )

    def rename_item(
        self,
        *,
        key: str,
        new_name: str,
        on_success: Callable[[str], None],
        on_error: ErrorFn,
        on_done: DoneFn | None = None,
    ) -> None:
        self._run(
            lambda: self._controller.rename_item(key, new_name),
            description=f"rename '{key}'",
            on_success=on_success,
            on_error=on_error,
            on_done=on_done,
        )

    def upload_file(
        self,
        *,
        source_path: str | Path,
        destination: str = "",
        on_progress: Callable[[int], None] | None = None,
        cancel_token: CancellationToken | None = None,
        on_success: Callable[[str], None] | None = None,
        on_error: ErrorFn | None = None,
        on_cancelled: ErrorFn | None = None,
        on_done: DoneFn | None = None,
    ) -> None:
        progress_callback = None
        if on_progress:
            progress_callback = lambda percent: self._dispatch(lambda: on_progress(percent))

        self._run(
            lambda: self._controller.upload_file(
                source_path,
                destination,
                progress_callback=progress_callback,
                cancel_token=cancel_token,
            ),
            description=f"upload '{source_path}'",
            on_success=on_success,
            on_error=on_error,
            on_cancelled=on_cancelled,
            on_done=on_done,
        )

    def download_file(
        self,
        *,
        key: str,
        destination: str | Path,
        size: int | None = None,
        cancel_token: CancellationToken | None = None,
        on_success: Callable[[FileDownload], None] | None = None,
        on_error: ErrorFn | None = None,
        on_cancelled: ErrorFn | None = None,
        on_done: DoneFn | None = None,
    ) -> None:
        self._run(
            lambda: self._controller.download_file(
                key,
                size,
                track=True,
                destination=destination,
                cancel_token=cancel_token,
            ),
            description=f"download '{key}'",
            on_success=on_success,
            on_error=on_error,
            on_cancelled=on_cancelled,
            on_done=on_done,
        )

    def download_folder(
        self,
        *,
        folder_key: str,
        destination: str | Path | None = None,
        cancel_token: CancellationToken | None = None,
        on_success: Callable[[FolderArchive], None] | None = None,
        on_error: ErrorFn | None = None,
        on_cancelled: ErrorFn | None = None,
        on_done: DoneFn | None = None,
    ) -> None:
        self._run(
            lambda: self._controller.download_folder(
                folder_key,
                destination=destination,
                cancel_token=cancel_token,
            ),
            description=f"download folder '{folder_key}'",
            on_success=on_success,
            on_error=on_error,
            on_cancelled=on_cancelled,
            on_done=on_done,
        )

    def load_activity_history(
        self,
        *,
        on_success: Callable[[list[ActivityEntry]], None],
        on_error: ErrorFn,
    ) -> None:
        self._run(
            self._controller.activity_history,
            description="load activity history",
            on_success=on_success,
            on_error=on_error,
        )

    def _run(
        self,
        work: Callable[[], object],
        *,
        description: str,
        on_success: SuccessFn | None = None,
        on_error: ErrorFn | None = None,
        on_cancelled: ErrorFn | None = None,
        on_done: DoneFn | None = None,
    ) -> None:
        def task() -> None:
            try:
                result = work()
            except TransferCancelledError as exc:
                LOGGER.info("Cancelled: %s", description)
                if on_cancelled:
                    self._dispatch(lambda: on_cancelled(_format_error(exc)))
            except (BotoCoreError, ClientError) as exc:
                LOGGER.exception("S3 error during %s", description)
                if on_error:
                    self._dispatch(lambda: on_error(_format_error(exc)))
            except Exception as exc:
                LOGGER.exception("Unexpected error during %s", description)
                if on_error:
                    self._dispatch(lambda: on_error(_format_error(exc)))
            else:
                LOGGER.debug("Finished: %s", description)
                if on_success:
                    self._dispatch(lambda: on_success(result))
            finally:
                if on_done:
                    self._dispatch(on_done)

        threading.Thread(target=task, daemon=True).start()
