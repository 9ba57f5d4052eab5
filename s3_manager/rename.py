from __future__ import annotations
"""Rename and move of files and folders as copy-then-delete with rollback.

S3 has no rename primitive. Every affected object is copied to its new key
first; originals are deleted only once every copy succeeded. If a copy
fails, the copies made so far are deleted again and the bucket is left as it
was before the rename started.
"""
from dataclasses import dataclass, field
from enum import Enum
import logging

from botocore.exceptions import BotoCoreError, ClientError

from .folders import PLACEHOLDER_CONTENT_TYPE, PLACEHOLDER_NAME, FolderService
from .models import ObjectKey
from .services import InvalidInputError, ObjectNotFoundError, ObjectStoreService, RenameFailedError

LOGGER = logging.getLogger(__name__)


class RenameState(str, Enum):
    PLANNING = "planning"
    COPYING = "copying"
    ALL_COPIED = "all_copied"
    COPY_FAILED = "copy_failed"
    FINALIZING = "finalizing"
    DONE = "done"


@dataclass(frozen=True)
class CopyStep:
    old_key: str
    new_key: str


@dataclass
class RenameOperation:
    """Progress of a single rename: its plan, state and undo log."""

    source_key: str
    new_name: str
    is_folder: bool
    target_key: str = ""
    state: RenameState = RenameState.PLANNING
    plan: list[CopyStep] = field(default_factory=list)
    copied: list[CopyStep] = field(default_factory=list)
    rollback_failures: list[str] = field(default_factory=list)


class RenameEngine:
    """Runs :class:`RenameOperation` instances against one bucket."""

    def __init__(self, store: ObjectStoreService, folders: FolderService | None = None):
        self._store = store
        self._folders = folders or FolderService(store)

    def rename(self, key: str, new_name: str, *, is_folder: bool | None = None) -> str:
        """Rename the file or folder at ``key`` to ``new_name``; returns the new key."""

        return self.run(self.prepare(key, new_name, is_folder=is_folder)).target_key

    def prepare(self, key: str, new_name: str, *, is_folder: bool | None = None) -> RenameOperation:
        if ObjectKey.parse(key).is_root:
            raise InvalidInputError("A file or folder key is required")
        name = (new_name or "").strip()
        if not name or "/" in name or name in {".", ".."}:
            raise InvalidInputError("New name must be a single non-empty path segment")
        folder = key.endswith("/") if is_folder is None else is_folder
        source = ObjectKey.folder(key) if folder else ObjectKey.parse(key)
        return RenameOperation(
            source_key=str(source),
            new_name=name,
            is_folder=folder,
            target_key=str(source.with_name(name)),
        )

    def run(self, operation: RenameOperation) -> RenameOperation:
        if operation.source_key == operation.target_key:
            operation.state = RenameState.DONE
            return operation

        self._plan(operation)
        if operation.state is RenameState.DONE:
            return operation

        self._check_collisions(operation)
        self._copy_all(operation)
        self._finalize(operation)
        operation.state = RenameState.DONE
        LOGGER.info(
            "Renamed '%s' to '%s' (%d object(s))",
            operation.source_key,
            operation.target_key,
            len(operation.copied),
        )
        return operation

    def _plan(self, operation: RenameOperation) -> None:
        operation.state = RenameState.PLANNING
        if not operation.is_folder:
            operation.plan = [CopyStep(operation.source_key, operation.target_key)]
            return

        objects = self._folders.list_all_recursive(operation.source_key)
        if not objects:
            LOGGER.info(
                "Folder '%s' has no objects; creating placeholder for '%s'",
                operation.source_key,
                operation.target_key,
            )
            self._store.put_object(
                operation.target_key + PLACEHOLDER_NAME,
                b"",
                content_type=PLACEHOLDER_CONTENT_TYPE,
            )
            operation.state = RenameState.DONE
            return

        prefix_length = len(operation.source_key)
        operation.plan = [
            CopyStep(summary.key, operation.target_key + summary.key[prefix_length:])
            for summary in objects
        ]

    def _check_collisions(self, operation: RenameOperation) -> None:
        """Refuse to copy onto keys that already exist; rollback would delete them."""

        if operation.is_folder:
            existing = {summary.key for summary in self._folders.list_all_recursive(operation.target_key)}
        else:
            existing = {operation.target_key} if self._exists(operation.target_key) else set()
        collisions = [step.new_key for step in operation.plan if step.new_key in existing]
        if collisions:
            LOGGER.warning("Rename of '%s' blocked by existing key(s): %s", operation.source_key, collisions)
            kind = "folder" if operation.is_folder else "file"
            raise RenameFailedError(
                f"Failed to rename {kind} '{operation.source_key}': "
                f"'{collisions[0]}' already exists"
            )

    def _exists(self, key: str) -> bool:
        try:
            self._store.get_object_details(key)
        except ObjectNotFoundError:
            return False
        return True

    def _copy_all(self, operation: RenameOperation) -> None:
        operation.state = RenameState.COPYING
        for step in operation.plan:
            try:
                self._copy(step)
            except (BotoCoreError, ClientError, ObjectNotFoundError) as exc:
                LOGGER.error("Copy of '%s' to '%s' failed: %s", step.old_key, step.new_key, exc)
                operation.state = RenameState.COPY_FAILED
                self._rollback(operation)
                kind = "folder" if operation.is_folder else "file"
                raise RenameFailedError(
                    f"Failed to rename {kind} '{operation.source_key}': error during copy operation"
                ) from exc
            operation.copied.append(step)
        operation.state = RenameState.ALL_COPIED

    def _copy(self, step: CopyStep) -> None:
        content_type = None
        metadata = None
        try:
            details = self._store.get_object_details(step.old_key)
        except (BotoCoreError, ClientError):
            LOGGER.debug("Could not determine content type of '%s'; using default", step.old_key)
        else:
            content_type = details.content_type
            metadata = details.metadata
        self._store.copy_object(
            step.old_key,
            step.new_key,
            content_type=content_type,
            metadata=metadata,
        )

    def _rollback(self, operation: RenameOperation) -> None:
        for step in operation.copied:
            try:
                self._store.delete_object(step.new_key)
            except (BotoCoreError, ClientError) as exc:
                LOGGER.error("Could not undo copy '%s': %s", step.new_key, exc)
                operation.rollback_failures.append(step.new_key)

    def _finalize(self, operation: RenameOperation) -> None:
        operation.state = RenameState.FINALIZING
        for step in operation.copied:
            self._store.delete_object(step.old_key)
