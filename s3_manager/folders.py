from __future__ import annotations
"""Folder semantics emulated over the flat key space of a bucket."""
import logging

from .models import (
    ENTRY_FILE,
    ENTRY_FOLDER,
    BucketMetrics,
    FolderNode,
    ListingEntry,
    ObjectKey,
    ObjectSummary,
)
from .services import InvalidInputError, ObjectStoreService

LOGGER = logging.getLogger(__name__)

HISTORY_LOG_KEY = "history-log.json"
AI_HISTORY_KEY = "ai-history-log.json"
SYSTEM_KEYS = frozenset({HISTORY_LOG_KEY, AI_HISTORY_KEY})
PLACEHOLDER_NAME = ".placeholder"
PLACEHOLDER_CONTENT_TYPE = "application/x-empty"


def normalize_prefix(prefix: str | None) -> str:
    """Return ``prefix`` without a leading slash and ending with ``/`` unless empty."""

    return str(ObjectKey.folder(prefix or ""))


def is_system_key(key: str) -> bool:
    return key.rsplit("/", 1)[-1] in SYSTEM_KEYS


def is_placeholder(key: str) -> bool:
    return key.endswith("/") or key.rsplit("/", 1)[-1] == PLACEHOLDER_NAME


def _sort_key(entry: ListingEntry) -> tuple[str, str]:
    return (entry.name.casefold(), entry.name)


class FolderService:
    """Lists, enumerates and reshapes the bucket as a folder hierarchy."""

    def __init__(self, store: ObjectStoreService):
        self._store = store

    def list(self, prefix: str = "") -> list[ListingEntry]:
        """Return the immediate children of ``prefix``: folders first, then files."""

        normalized = normalize_prefix(prefix)
        folders: dict[str, ListingEntry] = {}
        files: list[ListingEntry] = []
        token: str | None = None
        while True:
            page = self._store.list_objects(
                normalized,
                delimiter="/",
                continuation_token=token,
            )
            for common_prefix in page.common_prefixes:
                if common_prefix in folders:
                    continue
                folders[common_prefix] = ListingEntry(
                    key=common_prefix,
                    name=ObjectKey.parse(common_prefix).name,
                    type=ENTRY_FOLDER,
                )
            for summary in page.entries:
                name = summary.key[len(normalized):]
                if not name or is_system_key(summary.key) or is_placeholder(summary.key):
                    continue
                files.append(
                    ListingEntry(
                        key=summary.key,
                        name=summary.name,
                        type=ENTRY_FILE,
                        last_modified=summary.last_modified,
                        size=summary.size,
                    )
                )
            token = page.next_token
            if not token:
                break

        LOGGER.debug(
            "Listed '%s': %d folder(s), %d file(s)",
            normalized,
            len(folders),
            len(files),
        )
        return sorted(folders.values(), key=_sort_key) + sorted(files, key=_sort_key)

    def list_all_recursive(self, prefix: str = "") -> list[ObjectSummary]:
        """Return every object under ``prefix`` regardless of depth."""

        objects: list[ObjectSummary] = []
        token: str | None = None
        page_count = 0
        while True:
            page = self._store.list_objects(prefix, continuation_token=token)
            objects.extend(page.entries)
            page_count += 1
            token = page.next_token
            if not token:
                break
        LOGGER.debug("Enumerated %d object(s) under '%s' in %d page(s)", len(objects), prefix, page_count)
        return objects

    def build_tree(self, prefix: str = "") -> dict[str, FolderNode]:
        """Build a nested folder structure with bottom-up folder sizes.

        Placeholders make their folder appear but never show up as files.
        """

        tree: dict[str, FolderNode] = {}
        for summary in self.list_all_recursive(prefix):
            if is_system_key(summary.key):
                continue
            parts = ObjectKey.parse(summary.key).segments
            level = tree
            for index, part in enumerate(parts[:-1]):
                node = level.get(part)
                if node is None:
                    node = FolderNode(
                        name=part,
                        key="/".join(parts[: index + 1]) + "/",
                        type=ENTRY_FOLDER,
                    )
                    level[part] = node
                level = node.children
            if not parts:
                continue
            leaf = parts[-1]
            if is_placeholder(summary.key):
                if summary.key.endswith("/") and leaf not in level:
                    level[leaf] = FolderNode(name=leaf, key=summary.key, type=ENTRY_FOLDER)
                continue
            level[leaf] = FolderNode(
                name=leaf,
                key=summary.key,
                type=ENTRY_FILE,
                size=summary.size,
                last_modified=summary.last_modified,
            )

        _aggregate_sizes(tree)
        return tree

    def folder_size(self, prefix: str) -> int:
        return sum(summary.size for summary in self.list_all_recursive(normalize_prefix(prefix)))

    def bucket_metrics(self) -> BucketMetrics:
        metrics = BucketMetrics()
        for summary in self.list_all_recursive(""):
            if is_system_key(summary.key) or is_placeholder(summary.key):
                continue
            metrics.total_size += summary.size
            metrics.total_objects += 1
        return metrics

    def create_folder(self, parent: str, name: str) -> str:
        """Create an empty folder by writing a placeholder object; returns the folder key."""

        folder_name = (name or "").strip().strip("/")
        if not folder_name or "/" in folder_name:
            raise InvalidInputError("Folder name must be a single non-empty path segment")
        folder = ObjectKey.folder(parent or "").child(folder_name, is_folder=True)
        folder_key = str(folder)
        self._store.put_object(
            folder_key + PLACEHOLDER_NAME,
            b"",
            content_type=PLACEHOLDER_CONTENT_TYPE,
        )
        LOGGER.info("Created folder '%s'", folder_key)
        return folder_key

    def delete(self, key: str) -> int:
        """Delete a file, or every object below a folder key; returns the number removed."""

        if not key:
            raise InvalidInputError("Refusing to delete the bucket root")
        if not key.endswith("/"):
            self._store.delete_object(key)
            return 1
        removed = 0
        for summary in self.list_all_recursive(key):
            if is_system_key(summary.key):
                continue
            self._store.delete_object(summary.key)
            removed += 1
        LOGGER.info("Deleted %d object(s) under '%s'", removed, key)
        return removed


def _aggregate_sizes(level: dict[str, FolderNode]) -> int:
    total = 0
    for node in level.values():
        if node.type == ENTRY_FOLDER:
            node.size = _aggregate_sizes(node.children)
        total += node.size
    return total
