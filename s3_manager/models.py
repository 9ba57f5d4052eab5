from __future__ import annotations
"""Data models representing bucket contents, transfers and activity."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, BinaryIO, Optional, Union

ENTRY_FILE = "file"
ENTRY_FOLDER = "folder"


@dataclass(frozen=True)
class ObjectKey:
    """A ``/``-delimited object key split into its path segments.

    ``is_folder`` records whether the textual key ends with the delimiter.
    The empty key (no segments) is the bucket root.
    """

    segments: tuple[str, ...] = ()
    is_folder: bool = False

    @classmethod
    def parse(cls, raw: str) -> "ObjectKey":
        text = (raw or "").lstrip("/")
        segments = tuple(part for part in text.split("/") if part)
        if not segments:
            return cls()
        return cls(segments=segments, is_folder=text.endswith("/"))

    @classmethod
    def folder(cls, raw: str) -> "ObjectKey":
        parsed = cls.parse(raw)
        if not parsed.segments:
            return parsed
        return cls(segments=parsed.segments, is_folder=True)

    @property
    def is_root(self) -> bool:
        return not self.segments

    @property
    def name(self) -> str:
        return self.segments[-1] if self.segments else ""

    @property
    def parent(self) -> "ObjectKey":
        if not self.segments:
            return self
        return ObjectKey(segments=self.segments[:-1], is_folder=len(self.segments) > 1)

    def child(self, name: str, *, is_folder: bool = False) -> "ObjectKey":
        return ObjectKey(segments=self.segments + (name,), is_folder=is_folder)

    def with_name(self, name: str) -> "ObjectKey":
        if self.is_root:
            raise ValueError("The bucket root cannot be renamed")
        return self.parent.child(name, is_folder=self.is_folder)

    def __str__(self) -> str:
        if not self.segments:
            return ""
        joined = "/".join(self.segments)
        return f"{joined}/" if self.is_folder else joined


@dataclass
class ObjectSummary:
    """One object as returned by a bucket listing."""

    key: str
    size: int = 0
    last_modified: Optional[datetime] = None
    etag: Optional[str] = None

    @property
    def name(self) -> str:
        return self.key.rsplit("/", 1)[-1]


@dataclass
class ObjectListingPage:
    """A single ``ListObjectsV2`` page."""

    entries: list[ObjectSummary] = field(default_factory=list)
    common_prefixes: list[str] = field(default_factory=list)
    next_token: Optional[str] = None


@dataclass
class StoredObject:
    """Body and metadata returned when reading an object."""

    key: str
    body: Any
    content_type: Optional[str] = None
    size: Optional[int] = None

    def read(self) -> bytes:
        data = self.body.read() if hasattr(self.body, "read") else self.body
        return bytes(data or b"")


@dataclass
class ObjectDetails:
    """Metadata about a single S3 object."""

    bucket: str
    key: str
    size: Optional[int] = None
    last_modified: Optional[datetime] = None
    storage_class: Optional[str] = None
    etag: Optional[str] = None
    content_type: Optional[str] = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class ListingEntry:
    """A file or folder shown when browsing one level of the bucket."""

    key: str
    name: str
    type: str
    last_modified: Optional[datetime] = None
    size: Optional[int] = None

    @property
    def is_folder(self) -> bool:
        return self.type == ENTRY_FOLDER


@dataclass
class FolderNode:
    """A node of the nested folder tree built from a recursive listing."""

    name: str
    key: str
    type: str
    size: int = 0
    last_modified: Optional[datetime] = None
    children: dict[str, "FolderNode"] = field(default_factory=dict)


@dataclass
class BucketMetrics:
    total_size: int = 0
    total_objects: int = 0

    @property
    def storage_gb(self) -> float:
        return self.total_size / (1024 * 1024 * 1024)


@dataclass
class UploadPayload:
    """A named binary payload to be uploaded."""

    name: str
    body: Union[bytes, bytearray, BinaryIO]
    content_type: Optional[str] = None


class TransferType(str, Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"


class TransferStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not TransferStatus.IN_PROGRESS


@dataclass
class Transfer:
    """Snapshot of an upload or download tracked by the transfer registry."""

    id: str
    name: str
    type: TransferType
    status: TransferStatus = TransferStatus.IN_PROGRESS
    progress: int = 0
    loaded: int = 0
    total: int = 0
    file_count: Optional[int] = None
    error: Optional[str] = None
    cancel_token: Any = field(default=None, repr=False, compare=False)


@dataclass
class ActivityEntry:
    """One record of the bucket activity log."""

    date: str
    action: str
    item_name: str
    size: int = 0
    file_count: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "action": self.action,
            "itemName": self.item_name,
            "size": self.size,
            "fileCount": self.file_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActivityEntry":
        return cls(
            date=str(data.get("date", "")),
            action=str(data.get("action", "")),
            item_name=str(data.get("itemName", "")),
            size=int(data.get("size") or 0),
            file_count=int(data.get("fileCount") or 1),
        )


@dataclass
class AIAnalysis:
    timestamp: str
    report: Any

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "report": self.report}


@dataclass
class AIHistory:
    """Contents of the AI analysis history document."""

    last_analysis: Optional[AIAnalysis] = None
    history: list[AIAnalysis] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastAnalysis": self.last_analysis.to_dict() if self.last_analysis else None,
            "history": [entry.to_dict() for entry in self.history],
        }
