from __future__ import annotations
"""Activity and AI-analysis history documents stored inside the bucket."""
from datetime import datetime, timezone
import json
import logging
import threading
from typing import Any, Callable

from botocore.exceptions import BotoCoreError, ClientError

from .folders import AI_HISTORY_KEY, HISTORY_LOG_KEY
from .models import ActivityEntry, AIAnalysis, AIHistory
from .services import ObjectNotFoundError, ObjectStoreService

LOGGER = logging.getLogger(__name__)

ACTION_UPLOAD = "Upload"
ACTION_DOWNLOAD = "Download"
AI_HISTORY_LIMIT = 10
JSON_CONTENT_TYPE = "application/json"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ActivityLog:
    """Newest-first JSON array of :class:`ActivityEntry` kept at ``history-log.json``.

    Appends read the whole document, prepend in memory and write it back.
    Writers in this process are serialized; two clients appending at the same
    moment can still overwrite each other's entry.
    """

    def __init__(
        self,
        store: ObjectStoreService,
        *,
        key: str = HISTORY_LOG_KEY,
        clock: Callable[[], str] = _utc_now,
    ):
        self._store = store
        self._key = key
        self._clock = clock
        self._lock = threading.Lock()

    def read(self) -> list[ActivityEntry]:
        """Return the log, creating an empty one when missing.

        Read failures degrade to an empty log.
        """

        try:
            data = json.loads(self._store.get_object(self._key).read().decode("utf-8"))
        except ObjectNotFoundError:
            LOGGER.info("Activity log '%s' missing; initializing", self._key)
            try:
                self._write([])
            except (BotoCoreError, ClientError):
                LOGGER.exception("Unable to initialize activity log")
            return []
        except (BotoCoreError, ClientError, ValueError):
            LOGGER.exception("Unable to read activity log '%s'", self._key)
            return []
        if not isinstance(data, list):
            LOGGER.warning("Activity log '%s' is not a JSON array; ignoring contents", self._key)
            return []
        return [ActivityEntry.from_dict(item) for item in data if isinstance(item, dict)]

    def append(
        self,
        *,
        action: str,
        item_name: str,
        size: int | None = 0,
        file_count: int | None = 1,
    ) -> ActivityEntry:
        """Prepend a new entry; write failures propagate to the caller."""

        entry = ActivityEntry(
            date=self._clock(),
            action=action,
            item_name=item_name,
            size=int(size or 0),
            file_count=int(file_count or 1),
        )
        with self._lock:
            entries = self.read()
            self._write([entry] + entries)
        LOGGER.debug("Logged %s of '%s'", action, item_name)
        return entry

    def clear(self) -> None:
        with self._lock:
            self._write([])

    def _write(self, entries: list[ActivityEntry]) -> None:
        payload = json.dumps([entry.to_dict() for entry in entries])
        self._store.put_object(self._key, payload.encode("utf-8"), content_type=JSON_CONTENT_TYPE)


class AIHistoryStore:
    """The ``ai-history-log.json`` document holding the latest AI reports."""

    def __init__(
        self,
        store: ObjectStoreService,
        *,
        key: str = AI_HISTORY_KEY,
        clock: Callable[[], str] = _utc_now,
    ):
        self._store = store
        self._key = key
        self._clock = clock

    def read(self) -> AIHistory:
        try:
            data = json.loads(self._store.get_object(self._key).read().decode("utf-8"))
        except ObjectNotFoundError:
            try:
                self._write(AIHistory())
            except (BotoCoreError, ClientError):
                LOGGER.exception("Unable to initialize AI history")
            return AIHistory()
        except (BotoCoreError, ClientError, ValueError):
            LOGGER.exception("Unable to read AI history '%s'", self._key)
            return AIHistory()
        if not isinstance(data, dict):
            return AIHistory()
        history = [_analysis(item) for item in data.get("history") or [] if isinstance(item, dict)]
        last = data.get("lastAnalysis")
        return AIHistory(
            last_analysis=_analysis(last) if isinstance(last, dict) else None,
            history=history,
        )

    def record(self, report: Any) -> AIAnalysis:
        entry = AIAnalysis(timestamp=self._clock(), report=report)
        current = self.read()
        updated = AIHistory(
            last_analysis=entry,
            history=([entry] + current.history)[:AI_HISTORY_LIMIT],
        )
        self._write(updated)
        return entry

    def _write(self, history: AIHistory) -> None:
        payload = json.dumps(history.to_dict())
        self._store.put_object(self._key, payload.encode("utf-8"), content_type=JSON_CONTENT_TYPE)


def _analysis(data: dict[str, Any]) -> AIAnalysis:
    return AIAnalysis(timestamp=str(data.get("timestamp", "")), report=data.get("report"))
