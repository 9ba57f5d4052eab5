from __future__ import annotations
"""In-memory registry of uploads and downloads and their cancellation tokens."""
from dataclasses import replace
import itertools
import logging
import threading
from typing import Callable, Optional

from .models import Transfer, TransferStatus, TransferType
from .services import TransferCancelledError

LOGGER = logging.getLogger(__name__)

DEFAULT_AUTO_REMOVE_DELAY = 3.0

Listener = Callable[[list[Transfer]], None]
Scheduler = Callable[[float, Callable[[], None]], None]


def _timer_scheduler(delay: float, func: Callable[[], None]) -> None:
    timer = threading.Timer(delay, func)
    timer.daemon = True
    timer.start()


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a transfer.

    Callbacks registered with :meth:`add_callback` run once on cancellation so
    an in-flight request can be aborted.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def __call__(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for callback in callbacks:
            try:
                callback()
            except Exception:  # pragma: no cover - best effort abort
                LOGGER.exception("Cancellation callback failed")

    def add_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def raise_if_cancelled(self, message: str = "Transfer cancelled by user") -> None:
        if self._event.is_set():
            raise TransferCancelledError(message)


class TransferRegistry:
    """Owns every transfer record; engines refer to transfers by id only."""

    def __init__(
        self,
        *,
        auto_remove_delay: float | None = DEFAULT_AUTO_REMOVE_DELAY,
        scheduler: Scheduler | None = None,
    ):
        self._transfers: dict[str, Transfer] = {}
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._listeners: list[Listener] = []
        self._auto_remove_delay = auto_remove_delay
        self._scheduler = scheduler or _timer_scheduler

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for change notifications; returns an unsubscribe function."""

        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def add(
        self,
        *,
        name: str,
        type: TransferType,
        total: int = 0,
        cancel_token: CancellationToken | None = None,
        file_count: int | None = None,
    ) -> str:
        with self._lock:
            transfer_id = str(next(self._ids))
            self._transfers[transfer_id] = Transfer(
                id=transfer_id,
                name=name,
                type=TransferType(type),
                total=max(int(total or 0), 0),
                file_count=file_count,
                cancel_token=cancel_token,
            )
        LOGGER.debug("Registered %s transfer %s for '%s'", TransferType(type).value, transfer_id, name)
        self._notify()
        return transfer_id

    def get(self, transfer_id: str) -> Transfer:
        with self._lock:
            return replace(self._transfers[transfer_id])

    def list(self) -> list[Transfer]:
        with self._lock:
            return [replace(transfer) for transfer in self._transfers.values()]

    def update_progress(self, transfer_id: str, loaded: int, total: int, *, ceiling: int = 100) -> None:
        """Record ``loaded`` of ``total`` bytes, mapped onto ``0..ceiling`` percent."""

        with self._lock:
            transfer = self._active(transfer_id)
            if transfer is None:
                return
            transfer.loaded = max(int(loaded), 0)
            transfer.total = max(int(total), 0)
            if transfer.total > 0:
                percent = round(transfer.loaded / transfer.total * ceiling)
            else:
                percent = 0
            transfer.progress = _monotonic(transfer.progress, percent)
        self._notify()

    def set_meta(self, transfer_id: str, **fields) -> None:
        """Patch arbitrary fields of an in-progress transfer."""

        with self._lock:
            transfer = self._active(transfer_id)
            if transfer is None:
                return
            for name, value in fields.items():
                if name == "id" or not hasattr(transfer, name):
                    raise AttributeError(f"Transfer has no field '{name}'")
                if name == "progress":
                    value = _monotonic(transfer.progress, value)
                setattr(transfer, name, value)
        self._notify()

    def complete(self, transfer_id: str) -> None:
        self._finish(transfer_id, TransferStatus.COMPLETED, progress=100)

    def error(self, transfer_id: str, err: BaseException | str) -> None:
        self._finish(transfer_id, TransferStatus.ERROR, error=str(err) or type(err).__name__)

    def cancel(self, transfer_id: str) -> bool:
        """Trigger the cancellation handle and mark the transfer cancelled."""

        with self._lock:
            transfer = self._transfers.get(transfer_id)
            if transfer is None or transfer.status.is_terminal:
                return False
            token = transfer.cancel_token
        if token is not None:
            token.cancel()
        self._finish(transfer_id, TransferStatus.CANCELLED, progress=0)
        return True

    def remove(self, transfer_id: str) -> None:
        with self._lock:
            removed = self._transfers.pop(transfer_id, None)
        if removed is not None:
            self._notify()

    def _finish(self, transfer_id: str, status: TransferStatus, **fields) -> None:
        with self._lock:
            transfer = self._active(transfer_id)
            if transfer is None:
                return
            transfer.status = status
            for name, value in fields.items():
                setattr(transfer, name, value)
        LOGGER.debug("Transfer %s finished with status %s", transfer_id, status.value)
        self._notify()
        if self._auto_remove_delay is not None:
            self._scheduler(self._auto_remove_delay, lambda: self.remove(transfer_id))

    def _active(self, transfer_id: str) -> Optional[Transfer]:
        transfer = self._transfers.get(transfer_id)
        if transfer is None:
            LOGGER.debug("Ignoring update for unknown transfer %s", transfer_id)
            return None
        if transfer.status.is_terminal:
            return None
        return transfer

    def _notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
            snapshot = [replace(transfer) for transfer in self._transfers.values()]
        for listener in listeners:
            listener(snapshot)


def _monotonic(current: int, candidate) -> int:
    value = max(0, min(100, int(round(candidate))))
    return max(current, value)
