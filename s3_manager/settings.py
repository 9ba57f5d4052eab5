from __future__ import annotations
"""Application settings persistence helpers."""

from dataclasses import asdict, dataclass
import json
import logging
from pathlib import Path

LOGGER = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class AppSettings:
    """Simple container for persistent app settings."""

    upload_part_size: int = 5 * 1024 * 1024
    upload_max_concurrency: int = 4
    download_chunk_size: int = 64 * 1024
    signed_url_expiry: int = 3600
    transfer_auto_remove_delay: float = 3.0
    max_attempts: int = 3
    log_level: str = "WARNING"
    remember_last_connection: bool = True
    last_connection: str = ""


_POSITIVE_INTS = (
    "upload_part_size",
    "upload_max_concurrency",
    "download_chunk_size",
    "signed_url_expiry",
    "max_attempts",
)


class SettingsStorage:
    """JSON-backed persistence for :class:`AppSettings`."""

    def __init__(self, storage_path: str | Path | None = None):
        if storage_path is None:
            storage_path = Path.home() / ".pys3fm_settings.json"
        self._path = Path(storage_path)

    def load(self) -> AppSettings:
        if not self._path.exists():
            return AppSettings()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            LOGGER.warning("Ignoring unreadable settings file %s", self._path)
            return AppSettings()
        if not isinstance(data, dict):
            return AppSettings()

        defaults = AppSettings()
        values = {}
        for name in _POSITIVE_INTS:
            values[name] = _positive_int(data.get(name), getattr(defaults, name))
        delay = data.get("transfer_auto_remove_delay", defaults.transfer_auto_remove_delay)
        try:
            delay_value = float(delay)
        except (TypeError, ValueError):
            delay_value = defaults.transfer_auto_remove_delay
        values["transfer_auto_remove_delay"] = (
            delay_value if delay_value >= 0 else defaults.transfer_auto_remove_delay
        )
        level = data.get("log_level")
        values["log_level"] = level.upper() if isinstance(level, str) and level.upper() in LOG_LEVELS else defaults.log_level
        remember = data.get("remember_last_connection")
        values["remember_last_connection"] = remember if isinstance(remember, bool) else defaults.remember_last_connection
        last = data.get("last_connection")
        values["last_connection"] = last if isinstance(last, str) else ""
        return AppSettings(**values)

    def save(self, settings: AppSettings) -> None:
        payload = asdict(settings)
        for name in _POSITIVE_INTS:
            payload[name] = max(int(payload[name]), 1)
        payload["transfer_auto_remove_delay"] = max(float(settings.transfer_auto_remove_delay), 0.0)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError:
            # Persist best-effort; ignore filesystem issues.
            LOGGER.warning("Unable to write settings file %s", self._path)
            return


def _positive_int(value, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default
