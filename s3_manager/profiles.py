from __future__ import annotations
"""Connection profile models and persistence."""
from dataclasses import dataclass
import json
import logging
from pathlib import Path

import keyring
from keyring.errors import KeyringError

LOGGER = logging.getLogger(__name__)


@dataclass
class ConnectionProfile:
    """A saved connection to one bucket."""

    name: str
    endpoint_url: str
    access_key: str
    secret_key: str
    bucket_name: str = ""
    region_name: str = ""

    def public_fields(self) -> dict[str, str]:
        """Everything but the secret, which lives in the OS keychain."""

        return {
            "name": self.name,
            "endpoint_url": self.endpoint_url,
            "access_key": self.access_key,
            "bucket_name": self.bucket_name,
            "region_name": self.region_name,
        }


class KeychainStore:
    """Encapsulates OS keychain access for secrets."""

    def __init__(self, service_name: str = "pys3fm"):
        self._service_name = service_name

    def get_secret(self, profile_name: str) -> str:
        if not profile_name:
            return ""
        try:
            return keyring.get_password(self._service_name, profile_name) or ""
        except KeyringError:
            LOGGER.warning("Keychain lookup failed for profile '%s'", profile_name)
            return ""

    def set_secret(self, profile_name: str, secret_key: str) -> None:
        if not profile_name:
            return
        if not secret_key:
            self.delete_secret(profile_name)
            return
        try:
            keyring.set_password(self._service_name, profile_name, secret_key)
        except KeyringError:
            LOGGER.warning("Unable to store secret for profile '%s'", profile_name)

    def delete_secret(self, profile_name: str) -> None:
        if not profile_name:
            return
        try:
            keyring.delete_password(self._service_name, profile_name)
        except KeyringError:
            return


class ProfileStorage:
    """JSON-backed store for connection profiles; secrets go to the keychain."""

    def __init__(self, storage_path: str | Path | None = None):
        if storage_path is None:
            storage_path = Path.home() / ".pys3fm_connections.json"
        self._path = Path(storage_path)
        self._keychain = KeychainStore()

    def load(self) -> list[ConnectionProfile]:
        data = self._read_data()
        profiles: list[ConnectionProfile] = []
        saw_plaintext = False
        for entry in data:
            try:
                name = entry["name"]
                endpoint_url = entry["endpoint_url"]
                access_key = entry["access_key"]
            except (KeyError, TypeError):
                continue
            secret_key = entry.get("secret_key", "")
            if secret_key:
                saw_plaintext = True
                self._keychain.set_secret(name, secret_key)
            else:
                secret_key = self._keychain.get_secret(name)
            profiles.append(
                ConnectionProfile(
                    name=name,
                    endpoint_url=endpoint_url,
                    access_key=access_key,
                    secret_key=secret_key,
                    bucket_name=str(entry.get("bucket_name") or ""),
                    region_name=str(entry.get("region_name") or ""),
                )
            )
        if saw_plaintext:
            LOGGER.info("Moved plaintext secrets from %s into the keychain", self._path)
            self._write_data([profile.public_fields() for profile in profiles])
        return profiles

    def save(self, profiles: list[ConnectionProfile]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        for profile in profiles:
            self._keychain.set_secret(profile.name, profile.secret_key)
        existing_names = {
            entry.get("name") for entry in self._read_data() if isinstance(entry, dict)
        }
        current_names = {profile.name for profile in profiles}
        for name in existing_names - current_names:
            if isinstance(name, str) and name:
                self._keychain.delete_secret(name)
        self._write_data([profile.public_fields() for profile in profiles])

    def _read_data(self) -> list:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return []
        return data if isinstance(data, list) else []

    def _write_data(self, data: list[dict[str, str]]) -> None:
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")
