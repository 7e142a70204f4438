from __future__ import annotations
"""Connection profile models and persistence."""
from dataclasses import dataclass
import json
from pathlib import Path
from urllib.parse import urlsplit

import keyring
from keyring.errors import KeyringError

KEYRING_SERVICE = "pys3tree"


@dataclass
class ConnectionProfile:
    """Represents a saved S3-compatible connection."""

    name: str
    endpoint_url: str
    access_key: str
    secret_key: str
    region: str = "us-east-1"
    force_path_style: bool = True
    custom_domain: str = ""


def validate_profile(profile: ConnectionProfile) -> list[str]:
    """Return human-readable problems with ``profile`` (empty when usable)."""

    errors: list[str] = []
    if not profile.endpoint_url:
        errors.append("Endpoint URL is required")
    if not profile.access_key:
        errors.append("Access Key ID is required")
    if not profile.secret_key:
        errors.append("Secret Access Key is required")
    if profile.endpoint_url:
        parts = urlsplit(profile.endpoint_url)
        if parts.scheme != "https" or not parts.netloc:
            errors.append("Endpoint URL must be a valid HTTPS URL")
    return errors


class KeychainStore:
    """Encapsulates OS keychain access for secrets."""

    def __init__(self, service_name: str = KEYRING_SERVICE):
        self._service_name = service_name

    def get_secret(self, profile_name: str) -> str:
        if not profile_name:
            return ""
        try:
            return keyring.get_password(self._service_name, profile_name) or ""
        except KeyringError:
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
            return

    def delete_secret(self, profile_name: str) -> None:
        if not profile_name:
            return
        try:
            keyring.delete_password(self._service_name, profile_name)
        except KeyringError:
            return


class ProfileStorage:
    """JSON-backed store for connection profiles; secrets live in the keychain."""

    def __init__(self, storage_path: str | Path | None = None, keychain: KeychainStore | None = None):
        if storage_path is None:
            storage_path = Path.home() / ".pys3tree_connections.json"
        self._path = Path(storage_path)
        self._keychain = keychain or KeychainStore()

    def load(self) -> list[ConnectionProfile]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return []
        if not isinstance(data, list):
            return []

        profiles: list[ConnectionProfile] = []
        sanitized: list[dict[str, object]] = []
        saw_plaintext = False
        for entry in data:
            try:
                name = entry["name"]
                secret_key = entry.get("secret_key", "")
                if secret_key:
                    saw_plaintext = True
                    self._keychain.set_secret(name, secret_key)
                else:
                    secret_key = self._keychain.get_secret(name)
                profile = ConnectionProfile(
                    name=name,
                    endpoint_url=entry["endpoint_url"],
                    access_key=entry["access_key"],
                    secret_key=secret_key,
                    region=str(entry.get("region") or ConnectionProfile.region),
                    force_path_style=bool(entry.get("force_path_style", ConnectionProfile.force_path_style)),
                    custom_domain=str(entry.get("custom_domain") or ""),
                )
            except (KeyError, TypeError, AttributeError):
                continue
            profiles.append(profile)
            sanitized.append(self._serialize(profile))
        if saw_plaintext:
            self._write_data(sanitized)
        return profiles

    def save(self, profiles: list[ConnectionProfile]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = []
        for profile in profiles:
            self._keychain.set_secret(profile.name, profile.secret_key)
            data.append(self._serialize(profile))
        existing_names = self._load_profile_names()
        current_names = {profile.name for profile in profiles}
        for name in existing_names - current_names:
            self._keychain.delete_secret(name)
        self._write_data(data)

    @staticmethod
    def _serialize(profile: ConnectionProfile) -> dict[str, object]:
        return {
            "name": profile.name,
            "endpoint_url": profile.endpoint_url,
            "access_key": profile.access_key,
            "region": profile.region,
            "force_path_style": profile.force_path_style,
            "custom_domain": profile.custom_domain,
        }

    def _load_profile_names(self) -> set[str]:
        if not self._path.exists():
            return set()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return set()
        names = set()
        for entry in data if isinstance(data, list) else []:
            name = entry.get("name") if isinstance(entry, dict) else None
            if isinstance(name, str) and name:
                names.add(name)
        return names

    def _write_data(self, data: list[dict[str, object]]) -> None:
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")
