from __future__ import annotations
"""Application settings persistence helpers."""

from dataclasses import asdict, dataclass
import json
from pathlib import Path

MAX_PAGE_SIZE = 1000
MIN_UPLOAD_CHUNK_SIZE = 5 * 1024 * 1024
DEFAULT_UPLOAD_SIZE = 8 * 1024 * 1024


@dataclass
class AppSettings:
    """Simple container for persistent app settings."""

    page_size: int = 1000
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    delete_batch_size: int = 1000
    filter_page_size: int = 1000
    upload_multipart_threshold: int = DEFAULT_UPLOAD_SIZE
    upload_chunk_size: int = DEFAULT_UPLOAD_SIZE


def _int_setting(data: dict, name: str, *, minimum: int, maximum: int | None = None) -> int:
    default = getattr(AppSettings, name)
    try:
        value = int(data.get(name, default))
    except (TypeError, ValueError):
        return default
    if value < minimum or (maximum is not None and value > maximum):
        return default
    return value


def _float_setting(data: dict, name: str, *, minimum: float) -> float:
    default = getattr(AppSettings, name)
    try:
        value = float(data.get(name, default))
    except (TypeError, ValueError):
        return default
    return value if value >= minimum else default


class SettingsStorage:
    """JSON-backed persistence for :class:`AppSettings`."""

    def __init__(self, storage_path: str | Path | None = None):
        if storage_path is None:
            storage_path = Path.home() / ".pys3tree_settings.json"
        self._path = Path(storage_path)

    def load(self) -> AppSettings:
        if not self._path.exists():
            return AppSettings()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return AppSettings()
        if not isinstance(data, dict):
            return AppSettings()
        return AppSettings(
            page_size=_int_setting(data, "page_size", minimum=1, maximum=MAX_PAGE_SIZE),
            retry_attempts=_int_setting(data, "retry_attempts", minimum=0),
            retry_base_delay=_float_setting(data, "retry_base_delay", minimum=0.0),
            delete_batch_size=_int_setting(data, "delete_batch_size", minimum=1, maximum=MAX_PAGE_SIZE),
            filter_page_size=_int_setting(data, "filter_page_size", minimum=1, maximum=MAX_PAGE_SIZE),
            upload_multipart_threshold=_int_setting(data, "upload_multipart_threshold", minimum=1),
            upload_chunk_size=_int_setting(data, "upload_chunk_size", minimum=MIN_UPLOAD_CHUNK_SIZE),
        )

    def save(self, settings: AppSettings) -> None:
        payload = asdict(settings)
        payload["page_size"] = min(max(int(settings.page_size), 1), MAX_PAGE_SIZE)
        payload["retry_attempts"] = max(int(settings.retry_attempts), 0)
        payload["retry_base_delay"] = max(float(settings.retry_base_delay), 0.0)
        payload["delete_batch_size"] = min(max(int(settings.delete_batch_size), 1), MAX_PAGE_SIZE)
        payload["filter_page_size"] = min(max(int(settings.filter_page_size), 1), MAX_PAGE_SIZE)
        payload["upload_multipart_threshold"] = max(int(settings.upload_multipart_threshold), 1)
        payload["upload_chunk_size"] = max(int(settings.upload_chunk_size), MIN_UPLOAD_CHUNK_SIZE)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError:
            # Persist best-effort; ignore filesystem issues.
            return
