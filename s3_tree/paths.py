from __future__ import annotations
"""UI-agnostic helpers for S3 keys, prefixes and display formatting."""
import re
from datetime import datetime

DELIMITER = "/"
SIZE_UNITS = ("B", "KB", "MB", "GB", "TB")


def normalize_key(key: str) -> str:
    return key.lstrip("/")


def join_path(*segments: str) -> str:
    parts = [segment.strip("/") for segment in segments if segment and segment.strip("/")]
    return re.sub(r"/+", "/", "/".join(parts))


def ensure_trailing_slash(prefix: str) -> str:
    if not prefix or prefix.endswith(DELIMITER):
        return prefix
    return prefix + DELIMITER


def path_segments(path: str) -> list[str]:
    return [segment for segment in normalize_key(path).split(DELIMITER) if segment]


def parent_prefix(path: str) -> str:
    """Return the scope containing ``path`` ("" for top-level entries)."""
    segments = path_segments(path)
    if len(segments) <= 1:
        return ""
    return DELIMITER.join(segments[:-1]) + DELIMITER


def file_name(key: str) -> str:
    return normalize_key(key).rsplit(DELIMITER, 1)[-1]


def relative_name(value: str, base_prefix: str) -> str:
    relative = value
    if base_prefix and value.startswith(base_prefix):
        relative = value[len(base_prefix) :]
    relative = relative.rstrip("/")
    if not relative:
        trimmed = value.rstrip("/")
        relative = trimmed or value
    return relative


def renamed_prefix(prefix: str, new_name: str) -> str:
    """Replace the final segment of ``prefix`` with ``new_name``."""
    name = new_name.strip()
    if not name:
        raise ValueError("Folder name cannot be empty")
    if DELIMITER in name:
        raise ValueError("Folder name cannot contain slashes")
    segments = path_segments(prefix)
    if not segments:
        raise ValueError("Cannot rename the bucket root")
    if segments[-1] == name:
        raise ValueError("New name must be different from current name")
    segments[-1] = name
    return DELIMITER.join(segments) + DELIMITER


def renamed_key(key: str, new_name: str) -> str:
    name = new_name.strip()
    if not name:
        raise ValueError("Object name cannot be empty")
    if DELIMITER in name:
        raise ValueError("Object name cannot contain slashes")
    return parent_prefix(key) + name


def format_size(size: int | None) -> str:
    if size is None:
        return "-"
    value = float(max(size, 0))
    for suffix in SIZE_UNITS:
        if value < 1024 or suffix == SIZE_UNITS[-1]:
            return f"{value:.1f} {suffix}" if suffix != "B" else f"{int(value)} {suffix}"
        value /= 1024
    return f"{size} B"


def format_last_modified(last_modified: object) -> str:
    if not last_modified:
        return "-"
    if isinstance(last_modified, datetime):
        return last_modified.strftime("%Y-%m-%d %H:%M:%S %Z").strip() or last_modified.isoformat()
    return str(last_modified)
