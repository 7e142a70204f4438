from __future__ import annotations
"""Folder and object operations that span many keys."""
from dataclasses import dataclass, field
import logging
import os
from typing import Callable, Optional

from .errors import NotFoundError, OperationCancelledError, S3TreeError
from .paths import DELIMITER, ensure_trailing_slash, file_name, join_path, renamed_key, renamed_prefix
from .services import MAX_KEYS_PER_DELETE, S3Service

LOGGER = logging.getLogger(__name__)

STATE_LISTING = "listing"
STATE_PROCESSING = "processing"
STATE_CLEANUP = "cleanup"
STATE_DONE = "done"
STATE_FAILED = "failed"
STATE_CANCELLED = "cancelled"


@dataclass(frozen=True)
class ProgressEvent:
    """Reported before each unit of work; ``increment`` is a percentage."""

    state: str
    message: str
    increment: float = 0.0
    completed: int = 0
    total: int = 0


@dataclass
class OperationResult:
    state: str
    processed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state == STATE_DONE


ProgressCallback = Callable[[ProgressEvent], None]
CancelCheck = Callable[[], bool]


class _Progress:
    def __init__(self, callback: Optional[ProgressCallback], cancel_requested: Optional[CancelCheck]):
        self._callback = callback
        self._cancel_requested = cancel_requested

    def step(self, state: str, message: str, increment: float = 0.0, completed: int = 0, total: int = 0) -> None:
        if self._cancel_requested is not None and self._cancel_requested():
            raise OperationCancelledError("Operation cancelled")
        LOGGER.debug("[%s] %s", state, message)
        if self._callback is not None:
            self._callback(ProgressEvent(state, message, increment, completed, total))


def _batches(keys: list[str], size: int) -> list[list[str]]:
    return [keys[index : index + size] for index in range(0, len(keys), size)]


def _local_files(root: str) -> list[tuple[str, str]]:
    """Return (path, relative key) pairs for every file below ``root``, sorted."""
    files = []
    for directory, subdirectories, names in os.walk(root):
        subdirectories.sort()
        for name in sorted(names):
            path = os.path.join(directory, name)
            relative = os.path.relpath(path, root).replace(os.sep, DELIMITER)
            files.append((path, relative))
    return files


class BulkOperationExecutor:
    """Runs delete, copy, move and rename over whole prefixes, plus uploads and downloads.

    Work is strictly sequential, one batch or one object at a time, and
    cancellation is only checked between those units (and between transferred
    chunks for uploads and downloads). Nothing is
    transactional: every primitive step is idempotent so a failed operation
    can be re-run.
    """

    def __init__(
        self,
        service: S3Service,
        *,
        batch_size: int = MAX_KEYS_PER_DELETE,
        multipart_threshold: int | None = None,
        multipart_chunk_size: int | None = None,
    ):
        self._service = service
        self._batch_size = max(1, min(batch_size, MAX_KEYS_PER_DELETE))
        self._multipart_threshold = multipart_threshold
        self._multipart_chunk_size = multipart_chunk_size

    # Folders

    def delete_folder(
        self,
        bucket: str,
        prefix: str,
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_requested: Optional[CancelCheck] = None,
    ) -> OperationResult:
        """Delete every key under ``prefix`` and then the folder marker.

        Per-key failures reported by a batch are collected into the result
        instead of stopping the remaining batches.
        """

        prefix = self._folder_prefix(prefix)
        progress = _Progress(progress_callback, cancel_requested)
        progress.step(STATE_LISTING, f"Listing objects in {prefix}")
        keys = [obj.key for obj in self._service.list_all_recursive(bucket, prefix)]

        if not keys:
            progress.step(STATE_CLEANUP, f"Deleting folder {prefix}", 100.0, 0, 1)
            self._delete_marker(bucket, prefix)
            return OperationResult(STATE_DONE)

        batches = _batches(keys, self._batch_size)
        increment = 100.0 / (len(batches) + 1)
        errors: list[str] = []
        failed_keys = 0
        for index, batch in enumerate(batches, start=1):
            progress.step(
                STATE_PROCESSING,
                f"Deleting batch {index}/{len(batches)} ({len(batch)} objects)",
                increment,
                index - 1,
                len(batches),
            )
            failures = self._service.delete_objects(bucket, batch)
            if failures:
                failed_keys += len(failures)
                sample = ", ".join(f"{key} ({message})" for key, message in failures[:3])
                errors.append(f"Batch {index}: failed to delete {len(failures)} object(s): {sample}")
                LOGGER.warning("Batch %d under %s/%s had %d failure(s)", index, bucket, prefix, len(failures))

        progress.step(STATE_CLEANUP, f"Deleting folder marker {prefix}", increment, len(batches), len(batches))
        self._cleanup_marker(bucket, prefix)
        return OperationResult(
            STATE_FAILED if errors else STATE_DONE,
            processed=len(keys) - failed_keys,
            errors=errors,
        )

    def copy_folder(
        self,
        source_bucket: str,
        source_prefix: str,
        target_bucket: str,
        target_prefix: str,
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_requested: Optional[CancelCheck] = None,
    ) -> OperationResult:
        return self._transfer_folder(
            source_bucket,
            source_prefix,
            target_bucket,
            target_prefix,
            move=False,
            progress=_Progress(progress_callback, cancel_requested),
        )

    def move_folder(
        self,
        source_bucket: str,
        source_prefix: str,
        target_bucket: str,
        target_prefix: str,
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_requested: Optional[CancelCheck] = None,
    ) -> OperationResult:
        return self._transfer_folder(
            source_bucket,
            source_prefix,
            target_bucket,
            target_prefix,
            move=True,
            progress=_Progress(progress_callback, cancel_requested),
        )

    def rename_folder(
        self,
        bucket: str,
        prefix: str,
        new_name: str,
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_requested: Optional[CancelCheck] = None,
    ) -> OperationResult:
        target_prefix = renamed_prefix(prefix, new_name)
        return self.move_folder(
            bucket,
            prefix,
            bucket,
            target_prefix,
            progress_callback=progress_callback,
            cancel_requested=cancel_requested,
        )

    def _transfer_folder(
        self,
        source_bucket: str,
        source_prefix: str,
        target_bucket: str,
        target_prefix: str,
        *,
        move: bool,
        progress: _Progress,
    ) -> OperationResult:
        source_prefix = self._folder_prefix(source_prefix)
        target_prefix = ensure_trailing_slash(target_prefix)
        if source_bucket == target_bucket and target_prefix.startswith(source_prefix):
            raise ValueError("Cannot copy or move a folder into itself")
        verb = "Moving" if move else "Copying"

        progress.step(STATE_LISTING, f"Listing objects in {source_prefix}")
        objects = self._service.list_all_recursive(source_bucket, source_prefix)

        if not objects:
            share = 50.0 if move else 100.0
            progress.step(STATE_PROCESSING, f"Creating folder {target_prefix}", share, 0, 1)
            if target_prefix:
                self._service.create_folder(target_bucket, target_prefix)
            if move:
                progress.step(STATE_CLEANUP, f"Deleting folder {source_prefix}", share, 1, 1)
                self._delete_marker(source_bucket, source_prefix)
            return OperationResult(STATE_DONE)

        total = len(objects)
        units = total + 1 + (1 if move else 0)
        increment = 100.0 / units
        for index, obj in enumerate(objects, start=1):
            target_key = target_prefix + obj.key[len(source_prefix) :]
            progress.step(
                STATE_PROCESSING,
                f"{verb} {obj.key} ({index}/{total})",
                increment,
                index - 1,
                total,
            )
            if move:
                self._service.move_object(source_bucket, obj.key, target_bucket, target_key)
            else:
                self._service.copy_object(source_bucket, obj.key, target_bucket, target_key)

        progress.step(STATE_PROCESSING, f"Finalizing folder {target_prefix}", increment, total, total)
        if target_prefix and not self._service.folder_exists(target_bucket, target_prefix):
            self._service.create_folder(target_bucket, target_prefix)

        if move:
            progress.step(STATE_CLEANUP, f"Removing folder markers under {source_prefix}", increment, total, total)
            self._cleanup_source(source_bucket, source_prefix)
        return OperationResult(STATE_DONE, processed=total)

    def _cleanup_source(self, bucket: str, prefix: str) -> None:
        try:
            leftovers = self._service.list_all_recursive(bucket, prefix)
        except S3TreeError as exc:
            LOGGER.warning("Could not list %s/%s for cleanup: %s", bucket, prefix, exc)
            leftovers = []
        for obj in leftovers:
            if obj.is_folder_marker:
                self._cleanup_marker(bucket, obj.key)
        self._cleanup_marker(bucket, prefix)

    def _delete_marker(self, bucket: str, prefix: str) -> None:
        try:
            self._service.delete_object(bucket, prefix)
        except NotFoundError:
            LOGGER.debug("Folder marker %s/%s was already gone", bucket, prefix)

    def _cleanup_marker(self, bucket: str, key: str) -> None:
        try:
            self._service.delete_object(bucket, key)
        except NotFoundError:
            return
        except S3TreeError as exc:
            LOGGER.warning("Failed to delete folder marker %s/%s: %s", bucket, key, exc)

    @staticmethod
    def _folder_prefix(prefix: str) -> str:
        folder = ensure_trailing_slash(prefix)
        if not folder or folder == DELIMITER:
            raise ValueError("A folder prefix is required")
        return folder

    # Objects

    def delete_object(
        self,
        bucket: str,
        key: str,
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_requested: Optional[CancelCheck] = None,
    ) -> OperationResult:
        progress = _Progress(progress_callback, cancel_requested)
        progress.step(STATE_PROCESSING, f"Deleting {key}", 100.0, 0, 1)
        self._service.delete_object(bucket, key)
        return OperationResult(STATE_DONE, processed=1)

    def copy_object(
        self,
        source_bucket: str,
        source_key: str,
        target_bucket: str,
        target_key: str,
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_requested: Optional[CancelCheck] = None,
    ) -> OperationResult:
        self._check_object_target(source_bucket, source_key, target_bucket, target_key)
        progress = _Progress(progress_callback, cancel_requested)
        progress.step(STATE_PROCESSING, f"Copying {source_key} to {target_key}", 100.0, 0, 1)
        self._service.copy_object(source_bucket, source_key, target_bucket, target_key)
        return OperationResult(STATE_DONE, processed=1)

    def move_object(
        self,
        source_bucket: str,
        source_key: str,
        target_bucket: str,
        target_key: str,
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_requested: Optional[CancelCheck] = None,
    ) -> OperationResult:
        self._check_object_target(source_bucket, source_key, target_bucket, target_key)
        progress = _Progress(progress_callback, cancel_requested)
        progress.step(STATE_PROCESSING, f"Copying {source_key} to {target_key}", 50.0, 0, 2)
        self._service.copy_object(source_bucket, source_key, target_bucket, target_key)
        progress.step(STATE_CLEANUP, f"Deleting {source_key}", 50.0, 1, 2)
        self._service.delete_object(source_bucket, source_key)
        return OperationResult(STATE_DONE, processed=1)

    def rename_object(
        self,
        bucket: str,
        key: str,
        new_name: str,
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_requested: Optional[CancelCheck] = None,
    ) -> OperationResult:
        if new_name.strip() == file_name(key):
            raise ValueError("New name must be different from current name")
        return self.move_object(
            bucket,
            key,
            bucket,
            renamed_key(key, new_name),
            progress_callback=progress_callback,
            cancel_requested=cancel_requested,
        )

    # Transfers

    def upload_file(
        self,
        bucket: str,
        key: str,
        source_path: str,
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_requested: Optional[CancelCheck] = None,
    ) -> OperationResult:
        if not key or key.endswith(DELIMITER):
            raise ValueError("Target key must name an object")
        if not os.path.isfile(source_path):
            raise ValueError(f"'{source_path}' is not a file")
        progress = _Progress(progress_callback, cancel_requested)
        total_bytes = os.path.getsize(source_path)
        message = f"Uploading {os.path.basename(source_path)}"
        progress.step(STATE_PROCESSING, message, 0.0, 0, total_bytes)
        self._service.upload_file(
            bucket,
            key,
            source_path,
            progress_callback=self._byte_progress(progress, message, total_bytes),
            cancel_requested=cancel_requested,
            multipart_threshold=self._multipart_threshold,
            multipart_chunk_size=self._multipart_chunk_size,
        )
        return OperationResult(STATE_DONE, processed=1)

    def upload_folder(
        self,
        bucket: str,
        prefix: str,
        source_dir: str,
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_requested: Optional[CancelCheck] = None,
    ) -> OperationResult:
        """Upload ``source_dir`` as a new folder named after it under ``prefix``.

        Subdirectories become nested prefixes; an empty directory only gets a
        folder marker.
        """

        if not os.path.isdir(source_dir):
            raise ValueError(f"'{source_dir}' is not a directory")
        progress = _Progress(progress_callback, cancel_requested)
        folder = os.path.basename(os.path.normpath(source_dir))
        target_prefix = ensure_trailing_slash(join_path(prefix, folder))

        progress.step(STATE_LISTING, f"Scanning {source_dir}")
        files = _local_files(source_dir)
        if not files:
            progress.step(STATE_PROCESSING, f"Creating folder {target_prefix}", 100.0, 0, 1)
            self._service.create_folder(bucket, target_prefix)
            return OperationResult(STATE_DONE)

        total = len(files)
        increment = 100.0 / total
        for index, (local_path, relative_path) in enumerate(files, start=1):
            progress.step(
                STATE_PROCESSING,
                f"Uploading {relative_path} ({index}/{total})",
                increment,
                index - 1,
                total,
            )
            self._service.upload_file(
                bucket,
                join_path(target_prefix, relative_path),
                local_path,
                cancel_requested=cancel_requested,
                multipart_threshold=self._multipart_threshold,
                multipart_chunk_size=self._multipart_chunk_size,
            )
        return OperationResult(STATE_DONE, processed=total)

    def download_file(
        self,
        bucket: str,
        key: str,
        destination: str,
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_requested: Optional[CancelCheck] = None,
    ) -> OperationResult:
        progress = _Progress(progress_callback, cancel_requested)
        if os.path.isdir(destination):
            destination = os.path.join(destination, file_name(key))
        total_bytes = self._service.get_object_details(bucket, key).size or 0
        message = f"Downloading {file_name(key)}"
        progress.step(STATE_PROCESSING, message, 0.0, 0, total_bytes)
        self._service.download_file(
            bucket,
            key,
            destination,
            progress_callback=self._byte_progress(progress, message, total_bytes),
            cancel_requested=cancel_requested,
        )
        return OperationResult(STATE_DONE, processed=1)

    @staticmethod
    def _byte_progress(progress: _Progress, message: str, total_bytes: int) -> Callable[[int], None]:
        reported = 0.0

        def on_bytes(transferred: int) -> None:
            nonlocal reported
            if total_bytes <= 0:
                return
            percent = min(transferred * 100.0 / total_bytes, 100.0)
            progress.step(STATE_PROCESSING, message, percent - reported, transferred, total_bytes)
            reported = percent

        return on_bytes

    @staticmethod
    def _check_object_target(source_bucket: str, source_key: str, target_bucket: str, target_key: str) -> None:
        if not target_key:
            raise ValueError("Target key cannot be empty")
        if source_bucket == target_bucket and source_key == target_key:
            raise ValueError("Source and target are the same object")
