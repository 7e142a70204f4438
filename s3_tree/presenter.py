from __future__ import annotations
"""View-agnostic presenter that runs controller work on background threads."""
from dataclasses import replace
import logging
import threading
from typing import Callable

from botocore.exceptions import BotoCoreError, ClientError

from .controller import S3TreeController
from .errors import OperationCancelledError, S3TreeError
from .models import Bucket, ObjectDetails, S3Object, TreeNode
from .operations import OperationResult, ProgressEvent
from .profiles import ConnectionProfile
from .settings import AppSettings, SettingsStorage


DispatchFn = Callable[[Callable[[], None]], None]
SuccessFn = Callable[[object], None]
ErrorFn = Callable[[str], None]
DoneFn = Callable[[], None]
ProgressFn = Callable[[ProgressEvent], None]

LOGGER = logging.getLogger(__name__)


def _format_error(exc: Exception) -> str:
    return str(exc)


class S3TreePresenter:
    """Runs background operations and returns results via callbacks.

    Tasks that read or mutate the listing cache hold one session lock, so
    two expands of the same scope never run at the same time. Every call that
    may wait on that lock runs in the background; none blocks the caller.
    """

    def __init__(
        self,
        *,
        controller: S3TreeController | None = None,
        settings_storage: SettingsStorage | None = None,
        dispatch: DispatchFn | None = None,
    ) -> None:
        self._settings_storage = settings_storage or SettingsStorage()
        self._settings = self._settings_storage.load()
        self._controller = controller or S3TreeController(settings=self._settings)
        self._dispatch = dispatch or (lambda func: func())
        self._session_lock = threading.RLock()

    @property
    def settings(self) -> AppSettings:
        return replace(self._settings)

    @property
    def is_connected(self) -> bool:
        return self._controller.is_connected

    @property
    def selected_profile(self) -> str | None:
        return self._controller.selected_profile

    @property
    def filter_text(self) -> str:
        return self._controller.filter_text

    def save_settings(self, settings: AppSettings) -> None:
        self._settings = settings
        self._settings_storage.save(settings)
        self._controller.apply_settings(settings)

    def update_page_size(self, value: int) -> None:
        normalized = min(max(int(value), 1), 1000)
        self.save_settings(replace(self._settings, page_size=normalized))

    def list_profiles(self) -> list[ConnectionProfile]:
        return self._controller.list_profiles()

    def save_profile(self, profile: ConnectionProfile, *, original_name: str | None = None) -> None:
        self._controller.save_profile(profile, original_name=original_name)

    def delete_profile(self, name: str) -> None:
        self._controller.delete_profile(name)

    def get_profile(self, name: str) -> ConnectionProfile:
        return self._controller.get_profile(name)

    def add_change_listener(self, listener: Callable[[TreeNode | None], None]) -> None:
        self._controller.add_change_listener(lambda node: self._dispatch(lambda: listener(node)))

    def add_recovery_listener(self, listener: Callable[[object], None]) -> None:
        self._controller.add_recovery_listener(lambda action: self._dispatch(lambda: listener(action)))

    def _start(
        self,
        description: str,
        work: Callable[[], object],
        *,
        on_success: SuccessFn | None,
        on_error: ErrorFn | None,
        on_cancelled: ErrorFn | None = None,
        on_done: DoneFn | None = None,
    ) -> threading.Thread:
        LOGGER.debug("Starting: %s", description)

        def task() -> None:
            try:
                with self._session_lock:
                    result = work()
            except OperationCancelledError as exc:
                LOGGER.info("Cancelled: %s", description)
                if on_cancelled:
                    self._dispatch(lambda: on_cancelled(_format_error(exc)))
            except (S3TreeError, BotoCoreError, ClientError) as exc:
                LOGGER.exception("Failed: %s", description)
                if on_error:
                    self._dispatch(lambda: on_error(_format_error(exc)))
            except Exception as exc:
                LOGGER.exception("Unexpected error: %s", description)
                if on_error:
                    self._dispatch(lambda: on_error(_format_error(exc)))
            else:
                LOGGER.debug("Finished: %s", description)
                if on_success:
                    self._dispatch(lambda: on_success(result))
            finally:
                if on_done:
                    self._dispatch(on_done)

        thread = threading.Thread(target=task, daemon=True)
        thread.start()
        return thread

    def _progress_callback(self, on_progress: ProgressFn | None):
        if on_progress is None:
            return None
        return lambda event: self._dispatch(lambda: on_progress(event))

    # Connection

    def connect(
        self,
        *,
        profile_name: str,
        on_success: Callable[[list[Bucket]], None],
        on_error: ErrorFn,
        on_done: DoneFn | None = None,
    ) -> threading.Thread:
        return self._start(
            f"connect using profile '{profile_name}'",
            lambda: self._controller.connect_with_profile(profile_name),
            on_success=on_success,
            on_error=on_error,
            on_done=on_done,
        )

    # Tree

    def get_children(
        self,
        *,
        node: TreeNode | None,
        on_success: Callable[[list[TreeNode]], None],
        on_error: ErrorFn,
        on_done: DoneFn | None = None,
    ) -> threading.Thread:
        label = node.node_id if node else "root"
        return self._start(
            f"expand {label}",
            lambda: self._controller.get_children(node),
            on_success=on_success,
            on_error=on_error,
            on_done=on_done,
        )

    def load_more(
        self,
        *,
        node: TreeNode,
        on_error: ErrorFn,
        on_success: DoneFn | None = None,
        on_done: DoneFn | None = None,
    ) -> threading.Thread:
        return self._start(
            f"load more {node.node_id}",
            lambda: self._controller.load_more(node),
            on_success=(lambda _result: on_success()) if on_success else None,
            on_error=on_error,
            on_done=on_done,
        )

    def find_node(
        self,
        *,
        bucket: str,
        key: str | None,
        on_success: Callable[[TreeNode | None], None],
        on_error: ErrorFn,
        on_done: DoneFn | None = None,
    ) -> threading.Thread:
        return self._start(
            f"find {bucket}/{key or ''}",
            lambda: self._controller.find_node(bucket, key),
            on_success=on_success,
            on_error=on_error,
            on_done=on_done,
        )

    def refresh(
        self,
        node: TreeNode | None = None,
        *,
        on_error: ErrorFn | None = None,
        on_done: DoneFn | None = None,
    ) -> threading.Thread:
        label = node.node_id if node else "tree"
        return self._start(
            f"refresh {label}",
            lambda: self._controller.refresh(node),
            on_success=None,
            on_error=on_error,
            on_done=on_done,
        )

    def set_filter(
        self,
        text: str,
        *,
        on_error: ErrorFn | None = None,
        on_done: DoneFn | None = None,
    ) -> threading.Thread:
        return self._start(
            f"filter by '{text}'",
            lambda: self._controller.set_filter(text),
            on_success=None,
            on_error=on_error,
            on_done=on_done,
        )

    def clear_filter(
        self,
        *,
        on_error: ErrorFn | None = None,
        on_done: DoneFn | None = None,
    ) -> threading.Thread:
        return self._start(
            "clear filter",
            self._controller.clear_filter,
            on_success=None,
            on_error=on_error,
            on_done=on_done,
        )

    # Bulk operations

    def run_operation(
        self,
        operation: str,
        *args: str,
        on_progress: ProgressFn | None = None,
        cancel_requested: Callable[[], bool] | None = None,
        on_success: Callable[[OperationResult], None] | None = None,
        on_error: ErrorFn | None = None,
        on_cancelled: ErrorFn | None = None,
        on_done: DoneFn | None = None,
    ) -> threading.Thread:
        """Run one of the controller's bulk operations by name.

        ``operation`` is ``delete_folder``, ``copy_folder``, ``move_folder``,
        ``rename_folder``, one of the matching ``*_object`` calls, or a transfer
        (``upload_file``, ``upload_folder``, ``download_file``); ``args`` are
        passed positionally.
        """

        if operation not in BULK_OPERATIONS:
            raise ValueError(f"Unknown operation '{operation}'")
        method = getattr(self._controller, operation)
        progress_callback = self._progress_callback(on_progress)
        return self._start(
            f"{operation}{args}",
            lambda: method(*args, progress_callback=progress_callback, cancel_requested=cancel_requested),
            on_success=on_success,
            on_error=on_error,
            on_cancelled=on_cancelled,
            on_done=on_done,
        )

    # Single calls

    def create_folder(
        self,
        *,
        bucket: str,
        prefix: str,
        on_success: Callable[[str], None],
        on_error: ErrorFn,
    ) -> threading.Thread:
        return self._start(
            f"create folder {bucket}/{prefix}",
            lambda: self._controller.create_folder(bucket, prefix),
            on_success=on_success,
            on_error=on_error,
        )

    def get_object_details(
        self,
        *,
        bucket: str,
        key: str,
        on_success: Callable[[ObjectDetails], None],
        on_error: ErrorFn,
    ) -> threading.Thread:
        return self._start(
            f"details of {bucket}/{key}",
            lambda: self._controller.get_object_details(bucket, key),
            on_success=on_success,
            on_error=on_error,
        )

    def generate_presigned_url(
        self,
        *,
        bucket: str,
        key: str,
        method: str,
        expires_in: int,
        content_type: str | None,
        content_disposition: str | None,
        on_success: Callable[[str], None],
        on_error: ErrorFn,
    ) -> threading.Thread:
        return self._start(
            f"presign {bucket}/{key}",
            lambda: self._controller.generate_presigned_url(
                bucket,
                key,
                method=method,
                expires_in=expires_in,
                content_type=content_type,
                content_disposition=content_disposition,
            ),
            on_success=on_success,
            on_error=on_error,
        )

    def search_objects(
        self,
        *,
        bucket: str,
        prefix: str | None,
        contains: str,
        on_success: Callable[[list[S3Object]], None],
        on_error: ErrorFn,
        on_done: DoneFn | None = None,
    ) -> threading.Thread:
        return self._start(
            f"search {bucket}/{prefix or ''} for '{contains}'",
            lambda: self._controller.search_objects(bucket, prefix, contains),
            on_success=on_success,
            on_error=on_error,
            on_done=on_done,
        )


BULK_OPERATIONS = frozenset(
    {
        "delete_folder",
        "copy_folder",
        "move_folder",
        "rename_folder",
        "delete_object",
        "copy_object",
        "move_object",
        "rename_object",
        "upload_file",
        "upload_folder",
        "download_file",
    }
)
