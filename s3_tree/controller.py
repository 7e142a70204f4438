from __future__ import annotations
"""Session controller tying the service, cache, tree and bulk operations together."""
import logging
import time
from typing import Callable, Optional

from .cache import ListingCache
from .errors import NotConnectedError
from .models import Bucket, ObjectDetails, S3Object, TreeNode
from .operations import BulkOperationExecutor, CancelCheck, OperationResult, ProgressCallback
from .profiles import ConnectionProfile, ProfileStorage, validate_profile
from .retry import RetryPolicy
from .services import S3Service
from .settings import AppSettings
from .tree import ChangeListener, RecoveryListener, S3TreeExplorer, bucket_node

LOGGER = logging.getLogger(__name__)


class S3TreeController:
    """Owns one connection's service, listing cache, explorer and executor.

    Every mutation invalidates the cached scopes of the buckets it touched and
    notifies change listeners so the view can reload.
    """

    def __init__(
        self,
        storage: ProfileStorage | None = None,
        settings: AppSettings | None = None,
        *,
        client_factory: Callable[..., object] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._storage = storage or ProfileStorage()
        self._settings = settings or AppSettings()
        self._client_factory = client_factory
        self._sleep = sleep
        self._profiles: list[ConnectionProfile] = self._storage.load()
        self._selected_profile: str | None = None
        self._service: S3Service | None = None
        self._explorer: S3TreeExplorer | None = None
        self._executor: BulkOperationExecutor | None = None
        self._change_listeners: list[ChangeListener] = []
        self._recovery_listeners: list[RecoveryListener] = []

    @property
    def is_connected(self) -> bool:
        return self._service is not None

    @property
    def selected_profile(self) -> str | None:
        return self._selected_profile

    @property
    def settings(self) -> AppSettings:
        return self._settings

    def apply_settings(self, settings: AppSettings) -> None:
        """Use ``settings`` for the next connection."""
        self._settings = settings

    # Profiles

    def list_profiles(self) -> list[ConnectionProfile]:
        return list(self._profiles)

    def save_profile(self, profile: ConnectionProfile, *, original_name: str | None = None) -> None:
        problems = validate_profile(profile)
        if not profile.name:
            problems.insert(0, "Profile name is required")
        if problems:
            raise ValueError("; ".join(problems))
        if original_name and original_name != profile.name:
            self._profiles = [p for p in self._profiles if p.name != original_name]
        self._upsert_profile(profile)
        self._persist_profiles()

    def delete_profile(self, name: str) -> None:
        before = len(self._profiles)
        self._profiles = [p for p in self._profiles if p.name != name]
        if len(self._profiles) == before:
            raise ValueError(f"Profile '{name}' does not exist")
        if self._selected_profile == name:
            self._selected_profile = None
        self._persist_profiles()

    def get_profile(self, name: str) -> ConnectionProfile:
        for profile in self._profiles:
            if profile.name == name:
                return profile
        raise ValueError(f"Profile '{name}' does not exist")

    def _upsert_profile(self, profile: ConnectionProfile) -> None:
        for idx, existing in enumerate(self._profiles):
            if existing.name == profile.name:
                self._profiles[idx] = profile
                break
        else:
            self._profiles.append(profile)

    def _persist_profiles(self) -> None:
        self._storage.save(self._profiles)

    # Connection

    def connect_with_profile(self, name: str) -> list[Bucket]:
        profile = self.get_profile(name)
        buckets = self.connect(profile)
        self._selected_profile = name
        return buckets

    def connect(self, profile: ConnectionProfile) -> list[Bucket]:
        settings = self._settings
        service = S3Service(
            profile,
            client_factory=self._client_factory,
            retry_policy=RetryPolicy(settings.retry_attempts, settings.retry_base_delay),
            sleep=self._sleep,
        )
        buckets = service.test_connection()
        self._service = service
        self._explorer = S3TreeExplorer(
            service,
            ListingCache(),
            page_size=settings.page_size,
            filter_page_size=settings.filter_page_size,
        )
        for listener in self._change_listeners:
            self._explorer.add_change_listener(listener)
        for listener in self._recovery_listeners:
            self._explorer.add_recovery_listener(listener)
        self._executor = BulkOperationExecutor(
            service,
            batch_size=settings.delete_batch_size,
            multipart_threshold=settings.upload_multipart_threshold,
            multipart_chunk_size=settings.upload_chunk_size,
        )
        LOGGER.debug("Connected to %s (%d buckets)", profile.endpoint_url, len(buckets))
        return buckets

    def disconnect(self) -> None:
        self._service = None
        self._explorer = None
        self._executor = None
        self._selected_profile = None

    def add_change_listener(self, listener: ChangeListener) -> None:
        self._change_listeners.append(listener)
        if self._explorer is not None:
            self._explorer.add_change_listener(listener)

    def add_recovery_listener(self, listener: RecoveryListener) -> None:
        self._recovery_listeners.append(listener)
        if self._explorer is not None:
            self._explorer.add_recovery_listener(listener)

    def _require_service(self) -> S3Service:
        if self._service is None:
            raise NotConnectedError("Not connected to S3")
        return self._service

    def _require_explorer(self) -> S3TreeExplorer:
        if self._explorer is None:
            raise NotConnectedError("Not connected to S3")
        return self._explorer

    def _require_executor(self) -> BulkOperationExecutor:
        if self._executor is None:
            raise NotConnectedError("Not connected to S3")
        return self._executor

    # Tree

    @property
    def filter_text(self) -> str:
        return self._explorer.filter_text if self._explorer else ""

    def get_children(self, node: TreeNode | None = None) -> list[TreeNode]:
        return self._require_explorer().get_children(node)

    def refresh(self, node: TreeNode | None = None) -> None:
        self._require_explorer().refresh(node)

    def load_more(self, node: TreeNode) -> None:
        self._require_explorer().load_more(node)

    def set_filter(self, text: str) -> None:
        self._require_explorer().set_filter(text)

    def clear_filter(self) -> None:
        self._require_explorer().clear_filter()

    def find_node(self, bucket: str, key: str | None = None) -> TreeNode | None:
        return self._require_explorer().find_node(bucket, key)

    def _invalidate(self, *buckets: str) -> None:
        explorer = self._require_explorer()
        for bucket in dict.fromkeys(buckets):
            explorer.refresh(bucket_node(bucket))

    # Bulk operations

    def delete_folder(
        self,
        bucket: str,
        prefix: str,
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_requested: Optional[CancelCheck] = None,
    ) -> OperationResult:
        executor = self._require_executor()
        try:
            return executor.delete_folder(
                bucket,
                prefix,
                progress_callback=progress_callback,
                cancel_requested=cancel_requested,
            )
        finally:
            self._invalidate(bucket)

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
        executor = self._require_executor()
        try:
            return executor.copy_folder(
                source_bucket,
                source_prefix,
                target_bucket,
                target_prefix,
                progress_callback=progress_callback,
                cancel_requested=cancel_requested,
            )
        finally:
            self._invalidate(target_bucket)

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
        executor = self._require_executor()
        try:
            return executor.move_folder(
                source_bucket,
                source_prefix,
                target_bucket,
                target_prefix,
                progress_callback=progress_callback,
                cancel_requested=cancel_requested,
            )
        finally:
            self._invalidate(source_bucket, target_bucket)

    def rename_folder(
        self,
        bucket: str,
        prefix: str,
        new_name: str,
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_requested: Optional[CancelCheck] = None,
    ) -> OperationResult:
        executor = self._require_executor()
        try:
            return executor.rename_folder(
                bucket,
                prefix,
                new_name,
                progress_callback=progress_callback,
                cancel_requested=cancel_requested,
            )
        finally:
            self._invalidate(bucket)

    def delete_object(
        self,
        bucket: str,
        key: str,
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_requested: Optional[CancelCheck] = None,
    ) -> OperationResult:
        executor = self._require_executor()
        try:
            return executor.delete_object(
                bucket,
                key,
                progress_callback=progress_callback,
                cancel_requested=cancel_requested,
            )
        finally:
            self._invalidate(bucket)

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
        executor = self._require_executor()
        try:
            return executor.copy_object(
                source_bucket,
                source_key,
                target_bucket,
                target_key,
                progress_callback=progress_callback,
                cancel_requested=cancel_requested,
            )
        finally:
            self._invalidate(target_bucket)

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
        executor = self._require_executor()
        try:
            return executor.move_object(
                source_bucket,
                source_key,
                target_bucket,
                target_key,
                progress_callback=progress_callback,
                cancel_requested=cancel_requested,
            )
        finally:
            self._invalidate(source_bucket, target_bucket)

    def rename_object(
        self,
        bucket: str,
        key: str,
        new_name: str,
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_requested: Optional[CancelCheck] = None,
    ) -> OperationResult:
        executor = self._require_executor()
        try:
            return executor.rename_object(
                bucket,
                key,
                new_name,
                progress_callback=progress_callback,
                cancel_requested=cancel_requested,
            )
        finally:
            self._invalidate(bucket)

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
        executor = self._require_executor()
        try:
            return executor.upload_file(
                bucket,
                key,
                source_path,
                progress_callback=progress_callback,
                cancel_requested=cancel_requested,
            )
        finally:
            self._invalidate(bucket)

    def upload_folder(
        self,
        bucket: str,
        prefix: str,
        source_dir: str,
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_requested: Optional[CancelCheck] = None,
    ) -> OperationResult:
        executor = self._require_executor()
        try:
            return executor.upload_folder(
                bucket,
                prefix,
                source_dir,
                progress_callback=progress_callback,
                cancel_requested=cancel_requested,
            )
        finally:
            self._invalidate(bucket)

    def download_file(
        self,
        bucket: str,
        key: str,
        destination: str,
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_requested: Optional[CancelCheck] = None,
    ) -> OperationResult:
        return self._require_executor().download_file(
            bucket,
            key,
            destination,
            progress_callback=progress_callback,
            cancel_requested=cancel_requested,
        )

    # Single calls

    def create_folder(self, bucket: str, prefix: str) -> str:
        folder_key = self._require_service().create_folder(bucket, prefix)
        self._invalidate(bucket)
        return folder_key

    def get_object_details(self, bucket: str, key: str) -> ObjectDetails:
        return self._require_service().get_object_details(bucket, key)

    def generate_presigned_url(
        self,
        bucket: str,
        key: str,
        *,
        method: str = "get",
        expires_in: int = 3600,
        content_type: str | None = None,
        content_disposition: str | None = None,
    ) -> str:
        return self._require_service().generate_presigned_url(
            bucket,
            key,
            method=method,
            expires_in=expires_in,
            content_type=content_type,
            content_disposition=content_disposition,
        )

    def generate_public_url(self, bucket: str, key: str) -> str:
        return self._require_service().generate_public_url(bucket, key)

    def search_objects(
        self,
        bucket: str,
        prefix: str | None = None,
        contains: str | None = None,
        max_results: int = 1000,
    ) -> list[S3Object]:
        return self._require_service().search_objects(bucket, prefix, contains, max_results)
