"""Command line entry point for browsing and reorganizing S3 trees."""
from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading

from .controller import S3TreeController
from .errors import OperationCancelledError, S3TreeError
from .models import NODE_LOAD_MORE, TreeNode
from .operations import STATE_DONE, OperationResult, ProgressEvent
from .paths import DELIMITER, format_last_modified, format_size, join_path
from .profiles import ConnectionProfile, ProfileStorage
from .settings import SettingsStorage

LOGGER = logging.getLogger("s3_tree")


def split_location(location: str) -> tuple[str, str]:
    """Split ``bucket/some/prefix`` into ``("bucket", "some/prefix")``."""
    bucket, _, key = location.lstrip(DELIMITER).partition(DELIMITER)
    return bucket, key


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="s3_tree", description="Browse and reorganize S3-compatible buckets")
    parser.add_argument("--profile", help="Saved connection profile name")
    parser.add_argument("--endpoint-url", help="Endpoint URL (instead of a saved profile)")
    parser.add_argument("--access-key", help="Access key ID")
    parser.add_argument("--secret-key", help="Secret access key")
    parser.add_argument("--region", default="us-east-1", help="Region (default: us-east-1)")
    parser.add_argument("--filter", dest="filter_text", default="", help="Only show paths containing this text")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    tree = commands.add_parser("tree", help="Print a bucket or folder as a tree")
    tree.add_argument("location", nargs="?", default="", help="BUCKET[/PREFIX]; omit to list buckets")
    tree.add_argument("-L", "--max-depth", type=int, default=None, help="Max depth (like tree -L)")
    tree.add_argument("--all-pages", action="store_true", help="Follow every load-more continuation")

    find = commands.add_parser("find", help="Locate a key and print its node id")
    find.add_argument("bucket")
    find.add_argument("key", nargs="?", default=None)

    rm = commands.add_parser("rm", help="Delete an object, or a folder when KEY ends with '/'")
    rm.add_argument("bucket")
    rm.add_argument("key")

    for name, verb in (("cp", "Copy"), ("mv", "Move")):
        transfer = commands.add_parser(name, help=f"{verb} an object, or a folder when SOURCE_KEY ends with '/'")
        transfer.add_argument("source_bucket")
        transfer.add_argument("source_key")
        transfer.add_argument("target_bucket")
        transfer.add_argument("target_key")

    rename = commands.add_parser("rename", help="Rename the last segment of an object or folder")
    rename.add_argument("bucket")
    rename.add_argument("key")
    rename.add_argument("new_name")

    put = commands.add_parser("put", help="Upload a file, or a directory as a new folder")
    put.add_argument("source", help="Local file or directory")
    put.add_argument("bucket")
    put.add_argument("target", nargs="?", default="", help="Target key, or a prefix ending with '/'")

    get = commands.add_parser("get", help="Download an object")
    get.add_argument("bucket")
    get.add_argument("key")
    get.add_argument("destination", nargs="?", default=".", help="Local file or directory (default: .)")

    stat = commands.add_parser("stat", help="Show an object's metadata")
    stat.add_argument("bucket")
    stat.add_argument("key")

    search = commands.add_parser("search", help="Recursively search keys containing TEXT")
    search.add_argument("bucket")
    search.add_argument("text")
    search.add_argument("--prefix", default=None)
    search.add_argument("--max-results", type=int, default=1000)
    return parser


def _resolve_profile(args: argparse.Namespace, controller: S3TreeController) -> ConnectionProfile:
    if args.endpoint_url:
        return ConnectionProfile(
            name="command-line",
            endpoint_url=args.endpoint_url,
            access_key=args.access_key or "",
            secret_key=args.secret_key or "",
            region=args.region,
        )
    if args.profile:
        return controller.get_profile(args.profile)
    profiles = controller.list_profiles()
    if len(profiles) == 1:
        return profiles[0]
    raise ValueError("Choose a connection with --profile or --endpoint-url")


class _Cancellation:
    """Turns the first Ctrl-C into a cooperative cancel request."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def install(self) -> None:
        signal.signal(signal.SIGINT, self._handle)

    def _handle(self, signum, frame) -> None:
        if self._event.is_set():
            raise KeyboardInterrupt
        print("\nCancelling after the current step...", file=sys.stderr)
        self._event.set()

    def requested(self) -> bool:
        return self._event.is_set()


class _ProgressPrinter:
    def __init__(self) -> None:
        self._percent = 0.0

    def __call__(self, event: ProgressEvent) -> None:
        self._percent = min(self._percent + event.increment, 100.0)
        print(f"[{self._percent:5.1f}%] {event.message}", file=sys.stderr)


def _print_tree(
    controller: S3TreeController,
    node: TreeNode | None,
    *,
    indent: str = "",
    level: int = 0,
    max_depth: int | None = None,
    all_pages: bool = False,
) -> None:
    if max_depth is not None and level >= max_depth:
        return
    children = controller.get_children(node)
    while all_pages and children and children[-1].kind == NODE_LOAD_MORE:
        controller.load_more(children[-1])
        children = controller.get_children(node)
    for index, child in enumerate(children):
        is_last = index == len(children) - 1
        connector = "└── " if is_last else "├── "
        label = child.label
        if child.kind == NODE_LOAD_MORE:
            label = "… more (use --all-pages)"
        elif child.size is not None:
            label = f"{label} ({format_size(child.size)})"
        print(indent + connector + label)
        if child.is_expandable:
            _print_tree(
                controller,
                child,
                indent=indent + ("    " if is_last else "│   "),
                level=level + 1,
                max_depth=max_depth,
                all_pages=all_pages,
            )


def _report(result: OperationResult) -> int:
    for error in result.errors:
        print(f"error: {error}", file=sys.stderr)
    print(f"{result.state}: {result.processed} object(s) processed")
    return 0 if result.state == STATE_DONE else 1


def run(args: argparse.Namespace, controller: S3TreeController) -> int:
    controller.connect(_resolve_profile(args, controller))
    if args.filter_text:
        controller.set_filter(args.filter_text)

    cancellation = _Cancellation()
    operation_options = {"progress_callback": _ProgressPrinter(), "cancel_requested": cancellation.requested}

    if args.command == "tree":
        bucket, prefix = split_location(args.location)
        root = None
        if bucket:
            root = controller.find_node(bucket, prefix.rstrip(DELIMITER) + DELIMITER if prefix else None)
            if root is None:
                print(f"{args.location}: not found", file=sys.stderr)
                return 1
            print(args.location.rstrip(DELIMITER))
        _print_tree(controller, root, max_depth=args.max_depth, all_pages=args.all_pages)
        return 0

    if args.command == "find":
        node = controller.find_node(args.bucket, args.key)
        if node is None:
            print("not found", file=sys.stderr)
            return 1
        print(node.node_id)
        return 0

    if args.command == "search":
        for obj in controller.search_objects(args.bucket, args.prefix, args.text, args.max_results):
            print(f"{obj.key}\t{format_size(obj.size)}")
        return 0

    if args.command == "stat":
        details = controller.get_object_details(args.bucket, args.key)
        print(f"Key: {details.key}")
        print(f"Size: {format_size(details.size)}")
        print(f"Last modified: {format_last_modified(details.last_modified)}")
        print(f"Content type: {details.content_type or '-'}")
        print(f"ETag: {details.etag or '-'}")
        for name, value in sorted(details.metadata.items()):
            print(f"Metadata {name}: {value}")
        return 0

    cancellation.install()
    if args.command == "rm":
        if args.key.endswith(DELIMITER):
            return _report(controller.delete_folder(args.bucket, args.key, **operation_options))
        return _report(controller.delete_object(args.bucket, args.key, **operation_options))

    if args.command in ("cp", "mv"):
        is_folder = args.source_key.endswith(DELIMITER)
        method = {
            ("cp", True): controller.copy_folder,
            ("cp", False): controller.copy_object,
            ("mv", True): controller.move_folder,
            ("mv", False): controller.move_object,
        }[(args.command, is_folder)]
        return _report(
            method(args.source_bucket, args.source_key, args.target_bucket, args.target_key, **operation_options)
        )

    if args.command == "rename":
        if args.key.endswith(DELIMITER):
            return _report(controller.rename_folder(args.bucket, args.key, args.new_name, **operation_options))
        return _report(controller.rename_object(args.bucket, args.key, args.new_name, **operation_options))

    if args.command == "put":
        if os.path.isdir(args.source):
            return _report(controller.upload_folder(args.bucket, args.target, args.source, **operation_options))
        key = args.target
        if not key or key.endswith(DELIMITER):
            key = join_path(key, os.path.basename(args.source))
        return _report(controller.upload_file(args.bucket, key, args.source, **operation_options))

    if args.command == "get":
        return _report(controller.download_file(args.bucket, args.key, args.destination, **operation_options))

    raise ValueError(f"Unknown command '{args.command}'")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    controller = S3TreeController(ProfileStorage(), SettingsStorage().load())
    try:
        return run(args, controller)
    except OperationCancelledError:
        print("cancelled", file=sys.stderr)
        return 130
    except (S3TreeError, ValueError) as exc:
        LOGGER.debug("Command failed", exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
