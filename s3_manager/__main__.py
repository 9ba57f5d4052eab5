from __future__ import annotations
"""Command-line entry point for the S3 folder manager."""
import argparse
from dataclasses import replace
import logging
from pathlib import Path
import sys

from botocore.exceptions import BotoCoreError, ClientError

from .controller import FileManagerController, NotConnectedError
from .services import (
    InvalidInputError,
    ObjectNotFoundError,
    RenameFailedError,
    TransferCancelledError,
    TransferFailedError,
)
from .settings import LOG_LEVELS, SettingsStorage
from .transfers import CancellationToken
from .ui_utils import (
    build_download_commands,
    format_activity,
    format_listing_row,
    format_size,
    format_transfer,
    format_tree,
    load_package_info,
    parse_size_bytes,
    suggest_download_filename,
)

LOGGER = logging.getLogger("s3_manager")


def configure_logging(level: str = "WARNING") -> None:
    """Send log records at ``level`` and above to stderr."""

    numeric_level = getattr(logging, level.upper(), logging.WARNING)
    root = logging.getLogger()
    root.setLevel(numeric_level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)


def _size_argument(value: str) -> int:
    size = parse_size_bytes(value)
    if size is None:
        raise argparse.ArgumentTypeError(f"invalid size: {value!r}")
    return size


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    info = load_package_info()
    parser = argparse.ArgumentParser(prog="pys3fm", description=info.summary)
    parser.add_argument("--version", action="version", version=f"%(prog)s {info.version or 'dev'}")
    parser.add_argument("--profile", help="Saved connection profile to use")
    parser.add_argument("--endpoint-url", default="", help="S3-compatible endpoint URL")
    parser.add_argument("--region", default="", help="Bucket region")
    parser.add_argument("--bucket", default="", help="Bucket name")
    parser.add_argument("--access-key", default="", help="Access key id")
    parser.add_argument("--secret-key", default="", help="Secret access key")
    parser.add_argument("--settings", type=Path, default=None, help="Settings file path")
    parser.add_argument("--log-level", choices=LOG_LEVELS, default=None, help="Log level")
    parser.add_argument("--part-size", type=_size_argument, default=None, help="Upload part size, e.g. 8MB")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("profiles", help="List saved connection profiles")
    ls_cmd = commands.add_parser("ls", help="List one folder level")
    ls_cmd.add_argument("prefix", nargs="?", default="")
    tree_cmd = commands.add_parser("tree", help="Show the folder tree with sizes")
    tree_cmd.add_argument("prefix", nargs="?", default="")
    du_cmd = commands.add_parser("du", help="Show the size of a folder, or bucket totals")
    du_cmd.add_argument("prefix", nargs="?", default="")
    mkdir_cmd = commands.add_parser("mkdir", help="Create an empty folder")
    mkdir_cmd.add_argument("name")
    mkdir_cmd.add_argument("--parent", default="")
    rm_cmd = commands.add_parser("rm", help="Delete a file, or a folder when the key ends with /")
    rm_cmd.add_argument("key")
    mv_cmd = commands.add_parser("mv", help="Rename a file or folder")
    mv_cmd.add_argument("key")
    mv_cmd.add_argument("new_name")
    put_cmd = commands.add_parser("put", help="Upload a local file")
    put_cmd.add_argument("source", type=Path)
    put_cmd.add_argument("destination", nargs="?", default="")
    get_cmd = commands.add_parser("get", help="Download a file, or a folder as ZIP when the key ends with /")
    get_cmd.add_argument("key")
    get_cmd.add_argument("--output", "-o", type=Path, default=None)
    url_cmd = commands.add_parser("url", help="Print a signed download URL")
    url_cmd.add_argument("key")
    url_cmd.add_argument("--expires-in", type=int, default=None)
    history_cmd = commands.add_parser("history", help="Show the activity log")
    history_cmd.add_argument("--clear", action="store_true", help="Empty the activity log")
    return parser.parse_args(argv)


def _connect(controller: FileManagerController, args: argparse.Namespace) -> None:
    if args.profile:
        controller.connect_with_profile(args.profile)
        return
    controller.connect(
        endpoint_url=args.endpoint_url,
        access_key=args.access_key,
        secret_key=args.secret_key,
        bucket_name=args.bucket,
        region_name=args.region,
    )


def run(args: argparse.Namespace, controller: FileManagerController) -> int:
    if args.command == "profiles":
        for profile in controller.list_profiles():
            print(f"{profile.name}\t{profile.bucket_name}\t{profile.endpoint_url}")
        return 0

    _connect(controller, args)
    if args.command == "ls":
        for entry in controller.list_folder(args.prefix):
            print(format_listing_row(entry))
    elif args.command == "tree":
        for line in format_tree(controller.build_tree(args.prefix)):
            print(line)
    elif args.command == "du":
        if args.prefix:
            print(format_size(controller.folder_size(args.prefix)))
        else:
            metrics = controller.bucket_metrics()
            print(
                f"{metrics.total_objects} object(s), "
                f"{format_size(metrics.total_size)} ({metrics.storage_gb:.2f} GB)"
            )
    elif args.command == "mkdir":
        print(controller.create_folder(args.parent, args.name))
    elif args.command == "rm":
        print(f"Deleted {controller.delete_item(args.key)} object(s)")
    elif args.command == "mv":
        print(controller.rename_item(args.key, args.new_name))
    elif args.command == "put":
        print(controller.upload_file(args.source, args.destination))
    elif args.command == "get":
        _download(controller, args)
    elif args.command == "url":
        url = controller.signed_url(args.key, args.expires_in)
        print(url)
        for command in build_download_commands(url, suggest_download_filename(args.key)):
            print(command)
    elif args.command == "history":
        if args.clear:
            controller.clear_activity_history()
        for entry in controller.activity_history():
            print(format_activity(entry))
    return 0


def _download(controller: FileManagerController, args: argparse.Namespace) -> None:
    token = CancellationToken()
    if args.key.endswith("/"):
        name = suggest_download_filename(args.key) + ".zip"
        archive = controller.download_folder(
            args.key,
            destination=args.output or Path(name),
            cancel_token=token,
        )
        print(f"Wrote {archive.path} ({archive.file_count} file(s))")
        return
    result = controller.download_file(
        args.key,
        track=True,
        destination=args.output or Path(suggest_download_filename(args.key)),
        cancel_token=token,
    )
    print(f"Wrote {result.path}")


def _transfer_printer():
    printed: dict[str, str] = {}

    def show(transfers) -> None:
        for transfer in transfers:
            line = format_transfer(transfer)
            if printed.get(transfer.id) == line:
                continue
            printed[transfer.id] = line
            end = "\n" if transfer.status.is_terminal else "\r"
            print(line, end=end, file=sys.stderr, flush=True)

    return show


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    storage = SettingsStorage(args.settings)
    settings = storage.load()
    if args.part_size:
        settings = replace(settings, upload_part_size=args.part_size)
    configure_logging(args.log_level or settings.log_level)

    controller = FileManagerController(settings=settings)
    controller.registry.subscribe(_transfer_printer())
    try:
        return run(args, controller)
    except TransferCancelledError as exc:
        print(f"Cancelled: {exc}", file=sys.stderr)
        return 130
    except KeyboardInterrupt:
        for transfer in controller.transfers():
            controller.cancel_transfer(transfer.id)
        print("Cancelled", file=sys.stderr)
        return 130
    except (
        BotoCoreError,
        ClientError,
        InvalidInputError,
        NotConnectedError,
        ObjectNotFoundError,
        RenameFailedError,
        TransferFailedError,
        ValueError,
    ) as exc:
        LOGGER.debug("Command failed", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
