from __future__ import annotations
"""UI-agnostic helpers for formatting listings, transfers and commands."""
from dataclasses import dataclass
from datetime import datetime
from importlib.metadata import PackageNotFoundError, metadata, version

from .models import ActivityEntry, FolderNode, ListingEntry, Transfer

DIST_NAME = "pys3fm"
SIZE_UNIT_FACTORS = {
    "B": 1,
    "KB": 1024,
    "MB": 1024 * 1024,
    "GB": 1024 * 1024 * 1024,
}


@dataclass(frozen=True)
class PackageInfo:
    name: str
    version: str
    summary: str
    homepage: str | None


def load_package_info(dist_name: str = DIST_NAME) -> PackageInfo:
    try:
        distribution_metadata = metadata(dist_name)
        package_version = version(dist_name)
    except PackageNotFoundError:
        return PackageInfo(
            name="S3 Folder Manager",
            version="",
            summary="Browse, transfer and rename files in an S3 bucket.",
            homepage=None,
        )
    homepage = distribution_metadata.get("Home-page")
    for entry in distribution_metadata.get_all("Project-URL") or []:
        label, _, link = entry.partition(",")
        if label.strip().lower() == "homepage" and not homepage:
            homepage = link.strip()
    return PackageInfo(
        name=distribution_metadata.get("Name"),
        version=package_version,
        summary=distribution_metadata.get("Summary") or "",
        homepage=homepage or None,
    )


def parse_size_bytes(value: str) -> int | None:
    """Parse ``"5MB"``, ``"512 KB"`` or ``"1024"`` into a byte count."""

    text = (value or "").strip().upper()
    unit = "B"
    for suffix in ("GB", "MB", "KB", "B"):
        if text.endswith(suffix):
            unit = suffix
            text = text[: -len(suffix)].strip()
            break
    try:
        amount = int(text)
    except (TypeError, ValueError):
        return None
    if amount <= 0:
        return None
    return amount * SIZE_UNIT_FACTORS[unit]


def format_size(size: int | None) -> str:
    if size is None:
        return "-"
    suffixes = ["B", "KB", "MB", "GB", "TB"]
    value = float(max(size, 0))
    for suffix in suffixes:
        if value < 1024 or suffix == suffixes[-1]:
            return f"{value:.1f} {suffix}" if suffix != "B" else f"{int(value)} {suffix}"
        value /= 1024
    return f"{size} B"


def format_last_modified(last_modified: object) -> str:
    if not last_modified:
        return "-"
    if isinstance(last_modified, datetime):
        return last_modified.strftime("%Y-%m-%d %H:%M:%S %Z").strip() or last_modified.isoformat()
    return str(last_modified)


def format_listing_row(entry: ListingEntry) -> str:
    marker = "/" if entry.is_folder else ""
    size = "-" if entry.is_folder else format_size(entry.size)
    return f"{format_last_modified(entry.last_modified):>23}  {size:>10}  {entry.name}{marker}"


def format_tree(nodes: dict[str, FolderNode], indent: int = 0) -> list[str]:
    lines: list[str] = []
    for name in sorted(nodes, key=str.casefold):
        node = nodes[name]
        suffix = "/" if node.type == "folder" else ""
        lines.append(f"{'  ' * indent}{name}{suffix} ({format_size(node.size)})")
        lines.extend(format_tree(node.children, indent + 1))
    return lines


def format_transfer(transfer: Transfer) -> str:
    text = f"[{transfer.type.value}] {transfer.name}: {transfer.progress}% ({transfer.status.value})"
    if transfer.error:
        text += f" - {transfer.error}"
    return text


def format_activity(entry: ActivityEntry) -> str:
    files = "file" if entry.file_count == 1 else "files"
    return f"{entry.date}  {entry.action:<8}  {entry.item_name}  {format_size(entry.size)}  {entry.file_count} {files}"


def suggest_download_filename(key: str) -> str:
    cleaned = key.strip().rstrip("/")
    if not cleaned:
        return "local-file"
    name = cleaned.rsplit("/", 1)[-1]
    return name or "local-file"


def build_download_commands(url: str, filename: str) -> tuple[str, str]:
    """Return equivalent ``wget`` and ``curl`` commands for a signed GET URL."""

    wget_cmd = f'wget "{url}" -O "{filename}"'
    curl_cmd = f'curl -L "{url}" -o "{filename}"'
    return wget_cmd, curl_cmd
