"""
Utilities for building safe download paths and locating downloaded files.
"""

import re
from pathlib import Path
from typing import Optional

from pathvalidate import sanitize_filename as _sanitize_component

PLACEHOLDER_NAME = "downloaded_file"
UNCATEGORIZED_DIR = "uncategorized"

# Shell-sensitive characters pathvalidate leaves in place.
_SHELL_CHARS = re.compile(r"[`$]")


def _clean_component(name: Optional[str]) -> str:
    safe = _SHELL_CHARS.sub("", name or "")
    safe = _sanitize_component(safe, replacement_text="", platform="universal")
    while ".." in safe:
        safe = safe.replace("..", "")
    return safe.strip().strip(".").strip()


def sanitize_filename(name: str) -> str:
    """
    Makes a single path component safe for the filesystem.

    Characters invalid on any platform, control characters, backticks and
    dollar signs are removed, `..` sequences are collapsed until none remain,
    and leading/trailing dots and whitespace are trimmed. An empty result
    becomes a placeholder name.
    """
    return _clean_component(name) or PLACEHOLDER_NAME


def create_dir(directory_path: Path) -> None:
    """Creates a directory if it does not already exist."""
    directory_path.mkdir(parents=True, exist_ok=True)


def build_target_dir(
    base_path: str, channel_name: str, group_name: Optional[str] = None
) -> Path:
    """Returns `<base>/<group or uncategorized>/<channel>` with sanitized names."""
    group_dir = _clean_component(group_name) or UNCATEGORIZED_DIR
    return Path(base_path).expanduser() / group_dir / sanitize_filename(channel_name)


def build_output_template(target_dir: Path) -> str:
    """The yt-dlp output template: `<target_dir>/<title> [<id>].<ext>`."""
    return str(target_dir / "%(title)s [%(id)s].%(ext)s")


def find_downloaded_file(
    directory: Path, item_id: str, extension: str = ".mp4"
) -> Optional[Path]:
    """
    Scans a directory for a file whose name contains the item id and ends with
    the expected extension.
    """
    if not directory.is_dir():
        return None
    for entry in sorted(directory.iterdir()):
        if entry.is_file() and item_id in entry.name and entry.name.endswith(extension):
            return entry
    return None
