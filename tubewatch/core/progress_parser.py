"""
Classifies yt-dlp stdout lines into typed progress events.

The downloader is started with `PROGRESS_TEMPLATE`, so progress lines always
read `[download] <percent>% at <speed> ETA <eta>`. Other lines are matched
against yt-dlp's plain messages. Rules are tried in order and the first match
wins; lines matching no rule produce no event.
"""

import re
from dataclasses import dataclass
from typing import Callable, Optional, Union

PROGRESS_TEMPLATE = (
    "download:[download] %(progress._percent_str)s at "
    "%(progress._speed_str)s ETA %(progress._eta_str)s"
)

_PERCENT = re.compile(r"(\d+(?:\.\d+)?)\s*%$")
_SPEED = re.compile(r"\bat\s+(\S+)")
_ETA = re.compile(r"\bETA\s+(\S+)")
_QUOTED = re.compile(r'"([^"]+)"')


@dataclass(frozen=True)
class Destination:
    path: str


@dataclass(frozen=True)
class Merged:
    path: str


@dataclass(frozen=True)
class AlreadyDownloaded:
    path: str


@dataclass(frozen=True)
class FixedUp:
    path: str


@dataclass(frozen=True)
class Progress:
    percent: float
    speed: str = ""
    eta: str = ""


LineEvent = Union[Destination, Merged, AlreadyDownloaded, FixedUp, Progress]
PATH_EVENTS = (Destination, Merged, AlreadyDownloaded, FixedUp)


def _destination(line: str) -> Optional[LineEvent]:
    marker = "[download] Destination: "
    if marker not in line:
        return None
    path = line.split(marker, 1)[1].strip()
    if path.endswith(".part"):
        path = path[: -len(".part")]
    return Destination(path) if path else None


def _merged(line: str) -> Optional[LineEvent]:
    if "[Merger] Merging formats into" not in line:
        return None
    match = _QUOTED.search(line)
    return Merged(match.group(1)) if match else None


def _already_downloaded(line: str) -> Optional[LineEvent]:
    suffix = " has already been downloaded"
    if "[download] " not in line or suffix not in line:
        return None
    path = line.split("[download] ", 1)[1].split(suffix, 1)[0].strip()
    return AlreadyDownloaded(path) if path else None


def _fixed_up(line: str) -> Optional[LineEvent]:
    if "[Fixup" not in line or "Correcting container of" not in line:
        return None
    match = _QUOTED.search(line)
    return FixedUp(match.group(1)) if match else None


def _progress(line: str) -> Optional[LineEvent]:
    if "[download]" not in line or "%" not in line:
        return None
    # Only a number directly before the first '%' counts.
    head = line[: line.index("%") + 1]
    match = _PERCENT.search(head)
    if not match:
        return None
    percent = float(match.group(1))
    speed = _SPEED.search(line)
    eta = _ETA.search(line)
    return Progress(
        percent=min(max(percent, 0.0), 100.0),
        speed=speed.group(1) if speed else "",
        eta=eta.group(1) if eta else "",
    )


RULES: tuple[Callable[[str], Optional[LineEvent]], ...] = (
    _destination,
    _merged,
    _already_downloaded,
    _fixed_up,
    _progress,
)


def classify_line(line: str) -> Optional[LineEvent]:
    """Returns the event for the first matching rule, or None."""
    line = line.rstrip("\r\n")
    for rule in RULES:
        event = rule(line)
        if event is not None:
            return event
    return None
