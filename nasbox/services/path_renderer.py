"""Destination path rendering for uploaded media items."""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, Optional, Set

from nasbox.config import settings

DEFAULT_DIRECTORY_TEMPLATE = "{year}/{month}/{day}"
DEFAULT_FILENAME_PATTERN = "{timestamp}_{mediaId}.{ext}"
UNKNOWN_SEGMENT = "unknown"
EPOCH = datetime(1970, 1, 1)

ILLEGAL_SEGMENT_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
SEPARATORS = re.compile(r"[/\\]")
TOKEN = re.compile(r"\{([^}]+)\}")


@dataclass(frozen=True)
class PathRenderResult:
    """Rendered remote path plus the tokens that had to fall back to a default."""

    path: str
    used_default_tokens: FrozenSet[str] = field(default_factory=frozenset)


def sanitize_segment(value: Optional[str]) -> str:
    """Make one path segment safe for an SMB share.

    Illegal characters and control characters become ``_``. Blank input becomes
    ``unknown`` and a segment made only of dots becomes ``_``.
    """
    trimmed = (value or "").strip()
    if not trimmed:
        return UNKNOWN_SEGMENT
    if set(trimmed) == {"."}:
        return "_"
    return ILLEGAL_SEGMENT_CHARS.sub("_", trimmed)


def sanitize_path(path: Optional[str]) -> str:
    """Split on both separators, sanitize each non-blank segment and rejoin with ``/``."""
    segments = [segment.strip() for segment in SEPARATORS.split(path or "")]
    return "/".join(sanitize_segment(segment) for segment in segments if segment)


def join_segments(*parts: str) -> str:
    return "/".join(part for part in (sanitize_path(p) for p in parts) if part)


def extension_for(display_name: Optional[str], mime_type: Optional[str]) -> str:
    """File extension from the display name suffix, else the MIME subtype, else ``bin``."""
    name = (display_name or "").strip()
    if "." in name:
        suffix = name.rsplit(".", 1)[1].strip().lower()
        if suffix:
            return suffix

    mime = (mime_type or "").strip()
    if "/" in mime:
        subtype = mime.split("/", 1)[1].strip().lower()
        if subtype:
            return subtype
    return "bin"


class PathRenderer:
    """Renders ``base/directory/filename`` for a media item from plan templates.

    Tokens: ``{year} {month} {day} {time} {timestamp} {album} {mediaId} {ext}
    {device}``. Unrecognised tokens render as ``unknown``.
    """

    def __init__(self, device_label: Optional[str] = None):
        self.device_label = device_label if device_label is not None else settings.device_label

    def render(
        self,
        base_path: str,
        directory_template: str,
        filename_pattern: str,
        item,
        fallback_album_label: str = ""
    ) -> str:
        return self.render_result(
            base_path, directory_template, filename_pattern, item, fallback_album_label
        ).path

    def render_result(
        self,
        base_path: str,
        directory_template: str,
        filename_pattern: str,
        item,
        fallback_album_label: str = ""
    ) -> PathRenderResult:
        """Render the destination path and report which tokens used defaults.

        Args:
            base_path: Server base path.
            directory_template: Plan directory template (blank means default).
            filename_pattern: Plan filename pattern (blank means default).
            item: Media item with ``media_id``, ``display_name``, ``mime_type``,
                ``captured_at`` and optionally ``album``.
            fallback_album_label: Album label when the item carries none.

        Returns:
            PathRenderResult with the joined path.
        """
        used_defaults: Set[str] = set()
        values = self._token_values(item, fallback_album_label, used_defaults)

        directory = self._render_tokens(
            (directory_template or "").strip() or DEFAULT_DIRECTORY_TEMPLATE, values, used_defaults
        )
        filename = self._render_tokens(
            (filename_pattern or "").strip() or DEFAULT_FILENAME_PATTERN, values, used_defaults
        )

        path = join_segments(base_path or "", sanitize_path(directory), sanitize_segment(filename))
        return PathRenderResult(path=path, used_default_tokens=frozenset(used_defaults))

    def _token_values(self, item, fallback_album_label: str, used_defaults: Set[str]) -> Dict[str, str]:
        captured_at = getattr(item, "captured_at", None)
        if captured_at is None:
            captured_at = EPOCH
            used_defaults.update({"year", "month", "day", "time", "timestamp"})

        album = (getattr(item, "album", None) or "").strip() or (fallback_album_label or "").strip()
        if not album:
            used_defaults.add("album")

        device = (self.device_label or "").strip()
        if not device:
            used_defaults.add("device")

        return {
            "year": captured_at.strftime("%Y"),
            "month": captured_at.strftime("%m"),
            "day": captured_at.strftime("%d"),
            "time": captured_at.strftime("%H%M%S"),
            "timestamp": captured_at.strftime("%Y%m%d_%H%M%S"),
            "album": sanitize_segment(album),
            "mediaId": sanitize_segment(item.media_id),
            "ext": sanitize_segment(extension_for(item.display_name, item.mime_type)),
            "device": sanitize_segment(device),
        }

    @staticmethod
    def _render_tokens(template: str, values: Dict[str, str], used_defaults: Set[str]) -> str:
        def substitute(match: re.Match) -> str:
            name = match.group(1)
            if name in values:
                return values[name]
            used_defaults.add(name)
            return UNKNOWN_SEGMENT

        return TOKEN.sub(substitute, template)


def mask_remote_path(path: str, keep: int = 2) -> str:
    """Shorten a remote path for logs to its last segments, e.g. ``.../2024/a.jpg``."""
    segments = [segment for segment in SEPARATORS.split(path or "") if segment.strip()]
    tail = segments[-keep:]
    prefix = ".../" if len(tail) < len(segments) else ""
    return prefix + "/".join(tail)
