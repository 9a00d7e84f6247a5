"""Local media enumeration."""

import logging
import mimetypes
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from functools import reduce
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, List, Optional, Tuple

from nasbox.config import settings
from nasbox.models.enums import SourceType

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".part"


@dataclass(frozen=True)
class MediaItem:
    """Metadata of one local item; ``media_id`` is stable across scans."""

    media_id: str
    display_name: str
    mime_type: Optional[str]
    captured_at: Optional[datetime]
    size_bytes: Optional[int]
    album: Optional[str] = None
    relative_path: str = ""


@dataclass(frozen=True)
class MediaAlbum:
    album_id: str
    display_name: str
    item_count: int
    latest_captured_at: Optional[datetime] = None


@dataclass(frozen=True)
class SourceDescriptor:
    """What a plan backs up."""

    source_type: str
    album: str = ""
    folder_path: str = ""
    include_videos: bool = False

    @classmethod
    def from_plan(cls, plan) -> "SourceDescriptor":
        return cls(
            source_type=(plan.source_type or "").strip().upper(),
            album=plan.source_album or "",
            folder_path=plan.folder_path or "",
            include_videos=bool(plan.include_videos),
        )


class MediaSource(ABC):
    """Enumerates source items and opens their content."""

    @abstractmethod
    def supports(self, source_type: str) -> bool:
        ...

    @abstractmethod
    def list_albums(self) -> Tuple[MediaAlbum, ...]:
        ...

    @abstractmethod
    def list_items(self, descriptor: SourceDescriptor) -> List[MediaItem]:
        """Items for a source descriptor, in a stable order."""

    @abstractmethod
    def open_stream(self, media_id: str) -> Optional[BinaryIO]:
        """Open an item for reading, or None when it cannot be read."""


def _merge_album(albums: Dict[str, MediaAlbum], item: MediaItem) -> Dict[str, MediaAlbum]:
    current = albums.get(item.album)
    if current is None:
        merged = MediaAlbum(item.album, item.album, 1, item.captured_at)
    else:
        latest = max(
            (value for value in (current.latest_captured_at, item.captured_at) if value is not None),
            default=None,
        )
        merged = replace(current, item_count=current.item_count + 1, latest_captured_at=latest)
    return {**albums, item.album: merged}


def aggregate_albums(items) -> Tuple[MediaAlbum, ...]:
    """Fold items into albums, most recently captured first, then by name."""
    albums = reduce(_merge_album, (item for item in items if item.album), {})
    return tuple(sorted(
        albums.values(),
        key=lambda album: (
            -(album.latest_captured_at.timestamp() if album.latest_captured_at else 0.0),
            album.display_name.lower(),
        ),
    ))


class FilesystemMediaSource(MediaSource):
    """MediaSource over a directory tree.

    Albums are the top-level directories under the media root, a folder source
    is any sub-path, and a full-device source is the whole root. Item ids are
    root-relative POSIX paths.
    """

    SUPPORTED = frozenset({SourceType.ALBUM.value, SourceType.FOLDER.value, SourceType.FULL_DEVICE.value})

    def __init__(self, media_root: Optional[str] = None):
        self.root = Path(media_root or settings.media_root).resolve()

    def supports(self, source_type: str) -> bool:
        return (source_type or "").strip().upper() in self.SUPPORTED

    def _resolve(self, relative: str) -> Optional[Path]:
        candidate = (self.root / relative.replace("\\", "/").lstrip("/")).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            logger.warning(f"Rejected path outside media root: {relative}")
            return None
        return candidate

    def _walk(self, directory: Path) -> Iterator[Path]:
        for current, dirnames, filenames in os.walk(directory):
            dirnames[:] = sorted(name for name in dirnames if not name.startswith("."))
            for filename in sorted(filenames):
                if filename.startswith(".") or filename.endswith(PARTIAL_SUFFIX):
                    continue
                yield Path(current) / filename

    def _to_item(self, path: Path) -> MediaItem:
        relative = path.relative_to(self.root).as_posix()
        parent = path.parent.relative_to(self.root).as_posix()
        stat = path.stat()
        mime_type, _ = mimetypes.guess_type(path.name)
        album = relative.split("/", 1)[0] if "/" in relative else None
        return MediaItem(
            media_id=relative,
            display_name=path.name,
            mime_type=mime_type,
            captured_at=datetime.fromtimestamp(stat.st_mtime),
            size_bytes=stat.st_size,
            album=album,
            relative_path="" if parent == "." else parent,
        )

    def _items_under(self, directory: Optional[Path]) -> List[MediaItem]:
        if directory is None or not directory.is_dir():
            raise FileNotFoundError(f"Source directory not found: {directory}")
        return [self._to_item(path) for path in self._walk(directory)]

    @staticmethod
    def _is_media(item: MediaItem, include_videos: bool) -> bool:
        mime = item.mime_type or ""
        return mime.startswith("image/") or (include_videos and mime.startswith("video/"))

    def list_albums(self) -> Tuple[MediaAlbum, ...]:
        if not self.root.is_dir():
            return ()
        images = (item for item in self._items_under(self.root) if self._is_media(item, False))
        return aggregate_albums(images)

    def list_items(self, descriptor: SourceDescriptor) -> List[MediaItem]:
        """List the items of a source.

        Raises:
            FileNotFoundError: If the album or folder does not exist.
            ValueError: If the source type is not supported.
        """
        source_type = (descriptor.source_type or "").strip().upper()
        if source_type == SourceType.ALBUM.value:
            items = [
                item for item in self._items_under(self._resolve(descriptor.album))
                if self._is_media(item, descriptor.include_videos)
            ]
        elif source_type == SourceType.FOLDER.value:
            items = self._items_under(self._resolve(descriptor.folder_path))
        elif source_type == SourceType.FULL_DEVICE.value:
            items = self._items_under(self.root)
        else:
            raise ValueError(f"Unsupported source type: {descriptor.source_type}")

        return sorted(
            items,
            key=lambda item: (item.relative_path.lower(), item.display_name.lower(), item.media_id),
        )

    def open_stream(self, media_id: str) -> Optional[BinaryIO]:
        path = self._resolve(media_id)
        if path is None or not path.is_file():
            return None
        try:
            return open(path, "rb")
        except OSError as e:
            logger.warning(f"Unable to open {media_id}: {e}")
            return None
