"""Centxo — Media Storage.

Uploaded creatives live on disk (or any other MediaStorage) before they are
pushed to Meta. A MediaAsset names what the user picked: a new upload, a
video already in the ad account's library, or an existing page post to boost.
"""

import asyncio
import mimetypes
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from centxo.config import settings
from centxo.core.errors import InvalidRequestError
from centxo.core.logging import get_logger

logger = get_logger("media.storage")


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    EXISTING_POST = "existing_post"
    EXISTING_VIDEO = "existing_video"


class MediaAsset(BaseModel):
    kind: MediaKind
    path: Optional[str] = None
    thumbnail_path: Optional[str] = None
    remote_video_id: Optional[str] = None
    post_id: Optional[str] = None

    @property
    def is_video(self) -> bool:
        return self.kind in (MediaKind.VIDEO, MediaKind.EXISTING_VIDEO)

    def validate_source(self) -> None:
        if self.kind in (MediaKind.IMAGE, MediaKind.VIDEO) and not self.path:
            raise InvalidRequestError(f"{self.kind.value} media requires a stored file path")
        if self.kind == MediaKind.EXISTING_VIDEO and not self.remote_video_id:
            raise InvalidRequestError("existing_video media requires remote_video_id")
        if self.kind == MediaKind.EXISTING_POST and not self.post_id:
            raise InvalidRequestError("existing_post media requires post_id")


class MediaStorage(ABC):
    @abstractmethod
    def resolve(self, path: str) -> str:
        """Stable location for a stored upload."""
        ...

    @abstractmethod
    async def read_bytes(self, path: str) -> bytes: ...

    def mime_type(self, path: str) -> Optional[str]:
        return mimetypes.guess_type(path)[0]


class LocalMediaStorage(MediaStorage):
    """Files under UPLOADS_DIR. Paths may not escape that directory."""

    def __init__(self, root: str | None = None):
        self.root = Path(root or settings.uploads_dir).resolve()

    def resolve(self, path: str) -> str:
        full = (self.root / path).resolve()
        if self.root not in full.parents and full != self.root:
            raise InvalidRequestError(f"Media path outside uploads directory: {path}")
        return str(full)

    async def read_bytes(self, path: str) -> bytes:
        full = Path(self.resolve(path))
        if not full.is_file():
            raise InvalidRequestError(f"Media file not found: {path}")
        logger.debug(f"Reading media {full}")
        return await asyncio.to_thread(full.read_bytes)
