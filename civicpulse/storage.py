"""
Image Storage
=============

Stores uploaded issue and infrastructure photos and hands back the URI that
is kept on the record. Records never hold image bytes, only these URIs.

Backends:
- LocalImageStorage: files under MEDIA_ROOT, served by the API at
  MEDIA_BASE_URL/{key}
"""

import os
import uuid
import hashlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .config import get_settings
from .errors import NotFound, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class StoredImage:
    """Metadata for one stored image"""
    key: str
    url: str
    content_type: Optional[str]
    size_bytes: int
    sha256: str


def image_extension(filename: Optional[str]) -> str:
    _, ext = os.path.splitext(filename or "")
    return ext.lower().lstrip(".")


def validate_image_names(filenames: Iterable[str], max_count: Optional[int] = None,
                         allowed: Optional[Iterable[str]] = None) -> List[str]:
    """
    Check an upload batch against the count limit and extension allow-list.

    Raises ValidationError naming the first offending file.
    """
    settings = get_settings()
    max_count = settings.max_images_per_upload if max_count is None else max_count
    allowed = set(settings.image_extensions if allowed is None else allowed)

    names = list(filenames)
    if len(names) > max_count:
        raise ValidationError(
            f"Too many images: {len(names)} (max {max_count})", {"field": "images"}
        )
    for name in names:
        if image_extension(name) not in allowed:
            raise ValidationError(
                f"Unsupported image type: {name} (allowed: {', '.join(sorted(allowed))})",
                {"field": "images"},
            )
    return names


class ImageStorage(ABC):
    """Interface for image storage backends"""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> StoredImage:
        pass

    @abstractmethod
    def get(self, key: str) -> bytes:
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        pass

    @staticmethod
    def generate_key(owner_id: str, filename: str) -> str:
        """Unique key: <owner>/<uuid>.<ext>"""
        ext = image_extension(filename) or "bin"
        return f"{owner_id}/{uuid.uuid4().hex}.{ext}"

    def store_upload(self, owner_id: str, filename: str, data: bytes,
                     content_type: Optional[str] = None) -> StoredImage:
        """Validate one uploaded file and store it under a fresh key"""
        validate_image_names([filename], max_count=1)
        if not data:
            raise ValidationError(f"Empty image: {filename}", {"field": "images"})
        return self.put(self.generate_key(owner_id, filename), data, content_type)


class LocalImageStorage(ImageStorage):
    """Filesystem storage under a base directory"""

    def __init__(self, base_path: Optional[str] = None, base_url: Optional[str] = None):
        settings = get_settings()
        self.base_path = os.path.abspath(base_path or settings.media_root)
        self.base_url = (base_url if base_url is not None else settings.media_base_url).rstrip("/")
        os.makedirs(self.base_path, exist_ok=True)

    def _path(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.base_path, key))
        if os.path.commonpath([path, self.base_path]) != self.base_path:
            raise NotFound(f"Image {key} not found")
        return path

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> StoredImage:
        path = self._path(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        logger.info(f"Stored image {key} ({len(data)} bytes)")
        return StoredImage(
            key=key,
            url=self.url_for(key),
            content_type=content_type,
            size_bytes=len(data),
            sha256=hashlib.sha256(data).hexdigest(),
        )

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not os.path.isfile(path):
            raise NotFound(f"Image {key} not found")
        with open(path, "rb") as f:
            return f.read()

    def exists(self, key: str) -> bool:
        try:
            return os.path.isfile(self._path(key))
        except NotFound:
            return False

    def delete(self, key: str) -> bool:
        if not self.exists(key):
            return False
        os.remove(self._path(key))
        return True

    def path_for(self, key: str) -> str:
        """Filesystem path of an existing key (for FileResponse)"""
        path = self._path(key)
        if not os.path.isfile(path):
            raise NotFound(f"Image {key} not found")
        return path


_storage: Optional[ImageStorage] = None


def get_storage() -> ImageStorage:
    """Get singleton storage instance"""
    global _storage
    if _storage is None:
        _storage = LocalImageStorage()
    return _storage
