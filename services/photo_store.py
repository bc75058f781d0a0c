"""
Photo store
Stores enrollment photos on disk and fetches reference photos by ref
(local path relative to the store root, or an http(s) URL).
"""
import io
import logging
import os
from datetime import datetime
from pathlib import Path

import requests
from PIL import Image, UnidentifiedImageError
from werkzeug.utils import secure_filename

from attendance_engine.errors import PhotoStoreError

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_EXTENSIONS = frozenset({'jpg', 'jpeg', 'png'})
_FORMAT_EXTENSIONS = {'JPEG': 'jpg', 'PNG': 'png', 'BMP': 'bmp', 'WEBP': 'webp'}


class PhotoStore:
    """Filesystem-backed photo storage with Pillow validation."""

    def __init__(self, root, fetch_timeout=5.0, min_size=1024, max_size=10 * 1024 * 1024,
                 allowed_extensions=DEFAULT_ALLOWED_EXTENSIONS, http_session=None):
        self.root = Path(root)
        self.fetch_timeout = fetch_timeout
        self.min_size = min_size
        self.max_size = max_size
        self.allowed_extensions = {ext.lower().lstrip('.') for ext in allowed_extensions}
        self._http = http_session or requests.Session()
        self.root.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def validate(self, image_bytes):
        """
        Check size and image format.

        Returns:
            File extension matching the decoded format (e.g. 'jpg')
        """
        if not image_bytes:
            raise PhotoStoreError("Empty image")
        size = len(image_bytes)
        if size < self.min_size:
            raise PhotoStoreError(f"Image too small ({size} bytes, minimum {self.min_size})")
        if size > self.max_size:
            raise PhotoStoreError(f"Image too large ({size} bytes, maximum {self.max_size})")
        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                img.verify()
                image_format = img.format
        except (UnidentifiedImageError, OSError, SyntaxError) as exc:
            raise PhotoStoreError(f"Invalid image: {exc}") from exc

        extension = _FORMAT_EXTENSIONS.get(image_format, (image_format or '').lower())
        if extension not in self.allowed_extensions and not (
            extension == 'jpg' and 'jpeg' in self.allowed_extensions
        ):
            raise PhotoStoreError(
                f"Unsupported image format {image_format}; allowed: "
                f"{', '.join(sorted(self.allowed_extensions))}"
            )
        return extension

    # ------------------------------------------------------------------
    # Store / fetch / delete
    # ------------------------------------------------------------------
    def store(self, image_bytes, prefix=None):
        """Validate and persist a photo; returns its ref relative to the root."""
        extension = self.validate(image_bytes)
        folder = secure_filename(prefix or '') or 'unsorted'
        timestamp = datetime.now().strftime('%Y%m%d%H%M%S%f')
        ref = f"{folder}/{folder}_{timestamp}.{extension}"
        path = self._local_path(ref)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'wb') as fp:
                fp.write(image_bytes)
        except OSError as exc:
            raise PhotoStoreError(f"Could not write photo {ref}: {exc}") from exc
        logger.info(f"[PhotoStore] Stored {ref} ({len(image_bytes)} bytes)")
        return ref

    def fetch(self, ref):
        if not ref:
            raise PhotoStoreError("Empty photo reference")
        if ref.startswith(('http://', 'https://')):
            return self._fetch_remote(ref)
        path = self._local_path(ref)
        try:
            with open(path, 'rb') as fp:
                return fp.read()
        except OSError as exc:
            raise PhotoStoreError(f"Could not read photo {ref}: {exc}") from exc

    def delete(self, ref):
        """Remove a stored photo; a missing file is not an error."""
        if not ref or ref.startswith(('http://', 'https://')):
            return False
        path = self._local_path(ref)
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise PhotoStoreError(f"Could not delete photo {ref}: {exc}") from exc
        logger.info(f"[PhotoStore] Deleted {ref}")
        return True

    def exists(self, ref):
        if ref.startswith(('http://', 'https://')):
            return True
        return self._local_path(ref).is_file()

    def _fetch_remote(self, url):
        try:
            response = self._http.get(url, timeout=self.fetch_timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise PhotoStoreError(f"Could not download {url}: {exc}") from exc
        return response.content

    def _local_path(self, ref):
        root = self.root.resolve()
        path = (root / ref).resolve()
        if root != path and root not in path.parents:
            raise PhotoStoreError(f"Photo reference escapes the store: {ref}")
        return path
