import hashlib
import os

"""Filename validation, MIME lookup and ETag helpers shared by both stores.
"""

# Probe order for the filesystem store; first match wins.
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp")

CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


def file_extension(filename: str) -> str:
    """Return the extension of `filename` as given, dot included ('' if none)."""
    return os.path.splitext(filename or "")[1]


def is_valid_image_type(filename: str) -> bool:
    return file_extension(filename).lower() in IMAGE_EXTENSIONS


def get_content_type(ext: str) -> str:
    return CONTENT_TYPES.get(ext.lower(), "application/octet-stream")


def generate_etag(image_id: str) -> str:
    """Quoted hex of the first 8 bytes of sha256(image_id)."""
    digest = hashlib.sha256(image_id.encode("utf-8")).digest()
    return f"\"{digest[:8].hex()}\""


def is_safe_segment(name: str) -> bool:
    """True if `name` can be used as a single directory entry under the upload root."""
    return bool(name) and name not in (".", "..") and "/" not in name and "\\" not in name
