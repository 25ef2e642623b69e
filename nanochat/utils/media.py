# nanochat/utils/media.py
from pathlib import PurePath
from typing import Optional, Tuple

# (mime type, document file type) by lowercase extension
DOCUMENT_TYPES = {
    "pdf": ("application/pdf", "pdf"),
    "md": ("text/markdown", "markdown"),
    "markdown": ("text/markdown", "markdown"),
    "txt": ("text/plain", "text"),
    "epub": ("application/epub+zip", "epub"),
}
DEFAULT_DOCUMENT_TYPE = ("text/plain", "text")

IMAGE_EXTENSIONS = {"image/png": "png", "image/gif": "gif"}


def detect_image_mime_type(data: bytes) -> Optional[str]:
    """Sniff an image MIME type from its leading bytes"""
    if len(data) < 8:
        return None
    if data.startswith(b"\x89PNG"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data.startswith(b"GIF8"):
        return "image/gif"
    if data.startswith(b"RIFF"):
        return "image/webp"
    if len(data) >= 12 and data[4:8] == b"ftyp":
        return "image/heic"
    return None


def image_extension(mime_type: str) -> str:
    return IMAGE_EXTENSIONS.get(mime_type, "jpg")


def document_type(filename: str) -> Tuple[str, str]:
    """MIME type and document file type for a file name; unknown extensions are plain text"""
    extension = PurePath(filename).suffix.lstrip(".").lower()
    return DOCUMENT_TYPES.get(extension, DEFAULT_DOCUMENT_TYPE)
