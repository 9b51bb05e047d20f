# cas_gateway/storage/media.py
import json
from typing import Tuple

from cas_gateway.storage.validator import file_extension

MIME_TYPES_BY_EXTENSION = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "pdf": "application/pdf",
    "txt": "text/plain",
    "json": "application/json",
}

DEFAULT_MIME_TYPE = "application/octet-stream"


def mime_type_for_name(file_name: str) -> str:
    """Map a file name's extension to a mime type, defaulting to octet-stream."""
    return MIME_TYPES_BY_EXTENSION.get(file_extension(file_name), DEFAULT_MIME_TYPE)


def detect_content_type_and_filename(data_bytes: bytes, root_hash: str) -> Tuple[str, str]:
    """
    Detect content type and generate a user-friendly filename for downloads.

    Args:
        data_bytes: The downloaded data
        root_hash: Content address of the data

    Returns:
        Tuple of (content_type, filename)
    """
    short_ref = root_hash[:8]

    # Check for common binary file signatures
    if data_bytes.startswith(b'\x89PNG'):
        return "image/png", f"image-{short_ref}.png"
    elif data_bytes.startswith(b'\xFF\xD8\xFF'):
        return "image/jpeg", f"image-{short_ref}.jpg"
    elif data_bytes.startswith(b'GIF8'):
        return "image/gif", f"image-{short_ref}.gif"
    elif data_bytes.startswith(b'RIFF') and data_bytes[8:12] == b'WEBP':
        return "image/webp", f"image-{short_ref}.webp"
    elif data_bytes.startswith(b'%PDF'):
        return "application/pdf", f"document-{short_ref}.pdf"

    # Try to detect if it's JSON
    try:
        json.loads(data_bytes.decode('utf-8'))
        return "application/json", f"data-{short_ref}.json"
    except (json.JSONDecodeError, UnicodeDecodeError):
        pass

    # Check if it's likely text
    try:
        data_bytes.decode('utf-8')
        return "text/plain", f"text-{short_ref}.txt"
    except UnicodeDecodeError:
        pass

    # Default to binary with .bin extension
    return DEFAULT_MIME_TYPE, f"data-{short_ref}.bin"
