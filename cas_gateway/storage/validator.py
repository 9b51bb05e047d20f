"""File validation run before any upload is staged.

Size, declared mime type and file extension are checked against independent
allow-lists. Both the mime type and the extension have to pass, so a spoofed
``Content-Type`` on an ``.exe`` is still rejected.
"""
from cas_gateway.storage.errors import ValidationError
from cas_gateway.storage.models import ValidationPolicy


def file_extension(name: str) -> str:
    """Lower-cased extension after the last dot, without the dot ('' if none)."""
    base = name.rsplit("/", 1)[-1]
    if "." not in base:
        return ""
    return base.rsplit(".", 1)[-1].lower()


def is_filename_safe(name: str, max_length: int = 255) -> bool:
    """
    Check that a declared file name cannot escape the staging area.

    Args:
        name: Original file name as declared by the caller
        max_length: Longest accepted name

    Returns:
        True if the name has no path separators, parent references, quotes or control characters
    """
    if not name or len(name) > max_length:
        return False
    if ".." in name or "/" in name or "\\" in name:
        return False
    # Names end up in Content-Disposition headers
    if '"' in name or any(ord(c) < 32 for c in name):
        return False
    return True


def validate(name: str, size: int, mime_type: str, policy: ValidationPolicy) -> None:
    """
    Validate an upload against the policy.

    Args:
        name: Declared file name
        size: Payload size in bytes
        mime_type: Declared media type (exact match, no wildcards)
        policy: Limits and allow-lists to enforce

    Raises:
        ValidationError: With a reason naming the first rule that failed
    """
    if not is_filename_safe(name):
        raise ValidationError(f"File name {name!r} is not allowed")

    if size <= 0:
        raise ValidationError("File is empty")

    if size > policy.max_size:
        raise ValidationError(f"File size exceeds maximum allowed size of {policy.max_size} bytes")

    if mime_type not in policy.allowed_mime_types:
        allowed = ", ".join(sorted(policy.allowed_mime_types))
        raise ValidationError(f"File type {mime_type} is not allowed. Allowed types: {allowed}")

    ext = file_extension(name)
    if ext not in policy.allowed_extensions:
        shown = f".{ext}" if ext else "(none)"
        raise ValidationError(f"File extension {shown} is not allowed")
