"""
Object key checks applied before any storage call.
"""
import mimetypes

MAX_KEY_LENGTH = 1024
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def is_valid_key(key: str) -> bool:
    if not key or len(key) > MAX_KEY_LENGTH:
        return False
    # Absolute paths are rejected.
    return not key.startswith("/")


def sanitize_key(key: str) -> str:
    """Strip surrounding whitespace and leading/trailing slashes."""
    return key.strip().strip("/")


def guess_content_type(key: str) -> str:
    content_type, _ = mimetypes.guess_type(key)
    return content_type or DEFAULT_CONTENT_TYPE
