"""
Key validation for client-supplied storage identifiers.

Every filesystem read, write, stat or unlink addressed by a client key goes
through validate_key first. Callers percent-decode route parameters with
decode_key and validate the decoded value; validate_key also inspects one
more decoding pass so a doubly-encoded ``..`` is still refused.
"""
import os
import posixpath
import re
from pathlib import Path, PurePosixPath
from typing import Optional, Union
from urllib.parse import unquote

from filegate.core.exceptions import InvalidKey

_WINDOWS_DRIVE = re.compile(r"^[a-zA-Z]:")


def decode_key(raw: str) -> str:
    """Percent-decode a key taken from a URL"""
    if not isinstance(raw, str):
        raise InvalidKey()
    return unquote(raw)


def _is_absolute(value: str) -> bool:
    return (
        value.startswith("/")
        or value.startswith("\\")
        or bool(_WINDOWS_DRIVE.match(value))
        or os.path.isabs(value)
    )


def _has_traversal(value: str) -> bool:
    return ".." in value or _is_absolute(value)


def validate_key(key: object, root: Optional[Union[str, Path]] = None) -> str:
    """
    Return ``key`` as a normalized storage-relative path or raise InvalidKey.

    Rejected: non-strings, empty keys, NUL bytes, any ``..``, absolute paths
    (in raw or percent-decoded form). With ``root`` the joined path must also
    resolve to a strict descendant of the resolved root.
    """
    if not isinstance(key, str) or not key:
        raise InvalidKey()
    if "\x00" in key:
        raise InvalidKey()
    if _has_traversal(key) or _has_traversal(unquote(key)):
        raise InvalidKey()

    normalized = posixpath.normpath(key.replace("\\", "/"))
    if normalized in (".", "") or normalized.startswith("../"):
        raise InvalidKey()

    if root is not None:
        base = Path(root).resolve()
        resolved = Path(os.path.normpath(base / normalized))
        if resolved == base or base not in resolved.parents:
            raise InvalidKey()

    return str(PurePosixPath(normalized))


def is_key_safe(key: object, root: Optional[Union[str, Path]] = None) -> bool:
    try:
        validate_key(key, root)
    except InvalidKey:
        return False
    return True


def sanitize_upload_name(name: Optional[str]) -> str:
    """
    Make an uploaded filename safe to embed in a key.

    Drops every ``..`` and turns path separators and ``%`` into underscores,
    so the generated key cannot encode a traversal even before validation and
    reads back unchanged after URL decoding.
    """
    safe = (name or "file").replace("..", "")
    for char in ("/", "\\", "%"):
        safe = safe.replace(char, "_")
    return safe or "file"
