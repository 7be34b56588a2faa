"""Content fingerprinting and path helpers.

The MD5 digest of a file's bytes is the unit of change comparison everywhere
in the engine: the ledger, the remote manifest and the scanners all speak in
these hex digests.
"""

import hashlib
import re
from datetime import datetime, timezone
from pathlib import PurePosixPath

TEXT_EXTENSIONS = frozenset(
    {
        "md", "txt", "json", "yaml", "yml", "css", "js", "ts", "html", "xml",
        "csv", "svg", "ini", "cfg", "conf", "toml", "log", "env", "sh", "bat",
        "ps1", "py", "rb", "java", "c", "cpp", "h", "hpp", "rs", "go",
        "canvas", "excalidraw",
    }
)  # fmt: skip

_SLASHES = re.compile(r"/+")


def compute_hash(content: bytes | str) -> str:
    """Calculate the MD5 hex digest of content.

    Args:
        content: File content; text is encoded as UTF-8

    Returns:
        MD5 hash as hex string
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.md5(content).hexdigest()


def normalize_path(path: str) -> str:
    """Use forward slashes, collapse repeats and drop leading/trailing slashes."""
    path = _SLASHES.sub("/", path.replace("\\", "/"))
    return path.strip("/")


def join_remote(root: str, path: str) -> str:
    """Join a remote sync root and a relative path."""
    root = normalize_path(root)
    path = normalize_path(path)
    if not root:
        return path
    return f"{root}/{path}" if path else root


def is_binary_file(path: str) -> bool:
    """Classify a path as binary when its extension is not a known text type."""
    suffix = PurePosixPath(path).suffix.lower().lstrip(".")
    return suffix not in TEXT_EXTENSIONS


def generate_conflict_name(path: str, when: datetime | None = None) -> str:
    """Build the sibling path used for a conflict copy.

    Example:
        >>> generate_conflict_name("notes/daily.md", datetime(2026, 2, 11, 14, 30))
        'notes/daily (conflict 2026-02-11 143000).md'
    """
    when = when or datetime.now(timezone.utc)
    if when.tzinfo is not None:
        when = when.astimezone(timezone.utc)
    stamp = when.strftime("%Y-%m-%d %H%M%S")

    pure = PurePosixPath(normalize_path(path))
    name = f"{pure.stem} (conflict {stamp}){pure.suffix}"
    parent = str(pure.parent)
    return name if parent == "." else f"{parent}/{name}"


def is_under(path: str, prefix: str) -> bool:
    """Check whether path equals prefix or lives below it."""
    path = normalize_path(path)
    prefix = normalize_path(prefix)
    if not prefix:
        return False
    return path == prefix or path.startswith(prefix + "/")
