"""SHA-256 helpers for local backup blobs and remote ``sha256sum`` output."""
import hashlib
import re

from pathlib import Path
from typing import Optional, Union

_CHUNK_SIZE = 65536
_SHA256_RE = re.compile(r"^([0-9a-fA-F]{64})\b")

# Phrases busybox/toybox print when the target does not exist.
_MISSING_MARKERS = ("no such file", "not found", "does not exist")


def sha256_file(path: Union[str, Path]) -> str:
    """Hash a local file in chunks and return the lowercase hex digest."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def parse_sha256sum_output(output: str) -> Optional[str]:
    """Extract the digest from one line of ``sha256sum <path>`` output.

    Returns ``None`` if the output does not start with a 64-char hex digest.
    """
    if not output:
        return None
    match = _SHA256_RE.match(output.strip())
    return match.group(1).lower() if match else None


def looks_like_missing_file(text: Optional[str]) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(marker in lowered for marker in _MISSING_MARKERS)
