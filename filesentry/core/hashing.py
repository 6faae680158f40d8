"""HashComputer — cryptographic identity for submitted files.

The three digests (MD5, SHA-1, SHA-256) are computed in a single read of the
content.  SHA-256 is the identity used for reputation lookups; MD5 and SHA-1
are kept for display and cross-referencing with external tooling.

Either all three digests are produced or :class:`HashingError` is raised.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

from filesentry.core.models import FileHashes

logger = logging.getLogger(__name__)

# Read size for streaming file content through the digests.
_CHUNK_SIZE = 1024 * 1024


class HashingError(OSError):
    """Raised when the file content cannot be read for hashing.

    Hashing failure is fatal for a scan: the hashes are the file's identity
    and must exist before any detector runs.
    """


class HashComputer:
    """Compute MD5, SHA-1 and SHA-256 digests of file content."""

    def __init__(self, chunk_size: int = _CHUNK_SIZE) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._chunk_size = chunk_size

    def compute_hashes(self, data: bytes) -> FileHashes:
        """Return the digests of in-memory *data*."""
        return FileHashes(
            md5=hashlib.md5(data).hexdigest(),
            sha1=hashlib.sha1(data).hexdigest(),
            sha256=hashlib.sha256(data).hexdigest(),
        )

    def compute_file_hashes(self, path: str | Path) -> FileHashes:
        """Read the file at *path* once and return its digests.

        Raises:
            HashingError: If the file cannot be opened or read.
        """
        md5 = hashlib.md5()
        sha1 = hashlib.sha1()
        sha256 = hashlib.sha256()
        total = 0
        try:
            with open(path, "rb") as fh:
                while chunk := fh.read(self._chunk_size):
                    md5.update(chunk)
                    sha1.update(chunk)
                    sha256.update(chunk)
                    total += len(chunk)
        except OSError as exc:
            raise HashingError(f"cannot read {path} for hashing: {exc}") from exc

        logger.debug("Hashed %s (%d bytes)", path, total)
        return FileHashes(
            md5=md5.hexdigest(),
            sha1=sha1.hexdigest(),
            sha256=sha256.hexdigest(),
        )
