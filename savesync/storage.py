"""
Content-addressed blob storage for local save payloads.

Storage layout:
    SAVESYNC_ROOT/
        blobs/sha256/aa/bb/<digest>  - Immutable payload blobs
        tmp/                         - In-progress writes
"""

from __future__ import annotations

import hashlib
import os
import uuid
from pathlib import Path


class DigestError(Exception):
    """Raised when digest verification fails."""

    pass


class BlobNotFoundError(Exception):
    """Raised when a blob does not exist."""

    pass


def parse_digest(digest: str) -> tuple[str, str]:
    """
    Parse digest string into (algorithm, hex_value).

    Args:
        digest: Digest in format "sha256:<hex>"

    Returns:
        Tuple of (algorithm, hex_value)

    Raises:
        ValueError: If digest format is invalid
    """
    if ":" not in digest:
        raise ValueError(f"Invalid digest format: {digest}")
    algo, hex_value = digest.split(":", 1)
    if algo != "sha256":
        raise ValueError(f"Unsupported digest algorithm: {algo}")
    if len(hex_value) != 64:
        raise ValueError(f"Invalid digest length: {len(hex_value)}")
    return algo, hex_value


def compute_digest(data: bytes) -> str:
    """Compute the "sha256:<hex>" digest of a payload."""
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


class SaveBlobStorage:
    """
    Content-addressed storage for save payloads.

    Identical payloads in different slots share one blob.
    """

    def __init__(self, root: Path | str):
        self.root = Path(root)
        self.blobs_dir = self.root / "blobs"
        self.tmp_dir = self.root / "tmp"

    def ensure_directories(self) -> None:
        """Create the directory structure if it doesn't exist."""
        self.blobs_dir.mkdir(parents=True, exist_ok=True)
        self.tmp_dir.mkdir(parents=True, exist_ok=True)

    def get_blob_path(self, digest: str) -> Path:
        """
        Compute the filesystem path for a blob.

        Uses sharding: blobs/sha256/aa/bb/<full_digest>
        """
        algo, hex_value = parse_digest(digest)
        return self.blobs_dir / algo / hex_value[:2] / hex_value[2:4] / hex_value

    def blob_exists(self, digest: str) -> bool:
        return self.get_blob_path(digest).exists()

    def write_blob(self, data: bytes, expected_digest: str | None = None) -> str:
        """
        Write a payload to blob storage atomically.

        Args:
            data: Payload bytes
            expected_digest: Optional expected digest for verification

        Returns:
            The digest of the written content

        Raises:
            DigestError: If expected_digest doesn't match actual content
        """
        digest = compute_digest(data)
        if expected_digest and digest != expected_digest:
            raise DigestError(f"Digest mismatch: expected {expected_digest}, got {digest}")

        blob_path = self.get_blob_path(digest)
        if blob_path.exists():
            return digest

        self.ensure_directories()
        tmp_path = self.tmp_dir / f"{uuid.uuid4().hex}.tmp"

        try:
            with open(tmp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())

            blob_path.parent.mkdir(parents=True, exist_ok=True)
            os.replace(tmp_path, blob_path)
            blob_path.chmod(0o444)
            return digest

        except Exception:
            if tmp_path.exists():
                tmp_path.unlink()
            raise

    def read_blob_bytes(self, digest: str, verify: bool = True) -> bytes:
        """
        Read a blob and return its contents.

        Raises:
            BlobNotFoundError: If blob doesn't exist
            DigestError: If verification fails (only when verify=True)
        """
        blob_path = self.get_blob_path(digest)
        if not blob_path.exists():
            raise BlobNotFoundError(f"Blob not found: {digest}")

        data = blob_path.read_bytes()
        if verify:
            actual = compute_digest(data)
            if actual != digest:
                raise DigestError(f"Digest mismatch: expected {digest}, got {actual}")
        return data

    def delete_blob(self, digest: str) -> bool:
        """
        Delete a blob from storage.

        Returns:
            True if blob was deleted, False if it didn't exist
        """
        blob_path = self.get_blob_path(digest)
        if blob_path.exists():
            # Remove read-only protection before deleting
            blob_path.chmod(0o644)
            blob_path.unlink()
            self._cleanup_empty_dirs(blob_path.parent)
            return True
        return False

    def _cleanup_empty_dirs(self, path: Path) -> None:
        """Remove empty directories up to blobs_dir."""
        while path != self.blobs_dir and path.exists():
            try:
                path.rmdir()
                path = path.parent
            except OSError:
                # Directory not empty
                break

    def get_storage_stats(self) -> dict:
        """
        Get storage statistics.

        Returns:
            Dict with blob_count and total_size_bytes
        """
        blob_count = 0
        total_size = 0

        if self.blobs_dir.exists():
            for blob_file in self.blobs_dir.rglob("*"):
                if blob_file.is_file():
                    blob_count += 1
                    total_size += blob_file.stat().st_size

        return {
            "blob_count": blob_count,
            "total_size_bytes": total_size,
        }
