"""
Filesystem primitives used by the relocation engine.

All blocking calls go through a LocalStorage instance so that the engine can
be exercised against a substitute in tests (counting calls, injecting EXDEV).
"""

import errno
import hashlib
import os
import shutil
from typing import Optional, Tuple

CHUNK_SIZE = 1024 * 1024


def compute_checksum(file_path: str, algorithm: str = "sha1") -> Optional[str]:
    """
    Compute the content hash of a file.

    Args:
        file_path: Path to file
        algorithm: hashlib algorithm name

    Returns:
        Lower-case hex digest, or None if the file cannot be read
    """
    try:
        hasher = hashlib.new(algorithm)
        with open(file_path, 'rb') as f:
            while chunk := f.read(CHUNK_SIZE):
                hasher.update(chunk)
        return hasher.hexdigest()
    except (OSError, IOError):
        return None


def is_cross_device_error(error: BaseException) -> bool:
    """True if error is the rename failure for source/target on different filesystems."""
    return isinstance(error, OSError) and error.errno == errno.EXDEV


class LocalStorage:
    """Blocking filesystem operations on the local machine."""

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    def stat(self, path: str) -> os.stat_result:
        return os.stat(path)

    def rename(self, source: str, target: str) -> None:
        os.rename(source, target)

    def copy(self, source: str, target: str) -> None:
        shutil.copyfile(source, target)

    def unlink(self, path: str) -> None:
        os.unlink(path)

    def set_times(self, path: str, atime_ns: int, mtime_ns: int) -> None:
        os.utime(path, ns=(atime_ns, mtime_ns))

    def hash_file(self, path: str, algorithm: str = "sha1") -> Optional[str]:
        return compute_checksum(path, algorithm)

    def ensure_parent(self, path: str) -> None:
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)


def verify_size(storage: LocalStorage, path: str, expected_size: int) -> Tuple[bool, Optional[str]]:
    """
    Verify file size matches expected value.

    Returns:
        Tuple of (success, error_message)
    """
    try:
        actual_size = storage.stat(path).st_size
    except OSError as e:
        return False, f"Cannot stat file: {e}"

    if actual_size != expected_size:
        return False, f"File size mismatch: expected {expected_size}, got {actual_size}"

    return True, None


def verify_checksum(storage: LocalStorage, path: str, expected: str,
                    algorithm: str = "sha1") -> Tuple[bool, Optional[str]]:
    """
    Verify file content hash matches expected value.

    Returns:
        Tuple of (success, error_message)
    """
    actual = storage.hash_file(path, algorithm)

    if actual is None:
        return False, f"Cannot read file to verify checksum: {path}"

    if actual.lower() != expected.lower():
        return False, f"Checksum mismatch: expected {expected[:8]}..., got {actual[:8]}..."

    return True, None
