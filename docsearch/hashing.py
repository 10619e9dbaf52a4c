"""
Content Hasher
Stable SHA-256 fingerprints of uploaded bytes, used for deduplication.
Two uploads with the same fingerprint are treated as the same document.
"""

import hashlib
from pathlib import Path
from typing import Union

CHUNK_SIZE = 1024 * 1024


def hash_bytes(data: bytes) -> str:
    """Fingerprint an in-memory byte string"""
    return hashlib.sha256(data).hexdigest()


def hash_file(file_path: Union[str, Path], chunk_size: int = CHUNK_SIZE) -> str:
    """
    Fingerprint a file without loading it into memory at once.

    Args:
        file_path: File to hash
        chunk_size: Read size in bytes

    Returns:
        Hex digest, identical to hash_bytes() of the whole file
    """
    digest = hashlib.sha256()
    with open(file_path, 'rb') as f:
        for chunk in iter(lambda: f.read(chunk_size), b''):
            digest.update(chunk)
    return digest.hexdigest()
