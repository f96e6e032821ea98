import hashlib
import logging
from pathlib import Path
from typing import BinaryIO

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


def compute_sha256(stream: BinaryIO) -> str:
    """Hex SHA-256 of the whole stream. Seekable streams are rewound before and after."""
    if stream is None:
        raise ValueError("stream is required")
    if not stream.readable():
        raise ValueError("Stream must be readable")

    if stream.seekable():
        stream.seek(0)

    digest = hashlib.sha256()
    for chunk in iter(lambda: stream.read(_CHUNK_SIZE), b""):
        digest.update(chunk)

    if stream.seekable():
        stream.seek(0)

    content_hash = digest.hexdigest()
    logger.debug("SHA256 computed: %s", content_hash)
    return content_hash


def compute_sha256_file(file_path: str | Path) -> str:
    path = Path(file_path)
    if not path.is_file():
        raise FileNotFoundError(f"File not found: {path}")
    with path.open("rb") as handle:
        return compute_sha256(handle)
