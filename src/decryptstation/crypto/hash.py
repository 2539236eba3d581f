import logging

from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from pathlib import Path
from typing import Optional

from decryptstation.utils.dataModels import HASH_CHUNK_SIZE
from decryptstation.utils.errors import ImageIOError
from decryptstation.utils.helper import CancellationToken, ProgressCallback, check_cancelled

logger = logging.getLogger(__name__)


def hash_file(
    path: Path,
    progress: Optional[ProgressCallback] = None,
    cancel: Optional[CancellationToken] = None,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Streaming SHA-1 of a whole file -> lowercase hex (40 chars).

    Reads ``chunk_size`` bytes at a time into one reused buffer and reports
    bytes processed / file size after each chunk. Cancellation is checked
    before every read.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    path = Path(path)
    digest = hashes.Hash(hashes.SHA1(), backend=default_backend())
    buf = bytearray(chunk_size)
    view = memoryview(buf)
    try:
        with path.open("rb") as f:
            total = path.stat().st_size
            processed = 0
            logger.debug("hashing %s (%d bytes)", path.name, total)
            while processed < total:
                check_cancelled(cancel)
                n = f.readinto(view[:min(chunk_size, total - processed)])
                if not n:
                    # file shrank underneath us; hash what was there
                    logger.warning("%s: expected %d bytes, stream ended at %d", path.name, total, processed)
                    break
                digest.update(view[:n])
                processed += n
                if progress is not None:
                    progress(processed / total)
    except OSError as e:
        raise ImageIOError(f"Failed to read {path}: {e}", cause=e) from e
    return digest.finalize().hex()
