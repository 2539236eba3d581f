import os
import re
import threading

from pathlib import Path
from typing import Callable, Optional

from decryptstation.utils.dataModels import DECRYPTED_SUFFIX
from decryptstation.utils.errors import OperationCancelledError

ProgressCallback = Callable[[float], None]

_INVALID_NAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


class CancellationToken:
    """Cooperative cancellation flag, safe to set from any thread."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError()


def check_cancelled(token: Optional[CancellationToken]) -> None:
    if token is not None:
        token.raise_if_cancelled()


def decrypted_path(source: Path) -> Path:
    return source.with_name(source.name + DECRYPTED_SUFFIX)


def safe_file_name(name: str) -> str:
    return _INVALID_NAME_CHARS.sub("_", name).strip() or "_"


def extract_dir(source: Path, title_name: str) -> Path:
    return source.parent / safe_file_name(title_name)


def default_worker_count() -> int:
    return max(1, (os.cpu_count() or 1) - 1)
