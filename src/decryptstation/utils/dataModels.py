import enum
import struct

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

SECTOR_SIZE = 2048
CHUNK_SECTORS = 4096  # 8 MiB per chunk
CHUNK_SIZE = CHUNK_SECTORS * SECTOR_SIZE
HEADER_SIZE = 4096
HASH_CHUNK_SIZE = 64 * 1024 * 1024

KEY_SIZE = 16
KEY_HEX_LEN = KEY_SIZE * 2

REGION_COUNT_FMT = ">I"  # numNormalRegions
REGION_ENTRY_FMT = ">II"  # start, end (exclusive)
REGION_ENTRY_SIZE = struct.calcsize(REGION_ENTRY_FMT)
REGION_TABLE_OFFSET = struct.calcsize(REGION_COUNT_FMT)
IV_FMT = ">12xI"  # 12 zero bytes + big-endian sector index

DEFAULT_DB_NAME = "game_keys.json"
DECRYPTED_SUFFIX = ".dec"


class RegionKind(enum.Enum):
    PLAIN = "plain"
    ENCRYPTED = "encrypted"


@dataclass(frozen=True)
class Region:
    start: int
    end: int  # exclusive
    kind: RegionKind

    @property
    def sector_count(self) -> int:
        return self.end - self.start

    @property
    def encrypted(self) -> bool:
        return self.kind is RegionKind.ENCRYPTED


class ProcessingStatus(enum.Enum):
    PENDING = "Pending"
    CALCULATING_HASH = "CalculatingHash"
    HASH_CALCULATED = "HashCalculated"
    DECRYPTING = "Decrypting"
    EXTRACTING = "Extracting"
    COMPLETED = "Completed"
    ERROR = "Error"

    @property
    def terminal(self) -> bool:
        return self in (ProcessingStatus.COMPLETED, ProcessingStatus.ERROR)


STATUS_MESSAGES = {
    ProcessingStatus.PENDING: "Ready to process",
    ProcessingStatus.CALCULATING_HASH: "Calculating hash...",
    ProcessingStatus.HASH_CALCULATED: "Hash calculation complete",
    ProcessingStatus.DECRYPTING: "Decrypting file...",
    ProcessingStatus.EXTRACTING: "Extracting contents...",
    ProcessingStatus.COMPLETED: "Processing complete",
}

_FORWARD = {
    ProcessingStatus.PENDING: ProcessingStatus.CALCULATING_HASH,
    ProcessingStatus.CALCULATING_HASH: ProcessingStatus.HASH_CALCULATED,
    ProcessingStatus.HASH_CALCULATED: ProcessingStatus.DECRYPTING,
    ProcessingStatus.DECRYPTING: ProcessingStatus.EXTRACTING,
    ProcessingStatus.EXTRACTING: ProcessingStatus.COMPLETED,
}


def can_transition(current: ProcessingStatus, target: ProcessingStatus) -> bool:
    if current.terminal:
        return False
    if target is ProcessingStatus.ERROR:
        return True
    return _FORWARD.get(current) is target


@dataclass
class TitleRecord:
    game_name: str
    sha1: str
    hex_key: str

    @staticmethod
    def from_dict(obj: Dict[str, Any]) -> "TitleRecord":
        folded = {str(k).lower(): v for k, v in obj.items()}
        return TitleRecord(
            game_name=str(folded.get("game_name") or ""),
            sha1=str(folded.get("sha1") or ""),
            hex_key=str(folded.get("hex_key") or ""),
        )


@dataclass
class ProcessingItem:
    """One queued image and its lifecycle.

    Only the pipeline driving the item mutates it; observers are handed the
    item through the pipeline's listener after every change.
    """
    path: Path
    status: ProcessingStatus = ProcessingStatus.PENDING
    progress: float = 0.0
    message: str = STATUS_MESSAGES[ProcessingStatus.PENDING]
    _digest: Optional[str] = field(default=None, repr=False)
    _key: Optional[bytes] = field(default=None, repr=False)
    title: Optional[TitleRecord] = None

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def digest(self) -> Optional[str]:
        return self._digest

    @digest.setter
    def digest(self, value: str) -> None:
        if self._digest is not None:
            raise ValueError(f"digest already set for {self.name}")
        self._digest = value

    @property
    def key(self) -> Optional[bytes]:
        return self._key

    @key.setter
    def key(self, value: bytes) -> None:
        if self._key is not None:
            raise ValueError(f"key already set for {self.name}")
        self._key = value

    def transition(self, status: ProcessingStatus, message: Optional[str] = None) -> None:
        if not can_transition(self.status, status):
            raise ValueError(f"illegal transition {self.status.value} -> {status.value}")
        self.status = status
        if status is ProcessingStatus.ERROR:
            self.message = message or "Error"
        else:
            self.message = message or STATUS_MESSAGES[status]

    def set_progress(self, percent: float) -> None:
        self.progress = min(100.0, max(0.0, percent))
