"""Per-item processing: hash -> title lookup -> decrypt -> extract.

Each ``ProcessingItem`` is driven by exactly one pipeline run. Observers
never poll shared state; they receive the item through ``listener`` after
every status or progress change and decide themselves how to marshal it
(e.g. onto a UI thread).
"""
import logging
import threading

from pathlib import Path
from typing import Callable, Iterable, List, Optional

from decryptstation.crypto.hash import hash_file
from decryptstation.crypto.sector import parse_key
from decryptstation.storage.image import decrypt_image
from decryptstation.utils.dataModels import ProcessingItem, ProcessingStatus, TitleRecord
from decryptstation.utils.errors import (
    DecryptStationError,
    ImageIOError,
    LookupMiss,
    OperationCancelledError,
)
from decryptstation.utils.helper import (
    CancellationToken,
    ProgressCallback,
    check_cancelled,
    decrypted_path,
    extract_dir,
)

logger = logging.getLogger(__name__)

Lookup = Callable[[str], Optional[TitleRecord]]
Extractor = Callable[[Path, Path, ProgressCallback, Optional[CancellationToken]], None]
Listener = Callable[[ProcessingItem], None]

NO_MATCH_MESSAGE = "No matching game found"
CANCELLED_MESSAGE = "Operation cancelled"


class ProcessingPipeline:
    def __init__(self, lookup: Lookup, extractor: Optional[Extractor] = None,
                 listener: Optional[Listener] = None, workers: Optional[int] = None):
        self.lookup = lookup
        self.extractor = extractor
        self.listener = listener
        self.workers = workers

    def process(self, item: ProcessingItem, cancel: Optional[CancellationToken] = None) -> ProcessingItem:
        """Run one item to a terminal state. Never raises for item failures."""
        if item.status.terminal:
            logger.warning("%s is already %s; re-submit it as a new item", item.name, item.status.value)
            return item
        try:
            self._calculate_hash(item, cancel)
            record = self._resolve_title(item)
            destination = self._decrypt(item, cancel)
            self._extract(item, record, destination, cancel)

            item.transition(ProcessingStatus.COMPLETED)
            item.set_progress(100)
            self._notify(item)
        except OperationCancelledError:
            logger.info("%s: cancelled during %s", item.name, item.status.value)
            self._fail(item, CANCELLED_MESSAGE)
        except LookupMiss as e:
            logger.info("%s: %s", item.name, e)
            self._fail(item, NO_MATCH_MESSAGE)
        except ImageIOError as e:
            logger.error("%s: %s (%s)", item.name, e, e.diagnostics())
            self._fail(item, f"Error: {e}")
        except (DecryptStationError, OSError) as e:
            logger.error("%s: %s", item.name, e)
            self._fail(item, f"Error: {e}")
        except Exception as e:
            logger.exception("%s: unexpected failure during %s", item.name, item.status.value)
            self._fail(item, f"Error: {e}")
        return item

    def _calculate_hash(self, item: ProcessingItem, cancel: Optional[CancellationToken]) -> None:
        self._enter(item, ProcessingStatus.CALCULATING_HASH)
        digest = hash_file(item.path, progress=self._stage_progress(item), cancel=cancel)
        item.digest = digest
        self._enter(item, ProcessingStatus.HASH_CALCULATED)

    def _resolve_title(self, item: ProcessingItem) -> TitleRecord:
        record = self.lookup(item.digest)
        if record is None:
            raise LookupMiss(item.digest)
        item.title = record
        item.key = parse_key(record.hex_key)
        logger.info("%s: matched %s", item.name, record.game_name)
        return record

    def _decrypt(self, item: ProcessingItem, cancel: Optional[CancellationToken]) -> Path:
        self._enter(item, ProcessingStatus.DECRYPTING)
        destination = decrypted_path(item.path)
        decrypt_image(item.path, destination, item.key,
                      progress=self._stage_progress(item), cancel=cancel, workers=self.workers)
        return destination

    def _extract(self, item: ProcessingItem, record: TitleRecord, decrypted: Path,
                 cancel: Optional[CancellationToken]) -> None:
        self._enter(item, ProcessingStatus.EXTRACTING)
        if self.extractor is None:
            return
        check_cancelled(cancel)
        target = extract_dir(item.path, record.game_name)
        self.extractor(decrypted, target, self._stage_progress(item), cancel)

    def _enter(self, item: ProcessingItem, status: ProcessingStatus) -> None:
        item.transition(status)
        item.set_progress(0)
        self._notify(item)

    def _fail(self, item: ProcessingItem, message: str) -> None:
        if item.status.terminal:
            logger.warning("%s: already %s, dropping error %r", item.name, item.status.value, message)
            return
        item.transition(ProcessingStatus.ERROR, message)
        self._notify(item)

    def _stage_progress(self, item: ProcessingItem) -> ProgressCallback:
        def report(fraction: float) -> None:
            item.set_progress(fraction * 100)
            self._notify(item)
        return report

    def _notify(self, item: ProcessingItem) -> None:
        if self.listener is None:
            return
        # observer failures never reach the item state machine
        try:
            self.listener(item)
        except Exception:
            logger.exception("%s: listener failed", item.name)


class ProcessingQueue:
    """Working set of queued images, processed one at a time."""

    def __init__(self, pipeline: ProcessingPipeline):
        self.pipeline = pipeline
        self._items: List[ProcessingItem] = []
        self._lock = threading.Lock()
        self._processing = False

    @property
    def items(self) -> List[ProcessingItem]:
        with self._lock:
            return list(self._items)

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def has_completed(self) -> bool:
        return any(item.status.terminal for item in self.items)

    def add(self, paths: Iterable[Path]) -> List[ProcessingItem]:
        added = []
        with self._lock:
            known = {item.path for item in self._items}
            for p in paths:
                p = Path(p)
                if p in known:
                    continue
                known.add(p)
                item = ProcessingItem(path=p)
                self._items.append(item)
                added.append(item)
        return added

    def remove(self, item: ProcessingItem) -> None:
        if not item.status.terminal:
            raise ValueError(f"{item.name} is {item.status.value}; only completed or failed items can be removed")
        with self._lock:
            self._items.remove(item)

    def clear_completed(self) -> int:
        with self._lock:
            keep = [item for item in self._items if not item.status.terminal]
            removed = len(self._items) - len(keep)
            self._items = keep
        return removed

    def process(self, items: Optional[Iterable[ProcessingItem]] = None,
                cancel: Optional[CancellationToken] = None) -> List[ProcessingItem]:
        with self._lock:
            if self._processing:
                raise RuntimeError("a batch is already being processed")
            self._processing = True
        try:
            if items is None:
                batch = [item for item in self.items if item.status is ProcessingStatus.PENDING]
            else:
                batch = list(items)
            for item in batch:
                if cancel is not None and cancel.cancelled:
                    logger.info("batch cancelled; %s left pending", item.name)
                    break
                if item.status is not ProcessingStatus.PENDING:
                    logger.warning("skipping %s: already %s", item.name, item.status.value)
                    continue
                self.pipeline.process(item, cancel)
            return batch
        finally:
            self._processing = False
