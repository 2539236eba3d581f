import argparse
import sys
import threading

from pathlib import Path
from typing import Dict, Tuple

from decryptstation.crypto.sector import parse_key
from decryptstation.storage.image import decrypt_image
from decryptstation.storage.keydb import TitleDatabase
from decryptstation.utils.dataModels import ProcessingItem, ProcessingStatus
from decryptstation.utils.errors import DatabaseError, DecryptStationError, ImageIOError
from decryptstation.utils.helper import CancellationToken, decrypted_path
from decryptstation.utils.pipeline import ProcessingPipeline, ProcessingQueue


def load_database(path: Path) -> TitleDatabase:
    try:
        db = TitleDatabase.load(path)
    except DatabaseError as e:
        print(f"[!] {e}")
        sys.exit(1)
    print(f"[+] Loaded {len(db)} keys from {path}")
    return db


class ConsoleListener:
    """Prints status changes and whole-percent progress steps of queue items."""

    def __init__(self) -> None:
        self._seen: Dict[Path, Tuple[ProcessingStatus, int]] = {}
        self._lock = threading.Lock()

    def __call__(self, item: ProcessingItem) -> None:
        step = (item.status, int(item.progress))
        with self._lock:
            prev = self._seen.get(item.path)
            if prev == step:
                return
            self._seen[item.path] = step

        if prev is not None and prev[0] is item.status:
            print(f"\r    {item.progress:5.1f}%", end="", flush=True)
            return
        if prev is not None:
            print()
        if item.status is ProcessingStatus.ERROR:
            print(f"[!] {item.name}: {item.message}")
        elif item.status is ProcessingStatus.COMPLETED:
            print(f"[+] {item.name}: {item.message}")
        else:
            print(f"[*] {item.name}: {item.message}")


def cmd_process(args: argparse.Namespace) -> None:
    db = load_database(Path(args.db))

    paths = [Path(p) for p in args.images]
    missing = [p for p in paths if not p.is_file()]
    for p in missing:
        print(f"[!] Not a file: {p}")

    pipeline = ProcessingPipeline(db.lookup, listener=ConsoleListener(), workers=args.workers)
    queue = ProcessingQueue(pipeline)
    queue.add(p for p in paths if p.is_file())

    # Run the batch off the main thread so Ctrl-C can request a cooperative cancel
    token = CancellationToken()
    worker = threading.Thread(target=queue.process, kwargs={"cancel": token}, daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(0.2)
    except KeyboardInterrupt:
        print("\n[!] Cancelling...")
        token.cancel()
        worker.join()

    items = queue.items
    done = [i for i in items if i.status is ProcessingStatus.COMPLETED]
    failed = [i for i in items if i.status is ProcessingStatus.ERROR]
    pending = [i for i in items if i.status is ProcessingStatus.PENDING]
    print(f"[+] Processing complete: {len(done)} ok, {len(failed)} failed, {len(pending)} not started")
    for item in done:
        print(f"    {item.name}\t{item.title.game_name}\t{decrypted_path(item.path)}")
    if failed or missing or pending:
        sys.exit(1)


def cmd_decrypt(args: argparse.Namespace) -> None:
    src = Path(args.image)
    if not src.is_file():
        print(f"[!] Not a file: {src}")
        sys.exit(1)
    out = Path(args.out) if args.out else decrypted_path(src)

    try:
        key = parse_key(args.key)
    except DecryptStationError as e:
        print(f"[!] {e}")
        sys.exit(1)

    def report(fraction: float) -> None:
        print(f"\r[*] Decrypting {src.name}: {fraction * 100:5.1f}%", end="", flush=True)

    try:
        stats = decrypt_image(src, out, key, progress=report, workers=args.workers)
    except KeyboardInterrupt:
        print(f"\n[!] Cancelled; removed partial {out.name}")
        sys.exit(1)
    except ImageIOError as e:
        print(f"\n[!] {e} ({e.diagnostics()})")
        sys.exit(1)
    except DecryptStationError as e:
        print(f"\n[!] {e}")
        sys.exit(1)
    print()
    print(f"[+] Decrypted {stats.decrypted_sectors} of {stats.total_sectors} sectors -> {out}")
