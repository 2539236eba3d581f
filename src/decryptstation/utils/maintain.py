import argparse
import sys

from pathlib import Path

from decryptstation.crypto.hash import hash_file
from decryptstation.storage.image import read_regions
from decryptstation.storage.regions import total_sectors
from decryptstation.utils.dataModels import SECTOR_SIZE
from decryptstation.utils.errors import DecryptStationError
from decryptstation.utils.core import load_database


def cmd_hash(args: argparse.Namespace) -> None:
    src = Path(args.image)
    if not src.is_file():
        print(f"[!] Not a file: {src}")
        sys.exit(1)

    db = load_database(Path(args.db)) if args.db else None
    try:
        digest = hash_file(src)
    except DecryptStationError as e:
        print(f"[!] {e}")
        sys.exit(1)
    print(f"{digest}\t{src.name}")

    if db is None:
        return
    record = db.lookup(digest)
    if record is None:
        print("[!] No matching game found")
        sys.exit(1)
    print(f"[+] {record.game_name}\tkey={record.hex_key}")


def cmd_regions(args: argparse.Namespace) -> None:
    src = Path(args.image)
    try:
        regions = read_regions(src)
    except DecryptStationError as e:
        print(f"[!] {e}")
        sys.exit(1)

    for i, region in enumerate(regions):
        print(f"{i}\t{region.kind.value}\t{region.start}\t{region.end}\t{region.sector_count} sectors")

    covered = total_sectors(regions)
    image_sectors = src.stat().st_size // SECTOR_SIZE
    print(f"[+] {len(regions)} regions covering {covered} sectors; image has {image_sectors}")
    if covered != image_sectors:
        print("[!] Region table does not match image length")
