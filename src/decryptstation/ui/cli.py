import argparse

from decryptstation.utils.core import cmd_decrypt, cmd_process
from decryptstation.utils.dataModels import DEFAULT_DB_NAME
from decryptstation.utils.maintain import cmd_hash, cmd_regions


def _positive_int(value: str) -> int:
    n = int(value)
    if n < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return n


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Decrypt Station - restore encrypted PS3 disc images")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_proc = sub.add_parser("process", help="Hash, look up, decrypt a batch of images")
    p_proc.add_argument("images", nargs="+", help="Encrypted .iso images")
    p_proc.add_argument("--db", default=DEFAULT_DB_NAME, help=f"Title/key database (default: {DEFAULT_DB_NAME})")
    p_proc.add_argument("--workers", type=_positive_int, help="Decryption threads (default: CPUs - 1)")
    p_proc.set_defaults(func=cmd_process)

    p_dec = sub.add_parser("decrypt", help="Decrypt one image with a known key")
    p_dec.add_argument("image", help="Encrypted .iso image")
    p_dec.add_argument("--key", required=True, help="32 hex digits, optional 0x prefix")
    p_dec.add_argument("--out", help="Output path (default: <image>.dec)")
    p_dec.add_argument("--workers", type=_positive_int, help="Decryption threads (default: CPUs - 1)")
    p_dec.set_defaults(func=cmd_decrypt)

    p_hash = sub.add_parser("hash", help="Print the SHA-1 of an image")
    p_hash.add_argument("image", help="Image file")
    p_hash.add_argument("--db", help="Also look the digest up in this database")
    p_hash.set_defaults(func=cmd_hash)

    p_reg = sub.add_parser("regions", help="Show the plain/encrypted region table")
    p_reg.add_argument("image", help="Image file")
    p_reg.set_defaults(func=cmd_regions)

    return p
