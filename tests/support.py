"""Synthetic encrypted images for the test suites."""
import hashlib
import struct
import sys

from pathlib import Path

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

SRC_ROOT = Path(__file__).resolve().parent.parent / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

SECTOR = 2048
HEADER = 4096
KEY_HEX = "2B7E151628AED2A6ABF7158809CF4F3C"
KEY = bytes.fromhex(KEY_HEX)

# two normal regions -> [0,100) plain, [100,150) encrypted, [150,200) plain
SPEC_RANGES = [(0, 100), (100, 150), (150, 200)]


def build_header(ranges, num_normal=None) -> bytes:
    if num_normal is None:
        num_normal = (len(ranges) + 1) // 2
    body = struct.pack(">I", num_normal) + b"".join(struct.pack(">II", s, e) for s, e in ranges)
    return body.ljust(HEADER, b"\x00")


def pattern_sector(index: int) -> bytes:
    return hashlib.sha256(index.to_bytes(4, "big")).digest() * (SECTOR // 32)


def encrypt_sector(plain: bytes, sector_index: int, key: bytes = KEY) -> bytes:
    iv = bytes(12) + struct.pack(">I", sector_index & 0xFFFFFFFF)
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return encryptor.update(plain) + encryptor.finalize()


def build_image(ranges=SPEC_RANGES, total_sectors=200, key=KEY, zero_sectors=(), header_ranges=None):
    """Return (encrypted_bytes, plaintext_bytes).

    ``ranges`` drive which sectors are encrypted (odd indices); the header
    written into sectors 0-1 uses ``header_ranges`` when given.
    """
    header = build_header(header_ranges if header_ranges is not None else ranges)
    plain = bytearray(header)
    for i in range(HEADER // SECTOR, total_sectors):
        plain += bytes(SECTOR) if i in zero_sectors else pattern_sector(i)

    enc = bytearray(plain)
    for idx, (start, end) in enumerate(ranges):
        if idx % 2 == 0:
            continue
        for s in range(start, min(end, total_sectors)):
            off = s * SECTOR
            sector = bytes(plain[off:off + SECTOR])
            if sector != bytes(SECTOR):
                enc[off:off + SECTOR] = encrypt_sector(sector, s, key)
    return bytes(enc), bytes(plain)


def write_image(path: Path, **kwargs):
    enc, plain = build_image(**kwargs)
    path.write_bytes(enc)
    return enc, plain
