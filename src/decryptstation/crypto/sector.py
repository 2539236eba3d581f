import string
import struct

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from decryptstation.utils.dataModels import IV_FMT, KEY_HEX_LEN, SECTOR_SIZE
from decryptstation.utils.errors import KeyFormatError

ZERO_SECTOR = bytes(SECTOR_SIZE)
_HEX_DIGITS = frozenset(string.hexdigits)


def parse_key(hex_key: str) -> bytes:
    """32 hex digits (optional 0x/0X prefix, any case) -> 16-byte AES-128 key."""
    pot = hex_key.strip()
    if pot[:2].lower() == "0x":
        pot = pot[2:]
    if len(pot) != KEY_HEX_LEN:
        raise KeyFormatError(f"Key must be {KEY_HEX_LEN} hex characters in length (got {len(pot)})")
    if not _HEX_DIGITS.issuperset(pot):
        raise KeyFormatError("Key contains non-hex characters")
    return bytes.fromhex(pot)


def generate_iv(sector_index: int) -> bytes:
    # only the low 32 bits of the sector index take part in the IV
    return struct.pack(IV_FMT, sector_index & 0xFFFFFFFF)


def is_zero_sector(sector) -> bool:
    return memoryview(sector) == ZERO_SECTOR


def decrypt_sector(buffer, offset: int, sector_index: int, key: bytes) -> bool:
    """Decrypt the sector at ``buffer[offset:offset + SECTOR_SIZE]`` in place.

    All-zero sectors are never encrypted and are left untouched. Returns
    whether the sector was transformed.
    """
    view = memoryview(buffer)[offset:offset + SECTOR_SIZE]
    if len(view) != SECTOR_SIZE:
        raise ValueError(f"sector at offset {offset} is truncated ({len(view)} bytes)")
    if is_zero_sector(view):
        return False
    decryptor = Cipher(algorithms.AES(key), modes.CBC(generate_iv(sector_index))).decryptor()
    view[:] = decryptor.update(view) + decryptor.finalize()
    return True


def decrypt_sectors(buffer, first_slot: int, count: int, base_sector: int, key: bytes) -> int:
    """Decrypt ``count`` consecutive sectors of a chunk buffer starting at slot ``first_slot``.

    ``base_sector`` is the absolute index of slot 0. Each worker owns a
    disjoint slot range of the shared buffer.
    """
    done = 0
    for slot in range(first_slot, first_slot + count):
        if decrypt_sector(buffer, slot * SECTOR_SIZE, base_sector + slot, key):
            done += 1
    return done
