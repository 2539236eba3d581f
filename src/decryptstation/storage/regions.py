import struct

from typing import List

from decryptstation.utils.dataModels import (
    HEADER_SIZE,
    REGION_COUNT_FMT,
    REGION_ENTRY_FMT,
    REGION_ENTRY_SIZE,
    REGION_TABLE_OFFSET,
    Region,
    RegionKind,
)
from decryptstation.utils.errors import FormatError

MAX_REGIONS = (HEADER_SIZE - REGION_TABLE_OFFSET) // REGION_ENTRY_SIZE


def region_count(num_normal_regions: int) -> int:
    count = num_normal_regions * 2 - 1
    if count <= 0:
        raise FormatError(f"header declares {num_normal_regions} normal regions")
    if count > MAX_REGIONS:
        raise FormatError(f"header declares {count} regions, table holds at most {MAX_REGIONS}")
    return count


def parse_regions(header: bytes) -> List[Region]:
    """Decode the region table from the first HEADER_SIZE bytes of an image.

    Entries are (start, end) big-endian u32 pairs, end exclusive, alternating
    plain/encrypted starting with plain. No check against the image length.
    """
    if len(header) < REGION_TABLE_OFFSET:
        raise FormatError(f"header too small ({len(header)} bytes)")
    (num_normal,) = struct.unpack_from(REGION_COUNT_FMT, header, 0)
    count = region_count(num_normal)
    needed = REGION_TABLE_OFFSET + count * REGION_ENTRY_SIZE
    if len(header) < needed:
        raise FormatError(f"header too small for {count} regions ({len(header)} < {needed} bytes)")

    regions = []
    for i in range(count):
        start, end = struct.unpack_from(REGION_ENTRY_FMT, header, REGION_TABLE_OFFSET + i * REGION_ENTRY_SIZE)
        kind = RegionKind.PLAIN if i % 2 == 0 else RegionKind.ENCRYPTED
        regions.append(Region(start=start, end=end, kind=kind))
    return regions


def total_sectors(regions: List[Region]) -> int:
    return sum(r.sector_count for r in regions)
