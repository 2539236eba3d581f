#!/usr/bin/env python3
"""
Decrypt Station - restores the plaintext of selectively encrypted PS3 disc images.

An image is a sequence of 2048-byte sectors. Its first 4096 bytes hold a
region table (big-endian):
    num_normal_regions : u32
    regions            : (2 * num_normal_regions - 1) x (start: u32, end: u32)   end exclusive
Regions alternate plain / encrypted, starting with plain. Sectors in encrypted
regions are AES-128-CBC with IV = 12 zero bytes || sector index (u32 BE);
all-zero sectors are never encrypted.

Pipeline per image:
  hash      SHA-1 of the whole file
  lookup    digest -> title + disc key (JSON database, game_keys.json)
  decrypt   <image>.dec, plain regions copied, encrypted regions decrypted in parallel
  extract   hand-off to an external ISO9660 extractor

Commands:
  process <images...>      Full pipeline over a batch
  decrypt <image> --key    Decrypt with a known key
  hash <image>             SHA-1 digest (and title with --db)
  regions <image>          Dump the region table
"""
import logging

from decryptstation.ui.cli import build_parser


def main():
    parser = build_parser()
    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args.func(args)


if __name__ == "__main__":
    main()
