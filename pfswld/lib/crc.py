"""
The filename hash used as the key of archive index entries. It is a CRC-32 with the polynomial
0x04C11DB7 which is neither reflected nor inverted, computed over the lower case name including its
terminating null byte.
"""
from __future__ import annotations

from typing import Callable

FilenameHash = Callable[[str], int]

DIRECTORY_CRC = 0x61580AC9
"""
The reserved index key of the directory entry of an archive.
"""

_CRC32_TABLE: list[int] = []


def crc32(data: bytes | bytearray | memoryview, crc: int = 0) -> int:
    if not (T := _CRC32_TABLE):
        for c in range(256):
            c <<= 24
            for _ in range(8):
                c = (c << 1) ^ 0x04C11DB7 if c & 0x80000000 else c << 1
            T.append(c & 0xFFFFFFFF)
    for b in data:
        crc = ((crc << 8) & 0xFFFFFFFF) ^ T[(crc >> 24) ^ b]
    return crc


def filename_crc(name: str) -> int:
    """
    Compute the index key for the given file name.
    """
    return crc32(name.lower().encode('utf8') + B'\0')
