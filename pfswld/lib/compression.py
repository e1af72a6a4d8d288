"""
The block compression layer of the archive container. Every block of an archive is an independent
zlib stream which inflates to at most `pfswld.lib.compression.CHUNK_SIZE` bytes.
"""
from __future__ import annotations

import zlib

from typing import Iterable

from pfswld.lib.environment import environment, logger
from pfswld.lib.exceptions import CorruptBlock
from pfswld.lib.types import buf

CHUNK_SIZE = 0x2000
"""
The number of uncompressed bytes stored in each block, except for the last block of a file.
"""

_log = logger(__name__)


def decode(compressed: buf, uncompressed_size: int, offset: int | None = None) -> bytes:
    """
    Inflate a single block. The result must have exactly `uncompressed_size` bytes, otherwise a
    `pfswld.lib.exceptions.CorruptBlock` is raised; the same happens for malformed input. The
    `offset` of the block is only used for diagnostics.
    """
    inflate = zlib.decompressobj()
    try:
        data = inflate.decompress(compressed, uncompressed_size + 1)
        data += inflate.flush()
    except zlib.error as E:
        raise CorruptBlock(str(E), offset) from E
    if len(data) != uncompressed_size:
        raise CorruptBlock('size mismatch', offset, uncompressed_size, len(data))
    if not inflate.eof:
        raise CorruptBlock('incomplete deflate stream', offset)
    return data


def encode(data: buf, level: int | None = None) -> bytes:
    """
    Compress a single block. The compression level defaults to the `PFSWLD_COMPRESSION_LEVEL`
    environment setting.
    """
    if level is None:
        level = environment.compression_level.value
    return zlib.compress(data, level)


def chunked(data: buf, size: int = CHUNK_SIZE) -> Iterable[memoryview]:
    """
    Split `data` into chunks of the given size; the last chunk may be shorter. Empty input results
    in a single empty chunk so that every file is represented by at least one block.
    """
    view = memoryview(data)
    if not view:
        yield view
        return
    for k in range(0, len(view), size):
        yield view[k:k + size]
    _log.debug(F'split {len(view)} bytes into {-(-len(view) // size)} chunks of size 0x{size:X}')
