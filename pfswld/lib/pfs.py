"""
Structures for reading and writing PFS archives, the container format of `.s3d` and `.pfs` files.
An archive has the following layout, all integers are little endian:

    Header(12) | Block* | u32 index_count | IndexEntry(12)* | Footer?(9)

Every block is an independent zlib stream. A file is stored as a contiguous run of blocks; the
index entry of the file contains the absolute offset of its first block and the total size of its
decompressed data. Index entries are keyed by a hash of the file name. The names themselves are
stored in the directory, a special file that is stored after all other files and whose index entry
uses the reserved hash value `pfswld.lib.crc.DIRECTORY_CRC`. The n-th name in the directory belongs
to the n-th of the remaining entries when ordered by data offset.
"""
from __future__ import annotations

import bisect
import functools
import time

from typing import TYPE_CHECKING, Iterable, Iterator, NamedTuple

from pfswld.lib import compression
from pfswld.lib.crc import DIRECTORY_CRC, FilenameHash, filename_crc
from pfswld.lib.environment import logger
from pfswld.lib.exceptions import (
    BadMagic,
    BadVersion,
    CorruptArchive,
    NotFound,
    TruncatedArchive,
)
from pfswld.lib.structures import EOF, Struct, StructReader, StructWriter

if TYPE_CHECKING:
    from typing import Self

    from pfswld.lib.types import buf

_log = logger(__name__)


class PfsHeader(NamedTuple):
    index_offset: int
    magic: int = int.from_bytes(B'PFS ', 'little')
    version: int = 0x00020000

    SIZE = 12
    MAGIC = int.from_bytes(B'PFS ', 'little')
    VERSION = 0x00020000

    @classmethod
    def read(cls, reader: StructReader) -> Self:
        try:
            index_offset, magic, version = reader.read_struct('3I')
        except EOF as E:
            raise TruncatedArchive('header', 0, cls.SIZE, len(E.rest)) from E
        if magic != cls.MAGIC:
            raise BadMagic(cls.MAGIC, magic, 4)
        if version != cls.VERSION:
            raise BadVersion((cls.VERSION,), version, 8)
        return cls(index_offset, magic, version)

    def to_bytes(self) -> bytes:
        return bytes(StructWriter().write_struct('3I', self.index_offset, self.magic, self.version))


class PfsBlock(NamedTuple):
    uncompressed_size: int
    compressed: bytes

    HEADER_SIZE = 8

    @classmethod
    def read(cls, reader: StructReader) -> Self:
        compressed_size, uncompressed_size = reader.read_struct('2I')
        return cls(uncompressed_size, reader.read_bytes(compressed_size))

    @classmethod
    def compress(cls, data: buf, level: int | None = None) -> Self:
        return cls(len(data), compression.encode(data, level))

    @property
    def size(self) -> int:
        """
        The number of bytes that the block occupies in the archive.
        """
        return self.HEADER_SIZE + len(self.compressed)

    def decode(self, offset: int | None = None) -> bytes:
        return compression.decode(self.compressed, self.uncompressed_size, offset)

    def to_bytes(self) -> bytes:
        writer = StructWriter()
        writer.write_struct('2I', len(self.compressed), self.uncompressed_size)
        writer.write_bytes(self.compressed)
        return bytes(writer)


class PfsIndexEntry(NamedTuple):
    crc: int
    data_offset: int
    uncompressed_size: int

    SIZE = 12

    @classmethod
    def read(cls, reader: StructReader) -> Self:
        return cls(*reader.read_struct('3I'))

    def to_bytes(self) -> bytes:
        return bytes(StructWriter().write_struct('3I', *self))


class PfsDirectory(NamedTuple):
    filenames: tuple[str, ...]

    CODEC = 'utf8'

    @classmethod
    def read(cls, reader: StructReader) -> Self:
        count = reader.u32()
        if count * 4 > reader.remaining_bytes:
            raise CorruptArchive(F'directory claims {count} entries but has only {reader.remaining_bytes} bytes left')
        names = []
        for _ in range(count):
            name = reader.read_length_prefixed()
            names.append(bytes(name).rstrip(B'\0').decode(cls.CODEC))
        return cls(tuple(names))

    def to_bytes(self) -> bytes:
        writer = StructWriter()
        writer.u32(len(self.filenames))
        for name in self.filenames:
            encoded = name.encode(self.CODEC) + B'\0'
            writer.u32(len(encoded))
            writer.write_bytes(encoded)
        return bytes(writer)


class PfsFooter(NamedTuple):
    marker: bytes = B'STEVE'
    timestamp: int = 0

    SIZE = 9
    MARKER = B'STEVE'

    @classmethod
    def read(cls, reader: StructReader) -> Self:
        marker = reader.read_bytes(5)
        if marker != cls.MARKER:
            _log.info(F'unknown footer marker {marker!r}')
        return cls(marker, reader.u32())

    def to_bytes(self) -> bytes:
        return bytes(StructWriter().write_bytes(self.marker).u32(self.timestamp))


class PfsArchive(Struct):
    """
    A parsed PFS archive. Use `pfswld.lib.pfs.PfsArchive.Parse` to read an archive from memory and
    `pfswld.lib.pfs.PfsArchive.build` to create a new one. The archive behaves like a read-only
    collection of file names:

        archive = PfsArchive.Parse(data)
        for name in archive:
            print(name, len(archive.extract(name)))

    The `blocks` attribute maps the absolute offset of each block to the block.
    """

    def __init__(self, reader: StructReader[memoryview], hasher: FilenameHash = filename_crc):
        self.hasher = hasher
        self.header = header = PfsHeader.read(reader)
        total = len(reader)
        index_offset = header.index_offset
        if not PfsHeader.SIZE <= index_offset <= total:
            raise TruncatedArchive('block region', PfsHeader.SIZE, index_offset - PfsHeader.SIZE, total - PfsHeader.SIZE)
        self.blocks: dict[int, PfsBlock] = {}
        while (offset := reader.tell()) < index_offset:
            try:
                block = PfsBlock.read(reader)
            except EOF as E:
                raise TruncatedArchive('block', offset, E.size, len(E.rest)) from E
            if reader.tell() > index_offset:
                raise TruncatedArchive('block', offset, block.size, index_offset - offset)
            self.blocks[offset] = block
        _log.debug(F'read {len(self.blocks)} blocks from 0x{PfsHeader.SIZE:X} to 0x{index_offset:X}')
        try:
            count = reader.u32()
        except EOF as E:
            raise TruncatedArchive('index count', index_offset, 4, len(E.rest)) from E
        if (needed := count * PfsIndexEntry.SIZE) > (available := reader.remaining_bytes):
            raise TruncatedArchive('index', index_offset + 4, needed, available)
        self.entries = [PfsIndexEntry.read(reader) for _ in range(count)]
        self.footer: PfsFooter | None = None
        self.trailer = B''
        if remaining := reader.remaining_bytes:
            if remaining < PfsFooter.SIZE:
                raise TruncatedArchive('footer', reader.tell(), PfsFooter.SIZE, remaining)
            self.footer = PfsFooter.read(reader)
            if reader.remaining_bytes:
                self.trailer = reader.read_bytes(reader.remaining_bytes)
                _log.warning(F'archive has {len(self.trailer)} unexpected bytes after the footer')

    @classmethod
    def build(
        cls,
        files: Iterable[tuple[str, buf]],
        footer: PfsFooter | bool | int | None = None,
        hasher: FilenameHash = filename_crc,
        level: int | None = None,
    ) -> Self:
        """
        Create a new archive from a sequence of name and data pairs. The files are stored in the given
        order, followed by the directory. A footer is only written when requested: `True` uses the
        current time as timestamp, an integer is used as the timestamp, and a `PfsFooter` is written
        verbatim.
        """
        files = [(name, memoryview(data)) for name, data in files]
        names = [name for name, _ in files]
        seen = set()
        for name in names:
            if not name or '\0' in name:
                raise ValueError(F'Invalid file name: {name!r}')
            if (key := name.lower()) in seen:
                raise ValueError(F'Duplicate file name: {name}')
            seen.add(key)
        directory = PfsDirectory(tuple(names)).to_bytes()
        offset = PfsHeader.SIZE
        blocks = StructWriter()
        entries: list[PfsIndexEntry] = []
        keys = [hasher(name) for name in names]
        keys.append(DIRECTORY_CRC)
        for key, (_, data) in zip(keys, [*files, (None, memoryview(directory))]):
            entries.append(PfsIndexEntry(key, offset, len(data)))
            for chunk in compression.chunked(data):
                block = PfsBlock.compress(chunk, level).to_bytes()
                blocks.write_bytes(block)
                offset += len(block)
        writer = StructWriter()
        writer.write_bytes(PfsHeader(offset).to_bytes())
        writer.write_bytes(blocks.getvalue())
        writer.u32(len(entries))
        for entry in entries:
            writer.write_bytes(entry.to_bytes())
        if footer is True:
            footer = PfsFooter(timestamp=int(time.time()) & 0xFFFFFFFF)
        elif footer is not False and isinstance(footer, int):
            footer = PfsFooter(timestamp=footer)
        if isinstance(footer, PfsFooter):
            writer.write_bytes(footer.to_bytes())
        _log.info(F'built archive with {len(files)} files in {len(writer)} bytes')
        return cls.Parse(writer.getvalue(), hasher)

    def to_bytes(self) -> bytes:
        writer = StructWriter()
        writer.write_bytes(self.header.to_bytes())
        for block in self.blocks.values():
            writer.write_bytes(block.to_bytes())
        writer.u32(len(self.entries))
        for entry in self.entries:
            writer.write_bytes(entry.to_bytes())
        if self.footer is not None:
            writer.write_bytes(self.footer.to_bytes())
        writer.write_bytes(self.trailer)
        return bytes(writer)

    @functools.cached_property
    def _offsets(self) -> list[int]:
        return sorted(self.blocks)

    @functools.cached_property
    def directory_entry(self) -> PfsIndexEntry:
        """
        The index entry of the directory; this is the entry with the reserved directory hash or, if
        there is none, the entry with the largest data offset.
        """
        if not self.entries:
            raise CorruptArchive('archive has no index entries')
        for entry in self.entries:
            if entry.crc == DIRECTORY_CRC:
                return entry
        return max(self.entries, key=lambda e: e.data_offset)

    @functools.cached_property
    def directory(self) -> PfsDirectory:
        return PfsDirectory.read(StructReader(memoryview(self.read_entry(self.directory_entry))))

    @functools.cached_property
    def file_entries(self) -> list[PfsIndexEntry]:
        """
        All index entries except for the directory, ordered by data offset. This is the order of the
        names in the directory.
        """
        directory = self.directory_entry
        entries = sorted((e for e in self.entries if e is not directory), key=lambda e: e.data_offset)
        if len(entries) != len(names := self.directory.filenames):
            raise CorruptArchive(F'directory lists {len(names)} names for {len(entries)} index entries')
        return entries

    def filenames(self) -> list[str]:
        return list(self.directory.filenames)

    def read_entry(self, entry: PfsIndexEntry) -> bytes:
        """
        Decompress the data of an index entry. Starting at the block at the entry's data offset,
        consecutive blocks are decompressed until their sizes add up to the size of the entry.
        """
        size = entry.uncompressed_size
        if size == 0:
            return B''
        offsets = self._offsets
        start = bisect.bisect_left(offsets, entry.data_offset)
        if start >= len(offsets) or offsets[start] != entry.data_offset:
            raise CorruptArchive(F'index entry 0x{entry.crc:08X} does not point to a block', entry.data_offset)
        output = bytearray()
        for offset in offsets[start:]:
            block = self.blocks[offset]
            if len(output) + block.uncompressed_size > size:
                raise CorruptArchive(
                    F'blocks of index entry 0x{entry.crc:08X} exceed its size of {size} bytes', offset)
            output.extend(block.decode(offset))
            if len(output) == size:
                return bytes(output)
        raise TruncatedArchive(F'data of index entry 0x{entry.crc:08X}', entry.data_offset, size, len(output))

    def lookup(self, name: str) -> PfsIndexEntry:
        """
        Find the index entry for the given name. Entries are located by the hash of the name and the
        match is confirmed with the name at the same position in the directory. When the hash does not
        match any entry, the position of the name in the directory is used.
        """
        key = self.hasher(name)
        names = self.directory.filenames
        entries = self.file_entries
        folded = name.casefold()
        for position, entry in enumerate(entries):
            if entry.crc == key and names[position].casefold() == folded:
                return entry
        for position, candidate in enumerate(names):
            if candidate.casefold() == folded:
                _log.debug(F'hash 0x{key:08X} of {name} does not match its index entry')
                return entries[position]
        raise NotFound(name)

    def extract(self, name: str) -> bytes:
        return self.read_entry(self.lookup(name))

    def files(self) -> Iterator[tuple[str, bytes]]:
        """
        Generate pairs of file name and decompressed data in directory order.
        """
        for name, entry in zip(self.directory.filenames, self.file_entries):
            yield name, self.read_entry(entry)

    def stream(self) -> bytes:
        """
        Return the concatenation of all decompressed blocks in the order of their offsets.
        """
        return B''.join(self.blocks[offset].decode(offset) for offset in self._offsets)

    def __iter__(self):
        return iter(self.directory.filenames)

    def __contains__(self, name: str):
        folded = name.casefold()
        return any(n.casefold() == folded for n in self.directory.filenames)

    def __repr__(self):
        return F'<PfsArchive:{len(self.entries)} entries,{len(self.blocks)} blocks>'
