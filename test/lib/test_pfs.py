from pfswld.lib import compression
from pfswld.lib.crc import DIRECTORY_CRC, filename_crc
from pfswld.lib.exceptions import (
    BadMagic,
    BadVersion,
    CorruptArchive,
    CorruptBlock,
    NotFound,
    TruncatedArchive,
)
from pfswld.lib.pfs import (
    PfsArchive,
    PfsBlock,
    PfsDirectory,
    PfsFooter,
    PfsHeader,
    PfsIndexEntry,
)
from pfswld.lib.structures import StructReader

from .. import TestBase


class TestArchiveRecords(TestBase):

    def test_header(self):
        data = bytes((0xBF, 0x9D, 0x21, 0x00)) + B'PFS ' + bytes((0x00, 0x00, 0x02, 0x00))
        header = PfsHeader.read(StructReader(data))
        self.assertEqual(header.index_offset, 0x00219DBF)
        self.assertEqual(header.magic, PfsHeader.MAGIC)
        self.assertEqual(header.version, 0x00020000)
        self.assertEqual(header.to_bytes(), data)

    def test_header_errors(self):
        with self.assertRaises(BadMagic) as context:
            PfsHeader.read(StructReader(B'\x10\0\0\0PFX \0\0\2\0'))
        self.assertEqual(context.exception.offset, 4)
        with self.assertRaises(BadVersion) as context:
            PfsHeader.read(StructReader(B'\x10\0\0\0PFS \0\0\3\0'))
        self.assertEqual(context.exception.offset, 8)
        with self.assertRaises(TruncatedArchive) as context:
            PfsHeader.read(StructReader(B'\x10\0\0\0PFS '))
        self.assertEqual(context.exception.available, 8)

    def test_footer(self):
        data = B'STEVE' + (0x5B28AD36).to_bytes(4, 'little')
        footer = PfsFooter.read(StructReader(data))
        self.assertEqual(footer.marker, B'STEVE')
        self.assertEqual(footer.timestamp, 0x5B28AD36)
        self.assertEqual(footer.to_bytes(), data)

    def test_index_entry(self):
        data = bytes.fromhex('C07AE5FF 0C000000 00200000')
        entry = PfsIndexEntry.read(StructReader(data))
        self.assertEqual(entry, PfsIndexEntry(0xFFE57AC0, 12, 0x2000))
        self.assertEqual(entry.to_bytes(), data)

    def test_directory(self):
        directory = PfsDirectory(('sgrass.bmp', 'gfaydark.wld'))
        data = directory.to_bytes()
        self.assertEqual(data[:8], B'\x02\0\0\0\x0B\0\0\0')
        self.assertEqual(data[8:19], B'sgrass.bmp\0')
        self.assertEqual(PfsDirectory.read(StructReader(data)), directory)

    def test_directory_with_impossible_count(self):
        self.assertRaises(CorruptArchive, PfsDirectory.read, StructReader(B'\xFF\0\0\0\x01\0\0\0a'))

    def test_block(self):
        data = self.generate_random_text(100)
        block = PfsBlock.compress(data)
        self.assertEqual(block.uncompressed_size, 100)
        raw = block.to_bytes()
        self.assertEqual(len(raw), block.size)
        self.assertEqual(PfsBlock.read(StructReader(raw)), block)
        self.assertEqual(block.decode(), data)

    def test_corrupt_block(self):
        block = PfsBlock(10, compression.encode(B'abc'))
        self.assertRaises(CorruptBlock, block.decode)
        block = PfsBlock(3, B'garbage')
        self.assertRaises(CorruptBlock, block.decode)


class TestArchive(TestBase):

    def _files(self, count=3):
        return [(F'file{k:02d}.txt', self.generate_random_text(50 + k)) for k in range(count)]

    def test_build_and_extract(self):
        files = self._files(40)
        archive = PfsArchive.build(files)
        self.assertEqual(len(archive.entries), 41)
        self.assertEqual(archive.filenames(), [name for name, _ in files])
        self.assertIsNone(archive.footer)
        for name, data in files:
            self.assertIn(name, archive)
            self.assertEqual(archive.extract(name), data)
        self.assertEqual(dict(archive.files()), dict(files))

    def test_index_keys(self):
        files = self._files(5)
        archive = PfsArchive.build(files)
        self.assertEqual(archive.entries[-1].crc, DIRECTORY_CRC)
        self.assertIs(archive.directory_entry, archive.entries[-1])
        for (name, _), entry in zip(files, archive.entries):
            self.assertEqual(entry.crc, filename_crc(name))

    def test_offsets_are_absolute(self):
        archive = PfsArchive.build(self._files(2))
        self.assertEqual(archive.entries[0].data_offset, PfsHeader.SIZE)
        self.assertIn(archive.entries[1].data_offset, archive.blocks)
        self.assertEqual(min(archive.blocks), PfsHeader.SIZE)

    def test_lookup_ignores_case(self):
        archive = PfsArchive.build([('SGrass.BMP', B'grass')])
        self.assertEqual(archive.extract('sgrass.bmp'), B'grass')
        self.assertIn('SGRASS.BMP', archive)

    def test_roundtrip_bytes(self):
        archive = PfsArchive.build(self._files(3), footer=0x5B28AD36)
        data = archive.to_bytes()
        self.assertEqual(PfsArchive.Parse(data).to_bytes(), data)
        self.assertEqual(bytes(archive), data)

    def test_footer(self):
        archive = PfsArchive.build(self._files(2), footer=0x5B28AD36)
        self.assertEqual(archive.footer, PfsFooter(B'STEVE', 0x5B28AD36))
        data = archive.to_bytes()
        self.assertTrue(data.endswith(B'STEVE\x36\xAD\x28\x5B'))
        self.assertEqual(archive.trailer, B'')

    def test_footer_with_current_time(self):
        archive = PfsArchive.build(self._files(1), footer=True)
        self.assertIsNotNone(archive.footer)
        self.assertGreater(archive.footer.timestamp, 0x5B28AD36)

    def test_no_footer(self):
        archive = PfsArchive.build(self._files(2))
        data = archive.to_bytes()
        self.assertEqual(len(data), archive.header.index_offset + 4 + 3 * PfsIndexEntry.SIZE)

    def test_truncated_footer(self):
        data = PfsArchive.build(self._files(1)).to_bytes() + B'STE'
        self.assertRaises(TruncatedArchive, PfsArchive.Parse, data)

    def test_bytes_after_footer_are_kept(self):
        data = PfsArchive.build(self._files(1), footer=1).to_bytes() + B'\0\0'
        archive = PfsArchive.Parse(data)
        self.assertEqual(archive.trailer, B'\0\0')
        self.assertEqual(archive.to_bytes(), data)

    def test_empty_file(self):
        files = [('empty.txt', B''), ('full.txt', B'data')]
        archive = PfsArchive.build(files)
        self.assertEqual(archive.extract('empty.txt'), B'')
        self.assertEqual(archive.extract('full.txt'), B'data')

    def test_multiple_blocks(self):
        data = self.generate_random_buffer(3 * compression.CHUNK_SIZE + 100)
        archive = PfsArchive.build([('big.bin', data)])
        self.assertEqual(len(archive.blocks), 5)
        self.assertEqual(archive.extract('big.bin'), data)
        self.assertTrue(archive.stream().startswith(data))

    def test_not_found(self):
        archive = PfsArchive.build(self._files(2))
        with self.assertRaises(NotFound) as context:
            archive.extract('missing.txt')
        self.assertEqual(context.exception.name, 'missing.txt')
        self.assertIsInstance(context.exception, LookupError)

    def test_bad_magic(self):
        data = bytearray(PfsArchive.build(self._files(1)).to_bytes())
        data[4:8] = B'ZIP!'
        self.assertRaises(BadMagic, PfsArchive.Parse, data)

    def test_truncated_index(self):
        data = PfsArchive.build(self._files(4)).to_bytes()
        with self.assertRaises(TruncatedArchive) as context:
            PfsArchive.Parse(data[:-5])
        self.assertEqual(context.exception.what, 'index')

    def test_truncated_blocks(self):
        data = PfsArchive.build(self._files(4)).to_bytes()
        index_offset = int.from_bytes(data[:4], 'little')
        self.assertRaises(TruncatedArchive, PfsArchive.Parse, data[:index_offset - 10])

    def test_directory_without_reserved_key(self):
        archive = PfsArchive.build(self._files(3))
        archive.entries[-1] = archive.entries[-1]._replace(crc=0)
        archive = PfsArchive.Parse(archive.to_bytes())
        self.assertEqual(archive.directory_entry.crc, 0)
        self.assertEqual(len(archive.filenames()), 3)

    def test_custom_hasher(self):
        files = self._files(2)
        archive = PfsArchive.build(files, hasher=lambda name: len(name))
        self.assertEqual(archive.entries[0].crc, len('file00.txt'))
        self.assertEqual(archive.extract('file01.txt'), files[1][1])

    def test_invalid_names(self):
        self.assertRaises(ValueError, PfsArchive.build, [('a.txt', B'1'), ('A.TXT', B'2')])
        self.assertRaises(ValueError, PfsArchive.build, [('', B'1')])
