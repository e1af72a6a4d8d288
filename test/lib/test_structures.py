import enum
import io
import math
import struct

from pfswld.lib.structures import (
    EOF,
    FlagAccessMixin,
    MemoryFile,
    Struct,
    StructReader,
    StructWriter,
    struct_to_json,
)

from .. import TestBase


class Flags(FlagAccessMixin, enum.IntFlag):
    IsTwoSided = 1
    HasPair = 2


class Pair(Struct):
    def __init__(self, reader: StructReader[memoryview], scale: int = 1):
        self.left = reader.u16() * scale
        self.right = reader.u16() * scale
        self.flags = Flags(reader.u8())


class TestStructures(TestBase):

    def test_memoryfile_bytes(self):
        buffers: list[bytes | memoryview] = [
            B'Fragment Documents'
        ]
        buffers.append(memoryview(buffers[0]))
        buffers.append(memoryview(bytearray(buffers[0])).toreadonly())
        for b in buffers:
            with MemoryFile(b) as mem:
                self.assertFalse(mem.writable())
                self.assertTrue(mem.readable())
                with self.assertRaises(Exception):
                    mem.write(B'Archive')
                self.assertEqual(mem.read(8), B'Fragment')

    def test_memoryfile_memoryview(self):
        with MemoryFile(memoryview(bytearray(B'Fragment Documents'))) as mem:
            self.assertTrue(mem.writable())
            mem.write(bytearray(B'Archived'))
            mem.seek(0, 2)
            with self.assertRaises(Exception):
                mem.write(B'Rocks')
            mem.seek(0)
            self.assertEqual(mem.read(), B'Archived Documents')

    def test_memoryfile_seeking(self):
        with MemoryFile(bytearray(B'0123456789')) as mem:
            self.assertTrue(mem.seekable())
            mem.seekrel(4)
            self.assertEqual(mem.tell(), 4)
            self.assertEqual(mem.remaining_bytes, 6)
            mem.seekset(-2)
            self.assertEqual(mem.read(), B'89')
            self.assertTrue(mem.eof)
            mem.seek(20, io.SEEK_SET)
            self.assertEqual(mem.tell(), 10)
            self.assertRaises(ValueError, lambda: mem.seek(-1))
            self.assertEqual(bytes(mem.peek()), B'')
            mem.seek(3)
            self.assertEqual(bytes(mem.peek(2)), B'34')
            self.assertEqual(mem.tell(), 3)
            mem.close()
            self.assertTrue(mem.closed)
            self.assertFalse(mem.readable())

    def test_string_builder(self):
        builder = MemoryFile()
        self.assertTrue(builder.writable())
        builder.write(B'The fragment document ')
        builder.write(B'references the fragments.')
        builder.seekrel(-1)
        builder.write(B'!')
        self.assertEqual(builder.getvalue(), B'The fragment document references the fragments!')

    def test_reader_structured(self):
        items = (
             0b1100101,   # noqa
            -0x1337,      # noqa
             0xDEFACED,   # noqa
             0xC0CAC01A,  # noqa
             2076.171875, # noqa
             math.pi      # noqa
        )
        data = struct.pack('<bhiLfd', *items)
        sr = StructReader(data)
        self.assertEqual(sr.read_byte(), 0b1100101)
        self.assertEqual(sr.i16(), -0x1337)
        self.assertEqual(sr.i32(), 0xDEFACED)
        self.assertEqual(sr.u32(), 0xC0CAC01A)
        self.assertAlmostEqual(sr.f32(), 2076.171875)
        self.assertAlmostEqual(sr.read_one_struct('d'), math.pi)
        self.assertTrue(sr.eof)
        self.assertRaises(EOFError, sr.u16)

    def test_reader_eof_contains_rest(self):
        sr = StructReader(B'\x01\x02\x03')
        sr.seek(1)
        with self.assertRaises(EOF) as context:
            sr.read_exactly(4)
        self.assertEqual(bytes(context.exception), B'\x02\x03')
        self.assertEqual(context.exception.size, 4)

    def test_reader_peeking(self):
        sr = StructReader(B'\x34\x12\x78\x56')
        self.assertEqual(sr.u16(peek=True), 0x1234)
        self.assertEqual(sr.u32(), 0x56781234)
        sr = StructReader(B'\x12\x34', bigendian=True)
        self.assertEqual(sr.u16(), 0x1234)

    def test_reader_length_prefixed(self):
        sr = StructReader(B'\x05\x00\x00\x00hello world')
        self.assertEqual(sr.read_length_prefixed(encoding='ascii'), 'hello')
        sr.byte_align(4)
        self.assertEqual(sr.tell(), 12)
        self.assertEqual(sr.read_bytes(3), B'rld')

    def test_writer(self):
        writer = StructWriter()
        writer.u8(7).u16(0x1234).i16(-2).u32(0xDEADBEEF).i32(-1).f32(0.75)
        writer.write_struct('>H', 0xABCD)
        writer.byte_align(4)
        self.assertEqual(writer.getvalue(), bytes.fromhex(
            '07 3412 FEFF EFBEADDE FFFFFFFF 0000403F ABCD 00'))
        self.assertRaises(OverflowError, lambda: writer.u16(0x10000))

    def test_writer_appends(self):
        writer = StructWriter(bytearray(B'AB'))
        writer.write_bytes(B'CD')
        self.assertEqual(writer.getvalue(), B'ABCD')

    def test_writer_bigendian(self):
        writer = StructWriter(bigendian=True)
        writer.u32(0x01020304)
        self.assertEqual(writer.getvalue(), B'\x01\x02\x03\x04')

    def test_struct_parse(self):
        pair = Pair.Parse(B'\x01\x00\x02\x00\x03\xFF', scale=10)
        self.assertEqual(pair.left, 10)
        self.assertEqual(pair.right, 20)
        self.assertTrue(pair.flags.IsTwoSided)
        self.assertTrue(pair.flags.HasPair)
        self.assertEqual(bytes(pair), B'\x01\x00\x02\x00\x03')
        self.assertEqual(len(pair), 5)

    def test_struct_to_json(self):
        pair = Pair.Parse(B'\x01\x00\x02\x00\x02')
        self.assertEqual(struct_to_json(pair), {
            'left': 1,
            'right': 2,
            'flags': ['HasPair'],
        })
        self.assertEqual(struct_to_json(B'\xAB\xCD'), 'abcd')
        self.assertEqual(struct_to_json(B'ab', 'ascii'), 'ab')

    def test_flag_access(self):
        flags = Flags(3)
        self.assertEqual(list(flags), [Flags.IsTwoSided, Flags.HasPair])
        self.assertFalse(Flags(0).HasPair)
