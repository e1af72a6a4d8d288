from pfswld.lib.structures import StructReader, StructWriter
from pfswld.lib.wld.strings import (
    XOR_KEY,
    StringHash,
    StringReference,
    decode_string,
    decode_text,
    encode_string,
    encode_text,
    obfuscate,
)

from ... import TestBase


class TestObfuscation(TestBase):

    def test_known_value(self):
        self.assertEqual(
            encode_string('SGRASS.BMP'),
            bytes.fromhex('C67D976BC629BB28D86AC5'))
        self.assertEqual(decode_string(bytes.fromhex('C67D976BC629BB28D86AC5')), 'SGRASS.BMP')

    def test_obfuscate_is_involution(self):
        data = self.generate_random_buffer(37)
        self.assertEqual(obfuscate(obfuscate(data)), data)
        self.assertEqual(obfuscate(bytes(8)), XOR_KEY)

    def test_decode_stops_at_terminator(self):
        self.assertEqual(decode_string(obfuscate(B'WATER\0\0\0junk')), 'WATER')
        self.assertEqual(decode_string(obfuscate(B'NOTERM')), 'NOTERM')

    def test_undefined_cp1252_bytes_pass_through(self):
        data = bytes((0x41, 0x81, 0x8D, 0x8F, 0x90, 0x9D))
        text = decode_text(data)
        self.assertEqual(text, 'A\x81\x8D\x8F\x90\x9D')
        self.assertEqual(encode_text(text), data)

    def test_cp1252_characters(self):
        self.assertEqual(encode_text('€'), B'\x80')
        self.assertRaises(UnicodeEncodeError, encode_text, '中')


class TestStringReference(TestBase):

    def test_sign_is_preserved(self):
        writer = StructWriter()
        StringReference(-12).write(writer)
        self.assertEqual(writer.getvalue(), B'\xF4\xFF\xFF\xFF')
        ref = StringReference.read(StructReader(bytes(writer.getvalue())))
        self.assertEqual(ref, -12)
        self.assertEqual(ref.offset, 12)

    def test_range(self):
        self.assertRaises(OverflowError, StringReference, 0x80000000)
        self.assertEqual(StringReference(-0x80000000), -0x80000000)


class TestStringHash(TestBase):

    def test_from_strings(self):
        table = StringHash.from_strings(['', 'SGRASS_SPRITE', 'SGRASS_MDF'])
        self.assertEqual(list(table), [0, 1, 15])
        self.assertEqual(table[15], 'SGRASS_MDF')
        self.assertEqual(table[-15], 'SGRASS_MDF')
        self.assertIsNone(table.get(3))
        self.assertEqual(table.get(-1), 'SGRASS_SPRITE')
        self.assertEqual(table.reference('SGRASS_MDF'), -15)
        self.assertRaises(KeyError, table.reference, 'MISSING')

    def test_encode_pads_to_four(self):
        table = StringHash.from_strings(['', 'ABC'])
        data = table.encode()
        self.assertEqual(len(data), 8)
        self.assertEqual(data[5:], B'\0\0\0')
        self.assertEqual(table.size, 8)

    def test_decode_roundtrip(self):
        table = StringHash.from_strings(['', 'SGRASS_SPRITE', 'LIGHT1_LDEF'])
        data = table.encode()
        decoded = StringHash.decode(data)
        self.assertEqual(dict(decoded), dict(table))
        self.assertEqual(decoded.encode(), data)

    def test_tail_is_preserved(self):
        raw = obfuscate(B'\0NAME\0') + B'\x01\x02\x03'
        table = StringHash.decode(raw)
        self.assertEqual(dict(table), {0: '', 1: 'NAME'})
        self.assertEqual(table.encode(), raw)

    def test_invalid_layout(self):
        self.assertRaises(ValueError, StringHash, {0: 'A', 3: 'B'})
        self.assertRaises(ValueError, StringHash, {0: 'A\0B'})

    def test_empty(self):
        table = StringHash.decode(B'')
        self.assertEqual(len(table), 0)
        self.assertEqual(table.encode(), B'')
        self.assertEqual(StringHash().encode(), B'')
