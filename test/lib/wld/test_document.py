import struct

from pfswld.lib.exceptions import (
    BadMagic,
    BadVersion,
    DocumentError,
    FormatError,
    MalformedField,
    TruncatedFragment,
    UnknownFragmentType,
)
from pfswld.lib.wld.document import END_MARKER, FragmentHeader, WldDocument, WldHeader
from pfswld.lib.wld.fragments import UnknownFragment
from pfswld.lib.wld.fragments.materials import (
    BmInfo,
    MaterialDef,
    MaterialPalette,
    SimpleSprite,
    SimpleSpriteDef,
)
from pfswld.lib.wld.references import FragmentRef
from pfswld.lib.wld.strings import StringHash

from ... import TestBase


class TestDocument(TestBase):

    def _strings(self):
        return StringHash.from_strings(['', 'SGRASS_SPRITE', 'SGRASS_MDF', 'PALETTE'])

    def _document(self, **kwargs) -> WldDocument:
        strings = self._strings()
        fragments = [
            BmInfo.new(entries=['SGRASS.BMP']),
            SimpleSpriteDef.new(name_reference=strings.reference('SGRASS_SPRITE'), flags=0, frame_references=[1]),
            SimpleSprite.new(reference=2, flags=0x50),
            MaterialDef.new(
                name_reference=strings.reference('SGRASS_MDF'),
                flags=0,
                render_method=0x80000001,
                rgb_pen=0xB2B2B2,
                brightness=0.0,
                scaled_ambient=0.75,
                reference=3,
            ),
            MaterialPalette.new(name_reference=strings.reference('PALETTE'), flags=0, materials=[4]),
        ]
        return WldDocument.build(strings, fragments, **kwargs)

    def _raw(self, *records, strings: bytes = B'', count=None, trailer=END_MARKER) -> bytes:
        if count is None:
            count = len(records)
        header = WldHeader(WldHeader.MAGIC, WldHeader.VERSION_NEW, count, 0, 0, len(strings), 0)
        data = bytearray(struct.pack('<7I', *header))
        data.extend(strings)
        for type_code, payload in records:
            data.extend(struct.pack('<2I', len(payload), type_code))
            data.extend(payload)
        data.extend(trailer)
        return bytes(data)

    def test_build(self):
        doc = self._document()
        self.assertEqual(len(doc), 5)
        self.assertEqual(doc.header.fragment_count, 5)
        self.assertEqual(doc.header.string_count, 4)
        self.assertEqual(doc.header.string_hash_size, len(self._strings().encode()))
        self.assertEqual(doc.trailer, END_MARKER)
        self.assertIsInstance(doc.at(3), MaterialDef)
        self.assertIsNone(doc.at(5))
        self.assertIsNone(doc.at(-1))

    def test_roundtrip(self):
        data = self._document().to_bytes()
        doc = WldDocument.Parse(data)
        self.assertEqual(doc.to_bytes(), data)
        self.assertEqual(bytes(doc), data)

    def test_old_version(self):
        doc = self._document(version=WldHeader.VERSION_OLD)
        self.assertTrue(doc.header.is_old_version)
        self.assertFalse(self._document().header.is_old_version)

    def test_names(self):
        doc = self._document()
        self.assertEqual(doc.name_of(doc.at(3)), 'SGRASS_MDF')
        self.assertEqual(doc.name_of(doc.at(0)), '')
        self.assertIs(doc.by_name('SGRASS_MDF'), doc.at(3))
        self.assertIsNone(doc.by_name('SGRASS_MDF', SimpleSprite))
        self.assertIsNone(doc.by_name('NOTHING'))
        self.assertEqual(doc.get_string(-1), 'SGRASS_SPRITE')
        self.assertIsNone(doc.get_string(None))

    def test_fragments_of(self):
        doc = self._document()
        self.assertEqual([doc.index_of(f) for f in doc.fragments_of(MaterialDef)], [3])
        self.assertEqual([doc.index_of(f) for f in doc.fragments_of('SimpleSprite')], [2])
        self.assertEqual([doc.index_of(f) for f in doc.fragments_of(0x04)], [1])
        self.assertRaises(ValueError, doc.index_of, SimpleSprite.new(reference=0, flags=0))

    def test_resolve_chain(self):
        doc = self._document()
        palette = doc.at(4)
        material = doc.resolve(palette.materials[0])
        self.assertIsInstance(material, MaterialDef)
        sprite = doc.resolve(material.reference)
        self.assertIsInstance(sprite, SimpleSprite)
        definition = doc.resolve(sprite.reference)
        self.assertIsInstance(definition, SimpleSpriteDef)
        bitmaps = doc.resolve(definition.frame_references[0])
        self.assertEqual(bitmaps.filenames, ['SGRASS.BMP'])

    def test_resolve_by_name(self):
        doc = self._document()
        strings = doc.strings
        ref = FragmentRef(strings.reference('SGRASS_MDF'), MaterialDef)
        self.assertIs(doc.resolve(ref), doc.at(3))
        ref = FragmentRef(strings.reference('SGRASS_MDF'), SimpleSprite)
        self.assertIsNone(doc.resolve(ref))

    def test_resolve_is_safe(self):
        doc = self._document()
        for value in (0, 6, 100, -1000, -2):
            self.assertIsNone(doc.resolve(FragmentRef(value, MaterialDef)))
        self.assertIsNone(doc.resolve(FragmentRef(1, MaterialDef)))

    def test_header_errors(self):
        data = bytearray(self._document().to_bytes())
        data[0] ^= 0xFF
        with self.assertRaises(BadMagic) as context:
            WldDocument.Parse(bytes(data))
        self.assertEqual(context.exception.offset, 0)
        data = bytearray(self._document().to_bytes())
        data[4:8] = bytes(4)
        with self.assertRaises(BadVersion) as context:
            WldDocument.Parse(bytes(data))
        self.assertEqual(context.exception.offset, 4)
        self.assertRaises(FormatError, WldDocument.Parse, bytes(data[:20]))

    def test_string_table_too_large(self):
        data = bytearray(self._raw())
        data[20:24] = struct.pack('<I', 1000)
        self.assertRaises(FormatError, WldDocument.Parse, bytes(data))

    def test_unknown_fragment(self):
        payload = struct.pack('<i', 0) + B'\xAA' * 5
        data = self._raw((0x36, payload))
        doc = WldDocument.Parse(data)
        fragment = doc.at(0)
        self.assertIsInstance(fragment, UnknownFragment)
        self.assertEqual(fragment.type_code, 0x36)
        self.assertEqual(doc.to_bytes(), data)
        with self.assertRaises(DocumentError) as context:
            WldDocument.Parse(data, strict=True)
        error, = context.exception.errors
        self.assertIsInstance(error, UnknownFragmentType)
        self.assertEqual(error.index, 0)
        self.assertEqual(error.offset, WldHeader.SIZE)

    def test_payload_padding_is_kept(self):
        payload = struct.pack('<iiI', 0, 0, 0) + bytes(5)
        data = self._raw((0x05, payload))
        doc = WldDocument.Parse(data)
        self.assertEqual(doc.to_bytes(), data)

    def test_trailing_garbage_in_payload(self):
        payload = struct.pack('<iiI', 0, 0, 0) + B'\x01'
        with self.assertRaises(DocumentError) as context:
            WldDocument.Parse(self._raw((0x05, payload)))
        error, = context.exception.errors
        self.assertIsInstance(error, TruncatedFragment)
        self.assertEqual(error.header, FragmentHeader(13, 0x05, WldHeader.SIZE))

    def test_errors_are_collected(self):
        good = struct.pack('<iiI', 0, 0, 0)
        short = struct.pack('<i', 0)
        bad_count = struct.pack('<iII', 0, 0, 1000)
        data = self._raw((0x05, short), (0x05, good), (0x31, bad_count))
        with self.assertRaises(DocumentError) as context:
            WldDocument.Parse(data)
        errors = context.exception.errors
        self.assertEqual(len(errors), 2)
        self.assertIsInstance(errors[0], TruncatedFragment)
        self.assertEqual(errors[0].index, 0)
        self.assertIsInstance(errors[1], MalformedField)
        self.assertEqual(errors[1].index, 2)
        self.assertEqual(errors[1].offset, WldHeader.SIZE + 12 + 20 + 8 + 12)
        self.assertContains(str(context.exception), 'Fragment 2')

    def test_opaque_on_error(self):
        short = struct.pack('<i', 0)
        good = struct.pack('<iiI', 0, 0, 0)
        data = self._raw((0x05, short), (0x05, good))
        doc = WldDocument.Parse(data, opaque_on_error=True)
        self.assertIsInstance(doc.at(0), UnknownFragment)
        self.assertEqual(doc.at(0).type_code, 0x05)
        self.assertIsInstance(doc.at(1), SimpleSprite)
        self.assertEqual(doc.to_bytes(), data)

    def test_record_exceeds_document(self):
        data = self._raw((0x05, struct.pack('<iiI', 0, 0, 0)), trailer=B'')
        data = data[:-2]
        with self.assertRaises(TruncatedFragment) as context:
            WldDocument.Parse(data, opaque_on_error=True)
        self.assertEqual(context.exception.index, 0)
        self.assertEqual(context.exception.offset, WldHeader.SIZE)

    def test_missing_record_header(self):
        data = self._raw(count=1, trailer=B'\xFF\xFF')
        with self.assertRaises(TruncatedFragment) as context:
            WldDocument.Parse(data)
        self.assertIsNone(context.exception.header)

    def test_trailer(self):
        data = self._raw(trailer=B'')
        self.assertEqual(WldDocument.Parse(data).trailer, B'')
        data = self._raw(trailer=B'\xFF\xFF\xFF\xFF\x00')
        doc = WldDocument.Parse(data)
        self.assertEqual(doc.trailer, B'\xFF\xFF\xFF\xFF\x00')
        self.assertEqual(doc.to_bytes(), data)

    def test_decoded_string_table_is_preserved(self):
        strings = StringHash.from_strings(['', 'NAME']).encode() + B'\x01\x02\x03\x04'
        data = self._raw((0x05, struct.pack('<iiI', -1, 0, 0)), strings=strings)
        doc = WldDocument.Parse(data)
        self.assertEqual(len(doc.strings), 2)
        self.assertEqual(doc.name_of(doc.at(0)), 'NAME')
        self.assertEqual(doc.to_bytes(), data)
