"""
Bitmaps, sprites and materials: the chain `MaterialPalette -> MaterialDef -> SimpleSprite ->
SimpleSpriteDef -> BmInfo` that connects the surfaces of a model with texture file names.
"""
from __future__ import annotations

import enum

from typing import NamedTuple

from pfswld.lib.exceptions import MalformedField
from pfswld.lib.structures import FlagAccessMixin, StructReader, StructWriter
from pfswld.lib.wld.fragments import FlagGate, Fragment, read_array
from pfswld.lib.wld.references import FragmentRef
from pfswld.lib.wld.strings import decode_string, encode_text, obfuscate


class EncodedFilename(NamedTuple):
    """
    A length-prefixed, obfuscated file name. The length covers the null terminator. When the
    stored bytes differ from the canonical encoding of the name, they are kept in `raw` and
    written back as long as they still decode to the same name with the same length.
    """
    name: str
    length: int
    raw: bytes | None = None

    @classmethod
    def read(cls, reader: StructReader) -> EncodedFilename:
        length = reader.u16()
        data = bytes(reader.read_exactly(length))
        self = cls(decode_string(data), length)
        if self.encode() != data:
            self = self._replace(raw=data)
        return self

    @classmethod
    def new(cls, name: str) -> EncodedFilename:
        return cls(name, len(encode_text(name)) + 1)

    def encode(self) -> bytes:
        if self.raw is not None and len(self.raw) == self.length and decode_string(self.raw) == self.name:
            return self.raw
        plain = encode_text(self.name) + B'\0'
        if len(plain) < self.length:
            plain = plain.ljust(self.length, B'\0')
        return obfuscate(plain)

    def write(self, writer: StructWriter):
        data = self.encode()
        writer.u16(len(data))
        writer.write_bytes(data)



class BmInfo(Fragment):
    """
    A list of bitmap file names; there is always one more entry than `entry_count` states.
    """
    TYPE_ID = 0x03
    TYPE_NAME = 'BmInfo'
    FIELDS = 'name_reference', 'entry_count', 'entries'

    entry_count: int
    entries: list[EncodedFilename]

    def __init__(self, reader: StructReader[memoryview]):
        super().__init__(reader)
        self.entry_count = reader.u32()
        self.entries = read_array(reader, self.entry_count + 1, 2, lambda: EncodedFilename.read(reader), 'entries')

    @classmethod
    def new(cls, **fields) -> BmInfo:
        entries = fields.get('entries')
        if entries is not None:
            fields['entries'] = entries = [e if isinstance(e, EncodedFilename) else EncodedFilename.new(e) for e in entries]
            fields.setdefault('entry_count', len(entries) - 1)
        return super().new(**fields)

    def validate(self):
        super().validate()
        if not self.entries:
            raise MalformedField('entries', 'at least one file name is required')
        if self.entry_count != len(self.entries) - 1:
            raise MalformedField('entry_count', F'value {self.entry_count} must be one less than the {len(self.entries)} entries')

    def write(self, writer: StructWriter):
        super().write(writer)
        writer.u32(self.entry_count)
        for entry in self.entries:
            entry.write(writer)

    @property
    def filenames(self) -> list[str]:
        return [entry.name for entry in self.entries]


class SimpleSpriteFlags(FlagAccessMixin, enum.IntFlag):
    SkipFrames      = 0x02  # noqa
    IsAnimated      = 0x08  # noqa
    HasSleep        = 0x10  # noqa
    HasCurrentFrame = 0x20  # noqa


class SimpleSpriteDef(Fragment):
    """
    A bitmap animation made of frames that each reference a `BmInfo`. The sleep time is only stored
    when the sprite is animated; files exist that set `HasSleep` without `IsAnimated` and store no
    sleep value.
    """
    TYPE_ID = 0x04
    TYPE_NAME = 'SimpleSpriteDef'
    FIELDS = 'name_reference', 'flags', 'frame_count', 'current_frame', 'sleep', 'frame_references'
    FLAGS = SimpleSpriteFlags
    GATES = {
        'current_frame': FlagGate(SimpleSpriteFlags.HasCurrentFrame),
        'sleep': FlagGate(SimpleSpriteFlags.IsAnimated | SimpleSpriteFlags.HasSleep),
    }
    COUNTS = {'frame_references': 'frame_count'}
    REFERENCES = {'frame_references': 'BmInfo'}

    flags: SimpleSpriteFlags
    frame_count: int
    current_frame: int | None
    sleep: int | None
    frame_references: list[FragmentRef[BmInfo]]

    def __init__(self, reader: StructReader[memoryview]):
        super().__init__(reader)
        self.flags = SimpleSpriteFlags(reader.u32())
        self.frame_count = reader.u32()
        self.current_frame = self._read_gated('current_frame', reader.u32)
        self.sleep = self._read_gated('sleep', reader.u32)
        self.frame_references = read_array(
            reader, self.frame_count, 4, lambda: FragmentRef.read(reader, BmInfo), 'frame_references')

    def write(self, writer: StructWriter):
        super().write(writer)
        writer.u32(self.flags)
        writer.u32(self.frame_count)
        self._write_gated('current_frame', writer.u32)
        self._write_gated('sleep', writer.u32)
        for ref in self.frame_references:
            ref.write(writer)


class SimpleSprite(Fragment):
    TYPE_ID = 0x05
    TYPE_NAME = 'SimpleSprite'
    FIELDS = 'name_reference', 'reference', 'flags'
    REFERENCES = {'reference': 'SimpleSpriteDef'}

    reference: FragmentRef[SimpleSpriteDef]
    flags: int

    def __init__(self, reader: StructReader[memoryview]):
        super().__init__(reader)
        self.reference = FragmentRef.read(reader, SimpleSpriteDef)
        self.flags = reader.u32()

    def write(self, writer: StructWriter):
        super().write(writer)
        self.reference.write(writer)
        writer.u32(self.flags)


class MaterialFlags(FlagAccessMixin, enum.IntFlag):
    IsTwoSided = 0x01
    HasPair    = 0x02 # noqa


class MaterialPair(NamedTuple):
    value: int
    factor: float


class MaterialDef(Fragment):
    """
    The surface properties of a polygon: render method, color, brightness and the texture sprite.
    The trailing pair of values is present if and only if bit 1 of the flags is set.
    """
    TYPE_ID = 0x30
    TYPE_NAME = 'MaterialDef'
    FIELDS = (
        'name_reference',
        'flags',
        'render_method',
        'rgb_pen',
        'brightness',
        'scaled_ambient',
        'reference',
        'pair',
    )
    FLAGS = MaterialFlags
    GATES = {'pair': FlagGate(MaterialFlags.HasPair)}
    REFERENCES = {'reference': 'SimpleSprite'}

    flags: MaterialFlags
    render_method: int
    rgb_pen: int
    brightness: float
    scaled_ambient: float
    reference: FragmentRef[SimpleSprite]
    pair: MaterialPair | None

    def __init__(self, reader: StructReader[memoryview]):
        super().__init__(reader)
        self.flags = MaterialFlags(reader.u32())
        self.render_method = reader.u32()
        self.rgb_pen = reader.u32()
        self.brightness = reader.f32()
        self.scaled_ambient = reader.f32()
        self.reference = FragmentRef.read(reader, SimpleSprite)
        self.pair = self._read_gated('pair', lambda: MaterialPair(reader.u32(), reader.f32()))

    def _coerce(self, name: str, value):
        if name == 'pair' and value is not None:
            return MaterialPair(*value)
        return super()._coerce(name, value)

    def write(self, writer: StructWriter):
        super().write(writer)
        writer.u32(self.flags)
        writer.u32(self.render_method)
        writer.u32(self.rgb_pen)
        writer.f32(self.brightness)
        writer.f32(self.scaled_ambient)
        self.reference.write(writer)
        if (pair := self.pair) is not None:
            writer.u32(pair.value)
            writer.f32(pair.factor)


class MaterialPalette(Fragment):
    TYPE_ID = 0x31
    TYPE_NAME = 'MaterialPalette'
    FIELDS = 'name_reference', 'flags', 'material_count', 'materials'
    COUNTS = {'materials': 'material_count'}
    REFERENCES = {'materials': 'MaterialDef'}

    flags: int
    material_count: int
    materials: list[FragmentRef[MaterialDef]]

    def __init__(self, reader: StructReader[memoryview]):
        super().__init__(reader)
        self.flags = reader.u32()
        self.material_count = reader.u32()
        self.materials = read_array(
            reader, self.material_count, 4, lambda: FragmentRef.read(reader, MaterialDef), 'materials')

    def write(self, writer: StructWriter):
        super().write(writer)
        writer.u32(self.flags)
        writer.u32(self.material_count)
        for ref in self.materials:
            ref.write(writer)
