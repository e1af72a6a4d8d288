"""
Skeletal and vertex animation tracks.
"""
from __future__ import annotations

from typing import NamedTuple

from pfswld.lib.exceptions import MalformedField
from pfswld.lib.structures import StructReader, StructWriter
from pfswld.lib.wld.fragments import FlagGate, Fragment, read_array
from pfswld.lib.wld.references import FragmentRef


class FrameTransform(NamedTuple):
    """
    Rotation and translation of a skeleton piece relative to its parent, stored as fractions. A
    rotation value of 1 corresponds to 90 degrees. A zero denominator means that the corresponding
    transformation is to be ignored.
    """
    rotate_denominator: int
    rotate_x_numerator: int
    rotate_y_numerator: int
    rotate_z_numerator: int
    shift_x_numerator: int
    shift_y_numerator: int
    shift_z_numerator: int
    shift_denominator: int

    @classmethod
    def read(cls, reader: StructReader) -> FrameTransform:
        return cls(*(reader.i16() for _ in range(8)))

    def write(self, writer: StructWriter):
        for value in self:
            writer.i16(value)


class LegacyFrameTransform(NamedTuple):
    """
    The floating point variant of `pfswld.lib.wld.fragments.tracks.FrameTransform`; the rotation
    is a quaternion.
    """
    shift_denominator: float
    shift_x_numerator: float
    shift_y_numerator: float
    shift_z_numerator: float
    rotate_w: float
    rotate_x: float
    rotate_y: float
    rotate_z: float

    @classmethod
    def read(cls, reader: StructReader) -> LegacyFrameTransform:
        return cls(*(reader.f32() for _ in range(8)))

    def write(self, writer: StructWriter):
        for value in self:
            writer.f32(value)


class TrackDef(Fragment):
    """
    One transformation per frame for a piece of a skeleton. Bit 3 of the flags selects the compact
    integer transforms, otherwise the floating point transforms are stored.
    """
    TYPE_ID = 0x12
    TYPE_NAME = 'TrackDef'
    FIELDS = 'name_reference', 'flags', 'frame_count', 'frame_transforms', 'legacy_frame_transforms'
    GATES = {
        'frame_transforms': FlagGate(0x08),
        'legacy_frame_transforms': FlagGate(0x08, inverted=True),
    }
    COUNTS = {
        'frame_transforms': 'frame_count',
        'legacy_frame_transforms': 'frame_count',
    }

    flags: int
    frame_count: int
    frame_transforms: list[FrameTransform] | None
    legacy_frame_transforms: list[LegacyFrameTransform] | None

    def __init__(self, reader: StructReader[memoryview]):
        super().__init__(reader)
        self.flags = reader.u32()
        self.frame_count = reader.u32()
        self.frame_transforms = self._read_gated('frame_transforms', lambda: read_array(
            reader, self.frame_count, 16, lambda: FrameTransform.read(reader), 'frame_transforms'))
        self.legacy_frame_transforms = self._read_gated('legacy_frame_transforms', lambda: read_array(
            reader, self.frame_count, 32, lambda: LegacyFrameTransform.read(reader), 'legacy_frame_transforms'))

    def _coerce(self, name: str, value):
        if name == 'frame_transforms' and value is not None:
            return [FrameTransform(*t) for t in value]
        if name == 'legacy_frame_transforms' and value is not None:
            return [LegacyFrameTransform(*t) for t in value]
        return super()._coerce(name, value)

    def write(self, writer: StructWriter):
        super().write(writer)
        writer.u32(self.flags)
        writer.u32(self.frame_count)
        for transforms in (self.frame_transforms, self.legacy_frame_transforms):
            for transform in transforms or ():
                transform.write(writer)


class Track(Fragment):
    """
    Places a `pfswld.lib.wld.fragments.tracks.TrackDef` into a skeleton.
    """
    TYPE_ID = 0x13
    TYPE_NAME = 'Track'
    FIELDS = 'name_reference', 'reference', 'flags', 'params1'
    GATES = {'params1': FlagGate(0x01)}
    REFERENCES = {'reference': 'TrackDef'}

    reference: FragmentRef[TrackDef]
    flags: int
    params1: int | None

    def __init__(self, reader: StructReader[memoryview]):
        super().__init__(reader)
        self.reference = FragmentRef.read(reader, TrackDef)
        self.flags = reader.u32()
        self.params1 = self._read_gated('params1', reader.u32)

    def write(self, writer: StructWriter):
        super().write(writer)
        self.reference.write(writer)
        writer.u32(self.flags)
        self._write_gated('params1', writer.u32)


class DmSprite(Fragment):
    """
    Instantiates a mesh; the reference points to a mesh definition fragment of type 0x36.
    """
    TYPE_ID = 0x2D
    TYPE_NAME = 'DmSprite'
    FIELDS = 'name_reference', 'reference', 'params'
    REFERENCES = {'reference': 0x36}

    reference: FragmentRef
    params: int

    def __init__(self, reader: StructReader[memoryview]):
        super().__init__(reader)
        self.reference = FragmentRef.read(reader, 0x36)
        self.params = reader.u32()

    def write(self, writer: StructWriter):
        super().write(writer)
        self.reference.write(writer)
        writer.u32(self.params)


class DmTrackDef(Fragment):
    """
    Vertex animation: for every frame, one position per vertex of the animated mesh.
    """
    TYPE_ID = 0x2E
    TYPE_NAME = 'DmTrackDef'
    FIELDS = 'name_reference', 'flags', 'vertex_count', 'frame_count', 'sleep', 'param1', 'frames'
    COUNTS = {'frames': 'frame_count'}

    flags: int
    vertex_count: int
    frame_count: int
    sleep: int
    param1: int
    frames: list[list[tuple[float, float, float]]]

    def __init__(self, reader: StructReader[memoryview]):
        super().__init__(reader)
        self.flags = reader.u32()
        self.vertex_count = reader.u32()
        self.frame_count = reader.u32()
        self.sleep = reader.u32()
        self.param1 = reader.u32()
        self.frames = read_array(reader, self.frame_count, 12 * self.vertex_count, lambda: read_array(
            reader, self.vertex_count, 12, lambda: tuple(reader.read_struct('3f')), 'frames'), 'frames')

    def _coerce(self, name: str, value):
        if name == 'frames':
            return [[tuple(v) for v in frame] for frame in value]
        return super()._coerce(name, value)

    def validate(self):
        super().validate()
        if self.frames and not self.vertex_count:
            raise MalformedField('frames', F'{len(self.frames)} frames require at least one vertex')
        for k, frame in enumerate(self.frames):
            if len(frame) != self.vertex_count:
                raise MalformedField(
                    'frames', F'frame {k} has {len(frame)} vertices, expected {self.vertex_count}')

    def write(self, writer: StructWriter):
        super().write(writer)
        writer.u32(self.flags)
        writer.u32(self.vertex_count)
        writer.u32(self.frame_count)
        writer.u32(self.sleep)
        writer.u32(self.param1)
        for frame in self.frames:
            for vertex in frame:
                writer.write_struct('3f', *vertex)


class DmTrack(Fragment):
    """
    References a vertex animation; the target is a fragment of type 0x37.
    """
    TYPE_ID = 0x2F
    TYPE_NAME = 'DmTrack'
    FIELDS = 'name_reference', 'reference', 'flags'
    REFERENCES = {'reference': 0x37}

    reference: FragmentRef
    flags: int

    def __init__(self, reader: StructReader[memoryview]):
        super().__init__(reader)
        self.reference = FragmentRef.read(reader, 0x37)
        self.flags = reader.u32()

    def write(self, writer: StructWriter):
        super().write(writer)
        self.reference.write(writer)
        writer.u32(self.flags)
