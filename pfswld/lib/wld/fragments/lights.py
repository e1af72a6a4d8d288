"""
Light sources of a zone: definitions, their instances, placed point lights and ambient lighting.
"""
from __future__ import annotations

import enum

from pfswld.lib.structures import FlagAccessMixin, StructReader, StructWriter
from pfswld.lib.wld.fragments import FlagGate, Fragment, read_array
from pfswld.lib.wld.references import FragmentRef


class LightFlags(FlagAccessMixin, enum.IntFlag):
    HasCurrentFrame = 0x01  # noqa
    HasSleep        = 0x02  # noqa
    HasLightLevels  = 0x04  # noqa
    SkipFrames      = 0x08  # noqa
    HasColor        = 0x10  # noqa


class LightDef(Fragment):
    """
    The definition of a light source. Animated lights have one light level and one color per frame;
    which of the optional parts are stored is controlled by the flags.
    """
    TYPE_ID = 0x1B
    TYPE_NAME = 'LightDef'
    FIELDS = 'name_reference', 'flags', 'frame_count', 'current_frame', 'sleep', 'light_levels', 'colors'
    FLAGS = LightFlags
    GATES = {
        'current_frame' : FlagGate(LightFlags.HasCurrentFrame),  # noqa
        'sleep'         : FlagGate(LightFlags.HasSleep),         # noqa
        'light_levels'  : FlagGate(LightFlags.HasLightLevels),   # noqa
        'colors'        : FlagGate(LightFlags.HasColor),         # noqa
    }
    COUNTS = {
        'light_levels': 'frame_count',
        'colors': 'frame_count',
    }

    flags: LightFlags
    frame_count: int
    current_frame: int | None
    sleep: int | None
    light_levels: list[float] | None
    colors: list[tuple[float, float, float]] | None

    def __init__(self, reader: StructReader[memoryview]):
        super().__init__(reader)
        self.flags = LightFlags(reader.u32())
        self.frame_count = n = reader.u32()
        self.current_frame = self._read_gated('current_frame', reader.u32)
        self.sleep = self._read_gated('sleep', reader.u32)
        self.light_levels = self._read_gated('light_levels', lambda: read_array(
            reader, n, 4, reader.f32, 'light_levels'))
        self.colors = self._read_gated('colors', lambda: read_array(
            reader, n, 12, lambda: tuple(reader.read_struct('3f')), 'colors'))

    def _coerce(self, name: str, value):
        if name == 'colors' and value is not None:
            return [tuple(c) for c in value]
        return super()._coerce(name, value)

    def write(self, writer: StructWriter):
        super().write(writer)
        writer.u32(self.flags)
        writer.u32(self.frame_count)
        self._write_gated('current_frame', writer.u32)
        self._write_gated('sleep', writer.u32)
        for level in self.light_levels or ():
            writer.f32(level)
        for color in self.colors or ():
            writer.write_struct('3f', *color)


class Light(Fragment):
    TYPE_ID = 0x1C
    TYPE_NAME = 'Light'
    FIELDS = 'name_reference', 'reference', 'flags'
    REFERENCES = {'reference': 'LightDef'}

    reference: FragmentRef[LightDef]
    flags: int

    def __init__(self, reader: StructReader[memoryview]):
        super().__init__(reader)
        self.reference = FragmentRef.read(reader, LightDef)
        self.flags = reader.u32()

    def write(self, writer: StructWriter):
        super().write(writer)
        self.reference.write(writer)
        writer.u32(self.flags)


class PointLightFlags(FlagAccessMixin, enum.IntFlag):
    IsStatic        = 0x20  # noqa
    StaticInfluence = 0x40  # noqa
    HasRegions      = 0x80  # noqa


class PointLight(Fragment):
    """
    A light placed into the world at a position with a radius of influence.
    """
    TYPE_ID = 0x28
    TYPE_NAME = 'PointLight'
    FIELDS = 'name_reference', 'reference', 'flags', 'x', 'y', 'z', 'radius'
    FLAGS = PointLightFlags
    REFERENCES = {'reference': 'Light'}

    reference: FragmentRef[Light]
    flags: PointLightFlags
    x: float
    y: float
    z: float
    radius: float

    def __init__(self, reader: StructReader[memoryview]):
        super().__init__(reader)
        self.reference = FragmentRef.read(reader, Light)
        self.flags = PointLightFlags(reader.u32())
        self.x, self.y, self.z, self.radius = reader.read_struct('4f')

    def write(self, writer: StructWriter):
        super().write(writer)
        self.reference.write(writer)
        writer.u32(self.flags)
        writer.write_struct('4f', self.x, self.y, self.z, self.radius)

    @property
    def position(self) -> tuple[float, float, float]:
        return self.x, self.y, self.z


class AmbientLight(Fragment):
    """
    Applies a light to a list of regions, given by their zero-based region index.
    """
    TYPE_ID = 0x2A
    TYPE_NAME = 'AmbientLight'
    FIELDS = 'name_reference', 'reference', 'flags', 'region_count', 'regions'
    COUNTS = {'regions': 'region_count'}
    REFERENCES = {'reference': 'Light'}

    reference: FragmentRef[Light]
    flags: int
    region_count: int
    regions: list[int]

    def __init__(self, reader: StructReader[memoryview]):
        super().__init__(reader)
        self.reference = FragmentRef.read(reader, Light)
        self.flags = reader.u32()
        self.region_count = reader.u32()
        self.regions = read_array(reader, self.region_count, 4, reader.u32, 'regions')

    def write(self, writer: StructWriter):
        super().write(writer)
        self.reference.write(writer)
        writer.u32(self.flags)
        writer.u32(self.region_count)
        for region in self.regions:
            writer.u32(region)


class GlobalAmbientLightDef(Fragment):
    """
    Marks the start of the ambient light definitions; it only has a name.
    """
    TYPE_ID = 0x35
    TYPE_NAME = 'GlobalAmbientLightDef'
