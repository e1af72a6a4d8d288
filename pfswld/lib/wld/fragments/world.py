"""
Spatial structure of a zone: the binary space partition tree, zone definitions and bounding spheres.
"""
from __future__ import annotations

from typing import Iterator, NamedTuple

from pfswld.lib.exceptions import MalformedField
from pfswld.lib.structures import StructReader, StructWriter
from pfswld.lib.wld.fragments import Fragment, read_array
from pfswld.lib.wld.references import FragmentRef
from pfswld.lib.wld.strings import decode_string, encode_string, encode_text

REGION_TYPE = 0x22


class WorldTreeNode(NamedTuple):
    """
    A node of the partition tree. Leaf nodes reference a region fragment; `front` and `back` are
    one-based indices of child nodes within the same tree, zero if there is no child.
    """
    normal: tuple[float, float, float]
    split_distance: float
    region: FragmentRef
    front: int
    back: int

    SIZE = 28

    @classmethod
    def read(cls, reader: StructReader) -> WorldTreeNode:
        normal = tuple(reader.read_struct('3f'))
        split_distance = reader.f32()
        region = FragmentRef.read(reader, REGION_TYPE)
        front = reader.i32()
        back = reader.i32()
        return cls(normal, split_distance, region, front, back)

    def write(self, writer: StructWriter):
        writer.write_struct('4f', *self.normal, self.split_distance)
        self.region.write(writer)
        writer.i32(self.front)
        writer.i32(self.back)

    @property
    def is_leaf(self) -> bool:
        return self.front == 0 and self.back == 0


class WorldTree(Fragment):
    TYPE_ID = 0x21
    TYPE_NAME = 'WorldTree'
    FIELDS = 'name_reference', 'node_count', 'nodes'
    COUNTS = {'nodes': 'node_count'}

    node_count: int
    nodes: list[WorldTreeNode]

    def __init__(self, reader: StructReader[memoryview]):
        super().__init__(reader)
        self.node_count = reader.u32()
        self.nodes = read_array(
            reader, self.node_count, WorldTreeNode.SIZE, lambda: WorldTreeNode.read(reader), 'nodes')

    def _coerce(self, name: str, value):
        if name == 'nodes':
            nodes = []
            for normal, split_distance, region, front, back in value:
                if not isinstance(region, FragmentRef):
                    region = FragmentRef(region, REGION_TYPE)
                nodes.append(WorldTreeNode(tuple(normal), split_distance, region, front, back))
            return nodes
        return super()._coerce(name, value)

    def validate(self):
        super().validate()
        for k, node in enumerate(self.nodes):
            for child in (node.front, node.back):
                if not 0 <= child <= len(self.nodes):
                    raise MalformedField('nodes', F'node {k} has child index {child} outside of the tree')

    def references(self) -> Iterator[tuple[str, FragmentRef]]:
        for node in self.nodes:
            yield 'nodes', node.region

    def write(self, writer: StructWriter):
        super().write(writer)
        writer.u32(self.node_count)
        for node in self.nodes:
            node.write(writer)


class Zone(Fragment):
    """
    Marks a set of regions as a zone. The name of the fragment encodes the zone kind, like water or
    lava, and the user data is an obfuscated string with additional parameters.
    """
    TYPE_ID = 0x29
    TYPE_NAME = 'Zone'
    FIELDS = 'name_reference', 'flags', 'region_count', 'regions', 'user_data_size', 'user_data'
    COUNTS = {'regions': 'region_count'}

    flags: int
    region_count: int
    regions: list[int]
    user_data_size: int
    user_data: str
    _user_data: bytes | None = None

    def __init__(self, reader: StructReader[memoryview]):
        super().__init__(reader)
        self.flags = reader.u32()
        self.region_count = reader.u32()
        self.regions = read_array(reader, self.region_count, 4, reader.u32, 'regions')
        self.user_data_size = size = reader.u32()
        if size > reader.remaining_bytes:
            raise MalformedField(
                'user_data', F'size {size} exceeds the remaining {reader.remaining_bytes} bytes', reader.tell())
        self._user_data = bytes(reader.read_exactly(size))
        self.user_data = decode_string(self._user_data)

    @classmethod
    def new(cls, **fields) -> Zone:
        if 'user_data_size' not in fields:
            data = fields.setdefault('user_data', '')
            fields['user_data_size'] = len(encode_text(data)) + 1 if data else 0
        return super().new(**fields)

    def validate(self):
        super().validate()
        if len(encode_text(self.user_data)) > self.user_data_size:
            raise MalformedField('user_data', F'the encoded string does not fit into {self.user_data_size} bytes')

    def write(self, writer: StructWriter):
        super().write(writer)
        writer.u32(self.flags)
        writer.u32(self.region_count)
        for region in self.regions:
            writer.u32(region)
        size = self.user_data_size
        writer.u32(size)
        data = self._user_data
        if data is None or len(data) != size or decode_string(data) != self.user_data:
            data = encode_string(self.user_data)[:size].ljust(size, B'\0')
        writer.write_bytes(data)


class Sphere(Fragment):
    TYPE_ID = 0x16
    TYPE_NAME = 'Sphere'
    FIELDS = 'name_reference', 'radius'

    radius: float

    def __init__(self, reader: StructReader[memoryview]):
        super().__init__(reader)
        self.radius = reader.f32()

    def write(self, writer: StructWriter):
        super().write(writer)
        writer.f32(self.radius)
