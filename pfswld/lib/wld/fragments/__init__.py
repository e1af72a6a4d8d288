"""
The record codec of fragment documents. Each fragment type is a subclass of
`pfswld.lib.wld.fragments.Fragment` that declares its numeric `TYPE_ID` and its `TYPE_NAME`; the
declaration registers the class with the `pfswld.lib.wld.fragments.registry`. A fragment class
reads its fields in `__init__` from a `pfswld.lib.structures.StructReader` and writes them back in
`write`. The class attributes describe the parts of the layout that are handled generically:

- `FIELDS` lists the field names in the order in which they are stored.
- `GATES` maps optional fields to the `pfswld.lib.wld.fragments.FlagGate` that controls whether
  they are present. Absent fields are `None` and occupy no bytes.
- `COUNTS` maps list fields to the count field that stores their length.
- `REFERENCES` maps fields containing `pfswld.lib.wld.references.FragmentRef` values to the
  expected target type.

New fragments are created with `pfswld.lib.wld.fragments.Fragment.new`, which validates these
constraints immediately.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Callable, ClassVar, Iterator, NamedTuple, TypeVar

from pfswld.lib.environment import logger
from pfswld.lib.exceptions import MalformedField, UnknownFragmentType
from pfswld.lib.structures import Struct, StructReader, StructWriter
from pfswld.lib.wld.references import FragmentRef, Target
from pfswld.lib.wld.strings import StringReference

if TYPE_CHECKING:
    from typing import Self

    from pfswld.lib.types import buf

_T = TypeVar('_T')

_log = logger(__name__)


class FlagGate(NamedTuple):
    """
    An optional field is present if all bits of `mask` are set in the flags field named `field`. An
    inverted gate makes the field present if these bits are not all set.
    """
    mask: int
    field: str = 'flags'
    inverted: bool = False

    def test(self, fragment: Fragment) -> bool:
        return (getattr(fragment, self.field) & self.mask == self.mask) != self.inverted


class FragmentRegistry:
    """
    The dispatch table that maps type codes to fragment classes.
    """
    def __init__(self):
        self._by_code: dict[int, type[Fragment]] = {}
        self._by_name: dict[str, type[Fragment]] = {}

    def register(self, cls: type[Fragment]):
        code = cls.TYPE_ID
        if (known := self._by_code.get(code)) is not None:
            raise RuntimeError(F'Type code 0x{code:02X} of {cls.__name__} is already taken by {known.__name__}.')
        self._by_code[code] = cls
        self._by_name[cls.TYPE_NAME] = cls

    def lookup(self, type_code: int) -> type[Fragment] | None:
        return self._by_code.get(type_code)

    def by_name(self, name: str) -> type[Fragment] | None:
        return self._by_name.get(name)

    def type_name(self, type_code: int) -> str:
        if cls := self._by_code.get(type_code):
            return cls.TYPE_NAME
        return UnknownFragment.TYPE_NAME

    def __contains__(self, type_code: int):
        return type_code in self._by_code

    def __iter__(self) -> Iterator[type[Fragment]]:
        for code in sorted(self._by_code):
            yield self._by_code[code]

    def __len__(self):
        return len(self._by_code)


registry = FragmentRegistry()


def read_array(
    reader: StructReader,
    count: int,
    itemsize: int,
    read: Callable[[], _T],
    field: str,
) -> list[_T]:
    """
    Read `count` items of `itemsize` bytes each. A `pfswld.lib.exceptions.MalformedField` is raised
    before reading anything if the items cannot fit into the remaining data or if a
    nonzero count is given for items that occupy no space.
    """
    if count < 0:
        raise MalformedField(field, F'negative count {count}', reader.tell())
    if count and itemsize <= 0:
        raise MalformedField(field, F'{count} items of {itemsize} bytes cannot be bounded by the data', reader.tell())
    if count * itemsize > (remaining := reader.remaining_bytes):
        raise MalformedField(
            field, F'{count} items of {itemsize} bytes exceed the remaining {remaining} bytes', reader.tell())
    return [read() for _ in range(count)]


class Fragment(Struct):
    """
    Base class of all fragment types. Every fragment begins with a string reference to its name.
    """
    TYPE_ID: ClassVar[int]
    TYPE_NAME: ClassVar[str]

    FIELDS: ClassVar[tuple[str, ...]] = ('name_reference',)
    GATES: ClassVar[dict[str, FlagGate]] = {}
    COUNTS: ClassVar[dict[str, str]] = {}
    REFERENCES: ClassVar[dict[str, Target | None]] = {}
    FLAGS: ClassVar[type[int]] = int

    name_reference: StringReference
    _padding: bytes | None = None

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if 'TYPE_ID' in cls.__dict__:
            registry.register(cls)

    def __init__(self, reader: StructReader[memoryview]):
        self.name_reference = StringReference.read(reader)

    def write(self, writer: StructWriter):
        self.name_reference.write(writer)

    @property
    def type_code(self) -> int:
        return self.TYPE_ID

    @property
    def type_name(self) -> str:
        return self.TYPE_NAME

    @classmethod
    def parse(cls, payload: buf) -> tuple[Self, memoryview]:
        """
        Parse a fragment from its payload and return it together with the bytes that were not
        consumed.
        """
        view = memoryview(payload)
        reader = StructReader(view)
        fragment = cls(reader)
        return fragment, view[reader.tell():]

    @classmethod
    def new(cls, **fields) -> Self:
        """
        Create a fragment from field values. Count fields can be omitted when the corresponding list
        is given, optional fields default to `None`, and plain integers are accepted for the flags,
        the name, and for references. A `pfswld.lib.exceptions.MalformedField` is raised when the
        values violate a structural constraint.
        """
        if unknown := fields.keys() - set(cls.FIELDS):
            raise TypeError(F'{cls.__name__} has no fields named {", ".join(sorted(unknown))}')
        for items, count in cls.COUNTS.items():
            if count not in fields and (value := fields.get(items)) is not None:
                fields[count] = len(value)
        self = cls.__new__(cls)
        for name in cls.FIELDS:
            if name in fields:
                value = fields[name]
            elif name in cls.GATES:
                value = None
            elif name == 'name_reference':
                value = 0
            else:
                raise TypeError(F'{cls.__name__} requires a value for {name}')
            setattr(self, name, self._coerce(name, value))
        self.validate()
        return self

    def _coerce(self, name: str, value):
        if value is None:
            return None
        if name == 'name_reference':
            return StringReference(value)
        if name == 'flags':
            return self.FLAGS(value)
        if name in self.REFERENCES:
            target = self.REFERENCES[name]

            def reference(v):
                if isinstance(v, FragmentRef):
                    return FragmentRef(v.value, target)
                return FragmentRef(v, target)

            if isinstance(value, (list, tuple)):
                return [reference(v) for v in value]
            return reference(value)
        return value

    def validate(self):
        """
        Check that optional fields agree with their flags and that counts agree with their lists.
        """
        for field, gate in self.GATES.items():
            present = getattr(self, field) is not None
            if present != gate.test(self):
                state = 'set' if getattr(self, gate.field) & gate.mask == gate.mask else 'not set'
                raise MalformedField(
                    field, F'bits 0x{gate.mask:X} of {gate.field} are {state}, but the field is {"" if present else "not "}present')
        for items, count in self.COUNTS.items():
            if (value := getattr(self, items)) is None:
                continue
            if not 0 <= (n := getattr(self, count)) <= 0xFFFFFFFF:
                raise MalformedField(count, F'value {n} does not fit into 32 bits')
            if n != len(value):
                raise MalformedField(count, F'value {n} does not match the {len(value)} entries of {items}')

    def _read_gated(self, field: str, read: Callable[[], _T]) -> _T | None:
        return read() if self.GATES[field].test(self) else None

    def _write_gated(self, field: str, write: Callable[[_T], object]):
        if (value := getattr(self, field)) is not None:
            write(value)

    def references(self) -> Iterator[tuple[str, FragmentRef]]:
        """
        Generate all outgoing references of this fragment together with the name of their field.
        """
        for name in self.REFERENCES:
            value = getattr(self, name, None)
            if value is None:
                continue
            if isinstance(value, FragmentRef):
                yield name, value
            else:
                for ref in value:
                    yield name, ref

    def to_bytes(self) -> bytes:
        """
        Serialize the payload. A parsed fragment reproduces the padding that followed its fields, a
        new fragment is padded with zero bytes to a multiple of 4.
        """
        writer = StructWriter()
        self.write(writer)
        if self._padding is None:
            writer.byte_align(4)
        else:
            writer.write_bytes(self._padding)
        return bytes(writer.getvalue())

    def __bytes__(self):
        return bytes(self.to_bytes())

    def __len__(self):
        return len(self.to_bytes())

    def __buffer__(self, flags: int, /):
        return memoryview(self.to_bytes())

    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return all(getattr(self, name) == getattr(other, name) for name in self.FIELDS)

    __hash__ = None

    def __repr__(self):
        fields = ', '.join(F'{name}={getattr(self, name, None)!r}' for name in self.FIELDS)
        return F'{self.TYPE_NAME}({fields})'


class UnknownFragment(Fragment):
    """
    A fragment of a type that is not registered, or one that failed to parse and is kept as opaque
    data. The payload is retained verbatim.
    """
    TYPE_NAME = 'Unknown'
    FIELDS = ('raw',)

    def __init__(self, reader: StructReader[memoryview], type_code: int = 0):
        self._type_code = type_code
        self.raw = bytes(reader.read())
        self._padding = B''

    @property
    def name_reference(self) -> StringReference | None:
        if len(self.raw) < 4:
            return None
        return StringReference.read(StructReader(self.raw))

    @property
    def type_code(self) -> int:
        return self._type_code

    @property
    def type_name(self) -> str:
        return F'{self.TYPE_NAME}0x{self._type_code:02X}'

    @classmethod
    def opaque(cls, type_code: int, payload: buf) -> UnknownFragment:
        return cls.Parse(memoryview(payload), type_code)

    def write(self, writer: StructWriter):
        writer.write_bytes(self.raw)

    def __eq__(self, other):
        if not isinstance(other, UnknownFragment):
            return NotImplemented
        return self._type_code == other._type_code and self.raw == other.raw

    def __repr__(self):
        return F'{self.type_name}({len(self.raw)} bytes)'


def parse_fragment(type_code: int, payload: buf, strict: bool = False) -> tuple[Fragment, memoryview]:
    """
    Dispatch the payload to the class registered for `type_code`. Payloads of unregistered types
    are returned as `pfswld.lib.wld.fragments.UnknownFragment` instances, or cause an exception of
    type `pfswld.lib.exceptions.UnknownFragmentType` if `strict` is set.
    """
    if cls := registry.lookup(type_code):
        return cls.parse(payload)
    if strict:
        raise UnknownFragmentType(type_code)
    _log.debug(F'keeping fragment of unknown type 0x{type_code:02X} as opaque data')
    return UnknownFragment.opaque(type_code, payload), memoryview(B'')


from pfswld.lib.wld.fragments import (  # noqa: E402
    lights,
    materials,
    tracks,
    world,
)

__all__ = [
    'FlagGate',
    'Fragment',
    'FragmentRegistry',
    'UnknownFragment',
    'lights',
    'materials',
    'parse_fragment',
    'read_array',
    'registry',
    'tracks',
    'world',
]
