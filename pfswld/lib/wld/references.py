"""
Typed references between fragments. A reference is stored as a signed 32-bit integer: a positive
value is the one-based index of the target fragment, zero means that there is no target, and a
negative value is a string reference to the name of the target. References are never resolved while
parsing because they may point forward; use `pfswld.lib.wld.document.WldDocument.resolve`.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Generic, TypeVar, Union

from pfswld.lib.structures import StructReader, StructWriter
from pfswld.lib.wld.strings import StringReference

if TYPE_CHECKING:
    from typing import Self

    from pfswld.lib.wld.fragments import Fragment

_F = TypeVar('_F', bound='Fragment')

Target = Union[type, str, int]


class FragmentRef(Generic[_F]):
    """
    A reference to a fragment whose expected type is `target`. The target is either a fragment class,
    the type name under which a fragment class is registered, or a numeric type code. The latter two
    allow references to types that are declared further down or that have no fragment class.
    """
    __slots__ = 'value', 'target'

    def __init__(self, value: int = 0, target: Target | None = None):
        if not -0x80000000 <= value <= 0x7FFFFFFF:
            raise OverflowError(F'Fragment reference {value} does not fit into 32 bits.')
        self.value = value
        self.target = target

    @classmethod
    def read(cls, reader: StructReader, target: Target | None = None) -> Self:
        return cls(reader.i32(), target)

    def write(self, writer: StructWriter):
        writer.i32(self.value)

    @property
    def is_null(self) -> bool:
        return self.value == 0

    @property
    def is_index(self) -> bool:
        return self.value > 0

    @property
    def is_name(self) -> bool:
        return self.value < 0

    @property
    def index(self) -> int | None:
        """
        The zero-based index of the target, or `None` for null and name references.
        """
        return self.value - 1 if self.value > 0 else None

    @property
    def name_reference(self) -> StringReference | None:
        return StringReference(self.value) if self.value < 0 else None

    def target_type(self) -> type | None:
        """
        Return the expected fragment class; a registered type name is looked up in the registry.
        """
        target = self.target
        if isinstance(target, str):
            from pfswld.lib.wld.fragments import registry
            return registry.by_name(target)
        if isinstance(target, int):
            from pfswld.lib.wld.fragments import registry
            return registry.lookup(target)
        return target

    def accepts(self, fragment) -> bool:
        if isinstance(target := self.target, int):
            return fragment.type_code == target
        if (cls := self.target_type()) is not None:
            return isinstance(fragment, cls)
        if isinstance(target, str):
            return fragment.type_name == target
        return True

    def __eq__(self, other):
        if isinstance(other, FragmentRef):
            return self.value == other.value
        if isinstance(other, int):
            return self.value == other
        return NotImplemented

    def __hash__(self):
        return hash(self.value)

    def __json__(self):
        return self.value

    def __repr__(self):
        target = self.target
        if isinstance(target, type):
            target = target.__name__
        elif isinstance(target, int):
            target = F'0x{target:02X}'
        return F'FragmentRef[{target or "*"}]({self.value})'
