"""
Fragment documents, the `.wld` files stored inside of archives. A document has the layout

    Header(28) | StringHashTable | (u32 size | u32 type_code | payload)* | trailer

where the trailer is normally the end marker `FF FF FF FF`. Fragments refer to each other through
`pfswld.lib.wld.references.FragmentRef` values, which are resolved on demand by
`pfswld.lib.wld.document.WldDocument.resolve`.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Iterator, NamedTuple

from pfswld.lib.environment import logger
from pfswld.lib.exceptions import (
    BadMagic,
    BadVersion,
    DocumentError,
    FormatError,
    MalformedField,
    TruncatedFragment,
    UnknownFragmentType,
)
from pfswld.lib.structures import EOF, Struct, StructReader, StructWriter
from pfswld.lib.wld.fragments import Fragment, UnknownFragment, parse_fragment, registry
from pfswld.lib.wld.references import FragmentRef
from pfswld.lib.wld.strings import StringHash

if TYPE_CHECKING:
    from typing import Self

    from pfswld.lib.types import buf

_log = logger(__name__)

END_MARKER = B'\xFF\xFF\xFF\xFF'


class WldHeader(NamedTuple):
    magic: int
    version: int
    fragment_count: int
    region_count: int
    max_object_bytes: int
    string_hash_size: int
    string_count: int

    SIZE = 28
    MAGIC = 0x54503D02
    VERSION_OLD = 0x00015500
    VERSION_NEW = 0x1000C800

    @classmethod
    def read(cls, reader: StructReader) -> Self:
        try:
            header = cls(*reader.read_struct('7I'))
        except EOF as E:
            raise FormatError(
                F'Truncated document header; {cls.SIZE} bytes needed, but only {len(E.rest)} available', 0) from E
        if header.magic != cls.MAGIC:
            raise BadMagic(cls.MAGIC, header.magic, 0)
        if header.version not in (cls.VERSION_OLD, cls.VERSION_NEW):
            raise BadVersion((cls.VERSION_OLD, cls.VERSION_NEW), header.version, 4)
        return header

    def write(self, writer: StructWriter):
        writer.write_struct('7I', *self)

    @property
    def is_old_version(self) -> bool:
        return self.version == self.VERSION_OLD


class FragmentHeader(NamedTuple):
    """
    The header of a fragment record; `offset` is the position of the header within the document.
    """
    size: int
    type_code: int
    offset: int = 0

    SIZE = 8

    @property
    def type_name(self) -> str:
        return registry.type_name(self.type_code)


def _parse_record(index: int, header: FragmentHeader, payload: buf, strict: bool) -> Fragment:
    try:
        fragment, rest = parse_fragment(header.type_code, payload, strict)
    except EOF as E:
        raise TruncatedFragment(index, header.offset, header,
            F'the payload ended while reading {E.size} bytes') from E
    except MalformedField as E:
        if E.offset is not None:
            E.offset += header.offset + FragmentHeader.SIZE
        E.index = index
        raise
    except UnknownFragmentType as E:
        raise UnknownFragmentType(header.type_code, index, header.offset) from E
    if any(rest):
        raise TruncatedFragment(index, header.offset, header,
            F'{len(rest)} trailing bytes were not consumed by the {fragment.type_name} parser')
    fragment._padding = bytes(rest)
    return fragment


class WldDocument(Struct):
    """
    A parsed fragment document. Use `pfswld.lib.wld.document.WldDocument.Parse` to read a document
    and `pfswld.lib.wld.document.WldDocument.build` to create a new one. Fragments that fail to parse
    are collected and reported together as a `pfswld.lib.exceptions.DocumentError`; with the
    `opaque_on_error` option, they are kept as opaque records instead. A record whose declared size
    exceeds the document aborts the parse immediately.

        doc = WldDocument.Parse(data)
        for fragment in doc.fragments_of('MaterialDef'):
            sprite = doc.resolve(fragment.reference)
    """

    def __init__(
        self,
        reader: StructReader[memoryview],
        opaque_on_error: bool = False,
        strict: bool = False,
    ):
        self.header = header = WldHeader.read(reader)
        if (size := header.string_hash_size) > reader.remaining_bytes:
            raise FormatError(
                F'String hash table of {size} bytes exceeds the remaining {reader.remaining_bytes} bytes',
                reader.tell())
        self.strings = StringHash.decode(reader.read_exactly(size))
        fragments: list[Fragment] = []
        errors: list[FormatError] = []
        for index in range(header.fragment_count):
            offset = reader.tell()
            try:
                size, type_code = reader.read_struct('2I')
            except EOF as E:
                raise TruncatedFragment(index, offset,
                    reason=F'the record header needs {FragmentHeader.SIZE} bytes, but only {len(E.rest)} remain') from E
            record = FragmentHeader(size, type_code, offset)
            if size > (remaining := reader.remaining_bytes):
                raise TruncatedFragment(index, offset, record, F'only {remaining} bytes remain in the document')
            payload = reader.read_exactly(size)
            try:
                fragment = _parse_record(index, record, payload, strict)
            except (MalformedField, TruncatedFragment, UnknownFragmentType) as E:
                if not opaque_on_error:
                    errors.append(E)
                    continue
                _log.warning(F'keeping fragment {index} as opaque data: {E!s}')
                fragment = UnknownFragment.opaque(type_code, payload)
            fragments.append(fragment)
        if errors:
            raise DocumentError(errors)
        self.fragments = tuple(fragments)
        self.trailer = bytes(reader.read())
        if self.trailer != END_MARKER:
            _log.info(F'document ends with {len(self.trailer)} bytes that are not the standard end marker')
        _log.debug(F'parsed {len(fragments)} fragments and {len(self.strings)} strings')

    @classmethod
    def build(
        cls,
        strings: StringHash | Iterable[str],
        fragments: Iterable[Fragment],
        version: int = WldHeader.VERSION_NEW,
        region_count: int = 0,
        max_object_bytes: int = 0,
        string_count: int | None = None,
        trailer: bytes = END_MARKER,
    ) -> Self:
        """
        Assemble a new document. The fragment count and the size of the string table are computed,
        the string count defaults to the number of strings in the table.
        """
        if not isinstance(strings, StringHash):
            strings = StringHash.from_strings(strings)
        if string_count is None:
            string_count = len(strings)
        self = cls.__new__(cls)
        self.strings = strings
        self.fragments = tuple(fragments)
        self.header = WldHeader(
            WldHeader.MAGIC, version, len(self.fragments), region_count, max_object_bytes, 0, string_count)
        self.trailer = trailer
        return cls.Parse(self.to_bytes())

    def to_bytes(self) -> bytes:
        strings = self.strings.encode()
        header = self.header._replace(fragment_count=len(self.fragments), string_hash_size=len(strings))
        writer = StructWriter()
        header.write(writer)
        writer.write_bytes(strings)
        for fragment in self.fragments:
            payload = fragment.to_bytes()
            writer.write_struct('2I', len(payload), fragment.type_code)
            writer.write_bytes(payload)
        writer.write_bytes(self.trailer)
        return bytes(writer.getvalue())

    def __iter__(self) -> Iterator[Fragment]:
        return iter(self.fragments)

    def __len__(self):
        return len(self.fragments)

    def at(self, index: int) -> Fragment | None:
        """
        Return the fragment at the given zero-based index, or `None` if there is no such fragment.
        """
        if 0 <= index < len(self.fragments):
            return self.fragments[index]

    def get_string(self, ref: int | None) -> str | None:
        if ref is None:
            return None
        return self.strings.get(ref)

    def name_of(self, fragment: Fragment) -> str | None:
        return self.get_string(fragment.name_reference)

    def resolve(self, ref: FragmentRef) -> Fragment | None:
        """
        Return the fragment that the reference points to, or `None` if the reference is null, does
        not point to an existing fragment, or points to a fragment of the wrong type.
        """
        if ref.is_null:
            return None
        if (index := ref.index) is not None:
            fragment = self.at(index)
            if fragment is None or not ref.accepts(fragment):
                return None
            return fragment
        if (name := self.get_string(ref.value)) is None:
            return None
        for fragment in self.fragments:
            if ref.accepts(fragment) and self.name_of(fragment) == name:
                return fragment

    def fragments_of(self, kind: type | str | int) -> Iterator[Fragment]:
        """
        Generate all fragments of the given kind, specified as a fragment class, a type name or a
        numeric type code.
        """
        target = FragmentRef(0, kind)
        for fragment in self.fragments:
            if target.accepts(fragment):
                yield fragment

    def by_name(self, name: str, kind: type | str | int | None = None) -> Fragment | None:
        target = FragmentRef(0, kind)
        for fragment in self.fragments:
            if target.accepts(fragment) and self.name_of(fragment) == name:
                return fragment

    def index_of(self, fragment: Fragment) -> int:
        for k, candidate in enumerate(self.fragments):
            if candidate is fragment:
                return k
        raise ValueError('fragment is not part of this document')

    def __repr__(self):
        return F'<WldDocument:{len(self.fragments)} fragments, {len(self.strings)} strings>'
