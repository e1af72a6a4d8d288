"""
The string hash table of a fragment document and the obfuscation scheme that is used for it and for
a few strings embedded in fragments. The table is a blob of null-terminated strings, XOR-encoded
with a repeating 8 byte key. Fragments refer to a string by the offset of its first character; the
sign of such a reference carries no meaning for the lookup but is preserved.
"""
from __future__ import annotations

import codecs
import itertools

from typing import TYPE_CHECKING, Iterable, Iterator, Mapping

from pfswld.lib.structures import StructReader, StructWriter

if TYPE_CHECKING:
    from typing import Self

    from pfswld.lib.types import buf

XOR_KEY = bytes((0x95, 0x3A, 0xC5, 0x2A, 0x95, 0x7A, 0x95, 0x6A))

CODEC = 'cp1252'
ERRORS = 'pfswld-cp1252'


def _cp1252_passthrough(error: UnicodeError):
    # the five byte values that are undefined in cp1252 map to the code point of the same value
    if isinstance(error, UnicodeDecodeError):
        chunk = error.object[error.start:error.end]
        return ''.join(map(chr, chunk)), error.end
    if isinstance(error, UnicodeEncodeError):
        chunk = error.object[error.start:error.end]
        if all(ord(c) < 0x100 for c in chunk):
            return bytes(map(ord, chunk)), error.end
    raise error


codecs.register_error(ERRORS, _cp1252_passthrough)


def obfuscate(data: buf) -> bytes:
    """
    Apply the XOR key; the operation is its own inverse.
    """
    return bytes(b ^ k for b, k in zip(data, itertools.cycle(XOR_KEY)))


def decode_text(data: buf) -> str:
    return codecs.decode(bytes(data), CODEC, ERRORS)


def encode_text(text: str) -> bytes:
    """
    Encode text as cp1252; raises a `UnicodeEncodeError` for characters outside of that encoding.
    """
    return codecs.encode(text, CODEC, ERRORS)


def decode_string(data: buf) -> str:
    """
    Decode an obfuscated string and strip its null terminator and padding.
    """
    text = decode_text(obfuscate(data))
    text, _, _ = text.partition('\0')
    return text


def encode_string(text: str) -> bytes:
    """
    Obfuscate a string including its null terminator.
    """
    return obfuscate(encode_text(text) + B'\0')


class StringReference(int):
    """
    A signed offset into the `pfswld.lib.wld.strings.StringHash` of a document.
    """
    def __new__(cls, value: int = 0):
        if not -0x80000000 <= value <= 0x7FFFFFFF:
            raise OverflowError(F'String reference {value} does not fit into 32 bits.')
        return super().__new__(cls, value)

    @classmethod
    def read(cls, reader: StructReader) -> Self:
        return cls(reader.i32())

    def write(self, writer: StructWriter):
        writer.i32(self)

    @property
    def offset(self) -> int:
        return abs(self)

    def __repr__(self):
        return F'StringReference({int(self)})'


class StringHash(Mapping[int, str]):
    """
    An immutable mapping from offsets to strings. Use `pfswld.lib.wld.strings.StringHash.decode`
    to parse an obfuscated table and `pfswld.lib.wld.strings.StringHash.from_strings` to create a
    new one. When a table was decoded, the bytes that follow the last terminated string are kept
    and written back verbatim by `pfswld.lib.wld.strings.StringHash.encode`; otherwise, the
    encoded table is padded with zero bytes to a multiple of 4.
    """
    __slots__ = '_strings', '_tail'

    def __init__(self, strings: Mapping[int, str] | None = None, tail: bytes | None = None):
        table = dict(sorted((strings or {}).items()))
        expected = 0
        for offset, string in table.items():
            if offset != expected:
                raise ValueError(F'String at offset {offset} does not follow the previous one, expected offset {expected}.')
            if '\0' in string:
                raise ValueError(F'String at offset {offset} contains a null character.')
            expected += len(encode_text(string)) + 1
        self._strings = table
        self._tail = tail

    @classmethod
    def decode(cls, raw: buf) -> Self:
        plain = obfuscate(raw)
        parts = plain.split(B'\0')
        rest = parts.pop()
        strings: dict[int, str] = {}
        offset = 0
        for part in parts:
            strings[offset] = decode_text(part)
            offset += len(part) + 1
        return cls(strings, bytes(raw[len(raw) - len(rest):]))

    @classmethod
    def from_strings(cls, strings: Iterable[str]) -> Self:
        table: dict[int, str] = {}
        offset = 0
        for string in strings:
            table[offset] = string
            offset += len(encode_text(string)) + 1
        return cls(table)

    def encode(self) -> bytes:
        writer = StructWriter()
        writer.write_bytes(obfuscate(B''.join(encode_text(s) + B'\0' for s in self._strings.values())))
        if self._tail is None:
            writer.byte_align(4)
        else:
            writer.write_bytes(self._tail)
        return bytes(writer.getvalue())

    def __getitem__(self, key: int) -> str:
        return self._strings[abs(key)]

    def __iter__(self) -> Iterator[int]:
        return iter(self._strings)

    def __len__(self):
        return len(self._strings)

    def get(self, key: int, default=None) -> str | None:
        """
        Look up a `pfswld.lib.wld.strings.StringReference`; the sign of the reference is ignored. The
        result is `None` if no string starts at that offset.
        """
        return self._strings.get(abs(key), default)

    def find(self, string: str) -> int | None:
        for offset, candidate in self._strings.items():
            if candidate == string:
                return offset

    def reference(self, string: str) -> StringReference:
        """
        Return a negative reference to the given string as used by fragment names. Raises a
        `KeyError` if the string is not part of the table.
        """
        if (offset := self.find(string)) is None:
            raise KeyError(string)
        return StringReference(-offset)

    @property
    def size(self) -> int:
        return len(self.encode())

    def __repr__(self):
        return F'<StringHash:{len(self)} strings>'
