"""
Exceptions raised while reading or writing archives and fragment documents. All of them derive from
`pfswld.lib.exceptions.FormatError`, which is a `ValueError`. Every exception carries the position
at which the problem occurred as attributes, and its string representation is a complete diagnostic
message.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from pfswld.lib.wld.document import FragmentHeader


class FormatError(ValueError):
    """
    Base class of all format errors; the `offset` attribute is the byte offset at which the problem
    was detected, or `None` if there is no meaningful position.
    """
    def __init__(self, message: str = '', offset: int | None = None):
        super().__init__(message)
        self.message = message
        self.offset = offset

    def __str__(self):
        message = self.message or self.__class__.__name__
        if self.offset is not None:
            return F'{message} (at offset 0x{self.offset:X})'
        return message


class BadMagic(FormatError):
    def __init__(self, expected: int, actual: int, offset: int = 0):
        super().__init__(F'Invalid magic number 0x{actual:08X}, expected 0x{expected:08X}', offset)
        self.expected = expected
        self.actual = actual


class BadVersion(FormatError):
    def __init__(self, expected: Iterable[int], actual: int, offset: int = 0):
        self.expected = tuple(expected)
        self.actual = actual
        options = ', '.join(F'0x{v:08X}' for v in self.expected)
        super().__init__(F'Unsupported version 0x{actual:08X}, expected one of: {options}', offset)


class TruncatedArchive(FormatError):
    """
    The archive claims more bytes than are available in the input.
    """
    def __init__(self, what: str, offset: int, needed: int, available: int):
        super().__init__(
            F'Truncated archive while reading {what}; {needed} bytes needed, but only {available} remain', offset)
        self.what = what
        self.needed = needed
        self.available = available


class CorruptArchive(FormatError):
    pass


class CorruptBlock(FormatError):
    """
    A compressed block could not be inflated or inflated to the wrong size.
    """
    def __init__(self, reason: str, offset: int | None = None, expected: int | None = None, actual: int | None = None):
        message = F'Corrupt block: {reason}'
        if expected is not None and actual is not None:
            message = F'{message}; expected {expected} bytes, got {actual}'
        super().__init__(message, offset)
        self.reason = reason
        self.expected = expected
        self.actual = actual


class NotFound(FormatError, LookupError):
    def __init__(self, name: str):
        super().__init__(F'File not found in archive: {name}')
        self.name = name


class MalformedField(FormatError):
    """
    A field violates a structural precondition; for example, a count that cannot possibly fit into
    the remaining bytes, or an optional field whose presence disagrees with the flags that gate it.
    """
    index: int | None = None

    def __init__(self, field: str, reason: str, offset: int | None = None):
        super().__init__(F'Malformed field {field}: {reason}', offset)
        self.field = field
        self.reason = reason

    def __str__(self):
        message = super().__str__()
        if self.index is not None:
            message = F'Fragment {self.index}: {message}'
        return message


class UnknownFragmentType(FormatError):
    def __init__(self, type_code: int, index: int | None = None, offset: int | None = None):
        message = F'Unknown fragment type 0x{type_code:02X}'
        if index is not None:
            message = F'{message} for fragment {index}'
        super().__init__(message, offset)
        self.type_code = type_code
        self.index = index


class TruncatedFragment(FormatError):
    """
    A fragment record does not fit into the document or its payload was not consumed exactly by the
    parser for its type. The `index` is the zero-based position of the fragment, `offset` is the byte
    offset of its record header, and `header` is the partially parsed record header if available.
    """
    def __init__(
        self,
        index: int,
        offset: int,
        header: FragmentHeader | None = None,
        reason: str = '',
    ):
        self.index = index
        self.header = header
        self.reason = reason
        message = F'Truncated fragment {index}'
        if header is not None:
            message = F'{message} of type 0x{header.type_code:02X} and declared size {header.size}'
        if reason:
            message = F'{message}: {reason}'
        super().__init__(message, offset)


class DocumentError(FormatError):
    """
    Collects all errors that occurred while parsing the fragments of a document.
    """
    def __init__(self, errors: Iterable[FormatError]):
        self.errors = list(errors)
        count = len(self.errors)
        lines = [F'{count} fragment{"s" * (count != 1)} failed to parse:']
        lines.extend(F'- {error!s}' for error in self.errors)
        super().__init__('\n'.join(lines))
