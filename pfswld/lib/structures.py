"""
Interfaces and classes to read and write structured data.
"""
from __future__ import annotations

import abc
import codecs
import enum
import functools
import inspect
import io
import struct
import sys

from typing import (
    TYPE_CHECKING,
    Generic,
    NamedTuple,
    TypeVar,
    Union,
    cast,
    get_origin,
)

if TYPE_CHECKING:
    from typing import Generator, Self

    from pfswld.lib.types import JSON, buf

    T = TypeVar('T', bound=Union[bytearray, bytes, memoryview])
    B = TypeVar('B', bound=Union[bytearray, bytes, memoryview], default=T)
else:
    T = TypeVar('T')
    B = TypeVar('B')

if sys.version_info >= (3, 12):
    from collections.abc import Buffer
else:
    Buffer = object


UnpackType = Union[int, bool, float, bytes]


class EOF(EOFError):
    """
    While reading from a `pfswld.lib.structures.MemoryFile`, less bytes were available than
    requested. The exception contains the data from the incomplete read.
    """
    def __init__(self, size: int, rest: buf = B''):
        super().__init__(F'Unexpected end of buffer; attempted to read {size} bytes, but got only {len(rest)}.')
        self.rest = rest
        self.size = size

    def __bytes__(self):
        return bytes(self.rest)


class MemoryFileMethods(Generic[T, B]):
    """
    A thin wrapper around (potentially mutable) byte sequences which gives it the features of a
    file-like object.
    """
    _data: T
    _output: type[B]
    _cursor: int
    _closed: bool

    def __bytes__(self):
        return bytes(self._data)

    def __init__(
        self,
        data: T | MemoryFileMethods[T, B] | type[T] = bytearray,
        output: type[B] | None = None,
    ) -> None:
        if isinstance(data, type):
            if not issubclass(data, bytearray):
                raise TypeError(data.__name__)
            _data = data()
        else:
            _data = data
        if isinstance(_data, (bytearray, bytes, memoryview)):
            if output is None:
                if TYPE_CHECKING:
                    output = cast(type[B], type(_data))
                else:
                    output = type(_data)
            self._output = output
            self._cursor = 0
            self._closed = False
            self._data = _data
        elif isinstance(_data, MemoryFileMethods):
            self._output = output or _data._output
            self._cursor = _data._cursor
            self._closed = _data._closed
            self._data = _data._data
        else:
            raise TypeError(F'Invalid input: {data!r}.')

    def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self):
        return self

    def __exit__(self, ex_type, ex_value, trace) -> bool:
        return False

    def __len__(self):
        return len(self._data)

    def readable(self) -> bool:
        return not self._closed

    def seekable(self) -> bool:
        return not self._closed

    @property
    def eof(self) -> bool:
        return self._closed or self._cursor >= len(self._data)

    @property
    def remaining_bytes(self) -> int:
        return len(self._data) - self.tell()

    def writable(self) -> bool:
        if self._closed:
            return False
        if isinstance(self._data, memoryview):
            return not self._data.readonly
        return isinstance(self._data, bytearray)

    def read(self, size: int | None = None, peek: bool = False) -> B:
        beginning = self._cursor
        if size is None or size < 0:
            end = len(self._data)
        else:
            end = min(self._cursor + size, len(self._data))
        result = self._data[beginning:end]
        if not isinstance(result, t := self._output):
            result = t(result)
        if not peek:
            self._cursor = end
        return result

    def peek(self, size: int | None = None) -> memoryview:
        cursor = self._cursor
        mv = memoryview(self._data)
        if size is None or size < 0:
            return mv[cursor:]
        return mv[cursor:cursor + size]

    def tell(self) -> int:
        return self._cursor

    def seekrel(self, offset: int) -> int:
        return self.seek(offset, io.SEEK_CUR)

    def seekset(self, offset: int) -> int:
        if offset < 0:
            return self.seek(offset, io.SEEK_END)
        else:
            return self.seek(offset, io.SEEK_SET)

    def getbuffer(self) -> memoryview:
        return memoryview(self._data)

    def getvalue(self) -> T:
        return self._data

    def seek(self, offset: int, whence=io.SEEK_SET) -> int:
        if whence == io.SEEK_SET:
            if offset < 0:
                raise ValueError('no negative offsets allowed for SEEK_SET.')
            self._cursor = offset
        elif whence == io.SEEK_CUR:
            self._cursor += offset
        elif whence == io.SEEK_END:
            self._cursor = len(self._data) + offset
        self._cursor = max(self._cursor, 0)
        self._cursor = min(self._cursor, len(self._data))
        return self._cursor

    def write(self, data: buf) -> int:
        out = self._data
        if isinstance(out, memoryview):
            if out.readonly:
                raise PermissionError
            out = out.obj
        if not isinstance(out, bytearray):
            raise PermissionError
        beginning = self._cursor
        size = len(data)
        self._cursor += size
        try:
            out[beginning:self._cursor] = data
        except Exception as T:
            self._cursor = beginning
            raise OSError(str(T)) from T
        return size

    def __getitem__(self, slice):
        result = self._data[slice]
        if not isinstance(result, t := self._output):
            result = t(result)
        return result


class MemoryFile(MemoryFileMethods[T, B], io.BytesIO):
    pass


class StructReader(MemoryFile[T, T]):
    """
    An extension of a `pfswld.lib.structures.MemoryFile` which provides methods to read
    structured data.
    """
    __slots__ = 'bigendian',

    def __init__(self, data: T | StructReader[T], bigendian: bool | None = None):
        super().__init__(data)
        if bigendian is None:
            if isinstance(data, StructReader):
                bigendian = data.bigendian
            else:
                bigendian = False
        self.bigendian = bigendian

    def __enter__(self) -> StructReader:
        return super().__enter__()

    @property
    def byteorder_format(self) -> str:
        return '>' if self.bigendian else '<'

    @property
    def byteorder_name(self):
        return 'big' if self.bigendian else 'little'

    def read_exactly(self, size: int | None = None, peek: bool = False) -> T:
        """
        Read bytes from the underlying stream. Raises an exception of type `pfswld.lib.structures.EOF`
        when fewer data is available in the stream than requested via the `size` parameter. The
        remaining data can be extracted from the exception.
        """
        data = self.read(size, peek)
        if size and len(data) < size:
            raise EOF(size, data)
        return data

    def read_integer(
        self,
        size: int,
        peek: bool = False,
        signed: bool = False
    ) -> int:
        """
        Read an integer of the given size (in bits) from the stream.
        """
        nbytes, rest = divmod(size, 8)
        if rest > 0:
            raise ValueError(
                F'A {self.__class__.__name__} cannot read {size} bit{"s" * (size > 1)}, only multiples of 8 are possible.')
        data = self.read(nbytes, peek)
        if len(data) < nbytes:
            raise EOF(nbytes, data)
        return int.from_bytes(data, self.byteorder_name, signed=signed)

    def byte_align(self, blocksize: int = 1):
        """
        Align the cursor at the given block size boundary.
        """
        if mod := -self._cursor % blocksize:
            self.seekrel(mod)

    def read_bytes(self, size: int, peek: bool = False) -> bytes:
        data = self.read_exactly(size, peek)
        if not isinstance(data, bytes):
            data = bytes(data)
        return data

    def read_one_struct(self, spec: str, peek=False) -> UnpackType:
        item, = self.read_struct(spec, peek=peek)
        return item

    def read_struct(self, spec: str, peek=False) -> list[UnpackType]:
        """
        Read structured data from the stream in any format supported by the `struct` module. A leading
        byte order character in `spec` overrides the byte order of the reader.
        """
        if not spec:
            raise ValueError('no format specified')
        byteorder = spec[:1]
        if byteorder in '<!=@>':
            spec = spec[1:]
        else:
            byteorder = self.byteorder_format
        spec = F'{byteorder}{spec}'
        return list(struct.unpack(spec, self.read_bytes(struct.calcsize(spec), peek)))

    def read_byte(self, peek: bool = False) -> int:
        try:
            b = self._data[self._cursor]
        except IndexError:
            raise EOF(1)
        if not peek:
            self._cursor += 1
        return b

    u8 = read_byte

    def u16(self, peek: bool = False) -> int:
        return self.read_integer(16, peek, signed=False)

    def u32(self, peek: bool = False) -> int:
        return self.read_integer(32, peek, signed=False)

    def i16(self, peek: bool = False) -> int:
        return self.read_integer(16, peek, signed=True)

    def i32(self, peek: bool = False) -> int:
        return self.read_integer(32, peek, signed=True)

    def f32(self, peek: bool = False) -> float:
        return cast(float, self.read_one_struct('f', peek=peek))

    def read_length_prefixed(self, prefix_size: int = 32, encoding: str | None = None) -> T | str:
        prefix = self.read_integer(prefix_size)
        data = self.read_exactly(prefix)
        if encoding is not None:
            data = codecs.decode(data, encoding)
        return data


class StructWriter(MemoryFile[bytearray, bytearray]):
    """
    The counterpart of `pfswld.lib.structures.StructReader`; it appends structured data to a
    growing buffer. All methods return the writer so that calls can be chained.
    """
    __slots__ = 'bigendian',

    def __init__(self, data: bytearray | None = None, bigendian: bool = False):
        super().__init__(bytearray() if data is None else data)
        self.seek(0, io.SEEK_END)
        self.bigendian = bigendian

    @property
    def byteorder_format(self) -> str:
        return '>' if self.bigendian else '<'

    @property
    def byteorder_name(self):
        return 'big' if self.bigendian else 'little'

    def write_integer(self, value: int, size: int, signed: bool = False) -> Self:
        """
        Write an integer of the given size (in bits). Raises an `OverflowError` if the value does not
        fit into the requested width.
        """
        nbytes, rest = divmod(size, 8)
        if rest > 0:
            raise ValueError(F'Cannot write {size} bits, only multiples of 8 are possible.')
        self.write(value.to_bytes(nbytes, self.byteorder_name, signed=signed))
        return self

    def write_struct(self, spec: str, *values) -> Self:
        byteorder = spec[:1]
        if byteorder in '<!=@>':
            spec = spec[1:]
        else:
            byteorder = self.byteorder_format
        self.write(struct.pack(F'{byteorder}{spec}', *values))
        return self

    def write_bytes(self, data: buf) -> Self:
        self.write(data)
        return self

    def u8(self, value: int) -> Self:
        return self.write_integer(value, 8)

    def u16(self, value: int) -> Self:
        return self.write_integer(value, 16)

    def u32(self, value: int) -> Self:
        return self.write_integer(value, 32)

    def i16(self, value: int) -> Self:
        return self.write_integer(value, 16, signed=True)

    def i32(self, value: int) -> Self:
        return self.write_integer(value, 32, signed=True)

    def f32(self, value: float) -> Self:
        return self.write_struct('f', value)

    def byte_align(self, blocksize: int = 1) -> Self:
        """
        Pad the buffer with zero bytes up to the given block size boundary.
        """
        if mod := -self._cursor % blocksize:
            self.write(bytes(mod))
        return self


class StructMeta(abc.ABCMeta):
    """
    A metaclass to facilitate the behavior outlined for `pfswld.lib.structures.Struct`.
    """
    def __new__(mcls, name, bases, namespace: dict, interface: type[StructReader] | None = None):
        if interface is None:
            if init := namespace.get('__init__'):
                args = iter(inspect.signature(init).parameters.values())
                next(args)
                interface = next(args).annotation
                if isinstance(interface, str):
                    try:
                        module = sys.modules[namespace['__module__']]
                        interface = eval(interface, module.__dict__)
                    except Exception:
                        interface = None
                if not isinstance(interface, type):
                    interface = get_origin(interface)
                if not isinstance(interface, type) or not issubclass(interface, StructReader):
                    raise RuntimeError
            else:
                interface = StructReader

        def parse(cls, reader: T | StructReader[T], *args, **kwargs):
            if not isinstance(reader, interface):
                reader = interface(reader)
            return cls(reader, *args, **kwargs)

        namespace.update(Parse=classmethod(parse))
        return super().__new__(mcls, name, bases, namespace)

    def __init__(cls, name, bases, nmspc, **_):
        super().__init__(name, bases, nmspc)
        original__init__ = cls.__init__

        @functools.wraps(original__init__)
        def wrapped__init__(self: Struct, reader: StructReader, *args, **kwargs):
            start = reader.tell()
            view = reader.getbuffer()
            original__init__(self, reader, *args, **kwargs)
            self._data = view[start:reader.tell()]
            del view

        setattr(cls, '__init__', wrapped__init__)


class Struct(Generic[T], Buffer, metaclass=StructMeta):
    """
    A class to parse structured data. A `pfswld.lib.structures.Struct` class can be instantiated
    as follows:

        foo = Struct.Parse(data, bar=29)

    The initialization routine of the structure will be called with a single argument `reader`. If
    the object `data` is already a `pfswld.lib.structures.StructReader`, then it will be passed
    as `reader`. Otherwise, the argument will be wrapped in a `pfswld.lib.structures.StructReader`.
    Additional arguments to the struct are passed through. The bytes that were consumed by the
    initialization routine are retained and available via `bytes`.
    """
    _data: memoryview | bytearray

    @classmethod
    def Parse(cls, reader: T | StructReader[T], *args, **kwargs) -> Self:
        ...

    def __len__(self):
        return len(self._data)

    def __bytes__(self):
        return bytes(self._data)

    def __buffer__(self, flags: int, /):
        return memoryview(self._data)

    def __init__(self, reader: StructReader[T], *args, **kwargs):
        pass


def struct_to_json(o, codec: str | None = None) -> JSON:
    """
    Attempt to convert a `pfswld.lib.structures.Struct` to a JSON representation. Binary data is
    decoded with the given `codec` if one is specified and converted to a hex string otherwise.
    """
    if o is None:
        return o
    if isinstance(o, Struct):
        return {k: struct_to_json(v, codec) for k, v in o.__dict__.items() if not k.startswith('_')}
    if isinstance(o, tuple) and hasattr(o, '_asdict'):
        o = cast(NamedTuple, o)._asdict()
    if isinstance(o, (tuple, list)):
        return [struct_to_json(v, codec) for v in o]
    if isinstance(o, dict):
        return {k: struct_to_json(v, codec) for k, v in o.items()}
    elif isinstance(o, enum.IntFlag):
        return [option.name for option in o.__class__ if option and o & option == option]
    elif isinstance(o, enum.IntEnum):
        return o.name
    elif isinstance(o, (memoryview, bytes, bytearray)):
        if codec is not None:
            return codecs.decode(o, codec)
        return bytes(o).hex()
    else:
        try:
            return o.__json__()
        except AttributeError:
            pass
    return cast('JSON', o)


class FlagAccessMixin:
    """
    This class can be mixed into an `enum.IntFlag` for some quality of life improvements. Firstly,
    you can now access flags as follows:

        class Flags(FlagAccessMixin, enum.IntFlag):
            IsTwoSided = 1
            HasPair = 2

        flag = Flags(3)

        if flag.HasPair:
            read_pair()

    Furthermore, flag values can be enumerated:

        >>> list(flag)
        [IsTwoSided, HasPair]
        >>> flag
        IsTwoSided|HasPair

    And finally, as visible from the above output, flag values are represented by their name by
    default.
    """
    def __getattribute__(self, name: str):
        if not isinstance(self, enum.IntFlag):
            raise RuntimeError
        if not name.startswith('_'):
            try:
                flag = self.__class__[name]
            except KeyError:
                pass
            else:
                return flag in self
        return super().__getattribute__(name)

    def __iter__(self) -> Generator[Self]:
        if not isinstance(self, enum.IntFlag):
            raise RuntimeError
        for flag in self.__class__:
            if flag in self:
                yield flag

    def __repr__(self):
        if not isinstance(self, enum.IntFlag):
            raise RuntimeError
        if name := self.name:
            return name
        return super().__repr__()
