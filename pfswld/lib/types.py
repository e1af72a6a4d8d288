"""
This module is used as a unified resource for various types that are primarily used for type hints.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from typing import Union

    JSON = Union[
        None,
        str,
        int,
        float,
        bool,
        dict[str, 'JSON'],
        list['JSON'],
        list[int],
        list[str],
        list[float],
        dict[str, int],
        dict[str, str],
    ]
    JSONDict = dict[str, JSON]

    buf = Union[bytes, bytearray, memoryview]

else:
    JSON = Any
    JSONDict = Any
    buf = Any
