# utils.py

"""Utility functions for metaimage."""

from __future__ import annotations

import logging
import math
import sys
from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any, Literal


class MetaImageError(ValueError):
    """Exception to indicate invalid MetaImage header or data."""


class FormatError(MetaImageError):
    """Exception to indicate missing or unsupported header values."""


class NumericParseError(MetaImageError):
    """Exception to indicate malformed number in header value.

    Parameters:
        key: Name of header key.
        value: Raw header value.

    """

    key: str
    """Name of header key containing malformed number."""

    value: str
    """Raw value of header key."""

    def __init__(self, key: str, value: str, /) -> None:
        self.key = key
        self.value = value
        super().__init__(f'invalid number in {key} = {value!r}')


class OffsetInferenceError(MetaImageError):
    """Exception to indicate data file is smaller than declared payload.

    Parameters:
        filename: Name of data file.
        size: Size of data file in bytes.
        expected: Expected payload size in bytes.

    """

    filename: str
    size: int
    expected: int

    def __init__(self, filename: str, size: int, expected: int, /) -> None:
        self.filename = filename
        self.size = size
        self.expected = expected
        super().__init__(
            f'{filename!r} is too small ({size} bytes) '
            f'for the declared payload ({expected} bytes)'
        )


def logger() -> logging.Logger:
    """Return logger for metaimage module."""
    return logging.getLogger('metaimage')


def product(iterable: Iterable[int], /) -> int:
    """Return product of integers.

    Equivalent of ``math.prod(iterable)``, but multiplying NumPy integers
    does not overflow.

    >>> product([2**8, 2**30])
    274877906944
    >>> product([])
    1

    """
    prod = 1
    for i in iterable:
        prod *= int(i)
    return prod


def host_byteorder() -> Literal['>', '<']:
    """Return byte order of host system.

    >>> host_byteorder() in {'<', '>'}
    True

    """
    return '>' if sys.byteorder == 'big' else '<'


def byteorder_isnative(byteorder: str, /) -> bool:
    """Return if byteorder matches system's byteorder.

    >>> byteorder_isnative('=')
    True

    """
    if byteorder in {'=', '|', sys.byteorder}:
        return True
    keys = {'big': '>', 'little': '<'}
    return keys.get(byteorder, byteorder) == keys[sys.byteorder]


def asint(key: str, value: str, /) -> int:
    """Return integer from header token.

    >>> asint('NDims', ' 3 ')
    3

    Raises:
        NumericParseError: Token is not an integer.

    """
    try:
        return int(value.strip())
    except ValueError:
        raise NumericParseError(key, value) from None


def asfloat(key: str, value: str, /) -> float:
    """Return float from header token.

    >>> asfloat('ElementSize', '0.5')
    0.5

    Raises:
        NumericParseError: Token is not a floating point number.

    """
    try:
        result = float(value.strip())
    except ValueError:
        raise NumericParseError(key, value) from None
    if math.isnan(result):
        raise NumericParseError(key, value)
    return result


def asflag(value: str | None, /) -> bool:
    """Return if boolean header value is true.

    Only the first character is considered: 'T', 't', or '1' is true.

    >>> asflag('True'), asflag('1'), asflag('False'), asflag(None)
    (True, True, False, False)

    """
    if not value:
        return False
    return value[0] in 'Tt1'


def format_size(size: float, /, threshold: float = 1536) -> str:
    """Return file size as string from byte size.

    >>> format_size(1234)
    '1234 B'
    >>> format_size(12345678901)
    '11.50 GiB'

    """
    if size < threshold:
        return f'{size} B'
    for unit in ('KiB', 'MiB', 'GiB', 'TiB', 'PiB'):
        size /= 1024.0
        if size < threshold:
            return f'{size:.2f} {unit}'
    return 'ginormous'


def indent(*args: Any) -> str:
    """Return joined string representations of objects with indented lines.

    >>> print(indent('Title:', 'Text'))
    Title:
      Text

    """
    text = '\n'.join(str(arg) for arg in args)
    return '\n'.join(
        ('  ' + line if line else line) for line in text.splitlines() if line
    )[2:]


def snipstr(string: str, /, width: int = 79, *, ellipsis: str = '…') -> str:
    """Return string cut to specified length.

    The string is split in the middle.

    >>> snipstr('abcdefghijklmnop', 8, ellipsis='...')
    'abc...op'

    """
    linelen = len(string)
    if linelen <= width:
        return string
    esize = len(ellipsis)
    if width < esize + 4:
        return string[: width - esize] + ellipsis
    splitlen = linelen - width + esize
    end1 = linelen // 2 - splitlen // 2
    end2 = end1 + splitlen
    return string[:end1] + ellipsis + string[end2:]
