# fileio.py

"""File I/O helpers for metaimage."""

from __future__ import annotations

import io
import os
import time
from datetime import timedelta as TimeDelta
from typing import IO, TYPE_CHECKING, cast, final

import numpy

if TYPE_CHECKING:
    from types import TracebackType
    from typing import Any, Literal, Self

    from numpy.typing import DTypeLike, NDArray

from .utils import logger, snipstr


@final
class Timer:
    """Stopwatch printing elapsed time since last start.

    >>> str(Timer()).endswith(' s')
    True

    """

    __slots__ = ('started',)

    started: float
    """Value of performance counter when started."""

    def __init__(self) -> None:
        self.started = time.perf_counter()

    def start(self) -> float:
        """Restart timer and return current time."""
        self.started = time.perf_counter()
        return self.started

    def __str__(self) -> str:
        duration = str(TimeDelta(seconds=time.perf_counter() - self.started))
        # strip leading zero hours and minutes
        hours, minutes, seconds = duration.split(':')
        if hours != '0':
            return f'{duration} s'
        if minutes != '00':
            return f'{int(minutes)}:{seconds} s'
        return f'{float(seconds):g} s'

    def __repr__(self) -> str:
        return f'Timer(started={self.started})'


class FileHandle:
    """Binary file handle for reading headers and payloads.

    FileHandle wraps a file opened by name, or a seekable binary stream
    such as BytesIO, and records the size of the underlying file for
    offset inference. Streams are not closed by the handle.

    Parameters:
        file:
            File name or seekable binary stream.
        mode:
            File open mode if `file` is file name: 'rb' (default),
            'wb', or 'ab'.

    """

    __slots__ = ('_close', '_fh', '_name', '_size')

    _fh: IO[bytes] | None
    _name: str
    _size: int
    _close: bool

    def __init__(
        self,
        file: str | os.PathLike[Any] | IO[bytes],
        /,
        mode: Literal['rb', 'wb', 'ab'] | None = None,
    ) -> None:
        mode = 'rb' if mode is None else mode
        if isinstance(file, (str, os.PathLike)):
            if mode not in {'rb', 'wb', 'ab'}:
                msg = f'invalid mode {mode!r}'
                raise ValueError(msg)
            path = os.path.realpath(os.fspath(file))
            self._name = os.path.basename(path)
            self._fh = open(path, mode)  # noqa: SIM115
            self._close = True
            logger().debug(f'<FileHandle> opened {self._name!r} {mode}')
        elif hasattr(file, 'seek'):
            if isinstance(file, io.TextIOBase):
                msg = f'{file!r} is not open in binary mode'
                raise TypeError(msg)
            self._fh = cast(IO[bytes], file)
            self._close = False
            name = getattr(file, 'name', None)
            if isinstance(name, str):
                self._name = os.path.basename(name)
            else:
                self._name = 'Unnamed binary stream'
        else:
            msg = (
                'the first parameter must be a file name '
                f'or seekable binary stream, not {type(file)!r}'
            )
            raise ValueError(msg)

        pos = self._fh.tell()
        self._size = self._fh.seek(0, os.SEEK_END)
        if mode != 'ab':
            self._fh.seek(pos)

    def close(self) -> None:
        """Close file if opened by name."""
        if self._close and self._fh is not None:
            self._fh.close()
        self._fh = None

    def tell(self) -> int:
        """Return file's current position."""
        assert self._fh is not None
        return self._fh.tell()

    def seek(self, offset: int, /) -> int:
        """Set file's current position relative to start of file."""
        assert self._fh is not None
        return self._fh.seek(offset)

    def read(self, size: int = -1, /) -> bytes:
        """Return bytes read from file, by default until end of file."""
        assert self._fh is not None
        return self._fh.read(size)

    def readline(self) -> bytes:
        """Return next line from file, including line terminator."""
        assert self._fh is not None
        return self._fh.readline()

    def write(self, buffer: bytes, /) -> int:
        """Write bytes to file and return number of bytes written."""
        assert self._fh is not None
        return self._fh.write(buffer)

    def read_array(
        self, dtype: DTypeLike, count: int, offset: int, /
    ) -> NDArray[Any]:
        """Return NumPy array of `count` items read at `offset`.

        Items are returned in stored byte order.

        Raises:
            OSError: File contains fewer bytes than requested.

        """
        assert self._fh is not None
        dtype = numpy.dtype(dtype)
        nbytes = count * dtype.itemsize
        self._fh.seek(offset)
        result = numpy.empty(count, dtype)
        n = self._fh.readinto(result)  # type: ignore[attr-defined]
        if n != nbytes:
            msg = f'{self._name!r}: failed to read {nbytes} bytes, got {n}'
            raise OSError(msg)
        return result

    def write_array(self, data: NDArray[Any], /) -> int:
        """Write NumPy array in C order and return number of bytes written."""
        assert self._fh is not None
        data = numpy.ascontiguousarray(data)
        return self._fh.write(data.tobytes())

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        return f'<metaimage.FileHandle {snipstr(self._name, 32)!r}>'

    @property
    def name(self) -> str:
        """Name of file or stream."""
        return self._name

    @property
    def size(self) -> int:
        """Size of file in bytes when opened."""
        return self._size
