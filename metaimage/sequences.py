# sequences.py

"""MetaImage data sources and multi-file stack assembly."""

from __future__ import annotations

import os
from collections.abc import Sequence
from typing import TYPE_CHECKING, final, overload

import numpy

from .utils import FormatError, asint, logger, snipstr

if TYPE_CHECKING:
    from collections.abc import Iterator
    from typing import Any

    from .codecs import PixelBuffer, RawCodec
    from .header import FileDescriptor

__all__ = [
    'DataSource',
    'ExternalFile',
    'FileList',
    'FilePattern',
    'LocalEmbedded',
    'StackAssembler',
]


class DataSource:
    """Base class of locations of pixel payloads."""

    __slots__ = ()

    @property
    def is_sequence(self) -> bool:
        """Payload is split across one file per slice."""
        return False

    def __eq__(self, other: object, /) -> bool:
        return type(self) is type(other) and self._key() == other._key()

    def __hash__(self) -> int:
        return hash((type(self).__name__, self._key()))

    def _key(self) -> tuple[Any, ...]:
        return ()


@final
class ExternalFile(DataSource):
    """Payload stored in single data file next to header.

    Parameters:
        name: Name of data file, relative to header directory.

    """

    __slots__ = ('name',)

    name: str
    """Name of data file."""

    def __init__(self, name: str, /) -> None:
        if not name:
            msg = 'empty data file name'
            raise FormatError(msg)
        self.name = name

    def _key(self) -> tuple[Any, ...]:
        return (self.name,)

    def __repr__(self) -> str:
        return f'ExternalFile({self.name!r})'


@final
class LocalEmbedded(DataSource):
    """Payload stored in header file, following the header text."""

    __slots__ = ()

    def __repr__(self) -> str:
        return 'LocalEmbedded()'


class _FileNames(DataSource, Sequence[str]):
    """Sequence of single-slice data file names in traversal order.

    Subclasses implement ``__len__`` and ``__getitem__``.

    """

    __slots__ = ()

    @property
    def is_sequence(self) -> bool:
        return True


@final
class FileList(_FileNames):
    r"""Explicit list of data file names, one slice per file.

    Names are either given, or collected from the header lines following
    the ``ElementDataFile = LIST`` line when first accessed.

    Parameters:
        names:
            Data file names.
        header:
            Header text containing ``ElementDataFile = LIST`` line.
        count:
            Maximum number of names to collect from `header`.

    Examples:
        >>> text = 'NDims = 2\nElementDataFile = LIST\na.raw b.raw\nc.raw\n'
        >>> FileList(header=text, count=2).names
        ['a.raw', 'b.raw']

    """

    __slots__ = ('_count', '_header', '_names')

    _names: list[str] | None
    _header: str
    _count: int

    def __init__(
        self,
        names: Sequence[str] | None = None,
        /,
        *,
        header: str | None = None,
        count: int | None = None,
    ) -> None:
        if names is None and header is None:
            msg = 'FileList requires names or header text'
            raise ValueError(msg)
        self._names = None if names is None else [str(n) for n in names]
        self._header = '' if header is None else header
        self._count = -1 if count is None else int(count)

    @property
    def names(self) -> list[str]:
        """Data file names."""
        if self._names is None:
            self._names = self._scan()
        return self._names

    def _scan(self) -> list[str]:
        """Return file names listed after ElementDataFile line of header."""
        names: list[str] = []
        started = False
        for line in self._header.splitlines():
            line = line.strip()
            if not started:
                started = line.startswith('ElementDataFile')
                continue
            for name in line.split():
                if 0 <= self._count <= len(names):
                    return names
                names.append(name)
        return names

    def __iter__(self) -> Iterator[str]:
        return iter(self.names)

    def __len__(self) -> int:
        return len(self.names)

    @overload
    def __getitem__(self, key: int, /) -> str: ...

    @overload
    def __getitem__(self, key: slice, /) -> list[str]: ...

    def __getitem__(self, key: int | slice, /) -> str | list[str]:
        return self.names[key]

    def _key(self) -> tuple[Any, ...]:
        return tuple(self.names)

    def __repr__(self) -> str:
        return f'FileList({snipstr(repr(self.names), 64)})'


@final
class FilePattern(_FileNames):
    """Data file names generated from printf-style template.

    Names are formatted on access. Iteration stops early without
    formatting the remaining indices.

    Parameters:
        template:
            File name template containing one integer placeholder,
            for example ``'slice%03d.raw'``.
        start:
            First index, inclusive.
        stop:
            Last index, inclusive.
        step:
            Index increment.

    Examples:
        >>> list(FilePattern('im%02d.raw', 1, 5, 2))
        ['im01.raw', 'im03.raw', 'im05.raw']

    """

    __slots__ = ('start', 'step', 'stop', 'template')

    template: str
    start: int
    stop: int
    step: int

    def __init__(
        self, template: str, start: int = 1, stop: int = 1, step: int = 1, /
    ) -> None:
        if '%' not in template:
            msg = f'{template!r} is not a file name template'
            raise FormatError(msg)
        if step < 1:
            msg = f'invalid file name pattern step {step}'
            raise FormatError(msg)
        self.template = template
        self.start = int(start)
        self.stop = int(stop)
        self.step = int(step)

    @classmethod
    def fromvalue(cls, value: str, count: int, /) -> FilePattern:
        """Return file pattern from ElementDataFile header value.

        The value holds the template followed by optional `start`
        (default 1), `stop` (default `count`), and `step` (default 1).

        Raises:
            NumericParseError: Index token is not an integer.

        """
        parts = value.split()
        start = 1
        stop = count
        step = 1
        if len(parts) > 1:
            start = asint('ElementDataFile', parts[1])
            if len(parts) > 2:
                stop = asint('ElementDataFile', parts[2])
                if len(parts) > 3:
                    step = asint('ElementDataFile', parts[3])
        return cls(parts[0], start, stop, step)

    @property
    def indices(self) -> range:
        """Indices substituted into template."""
        return range(self.start, self.stop + 1, self.step)

    def format(self, index: int, /) -> str:
        """Return file name of index."""
        try:
            return self.template % index
        except (TypeError, ValueError) as exc:
            msg = f'invalid file name template {self.template!r}'
            raise FormatError(msg) from exc

    def __iter__(self) -> Iterator[str]:
        for index in self.indices:
            yield self.format(index)

    def __len__(self) -> int:
        return len(self.indices)

    @overload
    def __getitem__(self, key: int, /) -> str: ...

    @overload
    def __getitem__(self, key: slice, /) -> list[str]: ...

    def __getitem__(self, key: int | slice, /) -> str | list[str]:
        if isinstance(key, slice):
            return [self.format(index) for index in self.indices[key]]
        return self.format(self.indices[key])

    @property
    def value(self) -> str:
        """ElementDataFile header value."""
        return f'{self.template} {self.start} {self.stop} {self.step}'

    def _key(self) -> tuple[Any, ...]:
        return (self.template, self.start, self.stop, self.step)

    def __repr__(self) -> str:
        return (
            f'FilePattern({self.template!r}, {self.start}, '
            f'{self.stop}, {self.step})'
        )


@final
class StackAssembler:
    """Assemble pixel buffer from data source of file descriptor.

    Single data files and embedded payloads are decoded in one pass.
    File lists and patterns are traversed in order, each file read as a
    single-slice image of the same descriptor, until the declared number
    of slices is collected or the names are exhausted.

    Parameters:
        descriptor:
            Parsed header.
        dirname:
            Directory against which data file names are resolved.
        headerfile:
            Path of header file, containing embedded payloads.
        headerlength:
            Length of header text in `headerfile`.
            Start of compressed embedded payloads without explicit offset.
        codec:
            Raw payload codec. By default, a new :py:class:`RawCodec`.
        biased:
            Return signed 16-bit data in biased unsigned carrier.

    """

    __slots__ = (
        'biased',
        'codec',
        'descriptor',
        'dirname',
        'headerfile',
        'headerlength',
    )

    descriptor: FileDescriptor
    dirname: str
    headerfile: str
    headerlength: int
    codec: RawCodec
    biased: bool

    def __init__(
        self,
        descriptor: FileDescriptor,
        /,
        dirname: str = '',
        *,
        headerfile: str = '',
        headerlength: int = 0,
        codec: RawCodec | None = None,
        biased: bool = False,
    ) -> None:
        if codec is None:
            from .codecs import RawCodec

            codec = RawCodec()
        self.descriptor = descriptor
        self.dirname = dirname
        self.headerfile = headerfile
        self.headerlength = headerlength
        self.codec = codec
        self.biased = bool(biased)

    def assemble(self) -> PixelBuffer:
        """Return pixel buffer of all slices."""
        source = self.descriptor.datasource
        if isinstance(source, (FileList, FilePattern)):
            return self._assemble_sequence(source)
        if isinstance(source, LocalEmbedded):
            if not self.headerfile:
                msg = 'embedded payload requires header file name'
                raise ValueError(msg)
            return self._read(self.headerfile, self.descriptor, embedded=True)
        assert isinstance(source, ExternalFile)
        path = os.path.join(self.dirname, source.name)
        return self._read(path, self.descriptor)

    def _assemble_sequence(self, source: FileList | FilePattern, /) -> PixelBuffer:
        from .codecs import PixelBuffer

        descriptor = self.descriptor
        count = descriptor.slices
        if descriptor.ndims == 3:
            single = descriptor.replace(dims=(*descriptor.dims[:2], 1))
        else:
            single = descriptor

        slices = []
        biased = False
        for name in source:
            if len(slices) >= count:
                break
            member = single.replace(datasource=ExternalFile(name))
            buffer = self._read(os.path.join(self.dirname, name), member)
            # only the first slice of each file is used
            slices.append(buffer.data[0])
            biased = buffer.biased

        if not slices:
            msg = 'no data files in sequence'
            raise FormatError(msg)
        if len(slices) < count:
            logger().warning(
                f'<StackAssembler> {len(slices)} of {count} slices found'
            )
        return PixelBuffer(
            numpy.stack(slices), descriptor.pixelformat, biased=biased
        )

    def _read(
        self,
        path: str,
        descriptor: FileDescriptor,
        /,
        *,
        embedded: bool = False,
    ) -> PixelBuffer:
        """Return pixel buffer read from single file."""
        from .fileio import FileHandle
        from .header import infer_offset

        with FileHandle(path) as fh:
            offset = descriptor.headersize
            if offset is None:
                if not descriptor.compressed:
                    offset = infer_offset(descriptor, fh.size, fh.name)
                elif embedded:
                    offset = self.headerlength
                else:
                    offset = 0
            logger().debug(f'<StackAssembler> reading {fh.name!r} @{offset}')
            return self.codec.read(fh, offset, descriptor, biased=self.biased)

    def __repr__(self) -> str:
        return f'<metaimage.StackAssembler {self.descriptor.datasource!r}>'
