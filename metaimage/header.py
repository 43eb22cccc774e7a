# header.py

"""MetaImage header parsing and generation."""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import TYPE_CHECKING, final

from .codecs import ElementType
from .enums import HEADERSTYLE, PIXELFORMAT
from .sequences import (
    DataSource,
    ExternalFile,
    FileList,
    FilePattern,
    LocalEmbedded,
)
from .utils import (
    FormatError,
    OffsetInferenceError,
    asflag,
    asfloat,
    asint,
    indent,
    logger,
    product,
)

if TYPE_CHECKING:
    from typing import Any, Literal

    from .fileio import FileHandle

__all__ = [
    'COMPRESSED_DATA_SIZE',
    'FileDescriptor',
    'header_text',
    'infer_offset',
    'parse_header',
    'read_header',
    'resolve_datafile',
]

COMPRESSED_DATA_SIZE = 9999999999999
"""Placeholder written as CompressedDataSize. Never the true size."""

LOCAL_VALUES = frozenset(('LOCAL', 'Local', 'local'))
"""ElementDataFile values denoting payload embedded in header file."""

_KEYVALUE = re.compile(r'^\s*([^\s=:]+)\s*[=:]?\s*(.*?)\s*$')


@final
class FileDescriptor:
    """Immutable description of MetaImage pixel payload.

    Parameters:
        dims:
            Width, height, and optional number of slices.
        pixelformat:
            Pixel format of payload.
        spacing:
            Physical size of pixel along each dimension.
            The default is 1.0 per dimension.
        channels:
            Number of interleaved channels. Must be 3 for RGB pixel
            formats and 1 otherwise. By default, derived from `pixelformat`.
        bigendian:
            Multi-byte elements are stored most significant byte first.
        compressed:
            Payload is deflate compressed.
        headersize:
            Position of payload in data source.
            If *None*, the position is inferred from the data source size.
        datasource:
            Location of payload. The default is :py:class:`LocalEmbedded`.

    Raises:
        FormatError: Any value violates an invariant.

    """

    __slots__ = (
        '_bigendian',
        '_channels',
        '_compressed',
        '_datasource',
        '_dims',
        '_headersize',
        '_pixelformat',
        '_spacing',
    )

    _dims: tuple[int, ...]
    _spacing: tuple[float, ...]
    _pixelformat: PIXELFORMAT
    _channels: int
    _bigendian: bool
    _compressed: bool
    _headersize: int | None
    _datasource: DataSource

    def __init__(
        self,
        dims: Sequence[int],
        pixelformat: PIXELFORMAT | int,
        /,
        *,
        spacing: Sequence[float] | None = None,
        channels: int | None = None,
        bigendian: bool = False,
        compressed: bool = False,
        headersize: int | None = None,
        datasource: DataSource | None = None,
    ) -> None:
        dims = tuple(int(i) for i in dims)
        if len(dims) not in {2, 3}:
            msg = f'unsupported dimensions {len(dims)}'
            raise FormatError(msg)
        if any(i < 1 for i in dims):
            msg = f'invalid dimension sizes {dims}'
            raise FormatError(msg)

        if spacing is None:
            spacing = (1.0,) * len(dims)
        spacing = tuple(float(i) for i in spacing)
        if len(spacing) != len(dims):
            msg = f'{len(spacing)} element sizes for {len(dims)} dimensions'
            raise FormatError(msg)

        try:
            pixelformat = PIXELFORMAT(pixelformat)
        except ValueError as exc:
            msg = f'invalid pixel format {pixelformat!r}'
            raise FormatError(msg) from exc
        if channels is None:
            channels = pixelformat.channels
        elif channels != pixelformat.channels:
            msg = f'{pixelformat!r} requires {pixelformat.channels} channels'
            raise FormatError(msg)

        if headersize is not None and headersize < 0:
            msg = f'invalid header size {headersize}'
            raise FormatError(msg)

        if datasource is None:
            datasource = LocalEmbedded()
        elif not isinstance(datasource, DataSource):
            msg = f'invalid data source {datasource!r}'
            raise FormatError(msg)

        self._dims = dims
        self._spacing = spacing
        self._pixelformat = pixelformat
        self._channels = int(channels)
        self._bigendian = bool(bigendian)
        self._compressed = bool(compressed)
        self._headersize = headersize
        self._datasource = datasource

    def replace(self, **kwargs: Any) -> FileDescriptor:
        """Return copy of descriptor with some values replaced."""
        dims = kwargs.pop('dims', self._dims)
        pixelformat = kwargs.pop('pixelformat', self._pixelformat)
        values: dict[str, Any] = {
            'spacing': self._spacing,
            'bigendian': self._bigendian,
            'compressed': self._compressed,
            'headersize': self._headersize,
            'datasource': self._datasource,
        }
        values.update(kwargs)
        return FileDescriptor(dims, pixelformat, **values)

    @property
    def ndims(self) -> int:
        """Number of dimensions, 2 or 3."""
        return len(self._dims)

    @property
    def dims(self) -> tuple[int, ...]:
        """Width, height, and number of slices if three-dimensional."""
        return self._dims

    @property
    def spacing(self) -> tuple[float, ...]:
        """Physical size of pixel along each dimension."""
        return self._spacing

    @property
    def width(self) -> int:
        """Number of columns."""
        return self._dims[0]

    @property
    def height(self) -> int:
        """Number of rows."""
        return self._dims[1]

    @property
    def slices(self) -> int:
        """Number of two-dimensional slices."""
        return self._dims[2] if len(self._dims) > 2 else 1

    @property
    def pixelformat(self) -> PIXELFORMAT:
        """Pixel format of payload."""
        return self._pixelformat

    @property
    def channels(self) -> int:
        """Number of interleaved channels."""
        return self._channels

    @property
    def bigendian(self) -> bool:
        """Multi-byte elements are stored most significant byte first."""
        return self._bigendian

    @property
    def byteorder(self) -> Literal['>', '<']:
        """Byte order of payload."""
        return '>' if self._bigendian else '<'

    @property
    def compressed(self) -> bool:
        """Payload is deflate compressed."""
        return self._compressed

    @property
    def headersize(self) -> int | None:
        """Position of payload in data source, or None to infer."""
        return self._headersize

    @property
    def datasource(self) -> DataSource:
        """Location of payload."""
        return self._datasource

    @property
    def shape(self) -> tuple[int, ...]:
        """Shape of pixel array: slices, height, width, and channels."""
        shape: tuple[int, ...] = (self.slices, self.height, self.width)
        if self._channels > 1:
            shape += (self._channels,)
        return shape

    @property
    def payload_size(self) -> int:
        """Number of bytes of uncompressed payload."""
        return ElementType.bytes_per_element(self._pixelformat) * product(
            self.shape[:3]
        )

    def __eq__(self, other: object, /) -> bool:
        return isinstance(other, FileDescriptor) and all(
            getattr(self, attr) == getattr(other, attr)
            for attr in FileDescriptor.__slots__
        )

    def __hash__(self) -> int:
        return hash(tuple(getattr(self, a) for a in FileDescriptor.__slots__))

    def __repr__(self) -> str:
        dims = 'x'.join(str(i) for i in self._dims)
        return f'<metaimage.FileDescriptor {dims} {self._pixelformat.name}>'

    def __str__(self) -> str:
        return indent(
            repr(self),
            f'spacing: {self._spacing}',
            f'channels: {self._channels}',
            f'byteorder: {self.byteorder}',
            f'compressed: {self._compressed}',
            f'headersize: {self._headersize}',
            f'datasource: {self._datasource!r}',
        )


def infer_offset(
    descriptor: FileDescriptor, size: int, filename: str = '', /
) -> int:
    """Return position of payload from size of data source.

    The payload is assumed to occupy the end of the data source.

    Parameters:
        descriptor: File descriptor of payload in data source.
        size: Size of data source in bytes.
        filename: Name of data source used in error messages.

    Raises:
        OffsetInferenceError: Data source is smaller than payload.

    """
    expected = descriptor.payload_size
    offset = size - expected
    if offset < 0:
        raise OffsetInferenceError(filename, size, expected)
    return offset


def read_header(fh: FileHandle, /) -> tuple[str, int]:
    """Return header text and length from file.

    Lines are read up to and including the ElementDataFile line.
    For ``ElementDataFile = LIST`` the remaining lines are included in the
    text but not in the length.

    """
    fh.seek(0)
    lines = []
    length = 0
    while True:
        line = fh.readline()
        if not line:
            length = fh.tell()
            break
        text = line.decode('latin-1')
        lines.append(text)
        match = _KEYVALUE.match(text)
        if match is not None and match.group(1) == 'ElementDataFile':
            length = fh.tell()
            if match.group(2).split()[:1] == ['LIST']:
                lines.append(fh.read().decode('latin-1'))
            break
    return ''.join(lines), length


def _keyvalues(text: str, /) -> dict[str, str]:
    """Return key-value pairs of header up to ElementDataFile line."""
    result = {}
    for line in text.splitlines():
        if not line.strip() or line.lstrip()[:1] in {'#', '!'}:
            continue
        match = _KEYVALUE.match(line)
        if match is None:
            continue
        key, value = match.groups()
        result[key] = value
        if key == 'ElementDataFile':
            break
    return result


def parse_header(
    text: str,
    /,
    basename: str,
    headername: str,
    *,
    embedded: bool = False,
) -> FileDescriptor:
    """Return file descriptor parsed from header text.

    Parameters:
        text:
            Header text of ``Key = Value`` lines.
        basename:
            Header file name without extension.
            Used to name the default ``<basename>.raw`` data file.
        headername:
            Header file name.
        embedded:
            Payload follows header in the same file if not otherwise
            specified, as in ``.mha`` files.

    Raises:
        FormatError:
            Required key is missing or value is not supported.
        NumericParseError:
            Number in header value is malformed.

    """
    keys = _keyvalues(text)

    objecttype = keys.get('ObjectType')
    if objecttype is None or objecttype.lower() != 'image':
        msg = f'{headername!r} does not contain an image'
        raise FormatError(msg)

    if 'NDims' not in keys:
        msg = f'{headername!r} does not specify NDims'
        raise FormatError(msg)
    ndims = asint('NDims', keys['NDims'])
    if ndims not in {2, 3}:
        msg = f'unsupported dimensions NDims = {ndims}'
        raise FormatError(msg)

    if 'DimSize' not in keys:
        msg = f'{headername!r} does not specify DimSize'
        raise FormatError(msg)
    parts = keys['DimSize'].split()
    if len(parts) < ndims:
        msg = f'invalid DimSize = {keys["DimSize"]!r} for NDims = {ndims}'
        raise FormatError(msg)
    sizes = [asint('DimSize', part) for part in parts]
    dims = sizes[:2]
    if ndims == 3:
        # collapse higher dimensions into slices
        dims.append(product(sizes[2:]))

    spacing = [1.0, 1.0, 1.0]
    elementsize = keys.get('ElementSize', keys.get('ElementSpacing'))
    if elementsize is not None:
        for i, part in enumerate(elementsize.split()[:3]):
            spacing[i] = asfloat('ElementSize', part)

    channels = asint(
        'ElementNumberOfChannels', keys.get('ElementNumberOfChannels', '1')
    )
    pixelformat = ElementType.fromtag(
        keys.get('ElementType', 'MET_NONE'), channels
    )

    msb = keys.get('ElementByteOrderMSB')
    if msb is None:
        msb = keys.get('BinaryDataByteOrderMSB')
    bigendian = asflag(msb)

    if not asflag(keys.get('BinaryData', 'True')):
        logger().warning(
            f'<parse_header> {headername!r}: BinaryData = False '
            'is not supported, reading as binary'
        )
    compressed = asflag(keys.get('CompressedData'))

    headersize: int | None = asint('HeaderSize', keys.get('HeaderSize', '0'))
    if headersize == -1:
        headersize = None
    elif headersize is not None and headersize < 0:
        msg = f'invalid HeaderSize = {headersize}'
        raise FormatError(msg)

    datasource = resolve_datafile(
        keys.get('ElementDataFile'),
        basename,
        headername,
        embedded=embedded,
        header=text,
        count=dims[2] if ndims == 3 else 1,
    )
    if isinstance(datasource, LocalEmbedded) and 'HeaderSize' not in keys:
        headersize = None

    return FileDescriptor(
        dims,
        pixelformat,
        spacing=spacing[:ndims],
        channels=channels,
        bigendian=bigendian,
        compressed=compressed,
        headersize=headersize,
        datasource=datasource,
    )


def resolve_datafile(
    value: str | None,
    /,
    basename: str,
    headername: str,
    *,
    embedded: bool = False,
    header: str = '',
    count: int = 1,
) -> DataSource:
    """Return data source of ElementDataFile header value.

    Parameters:
        value:
            Value of ElementDataFile key, or *None* if absent.
        basename:
            Header file name without extension.
        headername:
            Header file name.
        embedded:
            Absent value denotes payload embedded in header file.
            Else, the payload is in ``<basename>.raw``.
        header:
            Header text, from which LIST file names are collected.
        count:
            Number of slices declared in header.

    """
    value = '' if value is None else value.strip()
    if not value:
        if embedded:
            return LocalEmbedded()
        return ExternalFile(basename + '.raw')
    if value in LOCAL_VALUES:
        return LocalEmbedded()
    if value.split()[0] == 'LIST':
        return FileList(header=header, count=count)
    if '%' in value:
        return FilePattern.fromvalue(value, count)
    logger().debug(f'<resolve_datafile> {headername!r} -> {value!r}')
    return ExternalFile(value)


def header_text(
    descriptor: FileDescriptor, datafile: str | None = None, /
) -> str:
    """Return header text of file descriptor.

    Uncompressed payloads are described in :py:attr:`HEADERSTYLE.PLAIN`,
    compressed payloads in :py:attr:`HEADERSTYLE.COMPRESSED` style.
    The CompressedDataSize value is a placeholder.

    Parameters:
        descriptor:
            File descriptor to serialize.
        datafile:
            ElementDataFile value.
            By default, derived from the descriptor's data source.

    """
    style = HEADERSTYLE.COMPRESSED if descriptor.compressed else HEADERSTYLE.PLAIN
    msb = 'True' if descriptor.bigendian else 'False'
    tag, channels = ElementType.totag(descriptor.pixelformat)

    if datafile is None:
        source = descriptor.datasource
        if isinstance(source, LocalEmbedded):
            datafile = 'LOCAL'
        elif isinstance(source, ExternalFile):
            datafile = source.name
        elif isinstance(source, FilePattern):
            datafile = source.value
        elif isinstance(source, FileList):
            datafile = '\n'.join(('LIST', *source.names))
        else:
            msg = f'cannot write {source!r}'
            raise FormatError(msg)

    lines = [
        'ObjectType = Image',
        f'NDims = {descriptor.ndims}',
        'BinaryData = True',
    ]
    if style == HEADERSTYLE.COMPRESSED:
        lines.extend(
            (
                f'BinaryDataByteOrderMSB = {msb}',
                'CompressedData = True',
                f'CompressedDataSize = {COMPRESSED_DATA_SIZE}',
            )
        )
    else:
        lines.append(f'ElementByteOrderMSB = {msb}')
    lines.append('DimSize = ' + ' '.join(str(i) for i in descriptor.dims))
    lines.append(
        'ElementSize = ' + ' '.join(str(float(i)) for i in descriptor.spacing)
    )
    if channels != 1:
        lines.append(f'ElementNumberOfChannels = {channels}')
    lines.append(f'ElementType = {tag}')
    lines.append(f'ElementDataFile = {datafile}')
    return '\n'.join(lines) + '\n'
