# metaimage.py

# Copyright (c) 2008-2026, Christoph Gohlke
# All rights reserved.
#
# Redistribution and use in source and binary forms, with or without
# modification, are permitted provided that the following conditions are met:
#
# 1. Redistributions of source code must retain the above copyright notice,
#    this list of conditions and the following disclaimer.
#
# 2. Redistributions in binary form must reproduce the above copyright notice,
#    this list of conditions and the following disclaimer in the documentation
#    and/or other materials provided with the distribution.
#
# 3. Neither the name of the copyright holder nor the names of its
#    contributors may be used to endorse or promote products derived from
#    this software without specific prior written permission.
#
# THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS"
# AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
# IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE
# ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE
# LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR
# CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF
# SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS
# INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN
# CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE)
# ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE
# POSSIBILITY OF SUCH DAMAGE.

r"""Read and write MetaImage files.

Metaimage is a Python library to

(1) read N-dimensional scientific images from MetaImage (MHD/MHA) files
    as NumPy arrays, and
(2) store NumPy arrays in MetaImage files.

A MetaImage file pairs a small ``Key = Value`` text header, describing
shape, spacing, element type, and byte order of the image, with a raw
pixel payload. The payload is either stored in a separate data file
(``.mhd`` header and ``.raw`` data), embedded after the header (``.mha``),
deflate compressed, or split across a list or printf-style pattern of
single-slice files.

Supported element types are MET_UCHAR, MET_SHORT, MET_USHORT, MET_INT,
MET_UINT, MET_FLOAT, and three-channel MET_UCHAR_ARRAY and
MET_USHORT_ARRAY. Images have two or three dimensions; higher dimensions
are collapsed into the slice axis.

:License: BSD-3-Clause
:Version: 2026.10.18

Requirements
------------

- `CPython <https://www.python.org>`_ 3.11 or newer
- `NumPy <https://pypi.org/project/numpy>`_
- `Imagecodecs <https://pypi.org/project/imagecodecs/>`_
  (required for deflate compressed payloads)
- `Matplotlib <https://pypi.org/project/matplotlib/>`_
  (required only for plotting)

Examples
--------

Write a NumPy array to a compressed, single-file MetaImage:

>>> data = numpy.arange(500, dtype=numpy.float32).reshape((5, 10, 10))
>>> imwrite('temp.mha', data, spacing=(0.5, 0.5, 2.0), compress=True)
<metaimage.FileDescriptor 10x10x5 F32>

Read the image back as NumPy array:

>>> image = imread('temp.mha')
>>> numpy.array_equal(image, data)
True

Inspect the header:

>>> with MetaImageFile('temp.mha') as mim:
...     mim.descriptor.spacing
...
(0.5, 0.5, 2.0)

"""

from __future__ import annotations

__version__ = '2026.10.18'

__all__ = [
    'COMPRESSED_DATA_SIZE',
    'HEADERSTYLE',
    'META',
    'PIXELFORMAT',
    'DataSource',
    'DeflateCodec',
    'ElementType',
    'ExternalFile',
    'FileDescriptor',
    'FileHandle',
    'FileList',
    'FilePattern',
    'FormatError',
    'FormatHandler',
    'LocalEmbedded',
    'MetaImageError',
    'MetaImageFile',
    'MetaImageHandler',
    'MetaImageWriter',
    'NumericParseError',
    'OffsetInferenceError',
    'PixelBuffer',
    'RawCodec',
    'StackAssembler',
    '__version__',
    'header_text',
    'imread',
    'imwrite',
    'infer_offset',
    'logger',
    'main',
    'parse_header',
    'read_header',
    'resolve_datafile',
    'try_decode',
]

import logging
import os
import sys
from collections.abc import Sequence
from functools import cached_property
from typing import TYPE_CHECKING, final

import numpy

if TYPE_CHECKING:
    from types import TracebackType
    from typing import Any, Literal, Self

    from numpy.typing import ArrayLike, NDArray

from .codecs import DeflateCodec, ElementType, PixelBuffer, RawCodec
from .enums import HEADERSTYLE, PIXELFORMAT
from .fileio import FileHandle, Timer
from .header import (
    COMPRESSED_DATA_SIZE,
    FileDescriptor,
    header_text,
    infer_offset,
    parse_header,
    read_header,
    resolve_datafile,
)
from .sequences import (
    DataSource,
    ExternalFile,
    FileList,
    FilePattern,
    LocalEmbedded,
    StackAssembler,
)
from .utils import (
    FormatError,
    MetaImageError,
    NumericParseError,
    OffsetInferenceError,
    format_size,
    host_byteorder,
    indent,
    logger,
    snipstr,
)


def imread(
    file: str | os.PathLike[Any],
    /,
    *,
    squeeze: bool = True,
    biased: bool = False,
) -> NDArray[Any]:
    """Return image from MetaImage file as NumPy array.

    Parameters:
        file:
            Name of header file (``.mhd`` or ``.mha``), or of raw data
            file (``.raw``) next to a ``.mhd`` header.
        squeeze:
            Remove slice axis of single slice images.
        biased:
            Return signed 16-bit images as unsigned 16-bit carrier
            offset by +32768.
    Returns:
        Array of shape ``(slices, height, width)`` or
        ``(height, width)``, with a trailing channel axis for RGB images.

    """
    with MetaImageFile(file) as mim:
        return mim.asarray(squeeze=squeeze, biased=biased)


def imwrite(
    file: str | os.PathLike[Any],
    /,
    data: ArrayLike | PixelBuffer,
    *,
    pixelformat: PIXELFORMAT | int | None = None,
    spacing: Sequence[float] | None = None,
    byteorder: Literal['>', '<', '='] | None = None,
    compress: bool = False,
    level: int | None = None,
    biased: bool = False,
    datafile: str | Sequence[str] | None = None,
) -> FileDescriptor:
    """Write NumPy array to MetaImage file(s).

    Refer to the :py:class:`MetaImageWriter` class and its
    :py:meth:`MetaImageWriter.write` method for documentation.

    Returns:
        File descriptor of written header.

    """
    with MetaImageWriter(file, compress=compress, level=level) as writer:
        return writer.write(
            data,
            pixelformat=pixelformat,
            spacing=spacing,
            byteorder=byteorder,
            biased=biased,
            datafile=datafile,
        )


class MetaImageFile:
    """Read image and header from MetaImage file.

    MetaImageFile instances do not keep files open. Each call to
    :py:meth:`MetaImageFile.asbuffer` opens and closes the data files.

    Parameters:
        file:
            Name of header file (``.mhd`` or ``.mha``), or of raw data
            file (``.raw``) next to a ``.mhd`` header.

    Raises:
        FormatError, NumericParseError:
            Header is not a supported MetaImage header.
        OSError:
            Header file cannot be read.

    """

    descriptor: FileDescriptor
    """File descriptor parsed from header."""

    header: str
    """Header text."""

    headerlength: int
    """Length of header text in header file."""

    _path: str
    _codec: RawCodec

    def __init__(self, file: str | os.PathLike[Any], /) -> None:
        path = os.path.realpath(os.fspath(file))
        dirname, filename = os.path.split(path)
        basename, ext = os.path.splitext(filename)
        ext = ext.lower()
        if ext == '.raw':
            filename = basename + '.mhd'
            path = os.path.join(dirname, filename)
        elif ext not in {'.mhd', '.mha'}:
            basename = filename

        with FileHandle(path) as fh:
            self.header, self.headerlength = read_header(fh)
        self.descriptor = parse_header(
            self.header, basename, filename, embedded=ext == '.mha'
        )
        self._path = path
        self._codec = RawCodec()
        logger().debug(f'<MetaImageFile> {filename!r} {self.descriptor!r}')

    @property
    def filename(self) -> str:
        """Name of header file."""
        return os.path.basename(self._path)

    @property
    def dirname(self) -> str:
        """Directory containing header file."""
        return os.path.dirname(self._path)

    @property
    def path(self) -> str:
        """Absolute path of header file."""
        return self._path

    @property
    def shape(self) -> tuple[int, ...]:
        """Declared shape of image: slices, height, width, and channels."""
        return self.descriptor.shape

    @property
    def dtype(self) -> numpy.dtype[Any]:
        """NumPy dtype of image."""
        return ElementType.dtype(self.descriptor.pixelformat)

    def asbuffer(self, *, biased: bool = False) -> PixelBuffer:
        """Return pixel buffer assembled from data source(s).

        Parameters:
            biased:
                Return signed 16-bit images as unsigned 16-bit carrier
                offset by +32768.

        Raises:
            OSError:
                Data file cannot be read or is truncated.
            OffsetInferenceError:
                Data file is smaller than declared payload.

        """
        assembler = StackAssembler(
            self.descriptor,
            self.dirname,
            headerfile=self._path,
            headerlength=self.headerlength,
            codec=self._codec,
            biased=biased,
        )
        return assembler.assemble()

    def asarray(
        self, *, squeeze: bool = True, biased: bool = False
    ) -> NDArray[Any]:
        """Return image as NumPy array.

        Parameters:
            squeeze:
                Remove slice axis of two-dimensional images.
            biased:
                Passed to :py:meth:`MetaImageFile.asbuffer`.

        """
        buffer = self.asbuffer(biased=biased)
        return buffer.asarray(
            squeeze=squeeze and self.descriptor.ndims == 2
        )

    def close(self) -> None:
        """Close file. No files are kept open."""

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
        return f'<metaimage.MetaImageFile {snipstr(self.filename, 32)!r}>'

    def __str__(self) -> str:
        return indent(
            repr(self),
            f'header: {self.headerlength} bytes',
            self.descriptor,
        )


class MetaImageWriter:
    """Write NumPy arrays to MetaImage files.

    Header and data file names are derived from `file`:

    - ``*.mha``: payload embedded after header (``ElementDataFile = LOCAL``).
    - ``*.mhd``: payload in ``<base>.raw``.
    - other names: ``.mha`` is appended if `compress` is true,
      else ``.mhd``.

    A failed write may leave partially written files.

    Parameters:
        file:
            Name of header file.
        compress:
            Deflate compress payload and write header in
            :py:attr:`HEADERSTYLE.COMPRESSED` style.
        level:
            Deflate compression level.

    """

    compress: bool
    """Payload is deflate compressed."""

    _path: str
    _codec: RawCodec

    def __init__(
        self,
        file: str | os.PathLike[Any],
        /,
        *,
        compress: bool = False,
        level: int | None = None,
    ) -> None:
        path = os.path.abspath(os.fspath(file))
        ext = os.path.splitext(path)[1].lower()
        if ext not in {'.mha', '.mhd'}:
            path += '.mha' if compress else '.mhd'
        self._path = path
        self._codec = RawCodec(level)
        self.compress = bool(compress)

    @property
    def filename(self) -> str:
        """Name of header file."""
        return os.path.basename(self._path)

    @property
    def dirname(self) -> str:
        """Directory containing header file."""
        return os.path.dirname(self._path)

    @property
    def embedded(self) -> bool:
        """Payload is written after header in same file."""
        return self._path.lower().endswith('.mha')

    def write(
        self,
        data: ArrayLike | PixelBuffer,
        /,
        *,
        pixelformat: PIXELFORMAT | int | None = None,
        spacing: Sequence[float] | None = None,
        byteorder: Literal['>', '<', '='] | None = None,
        biased: bool = False,
        datafile: str | Sequence[str] | None = None,
    ) -> FileDescriptor:
        """Write header and payload.

        Parameters:
            data:
                Image of shape ``(height, width)`` or
                ``(slices, height, width)``, with a trailing channel axis
                of length 3 for RGB images, or pixel buffer.
            pixelformat:
                Pixel format of `data`.
                By default, derived from the dtype and shape of `data`.
            spacing:
                Physical size of pixel along width, height, and slices.
                The default is 1.0 per dimension.
            byteorder:
                Byte order of payload. The default is the host byte order.
            biased:
                `data` holds signed 16-bit values in unsigned 16-bit
                carrier offset by +32768. The array is restored after
                writing.
            datafile:
                Name of data file, list of single-slice data file names,
                or printf-style template of single-slice data file names.
                By default, ``<base>.raw`` or embedded in ``.mha`` files.

        Returns:
            File descriptor of written header.

        """
        if isinstance(data, PixelBuffer):
            buffer = data
        else:
            buffer = PixelBuffer(data, pixelformat, biased=biased)

        if byteorder is None or byteorder == '=':
            byteorder = host_byteorder()
        if byteorder not in {'>', '<'}:
            msg = f'invalid byteorder {byteorder!r}'
            raise ValueError(msg)

        datasource = self._datasource(datafile, buffer.slices)
        ndims = 3 if buffer.slices > 1 or datasource.is_sequence else 2
        dims = (buffer.width, buffer.height, buffer.slices)[:ndims]
        if spacing is None:
            spacing = (1.0,) * ndims
        else:
            spacing = (*tuple(spacing)[:ndims], *(1.0,) * ndims)[:ndims]

        descriptor = FileDescriptor(
            dims,
            buffer.pixelformat,
            spacing=spacing,
            bigendian=byteorder == '>',
            compressed=self.compress,
            datasource=datasource,
        )

        with FileHandle(self._path, 'wb') as fh:
            fh.write(header_text(descriptor).encode('latin-1'))
        logger().debug(f'<MetaImageWriter> wrote header {self.filename!r}')

        if isinstance(datasource, LocalEmbedded):
            with FileHandle(self._path, 'ab') as fh:
                self._codec.write(fh, descriptor, buffer)
        elif isinstance(datasource, ExternalFile):
            path = os.path.join(self.dirname, datasource.name)
            with FileHandle(path, 'wb') as fh:
                self._codec.write(fh, descriptor, buffer)
        else:
            single = descriptor.replace(dims=(*dims[:2], 1))
            for index, name in enumerate(datasource):
                member = PixelBuffer(
                    buffer.data[index : index + 1],
                    buffer.pixelformat,
                    biased=buffer.biased,
                )
                path = os.path.join(self.dirname, name)
                with FileHandle(path, 'wb') as fh:
                    self._codec.write(fh, single, member)
        return descriptor

    def _datasource(
        self, datafile: str | Sequence[str] | None, slices: int, /
    ) -> DataSource:
        """Return data source of payload to be written."""
        if datafile is None:
            if self.embedded:
                return LocalEmbedded()
            return ExternalFile(os.path.splitext(self.filename)[0] + '.raw')
        if isinstance(datafile, str):
            if '%' in datafile:
                return FilePattern(datafile, 1, slices, 1)
            if self.embedded:
                msg = f'{self.filename!r} cannot refer to a data file'
                raise ValueError(msg)
            return ExternalFile(datafile)
        names = [str(name) for name in datafile]
        if len(names) != slices:
            msg = f'{len(names)} data file names for {slices} slices'
            raise ValueError(msg)
        return FileList(names)

    def close(self) -> None:
        """Close writer. No files are kept open."""

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
        return f'<metaimage.MetaImageWriter {snipstr(self.filename, 32)!r}>'


class FormatHandler:
    """Base class of image file format handlers.

    Handlers are registered in :py:attr:`META.HANDLERS` by file name
    extension.

    """

    name: str = ''
    """Name of file format."""

    extensions: tuple[str, ...] = ()
    """Lower-case file name extensions, including dot."""

    def match(self, path: str | os.PathLike[Any], /) -> bool:
        """Return if file name extension is handled."""
        return os.path.splitext(os.fspath(path))[1].lower() in self.extensions

    def decode(self, path: str | os.PathLike[Any], /) -> PixelBuffer:
        """Return pixel buffer decoded from file."""
        raise NotImplementedError

    def try_decode(self, path: str | os.PathLike[Any], /) -> PixelBuffer | None:
        """Return pixel buffer decoded from file, or None on failure.

        Failures are logged.

        """
        try:
            return self.decode(path)
        except (MetaImageError, OSError) as exc:
            logger().error(
                f'<{self.__class__.__name__}.try_decode> {os.fspath(path)!r} '
                f'raised {exc!r:.128}'
            )
        return None

    def __repr__(self) -> str:
        return f'<metaimage.{self.__class__.__name__} {self.name!r}>'


@final
class MetaImageHandler(FormatHandler):
    """MetaImage format handler."""

    name = 'MetaImage'
    extensions = ('.mhd', '.mha', '.raw')

    def decode(self, path: str | os.PathLike[Any], /) -> PixelBuffer:
        with MetaImageFile(path) as mim:
            return mim.asbuffer()


def try_decode(path: str | os.PathLike[Any], /) -> PixelBuffer | None:
    """Return pixel buffer decoded by handler registered for file extension.

    Return *None* if no handler is registered for the extension or
    decoding failed.

    """
    ext = os.path.splitext(os.fspath(path))[1].lower()
    handler = META.HANDLERS.get(ext)
    if handler is None:
        logger().debug(f'<try_decode> no handler for {ext!r}')
        return None
    return handler.try_decode(path)


class _META:
    """Delay-loaded constants, accessible via :py:attr:`META` instance."""

    @cached_property
    def HANDLERS(self) -> dict[str, FormatHandler]:
        """Map lower-case file name extension to format handler."""
        handlers: dict[str, FormatHandler] = {}
        for handler in (MetaImageHandler(),):
            for ext in handler.extensions:
                handlers[ext] = handler
        return handlers

    @property
    def FILE_EXTENSIONS(self) -> tuple[str, ...]:
        """Known MetaImage file extensions."""
        return tuple(ext[1:] for ext in MetaImageHandler.extensions)

    @property
    def COMPRESSED_DATA_SIZE(self) -> int:
        """Placeholder written as CompressedDataSize value."""
        return COMPRESSED_DATA_SIZE


META = _META()


def main() -> int:
    """Metaimage command line usage main function."""
    import optparse

    logger().setLevel(logging.INFO)

    parser = optparse.OptionParser(
        usage='usage: %prog [options] path',
        description='Display image and header of MetaImage file.',
        version=f'%prog {__version__}',
        prog='metaimage',
    )
    opt = parser.add_option
    opt(
        '--convert',
        dest='convert',
        metavar='PATH',
        default=None,
        help='write image to another MetaImage file',
    )
    opt(
        '--compress',
        dest='compress',
        action='store_true',
        default=False,
        help='deflate compress converted payload',
    )
    opt(
        '--level',
        dest='level',
        type='int',
        default=None,
        help='deflate compression level',
    )
    opt(
        '--plot',
        dest='plot',
        action='store_true',
        default=False,
        help='display middle slice using matplotlib',
    )
    opt(
        '--debug',
        dest='debug',
        action='store_true',
        default=False,
        help='raise exception on failures',
    )
    opt('-q', '--quiet', dest='quiet', action='store_true')

    settings, path_list = parser.parse_args()
    path = ' '.join(path_list)
    if not path:
        parser.error('No file specified')

    if settings.debug:
        logging.basicConfig(level=logging.DEBUG)

    if not settings.quiet:
        print('\nReading MetaImage header:', end=' ', flush=True)
    timer = Timer()
    try:
        mim = MetaImageFile(path)
    except (MetaImageError, OSError) as exc:
        if settings.debug:
            raise
        print(f'\n\n{exc.__class__.__name__}: {exc}')
        return 1
    if not settings.quiet:
        print(timer)
        print('Reading image data:', end=' ', flush=True)

    timer.start()
    try:
        buffer = mim.asbuffer()
    except (MetaImageError, OSError) as exc:
        if settings.debug:
            raise
        print(f'\n\n{exc.__class__.__name__}: {exc}')
        return 1

    if not settings.quiet:
        print(timer)
        print()
        print(mim.header.split('ElementDataFile')[0].rstrip())
        print()
        print(mim)
        print()
        print(buffer)
        print(f'  size: {format_size(buffer.nbytes)}')
        print(f'  min, max: {buffer.data.min()}, {buffer.data.max()}')
        print()

    if settings.convert:
        descriptor = imwrite(
            settings.convert,
            buffer,
            spacing=mim.descriptor.spacing,
            compress=settings.compress,
            level=settings.level,
        )
        logger().info(f'<main> wrote {settings.convert!r} {descriptor!r}')

    if settings.plot:
        try:
            from matplotlib import pyplot
        except ImportError as exc:
            logger().warning(f'<metaimage.main> raised {exc!r:.128}')
        else:
            image = buffer.data[buffer.slices // 2]
            figure = pyplot.figure()
            figure.canvas.manager.set_window_title(mim.filename)
            pyplot.imshow(
                image, cmap=None if buffer.channels == 3 else 'gray'
            )
            pyplot.title(f'{mim.filename}\n{mim.descriptor!r}')
            pyplot.show()

    return 0


if __name__ == '__main__':
    sys.exit(main())
