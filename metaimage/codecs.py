# codecs.py

"""MetaImage element type, compression, and raw payload codec classes."""

from __future__ import annotations

import os
from collections.abc import Callable
from typing import TYPE_CHECKING, final

import imagecodecs
import numpy

from .enums import PIXELFORMAT
from .utils import (
    FormatError,
    byteorder_isnative,
    indent,
    logger,
    product,
)

if TYPE_CHECKING:
    from typing import Any

    from numpy.typing import ArrayLike, DTypeLike, NDArray

    from .fileio import FileHandle
    from .header import FileDescriptor

__all__ = [
    'DeflateCodec',
    'ElementType',
    'PixelBuffer',
    'RawCodec',
]

SIGNED16_BIAS = 32768
"""Offset between signed 16-bit values and their unsigned carrier."""


@final
class ElementType:
    """Map MetaImage `ElementType` tags and channels to pixel formats.

    The table is fixed: six scalar tags with one channel and two array
    tags with three channels.

    >>> ElementType.fromtag('MET_SHORT', 1)
    <PIXELFORMAT.I16: 2>
    >>> ElementType.totag(PIXELFORMAT.RGB8)
    ('MET_UCHAR_ARRAY', 3)

    """

    TAGS: dict[tuple[str, int], PIXELFORMAT] = {
        ('MET_UCHAR', 1): PIXELFORMAT.U8,
        ('MET_SHORT', 1): PIXELFORMAT.I16,
        ('MET_USHORT', 1): PIXELFORMAT.U16,
        ('MET_INT', 1): PIXELFORMAT.I32,
        ('MET_UINT', 1): PIXELFORMAT.U32,
        ('MET_FLOAT', 1): PIXELFORMAT.F32,
        ('MET_UCHAR_ARRAY', 3): PIXELFORMAT.RGB8,
        ('MET_USHORT_ARRAY', 3): PIXELFORMAT.RGB16,
    }
    """Map ElementType tag and ElementNumberOfChannels to PIXELFORMAT."""

    FORMATS: dict[PIXELFORMAT, tuple[str, int]] = {
        value: key for key, value in TAGS.items()
    }
    """Map PIXELFORMAT to ElementType tag and ElementNumberOfChannels."""

    DTYPES: dict[PIXELFORMAT, str] = {
        PIXELFORMAT.U8: 'B',
        PIXELFORMAT.I16: 'h',
        PIXELFORMAT.U16: 'H',
        PIXELFORMAT.I32: 'i',
        PIXELFORMAT.U32: 'I',
        PIXELFORMAT.F32: 'f',
        PIXELFORMAT.RGB8: 'B',
        PIXELFORMAT.RGB16: 'H',
    }
    """Map PIXELFORMAT to NumPy dtype character of one channel."""

    @staticmethod
    def fromtag(tag: str, channels: int, /) -> PIXELFORMAT:
        """Return pixel format of ElementType tag and number of channels.

        Raises:
            FormatError: Combination of tag and channels is not supported.

        """
        try:
            return ElementType.TAGS[(tag, channels)]
        except KeyError:
            pass
        msg = f'unsupported element type {tag!r} with {channels} channels'
        raise FormatError(msg)

    @staticmethod
    def totag(pixelformat: PIXELFORMAT, /) -> tuple[str, int]:
        """Return ElementType tag and number of channels of pixel format."""
        return ElementType.FORMATS[PIXELFORMAT(pixelformat)]

    @staticmethod
    def bytes_per_element(pixelformat: PIXELFORMAT, /) -> int:
        """Return number of bytes per pixel, including all channels.

        >>> ElementType.bytes_per_element(PIXELFORMAT.RGB16)
        6

        """
        pixelformat = PIXELFORMAT(pixelformat)
        itemsize = numpy.dtype(ElementType.DTYPES[pixelformat]).itemsize
        return itemsize * pixelformat.channels

    @staticmethod
    def dtype(pixelformat: PIXELFORMAT, /) -> numpy.dtype[Any]:
        """Return native NumPy dtype of one channel of pixel format."""
        return numpy.dtype(ElementType.DTYPES[PIXELFORMAT(pixelformat)])

    @staticmethod
    def fromdtype(dtype: DTypeLike, /, channels: int = 1) -> PIXELFORMAT:
        """Return pixel format of NumPy dtype and number of channels.

        >>> ElementType.fromdtype('uint16', 3)
        <PIXELFORMAT.RGB16: 8>

        Raises:
            FormatError: NumPy dtype cannot be stored.

        """
        char = numpy.dtype(dtype).char
        for pixelformat, value in ElementType.DTYPES.items():
            if value == char and pixelformat.channels == channels:
                return pixelformat
        msg = f'cannot store {numpy.dtype(dtype)} with {channels} channels'
        raise FormatError(msg)


def _deflate_codec(encode: bool, /) -> Callable[..., Any]:
    """Return zlib-wrapped deflate encode or decode function."""
    if hasattr(imagecodecs, 'ZLIB') and imagecodecs.ZLIB.available:
        if encode:
            return imagecodecs.zlib_encode
        return imagecodecs.zlib_decode
    if hasattr(imagecodecs, 'DEFLATE') and imagecodecs.DEFLATE.available:
        if encode:
            return imagecodecs.deflate_encode
        return imagecodecs.deflate_decode
    msg = "deflate compression requires the 'imagecodecs' ZLIB codec"
    raise RuntimeError(msg)


@final
class DeflateCodec:
    """Deflate transform composed into raw payload reads and writes.

    Streams are zlib-wrapped. Decoding always runs to the end of the
    stream; no stored size is consulted.

    Parameters:
        level:
            Compression level from 0 to 9.
            The default is the value of the ``METAIMAGE_DEFLATE_LEVEL``
            environment variable, else 6.

    """

    __slots__ = ('_decode', '_encode', 'level')

    level: int
    """Compression level."""

    _encode: Callable[..., Any] | None
    _decode: Callable[..., Any] | None

    def __init__(self, level: int | None = None, /) -> None:
        if level is None:
            level = int(os.environ.get('METAIMAGE_DEFLATE_LEVEL', 6))
        if not 0 <= level <= 9:
            msg = f'invalid deflate level {level}'
            raise ValueError(msg)
        self.level = level
        self._encode = None
        self._decode = None

    def encode(self, data: ArrayLike, /) -> bytes:
        """Return deflate compressed bytes."""
        if self._encode is None:
            self._encode = _deflate_codec(True)
        return bytes(self._encode(data, level=self.level))

    def decode(self, data: bytes, /) -> bytes:
        """Return bytes decompressed from deflate stream."""
        if self._decode is None:
            self._decode = _deflate_codec(False)
        try:
            return bytes(self._decode(data))
        except Exception as exc:
            msg = f'failed to decompress deflate stream: {exc}'
            raise OSError(msg) from exc

    def __repr__(self) -> str:
        return f'<metaimage.DeflateCodec level={self.level}>'


@final
class PixelBuffer:
    """Pixel data of one image stack.

    The array is always stored with a leading slice axis:
    ``(slices, height, width)`` for scalar formats and
    ``(slices, height, width, 3)`` for RGB formats.

    Parameters:
        data:
            Pixel array. Two-dimensional scalar arrays, or
            three-dimensional RGB arrays, are treated as single slice.
        pixelformat:
            Pixel format of `data`.
            By default, derived from the dtype and shape of `data`.
        biased:
            `data` holds signed 16-bit values as unsigned 16-bit carrier
            offset by +32768. Only valid with ``PIXELFORMAT.I16``.

    """

    __slots__ = ('biased', 'data', 'pixelformat')

    data: NDArray[Any]
    """Pixel array in native byte order."""

    pixelformat: PIXELFORMAT
    """Pixel format of data."""

    biased: bool
    """Data is signed 16-bit stored in biased unsigned carrier."""

    def __init__(
        self,
        data: ArrayLike,
        /,
        pixelformat: PIXELFORMAT | int | None = None,
        *,
        biased: bool = False,
    ) -> None:
        data = numpy.asarray(data)
        if pixelformat is None:
            rgb = data.ndim == 4 or (
                data.ndim == 3 and data.shape[-1] == 3 and data.dtype.char in 'BH'
            )
            if biased:
                pixelformat = PIXELFORMAT.I16
            else:
                pixelformat = ElementType.fromdtype(data.dtype, 3 if rgb else 1)
        pixelformat = PIXELFORMAT(pixelformat)

        if biased:
            if pixelformat != PIXELFORMAT.I16:
                msg = f'bias is not supported with {pixelformat!r}'
                raise FormatError(msg)
            expected = numpy.dtype('H')
        else:
            expected = ElementType.dtype(pixelformat)
        if data.dtype.newbyteorder('=') != expected:
            msg = f'{data.dtype} data does not match {pixelformat!r}'
            raise FormatError(msg)
        if not data.dtype.isnative:
            data = data.astype(expected)

        ndim = 4 if pixelformat.is_rgb else 3
        if data.ndim == ndim - 1:
            data = data.reshape((1, *data.shape))
        if data.ndim != ndim or (pixelformat.is_rgb and data.shape[-1] != 3):
            msg = f'invalid shape {data.shape} for {pixelformat!r}'
            raise FormatError(msg)

        self.data = data
        self.pixelformat = pixelformat
        self.biased = bool(biased)

    @property
    def slices(self) -> int:
        """Number of two-dimensional slices."""
        return int(self.data.shape[0])

    @property
    def height(self) -> int:
        """Number of rows."""
        return int(self.data.shape[1])

    @property
    def width(self) -> int:
        """Number of columns."""
        return int(self.data.shape[2])

    @property
    def channels(self) -> int:
        """Number of interleaved channels."""
        return self.pixelformat.channels

    @property
    def nbytes(self) -> int:
        """Number of bytes of pixel data."""
        return int(self.data.nbytes)

    def asarray(self, *, squeeze: bool = True) -> NDArray[Any]:
        """Return pixel array, removing slice axis of single slice."""
        if squeeze and self.slices == 1:
            return self.data[0]
        return self.data

    def __repr__(self) -> str:
        return (
            f'<metaimage.PixelBuffer {self.width}x{self.height}x{self.slices}'
            f' {self.pixelformat.name}>'
        )

    def __str__(self) -> str:
        return indent(
            repr(self),
            f'shape: {self.data.shape}',
            f'dtype: {self.data.dtype}',
            f'biased: {self.biased}',
        )


@final
class RawCodec:
    """Read and write raw pixel payloads.

    Payloads are stored row-major, slice by slice, with channels
    interleaved. Byte order and deflate compression are taken from the
    file descriptor.

    Parameters:
        level: Deflate compression level passed to :py:class:`DeflateCodec`.

    """

    __slots__ = ('deflate',)

    deflate: DeflateCodec
    """Deflate transform."""

    def __init__(self, level: int | None = None, /) -> None:
        self.deflate = DeflateCodec(level)

    def read(
        self,
        fh: FileHandle,
        offset: int,
        descriptor: FileDescriptor,
        /,
        *,
        biased: bool = False,
    ) -> PixelBuffer:
        """Return pixel buffer decoded from payload in file.

        Parameters:
            fh:
                Open file containing payload.
            offset:
                Position of payload in file.
            descriptor:
                Shape, pixel format, byte order, and compression of payload.
            biased:
                Return signed 16-bit data in biased unsigned carrier.

        Raises:
            OSError: Payload is truncated or corrupted.

        """
        pixelformat = descriptor.pixelformat
        dtype = ElementType.dtype(pixelformat)
        shape = descriptor.shape
        count = product(shape)
        nbytes = count * dtype.itemsize

        if descriptor.compressed:
            fh.seek(offset)
            decoded = self.deflate.decode(fh.read())
            if len(decoded) < nbytes:
                msg = (
                    f'{fh.name!r}: decompressed payload has {len(decoded)} '
                    f'bytes, expected {nbytes}'
                )
                raise OSError(msg)
            data = numpy.frombuffer(decoded, dtype, count).copy()
        else:
            data = fh.read_array(dtype, count, offset)
        data = data.reshape(shape)

        if dtype.itemsize > 1 and not byteorder_isnative(descriptor.byteorder):
            data.byteswap(True)

        if biased and pixelformat == PIXELFORMAT.I16:
            data = data.view('H')
            data += SIGNED16_BIAS
        else:
            biased = False

        logger().debug(
            f'<RawCodec.read> {fh.name!r} @{offset} {nbytes} bytes '
            f'{pixelformat.name} compressed={descriptor.compressed}'
        )
        return PixelBuffer(data, pixelformat, biased=biased)

    def write(
        self,
        fh: FileHandle,
        descriptor: FileDescriptor,
        buffer: PixelBuffer,
        /,
    ) -> int:
        """Write pixel buffer to file at current position.

        A signed 16-bit buffer in biased carrier is unbiased for writing
        and restored afterwards, leaving the buffer numerically unchanged.

        Parameters:
            fh:
                File open for writing or appending.
            descriptor:
                Shape, pixel format, byte order, and compression of payload.
            buffer:
                Pixel data to write.

        Returns:
            Number of bytes written.

        """
        if buffer.pixelformat != descriptor.pixelformat:
            msg = (
                f'{buffer.pixelformat!r} does not match '
                f'{descriptor.pixelformat!r}'
            )
            raise FormatError(msg)
        if buffer.data.shape != descriptor.shape:
            msg = (
                f'buffer shape {buffer.data.shape} does not match '
                f'{descriptor.shape}'
            )
            raise FormatError(msg)

        data = buffer.data
        biased = buffer.biased and buffer.pixelformat == PIXELFORMAT.I16
        if biased:
            data -= SIGNED16_BIAS
        try:
            if data.dtype.itemsize > 1 and not byteorder_isnative(
                descriptor.byteorder
            ):
                data = data.byteswap()
            if descriptor.compressed:
                size = fh.write(self.deflate.encode(numpy.ascontiguousarray(data)))
            else:
                size = 0
                for image in data:
                    size += fh.write_array(image)
        finally:
            if biased:
                buffer.data += SIGNED16_BIAS

        logger().debug(
            f'<RawCodec.write> {fh.name!r} {size} bytes '
            f'{descriptor.pixelformat.name} compressed={descriptor.compressed}'
        )
        return size

    def __repr__(self) -> str:
        return f'<metaimage.RawCodec level={self.deflate.level}>'

