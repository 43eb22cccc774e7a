# enums.py

"""MetaImage enumeration types."""

from __future__ import annotations

import enum

__all__ = [
    'HEADERSTYLE',
    'PIXELFORMAT',
]


class PIXELFORMAT(enum.IntEnum):
    """Canonical pixel formats.

    Each format maps to one MetaImage `ElementType` tag and
    `ElementNumberOfChannels` value.

    """

    U8 = 1
    """8-bit unsigned integer (MET_UCHAR)."""
    I16 = 2
    """16-bit signed integer (MET_SHORT)."""
    U16 = 3
    """16-bit unsigned integer (MET_USHORT)."""
    I32 = 4
    """32-bit signed integer (MET_INT)."""
    U32 = 5
    """32-bit unsigned integer (MET_UINT)."""
    F32 = 6
    """Single precision (4-byte) IEEE floating point (MET_FLOAT)."""
    RGB8 = 7
    """Three 8-bit unsigned integer channels (MET_UCHAR_ARRAY)."""
    RGB16 = 8
    """Three 16-bit unsigned integer channels (MET_USHORT_ARRAY)."""

    @property
    def is_rgb(self) -> bool:
        """Format has three interleaved channels."""
        return self in {PIXELFORMAT.RGB8, PIXELFORMAT.RGB16}

    @property
    def channels(self) -> int:
        """Number of interleaved channels."""
        return 3 if self.is_rgb else 1


class HEADERSTYLE(enum.IntEnum):
    """Header writer variants.

    The two variants spell the byte order key differently.

    """

    PLAIN = 0
    """Uncompressed payload, `ElementByteOrderMSB` key."""
    COMPRESSED = 1
    """Deflate payload, `BinaryDataByteOrderMSB` and `CompressedData` keys."""
