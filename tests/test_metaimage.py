"""Tests for reading and writing MetaImage files."""

from __future__ import annotations

import logging
import sys

import numpy
import pytest

import metaimage
from metaimage import (
    META,
    PIXELFORMAT,
    ExternalFile,
    FileList,
    FilePattern,
    FormatError,
    LocalEmbedded,
    MetaImageFile,
    MetaImageHandler,
    OffsetInferenceError,
    PixelBuffer,
    imread,
    imwrite,
    try_decode,
)

SCALARS = {
    PIXELFORMAT.U8: numpy.uint8,
    PIXELFORMAT.I16: numpy.int16,
    PIXELFORMAT.U16: numpy.uint16,
    PIXELFORMAT.I32: numpy.int32,
    PIXELFORMAT.U32: numpy.uint32,
    PIXELFORMAT.F32: numpy.float32,
}


def header(*lines):
    return ('\n'.join(lines) + '\n').encode('ascii')


def random_data(dtype, shape=(3, 5, 7)):
    rng = numpy.random.default_rng(42)
    if numpy.dtype(dtype).kind == 'f':
        return rng.standard_normal(shape).astype(dtype) * 1000
    info = numpy.iinfo(dtype)
    return rng.integers(info.min, info.max, shape, dtype=dtype, endpoint=True)


class TestScenarios:
    """Tests for documented decoding scenarios."""

    def test_local_uchar(self, tmp_path):
        fname = tmp_path / 'local.mhd'
        fname.write_bytes(
            header(
                'ObjectType=Image',
                'NDims=2',
                'DimSize=4 3',
                'ElementType=MET_UCHAR',
                'ElementDataFile=LOCAL',
            )
            + bytes(range(12))
        )
        image = imread(fname)
        assert image.shape == (3, 4)
        assert image.dtype == numpy.uint8
        numpy.testing.assert_array_equal(
            image, numpy.arange(12, dtype=numpy.uint8).reshape((3, 4))
        )

    def test_bigendian_short(self, tmp_path):
        data = numpy.array([-32768, -2, -1, 0, 1, 2, 300, 32767], '>i2')
        (tmp_path / 'be.raw').write_bytes(data.tobytes())
        fname = tmp_path / 'be.mhd'
        fname.write_bytes(
            header(
                'ObjectType = Image',
                'NDims = 3',
                'DimSize = 2 2 2',
                'ElementType = MET_SHORT',
                'BinaryDataByteOrderMSB = True',
                'ElementDataFile = be.raw',
            )
        )
        image = imread(fname)
        assert image.shape == (2, 2, 2)
        assert image.dtype.isnative
        numpy.testing.assert_array_equal(image.ravel(), data)

    def test_missing_dimsize(self, tmp_path):
        fname = tmp_path / 'nodims.mhd'
        fname.write_bytes(
            header(
                'ObjectType = Image',
                'NDims = 2',
                'ElementType = MET_UCHAR',
                'ElementDataFile = nodims.raw',
            )
        )
        # the data file does not exist; reading it would raise OSError
        with pytest.raises(FormatError):
            imread(fname)

    def test_compressed_float_volume(self, tmp_path):
        data = numpy.arange(500, dtype=numpy.float32).reshape((5, 10, 10))
        data /= 7
        fname = tmp_path / 'volume.mha'
        imwrite(fname, data, compress=True)

        text = fname.read_bytes().split(b'ElementDataFile')[0]
        assert b'CompressedDataSize = 9999999999999' in text

        image = imread(fname)
        assert image.shape == (5, 10, 10)
        assert image.tobytes() == data.tobytes()

    def test_list(self, tmp_path):
        for index, name in enumerate(('a.raw', 'b.raw', 'c.raw')):
            (tmp_path / name).write_bytes(bytes([index]) * 25)
        (tmp_path / 'unused.raw').write_bytes(bytes([9]) * 25)
        fname = tmp_path / 'list.mhd'
        fname.write_bytes(
            header(
                'ObjectType = Image',
                'NDims = 3',
                'DimSize = 5 5 3',
                'ElementType = MET_UCHAR',
                'ElementDataFile = LIST',
                'a.raw b.raw c.raw',
                'unused.raw',
            )
        )
        image = imread(fname)
        assert image.shape == (3, 5, 5)
        numpy.testing.assert_array_equal(image[:, 0, 0], [0, 1, 2])


class TestRoundtrip:
    """Tests for writing and reading back images."""

    @pytest.mark.parametrize('compress', [False, True])
    @pytest.mark.parametrize('pixelformat', list(SCALARS))
    def test_scalar(self, tmp_path, pixelformat, compress):
        data = random_data(SCALARS[pixelformat])
        fname = tmp_path / 'scalar.mhd'
        descriptor = imwrite(
            fname, data, spacing=(0.25, 0.5, 3.0), compress=compress
        )
        assert descriptor.pixelformat == pixelformat

        with MetaImageFile(fname) as mim:
            assert mim.descriptor.dims == (7, 5, 3)
            assert mim.descriptor.spacing == (0.25, 0.5, 3.0)
            assert mim.descriptor.pixelformat == pixelformat
            assert mim.descriptor.channels == 1
            assert mim.descriptor.compressed == compress
            image = mim.asarray()
        assert image.dtype == data.dtype
        assert image.tobytes() == data.tobytes()

    @pytest.mark.parametrize('dtype', [numpy.uint8, numpy.uint16])
    def test_rgb(self, tmp_path, dtype):
        data = random_data(dtype, (2, 4, 6, 3))
        fname = tmp_path / 'rgb.mha'
        descriptor = imwrite(fname, data)
        assert descriptor.channels == 3
        assert 'ElementNumberOfChannels = 3' in MetaImageFile(fname).header
        numpy.testing.assert_array_equal(imread(fname), data)

    def test_single_slice(self, tmp_path):
        data = random_data(numpy.uint16, (6, 8))
        fname = tmp_path / 'plane.mha'
        descriptor = imwrite(fname, data)
        assert descriptor.ndims == 2
        numpy.testing.assert_array_equal(imread(fname), data)
        assert imread(fname, squeeze=False).shape == (1, 6, 8)

    @pytest.mark.parametrize('compress', [False, True])
    @pytest.mark.parametrize('byteorder', ['<', '>'])
    def test_byteorder(self, tmp_path, byteorder, compress):
        data = random_data(numpy.uint16, (2, 3, 4))
        fname = tmp_path / 'order.mhd'
        imwrite(fname, data, byteorder=byteorder, compress=compress)
        text = MetaImageFile(fname).header
        msb = 'True' if byteorder == '>' else 'False'
        key = 'BinaryDataByteOrderMSB' if compress else 'ElementByteOrderMSB'
        assert f'{key} = {msb}' in text
        if not compress:
            payload = (tmp_path / 'order.raw').read_bytes()
            assert payload == data.astype(byteorder + 'u2').tobytes()
        numpy.testing.assert_array_equal(imread(fname), data)

    def test_bias(self, tmp_path):
        values = numpy.array([[-32768, -1000, -1], [0, 1000, 32767]])
        carrier = (values + 32768).astype(numpy.uint16)
        original = carrier.copy()
        fname = tmp_path / 'biased.mha'
        descriptor = imwrite(fname, carrier, biased=True)
        assert descriptor.pixelformat == PIXELFORMAT.I16
        numpy.testing.assert_array_equal(carrier, original)

        numpy.testing.assert_array_equal(imread(fname), values)
        numpy.testing.assert_array_equal(imread(fname, biased=True), original)

    def test_pixelbuffer(self, tmp_path):
        buffer = PixelBuffer(random_data(numpy.int32, (2, 3, 4)))
        fname = tmp_path / 'buffer.mha'
        imwrite(fname, buffer, compress=True)
        numpy.testing.assert_array_equal(imread(fname), buffer.data)


class TestNaming:
    """Tests for header and data file naming."""

    def test_mhd(self, tmp_path):
        descriptor = imwrite(tmp_path / 'im.mhd', numpy.zeros((2, 2), 'u1'))
        assert descriptor.datasource == ExternalFile('im.raw')
        assert (tmp_path / 'im.raw').stat().st_size == 4

    def test_mha(self, tmp_path):
        descriptor = imwrite(tmp_path / 'im.mha', numpy.zeros((2, 2), 'u1'))
        assert descriptor.datasource == LocalEmbedded()
        assert not (tmp_path / 'im.raw').exists()

    def test_no_extension(self, tmp_path):
        imwrite(tmp_path / 'plain', numpy.zeros((2, 2), 'u1'))
        assert (tmp_path / 'plain.mhd').exists()
        assert (tmp_path / 'plain.raw').exists()

        imwrite(tmp_path / 'packed', numpy.zeros((2, 2), 'u1'), compress=True)
        assert (tmp_path / 'packed.mha').exists()

    def test_raw_opens_header(self, tmp_path):
        data = random_data(numpy.float32, (2, 3, 4))
        imwrite(tmp_path / 'im.mhd', data)
        numpy.testing.assert_array_equal(imread(tmp_path / 'im.raw'), data)

    def test_named_datafile(self, tmp_path):
        data = random_data(numpy.uint8, (2, 3, 4))
        imwrite(tmp_path / 'im.mhd', data, datafile='payload.dat')
        assert (tmp_path / 'payload.dat').exists()
        numpy.testing.assert_array_equal(imread(tmp_path / 'im.mhd'), data)

    def test_datafile_list(self, tmp_path):
        data = random_data(numpy.int16, (3, 4, 5))
        names = ['z.raw', 'y.raw', 'x.raw']
        descriptor = imwrite(tmp_path / 'list.mhd', data, datafile=names)
        assert descriptor.datasource == FileList(names)
        for name in names:
            assert (tmp_path / name).stat().st_size == 40
        numpy.testing.assert_array_equal(imread(tmp_path / 'list.mhd'), data)

        with pytest.raises(ValueError):
            imwrite(tmp_path / 'bad.mhd', data, datafile=names[:2])

    def test_datafile_pattern(self, tmp_path):
        data = random_data(numpy.uint16, (4, 3, 2))
        descriptor = imwrite(
            tmp_path / 'pattern.mhd', data, datafile='slice%03d.raw'
        )
        assert descriptor.datasource == FilePattern('slice%03d.raw', 1, 4, 1)
        assert (tmp_path / 'slice004.raw').exists()
        text = MetaImageFile(tmp_path / 'pattern.mhd').header
        assert 'ElementDataFile = slice%03d.raw 1 4 1' in text
        image = imread(tmp_path / 'pattern.mhd')
        numpy.testing.assert_array_equal(image, data)


class TestOffsets:
    """Tests for payload offset handling."""

    def test_inferred(self, tmp_path):
        data = random_data(numpy.uint16, (2, 3, 4))
        (tmp_path / 'im.raw').write_bytes(b'junk header 17 b.' + data.tobytes())
        fname = tmp_path / 'im.mhd'
        fname.write_bytes(
            header(
                'ObjectType = Image',
                'NDims = 3',
                'DimSize = 4 3 2',
                'ElementType = MET_USHORT',
                'HeaderSize = -1',
            )
        )
        numpy.testing.assert_array_equal(imread(fname), data)

    def test_explicit(self, tmp_path):
        data = random_data(numpy.uint8, (3, 4))
        (tmp_path / 'im.raw').write_bytes(bytes(5) + data.tobytes() + bytes(9))
        fname = tmp_path / 'im.mhd'
        fname.write_bytes(
            header(
                'ObjectType = Image',
                'NDims = 2',
                'DimSize = 4 3',
                'ElementType = MET_UCHAR',
                'HeaderSize = 5',
                'ElementDataFile = im.raw',
            )
        )
        numpy.testing.assert_array_equal(imread(fname), data)

    def test_too_small(self, tmp_path):
        (tmp_path / 'im.raw').write_bytes(bytes(10))
        fname = tmp_path / 'im.mhd'
        fname.write_bytes(
            header(
                'ObjectType = Image',
                'NDims = 2',
                'DimSize = 4 3',
                'ElementType = MET_UCHAR',
                'HeaderSize = -1',
            )
        )
        with pytest.raises(OffsetInferenceError):
            imread(fname)

    def test_header_length(self, tmp_path):
        data = random_data(numpy.float32, (2, 3))
        fname = tmp_path / 'im.mha'
        imwrite(fname, data)
        with MetaImageFile(fname) as mim:
            assert mim.descriptor.headersize is None
            size = fname.stat().st_size
            assert size - data.nbytes == mim.headerlength


class TestFormatHandler:
    """Tests for the format handler registry."""

    def test_registry(self):
        for ext in ('.mhd', '.mha', '.raw'):
            assert isinstance(META.HANDLERS[ext], MetaImageHandler)
        assert META.FILE_EXTENSIONS == ('mhd', 'mha', 'raw')
        assert META.HANDLERS['.mhd'].match('IMAGE.MHD')

    def test_try_decode(self, tmp_path):
        data = random_data(numpy.int32, (2, 3, 4))
        imwrite(tmp_path / 'im.mha', data)
        buffer = try_decode(tmp_path / 'im.mha')
        assert isinstance(buffer, PixelBuffer)
        numpy.testing.assert_array_equal(buffer.data, data)

    def test_try_decode_failure(self, tmp_path, caplog):
        fname = tmp_path / 'broken.mhd'
        fname.write_bytes(header('ObjectType = Image', 'NDims = 2'))
        with caplog.at_level(logging.ERROR, logger='metaimage'):
            assert try_decode(fname) is None
        assert 'FormatError' in caplog.text

        assert try_decode(tmp_path / 'missing.mha') is None

    def test_try_decode_unknown(self, tmp_path):
        assert try_decode(tmp_path / 'image.tif') is None


class TestMain:
    """Tests for the command line script."""

    def test_convert(self, tmp_path, monkeypatch):
        data = random_data(numpy.uint16, (2, 3, 4))
        imwrite(tmp_path / 'in.mhd', data)
        out = tmp_path / 'out.mha'
        monkeypatch.setattr(
            sys,
            'argv',
            [
                'metaimage',
                '-q',
                '--convert',
                str(out),
                '--compress',
                str(tmp_path / 'in.mhd'),
            ],
        )
        assert metaimage.main() == 0
        numpy.testing.assert_array_equal(imread(out), data)

    def test_failure(self, tmp_path, monkeypatch, capsys):
        fname = tmp_path / 'broken.mhd'
        fname.write_bytes(header('ObjectType = Image', 'NDims = 2'))
        monkeypatch.setattr(sys, 'argv', ['metaimage', '-q', str(fname)])
        assert metaimage.main() == 1
        assert 'FormatError' in capsys.readouterr().out

    def test_str(self, tmp_path):
        imwrite(tmp_path / 'im.mha', numpy.zeros((2, 3), 'f4'))
        text = str(MetaImageFile(tmp_path / 'im.mha'))
        assert text.startswith("<metaimage.MetaImageFile 'im.mha'>")
        assert 'F32' in text
