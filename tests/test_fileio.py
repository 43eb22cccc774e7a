"""Tests for the FileHandle and Timer classes."""

from __future__ import annotations

import io

import numpy
import pytest

from metaimage.fileio import FileHandle, Timer


class TestFileHandle:
    """Tests for the FileHandle class."""

    def test_file(self, tmp_path):
        fname = tmp_path / 'data.bin'
        fname.write_bytes(b'header\n' + bytes(range(8)))
        with FileHandle(fname) as fh:
            assert fh.name == 'data.bin'
            assert fh.size == 15
            assert fh.tell() == 0
            assert fh.readline() == b'header\n'
            data = fh.read_array('u1', 8, 7)
        numpy.testing.assert_array_equal(data, numpy.arange(8))

    def test_write_append(self, tmp_path):
        fname = tmp_path / 'data.bin'
        with FileHandle(fname, 'wb') as fh:
            assert fh.write(b'abc') == 3
        with FileHandle(fname, 'ab') as fh:
            assert fh.size == 3
            assert fh.write_array(numpy.array([1, 2], '<u2')) == 4
        assert fname.read_bytes() == b'abc\x01\x00\x02\x00'

    def test_stream(self):
        stream = io.BytesIO(bytes(12))
        with FileHandle(stream) as fh:
            assert fh.name == 'Unnamed binary stream'
            assert fh.size == 12
            assert fh.read_array('<f4', 3, 0).tolist() == [0.0, 0.0, 0.0]
        assert not stream.closed

    def test_short_read(self):
        with FileHandle(io.BytesIO(bytes(5))) as fh, pytest.raises(OSError):
            fh.read_array('<u2', 3, 0)

    def test_invalid(self, tmp_path):
        with pytest.raises(ValueError):
            FileHandle(tmp_path / 'data.bin', 'r+b')
        with pytest.raises(TypeError):
            FileHandle(io.StringIO('text'))
        with pytest.raises(ValueError):
            FileHandle(42)


def test_timer():
    timer = Timer()
    started = timer.started
    assert timer.start() >= started
    assert str(timer).endswith(' s')
