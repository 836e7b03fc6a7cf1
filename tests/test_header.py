import io
import struct

import pytest

import qoi


def header_bytes(magic=b'qoif', width=4, height=4, channels=4, colorspace=0):
    return struct.pack('>4sIIBB', magic, width, height, channels, colorspace)


def test_pack():
    header = qoi.Header(4, 4, qoi.Channels.RGBA, qoi.Colorspace.SRGB)
    assert header.pack() == b'qoif\x00\x00\x00\x04\x00\x00\x00\x04\x04\x00'
    assert len(header.pack()) == qoi.Header.size == 14


def test_unpack():
    stream = io.BytesIO(header_bytes(width=640, height=480, channels=3, colorspace=1))
    header = qoi.Header.unpack(stream)
    assert header == qoi.Header(640, 480, qoi.Channels.RGB, qoi.Colorspace.LINEAR)
    assert header.pixel_count == 640 * 480
    assert stream.tell() == 14


def test_unpack_keeps_tags():
    header = qoi.Header(1, 2, qoi.Channels.RGB, qoi.Colorspace.LINEAR)
    assert qoi.Header.unpack(io.BytesIO(header.pack())) == header


@pytest.mark.parametrize('data', [
    header_bytes(magic=b'qoiF'),
    header_bytes(magic=b'\x89PNG'),
    header_bytes(width=0),
    header_bytes(height=0),
    header_bytes(channels=5),
    header_bytes(channels=0),
    header_bytes(colorspace=2),
])
def test_invalid_header(data):
    with pytest.raises(qoi.InvalidHeaderError):
        qoi.decode(data + qoi.END_MARKER)


@pytest.mark.parametrize('size', [0, 3, 13])
def test_truncated_header(size):
    with pytest.raises(qoi.TruncatedStreamError):
        qoi.decode(header_bytes()[:size])


def test_errors_are_value_errors():
    with pytest.raises(ValueError):
        qoi.decode(b'not a qoi image at all')
