import io
import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import IntEnum
from itertools import islice
from struct import Struct

import numpy as np

logger = logging.getLogger(__name__)

QOI_MAGIC = b'qoif'
HASH_SIZE = 64
MAX_RUN = 62

QOI_OP_INDEX = 0x00  # 00xxxxxx
QOI_OP_DIFF = 0x40   # 01xxxxxx
QOI_OP_LUMA = 0x80   # 10xxxxxx
QOI_OP_RUN = 0xc0    # 11xxxxxx
QOI_OP_RGB = 0xfe    # 11111110
QOI_OP_RGBA = 0xff   # 11111111

QOI_MASK_2 = 0xc0

QOI_OPS = ['QOI_OP_RUN', 'QOI_OP_INDEX', 'QOI_OP_DIFF',
           'QOI_OP_LUMA', 'QOI_OP_RGB', 'QOI_OP_RGBA']

END_MARKER = bytes([0, 0, 0, 0, 0, 0, 0, 1])

empty_pixel = (0, 0, 0, 255)
null_pixel = (0, 0, 0, 0)

_header_struct = Struct('>4sIIBB')


class QoiError(ValueError):
    pass


class DecodeError(QoiError):
    pass


class TruncatedStreamError(DecodeError):
    pass


class InvalidHeaderError(DecodeError):
    pass


class MalformedOpcodeError(DecodeError):
    pass


class Channels(IntEnum):
    RGB = 3
    RGBA = 4


class Colorspace(IntEnum):
    SRGB = 0
    LINEAR = 1


def read_exact(stream, size):
    data = b''
    while len(data) < size:
        chunk = stream.read(size - len(data))
        if not chunk:
            raise TruncatedStreamError(f'expected {size} bytes, got {len(data)}')
        data += chunk
    return data


@dataclass(frozen=True)
class Header:
    """Fixed 14 byte preamble of a qoi stream.

    channels and colorspace are informational only, they never change
    which opcodes the codec may use.
    """

    width: int
    height: int
    channels: Channels = Channels.RGBA
    colorspace: Colorspace = Colorspace.SRGB

    size = _header_struct.size

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @classmethod
    def unpack(cls, stream) -> 'Header':
        magic, width, height, channels, colorspace = _header_struct.unpack(
            read_exact(stream, cls.size)
        )
        if magic != QOI_MAGIC:
            raise InvalidHeaderError(f'bad magic {magic!r}')
        if width == 0 or height == 0:
            raise InvalidHeaderError(f'invalid dimensions {width}x{height}')
        try:
            channels = Channels(channels)
        except ValueError:
            raise InvalidHeaderError(f'unknown channel tag {channels}') from None
        try:
            colorspace = Colorspace(colorspace)
        except ValueError:
            raise InvalidHeaderError(f'unknown colorspace tag {colorspace}') from None
        return cls(width, height, channels, colorspace)

    def pack(self) -> bytes:
        return _header_struct.pack(
            QOI_MAGIC, self.width, self.height, self.channels, self.colorspace
        )


def pixel_hash(pixel) -> int:
    r, g, b, a = pixel
    return (r * 3 + g * 5 + b * 7 + a * 11) % HASH_SIZE


class PixelCache:
    """Direct mapped table of recently resolved pixels, keyed by `pixel_hash`."""

    def __init__(self):
        self.slots = [null_pixel] * HASH_SIZE

    def __getitem__(self, index):
        return self.slots[index]

    def __len__(self):
        return len(self.slots)

    def store(self, pixel) -> int:
        index = pixel_hash(pixel)
        self.slots[index] = pixel
        return index


@dataclass
class Pixel:
    px_bytes: list = field(init=False)

    def __post_init__(self):
        self.px_bytes = list(empty_pixel)

    def set(self, value):
        self.px_bytes = list(value)

    @property
    def value(self) -> tuple:
        return tuple(self.px_bytes)

    def __str__(self):
        r, g, b, a = self.px_bytes
        return f"R: {r} G: {g} B: {b} A: {a}"

    @property
    def alpha(self) -> int:
        return self.px_bytes[3]


@dataclass
class CodecState:
    """Mutable state owned by a single decode or encode pass."""

    px: Pixel = field(default_factory=Pixel)
    cache: PixelCache = field(default_factory=PixelCache)
    run: int = 0


def wrap_delta(current, previous):
    return (384 + current - previous) % 256 - 128


class PixelDecoder:
    """Lazy iterator over the pixels of an opcode stream.

    Yields exactly `header.pixel_count` RGBA tuples, reading only the bytes
    needed for the next pixel. Any failure ends the sequence.
    """

    def __init__(self, stream, header: Header):
        self.stream = stream
        self.header = header
        self.remaining = header.pixel_count
        self.state = CodecState()
        self.op_counts = Counter()

    def __iter__(self):
        return self

    def __next__(self):
        if self.remaining == 0:
            raise StopIteration
        state = self.state
        if state.run > 0:
            state.run -= 1
        else:
            try:
                self._resolve()
            except (DecodeError, OSError):
                logger.debug('pixel stream failed at %s with %d pixels left',
                             state.px, self.remaining)
                self.remaining = 0
                raise
        self.remaining -= 1
        if self.remaining == 0:
            logger.debug('decoded %d pixels', self.header.pixel_count)
        return state.px.value

    def _read(self, size):
        return read_exact(self.stream, size)

    def _resolve(self):
        state = self.state
        px = state.px.px_bytes
        b1 = self._read(1)[0]

        if b1 == QOI_OP_RGB:
            px[0:3] = self._read(3)
            op = 'QOI_OP_RGB'
        elif b1 == QOI_OP_RGBA:
            px[0:4] = self._read(4)
            op = 'QOI_OP_RGBA'
        elif (b1 & QOI_MASK_2) == QOI_OP_INDEX:
            state.px.set(state.cache[b1 & 0x3f])
            op = 'QOI_OP_INDEX'
        elif (b1 & QOI_MASK_2) == QOI_OP_DIFF:
            px[0] = (px[0] + ((b1 >> 4) & 0x03) - 2) % 256
            px[1] = (px[1] + ((b1 >> 2) & 0x03) - 2) % 256
            px[2] = (px[2] + (b1 & 0x03) - 2) % 256
            op = 'QOI_OP_DIFF'
        elif (b1 & QOI_MASK_2) == QOI_OP_LUMA:
            b2 = self._read(1)[0]
            vg = (b1 & 0x3f) - 32
            px[0] = (px[0] + vg - 8 + ((b2 >> 4) & 0x0f)) % 256
            px[1] = (px[1] + vg) % 256
            px[2] = (px[2] + vg - 8 + (b2 & 0x0f)) % 256
            op = 'QOI_OP_LUMA'
        elif (b1 & QOI_MASK_2) == QOI_OP_RUN:
            # the first pixel of the run is emitted now, the rest are queued
            state.run = b1 & 0x3f
            self.op_counts['QOI_OP_RUN'] += 1
            return
        else:
            raise MalformedOpcodeError(f'unknown opcode {b1:#04x}')

        self.op_counts[op] += 1
        state.cache.store(state.px.value)


class PixelEncoder:
    """Greedy opcode selection for a stream of RGBA pixels.

    Preference order is run, index, diff, luma, rgb, rgba.
    """

    def __init__(self, out):
        self.out = out
        self.state = CodecState()

    def write(self, *values):
        self.out.write(bytes(values))

    def push(self, px):
        state = self.state
        prev = state.px.value

        if px == prev:
            state.run += 1
            if state.run == MAX_RUN:
                self.flush_run()
            return

        if state.run:
            self.flush_run()

        index_pos = pixel_hash(px)
        if state.cache[index_pos] == px:
            self.write(QOI_OP_INDEX | index_pos)
        else:
            state.cache.store(px)
            if px[3] != state.px.alpha:
                self.write(QOI_OP_RGBA, *px)
            else:
                self._write_delta(px, prev)

        state.px.set(px)

    def _write_delta(self, px, prev):
        vr = wrap_delta(px[0], prev[0])
        vg = wrap_delta(px[1], prev[1])
        vb = wrap_delta(px[2], prev[2])

        vg_r = wrap_delta(vr, vg)
        vg_b = wrap_delta(vb, vg)

        if all(-3 < x < 2 for x in (vr, vg, vb)):
            self.write(QOI_OP_DIFF | (vr + 2) << 4 | (vg + 2) << 2 | (vb + 2))
        elif all(-9 < x < 8 for x in (vg_r, vg_b)) and -33 < vg < 32:
            self.write(QOI_OP_LUMA | (vg + 32), (vg_r + 8) << 4 | (vg_b + 8))
        else:
            # alpha is unchanged, the decoder keeps it
            self.write(QOI_OP_RGB, *px[:3])

    def flush_run(self):
        self.write(QOI_OP_RUN | (self.state.run - 1))
        self.state.run = 0

    def finish(self):
        if self.state.run:
            self.flush_run()
        write_end(self.out)


def write_end(out):
    out.write(END_MARKER)


def decode(stream):
    """Read the header and return it with a lazy pixel iterator.

    `stream` needs only `read(n)`; raw bytes are wrapped in a BytesIO.
    Header errors raise here, pixel errors raise from the iterator.
    """
    if isinstance(stream, (bytes, bytearray, memoryview)):
        stream = io.BytesIO(stream)
    header = Header.unpack(stream)
    logger.debug('decoded header %s', header)
    return header, PixelDecoder(stream, header)


def decode_bytes(data):
    header, pixels = decode(data)
    return header, list(pixels)


def encode(pixels, header: Header, out) -> int:
    """Write a complete qoi stream for `pixels` to `out`.

    At most `header.pixel_count` pixels are consumed. Returns the number
    of pixels encoded.
    """
    out.write(header.pack())
    encoder = PixelEncoder(out)
    count = 0
    for px in islice(pixels, header.pixel_count):
        encoder.push(tuple(map(int, px)))
        count += 1
    encoder.finish()

    if count < header.pixel_count:
        logger.warning('pixel source ended after %d of %d pixels',
                       count, header.pixel_count)
    logger.debug('encoded %d pixels for %dx%d image', count, header.width, header.height)
    return count


def encode_bytes(pixels, header: Header) -> bytes:
    writer = io.BytesIO()
    encode(pixels, header, writer)
    return writer.getvalue()


def opcode_frequency(data) -> Counter:
    _, pixels = decode(data)
    for _ in pixels:
        pass
    return pixels.op_counts


def encode_image(img, colorspace=Colorspace.SRGB) -> bytes:
    img = np.asarray(img, dtype=np.uint8)
    if img.ndim != 3 or img.shape[2] not in (3, 4):
        raise ValueError(f'expected (height, width, 3|4) image, got shape {img.shape}')
    height, width, channels = img.shape

    if channels == 3:
        alpha = np.full((height, width, 1), 255, dtype=np.uint8)
        img = np.concatenate([img, alpha], axis=2)
    pixel_data = img.reshape(-1, 4)

    header = Header(width, height, Channels(channels), Colorspace(colorspace))
    return encode_bytes(pixel_data.tolist(), header)


def decode_image(data):
    header, pixels = decode(data)
    img = np.fromiter(
        (channel for px in pixels for channel in px),
        dtype=np.uint8,
        count=header.pixel_count * 4,
    ).reshape(header.height, header.width, 4)
    return header, np.ascontiguousarray(img[:, :, :header.channels])
