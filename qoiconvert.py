#!/usr/bin/env python3

import logging
import optparse
import os

import numpy as np
from PIL import Image

import qoi

logger = logging.getLogger(__name__)


def read_image(file_path):
    """Load any image Pillow (or this codec) understands as a uint8 array.

    RGB images keep 3 channels, every other mode is converted to RGBA.
    """
    if is_qoi(file_path):
        with open(file_path, 'rb') as f:
            _, img = qoi.decode_image(f)
        return img
    with Image.open(file_path) as im:
        if im.mode != 'RGB':
            im = im.convert('RGBA')
        return np.array(im)


def write_image(img, file_path, colorspace=qoi.Colorspace.SRGB):
    if is_qoi(file_path):
        with open(file_path, 'wb') as f:
            f.write(qoi.encode_image(img, colorspace))
        return
    Image.fromarray(img).save(file_path)


def is_qoi(file_path):
    return os.path.splitext(file_path)[1].lower() == '.qoi'


def convert(src, dst, colorspace=qoi.Colorspace.SRGB):
    img = read_image(src)
    write_image(img, dst, colorspace)
    height, width, channels = img.shape
    logger.debug('converted %s -> %s (%dx%d, %d channels)', src, dst, width, height, channels)
    return img


def main():
    usage = 'usage: %prog [options] input output'
    parser = optparse.OptionParser(usage=usage)
    parser.add_option('-l', '--linear', dest='linear',
                      default=False, action='store_true',
                      help='tag the qoi output as linear colorspace (%default)')
    parser.add_option('-v', '--verbose', dest='verbose',
                      default=False, action='store_true',
                      help='print debug logging (%default)')
    (options, args) = parser.parse_args()

    if len(args) != 2:
        parser.error('expected an input and an output path')

    logging.basicConfig(level=logging.DEBUG if options.verbose else logging.WARNING)

    colorspace = qoi.Colorspace.LINEAR if options.linear else qoi.Colorspace.SRGB
    src, dst = args
    img = convert(src, dst, colorspace)
    height, width, _ = img.shape
    print(f"{src} -> {dst}: {width}x{height}, "
          f"{os.path.getsize(src)} -> {os.path.getsize(dst)} bytes")


if __name__ == '__main__':
    main()
