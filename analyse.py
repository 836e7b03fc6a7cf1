import optparse

import matplotlib.pyplot as plt
import numpy as np

import qoi
from qoiconvert import read_image


def pixel_hash_distribution(pixel_grid, hash_function, show=True):
    """Histogram of the cache bucket every pixel of the grid lands in."""
    dist = []
    rows = len(pixel_grid)
    cols = len(pixel_grid[0])

    for r in range(rows):
        for c in range(cols):
            dist.append(hash_function(pixel_grid[r][c]))

    plt.hist(dist, color='blue', edgecolor='black', bins=qoi.HASH_SIZE)
    if show:
        plt.show()
    return dist


def mult_hash(pixel):
    return qoi.pixel_hash([int(channel) for channel in pixel])


def with_alpha(pix):
    if pix.shape[2] == 4:
        return pix
    alpha = np.full(pix.shape[:2] + (1,), 255, dtype=np.uint8)
    return np.concatenate([pix, alpha], axis=2)


def main():
    parser = optparse.OptionParser(usage='usage: %prog [options] image')
    parser.add_option('-o', '--output', dest='output', default=None,
                      help='save the histogram instead of showing it')
    (options, args) = parser.parse_args()
    if len(args) != 1:
        parser.error('expected an image path')

    pix = with_alpha(read_image(args[0]))
    print(pix[0])
    pixel_hash_distribution(pix, mult_hash, show=options.output is None)
    if options.output:
        plt.savefig(options.output)

if __name__ == "__main__":
    main()
