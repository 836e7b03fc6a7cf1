#!/usr/bin/env python3

import io
import json
import logging
import optparse
import os
import time

import tabulate
from PIL import Image

import qoi
from qoiconvert import read_image

dataset_dir = 'dataset'
stats_file = 'stats.json'
stats_output = []

logger = logging.getLogger(__name__)

header = ['impl', 'encode ms', 'decode ms', 'size bytes']
detailed_header = ['test', 'impl', 'encode ms',
                   'decode ms', 'pixels', 'size bytes', 'bytes/pixel']

# helper functions
# ---------------


def msec(seconds):
    return seconds * 1000


def empty_stats():
    return {impl: {'encode': 0, 'decode': 0, 'size': 0} for impl in ['png', 'qoi']}


def aggregate(a, b):
    return {impl: {stat: a[impl][stat] + b[impl][stat] for stat in a[impl]} for impl in ['png', 'qoi']}


def average(struct, ittr):
    return {impl: {stat: struct[impl][stat]/ittr for stat in struct[impl]} for impl in ['png', 'qoi']}


def pix_count(file_path):
    img = Image.open(file_path)
    dimension = [img.width, img.height]
    img.close()
    return dimension


def timed(func, *args):
    start = time.perf_counter()
    result = func(*args)
    return result, msec(time.perf_counter() - start)


def png_encode(img):
    buffer = io.BytesIO()
    Image.fromarray(img).save(buffer, format='PNG')
    return buffer.getvalue()


def png_decode(data):
    with Image.open(io.BytesIO(data)) as im:
        im.load()
        return im


# ---------------
def run_benchmark(file_path):
    img = read_image(file_path)

    png_data, png_enc = timed(png_encode, img)
    _, png_dec = timed(png_decode, png_data)
    qoi_data, qoi_enc = timed(qoi.encode_image, img)
    _, qoi_dec = timed(qoi.decode_image, qoi_data)

    stats_struct = {'png': {
        'encode': png_enc, 'decode': png_dec, 'size': len(png_data)},
        'qoi': {
        'encode': qoi_enc, 'decode': qoi_dec, 'size': len(qoi_data)}}
    logger.debug('%s: %s', file_path, stats_struct)
    return stats_struct


# ---------------
def op_freq(file_path):
    data = qoi.encode_image(read_image(file_path))
    counts = qoi.opcode_frequency(data)
    return {op: counts[op] for op in qoi.QOI_OPS}

# ---------------


def main():
    usage = 'usage: %prog [options] arg'
    parser = optparse.OptionParser(usage=usage)
    parser.add_option('-e', '--epochs', dest='epochs',
                      default=1, type=int,
                      help='number of iterations (%default)')
    parser.add_option('-d', '--dataset', dest='dataset',
                      default=dataset_dir,
                      help='dataset root directory (%default)')
    parser.add_option('-q', '--frequency', dest='freq',
                      default=False, action='store_true',
                      help='analyse instruction frequency qoi (%default)')
    parser.add_option('-v', '--verbose', dest='verbose',
                      default=False, action='store_true',
                      help='print detailed analysis for each test (%default)')
    (options, args) = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if options.verbose else logging.WARNING)
    root = options.dataset

    if (len(args) == 0):
        parser.print_usage()
        print(os.listdir(root))
        return

    # if argument all is specified, use all run all benchmarks
    if (args[0] == 'all'):
        datasets = os.listdir(root)
    else:
        datasets = args

    print(f"dataset {datasets}, epochs: {options.epochs}")

    # frequency analysis of qoi opcodes
    if (options.freq):
        op_list = []
        for dir in datasets:
            for test in os.listdir(os.path.join(root, dir)):
                test_path = os.path.join(root, dir, test)
                freq = op_freq(test_path)
                total = sum(freq.values())
                op_list.append([test] + [freq[op]/total for op in qoi.QOI_OPS])
        print('\n--- frequency analysis ---')
        print(tabulate.tabulate(op_list, headers=["test"] + qoi.QOI_OPS,
                                floatfmt='.2f', tablefmt='plain'))
        return

    # run benchmark
    for dir in datasets:
        aggregate_stats = empty_stats()
        # iterate multiple epochs for average
        for e in range(0, options.epochs):
            for test in os.listdir(os.path.join(root, dir)):
                test_path = os.path.join(root, dir, test)
                run_stats = run_benchmark(test_path)
                aggregate_stats = aggregate(aggregate_stats, run_stats)
                width, height = pix_count(test_path)
                run_stats['name'] = test
                run_stats['epoch'] = e
                run_stats['dimension'] = [width, height]
                run_stats['pixels'] = width * height
                stats_output.append(run_stats)

        stats_struct = average(aggregate_stats, options.epochs)
        table_data = [['png', stats_struct['png']['encode'],  stats_struct['png']['decode'],
                       int(stats_struct['png']['size'])],
                      ['qoi', stats_struct['qoi']['encode'],  stats_struct['qoi']['decode'],
                       int(stats_struct['qoi']['size'])]]

        print('\n--- %s benchmark data ---' %(dir))
        print(tabulate.tabulate(table_data, headers=header,
                                floatfmt='.2f', tablefmt='plain'))

    # display per test statistics
    if options.verbose:
        for dir in datasets:
            table_rows = []
            for test in os.listdir(os.path.join(root, dir)):
                samples = list(filter(lambda s: s['name'] == test, stats_output))
                stats_struct = empty_stats()
                pixel_count = samples[0]['pixels']

                for ittr in samples:
                    stats_struct = aggregate(stats_struct, ittr)
                stats_struct = average(stats_struct, options.epochs)
                table_data = [[test, 'png', stats_struct['png']['encode'],  stats_struct['png']['decode'],
                            pixel_count, stats_struct['png']['size'], stats_struct['png']['size'] / pixel_count],
                            [test, 'qoi', stats_struct['qoi']['encode'],  stats_struct['qoi']['decode'],
                            pixel_count, stats_struct['qoi']['size'], stats_struct['qoi']['size'] / pixel_count]]
                table_rows += table_data
            print('\n--- per test statistic ---')
            print(tabulate.tabulate(table_rows, headers=detailed_header,
                                    floatfmt='.2f', tablefmt='plain'))

    with open(stats_file, 'w') as jsonfile:
        json_struct = json.dumps(stats_output, indent=4)
        jsonfile.write(json_struct)


if __name__ == '__main__':
    main()
