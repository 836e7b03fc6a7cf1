import json

import matplotlib
matplotlib.use('Agg')

import numpy as np
import pytest
from PIL import Image

import analyse
import experiment
import qoi


@pytest.fixture
def dataset(tmp_path):
    root = tmp_path / 'dataset'
    (root / 'flat').mkdir(parents=True)
    (root / 'noise').mkdir()
    Image.new('RGB', (8, 4), (10, 20, 30)).save(root / 'flat' / 'solid.png')
    rng = np.random.default_rng(1)
    noise = rng.integers(0, 256, size=(6, 5, 4), dtype=np.uint8)
    Image.fromarray(noise).save(root / 'noise' / 'noise.png')
    return root


def test_aggregate_and_average():
    a = {'png': {'encode': 1, 'decode': 2, 'size': 3}, 'qoi': {'encode': 4, 'decode': 5, 'size': 6}}
    total = experiment.aggregate(experiment.aggregate(experiment.empty_stats(), a), a)
    assert total['qoi'] == {'encode': 8, 'decode': 10, 'size': 12}
    assert experiment.average(total, 2) == a


def test_run_benchmark(dataset):
    stats = experiment.run_benchmark(str(dataset / 'flat' / 'solid.png'))
    assert set(stats) == {'png', 'qoi'}
    assert stats['qoi']['size'] == 14 + 4 + 1 + 8
    assert stats['png']['size'] > 0
    assert stats['qoi']['encode'] >= 0


def test_pix_count(dataset):
    assert experiment.pix_count(str(dataset / 'noise' / 'noise.png')) == [5, 6]


def test_op_freq(dataset):
    freq = experiment.op_freq(str(dataset / 'flat' / 'solid.png'))
    assert list(freq) == qoi.QOI_OPS
    assert freq['QOI_OP_RGB'] == 1
    assert freq['QOI_OP_RUN'] == 1
    assert sum(freq.values()) == 2


def test_main_benchmark(dataset, tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(experiment, 'stats_output', [])
    monkeypatch.setattr('sys.argv', ['experiment', '-d', str(dataset), '-e', '2', '-v', 'all'])
    experiment.main()

    out = capsys.readouterr().out
    assert 'flat benchmark data' in out
    assert 'noise benchmark data' in out
    assert 'per test statistic' in out

    with open(tmp_path / experiment.stats_file) as f:
        samples = json.load(f)
    assert len(samples) == 4
    assert {s['name'] for s in samples} == {'solid.png', 'noise.png'}


def test_main_frequency(dataset, monkeypatch, capsys):
    monkeypatch.setattr('sys.argv', ['experiment', '-d', str(dataset), '-q', 'flat'])
    experiment.main()
    out = capsys.readouterr().out
    assert 'frequency analysis' in out
    assert 'solid.png' in out


def test_mult_hash_matches_cache():
    px = np.array([200, 100, 50, 255], dtype=np.uint8)
    assert analyse.mult_hash(px) == qoi.pixel_hash((200, 100, 50, 255)) == 31


def test_hash_distribution():
    grid = np.zeros((2, 3, 4), dtype=np.uint8)
    grid[:, :, 3] = 255
    grid[1, 2] = (1, 1, 1, 255)
    dist = analyse.pixel_hash_distribution(grid, analyse.mult_hash, show=False)
    assert len(dist) == 6
    assert dist.count(53) == 5
    assert dist.count(4) == 1


def test_with_alpha():
    rgb = np.full((2, 2, 3), 7, dtype=np.uint8)
    rgba = analyse.with_alpha(rgb)
    assert rgba.shape == (2, 2, 4)
    assert (rgba[:, :, 3] == 255).all()
