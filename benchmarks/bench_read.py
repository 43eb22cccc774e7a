"""Benchmark metaimage read and write performance by storage layout."""

from __future__ import annotations

import os
import sys
import tempfile
import time

import numpy as np


def benchmark(func, warmup=1, runs=5):
    """Run benchmark and return average and deviation of time in ms."""
    for _ in range(warmup):
        func()
    times = []
    for _ in range(runs):
        t0 = time.perf_counter()
        func()
        t1 = time.perf_counter()
        times.append((t1 - t0) * 1000)
    avg = sum(times) / len(times)
    std = (sum((t - avg) ** 2 for t in times) / len(times)) ** 0.5
    return avg, std


LAYOUTS = {
    'mhd+raw': ('volume.mhd', {}),
    'mha': ('volume.mha', {}),
    'mha deflate': ('volume_z.mha', {'compress': True}),
    'mhd big-endian': ('volume_be.mhd', {'byteorder': '>'}),
    'file pattern': ('pattern.mhd', {'datafile': 'slice%04d.raw'}),
}


def run_benchmarks(shape=(64, 512, 512), compare=False):
    """Run read benchmarks for each storage layout."""
    import metaimage

    print(f'metaimage version: {metaimage.__version__}')
    print(f'Python: {sys.version}')
    print()

    data = np.random.default_rng(0).integers(
        0, 4096, shape, dtype=np.uint16
    )
    results = {}

    with tempfile.TemporaryDirectory() as tmpdir:
        print(f'=== {data.shape} {data.dtype} ===')
        for label, (name, kwargs) in LAYOUTS.items():
            path = os.path.join(tmpdir, name)

            def bench_write(p=path, k=kwargs):
                metaimage.imwrite(p, data, **k)

            def bench_read(p=path):
                return metaimage.imread(p)

            wavg, wstd = benchmark(bench_write, warmup=0, runs=3)
            ravg, rstd = benchmark(bench_read, warmup=1, runs=5)
            assert np.array_equal(bench_read(), data)
            print(
                f'  {label:16} write {wavg:8.1f} +/- {wstd:5.1f} ms'
                f'  read {ravg:8.1f} +/- {rstd:5.1f} ms'
            )
            results[label] = ravg
        print()

    if compare:
        print('=== Comparison ===')
        base = results['mhd+raw']
        for label, value in results.items():
            print(f'  {label}: {value / base:.2f}x of mhd+raw read time')


if __name__ == '__main__':
    compare = '--compare' in sys.argv
    run_benchmarks(compare=compare)
