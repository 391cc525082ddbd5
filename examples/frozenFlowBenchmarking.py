# %%
import os
import time
import numpy as np
from pyTurbAO import *


def benchmark_update(atm, num_iterations=100, parallel=False):
    """
    Benchmark the time required to advance the atmosphere by one sampling time.

    Parameters:
    -----------
    atm : frozenFlowAtmosphere
        The atmosphere to advance
    num_iterations : int, optional
        Number of updates to time (default: 100)
    parallel : bool, optional
        Advance the layers on a thread pool (default: False)

    Returns:
    --------
    float
        Average time in seconds of one update
    dict
        Additional statistics (min, max, std of times)
    """
    times = []
    for _ in range(num_iterations):
        start_time = time.time()
        atm.update(parallel=parallel)
        times.append(time.time() - start_time)

    times = np.array(times)
    stats = {
        'min': np.min(times),
        'max': np.max(times),
        'std': np.std(times)
    }
    return np.mean(times), stats


# %%
config_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), "atmosphere_config.yaml")

start_time = time.time()
atm = frozenFlowAtmosphere(config_path, seed=2024)
print(f"Initialization time: {time.time() - start_time:.3f}s")
print(atm)

for parallel in (False, True):
    mean_time, stats = benchmark_update(atm, parallel=parallel)
    print(f"Update ({'parallel' if parallel else 'sequential'}): {mean_time*1e3:.2f}ms "
          f"(min {stats['min']*1e3:.2f}ms, max {stats['max']*1e3:.2f}ms, std {stats['std']*1e3:.2f}ms)")

# %%
for src in atm.relay():
    print(f"{src}: residual phase rms {np.std(src.phase[src.mask]):.3f}rad at t={src.timeStamp:.3f}s")

print(f"Seeing-limited FWHM: {atm.telParams.fullWidthHalfMax(atm.atmParams):.3f} 1/m")
