import os
import time
import timeit

import matplotlib.pyplot as plt
import numpy as np

from params import Argon2Parameters, normalize

CODE_STR = """derive_key(b"password",
                      b"saltsalt12345678",
                      iterations={t},
                      memory_kib={m},
                      parallelism={p},
                      key_length={tau})"""

SETUP_STR = "from argon import derive_key"

DEFAULTS = {
    "t": 1,
    "m": 64,
    "p": 1,
    "tau": 32
}


def bench(repeats=10, **kwargs):
    """
    Times derive_key for every value of the one keyword ending in "_range",
    all other parameters (t, m, p, tau) are fixed to the given or default values.

    :param repeats: number of derivations averaged per value

    :return: numpy array of the average seconds per value
    """

    ranges = [name for name in kwargs if name.endswith("_range")]
    if len(ranges) != 1:
        raise ValueError("exactly one <name>_range keyword is required")

    name = ranges[0]
    val_name = name[:-6]
    values = list(kwargs[name])

    args = dict(DEFAULTS)
    args.update({k: v for k, v in kwargs.items() if k != name})

    compute_times = np.zeros(len(values))
    for i, v in enumerate(values):
        if i > 0:
            print(f"\r{val_name}: {v} [{i}/{len(values)}] avg. {compute_times[:i].mean()}", sep=" ", end="", flush=True)

        args[val_name] = v
        compute_times[i] = timeit.timeit(CODE_STR.format(**args), setup=SETUP_STR, number=repeats) / repeats
    print()

    return compute_times


def summarize(timings) -> dict:
    timings = np.asarray(timings, dtype=float)
    return {
        "mean": float(np.mean(timings)),
        "median": float(np.median(timings)),
        "p95": float(np.percentile(timings, 95)),
        "min": float(np.min(timings)),
        "max": float(np.max(timings)),
    }


def calibrate(target_seconds: float,
              iterations: int = 1,
              parallelism: int = 2,
              start_memory_kib: int = 8 * 1024,
              max_memory_kib: int = 4 * 1024 * 1024,
              repeats: int = 3) -> Argon2Parameters:
    """
    Finds the largest power of two memory cost whose derivation stays within the time budget.

    :param target_seconds: time budget of one hash computation
    :param iterations: fixed number of iterations
    :param parallelism: fixed degree of parallelism
    :param start_memory_kib: first memory cost tried, used even if it already exceeds the budget
    :param max_memory_kib: upper bound of the memory cost
    :param repeats: derivations averaged per memory cost

    :return: normalized parameters
    """

    memory_kib = start_memory_kib
    best = memory_kib

    while memory_kib <= max_memory_kib:
        seconds = bench(repeats=repeats, t=iterations, p=parallelism, m_range=[memory_kib])[0]
        if seconds > target_seconds:
            break
        best = memory_kib
        memory_kib *= 2

    return normalize(Argon2Parameters(memory_kib=best,
                                      iterations=iterations,
                                      parallelism=parallelism))


def plot_time_results(values, timings, labels, value_label, title, output_dir="plots"):
    """
    Plots timings over values, one line per label, and saves the figure as png.

    :return: path of the saved plot
    """

    for v, t, l in zip(values, timings, labels):
        plt.plot(v, t, label=l)
    plt.xlabel(value_label)
    plt.xticks(values[0])
    plt.ylabel("time")
    plt.title(title)
    plt.legend()

    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, f"{time.strftime('%Y%m%d-%H%M%S')}.png")
    plt.savefig(path)
    plt.clf()

    return path


def memory_bench():
    memory_values = [2 ** i for i in range(6, 17)]

    res = bench(repeats=10, t=1, p=1, m_range=memory_values)

    plot_time_results(
        [memory_values],
        [res],
        ["p=1"],
        "m",
        f"Argon2id compute times for different memory cost (avg over {10} repeats)"
    )


def iterations_bench():
    res_p1 = bench(repeats=10, m=1024, p=1, t_range=range(1, 20))
    res_p4 = bench(repeats=10, m=1024, p=4, t_range=range(1, 20))

    plot_time_results(
        [list(range(1, 20)), list(range(1, 20))],
        [res_p1, res_p4],
        ["p=1", "p=4"],
        "t",
        f"Argon2id compute times for different t (avg over {10} repeats)"
    )


def parallelism_bench():
    res = bench(repeats=10, m=64 * 1024, t=1, p_range=[1, 2, 4, 8])

    plot_time_results(
        [[1, 2, 4, 8]],
        [res],
        ["m=64 MiB"],
        "p",
        f"Argon2id compute times for different p (avg over {10} repeats)"
    )
    print(summarize(res))


if __name__ == "__main__":
    memory_bench()
    iterations_bench()
    parallelism_bench()

    params = calibrate(0.5)
    print(f"parameters for 0.5 s per hash: {params}")
