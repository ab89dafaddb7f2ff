# consolidator/predictor.py
"""
Utilization forecasting helpers.

All functions are pure over a sequence of samples in [0, 1] (oldest first).
A forecast of ``None`` means there is no data to forecast from; callers pick
their own fallback.
"""
import math
from typing import Optional, Sequence

LOOK_BACK = 4


def _clamp01(x: float) -> float:
    if x < 0.0:
        return 0.0
    if x > 1.0:
        return 1.0
    return x


def dynamic_window(history: Sequence[float], gamma: float) -> int:
    """
    dws = floor(mean(|VRU_i - VRU_{i-1}|) + gamma), clamped to [1, n].
    With fewer than two samples there is no volatility to measure.
    """
    n = len(history)
    if n < 2:
        return max(1, math.floor(gamma))
    total = 0.0
    for i in range(1, n):
        total += abs(history[i] - history[i - 1])
    dws = math.floor(total / (n - 1) + gamma)
    return max(1, min(dws, n))


def moving_average(history: Sequence[float], window: int) -> Optional[float]:
    if not history or window < 1:
        return None
    k = min(window, len(history))
    return _clamp01(sum(history[-k:]) / k)


def weighted_moving_average(history: Sequence[float], window: int,
                            end: Optional[int] = None) -> Optional[float]:
    """WMA of the last ``window`` samples of ``history[:end]``, weights 1..k (newest heaviest)."""
    n = len(history) if end is None else min(end, len(history))
    if n <= 0 or window < 1:
        return None
    k = min(window, n)
    num = 0.0
    den = 0.0
    for i in range(k):
        w = k - i
        num += w * history[n - 1 - i]
        den += w
    return _clamp01(num / den)


def recent_deviation(history: Sequence[float], window: int, look_back: int = LOOK_BACK) -> float:
    """Max |sample - WMA up to that sample| over the last ``look_back`` samples."""
    n = len(history)
    if n == 0:
        return 0.0
    lb = max(1, min(look_back, n))
    max_dev = 0.0
    for i in range(n - lb, n):
        forecast = weighted_moving_average(history, window, end=i + 1)
        if forecast is not None:
            max_dev = max(max_dev, abs(history[i] - forecast))
    return max_dev


def adaptive_window(history: Sequence[float], base: int, epsilon: float, theta: float) -> int:
    # grow under volatility (more smoothing), shrink when stable (more responsive)
    n = len(history)
    if n == 0:
        return max(1, base)
    eps = max(0.0, epsilon)
    w = max(1, min(base, n))
    if recent_deviation(history, w) > theta:
        w = math.ceil(w * (1.0 + eps))
    else:
        w = math.floor(w * (1.0 - eps * 0.5))
    return max(1, min(w, n))


def infer_memory_fraction(cpu_fraction: float, ratio: float) -> float:
    # not capped above: a value > 1 signals memory pressure
    return max(0.0, ratio * cpu_fraction)


def mean_absolute_change(history: Sequence[float]) -> float:
    if len(history) < 2:
        return 0.0
    total = 0.0
    for i in range(1, len(history)):
        total += abs(history[i] - history[i - 1])
    return total / (len(history) - 1)
