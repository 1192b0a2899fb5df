import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Make the flat top-level modules importable from the tests
ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


def make_bars(closes, volumes=None, start='2024-01-01', freq='1h', spread=0.01):
    """Build an OHLCV frame around the given closes"""
    closes = np.asarray(closes, dtype=float)
    if volumes is None:
        volumes = np.full(len(closes), 100.0)
    index = pd.date_range(start=start, periods=len(closes), freq=freq, tz='UTC', name='timestamp')
    opens = np.concatenate([[closes[0]], closes[:-1]])
    return pd.DataFrame({
        'open': opens,
        'high': np.maximum(opens, closes) * (1 + spread),
        'low': np.minimum(opens, closes) * (1 - spread),
        'close': closes,
        'volume': np.asarray(volumes, dtype=float),
    }, index=index)


@pytest.fixture
def bars_factory():
    return make_bars


@pytest.fixture
def random_bars():
    """400 hourly bars of a noisy oscillating market with volume spikes"""
    rng = np.random.default_rng(42)
    n = 400
    t = np.arange(n)
    closes = 2000 + 150 * np.sin(t / 15.0) + np.cumsum(rng.normal(0, 8, n))
    volumes = rng.gamma(2.0, 50.0, n)
    return make_bars(closes, volumes)
