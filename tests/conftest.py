"""
공용 테스트 픽스처.

가격 리스트로 OHLCV DataFrame / Bar 리스트 / 데이터 제공자를 만드는 팩토리를 제공한다.
"""

from datetime import date, timedelta

import numpy as np
import pandas as pd
import pytest

from strategy_backtester.core.data_provider import Bar
from strategy_backtester.data.providers import InMemoryPriceProvider

START = date(2024, 1, 1)

# 10봉 시나리오: 2/4 SMA 교차에서 4번째 봉 BUY, 7번째 봉 SELL
SCENARIO_CLOSES = [100, 101, 102, 103, 104, 103, 102, 101, 100, 99]


def _frame(closes, volumes=None, start=START, open_offset=0.0):
    n = len(closes)
    closes = [float(c) for c in closes]
    volumes = volumes if volumes is not None else [1_000] * n
    return pd.DataFrame({
        "date": [start + timedelta(days=i) for i in range(n)],
        "open": [c + open_offset for c in closes],
        "high": [c + 1 for c in closes],
        "low": [c - 1 for c in closes],
        "close": closes,
        "volume": volumes,
    })


@pytest.fixture
def make_frame():
    """make_frame(closes, volumes=None, start=START, open_offset=0.0) -> DataFrame (하루 간격)."""
    return _frame


@pytest.fixture
def make_bars():
    """make_bars(closes, volumes=None, start=START) -> list[Bar]."""
    def factory(closes, volumes=None, start=START, open_offset=0.0):
        df = _frame(closes, volumes, start, open_offset)
        return [
            Bar(
                date=row.date,
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                volume=int(row.volume),
            )
            for row in df.itertuples(index=False)
        ]
    return factory


@pytest.fixture
def make_provider():
    """make_provider({symbol: closes 또는 DataFrame}) -> InMemoryPriceProvider."""
    def factory(series: dict):
        provider = InMemoryPriceProvider()
        for symbol, data in series.items():
            df = data if isinstance(data, pd.DataFrame) else _frame(data)
            provider.load_data(symbol, df)
        return provider
    return factory


@pytest.fixture
def random_walk():
    """시드 고정 랜덤워크 종가 (양수 유지)."""
    def factory(n=300, seed=7, start_price=100.0):
        rng = np.random.default_rng(seed)
        returns = rng.normal(0, 0.02, n)
        return list(np.round(start_price * np.cumprod(1 + returns), 4))
    return factory
