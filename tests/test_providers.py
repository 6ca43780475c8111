"""데이터 제공자 테스트. 네트워크/DB는 가짜 객체로 대체."""

from datetime import date, timedelta

import pandas as pd
import pytest
from clickhouse_connect.driver.exceptions import ClickHouseError

from strategy_backtester.core.data_provider import frame_to_bars
from strategy_backtester.core.errors import DataUnavailable
from strategy_backtester.data import providers
from strategy_backtester.data.providers import (
    CachedPriceProvider,
    ClickHousePriceProvider,
    CsvPriceProvider,
    InMemoryPriceProvider,
    YahooFinanceProvider,
    generate_sample_data,
)

from conftest import START

END = START + timedelta(days=9)


class TestFrameToBars:

    def test_sorts_and_converts(self, make_frame):
        df = make_frame([100, 101, 102]).iloc[::-1]
        bars = frame_to_bars(df, "AAA")
        assert [b.close for b in bars] == [100.0, 101.0, 102.0]
        assert isinstance(bars[0].volume, int)

    @pytest.mark.parametrize("mutate", [
        lambda df: df.drop(columns=["volume"]),
        lambda df: df.assign(close=[100.0, None, 102.0]),
        lambda df: df.assign(date=[START] * 3),
        lambda df: df.assign(close=[100.0, 0.0, 102.0]),
        lambda df: df.assign(volume=[1, -1, 1]),
        lambda df: df.iloc[0:0],
        lambda df: df.assign(close=[100.0, "n/a", 102.0]),
        lambda df: df.assign(volume=[1, "many", 1]),
        lambda df: df.assign(date=["2024-01-01", "not-a-date", "2024-01-03"]),
    ])
    def test_rejects_bad_frames(self, make_frame, mutate):
        with pytest.raises(DataUnavailable):
            frame_to_bars(mutate(make_frame([100, 101, 102])), "AAA")


class TestInMemoryPriceProvider:

    def test_inclusive_slice(self, make_provider):
        provider = make_provider({"AAA": list(range(100, 110))})
        bars = provider.fetch_series("AAA", START + timedelta(days=2), START + timedelta(days=4))
        assert [b.close for b in bars] == [102.0, 103.0, 104.0]

    def test_unknown_symbol(self):
        with pytest.raises(DataUnavailable) as exc_info:
            InMemoryPriceProvider().fetch_series("ZZZ", START, END)
        assert exc_info.value.symbol == "ZZZ"

    def test_unparseable_date_is_data_unavailable(self, make_frame):
        df = make_frame([100, 101, 102]).assign(date=["2024-01-01", "not-a-date", "2024-01-03"])
        with pytest.raises(DataUnavailable) as exc_info:
            InMemoryPriceProvider({"AAA": df}).fetch_series("AAA", START, END)
        assert exc_info.value.symbol == "AAA"

    def test_loaded_frame_is_copied(self, make_frame):
        df = make_frame([100, 101])
        provider = InMemoryPriceProvider({"AAA": df})
        df.loc[0, "close"] = -1
        assert provider.fetch_series("AAA", START, END)[0].close == 100.0


class TestCsvPriceProvider:

    def test_reads_symbol_file(self, tmp_path, make_frame):
        df = make_frame([100, 101, 102]).rename(columns=str.capitalize)
        df.to_csv(tmp_path / "AAA.csv", index=False)
        provider = CsvPriceProvider(tmp_path)
        bars = provider.fetch_series("AAA", START, END)
        assert [b.date for b in bars] == [START, START + timedelta(days=1), START + timedelta(days=2)]
        assert provider.available_symbols() == ["AAA"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(DataUnavailable):
            CsvPriceProvider(tmp_path).fetch_series("AAA", START, END)

    def test_missing_date_column(self, tmp_path):
        (tmp_path / "AAA.csv").write_text("close\n100\n", encoding="utf-8")
        with pytest.raises(DataUnavailable):
            CsvPriceProvider(tmp_path).fetch_series("AAA", START, END)

    @pytest.mark.parametrize("rows", [
        "2024-01-01,100,101,99,n/a-price,1000\n2024-01-02,100,101,99,100,1000\n",
        "2024-01-01,100,101,99,100,1000\nnot-a-date,100,101,99,100,1000\n",
    ])
    def test_malformed_rows(self, tmp_path, rows):
        (tmp_path / "AAA.csv").write_text("date,open,high,low,close,volume\n" + rows, encoding="utf-8")
        with pytest.raises(DataUnavailable):
            CsvPriceProvider(tmp_path).fetch_series("AAA", START, END)


class FakeTicker:
    """yfinance.Ticker 대체. 실패 횟수를 지정할 수 있다."""

    calls: list = []
    failures = 0
    frame: pd.DataFrame | None = None

    def __init__(self, symbol):
        self.symbol = symbol

    def history(self, **kwargs):
        FakeTicker.calls.append((self.symbol, kwargs))
        if len(FakeTicker.calls) <= FakeTicker.failures:
            raise ConnectionError("network down")
        return FakeTicker.frame


def yahoo_frame(closes, start=START):
    index = pd.DatetimeIndex(
        [pd.Timestamp(start + timedelta(days=i)) for i in range(len(closes))],
        name="Date",
    ).tz_localize("America/New_York")
    return pd.DataFrame({
        "Open": closes,
        "High": [c + 1 for c in closes],
        "Low": [c - 1 for c in closes],
        "Close": closes,
        "Adj Close": [c * 0.5 for c in closes],
        "Volume": [1_000] * len(closes),
    }, index=index)


class TestYahooFinanceProvider:

    @pytest.fixture(autouse=True)
    def fake_yfinance(self, monkeypatch):
        FakeTicker.calls = []
        FakeTicker.failures = 0
        FakeTicker.frame = yahoo_frame([100.0, 101.0, 102.0])
        monkeypatch.setattr(providers.yf, "Ticker", FakeTicker)

    def test_normalizes_columns(self):
        bars = YahooFinanceProvider(sleep=lambda s: None).fetch_series("AAA", START, END)
        assert [b.close for b in bars] == [100.0, 101.0, 102.0]
        assert bars[0].date == START
        _, kwargs = FakeTicker.calls[0]
        assert kwargs["end"] == END + timedelta(days=1)

    def test_adjusted_close(self):
        provider = YahooFinanceProvider(use_adjusted_close=True, sleep=lambda s: None)
        assert provider.fetch_series("AAA", START, END)[0].close == 50.0

    def test_retries_then_succeeds(self):
        FakeTicker.failures = 2
        sleeps = []
        bars = YahooFinanceProvider(max_retries=3, retry_delay=7, sleep=sleeps.append).fetch_series("AAA", START, END)
        assert len(bars) == 3
        assert sleeps == [7, 7]

    def test_gives_up_after_max_retries(self):
        FakeTicker.failures = 10
        sleeps = []
        with pytest.raises(DataUnavailable):
            YahooFinanceProvider(max_retries=3, sleep=sleeps.append).fetch_series("AAA", START, END)
        assert len(FakeTicker.calls) == 3
        assert len(sleeps) == 2

    def test_empty_result_not_retried(self):
        FakeTicker.frame = pd.DataFrame()
        with pytest.raises(DataUnavailable):
            YahooFinanceProvider(sleep=lambda s: None).fetch_series("AAA", START, END)
        assert len(FakeTicker.calls) == 1


class FakeQueryResult:
    def __init__(self, rows):
        self.result_rows = rows


class FakeClickHouseClient:

    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error
        self.queries = []
        self.closed = False

    def query(self, query, parameters=None):
        self.queries.append((query, parameters))
        if self.error is not None:
            raise self.error
        return FakeQueryResult(self.rows)

    def close(self):
        self.closed = True


class TestClickHousePriceProvider:

    ROWS = [
        (START, 100.0, 101.0, 99.0, 100.5, 1_000),
        (START + timedelta(days=1), 101.0, 102.0, 100.0, 101.5, 2_000),
    ]

    def test_fetch_series(self):
        client = FakeClickHouseClient(self.ROWS)
        bars = ClickHousePriceProvider(client=client).fetch_series("^GSPC", START, END)
        assert [b.close for b in bars] == [100.5, 101.5]
        query, parameters = client.queries[0]
        assert "adjusted_close AS close" in query
        assert parameters == {"ticker": "^GSPC", "start_date": START, "end_date": END}

    def test_raw_close(self):
        client = FakeClickHouseClient(self.ROWS)
        ClickHousePriceProvider(use_adjusted_close=False, client=client).fetch_series("AAA", START, END)
        assert "close AS close" in client.queries[0][0]
        assert "adjusted_close" not in client.queries[0][0]

    @pytest.mark.parametrize("error", [ClickHouseError("boom"), OSError("connection refused")])
    def test_errors_become_data_unavailable(self, error):
        provider = ClickHousePriceProvider(client=FakeClickHouseClient(error=error))
        with pytest.raises(DataUnavailable):
            provider.fetch_series("AAA", START, END)

    def test_no_rows(self):
        with pytest.raises(DataUnavailable):
            ClickHousePriceProvider(client=FakeClickHouseClient([])).fetch_series("AAA", START, END)

    def test_available_symbols_and_close(self):
        client = FakeClickHouseClient([("AAA",), ("BBB",)])
        provider = ClickHousePriceProvider(client=client)
        assert provider.available_symbols() == ["AAA", "BBB"]
        provider.close()
        assert client.closed


class CountingProvider(InMemoryPriceProvider):

    def __init__(self, data):
        super().__init__(data)
        self.calls = 0

    def fetch_series(self, symbol, start, end):
        self.calls += 1
        return super().fetch_series(symbol, start, end)


class TestCachedPriceProvider:

    def test_caches_by_symbol_and_range(self, make_frame):
        inner = CountingProvider({"AAA": make_frame([100, 101, 102])})
        cached = CachedPriceProvider(inner)
        first = cached.fetch_series("AAA", START, END)
        second = cached.fetch_series("AAA", START, END)
        cached.fetch_series("AAA", START, START + timedelta(days=1))
        assert first == second
        assert inner.calls == 2
        assert (cached.hits, cached.misses) == (1, 2)

    def test_failures_not_cached(self):
        inner = CountingProvider({})
        cached = CachedPriceProvider(inner)
        for _ in range(2):
            with pytest.raises(DataUnavailable):
                cached.fetch_series("AAA", START, END)
        assert inner.calls == 2

    def test_clear_cache(self, make_frame):
        inner = CountingProvider({"AAA": make_frame([100, 101])})
        cached = CachedPriceProvider(inner)
        cached.fetch_series("AAA", START, END)
        cached.clear_cache()
        cached.fetch_series("AAA", START, END)
        assert inner.calls == 2


class TestGenerateSampleData:

    def test_deterministic_per_symbol(self):
        a = generate_sample_data("AAPL", date(2024, 1, 1), date(2024, 3, 31))
        b = generate_sample_data("AAPL", date(2024, 1, 1), date(2024, 3, 31))
        c = generate_sample_data("MSFT", date(2024, 1, 1), date(2024, 3, 31))
        pd.testing.assert_frame_equal(a, b)
        assert not a["close"].equals(c["close"])

    def test_valid_bars_on_business_days(self):
        df = generate_sample_data("AAPL", date(2024, 1, 1), date(2024, 12, 31))
        bars = frame_to_bars(df, "AAPL")
        assert all(b.date.weekday() < 5 for b in bars)
        assert all(b.low <= min(b.open, b.close) and b.high >= max(b.open, b.close) for b in bars)
