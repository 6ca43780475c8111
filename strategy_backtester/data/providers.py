"""
가격 시계열 제공자 구현 모음.

[ 역할 ]
    core/data_provider.py::PriceSeriesProvider 구현체들.
    어떤 소스든 fetch_series()는 검증된 Bar 리스트를 반환하거나 DataUnavailable을 던진다.
    (None이나 빈 리스트를 반환하지 않는다)

[ 포함 클래스 ]
    InMemoryPriceProvider   - 미리 로드된 DataFrame에서 조회 (테스트, 샘플 데이터)
    CsvPriceProvider        - {data_dir}/{SYMBOL}.csv 파일 아카이브
    YahooFinanceProvider    - yfinance 조회 + 재시도
    ClickHousePriceProvider - ClickHouse stock_ohlcv 테이블 조회 (읽기 전용)
    CachedPriceProvider     - 다른 제공자를 감싸는 (symbol, start, end) 캐시

[ 호출하는 곳 ]
    - run_backtest.py::build_provider()에서 --source 옵션에 따라 생성
    - backtest/engine.py::BacktestEngine.run()이 리플레이 전에 fetch_series() 호출

[ 샘플 데이터 ]
    generate_sample_data()는 종목 코드로 시드를 고정한 랜덤워크 OHLCV를 생성.
    같은 종목/기간이면 프로세스가 달라도 항상 같은 데이터.
"""

import logging
import time
import zlib
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Callable

import clickhouse_connect
import numpy as np
import pandas as pd
import yfinance as yf
from clickhouse_connect.driver.exceptions import ClickHouseError

from strategy_backtester.core.data_provider import (
    OHLCV_COLUMNS,
    Bar,
    PriceSeriesProvider,
    frame_to_bars,
)
from strategy_backtester.core.errors import DataUnavailable

logger = logging.getLogger("strategy_backtester.data")


def _slice(df: pd.DataFrame, start: date, end: date, symbol: str) -> pd.DataFrame:
    """date 컬럼 기준 [start, end] 구간만 남김. 날짜로 읽을 수 없는 값이 있으면 DataUnavailable."""
    if "date" not in df.columns:
        raise DataUnavailable(symbol, "date 컬럼 없음")
    try:
        dates = pd.to_datetime(df["date"]).dt.date
    except (ValueError, TypeError) as e:
        raise DataUnavailable(symbol, f"날짜 파싱 실패: {e}") from e
    return df[(dates >= start) & (dates <= end)]


# ─── 메모리 ─────────────────────────────────────────────────────────────────

class InMemoryPriceProvider(PriceSeriesProvider):
    """DataFrame 기반 데이터 제공자.

    사용법:
        provider = InMemoryPriceProvider()
        provider.load_data("AAPL", df)   # columns: date, open, high, low, close, volume
        bars = provider.fetch_series("AAPL", date(2024, 1, 1), date(2024, 12, 31))
    """

    def __init__(self, data: dict[str, pd.DataFrame] | None = None):
        self._data: dict[str, pd.DataFrame] = {}   # symbol → OHLCV DataFrame
        for symbol, df in (data or {}).items():
            self.load_data(symbol, df)

    def load_data(self, symbol: str, df: pd.DataFrame) -> None:
        self._data[symbol] = df.copy()

    def fetch_series(self, symbol: str, start: date, end: date) -> list[Bar]:
        if symbol not in self._data:
            raise DataUnavailable(symbol, "로드된 데이터 없음")
        return frame_to_bars(_slice(self._data[symbol], start, end, symbol), symbol)


# ─── CSV ────────────────────────────────────────────────────────────────────

class CsvPriceProvider(PriceSeriesProvider):
    """CSV 파일 아카이브. 종목당 파일 하나 ({data_dir}/{SYMBOL}.csv)."""

    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir)

    def path_for(self, symbol: str) -> Path:
        return self.data_dir / f"{symbol}.csv"

    def available_symbols(self) -> list[str]:
        return sorted(p.stem for p in self.data_dir.glob("*.csv"))

    def fetch_series(self, symbol: str, start: date, end: date) -> list[Bar]:
        path = self.path_for(symbol)
        if not path.exists():
            raise DataUnavailable(symbol, f"파일 없음: {path}")
        try:
            df = pd.read_csv(path)
        except (OSError, ValueError) as e:
            raise DataUnavailable(symbol, f"CSV 읽기 실패: {e}") from e

        df.columns = [str(c).strip().lower() for c in df.columns]
        return frame_to_bars(_slice(df, start, end, symbol), symbol)


# ─── Yahoo Finance ──────────────────────────────────────────────────────────

class YahooFinanceProvider(PriceSeriesProvider):
    """yfinance 기반 데이터 제공자.

    네트워크 오류는 max_retries회까지 retry_delay초 간격으로 재시도하고,
    마지막 시도까지 실패하면 DataUnavailable.
    """

    def __init__(
        self,
        max_retries: int = 3,
        retry_delay: float = 5,
        use_adjusted_close: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.use_adjusted_close = use_adjusted_close
        self._sleep = sleep

    def fetch_series(self, symbol: str, start: date, end: date) -> list[Bar]:
        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                logger.info(f"Yahoo 조회: {symbol} {start} ~ {end} (시도 {attempt}/{self.max_retries})")
                df = yf.Ticker(symbol).history(
                    start=start,
                    end=end + timedelta(days=1),   # end 포함
                    auto_adjust=False,
                    actions=False,
                )
            except Exception as e:
                last_error = e
                logger.warning(f"Yahoo 조회 실패: {symbol} (시도 {attempt}/{self.max_retries}): {e}")
                if attempt < self.max_retries:
                    self._sleep(self.retry_delay)
                continue

            if df is None or df.empty:
                raise DataUnavailable(symbol, "Yahoo 조회 결과 없음")
            return frame_to_bars(_slice(self._normalize(df), start, end, symbol), symbol)

        raise DataUnavailable(symbol, f"Yahoo 조회 {self.max_retries}회 실패: {last_error}")

    def _normalize(self, df: pd.DataFrame) -> pd.DataFrame:
        """yfinance 컬럼명을 표준 OHLCV 컬럼으로 변환."""
        df = df.reset_index().rename(columns={
            "Date": "date",
            "Open": "open",
            "High": "high",
            "Low": "low",
            "Close": "close",
            "Adj Close": "adj_close",
            "Volume": "volume",
        })
        if self.use_adjusted_close and "adj_close" in df.columns:
            df["close"] = df["adj_close"]
        if "date" in df.columns and pd.api.types.is_datetime64_any_dtype(df["date"]):
            # timezone 제거
            df["date"] = df["date"].dt.date
        return df


# ─── ClickHouse ─────────────────────────────────────────────────────────────

class ClickHousePriceProvider(PriceSeriesProvider):
    """ClickHouse stock_ohlcv 테이블 조회 (읽기 전용).

    사용 예:
        provider = ClickHousePriceProvider("localhost", 8123, "default", password="password")
        bars = provider.fetch_series("^GSPC", date(2024, 1, 1), date(2024, 12, 31))
    """

    TABLE = "stock_ohlcv"

    def __init__(
        self,
        host: str = "localhost",
        port: int = 8123,
        database: str = "default",
        user: str = "default",
        password: str = "",
        use_adjusted_close: bool = True,
        client: Any = None,
    ):
        """
        Args:
            host, port, database, user, password: 접속 정보
            use_adjusted_close: True이면 adjusted_close를 close로 사용
            client: 이미 생성된 clickhouse_connect 클라이언트 (없으면 첫 조회 시 연결)
        """
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.use_adjusted_close = use_adjusted_close
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = clickhouse_connect.get_client(
                host=self.host,
                port=self.port,
                database=self.database,
                username=self.user,
                password=self.password,
            )
        return self._client

    def fetch_series(self, symbol: str, start: date, end: date) -> list[Bar]:
        close_column = "adjusted_close" if self.use_adjusted_close else "close"
        query = f"""
            SELECT date, open, high, low, {close_column} AS close, volume
            FROM {self.TABLE}
            WHERE ticker = %(ticker)s
              AND date >= %(start_date)s
              AND date <= %(end_date)s
            ORDER BY date ASC
        """
        try:
            result = self.client.query(
                query,
                parameters={"ticker": symbol, "start_date": start, "end_date": end},
            )
        except (ClickHouseError, OSError) as e:
            raise DataUnavailable(symbol, f"ClickHouse 조회 실패: {e}") from e

        df = pd.DataFrame(result.result_rows, columns=OHLCV_COLUMNS)
        return frame_to_bars(df, symbol)

    def available_symbols(self) -> list[str]:
        result = self.client.query(f"SELECT DISTINCT ticker FROM {self.TABLE} ORDER BY ticker")
        return [row[0] for row in result.result_rows]

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


# ─── 캐시 ───────────────────────────────────────────────────────────────────

class CachedPriceProvider(PriceSeriesProvider):
    """다른 제공자 위에 캐싱 레이어를 추가한 래퍼.

    캐시는 인스턴스가 소유한다 (프로세스 전역 아님). 실패한 조회는 캐시하지 않는다.
    """

    def __init__(self, provider: PriceSeriesProvider):
        self.provider = provider
        self._cache: dict[tuple[str, date, date], list[Bar]] = {}
        self.hits = 0
        self.misses = 0

    def fetch_series(self, symbol: str, start: date, end: date) -> list[Bar]:
        key = (symbol, start, end)
        if key in self._cache:
            self.hits += 1
            return list(self._cache[key])

        self.misses += 1
        bars = self.provider.fetch_series(symbol, start, end)
        self._cache[key] = list(bars)
        return bars

    def clear_cache(self) -> None:
        self._cache.clear()


# ─── 샘플 데이터 ─────────────────────────────────────────────────────────────

def generate_sample_data(
    symbol: str,
    start: date,
    end: date,
    initial_price: float = 100.0,
    volatility: float = 0.02,
    drift: float = 0.0002,
) -> pd.DataFrame:
    """백테스트용 샘플 주가 데이터 생성 (영업일 기준 랜덤워크)."""
    rng = np.random.default_rng(zlib.crc32(symbol.encode("utf-8")))

    dates = pd.bdate_range(start=start, end=end)
    n = len(dates)

    returns = rng.normal(drift, volatility, n)
    closes = initial_price * np.cumprod(1 + returns)
    highs = closes * (1 + np.abs(rng.normal(0, 0.01, n)))
    lows = closes * (1 - np.abs(rng.normal(0, 0.01, n)))
    opens = closes * (1 + rng.normal(0, 0.005, n))
    volumes = rng.lognormal(12, 1, n).astype(int)

    return pd.DataFrame({
        "date": [d.date() for d in dates],
        "open": np.round(opens, 2),
        "high": np.round(np.maximum(highs, opens), 2),
        "low": np.round(np.minimum(lows, opens), 2),
        "close": np.round(closes, 2),
        "volume": volumes,
    })
