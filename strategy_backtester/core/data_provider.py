"""
가격 시계열 제공 추상 클래스 정의.

[ 역할 ]
    OHLCV(시가/고가/저가/종가/거래량) 봉 시퀀스를 제공하는 인터페이스.
    데이터 소스(파일, API, DB 등)에 독립적으로 백테스트에 데이터 공급.

[ 구현체 ]
    - data/providers.py::InMemoryPriceProvider   (DataFrame 기반, 테스트/샘플용)
    - data/providers.py::CsvPriceProvider        (CSV 아카이브)
    - data/providers.py::YahooFinanceProvider    (yfinance REST)
    - data/providers.py::ClickHousePriceProvider (ClickHouse stock_ohlcv 조회)

[ 호출하는 곳 ]
    - backtest/engine.py::BacktestEngine.run()이 리플레이 전에 종목별로 한 번씩 호출

[ 불변 조건 ]
    fetch_series()가 반환하는 Bar 리스트는 날짜 오름차순, 중복 날짜 없음,
    가격 > 0, 거래량 >= 0. 위반 시 DataUnavailable.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date

import pandas as pd

from strategy_backtester.core.errors import DataUnavailable

OHLCV_COLUMNS = ["date", "open", "high", "low", "close", "volume"]


@dataclass(frozen=True)
class Bar:
    """단일 봉(캔들) 데이터. 조회 이후 변경되지 않는다."""
    date: date
    open: float      # 시가
    high: float      # 고가
    low: float       # 저가
    close: float     # 종가
    volume: int      # 거래량


class PriceSeriesProvider(ABC):
    """가격 시계열 제공 추상 클래스.

    모든 데이터 제공자 구현체는 이 클래스를 상속받아 fetch_series()를 구현해야 한다.
    """

    @abstractmethod
    def fetch_series(self, symbol: str, start: date, end: date) -> list[Bar]:
        """기간 내 봉 시퀀스 조회 (start, end 모두 포함).

        Raises:
            DataUnavailable: 네트워크/파싱 실패, 빈 결과, 잘못된 데이터
        """
        ...


def validate_series(bars: list[Bar], symbol: str) -> list[Bar]:
    """Bar 리스트의 불변 조건 검증. 통과하면 그대로 반환."""
    if not bars:
        raise DataUnavailable(symbol, "빈 시계열")

    previous: date | None = None
    for bar in bars:
        prices = (bar.open, bar.high, bar.low, bar.close)
        if any(math.isnan(p) or p <= 0 for p in prices):
            raise DataUnavailable(symbol, f"{bar.date}: 가격이 0 이하 또는 NaN")
        if bar.volume < 0:
            raise DataUnavailable(symbol, f"{bar.date}: 거래량 음수 ({bar.volume})")
        if previous is not None and bar.date <= previous:
            raise DataUnavailable(symbol, f"{bar.date}: 날짜 순서 위반 또는 중복")
        previous = bar.date
    return bars


def frame_to_bars(df: pd.DataFrame | None, symbol: str) -> list[Bar]:
    """OHLCV DataFrame → 검증된 Bar 리스트.

    Args:
        df: columns [date, open, high, low, close, volume]
        symbol: 오류 메시지용 종목 코드

    Raises:
        DataUnavailable: 빈 DataFrame, 컬럼 누락, NaN, 중복 날짜 등
    """
    if df is None or df.empty:
        raise DataUnavailable(symbol, "빈 시계열")

    missing = set(OHLCV_COLUMNS) - set(df.columns)
    if missing:
        raise DataUnavailable(symbol, f"컬럼 누락: {sorted(missing)}")

    frame = df[OHLCV_COLUMNS].copy()
    if frame.isnull().values.any():
        raise DataUnavailable(symbol, "NULL 값 포함")

    try:
        frame["date"] = pd.to_datetime(frame["date"]).dt.date
    except (ValueError, TypeError) as e:
        raise DataUnavailable(symbol, f"날짜 파싱 실패: {e}") from e

    for column in ("open", "high", "low", "close", "volume"):
        try:
            frame[column] = pd.to_numeric(frame[column], errors="raise")
        except (ValueError, TypeError) as e:
            raise DataUnavailable(symbol, f"{column} 숫자 변환 실패: {e}") from e

    if frame["date"].duplicated().any():
        dupes = sorted(set(frame.loc[frame["date"].duplicated(), "date"]))
        raise DataUnavailable(symbol, f"중복 날짜: {dupes[:3]}")

    frame = frame.sort_values("date").reset_index(drop=True)

    bars = [
        Bar(
            date=row.date,
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=int(row.volume),
        )
        for row in frame.itertuples(index=False)
    ]
    return validate_series(bars, symbol)
