"""
볼린저 밴드 전략 구현.

[ 역할 ]
    core/trading_strategy.py::TradingStrategy의 구현체.
    "종가가 하단 밴드 이하로 내려가면 매수(과매도), 상단 밴드 이상으로 올라가면 매도(과매수)"

[ 밴드 계산 ]
    중심선 = window개 종가의 이동평균
    상단   = 중심선 + multiplier × 모표준편차
    하단   = 중심선 - multiplier × 모표준편차

[ 파라미터 ]
    window:     이동평균/표준편차 기간 (2 이상)
    multiplier: 표준편차 배수 (> 0)

[ 예외 상황 ]
    표준편차가 0이면(완전 횡보) 밴드 폭이 없으므로 HOLD.
"""

from dataclasses import dataclass
from typing import Any

from strategy_backtester.core.data_provider import Bar
from strategy_backtester.core.indicators import EPSILON, RollingWindow
from strategy_backtester.core.trading_strategy import StrategyConfig, TradingStrategy
from strategy_backtester.strategies import register


@dataclass(frozen=True)
class BollingerBandsConfig(StrategyConfig):
    window: int = 20
    multiplier: float = 2.0

    def validate(self) -> None:
        self._require(self.window >= 2, f"window >= 2 필요 ({self.window})")
        self._require(self.multiplier > 0, f"multiplier > 0 필요 ({self.multiplier})")

    @property
    def warmup_period(self) -> int:
        return self.window


@register("bollinger_bands", BollingerBandsConfig)
class BollingerBandsStrategy(TradingStrategy):
    """볼린저 밴드 전략 구현체."""

    config: BollingerBandsConfig

    def __init__(self, config: BollingerBandsConfig, symbol: str):
        super().__init__(config, symbol)
        self._window = RollingWindow(config.window)

    def update_indicators(self, bar: Bar) -> None:
        self._window.add(bar.close)

    def bands(self) -> tuple[float, float, float] | None:
        """(하단, 중심, 상단). 데이터 부족 또는 표준편차 0이면 None."""
        if not self._window.is_full:
            return None
        middle = self._window.mean
        std = self._window.std
        if std <= EPSILON:
            return None
        width = self.config.multiplier * std
        return middle - width, middle, middle + width

    def should_buy(self, bar: Bar) -> tuple[bool, str]:
        """매수 조건: 종가 <= 하단 밴드."""
        bands = self.bands()
        if bands is None:
            return False, "밴드 폭 0 (표준편차 0)"
        lower, _, _ = bands
        if bar.close <= lower:
            return True, f"하단 밴드 이탈 (종가 {bar.close:,.2f} <= 하단 {lower:,.2f})"
        return False, f"밴드 내 (종가 {bar.close:,.2f}, 하단 {lower:,.2f})"

    def should_sell(self, bar: Bar) -> tuple[bool, str]:
        """매도 조건: 종가 >= 상단 밴드."""
        bands = self.bands()
        if bands is None:
            return False, "밴드 폭 0 (표준편차 0)"
        _, _, upper = bands
        if bar.close >= upper:
            return True, f"상단 밴드 돌파 (종가 {bar.close:,.2f} >= 상단 {upper:,.2f})"
        return False, f"밴드 내 (종가 {bar.close:,.2f}, 상단 {upper:,.2f})"

    def snapshot(self) -> dict[str, Any]:
        bands = self.bands()
        if bands is None:
            return {"lower_band": None, "middle_band": self._window.mean, "upper_band": None}
        lower, middle, upper = bands
        return {"lower_band": lower, "middle_band": middle, "upper_band": upper}

    def reset_indicators(self) -> None:
        self._window.clear()
