"""
평균 회귀 전략 구현.

[ 역할 ]
    core/trading_strategy.py::TradingStrategy의 구현체.
    "종가가 window일 이동평균보다 threshold 비율 이상 낮으면 매수,
     threshold 비율 이상 높으면 매도"

[ 파라미터 ]
    window:    이동평균 기간
    threshold: 이탈 비율 (0.05 = 5%), 0 < threshold < 1
"""

from dataclasses import dataclass
from typing import Any

from strategy_backtester.core.data_provider import Bar
from strategy_backtester.core.indicators import EPSILON, RollingWindow
from strategy_backtester.core.trading_strategy import StrategyConfig, TradingStrategy
from strategy_backtester.strategies import register


@dataclass(frozen=True)
class MeanReversionConfig(StrategyConfig):
    window: int = 20
    threshold: float = 0.05

    def validate(self) -> None:
        self._require(self.window >= 1, f"window >= 1 필요 ({self.window})")
        self._require(0 < self.threshold < 1, f"0 < threshold < 1 필요 ({self.threshold})")

    @property
    def warmup_period(self) -> int:
        return self.window


@register("mean_reversion", MeanReversionConfig)
class MeanReversionStrategy(TradingStrategy):
    """평균 회귀 전략 구현체."""

    config: MeanReversionConfig

    def __init__(self, config: MeanReversionConfig, symbol: str):
        super().__init__(config, symbol)
        self._window = RollingWindow(config.window)

    def update_indicators(self, bar: Bar) -> None:
        self._window.add(bar.close)

    def deviation(self, price: float) -> float | None:
        """(가격 - 이동평균) / 이동평균."""
        mean = self._window.mean
        if mean is None or abs(mean) <= EPSILON:
            return None
        return (price - mean) / mean

    def should_buy(self, bar: Bar) -> tuple[bool, str]:
        """매수 조건: 이동평균 대비 -threshold 이하."""
        deviation = self.deviation(bar.close)
        if deviation is None:
            return False, "이동평균 계산 불가"
        if deviation <= -self.config.threshold:
            return True, f"평균 대비 {deviation:.2%} 하락 (기준 -{self.config.threshold:.2%})"
        return False, f"평균 대비 {deviation:.2%}"

    def should_sell(self, bar: Bar) -> tuple[bool, str]:
        """매도 조건: 이동평균 대비 +threshold 이상."""
        deviation = self.deviation(bar.close)
        if deviation is None:
            return False, "이동평균 계산 불가"
        if deviation >= self.config.threshold:
            return True, f"평균 대비 {deviation:.2%} 상승 (기준 +{self.config.threshold:.2%})"
        return False, f"평균 대비 {deviation:.2%}"

    def snapshot(self) -> dict[str, Any]:
        return {"moving_average": self._window.mean}

    def reset_indicators(self) -> None:
        self._window.clear()
