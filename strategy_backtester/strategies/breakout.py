"""
돌파(Breakout) 전략 구현.

[ 역할 ]
    core/trading_strategy.py::TradingStrategy의 구현체.
    직전 lookback_window봉의 고가선(저항)/저가선(지지)을 거래량을 동반해 돌파하면 진입/청산.

[ 전략 흐름 ]
    매 봉 update_indicators():
        ├── 직전 lookback_window봉 종가의 최댓값(저항), 최솟값(지지), 평균 거래량 조회
        │     (현재 봉은 제외 → 현재 봉을 넣은 뒤에 윈도우 갱신)
        ├── 상향 돌파: 종가 > 저항 × (1 + breakout_threshold)
        │            AND 거래량 >= min_volume_ratio × 평균 거래량
        ├── 하향 돌파: 종가 < 지지 × (1 - breakout_threshold), 거래량 조건 동일
        └── 각 돌파 조건의 연속 봉 수 갱신
    should_buy():  상향 돌파가 confirmation_period봉 연속 유지 → BUY
    should_sell(): 하향 돌파가 confirmation_period봉 연속 유지 → SELL

[ 예외 상황 ]
    평균 거래량이 0이면 거래량 비율을 계산할 수 없으므로 돌파로 보지 않는다 (HOLD).
"""

from dataclasses import dataclass
from typing import Any

from strategy_backtester.core.data_provider import Bar
from strategy_backtester.core.indicators import EPSILON, RollingExtreme, RollingWindow
from strategy_backtester.core.trading_strategy import StrategyConfig, TradingStrategy
from strategy_backtester.strategies import register


@dataclass(frozen=True)
class BreakoutConfig(StrategyConfig):
    lookback_window: int = 20
    breakout_threshold: float = 0.01
    min_volume_ratio: float = 1.5
    confirmation_period: int = 2

    def validate(self) -> None:
        self._require(self.lookback_window >= 1, f"lookback_window >= 1 필요 ({self.lookback_window})")
        self._require(
            0 <= self.breakout_threshold < 1,
            f"0 <= breakout_threshold < 1 필요 ({self.breakout_threshold})",
        )
        self._require(self.min_volume_ratio >= 0, f"min_volume_ratio >= 0 필요 ({self.min_volume_ratio})")
        self._require(
            self.confirmation_period >= 1,
            f"confirmation_period >= 1 필요 ({self.confirmation_period})",
        )

    @property
    def warmup_period(self) -> int:
        return self.lookback_window + self.confirmation_period


@register("breakout", BreakoutConfig)
class BreakoutStrategy(TradingStrategy):
    """돌파 전략 구현체."""

    config: BreakoutConfig

    def __init__(self, config: BreakoutConfig, symbol: str):
        super().__init__(config, symbol)
        self._highs = RollingExtreme(config.lookback_window, mode="max")
        self._lows = RollingExtreme(config.lookback_window, mode="min")
        self._volumes = RollingWindow(config.lookback_window)
        self._resistance: float | None = None
        self._support: float | None = None
        self._volume_ratio: float | None = None
        self.up_streak = 0       # 상향 돌파 연속 봉 수
        self.down_streak = 0     # 하향 돌파 연속 봉 수

    def update_indicators(self, bar: Bar) -> None:
        up = down = False
        if self._volumes.is_full:
            self._resistance = self._highs.value
            self._support = self._lows.value
            average_volume = self._volumes.mean
            if average_volume > EPSILON:
                self._volume_ratio = bar.volume / average_volume
                volume_ok = self._volume_ratio >= self.config.min_volume_ratio
                threshold = self.config.breakout_threshold
                up = volume_ok and bar.close > self._resistance * (1 + threshold)
                down = volume_ok and bar.close < self._support * (1 - threshold)
            else:
                self._volume_ratio = None

        self.up_streak = self.up_streak + 1 if up else 0
        self.down_streak = self.down_streak + 1 if down else 0

        self._highs.update(bar.close)
        self._lows.update(bar.close)
        self._volumes.add(bar.volume)

    def should_buy(self, bar: Bar) -> tuple[bool, str]:
        """매수 조건: 상향 돌파가 confirmation_period봉 연속."""
        if self._volume_ratio is None:
            return False, "평균 거래량 0 (거래량 비율 계산 불가)"
        if self.up_streak >= self.config.confirmation_period:
            return True, (
                f"상향 돌파 확인 ({self.up_streak}봉, 저항 {self._resistance:,.2f}, "
                f"거래량 비율 {self._volume_ratio:.2f})"
            )
        return False, f"상향 돌파 미확인 ({self.up_streak}/{self.config.confirmation_period}봉)"

    def should_sell(self, bar: Bar) -> tuple[bool, str]:
        """매도 조건: 하향 돌파가 confirmation_period봉 연속."""
        if self._volume_ratio is None:
            return False, "평균 거래량 0 (거래량 비율 계산 불가)"
        if self.down_streak >= self.config.confirmation_period:
            return True, (
                f"하향 돌파 확인 ({self.down_streak}봉, 지지 {self._support:,.2f}, "
                f"거래량 비율 {self._volume_ratio:.2f})"
            )
        return False, f"하향 돌파 미확인 ({self.down_streak}/{self.config.confirmation_period}봉)"

    def snapshot(self) -> dict[str, Any]:
        return {
            "resistance": self._resistance,
            "support": self._support,
            "volume_ratio": self._volume_ratio,
        }

    def reset_indicators(self) -> None:
        self._highs.clear()
        self._lows.clear()
        self._volumes.clear()
        self._resistance = None
        self._support = None
        self._volume_ratio = None
        self.up_streak = 0
        self.down_streak = 0
