"""
모멘텀(RSI + 가격 모멘텀) 전략 구현.

[ 역할 ]
    core/trading_strategy.py::TradingStrategy의 구현체.
    RSI로 과매수/과매도를, 가격 변화율(모멘텀)로 추세를 확인한다.

[ 매매 조건 ]
    BUY:  RSI < rsi_oversold   AND 모멘텀 >  momentum_threshold
    SELL: RSI > rsi_overbought AND 모멘텀 < -momentum_threshold
    모멘텀 = (종가 - momentum_window봉 전 종가) / momentum_window봉 전 종가

[ 파라미터 ]
    rsi_window, rsi_overbought, rsi_oversold, momentum_window, momentum_threshold

[ 예외 상황 ]
    RSI가 정의되지 않으면(상승/하락 모두 0) HOLD.
"""

from dataclasses import dataclass
from typing import Any

from strategy_backtester.core.data_provider import Bar
from strategy_backtester.core.indicators import RelativeStrengthIndex, RollingWindow
from strategy_backtester.core.trading_strategy import StrategyConfig, TradingStrategy
from strategy_backtester.strategies import register


@dataclass(frozen=True)
class MomentumConfig(StrategyConfig):
    rsi_window: int = 14
    rsi_overbought: float = 70.0
    rsi_oversold: float = 30.0
    momentum_window: int = 10
    momentum_threshold: float = 0.02

    def validate(self) -> None:
        self._require(self.rsi_window >= 1, f"rsi_window >= 1 필요 ({self.rsi_window})")
        self._require(self.momentum_window >= 1, f"momentum_window >= 1 필요 ({self.momentum_window})")
        self._require(
            0 <= self.rsi_oversold < self.rsi_overbought <= 100,
            f"0 <= rsi_oversold < rsi_overbought <= 100 필요 "
            f"({self.rsi_oversold}, {self.rsi_overbought})",
        )
        self._require(self.momentum_threshold >= 0, f"momentum_threshold >= 0 필요 ({self.momentum_threshold})")

    @property
    def warmup_period(self) -> int:
        # RSI/모멘텀 모두 기간 + 1개의 종가가 필요
        return max(self.rsi_window, self.momentum_window) + 1


@register("momentum", MomentumConfig)
class MomentumStrategy(TradingStrategy):
    """모멘텀 전략 구현체."""

    config: MomentumConfig

    def __init__(self, config: MomentumConfig, symbol: str):
        super().__init__(config, symbol)
        self._rsi = RelativeStrengthIndex(config.rsi_window)
        self._closes = RollingWindow(config.momentum_window + 1)

    def update_indicators(self, bar: Bar) -> None:
        self._rsi.update(bar.close)
        self._closes.add(bar.close)

    @property
    def rsi(self) -> float | None:
        return self._rsi.value

    @property
    def momentum(self) -> float | None:
        if not self._closes.is_full:
            return None
        past = self._closes.values[0]
        if past <= 0:
            return None
        return (self._closes.values[-1] - past) / past

    def should_buy(self, bar: Bar) -> tuple[bool, str]:
        """매수 조건: 과매도 + 양의 모멘텀."""
        rsi, momentum = self.rsi, self.momentum
        if rsi is None or momentum is None:
            return False, "RSI/모멘텀 계산 불가"
        if rsi < self.config.rsi_oversold and momentum > self.config.momentum_threshold:
            return True, f"과매도 반등 (RSI {rsi:.1f}, 모멘텀 {momentum:.2%})"
        return False, f"조건 미충족 (RSI {rsi:.1f}, 모멘텀 {momentum:.2%})"

    def should_sell(self, bar: Bar) -> tuple[bool, str]:
        """매도 조건: 과매수 + 음의 모멘텀."""
        rsi, momentum = self.rsi, self.momentum
        if rsi is None or momentum is None:
            return False, "RSI/모멘텀 계산 불가"
        if rsi > self.config.rsi_overbought and momentum < -self.config.momentum_threshold:
            return True, f"과매수 소진 (RSI {rsi:.1f}, 모멘텀 {momentum:.2%})"
        return False, f"조건 미충족 (RSI {rsi:.1f}, 모멘텀 {momentum:.2%})"

    def snapshot(self) -> dict[str, Any]:
        return {"rsi": self.rsi, "momentum": self.momentum}

    def reset_indicators(self) -> None:
        self._rsi.clear()
        self._closes.clear()
