"""
이동평균 교차(MA Crossover) 전략 구현.

[ 역할 ]
    core/trading_strategy.py::TradingStrategy의 구현체.
    "단기 이동평균이 장기 이동평균을 상향 돌파(골든크로스)하면 매수,
     하향 돌파(데드크로스)하면 매도"

[ 전략 흐름 ]
    매 봉 on_bar() 호출됨 (← backtest/engine.py에서)
        ├── update_indicators(): 단기/장기 MA 갱신, 교차 여부 판단
        ├── 보유 중이면 should_sell() 먼저 체크
        │     └── 데드크로스 → SELL
        └── should_buy() 체크
              └── 골든크로스 → BUY

[ 파라미터 (config.yaml의 strategy 섹션에서 로드) ]
    fast_window:  단기 이동평균 기간 (봉)
    slow_window:  장기 이동평균 기간 (봉), fast_window보다 커야 함
    ma_type:      "SMA" 또는 "EMA"

[ 워밍업 ]
    slow_window개 봉이 쌓이기 전까지는 HOLD.
    워밍업 이전의 (단기 - 장기) 차이는 0으로 간주하므로,
    워밍업 직후 첫 봉에서 단기 > 장기이면 골든크로스로 본다.
"""

from dataclasses import dataclass
from typing import Any

from strategy_backtester.core.data_provider import Bar
from strategy_backtester.core.indicators import ExponentialMovingAverage, RollingWindow
from strategy_backtester.core.trading_strategy import StrategyConfig, TradingStrategy
from strategy_backtester.strategies import register

MA_TYPES = ("SMA", "EMA")


@dataclass(frozen=True)
class MovingAverageCrossoverConfig(StrategyConfig):
    fast_window: int = 10
    slow_window: int = 30
    ma_type: str = "SMA"

    def validate(self) -> None:
        self._require(self.fast_window >= 1, f"fast_window >= 1 필요 ({self.fast_window})")
        self._require(
            self.fast_window < self.slow_window,
            f"fast_window < slow_window 필요 ({self.fast_window} >= {self.slow_window})",
        )
        self._require(self.ma_type in MA_TYPES, f"ma_type은 {MA_TYPES} 중 하나 ({self.ma_type})")

    @property
    def warmup_period(self) -> int:
        return self.slow_window


class _MovingAverage:
    """SMA(롤링 윈도우) / EMA 공통 래퍼."""

    def __init__(self, window: int, ma_type: str):
        self.ma_type = ma_type
        self._sma = RollingWindow(window) if ma_type == "SMA" else None
        self._ema = ExponentialMovingAverage(window) if ma_type == "EMA" else None

    def update(self, price: float) -> None:
        if self._sma is not None:
            self._sma.add(price)
        else:
            self._ema.update(price)

    @property
    def value(self) -> float | None:
        if self._sma is not None:
            return self._sma.mean
        return self._ema.value

    def clear(self) -> None:
        if self._sma is not None:
            self._sma.clear()
        else:
            self._ema.clear()


@register("moving_average_crossover", MovingAverageCrossoverConfig)
class MovingAverageCrossoverStrategy(TradingStrategy):
    """이동평균 교차 전략 구현체."""

    config: MovingAverageCrossoverConfig

    def __init__(self, config: MovingAverageCrossoverConfig, symbol: str):
        super().__init__(config, symbol)
        self._fast = _MovingAverage(config.fast_window, config.ma_type)
        self._slow = _MovingAverage(config.slow_window, config.ma_type)
        self._previous_spread = 0.0
        self._spread = 0.0

    def update_indicators(self, bar: Bar) -> None:
        self._fast.update(bar.close)
        self._slow.update(bar.close)
        if self.bars_seen < self.warmup_period:
            return
        self._previous_spread = self._spread
        self._spread = self._fast.value - self._slow.value

    @property
    def crossed_above(self) -> bool:
        return self._previous_spread <= 0 < self._spread

    @property
    def crossed_below(self) -> bool:
        return self._previous_spread >= 0 > self._spread

    def should_buy(self, bar: Bar) -> tuple[bool, str]:
        """매수 조건: 골든크로스 (단기 MA가 장기 MA 상향 돌파)."""
        fast, slow = self._fast.value, self._slow.value
        if self.crossed_above:
            return True, f"골든크로스 (단기 {fast:,.2f} > 장기 {slow:,.2f})"
        return False, f"교차 없음 (단기 {fast:,.2f}, 장기 {slow:,.2f})"

    def should_sell(self, bar: Bar) -> tuple[bool, str]:
        """매도 조건: 데드크로스 (단기 MA가 장기 MA 하향 돌파)."""
        fast, slow = self._fast.value, self._slow.value
        if self.crossed_below:
            return True, f"데드크로스 (단기 {fast:,.2f} < 장기 {slow:,.2f})"
        return False, f"홀딩 (단기 {fast:,.2f}, 장기 {slow:,.2f})"

    def snapshot(self) -> dict[str, Any]:
        return {"fast_ma": self._fast.value, "slow_ma": self._slow.value}

    def reset_indicators(self) -> None:
        self._fast.clear()
        self._slow.clear()
        self._previous_spread = 0.0
        self._spread = 0.0
