"""
리스크 관리 모듈.

[ 역할 ]
    엔진이 주문을 내기 전에 진입 가능 여부와 주문 수량을 결정하고,
    보유 종목의 손절/익절/추적손절 조건을 봉마다 확인한다.
    RiskSettings를 넘기지 않으면 엔진은 이 모듈을 쓰지 않는다 (고정 수량 매매).

[ 포지션 크기 (PositionSizing) ]
    FIXED:        shares_per_trade 주
    PERCENTAGE:   floor(min(총자산 × value%, 총자산 × max_position_size_percentage%) / 가격)
    EQUAL_WEIGHT: floor(총자산 / max_open_positions / 가격). 보유 종목 수가 한도면 0
    KELLY:        PERCENTAGE와 같은 식, value를 켈리 비율(%)로 해석

[ 진입 제한 (check_entry) ]
    1. 당일 손실 한도 도달 → DAILY_LOSS_LIMIT (날짜가 바뀌면 해제)
    2. 신규 종목인데 보유 종목 수 >= max_open_positions → MAX_OPEN_POSITIONS
    3. 해당 종목 평가액 >= 총자산 × max_position_size_percentage% → POSITION_LIMIT

[ 청산 조건 (check_exit) ]
    손익률 = (현재가 - 평균단가) / 평균단가 × 100
    STOP_LOSS:     손익률 <= -stop_loss_percentage
    TAKE_PROFIT:   손익률 >= take_profit_percentage
    TRAILING_STOP: 현재가 <= 보유 중 최고가 × (1 - trailing_stop_percentage%)

[ 당일 손실 한도 ]
    매도 체결마다 당일 실현손익을 누적. 손실이 초기 자금 × max_daily_loss_percentage%
    또는 max_daily_loss_absolute 이상이 되면 그날의 신규 매수를 막는다. (이익은 한도에 포함하지 않음)

[ 호출하는 곳 ]
    - backtest/engine.py::BacktestEngine.run() (risk 설정이 있을 때 실행마다 RiskManager 하나)
"""

import logging
import math
from dataclasses import dataclass, fields
from datetime import date
from enum import Enum
from typing import Any

from strategy_backtester.backtest.execution import _to_enum
from strategy_backtester.core.errors import InvalidInput
from strategy_backtester.core.trading_strategy import SignalType
from strategy_backtester.data.portfolio import DropReason, PortfolioState, Position, Trade

logger = logging.getLogger("strategy_backtester.risk")


class PositionSizing(Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    EQUAL_WEIGHT = "equal_weight"
    KELLY = "kelly"


class ExitTrigger(Enum):
    STOP_LOSS = "StopLoss"
    TAKE_PROFIT = "TakeProfit"
    TRAILING_STOP = "TrailingStop"


@dataclass(frozen=True)
class RiskSettings:
    """리스크 관리 설정. 퍼센트 값은 모두 % 단위 (5 = 5%). None이면 해당 규칙 비활성."""
    position_sizing: PositionSizing = PositionSizing.FIXED
    position_size_value: float = 10.0             # PERCENTAGE/KELLY의 총자산 대비 %
    max_open_positions: int = 10
    max_position_size_percentage: float = 100.0
    stop_loss_percentage: float | None = None
    take_profit_percentage: float | None = None
    trailing_stop_percentage: float | None = None
    max_daily_loss_percentage: float | None = None
    max_daily_loss_absolute: float | None = None

    def __post_init__(self):
        object.__setattr__(
            self, "position_sizing", _to_enum(PositionSizing, self.position_sizing, "position_sizing")
        )

    def validate(self) -> None:
        if self.position_size_value <= 0:
            raise InvalidInput(f"position_size_value는 0보다 커야 함 ({self.position_size_value})")
        if self.max_open_positions < 1:
            raise InvalidInput(f"max_open_positions >= 1 필요 ({self.max_open_positions})")
        if not 0 < self.max_position_size_percentage <= 100:
            raise InvalidInput(
                f"max_position_size_percentage는 0 초과 100 이하여야 함 ({self.max_position_size_percentage})"
            )
        for name in (
            "stop_loss_percentage",
            "take_profit_percentage",
            "trailing_stop_percentage",
            "max_daily_loss_percentage",
            "max_daily_loss_absolute",
        ):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise InvalidInput(f"{name}는 0보다 커야 함 ({value})")
        if self.stop_loss_percentage is not None and self.stop_loss_percentage >= 100:
            raise InvalidInput(f"stop_loss_percentage는 100 미만이어야 함 ({self.stop_loss_percentage})")
        if self.trailing_stop_percentage is not None and self.trailing_stop_percentage >= 100:
            raise InvalidInput(
                f"trailing_stop_percentage는 100 미만이어야 함 ({self.trailing_stop_percentage})"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RiskSettings":
        """딕셔너리에서 설정 생성. 알 수 없는 키는 InvalidInput."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise InvalidInput(f"risk: 알 수 없는 설정 {sorted(unknown)}")
        settings = cls(**data)
        settings.validate()
        return settings

    def to_dict(self) -> dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["position_sizing"] = self.position_sizing.value
        return data


class RiskManager:
    """실행 하나의 리스크 상태 (당일 손익, 종목별 최고가)."""

    def __init__(self, settings: RiskSettings, initial_capital: float):
        settings.validate()
        self.settings = settings
        self.initial_capital = initial_capital
        self.current_date: date | None = None
        self.daily_pnl = 0.0
        self.halted = False                       # 당일 손실 한도 도달 여부
        self._highest: dict[str, float] = {}      # 보유 종목 → 보유 중 최고가

    def start_day(self, current_date: date) -> None:
        """날짜가 바뀌면 당일 손익과 손실 한도 상태를 초기화."""
        if current_date == self.current_date:
            return
        if self.halted:
            logger.info(f"[{current_date}] 당일 손실 한도 해제 (전일 손익 {self.daily_pnl:,.2f})")
        self.current_date = current_date
        self.daily_pnl = 0.0
        self.halted = False

    def check_entry(
        self,
        symbol: str,
        state: PortfolioState,
        prices: dict[str, float],
    ) -> DropReason | None:
        """신규 매수 가능 여부. 막히면 사유, 가능하면 None."""
        if self.halted:
            return DropReason.DAILY_LOSS_LIMIT

        holdings = state.holdings()
        if symbol not in holdings and len(holdings) >= self.settings.max_open_positions:
            return DropReason.MAX_OPEN_POSITIONS

        if symbol in holdings:
            position = holdings[symbol]
            value = position.market_value(prices.get(symbol, position.average_cost))
            limit = state.total_value(prices) * self.settings.max_position_size_percentage / 100
            if value >= limit:
                return DropReason.POSITION_LIMIT
        return None

    def position_size(
        self,
        state: PortfolioState,
        prices: dict[str, float],
        price: float,
        shares_per_trade: int,
    ) -> int:
        """매수 수량. 0이면 살 수 없음."""
        sizing = self.settings.position_sizing
        if sizing == PositionSizing.FIXED:
            return shares_per_trade

        total = state.total_value(prices)
        if sizing == PositionSizing.EQUAL_WEIGHT:
            if len(state.holdings()) >= self.settings.max_open_positions:
                return 0
            return math.floor(total / self.settings.max_open_positions / price)

        # PERCENTAGE, KELLY
        target = total * self.settings.position_size_value / 100
        cap = total * self.settings.max_position_size_percentage / 100
        return math.floor(min(target, cap) / price)

    def check_exit(self, position: Position, price: float) -> ExitTrigger | None:
        """보유 포지션의 청산 조건 확인. 최고가도 여기서 갱신."""
        if position.quantity <= 0 or position.average_cost <= 0:
            return None

        highest = max(self._highest.get(position.symbol, position.average_cost), price)
        self._highest[position.symbol] = highest

        pnl_percent = (price - position.average_cost) / position.average_cost * 100
        settings = self.settings
        if settings.stop_loss_percentage is not None and pnl_percent <= -settings.stop_loss_percentage:
            return ExitTrigger.STOP_LOSS
        if settings.take_profit_percentage is not None and pnl_percent >= settings.take_profit_percentage:
            return ExitTrigger.TAKE_PROFIT
        if (
            settings.trailing_stop_percentage is not None
            and price <= highest * (1 - settings.trailing_stop_percentage / 100)
        ):
            return ExitTrigger.TRAILING_STOP
        return None

    def on_fill(self, trade: Trade) -> None:
        """체결 반영. 매도 실현손익으로 당일 손실 한도 확인."""
        if trade.action == SignalType.BUY:
            self._highest[trade.symbol] = max(self._highest.get(trade.symbol, 0.0), trade.price)
            return

        self._highest.pop(trade.symbol, None)
        self.daily_pnl += trade.realized_pnl
        loss = -self.daily_pnl
        if self.halted or loss <= 0:
            return

        settings = self.settings
        if (
            settings.max_daily_loss_percentage is not None
            and loss / self.initial_capital * 100 >= settings.max_daily_loss_percentage
        ) or (
            settings.max_daily_loss_absolute is not None
            and loss >= settings.max_daily_loss_absolute
        ):
            self.halted = True
            logger.warning(f"[{trade.date}] 당일 손실 한도 도달: {self.daily_pnl:,.2f}. 당일 신규 매수 중지")
