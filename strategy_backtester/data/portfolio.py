"""
포트폴리오 관리 모듈.

[ 역할 ]
    현금, 보유 종목(Position), 거래 기록(Trade), 자산 가치 이력을 통합 관리.
    백테스트 엔진이 시그널을 받을 때마다 apply_signal()로 상태를 갱신.

[ 주요 클래스 ]
    Position       - 개별 종목의 수량/평균단가 추적
    Trade          - 체결된 거래 하나 (불변, 추가만 가능)
    PortfolioState - 현금 + 포지션들 + 거래 기록 + 자산 가치 이력
    Portfolio      - PortfolioState를 소유하고 시그널을 반영하는 시뮬레이터
    DropReason     - 체결되지 못하고 버려진 시그널의 사유

[ 시그널 반영 규칙 ]
    BUY:  현금 >= 체결가 × 수량 + 수수료 일 때만 체결, 아니면 버림 (INSUFFICIENT_FUNDS)
    SELL: 보유 수량 >= 수량 일 때만 체결, 아니면 버림 (NO_POSITION)
    HOLD: 아무것도 하지 않음
    버려진 시그널은 예외가 아니라 INFO 로그로 남기고 상태는 그대로 둔다.
    리스크 관리가 주문 전에 막은 시그널도 drop()으로 같은 목록에 기록된다.

[ 호출하는 곳 ]
    - backtest/engine.py::BacktestEngine.run()에서 portfolio.apply_signal(), record_equity()
    - backtest/metrics.py에서 trades, equity_history로 성과 계산
"""

import logging
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

from strategy_backtester.backtest.execution import OrderExecutionSimulator
from strategy_backtester.core.errors import InvalidInput
from strategy_backtester.core.trading_strategy import Signal, SignalType

logger = logging.getLogger("strategy_backtester.portfolio")


class DropReason(Enum):
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    NO_POSITION = "NoPosition"
    # 리스크 관리(backtest/risk.py)가 주문 전에 막은 경우
    MAX_OPEN_POSITIONS = "MaxOpenPositions"
    POSITION_LIMIT = "PositionLimit"
    DAILY_LOSS_LIMIT = "DailyLossLimit"
    ZERO_SIZE = "ZeroSize"


@dataclass
class Position:
    """개별 종목 포지션. PortfolioState 내부에서 종목별로 관리됨."""
    symbol: str
    quantity: int = 0             # 보유 수량
    average_cost: float = 0.0     # 평균 매수 단가 (매수 시마다 가중평균 갱신)

    def market_value(self, price: float) -> float:
        return self.quantity * price

    def update_on_buy(self, quantity: int, price: float) -> None:
        """매수 시 포지션 업데이트."""
        total_cost = self.average_cost * self.quantity + price * quantity
        self.quantity += quantity
        self.average_cost = total_cost / self.quantity

    def update_on_sell(self, quantity: int) -> None:
        """매도 시 포지션 업데이트. 전량 매도하면 평균단가 초기화."""
        self.quantity -= quantity
        if self.quantity == 0:
            self.average_cost = 0.0


@dataclass(frozen=True)
class Trade:
    """체결된 거래 하나. metrics.py에서 승률/수익 계산에 사용됨."""
    symbol: str
    action: SignalType
    date: date
    price: float               # 체결 가격 (슬리피지 적용 후)
    quantity: int
    commission: float = 0.0
    realized_pnl: float = 0.0  # 실현 손익 (매도 시에만)
    reason: str = ""           # 시그널 사유

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "action": self.action.value,
            "date": self.date.isoformat(),
            "price": self.price,
            "quantity": self.quantity,
            "commission": self.commission,
            "realized_pnl": self.realized_pnl,
            "reason": self.reason,
        }


@dataclass
class PortfolioState:
    """포트폴리오 상태 스냅샷."""
    cash: float
    positions: dict[str, Position] = field(default_factory=dict)   # symbol → Position
    trades: list[Trade] = field(default_factory=list)
    equity_history: list[tuple[date, float]] = field(default_factory=list)

    def copy(self) -> "PortfolioState":
        return deepcopy(self)

    def get_position(self, symbol: str) -> Position:
        """종목 포지션 조회. 없으면 빈 포지션 생성."""
        if symbol not in self.positions:
            self.positions[symbol] = Position(symbol=symbol)
        return self.positions[symbol]

    def holdings(self) -> dict[str, Position]:
        return {s: p for s, p in self.positions.items() if p.quantity > 0}

    def total_value(self, prices: dict[str, float]) -> float:
        """현금 + Σ 보유수량 × 현재가. 가격이 없는 종목은 평균단가로 평가."""
        total = self.cash
        for symbol, position in self.holdings().items():
            total += position.market_value(prices.get(symbol, position.average_cost))
        return total


class Portfolio:
    """포트폴리오 시뮬레이터.

    BacktestEngine이 실행마다 하나씩 소유하며, 시그널 반영 결과를 state에 누적.
    """

    def __init__(
        self,
        initial_cash: float,
        execution: OrderExecutionSimulator | None = None,
    ):
        if initial_cash <= 0:
            raise InvalidInput(f"initial_cash는 0보다 커야 함 ({initial_cash})")
        self.initial_cash = initial_cash
        self.execution = execution or OrderExecutionSimulator()
        self.state = PortfolioState(cash=initial_cash)
        self.dropped: list[tuple[Signal, DropReason]] = []   # 버려진 시그널 기록

    @property
    def cash(self) -> float:
        return self.state.cash

    @property
    def positions(self) -> dict[str, Position]:
        return self.state.positions

    @property
    def trades(self) -> list[Trade]:
        return self.state.trades

    @property
    def equity_history(self) -> list[tuple[date, float]]:
        return self.state.equity_history

    def get_position(self, symbol: str) -> Position:
        return self.state.get_position(symbol)

    def get_holding_symbols(self) -> list[str]:
        return list(self.state.holdings())

    def apply_signal(
        self,
        signal: Signal,
        shares_per_trade: int,
        fill_price: float | None = None,
    ) -> Trade | None:
        """시그널 하나를 반영. 체결되면 Trade, HOLD/버려지면 None.

        Args:
            signal: 전략이 반환한 시그널
            shares_per_trade: 1회 매매 수량
            fill_price: 슬리피지 적용 전 기준가. None이면 시그널 가격(종가)
        """
        outcome = _execute(self.state, signal, shares_per_trade, self.execution, fill_price)
        if isinstance(outcome, DropReason):
            self.dropped.append((signal, outcome))
            return None
        return outcome

    def drop(self, signal: Signal, reason: DropReason) -> None:
        """주문 전에 거부된 시그널 기록 (리스크 관리 등). 상태는 변경하지 않는다."""
        logger.info(f"[{signal.date}] {signal.action.value} 시그널 무시 ({reason.value}): {signal.symbol}")
        self.dropped.append((signal, reason))

    def record_equity(self, as_of: date, prices: dict[str, float]) -> float:
        """해당 날짜의 총 자산 가치를 이력에 추가하고 반환."""
        value = self.state.total_value(prices)
        self.state.equity_history.append((as_of, value))
        return value

    def total_value(self, prices: dict[str, float]) -> float:
        return self.state.total_value(prices)

    def get_summary(self) -> dict[str, Any]:
        """포트폴리오 요약."""
        last_value = self.equity_history[-1][1] if self.equity_history else self.cash
        return {
            "initial_cash": self.initial_cash,
            "current_cash": self.cash,
            "total_value": last_value,
            "total_profit": last_value - self.initial_cash,
            "holdings": {
                s: {"quantity": p.quantity, "average_cost": p.average_cost}
                for s, p in self.state.holdings().items()
            },
            "num_trades": len(self.trades),
            "num_dropped": len(self.dropped),
        }


def apply_signal(
    state: PortfolioState,
    signal: Signal,
    shares_per_trade: int,
    execution: OrderExecutionSimulator | None = None,
) -> tuple[PortfolioState, Trade | None]:
    """함수형 버전. 입력 state는 건드리지 않고 (새 state, 체결 Trade 또는 None) 반환."""
    new_state = state.copy()
    outcome = _execute(new_state, signal, shares_per_trade, execution or OrderExecutionSimulator(), None)
    if isinstance(outcome, DropReason):
        return state.copy(), None
    return new_state, outcome


def _execute(
    state: PortfolioState,
    signal: Signal,
    shares_per_trade: int,
    execution: OrderExecutionSimulator,
    reference_price: float | None,
) -> Trade | DropReason | None:
    """state를 직접 변경. 버려진 경우 state는 변경되지 않는다."""
    if signal.action == SignalType.HOLD:
        return None
    if shares_per_trade <= 0:
        raise InvalidInput(f"shares_per_trade는 0보다 커야 함 ({shares_per_trade})")

    reference = signal.price if reference_price is None else reference_price
    price = execution.fill_price(signal.action, reference, shares_per_trade)
    commission = execution.commission(price, shares_per_trade)
    position = state.positions.get(signal.symbol)

    if signal.action == SignalType.BUY:
        total_cost = price * shares_per_trade + commission
        if total_cost > state.cash:
            logger.info(
                f"[{signal.date}] 매수 시그널 무시 ({DropReason.INSUFFICIENT_FUNDS.value}): "
                f"{signal.symbol} 필요 {total_cost:,.2f} > 현금 {state.cash:,.2f}"
            )
            return DropReason.INSUFFICIENT_FUNDS

        state.cash -= total_cost
        state.get_position(signal.symbol).update_on_buy(shares_per_trade, price)
        trade = Trade(
            symbol=signal.symbol,
            action=SignalType.BUY,
            date=signal.date,
            price=price,
            quantity=shares_per_trade,
            commission=commission,
            reason=signal.reason,
        )
        logger.debug(f"[{signal.date}] 매수: {signal.symbol} {shares_per_trade}주 @ {price:,.2f} ({signal.reason})")

    else:
        held = position.quantity if position else 0
        if held < shares_per_trade:
            logger.info(
                f"[{signal.date}] 매도 시그널 무시 ({DropReason.NO_POSITION.value}): "
                f"{signal.symbol} 보유 {held}주 < {shares_per_trade}주"
            )
            return DropReason.NO_POSITION

        realized = (price - position.average_cost) * shares_per_trade - commission
        state.cash += price * shares_per_trade - commission
        position.update_on_sell(shares_per_trade)
        trade = Trade(
            symbol=signal.symbol,
            action=SignalType.SELL,
            date=signal.date,
            price=price,
            quantity=shares_per_trade,
            commission=commission,
            realized_pnl=realized,
            reason=signal.reason,
        )
        logger.debug(
            f"[{signal.date}] 매도: {signal.symbol} {shares_per_trade}주 @ {price:,.2f} "
            f"손익 {realized:,.2f} ({signal.reason})"
        )

    state.trades.append(trade)
    return trade
