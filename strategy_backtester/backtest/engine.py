"""
백테스팅 엔진 모듈.

[ 역할 ]
    과거 데이터에 전략을 적용하여 가상 매매를 시뮬레이션하고 성과를 측정.
    시스템의 핵심 실행 루프를 담당.

[ 실행 흐름 ]
    run() 호출 시:
        1. 입력 검증 (종목, 기간, 자금, 전략 설정)
        2. 모든 종목의 시계열을 리플레이 전에 조회 (제공자 오류는 그대로 전파)
        3. 종목마다 전략 인스턴스 생성 (감성 전략이면 기사 1회 조회 후 주입)
        4. 날짜 순으로 봉을 합쳐 리플레이 (같은 날짜 안에서는 호출자가 준 종목 순서)
           → 봉마다 strategy.on_bar() → Signal
           → BUY/SELL이면 portfolio.apply_signal() (NEXT_OPEN이면 다음 봉 시가로 대기)
           → risk 설정이 있으면 봉마다 손절/익절/추적손절 확인, 매수 전 진입 제한과 수량 결정
        5. 날짜마다 총 자산 가치 기록 (보유 종목은 마지막 종가로 평가)
        6. metrics.calculate_metrics()로 BacktestResult 생성

[ 의존성 ]
    - core/data_provider.py::PriceSeriesProvider (데이터 소스)
    - strategies/__init__.py::create_strategy() (전략 인스턴스)
    - data/portfolio.py::Portfolio (포지션/거래기록 관리)
    - backtest/execution.py::OrderExecutionSimulator (체결가/수수료)
    - backtest/risk.py::RiskManager (선택. 진입 제한/포지션 크기/청산 조건)
    - backtest/metrics.py::calculate_metrics() (성과 계산)

[ 취소 ]
    cancel_event(threading.Event)는 봉 경계마다 확인한다.
    설정되면 RunCancelled를 던지고, self.portfolio에는 마지막으로 완전히 처리된 봉까지의 상태가 남는다.

[ 호출하는 곳 ]
    - run_backtest.py (진입점)
    - backtest/batch.py::BatchRunner (작업마다 엔진 하나)
"""

import dataclasses
import logging
import threading
from datetime import date
from typing import Any

from strategy_backtester.backtest.execution import FillPolicy, OrderExecutionSimulator
from strategy_backtester.backtest.metrics import BacktestResult, calculate_metrics
from strategy_backtester.backtest.risk import RiskManager, RiskSettings
from strategy_backtester.core.data_provider import Bar, PriceSeriesProvider, validate_series
from strategy_backtester.core.errors import (
    DataUnavailable,
    InvalidInput,
    RunCancelled,
    UnsupportedStrategy,
)
from strategy_backtester.core.sentiment import SentimentFeed
from strategy_backtester.core.trading_strategy import (
    PositionState,
    Signal,
    SignalType,
    StrategyConfig,
    TradingStrategy,
)
from strategy_backtester.data.portfolio import DropReason, Portfolio
from strategy_backtester.strategies import create_strategy, list_strategies

logger = logging.getLogger("strategy_backtester.backtest")


class BacktestEngine:
    """백테스팅 엔진. run()으로 시뮬레이션 실행.

    엔진 하나는 한 번에 하나의 실행만 처리한다. 병렬 실행은 backtest/batch.py 참고.
    """

    def __init__(
        self,
        provider: PriceSeriesProvider,
        initial_capital: float = 10_000,
        shares_per_trade: int = 100,
        execution: OrderExecutionSimulator | None = None,
        sentiment_feed: SentimentFeed | None = None,
        risk: RiskSettings | None = None,
    ):
        self.provider = provider
        self.initial_capital = initial_capital
        self.shares_per_trade = shares_per_trade
        self.execution = execution or OrderExecutionSimulator()
        self.sentiment_feed = sentiment_feed
        self.risk = risk                                     # None이면 shares_per_trade 고정 수량 매매

        # 실행 후 채워지는 결과
        self.portfolio: Portfolio | None = None              # 최종(또는 취소 시점) 포트폴리오
        self.strategies: dict[str, TradingStrategy] = {}     # 종목 → 전략 인스턴스
        self.signals: list[Signal] = []                      # 봉마다 생성된 시그널 (순서대로)
        self.risk_manager: RiskManager | None = None
        self.result: BacktestResult | None = None

    def run(
        self,
        symbols: list[str],
        start: date,
        end: date,
        strategy_config: StrategyConfig,
        initial_capital: float | None = None,
        shares_per_trade: int | None = None,
        cancel_event: threading.Event | None = None,
    ) -> BacktestResult:
        """백테스트 실행.

        Args:
            symbols: 종목 코드 목록 (순서 = 같은 날짜 안의 처리 순서)
            start: 시작일 (포함)
            end: 종료일 (포함)
            strategy_config: 전략 설정 변형
            initial_capital: 초기 자금 (None이면 엔진 기본값)
            shares_per_trade: 1회 매매 수량 (None이면 엔진 기본값)
            cancel_event: 설정되면 다음 봉 경계에서 RunCancelled

        Raises:
            InvalidInput, UnsupportedStrategy, DataUnavailable, OutOfOrderBar, RunCancelled
        """
        capital = self.initial_capital if initial_capital is None else initial_capital
        shares = self.shares_per_trade if shares_per_trade is None else shares_per_trade
        self._validate(symbols, start, end, strategy_config, capital, shares)

        self.result = None
        self.signals = []
        self.portfolio = None

        series = {symbol: self._fetch(symbol, start, end) for symbol in symbols}
        self.strategies = {symbol: create_strategy(strategy_config, symbol) for symbol in symbols}
        self._load_news(start, end)

        portfolio = Portfolio(capital, self.execution)
        self.portfolio = portfolio
        self.risk_manager = RiskManager(self.risk, capital) if self.risk is not None else None
        timeline = _interleave(series, symbols)

        logger.info(
            f"백테스트 시작: {strategy_config.strategy_type} {', '.join(symbols)} "
            f"{timeline[0][0]} ~ {timeline[-1][0]} ({len(timeline)}일)"
        )

        pending: dict[str, tuple[Signal, int]] = {}   # NEXT_OPEN 체결 대기 주문 (시그널, 수량)
        last_close: dict[str, float] = {}             # 종목별 마지막 종가
        completed: date | None = None                 # 마지막으로 완전히 처리된 봉 날짜

        for current_date, day_bars in timeline:
            if self.risk_manager is not None:
                self.risk_manager.start_day(current_date)
            for symbol, bar in day_bars:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info(f"백테스트 취소: 마지막 처리일 {completed}")
                    raise RunCancelled(completed)
                last_close[symbol] = bar.close
                self._process_bar(symbol, bar, shares, pending, last_close)
                completed = bar.date

            portfolio.record_equity(current_date, last_close)

        for symbol, (signal, _) in pending.items():
            logger.info(f"[{signal.date}] 미체결 주문 폐기: {symbol} {signal.action.value} (다음 봉 없음)")

        self.result = calculate_metrics(capital, portfolio.equity_history, portfolio.trades)
        logger.info(
            f"백테스트 완료. 총 수익률: {self.result.total_return:.2%}, "
            f"체결 {self.result.total_trades}건"
        )
        return self.result

    def _validate(
        self,
        symbols: list[str],
        start: date,
        end: date,
        strategy_config: StrategyConfig,
        capital: float,
        shares: int,
    ) -> None:
        if not symbols:
            raise InvalidInput("종목 목록이 비어 있음")
        if len(set(symbols)) != len(symbols):
            raise InvalidInput(f"중복 종목: {symbols}")
        if start >= end:
            raise InvalidInput(f"시작일({start})이 종료일({end})보다 빨라야 함")
        if capital <= 0:
            raise InvalidInput(f"initial_capital은 0보다 커야 함 ({capital})")
        if shares <= 0:
            raise InvalidInput(f"shares_per_trade는 0보다 커야 함 ({shares})")
        if not isinstance(strategy_config, StrategyConfig):
            raise UnsupportedStrategy(type(strategy_config).__name__, list_strategies())
        strategy_config.validate()
        if self.risk is not None:
            self.risk.validate()

    def _fetch(self, symbol: str, start: date, end: date) -> list[Bar]:
        bars = validate_series(self.provider.fetch_series(symbol, start, end), symbol)
        outside = [b.date for b in bars if b.date < start or b.date > end]
        if outside:
            raise DataUnavailable(symbol, f"기간 밖의 봉 {len(outside)}개 (예: {outside[0]})")
        logger.debug(f"{symbol}: {len(bars)}봉 조회")
        return bars

    def _load_news(self, start: date, end: date) -> None:
        """감성 전략이면 종목당 한 번 기사 조회."""
        for symbol, strategy in self.strategies.items():
            if not strategy.requires_sentiment:
                continue
            if self.sentiment_feed is None:
                raise InvalidInput(f"{strategy.name} 전략은 sentiment_feed가 필요함")
            news_start, news_end = strategy.news_range(start, end)
            articles = self.sentiment_feed.fetch_articles(symbol, news_start, news_end)
            strategy.add_news(articles)
            logger.debug(f"{symbol}: 기사 {len(articles)}건 로드")

    def _process_bar(
        self,
        symbol: str,
        bar: Bar,
        shares: int,
        pending: dict[str, tuple[Signal, int]],
        prices: dict[str, float],
    ) -> None:
        """봉 하나 처리. 대기 주문 체결 → 청산 조건 확인 → 시그널 생성 → 주문."""
        if symbol in pending:
            queued, quantity = pending.pop(symbol)
            self._fill(dataclasses.replace(queued, date=bar.date), quantity, fill_price=bar.open)

        if self.risk_manager is not None:
            self._check_exit(symbol, bar)

        signal = self.strategies[symbol].on_bar(bar)
        self.signals.append(signal)
        if signal.action == SignalType.HOLD:
            return

        quantity = self._order_quantity(signal, shares, prices)
        if quantity is None:
            return
        if self.execution.fill_policy == FillPolicy.NEXT_OPEN:
            pending[symbol] = (signal, quantity)
        else:
            self._fill(signal, quantity)

    def _order_quantity(self, signal: Signal, shares: int, prices: dict[str, float]) -> int | None:
        """주문 수량. 리스크 관리가 주문을 막으면 dropped에 기록하고 None."""
        if self.risk_manager is None:
            return shares

        state = self.portfolio.state
        if signal.action == SignalType.SELL:
            # 보유 수량 전량 매도
            position = state.positions.get(signal.symbol)
            return position.quantity if position is not None and position.quantity > 0 else shares

        reason = self.risk_manager.check_entry(signal.symbol, state, prices)
        if reason is None:
            quantity = self.risk_manager.position_size(state, prices, signal.price, shares)
            if quantity > 0:
                return quantity
            reason = DropReason.ZERO_SIZE
        self.portfolio.drop(signal, reason)
        return None

    def _check_exit(self, symbol: str, bar: Bar) -> None:
        """손절/익절/추적손절 조건이면 종가로 전량 매도하고 전략을 미보유 상태로 되돌림."""
        position = self.portfolio.positions.get(symbol)
        if position is None or position.quantity <= 0:
            return
        trigger = self.risk_manager.check_exit(position, bar.close)
        if trigger is None:
            return

        exit_signal = Signal(
            symbol=symbol,
            date=bar.date,
            action=SignalType.SELL,
            price=bar.close,
            reason=f"{trigger.value} (평균단가 {position.average_cost:,.2f}, 종가 {bar.close:,.2f})",
        )
        logger.info(f"[{bar.date}] 리스크 청산: {symbol} {exit_signal.reason}")
        self._fill(exit_signal, position.quantity)
        self.strategies[symbol].position = PositionState.FLAT

    def _fill(self, signal: Signal, quantity: int, fill_price: float | None = None) -> None:
        trade = self.portfolio.apply_signal(signal, quantity, fill_price=fill_price)
        if trade is not None and self.risk_manager is not None:
            self.risk_manager.on_fill(trade)

    def generate_report(self) -> dict[str, Any]:
        """백테스트 리포트 생성."""
        if self.result is None or self.portfolio is None:
            return {"error": "백테스트를 먼저 실행하세요."}

        return {
            "result": self.result.to_dict(),
            "portfolio_summary": self.portfolio.get_summary(),
            "signal_count": {
                action.value: sum(1 for s in self.signals if s.action == action)
                for action in SignalType
            },
            "dropped": [
                {"date": s.date.isoformat(), "symbol": s.symbol, "action": s.action.value, "reason": r.value}
                for s, r in self.portfolio.dropped
            ],
            "risk": self.risk.to_dict() if self.risk is not None else None,
        }


def _interleave(
    series: dict[str, list[Bar]],
    symbols: list[str],
) -> list[tuple[date, list[tuple[str, Bar]]]]:
    """종목별 시계열을 날짜별 (종목, 봉) 목록으로 합침. 날짜 안의 순서는 symbols 순서."""
    by_date: dict[date, list[tuple[str, Bar]]] = {}
    for symbol in symbols:
        for bar in series[symbol]:
            by_date.setdefault(bar.date, []).append((symbol, bar))
    return sorted(by_date.items())
