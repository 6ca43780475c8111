"""리스크 관리(포지션 크기, 진입 제한, 손절/익절, 당일 손실 한도) 테스트."""

from datetime import date

import pytest

from strategy_backtester.backtest.engine import BacktestEngine
from strategy_backtester.backtest.execution import OrderExecutionSimulator
from strategy_backtester.backtest.risk import (
    ExitTrigger,
    PositionSizing,
    RiskManager,
    RiskSettings,
)
from strategy_backtester.core.errors import InvalidInput
from strategy_backtester.core.trading_strategy import SignalType
from strategy_backtester.data.portfolio import DropReason, PortfolioState, Position, Trade
from strategy_backtester.strategies.moving_average_crossover import MovingAverageCrossoverConfig

from conftest import SCENARIO_CLOSES

START, END = date(2024, 1, 1), date(2024, 1, 10)
D1, D2 = date(2024, 1, 2), date(2024, 1, 3)
MA_2_4 = MovingAverageCrossoverConfig(fast_window=2, slow_window=4)


def state_with(cash, **holdings):
    """state_with(9_000, AAA=(10, 100.0)) -> 현금 + {종목: (수량, 평균단가)}."""
    state = PortfolioState(cash=cash)
    for symbol, (quantity, cost) in holdings.items():
        state.positions[symbol] = Position(symbol, quantity, cost)
    return state


def sell_trade(realized_pnl, day=D1, symbol="AAA"):
    return Trade(symbol, SignalType.SELL, day, price=100.0, quantity=10, realized_pnl=realized_pnl)


def run_engine(make_provider, series, risk, capital=10_000, shares=10):
    engine = BacktestEngine(make_provider(series), initial_capital=capital, shares_per_trade=shares, risk=risk)
    result = engine.run(list(series), START, END, MA_2_4)
    return engine, result


class TestRiskSettings:

    def test_defaults(self):
        settings = RiskSettings()
        assert settings.position_sizing == PositionSizing.FIXED
        assert settings.max_open_positions == 10
        assert settings.stop_loss_percentage is None
        settings.validate()

    def test_string_sizing_accepted(self):
        assert RiskSettings(position_sizing="Equal_Weight").position_sizing == PositionSizing.EQUAL_WEIGHT

    def test_unknown_sizing(self):
        with pytest.raises(InvalidInput):
            RiskSettings(position_sizing="martingale")

    @pytest.mark.parametrize("kwargs", [
        {"position_size_value": 0},
        {"max_open_positions": 0},
        {"max_position_size_percentage": 150},
        {"stop_loss_percentage": -5},
        {"stop_loss_percentage": 100},
        {"trailing_stop_percentage": 100},
        {"max_daily_loss_absolute": 0},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(InvalidInput):
            RiskSettings(**kwargs).validate()

    def test_from_dict(self):
        settings = RiskSettings.from_dict({"position_sizing": "kelly", "position_size_value": 25})
        assert settings.position_sizing == PositionSizing.KELLY
        assert settings.to_dict()["position_sizing"] == "kelly"

    def test_from_dict_unknown_key(self):
        with pytest.raises(InvalidInput):
            RiskSettings.from_dict({"stop_loss": 5})

    def test_engine_rejects_invalid_settings(self, make_provider):
        engine = BacktestEngine(make_provider({"AAA": SCENARIO_CLOSES}), risk=RiskSettings(max_open_positions=0))
        with pytest.raises(InvalidInput):
            engine.run(["AAA"], START, END, MA_2_4)


class TestPositionSize:

    def size(self, settings, state=None, price=100.0, shares=7):
        state = state or state_with(10_000)
        return RiskManager(settings, 10_000).position_size(state, {}, price, shares)

    def test_fixed_uses_shares_per_trade(self):
        assert self.size(RiskSettings()) == 7

    def test_percentage(self):
        # floor(10000 × 10% / 103)
        assert self.size(RiskSettings(position_sizing="percentage"), price=103.0) == 9

    def test_percentage_capped_by_max_position(self):
        settings = RiskSettings(
            position_sizing="percentage", position_size_value=50, max_position_size_percentage=20
        )
        assert self.size(settings, price=103.0) == 19

    def test_kelly_fraction(self):
        assert self.size(RiskSettings(position_sizing="kelly", position_size_value=25)) == 25

    def test_equal_weight(self):
        assert self.size(RiskSettings(position_sizing="equal_weight", max_open_positions=4)) == 25

    def test_equal_weight_full(self):
        state = state_with(6_000, AAA=(10, 100.0), BBB=(10, 100.0))
        settings = RiskSettings(position_sizing="equal_weight", max_open_positions=2)
        assert self.size(settings, state=state) == 0

    def test_total_value_uses_current_prices(self):
        manager = RiskManager(RiskSettings(position_sizing="percentage"), 10_000)
        state = state_with(5_000, AAA=(50, 100.0))
        # 5000 + 50 × 200 = 15000 → 10% = 1500
        assert manager.position_size(state, {"AAA": 200.0}, 100.0, 1) == 15


class TestCheckEntry:

    def test_open(self):
        manager = RiskManager(RiskSettings(), 10_000)
        assert manager.check_entry("AAA", state_with(10_000), {}) is None

    def test_max_open_positions(self):
        manager = RiskManager(RiskSettings(max_open_positions=1), 10_000)
        state = state_with(9_000, BBB=(10, 100.0))
        assert manager.check_entry("AAA", state, {"BBB": 100.0}) == DropReason.MAX_OPEN_POSITIONS
        # 이미 보유 중인 종목의 추가 매수는 종목 수 제한 대상이 아님
        assert manager.check_entry("BBB", state, {"BBB": 100.0}) is None

    def test_position_limit(self):
        manager = RiskManager(RiskSettings(max_position_size_percentage=10), 10_000)
        state = state_with(9_000, AAA=(10, 100.0))
        assert manager.check_entry("AAA", state, {"AAA": 100.0}) == DropReason.POSITION_LIMIT
        assert manager.check_entry("AAA", state, {"AAA": 90.0}) is None

    def test_daily_loss_limit_blocks_until_next_day(self):
        manager = RiskManager(RiskSettings(max_daily_loss_percentage=1), 10_000)
        manager.start_day(D1)
        manager.on_fill(sell_trade(-150.0))
        assert manager.halted
        assert manager.check_entry("BBB", state_with(10_000), {}) == DropReason.DAILY_LOSS_LIMIT

        manager.start_day(D1)
        assert manager.halted
        manager.start_day(D2)
        assert not manager.halted
        assert manager.daily_pnl == 0.0
        assert manager.check_entry("BBB", state_with(10_000), {}) is None


class TestDailyLoss:

    def test_absolute_limit(self):
        manager = RiskManager(RiskSettings(max_daily_loss_absolute=100), 10_000)
        manager.start_day(D1)
        manager.on_fill(sell_trade(-60.0))
        assert not manager.halted
        manager.on_fill(sell_trade(-40.0))
        assert manager.halted
        assert manager.daily_pnl == pytest.approx(-100.0)

    def test_gains_do_not_count_as_loss(self):
        manager = RiskManager(RiskSettings(max_daily_loss_absolute=100), 10_000)
        manager.start_day(D1)
        manager.on_fill(sell_trade(500.0))
        manager.on_fill(sell_trade(-400.0))
        assert not manager.halted
        assert manager.daily_pnl == pytest.approx(100.0)

    def test_no_limits_never_halts(self):
        manager = RiskManager(RiskSettings(), 10_000)
        manager.start_day(D1)
        manager.on_fill(sell_trade(-9_000.0))
        assert not manager.halted


class TestCheckExit:

    def test_stop_loss(self):
        manager = RiskManager(RiskSettings(stop_loss_percentage=5), 10_000)
        position = Position("AAA", 10, 100.0)
        assert manager.check_exit(position, 96.0) is None
        assert manager.check_exit(position, 95.0) == ExitTrigger.STOP_LOSS

    def test_take_profit(self):
        manager = RiskManager(RiskSettings(take_profit_percentage=10), 10_000)
        position = Position("AAA", 10, 100.0)
        assert manager.check_exit(position, 109.0) is None
        assert manager.check_exit(position, 110.0) == ExitTrigger.TAKE_PROFIT

    def test_trailing_stop_follows_highest(self):
        manager = RiskManager(RiskSettings(trailing_stop_percentage=10), 10_000)
        position = Position("AAA", 10, 100.0)
        assert manager.check_exit(position, 120.0) is None
        assert manager.check_exit(position, 109.0) is None
        # 최고가 120 × 0.9 = 108 이하
        assert manager.check_exit(position, 107.0) == ExitTrigger.TRAILING_STOP

    def test_sell_resets_highest(self):
        manager = RiskManager(RiskSettings(trailing_stop_percentage=10), 10_000)
        manager.check_exit(Position("AAA", 10, 100.0), 200.0)
        manager.on_fill(sell_trade(1_000.0))
        assert manager.check_exit(Position("AAA", 10, 100.0), 100.0) is None

    def test_flat_position_ignored(self):
        manager = RiskManager(RiskSettings(stop_loss_percentage=1), 10_000)
        assert manager.check_exit(Position("AAA"), 1.0) is None


class TestEngineWithRisk:

    def test_default_settings_match_plain_run(self, make_provider, random_walk):
        series = {"AAA": random_walk(10, seed=3), "BBB": random_walk(10, seed=4)}
        plain_engine, plain = run_engine(make_provider, series, None)
        risk_engine, with_risk = run_engine(make_provider, series, RiskSettings())
        assert with_risk == plain
        assert risk_engine.portfolio.dropped == plain_engine.portfolio.dropped

    def test_no_settings_keeps_scenario(self, make_provider):
        engine, result = run_engine(make_provider, {"AAA": SCENARIO_CLOSES}, None)
        assert engine.risk_manager is None
        assert result.final_value == pytest.approx(9_990)

    def test_stop_loss_exits_before_strategy(self, make_provider):
        risk = RiskSettings(stop_loss_percentage=0.5)
        engine, result = run_engine(make_provider, {"AAA": SCENARIO_CLOSES}, risk)
        buy, sell = result.trades
        assert (buy.date, buy.price) == (date(2024, 1, 4), 103.0)
        assert (sell.date, sell.price) == (date(2024, 1, 7), 102.0)
        assert sell.reason.startswith(ExitTrigger.STOP_LOSS.value)
        # 청산 후 전략은 미보유 상태라 데드크로스 매도 시그널이 나오지 않음
        assert engine.signals[6].action == SignalType.HOLD
        assert result.final_value == pytest.approx(9_990)

    def test_take_profit(self, make_provider):
        closes = [100, 101, 102, 103, 104, 115, 116, 117, 118, 119]
        _, result = run_engine(make_provider, {"AAA": closes}, RiskSettings(take_profit_percentage=10))
        assert [(t.action, t.date, t.price) for t in result.trades] == [
            (SignalType.BUY, date(2024, 1, 4), 103.0),
            (SignalType.SELL, date(2024, 1, 6), 115.0),
        ]
        assert result.trades[1].reason.startswith(ExitTrigger.TAKE_PROFIT.value)
        assert result.final_value == pytest.approx(10_120)

    def test_trailing_stop(self, make_provider):
        closes = [100, 101, 102, 103, 110, 120, 115, 107, 108, 109]
        _, result = run_engine(make_provider, {"AAA": closes}, RiskSettings(trailing_stop_percentage=10))
        sell = result.trades[-1]
        assert (sell.date, sell.price) == (date(2024, 1, 8), 107.0)
        assert sell.reason.startswith(ExitTrigger.TRAILING_STOP.value)
        assert len(result.trades) == 2
        assert result.final_value == pytest.approx(10_040)

    def test_percentage_sizing_and_full_exit(self, make_provider):
        risk = RiskSettings(position_sizing="percentage", position_size_value=50)
        _, result = run_engine(make_provider, {"AAA": SCENARIO_CLOSES}, risk)
        # floor(10000 × 50% / 103) = 48주, 매도는 보유 전량
        assert [t.quantity for t in result.trades] == [48, 48]
        assert result.final_value == pytest.approx(10_000 - 48)

    def test_zero_size_dropped(self, make_provider):
        risk = RiskSettings(position_sizing="percentage", position_size_value=0.5)
        engine, result = run_engine(make_provider, {"AAA": SCENARIO_CLOSES}, risk)
        # floor(50 / 103) = 0
        assert result.trades == []
        assert [r for _, r in engine.portfolio.dropped] == [DropReason.ZERO_SIZE, DropReason.NO_POSITION]

    def test_max_open_positions(self, make_provider):
        series = {"AAA": SCENARIO_CLOSES, "BBB": SCENARIO_CLOSES}
        engine, result = run_engine(make_provider, series, RiskSettings(max_open_positions=1))
        assert {t.symbol for t in result.trades} == {"AAA"}
        assert [(s.symbol, r) for s, r in engine.portfolio.dropped] == [
            ("BBB", DropReason.MAX_OPEN_POSITIONS),
            ("BBB", DropReason.NO_POSITION),
        ]
        report = engine.generate_report()
        assert [d["reason"] for d in report["dropped"]] == ["MaxOpenPositions", "NoPosition"]
        assert report["risk"]["max_open_positions"] == 1

    def test_daily_loss_limit_blocks_same_day_entry(self, make_provider):
        # AAA: 1/7 손실 매도 (-10), BBB: 1/7 골든크로스 매수
        series = {"AAA": SCENARIO_CLOSES, "BBB": [100, 99, 98, 97, 96, 95, 100, 101, 102, 103]}
        engine, result = run_engine(make_provider, series, RiskSettings(max_daily_loss_absolute=5))
        assert [(t.symbol, t.action) for t in result.trades] == [
            ("AAA", SignalType.BUY),
            ("AAA", SignalType.SELL),
        ]
        [(signal, reason)] = engine.portfolio.dropped
        assert (signal.symbol, signal.date, signal.action) == ("BBB", date(2024, 1, 7), SignalType.BUY)
        assert reason == DropReason.DAILY_LOSS_LIMIT
        assert not engine.risk_manager.halted

    def test_next_open_sizes_at_signal(self, make_provider):
        risk = RiskSettings(position_sizing="percentage", position_size_value=50)
        engine = BacktestEngine(
            make_provider({"AAA": SCENARIO_CLOSES}),
            initial_capital=10_000,
            shares_per_trade=10,
            execution=OrderExecutionSimulator(fill_policy="next_open"),
            risk=risk,
        )
        result = engine.run(["AAA"], START, END, MA_2_4)
        assert [(t.date, t.quantity, t.price) for t in result.trades] == [
            (date(2024, 1, 5), 48, 104.0),
            (date(2024, 1, 8), 48, 101.0),
        ]
