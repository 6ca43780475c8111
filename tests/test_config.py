"""설정 파일 로드/변환 테스트."""

import json
from datetime import date

import pytest
import yaml

from strategy_backtester.backtest.execution import FillPolicy, SlippageModel
from strategy_backtester.backtest.risk import PositionSizing, RiskSettings
from strategy_backtester.core.errors import InvalidInput, UnsupportedStrategy
from strategy_backtester.strategies.bollinger_bands import BollingerBandsConfig
from strategy_backtester.strategies.moving_average_crossover import MovingAverageCrossoverConfig
from strategy_backtester.utils.config import Config

SAMPLE = {
    "strategy": {
        "strategy_type": "moving_average_crossover",
        "symbols": ["AAA", "BBB"],
        "params": {"fast_window": 5, "slow_window": 20},
    },
    "backtest": {
        "start_date": "2024-02-01",
        "end_date": "2024-06-30",
        "initial_capital": 50_000,
        "fill_policy": "next_open",
        "slippage_model": "fixed",
        "slippage_rate": 0.001,
        "unknown_key": "ignored",
    },
    "data": {"source": "csv", "csv_dir": "prices"},
    "batch": {"max_workers": 2},
    "risk": {"enabled": True, "position_sizing": "percentage", "position_size_value": 20, "stop_loss_percentage": 5},
    "log_level": "DEBUG",
    "log_levels": {"portfolio": "WARNING"},
}


class TestConfig:

    def test_defaults(self):
        config = Config()
        assert config.strategy.strategy_type == "moving_average_crossover"
        assert config.data.source == "sample"
        assert config.execution().fill_policy == FillPolicy.CLOSE

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(SAMPLE), encoding="utf-8")
        config = Config.from_yaml(path)

        assert config.strategy.symbols == ["AAA", "BBB"]
        assert config.backtest.initial_capital == 50_000
        assert config.backtest.shares_per_trade == 100
        assert config.data.csv_dir == "prices"
        assert config.batch.max_workers == 2
        assert config.log_level == "DEBUG"
        assert config.log_levels == {"portfolio": "WARNING"}
        assert config.date_range() == (date(2024, 2, 1), date(2024, 6, 30))

    def test_from_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps(SAMPLE), encoding="utf-8")
        assert Config.from_json(path).strategy.params == {"fast_window": 5, "slow_window": 20}

    def test_empty_yaml_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        assert Config.from_yaml(path) == Config()

    def test_flat_strategy_params(self):
        config = Config.from_dict({"strategy": {"strategy_type": "bollinger_bands", "window": 10}})
        assert config.strategy.params == {"window": 10}
        assert config.strategy_config() == BollingerBandsConfig(window=10)

    def test_strategy_config(self):
        config = Config.from_dict(SAMPLE)
        assert config.strategy_config() == MovingAverageCrossoverConfig(fast_window=5, slow_window=20)

    def test_strategy_config_for_other_type_keeps_known_params(self):
        config = Config.from_dict({
            "strategy": {"strategy_type": "moving_average_crossover", "params": {"fast_window": 5}},
        })
        assert config.strategy_config("bollinger_bands") == BollingerBandsConfig()

    def test_unknown_strategy_type(self):
        config = Config.from_dict({"strategy": {"strategy_type": "martingale"}})
        with pytest.raises(UnsupportedStrategy):
            config.strategy_config()

    def test_execution(self):
        execution = Config.from_dict(SAMPLE).execution()
        assert execution.fill_policy == FillPolicy.NEXT_OPEN
        assert execution.slippage_model == SlippageModel.FIXED
        assert execution.slippage_rate == 0.001

    def test_invalid_execution_value(self):
        config = Config.from_dict({"backtest": {"fill_policy": "midday"}})
        with pytest.raises(InvalidInput):
            config.execution()

    def test_bad_date(self):
        config = Config.from_dict({"backtest": {"start_date": "01/02/2024"}})
        with pytest.raises(InvalidInput):
            config.date_range()

    def test_section_must_be_mapping(self):
        with pytest.raises(InvalidInput):
            Config.from_dict({"backtest": ["not", "a", "mapping"]})

    def test_save_yaml_round_trip(self, tmp_path):
        config = Config.from_dict(SAMPLE)
        path = tmp_path / "out" / "config.yaml"
        config.save_yaml(path)
        assert Config.from_yaml(path) == config

    def test_risk_disabled_by_default(self):
        assert Config().risk_settings() is None
        assert Config.from_dict({"risk": {"stop_loss_percentage": 5}}).risk_settings() is None

    def test_risk_settings(self):
        settings = Config.from_dict(SAMPLE).risk_settings()
        assert settings == RiskSettings(
            position_sizing=PositionSizing.PERCENTAGE, position_size_value=20, stop_loss_percentage=5
        )

    def test_invalid_risk_value(self):
        config = Config.from_dict({"risk": {"enabled": True, "position_sizing": "martingale"}})
        with pytest.raises(InvalidInput):
            config.risk_settings()
