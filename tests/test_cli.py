"""run_backtest.py 진입점 테스트."""

import json
import logging

import pytest
import yaml

import run_backtest
from run_backtest import main, parse_param


@pytest.fixture(autouse=True)
def reset_logger():
    yield
    logger = logging.getLogger("strategy_backtester")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "strategy": {
            "strategy_type": "moving_average_crossover",
            "symbols": ["AAA"],
            "params": {"fast_window": 5, "slow_window": 20},
        },
        "backtest": {"start_date": "2024-01-01", "end_date": "2024-06-30", "shares_per_trade": 10},
        "data": {"source": "sample"},
        "log_dir": str(tmp_path / "logs"),
    }), encoding="utf-8")
    return path


@pytest.mark.parametrize("raw, expected", [
    ("fast_window=5", ("fast_window", 5)),
    ("multiplier=1.5", ("multiplier", 1.5)),
    ("ma_type=EMA", ("ma_type", "EMA")),
    (" window = 10 ", ("window", 10)),
])
def test_parse_param(raw, expected):
    assert parse_param(raw) == expected


def test_list(capsys):
    assert main(["--list"]) == 0
    out = capsys.readouterr().out
    assert "moving_average_crossover" in out
    assert "sentiment_analysis" in out


def test_single_run_json(config_path, capsys):
    assert main(["--config", str(config_path), "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["initial_capital"] == 10_000
    assert payload["equity_history"][0]["date"] == "2024-01-01"


def test_single_run_report(config_path, capsys):
    assert main(["--config", str(config_path), "--strategy", "bollinger_bands", "-p", "window=10"]) == 0
    out = capsys.readouterr().out
    assert "[전략: bollinger_bands]" in out
    assert "백테스트 성과 리포트" in out


def test_compare_json(config_path, capsys):
    code = main(["--config", str(config_path), "--compare", "moving_average_crossover", "momentum", "--json"])
    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert set(payload["results"]) == {"moving_average_crossover", "momentum"}
    assert payload["errors"] == {}


def test_data_error_returns_1(config_path, tmp_path, capsys):
    code = main(["--config", str(config_path), "--source", "csv", "--csv-dir", str(tmp_path / "empty"), "--json"])
    assert code == 1
    assert "오류" in capsys.readouterr().err


def test_build_provider_sample(config_path):
    config = run_backtest.Config.from_yaml(config_path)
    provider = run_backtest.build_provider(config)
    start, end = config.date_range()
    assert provider.fetch_series("AAA", start, end)
