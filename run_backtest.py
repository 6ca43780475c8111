"""
백테스트 실행 스크립트 (시스템 진입점).

[ 사용법 ]
    # 기본 실행 (config.yaml의 전략 사용, 없으면 기본값)
    python run_backtest.py

    # 전략 지정
    python run_backtest.py --strategy bollinger_bands
    python run_backtest.py --strategy momentum --symbols AAPL MSFT

    # 파라미터 오버라이드
    python run_backtest.py --strategy moving_average_crossover -p fast_window=5 -p slow_window=20 -p ma_type=EMA

    # 데이터 소스 지정 (sample / csv / yahoo / clickhouse)
    python run_backtest.py --source yahoo
    python run_backtest.py --source csv --csv-dir ./data

    # 다음 봉 시가 체결
    python run_backtest.py --fill-policy next_open

    # 뉴스 감성 전략 (기사 JSON 필요)
    python run_backtest.py --strategy sentiment_analysis --news news.json

    # 여러 전략 비교 (병렬 실행)
    python run_backtest.py --compare moving_average_crossover bollinger_bands momentum

    # 결과를 JSON으로 출력
    python run_backtest.py --json

    # 등록된 전략 목록 확인
    python run_backtest.py --list
"""

import argparse
import json
import sys
from pathlib import Path

from strategy_backtester.backtest.batch import BatchRunner, RunRequest
from strategy_backtester.backtest.engine import BacktestEngine
from strategy_backtester.backtest.metrics import BacktestResult
from strategy_backtester.core.data_provider import PriceSeriesProvider
from strategy_backtester.core.errors import BacktestError
from strategy_backtester.core.sentiment import InMemorySentimentFeed
from strategy_backtester.core.trading_strategy import SignalType
from strategy_backtester.data.providers import (
    CachedPriceProvider,
    ClickHousePriceProvider,
    CsvPriceProvider,
    InMemoryPriceProvider,
    YahooFinanceProvider,
    generate_sample_data,
)
from strategy_backtester.strategies import default_config, list_strategies
from strategy_backtester.utils.config import DATA_SOURCES, Config
from strategy_backtester.utils.logger import setup_logger


def parse_param(param_str: str) -> tuple[str, object]:
    """'key=value' 문자열을 파싱하여 (key, value) 반환. 숫자면 자동 변환."""
    key, _, value = param_str.partition("=")
    key = key.strip()
    value = value.strip()

    try:
        if "." in value or "e" in value.lower():
            return key, float(value)
        return key, int(value)
    except ValueError:
        return key, value


def build_provider(config: Config) -> PriceSeriesProvider:
    """설정의 데이터 소스로 제공자 생성."""
    source = config.data.source
    if source == "sample":
        start, end = config.date_range()
        provider = InMemoryPriceProvider()
        for symbol in config.strategy.symbols:
            provider.load_data(symbol, generate_sample_data(symbol, start, end))
        return provider
    if source == "csv":
        return CsvPriceProvider(config.data.csv_dir)
    if source == "yahoo":
        return CachedPriceProvider(YahooFinanceProvider(
            max_retries=config.data.max_retries,
            retry_delay=config.data.retry_delay,
            use_adjusted_close=config.data.use_adjusted_close,
        ))
    if source == "clickhouse":
        return ClickHousePriceProvider(
            host=config.database.host,
            port=config.database.port,
            database=config.database.database,
            user=config.database.user,
            password=config.database.password,
            use_adjusted_close=config.database.use_adjusted_close,
        )
    raise SystemExit(f"오류: 알 수 없는 데이터 소스: {source} (가능: {', '.join(DATA_SOURCES)})")


def print_single_result(strategy_type: str, engine: BacktestEngine, result: BacktestResult) -> None:
    """단일 전략 결과 출력."""
    print(f"\n[전략: {strategy_type}]")
    print(result.summary())

    buys = [t for t in result.trades if t.action == SignalType.BUY]
    sells = [t for t in result.trades if t.action == SignalType.SELL]
    print(f"\n체결: 매수 {len(buys)}회, 매도 {len(sells)}회, 무시된 시그널 {len(engine.portfolio.dropped)}건")

    if sells:
        print("\n최근 매도 거래 (최대 5건):")
        for t in sells[-5:]:
            pnl = f"+{t.realized_pnl:,.2f}" if t.realized_pnl > 0 else f"{t.realized_pnl:,.2f}"
            print(f"  [{t.date}] {t.symbol} {t.quantity}주 @ {t.price:,.2f} -> {pnl}")


def print_comparison(results: dict[str, BacktestResult], errors: dict[str, str], config: Config) -> None:
    """여러 전략 비교 결과 출력."""
    period = f"{config.backtest.start_date} ~ {config.backtest.end_date}"
    names = list(results.keys())

    for name, message in errors.items():
        print(f"[실패] {name}: {message}")
    if not names:
        return

    col_width = max(14, max(len(n) for n in names) + 2)
    width = 20 + col_width * len(names)

    print(f"\n{'=' * width}")
    print(f"전략 비교 결과 ({', '.join(config.strategy.symbols)}, {period})")
    print(f"{'=' * width}")

    header = f"{'':>20}" + "".join(f"{n:>{col_width}}" for n in names)
    print(header)
    print("-" * len(header))

    rows = [
        ("총 수익률", lambda r: f"{r.total_return:.2%}"),
        ("연환산 수익률", lambda r: f"{r.annual_return:.2%}"),
        ("샤프 비율", lambda r: f"{r.sharpe_ratio:.2f}"),
        ("최대 낙폭(MDD)", lambda r: f"{r.max_drawdown:.2%}"),
        ("총 거래 횟수", lambda r: f"{r.total_trades}"),
        ("승률", lambda r: f"{r.win_rate:.1%}"),
        ("수익 팩터", lambda r: f"{r.profit_factor:.2f}"),
        ("평균 수익", lambda r: f"{r.avg_win:,.2f}"),
        ("평균 손실", lambda r: f"{r.avg_loss:,.2f}"),
        ("최대 연속 수익", lambda r: f"{r.max_consecutive_wins}"),
        ("최대 연속 손실", lambda r: f"{r.max_consecutive_losses}"),
    ]
    for label, fmt in rows:
        print(f"{label:>20}" + "".join(f"{fmt(results[n]):>{col_width}}" for n in names))

    print(f"{'=' * width}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="전략 백테스트 실행")
    parser.add_argument("--config", type=str, default="config.yaml", help="설정 파일 경로 (.yaml / .json)")
    parser.add_argument("--strategy", type=str, default=None, help="전략 타입 (config.yaml 대신 지정)")
    parser.add_argument("-p", "--param", action="append", default=[], help="파라미터 오버라이드 (예: -p fast_window=5)")
    parser.add_argument("--symbols", nargs="+", default=None, help="종목 코드 목록")
    parser.add_argument("--source", type=str, default=None, choices=DATA_SOURCES, help="데이터 소스")
    parser.add_argument("--csv-dir", type=str, default=None, help="CSV 데이터 디렉토리 (--source csv)")
    parser.add_argument("--fill-policy", type=str, default=None, choices=["close", "next_open"], help="체결 시점")
    parser.add_argument("--news", type=str, default=None, help="뉴스 기사 JSON 파일 (sentiment_analysis)")
    parser.add_argument("--compare", nargs="+", metavar="STRATEGY", help="여러 전략 비교 (병렬 실행)")
    parser.add_argument("--json", action="store_true", help="결과를 JSON으로 출력")
    parser.add_argument("--list", action="store_true", help="등록된 전략 목록 출력")
    args = parser.parse_args(argv)

    # 전략 목록 출력
    if args.list:
        print("등록된 전략:")
        for name in list_strategies():
            params = default_config(name).to_dict()
            params.pop("strategy_type")
            print(f"  - {name}: {params}")
        return 0

    # 설정 로드
    config_path = Path(args.config)
    if config_path.exists():
        if config_path.suffix == ".json":
            config = Config.from_json(config_path)
        else:
            config = Config.from_yaml(config_path)
    else:
        print(f"설정 파일 없음: {config_path}, 기본값 사용")
        config = Config()

    # CLI 오버라이드
    if args.strategy:
        if args.strategy != config.strategy.strategy_type:
            config.strategy.params = {}
        config.strategy.strategy_type = args.strategy
    for p in args.param:
        key, value = parse_param(p)
        config.strategy.params[key] = value
    if args.symbols:
        config.strategy.symbols = args.symbols
    if args.source:
        config.data.source = args.source
    if args.csv_dir:
        config.data.csv_dir = args.csv_dir
    if args.fill_policy:
        config.backtest.fill_policy = args.fill_policy

    setup_logger(
        level=config.log_level,
        log_dir=config.log_dir,
        console=not args.json,
        levels=config.log_levels,
    )

    try:
        start, end = config.date_range()
        execution = config.execution()
        risk = config.risk_settings()
        sentiment_feed = InMemorySentimentFeed.from_json(args.news) if args.news else None

        # ─── 비교 모드 ───────────────────────────────────────────────────
        if args.compare:
            requests = [
                RunRequest(
                    name=name,
                    symbols=config.strategy.symbols,
                    start=start,
                    end=end,
                    strategy_config=config.strategy_config(name),
                    initial_capital=config.backtest.initial_capital,
                    shares_per_trade=config.backtest.shares_per_trade,
                )
                for name in args.compare
            ]
            runner = BatchRunner(
                provider_factory=lambda: build_provider(config),
                max_workers=config.batch.max_workers,
                execution=execution,
                sentiment_feed=sentiment_feed,
                risk=risk,
            )
            outcomes = runner.run(requests)
            results = {o.request.name: o.result for o in outcomes if o.ok}
            errors = {o.request.name: str(o.error) for o in outcomes if not o.ok}
            if args.json:
                print(json.dumps(
                    {"results": {n: r.to_dict() for n, r in results.items()}, "errors": errors},
                    ensure_ascii=False,
                    indent=2,
                ))
            else:
                print_comparison(results, errors, config)
            return 0 if not errors else 1

        # ─── 단일 실행 모드 ─────────────────────────────────────────────
        strategy_config = config.strategy_config()
        engine = BacktestEngine(
            provider=build_provider(config),
            initial_capital=config.backtest.initial_capital,
            shares_per_trade=config.backtest.shares_per_trade,
            execution=execution,
            sentiment_feed=sentiment_feed,
            risk=risk,
        )
        result = engine.run(config.strategy.symbols, start, end, strategy_config)
    except BacktestError as e:
        print(f"오류: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    else:
        print_single_result(strategy_config.strategy_type, engine, result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
