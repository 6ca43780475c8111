"""
여러 백테스트 병렬 실행 모듈.

[ 역할 ]
    서로 독립적인 백테스트 요청(RunRequest) 여러 개를 스레드 풀에서 동시에 실행.
    전략 비교(run_backtest.py --compare), 파라미터 탐색 등에 사용.

[ 격리 ]
    작업마다 provider_factory()로 새 데이터 제공자를 만들고, 새 BacktestEngine을 생성한다.
    포트폴리오/전략 인스턴스는 작업 간에 공유되지 않는다.
    한 작업의 예외는 그 작업의 RunOutcome.error에만 기록된다.
    BacktestError가 아닌 예기치 않은 예외(제공자 버그 등)도 스택트레이스를 로그로 남기고
    같은 방식으로 격리되어, 나머지 작업의 결과는 그대로 반환된다.

[ 취소 ]
    cancel_event를 모든 작업이 공유. 설정되면 실행 중인 작업은 다음 봉 경계에서
    RunCancelled로 끝나고, 아직 시작하지 않은 작업도 같은 방식으로 즉시 끝난다.

[ 호출하는 곳 ]
    - run_backtest.py --compare
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import Callable

from strategy_backtester.backtest.engine import BacktestEngine
from strategy_backtester.backtest.execution import OrderExecutionSimulator
from strategy_backtester.backtest.metrics import BacktestResult
from strategy_backtester.backtest.risk import RiskSettings
from strategy_backtester.core.data_provider import PriceSeriesProvider
from strategy_backtester.core.errors import BacktestError, InvalidInput
from strategy_backtester.core.sentiment import SentimentFeed
from strategy_backtester.core.trading_strategy import StrategyConfig

logger = logging.getLogger("strategy_backtester.batch")


@dataclass(frozen=True)
class RunRequest:
    """백테스트 요청 하나."""
    name: str
    symbols: list[str]
    start: date
    end: date
    strategy_config: StrategyConfig
    initial_capital: float = 10_000
    shares_per_trade: int = 100


@dataclass(frozen=True)
class RunOutcome:
    request: RunRequest
    result: BacktestResult | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchRunner:
    """RunRequest 목록을 병렬 실행. 결과 순서는 입력 순서와 같다."""
    provider_factory: Callable[[], PriceSeriesProvider]
    max_workers: int = 4
    execution: OrderExecutionSimulator | None = None
    sentiment_feed: SentimentFeed | None = None
    risk: RiskSettings | None = None
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def __post_init__(self):
        if self.max_workers < 1:
            raise InvalidInput(f"max_workers >= 1 필요 ({self.max_workers})")

    def cancel(self) -> None:
        self.cancel_event.set()

    def run(self, requests: list[RunRequest]) -> list[RunOutcome]:
        if not requests:
            return []

        logger.info(f"배치 실행: {len(requests)}건 (workers={self.max_workers})")
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [executor.submit(self.run_one, request) for request in requests]
            outcomes = [future.result() for future in futures]

        failed = [o for o in outcomes if not o.ok]
        logger.info(f"배치 완료: 성공 {len(outcomes) - len(failed)}건, 실패 {len(failed)}건")
        return outcomes

    def run_one(self, request: RunRequest) -> RunOutcome:
        """요청 하나를 독립된 엔진으로 실행."""
        try:
            engine = BacktestEngine(
                provider=self.provider_factory(),
                initial_capital=request.initial_capital,
                shares_per_trade=request.shares_per_trade,
                execution=self.execution,
                sentiment_feed=self.sentiment_feed,
                risk=self.risk,
            )
            result = engine.run(
                request.symbols,
                request.start,
                request.end,
                request.strategy_config,
                cancel_event=self.cancel_event,
            )
        except BacktestError as e:
            logger.warning(f"[{request.name}] 실패: {e}")
            return RunOutcome(request=request, error=e)
        except Exception as e:
            logger.exception(f"[{request.name}] 예기치 않은 오류: {e}")
            return RunOutcome(request=request, error=e)
        return RunOutcome(request=request, result=result)
