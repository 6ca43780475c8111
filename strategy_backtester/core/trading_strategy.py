"""
매매 전략 추상 클래스 정의.

[ 역할 ]
    봉 단위 시그널 생성기의 인터페이스를 정의.
    종목마다 전략 인스턴스 하나가 롤링 지표 상태를 소유하고,
    봉이 들어올 때마다 매수/매도/홀드 시그널을 반환한다.

[ 구현체 ]
    - strategies/moving_average_crossover.py  (이동평균 교차)
    - strategies/bollinger_bands.py           (볼린저 밴드)
    - strategies/mean_reversion.py            (평균 회귀)
    - strategies/momentum.py                  (RSI + 모멘텀)
    - strategies/breakout.py                  (돌파)
    - strategies/sentiment_analysis.py        (뉴스 감성)

[ 호출하는 곳 ]
    - backtest/engine.py::BacktestEngine.run()에서
      봉마다 strategy.on_bar(bar)를 호출하여 시그널을 받고 포트폴리오에 반영

[ 데이터 흐름 ]
    Bar → on_bar() → update_indicators() → (워밍업 완료 시) should_sell / should_buy → Signal

[ 전략 설정 (StrategyConfig) ]
    strategy_type 태그로 구분되는 변형(variant) 데이터클래스.
    전략별 파라미터 + validate()(순서/범위 제약) + warmup_period.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, fields
from datetime import date
from enum import Enum
from typing import Any, ClassVar

from strategy_backtester.core.data_provider import Bar
from strategy_backtester.core.errors import InvalidInput, OutOfOrderBar


class SignalType(Enum):
    """전략이 반환하는 시그널 종류."""
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


class PositionState(Enum):
    """전략이 가정하는 보유 상태. BUY는 FLAT일 때만, SELL은 LONG일 때만 발생."""
    FLAT = "flat"
    LONG = "long"


@dataclass(frozen=True)
class Signal:
    """on_bar()의 반환값. 종목당 봉 하나에 최대 하나."""
    symbol: str
    date: date
    action: SignalType
    price: float             # 시그널 발생 봉의 종가
    reason: str = ""         # 시그널 발생 사유 (로깅용)
    indicators: dict[str, Any] = field(default_factory=dict)


# ─── 전략 설정 ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StrategyConfig(ABC):
    """전략 설정 변형의 부모 클래스.

    하위 클래스는 strategy_type 태그, 파라미터 필드(기본값 포함),
    validate(), warmup_period를 정의한다.
    """

    strategy_type: ClassVar[str] = ""

    def validate(self) -> None:
        """파라미터 제약 검증. 위반 시 InvalidInput."""

    @property
    @abstractmethod
    def warmup_period(self) -> int:
        """시그널을 내기 위해 필요한 최소 봉 수."""

    def _require(self, condition: bool, message: str) -> None:
        if not condition:
            raise InvalidInput(f"{self.strategy_type}: {message}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StrategyConfig":
        """딕셔너리에서 설정 생성. 알 수 없는 키는 InvalidInput."""
        known = {f.name: f for f in fields(cls)}
        unknown = set(data) - set(known) - {"strategy_type"}
        if unknown:
            raise InvalidInput(
                f"{cls.strategy_type}: 알 수 없는 파라미터 {sorted(unknown)}"
            )

        kwargs = {}
        for name, value in data.items():
            if name in known:
                kwargs[name] = _coerce(cls.strategy_type, name, known[name].type, value)
        config = cls(**kwargs)
        config.validate()
        return config

    def to_dict(self) -> dict[str, Any]:
        """딕셔너리 변환 (strategy_type 포함)."""
        return {"strategy_type": self.strategy_type, **asdict(self)}


def _coerce(strategy_type: str, name: str, expected: Any, value: Any) -> Any:
    """YAML/CLI에서 들어온 값을 필드 타입으로 변환."""
    if isinstance(value, bool) and expected in (int, float):
        raise InvalidInput(f"{strategy_type}: {name}에 bool 값 불가")
    if expected in (int, float):
        try:
            number = float(value)
        except (TypeError, ValueError) as e:
            raise InvalidInput(f"{strategy_type}: {name} 값 변환 실패 ({value!r})") from e
        if expected is float:
            return number
        if not number.is_integer():
            raise InvalidInput(f"{strategy_type}: {name}는 정수여야 함 ({value})")
        return int(number)
    if expected is str:
        return str(value)
    return value


# ─── 추상 클래스 ────────────────────────────────────────────────────────────

class TradingStrategy(ABC):
    """매매 전략 추상 클래스.

    새 전략을 만들려면 이 클래스를 상속받아 아래 메서드를 구현하면 된다:
    - update_indicators(): 봉마다 롤링 지표 갱신 (워밍업 중에도 호출됨)
    - should_buy(): 매수 조건 판단
    - should_sell(): 매도 조건 판단
    - reset_indicators(): 지표 상태 초기화
    봉 순서 검증, 워밍업, 보유 상태 추적은 on_bar()가 공통으로 처리한다.
    """

    # True이면 엔진이 실행 시작 전에 감성 피드를 조회해 add_news()로 전달
    requires_sentiment = False

    def __init__(self, config: StrategyConfig, symbol: str):
        config.validate()
        self.config = config
        self.symbol = symbol
        self.name = config.strategy_type
        self.bars_seen = 0
        self.last_date: date | None = None
        self.position = PositionState.FLAT

    @classmethod
    def initialize(cls, config: StrategyConfig, symbol: str) -> "TradingStrategy":
        """종목 하나에 대한 전략 인스턴스 생성."""
        return cls(config, symbol)

    @property
    def warmup_period(self) -> int:
        return self.config.warmup_period

    @property
    def is_warmed_up(self) -> bool:
        return self.bars_seen >= self.warmup_period

    def on_bar(self, bar: Bar) -> Signal:
        """봉 하나를 처리하고 시그널 반환. 날짜 순서대로 정확히 한 번씩 호출해야 한다.

        Raises:
            OutOfOrderBar: 마지막으로 처리한 봉보다 이전/같은 날짜의 봉
        """
        if self.last_date is not None and bar.date <= self.last_date:
            raise OutOfOrderBar(self.symbol, bar.date, self.last_date)
        self.last_date = bar.date
        self.bars_seen += 1

        self.update_indicators(bar)
        indicators = self.snapshot()

        if not self.is_warmed_up:
            return self._signal(
                bar, SignalType.HOLD, f"데이터 부족 (최소 {self.warmup_period}봉 필요)", indicators
            )

        # 매도 우선
        if self.position == PositionState.LONG:
            sell, reason = self.should_sell(bar)
            if sell:
                self.position = PositionState.FLAT
                return self._signal(bar, SignalType.SELL, reason, indicators)
            return self._signal(bar, SignalType.HOLD, reason, indicators)

        buy, reason = self.should_buy(bar)
        if buy:
            self.position = PositionState.LONG
            return self._signal(bar, SignalType.BUY, reason, indicators)
        return self._signal(bar, SignalType.HOLD, reason, indicators)

    def _signal(
        self,
        bar: Bar,
        action: SignalType,
        reason: str,
        indicators: dict[str, Any],
    ) -> Signal:
        return Signal(
            symbol=self.symbol,
            date=bar.date,
            action=action,
            price=bar.close,
            reason=reason,
            indicators=indicators,
        )

    def reset(self) -> None:
        """전략 상태 전체 초기화."""
        self.bars_seen = 0
        self.last_date = None
        self.position = PositionState.FLAT
        self.reset_indicators()

    def snapshot(self) -> dict[str, Any]:
        """현재 지표 값 (Signal.indicators에 기록)."""
        return {}

    def add_news(self, articles: list) -> None:
        """뉴스 기사 주입. 뉴스를 쓰지 않는 전략은 무시한다."""

    def news_range(self, start: date, end: date) -> tuple[date, date]:
        """start~end 봉을 처리하는 데 필요한 기사 조회 기간."""
        return start, end

    @abstractmethod
    def update_indicators(self, bar: Bar) -> None:
        """봉 하나로 롤링 지표 갱신."""
        ...

    @abstractmethod
    def should_buy(self, bar: Bar) -> tuple[bool, str]:
        """매수 조건 판단.

        Returns:
            (매수 여부, 사유)
        """
        ...

    @abstractmethod
    def should_sell(self, bar: Bar) -> tuple[bool, str]:
        """매도 조건 판단.

        Returns:
            (매도 여부, 사유)
        """
        ...

    @abstractmethod
    def reset_indicators(self) -> None:
        """롤링 지표 상태 초기화."""
        ...
