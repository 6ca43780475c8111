"""
설정 관리 모듈.

[ 역할 ]
    config.yaml (또는 .json) 파일을 파싱하여 Config 객체로 변환.
    전략 설정, 백테스트 파라미터, 데이터 소스, DB 접속, 로깅 설정을 통합 관리.

[ 설정 파일 구조 (config.yaml) ]
    strategy:         → StrategySection (strategy_type + 전략 파라미터 + symbols)
    backtest:         → BacktestSection (기간, 자금, 체결 규칙)
    data:             → DataSection (sample / csv / yahoo / clickhouse)
    database:         → DatabaseSection (ClickHouse 접속 정보)
    batch:            → BatchSection (병렬 실행 수)
    risk:             → RiskSection (포지션 크기, 손절/익절, 당일 손실 한도. enabled: false면 미사용)
    log_level:        → "INFO" / "DEBUG"
    log_levels:       → 영역별 로그 레벨 (예: {portfolio: DEBUG, data: WARNING})
    log_dir:          → 로그 디렉토리 경로

[ 호출하는 곳 ]
    - run_backtest.py에서 Config.from_yaml()로 로드
    - config.strategy_config()로 전략 설정 변형 생성 (strategies 레지스트리 사용)
    - config.execution()으로 체결 시뮬레이터 생성
    - config.risk_settings()로 리스크 설정 생성 (비활성이면 None)

[ 검증 ]
    섹션 안의 알 수 없는 키는 무시한다. 잘못된 값은 사용 시점에 InvalidInput.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import date
from pathlib import Path
from typing import Any

import yaml

from strategy_backtester.backtest.execution import OrderExecutionSimulator
from strategy_backtester.backtest.risk import RiskSettings
from strategy_backtester.core.errors import InvalidInput
from strategy_backtester.core.trading_strategy import StrategyConfig
from strategy_backtester.strategies import parse_strategy_config

DATA_SOURCES = ("sample", "csv", "yahoo", "clickhouse")


@dataclass
class StrategySection:
    """전략 설정. config.yaml의 strategy 섹션에 대응.

    params에는 해당 strategy_type의 파라미터 중 오버라이드할 값만 넣는다.
    나머지는 전략 설정 클래스의 기본값이 사용된다.
    """
    strategy_type: str = "moving_average_crossover"
    symbols: list[str] = field(default_factory=lambda: ["AAPL", "MSFT"])
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class BacktestSection:
    """백테스트 설정. config.yaml의 backtest 섹션에 대응."""
    start_date: str = "2024-01-01"
    end_date: str = "2024-12-31"
    initial_capital: float = 10_000
    shares_per_trade: int = 100
    fill_policy: str = "close"          # close / next_open
    commission_rate: float = 0.0
    slippage_model: str = "none"        # none / fixed / proportional
    slippage_rate: float = 0.0


@dataclass
class DataSection:
    """데이터 소스 설정. config.yaml의 data 섹션에 대응."""
    source: str = "sample"
    csv_dir: str = "data"
    max_retries: int = 3
    retry_delay: float = 5
    use_adjusted_close: bool = False


@dataclass
class DatabaseSection:
    """ClickHouse 접속 설정. config.yaml의 database 섹션에 대응."""
    host: str = "localhost"
    port: int = 8123
    database: str = "default"
    user: str = "default"
    password: str = ""
    use_adjusted_close: bool = True


@dataclass
class BatchSection:
    max_workers: int = 4


@dataclass
class RiskSection:
    """리스크 관리 설정. config.yaml의 risk 섹션에 대응. 퍼센트 값은 % 단위."""
    enabled: bool = False
    position_sizing: str = "fixed"      # fixed / percentage / equal_weight / kelly
    position_size_value: float = 10.0
    max_open_positions: int = 10
    max_position_size_percentage: float = 100.0
    stop_loss_percentage: float | None = None
    take_profit_percentage: float | None = None
    trailing_stop_percentage: float | None = None
    max_daily_loss_percentage: float | None = None
    max_daily_loss_absolute: float | None = None


def _section(cls, data: dict[str, Any] | None):
    """알 수 없는 키를 무시하고 섹션 데이터클래스 생성."""
    data = data or {}
    if not isinstance(data, dict):
        raise InvalidInput(f"{cls.__name__}: 매핑이 아님 ({data!r})")
    return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class Config:
    """전체 설정. from_yaml() 또는 from_json()으로 파일에서 로드."""
    strategy: StrategySection = field(default_factory=StrategySection)
    backtest: BacktestSection = field(default_factory=BacktestSection)
    data: DataSection = field(default_factory=DataSection)
    database: DatabaseSection = field(default_factory=DatabaseSection)
    batch: BatchSection = field(default_factory=BatchSection)
    risk: RiskSection = field(default_factory=RiskSection)
    log_level: str = "INFO"
    log_levels: dict[str, str] = field(default_factory=dict)
    log_dir: str = "logs"

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """YAML 파일에서 설정 로드."""
        with open(Path(path), "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})

    @classmethod
    def from_json(cls, path: str | Path) -> "Config":
        """JSON 파일에서 설정 로드."""
        with open(Path(path), "r", encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """딕셔너리에서 Config 생성."""
        strategy_data = dict(data.get("strategy") or {})

        # params가 명시적으로 있으면 그것을 사용, 없으면 strategy_type/symbols 외 나머지를 params로
        strategy_type = strategy_data.pop("strategy_type", StrategySection.strategy_type)
        symbols = strategy_data.pop("symbols", None)
        if "params" in strategy_data:
            params = dict(strategy_data["params"] or {})
        else:
            params = strategy_data
        strategy = StrategySection(strategy_type=strategy_type, params=params)
        if symbols is not None:
            strategy.symbols = list(symbols)

        return cls(
            strategy=strategy,
            backtest=_section(BacktestSection, data.get("backtest")),
            data=_section(DataSection, data.get("data")),
            database=_section(DatabaseSection, data.get("database")),
            batch=_section(BatchSection, data.get("batch")),
            risk=_section(RiskSection, data.get("risk")),
            log_level=data.get("log_level", "INFO"),
            log_levels=dict(data.get("log_levels") or {}),
            log_dir=data.get("log_dir", "logs"),
        )

    # ─── 변환 ────────────────────────────────────────────────────────────

    def strategy_config(self, strategy_type: str | None = None) -> StrategyConfig:
        """전략 설정 변형 생성.

        strategy_type을 주면 설정 파일의 strategy_type 대신 사용한다 (비교 모드).
        이때 params는 해당 전략이 아는 키만 전달한다.
        """
        if strategy_type is None or strategy_type == self.strategy.strategy_type:
            return parse_strategy_config({"strategy_type": self.strategy.strategy_type, **self.strategy.params})

        config = parse_strategy_config({"strategy_type": strategy_type})
        known = set(config.to_dict()) - {"strategy_type"}
        shared = {k: v for k, v in self.strategy.params.items() if k in known}
        return parse_strategy_config({"strategy_type": strategy_type, **shared})

    def execution(self) -> OrderExecutionSimulator:
        return OrderExecutionSimulator(
            fill_policy=self.backtest.fill_policy,
            slippage_model=self.backtest.slippage_model,
            slippage_rate=self.backtest.slippage_rate,
            commission_rate=self.backtest.commission_rate,
        )

    def risk_settings(self) -> RiskSettings | None:
        """risk.enabled가 true일 때만 RiskSettings 생성."""
        if not self.risk.enabled:
            return None
        values = asdict(self.risk)
        values.pop("enabled")
        return RiskSettings.from_dict(values)

    def date_range(self) -> tuple[date, date]:
        try:
            start = date.fromisoformat(str(self.backtest.start_date))
            end = date.fromisoformat(str(self.backtest.end_date))
        except ValueError as e:
            raise InvalidInput(f"날짜 형식 오류 (YYYY-MM-DD): {e}") from e
        return start, end

    def to_dict(self) -> dict[str, Any]:
        """딕셔너리로 변환."""
        return asdict(self)

    def save_yaml(self, path: str | Path) -> None:
        """YAML 파일로 저장."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(self.to_dict(), f, allow_unicode=True, default_flow_style=False)
