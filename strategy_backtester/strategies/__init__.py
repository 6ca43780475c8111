"""
전략 모듈.

[ 전략 등록 방식 ]
    @register("strategy_type", ConfigClass) 데코레이터를 붙이면 STRATEGY_REGISTRY에 자동 등록.
    설정 딕셔너리의 strategy_type 값만으로 설정 클래스와 전략 클래스를 찾는다.

[ 새 전략 추가 방법 ]
    1. 이 디렉토리에 새 .py 파일 생성
    2. StrategyConfig를 상속받는 설정 데이터클래스 작성 (strategy_type, validate, warmup_period)
    3. TradingStrategy를 상속받는 클래스 작성
    4. @register("이름", 설정클래스) 데코레이터 추가
    5. config.yaml에서 strategy.strategy_type을 해당 이름으로 설정
    → 끝. 엔진/run_backtest.py 수정 불필요.
"""

from dataclasses import dataclass
from importlib import import_module
from pathlib import Path
from typing import Any

from strategy_backtester.core.errors import UnsupportedStrategy
from strategy_backtester.core.trading_strategy import StrategyConfig, TradingStrategy


@dataclass(frozen=True)
class StrategyEntry:
    config_cls: type[StrategyConfig]
    strategy_cls: type[TradingStrategy]


# strategy_type → (설정 클래스, 전략 클래스)
STRATEGY_REGISTRY: dict[str, StrategyEntry] = {}


def register(name: str, config_cls: type[StrategyConfig]):
    """전략 클래스를 STRATEGY_REGISTRY에 등록하는 데코레이터."""
    def decorator(cls: type[TradingStrategy]):
        config_cls.strategy_type = name
        STRATEGY_REGISTRY[name] = StrategyEntry(config_cls=config_cls, strategy_cls=cls)
        return cls
    return decorator


def _lookup(strategy_type: Any) -> StrategyEntry:
    if not isinstance(strategy_type, str) or strategy_type not in STRATEGY_REGISTRY:
        raise UnsupportedStrategy(strategy_type, list_strategies())
    return STRATEGY_REGISTRY[strategy_type]


def parse_strategy_config(data: dict[str, Any]) -> StrategyConfig:
    """strategy_type 태그로 설정 변형을 골라 생성.

    Args:
        data: {"strategy_type": "...", 파라미터...}

    Raises:
        UnsupportedStrategy: 등록되지 않은 strategy_type
        InvalidInput: 파라미터 제약 위반
    """
    entry = _lookup(data.get("strategy_type"))
    return entry.config_cls.from_dict(data)


def default_config(strategy_type: str) -> StrategyConfig:
    """기본 파라미터로 설정 생성."""
    return _lookup(strategy_type).config_cls()


def create_strategy(config: StrategyConfig, symbol: str) -> TradingStrategy:
    """설정 + 종목으로 전략 인스턴스 생성 (종목마다 하나씩)."""
    if not isinstance(config, StrategyConfig):
        raise UnsupportedStrategy(type(config).__name__, list_strategies())
    entry = _lookup(config.strategy_type)
    if not isinstance(config, entry.config_cls):
        raise UnsupportedStrategy(config.strategy_type, list_strategies())
    return entry.strategy_cls.initialize(config, symbol)


def list_strategies() -> list[str]:
    """등록된 전략 이름 목록 반환."""
    return sorted(STRATEGY_REGISTRY.keys())


def _auto_discover():
    """이 디렉토리의 모든 전략 모듈을 자동 임포트하여 @register가 실행되게 한다."""
    strategies_dir = Path(__file__).parent
    for py_file in sorted(strategies_dir.glob("*.py")):
        if py_file.name.startswith("_"):
            continue
        module_name = f"strategy_backtester.strategies.{py_file.stem}"
        import_module(module_name)


# 모듈 로드 시 자동 탐색
_auto_discover()
