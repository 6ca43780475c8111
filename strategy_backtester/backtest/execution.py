"""
체결 시뮬레이션 모듈.

[ 역할 ]
    시그널의 기준가(종가 또는 다음 봉 시가)에 슬리피지를 적용한 체결가와 수수료를 계산.
    백테스트 엔진과 포트폴리오가 공유하는 체결 규칙.

[ 체결 시점 (FillPolicy) ]
    CLOSE:     시그널이 발생한 봉의 종가로 즉시 체결 (기본값)
    NEXT_OPEN: 같은 종목의 다음 봉 시가로 체결. 데이터 끝까지 체결되지 못한 주문은 폐기

[ 슬리피지 (SlippageModel) ]
    NONE:         기준가 그대로
    FIXED:        매수 기준가 × (1 + rate), 매도 기준가 × (1 - rate)
    PROPORTIONAL: rate × 수량 배수, 배수 = min(1 + 수량/1000 × 0.1, 2)

[ 호출하는 곳 ]
    - data/portfolio.py::Portfolio.apply_signal()에서 fill_price(), commission()
    - backtest/engine.py에서 fill_policy 확인
"""

from enum import Enum

from strategy_backtester.core.errors import InvalidInput
from strategy_backtester.core.trading_strategy import SignalType


class FillPolicy(Enum):
    CLOSE = "close"
    NEXT_OPEN = "next_open"


class SlippageModel(Enum):
    NONE = "none"
    FIXED = "fixed"
    PROPORTIONAL = "proportional"


MAX_SIZE_MULTIPLIER = 2.0


class OrderExecutionSimulator:
    """체결가/수수료 계산기. 상태 없음."""

    def __init__(
        self,
        fill_policy: FillPolicy | str = FillPolicy.CLOSE,
        slippage_model: SlippageModel | str = SlippageModel.NONE,
        slippage_rate: float = 0.0,     # 비율 (0.001 = 0.1%)
        commission_rate: float = 0.0,   # 체결 금액 대비 비율
    ):
        self.fill_policy = _to_enum(FillPolicy, fill_policy, "fill_policy")
        self.slippage_model = _to_enum(SlippageModel, slippage_model, "slippage_model")
        if not 0 <= slippage_rate < 1:
            raise InvalidInput(f"slippage_rate는 0 이상 1 미만이어야 함 ({slippage_rate})")
        if not 0 <= commission_rate < 1:
            raise InvalidInput(f"commission_rate는 0 이상 1 미만이어야 함 ({commission_rate})")
        self.slippage_rate = slippage_rate
        self.commission_rate = commission_rate

    def fill_price(self, action: SignalType, reference_price: float, quantity: int) -> float:
        """슬리피지 적용 체결가. 매수는 불리하게 위로, 매도는 아래로."""
        if self.slippage_model == SlippageModel.NONE or self.slippage_rate == 0:
            return reference_price

        rate = self.slippage_rate
        if self.slippage_model == SlippageModel.PROPORTIONAL:
            rate *= min(1 + quantity / 1000 * 0.1, MAX_SIZE_MULTIPLIER)

        if action == SignalType.BUY:
            return reference_price * (1 + rate)
        if action == SignalType.SELL:
            return reference_price * (1 - rate)
        return reference_price

    def commission(self, price: float, quantity: int) -> float:
        return price * quantity * self.commission_rate

    def __repr__(self) -> str:
        return (
            f"OrderExecutionSimulator(fill_policy={self.fill_policy.value}, "
            f"slippage_model={self.slippage_model.value}, "
            f"slippage_rate={self.slippage_rate}, commission_rate={self.commission_rate})"
        )


def _to_enum(enum_cls, value, name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError as e:
        choices = ", ".join(m.value for m in enum_cls)
        raise InvalidInput(f"{name}: 알 수 없는 값 {value!r} (가능: {choices})") from e
