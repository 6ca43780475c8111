"""
백테스트 예외 계층 정의.

[ 역할 ]
    엔진 전체에서 사용하는 예외 타입을 한 곳에서 정의.
    호출자는 BacktestError 하나로 모든 엔진 예외를 잡을 수 있다.

[ 분류 ]
    InvalidInput        - 잘못된 파라미터 (호출자 책임, 재시도 대상 아님)
    DataUnavailable     - 데이터 제공자 실패 (호출자가 백오프 후 재시도 가능)
    OutOfOrderBar       - 봉 순서 위반 (리플레이 순서 버그, 해당 실행은 중단)
    UnsupportedStrategy - 알 수 없는 전략 타입
    RunCancelled        - 봉 경계에서 협조적 취소됨

[ 예외가 아닌 것 ]
    잔고 부족 / 보유 수량 부족으로 버려지는 시그널은 예외를 던지지 않는다.
    data/portfolio.py::DropReason으로 INFO 로그만 남긴다.
"""

from datetime import date


class BacktestError(Exception):
    """모든 백테스트 예외의 부모 클래스."""


class InvalidInput(BacktestError, ValueError):
    """잘못된 입력 (빈 종목 목록, 시작일 >= 종료일, 파라미터 제약 위반 등)."""


class DataUnavailable(BacktestError):
    """가격 데이터를 가져오지 못했거나 형식이 잘못된 경우.

    Attributes:
        symbol: 실패한 종목 코드
        reason: 실패 사유
    """

    def __init__(self, symbol: str, reason: str):
        super().__init__(f"[{symbol}] 데이터 없음: {reason}")
        self.symbol = symbol
        self.reason = reason


class OutOfOrderBar(BacktestError):
    """이미 처리한 봉보다 이전(또는 같은) 날짜의 봉이 들어온 경우."""

    def __init__(self, symbol: str, bar_date: date, last_date: date):
        super().__init__(
            f"[{symbol}] 봉 순서 위반: {bar_date} <= 마지막 처리일 {last_date}"
        )
        self.symbol = symbol
        self.bar_date = bar_date
        self.last_date = last_date


class UnsupportedStrategy(BacktestError):
    """등록되지 않은 strategy_type."""

    def __init__(self, strategy_type: object, available: list[str] | None = None):
        message = f"알 수 없는 전략: '{strategy_type}'"
        if available:
            message += f". 사용 가능: {', '.join(available)}"
        super().__init__(message)
        self.strategy_type = strategy_type


class RunCancelled(BacktestError):
    """실행이 취소됨. 마지막으로 완전히 처리된 봉의 상태가 최종 상태."""

    def __init__(self, last_date: date | None):
        super().__init__(f"백테스트 취소됨 (마지막 처리일: {last_date})")
        self.last_date = last_date
