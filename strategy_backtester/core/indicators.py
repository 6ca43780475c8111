"""
증분(incremental) 롤링 지표 모듈.

[ 역할 ]
    전략이 봉 하나를 받을 때마다 O(1)로 갱신되는 고정 크기 슬라이딩 윈도우 통계.
    매 봉마다 윈도우 전체를 다시 계산하지 않는다.

[ 포함 클래스 ]
    RollingWindow            - 이동 평균 / 모분산 / 표준편차 (슬라이딩 Welford)
    ExponentialMovingAverage - 지수 이동 평균 (pandas ewm(adjust=False)와 동일)
    RollingExtreme           - 단조 덱(monotonic deque) 기반 이동 최댓값/최솟값
    RelativeStrengthIndex    - 최근 window개 가격 변화의 평균 상승/하락 기반 RSI

[ 정확성 ]
    증분 갱신은 부동소수점 오차가 누적될 수 있으므로 RollingWindow는
    size번 갱신마다 윈도우 값으로 평균/제곱합을 정확히 재계산한다.
    tests/test_indicators.py가 매 봉마다 numpy/pandas 재계산값과 비교한다.

[ 호출하는 곳 ]
    - strategies/*.py의 각 전략 인스턴스가 종목별로 소유
"""

import math
from collections import deque

from strategy_backtester.core.errors import InvalidInput

# 0 판정 허용 오차. 증분 평균이 1e-17 같은 잔여값을 남길 수 있음
EPSILON = 1e-12


class RollingWindow:
    """고정 크기 윈도우의 평균/분산을 증분 갱신."""

    def __init__(self, size: int):
        if size < 1:
            raise InvalidInput(f"윈도우 크기는 1 이상이어야 함: {size}")
        self.size = size
        self._values: deque[float] = deque()
        self._mean = 0.0
        self._m2 = 0.0          # 평균으로부터의 편차 제곱합
        self._updates = 0

    def __len__(self) -> int:
        return len(self._values)

    @property
    def is_full(self) -> bool:
        return len(self._values) == self.size

    @property
    def values(self) -> tuple[float, ...]:
        return tuple(self._values)

    def add(self, value: float) -> None:
        """값 추가. 윈도우가 가득 차 있으면 가장 오래된 값이 빠진다."""
        value = float(value)
        if len(self._values) < self.size:
            self._values.append(value)
            n = len(self._values)
            delta = value - self._mean
            self._mean += delta / n
            self._m2 += delta * (value - self._mean)
        else:
            removed = self._values.popleft()
            self._values.append(value)
            old_mean = self._mean
            self._mean = old_mean + (value - removed) / self.size
            self._m2 += (value - removed) * (value - self._mean + removed - old_mean)

        self._updates += 1
        if self._updates % self.size == 0:
            self._resync()

    def _resync(self) -> None:
        n = len(self._values)
        self._mean = math.fsum(self._values) / n
        self._m2 = math.fsum((v - self._mean) ** 2 for v in self._values)

    @property
    def mean(self) -> float | None:
        if not self._values:
            return None
        return self._mean

    @property
    def variance(self) -> float | None:
        """모분산 (ddof=0)."""
        if not self._values:
            return None
        return max(self._m2 / len(self._values), 0.0)

    @property
    def std(self) -> float | None:
        variance = self.variance
        return None if variance is None else math.sqrt(variance)

    def clear(self) -> None:
        self._values.clear()
        self._mean = 0.0
        self._m2 = 0.0
        self._updates = 0


class ExponentialMovingAverage:
    """지수 이동 평균. 첫 값으로 시드, alpha = 2 / (span + 1)."""

    def __init__(self, span: int):
        if span < 1:
            raise InvalidInput(f"EMA 기간은 1 이상이어야 함: {span}")
        self.span = span
        self.alpha = 2.0 / (span + 1)
        self.value: float | None = None
        self.count = 0

    def update(self, value: float) -> float:
        value = float(value)
        if self.value is None:
            self.value = value
        else:
            self.value = self.alpha * value + (1 - self.alpha) * self.value
        self.count += 1
        return self.value

    def clear(self) -> None:
        self.value = None
        self.count = 0


class RollingExtreme:
    """최근 size개 값의 최댓값(mode="max") 또는 최솟값(mode="min").

    덱에는 (절대 인덱스, 값)이 단조 순서로 유지되어 갱신이 분할상환 O(1).
    """

    def __init__(self, size: int, mode: str = "max"):
        if size < 1:
            raise InvalidInput(f"윈도우 크기는 1 이상이어야 함: {size}")
        if mode not in ("max", "min"):
            raise InvalidInput(f"mode는 'max' 또는 'min': {mode}")
        self.size = size
        self.mode = mode
        self._deque: deque[tuple[int, float]] = deque()
        self._count = 0

    def _dominates(self, new: float, existing: float) -> bool:
        if self.mode == "max":
            return new >= existing
        return new <= existing

    def update(self, value: float) -> float:
        value = float(value)
        index = self._count
        self._count += 1

        while self._deque and self._dominates(value, self._deque[-1][1]):
            self._deque.pop()
        self._deque.append((index, value))

        cutoff = index - self.size
        while self._deque[0][0] <= cutoff:
            self._deque.popleft()
        return self._deque[0][1]

    @property
    def value(self) -> float | None:
        return self._deque[0][1] if self._deque else None

    @property
    def is_full(self) -> bool:
        return self._count >= self.size

    def clear(self) -> None:
        self._deque.clear()
        self._count = 0


class RelativeStrengthIndex:
    """RSI = 100 - 100 / (1 + 평균상승 / 평균하락).

    최근 window개 가격 변화의 단순 평균 사용. window + 1개 가격이 필요.
    상승/하락이 모두 0이면(횡보) 정의되지 않으므로 None.
    """

    def __init__(self, window: int):
        self.window = window
        self._gains = RollingWindow(window)
        self._losses = RollingWindow(window)
        self._last_price: float | None = None

    def update(self, price: float) -> float | None:
        price = float(price)
        if self._last_price is not None:
            change = price - self._last_price
            self._gains.add(max(change, 0.0))
            self._losses.add(max(-change, 0.0))
        self._last_price = price
        return self.value

    @property
    def value(self) -> float | None:
        if not self._gains.is_full:
            return None
        avg_gain = self._gains.mean
        avg_loss = self._losses.mean
        if avg_loss <= EPSILON:
            if avg_gain <= EPSILON:
                return None
            return 100.0
        return 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)

    def clear(self) -> None:
        self._gains.clear()
        self._losses.clear()
        self._last_price = None
