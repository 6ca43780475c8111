"""
백테스트 성과 지표 계산 모듈.

[ 역할 ]
    백테스트 결과(거래기록 + 자산가치 이력)를 받아 성과 지표를 계산.
    개별 지표는 순수 함수로 분리되어 있고, calculate_metrics()가 이를 모아
    BacktestResult를 만든다.

[ 계산하는 지표 ]  (비율은 모두 소수, 0.05 = 5%)
    - 총 수익률 / 연환산 수익률
    - 샤프 비율 (일간 수익률 평균 / 모표준편차 × √252, 무위험수익률 0)
    - MDD (최대 낙폭)
    - 승률 (수익 매도 / 전체 매도), 평균 수익/손실, 수익 팩터
    - 연속 승/패

[ 호출하는 곳 ]
    - backtest/engine.py::BacktestEngine.run() 완료 시 호출

[ 입력 데이터 ]
    - trades: data/portfolio.py::Portfolio.trades (매수+매도 전체, 승패는 매도만 분석)
    - equity_history: engine.py가 날짜마다 기록한 (날짜, 총 자산) 리스트
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any

import numpy as np

from strategy_backtester.core.trading_strategy import SignalType
from strategy_backtester.data.portfolio import Trade

TRADING_DAYS_PER_YEAR = 252


# ─── 개별 지표 ──────────────────────────────────────────────────────────────

def total_return(initial_capital: float, final_value: float) -> float:
    """(최종 자산 - 초기 자금) / 초기 자금."""
    if initial_capital <= 0:
        return 0.0
    return (final_value - initial_capital) / initial_capital


def win_rate(trades: list[Trade]) -> float:
    """수익 매도 거래 수 / 전체 매도 거래 수. 매도가 없으면 0."""
    sells = [t for t in trades if t.action == SignalType.SELL]
    if not sells:
        return 0.0
    return sum(1 for t in sells if t.realized_pnl > 0) / len(sells)


def max_drawdown(values: list[float]) -> float:
    """고점 대비 최대 하락 비율. 낮을수록 좋음."""
    peak = None
    max_dd = 0.0
    for value in values:
        if peak is None or value > peak:
            peak = value
        if peak > 0:
            max_dd = max(max_dd, (peak - value) / peak)
    return max_dd


def daily_returns(values: list[float]) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if len(arr) < 2:
        return np.array([])
    prev = arr[:-1]
    valid = prev > 0
    return (arr[1:][valid] - prev[valid]) / prev[valid]


def sharpe_ratio(
    values: list[float],
    periods_per_year: int = TRADING_DAYS_PER_YEAR,
    risk_free_rate: float = 0.0,
) -> float:
    """연환산 샤프 비율. 데이터가 2개 미만이거나 표준편차가 0이면 0."""
    returns = daily_returns(values)
    if len(returns) == 0:
        return 0.0
    excess = returns - risk_free_rate / periods_per_year
    std = np.std(excess)
    if std <= 1e-12:
        return 0.0
    return float(np.mean(excess) / std * np.sqrt(periods_per_year))


def annual_return(initial_capital: float, final_value: float, periods: int) -> float:
    """(최종/초기)^(252/기간) - 1."""
    if initial_capital <= 0 or periods <= 0 or final_value <= 0:
        return 0.0
    years = periods / TRADING_DAYS_PER_YEAR
    return (final_value / initial_capital) ** (1 / years) - 1


def max_streaks(pnls: list[float]) -> tuple[int, int]:
    """(최대 연속 수익, 최대 연속 손실)."""
    wins = losses = max_wins = max_losses = 0
    for pnl in pnls:
        if pnl > 0:
            wins += 1
            losses = 0
            max_wins = max(max_wins, wins)
        else:
            losses += 1
            wins = 0
            max_losses = max(max_losses, losses)
    return max_wins, max_losses


# ─── 결과 ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BacktestResult:
    """백테스트 결과. summary()로 포맷된 리포트, to_dict()로 JSON 호환 구조."""
    initial_capital: float
    final_value: float
    total_return: float = 0.0         # 총 수익률
    annual_return: float = 0.0        # 연환산 수익률
    sharpe_ratio: float = 0.0         # 샤프 비율 (1 이상 양호)
    max_drawdown: float = 0.0         # 최대 낙폭
    win_rate: float = 0.0             # 승률
    total_trades: int = 0             # 체결 횟수 (매수 + 매도)
    winning_trades: int = 0           # 수익 매도 수
    losing_trades: int = 0            # 손실 매도 수
    avg_win: float = 0.0              # 수익 매도 평균 이익
    avg_loss: float = 0.0             # 손실 매도 평균 손실
    profit_factor: float = 0.0        # 총이익 / 총손실 (1 이상이면 수익)
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0
    trades: tuple[Trade, ...] = ()
    equity_history: tuple[tuple[date, float], ...] = field(default=())

    def to_dict(self) -> dict[str, Any]:
        """JSON 직렬화 가능한 딕셔너리."""
        profit_factor = self.profit_factor if np.isfinite(self.profit_factor) else None
        return {
            "initial_capital": self.initial_capital,
            "final_value": self.final_value,
            "total_return": self.total_return,
            "annual_return": self.annual_return,
            "sharpe_ratio": self.sharpe_ratio,
            "max_drawdown": self.max_drawdown,
            "win_rate": self.win_rate,
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "avg_win": self.avg_win,
            "avg_loss": self.avg_loss,
            "profit_factor": profit_factor,
            "max_consecutive_wins": self.max_consecutive_wins,
            "max_consecutive_losses": self.max_consecutive_losses,
            "trades": [t.to_dict() for t in self.trades],
            "equity_history": [
                {"date": d.isoformat(), "value": v} for d, v in self.equity_history
            ],
        }

    def summary(self) -> str:
        """성과 요약 문자열."""
        lines = [
            "=" * 50,
            "백테스트 성과 리포트",
            "=" * 50,
            f"초기 자금:       {self.initial_capital:>12,.2f}",
            f"최종 자산:       {self.final_value:>12,.2f}",
            f"총 수익률:       {self.total_return:>12.2%}",
            f"연환산 수익률:    {self.annual_return:>12.2%}",
            f"샤프 비율:       {self.sharpe_ratio:>12.2f}",
            f"최대 낙폭(MDD):  {self.max_drawdown:>12.2%}",
            "-" * 50,
            f"총 거래 횟수:    {self.total_trades:>12d}",
            f"승률:            {self.win_rate:>12.2%}",
            f"수익 거래:       {self.winning_trades:>12d}",
            f"손실 거래:       {self.losing_trades:>12d}",
            f"평균 수익:       {self.avg_win:>12,.2f}",
            f"평균 손실:       {self.avg_loss:>12,.2f}",
            f"수익 팩터:       {self.profit_factor:>12.2f}",
            "-" * 50,
            f"최대 연속 수익:  {self.max_consecutive_wins:>12d}",
            f"최대 연속 손실:  {self.max_consecutive_losses:>12d}",
            "=" * 50,
        ]
        return "\n".join(lines)


def calculate_metrics(
    initial_capital: float,
    equity_history: list[tuple[date, float]],
    trades: list[Trade],
) -> BacktestResult:
    """성과 지표 계산. engine.py에서 백테스트 완료 후 호출됨.

    Args:
        initial_capital: 초기 자금
        equity_history: (날짜, 총 자산) 리스트, 날짜 오름차순
        trades: 체결된 거래 전체 (매수 + 매도)
    """
    values = [v for _, v in equity_history]
    final_value = values[-1] if values else initial_capital

    # 수익 실현은 매도 시에만 발생
    pnls = [t.realized_pnl for t in trades if t.action == SignalType.SELL]
    winners = [p for p in pnls if p > 0]
    losers = [p for p in pnls if p <= 0]

    gross_profit = sum(winners)
    gross_loss = abs(sum(losers))
    if gross_loss > 0:
        profit_factor = gross_profit / gross_loss
    else:
        profit_factor = float("inf") if gross_profit > 0 else 0.0
    wins, losses = max_streaks(pnls)

    return BacktestResult(
        initial_capital=initial_capital,
        final_value=final_value,
        total_return=total_return(initial_capital, final_value),
        annual_return=annual_return(initial_capital, final_value, len(values)),
        sharpe_ratio=sharpe_ratio(values),
        max_drawdown=max_drawdown(values),
        win_rate=win_rate(trades),
        total_trades=len(trades),
        winning_trades=len(winners),
        losing_trades=len(losers),
        avg_win=gross_profit / len(winners) if winners else 0.0,
        avg_loss=sum(losers) / len(losers) if losers else 0.0,
        profit_factor=profit_factor,
        max_consecutive_wins=wins,
        max_consecutive_losses=losses,
        trades=tuple(trades),
        equity_history=tuple(equity_history),
    )
