"""
뉴스 감성 분석 전략 구현.

[ 역할 ]
    core/trading_strategy.py::TradingStrategy의 구현체.
    외부 감성 피드(core/sentiment.py::SentimentFeed)의 기사들을 봉 날짜 기준으로 집계하여
    감성 점수가 buy_threshold 이상이면 매수, sell_threshold 이하이면 매도.

[ 집계 방식 ]
    기준 시각 = 봉 날짜의 다음날 00:00 (봉 날짜 하루 전체 포함)
    대상 기사 = 기준 시각 이전 lookback_days일 동안 게시된 기사
    가중치   = exp(-ln2 × 경과시간 / recency_half_life_hours)  (반감기 감쇠)
    점수     = Σ(기사점수 × 가중치) / Σ가중치
    기사점수는 core/sentiment.py::score_article() (제목 가중 키워드 휴리스틱)

[ 데이터 공급 ]
    엔진이 실행 시작 전에 종목당 한 번 피드를 조회하여 add_news()로 전달한다.
    (폴링 주기 0 = 실행당 1회 조회. 실행 중 재조회/재시도는 하지 않음)

[ 예외 상황 ]
    대상 기사 수 < min_articles 이면 HOLD.
"""

import math
from bisect import bisect_left
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any

from strategy_backtester.core.data_provider import Bar
from strategy_backtester.core.sentiment import (
    NewsArticle,
    dedupe_articles,
    score_article,
    to_naive_utc,
)
from strategy_backtester.core.trading_strategy import StrategyConfig, TradingStrategy
from strategy_backtester.strategies import register


@dataclass(frozen=True)
class SentimentAnalysisConfig(StrategyConfig):
    lookback_days: int = 3
    min_articles: int = 1
    buy_threshold: float = 0.4
    sell_threshold: float = -0.4
    title_weight: float = 2.0
    recency_half_life_hours: float = 12.0

    def validate(self) -> None:
        self._require(self.lookback_days >= 1, f"lookback_days >= 1 필요 ({self.lookback_days})")
        self._require(self.min_articles >= 1, f"min_articles >= 1 필요 ({self.min_articles})")
        self._require(
            -1 <= self.sell_threshold < self.buy_threshold <= 1,
            f"-1 <= sell_threshold < buy_threshold <= 1 필요 "
            f"({self.sell_threshold}, {self.buy_threshold})",
        )
        self._require(self.title_weight >= 0, f"title_weight >= 0 필요 ({self.title_weight})")
        self._require(
            self.recency_half_life_hours > 0,
            f"recency_half_life_hours > 0 필요 ({self.recency_half_life_hours})",
        )

    @property
    def warmup_period(self) -> int:
        return 1


@register("sentiment_analysis", SentimentAnalysisConfig)
class SentimentAnalysisStrategy(TradingStrategy):
    """뉴스 감성 분석 전략 구현체."""

    config: SentimentAnalysisConfig
    requires_sentiment = True

    def __init__(self, config: SentimentAnalysisConfig, symbol: str):
        super().__init__(config, symbol)
        # (게시시각, 기사점수), 게시시각 오름차순
        self._scored: list[tuple[datetime, float]] = []
        self._times: list[datetime] = []             # _scored의 게시시각 (이분 탐색용)
        self._articles: list[NewsArticle] = []
        self._score: float | None = None
        self._considered = 0

    def add_news(self, articles: list[NewsArticle]) -> None:
        relevant = [a for a in articles if a.symbol == self.symbol]
        self._articles = dedupe_articles(self._articles + relevant)
        self._scored = sorted(
            (to_naive_utc(a.published_at), score_article(a, self.config.title_weight))
            for a in self._articles
        )
        self._times = [published_at for published_at, _ in self._scored]

    def news_range(self, start: date, end: date) -> tuple[date, date]:
        # 첫 봉도 lookback_days만큼의 기사가 필요
        return start - timedelta(days=self.config.lookback_days), end

    def update_indicators(self, bar: Bar) -> None:
        reference = datetime.combine(bar.date + timedelta(days=1), time.min)
        window_start = reference - timedelta(days=self.config.lookback_days)
        decay = math.log(2) / self.config.recency_half_life_hours

        # [window_start, reference) 구간만 순회
        lo = bisect_left(self._times, window_start)
        hi = bisect_left(self._times, reference, lo)

        weighted_sum = 0.0
        weight_total = 0.0
        considered = 0
        for published_at, score in self._scored[lo:hi]:
            age_hours = (reference - published_at).total_seconds() / 3600
            weight = math.exp(-decay * age_hours)
            weighted_sum += score * weight
            weight_total += weight
            considered += 1

        self._considered = considered
        self._score = weighted_sum / weight_total if weight_total > 0 else None

    @property
    def score(self) -> float | None:
        """최근 집계된 감성 점수 (기사 부족 시 None)."""
        if self._considered < self.config.min_articles:
            return None
        return self._score

    def should_buy(self, bar: Bar) -> tuple[bool, str]:
        """매수 조건: 감성 점수 >= buy_threshold."""
        score = self.score
        if score is None:
            return False, f"기사 부족 ({self._considered} < {self.config.min_articles})"
        if score >= self.config.buy_threshold:
            return True, f"긍정 감성 ({score:.3f} >= {self.config.buy_threshold}, 기사 {self._considered}건)"
        return False, f"감성 중립 ({score:.3f})"

    def should_sell(self, bar: Bar) -> tuple[bool, str]:
        """매도 조건: 감성 점수 <= sell_threshold."""
        score = self.score
        if score is None:
            return False, f"기사 부족 ({self._considered} < {self.config.min_articles})"
        if score <= self.config.sell_threshold:
            return True, f"부정 감성 ({score:.3f} <= {self.config.sell_threshold}, 기사 {self._considered}건)"
        return False, f"감성 중립 ({score:.3f})"

    def snapshot(self) -> dict[str, Any]:
        return {"sentiment": self.score, "articles": self._considered}

    def reset_indicators(self) -> None:
        self._score = None
        self._considered = 0
