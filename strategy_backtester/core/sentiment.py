"""
뉴스 감성 데이터 공급 인터페이스.

[ 역할 ]
    sentiment_analysis 전략이 사용하는 외부 협력자(뉴스/감성 피드) 추상화.
    기사 단위 감성 점수 산출(키워드 휴리스틱, 제목 가중치)도 여기서 담당.

[ 구현체 ]
    - InMemorySentimentFeed (미리 적재된 기사 목록, 테스트/백테스트용)

[ 호출하는 곳 ]
    - backtest/engine.py가 실행(run)마다 종목당 한 번 fetch_articles() 호출
      (폴링 주기 0 = 실행당 1회 조회)
    - strategies/sentiment_analysis.py가 score_article()로 기사 점수 계산
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from pathlib import Path

from strategy_backtester.core.errors import InvalidInput

POSITIVE_KEYWORDS = (
    "beat", "beats", "exceed", "exceeds", "surge", "record", "upgrade", "outperform",
    "buyback", "dividend increase", "profit", "profitable", "growth", "raises guidance",
    "raise guidance", "optimism", "bullish", "strong", "above expectations", "tops", "soars",
)
NEGATIVE_KEYWORDS = (
    "miss", "misses", "fall", "falls", "drop", "drops", "downgrade", "underperform",
    "loss", "losses", "decline", "weak", "cuts guidance", "cut guidance", "bearish",
    "investigation", "probe", "lawsuit", "sec", "fraud", "layoff", "layoffs", "warns", "warning",
)

# 원점수를 [-1, 1]로 정규화할 때의 상한
MAX_RAW_SCORE = 6.0


@dataclass(frozen=True)
class NewsArticle:
    """기사 하나. score가 있으면 키워드 휴리스틱 대신 그대로 사용."""
    symbol: str
    title: str
    published_at: datetime
    description: str = ""
    id: str | None = None
    score: float | None = None   # 외부에서 계산된 감성 점수 [-1, 1]


class SentimentFeed(ABC):
    """감성 피드 추상 클래스."""

    @abstractmethod
    def fetch_articles(self, symbol: str, start: date, end: date) -> list[NewsArticle]:
        """기간 내(start, end 포함) 게시된 기사 조회."""
        ...


class InMemorySentimentFeed(SentimentFeed):
    """메모리에 적재된 기사 목록에서 조회."""

    def __init__(self, articles: list[NewsArticle] | None = None):
        self._articles: list[NewsArticle] = list(articles or [])

    @classmethod
    def from_json(cls, path: str | Path) -> "InMemorySentimentFeed":
        """JSON 파일(기사 객체 리스트)에서 로드. published_at은 ISO 8601 문자열."""
        with open(Path(path), "r", encoding="utf-8") as f:
            records = json.load(f)
        articles = []
        for record in records:
            try:
                articles.append(NewsArticle(
                    symbol=record["symbol"],
                    title=record["title"],
                    published_at=datetime.fromisoformat(record["published_at"]),
                    description=record.get("description", ""),
                    id=record.get("id"),
                    score=record.get("score"),
                ))
            except (KeyError, TypeError, ValueError) as e:
                raise InvalidInput(f"잘못된 기사 레코드: {record!r} ({e})") from e
        return cls(articles)

    def add_articles(self, articles: list[NewsArticle]) -> None:
        self._articles.extend(articles)

    def fetch_articles(self, symbol: str, start: date, end: date) -> list[NewsArticle]:
        lower = datetime.combine(start, time.min)
        upper = datetime.combine(end + timedelta(days=1), time.min)
        found = [
            a for a in self._articles
            if a.symbol == symbol and lower <= to_naive_utc(a.published_at) < upper
        ]
        return dedupe_articles(found)


def to_naive_utc(value: datetime) -> datetime:
    """tz-aware 값은 UTC 기준 naive로 맞춘다 (봉 날짜는 naive)."""
    if value.tzinfo is None:
        return value
    return (value - value.utcoffset()).replace(tzinfo=None)


def keyword_score(text: str) -> int:
    """긍정 키워드 수 - 부정 키워드 수."""
    text = text.lower()
    score = sum(1 for keyword in POSITIVE_KEYWORDS if keyword in text)
    score -= sum(1 for keyword in NEGATIVE_KEYWORDS if keyword in text)
    return score


def score_article(article: NewsArticle, title_weight: float = 2.0) -> float:
    """기사 감성 점수 [-1, 1]. 제목 점수에 title_weight 가중."""
    if article.score is not None:
        return max(-1.0, min(1.0, float(article.score)))
    raw = keyword_score(article.title) * title_weight + keyword_score(article.description)
    return max(-1.0, min(1.0, raw / MAX_RAW_SCORE))


def dedupe_articles(articles: list[NewsArticle]) -> list[NewsArticle]:
    """id(없으면 종목+제목+게시시각) 기준 중복 제거. 먼저 나온 기사를 유지."""
    seen: set[str] = set()
    unique = []
    for article in articles:
        key = article.id or f"{article.symbol}-{article.title}-{article.published_at.isoformat()}"
        if key in seen:
            continue
        seen.add(key)
        unique.append(article)
    return unique
