"""
=============================================================================
전략 백테스트 엔진 (Strategy Backtester)
=============================================================================

[ 시스템 전체 구조 ]

    run_backtest.py (진입점)
         │
         ├── utils/config.py        ← config.yaml 설정 로드
         ├── utils/logger.py        ← 로깅
         │
         ├── data/providers.py      ← 가격 데이터 공급 (샘플/CSV/Yahoo/ClickHouse)
         │
         ├── strategies/            ← 매매 전략 (봉 단위 시그널 생성)
         │     ├── moving_average_crossover.py
         │     ├── bollinger_bands.py
         │     ├── mean_reversion.py
         │     ├── momentum.py
         │     ├── breakout.py
         │     └── sentiment_analysis.py
         │
         └── backtest/engine.py     ← 백테스트 실행 엔진 (리플레이 루프)
               │
               ├── backtest/execution.py ← 체결가/슬리피지/수수료 시뮬레이션
               ├── data/portfolio.py     ← 현금/포지션/거래기록/자산곡선 관리
               └── backtest/metrics.py   ← 성과 지표 계산 (순수 함수)

    backtest/batch.py → 여러 백테스트를 워커 풀에서 독립적으로 병렬 실행


[ 핵심 추상 클래스 (core/) - 모든 구현체의 부모 ]

    core/data_provider.py    → data/providers.py (InMemory / CSV / Yahoo / ClickHouse)
    core/trading_strategy.py → strategies/*.py (전략 6종)
    core/sentiment.py        → InMemorySentimentFeed (뉴스 감성 데이터 공급)


[ 데이터 흐름 ]

    1. config.yaml에서 전략 설정(strategy_type + 파라미터) 로드
    2. PriceSeriesProvider가 종목별 Bar 시퀀스 제공 (리플레이 전에 모두 조회)
    3. 종목별 TradingStrategy 인스턴스가 봉마다 on_bar()로 시그널(BUY/SELL/HOLD) 생성
       (여러 종목은 날짜 순으로 섞어서 처리 → 공유 현금 제약이 의미를 가짐)
    4. Portfolio가 시그널을 체결하고 매 봉마다 총 자산을 기록
    5. metrics.py가 자산곡선 + 거래기록으로 BacktestResult 생성
"""

__version__ = "0.1.0"
