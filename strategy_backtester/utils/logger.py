"""
로깅 모듈.

[ 역할 ]
    파일 + 콘솔 로거를 설정. 백테스트 시작/종료, 체결, 버려진 시그널, 에러 등을 기록.

[ 로그 파일 위치 ]
    {log_dir}/{name}_{YYYYMMDD}.log (예: logs/strategy_backtester_20240601.log)

[ 로거 이름 ]
    strategy_backtester.backtest   - 엔진 (실행 시작/종료, 미체결 주문 폐기)
    strategy_backtester.portfolio  - 체결(DEBUG), 버려진 시그널(INFO)
    strategy_backtester.data       - 데이터 제공자 조회/재시도
    strategy_backtester.batch      - 배치 실행
    strategy_backtester.risk       - 리스크 청산, 당일 손실 한도
    모두 "strategy_backtester"의 하위 로거이므로 setup_logger() 한 번으로 전부 출력된다.

[ 영역별 레벨 ]
    levels={"portfolio": "DEBUG", "data": "WARNING"} 처럼 하위 로거마다 레벨을 따로 지정할 수 있다.
    지정하지 않은 영역은 상위 로거 레벨을 따른다. (config.yaml의 log_levels)
    핸들러가 이미 등록된 뒤에 다시 호출해도 레벨은 갱신된다.

[ 호출하는 곳 ]
    - run_backtest.py에서 setup_logger() 호출
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logger(
    name: str = "strategy_backtester",
    level: str = "INFO",
    log_dir: str = "logs",
    console: bool = True,
    file: bool = True,
    levels: dict[str, str] | None = None,
) -> logging.Logger:
    """로거 설정. 파일 핸들러(일별) + 콘솔 핸들러 등록, 영역별 하위 로거 레벨 지정."""
    logger = logging.getLogger(name)
    logger.setLevel(_level(level))
    for area, area_level in (levels or {}).items():
        logging.getLogger(f"{name}.{area}").setLevel(_level(area_level))

    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    # 파일 핸들러
    if file:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        today = datetime.now().strftime("%Y%m%d")
        file_handler = logging.FileHandler(
            log_path / f"{name}_{today}.log",
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # 콘솔 핸들러
    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def _level(level: str) -> int:
    return getattr(logging, str(level).upper(), logging.INFO)
