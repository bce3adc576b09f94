"""
fastdb 로깅 설정

fastdb 로거 계층(fastdb.*)에만 핸들러를 붙이므로 애플리케이션의 루트 로거 설정은
바뀌지 않습니다. JSON 포맷은 풀 로그의 handle, database 같은 extra 필드를 함께 출력해
ELK/Loki 등 로그 수집 시스템에서 writer/reader 별로 조회할 수 있습니다.
"""

import logging
import sys

from pythonjsonlogger.json import JsonFormatter

from fastdb.config import LoggingConfig

LOGGER_NAME = "fastdb"
TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class FastDBJsonFormatter(JsonFormatter):
    """JSON 로그 포매터 (timestamp, level, logger + extra 필드)"""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record['timestamp'] = self.formatTime(record)
        log_record['level'] = record.levelname
        log_record['logger'] = record.name


def setup_logging(config: LoggingConfig | None = None) -> logging.Logger:
    """
    fastdb 로거 설정

    다시 호출하면 이전에 붙인 핸들러를 교체합니다.

    Args:
        config: 로깅 설정 (None이면 INFO, JSON, stdout)

    Returns:
        설정된 'fastdb' 로거
    """
    config = config or LoggingConfig()
    logger = logging.getLogger(LOGGER_NAME)

    for handler in [h for h in logger.handlers if getattr(h, '_fastdb_handler', False)]:
        logger.removeHandler(handler)
        handler.close()

    if config.json_format:
        formatter = FastDBJsonFormatter('%(timestamp)s %(level)s %(name)s %(message)s')
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    handlers = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        handlers.append(logging.FileHandler(config.log_file, encoding='utf-8'))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler._fastdb_handler = True
        logger.addHandler(handler)

    logger.setLevel(getattr(logging, config.level))
    logger.propagate = config.propagate

    # aiosqlite는 실행하는 모든 SQL을 DEBUG로 남김
    logging.getLogger('aiosqlite').setLevel(logging.WARNING)
    return logger
