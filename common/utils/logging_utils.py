import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from flask.logging import default_handler


def setup_logger(app=None, log_level=None, log_to_file=True):
    if log_level is None:
        log_level = logging.INFO

    #NOTE: get_logger()로 만든 'ezstay.*' 로거도 같은 핸들러/레벨을 따르도록 함께 설정
    package_logger = logging.getLogger('ezstay')
    logger = app.logger if app else package_logger
    targets = [logger] if logger is package_logger else [logger, package_logger]

    for target in targets:
        target.setLevel(log_level)

    if package_logger.handlers:
        return logger

    formatter = logging.Formatter(
        fmt='[%(asctime)s] %(levelname)s in %(name)s (%(filename)s:%(lineno)d): %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    #NOTE: 콘솔 핸들러 - stdout으로 출력
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    handlers = [console_handler]

    if log_to_file:
        #NOTE: 파일 핸들러 - 로그 파일로 저장 (10MB 단위로 로테이션, 최대 5개 파일)
        log_dir = Path('logs')
        log_dir.mkdir(exist_ok=True)

        file_handler = RotatingFileHandler(
            log_dir / 'ezstay-signing.log',
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)

        #NOTE: 에러 로그 별도 파일 저장
        error_handler = RotatingFileHandler(
            log_dir / 'error.log',
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)

        handlers.extend([file_handler, error_handler])

    if app:
        #NOTE: Flask 기본 핸들러 대신 같은 포맷의 핸들러 사용
        app.logger.removeHandler(default_handler)

    for target in targets:
        for handler in handlers:
            target.addHandler(handler)

    return logger


def get_logger(name=None):
    if name:
        return logging.getLogger(f'ezstay.{name}')
    return logging.getLogger('ezstay')
