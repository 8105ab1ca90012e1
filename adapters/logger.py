"""
로거 어댑터

Core 레이어의 LoggerPort를 구현하는 Python 표준 로깅 어댑터입니다.
키워드 인자로 전달된 문맥 값(mailbox_id, folder 등)은 메시지 뒤에 key=value 형태로 붙습니다.
토큰 값은 어떤 경우에도 로그에 남기지 않습니다.
"""

import logging
import sys

from core.domain.ports import LoggerPort


DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# 문맥 값으로 넘어오더라도 기록하지 않는 키
REDACTED_KEYS = {"access_token", "refresh_token", "code", "client_secret"}


class LoggerAdapter(LoggerPort):
    """Python 표준 로깅을 사용하는 로거 어댑터"""

    def __init__(self, name: str = "mailsync", level: str = "INFO", format_string: str = DEFAULT_FORMAT):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))

        # 핸들러가 없으면 콘솔 핸들러 추가
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(logging.Formatter(format_string))
            self.logger.addHandler(handler)

    def _format(self, message: str, context: dict) -> str:
        if not context:
            return message
        pairs = " ".join(
            f"{key}={'***' if key in REDACTED_KEYS else value}"
            for key, value in context.items()
        )
        return f"{message} [{pairs}]"

    def info(self, message: str, **kwargs) -> None:
        """정보 로그"""
        self.logger.info(self._format(message, kwargs))

    def warning(self, message: str, **kwargs) -> None:
        """경고 로그"""
        self.logger.warning(self._format(message, kwargs))

    def error(self, message: str, **kwargs) -> None:
        """오류 로그"""
        self.logger.error(self._format(message, kwargs))

    def debug(self, message: str, **kwargs) -> None:
        """디버그 로그"""
        self.logger.debug(self._format(message, kwargs))


def create_logger(name: str = "mailsync", level: str = "INFO", format_string: str = DEFAULT_FORMAT) -> LoggerPort:
    """로거 인스턴스를 생성합니다."""
    return LoggerAdapter(name, level, format_string)
