"""
統一ログシステム
構造化ログによる一貫したログ出力
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .exceptions import SolaceException

# LogRecord の標準属性（extra と区別するため）
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "lineno", "funcName", "created",
    "msecs", "relativeCreated", "thread", "threadName", "taskName",
    "processName", "process", "getMessage", "exc_info",
    "exc_text", "stack_info", "message",
})


class StructuredFormatter(logging.Formatter):
    """構造化ログフォーマッター"""

    def format(self, record: logging.LogRecord) -> str:
        # ベース情報
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "file": record.filename,
            "line": record.lineno,
            "function": record.funcName,
        }

        # カスタム属性の追加
        extra_fields = {
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        }
        if extra_fields:
            log_entry["extra"] = extra_fields

        # 例外情報
        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None
            }

            # SolaceExceptionの場合は追加情報を含める
            if isinstance(record.exc_info[1], SolaceException):
                log_entry["exception"]["error_code"] = record.exc_info[1].error_code
                log_entry["exception"]["details"] = record.exc_info[1].details

        return json.dumps(log_entry, ensure_ascii=False, separators=(",", ":"), default=str)


class SolaceLogger:
    """統一ログシステム"""

    _loggers: Dict[str, logging.Logger] = {}
    _configured = False

    @classmethod
    def configure(cls, log_level: str = "INFO"):
        """ログシステムを設定"""
        if cls._configured:
            return

        # ルートロガーの設定
        root_logger = logging.getLogger("solace")
        root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

        # コンソールハンドラー（コンテナ環境ではファイルログを使わない）
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(console_handler)

        cls._configured = True

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """ログインスタンスを取得"""
        if name not in cls._loggers:
            logger_name = f"solace.{name}" if not name.startswith("solace") else name
            cls._loggers[name] = logging.getLogger(logger_name)

        return cls._loggers[name]


# 便利関数群
def get_logger(name: str) -> logging.Logger:
    """ロガーを取得"""
    return SolaceLogger.get_logger(name)


def log_error(logger: logging.Logger, error: Exception, context: Optional[Dict[str, Any]] = None):
    """エラーログ"""
    extra_info = {"event_type": "error"}
    if context:
        extra_info.update(context)

    logger.error(f"Error occurred: {str(error)}", exc_info=error, extra=extra_info)


def log_business_event(logger: logging.Logger, event: str, user_id: Optional[str] = None,
                       level: int = logging.INFO, **kwargs):
    """ビジネスイベントログ"""
    extra_info = {
        "event_type": "business_event",
        "business_event": event
    }
    if user_id:
        extra_info["user_id"] = user_id
    extra_info.update(kwargs)

    logger.log(level, f"Business event: {event}", extra=extra_info)


def log_audit_event(logger: logging.Logger, event: str, outcome: str,
                    user_id: Optional[str] = None, **kwargs):
    """監査ログ（認証の成否と原因を記録）"""
    extra_info = {
        "event_type": "audit",
        "audit_event": event,
        "outcome": outcome,
    }
    if user_id:
        extra_info["user_id"] = user_id
    extra_info.update(kwargs)

    level = logging.INFO if outcome == "success" else logging.WARNING
    logger.log(level, f"Audit: {event} {outcome}", extra=extra_info)
